import json
import logging
from dataclasses import dataclass
from types import MappingProxyType
from typing import Dict, Mapping, Optional

logger = logging.getLogger(__name__)

STATUS_CREATED = "created"
STATUS_ACTIVE = "active"
STATUS_CANCELLED = "cancelled"
STATUS_PAUSED = "paused"


@dataclass(frozen=True)
class Plan:
    plan_id: str
    credit_grant: int
    display_name: str
    price: float


DEFAULT_PLANS = (
    Plan(plan_id="plan_Q30DrDwrdv5sUN", credit_grant=10, display_name="Starter", price=199.0),
    Plan(plan_id="plan_Q30G5R2vlZl9XS", credit_grant=50, display_name="Basic", price=799.0),
    Plan(plan_id="plan_Q30GQUMPYLZMYj", credit_grant=150, display_name="Pro", price=1999.0),
)


class PlanCatalog:
    """Immutable plan id -> plan mapping, built once at start-up."""

    def __init__(self, plans) -> None:
        self._plans: Mapping[str, Plan] = MappingProxyType({plan.plan_id: plan for plan in plans})

    def __contains__(self, plan_id: object) -> bool:
        return plan_id in self._plans

    def __len__(self) -> int:
        return len(self._plans)

    def get(self, plan_id: Optional[str]) -> Optional[Plan]:
        return self._plans.get((plan_id or "").strip())

    def credits_for(self, plan_id: Optional[str]) -> int:
        # Unknown plans grant nothing rather than failing the webhook.
        plan = self.get(plan_id)
        return plan.credit_grant if plan else 0

    def display_name_for(self, plan_id: Optional[str]) -> Optional[str]:
        plan = self.get(plan_id)
        return plan.display_name if plan else None

    def as_dict(self) -> Dict[str, dict]:
        return {
            plan_id: {
                "creditGrant": plan.credit_grant,
                "displayName": plan.display_name,
                "price": plan.price,
            }
            for plan_id, plan in self._plans.items()
        }


def _plan_from_entry(plan_id: str, entry: dict) -> Plan:
    return Plan(
        plan_id=plan_id,
        credit_grant=max(int(entry.get("creditGrant", 0) or 0), 0),
        display_name=str(entry.get("displayName") or plan_id),
        price=float(entry.get("price", 0) or 0),
    )


def load_plan_catalog(path: Optional[str] = None) -> PlanCatalog:
    """
    Load the plan catalog from a JSON file shaped like
    {"plan_xxx": {"creditGrant": 10, "displayName": "Starter", "price": 199}}.
    Without a path the built-in production plans are used.
    """
    if not path:
        return PlanCatalog(DEFAULT_PLANS)

    with open(path, "r", encoding="utf-8") as handle:
        raw = json.load(handle)
    if not isinstance(raw, dict):
        raise ValueError(f"Plan catalog {path} must be a JSON object keyed by plan id")

    plans = [_plan_from_entry(plan_id, entry or {}) for plan_id, entry in raw.items()]
    logger.info("Loaded %d plans from %s", len(plans), path)
    return PlanCatalog(plans)
