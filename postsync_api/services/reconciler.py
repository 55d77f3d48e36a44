"""
Subscription state reconciliation.

Every write to a user's embedded subscription record goes through
SubscriptionReconciler: gateway lifecycle webhooks as well as the create,
verify and cancel endpoints. The owning user is taken from the `user_id` the
subscription carries in its notes.

Webhook deliveries are not deduplicated, so a replayed `subscription.charged`
grants its credits again.
"""
import logging
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Optional

from postsync_api.exceptions import ValidationError
from postsync_api.plans import (
    STATUS_ACTIVE,
    STATUS_CANCELLED,
    STATUS_CREATED,
    STATUS_PAUSED,
    PlanCatalog,
)
from postsync_api.services.document_store import SERVER_TIMESTAMP, DocumentStore

logger = logging.getLogger(__name__)

EVENT_CHARGED = "subscription.charged"
EVENT_CANCELLED = "subscription.cancelled"
EVENT_PAUSED = "subscription.paused"
EVENT_RESUMED = "subscription.resumed"


def timestamp_to_datetime(raw_value: Any) -> Optional[datetime]:
    try:
        timestamp = int(raw_value or 0)
    except (TypeError, ValueError):
        return None
    if timestamp <= 0:
        return None
    return datetime.fromtimestamp(timestamp, tz=timezone.utc)


def next_billing_date(subscription_entity: dict[str, Any]) -> Optional[datetime]:
    # current_end is the cycle boundary once billing starts; before that only charge_at is set.
    return timestamp_to_datetime(subscription_entity.get("current_end")) or timestamp_to_datetime(
        subscription_entity.get("charge_at")
    )


def entity_from_payload(payload: dict[str, Any], key: str) -> Optional[dict[str, Any]]:
    """
    Return `payload[key]`, unwrapping `{"entity": {...}}` when present.

    Bare entities carry their own type name as `"entity": "<key>"`, so only a
    dict under `entity` counts as a wrapper.
    """
    wrapper = (payload or {}).get(key)
    if not isinstance(wrapper, dict):
        return None
    inner = wrapper.get("entity")
    return inner if isinstance(inner, dict) else wrapper


def subscription_entity_from_payload(payload: dict[str, Any]) -> dict[str, Any]:
    entity = entity_from_payload(payload, "subscription")
    if entity is None:
        raise ValidationError("Webhook payload carries no subscription")
    return entity


def payment_id_from_payload(payload: dict[str, Any]) -> Optional[str]:
    entity = entity_from_payload(payload, "payment") or {}
    return str(entity.get("id") or "").strip() or None


def user_id_from_subscription(subscription_entity: dict[str, Any]) -> str:
    notes = subscription_entity.get("notes")
    user_id = str((notes or {}).get("user_id") or "").strip() if isinstance(notes, dict) else ""
    if not user_id:
        raise ValidationError(
            "Subscription notes carry no user_id",
            details=f"subscription {subscription_entity.get('id') or 'unknown'}",
        )
    return user_id


class SubscriptionReconciler:
    def __init__(self, store: DocumentStore, catalog: PlanCatalog) -> None:
        self.store = store
        self.catalog = catalog
        self._handlers: Dict[str, Callable[[dict[str, Any]], dict[str, Any]]] = {
            EVENT_CHARGED: self.charged,
            EVENT_CANCELLED: self.cancelled,
            EVENT_PAUSED: self.paused,
            EVENT_RESUMED: self.resumed,
        }

    def handles(self, event_name: str) -> bool:
        return event_name in self._handlers

    def apply(self, event_name: str, payload: dict[str, Any]) -> dict[str, Any]:
        handler = self._handlers.get(event_name)
        if handler is None:
            raise ValueError(f"No reconciliation handler for {event_name}")
        return handler(payload)

    def _write(
        self,
        user_id: str,
        fields: dict[str, Any],
        credits_increment: int = 0,
    ) -> None:
        self.store.update_user_subscription(user_id, fields, credits_increment=credits_increment)

    def charged(self, payload: dict[str, Any]) -> dict[str, Any]:
        entity = subscription_entity_from_payload(payload)
        user_id = user_id_from_subscription(entity)
        plan_id = entity.get("plan_id")
        credits = self.catalog.credits_for(plan_id)

        fields: dict[str, Any] = {"lastChargedAt": SERVER_TIMESTAMP}
        current_end = timestamp_to_datetime(entity.get("current_end"))
        if current_end:
            fields["nextBillingDate"] = current_end
            fields["currentEnd"] = current_end
        payment_id = payment_id_from_payload(payload)
        if payment_id:
            fields["paymentId"] = payment_id

        self._write(user_id, fields, credits_increment=credits)
        logger.info(
            "Subscription %s charged for user %s on %s: +%d credits",
            entity.get("id"),
            user_id,
            plan_id,
            credits,
        )
        return {"user_id": user_id, "subscription_id": entity.get("id"), "credits_granted": credits}

    def _set_status(self, payload: dict[str, Any], status: str, stamp_field: str) -> dict[str, Any]:
        entity = subscription_entity_from_payload(payload)
        user_id = user_id_from_subscription(entity)
        self._write(user_id, {"status": status, stamp_field: SERVER_TIMESTAMP})
        logger.info("Subscription %s for user %s is now %s", entity.get("id"), user_id, status)
        return {"user_id": user_id, "subscription_id": entity.get("id"), "status": status}

    def cancelled(self, payload: dict[str, Any]) -> dict[str, Any]:
        return self._set_status(payload, STATUS_CANCELLED, "cancelledAt")

    def paused(self, payload: dict[str, Any]) -> dict[str, Any]:
        return self._set_status(payload, STATUS_PAUSED, "pausedAt")

    def resumed(self, payload: dict[str, Any]) -> dict[str, Any]:
        return self._set_status(payload, STATUS_ACTIVE, "resumedAt")

    def record_created(self, user_id: str, subscription: dict[str, Any]) -> dict[str, Any]:
        """Store a freshly created gateway subscription as `created` on the user."""
        billing_date = next_billing_date(subscription)
        current_end = timestamp_to_datetime(subscription.get("current_end"))
        self._write(
            user_id,
            {
                "id": subscription.get("id"),
                "status": STATUS_CREATED,
                "plan": subscription.get("plan_id"),
                "createdAt": SERVER_TIMESTAMP,
                "nextBillingDate": billing_date,
                "currentEnd": current_end,
            },
        )
        return {"nextBillingDate": billing_date, "currentEnd": current_end}

    def activate(self, subscription: dict[str, Any], payment_id: str) -> dict[str, Any]:
        """Apply a signature-verified checkout: mark active and grant the plan's credits."""
        user_id = user_id_from_subscription(subscription)
        plan_id = subscription.get("plan_id")
        credits = self.catalog.credits_for(plan_id)
        billing_date = next_billing_date(subscription)
        current_end = timestamp_to_datetime(subscription.get("current_end"))

        self._write(
            user_id,
            {
                "id": subscription.get("id"),
                "status": STATUS_ACTIVE,
                "plan": plan_id,
                "startedAt": SERVER_TIMESTAMP,
                "nextBillingDate": billing_date,
                "currentEnd": current_end,
                "paymentId": payment_id,
            },
            credits_increment=credits,
        )
        logger.info("Subscription %s activated for user %s: +%d credits", subscription.get("id"), user_id, credits)
        return {
            "user_id": user_id,
            "subscription_id": subscription.get("id"),
            "status": STATUS_ACTIVE,
            "plan": plan_id,
            "plan_name": self.catalog.display_name_for(plan_id),
            "credits_granted": credits,
            "nextBillingDate": billing_date,
            "currentEnd": current_end,
        }

    def cancel(self, user_id: str, subscription_id: Optional[str] = None) -> dict[str, Any]:
        fields: dict[str, Any] = {"status": STATUS_CANCELLED, "cancelledAt": SERVER_TIMESTAMP}
        self._write(user_id, fields)
        logger.info("Subscription %s cancelled for user %s", subscription_id or "unknown", user_id)
        return {"user_id": user_id, "subscription_id": subscription_id, "status": STATUS_CANCELLED}
