import logging
import re
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any, Optional

import requests

from postsync_api.exceptions import UpstreamError, ValidationError

logger = logging.getLogger(__name__)

DEFAULT_CURRENCY = "INR"
DEFAULT_TOTAL_COUNT = 12


def looks_like_razorpay_id(value: Optional[str], prefix: str) -> bool:
    return bool(re.fullmatch(rf"{prefix}_[A-Za-z0-9]+", (value or "").strip()))


def normalize_currency(raw_currency: Optional[str]) -> str:
    currency = (raw_currency or DEFAULT_CURRENCY).strip().upper()
    if not re.fullmatch(r"[A-Z]{3}", currency):
        return DEFAULT_CURRENCY
    return currency


def to_minor_units(amount: Any) -> int:
    """
    Convert a major-unit amount (rupees) into minor units (paise).

    Rounds half-up on the decimal string form, so 19.995 becomes 2000 rather
    than the 1999 that float arithmetic would give.
    """
    if amount is None or isinstance(amount, bool):
        raise ValidationError("Amount is required")
    try:
        value = Decimal(str(amount))
    except (InvalidOperation, ValueError):
        raise ValidationError("Amount must be a number")
    if not value.is_finite() or value <= 0:
        raise ValidationError("Amount must be greater than zero")
    return int((value * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def _gateway_error_message(response: requests.Response) -> str:
    try:
        payload = response.json()
    except ValueError:
        payload = None
    if isinstance(payload, dict):
        error = payload.get("error")
        if isinstance(error, dict) and error.get("description"):
            return str(error["description"])
    return f"Razorpay responded with HTTP {response.status_code}"


class RazorpayClient:
    """
    Thin wrapper over the Razorpay REST API.

    Every call is a single attempt; retries belong to the caller.
    """

    def __init__(
        self,
        key_id: str,
        key_secret: str,
        api_base: str = "https://api.razorpay.com/v1",
        timeout: float = 15.0,
        session: Any = None,
    ) -> None:
        self.key_id = key_id
        self._key_secret = key_secret
        self.api_base = api_base.rstrip("/")
        self.timeout = timeout
        self._http = session or requests

    @property
    def initialized(self) -> bool:
        return bool(self.key_id and self._key_secret)

    def _request(
        self,
        method: str,
        path: str,
        json_payload: Optional[dict[str, Any]] = None,
    ) -> dict[str, Any]:
        url = f"{self.api_base}/{path.lstrip('/')}"
        try:
            response = self._http.request(
                method=method.upper(),
                url=url,
                auth=(self.key_id, self._key_secret),
                json=json_payload,
                timeout=self.timeout,
            )
        except requests.RequestException as exc:
            logger.exception("Razorpay %s %s failed", method.upper(), path)
            raise UpstreamError("Failed to contact Razorpay", details=str(exc))

        if response.status_code >= 400:
            message = _gateway_error_message(response)
            logger.error("Razorpay %s %s returned %s: %s", method.upper(), path, response.status_code, message)
            raise UpstreamError("Razorpay rejected the request", details=message)

        try:
            payload = response.json()
        except ValueError:
            raise UpstreamError("Invalid response received from Razorpay")
        if not isinstance(payload, dict):
            raise UpstreamError("Unexpected response format from Razorpay")
        return payload

    def create_order(
        self,
        amount: Any,
        currency: Optional[str] = DEFAULT_CURRENCY,
        receipt: Optional[str] = None,
        notes: Optional[dict[str, Any]] = None,
    ) -> dict[str, Any]:
        payload = {
            "amount": to_minor_units(amount),
            "currency": normalize_currency(currency),
            "notes": notes or {},
            "payment_capture": 1,
        }
        if receipt:
            # Razorpay caps receipts at 40 characters.
            payload["receipt"] = str(receipt)[:40]

        order = self._request("POST", "/orders", json_payload=payload)
        logger.info("Created Razorpay order %s for %s %s", order.get("id"), payload["amount"], payload["currency"])
        return order

    def create_subscription(
        self,
        plan_id: Optional[str],
        user_id: Optional[str],
        total_count: Optional[int] = DEFAULT_TOTAL_COUNT,
    ) -> dict[str, Any]:
        if not plan_id or not user_id:
            raise ValidationError("plan_id and user_id are required")
        try:
            count = int(total_count if total_count is not None else DEFAULT_TOTAL_COUNT)
        except (TypeError, ValueError):
            raise ValidationError("total_count must be an integer")
        if count <= 0:
            raise ValidationError("total_count must be greater than zero")

        subscription = self._request(
            "POST",
            "/subscriptions",
            json_payload={
                "plan_id": plan_id,
                "total_count": count,
                "quantity": 1,
                "customer_notify": 1,
                "notes": {"user_id": user_id},
            },
        )
        logger.info("Created Razorpay subscription %s on %s for user %s", subscription.get("id"), plan_id, user_id)
        return subscription

    def fetch_subscription(self, subscription_id: str) -> dict[str, Any]:
        if not subscription_id:
            raise ValidationError("subscription_id is required")
        return self._request("GET", f"/subscriptions/{subscription_id}")

    def cancel_subscription(self, subscription_id: str, cancel_at_cycle_end: bool = False) -> dict[str, Any]:
        if not subscription_id:
            raise ValidationError("subscription_id is required")
        subscription = self._request(
            "POST",
            f"/subscriptions/{subscription_id}/cancel",
            json_payload={"cancel_at_cycle_end": 1 if cancel_at_cycle_end else 0},
        )
        logger.info("Cancelled Razorpay subscription %s", subscription_id)
        return subscription
