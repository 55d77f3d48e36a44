"""
Razorpay signature checks.

Checkout callbacks are signed with the API key secret over a `|`-joined pair of
ids; webhooks are signed with the webhook secret over the raw request body.
"""
import hashlib
import hmac
from typing import Optional, Union


def compute_signature(secret: str, payload: Union[str, bytes]) -> str:
    if isinstance(payload, str):
        payload = payload.encode("utf-8")
    return hmac.new(secret.encode("utf-8"), payload, hashlib.sha256).hexdigest()


def signature_matches(secret: str, payload: Union[str, bytes], provided_signature: Optional[str]) -> bool:
    if not provided_signature or not secret:
        return False
    return hmac.compare_digest(compute_signature(secret, payload).encode("ascii"), provided_signature.encode("utf-8"))


def verify_payment_signature(key_secret: str, order_id: str, payment_id: str, signature: Optional[str]) -> bool:
    return signature_matches(key_secret, f"{order_id}|{payment_id}", signature)


def verify_subscription_signature(
    key_secret: str,
    payment_id: str,
    subscription_id: str,
    signature: Optional[str],
) -> bool:
    return signature_matches(key_secret, f"{payment_id}|{subscription_id}", signature)


def verify_webhook_signature(webhook_secret: str, body: bytes, signature: Optional[str]) -> bool:
    # Must be the exact bytes received; re-serialized JSON would not match.
    return signature_matches(webhook_secret, body, signature)
