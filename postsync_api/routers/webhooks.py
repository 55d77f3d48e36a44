import json
import logging
from typing import Any

from fastapi import APIRouter, Depends, Request
from starlette.concurrency import run_in_threadpool

from postsync_api.config import Settings
from postsync_api.dependencies import get_rate_limiter, get_reconciler, get_settings, get_store
from postsync_api.exceptions import AuthenticationError, PaymentAPIError, ValidationError
from postsync_api.services.document_store import DocumentStore
from postsync_api.services.payment_records import confirm_payment, fail_payment
from postsync_api.services.reconciler import SubscriptionReconciler, entity_from_payload
from postsync_api.utils.rate_limiter import InMemoryRateLimiter
from postsync_api.utils.signatures import verify_webhook_signature

router = APIRouter(prefix="/api/webhooks", tags=["webhooks"])
logger = logging.getLogger(__name__)

EVENT_PAYMENT_CAPTURED = "payment.captured"
EVENT_PAYMENT_FAILED = "payment.failed"


def _handle_payment_event(store: DocumentStore, event_name: str, payload: dict[str, Any]) -> dict[str, Any]:
    entity = entity_from_payload(payload, "payment") or {}
    order_id = str(entity.get("order_id") or "").strip()
    payment_id = str(entity.get("id") or "").strip() or None
    if not order_id:
        return {"status": "ignored", "reason": "no_order_id"}

    if event_name == EVENT_PAYMENT_CAPTURED:
        record = confirm_payment(store, order_id, payment_id)
    else:
        record = fail_payment(store, order_id, payment_id)
    if record is None:
        return {"status": "ignored", "reason": "order_not_found"}
    return {"status": "processed", "payment_status": record.status.value}


@router.post("/razorpay")
async def razorpay_webhook(
    request: Request,
    settings: Settings = Depends(get_settings),
    store: DocumentStore = Depends(get_store),
    reconciler: SubscriptionReconciler = Depends(get_reconciler),
    rate_limiter: InMemoryRateLimiter = Depends(get_rate_limiter),
):
    rate_limiter.enforce(
        request=request,
        scope="webhooks.razorpay",
        limit=settings.webhook_rate_limit,
        window_seconds=settings.webhook_rate_window_seconds,
    )

    body = await request.body()
    if not verify_webhook_signature(
        settings.razorpay_webhook_secret,
        body,
        request.headers.get("x-razorpay-signature"),
    ):
        logger.warning("Rejected Razorpay webhook: invalid signature")
        raise AuthenticationError("Invalid webhook signature")

    try:
        event_payload = json.loads(body.decode("utf-8"))
    except (UnicodeDecodeError, ValueError):
        raise ValidationError("Invalid webhook payload")
    if not isinstance(event_payload, dict):
        raise ValidationError("Invalid webhook payload")

    event_name = str(event_payload.get("event") or "").strip()
    payload = event_payload.get("payload") or {}
    if not isinstance(payload, dict):
        raise ValidationError("Invalid webhook payload")
    logger.info(
        "Processing Razorpay webhook %s (event id %s)",
        event_name or "<missing>",
        request.headers.get("x-razorpay-event-id") or "n/a",
    )

    try:
        if reconciler.handles(event_name):
            outcome = await run_in_threadpool(reconciler.apply, event_name, payload)
            result = {"status": "processed", **outcome}
        elif event_name in {EVENT_PAYMENT_CAPTURED, EVENT_PAYMENT_FAILED}:
            result = await run_in_threadpool(_handle_payment_event, store, event_name, payload)
        else:
            logger.info("Ignoring unhandled Razorpay webhook event %s", event_name or "<missing>")
            result = {"status": "ignored", "reason": "unhandled_event"}
    except ValidationError as exc:
        # Signed but unusable: answered 500 so Razorpay redelivers.
        logger.error("Razorpay webhook %s could not be applied: %s (%s)", event_name, exc.message, exc.details or "-")
        raise PaymentAPIError("Failed to process webhook", details=exc.message) from exc
    except PaymentAPIError:
        logger.exception("Failed to process Razorpay webhook %s", event_name)
        raise
    except Exception as exc:
        logger.exception("Failed to process Razorpay webhook %s", event_name)
        raise PaymentAPIError("Failed to process webhook", details=str(exc)) from exc

    return {"success": True, "event": event_name, **result}
