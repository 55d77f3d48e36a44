import logging

from fastapi import APIRouter, Depends, Request

from postsync_api import schemas
from postsync_api.config import Settings
from postsync_api.dependencies import get_gateway, get_rate_limiter, get_settings, get_store
from postsync_api.exceptions import AuthenticationError, NotFoundError, ValidationError
from postsync_api.services.document_store import DocumentStore
from postsync_api.services.payment_records import confirm_payment, record_pending_payment
from postsync_api.services.razorpay_client import RazorpayClient, looks_like_razorpay_id
from postsync_api.utils.rate_limiter import InMemoryRateLimiter
from postsync_api.utils.signatures import verify_payment_signature

router = APIRouter(prefix="/api", tags=["payments"])
logger = logging.getLogger(__name__)


@router.post("/razorpay-order")
def create_razorpay_order(
    payload: schemas.RazorpayOrderRequest,
    gateway: RazorpayClient = Depends(get_gateway),
    store: DocumentStore = Depends(get_store),
):
    logger.info(
        "Creating order: amount=%s receipt=%s currency=%s",
        payload.amount,
        payload.order_id,
        payload.currency,
    )
    order = gateway.create_order(
        amount=payload.amount,
        currency=payload.currency,
        receipt=payload.order_id,
        notes=payload.notes,
    )
    record = record_pending_payment(store, order, merchant_transaction_id=payload.order_id)

    return {
        "success": True,
        "data": {
            "order_id": record.order_id,
            "currency": order.get("currency", record.currency),
            "amount": order.get("amount", record.amount),
            "notes": order.get("notes") or {},
        },
    }


@router.post("/razorpay-verify")
def verify_razorpay_payment(
    payload: schemas.RazorpayPaymentVerifyRequest,
    request: Request,
    settings: Settings = Depends(get_settings),
    store: DocumentStore = Depends(get_store),
    rate_limiter: InMemoryRateLimiter = Depends(get_rate_limiter),
):
    rate_limiter.enforce(
        request=request,
        scope="payments.verify",
        limit=settings.verify_rate_limit,
        window_seconds=settings.verify_rate_window_seconds,
    )

    if not looks_like_razorpay_id(payload.razorpay_order_id, "order"):
        raise ValidationError("Invalid Razorpay order id format.")
    if not looks_like_razorpay_id(payload.razorpay_payment_id, "pay"):
        raise ValidationError("Invalid Razorpay payment id format.")

    if not verify_payment_signature(
        settings.razorpay_key_secret,
        payload.razorpay_order_id,
        payload.razorpay_payment_id,
        payload.razorpay_signature,
    ):
        logger.warning("Rejected payment verification for order %s: invalid signature", payload.razorpay_order_id)
        raise AuthenticationError("Invalid signature")

    record = confirm_payment(store, payload.razorpay_order_id, payload.razorpay_payment_id)
    return {
        "success": True,
        "message": "Payment verified successfully",
        "paymentId": payload.razorpay_payment_id,
        "orderId": payload.razorpay_order_id,
        "status": record.status.value if record else None,
    }


@router.get("/payment-status/{order_id}")
def get_payment_status(order_id: str, store: DocumentStore = Depends(get_store)):
    record = store.get_payment_record(order_id)
    if record is None:
        raise NotFoundError(f"No payment record for order {order_id}")
    return {"success": True, "data": record.model_dump(by_alias=True, mode="json")}
