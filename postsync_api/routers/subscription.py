import logging

from fastapi import APIRouter, Depends, Request

from postsync_api import schemas
from postsync_api.config import Settings
from postsync_api.dependencies import get_gateway, get_rate_limiter, get_reconciler, get_settings
from postsync_api.exceptions import AuthenticationError, ValidationError
from postsync_api.services.razorpay_client import RazorpayClient, looks_like_razorpay_id
from postsync_api.services.reconciler import SubscriptionReconciler
from postsync_api.utils.rate_limiter import InMemoryRateLimiter
from postsync_api.utils.signatures import verify_subscription_signature

router = APIRouter(prefix="/api", tags=["subscription"])
logger = logging.getLogger(__name__)


@router.post("/create-subscription")
def create_subscription(
    payload: schemas.CreateSubscriptionRequest,
    gateway: RazorpayClient = Depends(get_gateway),
    reconciler: SubscriptionReconciler = Depends(get_reconciler),
):
    subscription = gateway.create_subscription(
        plan_id=payload.plan_id,
        user_id=payload.user_id,
        total_count=payload.total_count,
    )
    billing = reconciler.record_created(payload.user_id, subscription)
    return {"success": True, "data": {**subscription, **billing}}


@router.post("/verify-subscription")
def verify_subscription(
    payload: schemas.VerifySubscriptionRequest,
    request: Request,
    settings: Settings = Depends(get_settings),
    gateway: RazorpayClient = Depends(get_gateway),
    reconciler: SubscriptionReconciler = Depends(get_reconciler),
    rate_limiter: InMemoryRateLimiter = Depends(get_rate_limiter),
):
    rate_limiter.enforce(
        request=request,
        scope="subscription.verify",
        limit=settings.verify_rate_limit,
        window_seconds=settings.verify_rate_window_seconds,
    )

    if not looks_like_razorpay_id(payload.razorpay_subscription_id, "sub"):
        raise ValidationError("Invalid Razorpay subscription id format.")
    if not looks_like_razorpay_id(payload.razorpay_payment_id, "pay"):
        raise ValidationError("Invalid Razorpay payment id format.")

    if not verify_subscription_signature(
        settings.razorpay_key_secret,
        payload.razorpay_payment_id,
        payload.razorpay_subscription_id,
        payload.razorpay_signature,
    ):
        logger.warning(
            "Rejected subscription verification for %s: invalid signature",
            payload.razorpay_subscription_id,
        )
        raise AuthenticationError("Invalid signature")

    subscription = gateway.fetch_subscription(payload.razorpay_subscription_id)
    outcome = reconciler.activate(subscription, payload.razorpay_payment_id)
    return {
        "success": True,
        "message": "Subscription verified and activated",
        "data": outcome,
    }


@router.post("/cancel-subscription")
def cancel_subscription(
    payload: schemas.CancelSubscriptionRequest,
    settings: Settings = Depends(get_settings),
    gateway: RazorpayClient = Depends(get_gateway),
    reconciler: SubscriptionReconciler = Depends(get_reconciler),
):
    subscription_id = (payload.subscription_id or "").strip()
    user_id = (payload.user_id or "").strip()
    if not subscription_id or not user_id:
        raise ValidationError("Missing subscription_id or user_id")

    if subscription_id in settings.mock_subscription_ids:
        logger.info("Cancel requested for test subscription %s; skipping Razorpay", subscription_id)
        return {"success": True, "message": "Test subscription cancelled successfully", "mock": True}

    gateway.cancel_subscription(subscription_id)
    reconciler.cancel(user_id, subscription_id)
    return {"success": True, "message": "Subscription cancelled successfully"}
