from datetime import datetime, timezone

from fastapi import APIRouter, Depends

from postsync_api.dependencies import get_catalog, get_gateway
from postsync_api.plans import PlanCatalog
from postsync_api.services.razorpay_client import RazorpayClient

router = APIRouter(tags=["health"])

SERVICE_NAME = "PostSync Payment API"


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


@router.get("/")
def read_root(catalog: PlanCatalog = Depends(get_catalog)):
    return {
        "name": SERVICE_NAME,
        "status": "online",
        "endpoints": {
            "health": "/health",
            "razorpayOrder": "/api/razorpay-order",
            "razorpayVerify": "/api/razorpay-verify",
            "paymentStatus": "/api/payment-status/{order_id}",
            "createSubscription": "/api/create-subscription",
            "verifySubscription": "/api/verify-subscription",
            "cancelSubscription": "/api/cancel-subscription",
            "razorpayWebhook": "/api/webhooks/razorpay",
        },
        "plans": catalog.as_dict(),
        "timestamp": _now_iso(),
    }


@router.get("/health")
def health_check(gateway: RazorpayClient = Depends(get_gateway)):
    return {
        "status": "ok",
        "timestamp": _now_iso(),
        "gatewayInitialized": bool(gateway and gateway.initialized),
    }
