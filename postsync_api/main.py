import logging
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from postsync_api.config import Settings, load_settings
from postsync_api.exceptions import PaymentAPIError
from postsync_api.plans import PlanCatalog, load_plan_catalog
from postsync_api.routers import health, payments, subscription, webhooks
from postsync_api.services.document_store import DocumentStore, build_document_store
from postsync_api.services.razorpay_client import RazorpayClient
from postsync_api.services.reconciler import SubscriptionReconciler
from postsync_api.utils.rate_limiter import InMemoryRateLimiter

logger = logging.getLogger(__name__)


async def _payment_error_handler(request: Request, exc: PaymentAPIError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s (%s)", request.method, request.url.path, exc.message, exc.details or "-")
    return JSONResponse(status_code=exc.status_code, content=exc.to_response(), headers=exc.headers)


async def _request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    fields = sorted({".".join(str(part) for part in error.get("loc", ())[1:]) for error in exc.errors()})
    return JSONResponse(
        status_code=400,
        content={
            "success": False,
            "error": "Missing required parameters",
            "details": ", ".join(field for field in fields if field) or "Malformed request body",
        },
    )


def create_app(
    settings: Optional[Settings] = None,
    store: Optional[DocumentStore] = None,
    gateway: Optional[RazorpayClient] = None,
    catalog: Optional[PlanCatalog] = None,
) -> FastAPI:
    """
    Build the API with its collaborators fixed for the life of the process.

    Anything not passed in is built from `settings`; handlers only read these
    objects through the dependencies in `postsync_api.dependencies`.
    """
    settings = settings or load_settings()

    app = FastAPI(
        title="PostSync Payment API",
        description="Razorpay orders, subscriptions and webhooks for PostSync",
        version="1.0.0",
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=list(settings.cors_allow_origins),
        allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
        allow_headers=["Origin", "X-Requested-With", "Content-Type", "Accept", "Authorization"],
    )

    app.state.settings = settings
    app.state.gateway = gateway or RazorpayClient(
        key_id=settings.razorpay_key_id,
        key_secret=settings.razorpay_key_secret,
        api_base=settings.razorpay_api_base,
        timeout=settings.razorpay_timeout_seconds,
    )
    app.state.store = store or build_document_store(settings)
    app.state.catalog = catalog or load_plan_catalog(settings.plan_catalog_path)
    app.state.reconciler = SubscriptionReconciler(app.state.store, app.state.catalog)
    app.state.rate_limiter = InMemoryRateLimiter(
        trust_proxy_headers=settings.trust_proxy_headers,
        trusted_proxy_ips=settings.trusted_proxy_ips,
    )

    app.add_exception_handler(PaymentAPIError, _payment_error_handler)
    app.add_exception_handler(RequestValidationError, _request_validation_handler)

    app.include_router(health.router)
    app.include_router(payments.router)
    app.include_router(subscription.router)
    app.include_router(webhooks.router)

    logger.info("PostSync Payment API ready with %d plans", len(app.state.catalog))
    return app
