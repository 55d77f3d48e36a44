from fastapi import Request

from postsync_api.config import Settings
from postsync_api.plans import PlanCatalog
from postsync_api.services.document_store import DocumentStore
from postsync_api.services.razorpay_client import RazorpayClient
from postsync_api.services.reconciler import SubscriptionReconciler
from postsync_api.utils.rate_limiter import InMemoryRateLimiter


def get_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_gateway(request: Request) -> RazorpayClient:
    return request.app.state.gateway


def get_store(request: Request) -> DocumentStore:
    return request.app.state.store


def get_catalog(request: Request) -> PlanCatalog:
    return request.app.state.catalog


def get_reconciler(request: Request) -> SubscriptionReconciler:
    return request.app.state.reconciler


def get_rate_limiter(request: Request) -> InMemoryRateLimiter:
    return request.app.state.rate_limiter
