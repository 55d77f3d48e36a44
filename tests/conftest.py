"""
Shared fixtures.

The app under test runs against an in-memory SQLite document store and the
real RazorpayClient wired to a fake HTTP session, so request payloads sent to
Razorpay can be asserted on without network access.
"""
import json
from typing import Any, Optional

import pytest
import requests
from fastapi.testclient import TestClient

from postsync_api.config import BACKEND_SQL, Settings
from postsync_api.database import create_db_engine, create_session_factory, init_db
from postsync_api.main import create_app
from postsync_api.plans import load_plan_catalog
from postsync_api.services.document_store import SqlDocumentStore
from postsync_api.services.razorpay_client import RazorpayClient
from postsync_api.utils.signatures import compute_signature

KEY_SECRET = "test_key_secret"
WEBHOOK_SECRET = "test_webhook_secret"
STARTER_PLAN = "plan_Q30DrDwrdv5sUN"
BASIC_PLAN = "plan_Q30G5R2vlZl9XS"
PRO_PLAN = "plan_Q30GQUMPYLZMYj"


class FakeResponse:
    def __init__(self, status_code: int = 200, payload: Any = None) -> None:
        self.status_code = status_code
        self._payload = payload

    def json(self):
        if isinstance(self._payload, Exception):
            raise self._payload
        return self._payload

    def raise_for_status(self) -> None:
        if self.status_code >= 400:
            raise requests.HTTPError(f"HTTP {self.status_code}")


class FakeRazorpaySession:
    """Stands in for the `requests` module inside RazorpayClient."""

    def __init__(self) -> None:
        self.calls: list[dict[str, Any]] = []
        self.routes: dict[tuple[str, str], Any] = {}

    def add(self, method: str, path: str, payload: Any = None, status_code: int = 200) -> None:
        self.routes[(method.upper(), path)] = FakeResponse(status_code, payload)

    def fail(self, method: str, path: str, exc: Exception) -> None:
        self.routes[(method.upper(), path)] = exc

    def request(self, method, url, auth=None, json=None, timeout=None):
        path = url.split("/v1", 1)[1]
        self.calls.append({"method": method, "path": path, "json": json, "auth": auth, "timeout": timeout})
        route = self.routes.get((method, path))
        if route is None:
            return FakeResponse(404, {"error": {"code": "BAD_REQUEST_ERROR", "description": "The id provided does not exist"}})
        if isinstance(route, Exception):
            raise route
        return route


def sign(secret: str, payload) -> str:
    return compute_signature(secret, payload)


def signed_webhook(event: str, payload: dict[str, Any], secret: str = WEBHOOK_SECRET) -> tuple[bytes, dict[str, str]]:
    body = json.dumps({"entity": "event", "event": event, "payload": payload}).encode("utf-8")
    return body, {"x-razorpay-signature": sign(secret, body), "content-type": "application/json"}


def subscription_entity(
    subscription_id: str = "sub_ABC123",
    plan_id: str = BASIC_PLAN,
    user_id: Optional[str] = "user_1",
    current_end: Optional[int] = 1767225600,
    status: str = "active",
) -> dict[str, Any]:
    return {
        "id": subscription_id,
        "entity": "subscription",
        "plan_id": plan_id,
        "status": status,
        "current_start": 1764547200,
        "current_end": current_end,
        "charge_at": 1767225600,
        "notes": {"user_id": user_id} if user_id else [],
    }


@pytest.fixture
def settings():
    return Settings(
        razorpay_key_id="rzp_test_key",
        razorpay_key_secret=KEY_SECRET,
        razorpay_webhook_secret=WEBHOOK_SECRET,
        document_store_backend=BACKEND_SQL,
        database_url="sqlite://",
    )


@pytest.fixture
def store():
    engine = create_db_engine("sqlite://")
    init_db(engine)
    yield SqlDocumentStore(create_session_factory(engine))
    engine.dispose()


@pytest.fixture
def user(store):
    store.create_user("user_1")
    return "user_1"


@pytest.fixture
def catalog():
    return load_plan_catalog()


@pytest.fixture
def razorpay_http():
    return FakeRazorpaySession()


@pytest.fixture
def gateway(settings, razorpay_http):
    return RazorpayClient(
        key_id=settings.razorpay_key_id,
        key_secret=settings.razorpay_key_secret,
        api_base=settings.razorpay_api_base,
        session=razorpay_http,
    )


@pytest.fixture
def app(settings, store, gateway, catalog):
    return create_app(settings, store=store, gateway=gateway, catalog=catalog)


@pytest.fixture
def client(app):
    with TestClient(app) as test_client:
        yield test_client
