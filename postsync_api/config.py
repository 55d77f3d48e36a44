import os
from dataclasses import dataclass
from typing import Mapping, Optional

from dotenv import load_dotenv

from postsync_api.exceptions import ConfigurationError

BACKEND_FIRESTORE = "firestore"
BACKEND_SQL = "sql"

REQUIRED_GATEWAY_VARS = ("RAZORPAY_KEY_ID", "RAZORPAY_KEY_SECRET", "RAZORPAY_WEBHOOK_SECRET")
REQUIRED_FIREBASE_VARS = ("FIREBASE_PROJECT_ID", "FIREBASE_CLIENT_EMAIL", "FIREBASE_PRIVATE_KEY")

# Subscription ids the web client uses in test mode; cancelling them never reaches Razorpay.
DEFAULT_MOCK_SUBSCRIPTION_IDS = frozenset({"sub_test_123", "sub_mock_subscription"})


def _parse_csv(raw: Optional[str]) -> tuple[str, ...]:
    return tuple(item.strip() for item in (raw or "").split(",") if item.strip())


def _positive_int(raw: Optional[str], default: int) -> int:
    try:
        value = int(str(raw).strip())
        if value <= 0:
            raise ValueError
        return value
    except (TypeError, ValueError):
        return default


def _positive_float(raw: Optional[str], default: float) -> float:
    try:
        value = float(str(raw).strip())
        if value <= 0:
            raise ValueError
        return value
    except (TypeError, ValueError):
        return default


def _normalize_database_url(url: str) -> str:
    if url.startswith("postgres://"):
        return url.replace("postgres://", "postgresql://", 1)
    return url


@dataclass(frozen=True)
class Settings:
    razorpay_key_id: str
    razorpay_key_secret: str
    razorpay_webhook_secret: str
    razorpay_api_base: str = "https://api.razorpay.com/v1"
    razorpay_timeout_seconds: float = 15.0

    document_store_backend: str = BACKEND_FIRESTORE
    database_url: str = "sqlite:///./postsync.db"
    firebase_project_id: str = ""
    firebase_client_email: str = ""
    firebase_private_key: str = ""
    users_collection: str = "users"
    payments_collection: str = "payments"

    cors_allow_origins: tuple[str, ...] = ("*",)
    mock_subscription_ids: frozenset = DEFAULT_MOCK_SUBSCRIPTION_IDS
    plan_catalog_path: str = ""

    verify_rate_limit: int = 20
    verify_rate_window_seconds: int = 900
    webhook_rate_limit: int = 120
    webhook_rate_window_seconds: int = 60
    trust_proxy_headers: bool = False
    trusted_proxy_ips: tuple[str, ...] = ()

    log_level: str = "INFO"


def load_settings(environ: Optional[Mapping[str, str]] = None) -> Settings:
    """
    Build settings from the environment (after loading `.env`).

    Raises ConfigurationError naming every missing required variable, so the
    process can refuse to start instead of failing on the first payment.
    """
    if environ is None:
        load_dotenv()
        environ = os.environ

    def _get(name: str, default: str = "") -> str:
        return (environ.get(name) or default).strip()

    backend = _get("DOCUMENT_STORE_BACKEND", BACKEND_FIRESTORE).lower()
    if backend not in {BACKEND_FIRESTORE, BACKEND_SQL}:
        raise ConfigurationError([f"DOCUMENT_STORE_BACKEND (unsupported value {backend!r})"])

    required = list(REQUIRED_GATEWAY_VARS)
    if backend == BACKEND_FIRESTORE:
        required.extend(REQUIRED_FIREBASE_VARS)
    missing = [name for name in required if not _get(name)]
    if missing:
        raise ConfigurationError(missing)

    return Settings(
        razorpay_key_id=_get("RAZORPAY_KEY_ID"),
        razorpay_key_secret=_get("RAZORPAY_KEY_SECRET"),
        razorpay_webhook_secret=_get("RAZORPAY_WEBHOOK_SECRET"),
        razorpay_api_base=_get("RAZORPAY_API_BASE", "https://api.razorpay.com/v1").rstrip("/"),
        razorpay_timeout_seconds=_positive_float(environ.get("RAZORPAY_TIMEOUT_SECONDS"), 15.0),
        document_store_backend=backend,
        database_url=_normalize_database_url(_get("DATABASE_URL", "sqlite:///./postsync.db")),
        firebase_project_id=_get("FIREBASE_PROJECT_ID"),
        firebase_client_email=_get("FIREBASE_CLIENT_EMAIL"),
        # Keys pasted into .env files carry literal "\n" sequences.
        firebase_private_key=_get("FIREBASE_PRIVATE_KEY").replace("\\n", "\n"),
        users_collection=_get("FIRESTORE_USERS_COLLECTION", "users"),
        payments_collection=_get("FIRESTORE_PAYMENTS_COLLECTION", "payments"),
        cors_allow_origins=_parse_csv(environ.get("CORS_ALLOW_ORIGINS")) or ("*",),
        mock_subscription_ids=frozenset(_parse_csv(environ.get("MOCK_SUBSCRIPTION_IDS"))) or DEFAULT_MOCK_SUBSCRIPTION_IDS,
        plan_catalog_path=_get("PLAN_CATALOG_PATH"),
        verify_rate_limit=_positive_int(environ.get("VERIFY_RATE_LIMIT"), 20),
        verify_rate_window_seconds=_positive_int(environ.get("VERIFY_RATE_WINDOW_SECONDS"), 900),
        webhook_rate_limit=_positive_int(environ.get("WEBHOOK_RATE_LIMIT"), 120),
        webhook_rate_window_seconds=_positive_int(environ.get("WEBHOOK_RATE_WINDOW_SECONDS"), 60),
        trust_proxy_headers=_get("TRUST_PROXY_HEADERS", "false").lower() in {"1", "true", "yes", "on"},
        trusted_proxy_ips=_parse_csv(environ.get("TRUSTED_PROXY_IPS")),
        log_level=_get("LOG_LEVEL", "INFO").upper(),
    )
