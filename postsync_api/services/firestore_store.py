import logging
from typing import Any, Optional

import firebase_admin
from firebase_admin import credentials, firestore
from google.api_core import exceptions as google_exceptions

from postsync_api import schemas
from postsync_api.config import Settings
from postsync_api.exceptions import PersistenceError
from postsync_api.services.document_store import (
    SERVER_TIMESTAMP,
    DocumentStore,
    check_credit_increment,
    check_terminal_status,
    utcnow,
)

logger = logging.getLogger(__name__)

FIREBASE_APP_NAME = "postsync-payments"

# Firestore documents use the camelCase field names the web client reads.
_RECORD_FIELDS = {
    "order_id": "orderId",
    "amount": "amount",
    "currency": "currency",
    "status": "status",
    "merchant_transaction_id": "merchantTransactionId",
    "transaction_id": "transactionId",
    "created_at": "createdAt",
    "updated_at": "updatedAt",
}


def create_firestore_client(settings: Settings):
    try:
        app = firebase_admin.get_app(FIREBASE_APP_NAME)
    except ValueError:
        certificate = credentials.Certificate(
            {
                "type": "service_account",
                "project_id": settings.firebase_project_id,
                "client_email": settings.firebase_client_email,
                "private_key": settings.firebase_private_key,
                "token_uri": "https://oauth2.googleapis.com/token",
            }
        )
        app = firebase_admin.initialize_app(
            certificate,
            {"projectId": settings.firebase_project_id},
            name=FIREBASE_APP_NAME,
        )
        logger.info("Firebase Admin initialized for project %s", settings.firebase_project_id)
    return firestore.client(app)


def _record_to_document(record: schemas.PaymentRecord) -> dict[str, Any]:
    data = record.model_dump(by_alias=True)
    data["status"] = record.status.value
    return data


def _document_to_record(data: dict[str, Any]) -> schemas.PaymentRecord:
    return schemas.PaymentRecord.model_validate(
        {alias: data.get(alias) for alias in _RECORD_FIELDS.values() if data.get(alias) is not None}
    )


def _firestore_value(value: Any) -> Any:
    if value is SERVER_TIMESTAMP:
        return firestore.SERVER_TIMESTAMP
    return value


class FirestoreDocumentStore(DocumentStore):
    def __init__(self, client, users_collection: str = "users", payments_collection: str = "payments") -> None:
        self._client = client
        self._users_collection = users_collection
        self._payments_collection = payments_collection

    def _payment_ref(self, order_id: str):
        return self._client.collection(self._payments_collection).document(order_id)

    def _user_ref(self, user_id: str):
        return self._client.collection(self._users_collection).document(user_id)

    def create_payment_record(self, record: schemas.PaymentRecord) -> schemas.PaymentRecord:
        now = utcnow()
        record = record.model_copy(
            update={"created_at": record.created_at or now, "updated_at": record.updated_at or now}
        )
        try:
            self._payment_ref(record.order_id).create(_record_to_document(record))
        except google_exceptions.Conflict:
            raise PersistenceError(f"Payment record {record.order_id} already exists")
        except google_exceptions.GoogleAPICallError as exc:
            logger.exception("Failed to create payment record %s", record.order_id)
            raise PersistenceError(details=str(exc))
        return record

    def get_payment_record(self, order_id: str) -> Optional[schemas.PaymentRecord]:
        try:
            snapshot = self._payment_ref(order_id).get()
        except google_exceptions.GoogleAPICallError as exc:
            logger.exception("Failed to read payment record %s", order_id)
            raise PersistenceError(details=str(exc))
        if not snapshot.exists:
            return None
        return _document_to_record(snapshot.to_dict() or {})

    def complete_payment_record(
        self,
        order_id: str,
        status: schemas.PaymentStatus,
        transaction_id: Optional[str] = None,
    ) -> Optional[schemas.PaymentRecord]:
        status = check_terminal_status(status)
        ref = self._payment_ref(order_id)

        @firestore.transactional
        def _complete(transaction) -> Optional[dict[str, Any]]:
            snapshot = ref.get(transaction=transaction)
            if not snapshot.exists:
                return None
            data = snapshot.to_dict() or {}
            if data.get("status") != schemas.PaymentStatus.PENDING.value:
                return data

            updates: dict[str, Any] = {"status": status.value, "updatedAt": utcnow()}
            if transaction_id:
                updates["transactionId"] = transaction_id
            transaction.update(ref, updates)
            data.update(updates)
            return data

        try:
            data = _complete(self._client.transaction())
        except google_exceptions.GoogleAPICallError as exc:
            logger.exception("Failed to complete payment record %s", order_id)
            raise PersistenceError(details=str(exc))
        return _document_to_record(data) if data is not None else None

    def update_user_subscription(
        self,
        user_id: str,
        fields: dict[str, Any],
        credits_increment: int = 0,
    ) -> None:
        credits_increment = check_credit_increment(credits_increment)
        updates = {f"subscription.{key}": _firestore_value(value) for key, value in fields.items()}
        if credits_increment:
            updates["credits"] = firestore.Increment(credits_increment)
        if not updates:
            return

        try:
            self._user_ref(user_id).update(updates)
        except google_exceptions.NotFound:
            raise PersistenceError(f"User document {user_id} does not exist")
        except google_exceptions.GoogleAPICallError as exc:
            logger.exception("Failed to update user document %s", user_id)
            raise PersistenceError(details=str(exc))

    def get_user(self, user_id: str) -> Optional[dict[str, Any]]:
        snapshot = self._user_ref(user_id).get()
        if not snapshot.exists:
            return None
        data = snapshot.to_dict() or {}
        return {
            "id": user_id,
            "credits": int(data.get("credits", 0) or 0),
            "subscription": dict(data.get("subscription") or {}),
        }
