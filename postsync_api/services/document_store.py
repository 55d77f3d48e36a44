"""
Document store access for payment records and user documents.

Two backends share one interface: Firestore (the production store) and a
SQLAlchemy-backed store where each user document is a row with a JSON
`subscription` column and an integer `credits` column.
"""
import logging
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Any, Optional

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import sessionmaker

from postsync_api import models, schemas
from postsync_api.config import BACKEND_SQL, Settings
from postsync_api.database import create_db_engine, create_session_factory, init_db
from postsync_api.exceptions import PersistenceError

logger = logging.getLogger(__name__)


class _ServerTimestamp:
    def __repr__(self) -> str:
        return "SERVER_TIMESTAMP"


# Resolved to the store's own clock at write time.
SERVER_TIMESTAMP = _ServerTimestamp()


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class DocumentStore(ABC):
    @abstractmethod
    def create_payment_record(self, record: schemas.PaymentRecord) -> schemas.PaymentRecord:
        ...

    @abstractmethod
    def get_payment_record(self, order_id: str) -> Optional[schemas.PaymentRecord]:
        ...

    @abstractmethod
    def complete_payment_record(
        self,
        order_id: str,
        status: schemas.PaymentStatus,
        transaction_id: Optional[str] = None,
    ) -> Optional[schemas.PaymentRecord]:
        """
        Move a PENDING record to a terminal status.

        Returns None when no record exists. A record already in a terminal
        status is returned unchanged.
        """

    @abstractmethod
    def update_user_subscription(
        self,
        user_id: str,
        fields: dict[str, Any],
        credits_increment: int = 0,
    ) -> None:
        """
        Set `subscription.<key>` for each entry in `fields` and atomically add
        `credits_increment` to the user's credits. Raises PersistenceError if
        the user document does not exist.
        """

    @abstractmethod
    def get_user(self, user_id: str) -> Optional[dict[str, Any]]:
        ...


def check_terminal_status(status: schemas.PaymentStatus) -> schemas.PaymentStatus:
    status = schemas.PaymentStatus(status)
    if status not in schemas.TERMINAL_PAYMENT_STATUSES:
        raise ValueError(f"{status.value} is not a terminal payment status")
    return status


def check_credit_increment(credits_increment: int) -> int:
    credits_increment = int(credits_increment or 0)
    if credits_increment < 0:
        raise ValueError("Credits can only be incremented")
    return credits_increment


def _json_value(value: Any, now: datetime) -> Any:
    if value is SERVER_TIMESTAMP:
        return now.isoformat()
    if isinstance(value, datetime):
        return value.isoformat()
    return value


class SqlDocumentStore(DocumentStore):
    def __init__(self, session_factory: sessionmaker) -> None:
        self._session_factory = session_factory

    def _lock(self, query, session):
        # SQLite has no row locks; it serializes writers on its own.
        if session.bind is not None and session.bind.dialect.name != "sqlite":
            return query.with_for_update()
        return query

    def create_payment_record(self, record: schemas.PaymentRecord) -> schemas.PaymentRecord:
        now = utcnow()
        row = models.PaymentRecord(
            order_id=record.order_id,
            amount=record.amount,
            currency=record.currency,
            status=record.status.value,
            merchant_transaction_id=record.merchant_transaction_id,
            transaction_id=record.transaction_id,
            created_at=record.created_at or now,
            updated_at=record.updated_at or now,
        )
        with self._session_factory() as session:
            try:
                session.add(row)
                session.commit()
                session.refresh(row)
            except IntegrityError:
                session.rollback()
                raise PersistenceError(f"Payment record {record.order_id} already exists")
            except SQLAlchemyError as exc:
                session.rollback()
                logger.exception("Failed to create payment record %s", record.order_id)
                raise PersistenceError(details=str(exc))
            return schemas.PaymentRecord.model_validate(row)

    def get_payment_record(self, order_id: str) -> Optional[schemas.PaymentRecord]:
        with self._session_factory() as session:
            row = session.get(models.PaymentRecord, order_id)
            return schemas.PaymentRecord.model_validate(row) if row else None

    def complete_payment_record(
        self,
        order_id: str,
        status: schemas.PaymentStatus,
        transaction_id: Optional[str] = None,
    ) -> Optional[schemas.PaymentRecord]:
        status = check_terminal_status(status)
        with self._session_factory() as session:
            try:
                query = session.query(models.PaymentRecord).filter(models.PaymentRecord.order_id == order_id)
                row = self._lock(query, session).first()
                if row is None:
                    return None
                if row.status != schemas.PaymentStatus.PENDING.value:
                    return schemas.PaymentRecord.model_validate(row)

                row.status = status.value
                if transaction_id:
                    row.transaction_id = transaction_id
                row.updated_at = utcnow()
                session.commit()
                session.refresh(row)
            except SQLAlchemyError as exc:
                session.rollback()
                logger.exception("Failed to complete payment record %s", order_id)
                raise PersistenceError(details=str(exc))
            return schemas.PaymentRecord.model_validate(row)

    def update_user_subscription(
        self,
        user_id: str,
        fields: dict[str, Any],
        credits_increment: int = 0,
    ) -> None:
        credits_increment = check_credit_increment(credits_increment)
        now = utcnow()
        with self._session_factory() as session:
            try:
                query = session.query(models.UserDocument).filter(models.UserDocument.id == user_id)
                user = self._lock(query, session).first()
                if user is None:
                    raise PersistenceError(f"User document {user_id} does not exist")

                if fields:
                    merged = dict(user.subscription or {})
                    merged.update({key: _json_value(value, now) for key, value in fields.items()})
                    user.subscription = merged
                if credits_increment:
                    # Rendered as credits = credits + :n in the UPDATE.
                    user.credits = models.UserDocument.credits + credits_increment
                user.updated_at = now
                session.commit()
            except SQLAlchemyError as exc:
                session.rollback()
                logger.exception("Failed to update user document %s", user_id)
                raise PersistenceError(details=str(exc))

    def get_user(self, user_id: str) -> Optional[dict[str, Any]]:
        with self._session_factory() as session:
            user = session.get(models.UserDocument, user_id)
            if user is None:
                return None
            return {
                "id": user.id,
                "credits": int(user.credits or 0),
                "subscription": dict(user.subscription or {}),
            }

    def create_user(self, user_id: str, credits: int = 0, subscription: Optional[dict[str, Any]] = None) -> None:
        with self._session_factory() as session:
            try:
                session.add(models.UserDocument(id=user_id, credits=credits, subscription=subscription))
                session.commit()
            except IntegrityError:
                session.rollback()
                raise PersistenceError(f"User document {user_id} already exists")


def build_document_store(settings: Settings) -> DocumentStore:
    if settings.document_store_backend == BACKEND_SQL:
        engine = create_db_engine(settings.database_url)
        init_db(engine)
        logger.info("Using SQL document store (%s)", engine.dialect.name)
        return SqlDocumentStore(create_session_factory(engine))

    from postsync_api.services.firestore_store import FirestoreDocumentStore, create_firestore_client

    logger.info("Using Firestore document store for project %s", settings.firebase_project_id)
    return FirestoreDocumentStore(
        create_firestore_client(settings),
        users_collection=settings.users_collection,
        payments_collection=settings.payments_collection,
    )
