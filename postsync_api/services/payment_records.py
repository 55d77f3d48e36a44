import logging
from typing import Any, Optional

from postsync_api import schemas
from postsync_api.exceptions import UpstreamError
from postsync_api.services.document_store import DocumentStore

logger = logging.getLogger(__name__)


def record_pending_payment(
    store: DocumentStore,
    order: dict[str, Any],
    merchant_transaction_id: Optional[str] = None,
) -> schemas.PaymentRecord:
    order_id = str(order.get("id") or "").strip()
    if not order_id:
        raise UpstreamError("Razorpay returned an order without an id")

    record = schemas.PaymentRecord(
        order_id=order_id,
        amount=int(order.get("amount", 0) or 0),
        currency=str(order.get("currency") or "INR"),
        status=schemas.PaymentStatus.PENDING,
        merchant_transaction_id=merchant_transaction_id or order.get("receipt") or order_id,
    )
    return store.create_payment_record(record)


def _complete(
    store: DocumentStore,
    order_id: str,
    status: schemas.PaymentStatus,
    payment_id: Optional[str],
) -> Optional[schemas.PaymentRecord]:
    record = store.complete_payment_record(order_id, status, transaction_id=payment_id)
    if record is None:
        logger.warning("No payment record for order %s; nothing to mark %s", order_id, status.value)
    elif record.status != status:
        logger.warning(
            "Payment record %s already %s; ignoring %s",
            order_id,
            record.status.value,
            status.value,
        )
    else:
        logger.info("Payment record %s marked %s (payment %s)", order_id, status.value, payment_id)
    return record


def confirm_payment(store: DocumentStore, order_id: str, payment_id: Optional[str]) -> Optional[schemas.PaymentRecord]:
    return _complete(store, order_id, schemas.PaymentStatus.SUCCESS, payment_id)


def fail_payment(store: DocumentStore, order_id: str, payment_id: Optional[str] = None) -> Optional[schemas.PaymentRecord]:
    return _complete(store, order_id, schemas.PaymentStatus.FAILED, payment_id)
