from datetime import datetime, timezone

from sqlalchemy import JSON, Column, DateTime, Integer, String

from postsync_api.database import Base


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class UserDocument(Base):
    __tablename__ = "users"

    id = Column(String, primary_key=True, index=True)
    credits = Column(Integer, nullable=False, default=0)
    subscription = Column(JSON, nullable=True)  # embedded subscription sub-record
    created_at = Column(DateTime(timezone=True), default=_utcnow)
    updated_at = Column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)


class PaymentRecord(Base):
    __tablename__ = "payment_records"

    order_id = Column(String, primary_key=True, index=True)
    amount = Column(Integer, nullable=False)  # minor units
    currency = Column(String, nullable=False, default="INR")
    status = Column(String, nullable=False, default="PENDING", index=True)
    merchant_transaction_id = Column(String, nullable=True, index=True)
    transaction_id = Column(String, nullable=True)
    created_at = Column(DateTime(timezone=True), default=_utcnow)
    updated_at = Column(DateTime(timezone=True), default=_utcnow)
