from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field
from pydantic.alias_generators import to_camel


class PaymentStatus(str, Enum):
    PENDING = "PENDING"
    SUCCESS = "SUCCESS"
    FAILED = "FAILED"


TERMINAL_PAYMENT_STATUSES = frozenset({PaymentStatus.SUCCESS, PaymentStatus.FAILED})


class PaymentRecord(BaseModel):
    order_id: str
    amount: int
    currency: str = "INR"
    status: PaymentStatus = PaymentStatus.PENDING
    merchant_transaction_id: Optional[str] = None
    transaction_id: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    class Config:
        alias_generator = to_camel
        populate_by_name = True
        from_attributes = True

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_PAYMENT_STATUSES


class RazorpayOrderRequest(BaseModel):
    amount: Optional[float] = None  # major units; checked by the gateway client
    order_id: Optional[str] = Field(default=None, alias="orderId")
    currency: Optional[str] = "INR"
    notes: Dict[str, Any] = Field(default_factory=dict)

    class Config:
        populate_by_name = True


class RazorpayPaymentVerifyRequest(BaseModel):
    razorpay_order_id: str
    razorpay_payment_id: str
    razorpay_signature: str


class CreateSubscriptionRequest(BaseModel):
    plan_id: Optional[str] = None
    user_id: Optional[str] = None
    total_count: int = 12


class VerifySubscriptionRequest(BaseModel):
    razorpay_payment_id: str
    razorpay_subscription_id: str
    razorpay_signature: str


class CancelSubscriptionRequest(BaseModel):
    subscription_id: Optional[str] = None
    user_id: Optional[str] = None
