"""Pydantic schemas for payments.

Checkout field names follow the gateway callback
(``razorpay_order_id`` / ``razorpay_payment_id`` / ``razorpay_signature``)
so the frontend can forward the callback body unchanged.
"""

from datetime import datetime
from decimal import Decimal
from uuid import UUID

from pydantic import BaseModel, Field

from internhub.enrollments.models import PaymentStatus

from .models import Payment
from .service import OrderDescriptor


# ==============================================================================
# Request Schemas
# ==============================================================================


class CreateOrderRequest(BaseModel):
    enrollment_id: UUID


class VerifyPaymentRequest(BaseModel):
    enrollment_id: UUID
    razorpay_order_id: str = Field(..., min_length=1)
    razorpay_payment_id: str = Field(..., min_length=1)
    razorpay_signature: str = Field(..., min_length=1)


class RefundRequest(BaseModel):
    amount: Decimal | None = Field(
        None, gt=0, description="Amount to refund; the full payment when omitted"
    )
    reason: str | None = Field(None, max_length=500)


# ==============================================================================
# Response Schemas
# ==============================================================================


class OrderResponse(BaseModel):
    payment_id: UUID
    order_id: str
    amount: Decimal
    currency: str
    key_id: str = Field(..., description="Public gateway key for the checkout widget")
    receipt: str

    @classmethod
    def from_descriptor(cls, order: OrderDescriptor) -> "OrderResponse":
        return cls(
            payment_id=order.payment_id,
            order_id=order.order_id,
            amount=order.amount,
            currency=order.currency,
            key_id=order.key_id,
            receipt=order.receipt,
        )


class PaymentResponse(BaseModel):
    payment_id: UUID
    enrollment_id: UUID
    amount: Decimal
    currency: str
    status: PaymentStatus
    external_order_id: str
    external_payment_id: str | None = None
    method: str | None = None
    failure_reason: str | None = None
    refund_amount: Decimal | None = None
    created_at: datetime
    paid_at: datetime | None = None
    refunded_at: datetime | None = None

    @classmethod
    def from_payment(cls, payment: Payment) -> "PaymentResponse":
        return cls(
            payment_id=payment.payment_id,
            enrollment_id=payment.enrollment_id,
            amount=payment.amount,
            currency=payment.currency,
            status=payment.status,
            external_order_id=payment.external_order_id,
            external_payment_id=payment.external_payment_id,
            method=payment.method,
            failure_reason=payment.failure_reason,
            refund_amount=payment.refund_amount,
            created_at=payment.created_at,
            paid_at=payment.paid_at,
            refunded_at=payment.refunded_at,
        )


class VerifyPaymentResponse(BaseModel):
    payment: PaymentResponse
    already_settled: bool = False


class RefundResponse(BaseModel):
    payment: PaymentResponse
    refund_id: str
    amount: Decimal
    is_full_refund: bool


class WebhookResponse(BaseModel):
    event_id: str
    processed: bool
    duplicate: bool = False
