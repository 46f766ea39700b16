"""Database models for payments and gateway webhooks.

Cassandra table definitions for:
- Payments: one row per gateway order
- Lookup tables: by gateway order id, by gateway payment id, by enrollment
- Webhook events: ids of processed gateway events
"""

from datetime import UTC, datetime
from decimal import Decimal
from typing import Any
from uuid import UUID

from internhub.enrollments.models import PaymentStatus, ensure_utc_aware


# ==============================================================================
# CQL Table Definitions
# ==============================================================================

# settlement_token is a TTL'd lease held by the verification that is
# currently settling the payment
PAYMENTS_TABLE_CQL = """
CREATE TABLE IF NOT EXISTS {keyspace}.payments (
    payment_id UUID PRIMARY KEY,
    enrollment_id UUID,
    student_id UUID,
    amount DECIMAL,
    currency TEXT,
    receipt TEXT,
    external_order_id TEXT,
    external_payment_id TEXT,
    status TEXT,
    method TEXT,
    failure_reason TEXT,
    refund_id TEXT,
    refund_amount DECIMAL,
    refund_reason TEXT,
    refunded_by UUID,
    refunded_at TIMESTAMP,
    settlement_token UUID,
    created_at TIMESTAMP,
    paid_at TIMESTAMP,
    updated_at TIMESTAMP
)
"""

PAYMENTS_BY_ORDER_TABLE_CQL = """
CREATE TABLE IF NOT EXISTS {keyspace}.payments_by_order (
    external_order_id TEXT PRIMARY KEY,
    payment_id UUID
)
"""

PAYMENTS_BY_EXTERNAL_ID_TABLE_CQL = """
CREATE TABLE IF NOT EXISTS {keyspace}.payments_by_external_id (
    external_payment_id TEXT PRIMARY KEY,
    payment_id UUID
)
"""

PAYMENTS_BY_ENROLLMENT_TABLE_CQL = """
CREATE TABLE IF NOT EXISTS {keyspace}.payments_by_enrollment (
    enrollment_id UUID,
    created_at TIMESTAMP,
    payment_id UUID,
    PRIMARY KEY (enrollment_id, created_at, payment_id)
) WITH CLUSTERING ORDER BY (created_at DESC, payment_id ASC)
"""

WEBHOOK_EVENTS_TABLE_CQL = """
CREATE TABLE IF NOT EXISTS {keyspace}.webhook_events (
    event_id TEXT PRIMARY KEY,
    event_type TEXT,
    received_at TIMESTAMP
)
"""

PAYMENTS_TABLES_CQL = [
    PAYMENTS_TABLE_CQL,
    PAYMENTS_BY_ORDER_TABLE_CQL,
    PAYMENTS_BY_EXTERNAL_ID_TABLE_CQL,
    PAYMENTS_BY_ENROLLMENT_TABLE_CQL,
    WEBHOOK_EVENTS_TABLE_CQL,
]


# ==============================================================================
# Entity Classes
# ==============================================================================


class Payment:
    """Payment for an enrollment, backed by one gateway order.

    Attributes:
        payment_id: Payment UUID
        enrollment_id: Enrollment being paid for
        amount: Amount in major currency units
        external_order_id: Gateway order id
        external_payment_id: Gateway payment id, set on settlement
        status: PENDING, COMPLETED, FAILED or REFUNDED
        refund_amount: Total refunded so far
    """

    def __init__(
        self,
        payment_id: UUID,
        enrollment_id: UUID,
        student_id: UUID,
        amount: Decimal,
        currency: str,
        external_order_id: str,
        receipt: str | None = None,
        external_payment_id: str | None = None,
        status: PaymentStatus = PaymentStatus.PENDING,
        method: str | None = None,
        failure_reason: str | None = None,
        refund_id: str | None = None,
        refund_amount: Decimal | None = None,
        refund_reason: str | None = None,
        refunded_by: UUID | None = None,
        refunded_at: datetime | None = None,
        created_at: datetime | None = None,
        paid_at: datetime | None = None,
        updated_at: datetime | None = None,
    ):
        self.payment_id = payment_id
        self.enrollment_id = enrollment_id
        self.student_id = student_id
        self.amount = amount
        self.currency = currency
        self.external_order_id = external_order_id
        self.receipt = receipt
        self.external_payment_id = external_payment_id
        self.status = PaymentStatus(status)
        self.method = method
        self.failure_reason = failure_reason
        self.refund_id = refund_id
        self.refund_amount = refund_amount
        self.refund_reason = refund_reason
        self.refunded_by = refunded_by
        self.refunded_at = ensure_utc_aware(refunded_at)
        self.created_at = ensure_utc_aware(created_at) or datetime.now(UTC)
        self.paid_at = ensure_utc_aware(paid_at)
        self.updated_at = ensure_utc_aware(updated_at) or self.created_at

    @property
    def is_completed(self) -> bool:
        return self.status == PaymentStatus.COMPLETED

    @property
    def refundable_amount(self) -> Decimal:
        return self.amount - (self.refund_amount or Decimal(0))

    @classmethod
    def from_row(cls, row: Any) -> "Payment":
        """Create Payment instance from Cassandra row."""
        return cls(
            payment_id=row.payment_id,
            enrollment_id=row.enrollment_id,
            student_id=row.student_id,
            amount=row.amount or Decimal(0),
            currency=row.currency or "INR",
            external_order_id=row.external_order_id,
            receipt=row.receipt,
            external_payment_id=row.external_payment_id,
            status=PaymentStatus(row.status or PaymentStatus.PENDING.value),
            method=row.method,
            failure_reason=row.failure_reason,
            refund_id=row.refund_id,
            refund_amount=row.refund_amount,
            refund_reason=row.refund_reason,
            refunded_by=row.refunded_by,
            refunded_at=row.refunded_at,
            created_at=row.created_at,
            paid_at=row.paid_at,
            updated_at=row.updated_at,
        )

    def __repr__(self) -> str:
        return (
            f"<Payment {self.payment_id} order={self.external_order_id} "
            f"{self.status.value}>"
        )
