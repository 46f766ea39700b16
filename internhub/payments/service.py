"""Payment settlement service.

Business logic for:
- Creating gateway orders for an enrollment
- Verifying checkout callbacks and settling payments exactly once
- Applying gateway webhooks (captured, failed, refund processed) idempotently
- Admin refunds and payment history

Settlement is guarded by a TTL'd lease on the payment row: only the holder
writes the LOGGED batch that flips the payment and the enrollment to
COMPLETED together. Every other caller re-reads and returns the settled
payment, so a client callback racing a webhook settles once.
"""

import hashlib
import time
from dataclasses import dataclass
from datetime import UTC, datetime
from decimal import Decimal, InvalidOperation
from typing import TYPE_CHECKING, Any
from uuid import UUID, uuid4

import orjson

from internhub.core.exceptions import (
    ConflictError,
    ExternalServiceError,
    NotFoundError,
    UnauthorizedError,
    ValidationError,
)
from internhub.core.logging import get_logger
from internhub.enrollments.models import Enrollment, PaymentStatus
from internhub.enrollments.service import ensure_owner, load_enrollment
from internhub.notifications.models import NotificationEvent

from .gateway import GatewayPayment, GatewayRefund, PaymentGateway
from .models import Payment
from .signatures import verify_checkout_signature, verify_webhook_signature


if TYPE_CHECKING:
    from internhub.config.settings import Settings
    from internhub.enrollments.store import EnrollmentStore
    from internhub.notifications.service import NotificationDispatcher


logger = get_logger(__name__)


class WebhookEvent:
    PAYMENT_CAPTURED = "payment.captured"
    PAYMENT_FAILED = "payment.failed"
    REFUND_PROCESSED = "refund.processed"


@dataclass
class OrderDescriptor:
    """What the client needs to open the gateway checkout."""

    payment_id: UUID
    order_id: str
    amount: Decimal
    currency: str
    key_id: str
    receipt: str


@dataclass
class SettlementResult:
    payment: Payment
    already_settled: bool = False


@dataclass
class RefundResult:
    payment: Payment
    refund_id: str
    amount: Decimal
    is_full_refund: bool


@dataclass
class WebhookResult:
    event_id: str
    event_type: str | None
    processed: bool
    duplicate: bool = False


def build_receipt(enrollment_id: UUID, now: float | None = None) -> str:
    """Gateway receipt, kept under the 40 character limit."""
    millis = int((now if now is not None else time.time()) * 1000)
    return f"enr_{enrollment_id.hex[:12]}_{millis}"


class PaymentSettlementService:
    """Orders, settlement, webhooks and refunds for enrollment payments."""

    def __init__(
        self,
        store: "EnrollmentStore",
        gateway: PaymentGateway,
        dispatcher: "NotificationDispatcher",
        settings: "Settings",
    ):
        self.store = store
        self.gateway = gateway
        self.dispatcher = dispatcher
        self.key_id = settings.razorpay_key_id
        self.key_secret = settings.razorpay_key_secret
        self.webhook_secret = settings.razorpay_webhook_secret
        self.currency = settings.payment_currency
        self.lease_seconds = settings.payment_settlement_lease_seconds

    # ==========================================================================
    # Orders
    # ==========================================================================

    async def create_order(
        self, enrollment_id: UUID, requester_id: UUID
    ) -> OrderDescriptor:
        """Open a gateway order for the enrollment's amount due.

        Raises:
            NotFoundError: Enrollment does not exist
            UnauthorizedError: Requester does not own the enrollment
            ConflictError: Payment already completed or enrollment cancelled
            ExternalServiceError: Gateway order creation failed
        """
        enrollment = await load_enrollment(self.store, enrollment_id)
        ensure_owner(enrollment, requester_id)

        if enrollment.payment_status == PaymentStatus.COMPLETED:
            raise ConflictError(
                "Payment already completed for this enrollment",
                "payment_already_completed",
            )
        if enrollment.is_cancelled:
            raise ConflictError("Enrollment is cancelled", "enrollment_cancelled")
        if enrollment.payment_amount <= 0:
            raise ValidationError("Nothing to pay for this enrollment", "invalid_amount")

        currency = enrollment.currency or self.currency
        receipt = build_receipt(enrollment_id)
        order = await self.gateway.create_order(
            enrollment.payment_amount, currency, receipt
        )

        payment = Payment(
            payment_id=uuid4(),
            enrollment_id=enrollment_id,
            student_id=enrollment.student_id,
            amount=enrollment.payment_amount,
            currency=currency,
            external_order_id=order.order_id,
            receipt=receipt,
        )
        await self.store.insert_payment(payment)

        logger.info(
            "payment_order_created",
            payment_id=str(payment.payment_id),
            enrollment_id=str(enrollment_id),
            order_id=order.order_id,
            amount=str(payment.amount),
        )
        return OrderDescriptor(
            payment_id=payment.payment_id,
            order_id=order.order_id,
            amount=payment.amount,
            currency=currency,
            key_id=self.key_id,
            receipt=receipt,
        )

    # ==========================================================================
    # Verification and settlement
    # ==========================================================================

    async def verify_payment(
        self,
        order_id: str,
        external_payment_id: str,
        signature: str,
        enrollment_id: UUID,
        requester_id: UUID | None = None,
    ) -> SettlementResult:
        """Verify a checkout callback and settle the payment.

        The signature is checked before anything is read or written. Calling
        this again with the same payload, or for any order of an enrollment
        that is already paid, returns the settled payment without writing
        anything.

        Raises:
            SignatureVerificationError: Signature mismatch, nothing was touched
            NotFoundError: No payment for this order and enrollment
            UnauthorizedError: Requester does not own the payment
            ConflictError: Payment was refunded, or another settlement holds
                the lease and has not finished yet (retryable)
            ExternalServiceError: Gateway did not confirm a captured payment
        """
        verify_checkout_signature(self.key_secret, order_id, external_payment_id, signature)

        payment = await self.store.get_payment_by_order(order_id)
        if payment is None or payment.enrollment_id != enrollment_id:
            raise NotFoundError("Payment not found for this order", "payment_not_found")
        if requester_id is not None and payment.student_id != requester_id:
            raise UnauthorizedError("You do not own this payment", "not_payment_owner")

        if payment.is_completed:
            return SettlementResult(payment, already_settled=True)
        if payment.status == PaymentStatus.REFUNDED:
            raise ConflictError("Payment was refunded", "payment_refunded")

        # Settled through another order of the same enrollment
        enrollment = await load_enrollment(self.store, enrollment_id)
        if enrollment.payment_status == PaymentStatus.COMPLETED:
            payments = await self.store.list_enrollment_payments(enrollment_id)
            settled = next((p for p in payments if p.is_completed), payment)
            logger.info(
                "payment_verify_enrollment_already_paid",
                payment_id=str(payment.payment_id),
                settled_payment_id=str(settled.payment_id),
            )
            return SettlementResult(settled, already_settled=True)

        confirmed = await self.gateway.fetch_payment(external_payment_id)
        return await self._settle(payment, confirmed)

    async def _settle(
        self, payment: Payment, confirmed: GatewayPayment
    ) -> SettlementResult:
        if confirmed.order_id and confirmed.order_id != payment.external_order_id:
            raise ValidationError(
                "Gateway payment belongs to a different order", "payment_order_mismatch"
            )

        if not confirmed.is_captured:
            reason = confirmed.error_description or (
                f"Payment not captured (status: {confirmed.status or 'unknown'})"
            )
            await self._fail(payment, reason, confirmed.payment_id)
            raise ExternalServiceError(reason, "payment_not_captured")

        token = uuid4()
        if not await self.store.claim_settlement(
            payment.payment_id, token, self.lease_seconds
        ):
            current = await self.store.get_payment(payment.payment_id)
            if current is not None and current.is_completed:
                return SettlementResult(current, already_settled=True)
            raise ConflictError(
                "Payment settlement already in progress",
                "settlement_in_progress",
                retryable=True,
            )

        paid_at = datetime.now(UTC)
        try:
            await self.store.settle_payment(
                payment, confirmed.payment_id, confirmed.method, paid_at
            )
        except Exception:
            await self.store.release_payment_lease(payment.payment_id, token)
            raise

        payment.status = PaymentStatus.COMPLETED
        payment.external_payment_id = confirmed.payment_id
        payment.method = confirmed.method
        payment.failure_reason = None
        payment.paid_at = paid_at
        payment.updated_at = paid_at

        logger.info(
            "payment_settled",
            payment_id=str(payment.payment_id),
            enrollment_id=str(payment.enrollment_id),
            external_payment_id=confirmed.payment_id,
            method=confirmed.method,
        )

        enrollment = await self.store.get_enrollment(payment.enrollment_id)
        self._notify(
            enrollment,
            NotificationEvent.PAYMENT_COMPLETED,
            {
                "payment_id": str(payment.payment_id),
                "amount": str(payment.amount),
                "currency": payment.currency,
            },
        )
        return SettlementResult(payment)

    async def _fail(
        self, payment: Payment, reason: str, external_payment_id: str | None
    ) -> bool:
        applied = await self.store.mark_payment_failed(
            payment.payment_id, reason, external_payment_id
        )
        if not applied:
            # Settled or refunded in the meantime
            return False

        payment.status = PaymentStatus.FAILED
        payment.failure_reason = reason
        logger.warning(
            "payment_failed",
            payment_id=str(payment.payment_id),
            enrollment_id=str(payment.enrollment_id),
            reason=reason,
        )
        enrollment = await self.store.get_enrollment(payment.enrollment_id)
        self._notify(
            enrollment,
            NotificationEvent.PAYMENT_FAILED,
            {"payment_id": str(payment.payment_id), "reason": reason},
        )
        return True

    # ==========================================================================
    # Webhooks
    # ==========================================================================

    async def handle_webhook(
        self,
        body: bytes,
        signature: str | None,
        event_id: str | None = None,
    ) -> WebhookResult:
        """Authenticate and apply a gateway webhook.

        Args:
            body: Raw request body, exactly as signed
            signature: Value of the signature header
            event_id: Gateway event id header; the body digest when absent

        Raises:
            SignatureVerificationError: Body signature mismatch
            ValidationError: Body is not a JSON object
        """
        verify_webhook_signature(self.webhook_secret, body, signature)

        try:
            event = orjson.loads(body)
        except orjson.JSONDecodeError as e:
            raise ValidationError("Webhook body is not valid JSON", "invalid_webhook") from e
        if not isinstance(event, dict):
            raise ValidationError("Webhook body must be an object", "invalid_webhook")

        event_id = event_id or hashlib.sha256(body).hexdigest()
        event_type = event.get("event")

        if await self.store.is_webhook_event_processed(event_id):
            logger.info("webhook_duplicate", event_id=event_id, event_type=event_type)
            return WebhookResult(event_id, event_type, processed=False, duplicate=True)

        payload = event.get("payload") or {}
        if event_type == WebhookEvent.PAYMENT_CAPTURED:
            processed = await self._on_payment_captured(_entity(payload, "payment"))
        elif event_type == WebhookEvent.PAYMENT_FAILED:
            processed = await self._on_payment_failed(_entity(payload, "payment"))
        elif event_type == WebhookEvent.REFUND_PROCESSED:
            processed = await self._on_refund_processed(_entity(payload, "refund"))
        else:
            logger.info("webhook_ignored", event_id=event_id, event_type=event_type)
            processed = False

        await self.store.record_webhook_event(event_id, event_type or "unknown")
        logger.info(
            "webhook_handled",
            event_id=event_id,
            event_type=event_type,
            processed=processed,
        )
        return WebhookResult(event_id, event_type, processed=processed)

    async def _on_payment_captured(self, entity: dict[str, Any]) -> bool:
        payment = await self._payment_for_order(entity.get("order_id"))
        if payment is None or payment.is_completed:
            return False
        if payment.status == PaymentStatus.REFUNDED:
            return False
        result = await self._settle(payment, GatewayPayment.from_payload(entity))
        return not result.already_settled

    async def _on_payment_failed(self, entity: dict[str, Any]) -> bool:
        payment = await self._payment_for_order(entity.get("order_id"))
        if payment is None:
            return False
        reason = entity.get("error_description") or "Payment failed at gateway"
        return await self._fail(payment, reason, entity.get("id"))

    async def _on_refund_processed(self, entity: dict[str, Any]) -> bool:
        refund = GatewayRefund.from_payload(entity)
        payment = await self.store.get_payment_by_external_id(refund.payment_id)
        if payment is None:
            logger.warning("webhook_unknown_payment", external_payment_id=refund.payment_id)
            return False
        if payment.refund_id == refund.refund_id or not payment.is_completed:
            return False
        if payment.refund_id:
            logger.warning(
                "webhook_additional_refund_ignored",
                payment_id=str(payment.payment_id),
                refund_id=refund.refund_id,
            )
            return False

        token = uuid4()
        if not await self.store.claim_refund(payment.payment_id, token, self.lease_seconds):
            # An admin refund holds the lease and records this refund itself
            return False
        try:
            await self._record_refund(
                payment,
                refund.refund_id,
                min(refund.amount, payment.amount),
                refund.notes.get("reason"),
                None,
            )
        except Exception:
            await self.store.release_payment_lease(payment.payment_id, token)
            raise
        return True

    async def _payment_for_order(self, order_id: str | None) -> Payment | None:
        if not order_id:
            return None
        payment = await self.store.get_payment_by_order(order_id)
        if payment is None:
            logger.warning("webhook_unknown_order", order_id=order_id)
        return payment

    # ==========================================================================
    # Refunds
    # ==========================================================================

    async def refund(
        self,
        payment_id: UUID,
        amount: Decimal | str | None,
        reason: str | None,
        processed_by: UUID,
    ) -> RefundResult:
        """Refund a completed payment through the gateway.

        A full refund cancels the enrollment in the same batch that marks the
        payment REFUNDED; a partial refund only records the amount.

        Raises:
            NotFoundError: Payment does not exist
            ConflictError: Payment is not completed or was already refunded
            ValidationError: Amount not in (0, payment amount]
            ExternalServiceError: Gateway refund failed
        """
        payment = await self.store.get_payment(payment_id)
        if payment is None:
            raise NotFoundError("Payment not found", "payment_not_found")
        if payment.refund_id:
            raise ConflictError("Payment already refunded", "payment_already_refunded")
        if not payment.is_completed:
            raise ConflictError(
                "Only completed payments can be refunded", "payment_not_refundable"
            )

        refund_amount = self._parse_refund_amount(amount, payment)

        token = uuid4()
        if not await self.store.claim_refund(payment.payment_id, token, self.lease_seconds):
            raise ConflictError(
                "A refund for this payment is already in progress",
                "refund_in_progress",
                retryable=True,
            )

        try:
            gateway_refund = await self.gateway.refund(
                payment.external_payment_id,
                refund_amount,
                notes={"reason": reason or "", "processed_by": str(processed_by)},
            )
            full = await self._record_refund(
                payment, gateway_refund.refund_id, refund_amount, reason, processed_by
            )
        except Exception:
            await self.store.release_payment_lease(payment.payment_id, token)
            raise

        return RefundResult(
            payment=payment,
            refund_id=gateway_refund.refund_id,
            amount=refund_amount,
            is_full_refund=full,
        )

    @staticmethod
    def _parse_refund_amount(amount: Decimal | str | None, payment: Payment) -> Decimal:
        if amount is None:
            return payment.amount
        try:
            value = Decimal(str(amount))
        except InvalidOperation as e:
            raise ValidationError("Refund amount must be a number", "invalid_refund_amount") from e
        if not value.is_finite() or value <= 0 or value > payment.amount:
            raise ValidationError(
                "Refund amount must be positive and not exceed the payment amount",
                "invalid_refund_amount",
            )
        return value

    async def _record_refund(
        self,
        payment: Payment,
        refund_id: str,
        amount: Decimal,
        reason: str | None,
        refunded_by: UUID | None,
    ) -> bool:
        refunded_at = datetime.now(UTC)
        full = await self.store.apply_refund(
            payment, refund_id, amount, reason, refunded_by, refunded_at
        )

        payment.refund_id = refund_id
        payment.refund_amount = amount
        payment.refund_reason = reason
        payment.refunded_by = refunded_by
        payment.refunded_at = refunded_at
        payment.updated_at = refunded_at
        if full:
            payment.status = PaymentStatus.REFUNDED

        logger.info(
            "payment_refunded",
            payment_id=str(payment.payment_id),
            enrollment_id=str(payment.enrollment_id),
            refund_id=refund_id,
            amount=str(amount),
            full_refund=full,
        )

        enrollment = await self.store.get_enrollment(payment.enrollment_id)
        self._notify(
            enrollment,
            NotificationEvent.PAYMENT_REFUNDED,
            {
                "payment_id": str(payment.payment_id),
                "amount": str(amount),
                "currency": payment.currency,
            },
        )
        return full

    # ==========================================================================
    # Queries
    # ==========================================================================

    async def list_payments(
        self,
        enrollment_id: UUID,
        requester_id: UUID,
        *,
        allow_staff: bool = False,
    ) -> list[Payment]:
        enrollment = await load_enrollment(self.store, enrollment_id)
        ensure_owner(enrollment, requester_id, allow_staff=allow_staff)
        return await self.store.list_enrollment_payments(enrollment_id)

    def _notify(
        self,
        enrollment: Enrollment | None,
        event: NotificationEvent,
        payload: dict[str, Any],
    ) -> None:
        if enrollment is None:
            return
        self.dispatcher.notify(
            enrollment.student_id,
            event,
            {
                "enrollment_id": str(enrollment.enrollment_id),
                "program_title": enrollment.program_title,
                **payload,
            },
            email=enrollment.student_email,
            name=enrollment.student_name,
        )


def _entity(payload: dict[str, Any], kind: str) -> dict[str, Any]:
    entity = (payload.get(kind) or {}).get("entity")
    if not isinstance(entity, dict):
        raise ValidationError(f"Webhook payload has no {kind} entity", "invalid_webhook")
    return entity
