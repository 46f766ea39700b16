"""Tests for orders, settlement, webhooks and refunds."""

import asyncio
from decimal import Decimal
from uuid import uuid4

import orjson
import pytest
import pytest_asyncio

from internhub.core.exceptions import (
    ConflictError,
    ExternalServiceError,
    NotFoundError,
    SignatureVerificationError,
    UnauthorizedError,
    ValidationError,
)
from internhub.enrollments.models import EnrollmentStatus, PaymentStatus
from internhub.notifications.models import NotificationEvent
from internhub.payments.service import build_receipt
from internhub.payments.signatures import compute_checkout_signature, compute_signature

from fakes import KEY_SECRET, WEBHOOK_SECRET


def checkout_signature(order_id: str, payment_id: str) -> str:
    return compute_checkout_signature(KEY_SECRET, order_id, payment_id)


def webhook(event: str, entity_kind: str, entity: dict) -> tuple[bytes, str]:
    body = orjson.dumps({"event": event, "payload": {entity_kind: {"entity": entity}}})
    return body, compute_signature(WEBHOOK_SECRET, body)


@pytest_asyncio.fixture
async def order(payment_service, unpaid_enrollment, student_id):
    return await payment_service.create_order(unpaid_enrollment.enrollment_id, student_id)


async def settle(payment_service, gateway, order, enrollment, external_id="pay_001"):
    gateway.payment_orders[external_id] = order.order_id
    return await payment_service.verify_payment(
        order.order_id,
        external_id,
        checkout_signature(order.order_id, external_id),
        enrollment.enrollment_id,
    )


def test_receipt_fits_gateway_limit() -> None:
    receipt = build_receipt(uuid4(), now=1_760_000_000.123)

    assert receipt.startswith("enr_")
    assert receipt.endswith("_1760000000123")
    assert len(receipt) <= 40


class TestCreateOrder:
    @pytest.mark.asyncio
    async def test_order_records_pending_payment(
        self, payment_service, store, gateway, unpaid_enrollment, student_id
    ) -> None:
        order = await payment_service.create_order(unpaid_enrollment.enrollment_id, student_id)

        payment = store.payments[order.payment_id]
        assert payment.status == PaymentStatus.PENDING
        assert payment.amount == Decimal("4999.00")
        assert payment.external_order_id == gateway.orders[0].order_id
        assert order.key_id == "rzp_test_key"

    @pytest.mark.asyncio
    async def test_already_paid_enrollment_conflicts(
        self, payment_service, store, gateway, paid_enrollment, student_id
    ) -> None:
        with pytest.raises(ConflictError) as exc:
            await payment_service.create_order(paid_enrollment.enrollment_id, student_id)
        assert exc.value.code == "payment_already_completed"
        assert gateway.orders == []
        assert store.payments == {}

    @pytest.mark.asyncio
    async def test_other_student_cannot_order(self, payment_service, unpaid_enrollment) -> None:
        with pytest.raises(UnauthorizedError):
            await payment_service.create_order(unpaid_enrollment.enrollment_id, uuid4())


class TestVerifyPayment:
    @pytest.mark.asyncio
    async def test_valid_payment_unlocks_enrollment(
        self, payment_service, store, gateway, dispatcher, order, unpaid_enrollment
    ) -> None:
        result = await settle(payment_service, gateway, order, unpaid_enrollment)

        assert result.already_settled is False
        assert result.payment.status == PaymentStatus.COMPLETED
        assert result.payment.external_payment_id == "pay_001"
        enrollment = store.enrollments[unpaid_enrollment.enrollment_id]
        assert enrollment.payment_status == PaymentStatus.COMPLETED
        assert dispatcher.events() == [NotificationEvent.PAYMENT_COMPLETED]

    @pytest.mark.asyncio
    async def test_repeat_verification_is_idempotent(
        self, payment_service, store, gateway, dispatcher, order, unpaid_enrollment
    ) -> None:
        await settle(payment_service, gateway, order, unpaid_enrollment)
        again = await settle(payment_service, gateway, order, unpaid_enrollment)

        assert again.already_settled is True
        assert again.payment.status == PaymentStatus.COMPLETED
        assert store.settlements == 1
        assert len(gateway.fetched) == 1
        assert dispatcher.events().count(NotificationEvent.PAYMENT_COMPLETED) == 1

    @pytest.mark.asyncio
    async def test_concurrent_verifications_settle_once(
        self, payment_service, store, gateway, order, unpaid_enrollment
    ) -> None:
        gateway.payment_orders["pay_001"] = order.order_id
        signature = checkout_signature(order.order_id, "pay_001")

        results = await asyncio.gather(
            *(
                payment_service.verify_payment(
                    order.order_id, "pay_001", signature, unpaid_enrollment.enrollment_id
                )
                for _ in range(4)
            ),
            return_exceptions=True,
        )

        assert store.settlements == 1
        for result in results:
            if isinstance(result, ConflictError):
                assert result.retryable is True
            else:
                assert result.payment.status == PaymentStatus.COMPLETED

    @pytest.mark.asyncio
    async def test_invalid_signature_touches_nothing(
        self, payment_service, store, gateway, order, unpaid_enrollment
    ) -> None:
        gateway.payment_orders["pay_00X"] = order.order_id
        signature = checkout_signature(order.order_id, "pay_001")

        with pytest.raises(SignatureVerificationError):
            await payment_service.verify_payment(
                order.order_id, "pay_00X", signature, unpaid_enrollment.enrollment_id
            )

        assert store.payments[order.payment_id].status == PaymentStatus.PENDING
        assert store.enrollments[unpaid_enrollment.enrollment_id].payment_status == (
            PaymentStatus.PENDING
        )
        assert gateway.fetched == []

    @pytest.mark.asyncio
    async def test_order_of_another_enrollment(self, payment_service, order) -> None:
        with pytest.raises(NotFoundError):
            await payment_service.verify_payment(
                order.order_id, "pay_001", checkout_signature(order.order_id, "pay_001"), uuid4()
            )

    @pytest.mark.asyncio
    async def test_uncaptured_payment_is_marked_failed(
        self, payment_service, store, gateway, dispatcher, order, unpaid_enrollment
    ) -> None:
        gateway.payment_status = "failed"

        with pytest.raises(ExternalServiceError) as exc:
            await settle(payment_service, gateway, order, unpaid_enrollment)

        assert exc.value.code == "payment_not_captured"
        assert store.payments[order.payment_id].status == PaymentStatus.FAILED
        assert store.enrollments[unpaid_enrollment.enrollment_id].payment_status == (
            PaymentStatus.PENDING
        )
        assert dispatcher.events() == [NotificationEvent.PAYMENT_FAILED]

    @pytest.mark.asyncio
    async def test_failed_payment_can_be_retried(
        self, payment_service, store, gateway, order, unpaid_enrollment
    ) -> None:
        gateway.payment_status = "failed"
        with pytest.raises(ExternalServiceError):
            await settle(payment_service, gateway, order, unpaid_enrollment, "pay_001")

        gateway.payment_status = "captured"
        result = await settle(payment_service, gateway, order, unpaid_enrollment, "pay_002")

        assert result.payment.status == PaymentStatus.COMPLETED
        assert result.payment.external_payment_id == "pay_002"

    @pytest.mark.asyncio
    async def test_second_order_of_paid_enrollment_is_not_settled(
        self, payment_service, store, gateway, order, unpaid_enrollment, student_id
    ) -> None:
        second = await payment_service.create_order(unpaid_enrollment.enrollment_id, student_id)
        await settle(payment_service, gateway, order, unpaid_enrollment)

        result = await settle(payment_service, gateway, second, unpaid_enrollment, "pay_002")

        assert result.already_settled is True
        assert result.payment.payment_id == order.payment_id
        assert store.payments[second.payment_id].status == PaymentStatus.PENDING
        assert store.settlements == 1
        assert gateway.fetched == ["pay_001"]


class TestWebhooks:
    @pytest.mark.asyncio
    async def test_captured_webhook_settles(
        self, payment_service, store, order, unpaid_enrollment
    ) -> None:
        body, signature = webhook(
            "payment.captured",
            "payment",
            {"id": "pay_wh", "order_id": order.order_id, "status": "captured", "method": "upi"},
        )

        result = await payment_service.handle_webhook(body, signature, "evt_1")

        assert result.processed is True
        assert store.payments[order.payment_id].status == PaymentStatus.COMPLETED
        assert store.webhook_events == {"evt_1": "payment.captured"}

    @pytest.mark.asyncio
    async def test_webhook_after_verify_does_not_settle_again(
        self, payment_service, store, gateway, order, unpaid_enrollment
    ) -> None:
        await settle(payment_service, gateway, order, unpaid_enrollment)
        body, signature = webhook(
            "payment.captured",
            "payment",
            {"id": "pay_001", "order_id": order.order_id, "status": "captured"},
        )

        result = await payment_service.handle_webhook(body, signature, "evt_2")

        assert result.processed is False
        assert store.settlements == 1

    @pytest.mark.asyncio
    async def test_replayed_event_is_skipped(
        self, payment_service, store, order, unpaid_enrollment
    ) -> None:
        body, signature = webhook(
            "payment.failed",
            "payment",
            {"id": "pay_x", "order_id": order.order_id, "error_description": "Declined"},
        )

        first = await payment_service.handle_webhook(body, signature)
        second = await payment_service.handle_webhook(body, signature)

        assert first.processed is True
        assert second.duplicate is True
        assert first.event_id == second.event_id
        assert store.payments[order.payment_id].failure_reason == "Declined"

    @pytest.mark.asyncio
    async def test_bad_signature_is_rejected(self, payment_service, store) -> None:
        body, _ = webhook("payment.captured", "payment", {"id": "p", "order_id": "o"})

        with pytest.raises(SignatureVerificationError):
            await payment_service.handle_webhook(body, "deadbeef")
        assert store.webhook_events == {}

    @pytest.mark.asyncio
    async def test_unknown_event_is_recorded_but_ignored(self, payment_service, store) -> None:
        body = orjson.dumps({"event": "order.paid", "payload": {}})

        result = await payment_service.handle_webhook(
            body, compute_signature(WEBHOOK_SECRET, body), "evt_3"
        )

        assert result.processed is False
        assert "evt_3" in store.webhook_events

    @pytest.mark.asyncio
    async def test_malformed_body(self, payment_service) -> None:
        body = b"not json"

        with pytest.raises(ValidationError):
            await payment_service.handle_webhook(body, compute_signature(WEBHOOK_SECRET, body))

    @pytest.mark.asyncio
    async def test_refund_processed_webhook_cancels_enrollment(
        self, payment_service, store, gateway, order, unpaid_enrollment
    ) -> None:
        await settle(payment_service, gateway, order, unpaid_enrollment)
        body, signature = webhook(
            "refund.processed",
            "refund",
            {"id": "rfnd_wh", "payment_id": "pay_001", "amount": 499900, "status": "processed"},
        )

        first = await payment_service.handle_webhook(body, signature, "evt_r1")
        replay = await payment_service.handle_webhook(body, signature, "evt_r2")

        assert first.processed is True
        assert replay.processed is False
        payment = store.payments[order.payment_id]
        assert payment.status == PaymentStatus.REFUNDED
        assert payment.refund_id == "rfnd_wh"
        assert store.enrollments[unpaid_enrollment.enrollment_id].status == (
            EnrollmentStatus.CANCELLED
        )


class TestRefunds:
    @pytest.mark.asyncio
    async def test_full_refund_cancels_enrollment(
        self, payment_service, store, gateway, dispatcher, order, unpaid_enrollment
    ) -> None:
        await settle(payment_service, gateway, order, unpaid_enrollment)

        result = await payment_service.refund(order.payment_id, None, "Duplicate", uuid4())

        assert result.is_full_refund is True
        assert result.amount == Decimal("4999.00")
        assert gateway.refunds == [("pay_001", Decimal("4999.00"))]
        enrollment = store.enrollments[unpaid_enrollment.enrollment_id]
        assert enrollment.payment_status == PaymentStatus.REFUNDED
        assert enrollment.status == EnrollmentStatus.CANCELLED
        assert NotificationEvent.PAYMENT_REFUNDED in dispatcher.events()

    @pytest.mark.asyncio
    async def test_partial_refund_keeps_enrollment(
        self, payment_service, store, gateway, order, unpaid_enrollment
    ) -> None:
        await settle(payment_service, gateway, order, unpaid_enrollment)

        result = await payment_service.refund(order.payment_id, "1000", None, uuid4())

        assert result.is_full_refund is False
        payment = store.payments[order.payment_id]
        assert payment.status == PaymentStatus.COMPLETED
        assert payment.refund_amount == Decimal(1000)
        assert store.enrollments[unpaid_enrollment.enrollment_id].status == (
            EnrollmentStatus.ACTIVE
        )

    @pytest.mark.asyncio
    async def test_second_refund_conflicts(
        self, payment_service, gateway, order, unpaid_enrollment
    ) -> None:
        await settle(payment_service, gateway, order, unpaid_enrollment)
        await payment_service.refund(order.payment_id, "100", None, uuid4())

        with pytest.raises(ConflictError) as exc:
            await payment_service.refund(order.payment_id, "100", None, uuid4())
        assert exc.value.code == "payment_already_refunded"
        assert len(gateway.refunds) == 1

    @pytest.mark.asyncio
    async def test_pending_payment_is_not_refundable(self, payment_service, order) -> None:
        with pytest.raises(ConflictError) as exc:
            await payment_service.refund(order.payment_id, None, None, uuid4())
        assert exc.value.code == "payment_not_refundable"

    @pytest.mark.asyncio
    @pytest.mark.parametrize("amount", ["0", "-5", "5000", "abc"])
    async def test_refund_amount_bounds(
        self, payment_service, gateway, order, unpaid_enrollment, amount
    ) -> None:
        await settle(payment_service, gateway, order, unpaid_enrollment)

        with pytest.raises(ValidationError):
            await payment_service.refund(order.payment_id, amount, None, uuid4())
        assert gateway.refunds == []

    @pytest.mark.asyncio
    async def test_gateway_failure_releases_lease(
        self, payment_service, store, gateway, order, unpaid_enrollment
    ) -> None:
        await settle(payment_service, gateway, order, unpaid_enrollment)

        async def failing_refund(*args, **kwargs):
            raise ExternalServiceError("Payment gateway error: 502", "gateway_error")

        gateway.refund = failing_refund
        with pytest.raises(ExternalServiceError):
            await payment_service.refund(order.payment_id, None, None, uuid4())

        assert store.payment_leases == {}
        assert store.payments[order.payment_id].refund_id is None


@pytest.mark.asyncio
async def test_payment_history_for_staff(payment_service, order, unpaid_enrollment) -> None:
    payments = await payment_service.list_payments(
        unpaid_enrollment.enrollment_id, uuid4(), allow_staff=True
    )

    assert [p.payment_id for p in payments] == [order.payment_id]
