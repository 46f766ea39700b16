"""In-memory stand-ins for the store, the payment gateway and the dispatcher.

``InMemoryEnrollmentStore`` follows the ``EnrollmentStore`` contract,
including the conditional-write results the services rely on. Every method
yields to the event loop first so ``asyncio.gather`` interleaves callers the
way concurrent requests would.
"""

import asyncio
import copy
from datetime import UTC, datetime
from decimal import Decimal
from typing import Any
from uuid import UUID, uuid4

from internhub.certificates.models import Certificate, CertificateReservation
from internhub.enrollments.models import (
    Enrollment,
    EnrollmentStatus,
    PaymentStatus,
    Program,
    Task,
)
from internhub.payments.gateway import GatewayOrder, GatewayPayment, GatewayRefund
from internhub.payments.models import Payment
from internhub.tasks.models import PendingSlot, Submission, SubmissionStatus


KEY_SECRET = "test_key_secret"
WEBHOOK_SECRET = "test_webhook_secret"


class InMemoryEnrollmentStore:
    def __init__(self) -> None:
        self.programs: dict[UUID, Program] = {}
        self.tasks: dict[UUID, dict[int, Task]] = {}
        self.enrollments: dict[UUID, Enrollment] = {}
        self.enrollment_keys: dict[tuple[UUID, UUID], UUID] = {}
        self.submissions: dict[UUID, Submission] = {}
        self.pending_slots: dict[tuple[UUID, UUID], PendingSlot] = {}
        self.payments: dict[UUID, Payment] = {}
        self.payments_by_order: dict[str, UUID] = {}
        self.payments_by_external_id: dict[str, UUID] = {}
        self.payment_leases: dict[UUID, UUID] = {}
        self.webhook_events: dict[str, str] = {}
        self.reservations: dict[UUID, CertificateReservation] = {}
        self.certificate_numbers: dict[str, UUID] = {}
        self.certificates: dict[UUID, Certificate] = {}
        self.progress_writes = 0
        self.settlements = 0

    @staticmethod
    async def _yield() -> None:
        await asyncio.sleep(0)

    # Programs and tasks

    async def save_program(self, program: Program) -> Program:
        await self._yield()
        self.programs[program.program_id] = copy.deepcopy(program)
        return program

    async def get_program(self, program_id: UUID) -> Program | None:
        await self._yield()
        return copy.deepcopy(self.programs.get(program_id))

    async def publish_program(self, program_id: UUID) -> bool:
        await self._yield()
        program = self.programs.get(program_id)
        if program is None or program.is_published:
            return False
        program.is_published = True
        return True

    async def insert_task(self, task: Task) -> bool:
        await self._yield()
        tasks = self.tasks.setdefault(task.program_id, {})
        if task.order in tasks:
            return False
        tasks[task.order] = copy.deepcopy(task)
        return True

    async def list_tasks(self, program_id: UUID) -> list[Task]:
        await self._yield()
        tasks = self.tasks.get(program_id, {})
        return [copy.deepcopy(tasks[order]) for order in sorted(tasks)]

    # Enrollments

    async def create_enrollment(self, enrollment: Enrollment) -> bool:
        await self._yield()
        key = (enrollment.student_id, enrollment.program_id)
        if key in self.enrollment_keys:
            return False
        self.enrollment_keys[key] = enrollment.enrollment_id
        self.enrollments[enrollment.enrollment_id] = copy.deepcopy(enrollment)
        return True

    async def get_enrollment(self, enrollment_id: UUID) -> Enrollment | None:
        await self._yield()
        return copy.deepcopy(self.enrollments.get(enrollment_id))

    async def list_student_enrollments(self, student_id: UUID) -> list[Enrollment]:
        await self._yield()
        return [
            copy.deepcopy(e)
            for e in sorted(self.enrollments.values(), key=lambda e: e.enrolled_at, reverse=True)
            if e.student_id == student_id
        ]

    async def update_progress(
        self,
        enrollment_id: UUID,
        expected_version: int,
        progress_percentage: Decimal,
        status: EnrollmentStatus,
        completed_at: datetime | None,
    ) -> bool:
        await self._yield()
        enrollment = self.enrollments[enrollment_id]
        if enrollment.version != expected_version:
            return False
        enrollment.progress_percentage = progress_percentage
        enrollment.status = status
        enrollment.completed_at = completed_at
        enrollment.version = expected_version + 1
        self.progress_writes += 1
        return True

    # Submissions

    async def reserve_pending_slot(
        self, enrollment_id: UUID, task_id: UUID, submission_id: UUID
    ) -> PendingSlot | None:
        await self._yield()
        key = (enrollment_id, task_id)
        holder = self.pending_slots.get(key)
        if holder is not None:
            return copy.deepcopy(holder)
        self.pending_slots[key] = PendingSlot(submission_id, datetime.now(UTC))
        return None

    async def replace_pending_slot(
        self,
        enrollment_id: UUID,
        task_id: UUID,
        stale_submission_id: UUID,
        submission_id: UUID,
    ) -> bool:
        await self._yield()
        key = (enrollment_id, task_id)
        holder = self.pending_slots.get(key)
        if holder is None or holder.submission_id != stale_submission_id:
            return False
        self.pending_slots[key] = PendingSlot(submission_id, datetime.now(UTC))
        return True

    async def release_pending_slot(
        self, enrollment_id: UUID, task_id: UUID, submission_id: UUID
    ) -> bool:
        await self._yield()
        key = (enrollment_id, task_id)
        holder = self.pending_slots.get(key)
        if holder is None or holder.submission_id != submission_id:
            return False
        del self.pending_slots[key]
        return True

    async def insert_submission(self, submission: Submission) -> Submission:
        await self._yield()
        self.submissions[submission.submission_id] = copy.deepcopy(submission)
        return submission

    async def get_submission(self, submission_id: UUID) -> Submission | None:
        await self._yield()
        return copy.deepcopy(self.submissions.get(submission_id))

    async def list_submissions(self, enrollment_id: UUID) -> list[Submission]:
        await self._yield()
        submissions = [
            copy.deepcopy(s)
            for s in self.submissions.values()
            if s.enrollment_id == enrollment_id
        ]
        submissions.sort(key=lambda s: s.submitted_at)
        return submissions

    async def apply_review(
        self,
        submission: Submission,
        outcome: SubmissionStatus,
        grade: Decimal | None,
        feedback: str | None,
        reviewed_by: UUID,
        reviewed_at: datetime,
    ) -> bool:
        await self._yield()
        stored = self.submissions[submission.submission_id]
        if stored.status != SubmissionStatus.PENDING:
            return False
        stored.status = outcome
        stored.grade = grade
        stored.feedback = feedback
        stored.reviewed_by = reviewed_by
        stored.reviewed_at = reviewed_at
        return True

    # Payments

    async def insert_payment(self, payment: Payment) -> Payment:
        await self._yield()
        self.payments[payment.payment_id] = copy.deepcopy(payment)
        self.payments_by_order[payment.external_order_id] = payment.payment_id
        return payment

    async def get_payment(self, payment_id: UUID) -> Payment | None:
        await self._yield()
        return copy.deepcopy(self.payments.get(payment_id))

    async def get_payment_by_order(self, external_order_id: str) -> Payment | None:
        payment_id = self.payments_by_order.get(external_order_id)
        return await self.get_payment(payment_id) if payment_id else None

    async def get_payment_by_external_id(self, external_payment_id: str) -> Payment | None:
        payment_id = self.payments_by_external_id.get(external_payment_id)
        return await self.get_payment(payment_id) if payment_id else None

    async def list_enrollment_payments(self, enrollment_id: UUID) -> list[Payment]:
        await self._yield()
        return [
            copy.deepcopy(p)
            for p in sorted(self.payments.values(), key=lambda p: p.created_at, reverse=True)
            if p.enrollment_id == enrollment_id
        ]

    async def claim_settlement(
        self, payment_id: UUID, token: UUID, lease_seconds: int
    ) -> bool:
        await self._yield()
        payment = self.payments[payment_id]
        if payment.status not in (PaymentStatus.PENDING, PaymentStatus.FAILED):
            return False
        if payment_id in self.payment_leases:
            return False
        self.payment_leases[payment_id] = token
        return True

    async def settle_payment(
        self,
        payment: Payment,
        external_payment_id: str,
        method: str | None,
        paid_at: datetime,
    ) -> None:
        await self._yield()
        stored = self.payments[payment.payment_id]
        stored.status = PaymentStatus.COMPLETED
        stored.external_payment_id = external_payment_id
        stored.method = method
        stored.paid_at = paid_at
        stored.failure_reason = None
        self.payment_leases.pop(payment.payment_id, None)
        self.payments_by_external_id[external_payment_id] = payment.payment_id
        self.enrollments[payment.enrollment_id].payment_status = PaymentStatus.COMPLETED
        self.settlements += 1

    async def mark_payment_failed(
        self,
        payment_id: UUID,
        reason: str,
        external_payment_id: str | None = None,
    ) -> bool:
        await self._yield()
        payment = self.payments[payment_id]
        if payment.status not in (PaymentStatus.PENDING, PaymentStatus.FAILED):
            return False
        payment.status = PaymentStatus.FAILED
        payment.failure_reason = reason
        payment.external_payment_id = external_payment_id
        return True

    async def claim_refund(self, payment_id: UUID, token: UUID, lease_seconds: int) -> bool:
        await self._yield()
        payment = self.payments[payment_id]
        if payment.status != PaymentStatus.COMPLETED or payment.refund_id:
            return False
        if payment_id in self.payment_leases:
            return False
        self.payment_leases[payment_id] = token
        return True

    async def release_payment_lease(self, payment_id: UUID, token: UUID) -> bool:
        await self._yield()
        if self.payment_leases.get(payment_id) != token:
            return False
        del self.payment_leases[payment_id]
        return True

    async def apply_refund(
        self,
        payment: Payment,
        refund_id: str,
        refund_amount: Decimal,
        reason: str | None,
        refunded_by: UUID | None,
        refunded_at: datetime,
    ) -> bool:
        await self._yield()
        full = refund_amount >= payment.amount
        stored = self.payments[payment.payment_id]
        stored.refund_id = refund_id
        stored.refund_amount = refund_amount
        stored.refund_reason = reason
        stored.refunded_by = refunded_by
        stored.refunded_at = refunded_at
        self.payment_leases.pop(payment.payment_id, None)
        if full:
            stored.status = PaymentStatus.REFUNDED
            enrollment = self.enrollments[payment.enrollment_id]
            enrollment.payment_status = PaymentStatus.REFUNDED
            enrollment.status = EnrollmentStatus.CANCELLED
        return full

    async def is_webhook_event_processed(self, event_id: str) -> bool:
        await self._yield()
        return event_id in self.webhook_events

    async def record_webhook_event(self, event_id: str, event_type: str) -> bool:
        await self._yield()
        if event_id in self.webhook_events:
            return False
        self.webhook_events[event_id] = event_type
        return True

    # Certificates

    async def get_certificate_reservation(
        self, enrollment_id: UUID
    ) -> CertificateReservation | None:
        await self._yield()
        return copy.deepcopy(self.reservations.get(enrollment_id))

    async def reserve_certificate(
        self, enrollment_id: UUID, certificate_id: UUID, reserved_at: datetime
    ) -> bool:
        await self._yield()
        if enrollment_id in self.reservations:
            return False
        self.reservations[enrollment_id] = CertificateReservation(
            enrollment_id, certificate_id, reserved_at
        )
        return True

    async def take_over_certificate_reservation(
        self,
        enrollment_id: UUID,
        stale_certificate_id: UUID,
        certificate_id: UUID,
        reserved_at: datetime,
    ) -> bool:
        await self._yield()
        current = self.reservations.get(enrollment_id)
        if (
            current is None
            or current.certificate_id != stale_certificate_id
            or current.sealed
        ):
            return False
        self.reservations[enrollment_id] = CertificateReservation(
            enrollment_id, certificate_id, reserved_at
        )
        return True

    async def seal_certificate_reservation(self, certificate: Certificate) -> bool:
        await self._yield()
        current = self.reservations.get(certificate.enrollment_id)
        if current is None or current.certificate_id != certificate.certificate_id:
            return False
        current.certificate = Certificate.from_payload(certificate.to_payload())
        return True

    async def reserve_certificate_number(
        self, certificate_number: str, certificate_id: UUID
    ) -> bool:
        await self._yield()
        if certificate_number in self.certificate_numbers:
            return False
        self.certificate_numbers[certificate_number] = certificate_id
        return True

    async def release_certificate_number(
        self, certificate_number: str, certificate_id: UUID
    ) -> None:
        await self._yield()
        if self.certificate_numbers.get(certificate_number) == certificate_id:
            del self.certificate_numbers[certificate_number]

    async def save_certificate(self, certificate: Certificate) -> Certificate:
        await self._yield()
        # A replay never overwrites the stored row (it carries an older write timestamp)
        self.certificates.setdefault(certificate.certificate_id, copy.deepcopy(certificate))
        enrollment = self.enrollments[certificate.enrollment_id]
        enrollment.certificate_issued = True
        enrollment.certificate_id = certificate.certificate_id
        return certificate

    async def get_certificate(self, certificate_id: UUID) -> Certificate | None:
        await self._yield()
        return copy.deepcopy(self.certificates.get(certificate_id))

    async def get_certificate_by_number(self, certificate_number: str) -> Certificate | None:
        certificate_id = self.certificate_numbers.get(certificate_number)
        if certificate_id is None:
            return None
        return await self.get_certificate(certificate_id)

    async def get_certificate_by_hash(self, verification_hash: str) -> Certificate | None:
        await self._yield()
        for certificate in self.certificates.values():
            if certificate.verification_hash == verification_hash:
                return copy.deepcopy(certificate)
        return None

    async def list_student_certificates(self, student_id: UUID) -> list[Certificate]:
        await self._yield()
        return [
            copy.deepcopy(c) for c in self.certificates.values() if c.student_id == student_id
        ]

    async def set_certificate_document_url(
        self, certificate_id: UUID, document_url: str
    ) -> None:
        await self._yield()
        self.certificates[certificate_id].document_url = document_url

    async def revoke_certificate(
        self,
        certificate_id: UUID,
        reason: str,
        revoked_by: UUID,
        revoked_at: datetime,
    ) -> bool:
        await self._yield()
        certificate = self.certificates[certificate_id]
        if not certificate.is_valid:
            return False
        certificate.is_valid = False
        certificate.revoked_at = revoked_at
        certificate.revoked_by = revoked_by
        certificate.revocation_reason = reason
        return True


class FakeGateway:
    """Gateway double: orders succeed, payments report ``payment_status``."""

    def __init__(self, payment_status: str = "captured", method: str = "upi") -> None:
        self.payment_status = payment_status
        self.method = method
        self.orders: list[GatewayOrder] = []
        self.fetched: list[str] = []
        self.refunds: list[tuple[str, Decimal]] = []
        self.payment_orders: dict[str, str] = {}

    async def create_order(self, amount: Decimal, currency: str, receipt: str) -> GatewayOrder:
        order = GatewayOrder(
            order_id=f"order_{uuid4().hex[:14]}",
            amount=amount,
            currency=currency,
            receipt=receipt,
        )
        self.orders.append(order)
        return order

    async def fetch_payment(self, payment_id: str) -> GatewayPayment:
        self.fetched.append(payment_id)
        return GatewayPayment(
            payment_id=payment_id,
            order_id=self.payment_orders.get(payment_id),
            status=self.payment_status,
            method=self.method,
            error_description=None if self.payment_status == "captured" else "Card declined",
        )

    async def refund(
        self, payment_id: str, amount: Decimal, notes: dict[str, str] | None = None
    ) -> GatewayRefund:
        self.refunds.append((payment_id, amount))
        return GatewayRefund(
            refund_id=f"rfnd_{uuid4().hex[:14]}",
            payment_id=payment_id,
            amount=amount,
            status="processed",
            notes=notes or {},
        )


class RecordingDispatcher:
    """Captures notify calls instead of delivering them."""

    def __init__(self) -> None:
        self.sent: list[tuple[UUID, Any, dict[str, Any]]] = []

    def notify(
        self,
        user_id: UUID,
        event: Any,
        payload: dict[str, Any],
        email: str | None = None,
        name: str | None = None,
    ) -> None:
        self.sent.append((user_id, event, payload))

    def events(self) -> list[Any]:
        return [event for _, event, _ in self.sent]

    async def drain(self) -> None:
        return None
