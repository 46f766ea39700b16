# ruff: noqa: S608 - All CQL queries use keyspace from config, not user input
"""Cassandra persistence for enrollments, submissions, payments and certificates.

The store is the only component that talks to Cassandra. Services receive it
through their constructor and express every concurrency guarantee in terms of
the primitives exposed here:

- lightweight transactions (``IF NOT EXISTS`` / ``IF col = ?``) return a bool
  telling the caller whether it won the race;
- LOGGED batches make multi-table writes all-or-nothing (settlement, refunds,
  certificate persistence).
"""

from datetime import UTC, datetime
from decimal import Decimal
from typing import TYPE_CHECKING
from uuid import UUID

from cassandra import WriteTimeout, WriteType
from cassandra.query import BatchStatement, BatchType

from internhub.certificates.models import Certificate, CertificateReservation
from internhub.core.logging import get_logger
from internhub.enrollments.models import (
    Enrollment,
    EnrollmentStatus,
    PaymentStatus,
    Program,
    Task,
)
from internhub.payments.models import Payment
from internhub.tasks.models import PendingSlot, Submission, SubmissionStatus


if TYPE_CHECKING:
    from cassandra.cluster import Session


logger = get_logger(__name__)

SETTLEABLE_STATUSES = (PaymentStatus.PENDING.value, PaymentStatus.FAILED.value)


class EnrollmentStore:
    """Persistence boundary over a cassandra-asyncio-driver session."""

    def __init__(self, session: "Session", keyspace: str):
        self.session = session
        self.keyspace = keyspace
        self._prepare_statements()

    def _prepare_statements(self) -> None:
        """Prepare CQL statements for efficient queries."""
        ks = self.keyspace

        # Programs and tasks
        self._insert_program = self.session.prepare(f"""
            INSERT INTO {ks}.programs
            (program_id, title, description, price, currency, is_published, created_at)
            VALUES (?, ?, ?, ?, ?, ?, ?)
        """)
        self._get_program = self.session.prepare(f"""
            SELECT * FROM {ks}.programs WHERE program_id = ?
        """)
        self._publish_program = self.session.prepare(f"""
            UPDATE {ks}.programs SET is_published = true
            WHERE program_id = ?
            IF is_published = false
        """)
        self._insert_task = self.session.prepare(f"""
            INSERT INTO {ks}.program_tasks
            (program_id, task_order, task_id, title, description, is_mandatory)
            VALUES (?, ?, ?, ?, ?, ?)
            IF NOT EXISTS
        """)
        self._list_tasks = self.session.prepare(f"""
            SELECT * FROM {ks}.program_tasks WHERE program_id = ?
        """)

        # Enrollments
        self._claim_enrollment_key = self.session.prepare(f"""
            INSERT INTO {ks}.enrollment_keys (student_id, program_id, enrollment_id)
            VALUES (?, ?, ?)
            IF NOT EXISTS
        """)
        self._release_enrollment_key = self.session.prepare(f"""
            DELETE FROM {ks}.enrollment_keys
            WHERE student_id = ? AND program_id = ?
            IF enrollment_id = ?
        """)
        self._insert_enrollment = self.session.prepare(f"""
            INSERT INTO {ks}.enrollments
            (enrollment_id, student_id, program_id, student_name, student_email,
             program_title, status, progress_percentage, payment_status,
             payment_amount, currency, certificate_issued, enrolled_at,
             updated_at, version)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
        """)
        self._insert_enrollment_by_student = self.session.prepare(f"""
            INSERT INTO {ks}.enrollments_by_student
            (student_id, enrolled_at, enrollment_id, program_id)
            VALUES (?, ?, ?, ?)
        """)
        self._get_enrollment = self.session.prepare(f"""
            SELECT * FROM {ks}.enrollments WHERE enrollment_id = ?
        """)
        self._list_enrollments_by_student = self.session.prepare(f"""
            SELECT enrollment_id FROM {ks}.enrollments_by_student
            WHERE student_id = ?
        """)
        self._update_progress = self.session.prepare(f"""
            UPDATE {ks}.enrollments
            SET progress_percentage = ?, status = ?, completed_at = ?,
                updated_at = ?, version = ?
            WHERE enrollment_id = ?
            IF version = ?
        """)
        self._set_enrollment_payment_status = self.session.prepare(f"""
            UPDATE {ks}.enrollments
            SET payment_status = ?, updated_at = ?
            WHERE enrollment_id = ?
        """)
        self._cancel_enrollment_refunded = self.session.prepare(f"""
            UPDATE {ks}.enrollments
            SET payment_status = ?, status = ?, updated_at = ?
            WHERE enrollment_id = ?
        """)
        self._mark_certificate_issued = self.session.prepare(f"""
            UPDATE {ks}.enrollments
            SET certificate_issued = true, certificate_id = ?, updated_at = ?
            WHERE enrollment_id = ?
        """)

        # Submissions
        self._reserve_pending_slot = self.session.prepare(f"""
            INSERT INTO {ks}.pending_submissions
            (enrollment_id, task_id, submission_id, reserved_at)
            VALUES (?, ?, ?, ?)
            IF NOT EXISTS
        """)
        self._replace_pending_slot = self.session.prepare(f"""
            UPDATE {ks}.pending_submissions SET submission_id = ?, reserved_at = ?
            WHERE enrollment_id = ? AND task_id = ?
            IF submission_id = ?
        """)
        self._release_pending_slot = self.session.prepare(f"""
            DELETE FROM {ks}.pending_submissions
            WHERE enrollment_id = ? AND task_id = ?
            IF submission_id = ?
        """)
        self._insert_submission = self.session.prepare(f"""
            INSERT INTO {ks}.submissions
            (enrollment_id, submission_id, task_id, student_id, status, content,
             file_urls, submitted_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?)
        """)
        self._insert_submission_by_id = self.session.prepare(f"""
            INSERT INTO {ks}.submissions_by_id (submission_id, enrollment_id)
            VALUES (?, ?)
        """)
        self._get_submission_enrollment = self.session.prepare(f"""
            SELECT enrollment_id FROM {ks}.submissions_by_id WHERE submission_id = ?
        """)
        self._get_submission = self.session.prepare(f"""
            SELECT * FROM {ks}.submissions
            WHERE enrollment_id = ? AND submission_id = ?
        """)
        self._list_submissions = self.session.prepare(f"""
            SELECT * FROM {ks}.submissions WHERE enrollment_id = ?
        """)
        self._apply_review = self.session.prepare(f"""
            UPDATE {ks}.submissions
            SET status = ?, grade = ?, feedback = ?, reviewed_at = ?, reviewed_by = ?
            WHERE enrollment_id = ? AND submission_id = ?
            IF status = ?
        """)

        # Payments
        self._insert_payment = self.session.prepare(f"""
            INSERT INTO {ks}.payments
            (payment_id, enrollment_id, student_id, amount, currency, receipt,
             external_order_id, status, created_at, updated_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
        """)
        self._insert_payment_by_order = self.session.prepare(f"""
            INSERT INTO {ks}.payments_by_order (external_order_id, payment_id)
            VALUES (?, ?)
        """)
        self._insert_payment_by_enrollment = self.session.prepare(f"""
            INSERT INTO {ks}.payments_by_enrollment (enrollment_id, created_at, payment_id)
            VALUES (?, ?, ?)
        """)
        self._insert_payment_by_external_id = self.session.prepare(f"""
            INSERT INTO {ks}.payments_by_external_id (external_payment_id, payment_id)
            VALUES (?, ?)
        """)
        self._get_payment = self.session.prepare(f"""
            SELECT * FROM {ks}.payments WHERE payment_id = ?
        """)
        self._get_payment_id_by_order = self.session.prepare(f"""
            SELECT payment_id FROM {ks}.payments_by_order WHERE external_order_id = ?
        """)
        self._get_payment_id_by_external_id = self.session.prepare(f"""
            SELECT payment_id FROM {ks}.payments_by_external_id
            WHERE external_payment_id = ?
        """)
        self._list_payment_ids_by_enrollment = self.session.prepare(f"""
            SELECT payment_id FROM {ks}.payments_by_enrollment WHERE enrollment_id = ?
        """)
        self._claim_settlement = self.session.prepare(f"""
            UPDATE {ks}.payments USING TTL ?
            SET settlement_token = ?
            WHERE payment_id = ?
            IF status IN (?, ?) AND settlement_token = null
        """)
        self._complete_payment = self.session.prepare(f"""
            UPDATE {ks}.payments
            SET status = ?, external_payment_id = ?, method = ?, paid_at = ?,
                failure_reason = null, settlement_token = null, updated_at = ?
            WHERE payment_id = ?
        """)
        self._fail_payment = self.session.prepare(f"""
            UPDATE {ks}.payments
            SET status = ?, failure_reason = ?, external_payment_id = ?, updated_at = ?
            WHERE payment_id = ?
            IF status IN (?, ?)
        """)
        self._claim_refund = self.session.prepare(f"""
            UPDATE {ks}.payments USING TTL ?
            SET settlement_token = ?
            WHERE payment_id = ?
            IF status = ? AND refund_id = null AND settlement_token = null
        """)
        self._release_payment_lease = self.session.prepare(f"""
            UPDATE {ks}.payments
            SET settlement_token = null
            WHERE payment_id = ?
            IF settlement_token = ?
        """)
        self._refund_payment = self.session.prepare(f"""
            UPDATE {ks}.payments
            SET status = ?, refund_id = ?, refund_amount = ?, refund_reason = ?,
                refunded_by = ?, refunded_at = ?, settlement_token = null, updated_at = ?
            WHERE payment_id = ?
        """)

        # Webhook events
        self._get_webhook_event = self.session.prepare(f"""
            SELECT event_id FROM {ks}.webhook_events WHERE event_id = ?
        """)
        self._record_webhook_event = self.session.prepare(f"""
            INSERT INTO {ks}.webhook_events (event_id, event_type, received_at)
            VALUES (?, ?, ?)
            IF NOT EXISTS
        """)

        # Certificates
        self._get_reservation = self.session.prepare(f"""
            SELECT * FROM {ks}.certificate_reservations WHERE enrollment_id = ?
        """)
        self._reserve_certificate = self.session.prepare(f"""
            INSERT INTO {ks}.certificate_reservations
            (enrollment_id, certificate_id, reserved_at, sealed)
            VALUES (?, ?, ?, false)
            IF NOT EXISTS
        """)
        self._take_over_reservation = self.session.prepare(f"""
            UPDATE {ks}.certificate_reservations
            SET certificate_id = ?, reserved_at = ?
            WHERE enrollment_id = ?
            IF certificate_id = ? AND sealed = false
        """)
        self._seal_reservation = self.session.prepare(f"""
            UPDATE {ks}.certificate_reservations
            SET sealed = true, certificate_payload = ?
            WHERE enrollment_id = ?
            IF certificate_id = ?
        """)
        self._reserve_certificate_number = self.session.prepare(f"""
            INSERT INTO {ks}.certificates_by_number (certificate_number, certificate_id)
            VALUES (?, ?)
            IF NOT EXISTS
        """)
        self._release_certificate_number = self.session.prepare(f"""
            DELETE FROM {ks}.certificates_by_number
            WHERE certificate_number = ?
            IF certificate_id = ?
        """)
        self._insert_certificate = self.session.prepare(f"""
            INSERT INTO {ks}.certificates
            (certificate_id, enrollment_id, student_id, program_id,
             certificate_number, verification_hash, student_name, program_title,
             completed_date, final_score, grade, completed_tasks, total_tasks,
             issued_at, is_valid)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            USING TIMESTAMP ?
        """)
        self._insert_certificate_by_hash = self.session.prepare(f"""
            INSERT INTO {ks}.certificates_by_hash (verification_hash, certificate_id)
            VALUES (?, ?)
        """)
        self._insert_certificate_by_student = self.session.prepare(f"""
            INSERT INTO {ks}.certificates_by_student
            (student_id, issued_at, certificate_id)
            VALUES (?, ?, ?)
        """)
        self._get_certificate = self.session.prepare(f"""
            SELECT * FROM {ks}.certificates WHERE certificate_id = ?
        """)
        self._get_certificate_id_by_number = self.session.prepare(f"""
            SELECT certificate_id FROM {ks}.certificates_by_number
            WHERE certificate_number = ?
        """)
        self._get_certificate_id_by_hash = self.session.prepare(f"""
            SELECT certificate_id FROM {ks}.certificates_by_hash
            WHERE verification_hash = ?
        """)
        self._list_certificate_ids_by_student = self.session.prepare(f"""
            SELECT certificate_id FROM {ks}.certificates_by_student
            WHERE student_id = ?
        """)
        self._set_document_url = self.session.prepare(f"""
            UPDATE {ks}.certificates SET document_url = ?
            WHERE certificate_id = ?
        """)
        self._revoke_certificate = self.session.prepare(f"""
            UPDATE {ks}.certificates
            SET is_valid = false, revoked_at = ?, revoked_by = ?, revocation_reason = ?
            WHERE certificate_id = ?
            IF is_valid = true
        """)

    @staticmethod
    def _logged_batch() -> BatchStatement:
        return BatchStatement(batch_type=BatchType.LOGGED)

    # ==========================================================================
    # Programs and Tasks
    # ==========================================================================

    async def save_program(self, program: Program) -> Program:
        await self.session.aexecute(
            self._insert_program,
            [
                program.program_id,
                program.title,
                program.description,
                program.price,
                program.currency,
                program.is_published,
                program.created_at,
            ],
        )
        return program

    async def get_program(self, program_id: UUID) -> Program | None:
        result = await self.session.aexecute(self._get_program, [program_id])
        row = result.one()
        return Program.from_row(row) if row else None

    async def publish_program(self, program_id: UUID) -> bool:
        """Flip a draft program to published; False if it already was."""
        result = await self.session.aexecute(self._publish_program, [program_id])
        return result.was_applied

    async def insert_task(self, task: Task) -> bool:
        """Add a task; False if its order is already taken in the program."""
        result = await self.session.aexecute(
            self._insert_task,
            [
                task.program_id,
                task.order,
                task.task_id,
                task.title,
                task.description,
                task.is_mandatory,
            ],
        )
        return result.was_applied

    async def list_tasks(self, program_id: UUID) -> list[Task]:
        """List a program's tasks in ascending order."""
        rows = await self.session.aexecute(self._list_tasks, [program_id])
        return [Task.from_row(row) for row in rows]

    # ==========================================================================
    # Enrollments
    # ==========================================================================

    async def create_enrollment(self, enrollment: Enrollment) -> bool:
        """Insert an enrollment unless the student already has one.

        Returns:
            False if the (student, program) key was already claimed.

        If the enrollment rows cannot be written the key claim is released
        again before the error propagates.
        """
        key = [enrollment.student_id, enrollment.program_id, enrollment.enrollment_id]
        claim = await self.session.aexecute(self._claim_enrollment_key, key)
        if not claim.was_applied:
            return False

        batch = self._logged_batch()
        batch.add(
            self._insert_enrollment,
            [
                enrollment.enrollment_id,
                enrollment.student_id,
                enrollment.program_id,
                enrollment.student_name,
                enrollment.student_email,
                enrollment.program_title,
                enrollment.status.value,
                enrollment.progress_percentage,
                enrollment.payment_status.value,
                enrollment.payment_amount,
                enrollment.currency,
                enrollment.certificate_issued,
                enrollment.enrolled_at,
                enrollment.updated_at,
                enrollment.version,
            ],
        )
        batch.add(
            self._insert_enrollment_by_student,
            [
                enrollment.student_id,
                enrollment.enrolled_at,
                enrollment.enrollment_id,
                enrollment.program_id,
            ],
        )
        try:
            await self.session.aexecute(batch)
        except Exception as e:
            # A timed-out logged batch is already in the batchlog and still applies
            if not (isinstance(e, WriteTimeout) and e.write_type == WriteType.BATCH):
                await self._release_enrollment_key_claim(key)
            raise
        return True

    async def _release_enrollment_key_claim(self, key: list[UUID]) -> None:
        try:
            await self.session.aexecute(self._release_enrollment_key, key)
        except Exception:
            logger.exception(
                "enrollment_key_release_failed",
                student_id=str(key[0]),
                program_id=str(key[1]),
                enrollment_id=str(key[2]),
            )

    async def get_enrollment(self, enrollment_id: UUID) -> Enrollment | None:
        result = await self.session.aexecute(self._get_enrollment, [enrollment_id])
        row = result.one()
        return Enrollment.from_row(row) if row else None

    async def list_student_enrollments(self, student_id: UUID) -> list[Enrollment]:
        rows = await self.session.aexecute(
            self._list_enrollments_by_student, [student_id]
        )
        enrollments = []
        for row in rows:
            enrollment = await self.get_enrollment(row.enrollment_id)
            if enrollment:
                enrollments.append(enrollment)
        return enrollments

    async def update_progress(
        self,
        enrollment_id: UUID,
        expected_version: int,
        progress_percentage: Decimal,
        status: EnrollmentStatus,
        completed_at: datetime | None,
    ) -> bool:
        """Compare-and-swap the enrollment's progress fields.

        Returns:
            False if another writer bumped the version first.
        """
        result = await self.session.aexecute(
            self._update_progress,
            [
                progress_percentage,
                status.value,
                completed_at,
                datetime.now(UTC),
                expected_version + 1,
                enrollment_id,
                expected_version,
            ],
        )
        return result.was_applied

    # ==========================================================================
    # Submissions
    # ==========================================================================

    async def reserve_pending_slot(
        self,
        enrollment_id: UUID,
        task_id: UUID,
        submission_id: UUID,
    ) -> PendingSlot | None:
        """Claim the single pending slot of a task.

        Returns:
            None when the slot was claimed, otherwise the current holder.
        """
        result = await self.session.aexecute(
            self._reserve_pending_slot,
            [enrollment_id, task_id, submission_id, datetime.now(UTC)],
        )
        if result.was_applied:
            return None
        return PendingSlot.from_row(result.one())

    async def replace_pending_slot(
        self,
        enrollment_id: UUID,
        task_id: UUID,
        stale_submission_id: UUID,
        submission_id: UUID,
    ) -> bool:
        """Take over a slot whose holder is no longer (or never became) pending."""
        result = await self.session.aexecute(
            self._replace_pending_slot,
            [
                submission_id,
                datetime.now(UTC),
                enrollment_id,
                task_id,
                stale_submission_id,
            ],
        )
        return result.was_applied

    async def release_pending_slot(
        self,
        enrollment_id: UUID,
        task_id: UUID,
        submission_id: UUID,
    ) -> bool:
        result = await self.session.aexecute(
            self._release_pending_slot, [enrollment_id, task_id, submission_id]
        )
        return result.was_applied

    async def insert_submission(self, submission: Submission) -> Submission:
        batch = self._logged_batch()
        batch.add(
            self._insert_submission,
            [
                submission.enrollment_id,
                submission.submission_id,
                submission.task_id,
                submission.student_id,
                submission.status.value,
                submission.content,
                submission.file_urls,
                submission.submitted_at,
            ],
        )
        batch.add(
            self._insert_submission_by_id,
            [submission.submission_id, submission.enrollment_id],
        )
        await self.session.aexecute(batch)
        return submission

    async def get_submission(self, submission_id: UUID) -> Submission | None:
        result = await self.session.aexecute(
            self._get_submission_enrollment, [submission_id]
        )
        lookup = result.one()
        if not lookup:
            return None
        result = await self.session.aexecute(
            self._get_submission, [lookup.enrollment_id, submission_id]
        )
        row = result.one()
        return Submission.from_row(row) if row else None

    async def list_submissions(self, enrollment_id: UUID) -> list[Submission]:
        """List an enrollment's submissions, oldest first."""
        rows = await self.session.aexecute(self._list_submissions, [enrollment_id])
        submissions = [Submission.from_row(row) for row in rows]
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
        """Move a submission out of PENDING.

        Returns:
            False if the submission was no longer pending.
        """
        result = await self.session.aexecute(
            self._apply_review,
            [
                outcome.value,
                grade,
                feedback,
                reviewed_at,
                reviewed_by,
                submission.enrollment_id,
                submission.submission_id,
                SubmissionStatus.PENDING.value,
            ],
        )
        return result.was_applied

    # ==========================================================================
    # Payments
    # ==========================================================================

    async def insert_payment(self, payment: Payment) -> Payment:
        batch = self._logged_batch()
        batch.add(
            self._insert_payment,
            [
                payment.payment_id,
                payment.enrollment_id,
                payment.student_id,
                payment.amount,
                payment.currency,
                payment.receipt,
                payment.external_order_id,
                payment.status.value,
                payment.created_at,
                payment.updated_at,
            ],
        )
        batch.add(
            self._insert_payment_by_order,
            [payment.external_order_id, payment.payment_id],
        )
        batch.add(
            self._insert_payment_by_enrollment,
            [payment.enrollment_id, payment.created_at, payment.payment_id],
        )
        await self.session.aexecute(batch)
        return payment

    async def get_payment(self, payment_id: UUID) -> Payment | None:
        result = await self.session.aexecute(self._get_payment, [payment_id])
        row = result.one()
        return Payment.from_row(row) if row else None

    async def get_payment_by_order(self, external_order_id: str) -> Payment | None:
        result = await self.session.aexecute(
            self._get_payment_id_by_order, [external_order_id]
        )
        row = result.one()
        return await self.get_payment(row.payment_id) if row else None

    async def get_payment_by_external_id(
        self, external_payment_id: str
    ) -> Payment | None:
        result = await self.session.aexecute(
            self._get_payment_id_by_external_id, [external_payment_id]
        )
        row = result.one()
        return await self.get_payment(row.payment_id) if row else None

    async def list_enrollment_payments(self, enrollment_id: UUID) -> list[Payment]:
        """List an enrollment's payments, newest first."""
        rows = await self.session.aexecute(
            self._list_payment_ids_by_enrollment, [enrollment_id]
        )
        payments = []
        for row in rows:
            payment = await self.get_payment(row.payment_id)
            if payment:
                payments.append(payment)
        return payments

    async def claim_settlement(
        self,
        payment_id: UUID,
        token: UUID,
        lease_seconds: int,
    ) -> bool:
        """Acquire the settlement lease on a payment that is not yet settled.

        The lease expires on its own (column TTL) so a crashed settler never
        blocks the payment for longer than ``lease_seconds``.
        """
        result = await self.session.aexecute(
            self._claim_settlement,
            [lease_seconds, token, payment_id, *SETTLEABLE_STATUSES],
        )
        return result.was_applied

    async def settle_payment(
        self,
        payment: Payment,
        external_payment_id: str,
        method: str | None,
        paid_at: datetime,
    ) -> None:
        """Complete the payment and unlock the enrollment in one logged batch."""
        batch = self._logged_batch()
        batch.add(
            self._complete_payment,
            [
                PaymentStatus.COMPLETED.value,
                external_payment_id,
                method,
                paid_at,
                paid_at,
                payment.payment_id,
            ],
        )
        batch.add(
            self._insert_payment_by_external_id,
            [external_payment_id, payment.payment_id],
        )
        batch.add(
            self._set_enrollment_payment_status,
            [PaymentStatus.COMPLETED.value, paid_at, payment.enrollment_id],
        )
        await self.session.aexecute(batch)

    async def mark_payment_failed(
        self,
        payment_id: UUID,
        reason: str,
        external_payment_id: str | None = None,
    ) -> bool:
        """Record a failure unless the payment already settled or was refunded."""
        result = await self.session.aexecute(
            self._fail_payment,
            [
                PaymentStatus.FAILED.value,
                reason,
                external_payment_id,
                datetime.now(UTC),
                payment_id,
                *SETTLEABLE_STATUSES,
            ],
        )
        return result.was_applied

    async def claim_refund(
        self,
        payment_id: UUID,
        token: UUID,
        lease_seconds: int,
    ) -> bool:
        """Acquire the payment lease for a refund of a completed, unrefunded payment."""
        result = await self.session.aexecute(
            self._claim_refund,
            [
                lease_seconds,
                token,
                payment_id,
                PaymentStatus.COMPLETED.value,
            ],
        )
        return result.was_applied

    async def release_payment_lease(self, payment_id: UUID, token: UUID) -> bool:
        result = await self.session.aexecute(
            self._release_payment_lease, [payment_id, token]
        )
        return result.was_applied

    async def apply_refund(
        self,
        payment: Payment,
        refund_id: str,
        refund_amount: Decimal,
        reason: str | None,
        refunded_by: UUID | None,
        refunded_at: datetime,
    ) -> bool:
        """Record a refund; a full refund also cancels the enrollment.

        Returns:
            True if the refund covered the whole payment.
        """
        full = refund_amount >= payment.amount
        status = PaymentStatus.REFUNDED if full else PaymentStatus.COMPLETED

        batch = self._logged_batch()
        batch.add(
            self._refund_payment,
            [
                status.value,
                refund_id,
                refund_amount,
                reason,
                refunded_by,
                refunded_at,
                refunded_at,
                payment.payment_id,
            ],
        )
        if full:
            batch.add(
                self._cancel_enrollment_refunded,
                [
                    PaymentStatus.REFUNDED.value,
                    EnrollmentStatus.CANCELLED.value,
                    refunded_at,
                    payment.enrollment_id,
                ],
            )
        await self.session.aexecute(batch)
        return full

    # ==========================================================================
    # Webhook Events
    # ==========================================================================

    async def is_webhook_event_processed(self, event_id: str) -> bool:
        result = await self.session.aexecute(self._get_webhook_event, [event_id])
        return result.one() is not None

    async def record_webhook_event(self, event_id: str, event_type: str) -> bool:
        result = await self.session.aexecute(
            self._record_webhook_event, [event_id, event_type, datetime.now(UTC)]
        )
        return result.was_applied

    # ==========================================================================
    # Certificates
    # ==========================================================================

    async def get_certificate_reservation(
        self, enrollment_id: UUID
    ) -> CertificateReservation | None:
        result = await self.session.aexecute(self._get_reservation, [enrollment_id])
        row = result.one()
        return CertificateReservation.from_row(row) if row else None

    async def reserve_certificate(
        self,
        enrollment_id: UUID,
        certificate_id: UUID,
        reserved_at: datetime,
    ) -> bool:
        """Claim the enrollment's single certificate slot."""
        result = await self.session.aexecute(
            self._reserve_certificate, [enrollment_id, certificate_id, reserved_at]
        )
        return result.was_applied

    async def take_over_certificate_reservation(
        self,
        enrollment_id: UUID,
        stale_certificate_id: UUID,
        certificate_id: UUID,
        reserved_at: datetime,
    ) -> bool:
        result = await self.session.aexecute(
            self._take_over_reservation,
            [certificate_id, reserved_at, enrollment_id, stale_certificate_id],
        )
        return result.was_applied

    async def seal_certificate_reservation(self, certificate: Certificate) -> bool:
        """Record the full certificate on the reservation if still held.

        False means another issuer took the slot over in the meantime.
        """
        result = await self.session.aexecute(
            self._seal_reservation,
            [certificate.to_payload(), certificate.enrollment_id, certificate.certificate_id],
        )
        return result.was_applied

    async def reserve_certificate_number(
        self, certificate_number: str, certificate_id: UUID
    ) -> bool:
        result = await self.session.aexecute(
            self._reserve_certificate_number, [certificate_number, certificate_id]
        )
        return result.was_applied

    async def release_certificate_number(
        self, certificate_number: str, certificate_id: UUID
    ) -> None:
        await self.session.aexecute(
            self._release_certificate_number, [certificate_number, certificate_id]
        )

    async def save_certificate(self, certificate: Certificate) -> Certificate:
        """Persist the certificate, its lookups and the enrollment flag together.

        Safe to replay: the certificate row is written at its own fixed
        timestamp, so a repeat never undoes a revocation.
        """
        snapshot = certificate.snapshot
        batch = self._logged_batch()
        batch.add(
            self._insert_certificate,
            [
                certificate.certificate_id,
                certificate.enrollment_id,
                certificate.student_id,
                certificate.program_id,
                certificate.certificate_number,
                certificate.verification_hash,
                snapshot.student_name,
                snapshot.program_title,
                snapshot.completed_date,
                snapshot.final_score,
                snapshot.grade,
                snapshot.completed_tasks,
                snapshot.total_tasks,
                certificate.issued_at,
                certificate.is_valid,
                certificate.write_timestamp,
            ],
        )
        batch.add(
            self._insert_certificate_by_hash,
            [certificate.verification_hash, certificate.certificate_id],
        )
        batch.add(
            self._insert_certificate_by_student,
            [certificate.student_id, certificate.issued_at, certificate.certificate_id],
        )
        batch.add(
            self._mark_certificate_issued,
            [certificate.certificate_id, certificate.issued_at, certificate.enrollment_id],
        )
        await self.session.aexecute(batch)
        return certificate

    async def get_certificate(self, certificate_id: UUID) -> Certificate | None:
        result = await self.session.aexecute(self._get_certificate, [certificate_id])
        row = result.one()
        return Certificate.from_row(row) if row else None

    async def get_certificate_by_number(
        self, certificate_number: str
    ) -> Certificate | None:
        result = await self.session.aexecute(
            self._get_certificate_id_by_number, [certificate_number]
        )
        row = result.one()
        return await self.get_certificate(row.certificate_id) if row else None

    async def get_certificate_by_hash(
        self, verification_hash: str
    ) -> Certificate | None:
        result = await self.session.aexecute(
            self._get_certificate_id_by_hash, [verification_hash]
        )
        row = result.one()
        return await self.get_certificate(row.certificate_id) if row else None

    async def list_student_certificates(self, student_id: UUID) -> list[Certificate]:
        rows = await self.session.aexecute(
            self._list_certificate_ids_by_student, [student_id]
        )
        certificates = []
        for row in rows:
            certificate = await self.get_certificate(row.certificate_id)
            if certificate:
                certificates.append(certificate)
        return certificates

    async def set_certificate_document_url(
        self, certificate_id: UUID, document_url: str
    ) -> None:
        await self.session.aexecute(
            self._set_document_url, [document_url, certificate_id]
        )

    async def revoke_certificate(
        self,
        certificate_id: UUID,
        reason: str,
        revoked_by: UUID,
        revoked_at: datetime,
    ) -> bool:
        """Invalidate a certificate.

        Returns:
            False if it was already revoked.
        """
        result = await self.session.aexecute(
            self._revoke_certificate,
            [revoked_at, revoked_by, reason, certificate_id],
        )
        if result.was_applied:
            logger.info("certificate_revoked", certificate_id=str(certificate_id))
        return result.was_applied
