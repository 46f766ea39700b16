"""Certificate issuance service.

Business logic for:
- Idempotent issuance: one certificate per enrollment, ever
- Public verification by certificate number or verification hash
- Revocation and owner/admin reads

Uniqueness per enrollment rests on the ``certificate_reservations`` row
(``IF NOT EXISTS``): whoever wins the reservation builds the certificate and
every other caller gets the reserved one back. Document rendering and
notifications run after the certificate is committed and never fail the
request.
"""

from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from decimal import Decimal
from typing import TYPE_CHECKING
from uuid import UUID, uuid4

from internhub.core.exceptions import (
    ConflictError,
    NotFoundError,
    UnauthorizedError,
    ValidationError,
)
from internhub.core.logging import get_logger
from internhub.enrollments.models import Enrollment, PaymentStatus
from internhub.enrollments.service import ensure_owner, load_enrollment
from internhub.notifications.models import NotificationEvent
from internhub.tasks.gating import approved_mandatory_grades, summarize_progress

from .models import Certificate, CertificateReservation
from .renderer import build_verify_url
from .snapshot import (
    CertificateSnapshot,
    calculate_final_score,
    calculate_letter_grade,
    compute_verification_hash,
    generate_certificate_number,
    is_verification_hash,
)


if TYPE_CHECKING:
    from internhub.config.settings import Settings
    from internhub.enrollments.store import EnrollmentStore
    from internhub.notifications.service import NotificationDispatcher

    from .renderer import CertificateRenderer


logger = get_logger(__name__)

DOCUMENT_UNAVAILABLE = "certificate_document_unavailable"


@dataclass
class CertificateIssueResult:
    certificate: Certificate
    created: bool
    warnings: list[str] = field(default_factory=list)


@dataclass
class VerificationResult:
    is_valid: bool
    certificate: Certificate | None = None


class CertificateIssuanceService:
    """Issues, verifies and revokes completion certificates."""

    def __init__(
        self,
        store: "EnrollmentStore",
        dispatcher: "NotificationDispatcher",
        settings: "Settings",
        renderer: "CertificateRenderer | None" = None,
    ):
        self.store = store
        self.dispatcher = dispatcher
        self.renderer = renderer
        self.completion_threshold = settings.certificate_completion_threshold
        self.default_grade = settings.certificate_default_grade
        self.number_attempts = settings.certificate_number_max_attempts
        self.reservation_lease = timedelta(
            seconds=settings.certificate_reservation_lease_seconds
        )
        self.verify_base_url = settings.certificate_verify_base_url

    # ==========================================================================
    # Issuance
    # ==========================================================================

    async def issue(self, enrollment_id: UUID, student_id: UUID) -> CertificateIssueResult:
        """Issue the enrollment's certificate, or return the one already issued.

        Args:
            enrollment_id: Completed enrollment
            student_id: Authenticated student, must own the enrollment

        Returns:
            The certificate plus whether this call created it. ``warnings``
            lists post-commit steps that failed and can be retried by calling
            again.

        Raises:
            NotFoundError: Enrollment does not exist
            UnauthorizedError: Requester does not own the enrollment
            ConflictError: An eligibility condition is unmet (the code names
                it), or a concurrent issuance has not finished (retryable)
        """
        enrollment = await load_enrollment(self.store, enrollment_id)
        ensure_owner(enrollment, student_id)

        reservation = await self.store.get_certificate_reservation(enrollment_id)
        if reservation is not None:
            finished = await self._finished_certificate(reservation)
            if finished is not None:
                return await self._existing_result(finished)

        snapshot_inputs = await self._check_eligibility(enrollment)

        now = datetime.now(UTC)
        certificate_id = uuid4()
        won = await self._reserve(enrollment_id, certificate_id, reservation, now)
        if isinstance(won, Certificate):
            return await self._existing_result(won)

        snapshot = self._build_snapshot(enrollment, certificate_id, now, *snapshot_inputs)
        certificate = Certificate(
            certificate_id=certificate_id,
            enrollment_id=enrollment_id,
            student_id=enrollment.student_id,
            program_id=enrollment.program_id,
            certificate_number=await self._claim_number(certificate_id),
            verification_hash=compute_verification_hash(snapshot),
            snapshot=snapshot,
            issued_at=now,
        )
        if not await self.store.seal_certificate_reservation(certificate):
            return await self._lost_reservation(certificate)
        await self.store.save_certificate(certificate)

        logger.info(
            "certificate_issued",
            certificate_id=str(certificate_id),
            certificate_number=certificate.certificate_number,
            enrollment_id=str(enrollment_id),
            final_score=snapshot.final_score,
            grade=snapshot.grade,
        )

        warnings = await self._publish_document(certificate)
        verify_url = build_verify_url(self.verify_base_url, certificate.certificate_number)
        self._notify(
            enrollment,
            NotificationEvent.CERTIFICATE_ISSUED,
            {
                "certificate_id": str(certificate_id),
                "certificate_number": certificate.certificate_number,
                "verify_url": verify_url,
            },
        )
        return CertificateIssueResult(certificate, created=True, warnings=warnings)

    async def _existing_result(self, certificate: Certificate) -> CertificateIssueResult:
        warnings: list[str] = []
        if certificate.document_url is None and certificate.is_valid:
            warnings = await self._publish_document(certificate)
        return CertificateIssueResult(certificate, created=False, warnings=warnings)

    async def _check_eligibility(
        self, enrollment: Enrollment
    ) -> tuple[int, int, list[Decimal | None]]:
        """Raise ConflictError naming the first unmet condition.

        Returns:
            (approved mandatory, total mandatory, grades) for the snapshot
        """
        if enrollment.is_cancelled:
            raise ConflictError("Enrollment is cancelled", "enrollment_cancelled")
        if enrollment.payment_status != PaymentStatus.COMPLETED:
            raise ConflictError(
                "Payment must be completed before a certificate is issued",
                "payment_incomplete",
            )

        tasks = await self.store.list_tasks(enrollment.program_id)
        submissions = await self.store.list_submissions(enrollment.enrollment_id)
        summary = summarize_progress(tasks, submissions)

        if summary.total_mandatory == 0 or (
            Decimal(summary.approved_mandatory) / Decimal(summary.total_mandatory)
            < self.completion_threshold
        ):
            required = (self.completion_threshold * 100).normalize()
            raise ConflictError(
                f"{summary.approved_mandatory} of {summary.total_mandatory} mandatory "
                f"tasks approved; {required:f}% required",
                "completion_threshold_not_met",
            )

        grades = approved_mandatory_grades(tasks, submissions)
        return summary.approved_mandatory, summary.total_mandatory, grades

    async def _reserve(
        self,
        enrollment_id: UUID,
        certificate_id: UUID,
        reservation: CertificateReservation | None,
        now: datetime,
    ) -> Certificate | None:
        """Win the enrollment's certificate slot.

        Returns:
            None when this call owns the slot, or the certificate a concurrent
            issuer already finished

        Raises:
            ConflictError: Another issuance holds a fresh reservation
        """
        if reservation is None:
            if await self.store.reserve_certificate(enrollment_id, certificate_id, now):
                return None
            reservation = await self.store.get_certificate_reservation(enrollment_id)
            if reservation is not None:
                finished = await self._finished_certificate(reservation)
                if finished is not None:
                    return finished
            raise self._in_progress()

        if now - reservation.reserved_at < self.reservation_lease:
            raise self._in_progress()

        # The previous issuer reserved but never sealed; take the slot over
        taken = await self.store.take_over_certificate_reservation(
            enrollment_id, reservation.certificate_id, certificate_id, now
        )
        if not taken:
            raise self._in_progress()
        logger.info(
            "certificate_reservation_taken_over",
            enrollment_id=str(enrollment_id),
            stale_certificate_id=str(reservation.certificate_id),
        )
        return None

    async def _finished_certificate(
        self, reservation: CertificateReservation
    ) -> Certificate | None:
        """The certificate behind a reservation, completing a sealed commit.

        A sealed reservation whose certificate row is missing belongs to an
        issuer that stopped between sealing and saving; its commit is
        replayed with the sealed data, so the certificate id never changes.
        """
        existing = await self.store.get_certificate(reservation.certificate_id)
        if existing is not None or reservation.certificate is None:
            return existing
        certificate = await self.store.save_certificate(reservation.certificate)
        logger.info(
            "certificate_commit_replayed",
            certificate_id=str(certificate.certificate_id),
            enrollment_id=str(certificate.enrollment_id),
        )
        return certificate

    async def _lost_reservation(self, certificate: Certificate) -> CertificateIssueResult:
        """Back out after another issuer took the slot over before the seal."""
        logger.warning(
            "certificate_reservation_lost",
            certificate_id=str(certificate.certificate_id),
            enrollment_id=str(certificate.enrollment_id),
        )
        await self.store.release_certificate_number(
            certificate.certificate_number, certificate.certificate_id
        )
        reservation = await self.store.get_certificate_reservation(certificate.enrollment_id)
        if reservation is not None:
            finished = await self._finished_certificate(reservation)
            if finished is not None:
                return await self._existing_result(finished)
        raise self._in_progress()

    @staticmethod
    def _in_progress() -> ConflictError:
        return ConflictError(
            "Certificate issuance already in progress",
            "certificate_issuance_in_progress",
            retryable=True,
        )

    def _build_snapshot(
        self,
        enrollment: Enrollment,
        certificate_id: UUID,
        now: datetime,
        completed_tasks: int,
        total_tasks: int,
        grades: list[Decimal | None],
    ) -> CertificateSnapshot:
        final_score = calculate_final_score(grades, self.default_grade)
        completed = enrollment.completed_at or now
        return CertificateSnapshot(
            certificate_id=str(certificate_id),
            student_name=enrollment.student_name,
            program_title=enrollment.program_title,
            completed_date=completed.date().isoformat(),
            final_score=final_score,
            grade=calculate_letter_grade(final_score),
            completed_tasks=completed_tasks,
            total_tasks=total_tasks,
        )

    async def _claim_number(self, certificate_id: UUID) -> str:
        for _ in range(self.number_attempts):
            number = generate_certificate_number()
            if await self.store.reserve_certificate_number(number, certificate_id):
                return number
            logger.warning("certificate_number_collision", certificate_number=number)
        raise ConflictError(
            "Could not allocate a unique certificate number",
            "certificate_number_unavailable",
            retryable=True,
        )

    async def _publish_document(self, certificate: Certificate) -> list[str]:
        if self.renderer is None:
            return []
        verify_url = build_verify_url(self.verify_base_url, certificate.certificate_number)
        try:
            url = await self.renderer.publish(certificate, verify_url)
            await self.store.set_certificate_document_url(certificate.certificate_id, url)
        except Exception:
            logger.exception(
                "certificate_document_failed",
                certificate_id=str(certificate.certificate_id),
            )
            return [DOCUMENT_UNAVAILABLE]
        certificate.document_url = url
        return []

    # ==========================================================================
    # Verification
    # ==========================================================================

    async def verify(self, ref: str) -> VerificationResult:
        """Public lookup by certificate number or verification hash.

        A certificate counts as valid only if it exists, is not revoked and
        its stored snapshot still hashes to its verification hash.
        """
        ref = (ref or "").strip()
        if not ref:
            return VerificationResult(is_valid=False)

        if is_verification_hash(ref):
            certificate = await self.store.get_certificate_by_hash(ref.lower())
        else:
            certificate = await self.store.get_certificate_by_number(ref.upper())

        if certificate is None or not certificate.is_valid:
            return VerificationResult(is_valid=False)

        if compute_verification_hash(certificate.snapshot) != certificate.verification_hash:
            logger.warning(
                "certificate_hash_mismatch",
                certificate_id=str(certificate.certificate_id),
            )
            return VerificationResult(is_valid=False)

        return VerificationResult(is_valid=True, certificate=certificate)

    # ==========================================================================
    # Revocation and reads
    # ==========================================================================

    async def revoke(
        self, certificate_id: UUID, reason: str, revoked_by: UUID
    ) -> Certificate:
        """Invalidate a certificate; the record stays queryable for audit.

        Raises:
            ValidationError: Empty reason
            NotFoundError: Certificate does not exist
            ConflictError: Already revoked
        """
        reason = (reason or "").strip()
        if not reason:
            raise ValidationError("A revocation reason is required", "reason_required")

        certificate = await self.store.get_certificate(certificate_id)
        if certificate is None:
            raise NotFoundError("Certificate not found", "certificate_not_found")
        if not certificate.is_valid:
            raise ConflictError("Certificate already revoked", "certificate_already_revoked")

        revoked_at = datetime.now(UTC)
        if not await self.store.revoke_certificate(
            certificate_id, reason, revoked_by, revoked_at
        ):
            raise ConflictError("Certificate already revoked", "certificate_already_revoked")

        certificate.is_valid = False
        certificate.revoked_at = revoked_at
        certificate.revoked_by = revoked_by
        certificate.revocation_reason = reason

        enrollment = await self.store.get_enrollment(certificate.enrollment_id)
        if enrollment is not None:
            self._notify(
                enrollment,
                NotificationEvent.CERTIFICATE_REVOKED,
                {
                    "certificate_id": str(certificate_id),
                    "certificate_number": certificate.certificate_number,
                    "reason": reason,
                },
            )
        return certificate

    async def get_certificate(
        self,
        certificate_id: UUID,
        requester_id: UUID,
        *,
        allow_staff: bool = False,
    ) -> Certificate:
        certificate = await self.store.get_certificate(certificate_id)
        if certificate is None:
            raise NotFoundError("Certificate not found", "certificate_not_found")
        if not allow_staff and certificate.student_id != requester_id:
            raise UnauthorizedError(
                "You do not own this certificate", "not_certificate_owner"
            )
        return certificate

    async def list_student_certificates(self, student_id: UUID) -> list[Certificate]:
        return await self.store.list_student_certificates(student_id)

    def _notify(self, enrollment: Enrollment, event: NotificationEvent, payload: dict) -> None:
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
