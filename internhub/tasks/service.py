"""Submission and review workflow.

Business logic for:
- Creating submissions behind the task gate and the pending-slot guard
- Reviewing a pending submission into a terminal outcome
- Recomputing enrollment progress with an optimistic compare-and-swap loop

Review side effects (notifications, email) are scheduled only after every
write of the review has committed.
"""

from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from decimal import Decimal, InvalidOperation
from typing import TYPE_CHECKING
from uuid import UUID, uuid4

from internhub.core.exceptions import ConflictError, NotFoundError, ValidationError
from internhub.core.logging import get_logger
from internhub.enrollments.models import Enrollment, EnrollmentStatus
from internhub.enrollments.service import ensure_owner, load_enrollment
from internhub.notifications.models import NotificationEvent

from .gating import LockReason, ProgressSummary, evaluate_gates, find_gate, summarize_progress
from .models import Submission, SubmissionStatus


if TYPE_CHECKING:
    from internhub.config.settings import Settings
    from internhub.enrollments.store import EnrollmentStore
    from internhub.notifications.service import NotificationDispatcher


logger = get_logger(__name__)

MAX_GRADE = Decimal(10)

# Review committed but the enrollment progress was not updated; recompute later
PROGRESS_UPDATE_PENDING = "progress_update_pending"

LOCK_MESSAGES = {
    LockReason.PAYMENT_REQUIRED: "Payment must be completed before submitting",
    LockReason.TASK_LOCKED: "Previous task must be approved first",
    LockReason.TASK_ALREADY_COMPLETED: "Task already approved",
    LockReason.SUBMISSION_PENDING: "A submission for this task is awaiting review",
}


@dataclass
class ProgressUpdate:
    enrollment: Enrollment
    summary: ProgressSummary
    newly_completed: bool = False
    changed: bool = False


@dataclass
class ReviewResult:
    submission: Submission
    progress: ProgressUpdate | None = None
    warnings: list[str] = field(default_factory=list)


def parse_grade(grade: Decimal | float | str | None) -> Decimal | None:
    """Validate a 0-10 grade.

    Raises:
        ValidationError: If the grade is not a number in range
    """
    if grade is None:
        return None
    try:
        value = Decimal(str(grade))
    except InvalidOperation as e:
        raise ValidationError("Grade must be a number", "invalid_grade") from e
    if not value.is_finite() or value < 0 or value > MAX_GRADE:
        raise ValidationError("Grade must be between 0 and 10", "invalid_grade")
    return value


def parse_outcome(outcome: SubmissionStatus | str) -> SubmissionStatus:
    try:
        status = SubmissionStatus(outcome)
    except ValueError as e:
        raise ValidationError(f"Unknown review outcome: {outcome}", "invalid_outcome") from e
    if not status.is_terminal:
        raise ValidationError(
            "Review outcome must be approved, rejected or needs_revision",
            "invalid_outcome",
        )
    return status


class SubmissionReviewWorkflow:
    """State machine for submissions: PENDING to a terminal review outcome."""

    def __init__(
        self,
        store: "EnrollmentStore",
        dispatcher: "NotificationDispatcher",
        settings: "Settings",
    ):
        self.store = store
        self.dispatcher = dispatcher
        self.max_attempts = settings.progress_update_max_attempts
        self.slot_lease = timedelta(seconds=settings.submission_slot_lease_seconds)

    # ==========================================================================
    # Submission
    # ==========================================================================

    async def submit(
        self,
        enrollment_id: UUID,
        task_id: UUID,
        student_id: UUID,
        content: str | None = None,
        file_urls: list[str] | None = None,
    ) -> Submission:
        """Create a PENDING submission for a task.

        Args:
            enrollment_id: Enrollment submitting
            task_id: Task being submitted
            student_id: Authenticated student, must own the enrollment
            content: Text answer or link
            file_urls: Uploaded artifacts

        Returns:
            The new submission

        Raises:
            NotFoundError: Unknown enrollment or task
            UnauthorizedError: Requester does not own the enrollment
            ValidationError: Nothing was submitted
            ConflictError: Task cannot accept a submission right now; the code
                names the reason (payment_required, task_locked,
                task_already_completed, submission_pending)
        """
        if not (content and content.strip()) and not file_urls:
            raise ValidationError("Submission needs content or files", "empty_submission")

        enrollment = await load_enrollment(self.store, enrollment_id)
        ensure_owner(enrollment, student_id)
        if enrollment.is_cancelled:
            raise ConflictError("Enrollment is cancelled", "enrollment_cancelled")

        tasks = await self.store.list_tasks(enrollment.program_id)
        submissions = await self.store.list_submissions(enrollment_id)
        gate = find_gate(evaluate_gates(tasks, submissions, enrollment.payment_status), task_id)
        if gate is None:
            raise NotFoundError("Task not found in this program", "task_not_found")
        if not gate.can_submit:
            raise ConflictError(LOCK_MESSAGES[gate.blocked_reason], gate.blocked_reason)

        submission = Submission(
            submission_id=uuid4(),
            enrollment_id=enrollment_id,
            task_id=task_id,
            student_id=student_id,
            content=content,
            file_urls=file_urls,
        )
        await self._claim_pending_slot(submission)

        try:
            await self.store.insert_submission(submission)
        except Exception:
            await self.store.release_pending_slot(
                enrollment_id, task_id, submission.submission_id
            )
            raise

        logger.info(
            "submission_created",
            submission_id=str(submission.submission_id),
            enrollment_id=str(enrollment_id),
            task_id=str(task_id),
            task_order=gate.task.order,
        )
        return submission

    async def list_submissions(
        self,
        enrollment_id: UUID,
        requester_id: UUID,
        *,
        allow_staff: bool = False,
    ) -> list[Submission]:
        enrollment = await load_enrollment(self.store, enrollment_id)
        ensure_owner(enrollment, requester_id, allow_staff=allow_staff)
        return await self.store.list_submissions(enrollment_id)

    async def _claim_pending_slot(self, submission: Submission) -> None:
        """Win the task's pending slot or raise ConflictError.

        A slot whose holder was reviewed, or that never got its submission
        written within the lease window, is taken over.
        """
        holder = await self.store.reserve_pending_slot(
            submission.enrollment_id, submission.task_id, submission.submission_id
        )
        if holder is None:
            return

        existing = await self.store.get_submission(holder.submission_id)
        if existing is not None and existing.is_pending:
            raise ConflictError(
                LOCK_MESSAGES[LockReason.SUBMISSION_PENDING], LockReason.SUBMISSION_PENDING
            )
        if existing is None and datetime.now(UTC) - holder.reserved_at < self.slot_lease:
            # Holder may still be writing its submission
            raise ConflictError(
                LOCK_MESSAGES[LockReason.SUBMISSION_PENDING],
                LockReason.SUBMISSION_PENDING,
                retryable=True,
            )

        replaced = await self.store.replace_pending_slot(
            submission.enrollment_id,
            submission.task_id,
            holder.submission_id,
            submission.submission_id,
        )
        if not replaced:
            raise ConflictError(
                LOCK_MESSAGES[LockReason.SUBMISSION_PENDING],
                LockReason.SUBMISSION_PENDING,
                retryable=True,
            )
        logger.info(
            "pending_slot_reclaimed",
            enrollment_id=str(submission.enrollment_id),
            task_id=str(submission.task_id),
            stale_submission_id=str(holder.submission_id),
        )

    # ==========================================================================
    # Review
    # ==========================================================================

    async def review(
        self,
        submission_id: UUID,
        outcome: SubmissionStatus | str,
        reviewer_id: UUID,
        feedback: str | None = None,
        grade: Decimal | float | str | None = None,
    ) -> ReviewResult:
        """Move a PENDING submission to a terminal outcome.

        On approval the enrollment's progress is recomputed from the full
        submission history and the enrollment completes once every mandatory
        task is approved.

        Raises:
            ValidationError: Outcome is not terminal or grade out of range
            NotFoundError: Submission does not exist
            ConflictError: Submission is no longer pending
        """
        status = parse_outcome(outcome)
        parsed_grade = parse_grade(grade)

        submission = await self.store.get_submission(submission_id)
        if submission is None:
            raise NotFoundError("Submission not found", "submission_not_found")
        if not submission.is_pending:
            raise ConflictError(
                f"Submission already {submission.status.value}", "submission_not_pending"
            )

        reviewed_at = datetime.now(UTC)
        applied = await self.store.apply_review(
            submission, status, parsed_grade, feedback, reviewer_id, reviewed_at
        )
        if not applied:
            raise ConflictError(
                "Submission was reviewed concurrently", "submission_not_pending"
            )

        submission.status = status
        submission.grade = parsed_grade
        submission.feedback = feedback
        submission.reviewed_at = reviewed_at
        submission.reviewed_by = reviewer_id

        logger.info(
            "submission_reviewed",
            submission_id=str(submission_id),
            enrollment_id=str(submission.enrollment_id),
            outcome=status.value,
            reviewer_id=str(reviewer_id),
        )

        # The review is committed; nothing below may turn it into an error
        result = ReviewResult(submission=submission)
        try:
            await self.store.release_pending_slot(
                submission.enrollment_id, submission.task_id, submission.submission_id
            )
        except Exception:
            # An unreleased slot is reclaimed once its lease runs out
            logger.exception(
                "pending_slot_release_failed", submission_id=str(submission_id)
            )

        if status == SubmissionStatus.APPROVED:
            try:
                result.progress = await self.recompute_progress(
                    submission.enrollment_id
                )
            except Exception:
                logger.warning(
                    "progress_update_deferred",
                    submission_id=str(submission_id),
                    enrollment_id=str(submission.enrollment_id),
                    exc_info=True,
                )
                result.warnings.append(PROGRESS_UPDATE_PENDING)

        try:
            if result.progress is not None:
                enrollment = result.progress.enrollment
            else:
                enrollment = await load_enrollment(self.store, submission.enrollment_id)
            await self._notify_review(enrollment, submission, result.progress)
        except Exception:
            logger.exception(
                "review_notification_failed", submission_id=str(submission_id)
            )
        return result

    async def _notify_review(
        self,
        enrollment: Enrollment,
        submission: Submission,
        progress: ProgressUpdate | None,
    ) -> None:
        tasks = await self.store.list_tasks(enrollment.program_id)
        task_title = next(
            (t.title for t in tasks if t.task_id == submission.task_id), "your task"
        )
        self.dispatcher.notify(
            enrollment.student_id,
            NotificationEvent.SUBMISSION_REVIEWED,
            {
                "enrollment_id": str(enrollment.enrollment_id),
                "submission_id": str(submission.submission_id),
                "task_id": str(submission.task_id),
                "task_title": task_title,
                "outcome": submission.status.value,
                "grade": str(submission.grade) if submission.grade is not None else None,
                "feedback": submission.feedback,
            },
            email=enrollment.student_email,
            name=enrollment.student_name,
        )
        if progress and progress.newly_completed:
            self.dispatcher.notify(
                enrollment.student_id,
                NotificationEvent.ENROLLMENT_COMPLETED,
                {
                    "enrollment_id": str(enrollment.enrollment_id),
                    "program_title": enrollment.program_title,
                },
                email=enrollment.student_email,
                name=enrollment.student_name,
            )

    # ==========================================================================
    # Progress
    # ==========================================================================

    async def recompute_progress(self, enrollment_id: UUID) -> ProgressUpdate:
        """Recompute progress from the submission history and CAS it in.

        Each attempt re-reads the enrollment and all submissions, so a
        concurrent approval is never lost: whichever writer loses the version
        race retries against the newer state. Idempotent, so it also repairs an
        approval interrupted before its progress write.

        Raises:
            NotFoundError: Enrollment does not exist
            ConflictError: Still contended after the configured attempts
        """
        for attempt in range(1, self.max_attempts + 1):
            enrollment = await load_enrollment(self.store, enrollment_id)
            tasks = await self.store.list_tasks(enrollment.program_id)
            submissions = await self.store.list_submissions(enrollment_id)
            summary = summarize_progress(tasks, submissions)

            status = enrollment.status
            completed_at = enrollment.completed_at
            newly_completed = False
            if summary.is_complete and status == EnrollmentStatus.ACTIVE:
                status = EnrollmentStatus.COMPLETED
                completed_at = datetime.now(UTC)
                newly_completed = True

            if (
                summary.percentage == enrollment.progress_percentage
                and status == enrollment.status
            ):
                return ProgressUpdate(enrollment, summary)

            applied = await self.store.update_progress(
                enrollment_id,
                enrollment.version,
                summary.percentage,
                status,
                completed_at,
            )
            if applied:
                enrollment.progress_percentage = summary.percentage
                enrollment.status = status
                enrollment.completed_at = completed_at
                enrollment.version += 1
                logger.info(
                    "progress_updated",
                    enrollment_id=str(enrollment_id),
                    progress_percentage=str(summary.percentage),
                    status=status.value,
                    attempt=attempt,
                )
                return ProgressUpdate(enrollment, summary, newly_completed, changed=True)

            logger.info(
                "progress_update_conflict",
                enrollment_id=str(enrollment_id),
                attempt=attempt,
            )

        raise ConflictError(
            "Enrollment progress is being updated concurrently",
            "progress_update_conflict",
            retryable=True,
        )
