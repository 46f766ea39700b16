"""Tests for submissions, reviews and progress recomputation."""

import asyncio
from datetime import UTC, datetime, timedelta
from decimal import Decimal
from uuid import uuid4

import pytest

from internhub.core.exceptions import (
    ConflictError,
    NotFoundError,
    UnauthorizedError,
    ValidationError,
)
from internhub.enrollments.models import EnrollmentStatus
from internhub.notifications.models import NotificationEvent
from internhub.tasks.models import PendingSlot, Submission, SubmissionStatus
from internhub.tasks.service import parse_grade, parse_outcome


class TestParsing:
    def test_grade_range(self) -> None:
        assert parse_grade(None) is None
        assert parse_grade("7.5") == Decimal("7.5")
        assert parse_grade(10) == Decimal(10)

    @pytest.mark.parametrize("grade", ["-1", "10.5", "abc", "NaN"])
    def test_invalid_grade(self, grade) -> None:
        with pytest.raises(ValidationError) as exc:
            parse_grade(grade)
        assert exc.value.code == "invalid_grade"

    def test_pending_is_not_an_outcome(self) -> None:
        with pytest.raises(ValidationError):
            parse_outcome("pending")
        with pytest.raises(ValidationError):
            parse_outcome("excellent")
        assert parse_outcome("needs_revision") == SubmissionStatus.NEEDS_REVISION


class TestSubmit:
    @pytest.mark.asyncio
    async def test_unpaid_enrollment_is_rejected(
        self, workflow, unpaid_enrollment, tasks, student_id
    ) -> None:
        with pytest.raises(ConflictError) as exc:
            await workflow.submit(
                unpaid_enrollment.enrollment_id, tasks[0].task_id, student_id, content="x"
            )
        assert exc.value.code == "payment_required"

    @pytest.mark.asyncio
    async def test_second_task_locked_until_first_approved(
        self, workflow, paid_enrollment, tasks, student_id
    ) -> None:
        with pytest.raises(ConflictError) as exc:
            await workflow.submit(
                paid_enrollment.enrollment_id, tasks[1].task_id, student_id, content="x"
            )
        assert exc.value.code == "task_locked"

    @pytest.mark.asyncio
    async def test_only_owner_can_submit(self, workflow, paid_enrollment, tasks) -> None:
        with pytest.raises(UnauthorizedError):
            await workflow.submit(
                paid_enrollment.enrollment_id, tasks[0].task_id, uuid4(), content="x"
            )

    @pytest.mark.asyncio
    async def test_empty_submission(self, workflow, paid_enrollment, tasks, student_id) -> None:
        with pytest.raises(ValidationError) as exc:
            await workflow.submit(
                paid_enrollment.enrollment_id, tasks[0].task_id, student_id, content="  "
            )
        assert exc.value.code == "empty_submission"

    @pytest.mark.asyncio
    async def test_unknown_task(self, workflow, paid_enrollment, student_id) -> None:
        with pytest.raises(NotFoundError):
            await workflow.submit(
                paid_enrollment.enrollment_id, uuid4(), student_id, content="x"
            )

    @pytest.mark.asyncio
    async def test_one_pending_submission_per_task(
        self, workflow, store, paid_enrollment, tasks, student_id
    ) -> None:
        first = await workflow.submit(
            paid_enrollment.enrollment_id,
            tasks[0].task_id,
            student_id,
            file_urls=["https://files.test/report.pdf"],
        )
        assert first.status == SubmissionStatus.PENDING

        with pytest.raises(ConflictError) as exc:
            await workflow.submit(
                paid_enrollment.enrollment_id, tasks[0].task_id, student_id, content="again"
            )
        assert exc.value.code == "submission_pending"

    @pytest.mark.asyncio
    async def test_concurrent_submissions_create_one_pending(
        self, workflow, store, paid_enrollment, tasks, student_id
    ) -> None:
        results = await asyncio.gather(
            *(
                workflow.submit(
                    paid_enrollment.enrollment_id, tasks[0].task_id, student_id, content=str(i)
                )
                for i in range(5)
            ),
            return_exceptions=True,
        )

        created = [r for r in results if isinstance(r, Submission)]
        conflicts = [r for r in results if isinstance(r, ConflictError)]
        assert len(created) == 1
        assert len(conflicts) == 4
        assert all(c.code == "submission_pending" for c in conflicts)
        pending = [s for s in store.submissions.values() if s.is_pending]
        assert len(pending) == 1

    @pytest.mark.asyncio
    async def test_stale_slot_is_reclaimed(
        self, workflow, store, paid_enrollment, tasks, student_id
    ) -> None:
        key = (paid_enrollment.enrollment_id, tasks[0].task_id)
        store.pending_slots[key] = PendingSlot(
            uuid4(), datetime.now(UTC) - timedelta(hours=1)
        )

        submission = await workflow.submit(
            paid_enrollment.enrollment_id, tasks[0].task_id, student_id, content="x"
        )

        assert store.pending_slots[key].submission_id == submission.submission_id

    @pytest.mark.asyncio
    async def test_fresh_orphan_slot_is_retryable(
        self, workflow, store, paid_enrollment, tasks, student_id
    ) -> None:
        key = (paid_enrollment.enrollment_id, tasks[0].task_id)
        store.pending_slots[key] = PendingSlot(uuid4(), datetime.now(UTC))

        with pytest.raises(ConflictError) as exc:
            await workflow.submit(
                paid_enrollment.enrollment_id, tasks[0].task_id, student_id, content="x"
            )
        assert exc.value.retryable is True


class TestReview:
    @pytest.mark.asyncio
    async def test_two_task_program_completes(
        self, workflow, store, dispatcher, paid_enrollment, tasks, student_id, reviewer_id
    ) -> None:
        enrollment_id = paid_enrollment.enrollment_id

        first = await workflow.submit(enrollment_id, tasks[0].task_id, student_id, content="a")
        result = await workflow.review(
            first.submission_id, "approved", reviewer_id, feedback="Good", grade=9
        )
        assert result.progress.enrollment.progress_percentage == Decimal("50.00")
        assert result.progress.enrollment.status == EnrollmentStatus.ACTIVE

        second = await workflow.submit(enrollment_id, tasks[1].task_id, student_id, content="b")
        result = await workflow.review(second.submission_id, "approved", reviewer_id)

        stored = store.enrollments[enrollment_id]
        assert stored.progress_percentage == Decimal(100)
        assert stored.status == EnrollmentStatus.COMPLETED
        assert stored.completed_at is not None
        assert result.progress.newly_completed is True
        assert dispatcher.events().count(NotificationEvent.ENROLLMENT_COMPLETED) == 1
        assert dispatcher.events().count(NotificationEvent.SUBMISSION_REVIEWED) == 2

    @pytest.mark.asyncio
    async def test_rejection_keeps_progress_and_allows_resubmission(
        self, workflow, store, paid_enrollment, tasks, student_id, reviewer_id
    ) -> None:
        enrollment_id = paid_enrollment.enrollment_id
        submission = await workflow.submit(enrollment_id, tasks[0].task_id, student_id, content="a")

        result = await workflow.review(
            submission.submission_id, SubmissionStatus.REJECTED, reviewer_id, feedback="Redo"
        )

        assert result.progress is None
        assert store.enrollments[enrollment_id].progress_percentage == Decimal(0)
        assert store.pending_slots == {}
        again = await workflow.submit(enrollment_id, tasks[0].task_id, student_id, content="b")
        assert again.is_pending

    @pytest.mark.asyncio
    async def test_review_twice_conflicts(
        self, workflow, paid_enrollment, tasks, student_id, reviewer_id
    ) -> None:
        submission = await workflow.submit(
            paid_enrollment.enrollment_id, tasks[0].task_id, student_id, content="a"
        )
        await workflow.review(submission.submission_id, "approved", reviewer_id)

        with pytest.raises(ConflictError) as exc:
            await workflow.review(submission.submission_id, "rejected", reviewer_id)
        assert exc.value.code == "submission_not_pending"

    @pytest.mark.asyncio
    async def test_concurrent_reviews_apply_once(
        self, workflow, store, paid_enrollment, tasks, student_id, reviewer_id
    ) -> None:
        submission = await workflow.submit(
            paid_enrollment.enrollment_id, tasks[0].task_id, student_id, content="a"
        )

        results = await asyncio.gather(
            workflow.review(submission.submission_id, "approved", reviewer_id),
            workflow.review(submission.submission_id, "rejected", reviewer_id),
            return_exceptions=True,
        )

        assert sum(isinstance(r, ConflictError) for r in results) == 1
        assert store.submissions[submission.submission_id].status.is_terminal

    @pytest.mark.asyncio
    async def test_unknown_submission(self, workflow, reviewer_id) -> None:
        with pytest.raises(NotFoundError):
            await workflow.review(uuid4(), "approved", reviewer_id)

    @pytest.mark.asyncio
    async def test_approval_survives_progress_conflict(
        self, workflow, store, dispatcher, paid_enrollment, tasks, student_id, reviewer_id
    ) -> None:
        submission = await workflow.submit(
            paid_enrollment.enrollment_id, tasks[0].task_id, student_id, content="a"
        )

        async def always_stale(*args, **kwargs) -> bool:
            return False

        store.update_progress = always_stale

        result = await workflow.review(submission.submission_id, "approved", reviewer_id)

        assert result.submission.status == SubmissionStatus.APPROVED
        assert result.progress is None
        assert result.warnings == ["progress_update_pending"]
        assert store.submissions[submission.submission_id].status == SubmissionStatus.APPROVED
        assert store.pending_slots == {}
        assert dispatcher.events() == [NotificationEvent.SUBMISSION_REVIEWED]

        del store.update_progress
        update = await workflow.recompute_progress(paid_enrollment.enrollment_id)
        assert update.changed is True
        assert update.enrollment.progress_percentage == Decimal("50.00")

    @pytest.mark.asyncio
    async def test_notification_failure_does_not_fail_review(
        self, workflow, store, paid_enrollment, tasks, student_id, reviewer_id
    ) -> None:
        submission = await workflow.submit(
            paid_enrollment.enrollment_id, tasks[0].task_id, student_id, content="a"
        )

        async def broken_list_tasks(*args, **kwargs):
            raise RuntimeError("read timeout")

        store.list_tasks = broken_list_tasks

        result = await workflow.review(submission.submission_id, "rejected", reviewer_id)

        assert result.submission.status == SubmissionStatus.REJECTED
        assert result.warnings == []
        assert store.submissions[submission.submission_id].status == SubmissionStatus.REJECTED


class TestRecomputeProgress:
    @pytest.mark.asyncio
    async def test_concurrent_approvals_lose_no_update(
        self, workflow, store, paid_enrollment, tasks, student_id, reviewer_id
    ) -> None:
        # Both tasks pending at once, written straight to the store
        pending = []
        for task in tasks:
            submission = Submission(
                submission_id=uuid4(),
                enrollment_id=paid_enrollment.enrollment_id,
                task_id=task.task_id,
                student_id=student_id,
                content="done",
            )
            await store.insert_submission(submission)
            pending.append(submission)

        await asyncio.gather(
            *(workflow.review(s.submission_id, "approved", reviewer_id) for s in pending)
        )

        stored = store.enrollments[paid_enrollment.enrollment_id]
        assert stored.progress_percentage == Decimal(100)
        assert stored.status == EnrollmentStatus.COMPLETED

    @pytest.mark.asyncio
    async def test_recompute_is_idempotent(
        self, workflow, store, paid_enrollment, complete_all_tasks
    ) -> None:
        await complete_all_tasks(paid_enrollment)
        writes = store.progress_writes

        update = await workflow.recompute_progress(paid_enrollment.enrollment_id)

        assert update.changed is False
        assert update.newly_completed is False
        assert store.progress_writes == writes

    @pytest.mark.asyncio
    async def test_recompute_repairs_missed_update(
        self, workflow, store, paid_enrollment, tasks, student_id
    ) -> None:
        await store.insert_submission(
            Submission(
                submission_id=uuid4(),
                enrollment_id=paid_enrollment.enrollment_id,
                task_id=tasks[0].task_id,
                student_id=student_id,
                status=SubmissionStatus.APPROVED,
            )
        )

        update = await workflow.recompute_progress(paid_enrollment.enrollment_id)

        assert update.changed is True
        assert store.enrollments[paid_enrollment.enrollment_id].progress_percentage == Decimal(
            "50.00"
        )

    @pytest.mark.asyncio
    async def test_gives_up_after_max_attempts(
        self, workflow, store, paid_enrollment, tasks, student_id
    ) -> None:
        await store.insert_submission(
            Submission(
                submission_id=uuid4(),
                enrollment_id=paid_enrollment.enrollment_id,
                task_id=tasks[0].task_id,
                student_id=student_id,
                status=SubmissionStatus.APPROVED,
            )
        )

        async def always_stale(*args, **kwargs) -> bool:
            return False

        store.update_progress = always_stale

        with pytest.raises(ConflictError) as exc:
            await workflow.recompute_progress(paid_enrollment.enrollment_id)
        assert exc.value.code == "progress_update_conflict"
        assert exc.value.retryable is True
