"""Task gating and progress calculations.

Pure functions over an ordered task list and an enrollment's submission
history. Nothing here touches storage, so the same rules back the task board,
the submission guard and the progress recomputation.
"""

from collections.abc import Iterable
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from uuid import UUID

from internhub.enrollments.models import PaymentStatus, Task
from internhub.tasks.models import Submission, SubmissionStatus


HUNDRED = Decimal(100)
PERCENT_QUANTUM = Decimal("0.01")


class LockReason:
    """Machine-readable reasons a task cannot accept a submission."""

    PAYMENT_REQUIRED = "payment_required"
    TASK_LOCKED = "task_locked"
    TASK_ALREADY_COMPLETED = "task_already_completed"
    SUBMISSION_PENDING = "submission_pending"


@dataclass(frozen=True)
class TaskGate:
    """Gating state of one task for one enrollment."""

    task: Task
    is_unlocked: bool
    is_completed: bool
    has_pending: bool
    can_submit: bool
    blocked_reason: str | None = None


@dataclass(frozen=True)
class ProgressSummary:
    approved_mandatory: int
    total_mandatory: int
    percentage: Decimal

    @property
    def is_complete(self) -> bool:
        # A program without mandatory tasks never completes on its own
        return self.total_mandatory > 0 and self.approved_mandatory >= self.total_mandatory


def _statuses_by_task(
    submissions: Iterable[Submission],
) -> dict[UUID, set[SubmissionStatus]]:
    statuses: dict[UUID, set[SubmissionStatus]] = {}
    for submission in submissions:
        statuses.setdefault(submission.task_id, set()).add(submission.status)
    return statuses


def evaluate_gates(
    tasks: Iterable[Task],
    submissions: Iterable[Submission],
    payment_status: PaymentStatus,
) -> list[TaskGate]:
    """Compute unlock/completion/can-submit for every task.

    Args:
        tasks: Program tasks in any order; they are sorted by ``order``
        submissions: Full submission history of the enrollment
        payment_status: The enrollment's payment status

    Returns:
        One TaskGate per task, in task order
    """
    ordered = sorted(tasks, key=lambda t: t.order)
    statuses = _statuses_by_task(submissions)
    paid = payment_status == PaymentStatus.COMPLETED

    gates: list[TaskGate] = []
    previous_approved = False
    for index, task in enumerate(ordered):
        task_statuses = statuses.get(task.task_id, set())
        is_completed = SubmissionStatus.APPROVED in task_statuses
        has_pending = SubmissionStatus.PENDING in task_statuses
        is_unlocked = paid if index == 0 else previous_approved

        if not paid:
            reason = LockReason.PAYMENT_REQUIRED
        elif not is_unlocked:
            reason = LockReason.TASK_LOCKED
        elif is_completed:
            reason = LockReason.TASK_ALREADY_COMPLETED
        elif has_pending:
            reason = LockReason.SUBMISSION_PENDING
        else:
            reason = None

        gates.append(
            TaskGate(
                task=task,
                is_unlocked=is_unlocked,
                is_completed=is_completed,
                has_pending=has_pending,
                can_submit=reason is None,
                blocked_reason=reason,
            )
        )
        previous_approved = is_completed

    return gates


def find_gate(gates: Iterable[TaskGate], task_id: UUID) -> TaskGate | None:
    for gate in gates:
        if gate.task.task_id == task_id:
            return gate
    return None


def summarize_progress(
    tasks: Iterable[Task],
    submissions: Iterable[Submission],
) -> ProgressSummary:
    """Approved mandatory tasks over all mandatory tasks, as a 0-100 percentage."""
    mandatory = {task.task_id for task in tasks if task.is_mandatory}
    approved = {
        s.task_id
        for s in submissions
        if s.status == SubmissionStatus.APPROVED and s.task_id in mandatory
    }

    if not mandatory:
        return ProgressSummary(0, 0, Decimal(0))

    percentage = (HUNDRED * len(approved) / len(mandatory)).quantize(
        PERCENT_QUANTUM, rounding=ROUND_HALF_UP
    )
    return ProgressSummary(
        approved_mandatory=len(approved),
        total_mandatory=len(mandatory),
        percentage=min(percentage, HUNDRED),
    )


def approved_mandatory_grades(
    tasks: Iterable[Task],
    submissions: Iterable[Submission],
) -> list[Decimal | None]:
    """Grade of the latest APPROVED submission of every mandatory task."""
    mandatory = {task.task_id for task in tasks if task.is_mandatory}
    latest: dict[UUID, Submission] = {}
    for submission in submissions:
        if submission.status != SubmissionStatus.APPROVED:
            continue
        if submission.task_id not in mandatory:
            continue
        current = latest.get(submission.task_id)
        if current is None or submission.submitted_at >= current.submitted_at:
            latest[submission.task_id] = submission
    return [s.grade for s in latest.values()]
