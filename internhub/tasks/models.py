"""Database models for task submissions.

Cassandra table definitions for:
- Submissions: partitioned by enrollment so a task board is one read
- Submission lookup by id: maps a submission to its enrollment
- Pending submission slots: at most one PENDING submission per task
"""

from datetime import UTC, datetime
from decimal import Decimal
from enum import Enum
from typing import Any
from uuid import UUID

from internhub.enrollments.models import ensure_utc_aware


class SubmissionStatus(str, Enum):
    """Submission review status.

    PENDING is the only non-terminal state. A rejected or revision-requested
    task needs a new submission.
    """

    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    NEEDS_REVISION = "needs_revision"

    @property
    def is_terminal(self) -> bool:
        return self is not SubmissionStatus.PENDING


# ==============================================================================
# CQL Table Definitions
# ==============================================================================

SUBMISSIONS_TABLE_CQL = """
CREATE TABLE IF NOT EXISTS {keyspace}.submissions (
    enrollment_id UUID,
    submission_id UUID,
    task_id UUID,
    student_id UUID,
    status TEXT,
    content TEXT,
    file_urls LIST<TEXT>,
    grade DECIMAL,
    feedback TEXT,
    submitted_at TIMESTAMP,
    reviewed_at TIMESTAMP,
    reviewed_by UUID,
    PRIMARY KEY (enrollment_id, submission_id)
)
"""

SUBMISSIONS_BY_ID_TABLE_CQL = """
CREATE TABLE IF NOT EXISTS {keyspace}.submissions_by_id (
    submission_id UUID PRIMARY KEY,
    enrollment_id UUID
)
"""

# Slot claimed with IF NOT EXISTS when a submission is created, released
# once the submission receives a terminal review
PENDING_SUBMISSIONS_TABLE_CQL = """
CREATE TABLE IF NOT EXISTS {keyspace}.pending_submissions (
    enrollment_id UUID,
    task_id UUID,
    submission_id UUID,
    reserved_at TIMESTAMP,
    PRIMARY KEY (enrollment_id, task_id)
)
"""

SUBMISSIONS_TABLES_CQL = [
    SUBMISSIONS_TABLE_CQL,
    SUBMISSIONS_BY_ID_TABLE_CQL,
    PENDING_SUBMISSIONS_TABLE_CQL,
]


# ==============================================================================
# Entity Classes
# ==============================================================================


class Submission:
    """A student's attempt at a task."""

    def __init__(
        self,
        submission_id: UUID,
        enrollment_id: UUID,
        task_id: UUID,
        student_id: UUID,
        status: SubmissionStatus = SubmissionStatus.PENDING,
        content: str | None = None,
        file_urls: list[str] | None = None,
        grade: Decimal | None = None,
        feedback: str | None = None,
        submitted_at: datetime | None = None,
        reviewed_at: datetime | None = None,
        reviewed_by: UUID | None = None,
    ):
        self.submission_id = submission_id
        self.enrollment_id = enrollment_id
        self.task_id = task_id
        self.student_id = student_id
        self.status = SubmissionStatus(status)
        self.content = content
        self.file_urls = list(file_urls or [])
        self.grade = grade
        self.feedback = feedback
        self.submitted_at = ensure_utc_aware(submitted_at) or datetime.now(UTC)
        self.reviewed_at = ensure_utc_aware(reviewed_at)
        self.reviewed_by = reviewed_by

    @property
    def is_pending(self) -> bool:
        return self.status == SubmissionStatus.PENDING

    @property
    def is_approved(self) -> bool:
        return self.status == SubmissionStatus.APPROVED

    @classmethod
    def from_row(cls, row: Any) -> "Submission":
        """Create Submission instance from Cassandra row."""
        return cls(
            submission_id=row.submission_id,
            enrollment_id=row.enrollment_id,
            task_id=row.task_id,
            student_id=row.student_id,
            status=SubmissionStatus(row.status or SubmissionStatus.PENDING.value),
            content=row.content,
            file_urls=row.file_urls,
            grade=row.grade,
            feedback=row.feedback,
            submitted_at=row.submitted_at,
            reviewed_at=row.reviewed_at,
            reviewed_by=row.reviewed_by,
        )

    def __repr__(self) -> str:
        return (
            f"<Submission {self.submission_id} task={self.task_id} "
            f"{self.status.value}>"
        )


class PendingSlot:
    """Holder of a task's single pending-submission slot."""

    def __init__(self, submission_id: UUID, reserved_at: datetime | None = None):
        self.submission_id = submission_id
        self.reserved_at = ensure_utc_aware(reserved_at) or datetime.now(UTC)

    @classmethod
    def from_row(cls, row: Any) -> "PendingSlot":
        return cls(submission_id=row.submission_id, reserved_at=row.reserved_at)
