"""Pydantic schemas for submissions and reviews."""

from datetime import datetime
from decimal import Decimal
from uuid import UUID

from pydantic import BaseModel, Field

from internhub.enrollments.schemas import EnrollmentResponse

from .models import Submission, SubmissionStatus


class SubmitTaskRequest(BaseModel):
    content: str | None = Field(None, max_length=20000, description="Answer text or link")
    file_urls: list[str] = Field(default_factory=list, max_length=10)


class ReviewSubmissionRequest(BaseModel):
    outcome: SubmissionStatus = Field(
        ..., description="approved, rejected or needs_revision"
    )
    feedback: str | None = Field(None, max_length=5000)
    grade: Decimal | None = Field(None, ge=0, le=10, description="Grade on a 0-10 scale")


class SubmissionResponse(BaseModel):
    submission_id: UUID
    enrollment_id: UUID
    task_id: UUID
    student_id: UUID
    status: SubmissionStatus
    content: str | None = None
    file_urls: list[str] = []
    grade: Decimal | None = None
    feedback: str | None = None
    submitted_at: datetime
    reviewed_at: datetime | None = None
    reviewed_by: UUID | None = None

    @classmethod
    def from_submission(cls, submission: Submission) -> "SubmissionResponse":
        return cls(
            submission_id=submission.submission_id,
            enrollment_id=submission.enrollment_id,
            task_id=submission.task_id,
            student_id=submission.student_id,
            status=submission.status,
            content=submission.content,
            file_urls=submission.file_urls,
            grade=submission.grade,
            feedback=submission.feedback,
            submitted_at=submission.submitted_at,
            reviewed_at=submission.reviewed_at,
            reviewed_by=submission.reviewed_by,
        )


class ReviewResponse(BaseModel):
    submission: SubmissionResponse
    enrollment: EnrollmentResponse | None = Field(
        None, description="Enrollment after progress recomputation (approvals only)"
    )
    enrollment_completed: bool = False
    warnings: list[str] = Field(
        default_factory=list,
        description="Follow-ups the review left pending, e.g. progress_update_pending",
    )


class RecomputeProgressResponse(BaseModel):
    enrollment: EnrollmentResponse
    approved_mandatory: int
    total_mandatory: int
    changed: bool
