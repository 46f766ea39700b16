"""Pydantic schemas for programs, enrollments and the task board."""

from datetime import datetime
from decimal import Decimal
from uuid import UUID

from pydantic import BaseModel, Field

from internhub.tasks.gating import ProgressSummary, TaskGate

from .models import Enrollment, EnrollmentStatus, PaymentStatus, Program, Task


# ==============================================================================
# Request Schemas
# ==============================================================================


class EnrollRequest(BaseModel):
    program_id: UUID


class CreateProgramRequest(BaseModel):
    title: str = Field(..., min_length=1, max_length=200)
    price: Decimal = Field(..., ge=0)
    currency: str = Field(default="INR", min_length=3, max_length=3)
    description: str | None = Field(None, max_length=5000)


class CreateTaskRequest(BaseModel):
    order: int = Field(..., ge=1, description="1-based position in the program")
    title: str = Field(..., min_length=1, max_length=200)
    description: str | None = Field(None, max_length=5000)
    is_mandatory: bool = True


# ==============================================================================
# Response Schemas
# ==============================================================================


class TaskResponse(BaseModel):
    task_id: UUID
    order: int
    title: str
    description: str | None = None
    is_mandatory: bool

    @classmethod
    def from_task(cls, task: Task) -> "TaskResponse":
        return cls(
            task_id=task.task_id,
            order=task.order,
            title=task.title,
            description=task.description,
            is_mandatory=task.is_mandatory,
        )


class ProgramResponse(BaseModel):
    program_id: UUID
    title: str
    description: str | None = None
    price: Decimal
    currency: str
    is_published: bool
    created_at: datetime
    tasks: list[TaskResponse] = []

    @classmethod
    def from_program(
        cls, program: Program, tasks: list[Task] | None = None
    ) -> "ProgramResponse":
        return cls(
            program_id=program.program_id,
            title=program.title,
            description=program.description,
            price=program.price,
            currency=program.currency,
            is_published=program.is_published,
            created_at=program.created_at,
            tasks=[TaskResponse.from_task(t) for t in tasks or []],
        )


class EnrollmentResponse(BaseModel):
    enrollment_id: UUID
    student_id: UUID
    program_id: UUID
    program_title: str
    status: EnrollmentStatus
    progress_percentage: Decimal = Field(..., ge=0, le=100)
    payment_status: PaymentStatus
    payment_amount: Decimal
    currency: str
    certificate_issued: bool
    certificate_id: UUID | None = None
    enrolled_at: datetime
    completed_at: datetime | None = None

    @classmethod
    def from_enrollment(cls, enrollment: Enrollment) -> "EnrollmentResponse":
        return cls(**enrollment.to_dict())


class EnrollmentListResponse(BaseModel):
    items: list[EnrollmentResponse]
    total: int


class TaskStatusResponse(BaseModel):
    """Gating state of one task."""

    task_id: UUID
    order: int
    title: str
    is_mandatory: bool
    is_unlocked: bool
    is_completed: bool
    has_pending_submission: bool
    can_submit: bool
    blocked_reason: str | None = None

    @classmethod
    def from_gate(cls, gate: TaskGate) -> "TaskStatusResponse":
        return cls(
            task_id=gate.task.task_id,
            order=gate.task.order,
            title=gate.task.title,
            is_mandatory=gate.task.is_mandatory,
            is_unlocked=gate.is_unlocked,
            is_completed=gate.is_completed,
            has_pending_submission=gate.has_pending,
            can_submit=gate.can_submit,
            blocked_reason=gate.blocked_reason,
        )


class ProgressResponse(BaseModel):
    approved_mandatory: int
    total_mandatory: int
    percentage: Decimal

    @classmethod
    def from_summary(cls, summary: ProgressSummary) -> "ProgressResponse":
        return cls(
            approved_mandatory=summary.approved_mandatory,
            total_mandatory=summary.total_mandatory,
            percentage=summary.percentage,
        )


class TaskBoardResponse(BaseModel):
    enrollment: EnrollmentResponse
    tasks: list[TaskStatusResponse]
    progress: ProgressResponse
