"""Enrollment service layer.

Business logic for:
- Enrolling a student in a program
- Ownership-checked enrollment reads
- The task board: per-task gating state plus the progress summary
- Program and task setup for admins
"""

from dataclasses import dataclass
from datetime import UTC, datetime
from decimal import Decimal
from uuid import UUID, uuid4

from internhub.core.exceptions import (
    ConflictError,
    NotFoundError,
    UnauthorizedError,
    ValidationError,
)
from internhub.core.logging import get_logger
from internhub.tasks.gating import ProgressSummary, TaskGate, evaluate_gates, summarize_progress

from .models import Enrollment, EnrollmentStatus, PaymentStatus, Program, Task
from .store import EnrollmentStore


logger = get_logger(__name__)


# ==============================================================================
# Shared helpers
# ==============================================================================


async def load_enrollment(store: EnrollmentStore, enrollment_id: UUID) -> Enrollment:
    """Load an enrollment or raise NotFoundError."""
    enrollment = await store.get_enrollment(enrollment_id)
    if enrollment is None:
        raise NotFoundError("Enrollment not found", "enrollment_not_found")
    return enrollment


def ensure_owner(
    enrollment: Enrollment,
    requester_id: UUID,
    *,
    allow_staff: bool = False,
) -> None:
    """Raise UnauthorizedError unless the requester owns the enrollment.

    Args:
        enrollment: Enrollment being accessed
        requester_id: Authenticated user id
        allow_staff: Let reviewers and admins through regardless of ownership
    """
    if allow_staff or enrollment.student_id == requester_id:
        return
    raise UnauthorizedError("You do not own this enrollment", "not_enrollment_owner")


@dataclass
class TaskBoard:
    enrollment: Enrollment
    gates: list[TaskGate]
    progress: ProgressSummary


# ==============================================================================
# Enrollment Service
# ==============================================================================


class EnrollmentService:
    """Creates enrollments and answers read queries about them."""

    def __init__(self, store: EnrollmentStore):
        self.store = store

    async def enroll(
        self,
        student_id: UUID,
        program_id: UUID,
        student_name: str,
        student_email: str | None = None,
    ) -> Enrollment:
        """Enroll a student in a published program.

        The enrollment starts ACTIVE with payment PENDING and the program
        price as the amount due.

        Raises:
            NotFoundError: If the program does not exist or is unpublished
            ConflictError: If the student is already enrolled
        """
        program = await self.store.get_program(program_id)
        if program is None or not program.is_published:
            raise NotFoundError("Program not found", "program_not_found")

        now = datetime.now(UTC)
        enrollment = Enrollment(
            enrollment_id=uuid4(),
            student_id=student_id,
            program_id=program_id,
            student_name=student_name,
            student_email=student_email,
            program_title=program.title,
            status=EnrollmentStatus.ACTIVE,
            payment_status=PaymentStatus.PENDING,
            payment_amount=program.price,
            currency=program.currency,
            enrolled_at=now,
            updated_at=now,
        )

        if not await self.store.create_enrollment(enrollment):
            raise ConflictError(
                "Already enrolled in this program", "already_enrolled"
            )

        logger.info(
            "student_enrolled",
            enrollment_id=str(enrollment.enrollment_id),
            student_id=str(student_id),
            program_id=str(program_id),
        )
        return enrollment

    async def get_enrollment(
        self,
        enrollment_id: UUID,
        requester_id: UUID,
        *,
        allow_staff: bool = False,
    ) -> Enrollment:
        enrollment = await load_enrollment(self.store, enrollment_id)
        ensure_owner(enrollment, requester_id, allow_staff=allow_staff)
        return enrollment

    async def list_student_enrollments(self, student_id: UUID) -> list[Enrollment]:
        return await self.store.list_student_enrollments(student_id)

    async def get_task_board(
        self,
        enrollment_id: UUID,
        requester_id: UUID,
        *,
        allow_staff: bool = False,
    ) -> TaskBoard:
        """Gating state of every task plus the progress summary."""
        enrollment = await self.get_enrollment(
            enrollment_id, requester_id, allow_staff=allow_staff
        )
        tasks = await self.store.list_tasks(enrollment.program_id)
        submissions = await self.store.list_submissions(enrollment_id)

        return TaskBoard(
            enrollment=enrollment,
            gates=evaluate_gates(tasks, submissions, enrollment.payment_status),
            progress=summarize_progress(tasks, submissions),
        )

    # ==========================================================================
    # Programs (admin)
    # ==========================================================================

    async def create_program(
        self,
        title: str,
        price: Decimal,
        currency: str,
        description: str | None = None,
    ) -> Program:
        """Create a draft program; tasks are added before it is published."""
        if price < 0:
            raise ValidationError("Price cannot be negative", "invalid_price")
        program = Program(
            program_id=uuid4(),
            title=title,
            price=price,
            currency=currency,
            description=description,
            is_published=False,
        )
        await self.store.save_program(program)
        logger.info("program_created", program_id=str(program.program_id), title=title)
        return program

    async def add_task(
        self,
        program_id: UUID,
        order: int,
        title: str,
        description: str | None = None,
        is_mandatory: bool = True,
    ) -> Task:
        """Append a task at ``order``; orders are unique within a program.

        Raises:
            NotFoundError: Program does not exist
            ConflictError: The program is already published, or another task
                already has this order
        """
        if order < 1:
            raise ValidationError("Task order starts at 1", "invalid_task_order")
        program = await self.store.get_program(program_id)
        if program is None:
            raise NotFoundError("Program not found", "program_not_found")
        if program.is_published:
            raise ConflictError(
                "Tasks cannot change once a program is published", "program_published"
            )

        task = Task(
            task_id=uuid4(),
            program_id=program_id,
            order=order,
            title=title,
            description=description,
            is_mandatory=is_mandatory,
        )
        if not await self.store.insert_task(task):
            raise ConflictError(
                f"Task order {order} is already taken", "task_order_taken"
            )
        logger.info(
            "task_added",
            program_id=str(program_id),
            task_id=str(task.task_id),
            order=order,
        )
        return task

    async def publish_program(self, program_id: UUID) -> tuple[Program, list[Task]]:
        """Open a draft program for enrollment and freeze its task list.

        Raises:
            NotFoundError: Program does not exist
            ValidationError: The program has no mandatory task to complete
            ConflictError: The program is already published
        """
        program, tasks = await self.get_program(program_id)
        if program.is_published:
            raise ConflictError("Program is already published", "program_published")
        if not any(task.is_mandatory for task in tasks):
            raise ValidationError(
                "A program needs at least one mandatory task before publishing",
                "program_without_mandatory_tasks",
            )
        if not await self.store.publish_program(program_id):
            raise ConflictError("Program is already published", "program_published")
        program.is_published = True
        logger.info("program_published", program_id=str(program_id), tasks=len(tasks))
        return program, tasks

    async def get_program(self, program_id: UUID) -> tuple[Program, list[Task]]:
        program = await self.store.get_program(program_id)
        if program is None:
            raise NotFoundError("Program not found", "program_not_found")
        return program, await self.store.list_tasks(program_id)
