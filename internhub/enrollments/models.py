"""Database models for programs, tasks and enrollments.

Cassandra table definitions for:
- Programs and their ordered task lists
- Enrollments: payment and progress state per student and program
- Lookup tables: enrollments by student, enrollment uniqueness keys

Enrollment progress is written with a compare-and-swap on ``version`` while
payment fields are written by settlement batches. The two touch disjoint
columns, so neither can overwrite the other.
"""

from datetime import UTC, datetime
from decimal import Decimal
from enum import Enum
from typing import Any
from uuid import UUID


class EnrollmentStatus(str, Enum):
    """Enrollment lifecycle status."""

    ACTIVE = "active"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class PaymentStatus(str, Enum):
    """Payment status, shared by payments and the enrollment's mirror of it."""

    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"
    REFUNDED = "refunded"


# ==============================================================================
# Helper Functions
# ==============================================================================


def ensure_utc_aware(dt: datetime | None) -> datetime | None:
    """Ensure datetime is UTC-aware (Cassandra returns naive datetimes)."""
    if dt is None:
        return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=UTC)
    return dt


# ==============================================================================
# CQL Table Definitions
# ==============================================================================

PROGRAMS_TABLE_CQL = """
CREATE TABLE IF NOT EXISTS {keyspace}.programs (
    program_id UUID PRIMARY KEY,
    title TEXT,
    description TEXT,
    price DECIMAL,
    currency TEXT,
    is_published BOOLEAN,
    created_at TIMESTAMP
)
"""

# Tasks clustered by their 1-based order inside the program
PROGRAM_TASKS_TABLE_CQL = """
CREATE TABLE IF NOT EXISTS {keyspace}.program_tasks (
    program_id UUID,
    task_order INT,
    task_id UUID,
    title TEXT,
    description TEXT,
    is_mandatory BOOLEAN,
    PRIMARY KEY (program_id, task_order)
) WITH CLUSTERING ORDER BY (task_order ASC)
"""

ENROLLMENTS_TABLE_CQL = """
CREATE TABLE IF NOT EXISTS {keyspace}.enrollments (
    enrollment_id UUID PRIMARY KEY,
    student_id UUID,
    program_id UUID,
    student_name TEXT,
    student_email TEXT,
    program_title TEXT,
    status TEXT,
    progress_percentage DECIMAL,
    payment_status TEXT,
    payment_amount DECIMAL,
    currency TEXT,
    certificate_issued BOOLEAN,
    certificate_id UUID,
    enrolled_at TIMESTAMP,
    completed_at TIMESTAMP,
    updated_at TIMESTAMP,
    version INT
)
"""

# Lookup: enrollments of a student, newest first
ENROLLMENTS_BY_STUDENT_TABLE_CQL = """
CREATE TABLE IF NOT EXISTS {keyspace}.enrollments_by_student (
    student_id UUID,
    enrolled_at TIMESTAMP,
    enrollment_id UUID,
    program_id UUID,
    PRIMARY KEY (student_id, enrolled_at, enrollment_id)
) WITH CLUSTERING ORDER BY (enrolled_at DESC, enrollment_id ASC)
"""

# One enrollment per (student, program), claimed with IF NOT EXISTS
ENROLLMENT_KEYS_TABLE_CQL = """
CREATE TABLE IF NOT EXISTS {keyspace}.enrollment_keys (
    student_id UUID,
    program_id UUID,
    enrollment_id UUID,
    PRIMARY KEY ((student_id, program_id))
)
"""

ENROLLMENTS_TABLES_CQL = [
    PROGRAMS_TABLE_CQL,
    PROGRAM_TASKS_TABLE_CQL,
    ENROLLMENTS_TABLE_CQL,
    ENROLLMENTS_BY_STUDENT_TABLE_CQL,
    ENROLLMENT_KEYS_TABLE_CQL,
]


# ==============================================================================
# Entity Classes
# ==============================================================================


class Program:
    """Paid internship program."""

    def __init__(
        self,
        program_id: UUID,
        title: str,
        price: Decimal,
        currency: str = "INR",
        description: str | None = None,
        is_published: bool = True,
        created_at: datetime | None = None,
    ):
        self.program_id = program_id
        self.title = title
        self.price = price
        self.currency = currency
        self.description = description
        self.is_published = is_published
        self.created_at = ensure_utc_aware(created_at) or datetime.now(UTC)

    @classmethod
    def from_row(cls, row: Any) -> "Program":
        """Create Program instance from Cassandra row."""
        return cls(
            program_id=row.program_id,
            title=row.title,
            price=row.price or Decimal(0),
            currency=row.currency or "INR",
            description=row.description,
            is_published=bool(row.is_published),
            created_at=row.created_at,
        )

    def __repr__(self) -> str:
        return f"<Program {self.program_id} {self.title!r}>"


class Task:
    """Task inside a program.

    Attributes:
        task_id: Task UUID
        program_id: Owning program
        order: 1-based position, unique per program
        title: Task title
        is_mandatory: Whether the task counts towards progress
    """

    def __init__(
        self,
        task_id: UUID,
        program_id: UUID,
        order: int,
        title: str = "",
        description: str | None = None,
        is_mandatory: bool = True,
    ):
        self.task_id = task_id
        self.program_id = program_id
        self.order = order
        self.title = title
        self.description = description
        self.is_mandatory = is_mandatory

    @classmethod
    def from_row(cls, row: Any) -> "Task":
        """Create Task instance from Cassandra row."""
        return cls(
            task_id=row.task_id,
            program_id=row.program_id,
            order=row.task_order,
            title=row.title or "",
            description=row.description,
            is_mandatory=row.is_mandatory if row.is_mandatory is not None else True,
        )

    def __repr__(self) -> str:
        return f"<Task #{self.order} {self.task_id}>"


class Enrollment:
    """Enrollment of a student in a program.

    Owned by the student who created it. Progress fields are maintained by the
    review workflow, payment fields by settlement.

    Attributes:
        enrollment_id: Enrollment UUID
        student_id: Owning student
        program_id: Program UUID
        student_name: Denormalized for certificate snapshots
        student_email: Denormalized for email notifications
        program_title: Denormalized for certificate snapshots
        status: ACTIVE, COMPLETED or CANCELLED
        progress_percentage: Approved mandatory tasks as a percentage (0-100)
        payment_status: Mirror of the settled payment's status
        payment_amount: Program price at enrollment time
        certificate_issued: Set once a certificate is persisted
        version: Compare-and-swap counter for progress updates
    """

    def __init__(
        self,
        enrollment_id: UUID,
        student_id: UUID,
        program_id: UUID,
        student_name: str = "",
        student_email: str | None = None,
        program_title: str = "",
        status: EnrollmentStatus = EnrollmentStatus.ACTIVE,
        progress_percentage: Decimal = Decimal(0),
        payment_status: PaymentStatus = PaymentStatus.PENDING,
        payment_amount: Decimal = Decimal(0),
        currency: str = "INR",
        certificate_issued: bool = False,
        certificate_id: UUID | None = None,
        enrolled_at: datetime | None = None,
        completed_at: datetime | None = None,
        updated_at: datetime | None = None,
        version: int = 0,
    ):
        self.enrollment_id = enrollment_id
        self.student_id = student_id
        self.program_id = program_id
        self.student_name = student_name
        self.student_email = student_email
        self.program_title = program_title
        self.status = EnrollmentStatus(status)
        self.progress_percentage = progress_percentage
        self.payment_status = PaymentStatus(payment_status)
        self.payment_amount = payment_amount
        self.currency = currency
        self.certificate_issued = certificate_issued
        self.certificate_id = certificate_id
        self.enrolled_at = ensure_utc_aware(enrolled_at) or datetime.now(UTC)
        self.completed_at = ensure_utc_aware(completed_at)
        self.updated_at = ensure_utc_aware(updated_at) or self.enrolled_at
        self.version = version

    @property
    def is_paid(self) -> bool:
        return self.payment_status == PaymentStatus.COMPLETED

    @property
    def is_cancelled(self) -> bool:
        return self.status == EnrollmentStatus.CANCELLED

    @classmethod
    def from_row(cls, row: Any) -> "Enrollment":
        """Create Enrollment instance from Cassandra row."""
        return cls(
            enrollment_id=row.enrollment_id,
            student_id=row.student_id,
            program_id=row.program_id,
            student_name=row.student_name or "",
            student_email=row.student_email,
            program_title=row.program_title or "",
            status=EnrollmentStatus(row.status or EnrollmentStatus.ACTIVE.value),
            progress_percentage=row.progress_percentage or Decimal(0),
            payment_status=PaymentStatus(
                row.payment_status or PaymentStatus.PENDING.value
            ),
            payment_amount=row.payment_amount or Decimal(0),
            currency=row.currency or "INR",
            certificate_issued=bool(row.certificate_issued),
            certificate_id=row.certificate_id,
            enrolled_at=row.enrolled_at,
            completed_at=row.completed_at,
            updated_at=row.updated_at,
            version=row.version or 0,
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "enrollment_id": self.enrollment_id,
            "student_id": self.student_id,
            "program_id": self.program_id,
            "program_title": self.program_title,
            "status": self.status.value,
            "progress_percentage": self.progress_percentage,
            "payment_status": self.payment_status.value,
            "payment_amount": self.payment_amount,
            "currency": self.currency,
            "certificate_issued": self.certificate_issued,
            "certificate_id": self.certificate_id,
            "enrolled_at": self.enrolled_at,
            "completed_at": self.completed_at,
        }

    def __repr__(self) -> str:
        return (
            f"<Enrollment {self.enrollment_id} student={self.student_id} "
            f"{self.status.value} {self.progress_percentage}% "
            f"payment={self.payment_status.value}>"
        )
