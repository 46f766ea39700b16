"""Shared fixtures: settings, the in-memory store and wired services."""

import os


os.environ.setdefault("ENVIRONMENT", "testing")
os.environ.setdefault("LOG_LEVEL", "WARNING")

from decimal import Decimal  # noqa: E402
from uuid import UUID, uuid4  # noqa: E402

import pytest  # noqa: E402

from internhub.certificates.service import CertificateIssuanceService  # noqa: E402
from internhub.config.settings import Settings  # noqa: E402
from internhub.enrollments.models import Enrollment, PaymentStatus, Program, Task  # noqa: E402
from internhub.enrollments.service import EnrollmentService  # noqa: E402
from internhub.payments.service import PaymentSettlementService  # noqa: E402
from internhub.tasks.models import SubmissionStatus  # noqa: E402
from internhub.tasks.service import SubmissionReviewWorkflow  # noqa: E402

from fakes import (  # noqa: E402
    KEY_SECRET,
    WEBHOOK_SECRET,
    FakeGateway,
    InMemoryEnrollmentStore,
    RecordingDispatcher,
)


@pytest.fixture
def settings() -> Settings:
    return Settings(
        environment="testing",
        razorpay_key_id="rzp_test_key",
        razorpay_key_secret=KEY_SECRET,
        razorpay_webhook_secret=WEBHOOK_SECRET,
        certificate_verify_base_url="https://internhub.test/verify",
    )


@pytest.fixture
def store() -> InMemoryEnrollmentStore:
    return InMemoryEnrollmentStore()


@pytest.fixture
def dispatcher() -> RecordingDispatcher:
    return RecordingDispatcher()


@pytest.fixture
def gateway() -> FakeGateway:
    return FakeGateway()


@pytest.fixture
def enrollment_service(store) -> EnrollmentService:
    return EnrollmentService(store)


@pytest.fixture
def workflow(store, dispatcher, settings) -> SubmissionReviewWorkflow:
    return SubmissionReviewWorkflow(store, dispatcher, settings)


@pytest.fixture
def payment_service(store, gateway, dispatcher, settings) -> PaymentSettlementService:
    return PaymentSettlementService(store, gateway, dispatcher, settings)


@pytest.fixture
def certificate_service(store, dispatcher, settings) -> CertificateIssuanceService:
    return CertificateIssuanceService(store, dispatcher, settings)


@pytest.fixture
def student_id() -> UUID:
    return uuid4()


@pytest.fixture
def reviewer_id() -> UUID:
    return uuid4()


@pytest.fixture
def program(store) -> Program:
    """Published program with two mandatory tasks, stored synchronously."""
    program = Program(
        program_id=uuid4(),
        title="Backend Engineering Internship",
        price=Decimal("4999.00"),
    )
    store.programs[program.program_id] = program
    store.tasks[program.program_id] = {
        order: Task(
            task_id=uuid4(),
            program_id=program.program_id,
            order=order,
            title=f"Task {order}",
        )
        for order in (1, 2)
    }
    return program


@pytest.fixture
def tasks(store, program) -> list[Task]:
    return [store.tasks[program.program_id][order] for order in (1, 2)]


def _enrollment(store, program, student_id, payment_status) -> Enrollment:
    enrollment = Enrollment(
        enrollment_id=uuid4(),
        student_id=student_id,
        program_id=program.program_id,
        student_name="Asha Verma",
        student_email="asha@example.com",
        program_title=program.title,
        payment_status=payment_status,
        payment_amount=program.price,
    )
    store.enrollments[enrollment.enrollment_id] = enrollment
    store.enrollment_keys[(student_id, program.program_id)] = enrollment.enrollment_id
    return enrollment


@pytest.fixture
def unpaid_enrollment(store, program, student_id) -> Enrollment:
    return _enrollment(store, program, student_id, PaymentStatus.PENDING)


@pytest.fixture
def paid_enrollment(store, program, student_id) -> Enrollment:
    return _enrollment(store, program, student_id, PaymentStatus.COMPLETED)


@pytest.fixture
def complete_all_tasks(workflow, tasks, student_id, reviewer_id):
    """Submit and approve every task of an enrollment in order."""

    async def complete(enrollment: Enrollment, grades=(None, None)):
        for task, grade in zip(tasks, grades, strict=True):
            submission = await workflow.submit(
                enrollment.enrollment_id, task.task_id, student_id, content="done"
            )
            await workflow.review(
                submission.submission_id,
                SubmissionStatus.APPROVED,
                reviewer_id,
                grade=grade,
            )

    return complete
