"""HTTP endpoints for programs and enrollments.

Provides:
- POST /v1/enrollments - Enroll in a program
- GET  /v1/enrollments/me - List my enrollments
- GET  /v1/enrollments/{id} - Enrollment details
- GET  /v1/enrollments/{id}/tasks - Task board with gating state
- Admin endpoints for programs and tasks
"""

from uuid import UUID

from fastapi import APIRouter, status

from internhub.auth.dependencies import AdminUser, CurrentUser
from internhub.auth.permissions import is_staff
from internhub.core.exceptions import DomainError, handle_domain_error

from .dependencies import EnrollmentServiceDep
from .schemas import (
    CreateProgramRequest,
    CreateTaskRequest,
    EnrollmentListResponse,
    EnrollmentResponse,
    EnrollRequest,
    ProgramResponse,
    ProgressResponse,
    TaskBoardResponse,
    TaskResponse,
    TaskStatusResponse,
)


router = APIRouter(prefix="/v1/enrollments", tags=["enrollments"])
programs_router = APIRouter(prefix="/v1/programs", tags=["programs"])


# ==============================================================================
# Enrollment Endpoints
# ==============================================================================


@router.post(
    "",
    response_model=EnrollmentResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Enroll in a program",
)
async def enroll(
    data: EnrollRequest,
    service: EnrollmentServiceDep,
    current_user: CurrentUser,
) -> EnrollmentResponse:
    try:
        enrollment = await service.enroll(
            student_id=current_user.id,
            program_id=data.program_id,
            student_name=current_user.display_name,
            student_email=current_user.email,
        )
    except DomainError as e:
        raise handle_domain_error(e) from e
    return EnrollmentResponse.from_enrollment(enrollment)


@router.get("/me", response_model=EnrollmentListResponse, summary="List my enrollments")
async def list_my_enrollments(
    service: EnrollmentServiceDep,
    current_user: CurrentUser,
) -> EnrollmentListResponse:
    enrollments = await service.list_student_enrollments(current_user.id)
    return EnrollmentListResponse(
        items=[EnrollmentResponse.from_enrollment(e) for e in enrollments],
        total=len(enrollments),
    )


@router.get("/{enrollment_id}", response_model=EnrollmentResponse)
async def get_enrollment(
    enrollment_id: UUID,
    service: EnrollmentServiceDep,
    current_user: CurrentUser,
) -> EnrollmentResponse:
    try:
        enrollment = await service.get_enrollment(
            enrollment_id, current_user.id, allow_staff=is_staff(current_user.role)
        )
    except DomainError as e:
        raise handle_domain_error(e) from e
    return EnrollmentResponse.from_enrollment(enrollment)


@router.get(
    "/{enrollment_id}/tasks",
    response_model=TaskBoardResponse,
    summary="Task board",
)
async def get_task_board(
    enrollment_id: UUID,
    service: EnrollmentServiceDep,
    current_user: CurrentUser,
) -> TaskBoardResponse:
    """Every task of the program with its unlock, completion and submit state."""
    try:
        board = await service.get_task_board(
            enrollment_id, current_user.id, allow_staff=is_staff(current_user.role)
        )
    except DomainError as e:
        raise handle_domain_error(e) from e
    return TaskBoardResponse(
        enrollment=EnrollmentResponse.from_enrollment(board.enrollment),
        tasks=[TaskStatusResponse.from_gate(g) for g in board.gates],
        progress=ProgressResponse.from_summary(board.progress),
    )


# ==============================================================================
# Program Endpoints
# ==============================================================================


@programs_router.post(
    "",
    response_model=ProgramResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create a program (admin)",
)
async def create_program(
    data: CreateProgramRequest,
    service: EnrollmentServiceDep,
    _: AdminUser,
) -> ProgramResponse:
    try:
        program = await service.create_program(
            title=data.title,
            price=data.price,
            currency=data.currency.upper(),
            description=data.description,
        )
    except DomainError as e:
        raise handle_domain_error(e) from e
    return ProgramResponse.from_program(program)


@programs_router.post(
    "/{program_id}/tasks",
    response_model=TaskResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Add a task to a program (admin)",
)
async def add_task(
    program_id: UUID,
    data: CreateTaskRequest,
    service: EnrollmentServiceDep,
    _: AdminUser,
) -> TaskResponse:
    try:
        task = await service.add_task(
            program_id=program_id,
            order=data.order,
            title=data.title,
            description=data.description,
            is_mandatory=data.is_mandatory,
        )
    except DomainError as e:
        raise handle_domain_error(e) from e
    return TaskResponse.from_task(task)


@programs_router.post(
    "/{program_id}/publish",
    response_model=ProgramResponse,
    summary="Publish a program (admin)",
)
async def publish_program(
    program_id: UUID,
    service: EnrollmentServiceDep,
    _: AdminUser,
) -> ProgramResponse:
    try:
        program, tasks = await service.publish_program(program_id)
    except DomainError as e:
        raise handle_domain_error(e) from e
    return ProgramResponse.from_program(program, tasks)


@programs_router.get("/{program_id}", response_model=ProgramResponse)
async def get_program(
    program_id: UUID,
    service: EnrollmentServiceDep,
    _: CurrentUser,
) -> ProgramResponse:
    try:
        program, tasks = await service.get_program(program_id)
    except DomainError as e:
        raise handle_domain_error(e) from e
    return ProgramResponse.from_program(program, tasks)
