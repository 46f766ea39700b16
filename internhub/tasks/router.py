"""HTTP endpoints for task submissions and reviews.

Provides:
- POST /v1/enrollments/{id}/tasks/{task_id}/submissions - Submit a task
- GET  /v1/enrollments/{id}/submissions - Submission history
- POST /v1/submissions/{id}/review - Review a submission (reviewer+)
- POST /v1/enrollments/{id}/progress/recompute - Repair progress (admin)
"""

from uuid import UUID

from fastapi import APIRouter, status

from internhub.auth.dependencies import AdminUser, CurrentUser, ReviewerUser
from internhub.auth.permissions import is_staff
from internhub.core.exceptions import DomainError, handle_domain_error
from internhub.enrollments.schemas import EnrollmentResponse

from .dependencies import ReviewWorkflowDep
from .schemas import (
    RecomputeProgressResponse,
    ReviewResponse,
    ReviewSubmissionRequest,
    SubmissionResponse,
    SubmitTaskRequest,
)


router = APIRouter(tags=["submissions"])


@router.post(
    "/v1/enrollments/{enrollment_id}/tasks/{task_id}/submissions",
    response_model=SubmissionResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Submit a task",
)
async def submit_task(
    enrollment_id: UUID,
    task_id: UUID,
    data: SubmitTaskRequest,
    workflow: ReviewWorkflowDep,
    current_user: CurrentUser,
) -> SubmissionResponse:
    """Create a pending submission.

    Rejected with 409 and a reason code when the task is locked, already
    approved, awaiting review, or the enrollment is unpaid.
    """
    try:
        submission = await workflow.submit(
            enrollment_id=enrollment_id,
            task_id=task_id,
            student_id=current_user.id,
            content=data.content,
            file_urls=data.file_urls,
        )
    except DomainError as e:
        raise handle_domain_error(e) from e
    return SubmissionResponse.from_submission(submission)


@router.get(
    "/v1/enrollments/{enrollment_id}/submissions",
    response_model=list[SubmissionResponse],
)
async def list_submissions(
    enrollment_id: UUID,
    workflow: ReviewWorkflowDep,
    current_user: CurrentUser,
) -> list[SubmissionResponse]:
    try:
        submissions = await workflow.list_submissions(
            enrollment_id, current_user.id, allow_staff=is_staff(current_user.role)
        )
    except DomainError as e:
        raise handle_domain_error(e) from e
    return [SubmissionResponse.from_submission(s) for s in submissions]


@router.post(
    "/v1/submissions/{submission_id}/review",
    response_model=ReviewResponse,
    summary="Review a submission",
)
async def review_submission(
    submission_id: UUID,
    data: ReviewSubmissionRequest,
    workflow: ReviewWorkflowDep,
    reviewer: ReviewerUser,
) -> ReviewResponse:
    try:
        result = await workflow.review(
            submission_id=submission_id,
            outcome=data.outcome,
            reviewer_id=reviewer.id,
            feedback=data.feedback,
            grade=data.grade,
        )
    except DomainError as e:
        raise handle_domain_error(e) from e

    progress = result.progress
    return ReviewResponse(
        submission=SubmissionResponse.from_submission(result.submission),
        enrollment=EnrollmentResponse.from_enrollment(progress.enrollment)
        if progress
        else None,
        enrollment_completed=bool(progress and progress.newly_completed),
        warnings=result.warnings,
    )


@router.post(
    "/v1/enrollments/{enrollment_id}/progress/recompute",
    response_model=RecomputeProgressResponse,
    summary="Recompute enrollment progress (admin)",
)
async def recompute_progress(
    enrollment_id: UUID,
    workflow: ReviewWorkflowDep,
    _: AdminUser,
) -> RecomputeProgressResponse:
    try:
        update = await workflow.recompute_progress(enrollment_id)
    except DomainError as e:
        raise handle_domain_error(e) from e
    return RecomputeProgressResponse(
        enrollment=EnrollmentResponse.from_enrollment(update.enrollment),
        approved_mandatory=update.summary.approved_mandatory,
        total_mandatory=update.summary.total_mandatory,
        changed=update.changed,
    )
