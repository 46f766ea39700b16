"""FastAPI dependencies for the submission workflow."""

from typing import Annotated

from fastapi import Depends, HTTPException, Request, status

from .service import SubmissionReviewWorkflow


async def get_review_workflow(request: Request) -> SubmissionReviewWorkflow:
    """Get submission review workflow from app state."""
    app_state = request.app.state
    if not getattr(app_state, "review_workflow", None):
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Submission service not available",
        )
    return app_state.review_workflow


ReviewWorkflowDep = Annotated[SubmissionReviewWorkflow, Depends(get_review_workflow)]
