"""FastAPI dependencies for certificates."""

from typing import Annotated

from fastapi import Depends, HTTPException, Request, status

from .service import CertificateIssuanceService


async def get_certificate_service(request: Request) -> CertificateIssuanceService:
    """Get certificate service from app state."""
    app_state = request.app.state
    if not getattr(app_state, "certificate_service", None):
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Certificate service not available",
        )
    return app_state.certificate_service


CertificateServiceDep = Annotated[
    CertificateIssuanceService, Depends(get_certificate_service)
]
