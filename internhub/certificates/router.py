"""HTTP endpoints for certificates.

Provides:
- POST /v1/certificates - Issue (or fetch) the certificate of an enrollment
- GET  /v1/certificates/verify?ref= - Public verification
- GET  /v1/certificates/me - My certificates
- GET  /v1/certificates/{id} - Certificate details (owner or admin)
- POST /v1/certificates/{id}/revoke - Revoke (admin)
"""

from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Query, status

from internhub.auth.dependencies import AdminUser, CurrentUser
from internhub.auth.permissions import UserRole, has_permission
from internhub.core.exceptions import DomainError, handle_domain_error

from .dependencies import CertificateServiceDep
from .schemas import (
    CertificateResponse,
    IssueCertificateRequest,
    IssueCertificateResponse,
    PublicCertificate,
    RevokeCertificateRequest,
    VerifyCertificateResponse,
)


router = APIRouter(prefix="/v1/certificates", tags=["certificates"])


@router.post(
    "",
    response_model=IssueCertificateResponse,
    status_code=status.HTTP_200_OK,
    summary="Issue a certificate",
)
async def issue_certificate(
    data: IssueCertificateRequest,
    service: CertificateServiceDep,
    current_user: CurrentUser,
) -> IssueCertificateResponse:
    """Idempotent: every call for the same enrollment returns the same certificate."""
    try:
        result = await service.issue(data.enrollment_id, current_user.id)
    except DomainError as e:
        raise handle_domain_error(e) from e
    return IssueCertificateResponse(
        certificate=CertificateResponse.from_certificate(result.certificate),
        created=result.created,
        warnings=result.warnings,
    )


@router.get(
    "/verify",
    response_model=VerifyCertificateResponse,
    summary="Verify a certificate",
)
async def verify_certificate(
    service: CertificateServiceDep,
    ref: Annotated[str, Query(min_length=1, max_length=128)],
) -> VerifyCertificateResponse:
    """Public endpoint: ``ref`` is a certificate number or verification hash."""
    result = await service.verify(ref)
    return VerifyCertificateResponse(
        is_valid=result.is_valid,
        certificate=PublicCertificate.from_certificate(result.certificate)
        if result.certificate
        else None,
    )


@router.get("/me", response_model=list[CertificateResponse])
async def list_my_certificates(
    service: CertificateServiceDep,
    current_user: CurrentUser,
) -> list[CertificateResponse]:
    certificates = await service.list_student_certificates(current_user.id)
    return [CertificateResponse.from_certificate(c) for c in certificates]


@router.get("/{certificate_id}", response_model=CertificateResponse)
async def get_certificate(
    certificate_id: UUID,
    service: CertificateServiceDep,
    current_user: CurrentUser,
) -> CertificateResponse:
    try:
        certificate = await service.get_certificate(
            certificate_id,
            current_user.id,
            allow_staff=has_permission(current_user.role, UserRole.ADMIN),
        )
    except DomainError as e:
        raise handle_domain_error(e) from e
    return CertificateResponse.from_certificate(certificate)


@router.post(
    "/{certificate_id}/revoke",
    response_model=CertificateResponse,
    summary="Revoke a certificate (admin)",
)
async def revoke_certificate(
    certificate_id: UUID,
    data: RevokeCertificateRequest,
    service: CertificateServiceDep,
    admin: AdminUser,
) -> CertificateResponse:
    try:
        certificate = await service.revoke(certificate_id, data.reason, admin.id)
    except DomainError as e:
        raise handle_domain_error(e) from e
    return CertificateResponse.from_certificate(certificate)
