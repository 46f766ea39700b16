"""Pydantic schemas for certificates."""

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, Field

from .models import Certificate


class IssueCertificateRequest(BaseModel):
    enrollment_id: UUID


class RevokeCertificateRequest(BaseModel):
    reason: str = Field(..., min_length=1, max_length=500)


class CertificateSnapshotResponse(BaseModel):
    """Facts covered by the verification hash."""

    certificate_id: str
    student_name: str
    program_title: str
    completed_date: str
    final_score: int
    grade: str
    completed_tasks: int
    total_tasks: int


class CertificateResponse(BaseModel):
    certificate_id: UUID
    enrollment_id: UUID
    student_id: UUID
    program_id: UUID
    certificate_number: str
    verification_hash: str
    snapshot: CertificateSnapshotResponse
    issued_at: datetime
    is_valid: bool
    document_url: str | None = None
    revoked_at: datetime | None = None
    revocation_reason: str | None = None

    @classmethod
    def from_certificate(cls, certificate: Certificate) -> "CertificateResponse":
        return cls(
            certificate_id=certificate.certificate_id,
            enrollment_id=certificate.enrollment_id,
            student_id=certificate.student_id,
            program_id=certificate.program_id,
            certificate_number=certificate.certificate_number,
            verification_hash=certificate.verification_hash,
            snapshot=CertificateSnapshotResponse(**certificate.snapshot.to_dict()),
            issued_at=certificate.issued_at,
            is_valid=certificate.is_valid,
            document_url=certificate.document_url,
            revoked_at=certificate.revoked_at,
            revocation_reason=certificate.revocation_reason,
        )


class IssueCertificateResponse(BaseModel):
    certificate: CertificateResponse
    created: bool = Field(..., description="False when the certificate already existed")
    warnings: list[str] = Field(
        default_factory=list,
        description="Post-issuance steps that failed; call again to retry them",
    )


class PublicCertificate(BaseModel):
    """What public verification discloses."""

    certificate_number: str
    verification_hash: str
    student_name: str
    program_title: str
    completed_date: str
    final_score: int
    grade: str
    issued_at: datetime

    @classmethod
    def from_certificate(cls, certificate: Certificate) -> "PublicCertificate":
        snapshot = certificate.snapshot
        return cls(
            certificate_number=certificate.certificate_number,
            verification_hash=certificate.verification_hash,
            student_name=snapshot.student_name,
            program_title=snapshot.program_title,
            completed_date=snapshot.completed_date,
            final_score=snapshot.final_score,
            grade=snapshot.grade,
            issued_at=certificate.issued_at,
        )


class VerifyCertificateResponse(BaseModel):
    is_valid: bool
    certificate: PublicCertificate | None = None
