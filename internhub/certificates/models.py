"""Database models for certificates.

Cassandra table definitions for:
- Certificates: the issued record, including its metadata snapshot
- Reservations: one certificate per enrollment, claimed with IF NOT EXISTS.
  The holder seals it with the full certificate before committing, so a
  commit interrupted after the seal can be replayed by anyone
- Lookup tables: by certificate number (unique), by verification hash,
  by student
"""

from datetime import UTC, datetime
from typing import Any
from uuid import UUID

import orjson

from internhub.certificates.snapshot import CertificateSnapshot
from internhub.enrollments.models import ensure_utc_aware


# ==============================================================================
# CQL Table Definitions
# ==============================================================================

CERTIFICATES_TABLE_CQL = """
CREATE TABLE IF NOT EXISTS {keyspace}.certificates (
    certificate_id UUID PRIMARY KEY,
    enrollment_id UUID,
    student_id UUID,
    program_id UUID,
    certificate_number TEXT,
    verification_hash TEXT,
    student_name TEXT,
    program_title TEXT,
    completed_date TEXT,
    final_score INT,
    grade TEXT,
    completed_tasks INT,
    total_tasks INT,
    document_url TEXT,
    issued_at TIMESTAMP,
    is_valid BOOLEAN,
    revoked_at TIMESTAMP,
    revoked_by UUID,
    revocation_reason TEXT
)
"""

CERTIFICATE_RESERVATIONS_TABLE_CQL = """
CREATE TABLE IF NOT EXISTS {keyspace}.certificate_reservations (
    enrollment_id UUID PRIMARY KEY,
    certificate_id UUID,
    reserved_at TIMESTAMP,
    sealed BOOLEAN,
    certificate_payload TEXT
)
"""

CERTIFICATES_BY_NUMBER_TABLE_CQL = """
CREATE TABLE IF NOT EXISTS {keyspace}.certificates_by_number (
    certificate_number TEXT PRIMARY KEY,
    certificate_id UUID
)
"""

CERTIFICATES_BY_HASH_TABLE_CQL = """
CREATE TABLE IF NOT EXISTS {keyspace}.certificates_by_hash (
    verification_hash TEXT PRIMARY KEY,
    certificate_id UUID
)
"""

CERTIFICATES_BY_STUDENT_TABLE_CQL = """
CREATE TABLE IF NOT EXISTS {keyspace}.certificates_by_student (
    student_id UUID,
    issued_at TIMESTAMP,
    certificate_id UUID,
    PRIMARY KEY (student_id, issued_at, certificate_id)
) WITH CLUSTERING ORDER BY (issued_at DESC, certificate_id ASC)
"""

CERTIFICATES_TABLES_CQL = [
    CERTIFICATES_TABLE_CQL,
    CERTIFICATE_RESERVATIONS_TABLE_CQL,
    CERTIFICATES_BY_NUMBER_TABLE_CQL,
    CERTIFICATES_BY_HASH_TABLE_CQL,
    CERTIFICATES_BY_STUDENT_TABLE_CQL,
]


# ==============================================================================
# Entity Classes
# ==============================================================================


class CertificateReservation:
    """Claim on the single certificate an enrollment may receive.

    ``certificate`` is set once the holder has sealed the reservation; from
    then on the slot can no longer be taken over, only completed.
    """

    def __init__(
        self,
        enrollment_id: UUID,
        certificate_id: UUID,
        reserved_at: datetime | None = None,
        certificate: "Certificate | None" = None,
    ):
        self.enrollment_id = enrollment_id
        self.certificate_id = certificate_id
        self.reserved_at = ensure_utc_aware(reserved_at) or datetime.now(UTC)
        self.certificate = certificate

    @property
    def sealed(self) -> bool:
        return self.certificate is not None

    @classmethod
    def from_row(cls, row: Any) -> "CertificateReservation":
        payload = row.certificate_payload if row.sealed else None
        return cls(
            enrollment_id=row.enrollment_id,
            certificate_id=row.certificate_id,
            reserved_at=row.reserved_at,
            certificate=Certificate.from_payload(payload) if payload else None,
        )


class Certificate:
    """Issued completion certificate.

    The record is never deleted. Revocation flips ``is_valid`` and keeps the
    snapshot so the verification hash can still be recomputed for audits.
    """

    def __init__(
        self,
        certificate_id: UUID,
        enrollment_id: UUID,
        student_id: UUID,
        program_id: UUID,
        certificate_number: str,
        verification_hash: str,
        snapshot: CertificateSnapshot,
        issued_at: datetime | None = None,
        is_valid: bool = True,
        document_url: str | None = None,
        revoked_at: datetime | None = None,
        revoked_by: UUID | None = None,
        revocation_reason: str | None = None,
    ):
        self.certificate_id = certificate_id
        self.enrollment_id = enrollment_id
        self.student_id = student_id
        self.program_id = program_id
        self.certificate_number = certificate_number
        self.verification_hash = verification_hash
        self.snapshot = snapshot
        self.issued_at = ensure_utc_aware(issued_at) or datetime.now(UTC)
        self.is_valid = is_valid
        self.document_url = document_url
        self.revoked_at = ensure_utc_aware(revoked_at)
        self.revoked_by = revoked_by
        self.revocation_reason = revocation_reason

    @classmethod
    def from_row(cls, row: Any) -> "Certificate":
        """Create Certificate instance from Cassandra row."""
        return cls(
            certificate_id=row.certificate_id,
            enrollment_id=row.enrollment_id,
            student_id=row.student_id,
            program_id=row.program_id,
            certificate_number=row.certificate_number,
            verification_hash=row.verification_hash,
            snapshot=CertificateSnapshot(
                certificate_id=str(row.certificate_id),
                student_name=row.student_name or "",
                program_title=row.program_title or "",
                completed_date=row.completed_date or "",
                final_score=row.final_score or 0,
                grade=row.grade or "",
                completed_tasks=row.completed_tasks or 0,
                total_tasks=row.total_tasks or 0,
            ),
            issued_at=row.issued_at,
            is_valid=bool(row.is_valid),
            document_url=row.document_url,
            revoked_at=row.revoked_at,
            revoked_by=row.revoked_by,
            revocation_reason=row.revocation_reason,
        )

    def to_payload(self) -> str:
        """Serialize the issued facts (not revocation state) for the seal."""
        return orjson.dumps(
            {
                "certificate_id": self.certificate_id,
                "enrollment_id": self.enrollment_id,
                "student_id": self.student_id,
                "program_id": self.program_id,
                "certificate_number": self.certificate_number,
                "verification_hash": self.verification_hash,
                "issued_at": self.issued_at,
                "snapshot": self.snapshot.to_dict(),
            }
        ).decode()

    @classmethod
    def from_payload(cls, payload: str) -> "Certificate":
        data = orjson.loads(payload)
        return cls(
            certificate_id=UUID(data["certificate_id"]),
            enrollment_id=UUID(data["enrollment_id"]),
            student_id=UUID(data["student_id"]),
            program_id=UUID(data["program_id"]),
            certificate_number=data["certificate_number"],
            verification_hash=data["verification_hash"],
            snapshot=CertificateSnapshot(**data["snapshot"]),
            issued_at=datetime.fromisoformat(data["issued_at"]),
        )

    @property
    def write_timestamp(self) -> int:
        """Cell timestamp (microseconds) for the certificate row.

        Derived from ``issued_at`` so a replayed commit never outranks a
        later revocation or document update.
        """
        return int(self.issued_at.timestamp() * 1_000_000)

    def __repr__(self) -> str:
        state = "valid" if self.is_valid else "revoked"
        return f"<Certificate {self.certificate_number} {state}>"
