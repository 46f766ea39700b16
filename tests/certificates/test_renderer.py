"""Tests for certificate document rendering and storage."""

from datetime import UTC, datetime
from unittest.mock import AsyncMock, Mock
from uuid import uuid4

import pytest

from internhub.certificates.models import Certificate
from internhub.certificates.renderer import (
    DOCUMENT_CONTENT_TYPE,
    CertificateRenderer,
    build_verify_url,
    render_certificate_html,
)
from internhub.certificates.snapshot import CertificateSnapshot, compute_verification_hash
from internhub.storage.service import FirebaseStorageService, StorageNotConfiguredError


@pytest.fixture
def certificate() -> Certificate:
    certificate_id = uuid4()
    snapshot = CertificateSnapshot(
        certificate_id=str(certificate_id),
        student_name="<script>alert(1)</script>",
        program_title="Data & Analytics",
        completed_date="2026-03-14",
        final_score=91,
        grade="A",
        completed_tasks=4,
        total_tasks=4,
    )
    return Certificate(
        certificate_id=certificate_id,
        enrollment_id=uuid4(),
        student_id=uuid4(),
        program_id=uuid4(),
        certificate_number="CERT-12345678-AB12CD",
        verification_hash=compute_verification_hash(snapshot),
        snapshot=snapshot,
        issued_at=datetime(2026, 3, 14, tzinfo=UTC),
    )


def test_verify_url_encodes_reference() -> None:
    assert (
        build_verify_url("https://internhub.test/verify", "CERT-12345678-AB12CD")
        == "https://internhub.test/verify?ref=CERT-12345678-AB12CD"
    )


def test_html_escapes_snapshot_fields(certificate) -> None:
    html = render_certificate_html(certificate, "https://internhub.test/verify?ref=x&y=1")

    assert "<script>" not in html
    assert "&lt;script&gt;alert(1)&lt;/script&gt;" in html
    assert "Data &amp; Analytics" in html
    assert "Final score 91% &middot; Grade A" in html
    assert "4 of 4 tasks completed" in html
    assert certificate.verification_hash in html
    assert 'href="https://internhub.test/verify?ref=x&amp;y=1"' in html


@pytest.mark.asyncio
async def test_publish_uploads_under_certificate_number(certificate) -> None:
    storage = Mock(spec=FirebaseStorageService)
    storage.upload_document = AsyncMock(return_value="https://storage.test/doc.html")
    renderer = CertificateRenderer(storage)

    url = await renderer.publish(certificate, "https://internhub.test/verify?ref=x")

    assert url == "https://storage.test/doc.html"
    content, content_type, folder, name = storage.upload_document.call_args.args
    assert content.startswith(b"<!DOCTYPE html>")
    assert content_type == DOCUMENT_CONTENT_TYPE
    assert folder == "certificates"
    assert name == "CERT-12345678-AB12CD.html"


class TestFirebaseStorageService:
    def test_public_url_quotes_path_segments(self, settings) -> None:
        settings.firebase_storage_bucket = "internhub-docs"
        service = FirebaseStorageService(settings)

        path = service.build_document_path("certificates", "CERT 1.html")

        assert path == "internhub/certificates/CERT 1.html"
        assert service.generate_public_url(path) == (
            "https://storage.googleapis.com/internhub-docs/"
            "internhub/certificates/CERT%201.html"
        )

    @pytest.mark.asyncio
    async def test_upload_requires_configuration(self, settings) -> None:
        service = FirebaseStorageService(settings)

        with pytest.raises(StorageNotConfiguredError):
            await service.upload_document(b"x", "text/html", "certificates", "a.html")
