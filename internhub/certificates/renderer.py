"""Certificate document rendering.

Builds a standalone HTML certificate from the immutable snapshot and stores it
through Firebase Storage. Runs after the certificate row has been committed;
callers treat any failure here as a retryable warning.
"""

from html import escape
from typing import TYPE_CHECKING
from urllib.parse import urlencode

from internhub.core.logging import get_logger


if TYPE_CHECKING:
    from internhub.storage.service import FirebaseStorageService

    from .models import Certificate


logger = get_logger(__name__)

DOCUMENT_FOLDER = "certificates"
DOCUMENT_CONTENT_TYPE = "text/html; charset=utf-8"

CERTIFICATE_TEMPLATE = """<!DOCTYPE html>
<html lang="en">
<head>
  <meta charset="UTF-8">
  <title>Certificate {certificate_number}</title>
</head>
<body style="margin: 0; padding: 40px; background-color: #F8FAFC; font-family: Georgia, serif;">
  <div style="max-width: 900px; margin: 0 auto; padding: 60px; background: #FFFFFF; border: 8px double #1E3A8A; text-align: center;">
    <p style="margin: 0; font-size: 14px; letter-spacing: 4px; color: #64748B;">INTERNHUB</p>
    <h1 style="margin: 16px 0 32px; font-size: 40px; color: #1E3A8A;">Certificate of Completion</h1>
    <p style="margin: 0; font-size: 18px; color: #334155;">This certifies that</p>
    <h2 style="margin: 12px 0; font-size: 32px; color: #0F172A;">{student_name}</h2>
    <p style="margin: 0; font-size: 18px; color: #334155;">has successfully completed</p>
    <h3 style="margin: 12px 0 32px; font-size: 26px; color: #0F172A;">{program_title}</h3>
    <p style="margin: 4px 0; font-size: 16px; color: #334155;">Completed on {completed_date}</p>
    <p style="margin: 4px 0; font-size: 16px; color: #334155;">Final score {final_score}% &middot; Grade {grade}</p>
    <p style="margin: 4px 0 32px; font-size: 16px; color: #334155;">{completed_tasks} of {total_tasks} tasks completed</p>
    <p style="margin: 0; font-size: 13px; color: #64748B;">Certificate number {certificate_number}</p>
    <p style="margin: 4px 0; font-size: 11px; color: #94A3B8; word-break: break-all;">{verification_hash}</p>
    <p style="margin: 16px 0 0; font-size: 13px;"><a href="{verify_url}" style="color: #1E3A8A;">Verify this certificate</a></p>
  </div>
</body>
</html>
"""


def build_verify_url(base_url: str, certificate_number: str) -> str:
    return f"{base_url}?{urlencode({'ref': certificate_number})}"


def render_certificate_html(certificate: "Certificate", verify_url: str) -> str:
    snapshot = certificate.snapshot
    return CERTIFICATE_TEMPLATE.format(
        certificate_number=escape(certificate.certificate_number),
        student_name=escape(snapshot.student_name),
        program_title=escape(snapshot.program_title),
        completed_date=escape(snapshot.completed_date),
        final_score=snapshot.final_score,
        grade=escape(snapshot.grade),
        completed_tasks=snapshot.completed_tasks,
        total_tasks=snapshot.total_tasks,
        verification_hash=escape(certificate.verification_hash),
        verify_url=escape(verify_url, quote=True),
    )


class CertificateRenderer:
    """Renders certificate documents and stores them."""

    def __init__(self, storage: "FirebaseStorageService"):
        self.storage = storage

    async def publish(self, certificate: "Certificate", verify_url: str) -> str:
        """Render and upload the certificate document.

        Returns:
            Public URL of the stored document

        Raises:
            StorageError: If storage is not configured or the upload fails
        """
        html = render_certificate_html(certificate, verify_url)
        url = await self.storage.upload_document(
            html.encode("utf-8"),
            DOCUMENT_CONTENT_TYPE,
            DOCUMENT_FOLDER,
            f"{certificate.certificate_number}.html",
        )
        logger.info(
            "certificate_document_published",
            certificate_id=str(certificate.certificate_id),
            document_url=url,
        )
        return url
