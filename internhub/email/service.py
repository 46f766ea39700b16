"""Notification email over the Gmail API.

Sends as the configured Workspace address through a service account with
domain-wide delegation on the ``gmail.send`` scope.
"""

import asyncio
import base64
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from pathlib import Path
from typing import TYPE_CHECKING, Any

from google.oauth2 import service_account
from googleapiclient.discovery import build
from googleapiclient.errors import HttpError

from internhub.core.logging import get_logger

from .schemas import DeliveryResult, NotificationEmail


if TYPE_CHECKING:
    from internhub.config.settings import Settings


logger = get_logger(__name__)

GMAIL_SCOPES = ["https://www.googleapis.com/auth/gmail.send"]


def build_raw_message(email: NotificationEmail, sender: str) -> dict[str, str]:
    """MIME-encode ``email`` into the base64url ``raw`` body Gmail expects."""
    message = MIMEMultipart("alternative")
    message["From"] = sender
    message["To"] = email.to_header
    message["Subject"] = email.subject
    # Clients render the last alternative they support, so HTML goes last
    if email.body_text:
        message.attach(MIMEText(email.body_text, "plain", "utf-8"))
    message.attach(MIMEText(email.body_html, "html", "utf-8"))
    return {"raw": base64.urlsafe_b64encode(message.as_bytes()).decode("ascii")}


class EmailService:
    """Delivers notification email; delivery problems come back as results."""

    def __init__(
        self,
        credentials_path: str,
        sender_address: str,
        sender_name: str = "InternHub",
    ):
        self.credentials_path = Path(credentials_path)
        self.sender_address = sender_address
        self.sender = f"{sender_name} <{sender_address}>"
        self._gmail: Any = None

        if not self.credentials_path.exists():
            logger.warning("email_credentials_not_found", path=str(self.credentials_path))

    @classmethod
    def from_settings(cls, settings: "Settings") -> "EmailService":
        return cls(
            credentials_path=settings.email_credentials_path,
            sender_address=settings.email_sender_address,
            sender_name=settings.email_sender_name,
        )

    def _client(self) -> Any:
        """Gmail API resource, built on first use.

        Raises:
            FileNotFoundError: If the service account file is missing
        """
        if self._gmail is None:
            if not self.credentials_path.exists():
                msg = f"Credentials file not found: {self.credentials_path}"
                raise FileNotFoundError(msg)
            credentials = service_account.Credentials.from_service_account_file(
                str(self.credentials_path), scopes=GMAIL_SCOPES
            ).with_subject(self.sender_address)
            self._gmail = build("gmail", "v1", credentials=credentials, cache_discovery=False)
            logger.info("gmail_client_built", sender=self.sender_address)
        return self._gmail

    def _send_blocking(self, raw: dict[str, str]) -> dict[str, Any]:
        return self._client().users().messages().send(userId="me", body=raw).execute()

    async def send(self, email: NotificationEmail) -> DeliveryResult:
        """Send one email from a worker thread (the Gmail client is synchronous)."""
        try:
            result = await asyncio.to_thread(
                self._send_blocking, build_raw_message(email, self.sender)
            )
        except HttpError as e:
            logger.exception("email_send_failed", status=e.status_code)
            return DeliveryResult(sent=False, error=f"Gmail API error: {e.status_code}")
        except FileNotFoundError as e:
            logger.error("email_credentials_missing", error=str(e))
            return DeliveryResult(sent=False, error="Email credentials missing")
        except Exception as e:
            logger.exception("email_send_unexpected_error")
            return DeliveryResult(sent=False, error=type(e).__name__)

        logger.info("email_sent", message_id=result.get("id"), subject=email.subject[:50])
        return DeliveryResult(sent=True, message_id=result.get("id"))
