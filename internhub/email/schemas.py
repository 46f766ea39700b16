"""Outgoing notification email and the outcome of one send attempt."""

from pydantic import BaseModel, EmailStr, Field


class NotificationEmail(BaseModel):
    """A transactional email to a single student."""

    to: EmailStr
    to_name: str | None = None
    subject: str = Field(..., min_length=1, max_length=998)
    body_html: str = Field(..., min_length=1)
    body_text: str | None = Field(None, description="Plain-text alternative")

    @property
    def to_header(self) -> str:
        return f"{self.to_name} <{self.to}>" if self.to_name else str(self.to)


class DeliveryResult(BaseModel):
    """Failures are reported here, never raised."""

    sent: bool
    message_id: str | None = None
    error: str | None = None
