"""Transactional email via the Gmail API."""

from internhub.email.service import EmailService


__all__ = ["EmailService"]
