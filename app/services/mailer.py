"""Transactional email delivery over the Brevo-compatible HTTP API."""
from __future__ import annotations

import logging

import requests

from app.config import Settings, get_settings

logger = logging.getLogger(__name__)


class MailerError(RuntimeError):
    """Raised when the email API rejects or cannot receive a message."""


class EmailSender:
    """Posts single HTML messages to the configured email API."""

    def __init__(self, settings: Settings) -> None:
        self.settings = settings
        self._session = requests.Session()

    @classmethod
    def from_env(cls) -> "EmailSender":
        return cls(get_settings())

    @property
    def enabled(self) -> bool:
        return bool(self.settings.MAIL_API_KEY)

    def send(self, *, to: str, subject: str, html: str) -> bool:
        """Send one message; returns ``False`` when delivery is disabled."""

        if not self.enabled:
            logger.info("Email delivery disabled; message dropped", extra={"subject": subject})
            return False

        payload = {
            "sender": {"email": self.settings.MAIL_FROM, "name": self.settings.PLATFORM_NAME},
            "to": [{"email": to}],
            "subject": subject,
            "htmlContent": html,
        }
        headers = {"api-key": self.settings.MAIL_API_KEY, "Content-Type": "application/json"}
        try:
            response = self._session.post(
                self.settings.MAIL_API_URL,
                json=payload,
                headers=headers,
                timeout=self.settings.MAIL_TIMEOUT_SECONDS,
            )
            response.raise_for_status()
        except requests.RequestException as exc:
            raise MailerError(str(exc)) from exc
        return True

    def close(self) -> None:
        self._session.close()


__all__ = ["EmailSender", "MailerError"]
