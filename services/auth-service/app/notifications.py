"""Out-of-band delivery of OTP codes."""

from __future__ import annotations

import logging
import smtplib
from dataclasses import dataclass
from email.message import EmailMessage
from typing import Protocol

from .domain.account import OtpPurpose
from .domain.validation import redact_email

logger = logging.getLogger(__name__)


class NotificationError(RuntimeError):
    """Raised when the delivery channel itself is unreachable."""


class NotificationChannel(Protocol):
    def send(self, purpose: OtpPurpose, recipient: str, code: str) -> bool:
        """Deliver ``code`` to ``recipient``; return whether delivery was accepted."""
        ...


@dataclass(frozen=True, slots=True)
class MessageTemplate:
    subject: str
    body: str


TEMPLATES: dict[OtpPurpose, MessageTemplate] = {
    OtpPurpose.RESET_PASSWORD: MessageTemplate(
        subject="Reset your password",
        body=(
            "We received a request to reset your password.\n\n"
            "Your one-time code is {code}. It expires in {ttl_minutes} minutes.\n\n"
            "If you did not request a reset you can ignore this message."
        ),
    ),
    OtpPurpose.UPDATE_PASSWORD: MessageTemplate(
        subject="Confirm your password change",
        body=(
            "Use the code {code} to confirm your password change. "
            "It expires in {ttl_minutes} minutes."
        ),
    ),
}


def render_message(
    purpose: OtpPurpose, *, sender: str, recipient: str, code: str, ttl_minutes: int
) -> EmailMessage:
    template = TEMPLATES[purpose]
    message = EmailMessage()
    message["Subject"] = template.subject
    message["From"] = sender
    message["To"] = recipient
    message.set_content(template.body.format(code=code, ttl_minutes=ttl_minutes))
    return message


class LoggingNotifier:
    """Development channel that records the delivery without sending anything."""

    def __init__(self) -> None:
        self.sent: list[tuple[OtpPurpose, str]] = []

    def send(self, purpose: OtpPurpose, recipient: str, code: str) -> bool:
        self.sent.append((purpose, recipient))
        logger.info("otp %s delivery to %s (log backend)", purpose.value, redact_email(recipient))
        return True


class SmtpNotifier:
    """Sends OTP emails through an SMTP relay."""

    def __init__(
        self,
        *,
        host: str,
        port: int,
        sender: str,
        username: str = "",
        password: str = "",
        starttls: bool = True,
        ttl_minutes: int = 10,
        timeout: float = 10.0,
    ) -> None:
        self._host = host
        self._port = port
        self._sender = sender
        self._username = username
        self._password = password
        self._starttls = starttls
        self._ttl_minutes = ttl_minutes
        self._timeout = timeout

    def _connect(self) -> smtplib.SMTP:
        return smtplib.SMTP(host=self._host, port=self._port, timeout=self._timeout)

    def send(self, purpose: OtpPurpose, recipient: str, code: str) -> bool:
        message = render_message(
            purpose,
            sender=self._sender,
            recipient=recipient,
            code=code,
            ttl_minutes=self._ttl_minutes,
        )
        try:
            with self._connect() as conn:
                if self._starttls:
                    conn.starttls()
                if self._username:
                    conn.login(self._username, self._password)
                conn.send_message(message)
        except smtplib.SMTPRecipientsRefused:
            logger.warning("smtp relay refused recipient %s", redact_email(recipient))
            return False
        except (smtplib.SMTPException, OSError) as exc:
            logger.error("smtp delivery to %s failed: %s", redact_email(recipient), exc)
            raise NotificationError("notification channel unavailable") from exc
        return True
