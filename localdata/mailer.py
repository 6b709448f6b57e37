"""Delivery of password reset codes.

Two transports are provided: :class:`DevMailer` logs and records messages in
memory (local development and tests) and :class:`SMTPMailer` hands them to an
SMTP relay. Neither logs the reset code itself.
"""
from __future__ import annotations

import logging
import smtplib
from dataclasses import dataclass, field
from datetime import datetime
from email.message import EmailMessage
from typing import List, Optional
from urllib.parse import quote

import anyio

logger = logging.getLogger("localdata.mailer")

RESET_SUBJECT = "Reset your LocalData password"


@dataclass(frozen=True)
class ResetMessage:
    recipient: str
    subject: str
    body: str
    code: str
    expires_at: datetime


def build_reset_message(
    recipient: str,
    code: str,
    expires_at: datetime,
    *,
    link_template: str,
) -> ResetMessage:
    """Compose the reset email; ``link_template`` must contain ``{code}``."""

    link = link_template.format(code=quote(code, safe=""))
    body = (
        "Someone asked to reset the password for this account.\n\n"
        f"To choose a new password, open this link before {expires_at:%Y-%m-%d %H:%M %Z}:\n\n"
        f"{link}\n\n"
        "If you did not ask for a reset you can ignore this message.\n"
    )
    return ResetMessage(
        recipient=recipient,
        subject=RESET_SUBJECT,
        body=body,
        code=code,
        expires_at=expires_at,
    )


class ResetMailer:
    async def send(self, message: ResetMessage) -> None:
        raise NotImplementedError


@dataclass
class DevMailer(ResetMailer):
    """Log messages instead of sending them and keep them for inspection."""

    sent: List[ResetMessage] = field(default_factory=list)
    log_level: int = logging.INFO

    async def send(self, message: ResetMessage) -> None:
        self.sent.append(message)
        logger.log(
            self.log_level,
            "EMAIL (dev): To=%s, Subject=%s, Expires=%s",
            message.recipient,
            message.subject,
            message.expires_at.isoformat(),
        )

    def last_message(self) -> Optional[ResetMessage]:
        return self.sent[-1] if self.sent else None

    def messages_to(self, recipient: str) -> List[ResetMessage]:
        return [message for message in self.sent if message.recipient == recipient]


class SMTPMailer(ResetMailer):
    """Send reset messages through an SMTP relay."""

    def __init__(
        self,
        host: str,
        *,
        port: int = 587,
        sender: str,
        username: Optional[str] = None,
        password: Optional[str] = None,
        starttls: bool = True,
        timeout: float = 10.0,
    ) -> None:
        self._host = host
        self._port = port
        self._sender = sender
        self._username = username
        self._password = password
        self._starttls = starttls
        self._timeout = timeout

    async def send(self, message: ResetMessage) -> None:
        await anyio.to_thread.run_sync(self._send_blocking, message)
        logger.info("Password reset email sent to %s", message.recipient)

    def _send_blocking(self, message: ResetMessage) -> None:
        email = EmailMessage()
        email["From"] = self._sender
        email["To"] = message.recipient
        email["Subject"] = message.subject
        email.set_content(message.body)

        with smtplib.SMTP(self._host, self._port, timeout=self._timeout) as client:
            if self._starttls:
                client.starttls()
            if self._username:
                client.login(self._username, self._password or "")
            client.send_message(email)


__all__ = [
    "DevMailer",
    "RESET_SUBJECT",
    "ResetMailer",
    "ResetMessage",
    "SMTPMailer",
    "build_reset_message",
]
