from __future__ import annotations

import logging
import smtplib
from dataclasses import dataclass
from email.message import EmailMessage
from typing import Any, Dict

from .download import tls_context

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SmtpSettings:
    server: str
    port: int
    user: str
    recipient: str
    password: str
    verify_tls: bool = False

    @classmethod
    def from_config(cls, smtp: Dict[str, Any], password: str) -> "SmtpSettings":
        return cls(
            server=str(smtp.get("server") or "smtp.office365.com"),
            port=int(smtp.get("port") or 587),
            user=str(smtp.get("user") or ""),
            recipient=str(smtp.get("recipient") or ""),
            password=password,
            verify_tls=bool(smtp.get("verify_tls", False)),
        )


def build_message(subject: str, body: str, *, sender: str, recipient: str) -> EmailMessage:
    msg = EmailMessage()
    msg["Subject"] = subject
    msg["From"] = sender
    msg["To"] = recipient
    msg.set_content(body)
    return msg


def send_email(settings: SmtpSettings, subject: str, body: str, *, dry_run: bool = False) -> None:
    """Send a plain-text message through an authenticated STARTTLS relay."""

    if not settings.user or not settings.recipient:
        raise RuntimeError("smtp.user and smtp.recipient must be configured")

    msg = build_message(subject, body, sender=settings.user, recipient=settings.recipient)
    logger.info("Mail %r -> %s via %s:%s", subject, settings.recipient, settings.server, settings.port)
    if dry_run:
        return

    ctx = tls_context(settings.verify_tls)
    with smtplib.SMTP(settings.server, settings.port, timeout=60) as smtp:
        smtp.ehlo()
        smtp.starttls(context=ctx)
        smtp.ehlo()
        smtp.login(settings.user, settings.password)
        smtp.send_message(msg)
