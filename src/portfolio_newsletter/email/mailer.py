# ABOUTME: Transactional mail delivery over an SMTP relay (e.g. AWS SES).
# ABOUTME: Defines the Mailer interface, SMTP implementation and the rate-limit classifier.

from __future__ import annotations

import asyncio
import re
import smtplib
from dataclasses import dataclass, field
from email.message import EmailMessage
from email.utils import formataddr, parseaddr
from typing import Protocol

import structlog

from portfolio_newsletter.config import Settings, get_settings
from portfolio_newsletter.errors import ConfigError, MailError, RateLimitError

log = structlog.get_logger()

# A bare 429 counts only as a standalone code, never inside an address or id
RATE_LIMIT_PATTERN = re.compile(
    r"(?<![\w.@-])429(?![\w.@-])"
    r"|too many|rate limit|rate_limit_exceeded|throttling|maximum sending rate",
    re.IGNORECASE,
)


@dataclass
class Attachment:
    filename: str
    content: bytes
    mime_type: str = "application/octet-stream"


@dataclass
class OutgoingEmail:
    """A single message addressed to one recipient."""

    to: str
    subject: str
    html: str
    text: str | None = None
    reply_to: str | None = None
    from_name: str | None = None
    attachments: list[Attachment] = field(default_factory=list)


class Mailer(Protocol):
    """Send-one-email operation of the mail provider."""

    async def send(self, email: OutgoingEmail) -> None:
        """Deliver a message or raise MailError / RateLimitError."""
        ...


def describe_error(error: BaseException | str | None) -> str:
    """Render a provider error as a single human-readable line."""
    if error is None:
        return "Unknown error"
    if isinstance(error, str):
        return error
    if isinstance(error, smtplib.SMTPResponseException):
        detail = error.smtp_error
        if isinstance(detail, bytes):
            detail = detail.decode("utf-8", errors="replace")
        return f"{error.smtp_code} {detail}".strip()
    message = str(error)
    return message or type(error).__name__


def is_rate_limit_error(error: BaseException | str | None) -> bool:
    """Decide whether a provider failure is throttling and worth retrying.

    All knowledge of the provider's rate-limit wording lives here.
    """
    if isinstance(error, RateLimitError):
        return True
    status = getattr(error, "status_code", None)
    if status == 429:
        return True
    return RATE_LIMIT_PATTERN.search(describe_error(error)) is not None


class SmtpMailer:
    """Sends messages via SMTP with STARTTLS and login."""

    def __init__(self, settings: Settings | None = None) -> None:
        self.settings = settings or get_settings()

    def build_message(self, email: OutgoingEmail) -> EmailMessage:
        """Build the MIME message for an outgoing email."""
        if not self.settings.mail_from:
            raise ConfigError("Missing MAIL_FROM env var.")

        sender_name, sender_addr = parseaddr(self.settings.mail_from)
        if email.from_name:
            sender_name = email.from_name

        message = EmailMessage()
        message["Subject"] = email.subject
        message["From"] = formataddr((sender_name, sender_addr))
        message["To"] = email.to
        if email.reply_to:
            message["Reply-To"] = email.reply_to

        message.set_content(email.text or "This message requires an HTML capable mail client.")
        message.add_alternative(email.html, subtype="html")

        for attachment in email.attachments:
            maintype, _, subtype = attachment.mime_type.partition("/")
            message.add_attachment(
                attachment.content,
                maintype=maintype,
                subtype=subtype or "octet-stream",
                filename=attachment.filename,
            )
        return message

    async def send(self, email: OutgoingEmail) -> None:
        """Send one email without blocking the event loop."""
        message = self.build_message(email)
        await asyncio.to_thread(self._send_smtp, message)
        log.info("email_sent", to=email.to, subject=email.subject)

    def _send_smtp(self, message: EmailMessage) -> None:
        """Send email via SMTP."""
        if not self.settings.smtp_username or not self.settings.smtp_password:
            raise ConfigError(
                "SMTP credentials not configured. Set SMTP_USERNAME and SMTP_PASSWORD."
            )

        log.debug(
            "connecting_smtp",
            host=self.settings.smtp_host,
            port=self.settings.smtp_port,
        )

        try:
            with smtplib.SMTP(
                self.settings.smtp_host,
                self.settings.smtp_port,
                timeout=self.settings.smtp_timeout,
            ) as server:
                server.ehlo()
                server.starttls()
                server.ehlo()
                server.login(
                    self.settings.smtp_username.get_secret_value(),
                    self.settings.smtp_password.get_secret_value(),
                )
                server.send_message(message)
        except (smtplib.SMTPException, OSError) as e:
            detail = describe_error(e)
            if is_rate_limit_error(e):
                log.warning("smtp_rate_limited", to=message["To"], error=detail)
                raise RateLimitError(detail) from e
            log.error("smtp_send_failed", to=message["To"], error=detail)
            raise MailError(detail) from e
