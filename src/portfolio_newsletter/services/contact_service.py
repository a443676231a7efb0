# ABOUTME: Relays contact-form messages to the site owner by email.
# ABOUTME: Validates input, drops honeypot submissions and sets reply-to the visitor.

import re
from email.utils import formataddr

import structlog

from portfolio_newsletter.config import Settings, get_settings
from portfolio_newsletter.email.composer import EmailComposer
from portfolio_newsletter.email.mailer import Mailer
from portfolio_newsletter.errors import ConfigError, ValidationError
from portfolio_newsletter.models import ContactMessage, is_valid_email

log = structlog.get_logger()

MAX_NAME_LENGTH = 120
MAX_EMAIL_LENGTH = 200
MAX_MESSAGE_LENGTH = 1000
MAX_SUBJECT_LENGTH = 200

_UNSAFE_NAME_CHARS = re.compile(r"[^\w\s.'-]|_")


def safe_display_name(name: str) -> str:
    """Strip a visitor name down to letters, digits, spaces and .'-"""
    cleaned = _UNSAFE_NAME_CHARS.sub("", name)[:60].strip()
    return cleaned or "Website Visitor"


class ContactService:
    """Sends contact messages to the configured owner address."""

    def __init__(
        self,
        mailer: Mailer,
        settings: Settings | None = None,
        composer: EmailComposer | None = None,
    ) -> None:
        self.mailer = mailer
        self.settings = settings or get_settings()
        self.composer = composer or EmailComposer()

    async def send(self, form: ContactMessage) -> bool:
        """Validate and relay a contact message.

        Returns:
            True if an email was sent, False for a silently dropped bot submission.

        Raises:
            ValidationError: Missing or oversized name, email or message.
            ConfigError: No sender or owner address configured.
        """
        name = form.name.strip()
        email = form.email.strip()
        topic = form.subject.strip()
        message = form.message.strip()

        if form.company.strip():
            log.info("contact_honeypot_triggered")
            return False

        if not name or len(name) > MAX_NAME_LENGTH:
            raise ValidationError("Please enter your name.")
        if not email or len(email) > MAX_EMAIL_LENGTH or not is_valid_email(email):
            raise ValidationError("Please enter a valid email.")
        if not message or len(message) > MAX_MESSAGE_LENGTH:
            raise ValidationError("Please enter a message (max 1000 characters).")

        if not self.settings.mail_from or not self.settings.contact_to:
            raise ConfigError("Server is not configured for contact messages yet.")

        if topic:
            subject = f"Portfolio contact: {topic}"
        else:
            subject = f"Portfolio contact from {name}"

        display_name = safe_display_name(name)
        outgoing = self.composer.contact(
            to=self.settings.contact_to,
            subject=subject[:MAX_SUBJECT_LENGTH],
            name=name,
            email=email,
            message=message,
            topic=topic,
            from_name=f"{display_name} via {self.settings.site_name}",
            reply_to=formataddr((display_name, email)),
        )
        await self.mailer.send(outgoing)

        log.info("contact_message_sent", reply_to=email)
        return True
