# ABOUTME: Email module initialization.
# ABOUTME: Exports the mailer interface, SMTP implementation and template composer.

from portfolio_newsletter.email.composer import EmailComposer
from portfolio_newsletter.email.mailer import (
    Attachment,
    Mailer,
    OutgoingEmail,
    SmtpMailer,
    is_rate_limit_error,
)

__all__ = [
    "Attachment",
    "EmailComposer",
    "Mailer",
    "OutgoingEmail",
    "SmtpMailer",
    "is_rate_limit_error",
]
