# ABOUTME: Pydantic models for newsletter request and result values.
# ABOUTME: Defines subscriber/token enums, operation results and the bulk send report.

import re
from enum import Enum

from pydantic import BaseModel, Field

EMAIL_PATTERN = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")


class SubscriberStatus(str, Enum):
    """Persisted subscriber lifecycle status."""

    PENDING = "pending"
    ACTIVE = "active"
    UNSUBSCRIBED = "unsubscribed"


class TokenType(str, Enum):
    """Capability granted by a token."""

    CONFIRM = "confirm"
    UNSUBSCRIBE = "unsubscribe"


class SubscribeStatus(str, Enum):
    """Outcome reported to the caller of a subscribe request."""

    PENDING = "pending"
    RESENT = "resent"
    RESUBSCRIBED = "resubscribed"
    ACTIVE = "active"


class ConfirmStatus(str, Enum):
    """Outcome of following a confirmation link."""

    CONFIRMED = "confirmed"
    ALREADY_CONFIRMED = "already_confirmed"
    CONFIRMED_WITH_WARNING = "confirmed_with_warning"
    CONFIRMED_NO_WELCOME = "confirmed_no_welcome"


class UnsubscribeStatus(str, Enum):
    """Outcome of following an unsubscribe link."""

    UNSUBSCRIBED = "unsubscribed"
    CANCELED = "canceled"
    ALREADY_DONE = "already_done"


def normalize_email(email: str) -> str:
    """Trim and lowercase an email address."""
    return email.strip().lower()


def is_valid_email(email: str) -> bool:
    """Basic local@domain.tld shape check."""
    return bool(EMAIL_PATTERN.match(email))


class SubscribeResult(BaseModel):
    status: SubscribeStatus

    def to_dict(self) -> dict[str, object]:
        return {"ok": True, "status": self.status.value}


class ConfirmResult(BaseModel):
    status: ConfirmStatus

    def to_dict(self) -> dict[str, object]:
        return {"ok": True, "status": self.status.value}


class UnsubscribeResult(BaseModel):
    status: UnsubscribeStatus

    def to_dict(self) -> dict[str, object]:
        return {"ok": True, "status": self.status.value}


class Recipient(BaseModel):
    """Subscriber selected for a bulk send."""

    id: int
    email: str


class FailedRecipient(BaseModel):
    email: str
    error: str


class SendReport(BaseModel):
    """Per-batch outcome of a bulk send.

    The batch is reported as ok even when some recipients failed.
    """

    sent: int = 0
    failed: list[FailedRecipient] = Field(default_factory=list)

    @property
    def failed_count(self) -> int:
        return len(self.failed)

    def to_dict(self) -> dict[str, object]:
        return {
            "ok": True,
            "sent": self.sent,
            "failedCount": self.failed_count,
            "failed": [f.model_dump() for f in self.failed],
        }


class IssueUpload(BaseModel):
    """A newsletter issue uploaded by the administrator."""

    subject: str
    filename: str
    content: bytes


class ContactMessage(BaseModel):
    """A message submitted through the contact form."""

    name: str = ""
    email: str = ""
    subject: str = ""
    message: str = ""
    company: str = ""  # honeypot
