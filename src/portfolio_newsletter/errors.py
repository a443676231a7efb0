# ABOUTME: Exception taxonomy for the newsletter subsystem.
# ABOUTME: Each error carries a stable kind and the HTTP status the web layer maps it to.


class NewsletterError(Exception):
    """Base class for all expected newsletter failures."""

    kind = "error"
    status_code = 500

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message

    def to_dict(self) -> dict[str, object]:
        return {"ok": False, "error": self.message, "kind": self.kind}


class ValidationError(NewsletterError):
    """Malformed input: bad email, missing subject, disallowed upload."""

    kind = "invalid_input"
    status_code = 400


class ForbiddenError(NewsletterError):
    """The plain subscribe path refuses to reactivate an unsubscribed email."""

    kind = "forbidden"
    status_code = 400


class InvalidTokenError(NewsletterError):
    """No token row matches the presented value."""

    kind = "invalid_token"
    status_code = 400

    def __init__(self, message: str = "Invalid link.") -> None:
        super().__init__(message)


class ExpiredTokenError(NewsletterError):
    """The token row exists but its expiry has passed."""

    kind = "expired"
    status_code = 400

    def __init__(self, message: str = "Link expired.") -> None:
        super().__init__(message)


class RecipientNotEligibleError(NewsletterError):
    """A test recipient is unknown or not an active subscriber."""

    kind = "recipient_not_eligible"
    status_code = 400


class StoreError(NewsletterError):
    """Persistence failure in the database or blob storage."""

    kind = "store_error"
    status_code = 500


class MailError(NewsletterError):
    """The mail provider refused or failed to accept a message."""

    kind = "mail_error"
    status_code = 502


class RateLimitError(MailError):
    """The mail provider throttled the request; safe to retry later."""

    kind = "rate_limited"


class ConfigError(NewsletterError):
    """A required environment value is missing."""

    kind = "config_error"
    status_code = 500
