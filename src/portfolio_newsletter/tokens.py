# ABOUTME: Opaque bearer token helpers for confirm and unsubscribe links.
# ABOUTME: Generates raw tokens, hashes them for storage, and checks expiry.

import hashlib
import secrets
from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING

import structlog

if TYPE_CHECKING:
    from portfolio_newsletter.db.models import NewsletterToken
    from portfolio_newsletter.db.repository import TokenRepository

log = structlog.get_logger()

RAW_TOKEN_BYTES = 32


def utcnow() -> datetime:
    return datetime.now(UTC)


def generate_raw_token() -> str:
    """Generate a high-entropy raw token (64 hex chars)."""
    return secrets.token_hex(RAW_TOKEN_BYTES)


def sha256_hex(raw: str) -> str:
    """Hash a raw token; only this value is ever persisted."""
    return hashlib.sha256(raw.encode("utf-8")).hexdigest()


def as_utc(value: datetime) -> datetime:
    """Treat naive datetimes from the store as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value


def is_expired(token: "NewsletterToken", now: datetime) -> bool:
    """A token without expiry never expires."""
    return token.expires_at is not None and as_utc(token.expires_at) <= now


def short(raw: str) -> str:
    """Token prefix safe to write to logs."""
    return raw[:8] + "..."


async def issue_token(
    repo: "TokenRepository",
    subscriber_id: int,
    token_type: str,
    ttl: timedelta | None,
    now: datetime,
) -> str:
    """Mint a token for a subscriber and return the raw value.

    The raw value is returned exactly once; the caller embeds it in a link.
    """
    raw = generate_raw_token()
    expires_at = now + ttl if ttl is not None else None
    await repo.create(subscriber_id, token_type, sha256_hex(raw), expires_at)
    log.debug("token_issued", subscriber_id=subscriber_id, type=token_type)
    return raw
