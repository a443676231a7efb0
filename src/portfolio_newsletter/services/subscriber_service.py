# ABOUTME: Service for managing newsletter subscriptions.
# ABOUTME: Handles subscribe, double opt-in confirmation, welcome email and token-based unsubscribe.

import asyncio
from collections.abc import Callable
from datetime import datetime, timedelta
from urllib.parse import quote

import structlog

from portfolio_newsletter.config import Settings, get_settings
from portfolio_newsletter.db.repository import (
    IssueRepository,
    SubscriberRepository,
    TokenRepository,
)
from portfolio_newsletter.email.composer import EmailComposer
from portfolio_newsletter.email.mailer import Mailer
from portfolio_newsletter.errors import (
    ConfigError,
    ExpiredTokenError,
    ForbiddenError,
    InvalidTokenError,
    MailError,
    StoreError,
    ValidationError,
)
from portfolio_newsletter.models import (
    ConfirmResult,
    ConfirmStatus,
    SubscribeResult,
    SubscribeStatus,
    SubscriberStatus,
    TokenType,
    UnsubscribeResult,
    UnsubscribeStatus,
    is_valid_email,
    normalize_email,
)
from portfolio_newsletter.services.storage import StorageService
from portfolio_newsletter.tokens import is_expired, issue_token, sha256_hex, short, utcnow

log = structlog.get_logger()


def confirm_url(site_url: str, raw_token: str) -> str:
    return f"{site_url}/newsletter/confirm/{quote(raw_token)}"


def unsubscribe_url(site_url: str, raw_token: str) -> str:
    return f"{site_url}/newsletter/unsubscribe/{quote(raw_token)}"


def extract_token(path_token: str | None, query_token: str | None) -> str:
    """Pick the token from a link; the path segment wins over ?token=."""
    return (path_token or "").strip() or (query_token or "").strip()


class SubscriptionManager:
    """Orchestrates the subscriber lifecycle against the token and subscriber stores."""

    def __init__(
        self,
        subscribers: SubscriberRepository,
        tokens: TokenRepository,
        issues: IssueRepository,
        mailer: Mailer,
        storage: StorageService | None = None,
        settings: Settings | None = None,
        composer: EmailComposer | None = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.subscribers = subscribers
        self.tokens = tokens
        self.issues = issues
        self.mailer = mailer
        self.storage = storage
        self.settings = settings or get_settings()
        self.composer = composer or EmailComposer()
        self.clock = clock

    @property
    def confirm_ttl(self) -> timedelta:
        return timedelta(hours=self.settings.confirm_token_ttl_hours)

    @property
    def unsubscribe_ttl(self) -> timedelta:
        return timedelta(days=self.settings.unsubscribe_token_ttl_days)

    async def subscribe(self, email: str) -> SubscribeResult:
        """Record a subscription request without sending anything.

        Args:
            email: Raw email address from the form.

        Returns:
            The current status: pending for new or pending rows, active for active rows.

        Raises:
            ValidationError: If the email is malformed.
            ForbiddenError: If the email has unsubscribed; resubscribing needs confirmation.
        """
        email = self._validated_email(email)

        existing = await self.subscribers.get_by_email(email)
        if existing:
            if existing.status == SubscriberStatus.UNSUBSCRIBED.value:
                log.info("subscribe_refused_unsubscribed", email=email)
                raise ForbiddenError("That email is unsubscribed.")
            log.info("subscription_exists", email=email, status=existing.status)
            return SubscribeResult(status=SubscribeStatus(existing.status))

        subscriber = await self.subscribers.create(email, self.clock())
        log.info("subscriber_created", email=email, id=subscriber.id)
        return SubscribeResult(status=SubscribeStatus.PENDING)

    async def subscribe_with_confirmation(self, email: str) -> SubscribeResult:
        """Subscribe and email a confirmation link plus a cancel link.

        An unsubscribed email is moved back to pending here; this is the only
        resubscribe path. Active subscribers get no email.

        Raises:
            ValidationError: If the email is malformed.
            ConfigError: If the site URL or sender is not configured.
            StoreError: If a write fails.
            MailError: If the confirmation email could not be sent. Tokens already
                written are left in place.
        """
        email = self._validated_email(email)
        self.settings.require("site_url", "mail_from")
        now = self.clock()

        subscriber = await self.subscribers.get_by_email(email)
        if subscriber is None:
            subscriber = await self.subscribers.create(email, now)
            status = SubscribeStatus.PENDING
            log.info("subscriber_created", email=email, id=subscriber.id)
        elif subscriber.status == SubscriberStatus.ACTIVE.value:
            log.info("already_subscribed", email=email)
            return SubscribeResult(status=SubscribeStatus.ACTIVE)
        elif subscriber.status == SubscriberStatus.UNSUBSCRIBED.value:
            await self.subscribers.set_status(subscriber.id, SubscriberStatus.PENDING.value)
            status = SubscribeStatus.RESUBSCRIBED
            log.info("resubscribing", email=email, id=subscriber.id)
        else:
            status = SubscribeStatus.RESENT
            log.info("confirmation_resent", email=email, id=subscriber.id)

        confirm_raw = await issue_token(
            self.tokens, subscriber.id, TokenType.CONFIRM.value, self.confirm_ttl, now
        )
        cancel_raw = await issue_token(
            self.tokens, subscriber.id, TokenType.UNSUBSCRIBE.value, self.unsubscribe_ttl, now
        )

        site_url = self.settings.site_url
        message = self.composer.confirmation(
            to=email,
            confirm_url=confirm_url(site_url, confirm_raw),
            cancel_url=unsubscribe_url(site_url, cancel_raw),
        )
        await self.mailer.send(message)

        log.info("confirmation_email_sent", email=email, status=status.value)
        return SubscribeResult(status=status)

    async def confirm(self, raw_token: str) -> ConfirmResult:
        """Activate the subscriber owning a confirm token.

        Token bookkeeping and the welcome email happen after activation;
        their failures are downgraded to a warning status, never rolled back.

        Raises:
            ValidationError: If the token is blank.
            ConfigError: If the site URL or sender is not configured.
            InvalidTokenError: If no confirm token has this value.
            ExpiredTokenError: If the token expired. The subscriber is untouched.
            StoreError: If the lookup or activation fails.
        """
        raw = self._validated_token(raw_token)
        self.settings.require("site_url", "mail_from")
        now = self.clock()

        token = await self.tokens.get_by_hash(sha256_hex(raw), TokenType.CONFIRM.value)
        if token is None:
            log.warning("confirm_invalid_token", token=short(raw))
            raise InvalidTokenError()
        # Rows loaded in this session expire if a later write rolls back
        token_id, subscriber_id = token.id, token.subscriber_id

        if token.used_at is not None:
            log.info("already_confirmed", subscriber_id=subscriber_id)
            return ConfirmResult(status=ConfirmStatus.ALREADY_CONFIRMED)

        if is_expired(token, now):
            log.info("confirm_token_expired", subscriber_id=subscriber_id)
            raise ExpiredTokenError()

        await self.subscribers.mark_confirmed(subscriber_id, now)
        log.info("subscriber_confirmed", subscriber_id=subscriber_id)

        try:
            consumed = await self.tokens.mark_used(token_id, now)
        except StoreError:
            log.warning("confirm_token_bookkeeping_failed", token_id=token_id)
            return ConfirmResult(status=ConfirmStatus.CONFIRMED_WITH_WARNING)

        if not consumed:
            # A concurrent request consumed it first and owns the welcome email
            log.info("confirm_token_raced", token_id=token_id)
            return ConfirmResult(status=ConfirmStatus.ALREADY_CONFIRMED)

        status = await self._send_welcome(subscriber_id, now)
        return ConfirmResult(status=status)

    async def unsubscribe(self, raw_token: str) -> UnsubscribeResult:
        """Unsubscribe the owner of an unsubscribe token.

        A pending subscriber reports canceled, an active one unsubscribed; both
        are stored as unsubscribed. Reusing a consumed token is a no-op.

        Raises:
            ValidationError: If the token is blank.
            InvalidTokenError: If no unsubscribe token has this value.
            ExpiredTokenError: If the token expired.
            StoreError: If a read or the status update fails.
        """
        raw = self._validated_token(raw_token)
        now = self.clock()

        token = await self.tokens.get_by_hash(sha256_hex(raw), TokenType.UNSUBSCRIBE.value)
        if token is None:
            log.warning("unsubscribe_invalid_token", token=short(raw))
            raise InvalidTokenError()
        token_id, subscriber_id = token.id, token.subscriber_id

        if is_expired(token, now):
            log.info("unsubscribe_token_expired", subscriber_id=subscriber_id)
            raise ExpiredTokenError()

        if token.used_at is not None:
            log.info("already_unsubscribed", subscriber_id=subscriber_id)
            return UnsubscribeResult(status=UnsubscribeStatus.ALREADY_DONE)

        subscriber = await self.subscribers.get_by_id(subscriber_id)
        if subscriber is not None and subscriber.status == SubscriberStatus.PENDING.value:
            status = UnsubscribeStatus.CANCELED
        else:
            status = UnsubscribeStatus.UNSUBSCRIBED

        await self.subscribers.set_status(subscriber_id, SubscriberStatus.UNSUBSCRIBED.value)

        try:
            await self.tokens.mark_used(token_id, now)
        except StoreError:
            log.warning("unsubscribe_token_bookkeeping_failed", token_id=token_id)

        log.info("subscriber_unsubscribed", subscriber_id=subscriber_id, action=status.value)
        return UnsubscribeResult(status=status)

    async def active_count(self) -> int:
        """Number of active subscribers."""
        return await self.subscribers.count_active()

    async def _send_welcome(self, subscriber_id: int, now: datetime) -> ConfirmStatus:
        """Send the one-time welcome email with the latest issue link."""
        try:
            subscriber = await self.subscribers.get_by_id(subscriber_id)
        except StoreError:
            log.warning("welcome_subscriber_lookup_failed", subscriber_id=subscriber_id)
            return ConfirmStatus.CONFIRMED_NO_WELCOME

        if subscriber is None:
            return ConfirmStatus.CONFIRMED_NO_WELCOME

        if subscriber.welcome_sent_at is not None:
            return ConfirmStatus.CONFIRMED

        try:
            unsubscribe_raw = await issue_token(
                self.tokens, subscriber_id, TokenType.UNSUBSCRIBE.value, self.unsubscribe_ttl, now
            )
            latest_url, latest_filename = await self._latest_issue_link()
            message = self.composer.welcome(
                to=subscriber.email,
                unsubscribe_url=unsubscribe_url(self.settings.site_url, unsubscribe_raw),
                latest_url=latest_url,
                latest_filename=latest_filename,
            )
            await self.mailer.send(message)
        except (StoreError, MailError, ConfigError) as e:
            log.warning("welcome_email_failed", subscriber_id=subscriber_id, error=str(e))
            return ConfirmStatus.CONFIRMED_NO_WELCOME

        try:
            await self.subscribers.mark_welcome_sent(subscriber_id, now)
        except StoreError:
            log.warning("welcome_bookkeeping_failed", subscriber_id=subscriber_id)

        log.info("welcome_email_sent", subscriber_id=subscriber_id, with_issue=bool(latest_url))
        return ConfirmStatus.CONFIRMED

    async def _latest_issue_link(self) -> tuple[str | None, str | None]:
        """Signed download URL and filename of the latest issue, if any."""
        try:
            latest = await self.issues.get_latest()
        except StoreError:
            # Welcome still goes out, with the placeholder
            return None, None

        if latest is None or not latest.storage_path or self.storage is None:
            return None, None

        ttl = timedelta(days=self.settings.latest_issue_url_ttl_days)
        url = await asyncio.to_thread(self.storage.signed_url, latest.storage_path, ttl)
        if not url:
            return None, None
        return url, latest.filename

    @staticmethod
    def _validated_email(email: str) -> str:
        email = normalize_email(email or "")
        if not is_valid_email(email):
            raise ValidationError("Invalid email address.")
        return email

    @staticmethod
    def _validated_token(raw_token: str | None) -> str:
        raw = (raw_token or "").strip()
        if not raw:
            raise ValidationError("Missing token.")
        return raw
