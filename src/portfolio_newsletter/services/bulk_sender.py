# ABOUTME: Bulk newsletter delivery to active subscribers with per-recipient isolation.
# ABOUTME: Retries provider rate limits with exponential backoff and records the latest issue.

import asyncio
from collections.abc import Awaitable, Callable
from datetime import datetime, timedelta
from pathlib import PurePath

import structlog
from tenacity import (
    AsyncRetrying,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from portfolio_newsletter.config import Settings, get_settings
from portfolio_newsletter.db.models import NewsletterIssue
from portfolio_newsletter.db.repository import (
    IssueRepository,
    SubscriberRepository,
    TokenRepository,
)
from portfolio_newsletter.email.composer import EmailComposer
from portfolio_newsletter.email.mailer import (
    Attachment,
    Mailer,
    OutgoingEmail,
    describe_error,
    is_rate_limit_error,
)
from portfolio_newsletter.errors import (
    ConfigError,
    NewsletterError,
    RecipientNotEligibleError,
    ValidationError,
)
from portfolio_newsletter.models import (
    FailedRecipient,
    IssueUpload,
    Recipient,
    SendReport,
    SubscriberStatus,
    TokenType,
    normalize_email,
)
from portfolio_newsletter.services.storage import StorageService, build_storage_path
from portfolio_newsletter.services.subscriber_service import unsubscribe_url
from portfolio_newsletter.tokens import issue_token, utcnow

log = structlog.get_logger()

ALLOWED_MIME_TYPES = {
    "pdf": "application/pdf",
    "docx": "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
}


def attachment_mime_type(filename: str) -> str:
    """MIME type for an allowed attachment.

    Raises:
        ValidationError: If the extension is not pdf or docx.
    """
    extension = PurePath(filename).suffix.lower().lstrip(".")
    if extension not in ALLOWED_MIME_TYPES:
        raise ValidationError("Only .pdf or .docx files are allowed.")
    return ALLOWED_MIME_TYPES[extension]


class BulkSender:
    """Sends one email per active subscriber, sequentially and throttled.

    A recipient that fails after retries is recorded in the report and the
    loop moves on; the batch as a whole still succeeds. Each unsubscribe
    token is committed before its email goes out, so links already delivered
    stay valid if the batch fails afterwards.
    """

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
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.subscribers = subscribers
        self.tokens = tokens
        self.issues = issues
        self.mailer = mailer
        self.storage = storage
        self.settings = settings or get_settings()
        self.composer = composer or EmailComposer()
        self.clock = clock
        self.sleep = sleep

    async def send_issue(self, upload: IssueUpload, test_email: str | None = None) -> SendReport:
        """Send an uploaded pdf/docx issue as an attachment.

        Args:
            upload: Subject, filename and file bytes.
            test_email: Send only to this active subscriber instead of everyone.

        Returns:
            Counts plus the per-address failure list.

        Raises:
            ValidationError: Missing subject, empty or oversized file, wrong type.
            ConfigError: Missing site URL, sender or storage bucket.
            RecipientNotEligibleError: Test address unknown or not active.
            StoreError: Recipient lookup, upload or issue bookkeeping failed.
        """
        subject = upload.subject.strip()
        filename = PurePath(upload.filename.strip() or "newsletter").name
        if not subject:
            raise ValidationError("Missing subject.")
        if not upload.content:
            raise ValidationError("Missing file upload.")
        mime_type = attachment_mime_type(filename)
        if len(upload.content) > self.settings.max_attachment_bytes:
            max_mb = self.settings.max_attachment_bytes // (1024 * 1024)
            raise ValidationError(f"File too large (max {max_mb}MB).")

        self.settings.require("site_url", "mail_from")
        if self.storage is None or not self.storage.is_enabled:
            raise ConfigError("Missing GCS_BUCKET env var.")
        recipients = await self.resolve_recipients(test_email)

        storage_path = build_storage_path(filename)
        await asyncio.to_thread(self.storage.upload_bytes, upload.content, storage_path, mime_type)

        attachment = Attachment(filename=filename, content=upload.content, mime_type=mime_type)
        report = await self._deliver(
            recipients,
            lambda recipient, unsub_url: self.composer.issue(
                recipient.email, subject, attachment, unsub_url
            ),
        )

        if report.sent > 0:
            issue = NewsletterIssue(
                subject=subject,
                filename=filename,
                storage_path=storage_path,
                mime_type=mime_type,
                created_at=self.clock(),
            )
            await self.issues.promote_latest(issue)
        else:
            log.warning("issue_not_recorded", reason="no_successful_sends", filename=filename)

        return report

    async def send_html(
        self, subject: str, html: str, test_email: str | None = None
    ) -> SendReport:
        """Broadcast an HTML body without attachment or issue bookkeeping.

        Raises:
            ValidationError: Missing subject or body.
            ConfigError: Missing site URL or sender.
            RecipientNotEligibleError: Test address unknown or not active.
        """
        subject = subject.strip()
        html = html.strip()
        if not subject or not html:
            raise ValidationError("Missing subject or html.")

        self.settings.require("site_url", "mail_from")
        recipients = await self.resolve_recipients(test_email)

        return await self._deliver(
            recipients,
            lambda recipient, unsub_url: self.composer.broadcast(
                recipient.email, subject, html, unsub_url
            ),
        )

    async def resolve_recipients(self, test_email: str | None = None) -> list[Recipient]:
        """Either one active test subscriber or every active subscriber."""
        test_email = normalize_email(test_email or "")
        if test_email:
            subscriber = await self.subscribers.get_by_email(test_email)
            if subscriber is None:
                raise RecipientNotEligibleError("Test email not found in DB.")
            if subscriber.status != SubscriberStatus.ACTIVE.value:
                raise RecipientNotEligibleError(
                    f"Test email is not active (status={subscriber.status}). "
                    "Subscribe + confirm first."
                )
            return [Recipient(id=subscriber.id, email=subscriber.email)]

        subscribers = await self.subscribers.list_active()
        return [Recipient(id=s.id, email=s.email) for s in subscribers]

    async def send_with_retry(self, email: OutgoingEmail) -> None:
        """Send one email, retrying only when the provider rate-limits.

        Backoff doubles from send_backoff_seconds (0.7s, 1.4s, 2.8s by default).
        The last error is re-raised once attempts run out.
        """
        retrying = AsyncRetrying(
            retry=retry_if_exception(is_rate_limit_error),
            stop=stop_after_attempt(self.settings.send_max_attempts),
            wait=wait_exponential(multiplier=self.settings.send_backoff_seconds, min=0),
            sleep=self.sleep,
            before_sleep=lambda retry_state: log.warning(
                "send_rate_limited_retry",
                to=email.to,
                attempt=retry_state.attempt_number,
                wait=retry_state.next_action.sleep,
            ),
            reraise=True,
        )
        async for attempt in retrying:
            with attempt:
                await self.mailer.send(email)

    async def _deliver(
        self,
        recipients: list[Recipient],
        compose: Callable[[Recipient, str], OutgoingEmail],
    ) -> SendReport:
        report = SendReport()
        unsubscribe_ttl = timedelta(days=self.settings.unsubscribe_token_ttl_days)
        log.info("bulk_send_start", recipient_count=len(recipients))

        for recipient in recipients:
            try:
                raw = await issue_token(
                    self.tokens,
                    recipient.id,
                    TokenType.UNSUBSCRIBE.value,
                    unsubscribe_ttl,
                    self.clock(),
                )
                email = compose(recipient, unsubscribe_url(self.settings.site_url, raw))
                await self.send_with_retry(email)
                report.sent += 1
            except Exception as e:
                # Any per-recipient failure is recorded; the batch continues
                error = e.message if isinstance(e, NewsletterError) else describe_error(e)
                log.warning("bulk_send_recipient_failed", email=recipient.email, error=error)
                report.failed.append(FailedRecipient(email=recipient.email, error=error))

            await self.sleep(self.settings.send_throttle_seconds)

        log.info("bulk_send_complete", sent=report.sent, failed=report.failed_count)
        return report
