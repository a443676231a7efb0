# ABOUTME: Pytest fixtures and configuration for newsletter tests.
# ABOUTME: Provides settings, in-memory repositories, a recording mailer, clock and sleep.

from datetime import UTC, datetime, timedelta
from unittest.mock import MagicMock

import pytest
from pydantic import SecretStr

from portfolio_newsletter.config import Settings
from portfolio_newsletter.db.models import NewsletterIssue, NewsletterToken, Subscriber
from portfolio_newsletter.email.mailer import OutgoingEmail
from portfolio_newsletter.errors import StoreError
from portfolio_newsletter.services.storage import StorageService

NOW = datetime(2026, 10, 19, 12, 0, 0, tzinfo=UTC)


class FakeSubscriberRepository:
    """In-memory stand-in for SubscriberRepository."""

    def __init__(self) -> None:
        self.rows: dict[int, Subscriber] = {}
        self._next_id = 1
        self.fail_reads = False

    async def get_by_id(self, subscriber_id: int) -> Subscriber | None:
        if self.fail_reads:
            raise StoreError("db down")
        return self.rows.get(subscriber_id)

    async def get_by_email(self, email: str) -> Subscriber | None:
        if self.fail_reads:
            raise StoreError("db down")
        return next((s for s in self.rows.values() if s.email == email), None)

    async def create(self, email: str, subscribed_at: datetime) -> Subscriber:
        subscriber = Subscriber(
            id=self._next_id, email=email, status="pending", subscribed_at=subscribed_at
        )
        self.rows[subscriber.id] = subscriber
        self._next_id += 1
        return subscriber

    async def set_status(self, subscriber_id: int, status: str) -> None:
        self.rows[subscriber_id].status = status

    async def mark_confirmed(self, subscriber_id: int, confirmed_at: datetime) -> None:
        self.rows[subscriber_id].status = "active"
        self.rows[subscriber_id].confirmed_at = confirmed_at

    async def mark_welcome_sent(self, subscriber_id: int, sent_at: datetime) -> None:
        if self.rows[subscriber_id].welcome_sent_at is None:
            self.rows[subscriber_id].welcome_sent_at = sent_at

    async def list_active(self) -> list[Subscriber]:
        active = [s for s in self.rows.values() if s.status == "active"]
        return sorted(active, key=lambda s: s.subscribed_at)

    async def count_active(self) -> int:
        return len(await self.list_active())

    def add(self, email: str, status: str = "pending", **fields) -> Subscriber:
        """Seed a row directly."""
        subscriber = Subscriber(
            id=self._next_id,
            email=email,
            status=status,
            subscribed_at=fields.pop("subscribed_at", NOW),
            **fields,
        )
        self.rows[subscriber.id] = subscriber
        self._next_id += 1
        return subscriber


class FakeTokenRepository:
    """In-memory stand-in for TokenRepository."""

    def __init__(self) -> None:
        self.rows: list[NewsletterToken] = []
        self.fail_mark_used = False

    async def create(
        self,
        subscriber_id: int,
        token_type: str,
        token_hash: str,
        expires_at: datetime | None,
    ) -> NewsletterToken:
        token = NewsletterToken(
            id=len(self.rows) + 1,
            subscriber_id=subscriber_id,
            type=token_type,
            token_hash=token_hash,
            expires_at=expires_at,
            used_at=None,
        )
        self.rows.append(token)
        return token

    async def get_by_hash(self, token_hash: str, token_type: str) -> NewsletterToken | None:
        return next(
            (t for t in self.rows if t.token_hash == token_hash and t.type == token_type),
            None,
        )

    async def mark_used(self, token_id: int, used_at: datetime) -> bool:
        if self.fail_mark_used:
            raise StoreError("token update failed")
        token = self.rows[token_id - 1]
        if token.used_at is not None:
            return False
        token.used_at = used_at
        return True

    def of_type(self, subscriber_id: int, token_type: str) -> list[NewsletterToken]:
        return [t for t in self.rows if t.subscriber_id == subscriber_id and t.type == token_type]


class FakeIssueRepository:
    """In-memory stand-in for IssueRepository."""

    def __init__(self) -> None:
        self.rows: list[NewsletterIssue] = []

    async def get_latest(self) -> NewsletterIssue | None:
        return next((i for i in self.rows if i.is_latest), None)

    async def promote_latest(self, issue: NewsletterIssue) -> NewsletterIssue:
        for row in self.rows:
            row.is_latest = False
        issue.id = len(self.rows) + 1
        issue.is_latest = True
        self.rows.append(issue)
        return issue


class FakeMailer:
    """Records sent emails; failures are queued per recipient address.

    A list of exceptions is consumed one per attempt; a single exception
    is raised on every attempt.
    """

    def __init__(self) -> None:
        self.sent: list[OutgoingEmail] = []
        self.attempts: list[str] = []
        self.failures: dict[str, Exception | list[Exception]] = {}

    async def send(self, email: OutgoingEmail) -> None:
        self.attempts.append(email.to)
        failure = self.failures.get(email.to)
        if isinstance(failure, list):
            if failure:
                raise failure.pop(0)
        elif failure is not None:
            raise failure
        self.sent.append(email)

    def sent_to(self, address: str) -> list[OutgoingEmail]:
        return [e for e in self.sent if e.to == address]


class Clock:
    """Controllable clock returning aware UTC datetimes."""

    def __init__(self, now: datetime = NOW) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, delta: timedelta) -> None:
        self.now += delta


class SleepRecorder:
    """Async sleep replacement that records requested delays."""

    def __init__(self) -> None:
        self.calls: list[float] = []

    async def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)


@pytest.fixture
def settings() -> Settings:
    """Create settings for testing."""
    return Settings(
        site_url="https://example.com/",
        site_name="example.com",
        smtp_host="localhost",
        smtp_port=1025,
        smtp_username=SecretStr("smtp-user"),
        smtp_password=SecretStr("smtp-password"),
        mail_from="Example Newsletter <news@example.com>",
        contact_to="owner@example.com",
        admin_user="admin",
        admin_password=SecretStr("secret"),
        gcs_bucket="test-bucket",
        log_level="DEBUG",
    )


@pytest.fixture
def subscribers() -> FakeSubscriberRepository:
    return FakeSubscriberRepository()


@pytest.fixture
def tokens() -> FakeTokenRepository:
    return FakeTokenRepository()


@pytest.fixture
def issues() -> FakeIssueRepository:
    return FakeIssueRepository()


@pytest.fixture
def mailer() -> FakeMailer:
    return FakeMailer()


@pytest.fixture
def clock() -> Clock:
    return Clock()


@pytest.fixture
def sleep() -> SleepRecorder:
    return SleepRecorder()


@pytest.fixture
def storage() -> MagicMock:
    """Create a mock StorageService with a working bucket."""
    service = MagicMock(spec=StorageService)
    service.is_enabled = True
    service.upload_bytes.side_effect = lambda content, path, content_type: (
        f"gs://test-bucket/{path}"
    )
    service.signed_url.return_value = "https://storage.example.com/signed"
    return service


@pytest.fixture
def now() -> datetime:
    """The fixed instant the default clock starts at."""
    return NOW
