# ABOUTME: Tests for commit boundaries against a real SQLite database via aiosqlite.
# ABOUTME: Validates that committed writes survive later failures in the same session.

import re
from unittest.mock import AsyncMock, patch

import pytest
from sqlalchemy import func, select

from portfolio_newsletter.db.models import NewsletterIssue, NewsletterToken, Subscriber
from portfolio_newsletter.db.repository import (
    IssueRepository,
    SubscriberRepository,
    TokenRepository,
)
from portfolio_newsletter.db.session import Database, get_session
from portfolio_newsletter.errors import MailError, StoreError
from portfolio_newsletter.models import IssueUpload, SubscribeStatus, UnsubscribeStatus
from portfolio_newsletter.services.bulk_sender import BulkSender
from portfolio_newsletter.services.subscriber_service import SubscriptionManager

UNSUBSCRIBE_LINK = re.compile(r"/newsletter/unsubscribe/([0-9a-f]{64})")


@pytest.fixture
async def database(tmp_path, settings):
    """File-backed SQLite database installed as the process-wide Database."""
    database = Database(settings, url=f"sqlite+aiosqlite:///{tmp_path / 'newsletter.db'}")
    await database.create_schema()
    with patch("portfolio_newsletter.db.session._database", database):
        yield database
    await database.dispose()


async def _seed_active(now, *emails: str) -> None:
    async with get_session() as session:
        session.add_all(
            [Subscriber(email=email, status="active", subscribed_at=now) for email in emails]
        )


async def _count(model, condition) -> int:
    async with get_session() as session:
        result = await session.execute(select(func.count()).select_from(model).where(condition))
        return result.scalar_one()


def _manager(session, mailer, storage, settings, clock) -> SubscriptionManager:
    return SubscriptionManager(
        SubscriberRepository(session),
        TokenRepository(session),
        IssueRepository(session),
        mailer,
        storage,
        settings,
        clock=clock,
    )


class TestBulkSendCommits:
    """Tests that delivered unsubscribe links outlive a failed batch."""

    async def test_tokens_survive_failed_issue_bookkeeping(
        self, database, settings, mailer, storage, clock, sleep, now
    ) -> None:
        await _seed_active(now, "a@example.com", "b@example.com")
        upload = IssueUpload(subject="October issue", filename="october.pdf", content=b"%PDF-1.7")

        with (
            patch.object(
                IssueRepository, "promote_latest", AsyncMock(side_effect=StoreError("db down"))
            ),
            pytest.raises(StoreError),
        ):
            async with get_session() as session:
                sender = BulkSender(
                    SubscriberRepository(session),
                    TokenRepository(session),
                    IssueRepository(session),
                    mailer,
                    storage,
                    settings,
                    clock=clock,
                    sleep=sleep,
                )
                await sender.send_issue(upload)

        assert [e.to for e in mailer.sent] == ["a@example.com", "b@example.com"]
        assert await _count(NewsletterToken, NewsletterToken.type == "unsubscribe") == 2

        raw = UNSUBSCRIBE_LINK.search(mailer.sent[0].html).group(1)
        async with get_session() as session:
            result = await _manager(session, mailer, storage, settings, clock).unsubscribe(raw)

        assert result.status == UnsubscribeStatus.UNSUBSCRIBED
        assert await _count(Subscriber, Subscriber.status == "unsubscribed") == 1


class TestSubscribeCommits:
    """Tests that confirmation writes outlive a mail failure."""

    async def test_rows_survive_mail_error(
        self, database, settings, mailer, storage, clock
    ) -> None:
        mailer.failures["new@example.com"] = MailError("554 Message rejected")

        with pytest.raises(MailError):
            async with get_session() as session:
                manager = _manager(session, mailer, storage, settings, clock)
                await manager.subscribe_with_confirmation("new@example.com")

        assert await _count(Subscriber, Subscriber.email == "new@example.com") == 1
        assert await _count(NewsletterToken, NewsletterToken.type == "confirm") == 1
        assert await _count(NewsletterToken, NewsletterToken.type == "unsubscribe") == 1

    async def test_retry_after_mail_error_resends(
        self, database, settings, mailer, storage, clock
    ) -> None:
        mailer.failures["new@example.com"] = [MailError("554 Message rejected")]

        with pytest.raises(MailError):
            async with get_session() as session:
                manager = _manager(session, mailer, storage, settings, clock)
                await manager.subscribe_with_confirmation("new@example.com")
        async with get_session() as session:
            manager = _manager(session, mailer, storage, settings, clock)
            result = await manager.subscribe_with_confirmation("new@example.com")

        assert result.status == SubscribeStatus.RESENT
        assert await _count(NewsletterToken, NewsletterToken.type == "confirm") == 2


class TestTokenConsumption:
    async def test_second_consumer_loses(self, database, now) -> None:
        async with get_session() as session:
            subscriber = await SubscriberRepository(session).create("a@example.com", now)
            token = await TokenRepository(session).create(subscriber.id, "confirm", "a" * 64, None)
            token_id = token.id

        async with get_session() as first, get_session() as second:
            assert await TokenRepository(first).mark_used(token_id, now) is True
            assert await TokenRepository(second).mark_used(token_id, now) is False


class TestLatestIssue:
    async def test_promoting_twice_keeps_one_latest(self, database, now) -> None:
        for filename in ("september.pdf", "october.pdf"):
            async with get_session() as session:
                await IssueRepository(session).promote_latest(
                    NewsletterIssue(
                        subject=filename,
                        filename=filename,
                        storage_path=f"1-abc-{filename}",
                        mime_type="application/pdf",
                        created_at=now,
                    )
                )

        async with get_session() as session:
            latest = await IssueRepository(session).get_latest()

        assert latest.filename == "october.pdf"
        assert await _count(NewsletterIssue, NewsletterIssue.is_latest.is_(True)) == 1
