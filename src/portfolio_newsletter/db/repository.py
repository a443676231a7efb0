# ABOUTME: Repository classes for database access patterns.
# ABOUTME: Provides SubscriberRepository, TokenRepository, IssueRepository with StoreError wrapping.

from collections.abc import AsyncIterator, Iterator, Sequence
from contextlib import asynccontextmanager, contextmanager
from datetime import datetime

import structlog
from sqlalchemy import func, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from portfolio_newsletter.db.models import NewsletterIssue, NewsletterToken, Subscriber
from portfolio_newsletter.errors import StoreError

log = structlog.get_logger()


@contextmanager
def store_errors(operation: str) -> Iterator[None]:
    """Translate SQLAlchemy failures into StoreError."""
    try:
        yield
    except SQLAlchemyError as e:
        log.error("store_operation_failed", operation=operation, error=str(e))
        raise StoreError(str(e)) from e


@asynccontextmanager
async def committed(session: AsyncSession, operation: str) -> AsyncIterator[None]:
    """Run one write and commit it as its own transaction.

    A failure later in the same request cannot undo a committed write.
    """
    try:
        yield
        await session.commit()
    except SQLAlchemyError as e:
        await session.rollback()
        log.error("store_operation_failed", operation=operation, error=str(e))
        raise StoreError(str(e)) from e


class SubscriberRepository:
    """Repository for Subscriber reads and single-row status updates.

    Every write commits on its own, so rows written earlier in a request
    survive a later failure.
    """

    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_by_id(self, subscriber_id: int) -> Subscriber | None:
        """Get subscriber by primary key."""
        with store_errors("subscriber_get_by_id"):
            return await self.session.get(Subscriber, subscriber_id)

    async def get_by_email(self, email: str) -> Subscriber | None:
        """Get subscriber by normalized email address."""
        with store_errors("subscriber_get_by_email"):
            result = await self.session.execute(select(Subscriber).where(Subscriber.email == email))
            return result.scalar_one_or_none()

    async def create(self, email: str, subscribed_at: datetime) -> Subscriber:
        """Insert a new pending subscriber."""
        subscriber = Subscriber(email=email, status="pending", subscribed_at=subscribed_at)
        async with committed(self.session, "subscriber_create"):
            self.session.add(subscriber)
            await self.session.flush()
        return subscriber

    async def set_status(self, subscriber_id: int, status: str) -> None:
        """Move a subscriber to a new lifecycle status."""
        await self._update(subscriber_id, "subscriber_set_status", status=status)

    async def mark_confirmed(self, subscriber_id: int, confirmed_at: datetime) -> None:
        """Activate a subscriber and stamp confirmed_at."""
        await self._update(
            subscriber_id, "subscriber_mark_confirmed", status="active", confirmed_at=confirmed_at
        )

    async def mark_welcome_sent(self, subscriber_id: int, sent_at: datetime) -> None:
        """Record that the welcome email went out."""
        async with committed(self.session, "subscriber_mark_welcome_sent"):
            await self.session.execute(
                update(Subscriber)
                .where(Subscriber.id == subscriber_id)
                .where(Subscriber.welcome_sent_at.is_(None))
                .values(welcome_sent_at=sent_at)
            )

    async def list_active(self) -> Sequence[Subscriber]:
        """List active subscribers in subscription order."""
        with store_errors("subscriber_list_active"):
            result = await self.session.execute(
                select(Subscriber)
                .where(Subscriber.status == "active")
                .order_by(Subscriber.subscribed_at)
            )
            return result.scalars().all()

    async def count_active(self) -> int:
        """Count active subscribers."""
        with store_errors("subscriber_count_active"):
            result = await self.session.execute(
                select(func.count(Subscriber.id)).where(Subscriber.status == "active")
            )
            return result.scalar_one()

    async def _update(self, subscriber_id: int, operation: str, **values: object) -> None:
        async with committed(self.session, operation):
            await self.session.execute(
                update(Subscriber).where(Subscriber.id == subscriber_id).values(**values)
            )


class TokenRepository:
    """Repository for NewsletterToken rows, looked up by hash only."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def create(
        self,
        subscriber_id: int,
        token_type: str,
        token_hash: str,
        expires_at: datetime | None,
    ) -> NewsletterToken:
        """Insert a token row."""
        token = NewsletterToken(
            subscriber_id=subscriber_id,
            type=token_type,
            token_hash=token_hash,
            expires_at=expires_at,
        )
        async with committed(self.session, "token_create"):
            self.session.add(token)
            await self.session.flush()
        return token

    async def get_by_hash(self, token_hash: str, token_type: str) -> NewsletterToken | None:
        """Find a token by its SHA-256 hash and type."""
        with store_errors("token_get_by_hash"):
            result = await self.session.execute(
                select(NewsletterToken)
                .where(NewsletterToken.type == token_type)
                .where(NewsletterToken.token_hash == token_hash)
            )
            return result.scalar_one_or_none()

    async def mark_used(self, token_id: int, used_at: datetime) -> bool:
        """Consume a token.

        The update only matches while used_at is still NULL, so of two
        concurrent consumers at most one gets True.
        """
        async with committed(self.session, "token_mark_used"):
            result = await self.session.execute(
                update(NewsletterToken)
                .where(NewsletterToken.id == token_id)
                .where(NewsletterToken.used_at.is_(None))
                .values(used_at=used_at)
            )
            return result.rowcount == 1


class IssueRepository:
    """Repository for the newsletter issue archive and its latest pointer."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_latest(self) -> NewsletterIssue | None:
        """Get the issue currently marked latest."""
        with store_errors("issue_get_latest"):
            result = await self.session.execute(
                select(NewsletterIssue).where(NewsletterIssue.is_latest.is_(True))
            )
            return result.scalars().first()

    async def promote_latest(self, issue: NewsletterIssue) -> NewsletterIssue:
        """Demote the previous latest issue and insert the new one as latest.

        Both statements commit together; the partial unique index on
        is_latest rejects a second latest row if two promotions interleave.
        """
        issue.is_latest = True
        async with committed(self.session, "issue_promote_latest"):
            await self.session.execute(
                update(NewsletterIssue)
                .where(NewsletterIssue.is_latest.is_(True))
                .values(is_latest=False)
            )
            self.session.add(issue)
            await self.session.flush()
        log.info("latest_issue_promoted", issue_id=issue.id, filename=issue.filename)
        return issue
