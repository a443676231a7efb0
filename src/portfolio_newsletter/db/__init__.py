# ABOUTME: Database module initialization.
# ABOUTME: Exports ORM models, repositories and session helpers.

from portfolio_newsletter.db.models import Base, NewsletterIssue, NewsletterToken, Subscriber
from portfolio_newsletter.db.repository import (
    IssueRepository,
    SubscriberRepository,
    TokenRepository,
)
from portfolio_newsletter.db.session import get_session, init_db

__all__ = [
    "Base",
    "IssueRepository",
    "NewsletterIssue",
    "NewsletterToken",
    "Subscriber",
    "SubscriberRepository",
    "TokenRepository",
    "get_session",
    "init_db",
]
