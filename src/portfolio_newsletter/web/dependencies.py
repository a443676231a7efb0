# ABOUTME: FastAPI dependency injection for database sessions and services.
# ABOUTME: Process-wide mailer/storage singletons and per-request service assembly.

from functools import lru_cache
from typing import Annotated

from fastapi import Depends, Request
from fastapi.templating import Jinja2Templates
from sqlalchemy.ext.asyncio import AsyncSession

from portfolio_newsletter.config import Settings, get_settings
from portfolio_newsletter.db.repository import (
    IssueRepository,
    SubscriberRepository,
    TokenRepository,
)
from portfolio_newsletter.db.session import get_db_session
from portfolio_newsletter.email.mailer import Mailer, SmtpMailer
from portfolio_newsletter.services.bulk_sender import BulkSender
from portfolio_newsletter.services.contact_service import ContactService
from portfolio_newsletter.services.storage import StorageService
from portfolio_newsletter.services.subscriber_service import SubscriptionManager

# Type aliases for common dependencies
DbSession = Annotated[AsyncSession, Depends(get_db_session)]
AppSettings = Annotated[Settings, Depends(get_settings)]


def get_templates(request: Request) -> Jinja2Templates:
    """Get Jinja2 templates from app state."""
    return request.app.state.templates


Templates = Annotated[Jinja2Templates, Depends(get_templates)]


@lru_cache
def get_mailer() -> Mailer:
    """Process-wide mail provider client."""
    return SmtpMailer(get_settings())


@lru_cache
def get_storage() -> StorageService:
    """Process-wide GCS client for issue attachments."""
    return StorageService(get_settings().gcs_bucket)


MailerDep = Annotated[Mailer, Depends(get_mailer)]
StorageDep = Annotated[StorageService, Depends(get_storage)]


def get_subscription_manager(
    session: DbSession,
    mailer: MailerDep,
    storage: StorageDep,
    settings: AppSettings,
) -> SubscriptionManager:
    """Subscription manager bound to the request session."""
    return SubscriptionManager(
        SubscriberRepository(session),
        TokenRepository(session),
        IssueRepository(session),
        mailer,
        storage,
        settings,
    )


Subscriptions = Annotated[SubscriptionManager, Depends(get_subscription_manager)]


def get_bulk_sender(
    session: DbSession,
    mailer: MailerDep,
    storage: StorageDep,
    settings: AppSettings,
) -> BulkSender:
    """Bulk sender bound to the request session."""
    return BulkSender(
        SubscriberRepository(session),
        TokenRepository(session),
        IssueRepository(session),
        mailer,
        storage,
        settings,
    )


Sender = Annotated[BulkSender, Depends(get_bulk_sender)]


def get_contact_service(mailer: MailerDep, settings: AppSettings) -> ContactService:
    return ContactService(mailer, settings)


Contact = Annotated[ContactService, Depends(get_contact_service)]
