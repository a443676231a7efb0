# ABOUTME: Services module initialization.
# ABOUTME: Exports subscription, bulk send, contact and storage services.

from portfolio_newsletter.services.bulk_sender import BulkSender
from portfolio_newsletter.services.contact_service import ContactService
from portfolio_newsletter.services.storage import StorageService
from portfolio_newsletter.services.subscriber_service import SubscriptionManager

__all__ = [
    "BulkSender",
    "ContactService",
    "StorageService",
    "SubscriptionManager",
]
