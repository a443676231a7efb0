# ABOUTME: Main package for the portfolio newsletter backend.
# ABOUTME: Exports settings and the subscription and bulk send services.

from portfolio_newsletter.config import get_settings
from portfolio_newsletter.services import BulkSender, SubscriptionManager

__all__ = [
    "get_settings",
    "BulkSender",
    "SubscriptionManager",
]
