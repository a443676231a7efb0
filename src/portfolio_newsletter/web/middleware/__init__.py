# ABOUTME: Web middleware initialization.
# ABOUTME: Exports the admin basic-auth dependency.

from portfolio_newsletter.web.middleware.basic_auth import AdminUser, require_admin

__all__ = ["AdminUser", "require_admin"]
