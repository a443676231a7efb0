# ABOUTME: Routes module initialization.
# ABOUTME: Exports all route modules for FastAPI app.

from portfolio_newsletter.web.routes import admin, api, contact, newsletter, subscribe

__all__ = ["admin", "api", "contact", "newsletter", "subscribe"]
