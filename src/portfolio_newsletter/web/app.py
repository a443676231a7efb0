# ABOUTME: FastAPI application factory with Jinja2 templates and database lifespan.
# ABOUTME: Main entry point for the newsletter backend of the portfolio site.

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from pathlib import Path

import structlog
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from fastapi.templating import Jinja2Templates

from portfolio_newsletter.db.session import close_db, init_db
from portfolio_newsletter.errors import NewsletterError
from portfolio_newsletter.logging_config import configure_logging
from portfolio_newsletter.web.routes import admin, api, contact, newsletter, subscribe

logger = structlog.get_logger()

WEB_DIR = Path(__file__).parent
TEMPLATES_DIR = WEB_DIR / "templates"


@asynccontextmanager
async def lifespan(_app: FastAPI) -> AsyncGenerator[None]:
    """Application lifespan context for database setup/teardown."""
    configure_logging()
    logger.info("app_startup")
    await init_db()
    yield
    logger.info("app_shutdown")
    await close_db()


async def newsletter_error_handler(request: Request, exc: NewsletterError) -> JSONResponse:
    """Serialize expected failures as {ok: false, error, kind}."""
    if exc.status_code >= 500:
        logger.error("request_failed", path=request.url.path, kind=exc.kind, error=exc.message)
    return JSONResponse(exc.to_dict(), status_code=exc.status_code)


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    app = FastAPI(
        title="Portfolio Newsletter",
        description="Double opt-in newsletter and contact backend",
        version="0.1.0",
        lifespan=lifespan,
    )

    app.state.templates = Jinja2Templates(directory=str(TEMPLATES_DIR))
    app.add_exception_handler(NewsletterError, newsletter_error_handler)

    app.include_router(subscribe.router)
    app.include_router(newsletter.router)
    app.include_router(admin.router)
    app.include_router(contact.router)
    app.include_router(api.router)

    return app


# Application instance for uvicorn
app = create_app()
