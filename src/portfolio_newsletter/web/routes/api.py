# ABOUTME: Operational API routes.
# ABOUTME: Health check reporting which outbound integrations are configured.

from fastapi import APIRouter
from pydantic import BaseModel

from portfolio_newsletter.web.dependencies import AppSettings, StorageDep

router = APIRouter(prefix="/api", tags=["api"])


class HealthResponse(BaseModel):
    status: str = "healthy"
    mail_configured: bool
    storage_enabled: bool


@router.get("/health", response_model=HealthResponse)
async def health_check(settings: AppSettings, storage: StorageDep):
    """Liveness check; never touches the database."""
    return HealthResponse(
        mail_configured=bool(settings.mail_from and settings.smtp_username),
        storage_enabled=storage.is_enabled,
    )
