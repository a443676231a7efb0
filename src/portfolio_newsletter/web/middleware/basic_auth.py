# ABOUTME: HTTP Basic authentication for the newsletter admin endpoints.
# ABOUTME: Compares against configured credentials and fails closed when they are missing.

import secrets
from typing import Annotated

import structlog
from fastapi import Depends, HTTPException
from fastapi.security import HTTPBasic, HTTPBasicCredentials

from portfolio_newsletter.config import Settings, get_settings

log = structlog.get_logger()

REALM = "Newsletter Admin"

security = HTTPBasic(realm=REALM, auto_error=False)


def _unauthorized() -> HTTPException:
    return HTTPException(
        status_code=401,
        detail="Unauthorized",
        headers={"WWW-Authenticate": f'Basic realm="{REALM}"'},
    )


async def require_admin(
    credentials: Annotated[HTTPBasicCredentials | None, Depends(security)],
    settings: Annotated[Settings, Depends(get_settings)],
) -> str:
    """Verify admin basic-auth credentials.

    Returns the admin username.

    Raises:
        HTTPException: 401 when credentials are missing, wrong, or not configured.
    """
    expected_user = settings.admin_user
    expected_password = (
        settings.admin_password.get_secret_value() if settings.admin_password else None
    )

    if not expected_user or not expected_password:
        log.warning("admin_auth_not_configured")
        raise _unauthorized()

    if credentials is None:
        raise _unauthorized()

    user_ok = secrets.compare_digest(
        credentials.username.encode("utf-8"), expected_user.encode("utf-8")
    )
    password_ok = secrets.compare_digest(
        credentials.password.encode("utf-8"), expected_password.encode("utf-8")
    )
    if not (user_ok and password_ok):
        log.warning("admin_auth_failed", username=credentials.username)
        raise _unauthorized()

    return credentials.username


# Type alias for dependency injection
AdminUser = Annotated[str, Depends(require_admin)]
