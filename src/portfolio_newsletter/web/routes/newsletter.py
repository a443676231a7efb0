# ABOUTME: Confirm and unsubscribe routes for newsletter links.
# ABOUTME: JSON endpoints for the API plus browser pages for links opened from email.

import structlog
from fastapi import APIRouter, Request
from fastapi.responses import HTMLResponse
from pydantic import BaseModel

from portfolio_newsletter.errors import NewsletterError
from portfolio_newsletter.models import ConfirmStatus, UnsubscribeStatus
from portfolio_newsletter.services.subscriber_service import extract_token
from portfolio_newsletter.web.dependencies import Subscriptions, Templates
from portfolio_newsletter.web.routes.subscribe import StatusResponse

router = APIRouter(tags=["newsletter"])
log = structlog.get_logger()

CONFIRM_MESSAGES = {
    ConfirmStatus.CONFIRMED: ("Confirmed", "Thanks, your subscription is now active."),
    ConfirmStatus.CONFIRMED_WITH_WARNING: (
        "Confirmed",
        "Thanks, your subscription is now active.",
    ),
    ConfirmStatus.CONFIRMED_NO_WELCOME: (
        "Confirmed",
        "Your subscription is active. The welcome email could not be sent right now.",
    ),
    ConfirmStatus.ALREADY_CONFIRMED: (
        "Already confirmed",
        "You're all set, this link was already used.",
    ),
}

UNSUBSCRIBE_MESSAGES = {
    UnsubscribeStatus.CANCELED: ("Request canceled", "Your subscription request was canceled."),
    UnsubscribeStatus.UNSUBSCRIBED: ("Unsubscribed", "You've been unsubscribed."),
    UnsubscribeStatus.ALREADY_DONE: (
        "Already done",
        "This link was already used. You're all set.",
    ),
}

ERROR_TITLES = {
    "invalid_token": "Invalid link",
    "expired": "Link expired",
    "invalid_input": "Missing token",
}


class TokenRequest(BaseModel):
    token: str = ""


def _error_page(templates, request: Request, error: NewsletterError) -> HTMLResponse:
    return templates.TemplateResponse(
        request=request,
        name="newsletter_result.html",
        context={
            "ok": False,
            "title": ERROR_TITLES.get(error.kind, "Something went wrong"),
            "message": error.message,
        },
        status_code=error.status_code,
    )


@router.post("/api/newsletter/confirm", response_model=StatusResponse)
async def confirm_api(body: TokenRequest, manager: Subscriptions):
    """Confirm a subscription from a token in the request body."""
    result = await manager.confirm(body.token)
    return result.to_dict()


@router.post("/api/newsletter/unsubscribe", response_model=StatusResponse)
async def unsubscribe_api(body: TokenRequest, manager: Subscriptions):
    """Unsubscribe using a token in the request body."""
    result = await manager.unsubscribe(body.token)
    return result.to_dict()


@router.get("/newsletter/confirm", response_class=HTMLResponse)
@router.get("/newsletter/confirm/{path_token}", response_class=HTMLResponse)
async def confirm_page(
    request: Request,
    manager: Subscriptions,
    templates: Templates,
    path_token: str | None = None,
    token: str | None = None,
):
    """Confirm a subscription from a link; the path token wins over ?token=."""
    raw = extract_token(path_token, token)
    try:
        result = await manager.confirm(raw)
    except NewsletterError as e:
        log.info("confirm_page_failed", kind=e.kind)
        return _error_page(templates, request, e)

    title, message = CONFIRM_MESSAGES[result.status]
    return templates.TemplateResponse(
        request=request,
        name="newsletter_result.html",
        context={"ok": True, "title": title, "message": message},
    )


@router.get("/newsletter/unsubscribe", response_class=HTMLResponse)
@router.get("/newsletter/unsubscribe/{path_token}", response_class=HTMLResponse)
async def unsubscribe_page(
    request: Request,
    templates: Templates,
    path_token: str | None = None,
    token: str | None = None,
):
    """Show the unsubscribe confirmation form.

    Nothing changes on GET, so mail scanners prefetching the link are harmless.
    """
    raw = extract_token(path_token, token)
    if not raw:
        return templates.TemplateResponse(
            request=request,
            name="newsletter_result.html",
            context={
                "ok": False,
                "title": "Missing token",
                "message": "Try opening the link from your email again.",
            },
            status_code=400,
        )
    return templates.TemplateResponse(
        request=request,
        name="unsubscribe.html",
        context={"token": raw},
    )


@router.post("/newsletter/unsubscribe/{path_token}", response_class=HTMLResponse)
async def unsubscribe_form(
    request: Request,
    path_token: str,
    manager: Subscriptions,
    templates: Templates,
):
    """Process the unsubscribe form."""
    try:
        result = await manager.unsubscribe(path_token)
    except NewsletterError as e:
        log.info("unsubscribe_page_failed", kind=e.kind)
        return _error_page(templates, request, e)

    title, message = UNSUBSCRIBE_MESSAGES[result.status]
    return templates.TemplateResponse(
        request=request,
        name="newsletter_result.html",
        context={"ok": True, "title": title, "message": message},
    )
