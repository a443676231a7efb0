# ABOUTME: Subscription API route for the newsletter signup form.
# ABOUTME: Runs the confirmation flow by default, or the plain pending-row flow.

from typing import Literal

import structlog
from fastapi import APIRouter, Query
from pydantic import BaseModel

from portfolio_newsletter.web.dependencies import Subscriptions

router = APIRouter(prefix="/api", tags=["subscribe"])
log = structlog.get_logger()


class SubscribeRequest(BaseModel):
    email: str = ""


class StatusResponse(BaseModel):
    ok: bool = True
    status: str


@router.post("/subscribe", response_model=StatusResponse)
async def subscribe(
    body: SubscribeRequest,
    manager: Subscriptions,
    mode: Literal["confirm", "plain"] = Query("confirm"),
):
    """Handle newsletter subscription request."""
    if mode == "plain":
        result = await manager.subscribe(body.email)
    else:
        result = await manager.subscribe_with_confirmation(body.email)
    return result.to_dict()
