# ABOUTME: Admin routes for sending newsletter issues and reading subscriber stats.
# ABOUTME: All endpoints require HTTP Basic credentials.

import structlog
from fastapi import APIRouter, File, Form, UploadFile
from pydantic import BaseModel

from portfolio_newsletter.errors import ValidationError
from portfolio_newsletter.models import IssueUpload
from portfolio_newsletter.web.dependencies import Sender, Subscriptions
from portfolio_newsletter.web.middleware.basic_auth import AdminUser

router = APIRouter(prefix="/api/newsletter", tags=["admin"])
log = structlog.get_logger()


class FailedRecipientResponse(BaseModel):
    email: str
    error: str


class SendResponse(BaseModel):
    ok: bool = True
    sent: int
    failedCount: int
    failed: list[FailedRecipientResponse]


class StatsResponse(BaseModel):
    ok: bool = True
    activeCount: int


class SendHtmlRequest(BaseModel):
    subject: str = ""
    html: str = ""
    testEmail: str = ""


@router.post("/send", response_model=SendResponse)
async def send_issue(
    admin: AdminUser,
    sender: Sender,
    subject: str = Form(""),
    file: UploadFile | None = File(None),
    testEmail: str = Form(""),  # noqa: N803
):
    """Send an uploaded pdf/docx issue to all active subscribers or one test address."""
    if file is None:
        raise ValidationError("Missing file upload.")

    content = await file.read()
    log.info(
        "admin_send_issue",
        admin=admin,
        filename=file.filename,
        size=len(content),
        test=bool(testEmail.strip()),
    )
    upload = IssueUpload(subject=subject, filename=file.filename or "", content=content)
    report = await sender.send_issue(upload, test_email=testEmail)
    return report.to_dict()


@router.post("/send-html", response_model=SendResponse)
async def send_html(admin: AdminUser, sender: Sender, body: SendHtmlRequest):
    """Broadcast an HTML newsletter body."""
    log.info("admin_send_html", admin=admin, test=bool(body.testEmail.strip()))
    report = await sender.send_html(body.subject, body.html, test_email=body.testEmail)
    return report.to_dict()


@router.get("/stats", response_model=StatsResponse)
async def stats(admin: AdminUser, manager: Subscriptions):
    """Count active subscribers."""
    return {"ok": True, "activeCount": await manager.active_count()}
