# ABOUTME: Contact form route.
# ABOUTME: Relays visitor messages to the site owner.

from fastapi import APIRouter

from portfolio_newsletter.models import ContactMessage
from portfolio_newsletter.web.dependencies import Contact

router = APIRouter(prefix="/api", tags=["contact"])


@router.post("/contact")
async def contact(body: ContactMessage, service: Contact):
    """Send a contact message; bot submissions get the same reply."""
    await service.send(body)
    return {"ok": True}
