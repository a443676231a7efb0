# ABOUTME: Renders newsletter emails from Jinja2 templates.
# ABOUTME: Builds confirmation, welcome, issue, broadcast and contact messages.

from datetime import UTC, datetime
from pathlib import Path

from jinja2 import Environment, FileSystemLoader, select_autoescape
from markupsafe import Markup

from portfolio_newsletter.email.mailer import Attachment, OutgoingEmail

TEMPLATES_DIR = Path(__file__).parent / "templates"

CONFIRMATION_SUBJECT = "Confirm your newsletter subscription"
WELCOME_SUBJECT = "Welcome! Here’s the latest newsletter"


class EmailComposer:
    """Turns template context into OutgoingEmail values."""

    def __init__(self, templates_dir: Path = TEMPLATES_DIR) -> None:
        self._jinja_env = Environment(
            loader=FileSystemLoader(str(templates_dir)),
            autoescape=select_autoescape(["html"]),
        )

    def _render(self, name: str, /, **context: object) -> tuple[str, str]:
        html = self._jinja_env.get_template(f"{name}.html").render(**context)
        text = self._jinja_env.get_template(f"{name}.txt").render(**context)
        return html, text

    def confirmation(self, to: str, confirm_url: str, cancel_url: str) -> OutgoingEmail:
        html, text = self._render(
            "confirmation_email", confirm_url=confirm_url, cancel_url=cancel_url
        )
        return OutgoingEmail(to=to, subject=CONFIRMATION_SUBJECT, html=html, text=text)

    def welcome(
        self,
        to: str,
        unsubscribe_url: str,
        latest_url: str | None = None,
        latest_filename: str | None = None,
    ) -> OutgoingEmail:
        """Welcome email; without a latest issue URL it shows a placeholder."""
        html, text = self._render(
            "welcome_email",
            unsubscribe_url=unsubscribe_url,
            latest_url=latest_url,
            latest_filename=latest_filename or "Download",
        )
        return OutgoingEmail(to=to, subject=WELCOME_SUBJECT, html=html, text=text)

    def issue(
        self, to: str, subject: str, attachment: Attachment, unsubscribe_url: str
    ) -> OutgoingEmail:
        html, text = self._render(
            "issue_email", filename=attachment.filename, unsubscribe_url=unsubscribe_url
        )
        return OutgoingEmail(
            to=to, subject=subject, html=html, text=text, attachments=[attachment]
        )

    def broadcast(self, to: str, subject: str, body_html: str, unsubscribe_url: str) -> OutgoingEmail:
        # body_html is authored by the administrator and sent as-is
        html, text = self._render(
            "broadcast_email", body_html=Markup(body_html), unsubscribe_url=unsubscribe_url
        )
        return OutgoingEmail(to=to, subject=subject, html=html, text=text)

    def contact(
        self,
        to: str,
        subject: str,
        name: str,
        email: str,
        message: str,
        topic: str = "",
        from_name: str | None = None,
        reply_to: str | None = None,
    ) -> OutgoingEmail:
        html, text = self._render(
            "contact_email",
            name=name,
            email=email,
            topic=topic,
            message=message,
            sent_at=datetime.now(UTC).isoformat(),
        )
        return OutgoingEmail(
            to=to,
            subject=subject,
            html=html,
            text=text,
            from_name=from_name,
            reply_to=reply_to,
        )
