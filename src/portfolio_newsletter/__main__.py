# ABOUTME: CLI entry point for newsletter administration.
# ABOUTME: Supports init-db, stats and send commands against the configured database.

import argparse
import asyncio
import sys
from pathlib import Path

import structlog

from portfolio_newsletter.config import get_settings
from portfolio_newsletter.db.repository import (
    IssueRepository,
    SubscriberRepository,
    TokenRepository,
)
from portfolio_newsletter.db.session import close_db, get_session, init_db
from portfolio_newsletter.email.mailer import SmtpMailer
from portfolio_newsletter.errors import NewsletterError
from portfolio_newsletter.logging_config import configure_logging
from portfolio_newsletter.models import IssueUpload, SendReport
from portfolio_newsletter.services.bulk_sender import BulkSender
from portfolio_newsletter.services.storage import StorageService

log = structlog.get_logger()


async def _init_db() -> None:
    try:
        await init_db()
    finally:
        await close_db()


async def _active_count() -> int:
    try:
        async with get_session() as session:
            return await SubscriberRepository(session).count_active()
    finally:
        await close_db()


async def _send_issue(upload: IssueUpload, test_email: str | None) -> SendReport:
    settings = get_settings()
    try:
        async with get_session() as session:
            sender = BulkSender(
                SubscriberRepository(session),
                TokenRepository(session),
                IssueRepository(session),
                SmtpMailer(settings),
                StorageService(settings.gcs_bucket),
                settings,
            )
            return await sender.send_issue(upload, test_email=test_email)
    finally:
        await close_db()


def cmd_init_db(args: argparse.Namespace) -> int:
    """Create the newsletter tables."""
    log.info("init_db_start")
    try:
        asyncio.run(_init_db())
    except Exception as e:
        log.error("init_db_failed", error=str(e))
        return 1
    log.info("init_db_complete")
    return 0


def cmd_stats(args: argparse.Namespace) -> int:
    """Print the number of active subscribers."""
    try:
        count = asyncio.run(_active_count())
    except NewsletterError as e:
        log.error("stats_failed", error=e.message)
        return 1

    print(f"Active subscribers: {count}")
    return 0


def cmd_send(args: argparse.Namespace) -> int:
    """Send a pdf/docx issue to all active subscribers or one test address."""
    path = Path(args.file)
    if not path.is_file():
        log.error("send_file_not_found", path=str(path))
        return 1

    upload = IssueUpload(subject=args.subject, filename=path.name, content=path.read_bytes())
    try:
        report = asyncio.run(_send_issue(upload, args.test_email))
    except NewsletterError as e:
        log.error("send_failed", kind=e.kind, error=e.message)
        return 1

    print(f"Sent: {report.sent}, failed: {report.failed_count}")
    for failure in report.failed:
        print(f"  - {failure.email}: {failure.error}")
    return 0


def create_parser() -> argparse.ArgumentParser:
    """Create the argument parser with subcommands."""
    parser = argparse.ArgumentParser(
        prog="portfolio_newsletter",
        description="Portfolio newsletter administration",
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    subparsers.add_parser(
        "init-db",
        help="Create newsletter tables (use Alembic in production)",
    )

    subparsers.add_parser(
        "stats",
        help="Show active subscriber count",
    )

    send_parser = subparsers.add_parser(
        "send",
        help="Send a newsletter issue as an attachment",
    )
    send_parser.add_argument("file", type=str, help="Path to a .pdf or .docx issue")
    send_parser.add_argument("--subject", type=str, required=True, help="Email subject")
    send_parser.add_argument(
        "--test-email",
        type=str,
        default=None,
        help="Send only to this active subscriber",
    )

    return parser


def main() -> int:
    """Main entry point."""
    configure_logging()

    parser = create_parser()
    args = parser.parse_args()

    commands = {
        "init-db": cmd_init_db,
        "stats": cmd_stats,
        "send": cmd_send,
    }

    handler = commands.get(args.command)
    if handler:
        return handler(args)

    parser.print_help()
    return 1


if __name__ == "__main__":
    sys.exit(main())
