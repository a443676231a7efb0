# ABOUTME: Tests for bulk newsletter delivery.
# ABOUTME: Validates per-recipient isolation, rate-limit retry, upload validation and latest issue.

import pytest

from portfolio_newsletter.db.models import NewsletterIssue
from portfolio_newsletter.errors import (
    ConfigError,
    MailError,
    RateLimitError,
    RecipientNotEligibleError,
    ValidationError,
)
from portfolio_newsletter.models import IssueUpload
from portfolio_newsletter.services.bulk_sender import BulkSender, attachment_mime_type

PDF_BYTES = b"%PDF-1.7 test issue"


@pytest.fixture
def sender(subscribers, tokens, issues, mailer, storage, settings, clock, sleep) -> BulkSender:
    """Create a BulkSender over in-memory stores with a recording sleep."""
    return BulkSender(
        subscribers, tokens, issues, mailer, storage, settings, clock=clock, sleep=sleep
    )


@pytest.fixture
def upload() -> IssueUpload:
    return IssueUpload(subject="October issue", filename="october.pdf", content=PDF_BYTES)


def _seed_active(subscribers, *emails: str) -> None:
    for email in emails:
        subscribers.add(email, status="active")


class TestAttachmentMimeType:
    """Tests for upload type checks."""

    def test_pdf(self) -> None:
        assert attachment_mime_type("Issue.PDF") == "application/pdf"

    def test_docx(self) -> None:
        assert attachment_mime_type("issue.docx").endswith("wordprocessingml.document")

    @pytest.mark.parametrize("filename", ["issue.txt", "issue.doc", "issue"])
    def test_rejects_other_types(self, filename: str) -> None:
        with pytest.raises(ValidationError, match="Only .pdf or .docx"):
            attachment_mime_type(filename)


class TestSendIssue:
    """Tests for sending an uploaded issue."""

    async def test_partial_failure_isolated(self, sender, subscribers, mailer, upload) -> None:
        """One bad address is reported; everyone else still gets the issue."""
        _seed_active(subscribers, "a@example.com", "b@example.com", "c@example.com")
        mailer.failures["b@example.com"] = MailError("550 Mailbox unavailable")

        report = await sender.send_issue(upload)

        assert report.sent == 2
        assert report.failed_count == 1
        assert report.failed[0].email == "b@example.com"
        assert report.failed[0].error == "550 Mailbox unavailable"
        assert sorted(e.to for e in mailer.sent) == ["a@example.com", "c@example.com"]

    async def test_skips_non_active(self, sender, subscribers, mailer, upload) -> None:
        _seed_active(subscribers, "a@example.com")
        subscribers.add("pending@example.com", status="pending")
        subscribers.add("gone@example.com", status="unsubscribed")

        report = await sender.send_issue(upload)

        assert report.sent == 1
        assert [e.to for e in mailer.sent] == ["a@example.com"]

    async def test_each_email_has_attachment_and_own_unsubscribe_link(
        self, sender, subscribers, tokens, mailer, upload
    ) -> None:
        _seed_active(subscribers, "a@example.com", "b@example.com")

        await sender.send_issue(upload)

        for email in mailer.sent:
            [attachment] = email.attachments
            assert attachment.filename == "october.pdf"
            assert attachment.mime_type == "application/pdf"
            assert attachment.content == PDF_BYTES
            assert "https://example.com/newsletter/unsubscribe/" in email.html
        assert len(tokens.of_type(1, "unsubscribe")) == 1
        assert len(tokens.of_type(2, "unsubscribe")) == 1
        assert mailer.sent[0].html != mailer.sent[1].html

    async def test_uploads_and_promotes_latest(
        self, sender, subscribers, issues, storage, upload, now
    ) -> None:
        issues.rows.append(
            NewsletterIssue(
                id=1,
                subject="September",
                filename="september.pdf",
                storage_path="old-september.pdf",
                mime_type="application/pdf",
                is_latest=True,
            )
        )
        _seed_active(subscribers, "a@example.com")

        await sender.send_issue(upload)

        storage.upload_bytes.assert_called_once()
        content, path, content_type = storage.upload_bytes.call_args.args
        assert content == PDF_BYTES
        assert path.endswith("-october.pdf")
        assert content_type == "application/pdf"

        latest = await issues.get_latest()
        assert latest.filename == "october.pdf"
        assert latest.storage_path == path
        assert latest.created_at == now
        assert [i.is_latest for i in issues.rows] == [False, True]

    async def test_no_issue_recorded_when_nothing_sent(
        self, sender, subscribers, issues, mailer, upload
    ) -> None:
        _seed_active(subscribers, "a@example.com")
        mailer.failures["a@example.com"] = MailError("550 Mailbox unavailable")

        report = await sender.send_issue(upload)

        assert report.sent == 0
        assert report.failed_count == 1
        assert issues.rows == []

    async def test_no_active_subscribers(self, sender, issues, mailer, upload) -> None:
        report = await sender.send_issue(upload)

        assert report.to_dict() == {"ok": True, "sent": 0, "failedCount": 0, "failed": []}
        assert mailer.attempts == []
        assert issues.rows == []

    async def test_throttles_after_each_recipient(self, sender, subscribers, sleep, upload) -> None:
        _seed_active(subscribers, "a@example.com", "b@example.com")

        await sender.send_issue(upload)

        assert sleep.calls == [0.6, 0.6]

    @pytest.mark.parametrize(
        ("subject", "filename", "content", "message"),
        [
            ("  ", "october.pdf", PDF_BYTES, "Missing subject."),
            ("October", "october.pdf", b"", "Missing file upload."),
            ("October", "october.txt", PDF_BYTES, "Only .pdf or .docx files are allowed."),
        ],
    )
    async def test_rejects_invalid_upload(
        self, sender, storage, mailer, subject, filename, content, message
    ) -> None:
        with pytest.raises(ValidationError, match=message):
            await sender.send_issue(IssueUpload(subject=subject, filename=filename, content=content))

        storage.upload_bytes.assert_not_called()
        assert mailer.attempts == []

    async def test_rejects_oversized_upload(self, sender, storage) -> None:
        too_big = b"x" * (10 * 1024 * 1024 + 1)

        with pytest.raises(ValidationError, match=r"File too large \(max 10MB\)\."):
            await sender.send_issue(
                IssueUpload(subject="October", filename="october.pdf", content=too_big)
            )
        storage.upload_bytes.assert_not_called()

    async def test_requires_storage(self, sender, subscribers, storage, mailer, upload) -> None:
        _seed_active(subscribers, "a@example.com")
        storage.is_enabled = False

        with pytest.raises(ConfigError, match="GCS_BUCKET"):
            await sender.send_issue(upload)
        assert mailer.attempts == []


class TestTestRecipient:
    """Tests for sending to a single test address."""

    async def test_active_test_email_only(self, sender, subscribers, mailer, upload) -> None:
        _seed_active(subscribers, "a@example.com", "me@example.com")

        report = await sender.send_issue(upload, test_email=" Me@Example.com ")

        assert report.sent == 1
        assert [e.to for e in mailer.sent] == ["me@example.com"]

    async def test_pending_test_email_rejected_before_send(
        self, sender, subscribers, storage, mailer, upload
    ) -> None:
        subscribers.add("me@example.com", status="pending")

        with pytest.raises(RecipientNotEligibleError, match="status=pending"):
            await sender.send_issue(upload, test_email="me@example.com")

        assert mailer.attempts == []
        storage.upload_bytes.assert_not_called()

    async def test_unknown_test_email(self, sender, mailer, upload) -> None:
        with pytest.raises(RecipientNotEligibleError, match="Test email not found in DB."):
            await sender.send_issue(upload, test_email="nobody@example.com")
        assert mailer.attempts == []


class TestSendWithRetry:
    """Tests for rate-limit retry behavior."""

    async def test_retries_rate_limit_with_backoff(
        self, sender, subscribers, mailer, sleep, upload
    ) -> None:
        """Three throttled attempts then success: waits 0.7s, 1.4s, 2.8s."""
        _seed_active(subscribers, "a@example.com")
        mailer.failures["a@example.com"] = [
            RateLimitError("454 Throttling failure: Maximum sending rate exceeded."),
            RateLimitError("454 Throttling failure: Maximum sending rate exceeded."),
            RateLimitError("454 Throttling failure: Maximum sending rate exceeded."),
        ]

        report = await sender.send_issue(upload)

        assert report.sent == 1
        assert mailer.attempts == ["a@example.com"] * 4
        assert sleep.calls == pytest.approx([0.7, 1.4, 2.8, 0.6])

    async def test_gives_up_after_four_attempts(
        self, sender, subscribers, mailer, upload
    ) -> None:
        _seed_active(subscribers, "a@example.com", "b@example.com")
        mailer.failures["a@example.com"] = RateLimitError("429 Too Many Requests")

        report = await sender.send_issue(upload)

        assert mailer.attempts.count("a@example.com") == 4
        assert report.sent == 1
        assert report.failed[0].email == "a@example.com"
        assert report.failed[0].error == "429 Too Many Requests"

    async def test_does_not_retry_other_errors(
        self, sender, subscribers, mailer, sleep, upload
    ) -> None:
        _seed_active(subscribers, "a@example.com")
        mailer.failures["a@example.com"] = MailError("554 Message rejected")

        await sender.send_issue(upload)

        assert mailer.attempts == ["a@example.com"]
        assert sleep.calls == [0.6]

    async def test_retries_rate_limit_text_in_plain_error(self, sender, mailer, sleep) -> None:
        """Classification is by message, not only by exception type."""
        from portfolio_newsletter.email.mailer import OutgoingEmail

        mailer.failures["a@example.com"] = [Exception("rate limit exceeded")]

        await sender.send_with_retry(OutgoingEmail(to="a@example.com", subject="s", html="h"))

        assert mailer.attempts == ["a@example.com"] * 2
        assert sleep.calls == pytest.approx([0.7])


class TestSendHtml:
    """Tests for HTML broadcasts."""

    async def test_broadcasts_body(self, sender, subscribers, issues, mailer) -> None:
        _seed_active(subscribers, "a@example.com", "b@example.com")

        report = await sender.send_html("News", "<h1>Hello <b>readers</b></h1>")

        assert report.sent == 2
        for email in mailer.sent:
            assert email.subject == "News"
            assert "<h1>Hello <b>readers</b></h1>" in email.html
            assert "https://example.com/newsletter/unsubscribe/" in email.html
            assert email.attachments == []
        assert issues.rows == []

    @pytest.mark.parametrize(("subject", "html"), [("", "<p>x</p>"), ("News", "  ")])
    async def test_requires_subject_and_html(self, sender, mailer, subject, html) -> None:
        with pytest.raises(ValidationError, match="Missing subject or html."):
            await sender.send_html(subject, html)
        assert mailer.attempts == []
