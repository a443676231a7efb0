# ABOUTME: SQLAlchemy ORM models for newsletter database persistence.
# ABOUTME: Defines Subscriber, NewsletterToken and NewsletterIssue tables.

from datetime import UTC, datetime

from sqlalchemy import (
    Boolean,
    DateTime,
    Enum,
    ForeignKey,
    Index,
    Integer,
    String,
    text,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


class Base(DeclarativeBase):
    """Base class for all ORM models."""

    pass


class Subscriber(Base):
    """A newsletter subscriber with double opt-in lifecycle status."""

    __tablename__ = "newsletter_subscribers"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    email: Mapped[str] = mapped_column(String(320), unique=True, nullable=False)
    status: Mapped[str] = mapped_column(
        Enum("pending", "active", "unsubscribed", name="subscriber_status_enum"),
        nullable=False,
        default="pending",
    )
    subscribed_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(UTC), nullable=False
    )
    confirmed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    welcome_sent_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    tokens: Mapped[list["NewsletterToken"]] = relationship(
        "NewsletterToken", back_populates="subscriber", cascade="all, delete-orphan"
    )

    __table_args__ = (Index("ix_newsletter_subscribers_status", status),)

    def __repr__(self) -> str:
        return f"<Subscriber {self.email} ({self.status})>"


class NewsletterToken(Base):
    """A one-time capability link; only the SHA-256 of the raw value is stored."""

    __tablename__ = "newsletter_tokens"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    subscriber_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("newsletter_subscribers.id", ondelete="CASCADE"), nullable=False
    )
    type: Mapped[str] = mapped_column(
        Enum("confirm", "unsubscribe", name="token_type_enum"), nullable=False
    )
    token_hash: Mapped[str] = mapped_column(String(64), unique=True, nullable=False)
    expires_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    used_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=lambda: datetime.now(UTC)
    )

    subscriber: Mapped[Subscriber] = relationship("Subscriber", back_populates="tokens")

    __table_args__ = (Index("ix_newsletter_tokens_type_hash", type, token_hash),)

    def __repr__(self) -> str:
        state = "used" if self.used_at else "live"
        return f"<NewsletterToken {self.id} {self.type} ({state})>"


class NewsletterIssue(Base):
    """An uploaded newsletter attachment; at most one row is the latest issue."""

    __tablename__ = "newsletters"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    subject: Mapped[str] = mapped_column(String(500), nullable=False)
    filename: Mapped[str] = mapped_column(String(500), nullable=False)
    storage_path: Mapped[str] = mapped_column(String(1000), nullable=False)
    mime_type: Mapped[str] = mapped_column(String(200), nullable=False)
    is_latest: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=lambda: datetime.now(UTC)
    )

    __table_args__ = (
        Index(
            "uq_newsletters_single_latest",
            is_latest,
            unique=True,
            postgresql_where=text("is_latest"),
            sqlite_where=text("is_latest"),
        ),
    )

    def __repr__(self) -> str:
        marker = " latest" if self.is_latest else ""
        return f"<NewsletterIssue {self.id}: {self.filename}{marker}>"
