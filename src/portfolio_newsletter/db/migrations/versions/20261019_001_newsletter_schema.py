"""Create newsletter subscribers, tokens and issues tables.

Revision ID: 001
Revises:
Create Date: 2026-10-19 10:00:00.000000

"""

from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op

# revision identifiers, used by Alembic.
revision: str = "001"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    op.create_table(
        "newsletter_subscribers",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("email", sa.String(length=320), nullable=False),
        sa.Column(
            "status",
            sa.Enum("pending", "active", "unsubscribed", name="subscriber_status_enum"),
            nullable=False,
            server_default="pending",
        ),
        sa.Column("subscribed_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("confirmed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("welcome_sent_at", sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("email"),
    )
    op.create_index(
        "ix_newsletter_subscribers_status", "newsletter_subscribers", ["status"], unique=False
    )

    op.create_table(
        "newsletter_tokens",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("subscriber_id", sa.Integer(), nullable=False),
        sa.Column("type", sa.Enum("confirm", "unsubscribe", name="token_type_enum"), nullable=False),
        sa.Column("token_hash", sa.String(length=64), nullable=False),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("used_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(
            ["subscriber_id"], ["newsletter_subscribers.id"], ondelete="CASCADE"
        ),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("token_hash"),
    )
    op.create_index(
        "ix_newsletter_tokens_type_hash", "newsletter_tokens", ["type", "token_hash"], unique=False
    )

    op.create_table(
        "newsletters",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("subject", sa.String(length=500), nullable=False),
        sa.Column("filename", sa.String(length=500), nullable=False),
        sa.Column("storage_path", sa.String(length=1000), nullable=False),
        sa.Column("mime_type", sa.String(length=200), nullable=False),
        sa.Column("is_latest", sa.Boolean(), nullable=False, server_default="false"),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    # At most one latest issue
    op.create_index(
        "uq_newsletters_single_latest",
        "newsletters",
        ["is_latest"],
        unique=True,
        postgresql_where=sa.text("is_latest"),
    )


def downgrade() -> None:
    op.drop_index("uq_newsletters_single_latest", table_name="newsletters")
    op.drop_table("newsletters")
    op.drop_index("ix_newsletter_tokens_type_hash", table_name="newsletter_tokens")
    op.drop_table("newsletter_tokens")
    op.drop_index("ix_newsletter_subscribers_status", table_name="newsletter_subscribers")
    op.drop_table("newsletter_subscribers")
    sa.Enum(name="token_type_enum").drop(op.get_bind(), checkfirst=True)
    sa.Enum(name="subscriber_status_enum").drop(op.get_bind(), checkfirst=True)
