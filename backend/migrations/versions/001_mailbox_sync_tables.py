"""Migration 001: mailbox connections and records

Creates the per-user connection table holding the sync cursor and status, and
the message metadata table keyed by (user_id, message_id).
"""

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision = "001"
down_revision = None
branch_labels = None
depends_on = None


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column("created_at", postgresql.TIMESTAMP(timezone=True), nullable=False),
        sa.Column("updated_at", postgresql.TIMESTAMP(timezone=True), nullable=False),
    ]


def upgrade() -> None:
    inspector = sa.inspect(op.get_bind())
    existing = set(inspector.get_table_names())

    if "mailbox_connections" not in existing:
        op.create_table(
            "mailbox_connections",
            sa.Column("id", sa.String(), primary_key=True),
            sa.Column("user_id", sa.String(36), nullable=False),
            sa.Column("account_address", sa.String(320), nullable=True),
            sa.Column("display_name", sa.String(255), nullable=True),
            sa.Column("connected_at", postgresql.TIMESTAMP(timezone=True), nullable=True),
            sa.Column("sync_cursor", sa.Text(), nullable=True),
            sa.Column("status", sa.String(32), nullable=False, server_default="uninitialized"),
            sa.Column("last_sync_at", postgresql.TIMESTAMP(timezone=True), nullable=True),
            sa.Column("total_records_synced", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("last_sync_record_count", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("last_error", sa.Text(), nullable=True),
            sa.Column("last_error_at", postgresql.TIMESTAMP(timezone=True), nullable=True),
            *_timestamps(),
        )
        op.create_index("ix_mailbox_connections_user_id", "mailbox_connections", ["user_id"], unique=True)
        op.create_index("ix_mailbox_connections_status", "mailbox_connections", ["status"])
        op.create_index(
            "ix_mailbox_connections_status_last_sync", "mailbox_connections", ["status", "last_sync_at"]
        )

    if "mailbox_records" not in existing:
        op.create_table(
            "mailbox_records",
            sa.Column("id", sa.String(), primary_key=True),
            sa.Column("user_id", sa.String(36), nullable=False),
            sa.Column("message_id", sa.String(512), nullable=False),
            sa.Column("subject", sa.Text(), nullable=False),
            sa.Column("from_name", sa.String(320), nullable=False),
            sa.Column("from_address", sa.String(320), nullable=False),
            sa.Column("received_at", postgresql.TIMESTAMP(timezone=True), nullable=False),
            sa.Column("conversation_id", sa.String(512), nullable=True),
            sa.Column("is_read", sa.Boolean(), nullable=False, server_default=sa.false()),
            sa.Column("has_attachments", sa.Boolean(), nullable=False, server_default=sa.false()),
            sa.Column("importance", sa.String(16), nullable=False, server_default="normal"),
            sa.Column("body_preview", sa.Text(), nullable=True),
            sa.Column("enrichment_status", sa.String(16), nullable=False, server_default="pending"),
            *_timestamps(),
            sa.UniqueConstraint("user_id", "message_id", name="uq_mailbox_records_user_message"),
        )
        op.create_index("ix_mailbox_records_user_id", "mailbox_records", ["user_id"])
        op.create_index("ix_mailbox_records_enrichment_status", "mailbox_records", ["enrichment_status"])
        op.create_index("ix_mailbox_records_user_received", "mailbox_records", ["user_id", "received_at"])


def downgrade() -> None:
    op.drop_table("mailbox_records")
    op.drop_table("mailbox_connections")
