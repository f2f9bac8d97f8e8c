"""Add notification job queue and device token tables.

Revision ID: 5e2a7c91d4b0
Revises:
Create Date: 2026-10-19 09:12:40.118302
"""

from __future__ import annotations

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects import postgresql

revision = "5e2a7c91d4b0"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
  """Upgrade schema."""
  op.create_table(
    "notification_jobs",
    sa.Column("job_id", sa.String(), nullable=False),
    sa.Column("recipient_id", sa.String(), nullable=False),
    sa.Column("title", sa.Text(), nullable=False),
    sa.Column("body", sa.Text(), nullable=False),
    sa.Column("data_json", postgresql.JSONB(astext_type=sa.Text()), server_default=sa.text("'{}'::jsonb"), nullable=False),
    sa.Column("status", sa.String(), server_default=sa.text("'queued'"), nullable=False),
    sa.Column("attempts", sa.Integer(), server_default=sa.text("0"), nullable=False),
    sa.Column("lease_id", sa.String(), nullable=True),
    sa.Column("visible_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
    sa.Column("last_error", sa.Text(), nullable=True),
    sa.Column("enqueued_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
    sa.Column("dead_lettered_at", sa.DateTime(timezone=True), nullable=True),
    sa.PrimaryKeyConstraint("job_id"),
  )
  op.create_index(op.f("ix_notification_jobs_recipient_id"), "notification_jobs", ["recipient_id"], unique=False)
  op.create_index("ix_notification_jobs_claimable", "notification_jobs", ["status", "visible_at"], unique=False, postgresql_where=sa.text("status IN ('queued', 'leased')"))

  op.create_table(
    "device_tokens",
    sa.Column("id", postgresql.UUID(as_uuid=True), nullable=False),
    sa.Column("user_id", sa.String(), nullable=False),
    sa.Column("token", sa.Text(), nullable=False),
    sa.Column("device_type", sa.String(length=16), nullable=True),
    sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
    sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
    sa.PrimaryKeyConstraint("id"),
  )
  op.create_index(op.f("ix_device_tokens_user_id"), "device_tokens", ["user_id"], unique=False)
  op.create_index("ux_device_tokens_token", "device_tokens", ["token"], unique=True)


def downgrade() -> None:
  """Downgrade schema."""
  op.drop_index("ux_device_tokens_token", table_name="device_tokens")
  op.drop_index(op.f("ix_device_tokens_user_id"), table_name="device_tokens")
  op.drop_table("device_tokens")
  op.drop_index("ix_notification_jobs_claimable", table_name="notification_jobs")
  op.drop_index(op.f("ix_notification_jobs_recipient_id"), table_name="notification_jobs")
  op.drop_table("notification_jobs")
