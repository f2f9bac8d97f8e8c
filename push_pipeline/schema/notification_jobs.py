"""SQLAlchemy model for the durable notification job queue."""

from __future__ import annotations

import datetime

from sqlalchemy import DateTime, Index, Integer, String, Text, func, text
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column

from push_pipeline.core.database import Base

JOB_STATUS_QUEUED = "queued"
JOB_STATUS_LEASED = "leased"
JOB_STATUS_DEAD = "dead"


class NotificationJobRow(Base):
  """Persist one queued notification until it is acknowledged or dead-lettered."""

  __tablename__ = "notification_jobs"
  __table_args__ = (Index("ix_notification_jobs_claimable", "status", "visible_at", postgresql_where=text("status IN ('queued', 'leased')")),)

  job_id: Mapped[str] = mapped_column(String, primary_key=True)
  recipient_id: Mapped[str] = mapped_column(String, nullable=False, index=True)
  title: Mapped[str] = mapped_column(Text, nullable=False)
  body: Mapped[str] = mapped_column(Text, nullable=False)
  data_json: Mapped[dict] = mapped_column(JSONB, nullable=False, server_default=text("'{}'::jsonb"))
  status: Mapped[str] = mapped_column(String, nullable=False, server_default=text("'queued'"))
  attempts: Mapped[int] = mapped_column(Integer, nullable=False, server_default=text("0"))
  lease_id: Mapped[str | None] = mapped_column(String, nullable=True)
  visible_at: Mapped[datetime.datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())
  last_error: Mapped[str | None] = mapped_column(Text, nullable=True)
  enqueued_at: Mapped[datetime.datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())
  dead_lettered_at: Mapped[datetime.datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
