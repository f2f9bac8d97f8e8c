"""SQLAlchemy model for registered push device tokens."""

from __future__ import annotations

import datetime
import uuid

from sqlalchemy import DateTime, Index, String, Text, func
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column

from push_pipeline.core.database import Base


class DeviceTokenRow(Base):
  """Persist a single device registration; a token belongs to exactly one user."""

  __tablename__ = "device_tokens"
  __table_args__ = (Index("ux_device_tokens_token", "token", unique=True),)

  id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
  user_id: Mapped[str] = mapped_column(String, index=True, nullable=False)
  token: Mapped[str] = mapped_column(Text, nullable=False)
  device_type: Mapped[str | None] = mapped_column(String(16), nullable=True)
  created_at: Mapped[datetime.datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())
  updated_at: Mapped[datetime.datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now())
