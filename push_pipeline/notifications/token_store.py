"""Device token registry backends."""

from __future__ import annotations

import asyncio
import logging

from sqlalchemy import delete, select
from sqlalchemy.dialects.postgresql import insert
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from push_pipeline.core.database import get_session_factory
from push_pipeline.jobs.models import DeviceToken, DeviceType
from push_pipeline.notifications.contracts import TokenStoreError
from push_pipeline.schema.device_tokens import DeviceTokenRow
from push_pipeline.utils.masking import mask_sample, mask_token

logger = logging.getLogger(__name__)

_DEVICE_TYPES = {"ios", "android", "web"}


def _normalize_device_type(device_type: str | None) -> str | None:
  if device_type is None:
    return None
  normalized = device_type.strip().lower()
  if normalized not in _DEVICE_TYPES:
    raise ValueError(f"Unsupported device type: {device_type!r}")
  return normalized


class PostgresTokenStore:
  """Read and prune device tokens stored in Postgres."""

  def __init__(self, session_factory: async_sessionmaker[AsyncSession] | None = None) -> None:
    self._session_factory = session_factory or get_session_factory()
    if self._session_factory is None:
      raise RuntimeError("Database not initialized")

  async def list_tokens_for_user(self, user_id: str) -> list[DeviceToken]:
    """List all device tokens registered for a user."""
    try:
      async with self._session_factory() as session:
        stmt = select(DeviceTokenRow).where(DeviceTokenRow.user_id == user_id)
        rows = (await session.execute(stmt)).scalars().all()
    except (SQLAlchemyError, OSError) as exc:
      raise TokenStoreError(f"Device token lookup failed for user {user_id}") from exc
    return [DeviceToken(token=row.token, user_id=row.user_id, device_type=row.device_type) for row in rows]

  async def delete_tokens(self, tokens: list[str]) -> None:
    """Delete tokens regardless of owner."""
    if not tokens:
      return
    try:
      async with self._session_factory() as session:
        await session.execute(delete(DeviceTokenRow).where(DeviceTokenRow.token.in_(tokens)))
        await session.commit()
    except (SQLAlchemyError, OSError) as exc:
      raise TokenStoreError(f"Failed deleting {len(tokens)} device tokens") from exc
    logger.info("Removed %d invalid tokens (sample: %s)", len(tokens), mask_sample(tokens))

  async def register_device_token(self, *, user_id: str, token: str, device_type: DeviceType | str | None) -> None:
    """Upsert a token keyed by its value so a re-registering device changes owner instead of duplicating."""
    normalized_type = _normalize_device_type(device_type)
    stmt = insert(DeviceTokenRow).values(user_id=user_id, token=token, device_type=normalized_type)
    stmt = stmt.on_conflict_do_update(index_elements=["token"], set_={"user_id": user_id, "device_type": normalized_type})
    try:
      async with self._session_factory() as session:
        await session.execute(stmt)
        await session.commit()
    except (SQLAlchemyError, OSError) as exc:
      raise TokenStoreError(f"Failed registering device token {mask_token(token)}") from exc


class InMemoryTokenStore:
  """Process-local token registry for local runs and tests."""

  def __init__(self, tokens: list[DeviceToken] | None = None) -> None:
    self._by_token: dict[str, DeviceToken] = {}
    self._lock = asyncio.Lock()
    for entry in tokens or []:
      self._by_token[entry.token] = entry

  async def list_tokens_for_user(self, user_id: str) -> list[DeviceToken]:
    async with self._lock:
      return [entry for entry in self._by_token.values() if entry.user_id == user_id]

  async def delete_tokens(self, tokens: list[str]) -> None:
    async with self._lock:
      for token in tokens:
        self._by_token.pop(token, None)

  async def register_device_token(self, *, user_id: str, token: str, device_type: DeviceType | str | None) -> None:
    normalized_type = _normalize_device_type(device_type)
    async with self._lock:
      self._by_token[token] = DeviceToken(token=token, user_id=user_id, device_type=normalized_type)  # type: ignore[arg-type]

  def snapshot(self) -> list[DeviceToken]:
    """Return all registered tokens."""
    return list(self._by_token.values())
