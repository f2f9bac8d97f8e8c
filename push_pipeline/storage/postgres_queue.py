"""Postgres-backed notification queue using SQLAlchemy."""

from __future__ import annotations

import asyncio
import logging
import uuid
from datetime import UTC, datetime, timedelta
from typing import Any

from sqlalchemy import delete, select, text, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncConnection, AsyncEngine, AsyncSession, async_sessionmaker

from push_pipeline.core.database import get_db_engine, get_session_factory
from push_pipeline.jobs.models import DeadLetterRecord, NotificationJob
from push_pipeline.notifications.contracts import QueueError
from push_pipeline.notifications.payload import stringify_data
from push_pipeline.schema.notification_jobs import JOB_STATUS_DEAD, JOB_STATUS_LEASED, JOB_STATUS_QUEUED, NotificationJobRow

logger = logging.getLogger(__name__)

NOTIFY_CHANNEL = "notification_jobs"


def _now() -> datetime:
  return datetime.now(UTC)


class PostgresNotificationQueue:
  """Durable queue: `SKIP LOCKED` claims, `visible_at` leases, dead letters kept in place with status `dead`."""

  def __init__(
    self,
    *,
    visibility_timeout_seconds: float = 120.0,
    poll_interval_seconds: float = 1.0,
    session_factory: async_sessionmaker[AsyncSession] | None = None,
    engine: AsyncEngine | None = None,
  ) -> None:
    self._session_factory = session_factory or get_session_factory()
    if self._session_factory is None:
      raise RuntimeError("Database not initialized")
    self._engine = engine or get_db_engine()
    self._visibility_timeout = timedelta(seconds=visibility_timeout_seconds)
    self._poll_interval_seconds = poll_interval_seconds
    self._wakeup = asyncio.Event()
    self._listener_connection: AsyncConnection | None = None
    self._listener_disabled = False
    self._listener_lock = asyncio.Lock()

  async def enqueue(self, job: NotificationJob) -> None:
    row = NotificationJobRow(
      job_id=job.job_id,
      recipient_id=job.recipient_id,
      title=job.title,
      body=job.body,
      # Stored pre-stringified so arbitrary values survive the JSONB round trip.
      data_json=stringify_data(job.data),
      status=JOB_STATUS_QUEUED,
      attempts=job.attempts,
      visible_at=_now(),
      enqueued_at=job.enqueued_at,
    )
    try:
      async with self._session_factory() as session:
        session.add(row)
        # NOTIFY is transactional, so listeners wake only once the row is committed.
        await session.execute(text("SELECT pg_notify(:channel, :payload)"), {"channel": NOTIFY_CHANNEL, "payload": job.job_id})
        await session.commit()
    except (SQLAlchemyError, OSError) as exc:
      raise QueueError(f"Failed to enqueue notification job {job.job_id}") from exc

  async def _ensure_listener(self) -> None:
    """Subscribe to enqueue notifications; polling remains the fallback when LISTEN is unavailable."""
    if self._listener_connection is not None or self._listener_disabled or self._engine is None:
      return
    async with self._listener_lock:
      if self._listener_connection is not None or self._listener_disabled:
        return
      try:
        connection = await self._engine.connect()
        raw_connection = await connection.get_raw_connection()
        await raw_connection.driver_connection.add_listener(NOTIFY_CHANNEL, self._on_notify)
      except Exception as exc:  # noqa: BLE001
        self._listener_disabled = True
        logger.warning("LISTEN %s unavailable; falling back to polling every %.1fs: %s", NOTIFY_CHANNEL, self._poll_interval_seconds, exc)
        return
      self._listener_connection = connection

  def _on_notify(self, connection: Any, pid: int, channel: str, payload: str) -> None:
    _ = (connection, pid, channel, payload)
    self._wakeup.set()

  async def _try_claim(self) -> NotificationJob | None:
    now = _now()
    lease_id = uuid.uuid4().hex
    async with self._session_factory() as session:
      stmt = (
        select(NotificationJobRow)
        .where(NotificationJobRow.status.in_((JOB_STATUS_QUEUED, JOB_STATUS_LEASED)), NotificationJobRow.visible_at <= now)
        .order_by(NotificationJobRow.visible_at.asc())
        .with_for_update(skip_locked=True)
        .limit(1)
      )
      row = (await session.execute(stmt)).scalar_one_or_none()
      if row is None:
        return None
      if row.status == JOB_STATUS_LEASED:
        # An expired lease counts as a failed attempt so a job that never settles is eventually dead-lettered.
        row.attempts += 1
        row.last_error = "lease expired before the job was settled"
        logger.warning("Lease expired; reclaiming job %s (attempts=%d)", row.job_id, row.attempts)
      row.status = JOB_STATUS_LEASED
      row.lease_id = lease_id
      row.visible_at = now + self._visibility_timeout
      await session.commit()
      return NotificationJob(
        job_id=row.job_id,
        recipient_id=row.recipient_id,
        title=row.title,
        body=row.body,
        data=dict(row.data_json or {}),
        attempts=row.attempts,
        enqueued_at=row.enqueued_at,
        lease_id=lease_id,
        last_error=row.last_error,
      )

  async def claim(self, *, wait_seconds: float) -> NotificationJob | None:
    await self._ensure_listener()
    loop = asyncio.get_running_loop()
    deadline = loop.time() + max(wait_seconds, 0.0)
    while True:
      self._wakeup.clear()
      try:
        job = await self._try_claim()
      except (SQLAlchemyError, OSError) as exc:
        raise QueueError("Failed to claim notification job") from exc
      if job is not None:
        return job

      remaining = deadline - loop.time()
      if remaining <= 0:
        return None
      try:
        await asyncio.wait_for(self._wakeup.wait(), timeout=min(remaining, self._poll_interval_seconds))
      except TimeoutError:
        continue

  async def _execute_leased(self, job: NotificationJob, stmt: Any, *, action: str) -> bool:
    if job.lease_id is None:
      logger.warning("Job %s has no lease; ignoring %s", job.job_id, action)
      return False
    try:
      async with self._session_factory() as session:
        result = await session.execute(stmt)
        await session.commit()
    except (SQLAlchemyError, OSError) as exc:
      raise QueueError(f"Failed to {action} notification job {job.job_id}") from exc
    if result.rowcount == 0:
      logger.warning("Lease lost for job %s; ignoring %s", job.job_id, action)
      return False
    return True

  def _leased(self, job: NotificationJob) -> tuple[Any, ...]:
    return (NotificationJobRow.job_id == job.job_id, NotificationJobRow.lease_id == job.lease_id, NotificationJobRow.status == JOB_STATUS_LEASED)

  async def ack(self, job: NotificationJob) -> bool:
    stmt = delete(NotificationJobRow).where(*self._leased(job))
    return await self._execute_leased(job, stmt, action="ack")

  async def extend_lease(self, job: NotificationJob) -> bool:
    stmt = update(NotificationJobRow).where(*self._leased(job)).values(visible_at=_now() + self._visibility_timeout)
    return await self._execute_leased(job, stmt, action="lease extension")

  async def retry(self, job: NotificationJob, *, delay_seconds: float, error: str | None = None) -> bool:
    stmt = (
      update(NotificationJobRow)
      .where(*self._leased(job))
      .values(status=JOB_STATUS_QUEUED, lease_id=None, attempts=NotificationJobRow.attempts + 1, visible_at=_now() + timedelta(seconds=max(delay_seconds, 0.0)), last_error=error)
    )
    return await self._execute_leased(job, stmt, action="retry")

  async def dead_letter(self, job: NotificationJob, *, reason: str) -> bool:
    stmt = update(NotificationJobRow).where(*self._leased(job)).values(status=JOB_STATUS_DEAD, lease_id=None, attempts=NotificationJobRow.attempts + 1, last_error=reason, dead_lettered_at=_now())
    return await self._execute_leased(job, stmt, action="dead-letter")

  async def list_dead_letters(self, *, limit: int = 50) -> list[DeadLetterRecord]:
    try:
      async with self._session_factory() as session:
        stmt = select(NotificationJobRow).where(NotificationJobRow.status == JOB_STATUS_DEAD).order_by(NotificationJobRow.dead_lettered_at.desc()).limit(limit)
        rows = (await session.execute(stmt)).scalars().all()
    except (SQLAlchemyError, OSError) as exc:
      raise QueueError("Failed to list dead-lettered jobs") from exc
    return [
      DeadLetterRecord(job_id=row.job_id, recipient_id=row.recipient_id, title=row.title, attempts=row.attempts, last_error=row.last_error, enqueued_at=row.enqueued_at, dead_lettered_at=row.dead_lettered_at) for row in rows
    ]

  async def requeue_dead_letter(self, job_id: str) -> bool:
    stmt = (
      update(NotificationJobRow)
      .where(NotificationJobRow.job_id == job_id, NotificationJobRow.status == JOB_STATUS_DEAD)
      .values(status=JOB_STATUS_QUEUED, attempts=0, last_error=None, dead_lettered_at=None, visible_at=_now())
    )
    try:
      async with self._session_factory() as session:
        result = await session.execute(stmt)
        await session.execute(text("SELECT pg_notify(:channel, :payload)"), {"channel": NOTIFY_CHANNEL, "payload": job_id})
        await session.commit()
    except (SQLAlchemyError, OSError) as exc:
      raise QueueError(f"Failed to requeue dead-lettered job {job_id}") from exc
    return result.rowcount > 0

  async def close(self) -> None:
    if self._listener_connection is None:
      return
    try:
      await self._listener_connection.close()
    except (SQLAlchemyError, OSError) as exc:
      logger.warning("Failed closing queue listener connection: %s", exc)
    self._listener_connection = None
