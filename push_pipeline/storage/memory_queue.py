"""Process-local notification queue with lease and dead-letter semantics."""

from __future__ import annotations

import asyncio
import itertools
import logging
import time
import uuid
from collections.abc import Callable
from dataclasses import replace
from datetime import UTC, datetime

from push_pipeline.jobs.models import DeadLetterRecord, NotificationJob

logger = logging.getLogger(__name__)


class InMemoryNotificationQueue:
  """asyncio queue mirroring the Postgres backend; jobs do not survive a restart."""

  def __init__(self, *, visibility_timeout_seconds: float = 120.0, clock: Callable[[], float] = time.monotonic) -> None:
    self._visibility_timeout_seconds = visibility_timeout_seconds
    self._clock = clock
    self._condition = asyncio.Condition()
    self._sequence = itertools.count()
    self._jobs: dict[str, NotificationJob] = {}
    self._order: dict[str, int] = {}
    self._visible_at: dict[str, float] = {}
    self._leases: dict[str, str] = {}
    self._dead: dict[str, tuple[NotificationJob, datetime]] = {}

  async def enqueue(self, job: NotificationJob) -> None:
    async with self._condition:
      self._jobs[job.job_id] = replace(job, lease_id=None)
      self._order[job.job_id] = next(self._sequence)
      self._visible_at[job.job_id] = self._clock()
      self._condition.notify_all()

  def _next_visible(self, now: float) -> tuple[str | None, float | None]:
    """Return the oldest visible job id, or the time until the next one becomes visible."""
    ready: str | None = None
    soonest: float | None = None
    for job_id, visible_at in self._visible_at.items():
      if visible_at <= now:
        if ready is None or self._order[job_id] < self._order[ready]:
          ready = job_id
      elif soonest is None or visible_at - now < soonest:
        soonest = visible_at - now
    return ready, soonest

  async def claim(self, *, wait_seconds: float) -> NotificationJob | None:
    deadline = self._clock() + max(wait_seconds, 0.0)
    async with self._condition:
      while True:
        now = self._clock()
        job_id, next_in = self._next_visible(now)
        if job_id is not None:
          lease_id = uuid.uuid4().hex
          if job_id in self._leases:
            # An expired lease counts as a failed attempt so a job that never settles is eventually dead-lettered.
            stored = self._jobs[job_id]
            stored.attempts += 1
            stored.last_error = "lease expired before the job was settled"
            logger.warning("Lease expired; reclaiming job %s (attempts=%d)", job_id, stored.attempts)
          self._leases[job_id] = lease_id
          self._visible_at[job_id] = now + self._visibility_timeout_seconds
          return replace(self._jobs[job_id], lease_id=lease_id)

        remaining = deadline - now
        if remaining <= 0:
          return None
        timeout = remaining if next_in is None else min(remaining, next_in)
        try:
          await asyncio.wait_for(self._condition.wait(), timeout=timeout)
        except TimeoutError:
          continue

  def _holds_lease(self, job: NotificationJob) -> bool:
    held = job.lease_id is not None and self._leases.get(job.job_id) == job.lease_id
    if not held:
      logger.warning("Lease lost for job %s; ignoring state change", job.job_id)
    return held

  def _forget(self, job_id: str) -> NotificationJob:
    self._leases.pop(job_id, None)
    self._visible_at.pop(job_id, None)
    self._order.pop(job_id, None)
    return self._jobs.pop(job_id)

  async def ack(self, job: NotificationJob) -> bool:
    async with self._condition:
      if not self._holds_lease(job):
        return False
      self._forget(job.job_id)
      return True

  async def extend_lease(self, job: NotificationJob) -> bool:
    async with self._condition:
      if not self._holds_lease(job):
        return False
      self._visible_at[job.job_id] = self._clock() + self._visibility_timeout_seconds
      return True

  async def retry(self, job: NotificationJob, *, delay_seconds: float, error: str | None = None) -> bool:
    async with self._condition:
      if not self._holds_lease(job):
        return False
      stored = self._jobs[job.job_id]
      stored.attempts += 1
      stored.last_error = error
      self._leases.pop(job.job_id, None)
      self._visible_at[job.job_id] = self._clock() + max(delay_seconds, 0.0)
      self._condition.notify_all()
      return True

  async def dead_letter(self, job: NotificationJob, *, reason: str) -> bool:
    async with self._condition:
      if not self._holds_lease(job):
        return False
      stored = self._forget(job.job_id)
      stored.attempts += 1
      stored.last_error = reason
      self._dead[job.job_id] = (stored, datetime.now(UTC))
      return True

  async def list_dead_letters(self, *, limit: int = 50) -> list[DeadLetterRecord]:
    async with self._condition:
      entries = sorted(self._dead.values(), key=lambda item: item[1], reverse=True)[:limit]
    return [
      DeadLetterRecord(job_id=job.job_id, recipient_id=job.recipient_id, title=job.title, attempts=job.attempts, last_error=job.last_error, enqueued_at=job.enqueued_at, dead_lettered_at=dead_at) for job, dead_at in entries
    ]

  async def requeue_dead_letter(self, job_id: str) -> bool:
    async with self._condition:
      entry = self._dead.pop(job_id, None)
    if entry is None:
      return False
    job, _ = entry
    await self.enqueue(replace(job, attempts=0, last_error=None))
    return True

  async def close(self) -> None:
    return None

  def pending_count(self) -> int:
    """Number of queued or leased jobs."""
    return len(self._jobs)
