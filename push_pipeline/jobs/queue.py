"""Queue contract shared by the enqueue API and the worker."""

from __future__ import annotations

from typing import Protocol

from push_pipeline.jobs.models import DeadLetterRecord, NotificationJob


class NotificationQueue(Protocol):
  """At-least-once job queue with leases, delayed retries and a dead-letter channel."""

  async def enqueue(self, job: NotificationJob) -> None:
    """Persist a new job; it is claimable immediately."""

  async def claim(self, *, wait_seconds: float) -> NotificationJob | None:
    """Lease the next visible job, waiting up to `wait_seconds` for one to appear."""

  async def ack(self, job: NotificationJob) -> bool:
    """Complete a leased job. Returns False when the lease was lost."""

  async def extend_lease(self, job: NotificationJob) -> bool:
    """Restart the visibility timeout of a leased job. Returns False when the lease was lost."""

  async def retry(self, job: NotificationJob, *, delay_seconds: float, error: str | None = None) -> bool:
    """Re-queue a leased job after `delay_seconds` and count the failed attempt."""

  async def dead_letter(self, job: NotificationJob, *, reason: str) -> bool:
    """Move a leased job to the dead-letter channel."""

  async def list_dead_letters(self, *, limit: int = 50) -> list[DeadLetterRecord]:
    """Return dead-lettered jobs, newest first."""

  async def requeue_dead_letter(self, job_id: str) -> bool:
    """Return a dead-lettered job to the queue with a fresh attempt budget."""

  async def close(self) -> None:
    """Release backend resources."""
