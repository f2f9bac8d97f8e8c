"""Entry point business code uses to request a push notification."""

from __future__ import annotations

import asyncio
import logging
from typing import Any

from push_pipeline.jobs.models import JobHandle, NotificationJob
from push_pipeline.jobs.queue import NotificationQueue
from push_pipeline.notifications.contracts import EnqueueError, QueueError

logger = logging.getLogger(__name__)


class NotificationEnqueuer:
  """Turns notification requests into durably queued jobs."""

  def __init__(self, queue: NotificationQueue, *, timeout_seconds: float = 10.0) -> None:
    self._queue = queue
    self._timeout_seconds = timeout_seconds

  async def enqueue(self, recipient_id: str, title: str, body: str, data: dict[str, Any] | None = None) -> JobHandle:
    """
    Queue a notification for every device of `recipient_id`.

    Returns once the job is persisted; delivery happens later on a worker.
    Raises `ValueError` for malformed input and `EnqueueError` when the queue is unreachable.
    """
    if not isinstance(recipient_id, str) or not recipient_id.strip():
      raise ValueError("recipient_id must be a non-empty string.")
    if title is None or body is None:
      raise ValueError("title and body are required.")
    if data is not None and not isinstance(data, dict):
      raise ValueError("data must be a mapping when provided.")

    job = NotificationJob(recipient_id=recipient_id, title=title, body=body, data=dict(data or {}))
    try:
      await asyncio.wait_for(self._queue.enqueue(job), timeout=self._timeout_seconds)
    except TimeoutError as exc:
      raise EnqueueError(f"Timed out queueing notification for user {recipient_id}") from exc
    except (QueueError, OSError) as exc:
      raise EnqueueError(f"Failed to queue notification for user {recipient_id}") from exc

    logger.info("Notification job %s queued for user %s", job.job_id, recipient_id)
    return JobHandle(job_id=job.job_id, recipient_id=job.recipient_id, enqueued_at=job.enqueued_at)

  async def send_notification(self, recipient_id: str, title: str, body: str, data: dict[str, Any] | None = None) -> JobHandle | None:
    """Best-effort enqueue that never fails the caller's own operation."""
    try:
      return await self.enqueue(recipient_id, title, body, data)
    except EnqueueError as exc:
      logger.error("Notification for user %s was not queued: %s", recipient_id, exc)
    except ValueError as exc:
      logger.error("Rejected malformed notification request for user %r: %s", recipient_id, exc)
    except Exception:  # noqa: BLE001
      logger.error("Notification for user %s was not queued", recipient_id, exc_info=True)
    return None
