from __future__ import annotations

import logging
from datetime import datetime
from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel, ConfigDict

from push_pipeline.api.deps import get_queue, require_ops_secret
from push_pipeline.jobs.queue import NotificationQueue
from push_pipeline.notifications.contracts import QueueError

router = APIRouter(prefix="/dead-letters", tags=["ops"], dependencies=[Depends(require_ops_secret)])
logger = logging.getLogger(__name__)


class DeadLetterResponse(BaseModel):
  model_config = ConfigDict(from_attributes=True)

  job_id: str
  recipient_id: str
  title: str
  attempts: int
  last_error: str | None
  enqueued_at: datetime
  dead_lettered_at: datetime | None


class DeadLetterListResponse(BaseModel):
  items: list[DeadLetterResponse]
  count: int


class RequeueResponse(BaseModel):
  job_id: str
  status: str


@router.get("", response_model=DeadLetterListResponse)
async def list_dead_letters(queue: Annotated[NotificationQueue, Depends(get_queue)], limit: int = Query(default=50, ge=1, le=500)) -> DeadLetterListResponse:
  """List jobs that exhausted their retries, newest first."""
  try:
    records = await queue.list_dead_letters(limit=limit)
  except QueueError as exc:
    logger.error("Failed to list dead-lettered jobs: %s", exc)
    raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Notification queue unavailable.") from exc
  items = [DeadLetterResponse.model_validate(record) for record in records]
  return DeadLetterListResponse(items=items, count=len(items))


@router.post("/{job_id}/requeue", response_model=RequeueResponse)
async def requeue_dead_letter(job_id: str, queue: Annotated[NotificationQueue, Depends(get_queue)]) -> RequeueResponse:
  """Return a dead-lettered job to the queue with a fresh attempt budget."""
  try:
    requeued = await queue.requeue_dead_letter(job_id)
  except QueueError as exc:
    logger.error("Failed to requeue job %s: %s", job_id, exc)
    raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Notification queue unavailable.") from exc
  if not requeued:
    raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Dead-lettered job not found.")
  logger.info("Operator requeued dead-lettered job %s", job_id)
  return RequeueResponse(job_id=job_id, status="queued")
