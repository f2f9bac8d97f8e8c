"""Shared FastAPI dependencies for the operator endpoints."""

from __future__ import annotations

import logging
import secrets
from typing import Annotated

from fastapi import Depends, Header, HTTPException, Request, status

from push_pipeline.config import Settings, get_settings
from push_pipeline.jobs.queue import NotificationQueue

logger = logging.getLogger(__name__)


def get_queue(request: Request) -> NotificationQueue:
  """Return the queue the lifespan attached to the app."""
  queue = getattr(request.app.state, "queue", None)
  if queue is None:
    raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Notification queue is not initialized.")
  return queue


def require_ops_secret(settings: Annotated[Settings, Depends(get_settings)], x_push_ops_secret: str | None = Header(default=None)) -> None:
  """Reject callers without the shared operator secret."""
  # Secure-by-default: operator endpoints stay closed until a secret is configured.
  if not settings.ops_secret:
    raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Operator authentication is not configured.")
  if not secrets.compare_digest(x_push_ops_secret or "", settings.ops_secret):
    logger.warning("Unauthorized access attempt to operator endpoint")
    raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Invalid operator secret.")
