"""Payload shaping for the provider's string-only data channel."""

from __future__ import annotations

import json
from collections.abc import Mapping
from typing import Any

from push_pipeline.jobs.models import NotificationJob
from push_pipeline.notifications.contracts import PushMessage


def stringify_data(data: Mapping[str, Any] | None) -> dict[str, str]:
  """Coerce every value to a string; non-strings are JSON-encoded."""
  if not data:
    return {}
  payload: dict[str, str] = {}
  for key, value in data.items():
    if isinstance(value, str):
      payload[str(key)] = value
    else:
      payload[str(key)] = json.dumps(value, default=str)
  return payload


def build_message(job: NotificationJob) -> PushMessage:
  """Build the provider payload for a job without altering title or body."""
  return PushMessage(title=job.title, body=job.body, data=stringify_data(job.data))
