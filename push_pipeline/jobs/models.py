"""Domain models for queued push notification jobs."""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import StrEnum
from typing import Any, Literal

DeviceType = Literal["ios", "android", "web"]


class ErrorKind(StrEnum):
  """Classification of a single per-token dispatch result."""

  NONE = "none"
  INVALID_TOKEN = "invalid_token"
  TRANSIENT = "transient"
  UNKNOWN = "unknown"


class JobDisposition(StrEnum):
  """Terminal decision the worker took for one processing attempt."""

  COMPLETED = "completed"
  RETRIED = "retried"
  DEAD_LETTERED = "dead_lettered"
  # Another consumer reclaimed the job mid-flight; its state is no longer ours to change.
  ABANDONED = "abandoned"


def _utc_now() -> datetime:
  return datetime.now(UTC)


@dataclass
class NotificationJob:
  """One unit of notification work: one recipient, one message."""

  recipient_id: str
  title: str
  body: str
  data: dict[str, Any] = field(default_factory=dict)
  job_id: str = field(default_factory=lambda: uuid.uuid4().hex)
  attempts: int = 0
  enqueued_at: datetime = field(default_factory=_utc_now)
  lease_id: str | None = None
  last_error: str | None = None


@dataclass(frozen=True)
class JobHandle:
  """Receipt returned to callers once a job is durably queued."""

  job_id: str
  recipient_id: str
  enqueued_at: datetime


@dataclass(frozen=True)
class DeviceToken:
  """A registered device owned by a user."""

  token: str
  user_id: str
  device_type: DeviceType | None = None


@dataclass(frozen=True)
class DispatchOutcome:
  """Classified provider result for one token within a job."""

  token: str
  success: bool
  error_kind: ErrorKind
  error_code: str | None = None
  error_message: str | None = None


@dataclass(frozen=True)
class DeadLetterRecord:
  """Operator view of a job that exhausted its retries."""

  job_id: str
  recipient_id: str
  title: str
  attempts: int
  last_error: str | None
  enqueued_at: datetime
  dead_lettered_at: datetime | None
