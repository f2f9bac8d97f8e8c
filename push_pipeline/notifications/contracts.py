"""Contracts for push delivery collaborators."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Protocol, runtime_checkable

from push_pipeline.jobs.models import DeviceToken


@dataclass(frozen=True)
class PushMessage:
  """Provider-agnostic push payload; `data` values are already strings."""

  title: str
  body: str
  data: dict[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class SendResult:
  """Structured per-token provider response."""

  token: str
  success: bool
  error_code: str | None = None
  error_message: str | None = None
  message_id: str | None = None


class NotificationError(Exception):
  """Base class for all notification pipeline failures."""


class PushProviderError(NotificationError):
  """Raised when a provider call fails as a whole instead of returning per-token results."""

  def __init__(self, message: str, *, code: str | None = None, partial_results: list[SendResult] | None = None) -> None:
    super().__init__(message)
    self.code = code
    self.message = message
    # Results for devices the provider already handled before the call failed.
    self.partial_results = list(partial_results or [])


class TokenStoreError(NotificationError):
  """Raised when device tokens cannot be read or written."""


class QueueError(NotificationError):
  """Raised when the job queue backend is unavailable."""


class LeaseLostError(QueueError):
  """Raised inside the worker when another consumer has reclaimed the job it is processing."""


class EnqueueError(NotificationError):
  """Raised when a notification could not be queued."""


class PushProvider(Protocol):
  """Delivery contract every push provider implements."""

  async def send_one(self, token: str, message: PushMessage) -> SendResult:
    """Send to a single device token."""


@runtime_checkable
class BatchPushProvider(PushProvider, Protocol):
  """Providers that can deliver to many tokens in one request."""

  async def send_many(self, tokens: list[str], message: PushMessage) -> list[SendResult]:
    """Send to many tokens and return one result per token, in order."""


class TokenStore(Protocol):
  """Narrow view of the device-token registry used by the worker."""

  async def list_tokens_for_user(self, user_id: str) -> list[DeviceToken]:
    """Return every device token registered for a user."""

  async def delete_tokens(self, tokens: list[str]) -> None:
    """Remove tokens the provider reported as permanently invalid."""
