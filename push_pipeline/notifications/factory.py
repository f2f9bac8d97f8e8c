"""Factory helpers wiring the pipeline from settings."""

from __future__ import annotations

import logging

from push_pipeline.config import Settings
from push_pipeline.jobs.queue import NotificationQueue
from push_pipeline.jobs.worker import NotificationWorker
from push_pipeline.notifications.contracts import PushProvider, TokenStore
from push_pipeline.notifications.push_sender import FirebasePushProvider, NullPushProvider
from push_pipeline.notifications.service import NotificationEnqueuer
from push_pipeline.notifications.token_store import InMemoryTokenStore, PostgresTokenStore
from push_pipeline.storage.memory_queue import InMemoryNotificationQueue
from push_pipeline.storage.postgres_queue import PostgresNotificationQueue

logger = logging.getLogger(__name__)


def build_push_provider(settings: Settings) -> PushProvider:
  """Return the configured provider; Firebase needs a project id to be usable."""
  if settings.push_provider == "firebase" and settings.firebase_project_id:
    return FirebasePushProvider()
  if settings.push_provider == "firebase":
    logger.warning("Firebase push provider selected without a project id; push delivery is disabled.")
  return NullPushProvider()


def build_token_store(settings: Settings) -> TokenStore:
  """Persist tokens in Postgres when configured, otherwise keep them in-process."""
  if settings.pg_dsn:
    return PostgresTokenStore()
  return InMemoryTokenStore()


def build_queue(settings: Settings) -> NotificationQueue:
  """Construct the queue backend selected by `PUSH_QUEUE_BACKEND`."""
  if settings.queue_backend == "postgres":
    return PostgresNotificationQueue(visibility_timeout_seconds=settings.visibility_timeout_seconds)
  # Jobs are lost on restart with this backend, so only local runs should use it.
  if settings.environment in {"production", "prod", "stage", "staging"}:
    logger.warning("In-memory notification queue used in environment=%s; queued jobs do not survive restarts.", settings.environment)
  return InMemoryNotificationQueue(visibility_timeout_seconds=settings.visibility_timeout_seconds)


def build_enqueuer(settings: Settings, *, queue: NotificationQueue | None = None) -> NotificationEnqueuer:
  """Construct the enqueue API; pass the worker's queue when both run in one process."""
  return NotificationEnqueuer(queue or build_queue(settings), timeout_seconds=settings.queue_timeout_seconds)


def build_worker(settings: Settings, *, queue: NotificationQueue, token_store: TokenStore | None = None, provider: PushProvider | None = None) -> NotificationWorker:
  """Construct a worker bound to `queue`."""
  return NotificationWorker.from_settings(settings, queue=queue, token_store=token_store or build_token_store(settings), provider=provider or build_push_provider(settings))
