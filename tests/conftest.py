"""Shared fixtures for the push pipeline test suite."""

from __future__ import annotations

import pytest

from push_pipeline.config import get_database_settings, get_settings

_PUSH_ENV_VARS = (
  "PUSH_ENV",
  "PUSH_DEBUG",
  "PUSH_PG_DSN",
  "DATABASE_URL",
  "PUSH_QUEUE_BACKEND",
  "PUSH_WORKER_ENABLED",
  "PUSH_WORKER_CONCURRENCY",
  "PUSH_MAX_ATTEMPTS",
  "PUSH_RETRY_BASE_DELAY_SECONDS",
  "PUSH_RETRY_MAX_DELAY_SECONDS",
  "PUSH_VISIBILITY_TIMEOUT_SECONDS",
  "PUSH_CLAIM_WAIT_SECONDS",
  "PUSH_QUEUE_TIMEOUT_SECONDS",
  "PUSH_SHUTDOWN_GRACE_SECONDS",
  "PUSH_MIN_TOKEN_LENGTH",
  "PUSH_PROVIDER_TIMEOUT_SECONDS",
  "PUSH_STORE_TIMEOUT_SECONDS",
  "PUSH_PROVIDER",
  "PUSH_OPS_SECRET",
  "FIREBASE_PROJECT_ID",
  "FCM_PROJECT_ID",
  "FCM_PRIVATE_KEY",
  "FCM_CLIENT_EMAIL",
)


@pytest.fixture
def anyio_backend():
  # The pipeline is built on asyncio primitives.
  return "asyncio"


@pytest.fixture
def clean_env(monkeypatch):
  """Clear pipeline env vars and cached settings so each test configures its own."""
  for name in _PUSH_ENV_VARS:
    monkeypatch.delenv(name, raising=False)
  get_settings.cache_clear()
  get_database_settings.cache_clear()
  yield monkeypatch
  get_settings.cache_clear()
  get_database_settings.cache_clear()
