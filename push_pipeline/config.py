"""Application configuration loaded from environment variables."""

from __future__ import annotations

import os
from dataclasses import dataclass
from functools import lru_cache

from push_pipeline.utils.env import default_env_path, load_env_file

load_env_file(default_env_path(), override=False)

_QUEUE_BACKENDS = {"postgres", "memory"}
_PUSH_PROVIDERS = {"firebase", "null"}


@dataclass(frozen=True)
class Settings:
  """Typed settings for the push delivery pipeline."""

  environment: str
  debug: bool
  log_dir: str
  log_max_bytes: int
  log_backup_count: int
  pg_dsn: str | None
  queue_backend: str
  worker_enabled: bool
  worker_concurrency: int
  max_attempts: int
  retry_base_delay_seconds: float
  retry_max_delay_seconds: float
  visibility_timeout_seconds: float
  claim_wait_seconds: float
  provider_timeout_seconds: float
  store_timeout_seconds: float
  queue_timeout_seconds: float
  shutdown_grace_seconds: float
  min_token_length: int
  push_provider: str
  firebase_project_id: str | None
  firebase_service_account_json_path: str | None
  fcm_client_email: str | None
  fcm_private_key: str | None
  ops_secret: str | None


@dataclass(frozen=True)
class DatabaseSettings:
  """Typed settings for database connectivity."""

  debug: bool
  pg_dsn: str | None
  pg_connect_timeout: int


def _parse_bool(raw: str | None, *, default: bool = False) -> bool:
  """Parse a boolean-ish string from environment variables."""

  if raw is None or raw.strip() == "":
    return default

  normalized = raw.strip().lower()
  return normalized in {"1", "true", "yes", "on"}


def _env_number(name: str, default: str, cast: type[int] | type[float]) -> int | float:
  raw = os.getenv(name, default)
  try:
    return cast(raw)
  except ValueError as exc:
    kind = "an integer" if cast is int else "a number"
    raise ValueError(f"{name} must be {kind}, got {raw!r}.") from exc


def _positive_int(name: str, default: str) -> int:
  value = _env_number(name, default, int)
  if value <= 0:
    raise ValueError(f"{name} must be a positive integer.")
  return value


def _non_negative_float(name: str, default: str) -> float:
  value = _env_number(name, default, float)
  if value < 0:
    raise ValueError(f"{name} must be zero or a positive number.")
  return value


def _positive_float(name: str, default: str) -> float:
  value = _env_number(name, default, float)
  if value <= 0:
    raise ValueError(f"{name} must be a positive number.")
  return value


@lru_cache(maxsize=1)
def get_settings() -> Settings:
  """Load settings once per process."""

  environment = os.getenv("PUSH_ENV", "development").lower()
  debug = _parse_bool(os.getenv("PUSH_DEBUG"))
  pg_dsn = _optional_str(os.getenv("PUSH_PG_DSN")) or _optional_str(os.getenv("DATABASE_URL"))

  log_max_bytes = _positive_int("PUSH_LOG_MAX_BYTES", "5242880")  # 5MB default
  log_backup_count = _env_number("PUSH_LOG_BACKUP_COUNT", "10", int)
  if log_backup_count < 0:
    raise ValueError("PUSH_LOG_BACKUP_COUNT must be zero or a positive integer.")

  # Default to the durable backend whenever a database is configured.
  queue_backend = (os.getenv("PUSH_QUEUE_BACKEND") or ("postgres" if pg_dsn else "memory")).strip().lower()
  if queue_backend not in _QUEUE_BACKENDS:
    raise ValueError(f"PUSH_QUEUE_BACKEND must be one of {sorted(_QUEUE_BACKENDS)}.")
  if queue_backend == "postgres" and not pg_dsn:
    raise ValueError("PUSH_PG_DSN must be set when PUSH_QUEUE_BACKEND is 'postgres'.")

  max_attempts = _positive_int("PUSH_MAX_ATTEMPTS", "5")
  retry_base_delay_seconds = _non_negative_float("PUSH_RETRY_BASE_DELAY_SECONDS", "5")
  retry_max_delay_seconds = _non_negative_float("PUSH_RETRY_MAX_DELAY_SECONDS", "300")
  if retry_max_delay_seconds < retry_base_delay_seconds:
    raise ValueError("PUSH_RETRY_MAX_DELAY_SECONDS must not be lower than PUSH_RETRY_BASE_DELAY_SECONDS.")

  provider_timeout_seconds = _positive_float("PUSH_PROVIDER_TIMEOUT_SECONDS", "10")
  store_timeout_seconds = _positive_float("PUSH_STORE_TIMEOUT_SECONDS", "5")
  queue_timeout_seconds = _positive_float("PUSH_QUEUE_TIMEOUT_SECONDS", "10")
  visibility_timeout_seconds = _positive_float("PUSH_VISIBILITY_TIMEOUT_SECONDS", "120")
  # A lease shorter than one full dispatch would let a second worker pick up a job still in flight.
  if visibility_timeout_seconds <= provider_timeout_seconds + store_timeout_seconds:
    raise ValueError("PUSH_VISIBILITY_TIMEOUT_SECONDS must exceed PUSH_PROVIDER_TIMEOUT_SECONDS + PUSH_STORE_TIMEOUT_SECONDS.")

  push_provider = (os.getenv("PUSH_PROVIDER") or "firebase").strip().lower()
  if push_provider not in _PUSH_PROVIDERS:
    raise ValueError(f"PUSH_PROVIDER must be one of {sorted(_PUSH_PROVIDERS)}.")

  fcm_private_key = _optional_str(os.getenv("FCM_PRIVATE_KEY"))
  if fcm_private_key:
    # Keys are usually stored with escaped newlines in env files.
    fcm_private_key = fcm_private_key.replace("\\n", "\n")

  return Settings(
    environment=environment,
    debug=debug,
    log_dir=(os.getenv("PUSH_LOG_DIR") or "./logs").strip(),
    log_max_bytes=log_max_bytes,
    log_backup_count=log_backup_count,
    pg_dsn=pg_dsn,
    queue_backend=queue_backend,
    worker_enabled=_parse_bool(os.getenv("PUSH_WORKER_ENABLED"), default=True),
    worker_concurrency=_positive_int("PUSH_WORKER_CONCURRENCY", "4"),
    max_attempts=max_attempts,
    retry_base_delay_seconds=retry_base_delay_seconds,
    retry_max_delay_seconds=retry_max_delay_seconds,
    visibility_timeout_seconds=visibility_timeout_seconds,
    claim_wait_seconds=_positive_float("PUSH_CLAIM_WAIT_SECONDS", "5"),
    provider_timeout_seconds=provider_timeout_seconds,
    store_timeout_seconds=store_timeout_seconds,
    queue_timeout_seconds=queue_timeout_seconds,
    shutdown_grace_seconds=_non_negative_float("PUSH_SHUTDOWN_GRACE_SECONDS", "20"),
    min_token_length=_positive_int("PUSH_MIN_TOKEN_LENGTH", "21"),
    push_provider=push_provider,
    firebase_project_id=_optional_str(os.getenv("FIREBASE_PROJECT_ID")) or _optional_str(os.getenv("FCM_PROJECT_ID")),
    firebase_service_account_json_path=_optional_str(os.getenv("FIREBASE_SERVICE_ACCOUNT_JSON_PATH")),
    fcm_client_email=_optional_str(os.getenv("FCM_CLIENT_EMAIL")),
    fcm_private_key=fcm_private_key,
    ops_secret=_optional_str(os.getenv("PUSH_OPS_SECRET")),
  )


@lru_cache(maxsize=1)
def get_database_settings() -> DatabaseSettings:
  """Load database settings without requiring the worker configuration."""
  # Keep database configuration isolated so migrations don't require unrelated env vars.
  debug = _parse_bool(os.getenv("PUSH_DEBUG"))
  pg_connect_timeout = _positive_int("PUSH_PG_CONNECT_TIMEOUT", "5")
  pg_dsn = _optional_str(os.getenv("PUSH_PG_DSN")) or _optional_str(os.getenv("DATABASE_URL"))

  return DatabaseSettings(debug=debug, pg_dsn=pg_dsn, pg_connect_timeout=pg_connect_timeout)


def _optional_str(raw: str | None) -> str | None:
  if raw is None:
    return None
  value = raw.strip()
  if value == "":
    return None
  return value
