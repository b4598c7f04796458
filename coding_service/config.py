"""Application configuration loaded from environment variables."""

from __future__ import annotations

import os
from dataclasses import dataclass
from functools import lru_cache


@dataclass(frozen=True)
class Settings:
  """Typed settings for the coding service."""

  environment: str
  debug: bool
  pg_dsn: str | None
  pg_connect_timeout: int
  log_dir: str
  log_max_bytes: int
  log_backup_count: int
  scheme_cache_ttl_seconds: int
  test_file_cache_ttl_seconds: int
  statistics_cache_ttl_seconds: int
  person_batch_size: int
  update_batch_size: int
  worker_poll_interval_seconds: float


@dataclass(frozen=True)
class DatabaseSettings:
  """Typed settings for database connectivity."""

  debug: bool
  pg_dsn: str | None
  pg_connect_timeout: int


def _parse_bool(raw: str | None) -> bool:
  """Parse a boolean-ish string from environment variables."""

  if raw is None:
    return False

  normalized = raw.strip().lower()
  return normalized in {"1", "true", "yes", "on"}


def _optional_str(raw: str | None) -> str | None:
  if raw is None:
    return None
  stripped = raw.strip()
  return stripped or None


def _positive_int(name: str, default: str) -> int:
  """Read a strictly positive integer setting."""
  raw = os.getenv(name, default)
  try:
    value = int(raw)
  except ValueError as exc:
    raise ValueError(f"{name} must be an integer.") from exc
  if value <= 0:
    raise ValueError(f"{name} must be a positive integer.")
  return value


def _positive_float(name: str, default: str) -> float:
  raw = os.getenv(name, default)
  try:
    value = float(raw)
  except ValueError as exc:
    raise ValueError(f"{name} must be a number.") from exc
  if value <= 0:
    raise ValueError(f"{name} must be positive.")
  return value


@lru_cache(maxsize=1)
def get_settings() -> Settings:
  """Load settings once per process."""

  environment = os.getenv("CODING_ENV", "development").lower()

  # Toggle verbose SQL echo and debug logs in non-production environments.
  debug = _parse_bool(os.getenv("CODING_DEBUG"))

  log_max_bytes = _positive_int("CODING_LOG_MAX_BYTES", "5242880")  # 5MB default
  log_backup_count = int(os.getenv("CODING_LOG_BACKUP_COUNT", "10"))
  if log_backup_count < 0:
    raise ValueError("CODING_LOG_BACKUP_COUNT must be zero or a positive integer.")

  return Settings(
    environment=environment,
    debug=debug,
    pg_dsn=_optional_str(os.getenv("CODING_PG_DSN")) or _optional_str(os.getenv("DATABASE_URL")),
    pg_connect_timeout=_positive_int("CODING_PG_CONNECT_TIMEOUT", "5"),
    log_dir=(os.getenv("CODING_LOG_DIR") or "logs").strip(),
    log_max_bytes=log_max_bytes,
    log_backup_count=log_backup_count,
    scheme_cache_ttl_seconds=_positive_int("CODING_SCHEME_CACHE_TTL_SECONDS", "1800"),
    test_file_cache_ttl_seconds=_positive_int("CODING_TEST_FILE_CACHE_TTL_SECONDS", "900"),
    statistics_cache_ttl_seconds=_positive_int("CODING_STATISTICS_CACHE_TTL_SECONDS", "3600"),
    person_batch_size=_positive_int("CODING_PERSON_BATCH_SIZE", "500"),
    update_batch_size=_positive_int("CODING_UPDATE_BATCH_SIZE", "500"),
    worker_poll_interval_seconds=_positive_float("CODING_WORKER_POLL_INTERVAL_SECONDS", "2.0"),
  )


@lru_cache(maxsize=1)
def get_database_settings() -> DatabaseSettings:
  """Load database settings without requiring the worker configuration."""
  # Keep database configuration isolated so offline scripts don't require unrelated env vars.
  debug = _parse_bool(os.getenv("CODING_DEBUG"))
  pg_connect_timeout = _positive_int("CODING_PG_CONNECT_TIMEOUT", "5")

  # Support fallback to DATABASE_URL for hosted Postgres providers.
  pg_dsn = _optional_str(os.getenv("CODING_PG_DSN")) or _optional_str(os.getenv("DATABASE_URL"))

  return DatabaseSettings(debug=debug, pg_dsn=pg_dsn, pg_connect_timeout=pg_connect_timeout)
