"""Engine configuration loaded from environment variables."""

from __future__ import annotations

import os
from dataclasses import dataclass
from functools import lru_cache

from notify_engine.utils.env import default_env_path, load_env_file

load_env_file(default_env_path(), override=False)


@dataclass(frozen=True)
class Settings:
  """Typed settings for the notification engine."""

  environment: str
  debug: bool
  api_base_url: str | None
  admin_roles: frozenset[str]
  admin_order_status: str
  poll_interval_seconds: float
  fetch_timeout_seconds: float
  max_retries: int
  retry_base_delay_ms: int
  persist_interval_seconds: float
  sweep_interval_seconds: float
  max_deleted_ids: int
  max_published: int
  pg_dsn: str | None
  pg_connect_timeout: int
  log_max_bytes: int
  log_backup_count: int


@dataclass(frozen=True)
class DatabaseSettings:
  """Typed settings for the durable key-value store."""

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
  value = raw.strip()
  if value == "":
    return None
  return value


def _parse_roles(raw: str | None) -> frozenset[str]:
  if not raw:
    return frozenset({"superadmin", "adminrestaurant"})

  roles = frozenset(role.strip().lower() for role in raw.split(",") if role.strip())
  if not roles:
    raise ValueError("NOTIFY_ADMIN_ROLES must include at least one role.")

  return roles


def _positive_float(name: str, default: str) -> float:
  value = float(os.getenv(name, default))
  if value <= 0:
    raise ValueError(f"{name} must be a positive number.")
  return value


def _positive_int(name: str, default: str) -> int:
  value = int(os.getenv(name, default))
  if value <= 0:
    raise ValueError(f"{name} must be a positive integer.")
  return value


@lru_cache(maxsize=1)
def get_settings() -> Settings:
  """Load settings once per process."""

  environment = os.getenv("NOTIFY_ENV", "development").lower()
  debug = _parse_bool(os.getenv("NOTIFY_DEBUG"))

  max_retries = int(os.getenv("NOTIFY_MAX_RETRIES", "3"))
  if max_retries < 0:
    raise ValueError("NOTIFY_MAX_RETRIES must be zero or a positive integer.")

  log_backup_count = int(os.getenv("NOTIFY_LOG_BACKUP_COUNT", "10"))
  if log_backup_count < 0:
    raise ValueError("NOTIFY_LOG_BACKUP_COUNT must be zero or a positive integer.")

  return Settings(
    environment=environment,
    debug=debug,
    api_base_url=_optional_str(os.getenv("NOTIFY_API_BASE_URL")),
    admin_roles=_parse_roles(os.getenv("NOTIFY_ADMIN_ROLES")),
    admin_order_status=(os.getenv("NOTIFY_ADMIN_ORDER_STATUS") or "recu").strip(),
    poll_interval_seconds=_positive_float("NOTIFY_POLL_INTERVAL_SECONDS", "5"),
    fetch_timeout_seconds=_positive_float("NOTIFY_FETCH_TIMEOUT_SECONDS", "10"),
    max_retries=max_retries,
    retry_base_delay_ms=_positive_int("NOTIFY_RETRY_BASE_DELAY_MS", "1000"),
    persist_interval_seconds=_positive_float("NOTIFY_PERSIST_INTERVAL_SECONDS", "30"),
    sweep_interval_seconds=_positive_float("NOTIFY_SWEEP_INTERVAL_SECONDS", "3600"),
    max_deleted_ids=_positive_int("NOTIFY_MAX_DELETED_IDS", "1000"),
    max_published=_positive_int("NOTIFY_MAX_PUBLISHED", "100"),
    pg_dsn=_optional_str(os.getenv("NOTIFY_PG_DSN")),
    pg_connect_timeout=_positive_int("NOTIFY_PG_CONNECT_TIMEOUT", "5"),
    log_max_bytes=_positive_int("NOTIFY_LOG_MAX_BYTES", "5242880"),
    log_backup_count=log_backup_count,
  )


@lru_cache(maxsize=1)
def get_database_settings() -> DatabaseSettings:
  """Load store settings without requiring the polling configuration."""
  debug = _parse_bool(os.getenv("NOTIFY_DEBUG"))
  pg_connect_timeout = _positive_int("NOTIFY_PG_CONNECT_TIMEOUT", "5")
  pg_dsn = _optional_str(os.getenv("NOTIFY_PG_DSN"))
  return DatabaseSettings(debug=debug, pg_dsn=pg_dsn, pg_connect_timeout=pg_connect_timeout)
