"""Factory helpers for the notification engine.

``build_notification_engine`` is the host application's entry point: it sets up logging,
builds the HTTP connector and marker store from settings, and hands the engine the
callbacks that release them on ``NotificationEngine.stop()``.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable

from notify_engine.config import Settings
from notify_engine.connectors.http import HttpSourceConnector, TokenProvider
from notify_engine.core.logging import initialize_logging
from notify_engine.notifications.contracts import AuthSignal, KeyValueStore, SourceConnector
from notify_engine.notifications.engine import NotificationEngine
from notify_engine.notifications.retry import RetryController
from notify_engine.storage.memory_store import InMemoryKeyValueStore
from notify_engine.storage.postgres_store import PostgresKeyValueStore


def build_key_value_store(settings: Settings) -> KeyValueStore:
  """Use Postgres when configured, otherwise keep markers in process memory."""
  if settings.pg_dsn:
    return PostgresKeyValueStore()
  return InMemoryKeyValueStore()


def build_notification_engine(settings: Settings, *, auth: AuthSignal, token_provider: TokenProvider | None = None, connector: SourceConnector | None = None, store: KeyValueStore | None = None) -> NotificationEngine:
  """Construct a notification engine based on environment configuration.

  Only resources built here are closed by the engine; injected ones stay with the caller.
  """
  initialize_logging(settings)
  closers: list[Callable[[], Awaitable[None]]] = []

  if connector is None:
    if not settings.api_base_url:
      raise ValueError("NOTIFY_API_BASE_URL must be set to poll the REST sources.")
    http_connector = HttpSourceConnector(base_url=settings.api_base_url, token_provider=token_provider, admin_order_status=settings.admin_order_status, timeout_seconds=settings.fetch_timeout_seconds)
    closers.append(http_connector.aclose)
    connector = http_connector

  if store is None:
    store = build_key_value_store(settings)
    if isinstance(store, PostgresKeyValueStore):
      closers.append(store.aclose)

  retry = RetryController(max_retries=settings.max_retries, base_delay_ms=settings.retry_base_delay_ms)
  return NotificationEngine(
    auth=auth,
    connector=connector,
    store=store,
    admin_roles=settings.admin_roles,
    poll_interval_seconds=settings.poll_interval_seconds,
    fetch_timeout_seconds=settings.fetch_timeout_seconds,
    persist_interval_seconds=settings.persist_interval_seconds,
    sweep_interval_seconds=settings.sweep_interval_seconds,
    max_deleted_ids=settings.max_deleted_ids,
    max_published=settings.max_published,
    retry=retry,
    closers=closers,
  )
