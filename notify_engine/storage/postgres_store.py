"""Postgres-backed key-value store for notification markers using SQLAlchemy."""

from __future__ import annotations

import asyncio
import logging

from sqlalchemy import func, select
from sqlalchemy.dialects.postgresql import insert
from sqlalchemy.exc import SQLAlchemyError

from notify_engine.core.database import Base, dispose_engine, get_db_engine, get_session_factory
from notify_engine.core.exceptions import PersistenceError
from notify_engine.notifications.contracts import KeyValueStore
from notify_engine.schema.kv import NotificationKeyValue

logger = logging.getLogger(__name__)


async def create_schema() -> None:
  """Create the marker table when it does not exist yet."""
  db_engine = get_db_engine()
  if db_engine is None:
    raise RuntimeError("Database not initialized")
  async with db_engine.begin() as conn:
    await conn.run_sync(Base.metadata.create_all, tables=[NotificationKeyValue.__table__])


class PostgresKeyValueStore(KeyValueStore):
  """Persist marker blobs in the notification_kv table.

  The table is created on first use unless ``ensure_schema`` is False.
  """

  def __init__(self, *, ensure_schema: bool = True) -> None:
    self._session_factory = get_session_factory()
    if self._session_factory is None:
      raise RuntimeError("Database not initialized")
    self._schema_ready = not ensure_schema
    self._schema_lock = asyncio.Lock()

  async def _ensure_schema(self) -> None:
    if self._schema_ready:
      return
    async with self._schema_lock:
      if self._schema_ready:
        return
      try:
        await create_schema()
      except SQLAlchemyError as exc:
        logger.error("Failed to create notification_kv table: %s", exc)
        raise PersistenceError("Failed to create the notification_kv table") from exc
      self._schema_ready = True
      logger.info("Marker table notification_kv is ready")

  async def get(self, key: str) -> str | None:
    await self._ensure_schema()
    try:
      async with self._session_factory() as session:
        result = await session.execute(select(NotificationKeyValue.value).where(NotificationKeyValue.key == key))
        return result.scalar_one_or_none()
    except SQLAlchemyError as exc:
      logger.error("Failed to read marker key=%s: %s", key, exc)
      raise PersistenceError(f"Failed to read key '{key}'") from exc

  async def set(self, key: str, value: str) -> None:
    await self._ensure_schema()
    stmt = insert(NotificationKeyValue).values(key=key, value=value)
    stmt = stmt.on_conflict_do_update(index_elements=["key"], set_={"value": value, "updated_at": func.now()})
    try:
      async with self._session_factory() as session:
        await session.execute(stmt)
        await session.commit()
    except SQLAlchemyError as exc:
      logger.error("Failed to write marker key=%s: %s", key, exc)
      raise PersistenceError(f"Failed to write key '{key}'") from exc

  async def aclose(self) -> None:
    """Release pooled database connections."""
    await dispose_engine()
