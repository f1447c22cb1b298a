"""Process-local key-value stores."""

from __future__ import annotations

from notify_engine.notifications.contracts import KeyValueStore


class InMemoryKeyValueStore(KeyValueStore):
  """Dictionary-backed store; values survive engine sessions but not the process."""

  def __init__(self, initial: dict[str, str] | None = None) -> None:
    self._values: dict[str, str] = dict(initial or {})

  async def get(self, key: str) -> str | None:
    return self._values.get(key)

  async def set(self, key: str, value: str) -> None:
    self._values[key] = value

  def snapshot(self) -> dict[str, str]:
    return dict(self._values)


class NullKeyValueStore(KeyValueStore):
  """Store that remembers nothing."""

  async def get(self, key: str) -> str | None:
    return None

  async def set(self, key: str, value: str) -> None:
    return None
