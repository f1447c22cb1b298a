"""Durable read/deleted markers and tracked-state snapshots, scoped by role."""

from __future__ import annotations

import logging
import time
from collections.abc import Callable, Iterable, Iterator
from dataclasses import dataclass, field

import msgspec

from notify_engine.notifications.contracts import KeyValueStore, RoleScope
from notify_engine.notifications.tracked_state import TrackedState, decode_tracked_state, encode_tracked_state

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class MarkerKeys:
  """Storage keys for one role scope."""

  read: str
  deleted: str
  tracked: str


MARKER_KEYS: dict[RoleScope, MarkerKeys] = {
  RoleScope.CUSTOMER: MarkerKeys(read="read_notifications_v1", deleted="deleted_notifications_v1", tracked="last_status_v1"),
  RoleScope.ADMIN: MarkerKeys(read="read_notifications_admin_v1", deleted="deleted_notifications_admin_v1", tracked="last_status_admin_v1"),
}


class OrderedIdSet:
  """Insertion-ordered set of notification ids."""

  def __init__(self, ids: Iterable[str] = ()) -> None:
    self._ids: dict[str, None] = dict.fromkeys(ids)

  def add(self, notification_id: str) -> bool:
    """Add an id; return True when it was not present yet."""
    if notification_id in self._ids:
      return False
    self._ids[notification_id] = None
    return True

  def retain(self, keep: set[str]) -> int:
    """Drop every id not in ``keep``; return how many were dropped."""
    stale = [notification_id for notification_id in self._ids if notification_id not in keep]
    for notification_id in stale:
      del self._ids[notification_id]
    return len(stale)

  def trim_oldest(self, max_size: int) -> int:
    """Keep only the ``max_size`` most recently added ids; return how many were dropped."""
    overflow = len(self._ids) - max_size
    if overflow <= 0:
      return 0
    for notification_id in list(self._ids)[:overflow]:
      del self._ids[notification_id]
    return overflow

  def as_list(self) -> list[str]:
    return list(self._ids)

  def __contains__(self, notification_id: object) -> bool:
    return notification_id in self._ids

  def __iter__(self) -> Iterator[str]:
    return iter(self._ids)

  def __len__(self) -> int:
    return len(self._ids)


@dataclass
class PersistedMarkers:
  read_ids: OrderedIdSet = field(default_factory=OrderedIdSet)
  deleted_ids: OrderedIdSet = field(default_factory=OrderedIdSet)


_id_list_decoder = msgspec.json.Decoder(list[str])


class MarkerStore:
  """Loads and flushes one session's markers and tracked state.

  Writes are debounced: ``flush_if_due`` writes at most once per ``persist_interval_seconds``.
  Store failures are logged and never raised; the session keeps working in memory.
  """

  def __init__(self, *, store: KeyValueStore, scope: RoleScope, persist_interval_seconds: float = 30.0, max_deleted_ids: int = 1000, clock: Callable[[], float] = time.monotonic) -> None:
    self._store = store
    self._keys = MARKER_KEYS[scope]
    self._persist_interval_seconds = persist_interval_seconds
    self._max_deleted_ids = max_deleted_ids
    self._clock = clock
    self._last_flush: float | None = None
    self._dirty: set[str] = set()
    self.scope = scope
    self.markers = PersistedMarkers()
    self.tracked_state = TrackedState()

  @property
  def keys(self) -> MarkerKeys:
    return self._keys

  @property
  def dirty(self) -> bool:
    return bool(self._dirty)

  async def load(self) -> None:
    """Hydrate markers and tracked state; missing or unreadable blobs leave defaults in place."""
    read_raw = await self._safe_get(self._keys.read)
    deleted_raw = await self._safe_get(self._keys.deleted)
    tracked_raw = await self._safe_get(self._keys.tracked)

    if read_raw:
      self.markers.read_ids = OrderedIdSet(self._decode_ids(self._keys.read, read_raw))
    if deleted_raw:
      self.markers.deleted_ids = OrderedIdSet(self._decode_ids(self._keys.deleted, deleted_raw))
    if tracked_raw:
      try:
        self.tracked_state = decode_tracked_state(tracked_raw)
      except msgspec.DecodeError as exc:
        logger.error("Discarding unreadable tracked state key=%s error=%s", self._keys.tracked, exc)

    logger.info("Markers loaded scope=%s read=%d deleted=%d tracked_orders=%d", self.scope.value, len(self.markers.read_ids), len(self.markers.deleted_ids), len(self.tracked_state.last_status_by_entity_id))

  def mark_dirty(self, *, read: bool = False, deleted: bool = False, tracked: bool = False) -> None:
    if read:
      self._dirty.add(self._keys.read)
    if deleted:
      self._dirty.add(self._keys.deleted)
    if tracked:
      self._dirty.add(self._keys.tracked)

  async def flush(self) -> None:
    """Write every dirty blob now."""
    pending = set(self._dirty)
    self._dirty.clear()
    self._last_flush = self._clock()
    for key in sorted(pending):
      if not await self._safe_set(key, self._encode(key)):
        # Keep the blob dirty so the next flush retries it.
        self._dirty.add(key)

  async def flush_if_due(self) -> bool:
    """Flush when dirty and the debounce interval has elapsed; return whether a flush ran."""
    if not self._dirty:
      return False
    if self._last_flush is not None and self._clock() - self._last_flush < self._persist_interval_seconds:
      return False
    await self.flush()
    return True

  def seconds_until_due(self) -> float:
    """Delay before ``flush_if_due`` would write; a full interval while nothing is pending."""
    if not self._dirty:
      return self._persist_interval_seconds
    if self._last_flush is None:
      return 0.0
    return max(0.0, self._last_flush + self._persist_interval_seconds - self._clock())

  async def sweep(self) -> int:
    """Cap deleted ids to the most recent entries and persist the result."""
    dropped = self.markers.deleted_ids.trim_oldest(self._max_deleted_ids)
    if dropped:
      logger.info("Deleted-id sweep dropped=%d kept=%d scope=%s", dropped, len(self.markers.deleted_ids), self.scope.value)
      self.mark_dirty(deleted=True)
      await self.flush()
    return dropped

  def _encode(self, key: str) -> str:
    if key == self._keys.read:
      return msgspec.json.encode(self.markers.read_ids.as_list()).decode("utf-8")
    if key == self._keys.deleted:
      return msgspec.json.encode(self.markers.deleted_ids.as_list()).decode("utf-8")
    return encode_tracked_state(self.tracked_state)

  def _decode_ids(self, key: str, raw: str) -> list[str]:
    try:
      return _id_list_decoder.decode(raw)
    except msgspec.DecodeError as exc:
      logger.error("Discarding unreadable marker set key=%s error=%s", key, exc)
      return []

  async def _safe_get(self, key: str) -> str | None:
    try:
      return await self._store.get(key)
    except Exception as exc:  # noqa: BLE001
      logger.error("Marker store read failed key=%s error=%s", key, exc, exc_info=True)
      return None

  async def _safe_set(self, key: str, value: str) -> bool:
    try:
      await self._store.set(key, value)
    except Exception as exc:  # noqa: BLE001
      logger.error("Marker store write failed key=%s error=%s", key, exc, exc_info=True)
      return False
    return True
