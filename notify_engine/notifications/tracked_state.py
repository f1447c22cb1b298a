"""Per-session memory of what has already been surfaced."""

from __future__ import annotations

from dataclasses import dataclass, field

import msgspec

CATEGORIES = ("orders", "messages", "reviews", "users")


def _empty_seen() -> dict[str, set[str]]:
  return {category: set() for category in CATEGORIES}


@dataclass
class TrackedState:
  """Last observed order statuses and ids already announced, per category.

  Owned by the engine for one session and mutated in place by the diff functions.
  """

  last_status_by_entity_id: dict[str, str] = field(default_factory=dict)
  last_seen_ids_by_category: dict[str, set[str]] = field(default_factory=_empty_seen)

  def seen(self, category: str) -> set[str]:
    return self.last_seen_ids_by_category.setdefault(category, set())

  def to_snapshot(self) -> TrackedStateSnapshot:
    return TrackedStateSnapshot(status=dict(self.last_status_by_entity_id), seen={category: sorted(self.seen(category)) for category in CATEGORIES})

  @classmethod
  def from_snapshot(cls, snapshot: TrackedStateSnapshot) -> TrackedState:
    seen = _empty_seen()
    for category, ids in snapshot.seen.items():
      seen[category] = set(ids)
    return cls(last_status_by_entity_id=dict(snapshot.status), last_seen_ids_by_category=seen)


class TrackedStateSnapshot(msgspec.Struct):
  """Durable JSON form: {"status": {...}, "seen": {"orders": [...], ...}}."""

  status: dict[str, str] = {}
  seen: dict[str, list[str]] = {}


_snapshot_decoder = msgspec.json.Decoder(TrackedStateSnapshot)


def encode_tracked_state(state: TrackedState) -> str:
  return msgspec.json.encode(state.to_snapshot()).decode("utf-8")


def decode_tracked_state(raw: str) -> TrackedState:
  """Decode a stored blob; raises msgspec.DecodeError on malformed input."""
  return TrackedState.from_snapshot(_snapshot_decoder.decode(raw))
