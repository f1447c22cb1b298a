"""Ordering and truncation of the published working set."""

from __future__ import annotations

from collections.abc import Iterable

from notify_engine.notifications.contracts import Notification

MAX_PUBLISHED = 100


def sort_key(notification: Notification) -> tuple[int, int]:
  return (-notification.priority.rank, -notification.timestamp)


def sort_notifications(notifications: Iterable[Notification]) -> list[Notification]:
  """Order by priority (high first), then by timestamp (most recent first)."""
  return sorted(notifications, key=sort_key)


def sort_and_cap(notifications: Iterable[Notification], *, limit: int = MAX_PUBLISHED) -> list[Notification]:
  """Sort and keep the first ``limit`` entries, regardless of read state."""
  return sort_notifications(notifications)[:limit]
