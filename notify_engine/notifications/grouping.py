"""Merge similar recent notifications into grouped entries."""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass, field

from notify_engine.notifications.contracts import Notification, NotificationType, format_time
from notify_engine.notifications.templates import render_group

GROUPING_WINDOW_MS = 5 * 60 * 1000

GROUPABLE_TYPES = frozenset({NotificationType.NEW_ORDER, NotificationType.NEW_MESSAGE, NotificationType.NEW_REVIEW, NotificationType.NEW_USER, NotificationType.ORDER_STATUS})
STATUS_KEYED_TYPES = frozenset({NotificationType.ORDER_STATUS, NotificationType.NEW_ORDER})


@dataclass
class _Bucket:
  key: str
  type: NotificationType
  status: str | None
  members: list[Notification] = field(default_factory=list)


def group_key(notification: Notification) -> str:
  """Bucket key: the type, plus the status for order types so different statuses never merge."""
  if notification.type in STATUS_KEYED_TYPES and notification.status:
    return f"{notification.type.value}_{notification.status}"
  return notification.type.value


def group(notifications: Sequence[Notification], *, now_ms: int, window_ms: int = GROUPING_WINDOW_MS) -> list[Notification]:
  """Collapse buckets of two or more recent same-kind notifications into one grouped entry.

  Old or non-groupable notifications pass through unchanged, as do single-member buckets.
  Input is expected to be ungrouped; grouped entries are passed through as-is.

  Grouped ids are ``grouped-{group_key}-{latest member timestamp}``: ``grouped-new_message-<ts>``
  for plain types and ``grouped-order_status_ready-<ts>`` for order types, whose key carries
  the status so two status groups sharing a timestamp never collide.
  """
  cutoff = now_ms - window_ms
  passthrough: list[Notification] = []
  buckets: dict[str, _Bucket] = {}

  for notification in notifications:
    if notification.grouped or notification.timestamp < cutoff or notification.type not in GROUPABLE_TYPES:
      passthrough.append(notification)
      continue
    key = group_key(notification)
    bucket = buckets.get(key)
    if bucket is None:
      bucket = buckets[key] = _Bucket(key=key, type=notification.type, status=notification.status if notification.type in STATUS_KEYED_TYPES else None)
    bucket.members.append(notification)

  result = list(passthrough)
  for bucket in buckets.values():
    if len(bucket.members) == 1:
      result.append(bucket.members[0])
    else:
      result.append(_merge(bucket))
  return result


def _merge(bucket: _Bucket) -> Notification:
  most_recent = max(bucket.members, key=lambda member: member.timestamp)
  priority = max((member.priority for member in bucket.members), key=lambda value: value.rank)
  count = len(bucket.members)
  title, message = render_group(bucket.type, count)
  timestamp = most_recent.timestamp
  return Notification(
    id=f"grouped-{bucket.key}-{timestamp}",
    type=bucket.type,
    title=title,
    message=message,
    priority=priority,
    timestamp=timestamp,
    time=most_recent.time or format_time(timestamp),
    status=bucket.status,
    grouped=True,
    count=count,
    members=tuple(bucket.members),
  )
