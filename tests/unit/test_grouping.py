from __future__ import annotations

import pytest

from notify_engine.notifications.contracts import Notification, NotificationType, Priority, format_time
from notify_engine.notifications.grouping import GROUPING_WINDOW_MS, group, group_key

NOW = 1_700_000_000_000


def _n(notification_id: str, notification_type: NotificationType, timestamp: int, *, priority: Priority = Priority.HIGH, status: str | None = None) -> Notification:
  return Notification(id=notification_id, type=notification_type, title="t", message="m", priority=priority, timestamp=timestamp, time=format_time(timestamp), status=status)


def test_recent_same_type_notifications_merge():
  messages = [_n(f"admin-message-{i}-new", NotificationType.NEW_MESSAGE, NOW - i * 1000) for i in range(3)]

  result = group(messages, now_ms=NOW)

  assert len(result) == 1
  grouped = result[0]
  assert grouped.grouped is True
  assert grouped.count == 3
  assert grouped.id == f"grouped-new_message-{NOW}"
  assert grouped.title == "3 new messages"
  assert grouped.message == "3 new messages have been received"
  assert [member.id for member in grouped.members] == [n.id for n in messages]
  assert grouped.all_ids() == [grouped.id, *(n.id for n in messages)]


def test_single_bucket_member_passes_through_unchanged():
  single = _n("admin-user-1-new", NotificationType.NEW_USER, NOW, priority=Priority.LOW)

  assert group([single], now_ms=NOW) == [single]


def test_order_status_notifications_only_merge_with_the_same_status():
  updates = [
    _n("order-1-ready-1", NotificationType.ORDER_STATUS, NOW - 1000, status="ready"),
    _n("order-2-ready-2", NotificationType.ORDER_STATUS, NOW - 2000, status="ready"),
    _n("order-3-preparing-3", NotificationType.ORDER_STATUS, NOW - 3000, status="preparing"),
  ]

  result = group(updates, now_ms=NOW)

  by_id = {n.id: n for n in result}
  assert set(by_id) == {f"grouped-order_status_ready-{NOW - 1000}", "order-3-preparing-3"}
  merged = by_id[f"grouped-order_status_ready-{NOW - 1000}"]
  assert merged.status == "ready"
  assert merged.title == "2 order updates"


def test_notifications_outside_the_window_are_not_grouped():
  old = [_n(f"admin-review-{i}-new", NotificationType.NEW_REVIEW, NOW - GROUPING_WINDOW_MS - 1000 - i) for i in range(2)]

  assert group(old, now_ms=NOW) == old


def test_grouped_priority_is_the_highest_member_priority():
  members = [_n("a", NotificationType.NEW_REVIEW, NOW, priority=Priority.LOW), _n("b", NotificationType.NEW_REVIEW, NOW - 10, priority=Priority.MEDIUM)]

  (grouped,) = group(members, now_ms=NOW)

  assert grouped.priority is Priority.MEDIUM
  assert grouped.time == members[0].time


def test_group_key_includes_status_for_order_types():
  assert group_key(_n("x", NotificationType.NEW_ORDER, NOW, status="pending")) == "new_order_pending"
  assert group_key(_n("y", NotificationType.NEW_USER, NOW)) == "new_user"


def test_ungrouped_notification_rejects_count_or_members():
  with pytest.raises(ValueError):
    Notification(id="x", type=NotificationType.NEW_USER, title="t", message="m", priority=Priority.LOW, timestamp=NOW, time="00:00", count=2)


def test_status_groups_sharing_a_timestamp_get_distinct_ids():
  updates = [
    _n("order-1-ready-1", NotificationType.ORDER_STATUS, NOW, status="ready"),
    _n("order-2-ready-2", NotificationType.ORDER_STATUS, NOW, status="ready"),
    _n("order-3-cancelled-3", NotificationType.ORDER_STATUS, NOW, status="cancelled"),
    _n("order-4-cancelled-4", NotificationType.ORDER_STATUS, NOW, status="cancelled"),
  ]

  ids = [n.id for n in group(updates, now_ms=NOW)]

  assert sorted(ids) == [f"grouped-order_status_cancelled-{NOW}", f"grouped-order_status_ready-{NOW}"]
