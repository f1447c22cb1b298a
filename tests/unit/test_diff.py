from __future__ import annotations

import pytest

from notify_engine.notifications.contracts import AdminSnapshot, MenuItemRef, MessageRecord, NotificationType, OrderRecord, Priority, ReviewRecord, RoleScope, UserRecord
from notify_engine.notifications.diff import diff, diff_admin_orders, diff_customer_orders, diff_messages, diff_reviews, diff_users
from notify_engine.notifications.tracked_state import TrackedState

NOW = 1_700_000_000_000
MINUTE = 60 * 1000
DAY = 24 * 60 * MINUTE


def _order(order_id=1, status="preparing", created_at=NOW - MINUTE, updated_at=None, order_number="A-100"):
  return OrderRecord(id=order_id, status=status, created_at=created_at, updated_at=updated_at, order_number=order_number)


def test_customer_first_sight_of_fresh_order_emits_initial_notification():
  state = TrackedState()

  fresh = diff_customer_orders([_order()], state, set(), now_ms=NOW)

  assert [n.id for n in fresh] == ["order-1-preparing-initial"]
  notification = fresh[0]
  assert notification.type is NotificationType.ORDER_STATUS
  assert notification.priority is Priority.HIGH
  assert notification.timestamp == NOW
  assert notification.title == "Order A-100"
  assert notification.message == "Your order is being prepared"
  assert notification.source_refs.order_id == "1"
  assert state.last_status_by_entity_id == {"1": "preparing"}


def test_customer_stale_first_sight_is_tracked_then_transition_is_announced():
  state = TrackedState()
  stale = _order(status="confirmed", created_at=NOW - 2 * DAY)

  assert diff_customer_orders([stale], state, set(), now_ms=NOW) == []
  assert state.last_status_by_entity_id["1"] == "confirmed"

  updated = _order(status="preparing", created_at=NOW - 2 * DAY, updated_at=NOW - 5000)
  fresh = diff_customer_orders([updated], state, set(), now_ms=NOW)

  assert [n.id for n in fresh] == [f"order-1-preparing-{NOW - 5000}"]
  # Same observation again: nothing new.
  assert diff_customer_orders([updated], state, set(), now_ms=NOW + 5000) == []


def test_customer_unimportant_status_is_tracked_but_not_announced():
  state = TrackedState()

  assert diff_customer_orders([_order(status="pending")], state, set(), now_ms=NOW) == []
  assert state.last_status_by_entity_id == {"1": "pending"}


def test_customer_transition_uses_created_at_when_updated_at_missing():
  state = TrackedState(last_status_by_entity_id={"1": "preparing"})

  fresh = diff_customer_orders([_order(status="ready", created_at=NOW - 10 * MINUTE)], state, set(), now_ms=NOW)

  assert [n.id for n in fresh] == [f"order-1-ready-{NOW - 10 * MINUTE}"]
  assert fresh[0].message == "Your order is ready for pickup"


def test_customer_completed_status_is_medium_priority():
  state = TrackedState(last_status_by_entity_id={"1": "on_delivery"})

  fresh = diff_customer_orders([_order(status="completed", updated_at=NOW - 1000)], state, set(), now_ms=NOW)

  assert fresh[0].priority is Priority.MEDIUM


def test_customer_deleted_candidate_is_skipped_but_status_still_tracked():
  state = TrackedState()

  fresh = diff_customer_orders([_order()], state, {"order-1-preparing-initial"}, now_ms=NOW)

  assert fresh == []
  assert state.last_status_by_entity_id == {"1": "preparing"}


def test_customer_candidate_already_in_working_set_is_not_duplicated():
  fresh = diff_customer_orders([_order()], TrackedState(), set(), now_ms=NOW, existing_ids={"order-1-preparing-initial"})

  assert fresh == []


def test_admin_pending_order_is_announced_once():
  state = TrackedState()
  order = _order(order_id=5, status="pending", created_at=NOW - 3 * MINUTE)

  first = diff_admin_orders([order], state, set(), now_ms=NOW)
  second = diff_admin_orders([order], state, set(), now_ms=NOW + 5000)

  assert [n.id for n in first] == ["admin-order-5-new"]
  assert first[0].priority is Priority.HIGH
  assert first[0].timestamp == NOW - 3 * MINUTE
  assert first[0].title == "New order A-100"
  assert second == []
  assert "5" in state.seen("orders")


def test_admin_order_already_tracked_as_pending_is_only_new_while_just_placed():
  old = _order(order_id=7, status="pending", created_at=NOW - 30 * MINUTE)
  just_placed = _order(order_id=8, status="pending", created_at=NOW - MINUTE)
  state = TrackedState(last_status_by_entity_id={"7": "pending", "8": "pending"})

  fresh = diff_admin_orders([old, just_placed], state, set(), now_ms=NOW)

  assert [n.id for n in fresh] == ["admin-order-8-new"]


def test_admin_order_moved_back_to_pending_recently_is_new():
  state = TrackedState(last_status_by_entity_id={"9": "confirmed"})

  fresh = diff_admin_orders([_order(order_id=9, status="pending", created_at=NOW - 10 * MINUTE)], state, set(), now_ms=NOW)

  assert [n.id for n in fresh] == ["admin-order-9-new"]
  assert state.last_status_by_entity_id["9"] == "pending"


def test_admin_non_pending_and_stale_orders_are_ignored():
  state = TrackedState()
  orders = [_order(order_id=1, status="confirmed"), _order(order_id=2, status="pending", created_at=NOW - 2 * DAY)]

  assert diff_admin_orders(orders, state, set(), now_ms=NOW) == []
  assert state.last_status_by_entity_id == {"1": "confirmed", "2": "pending"}


def test_messages_only_unread_and_fresh():
  messages = [
    MessageRecord(id=1, status="new", created_at=NOW - MINUTE, name="Alice", subject="Table for four"),
    MessageRecord(id=2, status="read", created_at=NOW - MINUTE, name="Bob"),
    MessageRecord(id=3, status="unread", created_at=NOW - 2 * DAY, name="Carol"),
    MessageRecord(id=4, status="unread", created_at=NOW - MINUTE, email="dave@example.com"),
  ]

  fresh = diff_messages(messages, TrackedState(), set(), now_ms=NOW)

  assert [n.id for n in fresh] == ["admin-message-1-new", "admin-message-4-new"]
  assert fresh[0].title == "New message from Alice"
  assert fresh[0].message == "Table for four"
  assert fresh[1].title == "New message from dave@example.com"
  assert all(n.priority is Priority.HIGH for n in fresh)


def test_reviews_reference_the_menu_item():
  reviews = [ReviewRecord(id=3, status="pending", created_at=NOW - MINUTE, menu_item_id=7, menu_item=MenuItemRef(name="Pizza")), ReviewRecord(id=4, status="approved", created_at=NOW - MINUTE)]

  fresh = diff_reviews(reviews, TrackedState(), set(), now_ms=NOW)

  assert len(fresh) == 1
  assert fresh[0].id == "admin-review-3-new"
  assert fresh[0].priority is Priority.MEDIUM
  assert fresh[0].source_refs.menu_item_id == "7"
  assert fresh[0].message == "A new review was submitted for Pizza"


def test_users_only_customers_are_announced():
  users = [UserRecord(id=11, role="customer", created_at=NOW - MINUTE, name="Eve"), UserRecord(id=12, role="superadmin", created_at=NOW - MINUTE, name="Root")]

  fresh = diff_users(users, TrackedState(), set(), now_ms=NOW)

  assert [n.id for n in fresh] == ["admin-user-11-new"]
  assert fresh[0].priority is Priority.LOW
  assert fresh[0].user_name == "Eve"


def test_admin_diff_combines_every_category():
  snapshot = AdminSnapshot(
    orders=[_order(order_id=1, status="pending")],
    messages=[MessageRecord(id=2, status="new", created_at=NOW - MINUTE)],
    reviews=[ReviewRecord(id=3, status="pending", created_at=NOW - MINUTE)],
    users=[UserRecord(id=4, role="customer", created_at=NOW - MINUTE)],
  )

  fresh = diff(RoleScope.ADMIN, snapshot, TrackedState(), set(), now_ms=NOW)

  assert [n.type for n in fresh] == [NotificationType.NEW_ORDER, NotificationType.NEW_MESSAGE, NotificationType.NEW_REVIEW, NotificationType.NEW_USER]


def test_diff_rejects_records_for_the_wrong_scope():
  with pytest.raises(TypeError):
    diff(RoleScope.ADMIN, [_order()], TrackedState(), set(), now_ms=NOW)
  with pytest.raises(TypeError):
    diff(RoleScope.CUSTOMER, AdminSnapshot(orders=[], messages=[], reviews=[], users=[]), TrackedState(), set(), now_ms=NOW)
