"""Turn raw source records into only-new notifications.

Every function here mutates the session's ``TrackedState`` in place:

* order statuses are recorded for every observed order, emitted or not, so a later
  identical state is never announced again;
* ids announced as "new" are added to the per-category seen set, which gives
  at-most-once emission for records whose status never advances.

Candidate ids found in ``deleted_ids`` are skipped, but tracked state is still updated.
"""

from __future__ import annotations

import logging
from collections.abc import Collection, Container, Sequence

from notify_engine.notifications.contracts import (
  AdminSnapshot,
  MessageRecord,
  Notification,
  NotificationType,
  OrderRecord,
  Priority,
  ReviewRecord,
  RoleScope,
  SourceRefs,
  UserRecord,
  format_time,
  to_epoch_ms,
)
from notify_engine.notifications.templates import (
  IMPORTANT_ORDER_STATUSES,
  ORDER_STATUS_PRIORITIES,
  new_message_text,
  new_order_text,
  new_review_text,
  new_user_text,
  order_status_text,
)
from notify_engine.notifications.tracked_state import TrackedState

logger = logging.getLogger(__name__)

FRESHNESS_WINDOW_MS = 24 * 60 * 60 * 1000
RECENT_ORDER_MS = 15 * 60 * 1000
JUST_PLACED_ORDER_MS = 2 * 60 * 1000

UNREAD_MESSAGE_STATUSES = frozenset({"new", "unread"})


def _is_fresh(created_ms: int, now_ms: int) -> bool:
  return now_ms - created_ms < FRESHNESS_WINDOW_MS


class _Emitter:
  """Collects one cycle's notifications while enforcing deleted/existing/duplicate checks."""

  def __init__(self, deleted_ids: Container[str], existing_ids: Collection[str]) -> None:
    self._deleted_ids = deleted_ids
    self._existing_ids = existing_ids
    self._emitted_ids: set[str] = set()
    self.notifications: list[Notification] = []

  def is_deleted(self, notification_id: str) -> bool:
    return notification_id in self._deleted_ids

  def is_known(self, notification_id: str) -> bool:
    return notification_id in self._existing_ids or notification_id in self._emitted_ids

  def emit(self, notification: Notification) -> None:
    self._emitted_ids.add(notification.id)
    self.notifications.append(notification)


def diff_customer_orders(orders: Sequence[OrderRecord], state: TrackedState, deleted_ids: Container[str], *, now_ms: int, existing_ids: Collection[str] = ()) -> list[Notification]:
  """Detect status transitions of the caller's own orders."""
  emitter = _Emitter(deleted_ids, existing_ids)

  for order in orders:
    order_id = str(order.id)
    previous = state.last_status_by_entity_id.get(order_id)
    status = order.status
    candidate_id: str | None = None

    if previous and previous != status and status in IMPORTANT_ORDER_STATUSES:
      version = to_epoch_ms(order.updated_at if order.updated_at is not None else order.created_at)
      candidate_id = f"order-{order_id}-{status}-{version}"
    elif not previous and status in IMPORTANT_ORDER_STATUSES and _is_fresh(to_epoch_ms(order.created_at), now_ms):
      candidate_id = f"order-{order_id}-{status}-initial"

    if candidate_id and not emitter.is_deleted(candidate_id) and not emitter.is_known(candidate_id):
      title, message = order_status_text(order.order_number, status)
      emitter.emit(
        Notification(
          id=candidate_id,
          type=NotificationType.ORDER_STATUS,
          title=title,
          message=message,
          priority=ORDER_STATUS_PRIORITIES.get(status, Priority.MEDIUM),
          timestamp=now_ms,
          time=format_time(now_ms),
          source_refs=SourceRefs(order_id=order_id),
          status=status,
          order_number=order.order_number,
        )
      )

    state.last_status_by_entity_id[order_id] = status

  return emitter.notifications


def diff_admin_orders(orders: Sequence[OrderRecord], state: TrackedState, deleted_ids: Container[str], *, now_ms: int, existing_ids: Collection[str] = ()) -> list[Notification]:
  """Announce each freshly placed pending order once."""
  emitter = _Emitter(deleted_ids, existing_ids)
  seen = state.seen("orders")

  for order in orders:
    order_id = str(order.id)
    notification_id = f"admin-order-{order_id}-new"
    previous = state.last_status_by_entity_id.get(order_id)

    if order.status == "pending" and not emitter.is_deleted(notification_id):
      created_ms = to_epoch_ms(order.created_at)
      age_ms = now_ms - created_ms
      # A previously tracked order only counts as new while it is very recent.
      is_new_order = not previous or (age_ms < RECENT_ORDER_MS and previous != "pending") or age_ms < JUST_PLACED_ORDER_MS
      if is_new_order and _is_fresh(created_ms, now_ms) and order_id not in seen and not emitter.is_known(notification_id):
        title, message = new_order_text(order.order_number)
        emitter.emit(
          Notification(
            id=notification_id,
            type=NotificationType.NEW_ORDER,
            title=title,
            message=message,
            priority=Priority.HIGH,
            timestamp=created_ms,
            time=format_time(created_ms),
            source_refs=SourceRefs(order_id=order_id),
            status=order.status,
            order_number=order.order_number,
          )
        )
        seen.add(order_id)

    state.last_status_by_entity_id[order_id] = order.status

  return emitter.notifications


def diff_messages(messages: Sequence[MessageRecord], state: TrackedState, deleted_ids: Container[str], *, now_ms: int, existing_ids: Collection[str] = ()) -> list[Notification]:
  emitter = _Emitter(deleted_ids, existing_ids)
  seen = state.seen("messages")

  for msg in messages:
    message_id = str(msg.id)
    notification_id = f"admin-message-{message_id}-new"
    created_ms = to_epoch_ms(msg.created_at)
    if msg.status not in UNREAD_MESSAGE_STATUSES or message_id in seen or not _is_fresh(created_ms, now_ms):
      continue
    if emitter.is_deleted(notification_id) or emitter.is_known(notification_id):
      continue

    title, message = new_message_text(name=msg.name, email=msg.email, subject=msg.subject, body=msg.message)
    emitter.emit(
      Notification(
        id=notification_id,
        type=NotificationType.NEW_MESSAGE,
        title=title,
        message=message,
        priority=Priority.HIGH,
        timestamp=created_ms,
        time=format_time(created_ms),
        source_refs=SourceRefs(message_id=message_id),
      )
    )
    seen.add(message_id)

  return emitter.notifications


def diff_reviews(reviews: Sequence[ReviewRecord], state: TrackedState, deleted_ids: Container[str], *, now_ms: int, existing_ids: Collection[str] = ()) -> list[Notification]:
  emitter = _Emitter(deleted_ids, existing_ids)
  seen = state.seen("reviews")

  for review in reviews:
    review_id = str(review.id)
    notification_id = f"admin-review-{review_id}-new"
    created_ms = to_epoch_ms(review.created_at)
    if review.status != "pending" or review_id in seen or not _is_fresh(created_ms, now_ms):
      continue
    if emitter.is_deleted(notification_id) or emitter.is_known(notification_id):
      continue

    title, message = new_review_text(review.menu_item.name if review.menu_item else None)
    emitter.emit(
      Notification(
        id=notification_id,
        type=NotificationType.NEW_REVIEW,
        title=title,
        message=message,
        priority=Priority.MEDIUM,
        timestamp=created_ms,
        time=format_time(created_ms),
        source_refs=SourceRefs(review_id=review_id, menu_item_id=str(review.menu_item_id) if review.menu_item_id is not None else None),
      )
    )
    seen.add(review_id)

  return emitter.notifications


def diff_users(users: Sequence[UserRecord], state: TrackedState, deleted_ids: Container[str], *, now_ms: int, existing_ids: Collection[str] = ()) -> list[Notification]:
  emitter = _Emitter(deleted_ids, existing_ids)
  seen = state.seen("users")

  for user in users:
    user_id = str(user.id)
    notification_id = f"admin-user-{user_id}-new"
    created_ms = to_epoch_ms(user.created_at)
    if user.role != "customer" or user_id in seen or not _is_fresh(created_ms, now_ms):
      continue
    if emitter.is_deleted(notification_id) or emitter.is_known(notification_id):
      continue

    display_name = user.name or user.email
    title, message = new_user_text(display_name)
    emitter.emit(
      Notification(
        id=notification_id,
        type=NotificationType.NEW_USER,
        title=title,
        message=message,
        priority=Priority.LOW,
        timestamp=created_ms,
        time=format_time(created_ms),
        source_refs=SourceRefs(user_id=user_id),
        user_name=display_name,
      )
    )
    seen.add(user_id)

  return emitter.notifications


def diff(scope: RoleScope, records: Sequence[OrderRecord] | AdminSnapshot, state: TrackedState, deleted_ids: Container[str], *, now_ms: int, existing_ids: Collection[str] = ()) -> list[Notification]:
  """Compute the new notifications of one poll for the given role scope."""
  if scope is RoleScope.CUSTOMER:
    if isinstance(records, AdminSnapshot):
      raise TypeError("Customer scope expects a sequence of orders, got an admin snapshot.")
    return diff_customer_orders(records, state, deleted_ids, now_ms=now_ms, existing_ids=existing_ids)

  if not isinstance(records, AdminSnapshot):
    raise TypeError("Admin scope expects an AdminSnapshot.")

  fresh: list[Notification] = []
  fresh.extend(diff_admin_orders(records.orders, state, deleted_ids, now_ms=now_ms, existing_ids=existing_ids))
  fresh.extend(diff_messages(records.messages, state, deleted_ids, now_ms=now_ms, existing_ids=existing_ids))
  fresh.extend(diff_reviews(records.reviews, state, deleted_ids, now_ms=now_ms, existing_ids=existing_ids))
  fresh.extend(diff_users(records.users, state, deleted_ids, now_ms=now_ms, existing_ids=existing_ids))
  if fresh:
    logger.debug("Admin diff produced new=%d", len(fresh))
  return fresh
