"""Title and message templates for single and grouped notifications."""

from __future__ import annotations

from dataclasses import dataclass

from notify_engine.notifications.contracts import NotificationType, Priority


@dataclass(frozen=True)
class GroupTemplate:
  """Singular/plural phrasing for a grouped notification."""

  singular_title: str
  plural_title: str
  singular_message: str
  plural_message: str

  def render(self, count: int) -> tuple[str, str]:
    if count == 1:
      return self.singular_title, self.singular_message
    return self.plural_title.format(count=count), self.plural_message.format(count=count)


GROUP_TEMPLATES: dict[NotificationType, GroupTemplate] = {
  NotificationType.NEW_ORDER: GroupTemplate(singular_title="New order", plural_title="{count} new orders", singular_message="A new order has been placed", plural_message="{count} new orders have been placed"),
  NotificationType.NEW_MESSAGE: GroupTemplate(singular_title="New message", plural_title="{count} new messages", singular_message="A new message has been received", plural_message="{count} new messages have been received"),
  NotificationType.NEW_REVIEW: GroupTemplate(singular_title="New review", plural_title="{count} new reviews", singular_message="A new review has been submitted", plural_message="{count} new reviews have been submitted"),
  NotificationType.NEW_USER: GroupTemplate(singular_title="New customer", plural_title="{count} new customers", singular_message="A new customer has signed up", plural_message="{count} new customers have signed up"),
  NotificationType.ORDER_STATUS: GroupTemplate(singular_title="Order update", plural_title="{count} order updates", singular_message="The status of an order has been updated", plural_message="The status of {count} orders has been updated"),
}

FALLBACK_GROUP_TEMPLATE = GroupTemplate(singular_title="New notification", plural_title="{count} new notifications", singular_message="A new notification", plural_message="{count} notifications of the same type")


def render_group(notification_type: NotificationType, count: int) -> tuple[str, str]:
  """Render the title and message of a grouped notification."""
  return GROUP_TEMPLATES.get(notification_type, FALLBACK_GROUP_TEMPLATE).render(count)


IMPORTANT_ORDER_STATUSES = frozenset({"confirmed", "preparing", "ready", "on_delivery", "completed", "cancelled"})

ORDER_STATUS_LABELS: dict[str, str] = {
  "confirmed": "confirmed",
  "preparing": "being prepared",
  "ready": "ready for pickup",
  "on_delivery": "out for delivery",
  "completed": "delivered",
  "cancelled": "cancelled",
}

ORDER_STATUS_PRIORITIES: dict[str, Priority] = {
  "confirmed": Priority.HIGH,
  "preparing": Priority.HIGH,
  "ready": Priority.HIGH,
  "on_delivery": Priority.HIGH,
  "completed": Priority.MEDIUM,
  "cancelled": Priority.HIGH,
}


def order_status_text(order_number: str | None, status: str) -> tuple[str, str]:
  title = f"Order {order_number}" if order_number else "Order update"
  return title, f"Your order is {ORDER_STATUS_LABELS.get(status, status)}"


def new_order_text(order_number: str | None) -> tuple[str, str]:
  title = f"New order {order_number}" if order_number else "New order"
  return title, "A new order has been placed"


def new_message_text(*, name: str | None, email: str | None, subject: str | None, body: str | None) -> tuple[str, str]:
  return f"New message from {name or email or 'Customer'}", subject or body or "New message received"


def new_review_text(menu_item_name: str | None) -> tuple[str, str]:
  return "New review pending", f"A new review was submitted for {menu_item_name or 'a dish'}"


def new_user_text(display_name: str | None) -> tuple[str, str]:
  return "New customer signed up", f"{display_name or 'A customer'} just signed up"
