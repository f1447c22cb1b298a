"""Contracts for notification sources, stores and the published notification payload."""

from __future__ import annotations

import datetime
import logging
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from enum import Enum
from typing import Protocol

import msgspec

logger = logging.getLogger(__name__)


class NotificationType(Enum):
  NEW_ORDER = "new_order"
  ORDER_STATUS = "order_status"
  NEW_MESSAGE = "new_message"
  NEW_REVIEW = "new_review"
  NEW_USER = "new_user"


class Priority(Enum):
  LOW = "low"
  MEDIUM = "medium"
  HIGH = "high"

  @property
  def rank(self) -> int:
    return _PRIORITY_RANK[self]


_PRIORITY_RANK = {Priority.LOW: 1, Priority.MEDIUM: 2, Priority.HIGH: 3}


class RoleScope(Enum):
  """Which event universe a session observes; markers are stored per scope."""

  CUSTOMER = "customer"
  ADMIN = "admin"


@dataclass(frozen=True)
class SourceRefs:
  """Identifiers of the upstream records a notification points at."""

  order_id: str | None = None
  message_id: str | None = None
  review_id: str | None = None
  user_id: str | None = None
  menu_item_id: str | None = None


@dataclass(frozen=True)
class Notification:
  """A notification as published to consumers."""

  id: str
  type: NotificationType
  title: str
  message: str
  priority: Priority
  timestamp: int
  time: str
  source_refs: SourceRefs = field(default_factory=SourceRefs)
  status: str | None = None
  order_number: str | None = None
  user_name: str | None = None
  grouped: bool = False
  count: int = 1
  members: tuple[Notification, ...] = ()

  def __post_init__(self) -> None:
    if self.count < 1:
      raise ValueError(f"Notification count must be >= 1 (id={self.id})")
    if not self.grouped and (self.count != 1 or self.members):
      raise ValueError(f"Ungrouped notification must have count=1 and no members (id={self.id})")

  def all_ids(self) -> list[str]:
    """Return this id plus the ids of grouped members."""
    return [self.id, *(member.id for member in self.members)]


# ---------------------------------------------------------------------------
# Upstream records
# ---------------------------------------------------------------------------
Timestamp = datetime.datetime | int


class OrderRecord(msgspec.Struct, rename="camel", kw_only=True):
  id: int | str
  status: str
  created_at: Timestamp
  updated_at: Timestamp | None = None
  order_number: str | None = None


class MessageRecord(msgspec.Struct, rename="camel", kw_only=True):
  id: int | str
  status: str
  created_at: Timestamp
  name: str | None = None
  email: str | None = None
  subject: str | None = None
  message: str | None = None


class MenuItemRef(msgspec.Struct, kw_only=True):
  name: str | None = None


class ReviewRecord(msgspec.Struct, rename="camel", kw_only=True):
  id: int | str
  status: str
  created_at: Timestamp
  menu_item_id: int | str | None = None
  menu_item: MenuItemRef | None = None


class UserRecord(msgspec.Struct, rename="camel", kw_only=True):
  id: int | str
  role: str
  created_at: Timestamp
  name: str | None = None
  email: str | None = None


def to_epoch_ms(value: Timestamp) -> int:
  """Convert a record timestamp to epoch milliseconds; naive datetimes are UTC."""
  if isinstance(value, datetime.datetime):
    if value.tzinfo is None:
      value = value.replace(tzinfo=datetime.UTC)
    return int(value.timestamp() * 1000)
  return int(value)


def format_time(timestamp_ms: int) -> str:
  """Return the HH:MM display string for an epoch-ms timestamp in local time."""
  return datetime.datetime.fromtimestamp(timestamp_ms / 1000).strftime("%H:%M")


@dataclass(frozen=True)
class AdminSnapshot:
  """One poll's worth of admin-side records."""

  orders: list[OrderRecord]
  messages: list[MessageRecord]
  reviews: list[ReviewRecord]
  users: list[UserRecord]


# ---------------------------------------------------------------------------
# Collaborator contracts
# ---------------------------------------------------------------------------
class SourceConnector(Protocol):
  """Read-only access to the upstream record sources."""

  async def fetch_received_orders(self) -> list[OrderRecord]:
    """Return orders in the received state (admin-like roles)."""

  async def fetch_messages(self) -> list[MessageRecord]:
    """Return recent contact messages (admin-like roles)."""

  async def fetch_pending_reviews(self) -> list[ReviewRecord]:
    """Return reviews awaiting moderation (admin-like roles)."""

  async def fetch_customers(self) -> list[UserRecord]:
    """Return recently created customer accounts (admin-like roles)."""

  async def fetch_my_orders(self) -> list[OrderRecord]:
    """Return the caller's own orders (customer role)."""


class KeyValueStore(Protocol):
  """Durable string key-value storage."""

  async def get(self, key: str) -> str | None:
    """Return the stored value or None."""

  async def set(self, key: str, value: str) -> None:
    """Store a value, replacing any previous one."""


# ---------------------------------------------------------------------------
# Authentication signal
# ---------------------------------------------------------------------------
@dataclass(frozen=True)
class AuthState:
  """The slice of session state the engine consumes."""

  authenticated: bool = False
  role: str | None = None

  def scope(self, admin_roles: Iterable[str]) -> RoleScope:
    if self.role and self.role.lower() in set(admin_roles):
      return RoleScope.ADMIN
    return RoleScope.CUSTOMER


AuthListener = Callable[[AuthState], None]


class AuthSignal:
  """Holds the current authentication state and notifies subscribers on change."""

  def __init__(self, state: AuthState | None = None) -> None:
    self._state = state or AuthState()
    self._listeners: list[AuthListener] = []

  @property
  def state(self) -> AuthState:
    return self._state

  def subscribe(self, listener: AuthListener) -> Callable[[], None]:
    """Register a listener and return a callable that removes it."""
    self._listeners.append(listener)

    def _unsubscribe() -> None:
      if listener in self._listeners:
        self._listeners.remove(listener)

    return _unsubscribe

  def update(self, state: AuthState) -> None:
    """Publish a new state; listeners only run when it actually changed."""
    if state == self._state:
      return
    self._state = state
    for listener in list(self._listeners):
      try:
        listener(state)
      except Exception as exc:  # noqa: BLE001
        logger.error("Auth listener failed: %s", exc, exc_info=True)
