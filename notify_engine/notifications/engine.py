"""Polling orchestrator and public query/mutation surface for notifications.

Per cycle: FETCHING -> (RETRYING -> FETCHING)* -> DIFFING -> GROUPING -> SORTING -> PUBLISHED,
or FETCHING -> ABORTED -> IDLE when the retry controller gives up.

A session starts when the injected ``AuthSignal`` reports an authenticated user and ends
when authentication is lost or the role changes. Everything owned by a session (tracked
state, marker store, background tasks, pending retry backoff) is dropped with it.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable, Iterable
from dataclasses import dataclass, field
from enum import Enum

from notify_engine.core.exceptions import FailureAction, TransientFetchError
from notify_engine.notifications.contracts import AdminSnapshot, AuthSignal, AuthState, KeyValueStore, Notification, NotificationType, OrderRecord, RoleScope, SourceConnector
from notify_engine.notifications.diff import diff
from notify_engine.notifications.grouping import group
from notify_engine.notifications.markers import MarkerStore
from notify_engine.notifications.priority import MAX_PUBLISHED, sort_and_cap
from notify_engine.notifications.retry import RetryController, RetryDecision

logger = logging.getLogger(__name__)

DEFAULT_ADMIN_ROLES = frozenset({"superadmin", "adminrestaurant"})

PublishListener = Callable[[list[Notification]], None]


class PollState(Enum):
  IDLE = "idle"
  FETCHING = "fetching"
  RETRYING = "retrying"
  DIFFING = "diffing"
  GROUPING = "grouping"
  SORTING = "sorting"
  PUBLISHED = "published"
  ABORTED = "aborted"


def _now_ms() -> int:
  return int(time.time() * 1000)


@dataclass(eq=False)
class _Session:
  auth: AuthState
  scope: RoleScope
  markers: MarkerStore
  ready: asyncio.Event = field(default_factory=asyncio.Event)
  tasks: set[asyncio.Task] = field(default_factory=set)


class NotificationEngine:
  """Polls sources for the authenticated role and publishes a deduplicated, grouped, ordered list."""

  def __init__(
    self,
    *,
    auth: AuthSignal,
    connector: SourceConnector,
    store: KeyValueStore,
    admin_roles: Iterable[str] = DEFAULT_ADMIN_ROLES,
    poll_interval_seconds: float = 5.0,
    fetch_timeout_seconds: float = 10.0,
    persist_interval_seconds: float = 30.0,
    sweep_interval_seconds: float = 3600.0,
    max_deleted_ids: int = 1000,
    max_published: int = MAX_PUBLISHED,
    retry: RetryController | None = None,
    clock: Callable[[], int] = _now_ms,
    closers: Iterable[Callable[[], Awaitable[None]]] = (),
  ) -> None:
    self._auth = auth
    self._connector = connector
    self._store = store
    self._admin_roles = frozenset(role.lower() for role in admin_roles)
    self._poll_interval_seconds = poll_interval_seconds
    self._fetch_timeout_seconds = fetch_timeout_seconds
    self._persist_interval_seconds = persist_interval_seconds
    self._sweep_interval_seconds = sweep_interval_seconds
    self._max_deleted_ids = max_deleted_ids
    self._max_published = max_published
    self._retry = retry or RetryController()
    self._clock = clock
    # Resources built on the engine's behalf (HTTP client, DB pool), released by stop().
    self._closers = list(closers)

    self._session: _Session | None = None
    self._expected_auth: AuthState | None = None
    self._working: list[Notification] = []
    self._published: list[Notification] = []
    self._state = PollState.IDLE
    self._loading = False
    self._cycle_lock = asyncio.Lock()
    self._lifecycle_lock = asyncio.Lock()
    self._listeners: list[PublishListener] = []
    self._auth_tasks: set[asyncio.Task] = set()
    self._unsubscribe: Callable[[], None] | None = None

  # ---------------------------------------------------------------------------
  # Lifecycle
  # ---------------------------------------------------------------------------
  async def start(self) -> None:
    """Subscribe to the auth signal and start a session if already authenticated."""
    if self._unsubscribe is None:
      self._unsubscribe = self._auth.subscribe(self._on_auth_signal)
    await self.on_auth_changed(self._auth.state)

  async def stop(self) -> None:
    """Unsubscribe, end the current session, flush markers and release owned resources."""
    if self._unsubscribe is not None:
      self._unsubscribe()
      self._unsubscribe = None
    for task in list(self._auth_tasks):
      task.cancel()
    await asyncio.gather(*self._auth_tasks, return_exceptions=True)
    async with self._lifecycle_lock:
      await self._end_session()

    for close in self._closers:
      try:
        await close()
      except Exception as exc:  # noqa: BLE001
        logger.error("Failed to release engine resource: %s", exc, exc_info=True)

  def _on_auth_signal(self, state: AuthState) -> None:
    self._expected_auth = state
    if not state.authenticated:
      # Losing authentication empties the list right away; teardown follows asynchronously.
      self._clear_published()
    task = asyncio.get_running_loop().create_task(self.on_auth_changed(state))
    self._auth_tasks.add(task)
    task.add_done_callback(self._auth_task_done)

  def _auth_task_done(self, task: asyncio.Task) -> None:
    self._auth_tasks.discard(task)
    if task.cancelled():
      return
    exc = task.exception()
    if exc is not None:
      logger.error("Auth change handling failed: %s", exc, exc_info=exc)

  async def on_auth_changed(self, state: AuthState) -> None:
    """Start, restart or end the session to match ``state``."""
    async with self._lifecycle_lock:
      self._expected_auth = state
      current = self._session
      if current is not None and current.auth == state:
        return
      if current is not None:
        await self._end_session()
      if state.authenticated:
        await self._begin_session(state)
      else:
        self._clear_published()

  async def _begin_session(self, auth: AuthState) -> None:
    scope = auth.scope(self._admin_roles)
    markers = MarkerStore(store=self._store, scope=scope, persist_interval_seconds=self._persist_interval_seconds, max_deleted_ids=self._max_deleted_ids)
    await markers.load()
    await markers.sweep()

    session = _Session(auth=auth, scope=scope, markers=markers)
    self._session = session
    self._working = []
    self._published = []
    logger.info("Notification session started role=%s scope=%s", auth.role, scope.value)

    self._spawn(session, self._poll_loop(session), "poll")
    self._spawn(session, self._flush_loop(session), "flush")
    self._spawn(session, self._sweep_loop(session), "sweep")

  async def _end_session(self) -> None:
    session = self._session
    if session is None:
      return
    self._session = None
    self._clear_published()
    self._state = PollState.IDLE
    self._loading = False
    self._notify_listeners()

    for task in list(session.tasks):
      task.cancel()
    await asyncio.gather(*session.tasks, return_exceptions=True)
    session.ready.set()

    # Markers outlive the session; tracked state is discarded with it.
    await session.markers.flush()
    logger.info("Notification session ended role=%s scope=%s", session.auth.role, session.scope.value)

  def _spawn(self, session: _Session, coro: Awaitable[None], name: str) -> asyncio.Task:
    task = asyncio.create_task(coro, name=f"notify-{name}")
    session.tasks.add(task)
    task.add_done_callback(session.tasks.discard)
    return task

  async def _poll_loop(self, session: _Session) -> None:
    try:
      await self._run_cycle(session)
    finally:
      session.ready.set()
    while True:
      await asyncio.sleep(self._poll_interval_seconds)
      await self._run_cycle(session)

  async def _flush_loop(self, session: _Session) -> None:
    while True:
      # Immediate flushes move the debounce window, so wake when it next closes.
      await asyncio.sleep(session.markers.seconds_until_due())
      await session.markers.flush_if_due()

  async def _sweep_loop(self, session: _Session) -> None:
    while True:
      await asyncio.sleep(self._sweep_interval_seconds)
      await session.markers.sweep()

  async def wait_ready(self) -> None:
    """Wait until the current session has finished its first poll cycle."""
    session = self._session
    if session is not None:
      await session.ready.wait()

  # ---------------------------------------------------------------------------
  # Poll cycle
  # ---------------------------------------------------------------------------
  async def refresh(self) -> None:
    """Run one poll cycle now, after any cycle already in flight."""
    session = self._session
    if session is None:
      return
    task = self._spawn(session, self._run_cycle(session), "refresh")
    try:
      await task
    except asyncio.CancelledError:
      current = asyncio.current_task()
      # The session ended underneath us; only propagate our own cancellation.
      if current is not None and current.cancelling():
        raise

  async def _run_cycle(self, session: _Session) -> None:
    async with self._cycle_lock:
      if session is not self._session:
        return

      self._state = PollState.FETCHING
      self._loading = True
      try:
        result = await self._retry.run(lambda: self._fetch(session), on_retry=self._on_retry)
      finally:
        self._loading = False

      if session is not self._session or self._expected_auth != session.auth:
        logger.debug("Discarding poll results for an ended session role=%s", session.auth.role)
        return

      if not result.ok:
        self._state = PollState.ABORTED
        if result.decision is not None and result.decision.action is FailureAction.ABORT_CLEAR:
          self._clear_published()
          # The empty list is published, so read ids must follow it.
          if session.markers.markers.read_ids.retain(set()):
            session.markers.mark_dirty(read=True)
          self._notify_listeners()
        self._state = PollState.IDLE
        return

      self._state = PollState.DIFFING
      now_ms = self._clock()
      markers = session.markers
      fresh = diff(session.scope, result.value, markers.tracked_state, markers.markers.deleted_ids, now_ms=now_ms, existing_ids={notification.id for notification in self._working})
      markers.mark_dirty(tracked=True)
      if fresh:
        logger.info("New notifications detected count=%d scope=%s", len(fresh), session.scope.value)
      self._merge(fresh, session)
      self._publish(session, now_ms)

  def _on_retry(self, decision: RetryDecision) -> None:
    self._state = PollState.RETRYING

  async def _fetch(self, session: _Session) -> list[OrderRecord] | AdminSnapshot:
    self._state = PollState.FETCHING
    if session.scope is RoleScope.CUSTOMER:
      return await self._call("my_orders", self._connector.fetch_my_orders())

    results = await asyncio.gather(
      self._call("received_orders", self._connector.fetch_received_orders()),
      self._call("messages", self._connector.fetch_messages()),
      self._call("pending_reviews", self._connector.fetch_pending_reviews()),
      self._call("customers", self._connector.fetch_customers()),
      return_exceptions=True,
    )
    # One failing source fails the whole cycle; the first failure in source order decides the retry.
    for result in results:
      if isinstance(result, BaseException):
        raise result
    orders, messages, reviews, users = results
    return AdminSnapshot(orders=orders, messages=messages, reviews=reviews, users=users)

  async def _call[T](self, source: str, call: Awaitable[T]) -> T:
    try:
      async with asyncio.timeout(self._fetch_timeout_seconds):
        return await call
    except TimeoutError as exc:
      raise TransientFetchError(f"Source '{source}' timed out after {self._fetch_timeout_seconds}s") from exc

  def _merge(self, fresh: list[Notification], session: _Session) -> None:
    deleted = session.markers.markers.deleted_ids
    fresh_ids = {notification.id for notification in fresh}
    kept = [notification for notification in self._working if notification.id not in fresh_ids and notification.id not in deleted]
    self._working = sort_and_cap([*fresh, *kept], limit=self._max_published)

  def _publish(self, session: _Session, now_ms: int) -> None:
    self._state = PollState.GROUPING
    grouped = group(self._working, now_ms=now_ms)
    self._state = PollState.SORTING
    self._published = sort_and_cap(grouped, limit=self._max_published)

    pruned = session.markers.markers.read_ids.retain({notification.id for notification in self._published})
    if pruned:
      session.markers.mark_dirty(read=True)

    self._state = PollState.PUBLISHED
    self._notify_listeners()

  def _clear_published(self) -> None:
    self._working = []
    self._published = []

  # ---------------------------------------------------------------------------
  # Listeners
  # ---------------------------------------------------------------------------
  def add_listener(self, listener: PublishListener) -> Callable[[], None]:
    """Call ``listener`` with the published list after every change; return an unsubscribe callable."""
    self._listeners.append(listener)

    def _remove() -> None:
      if listener in self._listeners:
        self._listeners.remove(listener)

    return _remove

  def _notify_listeners(self) -> None:
    snapshot = list(self._published)
    for listener in list(self._listeners):
      try:
        listener(snapshot)
      except Exception as exc:  # noqa: BLE001
        logger.error("Notification listener failed: %s", exc, exc_info=True)

  # ---------------------------------------------------------------------------
  # Queries
  # ---------------------------------------------------------------------------
  @property
  def state(self) -> PollState:
    return self._state

  @property
  def loading(self) -> bool:
    return self._loading

  @property
  def role_scope(self) -> RoleScope | None:
    return self._session.scope if self._session else None

  @property
  def retry_count(self) -> int:
    return self._retry.retry_count

  def _is_admin(self) -> bool:
    return self.role_scope is RoleScope.ADMIN

  def _read_ids(self) -> set[str]:
    if self._session is None:
      return set()
    return set(self._session.markers.markers.read_ids)

  def list(self) -> list[Notification]:
    """Published notifications; admin-like roles get message notifications separately."""
    if self._is_admin():
      return [notification for notification in self._published if notification.type is not NotificationType.NEW_MESSAGE]
    return list(self._published)

  def message_notifications(self) -> list[Notification]:
    if not self._is_admin():
      return []
    return [notification for notification in self._published if notification.type is NotificationType.NEW_MESSAGE]

  def unread(self) -> list[Notification]:
    read_ids = self._read_ids()
    return [notification for notification in self.list() if notification.id not in read_ids]

  def unread_messages(self) -> list[Notification]:
    read_ids = self._read_ids()
    return [notification for notification in self.message_notifications() if notification.id not in read_ids]

  def unread_count(self) -> int:
    return len(self.unread())

  def unread_message_count(self) -> int:
    return len(self.unread_messages())

  # ---------------------------------------------------------------------------
  # Mutations
  # ---------------------------------------------------------------------------
  async def mark_as_read(self, notification_id: str) -> None:
    await self._mark_read([notification_id])

  async def mark_all_as_read(self) -> None:
    await self._mark_read([notification.id for notification in self._published])

  async def press(self, notification: Notification) -> None:
    """Default handler for a tapped notification: mark it read."""
    if notification.id:
      await self.mark_as_read(notification.id)

  async def _mark_read(self, notification_ids: list[str]) -> None:
    session = self._session
    if session is None:
      return
    published_ids = {notification.id for notification in self._published}
    read_ids = session.markers.markers.read_ids
    was_empty = len(read_ids) == 0
    added = 0
    for notification_id in notification_ids:
      # Read ids only ever reference published notifications.
      if notification_id in published_ids and read_ids.add(notification_id):
        added += 1
    if not added:
      return
    session.markers.mark_dirty(read=True)
    if was_empty:
      await session.markers.flush()
    self._notify_listeners()

  async def clear(self, notification_id: str) -> None:
    """Delete one notification (and the members of a grouped one) for good."""
    target = next((notification for notification in self._published if notification.id == notification_id), None)
    await self._delete(target.all_ids() if target else [notification_id])

  async def clear_all(self) -> None:
    ids: list[str] = []
    for notification in self._published:
      ids.extend(notification.all_ids())
    ids.extend(notification.id for notification in self._working)
    await self._delete(ids)

  async def _delete(self, notification_ids: list[str]) -> None:
    session = self._session
    if session is None:
      return
    markers = session.markers.markers
    was_empty = len(markers.deleted_ids) == 0
    added = sum(1 for notification_id in notification_ids if markers.deleted_ids.add(notification_id))

    doomed = set(notification_ids)
    before = len(self._published)
    self._working = [notification for notification in self._working if notification.id not in doomed]
    self._published = [notification for notification in self._published if notification.id not in doomed]
    if markers.read_ids.retain({notification.id for notification in self._published}):
      session.markers.mark_dirty(read=True)

    if added:
      session.markers.mark_dirty(deleted=True)
      if was_empty:
        await session.markers.flush()
    if added or len(self._published) != before:
      self._notify_listeners()
