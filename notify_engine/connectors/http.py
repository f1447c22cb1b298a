"""REST source connector backed by httpx."""

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import Any

import httpx
import msgspec

from notify_engine.core.exceptions import AuthExpiredError, RateLimitedError, TransientFetchError
from notify_engine.notifications.contracts import MessageRecord, OrderRecord, ReviewRecord, SourceConnector, UserRecord

logger = logging.getLogger(__name__)

TokenProvider = Callable[[], str | None]


def _error_detail(response: httpx.Response) -> str:
  """Pull a human-readable message out of an error body without failing on odd payloads."""
  try:
    payload = msgspec.json.decode(response.content)
  except msgspec.DecodeError:
    return response.text[:200]
  if isinstance(payload, dict):
    for key in ("message", "error", "detail"):
      value = payload.get(key)
      if isinstance(value, str) and value:
        return value
  return response.reason_phrase


def _unwrap(payload: Any) -> list[Any]:
  """Accept a bare list or a {"success": ..., "data": [...]} envelope."""
  if isinstance(payload, list):
    return payload
  if isinstance(payload, dict):
    data = payload.get("data")
    if isinstance(data, list):
      return data
    if data is None:
      return []
  raise TransientFetchError(f"Unexpected payload shape: {type(payload).__name__}")


class HttpSourceConnector(SourceConnector):
  """Polls the ordering REST API on behalf of the signed-in user."""

  def __init__(self, *, base_url: str, token_provider: TokenProvider | None = None, admin_order_status: str = "recu", timeout_seconds: float = 10.0, transport: httpx.AsyncBaseTransport | None = None) -> None:
    self._base_url = base_url.rstrip("/")
    self._token_provider = token_provider
    self._admin_order_status = admin_order_status
    self._timeout_seconds = timeout_seconds
    self._transport = transport
    self._client: httpx.AsyncClient | None = None

  def _build_client(self) -> httpx.AsyncClient:
    return httpx.AsyncClient(base_url=self._base_url, timeout=self._timeout_seconds, transport=self._transport)

  def _headers(self) -> dict[str, str]:
    headers = {"accept": "application/json"}
    token = self._token_provider() if self._token_provider else None
    if token:
      headers["authorization"] = f"Bearer {token}"
    return headers

  async def aclose(self) -> None:
    if self._client is not None:
      await self._client.aclose()
      self._client = None

  async def __aenter__(self) -> HttpSourceConnector:
    return self

  async def __aexit__(self, *exc_info: object) -> None:
    await self.aclose()

  async def _get_records[T](self, path: str, params: dict[str, str], record_type: type[T]) -> list[T]:
    if self._client is None:
      self._client = self._build_client()

    try:
      response = await self._client.get(path, params=params, headers=self._headers())
      response.raise_for_status()
    except httpx.HTTPStatusError as e:
      status_code = e.response.status_code
      detail = _error_detail(e.response)
      if status_code == 401:
        raise AuthExpiredError(f"GET {path} returned 401: {detail}", status_code=status_code) from e
      if status_code == 429:
        raise RateLimitedError(f"GET {path} returned 429: {detail}", status_code=status_code) from e
      logger.warning(f"Source request GET {path} returned {status_code}: {detail}")
      raise TransientFetchError(f"GET {path} returned {status_code}: {detail}", status_code=status_code) from e
    except httpx.RequestError as e:
      logger.warning(f"Source request GET {path} failed: {e}")
      raise TransientFetchError(f"GET {path} failed: {e}") from e

    try:
      items = _unwrap(msgspec.json.decode(response.content))
      return msgspec.convert(items, list[record_type])
    except msgspec.DecodeError as e:
      raise TransientFetchError(f"GET {path} returned an invalid payload: {e}") from e

  async def fetch_received_orders(self) -> list[OrderRecord]:
    return await self._get_records("/admin/orders", {"limit": "100", "status": self._admin_order_status}, OrderRecord)

  async def fetch_messages(self) -> list[MessageRecord]:
    return await self._get_records("/contact-messages", {"limit": "100"}, MessageRecord)

  async def fetch_pending_reviews(self) -> list[ReviewRecord]:
    return await self._get_records("/admin/reviews", {"status": "pending", "limit": "50"}, ReviewRecord)

  async def fetch_customers(self) -> list[UserRecord]:
    return await self._get_records("/admin/users", {"role": "customer", "limit": "100"}, UserRecord)

  async def fetch_my_orders(self) -> list[OrderRecord]:
    return await self._get_records("/orders/my-orders", {}, OrderRecord)
