from __future__ import annotations

import datetime

import httpx
import pytest

from notify_engine.connectors.http import HttpSourceConnector
from notify_engine.core.exceptions import AuthExpiredError, RateLimitedError, TransientFetchError


class _Recorder:
  def __init__(self, responder) -> None:
    self.requests: list[httpx.Request] = []
    self._responder = responder

  def __call__(self, request: httpx.Request) -> httpx.Response:
    self.requests.append(request)
    return self._responder(request)


def _connector(responder, *, token: str | None = "tok-123") -> tuple[HttpSourceConnector, _Recorder]:
  recorder = _Recorder(responder)
  connector = HttpSourceConnector(base_url="https://api.example.com/api/", token_provider=lambda: token, transport=httpx.MockTransport(recorder))
  return connector, recorder


@pytest.mark.anyio
async def test_admin_orders_request_and_envelope_decoding():
  body = {"success": True, "data": [{"id": 42, "status": "pending", "createdAt": "2024-05-01T12:00:00.000Z", "orderNumber": "CMD-42"}]}
  connector, recorder = _connector(lambda request: httpx.Response(200, json=body))

  async with connector:
    orders = await connector.fetch_received_orders()

  request = recorder.requests[0]
  assert request.url.path == "/api/admin/orders"
  assert request.url.params["status"] == "recu"
  assert request.url.params["limit"] == "100"
  assert request.headers["authorization"] == "Bearer tok-123"
  assert len(orders) == 1
  assert orders[0].id == 42
  assert orders[0].order_number == "CMD-42"
  assert orders[0].created_at == datetime.datetime(2024, 5, 1, 12, 0, tzinfo=datetime.UTC)


@pytest.mark.anyio
async def test_bare_list_payloads_and_missing_token():
  body = [{"id": "u1", "role": "customer", "createdAt": 1700000000000, "name": "Eve"}]
  connector, recorder = _connector(lambda request: httpx.Response(200, json=body), token=None)

  users = await connector.fetch_customers()
  await connector.aclose()

  assert users[0].name == "Eve"
  assert users[0].created_at == 1700000000000
  assert "authorization" not in recorder.requests[0].headers
  assert recorder.requests[0].url.params["role"] == "customer"


@pytest.mark.anyio
async def test_reviews_and_messages_use_their_endpoints():
  def _respond(request: httpx.Request) -> httpx.Response:
    if request.url.path.endswith("/admin/reviews"):
      return httpx.Response(200, json={"success": True, "data": [{"id": 1, "status": "pending", "createdAt": 1, "menuItemId": 9, "menuItem": {"name": "Tajine"}}]})
    return httpx.Response(200, json={"success": True, "data": []})

  connector, recorder = _connector(_respond)

  reviews = await connector.fetch_pending_reviews()
  messages = await connector.fetch_messages()
  my_orders = await connector.fetch_my_orders()
  await connector.aclose()

  assert reviews[0].menu_item.name == "Tajine"
  assert reviews[0].menu_item_id == 9
  assert messages == []
  assert my_orders == []
  assert [request.url.path for request in recorder.requests] == ["/api/admin/reviews", "/api/contact-messages", "/api/orders/my-orders"]
  assert recorder.requests[0].url.params["status"] == "pending"


@pytest.mark.anyio
async def test_401_maps_to_auth_expired():
  connector, _ = _connector(lambda request: httpx.Response(401, json={"success": False, "message": "Not authorized to access this route"}))

  with pytest.raises(AuthExpiredError) as exc_info:
    await connector.fetch_my_orders()
  await connector.aclose()

  assert exc_info.value.status_code == 401
  assert "Not authorized to access this route" in str(exc_info.value)


@pytest.mark.anyio
async def test_429_maps_to_rate_limited():
  connector, _ = _connector(lambda request: httpx.Response(429, text="slow down"))

  with pytest.raises(RateLimitedError):
    await connector.fetch_messages()
  await connector.aclose()


@pytest.mark.anyio
async def test_server_errors_and_bad_payloads_are_transient():
  connector, _ = _connector(lambda request: httpx.Response(503, json={"error": "maintenance"}))
  with pytest.raises(TransientFetchError) as exc_info:
    await connector.fetch_my_orders()
  await connector.aclose()
  assert exc_info.value.status_code == 503

  connector, _ = _connector(lambda request: httpx.Response(200, content=b"<html>oops</html>"))
  with pytest.raises(TransientFetchError):
    await connector.fetch_my_orders()
  await connector.aclose()

  connector, _ = _connector(lambda request: httpx.Response(200, json={"success": True, "data": [{"id": 1}]}))
  with pytest.raises(TransientFetchError):
    await connector.fetch_my_orders()
  await connector.aclose()


@pytest.mark.anyio
async def test_network_errors_are_transient():
  def _refuse(request: httpx.Request) -> httpx.Response:
    raise httpx.ConnectError("connection refused", request=request)

  connector, _ = _connector(_refuse)

  with pytest.raises(TransientFetchError):
    await connector.fetch_customers()
  await connector.aclose()
