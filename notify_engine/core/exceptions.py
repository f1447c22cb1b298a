"""Error taxonomy for the notification engine and fetch failure classification."""

from __future__ import annotations

import asyncio
from enum import Enum

import httpx
import msgspec

_UNAUTHORIZED_PATTERNS = ("not authorized", "unauthorized", "non autorisé")
_RATE_LIMIT_PATTERNS = ("too many requests", "rate limit", "trop de requêtes")


class NotificationEngineError(Exception):
  """Base class for all notification engine failures."""


class FetchError(NotificationEngineError):
  """A source connector call failed."""

  def __init__(self, message: str, *, status_code: int | None = None) -> None:
    super().__init__(message)
    self.status_code = status_code


class AuthExpiredError(FetchError):
  """The upstream rejected the session (HTTP 401)."""


class RateLimitedError(FetchError):
  """The upstream throttled the caller (HTTP 429)."""


class TransientFetchError(FetchError):
  """Network, 5xx, timeout or payload decoding failure worth retrying."""


class PersistenceError(NotificationEngineError):
  """The durable key-value store failed to read or write."""


class FailureAction(Enum):
  RETRY = "retry"
  ABORT_SILENT = "abort_silent"
  ABORT_CLEAR = "abort_clear"


class FetchFailureClassification:
  """Classification result for a failed polling attempt."""

  def __init__(self, *, action: FailureAction, reason: str, status_code: int | None, category: str) -> None:
    self.action = action
    self.reason = reason
    self.status_code = status_code
    self.category = category

  def __repr__(self) -> str:
    return f"FetchFailureClassification(action={self.action.value}, category={self.category}, status_code={self.status_code})"


def _extract_status_code(exc: BaseException) -> int | None:
  """Extract an HTTP status code from connector or httpx exceptions."""
  if isinstance(exc, FetchError):
    return exc.status_code
  if isinstance(exc, httpx.HTTPStatusError):
    return exc.response.status_code
  status = getattr(exc, "status_code", None)
  if isinstance(status, int):
    return status
  return None


def classify_fetch_failure(exc: BaseException) -> FetchFailureClassification:
  """
  Classify a polling failure.

  Primary signal: the HTTP status code.
  Fallback: exception type and message patterns.

  Terminal for the cycle:
    - 401 / "not authorized": the session is gone, clear the published list
    - 429 / "too many requests": throttled, keep the published list

  Everything else (network, 5xx, timeouts, malformed payloads) is transient.
  """
  status_code = _extract_status_code(exc)
  message = str(exc).lower()

  if isinstance(exc, AuthExpiredError) or status_code == 401:
    return FetchFailureClassification(action=FailureAction.ABORT_CLEAR, reason="Session rejected by upstream", status_code=status_code, category="auth_expired")

  if isinstance(exc, RateLimitedError) or status_code == 429:
    return FetchFailureClassification(action=FailureAction.ABORT_SILENT, reason="Upstream rate limit reached", status_code=status_code, category="rate_limited")

  if any(pattern in message for pattern in _UNAUTHORIZED_PATTERNS):
    return FetchFailureClassification(action=FailureAction.ABORT_CLEAR, reason="Unauthorized (detected by message)", status_code=status_code, category="auth_expired")

  if any(pattern in message for pattern in _RATE_LIMIT_PATTERNS):
    return FetchFailureClassification(action=FailureAction.ABORT_SILENT, reason="Rate limited (detected by message)", status_code=status_code, category="rate_limited")

  if isinstance(exc, TimeoutError | asyncio.TimeoutError | httpx.TimeoutException):
    return FetchFailureClassification(action=FailureAction.RETRY, reason="Connector call timed out", status_code=status_code, category="timeout")

  if isinstance(exc, httpx.TransportError):
    return FetchFailureClassification(action=FailureAction.RETRY, reason="Transient connection/network error", status_code=status_code, category="connectivity_error")

  if isinstance(exc, msgspec.DecodeError | msgspec.ValidationError):
    return FetchFailureClassification(action=FailureAction.RETRY, reason="Malformed upstream payload", status_code=status_code, category="parse_error")

  if status_code is not None and status_code >= 500:
    return FetchFailureClassification(action=FailureAction.RETRY, reason=f"Upstream server error ({status_code})", status_code=status_code, category="server_error")

  return FetchFailureClassification(action=FailureAction.RETRY, reason=f"Unclassified error: {type(exc).__name__}", status_code=status_code, category="transient")
