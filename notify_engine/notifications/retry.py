"""Retry policy wrapped around one polling attempt."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass

from notify_engine.core.exceptions import FailureAction, FetchFailureClassification, classify_fetch_failure

logger = logging.getLogger(__name__)

Sleep = Callable[[float], Awaitable[None]]


@dataclass(frozen=True)
class RetryDecision:
  """What to do after a failed attempt."""

  action: FailureAction
  attempt: int
  delay_ms: int | None
  classification: FetchFailureClassification


@dataclass(frozen=True)
class RetryResult[T]:
  """Outcome of ``RetryController.run``: a value, or the decision that ended the cycle."""

  value: T | None = None
  decision: RetryDecision | None = None

  @property
  def ok(self) -> bool:
    return self.decision is None


class RetryController:
  """
  Run a polling attempt with exponential backoff for transient failures.

  Decisions:
    - auth expired (401): abort and ask the caller to clear its published state
    - rate limited (429): abort silently, published state untouched
    - anything else: retry after base_delay_ms * 2**attempt (1s, 2s, 4s), then abort silently

  Backoff sleeps run in the caller's task, so cancelling the task cancels a pending retry.
  """

  def __init__(self, *, max_retries: int = 3, base_delay_ms: int = 1000, sleep: Sleep = asyncio.sleep) -> None:
    self._max_retries = max_retries
    self._base_delay_ms = base_delay_ms
    self._sleep = sleep
    self._retry_count = 0

  @property
  def retry_count(self) -> int:
    return self._retry_count

  def backoff_ms(self, attempt: int) -> int:
    return self._base_delay_ms * (2**attempt)

  def decide(self, exc: BaseException, attempt: int) -> RetryDecision:
    classification = classify_fetch_failure(exc)
    if classification.action is not FailureAction.RETRY:
      return RetryDecision(action=classification.action, attempt=attempt, delay_ms=None, classification=classification)

    if attempt >= self._max_retries:
      exhausted = FetchFailureClassification(action=FailureAction.ABORT_SILENT, reason=f"Gave up after {self._max_retries} retries: {classification.reason}", status_code=classification.status_code, category="retries_exhausted")
      return RetryDecision(action=FailureAction.ABORT_SILENT, attempt=attempt, delay_ms=None, classification=exhausted)

    return RetryDecision(action=FailureAction.RETRY, attempt=attempt, delay_ms=self.backoff_ms(attempt), classification=classification)

  async def run[T](self, attempt_fn: Callable[[], Awaitable[T]], *, on_retry: Callable[[RetryDecision], None] | None = None) -> RetryResult[T]:
    """Call ``attempt_fn`` until it succeeds or a terminal decision is reached."""
    attempt = 0
    while True:
      try:
        value = await attempt_fn()
      except asyncio.CancelledError:
        raise
      except Exception as exc:
        decision = self.decide(exc, attempt)
        category = decision.classification.category

        if decision.action is FailureAction.RETRY and decision.delay_ms is not None:
          self._retry_count = attempt + 1
          logger.info("Poll attempt failed; retrying attempt=%d/%d delay_ms=%d category=%s error=%s", attempt + 1, self._max_retries, decision.delay_ms, category, exc)
          if on_retry is not None:
            on_retry(decision)
          await self._sleep(decision.delay_ms / 1000.0)
          attempt += 1
          continue

        self._retry_count = 0
        if decision.action is FailureAction.ABORT_CLEAR:
          logger.warning("Poll aborted; session rejected by upstream category=%s", category)
        elif category == "retries_exhausted":
          logger.error("Poll failed after %d retries; giving up for this cycle error=%s", self._max_retries, exc)
        else:
          logger.warning("Poll aborted without retry category=%s reason=%s", category, decision.classification.reason)
        return RetryResult(decision=decision)

      if attempt > 0:
        logger.info("Poll succeeded after retry attempt=%d", attempt)
      self._retry_count = 0
      return RetryResult(value=value)
