"""Bounded exponential backoff with an explicit attempt outcome.

Each attempt is folded into an ``AttemptResult`` (success / transient /
permanent) and the loop decides on that value; the final error is raised at
most once, by ``with_backoff``.
"""

from __future__ import annotations

import logging
import random
import time
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Generic, Optional, TypeVar

import httpx

from ingestion.connectors.base import TransientError

T = TypeVar("T")

logger = logging.getLogger(__name__)


class Outcome(str, Enum):
    SUCCESS = "success"
    TRANSIENT = "transient"
    PERMANENT = "permanent"


@dataclass(frozen=True)
class AttemptResult(Generic[T]):
    outcome: Outcome
    value: Optional[T] = None
    error: Optional[BaseException] = None
    attempts: int = 1

    @property
    def ok(self) -> bool:
        return self.outcome is Outcome.SUCCESS


def classify_error(exc: BaseException) -> Outcome:
    if isinstance(exc, (TransientError, httpx.TimeoutException, httpx.TransportError, TimeoutError, ConnectionError)):
        return Outcome.TRANSIENT
    return Outcome.PERMANENT


def backoff_delay_ms(attempt: int, base_delay_ms: float) -> float:
    """Delay before ``attempt`` (1-based); the first attempt runs immediately."""
    if attempt < 2:
        return 0.0
    return float(base_delay_ms) * (2 ** (attempt - 2))


def attempt_once(
    operation: Callable[[], T],
    classify: Callable[[BaseException], Outcome] = classify_error,
) -> AttemptResult[T]:
    try:
        return AttemptResult(Outcome.SUCCESS, value=operation())
    except Exception as exc:
        return AttemptResult(classify(exc), error=exc)


def run_with_backoff(
    operation: Callable[[], T],
    max_attempts: int,
    base_delay_ms: float,
    *,
    sleep: Callable[[float], None] = time.sleep,
    classify: Callable[[BaseException], Outcome] = classify_error,
    jitter_ms: float = 0.0,
    on_retry: Optional[Callable[[int, BaseException, float], None]] = None,
) -> AttemptResult[T]:
    if max_attempts < 1:
        raise ValueError("max_attempts must be at least 1")

    result: AttemptResult[T] = AttemptResult(Outcome.PERMANENT)
    for attempt in range(1, max_attempts + 1):
        if attempt > 1:
            delay_ms = backoff_delay_ms(attempt, base_delay_ms)
            if jitter_ms:
                delay_ms += random.uniform(0, jitter_ms)
            assert result.error is not None
            if on_retry is not None:
                on_retry(attempt, result.error, delay_ms)
            logger.debug(
                "retry.backoff",
                extra={"attempt": attempt, "delay_ms": delay_ms, "error": str(result.error)},
            )
            sleep(delay_ms / 1000.0)
        single = attempt_once(operation, classify)
        result = AttemptResult(single.outcome, value=single.value, error=single.error, attempts=attempt)
        if result.outcome is not Outcome.TRANSIENT:
            return result
    return result


def with_backoff(
    operation: Callable[[], T],
    max_attempts: int = 3,
    base_delay_ms: float = 500,
    **kwargs,
) -> T:
    """Run ``operation`` with retries on transient failures; re-raise the last error."""
    result = run_with_backoff(operation, max_attempts, base_delay_ms, **kwargs)
    if result.ok:
        return result.value  # type: ignore[return-value]
    assert result.error is not None
    raise result.error
