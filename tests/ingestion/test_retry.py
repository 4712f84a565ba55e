from __future__ import annotations

from typing import List

import httpx
import pytest

from ingestion.connectors.base import PermanentError, TransientError
from ingestion.utils.retry import (
    Outcome,
    backoff_delay_ms,
    classify_error,
    run_with_backoff,
    with_backoff,
)


class _Flaky:
    def __init__(self, failures: List[Exception], value: str = "ok") -> None:
        self.failures = list(failures)
        self.value = value
        self.calls = 0

    def __call__(self) -> str:
        self.calls += 1
        if self.failures:
            raise self.failures.pop(0)
        return self.value


def test_backoff_delays_double_from_base():
    assert backoff_delay_ms(1, 10) == 0
    assert backoff_delay_ms(2, 10) == 10
    assert backoff_delay_ms(3, 10) == 20
    assert backoff_delay_ms(4, 10) == 40


def test_transient_failures_are_retried_with_growing_delays():
    sleeps: List[float] = []
    op = _Flaky([TransientError("429"), TransientError("503")])

    value = with_backoff(op, 3, 10, sleep=sleeps.append)

    assert value == "ok"
    assert op.calls == 3
    assert sleeps == [0.01, 0.02]


def test_permanent_failure_is_not_retried():
    sleeps: List[float] = []
    op = _Flaky([PermanentError("400")])

    with pytest.raises(PermanentError):
        with_backoff(op, 3, 10, sleep=sleeps.append)

    assert op.calls == 1
    assert sleeps == []


def test_exhausted_attempts_raise_last_error():
    op = _Flaky([TransientError("first"), TransientError("second"), TransientError("third")])

    with pytest.raises(TransientError) as exc:
        with_backoff(op, 3, 0, sleep=lambda _s: None)

    assert str(exc.value) == "third"
    assert op.calls == 3


def test_run_with_backoff_reports_outcome_and_attempts():
    retried: List[int] = []
    op = _Flaky([TransientError("busy")])

    result = run_with_backoff(
        op,
        3,
        5,
        sleep=lambda _s: None,
        on_retry=lambda attempt, _exc, _delay: retried.append(attempt),
    )

    assert result.ok
    assert result.outcome is Outcome.SUCCESS
    assert result.value == "ok"
    assert result.attempts == 2
    assert retried == [2]


def test_run_with_backoff_requires_an_attempt():
    with pytest.raises(ValueError):
        run_with_backoff(lambda: None, 0, 10)


def test_transport_errors_classify_as_transient():
    assert classify_error(httpx.ReadTimeout("slow")) is Outcome.TRANSIENT
    assert classify_error(httpx.ConnectError("down")) is Outcome.TRANSIENT
    assert classify_error(TransientError("x")) is Outcome.TRANSIENT
    assert classify_error(PermanentError("x")) is Outcome.PERMANENT
    assert classify_error(KeyError("x")) is Outcome.PERMANENT
