"""Tests for the wait-until-condition poller."""

from __future__ import annotations

import threading

import pytest

from meshdeploy.errors import WaitTimeout
from meshdeploy.waiter import wait_until


def test_returns_first_ready_value():
    values = iter(["", "", "34.1.2.3"])

    result = wait_until(lambda: next(values), interval=0, max_attempts=5)

    assert result.ready is True
    assert result.attempts == 3
    assert result.value == "34.1.2.3"


def test_stops_at_attempt_cap():
    calls = []

    def probe():
        calls.append(1)
        return ""

    result = wait_until(probe, interval=0, max_attempts=4)

    assert result.ready is False
    assert result.attempts == 4
    assert len(calls) == 4


def test_progress_callback_not_called_after_final_attempt():
    seen = []

    wait_until(lambda: None, interval=0, max_attempts=3, on_attempt=lambda n, v: seen.append(n))

    assert seen == [1, 2]


def test_probe_errors_are_retried_and_reported():
    state = {"n": 0}

    def probe():
        state["n"] += 1
        if state["n"] < 3:
            raise RuntimeError("connection refused")
        return "ok"

    result = wait_until(probe, interval=0, max_attempts=5)
    assert result.ready is True
    assert result.error == ""

    failing = wait_until(lambda: 1 / 0, interval=0, max_attempts=2)
    assert failing.ready is False
    assert "division by zero" in failing.error


def test_custom_predicate():
    codes = iter(["000", "503", "200"])

    result = wait_until(
        lambda: next(codes), interval=0, max_attempts=5, predicate=lambda c: c == "200"
    )

    assert result.ready is True
    assert result.attempts == 3


def test_timeout_deadline_uses_clock():
    now = {"t": 0.0}

    def clock():
        return now["t"]

    def probe():
        now["t"] += 4.0
        return False

    result = wait_until(probe, interval=0.01, timeout=10, clock=clock)

    assert result.ready is False
    assert result.attempts == 3
    assert result.elapsed == pytest.approx(12.0)


def test_cancel_event_stops_before_next_attempt():
    cancel = threading.Event()

    def probe():
        cancel.set()
        return None

    result = wait_until(probe, interval=0, max_attempts=10, cancel=cancel)

    assert result.cancelled is True
    assert result.attempts == 1


def test_requires_a_bound():
    with pytest.raises(ValueError):
        wait_until(lambda: True, interval=1)
    with pytest.raises(ValueError):
        wait_until(lambda: True, interval=-1, max_attempts=1)


def test_raise_for_timeout():
    result = wait_until(lambda: "", interval=0, max_attempts=2)
    with pytest.raises(WaitTimeout, match="external IP not ready after 2 attempts"):
        result.raise_for_timeout("external IP")

    ok = wait_until(lambda: "x", interval=0, max_attempts=1)
    ok.raise_for_timeout("anything")
