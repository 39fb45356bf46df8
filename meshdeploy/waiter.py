"""Fixed-interval polling for external state.

Every wait in the deploy flow (load-balancer address, HTTP readiness) goes
through ``wait_until``: call a probe, check the value, sleep, repeat until the
condition holds, the attempt cap or deadline is hit, or the caller cancels.
"""

from __future__ import annotations

import threading
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

from .errors import WaitTimeout


@dataclass
class WaitResult:
    ready: bool
    attempts: int
    value: Any = None
    elapsed: float = 0.0
    error: str = ""
    cancelled: bool = False

    def raise_for_timeout(self, description: str) -> None:
        if self.ready:
            return
        detail = f"{description} not ready after {self.attempts} attempts ({self.elapsed:.0f}s)"
        if self.cancelled:
            detail = f"{description} wait cancelled after {self.attempts} attempts"
        if self.error:
            detail = f"{detail}: {self.error}"
        raise WaitTimeout(detail)


def wait_until(
    probe: Callable[[], Any],
    *,
    interval: float,
    timeout: float | None = None,
    max_attempts: int | None = None,
    predicate: Callable[[Any], bool] = bool,
    cancel: threading.Event | None = None,
    on_attempt: Callable[[int, Any], None] | None = None,
    clock: Callable[[], float] = time.monotonic,
) -> WaitResult:
    """Poll ``probe`` until ``predicate(value)`` holds.

    Args:
        probe: Zero-argument callable returning the observed value. Exceptions
            count as a not-ready observation.
        interval: Seconds between attempts.
        timeout: Overall deadline in seconds.
        max_attempts: Hard cap on probe calls.
        predicate: Readiness test applied to the probe value.
        cancel: Event that aborts the wait when set.
        on_attempt: Called with (attempt, value) after each not-ready attempt
            that will be followed by another one.

    Returns:
        WaitResult describing the last observation.
    """
    if timeout is None and max_attempts is None:
        raise ValueError("wait_until needs a timeout or max_attempts")
    if interval < 0:
        raise ValueError("interval must be >= 0")
    if max_attempts is not None and max_attempts < 1:
        raise ValueError("max_attempts must be >= 1")

    cancel = cancel or threading.Event()
    started = clock()
    deadline = started + timeout if timeout is not None else None
    attempts = 0
    value: Any = None
    last_error = ""

    while True:
        if cancel.is_set():
            return WaitResult(
                ready=False,
                attempts=attempts,
                value=value,
                elapsed=clock() - started,
                error=last_error,
                cancelled=True,
            )

        attempts += 1
        try:
            value = probe()
            last_error = ""
            if predicate(value):
                return WaitResult(
                    ready=True, attempts=attempts, value=value, elapsed=clock() - started
                )
        except Exception as exc:
            value = None
            last_error = str(exc)

        out_of_attempts = max_attempts is not None and attempts >= max_attempts
        out_of_time = deadline is not None and clock() + interval > deadline
        if out_of_attempts or out_of_time:
            return WaitResult(
                ready=False,
                attempts=attempts,
                value=value,
                elapsed=clock() - started,
                error=last_error,
            )

        if on_attempt is not None:
            on_attempt(attempts, value)
        cancel.wait(interval)
