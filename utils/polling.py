"""Bounded polling and retry helpers.

The player controller and the download manager both wait on things they
do not control (mpv reporting a position, a server recovering from a
reset). These helpers take the clock and sleep functions as arguments so
tests can drive them without real waiting.
"""

import time
from collections.abc import Callable
from typing import TypeVar

T = TypeVar("T")

Sleep = Callable[[float], None]


def poll_until(
    probe: Callable[[], T | None],
    *,
    attempts: int,
    interval: float,
    sleep: Sleep = time.sleep,
    should_stop: Callable[[], bool] | None = None,
) -> T | None:
    """Call probe until it returns something other than None.

    Args:
        probe: Function returning a value, or None while not ready
        attempts: Maximum number of calls
        interval: Seconds slept between calls
        sleep: Sleep function (injectable for tests)
        should_stop: Optional early-exit check evaluated before each call

    Returns:
        The first non-None value, or None when attempts are exhausted
    """
    for attempt in range(attempts):
        if should_stop is not None and should_stop():
            return None
        value = probe()
        if value is not None:
            return value
        if attempt < attempts - 1:
            sleep(interval)
    return None


def retry(
    action: Callable[[], T],
    *,
    retries: int,
    backoff: float,
    retry_if: Callable[[BaseException], bool],
    sleep: Sleep = time.sleep,
    on_retry: Callable[[int, BaseException], None] | None = None,
) -> T:
    """Run action, retrying failures accepted by retry_if with linear backoff.

    The n-th retry waits ``backoff * n`` seconds. Failures rejected by
    retry_if, and the last failure once retries are spent, propagate.
    """
    attempt = 0
    while True:
        try:
            return action()
        except Exception as e:
            if attempt >= retries or not retry_if(e):
                raise
            attempt += 1
            if on_retry is not None:
                on_retry(attempt, e)
            sleep(backoff * attempt)


class Deadline:
    """Fixed point in time measured on an injectable monotonic clock."""

    def __init__(self, seconds: float, clock: Callable[[], float] = time.monotonic) -> None:
        self._clock = clock
        self._end = clock() + seconds

    @property
    def remaining(self) -> float:
        return max(0.0, self._end - self._clock())

    @property
    def expired(self) -> bool:
        return self._clock() >= self._end
