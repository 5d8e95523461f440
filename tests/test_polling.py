"""Tests for utils/polling.py and utils/http.py retry classification."""

import pytest
import requests

from utils.exceptions import NetworkError, ParseError
from utils.http import is_transient
from utils.polling import Deadline, poll_until, retry


class TestPollUntil:
    def test_returns_first_value(self, no_sleep):
        values = iter([None, None, 7])
        assert poll_until(lambda: next(values), attempts=5, interval=1, sleep=no_sleep) == 7
        assert no_sleep.delays == [1, 1]

    def test_gives_up(self, no_sleep):
        assert poll_until(lambda: None, attempts=3, interval=0.5, sleep=no_sleep) is None
        assert len(no_sleep.delays) == 2

    def test_should_stop(self, no_sleep):
        probe_calls = []

        def probe():
            probe_calls.append(1)

        result = poll_until(
            probe, attempts=10, interval=1, sleep=no_sleep, should_stop=lambda: bool(probe_calls)
        )
        assert result is None
        assert len(probe_calls) == 1

    def test_zero_is_a_value(self, no_sleep):
        assert poll_until(lambda: 0.0, attempts=3, interval=1, sleep=no_sleep) == 0.0


class TestRetry:
    def test_linear_backoff(self, no_sleep):
        attempts = []

        def action():
            attempts.append(1)
            if len(attempts) < 3:
                raise NetworkError("timed out")
            return "ok"

        assert retry(action, retries=3, backoff=1.5, retry_if=is_transient, sleep=no_sleep) == "ok"
        assert no_sleep.delays == [1.5, 3.0]

    def test_non_retryable_raises_immediately(self, no_sleep):
        def action():
            raise ParseError("bad json")

        with pytest.raises(ParseError):
            retry(action, retries=3, backoff=1, retry_if=is_transient, sleep=no_sleep)
        assert no_sleep.delays == []

    def test_exhausted(self, no_sleep):
        def action():
            raise NetworkError("connection reset")

        with pytest.raises(NetworkError):
            retry(action, retries=2, backoff=1, retry_if=is_transient, sleep=no_sleep)
        assert no_sleep.delays == [1, 2]


class TestIsTransient:
    def test_wrapped_timeout(self):
        try:
            try:
                raise requests.Timeout("read")
            except requests.Timeout as e:
                raise NetworkError("GET failed") from e
        except NetworkError as wrapped:
            assert is_transient(wrapped)

    def test_message_markers(self):
        assert is_transient(NetworkError("Connection reset by peer"))
        assert not is_transient(NetworkError("returned HTTP 403"))


class TestDeadline:
    def test_fake_clock(self):
        now = [100.0]
        deadline = Deadline(5, clock=lambda: now[0])
        assert not deadline.expired
        assert deadline.remaining == 5
        now[0] = 106.0
        assert deadline.expired
        assert deadline.remaining == 0
