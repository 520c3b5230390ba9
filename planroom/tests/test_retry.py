"""
Unit tests for rate-limit retry and classification.
"""

import pytest

from planroom.shared.llm.client import is_rate_limit_error, with_retry


class RateLimited(Exception):
    status_code = 429


def _make_flaky(failures, error_factory=RateLimited, result="ok"):
    """Callable failing ``failures`` times before returning ``result``."""
    calls = {"count": 0}

    def fn():
        calls["count"] += 1
        if calls["count"] <= failures:
            raise error_factory()
        return result

    return fn, calls


class TestIsRateLimitError:
    def test_status_code(self):
        assert is_rate_limit_error(RateLimited())

    def test_message_markers(self):
        assert is_rate_limit_error(Exception("Error code: 429"))
        assert is_rate_limit_error(Exception("rate_limit_exceeded"))

    def test_other_errors(self):
        assert not is_rate_limit_error(ValueError("bad input"))


class TestWithRetry:
    """Tests for with_retry."""

    def test_backoff_delays_double(self):
        """Two retries wait 2s then 4s before succeeding."""
        delays = []
        fn, calls = _make_flaky(2)

        assert with_retry(fn, max_retries=2, base_delay=2.0, sleep=delays.append) == "ok"
        assert delays == [2.0, 4.0]
        assert calls["count"] == 3

    def test_non_rate_limit_error_raised_immediately(self):
        delays = []
        fn, calls = _make_flaky(1, error_factory=lambda: ValueError("boom"))

        with pytest.raises(ValueError):
            with_retry(fn, sleep=delays.append)
        assert calls["count"] == 1
        assert delays == []

    def test_exhaustion_reraises_rate_limit_error(self):
        fn, calls = _make_flaky(10)

        with pytest.raises(RateLimited):
            with_retry(fn, max_retries=2, sleep=lambda _: None)
        assert calls["count"] == 3

    def test_on_retry_notified_per_retry(self):
        notices = []
        fn, _ = _make_flaky(2)

        with_retry(
            fn,
            max_retries=2,
            sleep=lambda _: None,
            on_retry=lambda attempt, error: notices.append((attempt, type(error))),
        )

        assert notices == [(1, RateLimited), (2, RateLimited)]
