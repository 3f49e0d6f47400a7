"""Unit tests for the sliding-window rate limiter"""

from __future__ import annotations

from balance.auth.rate_limiter import SlidingWindowRateLimiter, build_rate_limit_key


class FakeClock:
    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now


def test_sixth_request_in_window_is_limited():
    limiter = SlidingWindowRateLimiter(window_seconds=600, max_requests=5, clock=FakeClock())

    results = [limiter.is_rate_limited("request-link", "1.2.3.4", "a@b.com") for _ in range(6)]

    assert results == [False, False, False, False, False, True]


def test_window_slides():
    clock = FakeClock()
    limiter = SlidingWindowRateLimiter(window_seconds=600, max_requests=5, clock=clock)

    for _ in range(5):
        assert not limiter.record_and_check("k")
    clock.now += 601

    assert not limiter.record_and_check("k")


def test_keys_are_independent():
    limiter = SlidingWindowRateLimiter(window_seconds=600, max_requests=1, clock=FakeClock())

    assert not limiter.is_rate_limited("request-link", "1.2.3.4", "a@b.com")
    assert not limiter.is_rate_limited("request-sessions", "1.2.3.4", "a@b.com")
    assert not limiter.is_rate_limited("request-link", "5.6.7.8", "a@b.com")
    assert limiter.is_rate_limited("request-link", "1.2.3.4", "a@b.com")


def test_reset_clears_history():
    limiter = SlidingWindowRateLimiter(window_seconds=600, max_requests=1, clock=FakeClock())
    limiter.record_and_check("k")
    limiter.reset()

    assert not limiter.record_and_check("k")


def test_key_uses_unknown_for_missing_ip():
    assert build_rate_limit_key("request-link", None, "a@b.com") == "request-link:unknown:a@b.com"
