"""
tests/test_limiter.py -- Unit tests for the moving-window rate limits.

Coverage:
  - M admitted, M+1 rejected, admitted again once the window slides
  - rejected requests are not recorded
  - identifiers and buckets are independent
  - retry_after
  - bucket sizes come from Settings

Time is driven through the limiter_clock fixture, which freezes time.time.
"""

from __future__ import annotations

import pytest
from limits import RateLimitItemPerSecond

from api.limiter import RateLimits
from core.config import Settings
from tests.helpers import TEST_SECRET, FakeClock

WINDOW = 15 * 60


@pytest.fixture
def limits(limiter_clock: FakeClock) -> RateLimits:
    return RateLimits({"login": RateLimitItemPerSecond(5, WINDOW)})


class TestMovingWindow:
    def test_five_allowed_sixth_rejected(self, limits: RateLimits, limiter_clock: FakeClock) -> None:
        results = []
        for _ in range(6):
            results.append(limits.allow("login", "10.0.0.1"))
            limiter_clock.advance(1)
        assert results == [True] * 5 + [False]

    def test_allowed_again_after_window_passes_first_call(
        self, limits: RateLimits, limiter_clock: FakeClock
    ) -> None:
        for _ in range(5):
            assert limits.allow("login", "10.0.0.1")
        assert not limits.allow("login", "10.0.0.1")

        limiter_clock.advance(WINDOW + 1)
        assert limits.allow("login", "10.0.0.1")

    def test_window_slides_one_entry_at_a_time(self, limits: RateLimits, limiter_clock: FakeClock) -> None:
        start = limiter_clock.now
        for _ in range(5):
            assert limits.allow("login", "ip")
            limiter_clock.advance(60)
        # Only the first hit has left the window; the other four still count.
        limiter_clock.now = start + WINDOW + 1
        assert limits.allow("login", "ip")
        assert not limits.allow("login", "ip")

    def test_rejected_requests_are_not_recorded(self, limits: RateLimits, limiter_clock: FakeClock) -> None:
        for _ in range(5):
            limits.allow("login", "ip")
        for _ in range(50):
            assert not limits.allow("login", "ip")
        limiter_clock.advance(WINDOW + 1)
        # If rejections had been recorded, the window would still be full.
        assert all(limits.allow("login", "ip") for _ in range(5))

    def test_identifiers_are_independent(self, limits: RateLimits) -> None:
        for _ in range(5):
            assert limits.allow("login", "a")
        assert not limits.allow("login", "a")
        assert limits.allow("login", "b")

    def test_retry_after(self, limits: RateLimits, limiter_clock: FakeClock) -> None:
        assert limits.retry_after("login", "ip") == 0
        for _ in range(5):
            limits.allow("login", "ip")
        limiter_clock.advance(100)
        assert limits.retry_after("login", "ip") == WINDOW - 100

    def test_bucket_must_admit_something(self) -> None:
        with pytest.raises(ValueError):
            RateLimits({"login": RateLimitItemPerSecond(0, WINDOW)})


class TestFromSettings:
    def test_bucket_sizes(self, limiter_clock: FakeClock) -> None:
        limits = RateLimits.from_settings(Settings(_env_file=None, jwt_secret=TEST_SECRET))
        for bucket, size in [("register", 5), ("login", 10), ("oauth", 10), ("general", 100)]:
            assert all(limits.allow(bucket, "ip") for _ in range(size))
            assert not limits.allow(bucket, "ip")

    def test_buckets_are_independent(self, limiter_clock: FakeClock) -> None:
        settings = Settings(_env_file=None, jwt_secret=TEST_SECRET, register_rate_limit=1, login_rate_limit=1)
        limits = RateLimits.from_settings(settings)
        assert limits.allow("register", "ip")
        assert not limits.allow("register", "ip")
        assert limits.allow("login", "ip")
