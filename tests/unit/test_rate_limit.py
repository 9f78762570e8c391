"""Tests for the sliding-window rate limiter and bearer tokens."""

from datetime import datetime, timedelta, UTC

import time

import pytest

from videodrm.access.decision import Role
from videodrm.config import DRMConfig
from videodrm.errors import AuthenticationError, RateLimitExceeded
from videodrm.server.app import DRMServices
from videodrm.server.auth import TokenIssuer, bearer_token
from videodrm.server.rate_limit import SlidingWindowRateLimiter


class FakeMonotonic:
    def __init__(self):
        self.now = 0.0

    def __call__(self):
        return self.now


class TestSlidingWindow:
    """Test per-key request budgets."""

    def test_hundred_and_first_rejected(self):
        """The 101st request inside the window is rejected."""
        clock = FakeMonotonic()
        limiter = SlidingWindowRateLimiter(100, 900, clock=clock)
        for i in range(100):
            clock.now = i
            assert limiter.check("1.2.3.4").allowed
        with pytest.raises(RateLimitExceeded) as exc:
            limiter.check("1.2.3.4")
        assert exc.value.status == 429
        assert exc.value.retry_after == 900 - 99

    def test_keys_independent(self):
        """Another IP keeps its own budget."""
        limiter = SlidingWindowRateLimiter(1, 60, clock=FakeMonotonic())
        limiter.check("a")
        assert limiter.check("b").allowed
        assert limiter.hit("a").allowed is False

    def test_window_slides(self):
        """Capacity returns as old hits leave the window."""
        clock = FakeMonotonic()
        limiter = SlidingWindowRateLimiter(2, 10, clock=clock)
        limiter.check("ip")
        clock.now = 5
        limiter.check("ip")
        assert limiter.hit("ip").allowed is False
        clock.now = 10
        status = limiter.check("ip")
        assert status.remaining == 0

    def test_headers(self):
        """Status exposes RateLimit headers and Retry-After on rejection."""
        limiter = SlidingWindowRateLimiter(1, 60, clock=FakeMonotonic())
        assert limiter.hit("ip").headers() == {"RateLimit-Limit": "1", "RateLimit-Remaining": "0"}
        assert limiter.hit("ip").headers()["Retry-After"] == "60"

    def test_reset_and_prune(self):
        """reset clears budgets; prune drops idle keys."""
        clock = FakeMonotonic()
        limiter = SlidingWindowRateLimiter(1, 10, clock=clock)
        limiter.check("a")
        limiter.reset("a")
        limiter.check("a")
        clock.now = 20
        assert limiter.prune() == 1

    def test_invalid_arguments(self):
        """Budgets must be positive."""
        with pytest.raises(ValueError):
            SlidingWindowRateLimiter(0, 10)


class TestIdleBucketPruning:
    """Test that idle client buckets do not accumulate."""

    def test_prune_drops_idle_clients(self):
        """Buckets for clients idle past the window are removed."""
        clock = FakeMonotonic()
        services = DRMServices.build(config=DRMConfig(rate_limit_window=60), monotonic=clock)
        for i in range(5000):
            services.limiter.check(f"10.0.{i // 256}.{i % 256}")
        clock.now = 30
        services.limiter.check("10.1.0.1")
        clock.now = 61
        assert services.prune_rate_limits() == 5000
        assert len(services.limiter) == 1

    def test_pruned_while_running(self):
        """The service prunes on its own between start and stop."""
        clock = FakeMonotonic()
        services = DRMServices.build(config=DRMConfig(rate_limit_window=60, cleanup_interval=0.01),
                                     monotonic=clock)
        for i in range(100):
            services.limiter.check(f"10.0.0.{i}")
        clock.now = 120
        services.start()
        try:
            deadline = time.monotonic() + 2.0
            while len(services.limiter) and time.monotonic() < deadline:
                time.sleep(0.01)
            assert len(services.limiter) == 0
        finally:
            services.stop()
        assert services.running is False


class TestTokenIssuer:
    """Test HS256 bearer tokens."""

    def test_issue_and_verify(self):
        """Claims round-trip into a Principal."""
        issuer = TokenIssuer("secret")
        principal = issuer.verify(issuer.issue("user-1", "admin"))
        assert principal.user_id == "user-1"
        assert principal.role is Role.ADMIN
        assert principal.is_admin

    def test_expired(self):
        """Expired tokens raise token_expired."""
        past = datetime.now(UTC) - timedelta(days=30)
        token = TokenIssuer("secret", clock=lambda: past).issue("u")
        with pytest.raises(AuthenticationError) as exc:
            TokenIssuer("secret").verify(token)
        assert exc.value.code == "token_expired"

    def test_wrong_secret(self):
        """Tokens signed elsewhere are invalid."""
        with pytest.raises(AuthenticationError) as exc:
            TokenIssuer("other").verify(TokenIssuer("secret").issue("u"))
        assert exc.value.code == "invalid_token"

    def test_bearer_header(self):
        """Only a Bearer authorization header is accepted."""
        assert bearer_token({"authorization": "Bearer abc"}) == "abc"
        for headers in ({}, {"authorization": "Basic abc"}, {"authorization": "Bearer "}):
            with pytest.raises(AuthenticationError):
                bearer_token(headers)
