"""
tests/test_tokens.py -- Unit tests for TokenService.

Coverage:
  - issue/verify round trip returns the user id as a string
  - expiry is measured against the injected clock
  - tampered, foreign-secret, wrong-algorithm and garbage tokens are InvalidTokenError
  - payloads without a usable subject are InvalidTokenError
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest
from jose import jwt

from auth.errors import AuthenticationError, InvalidTokenError, TokenExpiredError
from auth.tokens import DEFAULT_EXPIRE_SECONDS, TokenService
from tests.helpers import TEST_SECRET, FakeDateTimeClock


class TestRoundTrip:
    def test_verify_returns_issued_subject(self, tokens: TokenService) -> None:
        assert tokens.verify(tokens.issue(42)) == "42"

    def test_default_ttl_is_seven_days(self) -> None:
        clock = FakeDateTimeClock()
        service = TokenService(TEST_SECRET, clock=clock)
        claims = jwt.get_unverified_claims(service.issue(7))
        assert claims["exp"] - claims["iat"] == DEFAULT_EXPIRE_SECONDS == 7 * 24 * 3600
        assert claims["sub"] == "7"

    def test_empty_secret_rejected(self) -> None:
        with pytest.raises(ValueError):
            TokenService("")


class TestExpiry:
    def test_valid_until_ttl_elapses(self) -> None:
        clock = FakeDateTimeClock()
        service = TokenService(TEST_SECRET, expire_seconds=3600, clock=clock)
        token = service.issue(1)

        clock.now += timedelta(seconds=3599)
        assert service.verify(token) == "1"

        clock.now += timedelta(seconds=2)
        with pytest.raises(TokenExpiredError):
            service.verify(token)

    def test_expired_error_is_an_authentication_error(self) -> None:
        clock = FakeDateTimeClock()
        service = TokenService(TEST_SECRET, expire_seconds=60, clock=clock)
        token = service.issue(1)
        clock.now += timedelta(days=1)
        with pytest.raises(AuthenticationError) as exc_info:
            service.verify(token)
        assert exc_info.value.code == "token_expired"

    def test_only_the_injected_clock_decides_expiry(self) -> None:
        # exp lies years before the real clock, but this service's clock says it is still fresh.
        clock = FakeDateTimeClock(datetime(2001, 1, 1, tzinfo=timezone.utc))
        service = TokenService(TEST_SECRET, expire_seconds=60, clock=clock)
        assert service.verify(service.issue(7)) == "7"


class TestInvalidTokens:
    def test_tampered_signature(self, tokens: TokenService) -> None:
        header, payload, _ = tokens.issue(1).split(".")
        _, _, other_signature = tokens.issue(2).split(".")
        with pytest.raises(InvalidTokenError):
            tokens.verify(f"{header}.{payload}.{other_signature}")

    def test_tampered_payload(self, tokens: TokenService) -> None:
        good = tokens.issue(1)
        forged = jwt.encode({"sub": "2", "exp": 9999999999}, "some-other-secret-of-sufficient-length")
        header, _, signature = good.split(".")
        _, forged_payload, _ = forged.split(".")
        with pytest.raises(InvalidTokenError):
            tokens.verify(f"{header}.{forged_payload}.{signature}")

    def test_foreign_secret(self, tokens: TokenService) -> None:
        other = TokenService("another-secret-key-that-is-also-long-enough")
        with pytest.raises(InvalidTokenError):
            tokens.verify(other.issue(1))

    def test_other_algorithm_rejected(self, tokens: TokenService) -> None:
        other_alg = jwt.encode({"sub": "1", "exp": 9999999999}, TEST_SECRET, algorithm="HS512")
        with pytest.raises(InvalidTokenError):
            tokens.verify(other_alg)

    @pytest.mark.parametrize("garbage", ["", "not-a-jwt", "a.b.c", "Bearer xyz"])
    def test_garbage(self, tokens: TokenService, garbage: str) -> None:
        with pytest.raises(InvalidTokenError):
            tokens.verify(garbage)

    def test_missing_subject(self, tokens: TokenService) -> None:
        token = jwt.encode({"exp": 9999999999}, TEST_SECRET, algorithm="HS256")
        with pytest.raises(InvalidTokenError):
            tokens.verify(token)

    def test_missing_expiry(self, tokens: TokenService) -> None:
        token = jwt.encode({"sub": "1"}, TEST_SECRET, algorithm="HS256")
        with pytest.raises(InvalidTokenError):
            tokens.verify(token)
