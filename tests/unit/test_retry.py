"""Unit tests for the retry policy."""

from __future__ import annotations

import pytest

from dfconnect.application.retry import RetryPolicy, is_retryable
from dfconnect.domain.errors import ProtocolError, TransportError
from dfconnect.infrastructure.config import RetryConfig


def _unavailable() -> TransportError:
    return TransportError("connection reset", code="UNAVAILABLE", retryable=True)


@pytest.mark.unit
class TestRetryPolicy:
    """Tests for RetryPolicy."""

    def test_backoff_grows_and_caps(self) -> None:
        policy = RetryPolicy(initial_backoff=0.05, multiplier=4.0, max_backoff=5.0)

        delays = [policy.backoff(n) for n in range(1, 6)]

        assert delays == pytest.approx([0.05, 0.2, 0.8, 3.2, 5.0])

    def test_from_config(self, sleep) -> None:
        policy = RetryPolicy.from_config(
            RetryConfig(max_attempts=2, initial_backoff_seconds=1.0, backoff_multiplier=2.0),
            sleep=sleep,
        )

        assert policy.max_attempts == 2
        assert policy.backoff(2) == 2.0
        assert policy.sleep is sleep

    def test_invalid_budget(self) -> None:
        with pytest.raises(ValueError):
            RetryPolicy(max_attempts=0)

    def test_only_retryable_transport_errors(self) -> None:
        policy = RetryPolicy(max_attempts=3)

        assert is_retryable(_unavailable())
        assert not is_retryable(TransportError("denied", code="PERMISSION_DENIED"))
        assert not is_retryable(ProtocolError("bad"))
        assert policy.should_retry(_unavailable(), 2)
        assert not policy.should_retry(_unavailable(), 3)

    @pytest.mark.asyncio
    async def test_call_retries_then_succeeds(self, sleep) -> None:
        policy = RetryPolicy(max_attempts=5, initial_backoff=0.05, multiplier=4.0, sleep=sleep)
        attempts = 0

        async def flaky() -> str:
            nonlocal attempts
            attempts += 1
            if attempts < 3:
                raise _unavailable()
            return "ok"

        assert await policy.call(flaky) == "ok"
        assert attempts == 3
        assert sleep.delays == pytest.approx([0.05, 0.2])

    @pytest.mark.asyncio
    async def test_exhaustion_attempts_exactly_max_attempts(self, sleep) -> None:
        policy = RetryPolicy(max_attempts=4, sleep=sleep)
        attempts = 0

        async def always_down() -> None:
            nonlocal attempts
            attempts += 1
            raise _unavailable()

        with pytest.raises(TransportError) as exc_info:
            await policy.call(always_down)

        assert attempts == 4
        assert exc_info.value.retryable
        assert len(sleep.delays) == 3

    @pytest.mark.asyncio
    async def test_non_retryable_fails_immediately(self, sleep) -> None:
        policy = RetryPolicy(max_attempts=4, sleep=sleep)
        attempts = 0

        async def denied() -> None:
            nonlocal attempts
            attempts += 1
            raise TransportError("denied", code="PERMISSION_DENIED")

        with pytest.raises(TransportError, match="denied"):
            await policy.call(denied)

        assert attempts == 1
        assert sleep.delays == []
