"""Tests for timeout and retry helpers."""

import asyncio

import pytest

from app.services.blockchain.rpc_wrapper import (
    BlockchainTimeoutError,
    backoff_delay,
    retry_with_backoff,
    with_timeout,
)
from app.utils.exceptions import (
    ChainConnectionError,
    FatalError,
    PersistenceError,
    is_transient,
)


class TestBackoffDelay:
    """Tests for exponential backoff."""

    def test_doubles_per_attempt(self):
        assert [backoff_delay(n, 1.0, 30.0) for n in (1, 2, 3, 4)] == [
            1.0, 2.0, 4.0, 8.0,
        ]

    def test_capped(self):
        assert backoff_delay(10, 1.0, 30.0) == 30.0

    def test_no_delay_before_first_failure(self):
        assert backoff_delay(0, 1.0, 30.0) == 0.0


class TestExceptionCategories:
    """Tests for error classification."""

    def test_transient_errors(self):
        assert is_transient(ChainConnectionError("x"))
        assert is_transient(PersistenceError("x"))
        assert is_transient(TimeoutError())

    def test_fatal_is_never_retried(self):
        assert not is_transient(FatalError("budget exhausted"))

    def test_programming_errors_are_not_transient(self):
        assert not is_transient(ValueError("bad row"))


class TestRetryWithBackoff:
    """Tests for retry_with_backoff."""

    @pytest.mark.asyncio
    async def test_succeeds_after_transient_failures(self, no_sleep):
        calls = 0

        async def flaky():
            nonlocal calls
            calls += 1
            if calls < 3:
                raise ConnectionError("reset")
            return "ok"

        result = await retry_with_backoff(
            flaky, max_attempts=5, base_delay=1.0, max_delay=30.0, sleep=no_sleep
        )

        assert result == "ok"
        assert calls == 3
        assert no_sleep.delays == [1.0, 2.0]

    @pytest.mark.asyncio
    async def test_raises_last_error_when_exhausted(self, no_sleep):
        async def always_down():
            raise PersistenceError("db down")

        with pytest.raises(PersistenceError, match="db down"):
            await retry_with_backoff(
                always_down, max_attempts=3, base_delay=0.5, max_delay=1.0,
                sleep=no_sleep,
            )

        assert no_sleep.delays == [0.5, 1.0]

    @pytest.mark.asyncio
    async def test_non_transient_not_retried(self, no_sleep):
        calls = 0

        async def broken():
            nonlocal calls
            calls += 1
            raise ValueError("bug")

        with pytest.raises(ValueError):
            await retry_with_backoff(
                broken, max_attempts=5, base_delay=1.0, max_delay=1.0,
                sleep=no_sleep,
            )

        assert calls == 1
        assert no_sleep.delays == []


class TestWithTimeout:
    """Tests for with_timeout."""

    @pytest.mark.asyncio
    async def test_returns_result(self):
        async def fast():
            return 42

        assert await with_timeout(fast(), timeout=1.0) == 42

    @pytest.mark.asyncio
    async def test_timeout_raises_blockchain_timeout(self):
        with pytest.raises(BlockchainTimeoutError, match="eth_getLogs"):
            await with_timeout(
                asyncio.sleep(10), timeout=0.01, operation_name="eth_getLogs"
            )

    @pytest.mark.asyncio
    async def test_timeout_is_transient(self):
        with pytest.raises(BlockchainTimeoutError) as exc_info:
            await with_timeout(asyncio.sleep(10), timeout=0.01)

        assert is_transient(exc_info.value)
