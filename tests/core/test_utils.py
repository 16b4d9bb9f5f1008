"""
Unit tests for core utility functions.
"""
import asyncio
from unittest.mock import MagicMock

import pytest
from googleapiclient.errors import HttpError

from core.utils import (
    RetryExhaustedError,
    compute_backoff_delay,
    is_retryable_error,
    retry_on_quota,
    utf16_len,
    utf16_offset,
    with_quota_retry,
)


def http_error(status):
    mock_resp = MagicMock()
    mock_resp.status = status
    mock_resp.reason = "error"
    return HttpError(mock_resp, b"error")


class FlakyCall:
    """Coroutine factory that fails a fixed number of times before succeeding."""

    def __init__(self, failures, error):
        self.failures = failures
        self.error = error
        self.calls = 0

    async def __call__(self):
        self.calls += 1
        if self.calls <= self.failures:
            raise self.error
        return "ok"


class TestIsRetryableError:
    """Tests for is_retryable_error."""

    @pytest.mark.parametrize("status", [429, 500, 502, 503])
    def test_transient_statuses(self, status):
        assert is_retryable_error(http_error(status))

    @pytest.mark.parametrize("status", [400, 403, 404])
    def test_client_errors(self, status):
        assert not is_retryable_error(http_error(status))

    def test_rate_limit_message_without_status(self):
        assert is_retryable_error(Exception("rateLimitExceeded: slow down"))

    def test_other_errors(self):
        assert not is_retryable_error(ValueError("boom"))
        assert not is_retryable_error(None)


class TestComputeBackoffDelay:
    """Tests for compute_backoff_delay."""

    def test_doubles_with_jitter_in_upper_half(self):
        for _ in range(20):
            delay = compute_backoff_delay(3, base_delay=1.0, max_delay=30.0)
            assert 4.0 <= delay <= 8.0

    def test_capped(self):
        for _ in range(20):
            assert compute_backoff_delay(10, base_delay=1.0, max_delay=30.0) <= 30.0

    def test_zero_base(self):
        assert compute_backoff_delay(2, base_delay=0.0) == 0.0


class TestRetryOnQuota:
    """Tests for retry_on_quota."""

    @pytest.mark.asyncio
    async def test_success_first_try(self):
        call = FlakyCall(0, http_error(429))
        assert await retry_on_quota(call, base_delay=0.0) == "ok"
        assert call.calls == 1

    @pytest.mark.asyncio
    async def test_retries_transient_error(self):
        call = FlakyCall(2, http_error(503))
        assert await retry_on_quota(call, max_retries=3, base_delay=0.0) == "ok"
        assert call.calls == 3

    @pytest.mark.asyncio
    async def test_exhausted(self):
        call = FlakyCall(10, http_error(429))
        with pytest.raises(RetryExhaustedError) as exc_info:
            await retry_on_quota(call, max_retries=2, base_delay=0.0)
        assert call.calls == 3
        assert exc_info.value.retries == 2
        assert str(exc_info.value).startswith("after 2 retries:")

    @pytest.mark.asyncio
    async def test_non_retryable_propagates(self):
        call = FlakyCall(1, http_error(404))
        with pytest.raises(HttpError):
            await retry_on_quota(call, max_retries=5, base_delay=0.0)
        assert call.calls == 1

    @pytest.mark.asyncio
    async def test_cancelled_during_backoff(self):
        """Cancelling the task mid-backoff stops without another attempt."""
        call = FlakyCall(10, http_error(429))
        task = asyncio.create_task(retry_on_quota(call, max_retries=3, base_delay=60.0, max_delay=60.0))
        while call.calls == 0:
            await asyncio.sleep(0)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task
        assert call.calls == 1
        assert task.cancelled()

    @pytest.mark.asyncio
    async def test_decorator_reads_config(self):
        class Manager:
            config = MagicMock(max_retries=1, base_delay=0.0, max_delay=0.0)

            def __init__(self):
                self.calls = 0

            @with_quota_retry("fetch")
            async def fetch(self):
                self.calls += 1
                raise http_error(500)

        manager = Manager()
        with pytest.raises(RetryExhaustedError):
            await manager.fetch()
        assert manager.calls == 2


class TestUtf16:
    """Tests for UTF-16 index helpers."""

    def test_len(self):
        assert utf16_len("abc") == 3
        assert utf16_len("😀") == 2
        assert utf16_len("") == 0

    def test_offset(self):
        assert utf16_offset("a😀b", 2) == 3
        assert utf16_offset("héllo", 2) == 2
