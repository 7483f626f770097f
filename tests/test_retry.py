"""Tests for provider retry utilities."""

from unittest.mock import AsyncMock, patch

import pytest

from convmem.llm.retry import RetryConfig, is_retryable_error, with_retry


class TestIsRetryableError:
    """Tests for is_retryable_error."""

    def test_rate_limit_messages(self):
        assert is_retryable_error(Exception("Rate limit exceeded"))
        assert is_retryable_error(Exception("rate_limit_error"))
        assert is_retryable_error(Exception("Too many requests"))

    def test_server_errors(self):
        assert is_retryable_error(Exception("502 Bad Gateway"))
        assert is_retryable_error(Exception("503 Service Unavailable"))

    def test_transport_errors(self):
        assert is_retryable_error(Exception("Connection error"))
        assert is_retryable_error(Exception("Request timed out"))

    def test_error_type_names(self):
        class APITimeoutError(Exception):
            pass

        assert is_retryable_error(APITimeoutError("boom"))

    def test_status_code_attribute(self):
        class HttpError(Exception):
            def __init__(self, status_code: int):
                self.status_code = status_code
                super().__init__(f"HTTP error code {status_code}")

        assert is_retryable_error(HttpError(429))
        assert is_retryable_error(HttpError(503))
        assert not is_retryable_error(HttpError(400))
        assert not is_retryable_error(HttpError(401))

    def test_non_retryable(self):
        assert not is_retryable_error(Exception("Invalid request"))
        assert not is_retryable_error(ValueError("Invalid parameter"))


class TestWithRetry:
    """Tests for with_retry."""

    @pytest.fixture(autouse=True)
    def no_sleep(self):
        with patch("convmem.llm.retry.asyncio.sleep", new_callable=AsyncMock) as sleep:
            yield sleep

    async def test_success_no_retry(self):
        func = AsyncMock(return_value="ok")
        assert await with_retry(func) == "ok"
        assert func.await_count == 1

    async def test_retries_transient_error(self, no_sleep):
        func = AsyncMock(side_effect=[Exception("rate_limit_error"), "ok"])
        assert await with_retry(func, RetryConfig(max_retries=2)) == "ok"
        assert func.await_count == 2
        no_sleep.assert_awaited_once_with(0.5)

    async def test_non_retryable_raises_immediately(self):
        func = AsyncMock(side_effect=ValueError("Invalid parameter"))
        with pytest.raises(ValueError, match="Invalid parameter"):
            await with_retry(func, RetryConfig(max_retries=3))
        assert func.await_count == 1

    async def test_exhausted(self):
        func = AsyncMock(side_effect=Exception("503 Service Unavailable"))
        with pytest.raises(Exception, match="503"):
            await with_retry(func, RetryConfig(max_retries=2))
        assert func.await_count == 3  # Initial + 2 retries

    async def test_disabled(self):
        func = AsyncMock(side_effect=Exception("rate_limit_error"))
        with pytest.raises(Exception, match="rate_limit_error"):
            await with_retry(func, RetryConfig(enabled=False))
        assert func.await_count == 1

    async def test_backoff_is_exponential_and_capped(self, no_sleep):
        func = AsyncMock(side_effect=[Exception("429")] * 4 + ["ok"])
        config = RetryConfig(max_retries=4, base_delay_ms=1000, max_delay_ms=3000)
        await with_retry(func, config)
        delays = [call.args[0] for call in no_sleep.await_args_list]
        assert delays == [1.0, 2.0, 3.0, 3.0]
