from unittest.mock import AsyncMock, patch

import pytest

from tradiepay.shared.core.exceptions import ExternalAPIError, StaleWriteError
from tradiepay.shared.core.retry import RETRY_CONFIGS, RetryManager, tenacity_retry


class TestRetryManager:
    @pytest.mark.asyncio
    async def test_returns_first_success(self):
        op = AsyncMock(return_value="ok")

        assert await RetryManager("optimistic_write").execute_with_retry(op, 1, key="v") == "ok"
        op.assert_awaited_once_with(1, key="v")

    @pytest.mark.asyncio
    async def test_retries_configured_exceptions(self):
        op = AsyncMock(side_effect=[StaleWriteError("conflict"), StaleWriteError("conflict"), "ok"])

        with patch("tradiepay.shared.core.retry.asyncio.sleep", new=AsyncMock()) as sleep:
            result = await RetryManager("optimistic_write", max_attempts=3).execute_with_retry(op)

        assert result == "ok"
        assert op.await_count == 3
        assert sleep.await_count == 2

    @pytest.mark.asyncio
    async def test_reraises_last_error_when_exhausted(self):
        op = AsyncMock(side_effect=StaleWriteError("conflict"))

        with patch("tradiepay.shared.core.retry.asyncio.sleep", new=AsyncMock()):
            with pytest.raises(StaleWriteError):
                await RetryManager("optimistic_write", max_attempts=2).execute_with_retry(op)
        assert op.await_count == 2

    @pytest.mark.asyncio
    async def test_other_exceptions_are_not_retried(self):
        op = AsyncMock(side_effect=ValueError("bad"))

        with pytest.raises(ValueError):
            await RetryManager("optimistic_write").execute_with_retry(op)
        assert op.await_count == 1

    def test_backoff_is_bounded(self):
        manager = RetryManager("optimistic_write")
        for attempt in range(10):
            delay = manager._calculate_backoff(attempt)
            assert 0 < delay <= RETRY_CONFIGS["optimistic_write"]["max_wait"] * 1.25


class TestTenacityRetry:
    @pytest.mark.asyncio
    async def test_retries_external_api_errors(self):
        calls = {"n": 0}

        @tenacity_retry("external_api")
        async def flaky():
            calls["n"] += 1
            if calls["n"] < 2:
                raise ExternalAPIError("Stripe unavailable")
            return "fetched"

        with patch("asyncio.sleep", new=AsyncMock()):
            assert await flaky() == "fetched"
        assert calls["n"] == 2

    @pytest.mark.asyncio
    async def test_reraises_original_error(self):
        @tenacity_retry("external_api")
        async def always_down():
            raise ExternalAPIError("Stripe unavailable")

        with patch("asyncio.sleep", new=AsyncMock()):
            with pytest.raises(ExternalAPIError):
                await always_down()
