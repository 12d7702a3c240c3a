"""
metricd - Retry Tests
"""

import pytest
from unittest.mock import AsyncMock

from metricd.lib.retry import backoff, retry_async


class SleepRecorder:
    """Stands in for asyncio.sleep and records every delay."""

    def __init__(self):
        self.delays = []

    async def __call__(self, delay):
        self.delays.append(delay)


class TestBackoff:
    """Test the backoff table."""

    def test_schedule(self):
        assert backoff(1) == 1
        assert backoff(2) == 3
        assert backoff(3) == 5

    def test_beyond_table_falls_back(self):
        assert backoff(4) == 1
        assert backoff(10) == 1


class TestRetryAsync:
    """Test retry_async."""

    @pytest.mark.asyncio
    async def test_success_first_try(self):
        sleep = SleepRecorder()
        action = AsyncMock(return_value="ok")

        assert await retry_async(action, OSError, sleep=sleep) == "ok"
        assert action.await_count == 1
        assert sleep.delays == []

    @pytest.mark.asyncio
    async def test_exhaustion_sleeps_schedule_then_raises(self):
        """Four failing attempts sleep 1, 3, 5 and re-raise the last error."""
        sleep = SleepRecorder()
        action = AsyncMock(side_effect=[OSError("1"), OSError("2"), OSError("3"), OSError("4")])

        with pytest.raises(OSError, match="4"):
            await retry_async(action, OSError, sleep=sleep)

        assert action.await_count == 4
        assert sleep.delays == [1, 3, 5]

    @pytest.mark.asyncio
    async def test_recovers_on_last_attempt(self):
        sleep = SleepRecorder()
        action = AsyncMock(side_effect=[OSError(), OSError(), OSError(), "done"])

        assert await retry_async(action, OSError, sleep=sleep) == "done"
        assert sum(sleep.delays) == 9

    @pytest.mark.asyncio
    async def test_other_errors_not_retried(self):
        sleep = SleepRecorder()
        action = AsyncMock(side_effect=KeyError("nope"))

        with pytest.raises(KeyError):
            await retry_async(action, OSError, sleep=sleep)

        assert action.await_count == 1
        assert sleep.delays == []

    @pytest.mark.asyncio
    async def test_invalid_attempts(self):
        with pytest.raises(ValueError):
            await retry_async(AsyncMock(), OSError, attempts=0)
