import asyncio

import pytest

from disposable.concurrency.retry import RetryPolicy, backoff_delay, poll_until, retry_with_backoff


class TestBackoffDelay:
    """Tests for backoff_delay."""

    def test_linear(self):
        """Linear backoff grows by the initial delay each attempt."""
        assert backoff_delay(1, 1.0, "linear") == 1.0
        assert backoff_delay(2, 1.0, "linear") == 2.0
        assert backoff_delay(3, 1.0, "linear") == 3.0

    def test_exponential(self):
        assert backoff_delay(1, 0.5) == 0.5
        assert backoff_delay(3, 0.5) == 2.0

    def test_capped_by_max_delay(self):
        assert backoff_delay(10, 1.0, "exponential", max_delay=5.0) == 5.0

    def test_attempt_is_one_based(self):
        with pytest.raises(ValueError):
            backoff_delay(0, 1.0)


class TestRetryWithBackoff:
    """Tests for retry_with_backoff."""

    @pytest.mark.asyncio
    async def test_success_on_first_attempt(self):
        """Successful operations return immediately."""
        call_count = 0

        async def success_func():
            nonlocal call_count
            call_count += 1
            return "success"

        assert await retry_with_backoff(success_func) == "success"
        assert call_count == 1

    @pytest.mark.asyncio
    async def test_fails_twice_then_succeeds(self):
        """Third attempt succeeds within a budget of three."""
        call_count = 0

        async def fail_twice():
            nonlocal call_count
            call_count += 1
            if call_count < 3:
                raise ValueError("temporary failure")
            return "success"

        result = await retry_with_backoff(fail_twice, max_attempts=3, initial_delay=0.0, backoff="linear")
        assert result == "success"
        assert call_count == 3

    @pytest.mark.asyncio
    async def test_raises_after_budget(self):
        call_count = 0

        async def always_fail():
            nonlocal call_count
            call_count += 1
            raise ValueError("always fails")

        with pytest.raises(ValueError, match="always fails"):
            await retry_with_backoff(always_fail, max_attempts=3, initial_delay=0.0)
        assert call_count == 3

    @pytest.mark.asyncio
    async def test_non_retryable_propagates_immediately(self):
        call_count = 0

        async def wrong_kind():
            nonlocal call_count
            call_count += 1
            raise KeyError("not retried")

        with pytest.raises(KeyError):
            await retry_with_backoff(wrong_kind, retryable_exceptions=(ValueError,), initial_delay=0.0)
        assert call_count == 1

    @pytest.mark.asyncio
    async def test_linear_delays_between_attempts(self, monkeypatch):
        """Sleeps follow initial_delay * attempt."""
        sleeps: list[float] = []

        async def fake_sleep(delay):
            sleeps.append(delay)

        monkeypatch.setattr(asyncio, "sleep", fake_sleep)

        async def always_fail():
            raise ValueError("nope")

        with pytest.raises(ValueError):
            await retry_with_backoff(always_fail, max_attempts=3, initial_delay=1.0, backoff="linear")
        assert sleeps == [1.0, 2.0]

    @pytest.mark.asyncio
    async def test_rejects_zero_attempts(self):
        async def noop():
            return None

        with pytest.raises(ValueError):
            await retry_with_backoff(noop, max_attempts=0)


class TestPollUntil:
    """Tests for poll_until."""

    @pytest.mark.asyncio
    async def test_returns_first_value(self):
        results = iter([None, None, 42])

        async def probe():
            return next(results)

        assert await poll_until(probe, timeout=1.0, interval=0.001) == 42

    @pytest.mark.asyncio
    async def test_times_out_with_none(self):
        calls = 0

        async def probe():
            nonlocal calls
            calls += 1
            return None

        assert await poll_until(probe, timeout=0.03, interval=0.01) is None
        assert calls >= 2

    @pytest.mark.asyncio
    async def test_probe_runs_at_least_once(self):
        async def probe():
            return "ready"

        assert await poll_until(probe, timeout=0) == "ready"

    @pytest.mark.asyncio
    async def test_rejects_non_positive_interval(self):
        async def probe():
            return None

        with pytest.raises(ValueError):
            await poll_until(probe, timeout=1.0, interval=0)


class TestRetryPolicy:
    """Tests for RetryPolicy."""

    @pytest.mark.asyncio
    async def test_execute(self):
        policy = RetryPolicy(max_attempts=2, initial_delay=0.0, backoff="linear")
        call_count = 0

        async def flaky():
            nonlocal call_count
            call_count += 1
            if call_count == 1:
                raise ConnectionError("blip")
            return "ok"

        assert await policy.execute(flaky) == "ok"
        assert call_count == 2

    def test_repr(self):
        policy = RetryPolicy(max_attempts=3, initial_delay=1.0, backoff="linear")
        assert repr(policy) == "RetryPolicy(max_attempts=3, initial_delay=1.0, backoff='linear')"
