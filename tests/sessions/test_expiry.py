import asyncio
import time

import pytest

from disposable.sessions.expiry import ExpiryCoordinator


@pytest.fixture
async def expiry():
    coordinator = ExpiryCoordinator(sweep_interval_seconds=60)
    yield coordinator
    await coordinator.stop()


class TestExpiryCoordinator:
    def test_rejects_non_positive_interval(self):
        with pytest.raises(ValueError):
            ExpiryCoordinator(sweep_interval_seconds=0)

    @pytest.mark.asyncio
    async def test_timer_posts_to_handler(self, expiry):
        fired: list[str] = []

        async def handler(session_id: str):
            fired.append(session_id)

        expiry.bind(handler, lambda: [])
        expiry.start()
        expiry.arm("abc", time.time() + 0.02)

        await asyncio.sleep(0.1)
        await expiry.drain()

        assert fired == ["abc"]
        assert not expiry.is_armed("abc")

    @pytest.mark.asyncio
    async def test_rearm_replaces_previous_timer(self, expiry):
        fired: list[str] = []

        async def handler(session_id: str):
            fired.append(session_id)

        expiry.bind(handler, lambda: [])
        expiry.start()
        expiry.arm("abc", time.time() + 0.02)
        expiry.arm("abc", time.time() + 10)

        await asyncio.sleep(0.1)
        await expiry.drain()

        assert fired == []
        assert len(expiry) == 1

    @pytest.mark.asyncio
    async def test_cancel(self, expiry):
        expiry.arm("abc", time.time() + 10)

        assert expiry.cancel("abc") is True
        assert expiry.cancel("abc") is False
        assert len(expiry) == 0

    @pytest.mark.asyncio
    async def test_handler_errors_are_contained(self, expiry):
        calls: list[str] = []

        async def handler(session_id: str):
            calls.append(session_id)
            raise RuntimeError("teardown blew up")

        expiry.bind(handler, lambda: [])
        expiry.start()
        expiry.arm("a", time.time())
        expiry.arm("b", time.time())

        await asyncio.sleep(0.05)
        await expiry.drain()

        assert sorted(calls) == ["a", "b"]
        assert expiry.running

    @pytest.mark.asyncio
    async def test_sweep_once_reclaims_listed_ids(self, expiry):
        reclaimed: list[str] = []

        async def handler(session_id: str):
            reclaimed.append(session_id)

        expiry.bind(handler, lambda: ["x", "y"])

        assert await expiry.sweep_once() == 2
        assert reclaimed == ["x", "y"]

    @pytest.mark.asyncio
    async def test_sweep_without_binding(self, expiry):
        assert await expiry.sweep_once() == 0

    @pytest.mark.asyncio
    async def test_periodic_sweep_runs(self):
        swept = asyncio.Event()

        async def handler(session_id: str):
            swept.set()

        coordinator = ExpiryCoordinator(sweep_interval_seconds=0.02)
        coordinator.bind(handler, lambda: ["stale"])
        coordinator.start()
        try:
            await asyncio.wait_for(swept.wait(), timeout=1.0)
        finally:
            await coordinator.stop()
        assert not coordinator.running

    @pytest.mark.asyncio
    async def test_periodic_sweep_runs_maintenance(self):
        calls: list[int] = []
        recovered = asyncio.Event()

        async def handler(session_id: str):
            pass

        async def maintenance():
            calls.append(len(calls))
            if len(calls) == 1:
                raise RuntimeError("first pass fails")
            recovered.set()

        coordinator = ExpiryCoordinator(sweep_interval_seconds=0.02)
        coordinator.bind(handler, lambda: [], maintenance)
        coordinator.start()
        try:
            await asyncio.wait_for(recovered.wait(), timeout=1.0)
        finally:
            await coordinator.stop()
        assert len(calls) >= 2

    @pytest.mark.asyncio
    async def test_stop_cancels_pending_timers(self, expiry):
        expiry.start()
        expiry.arm("abc", time.time() + 10)

        await expiry.stop()

        assert len(expiry) == 0
        assert not expiry.running
