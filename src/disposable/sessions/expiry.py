"""
Expiry Coordinator

Keeps exactly one timer per session id. When a timer fires it does not tear
anything down itself: it posts the id onto a queue, and a single consumer
hands each id to the bound reclaim handler, which is the same path a manual
stop takes. A periodic sweep over the registry catches sessions whose timers
were lost (for example across a restart).
"""

import asyncio
import time
from typing import Any, Awaitable, Callable, Optional

from disposable.config.logging_config import get_logger

log = get_logger(__name__)

ReclaimHandler = Callable[[str], Awaitable[Any]]
ExpiredIds = Callable[[], list[str]]
Maintenance = Callable[[], Awaitable[Any]]


class ExpiryCoordinator:
    """Per-session expiry timers plus a periodic backstop sweep."""

    def __init__(self, sweep_interval_seconds: float = 300.0, clock: Callable[[], float] = time.time):
        if sweep_interval_seconds <= 0:
            raise ValueError("sweep_interval_seconds must be positive")
        self.sweep_interval_seconds = sweep_interval_seconds
        self.clock = clock
        self._timers: dict[str, asyncio.Task] = {}
        self._events: asyncio.Queue[str] = asyncio.Queue()
        self._inflight: set[asyncio.Task] = set()
        self._handler: Optional[ReclaimHandler] = None
        self._expired_ids: Optional[ExpiredIds] = None
        self._maintenance: Optional[Maintenance] = None
        self._consumer: Optional[asyncio.Task] = None
        self._sweeper: Optional[asyncio.Task] = None

    def bind(
        self,
        handler: ReclaimHandler,
        expired_ids: ExpiredIds,
        maintenance: Optional[Maintenance] = None,
    ) -> None:
        """
        Attach the reclaim path and the registry scan used by the sweep.

        ``maintenance``, if given, runs after every periodic sweep (the
        runtime orphan sweep, in practice).
        """
        self._handler = handler
        self._expired_ids = expired_ids
        self._maintenance = maintenance

    @property
    def running(self) -> bool:
        return self._consumer is not None and not self._consumer.done()

    def is_armed(self, session_id: str) -> bool:
        return session_id in self._timers

    def __len__(self) -> int:
        return len(self._timers)

    def arm(self, session_id: str, expires_at: float) -> None:
        """
        Schedule reclamation of ``session_id`` at ``expires_at`` (epoch seconds).

        Any previous timer for the id is cancelled first, with no suspension
        point in between, so two timers for one id never coexist.
        """
        self.cancel(session_id)
        delay = max(0.0, expires_at - self.clock())
        self._timers[session_id] = asyncio.create_task(
            self._fire_after(session_id, delay),
            name=f"expiry-{session_id[:12]}",
        )
        log.debug(f"Armed expiry timer for {session_id} in {delay:.1f}s")

    def cancel(self, session_id: str) -> bool:
        task = self._timers.pop(session_id, None)
        if task is None:
            return False
        if task is not asyncio.current_task():
            task.cancel()
        return True

    async def _fire_after(self, session_id: str, delay: float) -> None:
        await asyncio.sleep(delay)
        if self._timers.get(session_id) is asyncio.current_task():
            del self._timers[session_id]
        log.info(f"Session {session_id} expired, scheduling reclaim")
        self._events.put_nowait(session_id)

    async def _consume(self) -> None:
        while True:
            session_id = await self._events.get()
            task = asyncio.create_task(self._dispatch(session_id), name=f"reclaim-{session_id[:12]}")
            self._inflight.add(task)
            task.add_done_callback(self._inflight.discard)
            self._events.task_done()

    async def _dispatch(self, session_id: str) -> None:
        if self._handler is None:
            log.warning(f"No reclaim handler bound, dropping expiry of {session_id}")
            return
        try:
            await self._handler(session_id)
        except Exception as e:
            log.error(f"Reclaim of expired session {session_id} failed: {e}", exc_info=True)

    async def sweep_once(self) -> int:
        """
        Reclaim every registered session whose expiry has already passed.

        Returns:
            Number of expired sessions handed to the reclaim handler.
        """
        if self._handler is None or self._expired_ids is None:
            return 0
        expired = self._expired_ids()
        for session_id in expired:
            await self._dispatch(session_id)
        return len(expired)

    async def _sweep_loop(self) -> None:
        while True:
            await asyncio.sleep(self.sweep_interval_seconds)
            try:
                count = await self.sweep_once()
                if count:
                    log.info(f"Expiry sweep reclaimed {count} sessions")
            except Exception as e:
                log.error(f"Expiry sweep failed: {e}", exc_info=True)
            if self._maintenance is not None:
                try:
                    await self._maintenance()
                except Exception as e:
                    log.error(f"Periodic maintenance failed: {e}", exc_info=True)

    async def drain(self) -> None:
        """Wait until every posted expiry event has been fully handled."""
        if self.running:
            await self._events.join()
        while self._inflight:
            await asyncio.gather(*list(self._inflight), return_exceptions=True)

    def start(self) -> None:
        if self.running:
            return
        self._consumer = asyncio.create_task(self._consume(), name="expiry-consumer")
        self._sweeper = asyncio.create_task(self._sweep_loop(), name="expiry-sweeper")
        log.info(f"Expiry coordinator started (sweep every {self.sweep_interval_seconds:.0f}s)")

    async def stop(self) -> None:
        """Cancel all timers, the consumer, the sweep loop and in-flight reclaims."""
        tasks = list(self._timers.values()) + list(self._inflight)
        self._timers.clear()
        for task in (self._consumer, self._sweeper):
            if task is not None:
                tasks.append(task)
        self._consumer = None
        self._sweeper = None

        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        log.info("Expiry coordinator stopped")
