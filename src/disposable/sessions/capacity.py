import asyncio

from disposable.config.logging_config import get_logger

log = get_logger(__name__)


class CapacityGate:
    """
    Counting admission gate for Active + Pending sessions.

    ``try_admit`` checks and increments under one lock, so concurrent
    admissions can never push the count past the ceiling. Every admitted slot
    must be released exactly once, whichever path tears the session down.
    """

    def __init__(self, ceiling: int):
        if ceiling < 1:
            raise ValueError("ceiling must be >= 1")
        self._ceiling = ceiling
        self._in_use = 0
        self._lock = asyncio.Lock()

    @property
    def ceiling(self) -> int:
        return self._ceiling

    @property
    def in_use(self) -> int:
        return self._in_use

    @property
    def available(self) -> int:
        return max(0, self._ceiling - self._in_use)

    async def try_admit(self) -> bool:
        async with self._lock:
            if self._in_use >= self._ceiling:
                log.debug(f"Admission denied ({self._in_use}/{self._ceiling} in use)")
                return False
            self._in_use += 1
            return True

    def release(self) -> None:
        if self._in_use == 0:
            log.warning("Capacity release without a matching admission")
            return
        self._in_use -= 1

    def occupy(self, count: int) -> None:
        """Account for sessions restored from the durable mirror."""
        self._in_use += max(0, count)

    def __repr__(self) -> str:
        return f"CapacityGate(in_use={self._in_use}, ceiling={self._ceiling})"
