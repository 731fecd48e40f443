import time
from typing import Callable

from disposable.sessions.models import Session
from disposable.storage.abstract_mirror import AbstractSessionMirror


class MemorySessionMirror(AbstractSessionMirror):
    """
    Process-local mirror with per-record expiry.

    Survives a LifecycleCoordinator being rebuilt inside one process, which
    is how restarts are simulated in tests and single-process deployments.
    """

    records: dict[str, str]
    deadlines: dict[str, float]

    def __init__(self, clock: Callable[[], float] = time.time):
        self.records = {}
        self.deadlines = {}
        self.clock = clock
        self.connected = False

    def _evict_expired(self) -> None:
        now = self.clock()
        for session_id in [k for k, deadline in self.deadlines.items() if deadline <= now]:
            self.records.pop(session_id, None)
            self.deadlines.pop(session_id, None)

    async def connect(self) -> None:
        self.connected = True

    async def close(self) -> None:
        self.connected = False

    async def ping(self) -> bool:
        return self.connected

    async def put(self, session: Session, ttl_seconds: int) -> None:
        if ttl_seconds <= 0:
            await self.delete(session.id)
            return
        self.records[session.id] = session.to_record()
        self.deadlines[session.id] = self.clock() + ttl_seconds

    async def delete(self, session_id: str) -> bool:
        self.deadlines.pop(session_id, None)
        return self.records.pop(session_id, None) is not None

    async def load_all(self) -> list[Session]:
        self._evict_expired()
        return [Session.from_record(raw) for raw in self.records.values()]
