from abc import ABC, abstractmethod

from disposable.sessions.models import Session


class MirrorError(Exception):
    """The durable mirror could not complete a read or write."""


class AbstractSessionMirror(ABC):
    """Durable copy of the session table, one self-expiring record per session."""

    @abstractmethod
    async def connect(self) -> None:
        pass

    @abstractmethod
    async def close(self) -> None:
        pass

    @abstractmethod
    async def ping(self) -> bool:
        pass

    @abstractmethod
    async def put(self, session: Session, ttl_seconds: int) -> None:
        pass

    @abstractmethod
    async def delete(self, session_id: str) -> bool:
        pass

    @abstractmethod
    async def load_all(self) -> list[Session]:
        pass
