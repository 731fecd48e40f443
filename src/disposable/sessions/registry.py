"""
Session Registry

Authoritative in-memory table of active sessions. Every create, expiry update
and removal is written through to the optional durable mirror before the call
returns, with the record's expiry set to the session's remaining TTL. The
registry also keeps the expiry timers in step with the table: it arms on
create and restore, re-arms on extend, and cancels on removal.
"""

import asyncio
import time
from typing import Any, Callable, Dict, List, Optional

from disposable.config.logging_config import get_logger
from disposable.sessions.errors import DuplicateSessionError
from disposable.sessions.expiry import ExpiryCoordinator
from disposable.sessions.models import Endpoint, Session, SessionState
from disposable.storage.abstract_mirror import AbstractSessionMirror, MirrorError

log = get_logger(__name__)


class SessionRegistry:
    """In-memory session table with write-through mirroring."""

    def __init__(
        self,
        mirror: Optional[AbstractSessionMirror] = None,
        expiry: Optional[ExpiryCoordinator] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.mirror = mirror
        self.expiry = expiry
        self.clock = clock
        self._sessions: dict[str, Session] = {}
        self._lock = asyncio.Lock()

    def __len__(self) -> int:
        return len(self._sessions)

    def __contains__(self, session_id: object) -> bool:
        return session_id in self._sessions

    async def create(
        self,
        session_id: str,
        endpoint: Optional[Endpoint],
        ttl_ms: int,
        owner_id: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> Session:
        """
        Register a new session expiring ``ttl_ms`` from now.

        Raises:
            DuplicateSessionError: If ``session_id`` is already registered.
            ValueError: If ``ttl_ms`` is not positive.
        """
        if ttl_ms <= 0:
            raise ValueError("ttl_ms must be positive")

        now = self.clock()
        async with self._lock:
            if session_id in self._sessions:
                raise DuplicateSessionError(f"Session {session_id} already exists", session_id)
            session = Session(
                id=session_id,
                endpoint=endpoint,
                expires_at=now + ttl_ms / 1000,
                owner_id=owner_id,
                created_at=now,
                metadata=metadata or {},
            )
            self._sessions[session_id] = session

        await self._mirror_put(session)
        if self.expiry is not None:
            self.expiry.arm(session_id, session.expires_at)
        log.debug(f"Registered session {session_id} (ttl={ttl_ms}ms, endpoint={endpoint})")
        return session

    def get(self, session_id: str) -> Optional[Session]:
        return self._sessions.get(session_id)

    def list(self) -> List[Session]:
        return sorted(self._sessions.values(), key=lambda s: s.created_at)

    def is_active(self, session_id: str) -> bool:
        session = self._sessions.get(session_id)
        return session is not None and session.is_active(self.clock())

    def expired_ids(self) -> List[str]:
        now = self.clock()
        return [s.id for s in self._sessions.values() if not s.is_active(now)]

    async def update_expiry(self, session_id: str, new_expires_at: float) -> bool:
        """
        Advance a session's expiry and re-arm its timer.

        Returns:
            False if the session is absent or ``new_expires_at`` would not move
            the expiry forward; True otherwise.
        """
        async with self._lock:
            session = self._sessions.get(session_id)
            if session is None:
                return False
            if new_expires_at <= session.expires_at:
                log.warning(f"Refusing to move expiry of {session_id} backwards")
                return False
            session.expires_at = new_expires_at

        await self._mirror_put(session)
        if self.expiry is not None:
            self.expiry.arm(session_id, new_expires_at)
        return True

    async def remove(self, session_id: str) -> bool:
        """
        Drop a session from memory and the mirror and cancel its timer.

        Returns:
            False if the session was already absent.
        """
        if self.expiry is not None:
            self.expiry.cancel(session_id)
        async with self._lock:
            session = self._sessions.pop(session_id, None)
        if session is None:
            return False
        await self._mirror_delete(session_id)
        log.debug(f"Removed session {session_id}")
        return True

    async def restore(self) -> List[Session]:
        """
        Load live sessions from the mirror and arm their timers.

        Mirror records that have already expired are deleted, not restored.
        A mirror that cannot be read yields an empty restore.
        """
        if self.mirror is None:
            return []

        try:
            records = await self.mirror.load_all()
        except MirrorError as e:
            log.error(f"Failed to load sessions from mirror: {e}")
            return []

        now = self.clock()
        restored: List[Session] = []
        for session in records:
            if not session.is_active(now):
                log.info(f"Discarding expired mirrored session {session.id}")
                await self._mirror_delete(session.id)
                continue

            async with self._lock:
                if session.id in self._sessions:
                    continue
                session.state = SessionState.ACTIVE
                self._sessions[session.id] = session

            if self.expiry is not None:
                self.expiry.arm(session.id, session.expires_at)
            restored.append(session)

        log.info(f"Restored {len(restored)} sessions from mirror")
        return restored

    async def _mirror_put(self, session: Session) -> None:
        if self.mirror is None:
            return
        try:
            await self.mirror.put(session, session.remaining_ttl_seconds(self.clock()))
        except MirrorError as e:
            log.error(f"Failed to mirror session {session.id}: {e}")

    async def _mirror_delete(self, session_id: str) -> None:
        if self.mirror is None:
            return
        try:
            await self.mirror.delete(session_id)
        except MirrorError as e:
            log.error(f"Failed to delete mirrored session {session_id}: {e}")
