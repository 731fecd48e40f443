"""
Redis-backed durable mirror for the session registry.

Each session is stored as one JSON string at ``<prefix>:<id>`` written with
SETEX, so a record expires on its own when the session would have, even if
the broker process that wrote it is gone.

Usage:
    from disposable.storage.session_mirror import RedisSessionMirror

    mirror = RedisSessionMirror.from_config(config.mirror)
    await mirror.connect()
    await mirror.put(session, ttl_seconds=session.remaining_ttl_seconds())
"""

import asyncio
from typing import Optional

import redis.asyncio as redis
from pydantic import ValidationError
from redis.asyncio.connection import ConnectionPool
from redis.exceptions import RedisError

from disposable.config.logging_config import get_logger
from disposable.config.settings import MirrorConfig
from disposable.sessions.models import Session
from disposable.storage.abstract_mirror import AbstractSessionMirror, MirrorError

log = get_logger(__name__)


class RedisSessionMirror(AbstractSessionMirror):
    """Session mirror stored in a single Redis database."""

    def __init__(
        self,
        url: str = "redis://localhost:6379",
        db: int = 0,
        password: Optional[str] = None,
        key_prefix: str = "session",
        socket_timeout: float = 5.0,
        socket_connect_timeout: float = 5.0,
        max_connections: int = 20,
        client: Optional[redis.Redis] = None,
    ) -> None:
        self.url = url
        self.db = db
        self.password = password
        self.key_prefix = key_prefix
        self.socket_timeout = socket_timeout
        self.socket_connect_timeout = socket_connect_timeout
        self.max_connections = max_connections
        self._pool: Optional[ConnectionPool] = None
        self._client: Optional[redis.Redis] = client
        self._lock = asyncio.Lock()

    @classmethod
    def from_config(cls, config: MirrorConfig) -> "RedisSessionMirror":
        return cls(
            url=config.url,
            db=config.db,
            password=config.password,
            key_prefix=config.key_prefix,
            socket_timeout=config.socket_timeout,
            socket_connect_timeout=config.socket_connect_timeout,
            max_connections=config.max_connections,
        )

    def key_for(self, session_id: str) -> str:
        return f"{self.key_prefix}:{session_id}"

    def _require_client(self) -> redis.Redis:
        if self._client is None:
            raise MirrorError("Session mirror not connected. Call connect() first.")
        return self._client

    async def connect(self) -> None:
        """Open the connection pool and verify it with PING."""
        async with self._lock:
            if self._client is None:
                self._pool = ConnectionPool.from_url(
                    self.url,
                    db=self.db,
                    password=self.password,
                    max_connections=self.max_connections,
                    socket_timeout=self.socket_timeout,
                    socket_connect_timeout=self.socket_connect_timeout,
                    decode_responses=True,
                )
                self._client = redis.Redis(connection_pool=self._pool)

            try:
                await self._client.ping()
                log.info(f"Connected to Redis session mirror at {self.url} (db={self.db})")
            except RedisError as e:
                log.error(f"Failed to connect to Redis session mirror: {e}")
                raise MirrorError(f"Redis unavailable: {e}") from e

    async def close(self) -> None:
        async with self._lock:
            if self._client is not None:
                await self._client.aclose()
                self._client = None
            if self._pool is not None:
                await self._pool.disconnect()
                self._pool = None

    async def ping(self) -> bool:
        if self._client is None:
            return False
        try:
            await self._client.ping()
            return True
        except RedisError:
            return False

    async def put(self, session: Session, ttl_seconds: int) -> None:
        """Write the session record with an expiry of ``ttl_seconds``."""
        client = self._require_client()
        key = self.key_for(session.id)
        try:
            if ttl_seconds <= 0:
                await client.delete(key)
                return
            await client.setex(key, ttl_seconds, session.to_record())
        except RedisError as e:
            log.error(f"Redis write error for key {key}: {e}")
            raise MirrorError(str(e)) from e

    async def delete(self, session_id: str) -> bool:
        client = self._require_client()
        key = self.key_for(session_id)
        try:
            return await client.delete(key) > 0
        except RedisError as e:
            log.error(f"Redis delete error for key {key}: {e}")
            raise MirrorError(str(e)) from e

    async def load_all(self) -> list[Session]:
        """Read every session record under the key prefix.

        Unparseable records are deleted and skipped.
        """
        client = self._require_client()
        sessions: list[Session] = []
        try:
            async for key in client.scan_iter(match=f"{self.key_prefix}:*"):
                raw = await client.get(key)
                if raw is None:
                    continue
                try:
                    sessions.append(Session.from_record(raw))
                except ValidationError as e:
                    log.warning(f"Discarding unreadable session record {key}: {e}")
                    await client.delete(key)
        except RedisError as e:
            log.error(f"Redis scan error for prefix {self.key_prefix}: {e}")
            raise MirrorError(str(e)) from e
        return sessions
