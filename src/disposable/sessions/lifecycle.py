"""
Lifecycle Coordinator

The one entry point the HTTP layer and the proxy talk to. It composes the
capacity gate, the runtime adapter, the registry and the expiry coordinator:

    create:  admit -> ensure image -> provision -> await endpoint -> register (+ arm)
    stop:    [id lock] cancel timer -> terminate -> unregister -> release slot
    expire:  timer event -> [id lock] re-check expiry -> same teardown as stop
    extend:  [id lock] advance expiry -> mirror -> re-arm
    sweep:   every interval -> reclaim expired sessions -> remove exited/dead containers

Per-session operations are serialized by a lock keyed on the session id, so a
manual stop racing an expiry fire performs exactly one teardown. Provisioning
holds no lock at all; only the admission step and the final registry insert
are serialized.
"""

import time
from typing import Any, Callable, Dict, List, Optional

from disposable.concurrency.keyed_lock import KeyedLock
from disposable.concurrency.timeout import OperationTimeoutError
from disposable.config.logging_config import get_logger
from disposable.config.settings import BrokerConfig
from disposable.runtime.docker_client import DockerRuntimeClient
from disposable.sessions.capacity import CapacityGate
from disposable.sessions.errors import (
    CapacityExceededError,
    DuplicateSessionError,
    ProvisionFailedError,
    RuntimeClientError,
    SessionError,
    SessionNotFoundError,
)
from disposable.sessions.expiry import ExpiryCoordinator
from disposable.sessions.models import Endpoint, Session, SessionState, SessionView, StopOutcome
from disposable.sessions.registry import SessionRegistry
from disposable.sessions.resolver import EndpointResolver
from disposable.storage.abstract_mirror import AbstractSessionMirror, MirrorError
from disposable.storage.session_mirror import RedisSessionMirror

log = get_logger(__name__)


class LifecycleCoordinator:
    """Facade over the session lifecycle components."""

    def __init__(
        self,
        config: BrokerConfig,
        runtime: DockerRuntimeClient,
        mirror: Optional[AbstractSessionMirror] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.config = config
        self.runtime = runtime
        self.clock = clock
        self.gate = CapacityGate(config.sessions.max_sessions)
        self.expiry = ExpiryCoordinator(config.sessions.cleanup_interval_seconds, clock=clock)
        self.registry = SessionRegistry(mirror=mirror, expiry=self.expiry, clock=clock)
        self.resolver = EndpointResolver(self.registry)
        self.locks = KeyedLock()
        self.expiry.bind(self._on_expire, self.registry.expired_ids, self._sweep_runtime)
        self._started = False

    @classmethod
    def from_config(cls, config: BrokerConfig) -> "LifecycleCoordinator":
        """Build a coordinator wired to Docker and, if enabled, Redis."""
        runtime = DockerRuntimeClient(config.runtime)
        mirror = RedisSessionMirror.from_config(config.mirror) if config.mirror.enabled else None
        return cls(config, runtime, mirror=mirror)

    @property
    def started(self) -> bool:
        return self._started

    async def start(self) -> None:
        """
        Connect the mirror, restore live sessions, reconcile the runtime
        against them and start the expiry machinery.
        """
        if self._started:
            return

        if not await self.runtime.health_check():
            log.warning("Docker is not reachable; session creation will fail until it is")

        mirror = self.registry.mirror
        if mirror is not None:
            try:
                await mirror.connect()
            except MirrorError as e:
                log.error(f"Session mirror unavailable, continuing without persistence: {e}")
                self.registry.mirror = None

        restored = await self.registry.restore()
        self.gate.occupy(len(restored))
        await self._drop_vanished(restored)

        try:
            keep = {s.id for s in self.registry.list()}
            removed = await self.runtime.sweep_orphans(keep=keep)
            if removed:
                log.info(f"Startup reconciliation removed {removed} orphaned containers")
        except (SessionError, OperationTimeoutError) as e:
            log.error(f"Startup orphan sweep failed: {e}")

        self.expiry.start()
        self._started = True
        log.info(
            f"Lifecycle coordinator started ({len(self.registry)} sessions, "
            f"ceiling {self.gate.ceiling})"
        )

    async def _drop_vanished(self, restored: List[Session]) -> None:
        for session in restored:
            try:
                attrs = await self.runtime.inspect(session.id)
            except (SessionError, OperationTimeoutError) as e:
                log.warning(f"Could not verify restored session {session.id}: {e}")
                continue
            if attrs is None:
                log.warning(f"Container for restored session {session.id} no longer exists")
                if await self.registry.remove(session.id):
                    self.gate.release()

    async def create_session(
        self,
        ttl_ms: Optional[int] = None,
        owner_id: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> SessionView:
        """
        Allocate a new browser session.

        Raises:
            CapacityExceededError: The concurrent session ceiling is reached.
            ImageUnavailableError: The browser image could not be obtained.
            ProvisionFailedError: The container could not be created or started.
        """
        ttl_ms = self.config.sessions.default_duration_ms if ttl_ms is None else ttl_ms
        if ttl_ms <= 0:
            raise ValueError("ttl_ms must be positive")

        if not await self.gate.try_admit():
            log.warning(f"Session limit reached ({self.gate.ceiling}), rejecting request")
            raise CapacityExceededError(f"Maximum concurrent sessions ({self.gate.ceiling}) reached")

        started = time.monotonic()
        container_id: Optional[str] = None
        try:
            try:
                await self.runtime.ensure_image()
                handle = await self.runtime.provision(self.runtime.container_spec(owner_id))
                container_id = handle.id
                endpoint = await self.runtime.await_endpoint(handle)
            except (RuntimeClientError, OperationTimeoutError) as e:
                raise ProvisionFailedError(f"Failed to create session: {e}", container_id) from e

            if endpoint is None:
                if self.config.sessions.terminate_unroutable:
                    raise ProvisionFailedError(
                        f"Container {handle.id} never published port {self.config.runtime.browser_port}",
                        handle.id,
                    )
                log.warning(f"No host port published for session {handle.id}; session is unroutable")

            async with self.locks.hold(handle.id):
                session = await self.registry.create(handle.id, endpoint, ttl_ms, owner_id, metadata)
        except BaseException as e:
            self.gate.release()
            # a duplicate id means the container already backs a live session
            if container_id is not None and not isinstance(e, DuplicateSessionError):
                await self._discard(container_id)
            if isinstance(e, Exception):
                log.error(f"Failed to create session: {e}")
            raise

        elapsed_ms = (time.monotonic() - started) * 1000
        log.info(
            f"Session {session.id} started on {endpoint} for {ttl_ms}ms "
            f"(owner={owner_id or 'anonymous'}, provisioned in {elapsed_ms:.0f}ms)"
        )
        return SessionView.from_session(session, self.clock())

    async def _discard(self, container_id: str) -> None:
        try:
            await self.runtime.terminate(container_id, timeout=self.config.runtime.call_timeout)
        except (SessionError, OperationTimeoutError) as e:
            log.error(f"Failed to clean up container {container_id}: {e}")

    async def stop(self, session_id: str, reason: str = "manual") -> StopOutcome:
        """
        Tear a session down. Idempotent.

        Returns:
            STOPPED if this call tore the session down, ALREADY_GONE otherwise.
        """
        async with self.locks.hold(session_id):
            session = self.registry.get(session_id)
            if session is None:
                log.debug(f"Session {session_id} already stopped or does not exist")
                return StopOutcome.ALREADY_GONE
            await self._teardown(session, reason)
        return StopOutcome.STOPPED

    async def stop_session(self, session_id: str) -> bool:
        """Stop a session; true whether it was torn down now or was already gone."""
        await self.stop(session_id)
        return True

    async def _on_expire(self, session_id: str) -> None:
        async with self.locks.hold(session_id):
            session = self.registry.get(session_id)
            if session is None:
                return
            if session.is_active(self.clock()):
                log.debug(f"Session {session_id} was extended, ignoring stale expiry")
                return
            await self._teardown(session, "expired")

    async def _teardown(self, session: Session, reason: str) -> None:
        # caller holds the id lock
        self.expiry.cancel(session.id)
        session.state = SessionState.RECLAIMING
        try:
            await self.runtime.terminate(session.id, timeout=self.config.runtime.call_timeout)
        except (SessionError, OperationTimeoutError) as e:
            log.error(f"Failed to terminate container for session {session.id}: {e}")

        if await self.registry.remove(session.id):
            self.gate.release()
        log.info(f"Session {session.id} stopped ({reason})")

    async def extend_session(self, session_id: str, extra_ms: int) -> bool:
        """
        Push a session's expiry ``extra_ms`` further out.

        Raises:
            SessionNotFoundError: If the session is not currently active.
            ValueError: If ``extra_ms`` is not positive.
        """
        if extra_ms <= 0:
            raise ValueError("extra_ms must be positive")

        async with self.locks.hold(session_id):
            session = self.registry.get(session_id)
            if session is None or not session.is_active(self.clock()):
                raise SessionNotFoundError(f"Session {session_id} not found or expired", session_id)

            session.state = SessionState.EXTENDING
            try:
                await self.registry.update_expiry(session_id, session.expires_at + extra_ms / 1000)
            finally:
                session.state = SessionState.ACTIVE

        log.info(f"Session {session_id} extended by {extra_ms}ms")
        return True

    def get_remaining_time(self, session_id: str) -> int:
        """Milliseconds left; 0 for unknown or expired sessions."""
        session = self.registry.get(session_id)
        if session is None:
            return 0
        return session.remaining_ms(self.clock())

    def get_session(self, session_id: str) -> Optional[SessionView]:
        session = self.registry.get(session_id)
        now = self.clock()
        if session is None or not session.is_active(now):
            return None
        return SessionView.from_session(session, now)

    def list_sessions(self) -> List[SessionView]:
        now = self.clock()
        return [SessionView.from_session(s, now) for s in self.registry.list() if s.is_active(now)]

    def resolve(self, session_id: str) -> Optional[Endpoint]:
        return self.resolver.resolve(session_id)

    async def cleanup(self) -> int:
        """Remove terminal managed containers; returns how many were removed."""
        return await self.runtime.sweep_orphans()

    async def _sweep_runtime(self) -> None:
        # no keep set: containers still provisioning are not yet registered
        try:
            removed = await self.runtime.sweep_orphans()
        except (SessionError, OperationTimeoutError) as e:
            log.error(f"Periodic orphan sweep failed: {e}")
            return
        if removed:
            log.info(f"Periodic orphan sweep removed {removed} containers")

    async def health_check(self) -> Dict[str, Any]:
        docker_ok = await self.runtime.health_check()
        mirror = self.registry.mirror
        mirror_ok = await mirror.ping() if mirror is not None else None
        return {
            "healthy": docker_ok and mirror_ok is not False,
            "docker": docker_ok,
            "mirror": mirror_ok,
        }

    def stats(self) -> Dict[str, Any]:
        active = len(self.registry)
        return {
            "active_sessions": active,
            "pending_sessions": max(0, self.gate.in_use - active),
            "max_sessions": self.gate.ceiling,
            "available_slots": self.gate.available,
            "armed_timers": len(self.expiry),
            "persistence_enabled": self.registry.mirror is not None,
        }

    async def shutdown(self) -> None:
        """Stop every session and release external connections. Never raises."""
        await self.expiry.stop()

        sessions = self.registry.list()
        if sessions:
            log.info(f"Stopping {len(sessions)} sessions before shutdown")
        for session in sessions:
            try:
                await self.stop(session.id, reason="shutdown")
            except Exception as e:
                log.error(f"Failed to stop session {session.id} during shutdown: {e}")

        mirror = self.registry.mirror
        if mirror is not None:
            try:
                await mirror.close()
            except Exception as e:
                log.error(f"Failed to close session mirror: {e}")

        self._started = False
        log.info("Lifecycle coordinator shut down")
