"""
Docker runtime adapter for browser session containers.

Thin async capability surface over the Docker SDK: every blocking SDK call
runs in a worker thread, and every capability fails independently with a
typed session error. No session state lives here.
"""

import asyncio
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Iterable, Optional

import docker
from docker.errors import APIError, DockerException, ImageNotFound, NotFound

from disposable.concurrency.retry import RetryPolicy, poll_until
from disposable.concurrency.timeout import OperationTimeoutError, with_timeout
from disposable.config.logging_config import get_logger
from disposable.config.settings import RuntimeConfig
from disposable.sessions.errors import ImageUnavailableError, ProvisionFailedError, RuntimeClientError
from disposable.sessions.models import Endpoint

log = get_logger(__name__)

TERMINAL_STATES = frozenset({"exited", "dead"})

# requests' ConnectionError and friends derive from OSError, not DockerException
_RUNTIME_ERRORS: tuple[type[Exception], ...] = (DockerException, OSError)


@dataclass
class ContainerSpec:
    """Immutable description of one browser container."""

    image: str
    environment: dict[str, str] = field(default_factory=dict)
    exposed_ports: list[str] = field(default_factory=list)
    mem_limit: int = 0
    nano_cpus: int = 0
    shm_size: int = 0
    security_opt: list[str] = field(default_factory=list)
    labels: dict[str, str] = field(default_factory=dict)

    @classmethod
    def from_config(cls, config: RuntimeConfig, owner_id: Optional[str] = None) -> "ContainerSpec":
        prefix = config.label_prefix
        return cls(
            image=config.image,
            environment=dict(config.environment),
            exposed_ports=list(config.exposed_ports),
            mem_limit=config.memory_bytes,
            nano_cpus=config.nano_cpus,
            shm_size=config.shm_size,
            security_opt=list(config.security_opt),
            labels={
                prefix: "true",
                f"{prefix}.owner": owner_id or "anonymous",
                f"{prefix}.created-at": datetime.now(timezone.utc).isoformat(),
            },
        )


@dataclass
class ContainerHandle:
    """Reference to a container known to the runtime."""

    id: str
    name: str = ""
    status: str = "unknown"
    labels: dict[str, str] = field(default_factory=dict)


def published_host_port(attrs: dict[str, Any], container_port: str) -> Optional[int]:
    """Return the first non-zero host port bound to ``container_port``, if any."""
    port_map = attrs.get("NetworkSettings", {}).get("Ports") or {}
    for binding in port_map.get(container_port) or []:
        host_port = (binding or {}).get("HostPort")
        if host_port and int(host_port) > 0:
            return int(host_port)
    return None


class DockerRuntimeClient:
    """Manages browser container lifecycle through the Docker SDK."""

    def __init__(self, config: RuntimeConfig, client: Optional[docker.DockerClient] = None):
        """
        Initialize the runtime client.

        Args:
            config: Runtime settings (image, limits, retry and timeout budgets).
            client: Optional pre-built Docker client; defaults to ``docker.from_env()``.
        """
        self.config = config
        self.docker = client or docker.from_env(timeout=config.docker_timeout)  # type: ignore[attr-defined]
        self.start_policy = RetryPolicy(
            max_attempts=config.start_attempts,
            initial_delay=config.start_retry_delay,
            backoff="linear",
            retryable_exceptions=_RUNTIME_ERRORS,
        )

    @property
    def managed_label(self) -> str:
        return f"{self.config.label_prefix}=true"

    def container_spec(self, owner_id: Optional[str] = None) -> ContainerSpec:
        return ContainerSpec.from_config(self.config, owner_id=owner_id)

    async def health_check(self) -> bool:
        """Cheap liveness probe of the Docker connection. Never raises."""
        try:
            return bool(await with_timeout(lambda: asyncio.to_thread(self.docker.ping), self.config.call_timeout))
        except Exception as e:
            log.error(f"Docker health check failed: {e}")
            return False

    async def ensure_image(self, ref: Optional[str] = None) -> bool:
        """
        Make sure ``ref`` exists locally, pulling it on a miss.

        Returns:
            True if the image had to be pulled.

        Raises:
            ImageUnavailableError: If the image is missing and cannot be pulled.
        """
        image = ref or self.config.image

        def _ensure() -> bool:
            try:
                self.docker.images.get(image)
                log.debug(f"Image exists locally: {image}")
                return False
            except ImageNotFound:
                pass
            log.info(f"Pulling image {image}...")
            self.docker.images.pull(image)
            log.info(f"Image pulled: {image}")
            return True

        try:
            return await with_timeout(lambda: asyncio.to_thread(_ensure), self.config.pull_timeout)
        except (*_RUNTIME_ERRORS, OperationTimeoutError) as e:
            log.error(f"Image {image} unavailable: {e}")
            raise ImageUnavailableError(f"Image {image} unavailable: {e}") from e

    async def provision(self, spec: ContainerSpec) -> ContainerHandle:
        """
        Create and start a container.

        Creation happens exactly once; a second create with the same spec
        would duplicate resources. Start is retried with linear backoff. If
        start never succeeds the created container is force-removed.

        Raises:
            ProvisionFailedError: If create fails or start exhausts its attempts.
        """

        def _create():
            return self.docker.containers.create(
                spec.image,
                detach=True,
                tty=False,
                environment=spec.environment,
                ports={port: None for port in spec.exposed_ports},
                publish_all_ports=True,
                shm_size=spec.shm_size,
                mem_limit=spec.mem_limit or None,
                nano_cpus=spec.nano_cpus or None,
                security_opt=spec.security_opt or None,
                restart_policy={"Name": "no"},
                labels=spec.labels,
            )

        try:
            container = await asyncio.to_thread(_create)
        except _RUNTIME_ERRORS as e:
            log.error(f"Failed to create container from {spec.image}: {e}")
            raise ProvisionFailedError(f"Failed to create container: {e}") from e

        log.debug(f"Container created: {container.id}")

        async def _start() -> None:
            await asyncio.to_thread(container.start)

        try:
            await self.start_policy.execute(_start, description=f"Start container {container.id[:12]}")
        except _RUNTIME_ERRORS as e:
            await self._discard(container.id)
            raise ProvisionFailedError(
                f"Failed to start container after {self.start_policy.max_attempts} attempts: {e}",
                session_id=container.id,
            ) from e
        except BaseException:
            # cancelled or unexpected failure: the caller never sees the id
            await self._discard(container.id)
            raise

        return ContainerHandle(id=container.id, name=container.name or "", status="running", labels=spec.labels)

    async def _discard(self, container_id: str) -> None:
        try:
            await self.terminate(container_id, grace_seconds=0)
        except (RuntimeClientError, OperationTimeoutError) as e:
            log.error(f"Failed to discard container {container_id}: {e}")

    async def inspect(self, container_id: str, timeout: Optional[float] = None) -> Optional[dict[str, Any]]:
        """
        Return the container's inspect attributes, or None if it does not exist.

        Raises:
            RuntimeClientError: On other runtime errors.
            OperationTimeoutError: If the call exceeds ``timeout``.
        """

        def _inspect() -> Optional[dict[str, Any]]:
            try:
                return self.docker.containers.get(container_id).attrs
            except NotFound:
                return None

        try:
            return await with_timeout(lambda: asyncio.to_thread(_inspect), timeout or self.config.call_timeout)
        except _RUNTIME_ERRORS as e:
            raise RuntimeClientError(f"Failed to inspect container {container_id}: {e}", container_id) from e

    async def await_endpoint(self, handle: ContainerHandle, timeout: Optional[float] = None) -> Optional[Endpoint]:
        """
        Poll inspect until the browser port has a published host port.

        Inspect failures are logged and polling continues until the deadline.

        Returns:
            The endpoint, or None if no port appeared within ``timeout``.
        """

        async def _probe() -> Optional[Endpoint]:
            try:
                attrs = await self.inspect(handle.id)
            except (RuntimeClientError, OperationTimeoutError) as e:
                log.warning(f"Inspect of {handle.id} failed while waiting for endpoint: {e}")
                return None
            if attrs is None:
                return None
            host_port = published_host_port(attrs, self.config.browser_port)
            if host_port is None:
                return None
            return Endpoint(host=self.config.endpoint_host, port=host_port)

        return await poll_until(
            _probe,
            timeout=timeout if timeout is not None else self.config.endpoint_timeout,
            interval=self.config.endpoint_poll_interval,
        )

    async def terminate(
        self,
        container_id: str,
        grace_seconds: Optional[int] = None,
        timeout: Optional[float] = None,
    ) -> bool:
        """
        Stop the container with a grace period, then force-remove it.

        Idempotent: a container that is already gone is a success.

        Returns:
            True if a container was removed, False if it was already gone.

        Raises:
            RuntimeClientError: On runtime errors other than "not found".
            OperationTimeoutError: If the call exceeds ``timeout``.
        """
        grace = self.config.stop_grace_seconds if grace_seconds is None else grace_seconds

        def _terminate() -> bool:
            try:
                container = self.docker.containers.get(container_id)
            except NotFound:
                return False

            if container.status == "running":
                try:
                    container.stop(timeout=grace)
                except NotFound:
                    return False
                except APIError as e:
                    log.debug(f"Graceful stop of {container_id} failed, forcing removal: {e}")

            try:
                container.remove(force=True)
            except NotFound:
                return False
            return True

        try:
            removed = await with_timeout(
                lambda: asyncio.to_thread(_terminate),
                timeout or self.config.call_timeout,
            )
        except _RUNTIME_ERRORS as e:
            log.error(f"Failed to terminate container {container_id}: {e}")
            raise RuntimeClientError(f"Failed to terminate container {container_id}: {e}", container_id) from e

        if removed:
            log.info(f"Terminated container: {container_id}")
        return removed

    async def list_by_label(self, states: Optional[Iterable[str]] = None) -> list[ContainerHandle]:
        """List managed containers, optionally restricted to runtime states."""
        filters: dict[str, Any] = {"label": self.managed_label}
        if states:
            filters["status"] = list(states)

        def _list() -> list[ContainerHandle]:
            return [
                ContainerHandle(id=c.id, name=c.name or "", status=c.status, labels=dict(c.labels or {}))
                for c in self.docker.containers.list(all=True, filters=filters)
            ]

        try:
            return await with_timeout(lambda: asyncio.to_thread(_list), self.config.call_timeout)
        except _RUNTIME_ERRORS as e:
            raise RuntimeClientError(f"Failed to list managed containers: {e}") from e

    async def sweep_orphans(self, keep: Optional[set[str]] = None) -> int:
        """
        Force-remove managed containers left behind by crashes.

        Containers in a terminal state (exited/dead) are always removed. When
        ``keep`` is given, any managed container whose id is not in it is
        removed as well; only pass ``keep`` when no provisioning is in flight.

        Returns:
            Number of containers removed.
        """
        removed = 0
        for handle in await self.list_by_label():
            orphaned = handle.status in TERMINAL_STATES or (keep is not None and handle.id not in keep)
            if not orphaned:
                continue
            try:
                if await self.terminate(handle.id, grace_seconds=0):
                    removed += 1
                    log.info(f"Cleaned up orphaned container {handle.id} (status={handle.status})")
            except (RuntimeClientError, OperationTimeoutError) as e:
                log.error(f"Failed to clean up orphaned container {handle.id}: {e}")

        if removed:
            log.info(f"Orphan sweep removed {removed} containers")
        return removed
