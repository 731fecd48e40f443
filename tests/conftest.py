"""
Shared fixtures: an in-memory stand-in for the Docker runtime adapter, a
controllable clock, and coordinator factories wired to them.
"""

import asyncio
import itertools
from typing import Optional

import pytest

from disposable.config.settings import BrokerConfig, RuntimeConfig, SessionConfig
from disposable.runtime.docker_client import ContainerHandle, ContainerSpec
from disposable.sessions.lifecycle import LifecycleCoordinator
from disposable.sessions.models import Endpoint
from disposable.storage.memory_mirror import MemorySessionMirror


class FakeClock:
    """Wall clock that only moves when told to."""

    def __init__(self, start: float = 1_700_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeRuntimeClient:
    """Implements the runtime adapter surface against a dict of containers."""

    def __init__(self, config: Optional[RuntimeConfig] = None):
        self.config = config or RuntimeConfig()
        self.containers: dict[str, str] = {}
        self.provision_calls = 0
        self.peak_containers = 0
        self.terminate_calls: list[str] = []
        self.healthy = True
        self.endpoint_available = True
        self.provision_delay = 0.0
        self.image_error: Optional[Exception] = None
        self.provision_error: Optional[Exception] = None
        self.endpoint_error: Optional[Exception] = None
        self.terminate_error: Optional[Exception] = None
        self._ids = itertools.count(1)
        self._ports = itertools.count(32768)

    def container_spec(self, owner_id: Optional[str] = None) -> ContainerSpec:
        return ContainerSpec.from_config(self.config, owner_id=owner_id)

    async def health_check(self) -> bool:
        return self.healthy

    async def ensure_image(self, ref: Optional[str] = None) -> bool:
        if self.image_error is not None:
            raise self.image_error
        return False

    async def provision(self, spec: ContainerSpec) -> ContainerHandle:
        self.provision_calls += 1
        if self.provision_delay:
            await asyncio.sleep(self.provision_delay)
        if self.provision_error is not None:
            raise self.provision_error
        container_id = f"c{next(self._ids):063d}"
        self.containers[container_id] = "running"
        self.peak_containers = max(self.peak_containers, len(self.containers))
        return ContainerHandle(id=container_id, name=container_id[:12], status="running", labels=spec.labels)

    async def await_endpoint(self, handle: ContainerHandle, timeout: Optional[float] = None) -> Optional[Endpoint]:
        if self.endpoint_error is not None:
            raise self.endpoint_error
        if not self.endpoint_available:
            return None
        return Endpoint(host="127.0.0.1", port=next(self._ports))

    async def inspect(self, container_id: str, timeout: Optional[float] = None):
        status = self.containers.get(container_id)
        if status is None:
            return None
        return {"Id": container_id, "State": {"Status": status}}

    async def terminate(self, container_id: str, grace_seconds=None, timeout=None) -> bool:
        self.terminate_calls.append(container_id)
        await asyncio.sleep(0)
        if self.terminate_error is not None:
            raise self.terminate_error
        return self.containers.pop(container_id, None) is not None

    async def sweep_orphans(self, keep: Optional[set[str]] = None) -> int:
        removed = 0
        for container_id, status in list(self.containers.items()):
            if status in ("exited", "dead") or (keep is not None and container_id not in keep):
                del self.containers[container_id]
                removed += 1
        return removed


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def broker_config() -> BrokerConfig:
    return BrokerConfig(
        runtime=RuntimeConfig(start_retry_delay=0.0, endpoint_timeout=0.05, endpoint_poll_interval=0.01),
        sessions=SessionConfig(max_sessions=3, default_duration_ms=300_000),
    )


@pytest.fixture
def runtime(broker_config: BrokerConfig) -> FakeRuntimeClient:
    return FakeRuntimeClient(broker_config.runtime)


@pytest.fixture
def mirror(clock: FakeClock) -> MemorySessionMirror:
    return MemorySessionMirror(clock=clock)


@pytest.fixture
async def lifecycle(broker_config, runtime, mirror, clock):
    """Coordinator on the fake runtime and fake clock; not started."""
    coordinator = LifecycleCoordinator(broker_config, runtime, mirror=mirror, clock=clock)
    yield coordinator
    await coordinator.shutdown()


@pytest.fixture
async def make_lifecycle(runtime, mirror, clock):
    """Build extra coordinators sharing the fake runtime and mirror (simulated restarts)."""
    created: list[LifecycleCoordinator] = []

    def _make(config: BrokerConfig, **kwargs) -> LifecycleCoordinator:
        kwargs.setdefault("mirror", mirror)
        kwargs.setdefault("clock", clock)
        coordinator = LifecycleCoordinator(config, kwargs.pop("runtime", runtime), **kwargs)
        created.append(coordinator)
        return coordinator

    yield _make
    for coordinator in created:
        await coordinator.expiry.stop()


@pytest.fixture
def make_runtime():
    def _make(config: Optional[RuntimeConfig] = None) -> FakeRuntimeClient:
        return FakeRuntimeClient(config)

    return _make
