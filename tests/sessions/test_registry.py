"""
Tests for SessionRegistry: table invariants, write-through mirroring and restore.
"""

import pytest

from disposable.sessions.errors import DuplicateSessionError
from disposable.sessions.expiry import ExpiryCoordinator
from disposable.sessions.models import Endpoint, Session
from disposable.sessions.registry import SessionRegistry
from disposable.storage.abstract_mirror import MirrorError
from disposable.storage.memory_mirror import MemorySessionMirror

ENDPOINT = Endpoint(host="127.0.0.1", port=32768)


class FailingMirror(MemorySessionMirror):
    """Mirror whose writes always fail."""

    async def put(self, session, ttl_seconds):
        raise MirrorError("redis down")

    async def delete(self, session_id):
        raise MirrorError("redis down")


class StaleMirror(MemorySessionMirror):
    """Mirror that still returns records past their deadline."""

    def _evict_expired(self) -> None:
        pass


@pytest.fixture
async def expiry(clock):
    coordinator = ExpiryCoordinator(sweep_interval_seconds=60, clock=clock)
    yield coordinator
    await coordinator.stop()


@pytest.fixture
def registry(mirror, expiry, clock):
    return SessionRegistry(mirror=mirror, expiry=expiry, clock=clock)


class TestCreate:
    @pytest.mark.asyncio
    async def test_create_inserts_mirrors_and_arms(self, registry, mirror, expiry, clock):
        session = await registry.create("abc", ENDPOINT, 60_000, owner_id="bob", metadata={"k": "v"})

        assert session.expires_at == clock() + 60
        assert session.created_at == clock()
        assert registry.get("abc") is session
        assert "abc" in registry
        assert registry.is_active("abc")
        assert Session.from_record(mirror.records["abc"]).owner_id == "bob"
        assert expiry.is_armed("abc")

    @pytest.mark.asyncio
    async def test_duplicate_id_rejected(self, registry):
        await registry.create("abc", ENDPOINT, 60_000)

        with pytest.raises(DuplicateSessionError):
            await registry.create("abc", ENDPOINT, 60_000)
        assert len(registry) == 1

    @pytest.mark.asyncio
    async def test_rejects_non_positive_ttl(self, registry):
        with pytest.raises(ValueError):
            await registry.create("abc", ENDPOINT, 0)

    @pytest.mark.asyncio
    async def test_list_is_ordered_by_creation(self, registry, clock):
        await registry.create("first", ENDPOINT, 60_000)
        clock.advance(1)
        await registry.create("second", None, 60_000)

        assert [s.id for s in registry.list()] == ["first", "second"]

    @pytest.mark.asyncio
    async def test_mirror_failure_is_not_fatal(self, expiry, clock):
        registry = SessionRegistry(mirror=FailingMirror(clock=clock), expiry=expiry, clock=clock)

        await registry.create("abc", ENDPOINT, 60_000)
        assert await registry.remove("abc") is True


class TestUpdateExpiry:
    @pytest.mark.asyncio
    async def test_advances_and_remirrors(self, registry, mirror, clock):
        session = await registry.create("abc", ENDPOINT, 60_000)

        assert await registry.update_expiry("abc", session.expires_at + 30) is True

        assert registry.get("abc").expires_at == clock() + 90
        assert mirror.deadlines["abc"] == clock() + 90

    @pytest.mark.asyncio
    async def test_never_moves_backwards(self, registry, clock):
        session = await registry.create("abc", ENDPOINT, 60_000)
        original = session.expires_at

        assert await registry.update_expiry("abc", original - 10) is False
        assert await registry.update_expiry("abc", original) is False
        assert registry.get("abc").expires_at == original

    @pytest.mark.asyncio
    async def test_absent_is_noop(self, registry):
        assert await registry.update_expiry("missing", 1e12) is False


class TestRemove:
    @pytest.mark.asyncio
    async def test_remove_is_idempotent(self, registry, mirror, expiry):
        await registry.create("abc", ENDPOINT, 60_000)

        assert await registry.remove("abc") is True
        assert await registry.remove("abc") is False
        assert "abc" not in mirror.records
        assert not expiry.is_armed("abc")

    @pytest.mark.asyncio
    async def test_expired_ids(self, registry, clock):
        await registry.create("short", ENDPOINT, 60_000)
        await registry.create("long", ENDPOINT, 600_000)
        clock.advance(61)

        assert registry.expired_ids() == ["short"]
        assert not registry.is_active("short")
        assert registry.is_active("long")


class TestRestore:
    @pytest.mark.asyncio
    async def test_restore_skips_and_purges_expired_records(self, expiry, clock):
        mirror = StaleMirror(clock=clock)
        live = Session(id="live", endpoint=ENDPOINT, expires_at=clock() + 300)
        dead = Session(id="dead", endpoint=ENDPOINT, expires_at=clock() - 1)
        await mirror.put(live, 300)
        mirror.records["dead"] = dead.to_record()

        registry = SessionRegistry(mirror=mirror, expiry=expiry, clock=clock)
        restored = await registry.restore()

        assert [s.id for s in restored] == ["live"]
        assert registry.get("dead") is None
        assert "dead" not in mirror.records
        assert expiry.is_armed("live")
        assert not expiry.is_armed("dead")

    @pytest.mark.asyncio
    async def test_restore_without_mirror(self, expiry, clock):
        registry = SessionRegistry(mirror=None, expiry=expiry, clock=clock)
        assert await registry.restore() == []

    @pytest.mark.asyncio
    async def test_unreadable_mirror_yields_empty_restore(self, expiry, clock):
        class BrokenMirror(MemorySessionMirror):
            async def load_all(self):
                raise MirrorError("connection refused")

        registry = SessionRegistry(mirror=BrokenMirror(clock=clock), expiry=expiry, clock=clock)
        assert await registry.restore() == []
