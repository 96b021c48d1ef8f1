"""Tests for ChannelRegistry."""

import asyncio
from unittest.mock import patch

import orjson
import pytest

from livestate.domain.channel.registry import ChannelRegistry
from livestate.domain.channel.state import ChannelState
from livestate.errors import CapacityExceeded
from tests.fixtures.channel_fixtures import TEST_TIMEOUT, FakePersistence


class TestGetOrCreate:
    """Tests for construct-once channel creation."""

    async def test_creates_channel_on_first_access(self, registry, persistence):
        """The first access creates and loads the channel."""
        state = await registry.get_or_create("ch1")

        assert state.channel_id == "ch1"
        assert "ch1" in registry
        assert registry.count() == 1
        assert persistence.load_calls == ["ch1"]

    async def test_returns_same_instance(self, registry, persistence):
        """Later accesses return the existing state without loading again."""
        first = await registry.get_or_create("ch1")
        second = await registry.get_or_create("ch1")

        assert first is second
        assert persistence.load_calls == ["ch1"]

    async def test_concurrent_first_access_builds_once(self, registry, persistence):
        """Racing first accesses share one state and one load."""
        persistence.load_delay = 0.02

        states = await asyncio.gather(*(registry.get_or_create("ch1") for _ in range(10)))

        assert all(state is states[0] for state in states)
        assert registry.count() == 1
        assert persistence.load_calls == ["ch1"]

    async def test_loads_persisted_document(self, persistence):
        """A channel seen by a previous process comes back with its document."""
        persistence.records["ch1"] = orjson.dumps({"color": "blue"})
        registry = ChannelRegistry(persistence, timeout=TEST_TIMEOUT)

        state = await registry.get_or_create("ch1")

        assert state.get_all() == {"color": "blue"}

    async def test_load_failure_still_creates_channel(self, persistence):
        """An unreachable backend does not prevent channel creation."""
        persistence.fail_load = ConnectionError("redis down")
        registry = ChannelRegistry(persistence, timeout=TEST_TIMEOUT)

        state = await registry.get_or_create("ch1")

        assert state.get_all() is None
        assert registry.count() == 1

    async def test_initial_document_applies_to_new_channel(self):
        """The initial document seeds a channel without a persisted record."""
        registry = ChannelRegistry()

        state = await registry.get_or_create("ch1", initial={"a": 1})

        assert state.get_all() == {"a": 1}

    async def test_get_does_not_create(self, registry):
        """get returns None for an unseen channel and creates nothing."""
        assert registry.get("nope") is None
        assert registry.count() == 0

    async def test_cancelled_creator_lets_waiter_retry(self, persistence):
        """A waiter whose creator was cancelled creates the channel itself."""
        persistence.load_delay = 0.05
        registry = ChannelRegistry(persistence, timeout=TEST_TIMEOUT)

        creator = asyncio.create_task(registry.get_or_create("ch1"))
        await asyncio.sleep(0.01)
        waiter = asyncio.create_task(registry.get_or_create("ch1"))
        await asyncio.sleep(0.01)
        creator.cancel()

        state = await waiter

        assert creator.cancelled()
        assert registry.get("ch1") is state
        assert registry.count() == 1


class TestCapacity:
    """Tests for the max_channels bound."""

    async def test_rejects_new_channel_when_full(self):
        """An unseen channel beyond the bound is rejected."""
        registry = ChannelRegistry(max_channels=2)
        await registry.get_or_create("a")
        await registry.get_or_create("b")

        with pytest.raises(CapacityExceeded):
            await registry.get_or_create("c")

        assert registry.count() == 2
        assert "c" not in registry

    async def test_existing_channel_allowed_when_full(self):
        """Known channels stay reachable at capacity."""
        registry = ChannelRegistry(max_channels=1)
        state = await registry.get_or_create("a")

        assert await registry.get_or_create("a") is state

    async def test_pending_creations_count_toward_capacity(self):
        """Channels still loading hold a slot."""
        persistence = FakePersistence()
        persistence.load_delay = 0.05
        registry = ChannelRegistry(persistence, max_channels=1, timeout=TEST_TIMEOUT)

        results = await asyncio.gather(
            registry.get_or_create("a"),
            registry.get_or_create("b"),
            return_exceptions=True,
        )

        assert results[0].channel_id == "a"
        assert isinstance(results[1], CapacityExceeded)
        assert registry.count() == 1

    async def test_capacity_error_shape(self):
        """CapacityExceeded maps to a retryable 503."""
        registry = ChannelRegistry(max_channels=0)

        with pytest.raises(CapacityExceeded) as exc_info:
            await registry.get_or_create("a")

        assert exc_info.value.status_code == 503
        assert exc_info.value.errcode == "E_CAPACITY_EXCEEDED"


class TestDelete:
    """Tests for channel deletion."""

    async def test_delete_removes_channel_and_record(self, registry, persistence):
        """delete drops the in-memory state and the persisted record."""
        state = await registry.get_or_create("ch1")
        await state.set("a", 1)
        await state.wait_saved()

        deleted = await registry.delete("ch1")

        assert deleted is True
        assert "ch1" not in registry
        assert persistence.records == {}
        assert persistence.delete_calls == ["ch1"]

    async def test_delete_is_idempotent(self, registry, persistence):
        """Deleting an unknown channel succeeds and reports nothing removed."""
        assert await registry.delete("ghost") is False
        assert await registry.delete("ghost") is False
        assert persistence.delete_calls == ["ghost", "ghost"]

    async def test_delete_survives_backend_failure(self, registry, persistence):
        """A failing backend delete still removes the in-memory channel."""
        await registry.get_or_create("ch1")
        persistence.fail_delete = ConnectionError("redis down")

        assert await registry.delete("ch1") is True
        assert "ch1" not in registry

    async def test_recreated_channel_starts_empty(self, registry):
        """A deleted then recreated channel has no document."""
        state = await registry.get_or_create("ch1")
        await state.set("a", 1)
        await state.wait_saved()
        await registry.delete("ch1")

        fresh = await registry.get_or_create("ch1")

        assert fresh is not state
        assert fresh.get_all() is None

    async def test_delete_during_creation(self, persistence):
        """Deleting a channel that is still loading removes it once loaded."""
        persistence.records["ch1"] = orjson.dumps({"color": "red"})
        persistence.load_delay = 0.05
        registry = ChannelRegistry(persistence, timeout=TEST_TIMEOUT)

        creator = asyncio.create_task(registry.get_or_create("ch1"))
        await asyncio.sleep(0.01)
        deleted = await registry.delete("ch1")
        state = await creator

        assert deleted is True
        assert "ch1" not in registry
        assert persistence.records == {}

        # the orphaned state no longer writes its record back
        await state.set("color", "blue")
        await state.wait_saved()
        assert persistence.records == {}

    async def test_delete_after_failed_creation(self, persistence):
        """A creation that fails during delete leaves nothing behind."""
        registry = ChannelRegistry(persistence, timeout=TEST_TIMEOUT)

        async def failing_load(self):
            await asyncio.sleep(0.02)
            raise RuntimeError("boom")

        with patch.object(ChannelState, "load", failing_load):
            creator = asyncio.create_task(registry.get_or_create("ch1"))
            await asyncio.sleep(0.01)
            deleted = await registry.delete("ch1")

        assert deleted is False
        with pytest.raises(RuntimeError):
            await creator

    async def test_delete_frees_capacity(self):
        """A deleted channel releases its slot."""
        registry = ChannelRegistry(max_channels=1)
        await registry.get_or_create("a")
        await registry.delete("a")

        state = await registry.get_or_create("b")

        assert state.channel_id == "b"


class TestShutdown:
    """Tests for registry shutdown."""

    async def test_shutdown_flushes_and_closes(self, registry, persistence):
        """In-flight saves finish before the adapter is closed."""
        persistence.save_delay = 0.02
        state = await registry.get_or_create("ch1")
        await state.set("a", 1)

        await registry.shutdown()

        assert persistence.document("ch1") == {"a": 1}
        assert persistence.closed is True

    async def test_shutdown_without_persistence(self):
        """Shutdown is a no-op for an in-memory registry."""
        registry = ChannelRegistry()
        await registry.get_or_create("ch1")

        await registry.shutdown()

        assert registry.persistence_enabled is False
