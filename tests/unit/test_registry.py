"""Unit tests for ThreadRegistry.

Covers:
- Thread creation, lookup, listing, renaming and deletion
- Roster mutation and propagation to the live world
- Persistence of thread metadata and rehydration at startup
"""

from __future__ import annotations

import json

import pytest

from src.conversation.models import AgentPersona
from src.conversation.registry import ThreadRegistry
from src.conversation.scheduler import ModelCallScheduler
from src.core.config import Settings
from src.core.exceptions import (
    AgentNotFoundError,
    DuplicateAgentError,
    StorageError,
    ThreadNotFoundError,
)
from src.storage.kv import InMemoryKeyValueStore
from tests.fakes.fake_responder import FakeResponder
from tests.fakes.fake_transport import ScriptedTransport, verdict_json


@pytest.fixture
def registry(test_settings: Settings, store: InMemoryKeyValueStore) -> ThreadRegistry:
    scheduler = ModelCallScheduler(ScriptedTransport(summarizer=None, verifier=[verdict_json(False, "capital")]))
    return ThreadRegistry(test_settings, scheduler, FakeResponder({"GeoBot": "Paris."}), store=store)


class TestThreadLifecycle:
    @pytest.mark.asyncio
    async def test_create_and_get(self, registry: ThreadRegistry, roster: list[AgentPersona]) -> None:
        thread = await registry.create_thread("Trip planning", roster)

        assert registry.get_thread(thread.id) is thread
        assert registry.get_world(thread.id).roster == roster
        assert len(registry) == 1

    @pytest.mark.asyncio
    async def test_ids_are_unique(self, registry: ThreadRegistry) -> None:
        first = await registry.create_thread("a")
        second = await registry.create_thread("a")

        assert first.id != second.id

    def test_unknown_thread(self, registry: ThreadRegistry) -> None:
        with pytest.raises(ThreadNotFoundError):
            registry.get_thread("missing")
        with pytest.raises(ThreadNotFoundError):
            registry.get_world("missing")

    @pytest.mark.asyncio
    async def test_list_most_recent_first(self, registry: ThreadRegistry) -> None:
        older = await registry.create_thread("older")
        newer = await registry.create_thread("newer")
        older.updated_at, newer.updated_at = 1, 2

        assert [t.id for t in registry.list_threads()] == [newer.id, older.id]

    @pytest.mark.asyncio
    async def test_rename_persists(self, registry: ThreadRegistry, store: InMemoryKeyValueStore) -> None:
        thread = await registry.create_thread("draft")

        await registry.rename_thread(thread.id, "final")

        stored = json.loads(await store.get(f"thread:{thread.id}"))
        assert stored["name"] == "final"

    @pytest.mark.asyncio
    async def test_delete_purges_every_key(
        self, registry: ThreadRegistry, store: InMemoryKeyValueStore, geobot: AgentPersona
    ) -> None:
        thread = await registry.create_thread("Geo", [geobot])
        world = registry.get_world(thread.id)
        await world.submit_human_message("What is the capital of France?")
        await world.wait_idle()
        assert len(store) == 3

        await registry.delete_thread(thread.id)

        assert len(store) == 0
        assert len(registry) == 0
        with pytest.raises(ThreadNotFoundError):
            await registry.delete_thread(thread.id)


class TestRoster:
    @pytest.mark.asyncio
    async def test_add_agent_reaches_world(self, registry: ThreadRegistry, geobot: AgentPersona) -> None:
        thread = await registry.create_thread("Geo")

        await registry.add_agent(thread.id, geobot)

        assert registry.get_world(thread.id).find_persona("GeoBot") == geobot

    @pytest.mark.asyncio
    async def test_duplicate_endpoint_rejected(self, registry: ThreadRegistry, geobot: AgentPersona) -> None:
        thread = await registry.create_thread("Geo", [geobot])
        twin = AgentPersona(name="GeoBot2", role="twin", endpoint=geobot.endpoint)

        with pytest.raises(DuplicateAgentError) as exc_info:
            await registry.add_agent(thread.id, twin)

        assert exc_info.value.field == "endpoint"

    @pytest.mark.asyncio
    async def test_duplicate_name_rejected(self, registry: ThreadRegistry) -> None:
        thread = await registry.create_thread("Team")
        await registry.add_agent(thread.id, AgentPersona(name="Alice", role="planner", endpoint="http://a1"))

        with pytest.raises(DuplicateAgentError) as exc_info:
            await registry.add_agent(thread.id, AgentPersona(name="Alice", role="critic", endpoint="http://a2"))

        assert exc_info.value.field == "name"
        assert [a.name for a in registry.get_thread(thread.id).agents] == ["Alice"]
        assert len(registry.get_world(thread.id).roster) == 1

    @pytest.mark.asyncio
    async def test_create_rejects_duplicate_names(self, registry: ThreadRegistry) -> None:
        agents = [
            AgentPersona(name="Alice", role="planner", endpoint="http://a1"),
            AgentPersona(name="Alice", role="critic", endpoint="http://a2"),
        ]

        with pytest.raises(DuplicateAgentError):
            await registry.create_thread("Team", agents)

        assert len(registry) == 0

    @pytest.mark.asyncio
    @pytest.mark.parametrize("identity", ["Bob", "http://agents/bob"])
    async def test_remove_by_name_or_endpoint(
        self, registry: ThreadRegistry, roster: list[AgentPersona], identity: str
    ) -> None:
        thread = await registry.create_thread("Team", roster)

        await registry.remove_agent(thread.id, identity)

        assert [a.name for a in registry.get_thread(thread.id).agents] == ["Alice", "Carol"]
        assert registry.get_world(thread.id).find_persona("Bob") is None

    @pytest.mark.asyncio
    async def test_remove_unknown_agent(self, registry: ThreadRegistry, roster: list[AgentPersona]) -> None:
        thread = await registry.create_thread("Team", roster)

        with pytest.raises(AgentNotFoundError):
            await registry.remove_agent(thread.id, "Dave")


class TestLoad:
    @pytest.mark.asyncio
    async def test_restart_rehydrates_threads_and_conversations(
        self,
        registry: ThreadRegistry,
        test_settings: Settings,
        store: InMemoryKeyValueStore,
        geobot: AgentPersona,
    ) -> None:
        thread = await registry.create_thread("Geo", [geobot])
        world = registry.get_world(thread.id)
        await world.submit_human_message("What is the capital of France?")
        await world.wait_idle()

        restarted = ThreadRegistry(test_settings, ModelCallScheduler(ScriptedTransport()), FakeResponder(), store=store)
        count = await restarted.load()

        assert count == 1
        assert restarted.get_thread(thread.id).name == "Geo"
        restored = restarted.get_world(thread.id)
        assert [m.content for m in restored.mainline()] == ["What is the capital of France?", "Paris."]
        assert restored.state.summary == "\n\nGeoBot: Paris."

    @pytest.mark.asyncio
    async def test_unreadable_record_skipped(
        self, test_settings: Settings, store: InMemoryKeyValueStore
    ) -> None:
        await store.set("thread:broken", "{not json")
        await store.set("thread:partial", json.dumps({"name": "no id"}))
        registry = ThreadRegistry(test_settings, ModelCallScheduler(ScriptedTransport()), FakeResponder(), store=store)

        assert await registry.load() == 0
        assert len(registry) == 0

    @pytest.mark.asyncio
    async def test_without_store(self, test_settings: Settings) -> None:
        registry = ThreadRegistry(test_settings, ModelCallScheduler(ScriptedTransport()), FakeResponder())

        assert await registry.load() == 0


class _ReadOnlyStore(InMemoryKeyValueStore):
    async def set(self, key: str, value: str) -> None:
        raise StorageError("read only", key=key)

    async def delete(self, key: str) -> None:
        raise StorageError("read only", key=key)


class TestStorageFailures:
    @pytest.mark.asyncio
    async def test_registry_keeps_serving(self, test_settings: Settings) -> None:
        registry = ThreadRegistry(
            test_settings, ModelCallScheduler(ScriptedTransport()), FakeResponder(), store=_ReadOnlyStore()
        )

        thread = await registry.create_thread("offline")
        await registry.rename_thread(thread.id, "still offline")
        await registry.delete_thread(thread.id)

        assert len(registry) == 0
