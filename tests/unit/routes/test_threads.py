"""Tests for the /threads API surface.

Synchronous CRUD and error mapping go through TestClient. Conversation
flows that leave background work running use an httpx AsyncClient on the
test's own event loop so the test can wait for the world to go idle.
"""

from __future__ import annotations

from collections.abc import AsyncIterator

import httpx
import pytest
import pytest_asyncio
from fastapi import FastAPI
from fastapi.testclient import TestClient

from src.api.routes.threads import stream
from src.conversation.events import BlockUpdate, BlockUpdatedEvent
from src.conversation.models import HUMAN
from src.conversation.registry import ThreadRegistry
from src.conversation.scheduler import ModelCallScheduler
from src.core.config import Settings
from src.main import create_app
from src.storage.kv import InMemoryKeyValueStore
from tests.fakes.fake_responder import FakeResponder
from tests.fakes.fake_transport import ScriptedTransport, summary_json, verdict_json


# =============================================================================
# Test Constants
# =============================================================================

_GEOBOT = {"name": "GeoBot", "role": "geography expert", "endpoint": "http://agents/geobot"}
_BROKEN = {"name": "Broken", "role": "flaky", "endpoint": "http://agents/broken"}
_QUESTION = "What is the capital of France?"


@pytest.fixture
def registry(test_settings: Settings, store: InMemoryKeyValueStore) -> ThreadRegistry:
    transport = ScriptedTransport(
        summarizer=[summary_json("User asked; GeoBot said Paris.", "User", "question answered")],
        verifier=[verdict_json(False, "find the capital")],
    )
    responder = FakeResponder({"GeoBot": "Paris."}, failing={"Broken"})
    return ThreadRegistry(test_settings, ModelCallScheduler(transport), responder, store=store)


@pytest.fixture
def app(registry: ThreadRegistry, store: InMemoryKeyValueStore) -> FastAPI:
    application = create_app()
    application.state.registry = registry
    application.state.scheduler = registry.scheduler
    application.state.store = store
    return application


@pytest.fixture
def client(app: FastAPI) -> TestClient:
    return TestClient(app)


@pytest_asyncio.fixture
async def async_client(app: FastAPI) -> AsyncIterator[httpx.AsyncClient]:
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as client:
        yield client


def _create(client: TestClient, agents: list[dict] | None = None) -> dict:
    roster = [_GEOBOT] if agents is None else agents
    response = client.post("/threads", json={"name": "Geography", "agents": roster})
    assert response.status_code == 201
    return response.json()


class TestThreadCrud:
    def test_create_and_get(self, client: TestClient) -> None:
        created = _create(client)

        response = client.get(f"/threads/{created['id']}")

        assert response.status_code == 200
        assert response.json()["name"] == "Geography"
        assert response.json()["agents"][0]["name"] == "GeoBot"

    def test_list(self, client: TestClient) -> None:
        _create(client)
        _create(client)

        assert len(client.get("/threads").json()) == 2

    def test_rename(self, client: TestClient) -> None:
        created = _create(client)

        response = client.patch(f"/threads/{created['id']}", json={"name": "Capitals"})

        assert response.json()["name"] == "Capitals"

    def test_delete(self, client: TestClient) -> None:
        created = _create(client)

        assert client.delete(f"/threads/{created['id']}").json() == {"success": True}
        assert client.get(f"/threads/{created['id']}").status_code == 404

    def test_unknown_thread_is_404(self, client: TestClient) -> None:
        response = client.get("/threads/missing")

        assert response.status_code == 404
        body = response.json()
        assert body["code"] == "THREAD_NOT_FOUND"
        assert body["path"] == "/threads/missing"

    def test_create_requires_name(self, client: TestClient) -> None:
        response = client.post("/threads", json={"name": ""})

        assert response.status_code == 422
        assert response.json()["code"] == "VALIDATION_ERROR"


class TestRosterRoutes:
    def test_add_agent(self, client: TestClient) -> None:
        created = _create(client, agents=[])

        response = client.post(f"/threads/{created['id']}/agents", json=_GEOBOT)

        assert response.status_code == 200
        assert [a["name"] for a in response.json()["agents"]] == ["GeoBot"]

    def test_duplicate_agent_is_400(self, client: TestClient) -> None:
        created = _create(client)

        response = client.post(f"/threads/{created['id']}/agents", json={**_GEOBOT, "name": "Twin"})

        assert response.status_code == 400
        assert response.json()["code"] == "DUPLICATE_AGENT"

    def test_duplicate_name_is_400(self, client: TestClient) -> None:
        created = _create(client)

        response = client.post(
            f"/threads/{created['id']}/agents", json={**_GEOBOT, "endpoint": "http://agents/geobot-2"}
        )

        assert response.status_code == 400
        assert response.json()["code"] == "DUPLICATE_AGENT"
        assert len(client.get(f"/threads/{created['id']}").json()["agents"]) == 1

    def test_remove_agent_by_endpoint(self, client: TestClient) -> None:
        created = _create(client)

        response = client.delete(f"/threads/{created['id']}/agents/http://agents/geobot")

        assert response.status_code == 200
        assert response.json()["agents"] == []

    def test_remove_unknown_agent_is_404(self, client: TestClient) -> None:
        created = _create(client)

        response = client.delete(f"/threads/{created['id']}/agents/Nobody")

        assert response.status_code == 404
        assert response.json()["code"] == "AGENT_NOT_FOUND"


class TestMessageRoutes:
    def test_empty_message_is_400(self, client: TestClient) -> None:
        created = _create(client)

        response = client.post(f"/threads/{created['id']}/messages", json={"message": "   "})

        assert response.status_code == 400
        assert response.json()["error"] == "BadRequest"

    def test_unknown_mode_is_422(self, client: TestClient) -> None:
        created = _create(client)

        response = client.post(f"/threads/{created['id']}/messages", json={"message": "hi", "mode": "shout"})

        assert response.status_code == 422

    def test_block_for_unknown_message_is_404(self, client: TestClient) -> None:
        created = _create(client)

        response = client.post(f"/threads/{created['id']}/messages/msg_missing/block")

        assert response.status_code == 404
        assert response.json()["code"] == "MESSAGE_NOT_FOUND"

    @pytest.mark.asyncio
    async def test_broadcast_round_trip(
        self, async_client: httpx.AsyncClient, registry: ThreadRegistry
    ) -> None:
        created = (await async_client.post("/threads", json={"name": "Geo", "agents": [_GEOBOT]})).json()

        posted = await async_client.post(f"/threads/{created['id']}/messages", json={"message": _QUESTION})
        await registry.get_world(created["id"]).wait_idle()
        body = (await async_client.get(f"/threads/{created['id']}/messages")).json()

        assert posted.json()["success"] is True
        assert [m["content"] for m in body["mainline"]] == [_QUESTION, "Paris."]
        assert body["mainline"][0]["id"] == posted.json()["messageId"]
        assert body["summary"] == "User asked; GeoBot said Paris."
        assert body["next_speaker"] == HUMAN.to_dict()
        assert body["stats"]["mainline_length"] == 2
        assert body["user_intent"] == "find the capital"
        assert body["stop_requested"] is False

    @pytest.mark.asyncio
    async def test_reset(self, async_client: httpx.AsyncClient, registry: ThreadRegistry) -> None:
        created = (await async_client.post("/threads", json={"name": "Geo", "agents": [_GEOBOT]})).json()
        await async_client.post(f"/threads/{created['id']}/messages", json={"message": _QUESTION})
        await registry.get_world(created["id"]).wait_idle()

        response = await async_client.post(f"/threads/{created['id']}/messages", json={"action": "reset"})
        body = (await async_client.get(f"/threads/{created['id']}/messages")).json()

        assert response.json() == {"success": True, "messageId": None}
        assert body["mainline"] == []
        assert body["summary"] == ""
        assert body["next_speaker"] == HUMAN.to_dict()

    @pytest.mark.asyncio
    async def test_respond_failure_is_502(
        self, async_client: httpx.AsyncClient, registry: ThreadRegistry
    ) -> None:
        created = (await async_client.post("/threads", json={"name": "Flaky", "agents": [_BROKEN]})).json()
        world = registry.get_world(created["id"])
        human = await world.add_human_message(_QUESTION)

        response = await async_client.post(
            f"/threads/{created['id']}/messages/{human.id}/responses", json={"agent": "Broken"}
        )
        await world.wait_idle()

        assert response.status_code == 502
        assert response.json()["code"] == "AGENT_RESPONSE_FAILED"

    @pytest.mark.asyncio
    async def test_respond_and_block(self, async_client: httpx.AsyncClient, registry: ThreadRegistry) -> None:
        created = (await async_client.post("/threads", json={"name": "Geo", "agents": [_GEOBOT]})).json()
        world = registry.get_world(created["id"])
        human = await world.add_human_message(_QUESTION)

        reply = await async_client.post(
            f"/threads/{created['id']}/messages/{human.id}/responses", json={"agent": "GeoBot"}
        )
        block = await async_client.post(f"/threads/{created['id']}/messages/{reply.json()['id']}/block")
        await world.wait_idle()

        assert reply.json()["status"] == "accepted"
        assert block.json() == {
            "summary": "User asked; GeoBot said Paris.",
            "next": HUMAN.to_dict(),
            "recommendation_reason": "question answered",
        }


class _Request:
    """Request stand-in whose client disconnects after ``polls`` checks."""

    def __init__(self, polls: int) -> None:
        self._polls = polls

    async def is_disconnected(self) -> bool:
        self._polls -= 1
        return self._polls < 0


class TestStream:
    @pytest.mark.asyncio
    async def test_connected_then_published_events(self, registry: ThreadRegistry) -> None:
        thread = await registry.create_thread("Geo")
        world = registry.get_world(thread.id)

        response = await stream(thread.id, _Request(polls=1), world)
        frames = response.body_iterator

        first = await frames.__anext__()
        assert '"type": "connected"' in first
        assert world.hub.subscriber_count == 1

        world.hub.publish(BlockUpdatedEvent(data=BlockUpdate.build("s", HUMAN)))
        second = await frames.__anext__()
        assert '"type": "block"' in second

        with pytest.raises(StopAsyncIteration):
            await frames.__anext__()
        assert world.hub.subscriber_count == 0
        assert response.media_type == "text/event-stream"
