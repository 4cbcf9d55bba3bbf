"""Test configuration and shared fixtures.

Pattern: Pytest fixtures, conftest.py
"""

from __future__ import annotations

from collections.abc import Callable

import pytest

from src.conversation.models import AgentPersona
from src.conversation.scheduler import ModelCallScheduler
from src.conversation.summarizer import BlockSummarizer
from src.conversation.verifier import GoalVerifier
from src.conversation.world import ConversationWorld
from src.core.config import Settings
from src.storage.kv import InMemoryKeyValueStore
from tests.fakes.fake_responder import FakeResponder
from tests.fakes.fake_transport import ScriptedTransport


_TEST_ENDPOINT = "http://fake-llm/v1/chat/completions"
_TEST_MODEL = "fake-model"


# ============================================================================
# Configuration Fixtures
# ============================================================================

@pytest.fixture
def test_settings() -> Settings:
    """Create test settings with safe defaults."""
    return Settings(
        llm_api_url=_TEST_ENDPOINT,
        llm_model=_TEST_MODEL,
        storage_backend="memory",
        log_level="DEBUG",
    )


# ============================================================================
# Roster Fixtures
# ============================================================================

@pytest.fixture
def geobot() -> AgentPersona:
    return AgentPersona(name="GeoBot", role="geography expert", endpoint="http://agents/geobot")


@pytest.fixture
def roster() -> list[AgentPersona]:
    """Three-agent roster: Alice, Bob, Carol."""
    return [
        AgentPersona(name="Alice", role="planner", endpoint="http://agents/alice"),
        AgentPersona(name="Bob", role="critic", endpoint="http://agents/bob"),
        AgentPersona(name="Carol", role="researcher", endpoint="http://agents/carol"),
    ]


# ============================================================================
# World Fixtures
# ============================================================================

@pytest.fixture
def store() -> InMemoryKeyValueStore:
    return InMemoryKeyValueStore()


@pytest.fixture
def make_world(store: InMemoryKeyValueStore) -> Callable[..., ConversationWorld]:
    """Factory building a ConversationWorld over fakes.

    Example:
        world = make_world(roster, FakeResponder(...), ScriptedTransport(...))
    """

    def _make(
        roster: list[AgentPersona],
        responder: FakeResponder,
        transport: ScriptedTransport,
        *,
        thread_id: str = "thread-1",
        max_auto_rounds: int = 10,
        max_concurrent: int = 4,
    ) -> ConversationWorld:
        scheduler = ModelCallScheduler(transport, max_concurrent=max_concurrent)
        return ConversationWorld(
            thread_id,
            roster,
            responder=responder,
            summarizer=BlockSummarizer(scheduler, _TEST_ENDPOINT, _TEST_MODEL),
            verifier=GoalVerifier(scheduler, _TEST_ENDPOINT, _TEST_MODEL),
            store=store,
            max_auto_rounds=max_auto_rounds,
        )

    return _make
