"""ThreadRegistry - owns every conversation thread and its live world.

Operations:
- Thread creation with unique IDs and a fresh ConversationWorld
- Thread retrieval, listing, renaming and deletion
- Roster mutation (add/remove agent personas), propagated to the world
- Rehydration of all threads from the key-value store at startup

The registry is the only component that writes thread metadata
(``thread:{id}``). Each world persists its own messages and state.
Persistence write failures are logged; the in-memory registry keeps
serving.
"""

from __future__ import annotations

import asyncio
import json

from src.conversation.models import AgentPersona, Thread
from src.conversation.scheduler import ModelCallScheduler
from src.conversation.summarizer import BlockSummarizer
from src.conversation.verifier import GoalVerifier
from src.conversation.world import ConversationWorld
from src.core.config import Settings
from src.core.constants import StorageKey
from src.core.exceptions import (
    AgentNotFoundError,
    DuplicateAgentError,
    StorageError,
    ThreadNotFoundError,
)
from src.core.logging import get_logger
from src.participants.base import AgentResponder
from src.storage.kv import KeyValueStore


logger = get_logger(__name__)


class ThreadRegistry:
    """Thread id -> (Thread metadata, ConversationWorld).

    Attributes:
        scheduler: Process-wide model-call scheduler shared by all worlds.
    """

    def __init__(
        self,
        settings: Settings,
        scheduler: ModelCallScheduler,
        responder: AgentResponder,
        store: KeyValueStore | None = None,
    ) -> None:
        self._settings = settings
        self.scheduler = scheduler
        self._responder = responder
        self._store = store
        self._threads: dict[str, Thread] = {}
        self._worlds: dict[str, ConversationWorld] = {}
        self._lock = asyncio.Lock()

    def __len__(self) -> int:
        return len(self._threads)

    def _build_world(self, thread: Thread) -> ConversationWorld:
        settings = self._settings
        summarizer = BlockSummarizer(
            self.scheduler,
            endpoint=settings.llm_api_url,
            model=settings.llm_model,
            max_chars=settings.summary_max_chars,
            max_tokens=settings.summarizer_max_tokens,
            temperature=settings.summarizer_temperature,
        )
        verifier = GoalVerifier(
            self.scheduler,
            endpoint=settings.llm_api_url,
            model=settings.llm_model,
            max_tokens=settings.verifier_max_tokens,
            temperature=settings.verifier_temperature,
        )
        return ConversationWorld(
            thread.id,
            thread.agents,
            responder=self._responder,
            summarizer=summarizer,
            verifier=verifier,
            store=self._store,
            max_auto_rounds=settings.max_auto_rounds,
        )

    # =========================================================================
    # Thread lifecycle
    # =========================================================================

    async def create_thread(self, name: str, agents: list[AgentPersona] | None = None) -> Thread:
        """Create a thread with a fresh conversation world.

        Raises:
            DuplicateAgentError: If two personas share a name or endpoint.
        """
        roster: list[AgentPersona] = []
        for persona in agents or []:
            _ensure_unique(roster, persona)
            roster.append(persona)

        async with self._lock:
            thread = Thread(name=name, agents=roster)
            self._threads[thread.id] = thread
            self._worlds[thread.id] = self._build_world(thread)
            await self._save_thread(thread)

        logger.info("Thread created", thread_id=thread.id, name=name, agents=len(thread.agents))
        return thread

    def get_thread(self, thread_id: str) -> Thread:
        """Get thread metadata.

        Raises:
            ThreadNotFoundError: If the thread does not exist.
        """
        thread = self._threads.get(thread_id)
        if thread is None:
            raise ThreadNotFoundError(thread_id)
        return thread

    def get_world(self, thread_id: str) -> ConversationWorld:
        """Get the live conversation world of a thread.

        Raises:
            ThreadNotFoundError: If the thread does not exist.
        """
        world = self._worlds.get(thread_id)
        if world is None:
            raise ThreadNotFoundError(thread_id)
        return world

    def list_threads(self) -> list[Thread]:
        """All threads, most recently updated first."""
        return sorted(self._threads.values(), key=lambda t: t.updated_at, reverse=True)

    async def delete_thread(self, thread_id: str) -> None:
        """Delete a thread, its world and every persisted key for it.

        Raises:
            ThreadNotFoundError: If the thread does not exist.
        """
        async with self._lock:
            if thread_id not in self._threads:
                raise ThreadNotFoundError(thread_id)
            del self._threads[thread_id]
            world = self._worlds.pop(thread_id)

        await world.aclose()
        if self._store is not None:
            try:
                for prefix in StorageKey.ALL:
                    await self._store.delete(f"{prefix}{thread_id}")
            except StorageError as e:
                logger.error("Failed to purge thread keys", thread_id=thread_id, error=str(e))

        logger.info("Thread deleted", thread_id=thread_id)

    async def rename_thread(self, thread_id: str, name: str) -> Thread:
        async with self._lock:
            thread = self.get_thread(thread_id)
            thread.name = name
            thread.touch()
            await self._save_thread(thread)
        return thread

    # =========================================================================
    # Roster
    # =========================================================================

    async def add_agent(self, thread_id: str, persona: AgentPersona) -> Thread:
        """Add a persona to a thread roster.

        Raises:
            ThreadNotFoundError: If the thread does not exist.
            DuplicateAgentError: If a persona with the same name or endpoint exists.
        """
        async with self._lock:
            thread = self.get_thread(thread_id)
            _ensure_unique(thread.agents, persona, thread_id)
            thread.agents.append(persona)
            thread.touch()
            self._worlds[thread_id].update_roster(thread.agents)
            await self._save_thread(thread)

        logger.info("Agent added", thread_id=thread_id, agent=persona.name)
        return thread

    async def remove_agent(self, thread_id: str, identity: str) -> Thread:
        """Remove every persona whose name or endpoint equals ``identity``.

        Raises:
            ThreadNotFoundError: If the thread does not exist.
            AgentNotFoundError: If no persona matches.
        """
        async with self._lock:
            thread = self.get_thread(thread_id)
            remaining = [a for a in thread.agents if not a.matches(identity)]
            if len(remaining) == len(thread.agents):
                raise AgentNotFoundError(identity, thread_id=thread_id)
            thread.agents = remaining
            thread.touch()
            self._worlds[thread_id].update_roster(thread.agents)
            await self._save_thread(thread)

        logger.info("Agent removed", thread_id=thread_id, agent=identity)
        return thread

    # =========================================================================
    # Persistence
    # =========================================================================

    async def _save_thread(self, thread: Thread) -> None:
        if self._store is None:
            return
        try:
            await self._store.set(f"{StorageKey.THREAD}{thread.id}", json.dumps(thread.to_dict()))
        except StorageError as e:
            logger.error("Failed to save thread", thread_id=thread.id, error=str(e))

    async def load(self) -> int:
        """Rehydrate all persisted threads and their conversations.

        Returns:
            Number of threads loaded.
        """
        if self._store is None:
            return 0

        thread_ids = await self._store.list_keys(StorageKey.THREAD)
        loaded = 0
        for thread_id in sorted(thread_ids):
            raw = await self._store.get(f"{StorageKey.THREAD}{thread_id}")
            if raw is None:
                continue
            try:
                thread = Thread.from_dict(json.loads(raw))
                world = self._build_world(thread)
                await world.load()
            except (ValueError, KeyError, TypeError) as e:
                logger.error("Skipping unreadable thread record", thread_id=thread_id, error=str(e))
                continue

            self._threads[thread.id] = thread
            self._worlds[thread.id] = world
            loaded += 1

        logger.info("Threads loaded from store", count=loaded)
        return loaded

    async def aclose(self) -> None:
        """Stop background work in every world."""
        for world in list(self._worlds.values()):
            await world.aclose()


def _ensure_unique(roster: list[AgentPersona], persona: AgentPersona, thread_id: str | None = None) -> None:
    """Persona names and endpoints are unique within a thread."""
    for existing in roster:
        if existing.name == persona.name:
            raise DuplicateAgentError(persona.name, field="name", thread_id=thread_id)
        if existing.endpoint == persona.endpoint:
            raise DuplicateAgentError(persona.endpoint, field="endpoint", thread_id=thread_id)
