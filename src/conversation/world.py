"""
Conversation World - per-thread turn-taking state machine.

States:
    AwaitingHuman -> TurnInFlight -> BlockUpdated -> (async Verifying)
        -> NextTurnDecision -> {TurnInFlight | AwaitingHuman}

Ingestion modes:
- BROADCAST: every roster agent is asked concurrently; the first reply to
  complete is ACCEPTED, later replies to the same parent are DROPPED.
- DIRECTED: the human message is summarized first and only the
  recommended agent is asked.

Either mode hands the accepted reply to the auto-continuation loop, which
asks the recommended speaker round by round until a halt condition.

Concurrency:
    One asyncio.Lock per world guards every state mutation (append,
    first-acceptance claim, summary apply, verification apply, reset).
    Agent and model calls run outside the lock. ``state.generation``
    increments on every human message and reset, so continuation loops
    and late verification results from an earlier turn discard
    themselves instead of writing stale state.
"""

from __future__ import annotations

import asyncio
import json
from collections.abc import Coroutine
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from src.conversation.events import (
    BlockUpdate,
    BlockUpdatedEvent,
    EventHub,
    MessageAppendedEvent,
)
from src.conversation.history import MessageHistory
from src.conversation.models import (
    HUMAN,
    AcceptanceStatus,
    AgentPersona,
    ConversationState,
    Message,
    SummaryResult,
)
from src.conversation.summarizer import BlockSummarizer
from src.conversation.verifier import GoalVerifier
from src.core.constants import DEFAULT_MAX_AUTO_ROUNDS, HUMAN_SPEAKER_NAME, StorageKey
from src.core.exceptions import (
    AgentNotFoundError,
    MessageNotFoundError,
    RoundtableError,
    StorageError,
)
from src.core.logging import bind_thread, get_logger
from src.participants.base import AgentResponder
from src.storage.kv import KeyValueStore


logger = get_logger(__name__)


class IngestionMode(str, Enum):
    """How a new human message reaches the roster."""

    BROADCAST = "broadcast"
    DIRECTED = "directed"


class HaltReason(str, Enum):
    """Why the auto-continuation loop stopped.

    Policy halts are normal termination, not failures.
    """

    STOPPED = "stopped"                # verifier set the stop flag
    HUMAN_NEXT = "human_next"
    REPEAT_SPEAKER = "repeat_speaker"
    ROSTER_MISS = "roster_miss"
    ROUND_LIMIT = "round_limit"
    SUPERSEDED = "superseded"          # newer human message or reset
    AGENT_ERROR = "agent_error"


@dataclass
class LoopOutcome:
    """Result of one auto-continuation run."""

    halt_reason: HaltReason
    rounds: int = 0
    messages: list[Message] = field(default_factory=list)


class ConversationWorld:
    """State machine for one conversation thread.

    Attributes:
        thread_id: Owning thread id (also the persistence key suffix).
        history: Message tree with the accepted mainline.
        state: Scalar conversation state.
        hub: Live feed for subscribers.
    """

    def __init__(
        self,
        thread_id: str,
        roster: list[AgentPersona],
        responder: AgentResponder,
        summarizer: BlockSummarizer,
        verifier: GoalVerifier,
        store: KeyValueStore | None = None,
        max_auto_rounds: int = DEFAULT_MAX_AUTO_ROUNDS,
    ) -> None:
        self.thread_id = thread_id
        self.history = MessageHistory()
        self.state = ConversationState()
        self.hub = EventHub()
        self.max_auto_rounds = max_auto_rounds
        self._roster = list(roster)
        self._responder = responder
        self._summarizer = summarizer
        self._verifier = verifier
        self._store = store
        self._lock = asyncio.Lock()
        self._tasks: set[asyncio.Task[Any]] = set()

    # =========================================================================
    # Roster and read access
    # =========================================================================

    @property
    def roster(self) -> list[AgentPersona]:
        return list(self._roster)

    @property
    def verifier(self) -> GoalVerifier:
        return self._verifier

    @property
    def pending_tasks(self) -> int:
        return len(self._tasks)

    def update_roster(self, roster: list[AgentPersona]) -> None:
        """Replace the roster; in-flight turns see it at their next lookup."""
        self._roster = list(roster)

    def find_persona(self, identity: str) -> AgentPersona | None:
        for persona in self._roster:
            if persona.matches(identity):
                return persona
        return None

    def mainline(self) -> list[Message]:
        return self.history.mainline()

    def all_messages(self) -> list[Message]:
        return self.history.all_messages()

    # =========================================================================
    # Ingestion
    # =========================================================================

    async def submit_human_message(
        self,
        content: str,
        mode: IngestionMode = IngestionMode.BROADCAST,
    ) -> Message:
        """Append a human message and start continuation in the background.

        In directed mode the human message is summarized before returning so
        the recommendation that picks the first agent is already applied.

        Returns:
            The appended human message.
        """
        message, generation = await self._ingest_human(content)

        if mode == IngestionMode.DIRECTED:
            await self._refresh_block(message, generation)
            self.spawn(self.run_auto_loop(message, generation), name=f"loop-{message.id}")
        else:
            self.spawn(self._broadcast_and_continue(message, generation), name=f"broadcast-{message.id}")

        return message

    async def add_human_message(self, content: str) -> Message:
        """Append a human message without asking any agent."""
        message, _ = await self._ingest_human(content)
        return message

    async def _ingest_human(self, content: str) -> tuple[Message, int]:
        async with self._lock:
            self.state.begin_human_turn(content)
            self._verifier.reset()

            tail = self.history.tail()
            parent_id = tail.id if tail else None
            claimed = parent_id is None or self.state.claim_first_response(parent_id)
            message = Message(
                id=self.state.next_message_id(),
                speaker=HUMAN_SPEAKER_NAME,
                content=content,
                parent_id=parent_id,
                status=AcceptanceStatus.ACCEPTED if claimed else AcceptanceStatus.DROPPED,
            )
            self.history.add(message)
            generation = self.state.generation
            self._launch_verification(message)
            await self._persist_locked()

        logger.info(
            "Human message added",
            thread_id=self.thread_id,
            message_id=message.id,
            parent_id=parent_id,
        )
        self.hub.publish(MessageAppendedEvent.of(message))
        return message, generation

    async def broadcast(self, human_message: Message, generation: int | None = None) -> Message | None:
        """Ask every roster agent concurrently; the first completed reply wins.

        Agent failures are isolated: any error from one agent is logged and
        the other replies still compete. Replies completing after the winner are
        recorded as DROPPED by ``respond_as``.

        Returns:
            The accepted reply, or None if no agent produced one.
        """
        roster = self.roster
        if generation is None:
            generation = self.state.generation
        if not roster:
            logger.info("Broadcast skipped, roster empty", thread_id=self.thread_id)
            return None

        logger.info(
            "Broadcasting human message",
            thread_id=self.thread_id,
            message_id=human_message.id,
            agents=[p.name for p in roster],
        )
        tasks = [
            self.spawn(self.respond_as(p.name, human_message.id), name=f"reply-{p.name}")
            for p in roster
        ]

        accepted: Message | None = None
        for next_done in asyncio.as_completed(tasks):
            try:
                reply = await next_done
            except Exception:
                # logged by the task callback; other agents keep competing
                continue
            if reply.is_accepted:
                accepted = reply
                break

        if accepted is None:
            logger.warning("No agent replied to broadcast", thread_id=self.thread_id, message_id=human_message.id)
            return None

        if await self._refresh_block(accepted, generation) is not None:
            self._launch_verification(accepted)
        return accepted

    async def respond_as(self, agent_name: str, message_id: str) -> Message:
        """Ask one roster agent to reply to ``message_id``.

        The reply is ACCEPTED only if it wins the first-acceptance claim for
        its parent; otherwise it is recorded as DROPPED.

        Raises:
            MessageNotFoundError: If ``message_id`` is not in the history.
            AgentNotFoundError: If ``agent_name`` is not on the roster.
            AgentResponseError: If the agent call fails.
        """
        async with self._lock:
            target = self.history.get(message_id)
            if target is None:
                raise MessageNotFoundError(message_id, thread_id=self.thread_id)
            persona = self.find_persona(agent_name)
            if persona is None:
                raise AgentNotFoundError(agent_name, thread_id=self.thread_id)
            mainline = self.history.mainline()
            summary = self.state.summary

        content = await self._responder.respond(persona, mainline, target, summary)

        async with self._lock:
            won = self.state.claim_first_response(message_id)
            message = Message(
                id=self.state.next_message_id(),
                speaker=persona.name,
                content=content,
                parent_id=message_id,
                status=AcceptanceStatus.ACCEPTED if won else AcceptanceStatus.DROPPED,
            )
            self.history.add(message)
            if won:
                self.state.accepted_since_human += 1
            await self._persist_locked()

        logger.info(
            "Agent reply recorded",
            thread_id=self.thread_id,
            agent=persona.name,
            message_id=message.id,
            status=message.status.value,
        )
        self.hub.publish(MessageAppendedEvent.of(message))
        return message

    # =========================================================================
    # Auto-continuation
    # =========================================================================

    async def run_auto_loop(self, last_message: Message, generation: int | None = None) -> LoopOutcome:
        """Ask recommended speakers in turn until a halt condition.

        Halts when the stop flag is set, the recommendation is the human or
        the author of ``last_message``, the recommended agent has left the
        roster, a newer human turn or reset has superseded this run, an
        agent call fails, or ``max_auto_rounds`` rounds have run.
        """
        if generation is None:
            generation = self.state.generation
        outcome = LoopOutcome(halt_reason=HaltReason.ROUND_LIMIT)

        for round_number in range(1, self.max_auto_rounds + 1):
            halt = self._halt_before_round(last_message, generation)
            if halt is not None:
                outcome.halt_reason = halt
                break

            persona = self.find_persona(self.state.next_speaker.name)
            if persona is None:
                outcome.halt_reason = HaltReason.ROSTER_MISS
                break

            logger.info(
                "Auto round",
                thread_id=self.thread_id,
                round=round_number,
                max_rounds=self.max_auto_rounds,
                agent=persona.name,
            )

            try:
                reply = await self.respond_as(persona.name, last_message.id)
            except Exception as e:
                logger.error(
                    "Auto round failed",
                    thread_id=self.thread_id,
                    round=round_number,
                    agent=persona.name,
                    error=str(e),
                )
                outcome.halt_reason = HaltReason.AGENT_ERROR
                break

            outcome.rounds = round_number
            outcome.messages.append(reply)
            if not reply.is_accepted:
                outcome.halt_reason = HaltReason.SUPERSEDED
                break

            if await self._refresh_block(reply, generation) is None:
                outcome.halt_reason = HaltReason.SUPERSEDED
                break
            self._launch_verification(reply)
            last_message = reply

        logger.info(
            "Auto loop halted",
            thread_id=self.thread_id,
            halt_reason=outcome.halt_reason.value,
            rounds=outcome.rounds,
            next_speaker=self.state.next_speaker.name,
        )
        return outcome

    def _halt_before_round(self, last_message: Message, generation: int) -> HaltReason | None:
        if generation != self.state.generation:
            return HaltReason.SUPERSEDED
        if self.state.stop_requested:
            return HaltReason.STOPPED
        next_speaker = self.state.next_speaker
        if next_speaker.is_human:
            return HaltReason.HUMAN_NEXT
        if next_speaker.name == last_message.speaker:
            return HaltReason.REPEAT_SPEAKER
        return None

    async def _broadcast_and_continue(self, human_message: Message, generation: int) -> LoopOutcome | None:
        accepted = await self.broadcast(human_message, generation)
        if accepted is None:
            return None
        return await self.run_auto_loop(accepted, generation)

    # =========================================================================
    # Block summary and verification
    # =========================================================================

    async def generate_block_for(self, message_id: str) -> SummaryResult:
        """Re-run the summarizer for an existing message and apply the result.

        Raises:
            MessageNotFoundError: If ``message_id`` is not in the history.
        """
        message = self.history.get(message_id)
        if message is None:
            raise MessageNotFoundError(message_id, thread_id=self.thread_id)
        result = await self._refresh_block(message, self.state.generation)
        if result is None:
            raise RoundtableError("Conversation changed while summarizing", thread_id=self.thread_id)
        return result

    async def _refresh_block(self, message: Message, generation: int) -> SummaryResult | None:
        """Summarize ``message`` and apply the result unless superseded."""
        prior_summary = self.state.summary
        initial = self.state.initial_human_message
        result = await self._summarizer.summarize(prior_summary, initial, message, self.roster)

        async with self._lock:
            if generation != self.state.generation:
                logger.info("Discarding stale block summary", thread_id=self.thread_id, message_id=message.id)
                return None
            self.state.summary = result.summary
            self.state.next_speaker = result.next_speaker
            await self._persist_locked()

        logger.info(
            "Block updated",
            thread_id=self.thread_id,
            message_id=message.id,
            next_speaker=result.next_speaker.name,
            fallback=result.fallback,
        )
        self.hub.publish(
            BlockUpdatedEvent(data=BlockUpdate.build(result.summary, result.next_speaker, result.rationale))
        )
        return result

    def _launch_verification(self, message: Message) -> None:
        """Start a background verification for an accepted message.

        Inputs are captured now; the result is applied later under the lock
        and only if no newer human turn or reset happened meanwhile.
        """
        self.spawn(
            self._verify(
                message,
                generation=self.state.generation,
                initial=self.state.initial_human_message,
                summary=self.state.summary,
                accepted_count=self.state.accepted_since_human,
                epoch=self._verifier.epoch,
            ),
            name=f"verify-{message.id}",
        )

    async def _verify(
        self,
        message: Message,
        generation: int,
        initial: str,
        summary: str,
        accepted_count: int,
        epoch: int,
    ) -> None:
        result = await self._verifier.verify(
            initial, summary, message.content, message.speaker, accepted_count, epoch=epoch
        )

        async with self._lock:
            if generation != self.state.generation:
                logger.debug("Discarding stale verification", thread_id=self.thread_id, message_id=message.id)
                return
            if result.user_intent and not self.state.user_intent:
                self.state.user_intent = result.user_intent
            if not result.should_stop:
                return
            self.state.stop_requested = True
            self.state.stop_reason = result.stop_reason
            self.state.next_speaker = HUMAN
            block = BlockUpdate.build(
                self.state.summary,
                HUMAN,
                stop_reason=self.state.stop_reason,
                user_intent=self.state.user_intent,
            )
            await self._persist_locked()

        logger.info("Stop flag set", thread_id=self.thread_id, stop_reason=result.stop_reason)
        self.hub.publish(BlockUpdatedEvent(data=block))

    # =========================================================================
    # Reset, persistence, lifecycle
    # =========================================================================

    async def reset(self) -> None:
        """Clear history and state, then persist the cleared state."""
        async with self._lock:
            self.history.clear()
            self.state.reset()
            self._verifier.reset()
            await self._persist_locked()

        logger.info("Conversation reset", thread_id=self.thread_id)
        self.hub.publish(BlockUpdatedEvent(data=BlockUpdate.build("", HUMAN)))

    def restore(self, messages: list[Message], state: ConversationState) -> None:
        """Rehydrate from persisted data (before the world serves requests)."""
        self.history = MessageHistory.from_messages(messages)
        self.state = state
        self._verifier.restore(state.user_intent)

    async def load(self) -> bool:
        """Load persisted messages and state; returns False if none exist."""
        if self._store is None:
            return False
        raw_messages = await self._store.get(f"{StorageKey.MESSAGES}{self.thread_id}")
        raw_state = await self._store.get(f"{StorageKey.STATE}{self.thread_id}")
        if raw_messages is None and raw_state is None:
            return False

        messages = [Message.from_dict(m) for m in json.loads(raw_messages or "[]")]
        state = ConversationState.from_dict(json.loads(raw_state or "{}"))
        self.restore(messages, state)
        logger.info("Conversation restored", thread_id=self.thread_id, messages=len(messages))
        return True

    async def _persist_locked(self) -> None:
        """Write messages and state. Caller holds the lock."""
        if self._store is None:
            return
        messages = json.dumps([m.to_dict() for m in self.history.all_messages()])
        state = json.dumps(self.state.to_dict())
        try:
            await self._store.set(f"{StorageKey.MESSAGES}{self.thread_id}", messages)
            await self._store.set(f"{StorageKey.STATE}{self.thread_id}", state)
        except StorageError as e:
            logger.error("Failed to persist conversation", thread_id=self.thread_id, error=str(e))

    def spawn(self, coro: Coroutine[Any, Any, Any], name: str | None = None) -> asyncio.Task[Any]:
        """Run ``coro`` as a tracked background task."""
        with bind_thread(self.thread_id):
            task = asyncio.create_task(coro, name=name)
        self._tasks.add(task)
        task.add_done_callback(self._on_task_done)
        return task

    def _on_task_done(self, task: asyncio.Task[Any]) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            logger.error(
                "Background task failed",
                thread_id=self.thread_id,
                task=task.get_name(),
                error=str(error),
                error_type=type(error).__name__,
            )

    async def wait_idle(self) -> None:
        """Wait until all background work (loops, verifications) has finished."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def aclose(self) -> None:
        """Cancel background work and drop subscribers."""
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self._tasks.clear()
        self.hub.close()
