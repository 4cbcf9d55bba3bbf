"""
Conversation Models - Data structures for multi-party conversations

This module defines the records shared by the history tree, the
summarizer, the verifier and the conversation state machine:

- Message: immutable history record with an acceptance status
- SpeakerRef: a "next speaker" value (agent persona or the human sentinel)
- AgentPersona / Thread: roster and thread metadata owned by the registry
- SummaryResult / VerificationResult: advisory model-call outcomes
- ConversationState: per-thread mutable state, mutated only by its world
"""

from __future__ import annotations

import time
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from src.core.constants import DEFAULT_PERSONA_COLOR, HUMAN_SPEAKER_ID, HUMAN_SPEAKER_NAME


def now_ms() -> int:
    """Current wall-clock time in epoch milliseconds."""
    return int(time.time() * 1000)


class AcceptanceStatus(str, Enum):
    """Acceptance status of a message relative to its siblings."""

    UNSET = "unset"
    ACCEPTED = "accepted"    # on the mainline; at most one per parent
    DROPPED = "dropped"      # lost the first-acceptance race


@dataclass(frozen=True)
class Message:
    """Single history record.

    Attributes:
        id: Unique message identifier.
        speaker: Persona name of the author, or the human speaker name.
        content: Message text.
        timestamp: Creation time in epoch milliseconds.
        parent_id: Message this one replies to (None only for the root).
        status: Acceptance status among messages sharing ``parent_id``.
    """

    id: str
    speaker: str
    content: str
    timestamp: int = field(default_factory=now_ms)
    parent_id: str | None = None
    status: AcceptanceStatus = AcceptanceStatus.UNSET

    @property
    def is_accepted(self) -> bool:
        return self.status == AcceptanceStatus.ACCEPTED

    @property
    def is_human(self) -> bool:
        return self.speaker == HUMAN_SPEAKER_NAME

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "id": self.id,
            "speaker": self.speaker,
            "content": self.content,
            "timestamp": self.timestamp,
            "parent_id": self.parent_id,
            "status": self.status.value,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Message:
        return cls(
            id=data["id"],
            speaker=data["speaker"],
            content=data["content"],
            timestamp=int(data.get("timestamp") or 0),
            parent_id=data.get("parent_id"),
            status=AcceptanceStatus(data.get("status") or AcceptanceStatus.UNSET.value),
        )


@dataclass(frozen=True)
class SpeakerRef:
    """Reference to an eligible speaker.

    Agents are referenced by persona name for both ``id`` and ``name``;
    the human is referenced by the reserved sentinel.
    """

    id: str
    name: str

    @property
    def is_human(self) -> bool:
        return self.id == HUMAN_SPEAKER_ID

    def matches(self, identity: str) -> bool:
        """True if ``identity`` is this speaker's id or name."""
        return identity in (self.id, self.name)

    def to_dict(self) -> dict[str, str]:
        return {"id": self.id, "name": self.name}

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> SpeakerRef:
        if not data:
            return HUMAN
        return cls(id=str(data.get("id", "")), name=str(data.get("name", "")))


HUMAN = SpeakerRef(id=HUMAN_SPEAKER_ID, name=HUMAN_SPEAKER_NAME)


@dataclass
class AgentPersona:
    """Definition of a responder agent on a thread roster.

    Attributes:
        name: Unique within a thread; also the agent's speaker name.
        role: Role label shown to the summarizer.
        endpoint: Agent endpoint reference (A2A agent card or RPC URL).
        color: Display metadata for the UI.
        description: Optional one-line description for speaker selection.
    """

    name: str
    role: str
    endpoint: str
    color: str = DEFAULT_PERSONA_COLOR
    description: str = ""

    @property
    def speaker(self) -> SpeakerRef:
        return SpeakerRef(id=self.name, name=self.name)

    def matches(self, identity: str) -> bool:
        """True if ``identity`` is this persona's name or endpoint."""
        return identity in (self.name, self.endpoint)

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "role": self.role,
            "endpoint": self.endpoint,
            "color": self.color,
            "description": self.description,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> AgentPersona:
        return cls(
            name=data["name"],
            role=data["role"],
            endpoint=data["endpoint"],
            color=data.get("color") or DEFAULT_PERSONA_COLOR,
            description=data.get("description") or "",
        )


@dataclass
class Thread:
    """Thread metadata and roster."""

    name: str
    agents: list[AgentPersona] = field(default_factory=list)
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    created_at: int = field(default_factory=now_ms)
    updated_at: int = field(default_factory=now_ms)

    def touch(self) -> None:
        self.updated_at = now_ms()

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "agents": [a.to_dict() for a in self.agents],
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Thread:
        return cls(
            id=data["id"],
            name=data["name"],
            agents=[AgentPersona.from_dict(a) for a in data.get("agents", [])],
            created_at=int(data.get("created_at") or now_ms()),
            updated_at=int(data.get("updated_at") or now_ms()),
        )


@dataclass(frozen=True)
class SummaryResult:
    """Outcome of a summarizer call (always usable, see BlockSummarizer)."""

    summary: str
    next_speaker: SpeakerRef = HUMAN
    rationale: str = ""
    fallback: bool = False


@dataclass(frozen=True)
class VerificationResult:
    """Outcome of a goal verification call."""

    should_stop: bool = False
    stop_reason: str = ""
    user_intent: str = ""


class StickyIntent:
    """Human intent that moves monotonically from empty to populated.

    Once a non-empty value is held, ``offer`` never replaces it. Only
    ``clear`` (new human turn or conversation reset) empties it again.
    """

    def __init__(self, value: str = "") -> None:
        self._value = value.strip()

    @property
    def value(self) -> str:
        return self._value

    def offer(self, candidate: str | None) -> bool:
        """Set the intent if none is held yet. Returns True if it was set."""
        if self._value or not candidate or not candidate.strip():
            return False
        self._value = candidate.strip()
        return True

    def clear(self) -> None:
        self._value = ""

    def __bool__(self) -> bool:
        return bool(self._value)


@dataclass
class ConversationState:
    """Per-thread mutable conversation state.

    Mutated exclusively by the owning ConversationWorld while it holds
    its lock.

    Attributes:
        summary: Rolling block summary (length bounded by the summarizer).
        next_speaker: Recommendation for who speaks next.
        user_intent: Published sticky human intent.
        initial_human_message: Latest human message text, fed to the
            summarizer and verifier as the conversation goal.
        stop_requested: Set by a verifier stop decision.
        stop_reason: Explanation accompanying ``stop_requested``.
        message_counter: Monotonic counter used in message ids.
        first_response_claims: Parent ids whose single accepted child slot
            has been claimed.
        accepted_since_human: Accepted agent messages since the last human
            message (drives verifier strictness).
        generation: Incremented on every human message and reset; stale
            loops and verifications compare against it.
    """

    summary: str = ""
    next_speaker: SpeakerRef = HUMAN
    user_intent: str = ""
    initial_human_message: str = ""
    stop_requested: bool = False
    stop_reason: str = ""
    message_counter: int = 0
    first_response_claims: set[str] = field(default_factory=set)
    accepted_since_human: int = 0
    generation: int = 0

    def next_message_id(self) -> str:
        self.message_counter += 1
        return f"msg_{self.message_counter}_{now_ms()}_{uuid.uuid4().hex[:7]}"

    def claim_first_response(self, parent_id: str) -> bool:
        """Claim the single accepted-child slot of ``parent_id``.

        Compare-and-set: returns True exactly once per parent id.
        """
        if parent_id in self.first_response_claims:
            return False
        self.first_response_claims.add(parent_id)
        return True

    def begin_human_turn(self, content: str) -> None:
        self.initial_human_message = content
        self.user_intent = ""
        self.stop_requested = False
        self.stop_reason = ""
        self.accepted_since_human = 0
        self.generation += 1

    def reset(self) -> None:
        self.summary = ""
        self.next_speaker = HUMAN
        self.user_intent = ""
        self.initial_human_message = ""
        self.stop_requested = False
        self.stop_reason = ""
        self.message_counter = 0
        self.first_response_claims.clear()
        self.accepted_since_human = 0
        self.generation += 1

    def to_dict(self) -> dict[str, Any]:
        return {
            "summary": self.summary,
            "next_speaker": self.next_speaker.to_dict(),
            "user_intent": self.user_intent,
            "initial_human_message": self.initial_human_message,
            "stop_requested": self.stop_requested,
            "stop_reason": self.stop_reason,
            "message_counter": self.message_counter,
            "first_response_claims": sorted(self.first_response_claims),
            "accepted_since_human": self.accepted_since_human,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ConversationState:
        return cls(
            summary=data.get("summary", ""),
            next_speaker=SpeakerRef.from_dict(data.get("next_speaker")),
            user_intent=data.get("user_intent", ""),
            initial_human_message=data.get("initial_human_message", ""),
            stop_requested=bool(data.get("stop_requested", False)),
            stop_reason=data.get("stop_reason", ""),
            message_counter=int(data.get("message_counter", 0)),
            first_response_claims=set(data.get("first_response_claims", [])),
            accepted_since_human=int(data.get("accepted_since_human", 0)),
        )
