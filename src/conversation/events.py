"""Live-feed events for conversation subscribers.

Event kinds:
- ConnectedEvent: first frame sent to every new subscriber
- MessageAppendedEvent: a message was appended to the history
- BlockUpdatedEvent: block summary / next-speaker recommendation changed
  (also carries stop_reason and user_intent when a stop occurs)

Events are fanned out through an EventHub: one bounded asyncio.Queue per
subscriber. Publishing never blocks and never raises into the turn loop.
"""

from __future__ import annotations

import asyncio
import json
import uuid
from typing import Any, Literal

from pydantic import BaseModel, Field

from src.conversation.models import Message, SpeakerRef
from src.core.constants import EVENT_QUEUE_SIZE
from src.core.logging import get_logger


logger = get_logger(__name__)


class BlockUpdate(BaseModel):
    """Payload of a block event."""

    summary: str = Field(..., description="Current block summary")
    next: dict[str, str] = Field(..., description="Recommended next speaker {id, name}")
    recommendation_reason: str = Field(default="", description="Why this speaker was recommended")
    stop_reason: str | None = Field(default=None, description="Set when the verifier stopped the conversation")
    user_intent: str | None = Field(default=None, description="Extracted human intent, sent with stops")

    @classmethod
    def build(
        cls,
        summary: str,
        next_speaker: SpeakerRef,
        recommendation_reason: str = "",
        stop_reason: str | None = None,
        user_intent: str | None = None,
    ) -> BlockUpdate:
        return cls(
            summary=summary,
            next=next_speaker.to_dict(),
            recommendation_reason=recommendation_reason,
            stop_reason=stop_reason,
            user_intent=user_intent,
        )


class _FeedEvent(BaseModel):
    def to_sse(self) -> str:
        """Serialize event to an SSE ``data:`` frame."""
        return f"data: {json.dumps(self.model_dump(exclude_none=True))}\n\n"


class ConnectedEvent(_FeedEvent):
    type: Literal["connected"] = "connected"
    client_id: str
    thread_id: str


class MessageAppendedEvent(_FeedEvent):
    type: Literal["message"] = "message"
    data: dict[str, Any]

    @classmethod
    def of(cls, message: Message) -> MessageAppendedEvent:
        return cls(data=message.to_dict())


class BlockUpdatedEvent(_FeedEvent):
    type: Literal["block"] = "block"
    data: BlockUpdate


FeedEvent = ConnectedEvent | MessageAppendedEvent | BlockUpdatedEvent


class EventHub:
    """Fan-out of feed events to subscriber queues."""

    def __init__(self, queue_size: int = EVENT_QUEUE_SIZE) -> None:
        self._queue_size = queue_size
        self._subscribers: dict[str, asyncio.Queue[FeedEvent]] = {}

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    def subscribe(self, client_id: str | None = None) -> tuple[str, asyncio.Queue[FeedEvent]]:
        client_id = client_id or f"client_{uuid.uuid4().hex}"
        queue: asyncio.Queue[FeedEvent] = asyncio.Queue(maxsize=self._queue_size)
        self._subscribers[client_id] = queue
        return client_id, queue

    def unsubscribe(self, client_id: str) -> None:
        self._subscribers.pop(client_id, None)

    def publish(self, event: FeedEvent) -> None:
        for client_id, queue in list(self._subscribers.items()):
            try:
                queue.put_nowait(event)
            except asyncio.QueueFull:
                logger.warning("Subscriber queue full, dropping event", client_id=client_id, event_type=event.type)

    def close(self) -> None:
        self._subscribers.clear()


__all__ = [
    "BlockUpdate",
    "BlockUpdatedEvent",
    "ConnectedEvent",
    "EventHub",
    "FeedEvent",
    "MessageAppendedEvent",
]
