"""Thread and conversation API routes.

Implements:
- GET    /threads                       - List threads
- POST   /threads                       - Create thread
- GET    /threads/{id}                  - Get thread
- PATCH  /threads/{id}                  - Rename thread
- DELETE /threads/{id}                  - Delete thread and its conversation
- POST   /threads/{id}/agents           - Add roster persona
- DELETE /threads/{id}/agents/{agent}   - Remove roster persona (name or endpoint)
- POST   /threads/{id}/messages         - Submit human message, or reset
- GET    /threads/{id}/messages         - All messages, mainline and stats
- POST   /threads/{id}/messages/{mid}/responses - Ask one agent to reply
- POST   /threads/{id}/messages/{mid}/block     - Re-summarize a message
- GET    /threads/{id}/stream           - Live feed (SSE)

Message submission awaits ingestion only; agent replies and the
auto-continuation loop run in the background and reach clients through
the live feed.
"""

from __future__ import annotations

import asyncio
from collections.abc import AsyncGenerator
from typing import Any, Literal

from fastapi import APIRouter, Depends, HTTPException, Request, status
from fastapi.responses import StreamingResponse
from pydantic import BaseModel, Field

from src.conversation.events import ConnectedEvent
from src.conversation.models import AgentPersona, Thread
from src.conversation.registry import ThreadRegistry
from src.conversation.world import ConversationWorld, IngestionMode
from src.core.constants import DEFAULT_PERSONA_COLOR
from src.core.logging import get_logger


logger = get_logger(__name__)

router = APIRouter(
    prefix="/threads",
    tags=["Threads"],
)

KEEPALIVE_SECONDS = 15.0


# =============================================================================
# Request / Response Models
# =============================================================================

class AgentPersonaModel(BaseModel):
    """Roster entry as sent and returned by the API."""

    name: str = Field(..., min_length=1, description="Unique persona name within the thread")
    role: str = Field(default="", description="Role label")
    endpoint: str = Field(..., min_length=1, description="A2A agent card or JSON-RPC URL")
    color: str = Field(default=DEFAULT_PERSONA_COLOR, description="Display color classes")
    description: str = Field(default="", description="One-line description")

    def to_persona(self) -> AgentPersona:
        return AgentPersona(
            name=self.name,
            role=self.role,
            endpoint=self.endpoint,
            color=self.color or DEFAULT_PERSONA_COLOR,
            description=self.description,
        )


class CreateThreadRequest(BaseModel):
    name: str = Field(..., min_length=1)
    agents: list[AgentPersonaModel] = Field(default_factory=list)


class RenameThreadRequest(BaseModel):
    name: str = Field(..., min_length=1)


class PostMessageRequest(BaseModel):
    """Human message submission, or ``action="reset"``."""

    message: str = Field(default="", description="Human message text")
    mode: IngestionMode = Field(default=IngestionMode.BROADCAST, description="Ingestion mode")
    action: Literal["reset"] | None = Field(default=None, description="Conversation action")


class PostMessageResponse(BaseModel):
    success: bool = True
    messageId: str | None = None


class RespondRequest(BaseModel):
    agent: str = Field(..., min_length=1, description="Persona name of the agent to ask")


class ThreadResponse(BaseModel):
    id: str
    name: str
    agents: list[dict[str, Any]]
    created_at: int
    updated_at: int

    @classmethod
    def of(cls, thread: Thread) -> ThreadResponse:
        return cls(**thread.to_dict())


class MessagesResponse(BaseModel):
    messages: list[dict[str, Any]]
    mainline: list[dict[str, Any]]
    stats: dict[str, Any]
    summary: str
    next_speaker: dict[str, str]
    stop_requested: bool
    stop_reason: str
    user_intent: str


# =============================================================================
# Dependency Injection
# =============================================================================

def get_registry(request: Request) -> ThreadRegistry:
    """Registry built by the application lifespan."""
    return request.app.state.registry


def get_world(thread_id: str, registry: ThreadRegistry = Depends(get_registry)) -> ConversationWorld:
    return registry.get_world(thread_id)


# =============================================================================
# Threads
# =============================================================================

@router.get("", response_model=list[ThreadResponse])
async def list_threads(registry: ThreadRegistry = Depends(get_registry)) -> list[ThreadResponse]:
    return [ThreadResponse.of(t) for t in registry.list_threads()]


@router.post("", response_model=ThreadResponse, status_code=status.HTTP_201_CREATED)
async def create_thread(
    body: CreateThreadRequest,
    registry: ThreadRegistry = Depends(get_registry),
) -> ThreadResponse:
    thread = await registry.create_thread(body.name, [a.to_persona() for a in body.agents])
    return ThreadResponse.of(thread)


@router.get("/{thread_id}", response_model=ThreadResponse)
async def get_thread(thread_id: str, registry: ThreadRegistry = Depends(get_registry)) -> ThreadResponse:
    return ThreadResponse.of(registry.get_thread(thread_id))


@router.patch("/{thread_id}", response_model=ThreadResponse)
async def rename_thread(
    thread_id: str,
    body: RenameThreadRequest,
    registry: ThreadRegistry = Depends(get_registry),
) -> ThreadResponse:
    return ThreadResponse.of(await registry.rename_thread(thread_id, body.name))


@router.delete("/{thread_id}")
async def delete_thread(thread_id: str, registry: ThreadRegistry = Depends(get_registry)) -> dict[str, bool]:
    await registry.delete_thread(thread_id)
    return {"success": True}


# =============================================================================
# Roster
# =============================================================================

@router.post("/{thread_id}/agents", response_model=ThreadResponse)
async def add_agent(
    thread_id: str,
    body: AgentPersonaModel,
    registry: ThreadRegistry = Depends(get_registry),
) -> ThreadResponse:
    return ThreadResponse.of(await registry.add_agent(thread_id, body.to_persona()))


@router.delete("/{thread_id}/agents/{agent_id:path}", response_model=ThreadResponse)
async def remove_agent(
    thread_id: str,
    agent_id: str,
    registry: ThreadRegistry = Depends(get_registry),
) -> ThreadResponse:
    return ThreadResponse.of(await registry.remove_agent(thread_id, agent_id))


# =============================================================================
# Conversation
# =============================================================================

@router.post("/{thread_id}/messages", response_model=PostMessageResponse)
async def post_message(
    body: PostMessageRequest,
    world: ConversationWorld = Depends(get_world),
) -> PostMessageResponse:
    """Submit a human message (or reset the conversation).

    Raises:
        HTTPException: 400 if the message is empty
    """
    if body.action == "reset":
        await world.reset()
        return PostMessageResponse(success=True)

    if not body.message.strip():
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Message is required")

    message = await world.submit_human_message(body.message, body.mode)
    return PostMessageResponse(success=True, messageId=message.id)


@router.get("/{thread_id}/messages", response_model=MessagesResponse)
async def get_messages(world: ConversationWorld = Depends(get_world)) -> MessagesResponse:
    state = world.state
    return MessagesResponse(
        messages=[m.to_dict() for m in world.all_messages()],
        mainline=[m.to_dict() for m in world.mainline()],
        stats=world.history.stats(),
        summary=state.summary,
        next_speaker=state.next_speaker.to_dict(),
        stop_requested=state.stop_requested,
        stop_reason=state.stop_reason,
        user_intent=state.user_intent,
    )


@router.post("/{thread_id}/messages/{message_id}/responses")
async def respond_to_message(
    message_id: str,
    body: RespondRequest,
    world: ConversationWorld = Depends(get_world),
) -> dict[str, Any]:
    """Ask one roster agent to reply to a specific message."""
    reply = await world.respond_as(body.agent, message_id)
    return reply.to_dict()


@router.post("/{thread_id}/messages/{message_id}/block")
async def generate_block(
    message_id: str,
    world: ConversationWorld = Depends(get_world),
) -> dict[str, Any]:
    """Re-run the summarizer for a message and apply the result."""
    result = await world.generate_block_for(message_id)
    return {
        "summary": result.summary,
        "next": result.next_speaker.to_dict(),
        "recommendation_reason": result.rationale,
    }


@router.get("/{thread_id}/stream")
async def stream(
    thread_id: str,
    request: Request,
    world: ConversationWorld = Depends(get_world),
) -> StreamingResponse:
    """Live feed of message and block events as SSE frames."""
    client_id, queue = world.hub.subscribe()
    logger.info("Stream client connected", thread_id=thread_id, client_id=client_id)

    async def event_generator() -> AsyncGenerator[str, None]:
        try:
            yield ConnectedEvent(client_id=client_id, thread_id=thread_id).to_sse()
            while True:
                if await request.is_disconnected():
                    break
                try:
                    event = await asyncio.wait_for(queue.get(), timeout=KEEPALIVE_SECONDS)
                except TimeoutError:
                    yield ": keepalive\n\n"
                    continue
                yield event.to_sse()
        finally:
            world.hub.unsubscribe(client_id)
            logger.info("Stream client disconnected", thread_id=thread_id, client_id=client_id)

    return StreamingResponse(
        event_generator(),
        media_type="text/event-stream",
        headers={
            "Cache-Control": "no-cache",
            "Connection": "keep-alive",
            "X-Accel-Buffering": "no",
        },
    )


__all__ = [
    "AgentPersonaModel",
    "CreateThreadRequest",
    "PostMessageRequest",
    "router",
]
