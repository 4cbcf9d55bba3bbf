"""
Agent Responder - interface for fetching a reply from a roster agent.

The wire protocol used to reach an agent is opaque to the conversation
engine: it hands over the mainline history, the message being replied to
and the current block summary, and gets plain text back. Failures
propagate as errors attributable to that one agent and turn.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Protocol, runtime_checkable


if TYPE_CHECKING:
    from src.conversation.models import AgentPersona, Message


@runtime_checkable
class AgentResponder(Protocol):
    """Protocol for agent response calls.

    Enables duck typing for test doubles (FakeResponder).
    """

    async def respond(
        self,
        persona: AgentPersona,
        history: list[Message],
        replying_to: Message,
        block_summary: str,
    ) -> str:
        """Get a reply from ``persona``.

        Args:
            persona: Roster entry of the agent to ask.
            history: Current mainline, root first.
            replying_to: The specific message being replied to.
            block_summary: Current rolling block summary.

        Returns:
            Plain text reply.

        Raises:
            AgentResponseError: If the agent cannot be reached or fails.
        """
        ...

    async def close(self) -> None:
        """Release client resources."""
        ...
