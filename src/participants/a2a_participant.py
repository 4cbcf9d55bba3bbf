"""
A2A Participant Adapter - asks roster agents for replies over A2A JSON-RPC.

Each persona's endpoint is either an agent card URL (``/.well-known/...``)
whose ``url`` field names the JSON-RPC endpoint, or the JSON-RPC endpoint
itself. Replies are requested with ``message/send``; the A2A ``contextId``
returned by an agent is remembered and sent back on later turns.

Each agent is independent - if one endpoint fails, that agent's turn
fails with AgentResponseError but other agents are unaffected.
"""

from __future__ import annotations

import logging
import uuid
from typing import TYPE_CHECKING, Any

import httpx

from src.core.constants import Timeouts
from src.core.exceptions import AgentResponseError
from src.participants.base import AgentResponder


if TYPE_CHECKING:
    from src.conversation.models import AgentPersona, Message


logger = logging.getLogger(__name__)

NO_TEXT_REPLY = "Agent received your message but did not respond."

_AGENT_CARD_MARKER = "/.well-known/"


class A2AParticipantAdapter(AgentResponder):
    """Adapter for responder agents reachable over the A2A protocol.

    Attributes:
        timeout: Request timeout in seconds (when the adapter owns its client).
    """

    def __init__(
        self,
        client: httpx.AsyncClient | None = None,
        timeout: float = Timeouts.HTTP_DEFAULT,
    ) -> None:
        """Initialize the adapter.

        Args:
            client: Shared httpx client. A private one is created if omitted.
            timeout: Request timeout in seconds for a private client.
        """
        self.timeout = timeout
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(timeout=timeout)
        self._rpc_urls: dict[str, str] = {}
        self._context_ids: dict[str, str] = {}

    async def respond(
        self,
        persona: AgentPersona,
        history: list[Message],
        replying_to: Message,
        block_summary: str,
    ) -> str:
        """Send ``message/send`` to the persona's agent and return its text.

        Raises:
            AgentResponseError: If the agent is unreachable or returns an error.
        """
        prompt = self.build_prompt(replying_to, block_summary)

        message: dict[str, Any] = {
            "kind": "message",
            "messageId": str(uuid.uuid4()),
            "role": "user",
            "parts": [{"kind": "text", "text": prompt}],
        }
        context_id = self._context_ids.get(persona.endpoint)
        if context_id:
            message["contextId"] = context_id

        request_body = {
            "jsonrpc": "2.0",
            "id": str(uuid.uuid4()),
            "method": "message/send",
            "params": {"message": message},
        }

        logger.info("Requesting reply via A2A: agent=%s, history=%d", persona.name, len(history))

        try:
            rpc_url = await self._resolve_rpc_url(persona)
            response = await self._client.post(rpc_url, json=request_body)
            response.raise_for_status()
            data = response.json()
        except httpx.HTTPStatusError as e:
            logger.error(
                "HTTP error from agent: agent=%s, status=%s", persona.name, e.response.status_code
            )
            raise AgentResponseError(
                f"Agent {persona.name} returned HTTP {e.response.status_code}",
                agent_name=persona.name,
                cause=e,
            ) from e
        except (httpx.HTTPError, ValueError) as e:
            logger.error("Error calling agent: agent=%s, error=%s", persona.name, e)
            raise AgentResponseError(
                f"Agent {persona.name} unreachable: {e}",
                agent_name=persona.name,
                cause=e,
            ) from e

        if isinstance(data, dict) and data.get("error"):
            error = data["error"]
            detail = error.get("message") if isinstance(error, dict) else str(error)
            logger.error("JSON-RPC error from agent: agent=%s, error=%s", persona.name, detail)
            raise AgentResponseError(
                f"Agent {persona.name} returned an error: {detail}",
                agent_name=persona.name,
            )

        reply_message = self._extract_message(data)
        if reply_message is not None and isinstance(reply_message.get("contextId"), str):
            self._context_ids[persona.endpoint] = reply_message["contextId"]

        text = self._extract_text(reply_message) or NO_TEXT_REPLY
        logger.info("Agent replied: agent=%s, chars=%d", persona.name, len(text))
        return text

    def build_prompt(self, replying_to: Message, block_summary: str) -> str:
        """Build the user prompt sent to the agent."""
        prompt = ""
        if block_summary:
            prompt += f"[Conversation Summary So Far]:\n{block_summary}\n\n"
        prompt += f"[New Message]:\n{replying_to.speaker}: {replying_to.content}\n\n"
        prompt += "How would you respond in this situation?\n\n"
        prompt += "Important: Only respond with your dialogue. Output only your own words."
        return prompt

    async def _resolve_rpc_url(self, persona: AgentPersona) -> str:
        """Resolve the JSON-RPC URL, fetching the agent card once if needed."""
        if _AGENT_CARD_MARKER not in persona.endpoint:
            return persona.endpoint

        cached = self._rpc_urls.get(persona.endpoint)
        if cached:
            return cached

        logger.info("Fetching agent card: agent=%s, url=%s", persona.name, persona.endpoint)
        response = await self._client.get(persona.endpoint, timeout=Timeouts.AGENT_CARD)
        response.raise_for_status()
        card = response.json()
        rpc_url = card.get("url") if isinstance(card, dict) else None
        if not rpc_url:
            raise ValueError(f"Agent card at {persona.endpoint} has no url")

        self._rpc_urls[persona.endpoint] = rpc_url
        return rpc_url

    @staticmethod
    def _extract_message(data: Any) -> dict[str, Any] | None:
        """Find the reply message across the JSON-RPC result shapes agents use."""
        if not isinstance(data, dict):
            return None
        result = data.get("result")
        if isinstance(result, dict):
            if result.get("kind") == "task":
                status = result.get("status")
                status_message = status.get("message") if isinstance(status, dict) else None
                if isinstance(status_message, dict):
                    return status_message
                # task without a status message: fall back to its artifacts
                artifacts = result.get("artifacts")
                parts = [
                    part
                    for artifact in (artifacts if isinstance(artifacts, list) else [])
                    if isinstance(artifact, dict) and isinstance(artifact.get("parts"), list)
                    for part in artifact["parts"]
                ]
                return {"parts": parts, "contextId": result.get("contextId")}
            if "kind" in result or "parts" in result:
                return result
            if isinstance(result.get("message"), dict):
                return result["message"]
        if isinstance(data.get("message"), dict):
            return data["message"]
        return None

    @staticmethod
    def _extract_text(message: dict[str, Any] | None) -> str:
        if not message:
            return ""
        parts = message.get("parts")
        if isinstance(parts, list):
            texts = [
                part["text"]
                for part in parts
                if isinstance(part, dict)
                and part.get("kind", "text") == "text"
                and isinstance(part.get("text"), str)
            ]
            return " ".join(texts).strip()
        text = message.get("text")
        return text.strip() if isinstance(text, str) else ""

    async def close(self) -> None:
        """Close the HTTP client if this adapter created it."""
        if self._owns_client:
            await self._client.aclose()
