"""
Participants Module - Adapters that fetch replies from roster agents.

Adapters:
- A2AParticipantAdapter: Reaches agents via A2A JSON-RPC ``message/send``
"""

from src.participants.a2a_participant import A2AParticipantAdapter
from src.participants.base import AgentResponder

__all__ = [
    "A2AParticipantAdapter",
    "AgentResponder",
]
