"""
Conversation Module - multi-party turn-based conversation orchestration

This package coordinates one human and a roster of responder agents:

- ModelCallScheduler: bounded-concurrency FIFO for all model calls
- MessageHistory: message tree with a single accepted mainline
- BlockSummarizer: rolling summary + next-speaker recommendation
- GoalVerifier: background stop/continue decision with sticky intent
- ConversationWorld: per-thread turn-taking state machine
- ThreadRegistry: thread lifecycle, rosters and rehydration
"""

from src.conversation.history import MessageHistory
from src.conversation.models import (
    HUMAN,
    AcceptanceStatus,
    AgentPersona,
    ConversationState,
    Message,
    SpeakerRef,
    SummaryResult,
    Thread,
    VerificationResult,
)
from src.conversation.registry import ThreadRegistry
from src.conversation.scheduler import HttpCompletionTransport, ModelCallScheduler
from src.conversation.summarizer import BlockSummarizer
from src.conversation.verifier import GoalVerifier, StrictnessLevel
from src.conversation.world import ConversationWorld, HaltReason, IngestionMode, LoopOutcome

__all__ = [
    "HUMAN",
    "AcceptanceStatus",
    "AgentPersona",
    "BlockSummarizer",
    "ConversationState",
    "ConversationWorld",
    "GoalVerifier",
    "HaltReason",
    "HttpCompletionTransport",
    "IngestionMode",
    "LoopOutcome",
    "Message",
    "MessageHistory",
    "ModelCallScheduler",
    "SpeakerRef",
    "StrictnessLevel",
    "SummaryResult",
    "Thread",
    "ThreadRegistry",
    "VerificationResult",
]
