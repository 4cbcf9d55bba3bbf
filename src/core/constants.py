"""Orchestration constants and configuration defaults.

Provides centralized constants for the conversation engine:
- The human sentinel used as a "next speaker" value
- Scheduler, loop and summary defaults
- Model call budgets
- Persistence key prefixes
"""


# =============================================================================
# Speakers
# =============================================================================

HUMAN_SPEAKER_ID = "user"
HUMAN_SPEAKER_NAME = "User"

DEFAULT_PERSONA_COLOR = "bg-gray-100 border-gray-400"


# =============================================================================
# Orchestration Defaults
# =============================================================================

DEFAULT_MAX_CONCURRENT_REQUESTS = 4
DEFAULT_MAX_AUTO_ROUNDS = 10
DEFAULT_SUMMARY_MAX_CHARS = 500

# Subscriber queue size for the live event feed
EVENT_QUEUE_SIZE = 256


class ModelBudgets:
    """Token and temperature budgets for outbound model calls."""
    DEFAULT_MAX_TOKENS: int = 1500
    DEFAULT_TEMPERATURE: float = 0.7

    SUMMARIZER_MAX_TOKENS: int = 600
    SUMMARIZER_TEMPERATURE: float = 0.3

    VERIFIER_MAX_TOKENS: int = 400
    VERIFIER_TEMPERATURE: float = 0.3


class Timeouts:
    """Default timeout values in seconds."""
    HTTP_DEFAULT: float = 120.0  # model and agent calls can be slow
    AGENT_CARD: float = 10.0


# =============================================================================
# Persistence Keys
# =============================================================================

class StorageKey:
    """Key prefixes used with the key-value store.

    Example:
        ```python
        key = f"{StorageKey.THREAD}{thread_id}"
        ```
    """
    THREAD = "thread:"      # thread metadata + roster
    MESSAGES = "messages:"  # full message list of a conversation
    STATE = "state:"        # scalar conversation state fields

    ALL = (THREAD, MESSAGES, STATE)
