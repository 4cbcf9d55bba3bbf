"""Core module - Configuration, logging, HTTP clients, and shared utilities.

Exports:
    - Settings, get_settings: Pydantic Settings configuration
    - configure_logging, get_logger, bind_thread: Structured logging (structlog)
    - HTTPClientFactory: outbound httpx clients
    - Orchestration constants and storage key prefixes
    - Exception classes: RoundtableError, ModelCallError, etc.
"""

from src.core.config import Settings, get_settings
from src.core.constants import (
    DEFAULT_MAX_AUTO_ROUNDS,
    DEFAULT_MAX_CONCURRENT_REQUESTS,
    DEFAULT_SUMMARY_MAX_CHARS,
    HUMAN_SPEAKER_ID,
    HUMAN_SPEAKER_NAME,
    ModelBudgets,
    StorageKey,
    Timeouts,
)
from src.core.exceptions import (
    AgentNotFoundError,
    AgentResponseError,
    DuplicateAgentError,
    MessageNotFoundError,
    ModelCallError,
    RoundtableError,
    StorageError,
    ThreadNotFoundError,
)
from src.core.http import HTTPClientFactory
from src.core.logging import bind_thread, configure_logging, get_logger


__all__ = [
    # Constants
    "DEFAULT_MAX_AUTO_ROUNDS",
    "DEFAULT_MAX_CONCURRENT_REQUESTS",
    "DEFAULT_SUMMARY_MAX_CHARS",
    "HUMAN_SPEAKER_ID",
    "HUMAN_SPEAKER_NAME",
    # Exceptions
    "AgentNotFoundError",
    "AgentResponseError",
    "DuplicateAgentError",
    # HTTP Clients
    "HTTPClientFactory",
    "MessageNotFoundError",
    "ModelBudgets",
    "ModelCallError",
    "RoundtableError",
    # Configuration
    "Settings",
    "StorageError",
    "StorageKey",
    "ThreadNotFoundError",
    "Timeouts",
    # Logging
    "bind_thread",
    "configure_logging",
    "get_logger",
    "get_settings",
]
