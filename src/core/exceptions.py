"""Custom exceptions for the roundtable service.

All exceptions are namespaced to avoid shadowing Python builtins.

Taxonomy:
- Infrastructure errors (ModelCallError, AgentResponseError, StorageError)
  are never retried and surface to the immediate caller.
- Lookup and roster errors map to 4xx responses at the HTTP layer.
- Malformed model output is NOT an error: summarizer and verifier resolve
  it with deterministic fallbacks and never raise.

Pattern: Namespaced Custom Exceptions
"""


class RoundtableError(Exception):
    """Base exception for all roundtable errors.

    All service exceptions inherit from this class to enable
    catching any of them with a single except clause.
    """

    def __init__(self, message: str, thread_id: str | None = None) -> None:
        """Initialize roundtable error.

        Args:
            message: Error description
            thread_id: Conversation thread the error belongs to, if known
        """
        self.thread_id = thread_id
        super().__init__(message)


class ModelCallError(RoundtableError):
    """Raised when a language-model completion call fails.

    Covers non-2xx responses, transport failures and completions
    that carry no text.
    """

    def __init__(
        self,
        message: str,
        endpoint: str,
        status_code: int | None = None,
    ) -> None:
        """Initialize model call error.

        Args:
            message: Error description
            endpoint: Completion endpoint that was called
            status_code: HTTP status code if a response was received
        """
        self.endpoint = endpoint
        self.status_code = status_code
        super().__init__(message)


class AgentResponseError(RoundtableError):
    """Raised when a responder agent fails to produce a reply."""

    def __init__(
        self,
        message: str,
        agent_name: str,
        cause: Exception | None = None,
        thread_id: str | None = None,
    ) -> None:
        """Initialize agent response error.

        Args:
            message: Error description
            agent_name: Persona name of the failing agent
            cause: Original exception that caused this error
            thread_id: Conversation thread of the failed turn
        """
        self.agent_name = agent_name
        self.cause = cause
        if cause:
            self.__cause__ = cause
        super().__init__(message, thread_id)


class ThreadNotFoundError(RoundtableError):
    """Raised when a thread id is not registered."""

    def __init__(self, thread_id: str) -> None:
        super().__init__(f"Thread '{thread_id}' not found", thread_id)


class MessageNotFoundError(RoundtableError):
    """Raised when a message id is not present in a conversation history."""

    def __init__(self, message_id: str, thread_id: str | None = None) -> None:
        self.message_id = message_id
        super().__init__(f"Message '{message_id}' not found", thread_id)


class AgentNotFoundError(RoundtableError):
    """Raised when a persona is not present in a thread roster."""

    def __init__(self, identity: str, thread_id: str | None = None) -> None:
        self.identity = identity
        super().__init__(f"Agent '{identity}' not found in roster", thread_id)


class DuplicateAgentError(RoundtableError):
    """Raised when a persona with the same name or endpoint is already on the roster."""

    def __init__(self, value: str, field: str = "endpoint", thread_id: str | None = None) -> None:
        self.value = value
        self.field = field
        super().__init__(f"Agent with {field} '{value}' already in roster", thread_id)


class StorageError(RoundtableError):
    """Raised when the key-value store collaborator fails."""

    def __init__(self, message: str, key: str | None = None) -> None:
        self.key = key
        super().__init__(message)
