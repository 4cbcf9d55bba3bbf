"""Structured logging for the roundtable service.

Conversation components log through structlog with key/value context
(``thread_id``, ``agent``, ``round``, ``halt_reason``). The A2A adapter
logs through the standard library; ``configure_logging`` routes both to
stdout so one stream carries a whole turn.

Renderers:
- JSON lines in production and staging
- Colored console output everywhere else

Policy halts of the conversation loop are logged at INFO with a
``halt_reason`` key so they can be told apart from failures.
"""

import logging
import sys
from contextlib import AbstractContextManager
from typing import Any

import structlog
from structlog.types import Processor

from src.core.config import get_settings


_JSON_ENVIRONMENTS = frozenset({"production", "staging"})

# Per-request chatter from the HTTP stack
_QUIET_LOGGERS = ("httpx", "httpcore", "uvicorn.access")

_configured = False


def add_service_context(
    logger: logging.Logger,
    method_name: str,
    event_dict: dict[str, Any],
) -> dict[str, Any]:
    """Stamp every entry with the service name and environment.

    Keys already present in ``event_dict`` are left alone apart from
    ``service`` and ``environment``.
    """
    settings = get_settings()
    event_dict["service"] = settings.service_name
    event_dict["environment"] = settings.environment
    return event_dict


def _renderer(environment: str) -> list[Processor]:
    if environment in _JSON_ENVIRONMENTS:
        return [structlog.processors.format_exc_info, structlog.processors.JSONRenderer()]
    return [structlog.dev.ConsoleRenderer(colors=True)]


def configure_logging() -> None:
    """Configure structlog and stdlib logging from Settings.

    Runs once per process; later calls are no-ops.
    """
    global _configured
    if _configured:
        return

    settings = get_settings()
    level = logging.getLevelName(settings.log_level.upper())

    processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        add_service_context,
        structlog.processors.StackInfoRenderer(),
        structlog.processors.UnicodeDecoder(),
        *_renderer(settings.environment),
    ]

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(format="%(message)s", stream=sys.stdout, level=level)
    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    _configured = True


def bind_thread(thread_id: str) -> AbstractContextManager[None]:
    """Bind ``thread_id`` to every log entry emitted inside the block.

    Tasks created inside the block copy the binding, so background turns
    and verifications keep logging their thread.

    Example:
        ```python
        with bind_thread("t-1"):
            asyncio.create_task(run_turn())
        ```
    """
    return structlog.contextvars.bound_contextvars(thread_id=thread_id)


def get_logger(name: str | None = None) -> structlog.BoundLogger:
    """Structured logger for a conversation component.

    Example:
        ```python
        logger = get_logger(__name__)
        logger.info("Agent reply recorded", thread_id="abc123", agent="GeoBot", status="accepted")
        ```
    """
    return structlog.get_logger(name)
