"""HTTP client factory for outbound calls.

Two kinds of collaborators are reached over HTTP:
- the language-model completion endpoint (via the model-call scheduler)
- responder agents (A2A JSON-RPC endpoints)

Both share one pooled httpx.AsyncClient configured from Settings. The
core imposes no timeout of its own; the client's timeout is the only
bound on a hung call.

Pattern: Factory Pattern
"""

from contextlib import asynccontextmanager
from typing import Any, AsyncGenerator

import httpx

from src.core.config import Settings, get_settings
from src.core.logging import get_logger


logger = get_logger(__name__)


class HTTPClientFactory:
    """Factory for creating HTTP clients to model and agent endpoints.

    Provides centralized client creation with:
    - Consistent timeout configuration
    - TLS verification policy (self-signed endpoints are common)
    - Connection pooling

    Example:
        ```python
        factory = HTTPClientFactory(settings)
        async with factory.get_client() as client:
            response = await client.post(url, json=payload)
        ```
    """

    def __init__(self, settings: Settings | None = None) -> None:
        """Initialize the HTTP client factory.

        Args:
            settings: Application settings. Uses get_settings() if not provided.
        """
        self._settings = settings or get_settings()

    def _client_kwargs(self, timeout: float | None, **kwargs: Any) -> dict[str, Any]:
        request_timeout = timeout or self._settings.http_timeout_seconds
        options: dict[str, Any] = {
            "timeout": httpx.Timeout(request_timeout),
            "verify": self._settings.verify_tls,
        }
        options.update(kwargs)
        return options

    @asynccontextmanager
    async def get_client(
        self,
        timeout: float | None = None,
        **kwargs: Any,
    ) -> AsyncGenerator[httpx.AsyncClient, None]:
        """Get a short-lived HTTP client.

        Args:
            timeout: Request timeout in seconds. Uses settings default if not specified.
            **kwargs: Additional arguments passed to httpx.AsyncClient.

        Yields:
            Configured httpx.AsyncClient instance.
        """
        options = self._client_kwargs(timeout, **kwargs)
        logger.debug("Creating HTTP client", timeout=options["timeout"].read)
        async with httpx.AsyncClient(**options) as client:
            yield client

    def create_client(
        self,
        timeout: float | None = None,
        **kwargs: Any,
    ) -> httpx.AsyncClient:
        """Create a standalone HTTP client (caller manages lifecycle).

        Args:
            timeout: Request timeout in seconds.
            **kwargs: Additional arguments passed to httpx.AsyncClient.

        Returns:
            Configured httpx.AsyncClient instance.

        Warning:
            Caller is responsible for calling `await client.aclose()`.
        """
        return httpx.AsyncClient(**self._client_kwargs(timeout, **kwargs))
