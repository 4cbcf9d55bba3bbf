"""
Model-Call Scheduler - bounded-concurrency FIFO for language-model calls.

Every outbound completion call in the process (summarizer and verifier,
across all conversations) goes through one scheduler:

- Jobs are queued FIFO and dispatched in submission order.
- At most ``max_concurrent`` calls are in flight at any time.
- Calls are not retried. A failure is delivered to exactly the caller
  that submitted the job and does not affect other jobs.

All counters are touched only from the event loop, so increments and
decrements are atomic with respect to each other.
"""

from __future__ import annotations

import asyncio
from collections import deque
from dataclasses import dataclass
from typing import Any, Awaitable, Callable

import httpx

from src.core.constants import DEFAULT_MAX_CONCURRENT_REQUESTS, ModelBudgets
from src.core.exceptions import ModelCallError
from src.core.logging import get_logger


logger = get_logger(__name__)


@dataclass(frozen=True)
class CompletionRequest:
    """One chat-completion call."""

    endpoint: str
    model: str
    turns: list[dict[str, str]]
    max_tokens: int = ModelBudgets.DEFAULT_MAX_TOKENS
    temperature: float = ModelBudgets.DEFAULT_TEMPERATURE

    def to_payload(self) -> dict[str, Any]:
        return {
            "model": self.model,
            "messages": self.turns,
            "max_tokens": self.max_tokens,
            "temperature": self.temperature,
            "stream": False,
        }


CompletionTransport = Callable[[CompletionRequest], Awaitable[str]]


class HttpCompletionTransport:
    """Executes a CompletionRequest against an OpenAI-style endpoint.

    Accepts both chat (``choices[0].message.content``) and legacy
    completion (``choices[0].text``) response shapes.
    """

    def __init__(self, client: httpx.AsyncClient) -> None:
        self._client = client

    async def __call__(self, request: CompletionRequest) -> str:
        try:
            response = await self._client.post(request.endpoint, json=request.to_payload())
        except httpx.HTTPError as e:
            raise ModelCallError(
                f"Completion request failed: {e}",
                endpoint=request.endpoint,
            ) from e

        if response.status_code < 200 or response.status_code >= 300:
            raise ModelCallError(
                f"API request failed: {response.status_code} {response.reason_phrase} - {response.text}",
                endpoint=request.endpoint,
                status_code=response.status_code,
            )

        try:
            data = response.json()
        except ValueError as e:
            raise ModelCallError(
                "Completion response is not JSON",
                endpoint=request.endpoint,
                status_code=response.status_code,
            ) from e

        text = ""
        choices = data.get("choices") if isinstance(data, dict) else None
        if choices:
            choice = choices[0] or {}
            text = (choice.get("message") or {}).get("content") or choice.get("text") or ""

        if not text:
            raise ModelCallError(
                "No text in API response",
                endpoint=request.endpoint,
                status_code=response.status_code,
            )
        return text.strip()


@dataclass
class _Job:
    request: CompletionRequest
    future: asyncio.Future[str]


class ModelCallScheduler:
    """Bounded-concurrency FIFO scheduler for model calls.

    Constructed once by the application entry point and shared by every
    conversation.

    Example:
        ```python
        scheduler = ModelCallScheduler(HttpCompletionTransport(client), max_concurrent=4)
        text = await scheduler.submit(url, "model", [{"role": "user", "content": "hi"}], 600, 0.3)
        ```
    """

    def __init__(
        self,
        transport: CompletionTransport,
        max_concurrent: int = DEFAULT_MAX_CONCURRENT_REQUESTS,
    ) -> None:
        if max_concurrent < 1:
            raise ValueError("max_concurrent must be >= 1")
        self._transport = transport
        self._max_concurrent = max_concurrent
        self._queue: deque[_Job] = deque()
        self._active = 0
        self._tasks: set[asyncio.Task[None]] = set()

    @property
    def max_concurrent(self) -> int:
        return self._max_concurrent

    @property
    def active(self) -> int:
        return self._active

    @property
    def queue_length(self) -> int:
        return len(self._queue)

    async def submit(
        self,
        endpoint: str,
        model: str,
        turns: list[dict[str, str]],
        max_tokens: int = ModelBudgets.DEFAULT_MAX_TOKENS,
        temperature: float = ModelBudgets.DEFAULT_TEMPERATURE,
    ) -> str:
        """Queue a completion call and wait for its text.

        Raises:
            ModelCallError: If the call fails (only for this caller).
        """
        request = CompletionRequest(
            endpoint=endpoint,
            model=model,
            turns=turns,
            max_tokens=max_tokens,
            temperature=temperature,
        )
        job = _Job(request=request, future=asyncio.get_running_loop().create_future())
        self._queue.append(job)
        logger.debug("Queued model call", queue_length=len(self._queue), active=self._active)

        self._dispatch()
        return await job.future

    def _dispatch(self) -> None:
        while self._active < self._max_concurrent and self._queue:
            job = self._queue.popleft()
            if job.future.done():
                # submitter went away (cancelled) before a slot was free
                continue
            self._active += 1
            logger.debug("Dispatching model call", queue_length=len(self._queue), active=self._active)
            task = asyncio.create_task(self._execute(job))
            self._tasks.add(task)
            task.add_done_callback(self._tasks.discard)

    async def _execute(self, job: _Job) -> None:
        try:
            text = await self._transport(job.request)
        except asyncio.CancelledError:
            if not job.future.done():
                job.future.cancel()
            raise
        except Exception as e:
            logger.warning("Model call failed", endpoint=job.request.endpoint, error=str(e))
            if not job.future.done():
                job.future.set_exception(e)
        else:
            if not job.future.done():
                job.future.set_result(text)
        finally:
            self._active -= 1
            logger.debug("Model call completed", queue_length=len(self._queue), active=self._active)
            self._dispatch()

    def status(self) -> dict[str, int]:
        """Current queue status."""
        return {
            "queue_length": len(self._queue),
            "active_requests": self._active,
            "max_concurrent": self._max_concurrent,
        }

    async def aclose(self) -> None:
        """Cancel queued and in-flight calls."""
        while self._queue:
            job = self._queue.popleft()
            if not job.future.done():
                job.future.cancel()
        for task in list(self._tasks):
            task.cancel()
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)
