"""
Main entry point for the agent-roundtable service.

Creates the FastAPI application instance for uvicorn.

Process-scoped services are constructed once in the lifespan and
injected through ``app.state``:
    httpx client -> HttpCompletionTransport -> ModelCallScheduler
    httpx client -> A2AParticipantAdapter
    KeyValueStore (redis or memory)
    ThreadRegistry (rehydrated from the store before serving)
"""

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from src.api.error_handlers import register_error_handlers
from src.api.routes.health import router as health_router
from src.api.routes.health import set_service_start_time
from src.api.routes.threads import router as threads_router
from src.conversation.registry import ThreadRegistry
from src.conversation.scheduler import HttpCompletionTransport, ModelCallScheduler
from src.core.config import get_settings
from src.core.http import HTTPClientFactory
from src.core.logging import configure_logging, get_logger
from src.participants.a2a_participant import A2AParticipantAdapter
from src.storage.kv import create_store


# Configure structured logging on module load
configure_logging()
logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan manager.

    On startup: build the scheduler, agent adapter, store and registry,
    then rehydrate persisted threads.
    On shutdown: stop conversation work and close clients.
    """
    settings = get_settings()
    logger.info(
        "Starting agent-roundtable service",
        port=settings.port,
        llm_api_url=settings.llm_api_url,
        max_concurrent=settings.max_concurrent_requests,
    )
    set_service_start_time()

    http_factory = HTTPClientFactory(settings)
    model_client = http_factory.create_client()
    agent_client = http_factory.create_client()

    scheduler = ModelCallScheduler(
        HttpCompletionTransport(model_client),
        max_concurrent=settings.max_concurrent_requests,
    )
    responder = A2AParticipantAdapter(client=agent_client)
    store = create_store(settings)
    registry = ThreadRegistry(settings, scheduler, responder, store)

    loaded = await registry.load()
    logger.info("Registry ready", threads=loaded)

    app.state.scheduler = scheduler
    app.state.store = store
    app.state.registry = registry

    yield

    logger.info("Shutting down agent-roundtable service")
    await registry.aclose()
    await scheduler.aclose()
    await responder.close()
    await agent_client.aclose()
    await model_client.aclose()
    await store.close()


def create_app() -> FastAPI:
    """Create and configure the FastAPI application.

    Registers:
    - threads_router: /threads REST surface and SSE feed
    - health_router: GET /health, /health/ready, /health/live
    """
    settings = get_settings()
    app = FastAPI(
        title="Agent Roundtable",
        description="Turn-taking orchestration between one human and a roster of A2A agents",
        version="0.1.0",
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.allowed_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    register_error_handlers(app)

    app.include_router(threads_router)
    app.include_router(health_router)

    return app


# Create application instance
app = create_app()
