"""Health check API routes.

Provides REST API endpoints for health monitoring and readiness checks.
The main health response also reports the model-call scheduler queue
(queue length, in-flight requests, concurrency limit).
"""

from __future__ import annotations

import os
from datetime import UTC, datetime
from enum import Enum
from typing import Any

from fastapi import APIRouter, Request
from pydantic import BaseModel, Field

from src.core.logging import get_logger
from src.storage.kv import RedisKeyValueStore


logger = get_logger(__name__)


# =============================================================================
# Router Configuration
# =============================================================================

router = APIRouter(
    prefix="/health",
    tags=["Health"],
)


# =============================================================================
# Enums and Constants
# =============================================================================

class HealthStatus(str, Enum):
    """Health status enum."""

    HEALTHY = "healthy"
    DEGRADED = "degraded"
    UNHEALTHY = "unhealthy"


class DependencyStatus(str, Enum):
    """Dependency status enum."""

    UP = "up"
    DOWN = "down"
    UNKNOWN = "unknown"


SERVICE_NAME = "agent-roundtable"
SERVICE_VERSION = os.environ.get("SERVICE_VERSION", "0.1.0")


# =============================================================================
# Response Models
# =============================================================================

class DependencyHealth(BaseModel):
    """Health status for a single dependency."""

    name: str = Field(..., description="Dependency name")
    status: DependencyStatus = Field(..., description="Current status")
    message: str | None = Field(
        default=None,
        description="Optional status message",
    )


class SchedulerStatus(BaseModel):
    """Model-call scheduler snapshot."""

    queue_length: int = Field(..., description="Jobs waiting for a slot")
    active_requests: int = Field(..., description="Model calls in flight")
    max_concurrent: int = Field(..., description="Concurrency limit")


class HealthResponse(BaseModel):
    """Response model for health check.

    Attributes:
        status: Overall service status
        service: Service name
        version: Service version
        timestamp: Check timestamp (ISO format)
        uptime_seconds: Service uptime in seconds
        threads: Number of registered threads
        scheduler: Model-call queue status
        dependencies: Health status of dependencies
    """

    status: HealthStatus = Field(
        default=HealthStatus.HEALTHY,
        description="Overall service status",
    )
    service: str = Field(
        default=SERVICE_NAME,
        description="Service name",
    )
    version: str = Field(
        default=SERVICE_VERSION,
        description="Service version",
    )
    timestamp: str = Field(
        default_factory=lambda: datetime.now(UTC).isoformat(),
        description="Check timestamp",
    )
    uptime_seconds: float | None = Field(
        default=None,
        description="Service uptime in seconds",
    )
    threads: int = Field(default=0, description="Registered threads")
    scheduler: SchedulerStatus | None = Field(
        default=None,
        description="Model-call queue status",
    )
    dependencies: list[DependencyHealth] = Field(
        default_factory=list,
        description="Health status of dependencies",
    )


class ReadinessResponse(BaseModel):
    """Response model for readiness check."""

    ready: bool = Field(
        default=True,
        description="Whether service is ready",
    )
    checks: dict[str, bool] = Field(
        default_factory=dict,
        description="Individual check results",
    )


class LivenessResponse(BaseModel):
    """Response model for liveness check."""

    alive: bool = Field(
        default=True,
        description="Whether service is alive",
    )
    timestamp: str = Field(
        default_factory=lambda: datetime.now(UTC).isoformat(),
        description="Check timestamp",
    )


# =============================================================================
# Service Start Time
# =============================================================================

_service_start_time: datetime | None = None


def set_service_start_time(start_time: datetime | None = None) -> None:
    """Set the service start time for uptime calculation."""
    global _service_start_time
    _service_start_time = start_time or datetime.now(UTC)


def get_uptime_seconds() -> float | None:
    if _service_start_time is None:
        return None
    return (datetime.now(UTC) - _service_start_time).total_seconds()


# =============================================================================
# Dependency Checks
# =============================================================================

async def check_store(store: Any) -> DependencyHealth:
    """Check the key-value store.

    Only Redis has a remote dependency to check; the in-memory store is
    always up.
    """
    if store is None:
        return DependencyHealth(name="store", status=DependencyStatus.UNKNOWN, message="Not configured")
    if isinstance(store, RedisKeyValueStore):
        if await store.ping():
            return DependencyHealth(name="redis", status=DependencyStatus.UP)
        return DependencyHealth(name="redis", status=DependencyStatus.DOWN, message="PING failed")
    return DependencyHealth(name="memory-store", status=DependencyStatus.UP)


def calculate_overall_status(dependencies: list[DependencyHealth]) -> HealthStatus:
    """Calculate overall health status from dependencies."""
    if not dependencies:
        return HealthStatus.HEALTHY

    if any(d.status == DependencyStatus.DOWN for d in dependencies):
        return HealthStatus.UNHEALTHY
    if any(d.status == DependencyStatus.UNKNOWN for d in dependencies):
        return HealthStatus.DEGRADED
    return HealthStatus.HEALTHY


# =============================================================================
# API Endpoints
# =============================================================================

@router.get(
    "",
    response_model=HealthResponse,
    summary="Health check",
    description="Returns service status, scheduler queue status and dependencies.",
)
async def health_check(request: Request) -> HealthResponse:
    state = request.app.state
    registry = getattr(state, "registry", None)
    scheduler = getattr(state, "scheduler", None)

    dependencies = [await check_store(getattr(state, "store", None))]

    return HealthResponse(
        status=calculate_overall_status(dependencies),
        uptime_seconds=get_uptime_seconds(),
        threads=len(registry) if registry is not None else 0,
        scheduler=SchedulerStatus(**scheduler.status()) if scheduler is not None else None,
        dependencies=dependencies,
    )


@router.get(
    "/ready",
    response_model=ReadinessResponse,
    summary="Readiness check",
    description="Returns whether the service is ready to accept traffic.",
)
async def readiness_check(request: Request) -> ReadinessResponse:
    """Ready once the registry has been rehydrated and the store answers."""
    state = request.app.state
    store_health = await check_store(getattr(state, "store", None))
    checks = {
        "registry_loaded": getattr(state, "registry", None) is not None,
        "store": store_health.status != DependencyStatus.DOWN,
    }
    return ReadinessResponse(ready=all(checks.values()), checks=checks)


@router.get(
    "/live",
    response_model=LivenessResponse,
    summary="Liveness check",
    description="Returns whether the service is alive.",
)
async def liveness_check() -> LivenessResponse:
    return LivenessResponse(
        alive=True,
        timestamp=datetime.now(UTC).isoformat(),
    )


__all__ = [
    "DependencyHealth",
    "DependencyStatus",
    "HealthResponse",
    "HealthStatus",
    "LivenessResponse",
    "ReadinessResponse",
    "SchedulerStatus",
    "calculate_overall_status",
    "check_store",
    "get_uptime_seconds",
    "router",
    "set_service_start_time",
]
