"""API routes module for the roundtable service.

This module exports all API routers for registration in main.py.
"""

from src.api.routes.health import router as health_router
from src.api.routes.threads import router as threads_router


__all__ = [
    "health_router",
    "threads_router",
]
