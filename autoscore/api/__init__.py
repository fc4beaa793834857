"""
API package for the auto-score backend.

Aggregates the versioned routers under ``/api/v1``.
"""

from fastapi import APIRouter

from .v1.automation import router as automation_router
from .v1.health import router as health_router

api_router = APIRouter()
api_router.include_router(health_router)
api_router.include_router(automation_router)
