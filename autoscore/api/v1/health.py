"""
Health endpoint.
"""

from __future__ import annotations

from fastapi import APIRouter, Request

router = APIRouter(prefix="/api/v1/health", tags=["health"])


@router.get("")
async def health(request: Request) -> dict:
    service = getattr(request.app.state, "auto_score", None)
    return {
        "status": "ok",
        "auto_score_running": bool(service and service.started),
    }
