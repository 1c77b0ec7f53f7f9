"""Health check endpoints."""

from typing import Any

from fastapi import APIRouter

router = APIRouter(tags=["health"])


@router.get("/health")
async def health_check() -> dict[str, Any]:
    """Basic liveness check."""
    return {"status": "healthy"}
