"""Dependency injection for API routes.

The limiter and upstream client are created in the application lifespan and
kept on ``app.state``; routes reach them through these providers so tests can
swap either one via ``app.dependency_overrides``.
"""

from typing import Annotated

from fastapi import Depends, Request

from metro.api.ratelimit import FixedWindowRateLimiter
from metro.config import Settings
from metro.services.gemini import GeminiClient


def get_settings(request: Request) -> Settings:
    """Get the settings the application was created with."""
    return request.app.state.settings


def get_rate_limiter(request: Request) -> FixedWindowRateLimiter:
    """Get the process-wide rate limiter."""
    return request.app.state.rate_limiter


def get_upstream_client(request: Request) -> GeminiClient:
    """Get the shared Gemini client."""
    return request.app.state.upstream_client


# Type aliases for dependency injection
AppSettings = Annotated[Settings, Depends(get_settings)]
RateLimiter = Annotated[FixedWindowRateLimiter, Depends(get_rate_limiter)]
UpstreamClient = Annotated[GeminiClient, Depends(get_upstream_client)]
