"""Chat relay endpoints."""

import asyncio
import contextlib
import json
import logging
from collections.abc import Awaitable
from typing import Any

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse, Response

from metro.api.deps import AppSettings, RateLimiter, UpstreamClient
from metro.api.exceptions import (
    ClientFormatError,
    RateLimitExceededError,
    ServerConfigError,
)
from metro.api.ratelimit import get_client_identifier
from metro.config import PROVIDER_NAME
from metro.services.gemini import UpstreamResponse

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/chat", tags=["chat"])

# How often to check whether the caller is still connected (seconds)
DISCONNECT_POLL_INTERVAL = 0.5

# Non-standard "client closed request" status, never seen by the caller
CLIENT_CLOSED_REQUEST = 499


@router.get("/status")
async def get_chat_status(upstream: UpstreamClient) -> dict[str, Any]:
    """Check if the upstream provider is configured.

    Returns configuration status so the frontend can show
    appropriate warnings before the user tries to chat.
    """
    return {
        "configured": upstream.is_configured,
        "provider": PROVIDER_NAME,
        "model": upstream.model,
    }


async def _read_history(request: Request) -> list[Any]:
    """Parse the body and return its ``history`` list."""
    try:
        payload = await request.json()
    except (json.JSONDecodeError, UnicodeDecodeError):
        raise ClientFormatError()

    if not isinstance(payload, dict):
        raise ClientFormatError()
    history = payload.get("history")
    if not isinstance(history, list):
        raise ClientFormatError()
    return history


async def _await_unless_disconnected(
    request: Request,
    call: Awaitable[UpstreamResponse],
) -> UpstreamResponse | None:
    """Await the upstream call, cancelling it if the caller goes away.

    Returns None when the caller disconnected first.
    """
    task = asyncio.ensure_future(call)
    try:
        while True:
            done, _ = await asyncio.wait({task}, timeout=DISCONNECT_POLL_INTERVAL)
            if done:
                return task.result()
            if await request.is_disconnected():
                return None
    finally:
        if not task.done():
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task


@router.post("", response_model=None)
async def chat(
    request: Request,
    settings: AppSettings,
    limiter: RateLimiter,
    upstream: UpstreamClient,
) -> Response:
    """
    Relay a conversation to the upstream provider.

    The body must be ``{"history": [{"role": ..., "parts": [{"text": ...}]}]}``.
    The history is forwarded verbatim as the upstream ``contents`` and the
    upstream JSON reply is returned unchanged.
    """
    request_id = getattr(request.state, "request_id", None)
    client_id = get_client_identifier(request, settings.trust_proxy_headers)

    if not limiter.admit(client_id):
        logger.warning(
            f"Rate limit exceeded for {client_id}",
            extra={"request_id": request_id, "client": client_id},
        )
        raise RateLimitExceededError()

    history = await _read_history(request)

    if not upstream.is_configured:
        logger.error(
            "GEMINI_API_KEY is not configured",
            extra={"request_id": request_id},
        )
        raise ServerConfigError()

    logger.info(
        f"Forwarding {len(history)} turn(s) to {upstream.model}",
        extra={"request_id": request_id, "client": client_id},
    )
    result = await _await_unless_disconnected(
        request, upstream.generate_content(history)
    )
    if result is None:
        logger.info(
            "Client disconnected, upstream call cancelled",
            extra={"request_id": request_id, "client": client_id},
        )
        return Response(status_code=CLIENT_CLOSED_REQUEST)

    return JSONResponse(status_code=result.status_code, content=result.body)
