"""Metro API - Main FastAPI application."""

import logging
import uuid
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from typing import Any

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles
from starlette.datastructures import MutableHeaders
from starlette.types import ASGIApp, Message, Receive, Scope, Send

from metro import __version__
from metro.api.exceptions import ClientFormatError, MetroError
from metro.api.ratelimit import FixedWindowRateLimiter
from metro.api.routes import chat, health
from metro.config import Settings
from metro.config import settings as app_config
from metro.logging_config import setup_logging
from metro.services.gemini import GeminiClient

logger = logging.getLogger(__name__)


# Request ID middleware for tracing
class RequestIDMiddleware:
    """Add unique request ID to each request for tracing.

    ``receive`` is passed through unwrapped so routes can rely on
    ``Request.is_disconnected``.
    """

    def __init__(self, app: ASGIApp) -> None:
        self.app = app

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        request_id = str(uuid.uuid4())[:8]
        scope.setdefault("state", {})["request_id"] = request_id

        async def send_with_request_id(message: Message) -> None:
            if message["type"] == "http.response.start":
                MutableHeaders(scope=message)["X-Request-ID"] = request_id
            await send(message)

        await self.app(scope, receive, send_with_request_id)


def create_error_response(
    status_code: int,
    message: str,
    details: Any = None,
) -> JSONResponse:
    """Create a consistent error response."""
    error: dict[str, Any] = {"message": message}
    if details is not None:
        error["details"] = details
    return JSONResponse(status_code=status_code, content={"error": error})


def build_rate_limiter(settings: Settings) -> FixedWindowRateLimiter:
    """Create the process-wide limiter from settings."""
    return FixedWindowRateLimiter(
        max_requests=settings.rate_limit_max_requests,
        window_seconds=settings.rate_limit_window_seconds,
        retention_windows=settings.rate_limit_retention_windows,
        max_clients=settings.rate_limit_max_clients,
    )


def create_app(
    settings: Settings | None = None,
    rate_limiter: FixedWindowRateLimiter | None = None,
    upstream_client: GeminiClient | None = None,
) -> FastAPI:
    """Build the application.

    The limiter and upstream client live for the whole process: they are
    created at startup (unless supplied) and the client is closed on shutdown.
    """
    settings = settings or app_config

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        """Application lifespan events."""
        setup_logging(settings)

        if rate_limiter is None:
            app.state.rate_limiter = build_rate_limiter(settings)
        else:
            app.state.rate_limiter = rate_limiter
        if upstream_client is None:
            app.state.upstream_client = GeminiClient.from_settings(settings)
        else:
            app.state.upstream_client = upstream_client

        logger.info(
            f"Starting Metro relay (model={settings.gemini_model}, "
            f"limit={settings.rate_limit_max_requests}/"
            f"{settings.rate_limit_window_seconds:g}s, "
            f"trust_proxy_headers={settings.trust_proxy_headers})"
        )
        if not settings.is_configured:
            logger.warning("⚠️  GEMINI_API_KEY is not set. Chat requests will fail.")

        yield

        logger.info("Shutting down Metro relay")
        await app.state.upstream_client.close()

    app = FastAPI(
        title="Metro",
        description="Chat assistant relay for the Gemini API",
        version=__version__,
        lifespan=lifespan,
    )
    app.state.settings = settings

    # Request ID middleware (must be added first to wrap everything)
    app.add_middleware(RequestIDMiddleware)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origin_list,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(MetroError)
    async def metro_exception_handler(request: Request, exc: MetroError) -> JSONResponse:
        """Render Metro errors as the JSON error envelope."""
        return JSONResponse(status_code=exc.status_code, content=exc.to_envelope())

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(
        request: Request, exc: RequestValidationError
    ) -> JSONResponse:
        """Handle Pydantic validation errors."""
        request_id = getattr(request.state, "request_id", None)
        detail = "; ".join(
            f"{'.'.join(str(loc) for loc in e['loc'])}: {e['msg']}" for e in exc.errors()
        )
        logger.warning(f"[{request_id}] Validation error: {detail}")
        return create_error_response(
            ClientFormatError.status_code, ClientFormatError.message
        )

    @app.exception_handler(Exception)
    async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        """Catch-all handler for unhandled exceptions."""
        request_id = getattr(request.state, "request_id", None)
        logger.error(f"[{request_id}] Unhandled error: {exc}", exc_info=True)
        return create_error_response(
            status_code=500,
            message="Internal server error",
            details=str(exc) if settings.debug else None,
        )

    app.include_router(health.router, prefix="/api")
    app.include_router(chat.router, prefix="/api")

    frontend_dir = settings.frontend_dir
    if frontend_dir is not None and frontend_dir.is_dir():
        # Serve the browser front-end (index.html at /)
        app.mount("/", StaticFiles(directory=frontend_dir, html=True), name="frontend")
    else:
        # Development mode - just show API info
        @app.get("/")
        async def root() -> dict[str, Any]:
            """Root endpoint with API info."""
            return {
                "name": "Metro",
                "version": __version__,
                "docs": "/docs",
            }

    return app


app = create_app()


def run() -> None:
    """Run the relay with uvicorn (``metro`` console script)."""
    import uvicorn

    uvicorn.run(app, host=app_config.host, port=app_config.port, log_config=None)
