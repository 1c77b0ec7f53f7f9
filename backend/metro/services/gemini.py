"""Gemini generateContent client."""

import asyncio
import logging
from dataclasses import dataclass
from typing import Any

import httpx

from metro.api.exceptions import ServerConfigError, UpstreamError
from metro.config import Settings

logger = logging.getLogger(__name__)

UPSTREAM_TIMEOUT_DETAILS = "Upstream request timed out"


@dataclass
class UpstreamResponse:
    """Successful upstream reply, relayed to the caller unchanged."""

    status_code: int
    body: Any


def _error_details(response: httpx.Response) -> Any:
    """Upstream error body, parsed as JSON when possible."""
    try:
        return response.json()
    except ValueError:
        return response.text


class GeminiClient:
    """Forwards conversation history to the Gemini API.

    One client (and one connection pool) is shared for the lifetime of the
    process; call ``close`` on shutdown.
    """

    def __init__(
        self,
        api_key: str | None,
        model: str,
        base_url: str,
        timeout: float,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.api_key = api_key
        self.model = model
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.http_client = httpx.AsyncClient(timeout=timeout, transport=transport)

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> "GeminiClient":
        return cls(
            api_key=settings.gemini_api_key,
            model=settings.gemini_model,
            base_url=settings.gemini_base_url,
            timeout=settings.upstream_timeout,
            transport=transport,
        )

    @property
    def is_configured(self) -> bool:
        return bool(self.api_key)

    @property
    def url(self) -> str:
        return f"{self.base_url}/models/{self.model}:generateContent"

    async def close(self) -> None:
        """Close the HTTP client."""
        await self.http_client.aclose()

    async def generate_content(self, history: list[Any]) -> UpstreamResponse:
        """Send the conversation history as the request ``contents``.

        Raises:
            ServerConfigError: No API key configured; nothing is sent.
            UpstreamError: Transport failure, timeout, or non-2xx reply.
        """
        if not self.api_key:
            raise ServerConfigError()

        try:
            # httpx timeouts are per phase; this bounds the whole exchange
            async with asyncio.timeout(self.timeout):
                response = await self.http_client.post(
                    self.url,
                    params={"key": self.api_key},
                    json={"contents": history},
                )
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            details = _error_details(e.response)
            logger.error(
                f"Gemini API error: status={e.response.status_code} details={details}"
            )
            raise UpstreamError(details=details, status_code=e.response.status_code) from e
        except TimeoutError as e:
            logger.error(f"Gemini API exceeded {self.timeout:g}s total")
            raise UpstreamError(details=UPSTREAM_TIMEOUT_DETAILS) from e
        except httpx.TimeoutException as e:
            logger.error(f"Gemini API timed out: {e!r}")
            raise UpstreamError(details=str(e) or UPSTREAM_TIMEOUT_DETAILS) from e
        except httpx.HTTPError as e:
            logger.error(f"Gemini API request failed: {e!r}")
            raise UpstreamError(details=str(e) or e.__class__.__name__) from e

        try:
            body = response.json()
        except ValueError:
            logger.error("Gemini API returned a non-JSON body")
            raise UpstreamError(details=response.text)

        return UpstreamResponse(status_code=response.status_code, body=body)
