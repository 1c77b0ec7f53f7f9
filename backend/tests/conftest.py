"""
Test fixtures for the Metro relay tests.

Uses FastAPI's synchronous TestClient, with the Gemini API replaced by an
httpx.MockTransport stub that records every request it receives.
"""

import json
from collections.abc import Callable, Generator
from contextlib import ExitStack
from typing import Any

import httpx
import pytest
from fastapi.testclient import TestClient

from metro.api.ratelimit import FixedWindowRateLimiter
from metro.config import Settings
from metro.main import create_app
from metro.services.gemini import GeminiClient

TEST_API_KEY = "test-api-key"

HISTORY = [
    {"role": "user", "parts": [{"text": "You are Metro, a helpful assistant."}]},
    {"role": "model", "parts": [{"text": "Understood!"}]},
    {"role": "user", "parts": [{"text": "Tell me a joke."}]},
]


def echo_handler(request: httpx.Request) -> httpx.Response:
    """Reply with the request's contents as the first candidate."""
    payload = json.loads(request.content)
    return httpx.Response(200, json={"candidates": [{"content": payload["contents"]}]})


class StubUpstream:
    """Mock transport handler that records the requests it serves."""

    def __init__(self, handler: Callable[[httpx.Request], httpx.Response] = echo_handler):
        self.handler = handler
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        return self.handler(request)

    @property
    def called(self) -> bool:
        return bool(self.requests)


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def make_settings(**overrides: Any) -> Settings:
    """Settings isolated from any local .env file."""
    values: dict[str, Any] = {"gemini_api_key": TEST_API_KEY}
    values.update(overrides)
    return Settings(_env_file=None, **values)


@pytest.fixture
def stub_upstream() -> StubUpstream:
    return StubUpstream()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def make_client(
    stub_upstream: StubUpstream,
) -> Generator[Callable[..., TestClient], None, None]:
    """Factory building a running app wired to the stub upstream.

    Keyword arguments override Settings fields; pass ``rate_limiter`` to
    inject a limiter (e.g. one driven by a FakeClock).
    """
    with ExitStack() as stack:

        def _make(
            rate_limiter: FixedWindowRateLimiter | None = None,
            **overrides: Any,
        ) -> TestClient:
            settings = make_settings(**overrides)
            upstream = GeminiClient.from_settings(
                settings, transport=httpx.MockTransport(stub_upstream)
            )
            app = create_app(settings, rate_limiter=rate_limiter, upstream_client=upstream)
            return stack.enter_context(TestClient(app, raise_server_exceptions=False))

        yield _make


@pytest.fixture
def client(make_client: Callable[..., TestClient]) -> TestClient:
    """A configured client with default rate limits."""
    return make_client()
