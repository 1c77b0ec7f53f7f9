"""Rate limiting for the chat relay.

A fixed-window counter per client identifier. Each identifier gets a budget of
``max_requests`` calls per ``window_seconds``; the window restarts on the first
call made after the previous one has fully elapsed.
"""

import logging
import threading
import time
from collections import OrderedDict
from collections.abc import Callable
from dataclasses import dataclass, replace

from fastapi import Request
from slowapi.util import get_remote_address

logger = logging.getLogger(__name__)

# Rate limit defaults
WINDOW_SECONDS = 60.0
MAX_REQUESTS = 20  # LLM calls are expensive
RETENTION_WINDOWS = 5
MAX_CLIENTS = 10_000

FORWARDED_FOR_HEADER = "x-forwarded-for"


@dataclass
class ClientWindow:
    """Request count for one client identifier in its current window."""

    count: int
    window_start: float
    last_seen: float


class FixedWindowRateLimiter:
    """Per-identifier fixed-window rate limiter.

    The check-and-update in ``admit`` runs under a lock and never awaits, so
    concurrent callers (asyncio tasks or threadpool workers) cannot both see
    room in the budget and both be admitted.

    Windows idle for more than ``retention_windows`` window lengths are swept
    lazily (at most once per window), and the map never holds more than
    ``max_clients`` identifiers; the least recently seen ones go first.
    """

    def __init__(
        self,
        max_requests: int = MAX_REQUESTS,
        window_seconds: float = WINDOW_SECONDS,
        retention_windows: int = RETENTION_WINDOWS,
        max_clients: int = MAX_CLIENTS,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if max_requests < 1:
            raise ValueError("max_requests must be at least 1")
        if window_seconds <= 0:
            raise ValueError("window_seconds must be positive")
        if retention_windows < 1:
            raise ValueError("retention_windows must be at least 1")
        if max_clients < 1:
            raise ValueError("max_clients must be at least 1")

        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self.retention_windows = retention_windows
        self.max_clients = max_clients
        self._clock = clock
        # Ordered by last_seen, oldest first
        self._windows: OrderedDict[str, ClientWindow] = OrderedDict()
        self._lock = threading.Lock()
        self._last_sweep: float | None = None

    def __len__(self) -> int:
        with self._lock:
            return len(self._windows)

    def admit(self, identifier: str, now: float | None = None) -> bool:
        """Record a request from ``identifier`` and decide whether it may proceed.

        The attempt is counted whether or not it is admitted.
        """
        if now is None:
            now = self._clock()

        with self._lock:
            self._maybe_sweep(now)

            window = self._windows.get(identifier)
            if window is None or now - window.window_start > self.window_seconds:
                window = ClientWindow(count=1, window_start=now, last_seen=now)
                self._windows[identifier] = window
            else:
                window.count += 1
                window.last_seen = now
            self._windows.move_to_end(identifier)

            while len(self._windows) > self.max_clients:
                evicted, _ = self._windows.popitem(last=False)
                logger.debug(f"Evicted rate limit window for {evicted!r} (capacity)")

            return window.count <= self.max_requests

    def get_window(self, identifier: str) -> ClientWindow | None:
        """Return a copy of the current window for ``identifier``, if any."""
        with self._lock:
            window = self._windows.get(identifier)
            return replace(window) if window is not None else None

    def sweep(self, now: float | None = None) -> int:
        """Drop windows idle longer than the retention period.

        Returns:
            Number of evicted identifiers.
        """
        if now is None:
            now = self._clock()
        with self._lock:
            return self._sweep(now)

    def reset(self) -> None:
        """Forget every tracked identifier."""
        with self._lock:
            self._windows.clear()
            self._last_sweep = None

    def _maybe_sweep(self, now: float) -> None:
        if self._last_sweep is None:
            self._last_sweep = now
            return
        if now - self._last_sweep >= self.window_seconds:
            self._sweep(now)

    def _sweep(self, now: float) -> int:
        cutoff = now - self.retention_windows * self.window_seconds
        evicted = 0
        while self._windows:
            identifier, window = next(iter(self._windows.items()))
            if window.last_seen >= cutoff:
                break
            del self._windows[identifier]
            evicted += 1
        self._last_sweep = now
        if evicted:
            logger.debug(f"Swept {evicted} idle rate limit window(s)")
        return evicted


def get_client_identifier(request: Request, trust_proxy_headers: bool) -> str:
    """Identify the caller for rate limiting.

    With ``trust_proxy_headers`` the X-Forwarded-For value is used as-is when
    present; otherwise the transport peer address.
    """
    if trust_proxy_headers:
        forwarded = request.headers.get(FORWARDED_FOR_HEADER, "").strip()
        if forwarded:
            return forwarded
    return get_remote_address(request)
