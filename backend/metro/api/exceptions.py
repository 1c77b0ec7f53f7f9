"""Custom exception hierarchy for the Metro relay.

Every failure path of the relay ends in one of these exceptions, which the
application renders as a ``{"error": {"message": ..., "details": ...}}``
envelope with the exception's status code.
"""

from typing import Any

# Marks "no details" so a JSON null from upstream is still relayed
NO_DETAILS: Any = object()


class MetroError(Exception):
    """Base exception for all Metro errors."""

    status_code: int = 500
    message: str = "An unexpected error occurred"

    def __init__(
        self,
        message: str | None = None,
        details: Any = NO_DETAILS,
        status_code: int | None = None,
    ) -> None:
        self.message = message or self.__class__.message
        self.details = details
        if status_code is not None:
            self.status_code = status_code
        super().__init__(self.message)

    @property
    def has_details(self) -> bool:
        return self.details is not NO_DETAILS

    def to_envelope(self) -> dict[str, Any]:
        """Build the JSON error envelope returned to the client."""
        error: dict[str, Any] = {"message": self.message}
        if self.has_details:
            error["details"] = self.details
        return {"error": error}


# 400 Bad Request errors
class ClientFormatError(MetroError):
    """Request body is malformed or history is missing."""

    status_code = 400
    message = "Invalid request format."


# 429 Too Many Requests
class RateLimitExceededError(MetroError):
    """Client exhausted its request budget for the current window."""

    status_code = 429
    message = "Too many requests. Please try again later."


# 500 Internal Server errors
class ServerConfigError(MetroError):
    """Server is missing required configuration (upstream credential)."""

    status_code = 500
    message = "Server configuration error."


class UpstreamError(MetroError):
    """Upstream provider call failed or returned a non-success status.

    ``status_code`` mirrors the upstream status when there is one.
    """

    status_code = 500
    message = "AI Provider Error"
