"""Error types raised by the exporter.

Every failure of a refresh cycle is one of these, so the scheduler can catch
``ExporterError`` at the cycle boundary and keep serving stale values.
"""

from __future__ import annotations

# Longest response body excerpt included in error messages
BODY_EXCERPT_LIMIT = 512


def body_excerpt(body: str, limit: int = BODY_EXCERPT_LIMIT) -> str:
    """Shorten a response body for log and error messages."""
    if len(body) <= limit:
        return body
    return f"{body[:limit]}... ({len(body) - limit} more characters)"


class ExporterError(Exception):
    """Base class for all exporter errors."""


class ConfigurationError(ExporterError):
    """Raised when a required setting is missing or invalid."""

    def __init__(self, variable: str, message: str | None = None):
        super().__init__(message or f"Environment variable {variable} is not set")
        self.variable = variable


class AuthenticationFailed(ExporterError):
    """Raised when the login endpoint rejects the credentials."""

    def __init__(self, url: str, status: int, body: str = ""):
        super().__init__(
            f"Authentication against {url} failed with status {status}. "
            f"Response body: {body_excerpt(body)}"
        )
        self.url = url
        self.status = status
        self.body = body


class RequestFailed(ExporterError):
    """Raised when an authenticated request returns a non-success status."""

    def __init__(self, url: str, status: int, body: str = ""):
        super().__init__(
            f"Request to {url} failed with status {status}. "
            f"Response body: {body_excerpt(body)}"
        )
        self.url = url
        self.status = status
        self.body = body


class TransportError(ExporterError):
    """Raised on network level failures (DNS, connect, timeout)."""

    def __init__(self, url: str, cause: BaseException):
        detail = str(cause) or type(cause).__name__
        super().__init__(f"Network error during request to {url}: {detail}")
        self.url = url
        self.cause = cause


class MalformedResponse(ExporterError):
    """Raised when a success response does not have the expected shape."""

    def __init__(self, detail: str, url: str | None = None):
        message = f"Invalid response: {detail}"
        if url:
            message = f"Invalid response from {url}: {detail}"
        super().__init__(message)
        self.detail = detail
        self.url = url
