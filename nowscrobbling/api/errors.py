"""Upstream failure taxonomy. A 304 is not an error: producers return NOT_MODIFIED."""
from typing import Optional


class ApiError(Exception):
    """Base class for every upstream failure."""

    def __init__(self, message: str, url: Optional[str] = None, status_code: int = 0):
        super().__init__(message)
        self.message = message
        self.url = url
        self.status_code = status_code


class NetworkError(ApiError):
    """Timeout or connection failure, after local retries."""


class UpstreamError(ApiError):
    """4xx/5xx answer from the provider."""


class RateLimited(UpstreamError):
    """429 (or the provider's equivalent), or a local cooldown still running."""

    def __init__(self, message: str, url: Optional[str] = None, retry_after: int = 0):
        super().__init__(message, url=url, status_code=429)
        self.retry_after = retry_after


class MalformedResponse(ApiError):
    """Body that is not the JSON shape we expect."""

    def __init__(self, message: str, url: Optional[str] = None, status_code: int = 0, body: str = ""):
        super().__init__(message, url=url, status_code=status_code)
        self.body = body[:200]
