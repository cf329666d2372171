"""
Upstream API access: error taxonomy, HTTP transport, backoff tracking and provider clients.

Provider clients live in nowscrobbling.api.lastfm and nowscrobbling.api.trakt.
"""
from .errors import ApiError, MalformedResponse, NetworkError, RateLimited, UpstreamError

__all__ = [
    "ApiError",
    "MalformedResponse",
    "NetworkError",
    "RateLimited",
    "UpstreamError",
]
