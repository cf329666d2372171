"""
Shared plumbing for provider clients: URL/key building, cached fetch and the request executor.
"""
import json
import logging
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional
from urllib.parse import urlencode

from nowscrobbling.cache import (
    NOT_MODIFIED,
    CacheManager,
    CacheResult,
    ETagManager,
    FetchContext,
    Service,
    make_cache_key,
)
from nowscrobbling.metrics import MetricsRecorder

from .errors import ApiError, MalformedResponse, NetworkError, RateLimited, UpstreamError
from .http import HttpClient, HttpResponse, redact
from .rate_limiter import HTTP_TOO_MANY_REQUESTS, RateLimiter

logger = logging.getLogger("api.base")

USER_AGENT = "NowScrobbling/2.0 (+python)"


@dataclass
class ConnectionResult:
    """Outcome of a credentials/connectivity check."""
    status: str  # "success" | "warning" | "error"
    message: str
    status_code: int = 0

    @property
    def ok(self) -> bool:
        return self.status == "success"

    @classmethod
    def success(cls, message: str, status_code: int = 200) -> "ConnectionResult":
        return cls("success", message, status_code)

    @classmethod
    def warning(cls, message: str, status_code: int = 0) -> "ConnectionResult":
        return cls("warning", message, status_code)

    @classmethod
    def error(cls, message: str, status_code: int = 0) -> "ConnectionResult":
        return cls("error", message, status_code)

    def to_dict(self) -> dict:
        return {"status": self.status, "message": self.message, "statusCode": self.status_code}


class BaseApiClient:
    """
    Base class for Last.fm and Trakt.

    Subclasses set `service`, provide default headers and credentials, and may
    hook into check_payload() to turn in-band error bodies into exceptions.
    """

    service: Service = Service.GENERIC

    def __init__(
        self,
        cache: CacheManager,
        rate_limiter: RateLimiter,
        etags: ETagManager,
        metrics: MetricsRecorder,
        http: HttpClient,
        base_url: str,
        default_ttl: int = 300,
        clock: Callable[[], float] = time.time,
    ):
        self.cache = cache
        self.rate_limiter = rate_limiter
        self.etags = etags
        self.metrics = metrics
        self.http = http
        self.base_url = base_url
        self.default_ttl = default_ttl
        self._clock = clock

    # ----- subclass hooks -----

    def is_configured(self) -> bool:
        return True

    def default_headers(self) -> Dict[str, str]:
        return {"Accept": "application/json", "User-Agent": USER_AGENT}

    def request_params(self, params: Dict[str, Any]) -> Dict[str, Any]:
        """Query parameters actually sent; credentials are added here, never to the cache key."""
        return dict(params)

    def check_payload(self, url: str, payload: Any) -> None:
        """Raise an ApiError for bodies that signal failure with a 2xx status."""

    def connection_test_endpoint(self) -> str:
        return ""

    def connection_test_params(self) -> Dict[str, Any]:
        return {}

    # ----- builders -----

    def build_url(self, endpoint: str, params: Optional[Dict[str, Any]] = None) -> str:
        url = self.base_url.rstrip("/") + "/" + endpoint.lstrip("/")
        if params:
            url += "?" + urlencode({k: v for k, v in params.items() if v is not None})
        return url

    def build_cache_key(self, endpoint: str, params: Optional[Dict[str, Any]] = None) -> str:
        base = f"{self.service.value}_{endpoint.strip('/').replace('/', '_')}".rstrip("_")
        return make_cache_key(base, params)

    # ----- cached fetch -----

    def cached(self, endpoint: str, params: Optional[Dict[str, Any]] = None) -> Any:
        """Last stored payload (primary, else fallback) without fetching or counting a hit."""
        key = self.build_cache_key(endpoint, dict(params or {}))
        entry = self.cache.peek(key) or self.cache.peek_fallback(key)
        return entry.value if entry is not None else None

    def fetch(
        self,
        endpoint: str,
        params: Optional[Dict[str, Any]] = None,
        ttl: Optional[int] = None,
        context: FetchContext = FetchContext.INTERACTIVE,
        force_refresh: bool = False,
        transform: Optional[Callable[[Any], Any]] = None,
    ) -> CacheResult:
        """
        Fetch an endpoint through the cache manager.

        Args:
            endpoint: Path relative to the base URL
            params: Public query parameters (part of the cache key)
            ttl: Primary TTL in seconds, defaults to the client's default
            context: Whether a live fetch may happen on a miss
            force_refresh: Bypass the primary entry and the fallback fast path
            transform: Applied to the decoded body before it is cached

        Returns:
            CacheResult; never raises for upstream trouble
        """
        params = dict(params or {})
        url = self.build_url(endpoint, self.request_params(params))
        key = self.build_cache_key(endpoint, params)

        def producer():
            # Only revalidate when there is something to renew on a 304.
            payload = self._execute_request(url, use_etag=self.cache.has_data(key))
            if payload is NOT_MODIFIED or transform is None:
                return payload
            return transform(payload)

        return self.cache.get_or_set(
            key,
            producer,
            ttl or self.default_ttl,
            service=self.service,
            context=context,
            force_refresh=force_refresh,
        )

    # ----- request executor -----

    def _execute_request(self, url: str, use_etag: bool = True) -> Any:
        """
        One upstream call: throttle check, conditional headers, HTTP with
        retries, status classification and metrics.

        Returns:
            Decoded JSON body (None for an empty body) or NOT_MODIFIED

        Raises:
            RateLimited, UpstreamError, NetworkError, MalformedResponse
        """
        name = self.service.value
        shown = redact(url)
        if self.rate_limiter.should_throttle(name):
            remaining = self.rate_limiter.remaining_cooldown(name)
            raise RateLimited(f"{name} is cooling down ({remaining}s left)", url=shown, retry_after=remaining)

        headers = self.default_headers()
        if use_etag:
            headers.update(self.etags.request_headers(url))

        self.metrics.increment(self.service, "total_requests")
        try:
            response = self.http.get(url, headers=headers)
        except NetworkError as exc:
            self._record_failure(exc)
            raise

        self.metrics.set(self.service, {
            "last_latency_ms": response.elapsed_ms,
            "last_status_code": response.status_code,
            "last_request_at": self._clock(),
        })

        if self.etags.is_not_modified(response.status_code):
            self.rate_limiter.record_success(name)
            self.metrics.increment(self.service, "etag_hits")
            logger.debug(f"{name}: 304 Not Modified for {shown}")
            return NOT_MODIFIED

        try:
            payload = self._decode(shown, response)
            self.check_payload(shown, payload)
        except ApiError as exc:
            self._record_failure(exc)
            raise

        self.etags.store_from_response(url, response.headers)
        self.rate_limiter.record_success(name)
        return payload

    def _decode(self, url: str, response: HttpResponse) -> Any:
        code = response.status_code
        if code == HTTP_TOO_MANY_REQUESTS:
            retry_after = response.header("Retry-After") or "0"
            raise RateLimited(
                "Rate limited",
                url=url,
                retry_after=int(retry_after) if retry_after.isdigit() else 0,
            )
        if code >= 400:
            raise UpstreamError(f"HTTP {code}", url=url, status_code=code)
        if code == 204 or not response.text.strip():
            return None
        try:
            return json.loads(response.text)
        except ValueError:
            logger.error(f"Invalid JSON from {url} (HTTP {code}): {response.text[:200]!r}")
            raise MalformedResponse("Invalid JSON response", url=url, status_code=code, body=response.text)

    def _record_failure(self, exc: ApiError) -> None:
        self.rate_limiter.record_error(self.service.value, exc.status_code)
        self.metrics.increment(self.service, "total_errors")
        self.metrics.set(self.service, {"last_error": exc.message})
        logger.warning(f"{self.service.value} request failed: {type(exc).__name__}: {exc.message} ({redact(exc.url or '')})")

    # ----- diagnostics -----

    def test_connection(self) -> ConnectionResult:
        """Live request against a cheap endpoint; the cache is not read or written."""
        if not self.is_configured():
            return ConnectionResult.warning("API credentials not configured")
        url = self.build_url(
            self.connection_test_endpoint(),
            self.request_params(self.connection_test_params()),
        )
        try:
            self._execute_request(url, use_etag=False)
        except RateLimited as exc:
            return ConnectionResult.warning(
                f"Rate limited, retry in {exc.retry_after}s" if exc.retry_after else "Rate limited",
                exc.status_code,
            )
        except ApiError as exc:
            return ConnectionResult.error(exc.message, exc.status_code)
        return ConnectionResult.success("Connection OK")

    def rate_limit_status(self) -> Dict[str, Any]:
        return self.rate_limiter.status(self.service.value)
