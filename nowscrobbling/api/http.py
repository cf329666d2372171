"""
Outbound HTTP GET with timeout and bounded retries on transient failures.
"""
import logging
import re
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Optional

import requests
from tenacity import (
    Retrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_incrementing,
)

from .errors import NetworkError

logger = logging.getLogger("api.http")

DEFAULT_TIMEOUT = 5.0
DEFAULT_RETRIES = 2
RETRY_DELAY = 0.5

# Query parameters that carry credentials
_SECRET_PARAM = re.compile(r"(?i)\b(api_key|client_id|client_secret|access_token)=[^&\s'\"]*")


def redact(text: str) -> str:
    """Mask credential query values in a URL or an error message that quotes one."""
    return _SECRET_PARAM.sub(r"\1=***", text)


@dataclass
class HttpResponse:
    """Status, headers and body of one upstream answer."""
    status_code: int
    headers: Dict[str, str] = field(default_factory=dict)
    text: str = ""
    elapsed_ms: int = 0

    def header(self, name: str) -> Optional[str]:
        wanted = name.lower()
        for key, value in self.headers.items():
            if key.lower() == wanted:
                return value
        return None


class _ServerError(Exception):
    """5xx answer, raised internally so tenacity retries it."""

    def __init__(self, response: HttpResponse):
        super().__init__(f"HTTP {response.status_code}")
        self.response = response


class HttpClient:
    """
    Thin wrapper around a requests.Session.

    Network errors and 5xx answers are retried with a linearly growing delay
    (0.5s, 1s, ...). 4xx answers are returned immediately. After the last
    attempt a 5xx is returned to the caller and a network error becomes
    NetworkError.
    """

    def __init__(
        self,
        timeout: float = DEFAULT_TIMEOUT,
        max_retries: int = DEFAULT_RETRIES,
        session: Optional[requests.Session] = None,
        sleep: Callable[[float], None] = time.sleep,
        retry_delay: float = RETRY_DELAY,
    ):
        self.timeout = timeout
        self.max_retries = max(0, max_retries)
        self._session = session or requests.Session()
        self._sleep = sleep
        self._retry_delay = retry_delay

    def get(
        self,
        url: str,
        params: Optional[Dict[str, Any]] = None,
        headers: Optional[Dict[str, str]] = None,
    ) -> HttpResponse:
        retrying = Retrying(
            stop=stop_after_attempt(self.max_retries + 1),
            wait=wait_incrementing(start=self._retry_delay, increment=self._retry_delay),
            retry=retry_if_exception_type((requests.ConnectionError, requests.Timeout, _ServerError)),
            reraise=True,
            sleep=self._sleep,
        )
        started = time.monotonic()
        shown = redact(url)
        try:
            response = retrying(self._attempt, url, params, headers)
        except _ServerError as exc:
            response = exc.response
            logger.warning(f"GET {shown} still failing after {self.max_retries + 1} attempts: HTTP {response.status_code}")
        except requests.RequestException as exc:
            reason = redact(str(exc)) or type(exc).__name__
            logger.warning(f"GET {shown} failed: {type(exc).__name__}: {reason}")
            raise NetworkError(reason, url=shown) from exc
        response.elapsed_ms = int((time.monotonic() - started) * 1000)
        return response

    def _attempt(
        self,
        url: str,
        params: Optional[Dict[str, Any]],
        headers: Optional[Dict[str, str]],
    ) -> HttpResponse:
        raw = self._session.get(url, params=params, headers=headers, timeout=self.timeout)
        response = HttpResponse(
            status_code=raw.status_code,
            headers=dict(raw.headers),
            text=raw.text,
        )
        if response.status_code >= 500:
            logger.debug(f"GET {redact(url)} -> {response.status_code}, retrying")
            raise _ServerError(response)
        return response
