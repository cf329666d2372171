"""Per-service cooldown with exponential backoff on repeated upstream failures."""

import logging
import time
from typing import Any, Callable, Dict, Optional

from nowscrobbling.store import Store

logger = logging.getLogger("api.rate_limiter")

# Configuration
RATE_LIMIT_PREFIX = "ns_ratelimit_"
INITIAL_COOLDOWN_SECONDS = 60
MAX_COOLDOWN_SECONDS = 1800
ERROR_THRESHOLD = 3
ERROR_WINDOW_SECONDS = 3600  # isolated old errors age out
HTTP_TOO_MANY_REQUESTS = 429


def cooldown_for(error_count: int) -> int:
    """
    Cooldown length for a consecutive error count at or above the threshold.

    initial * 2^(count - threshold), capped at the maximum.
    """
    exponent = max(0, error_count - ERROR_THRESHOLD)
    if exponent > 16:
        return MAX_COOLDOWN_SECONDS
    return min(INITIAL_COOLDOWN_SECONDS * (2 ** exponent), MAX_COOLDOWN_SECONDS)


class RateLimiter:
    """
    Tracks consecutive upstream errors per service in the shared store.

    Callers check should_throttle() before any network call and skip the
    call entirely while it returns True.
    """

    def __init__(self, store: Store, clock: Callable[[], float] = time.time):
        self._store = store
        self._clock = clock

    def _cooldown_key(self, service: str) -> str:
        return f"{RATE_LIMIT_PREFIX}{service}_cooldown"

    def _errors_key(self, service: str) -> str:
        return f"{RATE_LIMIT_PREFIX}{service}_errors"

    def cooldown_until(self, service: str) -> Optional[float]:
        value = self._store.get(self._cooldown_key(service))
        return None if value is None else float(value)

    def should_throttle(self, service: str) -> bool:
        until = self.cooldown_until(service)
        return until is not None and self._clock() < until

    def remaining_cooldown(self, service: str) -> int:
        until = self.cooldown_until(service)
        if until is None:
            return 0
        return max(0, int(round(until - self._clock())))

    def error_count(self, service: str) -> int:
        return int(self._store.get(self._errors_key(service)) or 0)

    def record_success(self, service: str) -> None:
        self._store.delete(self._errors_key(service))
        self._store.delete(self._cooldown_key(service))

    def record_error(self, service: str, http_code: int = 0) -> None:
        if http_code == HTTP_TOO_MANY_REQUESTS:
            self._set_cooldown(service, MAX_COOLDOWN_SECONDS)
            return

        count = self._store.incr(self._errors_key(service), 1, ttl=ERROR_WINDOW_SECONDS)
        if count >= ERROR_THRESHOLD:
            self._set_cooldown(service, cooldown_for(count))

    def _set_cooldown(self, service: str, seconds: int) -> None:
        until = self._clock() + seconds
        self._store.set(self._cooldown_key(service), until, ttl=seconds + 60)
        logger.warning(f"{service}: cooling down for {seconds}s")

    def clear(self, service: str) -> None:
        self.record_success(service)

    def status(self, service: str) -> Dict[str, Any]:
        return {
            "service": service,
            "throttled": self.should_throttle(service),
            "error_count": self.error_count(service),
            "cooldown_remaining": self.remaining_cooldown(service),
        }
