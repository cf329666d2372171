"""
Core cache data structures.
"""
import hashlib
import json
from dataclasses import asdict, dataclass
from enum import Enum
from typing import Any, Dict, Optional


class CacheSource(Enum):
    """Where a get_or_set result came from."""
    MEMORY = "memory"      # Resolved earlier in the same request scope
    CACHE = "cache"        # Valid primary entry
    FRESH = "fresh"        # Producer just returned it
    FALLBACK = "fallback"  # Long-lived copy of the last good value
    MISS = "miss"          # Nothing available


class FetchContext(Enum):
    """Execution context of a cache read, deciding whether a live fetch may happen."""
    PAGE_RENDER = "page_render"    # Server-side page render, unbounded fan-out
    INTERACTIVE = "interactive"    # Client-triggered refresh over the polling endpoint
    BACKGROUND = "background"      # Scheduled refresh job

    @property
    def allows_live_fetch(self) -> bool:
        return self is not FetchContext.PAGE_RENDER


class Service(Enum):
    """Metrics bucket for a cache key or URL."""
    LASTFM = "lastfm"
    TRAKT = "trakt"
    GENERIC = "generic"


class _NotModified:
    """Producer signal: upstream answered 304, keep serving the stored payload."""

    _instance = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "NOT_MODIFIED"

    def __bool__(self) -> bool:
        return False


NOT_MODIFIED = _NotModified()


def infer_service(key_or_url: str) -> Service:
    """Infer the service from a cache key prefix or an upstream URL."""
    text = (key_or_url or "").lower()
    if text.startswith("lastfm") or "audioscrobbler.com" in text:
        return Service.LASTFM
    if text.startswith("trakt") or "trakt.tv" in text:
        return Service.TRAKT
    return Service.GENERIC


def make_cache_key(base: str, params: Optional[Dict[str, Any]] = None) -> str:
    """Deterministic key: base name plus a hash of the sorted, non-null params."""
    if not params:
        return base
    cleaned = {k: v for k, v in params.items() if v is not None}
    digest = hashlib.md5(
        json.dumps(cleaned, sort_keys=True, separators=(",", ":"), default=str).encode("utf-8")
    ).hexdigest()
    return f"{base}_{digest[:16]}"


def is_failure_payload(value: Any) -> bool:
    """
    Values that must never be cached: None, empty containers/strings and
    payloads carrying an error marker.
    """
    if value is None or value is NOT_MODIFIED:
        return True
    if isinstance(value, (dict, list, tuple, str)) and len(value) == 0:
        return True
    if isinstance(value, dict) and ("error" in value or "__ns_error" in value):
        return True
    return False


@dataclass(frozen=True)
class CacheEntry:
    """
    A stored payload with its save metadata.

    Invariant: expires_at == saved_at + ttl.
    """
    key: str
    value: Any
    saved_at: float
    expires_at: float
    ttl: int
    service: str = Service.GENERIC.value

    @classmethod
    def create(cls, key: str, value: Any, ttl: int, now: float, service: Service) -> "CacheEntry":
        return cls(key=key, value=value, saved_at=now, expires_at=now + ttl, ttl=ttl, service=service.value)

    def is_valid(self, now: float) -> bool:
        return now < self.expires_at

    def age_seconds(self, now: float) -> float:
        return max(0.0, now - self.saved_at)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Any) -> Optional["CacheEntry"]:
        if not isinstance(data, dict) or "value" not in data:
            return None
        try:
            return cls(
                key=data["key"],
                value=data["value"],
                saved_at=float(data["saved_at"]),
                expires_at=float(data["expires_at"]),
                ttl=int(data["ttl"]),
                service=data.get("service", Service.GENERIC.value),
            )
        except (KeyError, TypeError, ValueError):
            return None

    def meta(self, now: float) -> Dict[str, Any]:
        """Metadata without the payload, for diagnostics."""
        return {
            "key": self.key,
            "service": self.service,
            "saved_at": self.saved_at,
            "expires_at": self.expires_at,
            "ttl": self.ttl,
            "age": round(self.age_seconds(now), 1),
            "valid": self.is_valid(now),
        }


@dataclass
class CacheResult:
    """Outcome of a get_or_set call."""
    value: Any
    source: CacheSource
    entry: Optional[CacheEntry] = None

    @property
    def has_data(self) -> bool:
        return self.source is not CacheSource.MISS and self.value is not None

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON response."""
        result = {"source": self.source.value, "hasData": self.has_data}
        if self.entry is not None:
            result["savedAt"] = self.entry.saved_at
            result["expiresAt"] = self.entry.expires_at
            result["ttl"] = self.entry.ttl
        return result
