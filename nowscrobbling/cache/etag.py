"""
Conditional-request validators, stored per normalized upstream URL.
"""
import hashlib
import logging
import time
from typing import Callable, Dict, Mapping, Optional
from urllib.parse import parse_qsl, urlencode, urlsplit

from nowscrobbling.store import Store

logger = logging.getLogger("cache.etag")

ETAG_PREFIX = "ns_etag_"
ETAG_TTL = 86400  # 1 day


def normalize_url(url: str) -> str:
    """Scheme + host + path + sorted query, so parameter order never splits records."""
    parts = urlsplit(url)
    query = urlencode(sorted(parse_qsl(parts.query, keep_blank_values=True)))
    path = parts.path or "/"
    normalized = f"{parts.scheme.lower()}://{parts.netloc.lower()}{path}"
    return f"{normalized}?{query}" if query else normalized


class ETagManager:
    """
    Stores the last ETag seen per URL and turns it into If-None-Match headers.

    Two cache keys that hit the same URL share one record.
    """

    def __init__(self, store: Store, ttl: int = ETAG_TTL, clock: Callable[[], float] = time.time):
        self._store = store
        self._ttl = ttl
        self._clock = clock

    def _key(self, url: str) -> str:
        return ETAG_PREFIX + hashlib.md5(normalize_url(url).encode("utf-8")).hexdigest()

    def get(self, url: str) -> Optional[str]:
        record = self._store.get(self._key(url))
        if not isinstance(record, dict):
            return None
        return record.get("etag") or None

    def request_headers(self, url: str) -> Dict[str, str]:
        etag = self.get(url)
        return {"If-None-Match": etag} if etag else {}

    def store_from_response(self, url: str, headers: Mapping[str, str]) -> bool:
        """Remember the response's ETag, if it sent one."""
        etag = None
        for name, value in headers.items():
            if name.lower() == "etag":
                etag = (value or "").strip()
                break
        if not etag:
            return False
        self._store.set(self._key(url), {"etag": etag, "created": self._clock()}, self._ttl)
        logger.debug(f"Stored ETag {etag} for {self._key(url)}")
        return True

    @staticmethod
    def is_not_modified(status_code: int) -> bool:
        return status_code == 304

    def age(self, url: str) -> Optional[float]:
        record = self._store.get(self._key(url))
        if not isinstance(record, dict) or "created" not in record:
            return None
        return self._clock() - float(record["created"])

    def forget(self, url: str) -> bool:
        return self._store.delete(self._key(url))

    def clear(self) -> int:
        return self._store.delete_prefix(ETAG_PREFIX)
