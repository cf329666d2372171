"""
Main cache orchestration: primary + fallback tiers, live-fetch gate and request memoization.
"""
import logging
import threading
import time
from contextlib import contextmanager
from contextvars import ContextVar
from typing import Any, Callable, Dict, Iterator, List, Optional

from nowscrobbling.api.rate_limiter import RateLimiter
from nowscrobbling.metrics import MetricsRecorder
from nowscrobbling.store import Store

from .coalescer import RequestCoalescer
from .core import (
    NOT_MODIFIED,
    CacheEntry,
    CacheResult,
    CacheSource,
    FetchContext,
    Service,
    infer_service,
    is_failure_payload,
)
from .etag import ETagManager
from .ttl_policies import WEEK, clamp_ttl, get_fallback_ttl

logger = logging.getLogger("cache.manager")

PRIMARY_PREFIX = "ns_cache_"
FALLBACK_SUFFIX = "_fallback"
ACCESS_PREFIX = "ns_access_"
REGISTRY_KEY = "ns_registry_cache_keys"
ACCESS_TTL = WEEK

_request_memo: ContextVar[Optional[Dict[str, CacheResult]]] = ContextVar(
    "nowscrobbling_request_memo", default=None
)


class CacheManager:
    """
    get_or_set() resolves a key through, in order:
    - the request-scope memo
    - a valid primary entry
    - the live-fetch gate (fallback or miss when live fetch is not allowed)
    - the fallback-preferred fast path
    - the producer, with fallback-then-miss on any failure

    Producers may return a payload, NOT_MODIFIED, or raise; nothing they
    raise escapes get_or_set.
    """

    def __init__(
        self,
        store: Store,
        metrics: Optional[MetricsRecorder] = None,
        rate_limiter: Optional[RateLimiter] = None,
        etags: Optional[ETagManager] = None,
        prefer_fallback: bool = True,
        coalesce_timeout: float = 15.0,
        clock: Callable[[], float] = time.time,
    ):
        """
        Args:
            store: Backing key-value store for both tiers
            metrics: Recorder for cache/fallback hits
            rate_limiter: When given, throttled services never reach their producer
            etags: Cleared together with the cache
            prefer_fallback: Serve an existing fallback instead of fetching on expiry
            coalesce_timeout: Max wait when joining an identical in-flight producer call
        """
        self._store = store
        self._metrics = metrics
        self._rate_limiter = rate_limiter
        self._etags = etags
        self.prefer_fallback = prefer_fallback
        self._clock = clock
        self._coalescer = RequestCoalescer(timeout=coalesce_timeout)
        self._registry_lock = threading.Lock()

        # Process-local stats
        self._stats_lock = threading.Lock()
        self._stats = {
            "memory_hits": 0,
            "hits": 0,
            "fresh": 0,
            "fallbacks": 0,
            "misses": 0,
            "errors": 0,
        }

    # ----- request scope -----

    @contextmanager
    def request_scope(self) -> Iterator[None]:
        """Memoize resolved keys for the duration of one request or render."""
        token = _request_memo.set({})
        try:
            yield
        finally:
            _request_memo.reset(token)

    # ----- main entry point -----

    def get_or_set(
        self,
        key: str,
        producer: Callable[[], Any],
        ttl: int = 300,
        *,
        service: Optional[Service] = None,
        context: FetchContext = FetchContext.INTERACTIVE,
        force_refresh: bool = False,
    ) -> CacheResult:
        """
        Get data from cache or produce it.

        Args:
            key: Cache key (see make_cache_key)
            producer: Zero-argument callable performing the upstream call
            ttl: Primary TTL in seconds, clamped to the minimum
            service: Metrics bucket; inferred from the key when omitted
            context: Execution context deciding whether a live fetch may happen
            force_refresh: Skip the primary entry, the gate and the fallback fast path

        Returns:
            CacheResult(value, source, entry)
        """
        ttl = clamp_ttl(ttl)
        service = service or infer_service(key)

        memo = _request_memo.get()
        if memo is not None and not force_refresh and key in memo:
            remembered = memo[key]
            self._bump("memory_hits")
            logger.debug(f"CACHE HIT (memory): {key}")
            return CacheResult(remembered.value, CacheSource.MEMORY, remembered.entry)

        result = self._resolve(key, producer, ttl, service, context, force_refresh)

        if memo is not None and result.has_data:
            memo[key] = result
        return result

    def _resolve(
        self,
        key: str,
        producer: Callable[[], Any],
        ttl: int,
        service: Service,
        context: FetchContext,
        force_refresh: bool,
    ) -> CacheResult:
        now = self._clock()
        primary = self._read(self._primary_key(key))

        if primary is not None and primary.is_valid(now) and not force_refresh:
            logger.debug(f"CACHE HIT (primary): {key} [age={primary.age_seconds(now):.1f}s]")
            self._bump("hits")
            self._record(service, "cache_hits")
            self._touch(key, now)
            return CacheResult(primary.value, CacheSource.CACHE, primary)

        fallback = self._read(self._fallback_key(key))

        if not force_refresh:
            if not context.allows_live_fetch:
                logger.debug(f"Live fetch not allowed in {context.value}: {key}")
                return self._degrade(key, fallback, service)
            if self.prefer_fallback and fallback is not None:
                logger.debug(f"CACHE EXPIRED, serving fallback: {key}")
                return self._degrade(key, fallback, service)

        if self._rate_limiter is not None and self._rate_limiter.should_throttle(service.value):
            logger.info(f"{service.value} is cooling down, skipping fetch: {key}")
            return self._degrade(key, fallback, service)

        logger.info(f"{'FORCE REFRESH' if force_refresh else 'CACHE MISS'}: {key}")
        try:
            value = self._coalescer.run(key, producer)
        except Exception as exc:
            self._bump("errors")
            logger.warning(f"Producer failed for {key}: {type(exc).__name__}: {exc}")
            return self._degrade(key, fallback, service)

        if value is NOT_MODIFIED:
            return self._renew(key, primary or fallback, ttl, service)

        if is_failure_payload(value):
            self._bump("errors")
            logger.warning(f"Producer returned no usable data for {key}")
            return self._degrade(key, fallback, service)

        entry = self._store_all(key, value, ttl, service)
        self._bump("fresh")
        return CacheResult(value, CacheSource.FRESH, entry)

    def _degrade(self, key: str, fallback: Optional[CacheEntry], service: Service) -> CacheResult:
        """Fallback if there is one, otherwise a miss."""
        if fallback is not None:
            self._bump("fallbacks")
            self._record(service, "fallback_hits")
            return CacheResult(fallback.value, CacheSource.FALLBACK, fallback)
        self._bump("misses")
        logger.debug(f"CACHE MISS (no fallback): {key}")
        return CacheResult(None, CacheSource.MISS, None)

    def _renew(self, key: str, known: Optional[CacheEntry], ttl: int, service: Service) -> CacheResult:
        """Upstream reported no change: extend the known payload's validity."""
        if known is None:
            logger.warning(f"Not modified but nothing stored for {key}")
            self._bump("misses")
            return CacheResult(None, CacheSource.MISS, None)
        entry = CacheEntry.create(key, known.value, ttl, self._clock(), service)
        self._store.set(self._primary_key(key), entry.to_dict(), ttl)
        self._bump("hits")
        logger.debug(f"NOT MODIFIED, renewed: {key}")
        return CacheResult(entry.value, CacheSource.CACHE, entry)

    # ----- storage -----

    @staticmethod
    def _primary_key(key: str) -> str:
        return PRIMARY_PREFIX + key

    @staticmethod
    def _fallback_key(key: str) -> str:
        return PRIMARY_PREFIX + key + FALLBACK_SUFFIX

    def _read(self, store_key: str) -> Optional[CacheEntry]:
        return CacheEntry.from_dict(self._store.get(store_key))

    def _store_all(self, key: str, value: Any, ttl: int, service: Service) -> CacheEntry:
        now = self._clock()
        entry = CacheEntry.create(key, value, ttl, now, service)
        self._store.set(self._primary_key(key), entry.to_dict(), ttl)

        fallback_ttl = get_fallback_ttl(ttl)
        fallback = CacheEntry.create(key, value, fallback_ttl, now, service)
        self._store.set(self._fallback_key(key), fallback.to_dict(), fallback_ttl)

        self._register(key, service)
        return entry

    def _touch(self, key: str, now: float) -> None:
        self._store.set(ACCESS_PREFIX + key, now, ACCESS_TTL)

    def _register(self, key: str, service: Service) -> None:
        with self._registry_lock:
            registry = self._store.get(REGISTRY_KEY) or {}
            if registry.get(key) != service.value:
                registry[key] = service.value
                self._store.set(REGISTRY_KEY, registry)

    def set(self, key: str, value: Any, ttl: int, service: Optional[Service] = None) -> Optional[CacheEntry]:
        """Write both tiers directly. Failure payloads are ignored."""
        if is_failure_payload(value):
            return None
        return self._store_all(key, value, clamp_ttl(ttl), service or infer_service(key))

    def peek(self, key: str) -> Optional[CacheEntry]:
        """Primary entry without touching metrics, or None."""
        return self._read(self._primary_key(key))

    def peek_fallback(self, key: str) -> Optional[CacheEntry]:
        return self._read(self._fallback_key(key))

    def has_data(self, key: str) -> bool:
        return self.peek(key) is not None or self.peek_fallback(key) is not None

    def delete(self, key: str) -> None:
        self._store.delete(self._primary_key(key))
        self._store.delete(self._fallback_key(key))
        self._store.delete(ACCESS_PREFIX + key)

    # ----- bulk operations -----

    def tracked_keys(self) -> Dict[str, str]:
        return dict(self._store.get(REGISTRY_KEY) or {})

    def clear_all(self) -> int:
        """
        Remove every primary and fallback entry, access metadata and ETags.

        Returns:
            Number of store keys removed
        """
        removed = self._store.delete_prefix(PRIMARY_PREFIX)
        removed += self._store.delete_prefix(ACCESS_PREFIX)
        self._store.delete(REGISTRY_KEY)
        if self._etags is not None:
            removed += self._etags.clear()
        memo = _request_memo.get()
        if memo is not None:
            memo.clear()
        self.reset_stats()
        logger.info(f"Cleared all caches ({removed} keys)")
        return removed

    def clear_primary(self) -> int:
        """Drop primary entries and ETags but keep fallback copies."""
        removed = 0
        for key in self.tracked_keys():
            if self._store.delete(self._primary_key(key)):
                removed += 1
        if self._etags is not None:
            removed += self._etags.clear()
        logger.info(f"Cleared primary caches ({removed} keys)")
        return removed

    # ----- diagnostics -----

    def entries(self) -> List[Dict[str, Any]]:
        """Metadata for every tracked key, without payloads."""
        now = self._clock()
        rows = []
        for key, service in sorted(self.tracked_keys().items()):
            primary = self.peek(key)
            fallback = self.peek_fallback(key)
            rows.append({
                "key": key,
                "service": service,
                "primary": primary.meta(now) if primary else None,
                "fallback": fallback.meta(now) if fallback else None,
                "last_access": self._store.get(ACCESS_PREFIX + key),
            })
        return rows

    def _bump(self, name: str) -> None:
        with self._stats_lock:
            self._stats[name] += 1

    def _record(self, service: Service, field: str) -> None:
        if self._metrics is not None:
            self._metrics.increment(service, field)

    def reset_stats(self) -> None:
        with self._stats_lock:
            for name in self._stats:
                self._stats[name] = 0

    def get_stats(self) -> Dict[str, Any]:
        """Process-local cache statistics."""
        with self._stats_lock:
            stats = dict(self._stats)
        served = stats["memory_hits"] + stats["hits"] + stats["fallbacks"]
        total = served + stats["fresh"] + stats["misses"]
        stats["hit_rate_percent"] = round(served / total * 100, 1) if total else 0.0
        stats["prefer_fallback"] = self.prefer_fallback
        stats["coalescer"] = self._coalescer.get_stats()
        return stats
