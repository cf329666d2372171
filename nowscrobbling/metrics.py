"""
Per-service request/cache counters with an hourly rolling window.

Cumulative counters go through the store's incr. Hourly buckets are a
read-modify-write of one map per service; concurrent workers may lose an
increment now and then, which is acceptable for a diagnostics display.
"""
import logging
import threading
import time
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Callable, Dict, List, Union

from nowscrobbling.store import Store

logger = logging.getLogger("metrics")

METRICS_PREFIX = "ns_metrics_"
MAX_BUCKETS = 96
DEFAULT_WINDOW_HOURS = 48

ServiceLike = Union[Enum, str, None]

COUNTER_FIELDS = (
    "total_requests",
    "total_errors",
    "etag_hits",
    "cache_hits",
    "fallback_hits",
)
VALUE_FIELDS = (
    "last_latency_ms",
    "last_status_code",
    "last_error",
    "last_request_at",
)


def _name(service) -> str:
    """Accepts a Service enum member or its string value."""
    return getattr(service, "value", service) or "generic"


def _hour_key(ts: float) -> str:
    return datetime.fromtimestamp(ts, tz=timezone.utc).strftime("%Y%m%d%H")


class MetricsRecorder:
    """Counts requests, errors and cache outcomes per service."""

    def __init__(self, store: Store, clock: Callable[[], float] = time.time, max_buckets: int = MAX_BUCKETS):
        self._store = store
        self._clock = clock
        self._max_buckets = max_buckets
        self._lock = threading.Lock()

    def _counter_key(self, service: str, field: str) -> str:
        return f"{METRICS_PREFIX}{service}_{field}"

    def _hourly_key(self, service: str) -> str:
        return f"{METRICS_PREFIX}{service}_hourly"

    def _values_key(self, service: str) -> str:
        return f"{METRICS_PREFIX}{service}_values"

    def increment(self, service: ServiceLike, field: str, amount: int = 1) -> None:
        if field not in COUNTER_FIELDS:
            raise ValueError(f"Unknown counter: {field}")
        name = _name(service)
        self._store.incr(self._counter_key(name, field), amount)
        self._bump_bucket(name, field, amount)

    def set(self, service: ServiceLike, fields: Dict[str, Any]) -> None:
        unknown = set(fields) - set(VALUE_FIELDS)
        if unknown:
            raise ValueError(f"Unknown metric fields: {sorted(unknown)}")
        name = _name(service)
        with self._lock:
            values = self._store.get(self._values_key(name)) or {}
            values.update(fields)
            self._store.set(self._values_key(name), values)

    def _bump_bucket(self, service: str, field: str, amount: int) -> None:
        hour = _hour_key(self._clock())
        with self._lock:
            buckets = self._store.get(self._hourly_key(service)) or {}
            bucket = buckets.setdefault(hour, {})
            bucket[field] = bucket.get(field, 0) + amount
            if len(buckets) > self._max_buckets:
                for old in sorted(buckets)[: len(buckets) - self._max_buckets]:
                    del buckets[old]
            self._store.set(self._hourly_key(service), buckets)

    def snapshot(self, service: ServiceLike) -> Dict[str, Any]:
        name = _name(service)
        result: Dict[str, Any] = {
            field: int(self._store.get(self._counter_key(name, field)) or 0)
            for field in COUNTER_FIELDS
        }
        values = self._store.get(self._values_key(name)) or {}
        for field in VALUE_FIELDS:
            result[field] = values.get(field)
        requests = result["total_requests"]
        result["error_rate"] = round(result["total_errors"] / requests * 100, 1) if requests else 0.0
        return result

    def timeseries(self, service: ServiceLike, hours: int = DEFAULT_WINDOW_HOURS) -> List[Dict[str, Any]]:
        """Hourly buckets from the last `hours` hours, oldest first."""
        name = _name(service)
        buckets = self._store.get(self._hourly_key(name)) or {}
        now = datetime.fromtimestamp(self._clock(), tz=timezone.utc)
        cutoff = (now - timedelta(hours=max(hours, 1) - 1)).strftime("%Y%m%d%H")
        series = []
        for hour in sorted(buckets):
            if hour < cutoff:
                continue
            row = {"hour": hour}
            row.update({field: buckets[hour].get(field, 0) for field in COUNTER_FIELDS})
            series.append(row)
        return series

    def reset(self, service: ServiceLike) -> int:
        name = _name(service)
        logger.info(f"Resetting metrics for {name}")
        return self._store.delete_prefix(f"{METRICS_PREFIX}{name}_")
