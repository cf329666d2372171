"""
Two-tier caching with fallback copies, conditional requests and request memoization.
"""
from .core import (
    NOT_MODIFIED,
    CacheEntry,
    CacheResult,
    CacheSource,
    FetchContext,
    Service,
    infer_service,
    is_failure_payload,
    make_cache_key,
)
from .ttl_policies import (
    TTL_CONFIG,
    DataType,
    clamp_ttl,
    get_fallback_ttl,
    get_ttl_for_type,
    get_type_for_period,
)
from .coalescer import RequestCoalescer
from .etag import ETagManager, normalize_url
from .manager import CacheManager

__all__ = [
    # Core types
    "NOT_MODIFIED",
    "CacheEntry",
    "CacheResult",
    "CacheSource",
    "FetchContext",
    "Service",
    "infer_service",
    "is_failure_payload",
    "make_cache_key",
    # TTL policies
    "TTL_CONFIG",
    "DataType",
    "clamp_ttl",
    "get_fallback_ttl",
    "get_ttl_for_type",
    "get_type_for_period",
    # Coalescing
    "RequestCoalescer",
    # Conditional requests
    "ETagManager",
    "normalize_url",
    # Manager
    "CacheManager",
]
