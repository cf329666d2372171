"""Content hashing for change detection between polls."""
import hashlib
import json
from typing import Any, Optional

# Keys whose values move on every poll without a visible change
VOLATILE_KEYS = frozenset({
    "@attr",
    "date",
    "uts",
    "timestamp",
    "cached_at",
    "saved_at",
    "expires_at",
    "started_at",
})


def strip_volatile(value: Any) -> Any:
    """Recursively drop volatile keys from dicts (lists are walked, order kept)."""
    if isinstance(value, dict):
        return {k: strip_volatile(v) for k, v in value.items() if k not in VOLATILE_KEYS}
    if isinstance(value, (list, tuple)):
        return [strip_volatile(v) for v in value]
    return value


def content_hash(payload: Any) -> str:
    """md5 of a stable JSON dump of the payload's semantic part."""
    canonical = json.dumps(
        strip_volatile(payload),
        sort_keys=True,
        separators=(",", ":"),
        ensure_ascii=False,
        default=str,
    )
    return hashlib.md5(canonical.encode("utf-8")).hexdigest()


def compare(previous: Optional[str], current: str) -> bool:
    """True when the content changed (a missing previous hash counts as changed)."""
    return not previous or previous != current
