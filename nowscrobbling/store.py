"""
Key-value store capability shared by every cache tier, cooldown flag, ETag and metric.

Two backends:
- MemoryStore: per-process dict with expiry, for single-worker deployments and tests
- SqlStore: SQLAlchemy table, shared across worker processes
"""
import json
import logging
import threading
import time
from typing import Any, Callable, Dict, Optional, Protocol, Tuple

from sqlalchemy import delete, select

from nowscrobbling.db import init_db, make_engine, make_session_factory
from nowscrobbling.models import KeyValueEntry

logger = logging.getLogger("store")


class Store(Protocol):
    """Durable storage with per-entry expiration."""

    def get(self, key: str) -> Any:
        ...

    def set(self, key: str, value: Any, ttl: Optional[float] = None) -> None:
        ...

    def delete(self, key: str) -> bool:
        ...

    def delete_prefix(self, prefix: str) -> int:
        ...

    def incr(self, key: str, amount: int = 1, ttl: Optional[float] = None) -> int:
        ...


def _dumps(value: Any) -> str:
    return json.dumps(value, separators=(",", ":"))


class MemoryStore:
    """
    In-process store.

    Values are kept serialized so a payload handed out by get() can never
    alias the stored copy. Expired entries are dropped lazily on access.
    """

    def __init__(self, clock: Callable[[], float] = time.time):
        self._data: Dict[str, Tuple[str, Optional[float]]] = {}
        self._lock = threading.Lock()
        self._clock = clock

    def _live(self, key: str) -> Optional[Tuple[str, Optional[float]]]:
        item = self._data.get(key)
        if item is None:
            return None
        expires_at = item[1]
        if expires_at is not None and self._clock() >= expires_at:
            del self._data[key]
            return None
        return item

    def _expiry(self, ttl: Optional[float]) -> Optional[float]:
        return None if ttl is None else self._clock() + ttl

    def get(self, key: str) -> Any:
        with self._lock:
            item = self._live(key)
        return None if item is None else json.loads(item[0])

    def set(self, key: str, value: Any, ttl: Optional[float] = None) -> None:
        raw = _dumps(value)
        with self._lock:
            self._data[key] = (raw, self._expiry(ttl))

    def delete(self, key: str) -> bool:
        with self._lock:
            return self._data.pop(key, None) is not None

    def delete_prefix(self, prefix: str) -> int:
        with self._lock:
            doomed = [k for k in self._data if k.startswith(prefix)]
            for key in doomed:
                del self._data[key]
        return len(doomed)

    def incr(self, key: str, amount: int = 1, ttl: Optional[float] = None) -> int:
        with self._lock:
            item = self._live(key)
            current = int(json.loads(item[0])) if item else 0
            expires_at = self._expiry(ttl) if ttl is not None else (item[1] if item else None)
            current += amount
            self._data[key] = (_dumps(current), expires_at)
        return current

    def __len__(self) -> int:
        with self._lock:
            return sum(1 for key in list(self._data) if self._live(key) is not None)


class SqlStore:
    """
    SQLAlchemy-backed store shared by all worker processes.

    Expired rows are treated as absent and removed when next touched.
    incr runs as a single transaction; concurrent writers on SQLite are
    serialized by the database lock.
    """

    def __init__(self, database_url: str, clock: Callable[[], float] = time.time):
        self._engine = make_engine(database_url)
        init_db(self._engine)
        self._sessions = make_session_factory(self._engine)
        self._clock = clock

    def _fresh(self, row: Optional[KeyValueEntry]) -> bool:
        return row is not None and (row.expires_at is None or self._clock() < row.expires_at)

    def _expiry(self, ttl: Optional[float]) -> Optional[float]:
        return None if ttl is None else self._clock() + ttl

    def get(self, key: str) -> Any:
        with self._sessions() as session:
            row = session.get(KeyValueEntry, key)
            if row is None:
                return None
            if not self._fresh(row):
                session.delete(row)
                session.commit()
                return None
            return json.loads(row.value)

    def set(self, key: str, value: Any, ttl: Optional[float] = None) -> None:
        with self._sessions() as session:
            session.merge(KeyValueEntry(key=key, value=_dumps(value), expires_at=self._expiry(ttl)))
            session.commit()

    def delete(self, key: str) -> bool:
        with self._sessions() as session:
            result = session.execute(delete(KeyValueEntry).where(KeyValueEntry.key == key))
            session.commit()
            return result.rowcount > 0

    def delete_prefix(self, prefix: str) -> int:
        with self._sessions() as session:
            result = session.execute(
                delete(KeyValueEntry).where(KeyValueEntry.key.startswith(prefix, autoescape=True))
            )
            session.commit()
            return result.rowcount

    def incr(self, key: str, amount: int = 1, ttl: Optional[float] = None) -> int:
        with self._sessions() as session:
            row = session.execute(
                select(KeyValueEntry).where(KeyValueEntry.key == key).with_for_update()
            ).scalar_one_or_none()
            if self._fresh(row):
                current = int(json.loads(row.value)) + amount
                row.value = _dumps(current)
                if ttl is not None:
                    row.expires_at = self._expiry(ttl)
            else:
                current = amount
                session.merge(KeyValueEntry(key=key, value=_dumps(current), expires_at=self._expiry(ttl)))
            session.commit()
            return current


def create_store(backend: str, database_url: str = "") -> Store:
    """Build the configured store backend."""
    if backend == "sql":
        logger.info(f"Using SQL store: {database_url}")
        return SqlStore(database_url)
    if backend != "memory":
        raise ValueError(f"Unknown store backend: {backend!r}")
    return MemoryStore()
