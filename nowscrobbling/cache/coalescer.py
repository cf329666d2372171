"""
Join concurrent producer calls for the same cache key inside one worker process.

Threads that ask for a key while another thread is already running its
producer wait for that call and receive the same outcome. This does not reach
across processes; the fallback-preferred policy covers that case.
"""
import logging
import threading
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Optional

logger = logging.getLogger("cache.coalescer")


@dataclass
class InFlightCall:
    """A producer call currently running for one key."""
    done: threading.Event = field(default_factory=threading.Event)
    result: Optional[Any] = None
    error: Optional[BaseException] = None
    started_at: float = field(default_factory=time.monotonic)
    joined: int = 0


class RequestCoalescer:
    """
    Usage:
        coalescer = RequestCoalescer()
        value = coalescer.run("lastfm_recent_...", producer)
    """

    def __init__(self, timeout: float = 15.0):
        """
        Args:
            timeout: Max seconds a joining thread waits for the running call
        """
        self._calls: Dict[str, InFlightCall] = {}
        self._lock = threading.Lock()
        self._timeout = timeout

    def run(self, key: str, producer: Callable[[], Any]) -> Any:
        """
        Run the producer, or wait for an identical call already in flight.

        Raises:
            TimeoutError: the running call did not finish within the timeout
            Exception: whatever the producer raised, re-raised in every caller
        """
        with self._lock:
            call = self._calls.get(key)
            owner = call is None
            if owner:
                call = InFlightCall()
                self._calls[key] = call
            else:
                call.joined += 1
                logger.debug(f"Joining in-flight call for {key} (joined: {call.joined})")

        if owner:
            try:
                call.result = producer()
            except Exception as exc:
                call.error = exc
            finally:
                with self._lock:
                    self._calls.pop(key, None)
                call.done.set()
        elif not call.done.wait(timeout=self._timeout):
            logger.error(f"Timed out waiting for in-flight call: {key}")
            raise TimeoutError(f"Call for {key} still running after {self._timeout}s")

        if call.error is not None:
            raise call.error
        return call.result

    @property
    def active_calls(self) -> int:
        with self._lock:
            return len(self._calls)

    def get_stats(self) -> Dict[str, Any]:
        with self._lock:
            now = time.monotonic()
            return {
                "active_calls": len(self._calls),
                "calls": {
                    key: {"joined": call.joined, "running_for": round(now - call.started_at, 2)}
                    for key, call in self._calls.items()
                },
            }
