"""
Periodic background refresh of cached upstream data.
"""
import logging
import threading
from typing import Callable, Dict, List, Optional

logger = logging.getLogger("scheduler")


class BackgroundRefresher:
    """
    Runs registered jobs every `interval` seconds on a daemon thread.

    A failing job is logged and the round continues with the next one.
    Jobs registered with a `when` predicate only run in rounds where it
    returns True.
    """

    def __init__(self, interval: float = 300.0, name: str = "refresh"):
        self.interval = interval
        self.name = name
        self._jobs: Dict[str, Callable[[], object]] = {}
        self._conditions: Dict[str, Callable[[], bool]] = {}
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self.rounds = 0
        self.last_errors: Dict[str, str] = {}

    def register(self, name: str, job: Callable[[], object], when: Optional[Callable[[], bool]] = None) -> None:
        self._jobs[name] = job
        if when is not None:
            self._conditions[name] = when
        else:
            self._conditions.pop(name, None)

    @property
    def jobs(self) -> List[str]:
        return list(self._jobs)

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def _due(self, name: str) -> bool:
        condition = self._conditions.get(name)
        if condition is None:
            return True
        try:
            return bool(condition())
        except Exception as exc:
            logger.error(f"Condition for {name} failed: {type(exc).__name__}: {exc}")
            return False

    def run_once(self) -> Dict[str, bool]:
        """Run every due job once. Returns job name -> succeeded; skipped jobs are left out."""
        results = {}
        for name, job in list(self._jobs.items()):
            if not self._due(name):
                logger.debug(f"{self.name}: skipping {name}")
                continue
            try:
                job()
            except Exception as exc:
                logger.error(f"Refresh job {name} failed: {type(exc).__name__}: {exc}")
                self.last_errors[name] = str(exc)
                results[name] = False
            else:
                self.last_errors.pop(name, None)
                results[name] = True
        self.rounds += 1
        if results:
            logger.info(f"{self.name} round {self.rounds}: {sum(results.values())}/{len(results)} jobs ok")
        return results

    def _loop(self) -> None:
        while not self._stop_event.wait(self.interval):
            self.run_once()

    def start(self) -> None:
        if self.running:
            return
        self._stop_event.clear()
        self._thread = threading.Thread(target=self._loop, name=f"nowscrobbling-{self.name}", daemon=True)
        self._thread.start()
        logger.info(f"{self.name} started (every {self.interval}s, {len(self._jobs)} jobs)")

    def stop(self, timeout: float = 5.0) -> None:
        self._stop_event.set()
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None
        logger.info(f"{self.name} stopped")

    def describe(self) -> Dict[str, object]:
        return {
            "interval": self.interval,
            "running": self.running,
            "jobs": self.jobs,
            "rounds": self.rounds,
            "last_errors": dict(self.last_errors),
        }
