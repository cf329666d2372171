"""
Polling client for one rendered fragment.

Talks to GET /render/{content_id}?hash=&force_refresh= and only calls
on_update when the server reports a change.
"""
import logging
import threading
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional

import requests

from .state import STOP_MANUAL, PollConfig, PollPolicy, PollState

logger = logging.getLogger("polling.client")


@dataclass
class PollResponse:
    """Decoded render endpoint answer."""
    html: Optional[str]
    hash: str
    changed: bool
    source: str
    live: bool

    @classmethod
    def from_json(cls, data: Dict[str, Any]) -> "PollResponse":
        return cls(
            html=data.get("html"),
            hash=data["hash"],
            changed=bool(data.get("changed")),
            source=data.get("source", "miss"),
            live=bool(data.get("live")),
        )


class PollError(Exception):
    """Render endpoint unreachable or answered with something unusable."""


class FragmentPoller:
    """
    Client half of the change-detection protocol for one fragment.

    Usage:
        poller = FragmentPoller("http://localhost:8000", "lastfm_indicator", on_update=print)
        poller.load()
        poller.run()   # blocks until a stop condition; call stop() from elsewhere
    """

    def __init__(
        self,
        base_url: str,
        content_id: str,
        config: Optional[PollConfig] = None,
        on_update: Optional[Callable[[str, PollResponse], None]] = None,
        session: Optional[requests.Session] = None,
        timeout: float = 10.0,
        clock: Callable[[], float] = time.monotonic,
        wait: Optional[Callable[[float], bool]] = None,
    ):
        """
        Args:
            base_url: Server root, e.g. http://localhost:8000
            content_id: Fragment to poll (lastfm_indicator, trakt_history, ...)
            config: Polling parameters; derived from the content id's service when omitted
            on_update: Called with (html, response) whenever the content changed
            wait: Sleeps up to N seconds, returns True when polling should end.
                Defaults to waiting on the poller's stop event.
        """
        self.base_url = base_url.rstrip("/")
        self.content_id = content_id
        self.config = config or PollConfig.for_service(content_id.split("_", 1)[0])
        self.policy = PollPolicy(self.config)
        self.state = PollState()
        self._on_update = on_update
        self._session = session or requests.Session()
        self._timeout = timeout
        self._clock = clock
        self._stop_event = threading.Event()
        self._wait = wait or self._stop_event.wait

    # ----- transport -----

    def _request(self, force_refresh: bool) -> PollResponse:
        url = f"{self.base_url}/render/{self.content_id}"
        params = {"force_refresh": "true" if force_refresh else "false"}
        if self.state.content_hash:
            params["hash"] = self.state.content_hash
        try:
            response = self._session.get(url, params=params, timeout=self._timeout)
            response.raise_for_status()
            return PollResponse.from_json(response.json())
        except (requests.RequestException, ValueError, KeyError) as exc:
            raise PollError(f"{self.content_id}: {exc}") from exc

    def _apply(self, response: PollResponse) -> bool:
        """Update state and fire the callback. Returns True when content changed."""
        changed = response.changed and response.html is not None
        self.policy.on_response(self.state, response.hash, changed, response.live, self._clock())
        if changed:
            self.state.updates += 1
            if self._on_update is not None:
                self._on_update(response.html, response)
        return changed

    # ----- lifecycle -----

    def load(self) -> PollResponse:
        """Initial fetch. Polling is armed only when the fragment is live."""
        response = self._request(force_refresh=False)
        self._apply(response)
        self.policy.start(self.state, self._clock())
        logger.debug(f"Loaded {self.content_id} (live={self.state.is_live})")
        return response

    def poll_once(self) -> Optional[PollResponse]:
        """One poll; live fragments ask the server for a forced refresh."""
        try:
            response = self._request(force_refresh=self.state.is_live)
        except PollError as exc:
            gave_up = self.policy.on_failure(self.state, self._clock())
            logger.warning(f"Poll failed ({self.state.failures}/{self.config.max_failures}): {exc}")
            if gave_up:
                logger.info(f"Giving up polling {self.content_id}, manual retry available")
            return None
        self._apply(response)
        if self.state.stopped:
            logger.info(f"Stopped polling {self.content_id}: {self.state.stop_reason}")
        return response

    def run(self) -> Optional[str]:
        """Poll until a stop condition. Returns the stop reason."""
        while self.state.polling:
            if self._wait(self.policy.next_interval(self.state)):
                self.policy.stop(self.state, STOP_MANUAL)
                break
            if self.policy.check_stop(self.state, self._clock()):
                break
            self.poll_once()
        return self.state.stop_reason

    def stop(self) -> None:
        self._stop_event.set()

    def refresh(self) -> PollResponse:
        """Manual refresh: forced fetch that re-arms polling if the fragment is live."""
        self._stop_event.clear()
        response = self._request(force_refresh=True)
        self.state.failures = 0
        self.state.idle_steps = 0
        self._apply(response)
        self.policy.start(self.state, self._clock())
        return response

    # ----- visibility -----

    def set_visible(self, visible: bool) -> Optional[PollResponse]:
        """
        Track tab visibility. Regaining visibility while not polling triggers an
        opportunistic check, spaced by the idle backoff.
        """
        now = self._clock()
        if not visible:
            if self.state.hidden_since is None:
                self.state.hidden_since = now
            return None
        self.state.hidden_since = None
        if self.state.polling or not self.policy.idle_check_due(self.state, now):
            return None
        try:
            response = self._request(force_refresh=False)
        except PollError as exc:
            logger.debug(f"Idle check failed: {exc}")
            return None
        self._apply(response)
        return response
