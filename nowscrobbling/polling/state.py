"""
Polling configuration, per-fragment state and the interval policy.

The policy is pure: it reads and updates a PollState and never sleeps or
performs I/O, so the loop in client.py stays thin.
"""
from dataclasses import asdict, dataclass
from typing import Dict, Optional

SERVICE_BASE_INTERVALS: Dict[str, float] = {
    "lastfm": 20.0,
    "trakt": 60.0,
}

MIN_IDLE_BASE = 60.0
MAX_IDLE_STEPS = 6

STOP_NOT_LIVE = "not_live"
STOP_LIFETIME = "lifetime"
STOP_HIDDEN = "hidden"
STOP_FAILURES = "failures"
STOP_MANUAL = "manual"


@dataclass
class PollConfig:
    """Polling parameters for one fragment (seconds)."""
    base_interval: float = 20.0
    max_interval: float = 300.0
    max_lifetime: float = 3600.0
    hidden_grace: float = 300.0
    max_failures: int = 6
    max_idle_steps: int = MAX_IDLE_STEPS

    @classmethod
    def for_service(cls, service: str, **overrides) -> "PollConfig":
        """Config with the service's live interval (Last.fm 20s, Trakt 60s)."""
        values = {"base_interval": SERVICE_BASE_INTERVALS.get(service, 60.0)}
        values.update({k: v for k, v in overrides.items() if v is not None})
        return cls(**values)

    @classmethod
    def from_settings(cls, service: str, config) -> "PollConfig":
        """Config from application settings (`<service>_poll_interval` and the `poll_*` limits)."""
        return cls.for_service(
            service,
            base_interval=getattr(config, f"{service}_poll_interval", None),
            max_interval=config.poll_max_interval,
            max_lifetime=config.poll_max_lifetime,
            hidden_grace=config.poll_hidden_grace,
            max_failures=config.poll_max_failures,
        )

    def to_dict(self) -> Dict[str, float]:
        data = asdict(self)
        data["idle_base"] = self.idle_base
        return data

    @property
    def idle_base(self) -> float:
        return max(2 * self.base_interval, MIN_IDLE_BASE)


@dataclass
class PollState:
    content_hash: Optional[str] = None
    is_live: bool = False
    idle_steps: int = 0
    started_at: float = 0.0
    last_activity_at: float = 0.0
    failures: int = 0
    hidden_since: Optional[float] = None
    polling: bool = False
    stopped: bool = False
    stop_reason: Optional[str] = None
    retry_available: bool = False
    updates: int = 0


class PollPolicy:
    """Interval and stop decisions for the polling loop."""

    def __init__(self, config: PollConfig):
        self.config = config

    # ----- intervals -----

    def live_interval(self) -> float:
        return self.config.base_interval

    def idle_interval(self, state: PollState) -> float:
        return min(self.config.max_interval, self.config.idle_base * (2 ** state.idle_steps))

    def failure_interval(self, state: PollState) -> float:
        return min(self.config.max_interval, self.config.base_interval * (2 ** state.failures))

    def next_interval(self, state: PollState) -> float:
        if state.failures:
            return self.failure_interval(state)
        if state.is_live:
            return self.live_interval()
        return self.idle_interval(state)

    # ----- transitions -----

    def start(self, state: PollState, now: float) -> None:
        state.started_at = now
        state.last_activity_at = now
        state.stopped = False
        state.stop_reason = None
        state.polling = state.is_live

    def stop(self, state: PollState, reason: str) -> None:
        state.polling = False
        state.stopped = True
        state.stop_reason = reason

    def on_response(self, state: PollState, new_hash: Optional[str], changed: bool, live: bool, now: float) -> None:
        """Successful poll or check."""
        state.failures = 0
        state.retry_available = False
        state.last_activity_at = now
        if new_hash:
            state.content_hash = new_hash

        if changed:
            state.idle_steps = 0
        elif not live:
            state.idle_steps = min(state.idle_steps + 1, self.config.max_idle_steps)

        was_live = state.is_live
        state.is_live = live
        if state.polling and was_live and not live:
            self.stop(state, STOP_NOT_LIVE)

    def on_failure(self, state: PollState, now: float) -> bool:
        """
        Failed poll. Returns True when polling gives up; stale content stays and
        a manual retry becomes available.
        """
        state.failures += 1
        if state.failures >= self.config.max_failures:
            self.stop(state, STOP_FAILURES)
            state.retry_available = True
            return True
        return False

    def check_stop(self, state: PollState, now: float) -> Optional[str]:
        """Reason to stop before the next poll, if any."""
        if state.stopped:
            return state.stop_reason
        if now - state.started_at >= self.config.max_lifetime:
            self.stop(state, STOP_LIFETIME)
            return STOP_LIFETIME
        if state.hidden_since is not None and now - state.hidden_since >= self.config.hidden_grace:
            self.stop(state, STOP_HIDDEN)
            return STOP_HIDDEN
        return None

    def idle_check_due(self, state: PollState, now: float) -> bool:
        """Whether an opportunistic check (on visibility regained) may run now."""
        return now - state.last_activity_at >= self.idle_interval(state)
