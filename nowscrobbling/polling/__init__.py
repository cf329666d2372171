"""
Client side of the change-detection protocol: adaptive polling of rendered fragments.
"""
from .state import (
    STOP_FAILURES,
    STOP_HIDDEN,
    STOP_LIFETIME,
    STOP_MANUAL,
    STOP_NOT_LIVE,
    PollConfig,
    PollPolicy,
    PollState,
)
from .client import FragmentPoller, PollError, PollResponse

__all__ = [
    "PollConfig",
    "PollPolicy",
    "PollState",
    "FragmentPoller",
    "PollError",
    "PollResponse",
    "STOP_FAILURES",
    "STOP_HIDDEN",
    "STOP_LIFETIME",
    "STOP_MANUAL",
    "STOP_NOT_LIVE",
]
