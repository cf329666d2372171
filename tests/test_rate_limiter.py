"""
Tests for per-service cooldown and exponential backoff.
"""
from nowscrobbling.api.rate_limiter import (
    MAX_COOLDOWN_SECONDS,
    RateLimiter,
    cooldown_for,
)


def test_no_throttle_initially(rate_limiter):
    assert not rate_limiter.should_throttle("lastfm")
    assert rate_limiter.remaining_cooldown("lastfm") == 0


def test_429_sets_max_cooldown_immediately(rate_limiter, clock):
    rate_limiter.record_error("lastfm", 429)
    assert rate_limiter.should_throttle("lastfm")
    assert rate_limiter.remaining_cooldown("lastfm") == MAX_COOLDOWN_SECONDS

    clock.advance(MAX_COOLDOWN_SECONDS - 1)
    assert rate_limiter.should_throttle("lastfm")
    clock.advance(2)
    assert not rate_limiter.should_throttle("lastfm")


def test_errors_below_threshold_do_not_throttle(rate_limiter):
    rate_limiter.record_error("trakt", 500)
    rate_limiter.record_error("trakt", 0)
    assert rate_limiter.error_count("trakt") == 2
    assert not rate_limiter.should_throttle("trakt")


def test_backoff_doubles(rate_limiter, clock):
    """3rd error -> 60s, 4th -> 120s, 5th -> 240s."""
    for _ in range(3):
        rate_limiter.record_error("trakt", 503)
    assert rate_limiter.remaining_cooldown("trakt") == 60

    clock.advance(61)
    assert not rate_limiter.should_throttle("trakt")
    rate_limiter.record_error("trakt", 503)
    assert rate_limiter.remaining_cooldown("trakt") == 120

    clock.advance(121)
    rate_limiter.record_error("trakt", 503)
    assert rate_limiter.remaining_cooldown("trakt") == 240


def test_cooldown_is_capped():
    assert cooldown_for(3) == 60
    assert cooldown_for(8) == MAX_COOLDOWN_SECONDS
    assert cooldown_for(500) == MAX_COOLDOWN_SECONDS


def test_cooldown_is_monotonic():
    values = [cooldown_for(n) for n in range(3, 40)]
    assert values == sorted(values)


def test_success_clears_state(rate_limiter):
    for _ in range(4):
        rate_limiter.record_error("lastfm")
    assert rate_limiter.should_throttle("lastfm")

    rate_limiter.record_success("lastfm")
    assert not rate_limiter.should_throttle("lastfm")
    assert rate_limiter.error_count("lastfm") == 0


def test_services_are_independent(rate_limiter):
    rate_limiter.record_error("lastfm", 429)
    assert rate_limiter.should_throttle("lastfm")
    assert not rate_limiter.should_throttle("trakt")


def test_old_errors_age_out(rate_limiter, clock):
    rate_limiter.record_error("lastfm")
    rate_limiter.record_error("lastfm")
    clock.advance(3601)
    rate_limiter.record_error("lastfm")
    assert rate_limiter.error_count("lastfm") == 1
    assert not rate_limiter.should_throttle("lastfm")


def test_state_is_shared_through_the_store(store, clock):
    """Two limiters on the same store (two workers) see the same cooldown."""
    first = RateLimiter(store, clock=clock)
    second = RateLimiter(store, clock=clock)
    first.record_error("trakt", 429)
    assert second.should_throttle("trakt")


def test_status(rate_limiter):
    rate_limiter.record_error("lastfm", 500)
    status = rate_limiter.status("lastfm")
    assert status == {
        "service": "lastfm",
        "throttled": False,
        "error_count": 1,
        "cooldown_remaining": 0,
    }
