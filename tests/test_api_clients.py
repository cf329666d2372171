"""
Tests for the Last.fm and Trakt clients on top of the cache manager.

HTTP is faked; cache, limiter, ETag store and metrics are real and share one
in-memory store.
"""
import logging

import pytest

from nowscrobbling.api import lastfm, trakt
from nowscrobbling.api.errors import NetworkError
from nowscrobbling.cache import CacheSource, FetchContext

from conftest import movie_history, recent_tracks, watching_episode


# =============================================================================
# Last.fm
# =============================================================================

def test_recent_tracks_fresh_then_cached(lastfm_client, http, metrics):
    http.respond(200, recent_tracks())

    first = lastfm_client.get_recent_tracks(5)
    second = lastfm_client.get_recent_tracks(5)

    assert first.source is CacheSource.FRESH
    assert second.source is CacheSource.CACHE
    assert len(http.calls) == 1
    assert first.entry.ttl == 30

    url = http.calls[0]["url"]
    assert "method=user.getrecenttracks" in url
    assert "api_key=secret-key" in url
    assert "format=json" in url

    snap = metrics.snapshot("lastfm")
    assert snap["total_requests"] == 1
    assert snap["last_status_code"] == 200
    assert snap["last_latency_ms"] == 12
    assert snap["cache_hits"] == 1


def test_api_key_is_not_part_of_cache_key(lastfm_client, http, cache):
    http.respond(200, recent_tracks())
    result = lastfm_client.get_recent_tracks(5)
    assert "secret" not in result.entry.key
    assert result.entry.key.startswith("lastfm")
    assert result.entry.service == "lastfm"


def test_etag_revalidation_renews_entry(lastfm_client, http, metrics, clock):
    http.respond(200, recent_tracks(), headers={"ETag": 'W/"abc"'})
    lastfm_client.get_recent_tracks(5)

    clock.advance(31)
    http.respond(304)
    result = lastfm_client.get_recent_tracks(5)

    assert http.calls[1]["headers"]["If-None-Match"] == 'W/"abc"'
    assert result.source is CacheSource.CACHE
    assert lastfm.is_now_playing(result.value)
    assert result.entry.expires_at == clock.now + 30
    assert metrics.snapshot("lastfm")["etag_hits"] == 1


def test_no_conditional_request_without_cached_data(lastfm_client, http, cache):
    http.respond(200, recent_tracks(), headers={"ETag": '"abc"'})
    first = lastfm_client.get_recent_tracks(5)
    cache.delete(first.entry.key)

    http.respond(200, recent_tracks())
    lastfm_client.get_recent_tracks(5)
    assert "If-None-Match" not in http.calls[1]["headers"]


def test_429_starts_cooldown_and_skips_network(lastfm_client, http, rate_limiter):
    http.respond(429, {"message": "slow down"}, headers={"Retry-After": "60"})
    result = lastfm_client.get_recent_tracks(5)
    assert result.source is CacheSource.MISS
    assert rate_limiter.should_throttle("lastfm")

    again = lastfm_client.get_recent_tracks(5, force_refresh=True)
    assert again.source is CacheSource.MISS
    assert len(http.calls) == 1


def test_in_band_rate_limit_error(lastfm_client, http, rate_limiter):
    """Last.fm answers 200 with error 29 when rate limited."""
    http.respond(200, {"error": 29, "message": "Rate Limit Exceeded"})
    result = lastfm_client.get_recent_tracks(5)
    assert result.source is CacheSource.MISS
    assert rate_limiter.remaining_cooldown("lastfm") == 1800


def test_in_band_error_is_not_cached(lastfm_client, http, cache, metrics, rate_limiter):
    http.respond(200, {"error": 6, "message": "User not found"})
    result = lastfm_client.get_top_artists("1month")
    assert result.source is CacheSource.MISS
    assert cache.tracked_keys() == {}
    assert rate_limiter.error_count("lastfm") == 1
    assert metrics.snapshot("lastfm")["last_error"].startswith("Last.fm error 6")


def test_server_error_falls_back(lastfm_client, http, clock):
    http.respond(200, recent_tracks(title="Angel"))
    lastfm_client.get_recent_tracks(5)
    clock.advance(31)

    http.respond(503)
    result = lastfm_client.get_recent_tracks(5)
    assert result.source is CacheSource.FALLBACK
    assert lastfm.tracks(result.value)[0]["name"] == "Angel"


def test_malformed_json_is_logged(lastfm_client, http, metrics, caplog):
    http.respond(200, text="<html>maintenance</html>")
    with caplog.at_level(logging.ERROR, logger="api.base"):
        result = lastfm_client.get_recent_tracks(5)
    assert result.source is CacheSource.MISS
    assert "maintenance" in caplog.text
    assert "HTTP 200" in caplog.text
    assert metrics.snapshot("lastfm")["total_errors"] == 1


def test_failure_logs_never_contain_the_api_key(lastfm_client, http, caplog):
    http.respond(200, text="<html>maintenance</html>")
    with caplog.at_level(logging.WARNING):
        lastfm_client.get_recent_tracks(5)

    assert "Invalid JSON" in caplog.text
    assert "request failed" in caplog.text
    assert "secret-key" not in caplog.text
    assert "api_key=***" in caplog.text


def test_network_error_counts(lastfm_client, http, metrics, rate_limiter):
    http.fail(NetworkError("connection refused", url="https://ws.audioscrobbler.com/2.0/"))
    result = lastfm_client.get_recent_tracks(5)
    assert result.source is CacheSource.MISS
    assert metrics.snapshot("lastfm")["total_errors"] == 1
    assert rate_limiter.error_count("lastfm") == 1


def test_top_list_ttl_follows_period(lastfm_client, http):
    http.respond(200, {"topartists": {"artist": [{"name": "Björk", "playcount": "42", "url": "u"}]}})
    result = lastfm_client.get_top_artists("overall")
    assert result.entry.ttl == 24 * 3600
    assert lastfm.top_items(result.value, "artists") == [{"name": "Björk", "playcount": 42, "url": "u"}]


@pytest.mark.parametrize("method, expected", [
    ("get_top_albums", "method=user.gettopalbums"),
    ("get_top_tracks", "method=user.gettoptracks"),
])
def test_top_list_methods(lastfm_client, http, method, expected):
    http.respond(200, {"topalbums": {"album": []}})
    getattr(lastfm_client, method)("1month", 3)
    assert expected in http.calls[0]["url"]
    assert "period=1month" in http.calls[0]["url"]


def test_now_playing_active_reads_cache_only(lastfm_client, http):
    assert not lastfm_client.now_playing_active(5)

    http.respond(200, recent_tracks(now_playing=True))
    lastfm_client.get_recent_tracks(5)
    assert lastfm_client.now_playing_active(5)
    assert len(http.calls) == 1

    http.respond(200, recent_tracks(now_playing=False))
    lastfm_client.get_recent_tracks(5, force_refresh=True)
    assert not lastfm_client.now_playing_active(5)


def test_page_render_does_not_fetch(lastfm_client, http):
    result = lastfm_client.get_recent_tracks(5, context=FetchContext.PAGE_RENDER)
    assert result.source is CacheSource.MISS
    assert http.calls == []


def test_lastfm_accessors():
    payload = recent_tracks(now_playing=True)
    assert lastfm.is_now_playing(payload)
    current = lastfm.current_track(payload)
    assert current["artist"] == "Massive Attack"
    assert current["image"].endswith("large.png")

    idle = recent_tracks(now_playing=False)
    assert not lastfm.is_now_playing(idle)
    assert lastfm.current_track(idle) is None

    single = {"recenttracks": {"track": {"name": "Only", "artist": {"#text": "One"}}}}
    assert len(lastfm.tracks(single)) == 1
    assert lastfm.tracks(None) == []


def test_format_track_truncates():
    text = lastfm.format_track({"artist": "A" * 30, "track": "B" * 30}, max_length=20)
    assert len(text) == 20
    assert text.endswith("…")


# =============================================================================
# Trakt
# =============================================================================

def test_trakt_headers(trakt_client, http):
    http.respond(200, watching_episode())
    trakt_client.get_watching()
    headers = http.calls[0]["headers"]
    assert headers["trakt-api-key"] == "client-id"
    assert headers["trakt-api-version"] == "2"
    assert http.calls[0]["url"] == "https://api.trakt.tv/users/someone/watching"


def test_not_watching_is_cacheable(trakt_client, http):
    http.respond(204)
    first = trakt_client.get_watching()
    second = trakt_client.get_watching()

    assert first.source is CacheSource.FRESH
    assert first.value == {"watching": False}
    assert second.source is CacheSource.CACHE
    assert not trakt.is_watching(second.value)
    assert len(http.calls) == 1


def test_watching_episode(trakt_client, http):
    http.respond(200, watching_episode())
    result = trakt_client.get_watching()
    item = trakt.watching_item(result.value)
    assert item["type"] == "episode"
    assert item["show_title"] == "Breaking Bad"
    assert trakt.format_episode(item) == "Breaking Bad S02E05"


def test_history_endpoints(trakt_client, http):
    http.respond(200, movie_history())
    result = trakt_client.get_movie_history(1)
    assert http.calls[0]["url"] == "https://api.trakt.tv/users/someone/history/movies?limit=1"
    assert trakt.last_movie(result.value)["title"] == "Heat"
    assert trakt.last_show(result.value) is None


@pytest.mark.parametrize("method, path", [
    ("get_show_history", "history/shows"),
    ("get_episode_history", "history/episodes"),
])
def test_typed_history_methods(trakt_client, http, method, path):
    http.respond(200, [])
    getattr(trakt_client, method)(2)
    assert http.calls[0]["url"] == f"https://api.trakt.tv/users/someone/{path}?limit=2"


def test_watching_active_reads_cache_only(trakt_client, http):
    assert not trakt_client.watching_active()
    assert http.calls == []

    http.respond(200, watching_episode())
    trakt_client.get_watching()
    assert trakt_client.watching_active()

    http.respond(204)
    trakt_client.get_watching(force_refresh=True)
    assert not trakt_client.watching_active()


def test_empty_history_is_a_miss(trakt_client, http):
    http.respond(200, [])
    result = trakt_client.get_history("episodes", 1)
    assert result.source is CacheSource.MISS


def test_ratings(trakt_client, http):
    http.respond(200, [{"rating": 10, "type": "movie", "movie": {"title": "Heat"}}])
    result = trakt_client.get_ratings("movies")
    assert http.calls[0]["url"] == "https://api.trakt.tv/users/someone/ratings/movies"
    assert result.entry.ttl == 24 * 3600


# =============================================================================
# Connection test
# =============================================================================

def test_connection_success_does_not_touch_cache(lastfm_client, http, cache):
    http.respond(200, recent_tracks())
    result = lastfm_client.test_connection()
    assert result.status == "success"
    assert cache.tracked_keys() == {}


def test_connection_unconfigured_is_warning(trakt_client, http):
    trakt_client.client_id = ""
    result = trakt_client.test_connection()
    assert result.status == "warning"
    assert result.message == "API credentials not configured"
    assert not result.ok
    assert http.calls == []


def test_connection_unauthorized(trakt_client, http):
    http.respond(401)
    result = trakt_client.test_connection()
    assert result.status == "error"
    assert result.status_code == 401


def test_connection_rate_limited_is_warning(trakt_client, http):
    http.respond(429, headers={"Retry-After": "120"})
    result = trakt_client.test_connection()
    assert result.status == "warning"
    assert "120" in result.message


def test_rate_limit_status_after_429(trakt_client, http):
    http.respond(429)
    trakt_client.get_watching()
    status = trakt_client.rate_limit_status()
    assert status["throttled"] is True
    assert status["cooldown_remaining"] == 1800
    assert len(http.calls) == 1
