"""
Shared fixtures: fake clock, in-memory store, fake HTTP transport and sample payloads.
"""
import json
from typing import Any, Dict, List, Optional

import pytest

from nowscrobbling.api.http import HttpResponse
from nowscrobbling.api.lastfm import LastFmClient
from nowscrobbling.api.rate_limiter import RateLimiter
from nowscrobbling.api.trakt import TraktClient
from nowscrobbling.cache import CacheManager, ETagManager
from nowscrobbling.metrics import MetricsRecorder
from nowscrobbling.store import MemoryStore


class FakeClock:
    """Manually advanced wall clock."""

    def __init__(self, start: float = 1_700_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeHttp:
    """Stands in for HttpClient: replays queued responses and records requests."""

    def __init__(self):
        self.queue: List[Any] = []
        self.calls: List[Dict[str, Any]] = []

    def respond(self, status: int = 200, body: Any = None, headers: Optional[Dict[str, str]] = None,
                text: Optional[str] = None) -> None:
        if text is None:
            text = "" if body is None else json.dumps(body)
        self.queue.append(HttpResponse(status_code=status, headers=headers or {}, text=text, elapsed_ms=12))

    def fail(self, exc: Exception) -> None:
        self.queue.append(exc)

    def get(self, url: str, params=None, headers=None) -> HttpResponse:
        self.calls.append({"url": url, "headers": dict(headers or {})})
        if not self.queue:
            raise AssertionError(f"Unexpected request to {url}")
        item = self.queue.pop(0)
        if isinstance(item, Exception):
            raise item
        return item


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def store(clock):
    return MemoryStore(clock=clock)


@pytest.fixture
def metrics(store, clock):
    return MetricsRecorder(store, clock=clock)


@pytest.fixture
def rate_limiter(store, clock):
    return RateLimiter(store, clock=clock)


@pytest.fixture
def etags(store, clock):
    return ETagManager(store, clock=clock)


@pytest.fixture
def cache(store, metrics, rate_limiter, etags, clock):
    return CacheManager(
        store,
        metrics=metrics,
        rate_limiter=rate_limiter,
        etags=etags,
        prefer_fallback=False,
        clock=clock,
    )


@pytest.fixture
def http():
    return FakeHttp()


@pytest.fixture
def lastfm_client(cache, rate_limiter, etags, metrics, http, clock):
    return LastFmClient(
        cache=cache,
        rate_limiter=rate_limiter,
        etags=etags,
        metrics=metrics,
        http=http,
        base_url="https://ws.audioscrobbler.com/2.0/",
        default_ttl=60,
        clock=clock,
        api_key="secret-key",
        user="someone",
    )


@pytest.fixture
def trakt_client(cache, rate_limiter, etags, metrics, http, clock):
    return TraktClient(
        cache=cache,
        rate_limiter=rate_limiter,
        etags=etags,
        metrics=metrics,
        http=http,
        base_url="https://api.trakt.tv/",
        default_ttl=300,
        clock=clock,
        client_id="client-id",
        user="someone",
    )


# =============================================================================
# Sample payloads
# =============================================================================

def recent_tracks(now_playing: bool = True, title: str = "Teardrop", uts: str = "1700000000") -> Dict[str, Any]:
    first = {
        "artist": {"#text": "Massive Attack"},
        "name": title,
        "album": {"#text": "Mezzanine"},
        "url": "https://www.last.fm/music/Massive+Attack/_/Teardrop",
        "image": [
            {"#text": "https://lastfm.freetls.fastly.net/i/u/34s/small.png", "size": "small"},
            {"#text": "https://lastfm.freetls.fastly.net/i/u/300x300/large.png", "size": "extralarge"},
        ],
    }
    if now_playing:
        first["@attr"] = {"nowplaying": "true"}
    else:
        first["date"] = {"uts": uts, "#text": "14 Nov 2023, 22:13"}
    return {
        "recenttracks": {
            "track": [
                first,
                {
                    "artist": {"#text": "Portishead"},
                    "name": "Roads",
                    "album": {"#text": "Dummy"},
                    "url": "https://www.last.fm/music/Portishead/_/Roads",
                    "date": {"uts": "1699990000", "#text": "14 Nov 2023, 19:26"},
                },
            ],
            "@attr": {"user": "someone", "page": "1", "total": "1234"},
        }
    }


def watching_episode() -> Dict[str, Any]:
    return {
        "expires_at": "2023-11-14T23:00:00.000Z",
        "started_at": "2023-11-14T22:10:00.000Z",
        "action": "scrobble",
        "type": "episode",
        "episode": {"season": 2, "number": 5, "title": "Ozymandias", "ids": {"trakt": 73482}},
        "show": {"title": "Breaking Bad", "year": 2008, "ids": {"trakt": 1388}},
    }


def movie_history() -> List[Dict[str, Any]]:
    return [
        {
            "id": 1,
            "watched_at": "2023-11-13T20:00:00.000Z",
            "action": "watch",
            "type": "movie",
            "movie": {"title": "Heat", "year": 1995, "ids": {"trakt": 100}},
        }
    ]
