"""
Trakt client (api.trakt.tv, API version 2).
"""
import logging
from typing import Any, Dict, List, Optional

from nowscrobbling.cache import CacheResult, DataType, FetchContext, Service, get_ttl_for_type

from .base import BaseApiClient

logger = logging.getLogger("api.trakt")

API_VERSION = "2"
HISTORY_TYPES = ("all", "movies", "shows", "episodes")
RATING_TYPES = ("all", "movies", "shows", "seasons", "episodes")


def _watching_state(payload: Any) -> Dict[str, Any]:
    """
    /watching answers 204 with no body when nothing is playing. Keep that as
    an explicit, cacheable state instead of an empty payload.
    """
    if not isinstance(payload, dict) or not payload:
        return {"watching": False}
    state = dict(payload)
    state["watching"] = True
    return state


# =============================================================================
# PAYLOAD ACCESSORS
# =============================================================================

def is_watching(payload: Any) -> bool:
    return isinstance(payload, dict) and bool(payload.get("watching")) and "type" in payload


def watching_item(payload: Any) -> Optional[Dict[str, Any]]:
    """Movie or episode currently being watched, or None."""
    if not is_watching(payload):
        return None
    if payload["type"] == "movie":
        movie = payload.get("movie", {})
        return {
            "type": "movie",
            "title": movie.get("title", ""),
            "year": movie.get("year"),
            "ids": movie.get("ids", {}),
            "started_at": payload.get("started_at"),
        }
    if payload["type"] == "episode":
        show = payload.get("show", {})
        episode = payload.get("episode", {})
        return {
            "type": "episode",
            "show_title": show.get("title", ""),
            "show_year": show.get("year"),
            "season": episode.get("season", 0),
            "episode": episode.get("number", 0),
            "episode_title": episode.get("title", ""),
            "ids": {"show": show.get("ids", {}), "episode": episode.get("ids", {})},
            "started_at": payload.get("started_at"),
        }
    return None


def _first(payload: Any) -> Optional[Dict[str, Any]]:
    if isinstance(payload, list) and payload and isinstance(payload[0], dict):
        return payload[0]
    return None


def last_movie(payload: Any) -> Optional[Dict[str, Any]]:
    item = _first(payload)
    if item is None or "movie" not in item:
        return None
    movie = item["movie"]
    return {
        "type": "movie",
        "title": movie.get("title", ""),
        "year": movie.get("year"),
        "watched_at": item.get("watched_at"),
        "ids": movie.get("ids", {}),
    }


def last_show(payload: Any) -> Optional[Dict[str, Any]]:
    item = _first(payload)
    if item is None or "show" not in item:
        return None
    show = item["show"]
    return {
        "type": "show",
        "title": show.get("title", ""),
        "year": show.get("year"),
        "watched_at": item.get("watched_at"),
        "ids": show.get("ids", {}),
    }


def last_episode(payload: Any) -> Optional[Dict[str, Any]]:
    item = _first(payload)
    if item is None or "episode" not in item:
        return None
    show = item.get("show", {})
    episode = item["episode"]
    return {
        "type": "episode",
        "show_title": show.get("title", ""),
        "season": episode.get("season", 0),
        "episode": episode.get("number", 0),
        "episode_title": episode.get("title", ""),
        "watched_at": item.get("watched_at"),
        "ids": {"show": show.get("ids", {}), "episode": episode.get("ids", {})},
    }


def history_items(payload: Any) -> List[Dict[str, Any]]:
    """History rows reduced to type/title/watched_at."""
    if not isinstance(payload, list):
        return []
    rows = []
    for item in payload:
        kind = item.get("type")
        if kind == "movie":
            title = item.get("movie", {}).get("title", "")
        elif kind == "episode":
            title = format_episode(last_episode([item]) or {})
        else:
            title = ""
        rows.append({"type": kind, "title": title, "watched_at": item.get("watched_at")})
    return rows


def format_episode(data: Dict[str, Any], max_length: int = 45) -> str:
    """'Show S01E02', shortened with an ellipsis."""
    text = f"{data.get('show_title', '')} S{int(data.get('season') or 0):02d}E{int(data.get('episode') or 0):02d}"
    if len(text) > max_length:
        text = text[: max_length - 1] + "…"
    return text


# =============================================================================
# CLIENT
# =============================================================================

class TraktClient(BaseApiClient):
    """Reads a user's current watch, history and ratings."""

    service = Service.TRAKT

    def __init__(self, *args, client_id: Optional[str] = None, user: Optional[str] = None, **kwargs):
        super().__init__(*args, **kwargs)
        self.client_id = client_id or ""
        self.user = user or ""

    def is_configured(self) -> bool:
        return bool(self.client_id and self.user)

    def default_headers(self) -> Dict[str, str]:
        headers = super().default_headers()
        headers.update({
            "Content-Type": "application/json",
            "trakt-api-version": API_VERSION,
            "trakt-api-key": self.client_id,
        })
        return headers

    def connection_test_endpoint(self) -> str:
        return f"users/{self.user}/watching"

    def get_watching(
        self,
        context: FetchContext = FetchContext.INTERACTIVE,
        force_refresh: bool = False,
    ) -> CacheResult:
        return self.fetch(
            f"users/{self.user}/watching",
            ttl=get_ttl_for_type(DataType.NOW_PLAYING),
            context=context,
            force_refresh=force_refresh,
            transform=_watching_state,
        )

    def watching_active(self) -> bool:
        """Whether the cached watching state says something is playing."""
        return is_watching(self.cached(f"users/{self.user}/watching"))

    def get_history(
        self,
        type: str = "all",
        limit: int = 10,
        context: FetchContext = FetchContext.INTERACTIVE,
        force_refresh: bool = False,
    ) -> CacheResult:
        if type not in HISTORY_TYPES:
            raise ValueError(f"Unknown history type: {type}")
        endpoint = f"users/{self.user}/history" if type == "all" else f"users/{self.user}/history/{type}"
        return self.fetch(endpoint, {"limit": limit}, context=context, force_refresh=force_refresh)

    def get_movie_history(self, limit: int = 5, **options) -> CacheResult:
        return self.get_history("movies", limit, **options)

    def get_show_history(self, limit: int = 5, **options) -> CacheResult:
        return self.get_history("shows", limit, **options)

    def get_episode_history(self, limit: int = 5, **options) -> CacheResult:
        return self.get_history("episodes", limit, **options)

    def get_ratings(
        self,
        type: str = "all",
        context: FetchContext = FetchContext.INTERACTIVE,
        force_refresh: bool = False,
    ) -> CacheResult:
        if type not in RATING_TYPES:
            raise ValueError(f"Unknown ratings type: {type}")
        endpoint = f"users/{self.user}/ratings" if type == "all" else f"users/{self.user}/ratings/{type}"
        return self.fetch(
            endpoint,
            ttl=get_ttl_for_type(DataType.RATINGS),
            context=context,
            force_refresh=force_refresh,
        )
