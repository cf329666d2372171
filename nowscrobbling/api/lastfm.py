"""
Last.fm client (ws.audioscrobbler.com 2.0, JSON format).
"""
import logging
from typing import Any, Dict, List, Optional

from nowscrobbling.cache import (
    CacheResult,
    DataType,
    FetchContext,
    Service,
    get_ttl_for_type,
    get_type_for_period,
)

from .base import BaseApiClient
from .errors import RateLimited, UpstreamError

logger = logging.getLogger("api.lastfm")

# Last.fm error codes that mean "slow down"
RATE_LIMIT_ERROR_CODES = {29}

PERIODS = ("7day", "1month", "3month", "6month", "12month", "overall")

# Collection key and item key per top-list method
TOP_LISTS = {
    "artists": ("user.gettopartists", "topartists", "artist"),
    "albums": ("user.gettopalbums", "topalbums", "album"),
    "tracks": ("user.gettoptracks", "toptracks", "track"),
}

PLACEHOLDER_IMAGE_MARKER = "lastfm/i/u/34s/"


# =============================================================================
# PAYLOAD ACCESSORS
# =============================================================================

def _as_list(value: Any) -> List[Dict[str, Any]]:
    """Last.fm returns a bare object instead of a one-element list for single results."""
    if isinstance(value, list):
        return value
    if isinstance(value, dict):
        return [value]
    return []


def _text(value: Any) -> str:
    if isinstance(value, dict):
        return value.get("#text") or value.get("name") or ""
    return value or ""


def tracks(payload: Any) -> List[Dict[str, Any]]:
    """Track list of a user.getrecenttracks payload."""
    if not isinstance(payload, dict):
        return []
    return _as_list(payload.get("recenttracks", {}).get("track"))


def is_now_playing(payload: Any) -> bool:
    items = tracks(payload)
    if not items:
        return False
    return items[0].get("@attr", {}).get("nowplaying") == "true"


def extract_image(track: Dict[str, Any]) -> str:
    """Largest non-placeholder image URL, or empty string."""
    for image in reversed(_as_list(track.get("image"))):
        url = image.get("#text") or ""
        if url and PLACEHOLDER_IMAGE_MARKER not in url:
            return url
    return ""


def simplify_track(track: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "artist": _text(track.get("artist")),
        "track": track.get("name", ""),
        "album": _text(track.get("album")),
        "image": extract_image(track),
        "url": track.get("url", ""),
        "now_playing": track.get("@attr", {}).get("nowplaying") == "true",
    }


def current_track(payload: Any) -> Optional[Dict[str, Any]]:
    """The track being scrobbled right now, or None."""
    if not is_now_playing(payload):
        return None
    return simplify_track(tracks(payload)[0])


def loved_tracks(payload: Any) -> List[Dict[str, Any]]:
    if not isinstance(payload, dict):
        return []
    return [simplify_track(t) for t in _as_list(payload.get("lovedtracks", {}).get("track"))]


def top_items(payload: Any, kind: str) -> List[Dict[str, Any]]:
    """Items of a top artists/albums/tracks payload as name/playcount/url dicts."""
    if kind not in TOP_LISTS or not isinstance(payload, dict):
        return []
    _, collection, item_key = TOP_LISTS[kind]
    items = _as_list(payload.get(collection, {}).get(item_key))
    result = []
    for item in items:
        entry = {
            "name": item.get("name", ""),
            "playcount": int(item.get("playcount") or 0),
            "url": item.get("url", ""),
        }
        if kind != "artists":
            entry["artist"] = _text(item.get("artist"))
        result.append(entry)
    return result


def format_track(track: Dict[str, Any], max_length: int = 45) -> str:
    """'Artist - Title', shortened with an ellipsis."""
    text = f"{track.get('artist', '')} - {track.get('track', '')}"
    if len(text) > max_length:
        text = text[: max_length - 1] + "…"
    return text


# =============================================================================
# CLIENT
# =============================================================================

class LastFmClient(BaseApiClient):
    """Reads a user's scrobbles, top lists and loved tracks."""

    service = Service.LASTFM

    def __init__(self, *args, api_key: Optional[str] = None, user: Optional[str] = None, **kwargs):
        super().__init__(*args, **kwargs)
        self.api_key = api_key or ""
        self.user = user or ""

    def is_configured(self) -> bool:
        return bool(self.api_key and self.user)

    def default_headers(self) -> Dict[str, str]:
        headers = super().default_headers()
        headers["Accept-Encoding"] = "gzip"
        return headers

    def request_params(self, params: Dict[str, Any]) -> Dict[str, Any]:
        sent = dict(params)
        sent["api_key"] = self.api_key
        sent["format"] = "json"
        return sent

    def check_payload(self, url: str, payload: Any) -> None:
        if not isinstance(payload, dict) or "error" not in payload:
            return
        code = payload.get("error")
        message = payload.get("message") or f"Last.fm error {code}"
        if code in RATE_LIMIT_ERROR_CODES:
            raise RateLimited(message, url=url)
        raise UpstreamError(f"Last.fm error {code}: {message}", url=url, status_code=200)

    def connection_test_params(self) -> Dict[str, Any]:
        return {"method": "user.getrecenttracks", "user": self.user, "limit": 1}

    def _call(self, method: str, ttl: Optional[int] = None, **kwargs) -> CacheResult:
        context = kwargs.pop("context", FetchContext.INTERACTIVE)
        force_refresh = kwargs.pop("force_refresh", False)
        params = {"method": method, "user": self.user}
        params.update(kwargs)
        return self.fetch("", params, ttl=ttl, context=context, force_refresh=force_refresh)

    def get_recent_tracks(self, limit: int = 5, **options) -> CacheResult:
        """Recent scrobbles with a short TTL so now-playing shows up quickly."""
        return self._call(
            "user.getrecenttracks",
            ttl=get_ttl_for_type(DataType.NOW_PLAYING),
            limit=limit,
            **options,
        )

    def now_playing_active(self, limit: int = 5) -> bool:
        """Whether the cached recent tracks show a track playing right now."""
        cached = self.cached("", {"method": "user.getrecenttracks", "user": self.user, "limit": limit})
        return is_now_playing(cached)

    def get_top(self, kind: str, period: str = "7day", limit: int = 5, **options) -> CacheResult:
        if kind not in TOP_LISTS:
            raise ValueError(f"Unknown top list: {kind}")
        if period not in PERIODS:
            logger.warning(f"Unknown Last.fm period {period!r}, using 7day")
            period = "7day"
        method = TOP_LISTS[kind][0]
        ttl = get_ttl_for_type(get_type_for_period(period))
        return self._call(method, ttl=ttl, period=period, limit=limit, **options)

    def get_top_artists(self, period: str = "7day", limit: int = 5, **options) -> CacheResult:
        return self.get_top("artists", period, limit, **options)

    def get_top_albums(self, period: str = "7day", limit: int = 5, **options) -> CacheResult:
        return self.get_top("albums", period, limit, **options)

    def get_top_tracks(self, period: str = "7day", limit: int = 5, **options) -> CacheResult:
        return self.get_top("tracks", period, limit, **options)

    def get_loved_tracks(self, limit: int = 5, **options) -> CacheResult:
        return self._call("user.getlovedtracks", ttl=get_ttl_for_type(DataType.FAVORITES), limit=limit, **options)
