"""
Render boundary: content id -> (html, hash, source, live).

The hash is computed over the view model, so markup changes never count as
content changes and volatile upstream fields are ignored.
"""
import html
import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Tuple

from nowscrobbling.api import lastfm, trakt
from nowscrobbling.api.lastfm import LastFmClient
from nowscrobbling.api.trakt import TraktClient
from nowscrobbling.cache import CacheResult, CacheSource, FetchContext
from nowscrobbling.hashing import content_hash

logger = logging.getLogger("fragments")

CONTENT_IDS = (
    "lastfm_indicator",
    "lastfm_history",
    "lastfm_top_artists",
    "lastfm_top_albums",
    "lastfm_top_tracks",
    "lastfm_lovedtracks",
    "trakt_indicator",
    "trakt_history",
    "trakt_last_movie",
    "trakt_last_show",
    "trakt_last_episode",
)

NO_DATA_HTML = '<em class="ns-empty">No data available</em>'

# (result, view model or None when there is nothing to show, live flag)
Built = Tuple[CacheResult, Optional[Dict[str, Any]], bool]


@dataclass
class RenderedFragment:
    """One rendered fragment and its change-detection hash."""
    content_id: str
    html: str
    hash: str
    source: CacheSource
    live: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "contentId": self.content_id,
            "html": self.html,
            "hash": self.hash,
            "source": self.source.value,
            "live": self.live,
        }


class FragmentRenderer:
    """Builds view models from provider clients and wraps them in minimal markup."""

    def __init__(self, lastfm_client: LastFmClient, trakt_client: TraktClient, limit: int = 5, period: str = "7day"):
        self.lastfm = lastfm_client
        self.trakt = trakt_client
        self.limit = limit
        self.period = period
        self._builders: Dict[str, Callable[[FetchContext, bool], Built]] = {
            "lastfm_indicator": self._lastfm_indicator,
            "lastfm_history": self._lastfm_history,
            "lastfm_top_artists": lambda c, f: self._lastfm_top("artists", c, f),
            "lastfm_top_albums": lambda c, f: self._lastfm_top("albums", c, f),
            "lastfm_top_tracks": lambda c, f: self._lastfm_top("tracks", c, f),
            "lastfm_lovedtracks": self._lastfm_loved,
            "trakt_indicator": self._trakt_indicator,
            "trakt_history": self._trakt_history,
            "trakt_last_movie": lambda c, f: self._trakt_last(trakt.last_movie, "movies", c, f),
            "trakt_last_show": lambda c, f: self._trakt_last(trakt.last_show, "shows", c, f),
            "trakt_last_episode": lambda c, f: self._trakt_last(trakt.last_episode, "episodes", c, f),
        }

    def supports(self, content_id: str) -> bool:
        return content_id in self._builders

    def render(
        self,
        content_id: str,
        context: FetchContext = FetchContext.PAGE_RENDER,
        force_refresh: bool = False,
    ) -> RenderedFragment:
        """
        Render one fragment. Always returns markup; a miss renders a placeholder.

        Raises:
            KeyError: unknown content id
        """
        if content_id not in self._builders:
            raise KeyError(content_id)

        result, model, live = self._builders[content_id](context, force_refresh)
        if model is None:
            inner = NO_DATA_HTML
            live = False
        else:
            inner = _render_model(content_id, model)

        digest = content_hash({"content_id": content_id, "model": model})
        logger.debug(f"Rendered {content_id} from {result.source.value} [hash={digest[:8]}, live={live}]")
        return RenderedFragment(
            content_id=content_id,
            html=_wrap(content_id, digest, live, inner),
            hash=digest,
            source=result.source,
            live=live,
        )

    # ----- Last.fm -----

    def _lastfm_indicator(self, context: FetchContext, force: bool) -> Built:
        result = self.lastfm.get_recent_tracks(self.limit, context=context, force_refresh=force)
        items = lastfm.tracks(result.value)
        if not result.has_data or not items:
            return result, None, False
        playing = lastfm.is_now_playing(result.value)
        model = {"now_playing": playing, "track": lastfm.simplify_track(items[0])}
        return result, model, playing

    def _lastfm_history(self, context: FetchContext, force: bool) -> Built:
        result = self.lastfm.get_recent_tracks(self.limit, context=context, force_refresh=force)
        items = lastfm.tracks(result.value)
        if not result.has_data or not items:
            return result, None, False
        model = {"tracks": [lastfm.simplify_track(t) for t in items[: self.limit]]}
        return result, model, lastfm.is_now_playing(result.value)

    def _lastfm_top(self, kind: str, context: FetchContext, force: bool) -> Built:
        result = self.lastfm.get_top(kind, self.period, self.limit, context=context, force_refresh=force)
        items = lastfm.top_items(result.value, kind)
        if not result.has_data or not items:
            return result, None, False
        return result, {"kind": kind, "period": self.period, "items": items}, False

    def _lastfm_loved(self, context: FetchContext, force: bool) -> Built:
        result = self.lastfm.get_loved_tracks(self.limit, context=context, force_refresh=force)
        items = lastfm.loved_tracks(result.value)
        if not result.has_data or not items:
            return result, None, False
        return result, {"tracks": items}, False

    # ----- Trakt -----

    def _trakt_indicator(self, context: FetchContext, force: bool) -> Built:
        result = self.trakt.get_watching(context=context, force_refresh=force)
        if not result.has_data:
            return result, None, False
        item = trakt.watching_item(result.value)
        return result, {"watching": item is not None, "item": item}, item is not None

    def _trakt_history(self, context: FetchContext, force: bool) -> Built:
        result = self.trakt.get_history("all", self.limit, context=context, force_refresh=force)
        items = trakt.history_items(result.value)
        if not result.has_data or not items:
            return result, None, False
        return result, {"items": items}, False

    def _trakt_last(self, accessor: Callable[[Any], Optional[Dict[str, Any]]], type: str,
                    context: FetchContext, force: bool) -> Built:
        result = self.trakt.get_history(type, 1, context=context, force_refresh=force)
        item = accessor(result.value) if result.has_data else None
        if item is None:
            return result, None, False
        return result, {"item": item}, False


# =============================================================================
# MARKUP
# =============================================================================

def _e(value: Any) -> str:
    return html.escape(str(value if value is not None else ""))


def _link(text: str, url: Optional[str]) -> str:
    if url:
        return f'<a href="{_e(url)}" target="_blank" rel="noopener">{_e(text)}</a>'
    return _e(text)


def _list(rows: List[str]) -> str:
    return "<ul>" + "".join(f"<li>{row}</li>" for row in rows) + "</ul>"


def _describe_trakt(item: Dict[str, Any]) -> str:
    if item.get("type") == "episode":
        return _e(trakt.format_episode(item))
    year = f" ({item['year']})" if item.get("year") else ""
    return _e(f"{item.get('title', '')}{year}")


def _render_model(content_id: str, model: Dict[str, Any]) -> str:
    if content_id == "lastfm_indicator":
        label = "Now playing" if model["now_playing"] else "Last played"
        track = model["track"]
        return f"{label}: {_link(lastfm.format_track(track), track.get('url'))}"
    if content_id in ("lastfm_history", "lastfm_lovedtracks"):
        return _list([_link(lastfm.format_track(t), t.get("url")) for t in model["tracks"]])
    if content_id.startswith("lastfm_top_"):
        rows = []
        for item in model["items"]:
            name = f"{item['artist']} - {item['name']}" if item.get("artist") else item["name"]
            rows.append(f"{_link(name, item.get('url'))} ({item['playcount']})")
        return _list(rows)
    if content_id == "trakt_indicator":
        if not model["watching"]:
            return "Not watching anything right now"
        return f"Watching: {_describe_trakt(model['item'])}"
    if content_id == "trakt_history":
        return _list([_e(row["title"]) for row in model["items"]])
    return _describe_trakt(model["item"])


def _wrap(content_id: str, digest: str, live: bool, inner: str) -> str:
    tag = "span" if content_id.endswith("_indicator") or content_id.startswith("trakt_last_") else "div"
    live_attr = ' data-ns-nowplaying="1"' if live else ""
    return (
        f'<{tag} class="nowscrobbling ns-{_e(content_id)}" '
        f'data-nowscrobbling-shortcode="{_e(content_id)}" data-ns-hash="{_e(digest)}"{live_attr}>'
        f"{inner}</{tag}>"
    )
