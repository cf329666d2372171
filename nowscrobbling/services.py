"""
Process-wide wiring: one store, cache manager, limiter, ETag store, recorder,
the two provider clients, the renderer and the background refreshers.
"""
import logging
from dataclasses import dataclass
from typing import Dict, Optional

from config.settings import Settings, settings as default_settings
from nowscrobbling.api.http import HttpClient
from nowscrobbling.api.lastfm import LastFmClient
from nowscrobbling.api.rate_limiter import RateLimiter
from nowscrobbling.api.trakt import TraktClient
from nowscrobbling.cache import CacheManager, ETagManager, FetchContext
from nowscrobbling.fragments import FragmentRenderer
from nowscrobbling.metrics import MetricsRecorder
from nowscrobbling.polling import PollConfig
from nowscrobbling.scheduler import BackgroundRefresher
from nowscrobbling.store import Store, create_store

logger = logging.getLogger("services")


@dataclass
class Services:
    store: Store
    cache: CacheManager
    rate_limiter: RateLimiter
    etags: ETagManager
    metrics: MetricsRecorder
    lastfm: LastFmClient
    trakt: TraktClient
    renderer: FragmentRenderer
    refresher: BackgroundRefresher
    live_refresher: BackgroundRefresher
    poll_configs: Dict[str, PollConfig]

    def client_for(self, service: str):
        """Provider client by service name, or None."""
        return {"lastfm": self.lastfm, "trakt": self.trakt}.get(service)


def register_default_jobs(services: Services) -> None:
    """
    Keep the live indicators and histories warm.

    The regular round refreshes everything every few minutes. The now-playing
    tick re-fetches an indicator only while its cached state is live.
    """
    background = {"context": FetchContext.BACKGROUND, "force_refresh": True}
    renderer = services.renderer

    if services.lastfm.is_configured():
        services.refresher.register(
            "lastfm_recent",
            lambda: services.lastfm.get_recent_tracks(renderer.limit, **background),
        )
        services.live_refresher.register(
            "lastfm_now_playing",
            lambda: services.lastfm.get_recent_tracks(renderer.limit, **background),
            when=lambda: services.lastfm.now_playing_active(renderer.limit),
        )
    if services.trakt.is_configured():
        services.refresher.register("trakt_watching", lambda: services.trakt.get_watching(**background))
        services.refresher.register(
            "trakt_history",
            lambda: services.trakt.get_history("all", renderer.limit, **background),
        )
        services.live_refresher.register(
            "trakt_now_watching",
            lambda: services.trakt.get_watching(**background),
            when=services.trakt.watching_active,
        )


def build_services(config: Settings, store: Optional[Store] = None, http: Optional[HttpClient] = None) -> Services:
    """Wire every component from settings. `store` and `http` can be swapped in tests."""
    store = store if store is not None else create_store(config.store_backend, config.database_url)
    http = http or HttpClient(timeout=config.request_timeout, max_retries=config.max_retries)

    metrics = MetricsRecorder(store)
    rate_limiter = RateLimiter(store)
    etags = ETagManager(store)
    cache = CacheManager(
        store,
        metrics=metrics,
        rate_limiter=rate_limiter,
        etags=etags,
        prefer_fallback=config.prefer_fallback,
    )
    shared = dict(cache=cache, rate_limiter=rate_limiter, etags=etags, metrics=metrics, http=http)

    lastfm = LastFmClient(
        base_url=config.lastfm_base_url,
        default_ttl=config.lastfm_cache_minutes * 60,
        api_key=config.lastfm_api_key,
        user=config.lastfm_user,
        **shared,
    )
    trakt = TraktClient(
        base_url=config.trakt_base_url,
        default_ttl=config.trakt_cache_minutes * 60,
        client_id=config.trakt_client_id,
        user=config.trakt_user,
        **shared,
    )

    services = Services(
        store=store,
        cache=cache,
        rate_limiter=rate_limiter,
        etags=etags,
        metrics=metrics,
        lastfm=lastfm,
        trakt=trakt,
        renderer=FragmentRenderer(lastfm, trakt),
        refresher=BackgroundRefresher(config.refresh_interval_seconds),
        live_refresher=BackgroundRefresher(config.live_refresh_interval_seconds, name="now-playing tick"),
        poll_configs={name: PollConfig.from_settings(name, config) for name in ("lastfm", "trakt")},
    )
    register_default_jobs(services)
    logger.info(
        f"Services ready (store={config.store_backend}, prefer_fallback={config.prefer_fallback}, "
        f"lastfm={'on' if lastfm.is_configured() else 'off'}, trakt={'on' if trakt.is_configured() else 'off'})"
    )
    return services


# Global services instance
_services: Optional[Services] = None


def get_services() -> Services:
    """Get or create the global services."""
    global _services
    if _services is None:
        _services = build_services(default_settings)
    return _services
