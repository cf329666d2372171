"""
NowScrobbling - FastAPI application
Serves cached Last.fm / Trakt fragments with change detection for polling clients.
"""
import logging
from contextlib import asynccontextmanager
from typing import Any, Dict, List, Optional

from fastapi import Depends, FastAPI, HTTPException, Query
from fastapi.responses import HTMLResponse
from pydantic import BaseModel

from config.settings import settings
from nowscrobbling.cache import FetchContext
from nowscrobbling.fragments import CONTENT_IDS
from nowscrobbling.hashing import compare
from nowscrobbling.services import Services, get_services

logging.basicConfig(
    level=getattr(logging, settings.log_level.upper(), logging.INFO),
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
)
logger = logging.getLogger("main")

APP_NAME = "NowScrobbling"
APP_VERSION = "2.0.0"

SERVICES = ("lastfm", "trakt")


@asynccontextmanager
async def lifespan(app: FastAPI):
    services = app.dependency_overrides.get(get_services, get_services)()
    refreshers = (services.refresher, services.live_refresher)
    if settings.background_refresh_enabled:
        for refresher in refreshers:
            if refresher.jobs:
                refresher.start()
    try:
        yield
    finally:
        for refresher in refreshers:
            refresher.stop()


app = FastAPI(
    title=APP_NAME,
    description="Cached Last.fm and Trakt fragments with change detection",
    version=APP_VERSION,
    lifespan=lifespan,
)


class RenderRequest(BaseModel):
    """Request body for the polling endpoint."""
    content_id: str
    previous_hash: Optional[str] = None
    force_refresh: bool = False


class RenderResponse(BaseModel):
    html: Optional[str] = None
    hash: str
    changed: bool
    source: str
    live: bool


def _check_service(service: str) -> str:
    if service not in SERVICES:
        raise HTTPException(status_code=404, detail=f"Unknown service: {service}")
    return service


def render_fragment(services: Services, content_id: str, previous_hash: Optional[str], force_refresh: bool) -> RenderResponse:
    """
    Render a fragment for a polling client.

    html is left out when the content is unchanged and the refresh was not forced.
    """
    if not services.renderer.supports(content_id):
        raise HTTPException(status_code=404, detail=f"Unknown content: {content_id}")

    with services.cache.request_scope():
        fragment = services.renderer.render(content_id, FetchContext.INTERACTIVE, force_refresh)

    changed = compare(previous_hash, fragment.hash)
    return RenderResponse(
        html=fragment.html if changed or force_refresh else None,
        hash=fragment.hash,
        changed=changed,
        source=fragment.source.value,
        live=fragment.live,
    )


@app.get("/health")
def health_check():
    """Health check endpoint."""
    return {"status": "ok", "name": APP_NAME, "version": APP_VERSION}


@app.get("/render/{content_id}", response_model=RenderResponse)
def render_get(
    content_id: str,
    hash: Optional[str] = Query(None, description="Hash the client currently shows"),
    force_refresh: bool = Query(False),
    services: Services = Depends(get_services),
):
    return render_fragment(services, content_id, hash, force_refresh)


@app.post("/render", response_model=RenderResponse)
def render_post(request: RenderRequest, services: Services = Depends(get_services)):
    return render_fragment(services, request.content_id, request.previous_hash, request.force_refresh)


@app.get("/fragments/{content_id}", response_class=HTMLResponse)
def fragment_html(content_id: str, services: Services = Depends(get_services)):
    """
    Server-side render for embedding in a page.

    Never fetches live: serves the primary entry or the fallback copy, else a
    "no data" placeholder. Clients pick up fresh data through /render.
    """
    if not services.renderer.supports(content_id):
        raise HTTPException(status_code=404, detail=f"Unknown content: {content_id}")
    with services.cache.request_scope():
        fragment = services.renderer.render(content_id, FetchContext.PAGE_RENDER)
    return HTMLResponse(fragment.html, headers={"X-NS-Hash": fragment.hash, "X-NS-Source": fragment.source.value})


@app.get("/status")
def status(services: Services = Depends(get_services)) -> Dict[str, Any]:
    """Diagnostics: per-service metrics and cooldowns, cache entries and stats."""
    return {
        "services": {
            name: {
                "configured": services.client_for(name).is_configured(),
                "metrics": services.metrics.snapshot(name),
                "rate_limit": services.client_for(name).rate_limit_status(),
            }
            for name in SERVICES
        },
        "cache": services.cache.get_stats(),
        "entries": services.cache.entries(),
        "content_ids": list(CONTENT_IDS),
        "refresher": services.refresher.describe(),
        "live_refresher": services.live_refresher.describe(),
        "polling": {name: config.to_dict() for name, config in services.poll_configs.items()},
    }


@app.get("/polling/{service}")
def polling_config(service: str, services: Services = Depends(get_services)) -> Dict[str, Any]:
    """Poll intervals and limits a client should use for this service's fragments."""
    return services.poll_configs[_check_service(service)].to_dict()


@app.get("/metrics/{service}/timeseries")
def metrics_timeseries(
    service: str,
    hours: int = Query(48, ge=1, le=96),
    services: Services = Depends(get_services),
) -> List[Dict[str, Any]]:
    """Hourly request/cache counters, oldest first."""
    return services.metrics.timeseries(_check_service(service), hours)


@app.post("/cache/clear")
def clear_cache(
    scope: str = Query("all", pattern="^(all|primary)$"),
    services: Services = Depends(get_services),
):
    """
    Clear caches.

    - all: primary and fallback entries, access metadata, ETags
    - primary: primary entries and ETags only; fallback copies stay
    """
    if scope == "primary":
        removed = services.cache.clear_primary()
    else:
        removed = services.cache.clear_all()
    return {"scope": scope, "removed": removed}


@app.post("/test/{service}")
def test_connection(service: str, services: Services = Depends(get_services)):
    """Live connection test. Does not read or write the cache."""
    client = services.client_for(_check_service(service))
    result = client.test_connection()
    logger.info(f"Connection test {service}: {result.status} ({result.message})")
    return {"service": service, **result.to_dict()}
