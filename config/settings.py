"""Configuration management using pydantic-settings."""
from typing import Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Last.fm configuration
    lastfm_api_key: Optional[str] = None
    lastfm_user: Optional[str] = None
    lastfm_base_url: str = "https://ws.audioscrobbler.com/2.0/"
    lastfm_cache_minutes: int = 1

    # Trakt configuration
    trakt_client_id: Optional[str] = None
    trakt_user: Optional[str] = None
    trakt_base_url: str = "https://api.trakt.tv/"
    trakt_cache_minutes: int = 5

    # Storage backend: "memory" (single process) or "sql" (shared via SQLAlchemy)
    store_backend: str = "memory"
    database_url: str = "sqlite:///./nowscrobbling.db"

    # Cache policy
    # On primary expiry, serve the fallback copy instead of fetching.
    # Forced refreshes always bypass it.
    prefer_fallback: bool = True

    # Outbound HTTP
    request_timeout: float = 5.0
    max_retries: int = 2

    # Background refresh (cron-like)
    background_refresh_enabled: bool = True
    refresh_interval_seconds: int = 300
    # Now-playing tick: runs only while a cached indicator is live
    live_refresh_interval_seconds: int = 60

    # Client polling (seconds)
    lastfm_poll_interval: int = 20
    trakt_poll_interval: int = 60
    poll_max_interval: int = 300
    poll_max_lifetime: int = 3600
    poll_hidden_grace: int = 300
    poll_max_failures: int = 6

    log_level: str = "INFO"

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8")


settings = Settings()
