"""Configuration models for scroblarr."""

from pathlib import Path

import yaml
from pydantic import BaseModel, Field


class DatabaseConfig(BaseModel):
    """Database configuration."""

    path: str = "/data/scroblarr.db"
    journal_mode: str = "WAL"  # WAL, DELETE, TRUNCATE, MEMORY, OFF


class ServerSettings(BaseModel):
    """HTTP server configuration."""

    host: str = "0.0.0.0"
    port: int = 3000


class LoggingConfig(BaseModel):
    """Logging configuration."""

    level: str = "INFO"


class HttpConfig(BaseModel):
    """Timeouts shared by every outbound HTTP client."""

    timeout_seconds: float = 30.0
    connect_timeout_seconds: float = 10.0


class TraktConfig(BaseModel):
    """Trakt API endpoints."""

    api_url: str = "https://api.trakt.tv"
    auth_url: str = "https://trakt.tv/oauth/authorize"
    user_agent: str = "Scroblarr/1.0.0"


class TVTimeConfig(BaseModel):
    """TVTime endpoints and anonymous handshake token settings.

    TVTime only accepts login/refresh calls signed with an anonymous
    "bootstrap" JWT issued to its web app. The token is cached process-wide
    for ``bootstrap_token_ttl_seconds``.
    """

    app_host: str = "app.tvtime.com"
    auth_url: str = "https://beta-app.tvtime.com/sidecar"
    bootstrap_token: str | None = None
    bootstrap_token_ttl_seconds: int = 300


class HistoryConfig(BaseModel):
    """Sync history retention bounds.

    The effective per-user cap is the ``syncHistoryLimit`` database setting,
    clamped to ``[min_limit, max_limit]``; ``default_limit`` applies when the
    setting is missing or unparseable.
    """

    default_limit: int = 100
    min_limit: int = 10
    max_limit: int = 10000


class RefreshConfig(BaseModel):
    """Scheduled credential refresh sweep."""

    enabled: bool = True
    interval_hours: float = 24.0
    run_on_startup: bool = False


class Config(BaseModel):
    """Root configuration model."""

    database: DatabaseConfig = Field(default_factory=DatabaseConfig)
    server: ServerSettings = Field(default_factory=ServerSettings)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)
    http: HttpConfig = Field(default_factory=HttpConfig)
    trakt: TraktConfig = Field(default_factory=TraktConfig)
    tvtime: TVTimeConfig = Field(default_factory=TVTimeConfig)
    history: HistoryConfig = Field(default_factory=HistoryConfig)
    refresh: RefreshConfig = Field(default_factory=RefreshConfig)

    @classmethod
    def from_yaml(cls, path: str | Path) -> "Config":
        """Load configuration from a YAML file."""
        with open(path) as f:
            data = yaml.safe_load(f)
        return cls.model_validate(data or {})


# Global config instance
_config: Config | None = None


def get_config() -> Config:
    """Get the global configuration instance."""
    if _config is None:
        raise RuntimeError("Configuration not loaded. Call load_config() first.")
    return _config


def load_config(path: str | Path) -> Config:
    """Load configuration from file and set as global."""
    global _config
    _config = Config.from_yaml(path)
    return _config
