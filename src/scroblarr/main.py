"""Main entry point for scroblarr."""

import logging
import os
import sys
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from pathlib import Path

import uvicorn
from fastapi import FastAPI

from . import __version__
from .api import events_router, health_router, history_router
from .config import get_config, load_config
from .database import close_db, get_db
from .sync import SyncEngine, TokenRefreshService


def setup_logging(level: str = "INFO") -> None:
    """Configure logging."""
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        handlers=[logging.StreamHandler(sys.stdout)],
    )
    # Silence noisy third-party loggers
    logging.getLogger("aiosqlite").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)


def init_config() -> None:
    """Initialize configuration from file.

    Loads config from CONFIG_PATH env var, /config/config.yaml, or ./config.yaml.
    Sets up logging based on config.
    """
    config_path = os.environ.get("CONFIG_PATH", "/config/config.yaml")

    # Allow local development with config.yaml in current directory
    if not Path(config_path).exists():
        local_config = Path("config.yaml")
        if local_config.exists():
            config_path = str(local_config)
        else:
            print(f"Error: Configuration file not found: {config_path}")
            print("Create a config.yaml file or set CONFIG_PATH environment variable")
            sys.exit(1)

    config = load_config(config_path)

    setup_logging(config.logging.level)

    logger = logging.getLogger(__name__)
    logger.info("Loaded configuration from %s", config_path)
    logger.info(
        "Token refresh: %s (every %sh)",
        "enabled" if config.refresh.enabled else "disabled",
        config.refresh.interval_hours,
    )


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan handler."""
    logger = logging.getLogger(__name__)

    logger.info("Starting scroblarr...")

    db = await get_db()
    logger.info("Database initialized")

    config = get_config()
    engine = SyncEngine(db, config=config)
    refresh_service = TokenRefreshService(db, engine.destinations)

    if config.refresh.enabled:
        await refresh_service.start(
            interval_seconds=config.refresh.interval_hours * 3600,
            run_immediately=config.refresh.run_on_startup,
        )

    # Store services in app state for access by routers
    app.state.engine = engine
    app.state.refresh_service = refresh_service

    yield

    logger.info("Shutting down scroblarr...")
    await refresh_service.stop()
    await engine.close()
    await close_db()


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    # Initialize config before creating app
    init_config()

    app = FastAPI(
        title="scroblarr",
        description="Relays media server scrobbles to Trakt and TVTime",
        version=__version__,
        lifespan=lifespan,
    )

    app.include_router(health_router)  # /healthz, /readyz
    app.include_router(events_router)  # /api/events
    app.include_router(history_router)  # /api/users/{id}/history, /api/tokens/refresh

    return app


def main() -> None:
    """Main entry point."""
    app = create_app()
    config = get_config()

    uvicorn.run(
        app,
        host=config.server.host,
        port=config.server.port,
        log_level=config.logging.level.lower(),
    )


if __name__ == "__main__":
    main()
