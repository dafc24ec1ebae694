"""FastAPI application for the reference Subscription Store."""

import logging
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from tichat_push import __version__
from tichat_push.app import config
from tichat_push.app.routers import notifications
from tichat_push.app.services.logging_service import get_logger, setup_logging
from tichat_push.app.services.store_backend import NotificationStore

logger = get_logger(__name__)


def create_app(home: Optional[Path] = None, configure_logging: bool = True) -> FastAPI:
    """Build the store server. `home` overrides the data directory."""
    home = home or config.APP_HOME

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Application lifespan - startup and shutdown."""
        home.mkdir(parents=True, exist_ok=True)
        if configure_logging:
            setup_logging(level=logging.INFO, logs_dir=home / "logs")
        logger.info(f"TiChat push store started, data dir: {home}")
        yield
        logger.info("Shutting down TiChat push store...")

    app = FastAPI(
        title="TiChat Push Store",
        description="Push token and notification preference store for TiChat",
        version=__version__,
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["http://localhost:4321", "http://127.0.0.1:4321"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Created eagerly so ASGI transports that skip lifespan still get a store
    app.state.notification_store = NotificationStore(home)

    app.include_router(notifications.router, prefix=config.API_PREFIX)

    @app.get("/health")
    async def health_check():
        """Health check endpoint."""
        return {"status": "ok"}

    return app
