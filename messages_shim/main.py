"""FastAPI application factory for the Messages shim."""

import logging
import socket
from contextlib import asynccontextmanager
from typing import Optional

import httpx
from fastapi import FastAPI

from .api.routes import health, messages_endpoint
from .config_loader import ShimSettings, mask_secret
from .core import ProviderClient

logger = logging.getLogger("messages-shim")


def create_app(
    settings: ShimSettings,
    *,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> FastAPI:
    """Factory function to create the FastAPI application.

    Args:
        settings: Resolved process configuration.
        transport: Optional httpx transport for provider calls (tests route
            these to an in-process fake provider).

    Returns:
        The configured FastAPI application instance.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info("Messages shim starting up...")
        logger.info("Configured bind address %s:%s", settings.host, settings.port)
        if settings.host == "0.0.0.0":
            hostname = socket.gethostname()
            logger.info("Reachable on local network at http://%s:%s", hostname, settings.port)
        logger.info(f"Provider: {settings.base_url} (model={settings.model})")
        logger.debug(f"Provider API key: {mask_secret(settings.api_key)}")
        yield
        logger.info("Messages shim shutting down")

    app = FastAPI(title="Messages Shim", lifespan=lifespan)
    app.state.settings = settings
    app.state.provider = ProviderClient(
        settings.base_url,
        settings.api_key,
        timeout=settings.timeout,
        transport=transport,
    )

    # Register routes
    app.get("/health")(health)
    app.post("/v1/messages")(messages_endpoint)

    logger.info("FastAPI application created")
    return app


__all__ = ["create_app"]
