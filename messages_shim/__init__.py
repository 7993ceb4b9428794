"""messages-shim - Anthropic Messages API on an OpenAI-compatible provider

Accepts Anthropic Messages requests, forwards them as Chat Completions
requests to a single configured provider and translates the replies back,
including streamed replies as Anthropic server-sent events.

This module provides:
- create_app: FastAPI application with /health and /v1/messages
- Request and response translation between the two wire formats
- A streaming translator from provider chunks to Anthropic events
- YAML plus environment configuration

Example:
    >>> from messages_shim import create_app, load_settings
    >>> import uvicorn
    >>> settings = load_settings()
    >>> uvicorn.run(create_app(settings), host=settings.host, port=settings.port)
"""

from .config_loader import ShimSettings, load_config, load_settings
from .core import ProviderClient, ProxyError
from .logging import logger, setup_logging
from .main import create_app

__all__ = [
    "create_app",
    "load_config",
    "load_settings",
    "logger",
    "ProviderClient",
    "ProxyError",
    "setup_logging",
    "ShimSettings",
]
