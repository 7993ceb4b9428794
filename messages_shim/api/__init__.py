"""API module for the shim."""

from .routes import health, messages_endpoint

__all__ = [
    "health",
    "messages_endpoint",
]
