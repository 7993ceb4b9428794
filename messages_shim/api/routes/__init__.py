"""API routes for the shim."""

from .health import health
from .messages import messages_endpoint

__all__ = [
    "health",
    "messages_endpoint",
]
