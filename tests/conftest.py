"""Pytest configuration and fixtures for testing."""

from __future__ import annotations

from typing import Any, Generator

import httpx
import pytest

from messages_shim.config_loader import ShimSettings
from messages_shim.main import create_app
from messages_shim.testing import FakeProvider

PROVIDER_BASE_URL = "http://provider.local/v1"


# =============================================================================
# Settings Builders
# =============================================================================


def build_settings(**overrides: Any) -> ShimSettings:
    """Build settings pointing at the fake provider.

    Args:
        **overrides: Any ShimSettings field to replace

    Returns:
        ShimSettings for tests
    """
    values: dict[str, Any] = {
        "api_key": "test-key",
        "base_url": PROVIDER_BASE_URL,
        "model": "provider-model",
        "timeout": 30.0,
    }
    values.update(overrides)
    return ShimSettings(**values)


def make_shim_client(app: Any) -> httpx.AsyncClient:
    """Return an async client that talks to the shim app in-process."""
    return httpx.AsyncClient(
        transport=httpx.ASGITransport(app=app),
        base_url="http://shim.local",
    )


# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture
def provider() -> FakeProvider:
    """A fresh fake provider with an empty response queue."""
    return FakeProvider()


@pytest.fixture
def shim(provider: FakeProvider) -> Generator[tuple[FakeProvider, Any], None, None]:
    """Create a shim app wired to the fake provider.

    Returns:
        Tuple of (FakeProvider, FastAPI app)

    Usage:
        async def test_messages(shim):
            provider, app = shim
            provider.enqueue_chat_response("Hello")
            async with make_shim_client(app) as client:
                ...
    """
    app = create_app(build_settings(), transport=provider.transport())
    try:
        yield provider, app
    finally:
        provider.clear()
