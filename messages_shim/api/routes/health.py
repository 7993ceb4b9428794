"""Liveness endpoint."""


async def health() -> dict[str, str]:
    """GET /health - report that the process is up."""
    return {"status": "ok"}
