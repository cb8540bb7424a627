"""Health check endpoint.

Learn: Simple GET endpoint that verifies the relay is running and that Redis,
which carries every order event, is reachable.
"""

from fastapi import APIRouter

from orderpulse import __version__
from orderpulse.realtime.pubsub import get_redis

router = APIRouter()


@router.get("/health")
async def health_check():
    """Check server health and Redis connectivity."""
    checks = {"server": "ok", "version": __version__}

    try:
        await get_redis().ping()
        checks["redis"] = "ok"
    except Exception as e:
        checks["redis"] = f"error: {e}"

    status = "healthy" if checks["redis"] == "ok" else "degraded"
    return {"status": status, **checks}
