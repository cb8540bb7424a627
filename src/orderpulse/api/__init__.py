"""API route aggregation.

The relay only serves a health probe over HTTP; order snapshots come from the
storefront API itself. Everything else is the /ws endpoint in
orderpulse.realtime.websocket.
"""

from fastapi import APIRouter

from orderpulse.api.health import router as health_router

api_router = APIRouter(prefix="/api")

api_router.include_router(health_router, tags=["health"])
