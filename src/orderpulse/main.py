"""FastAPI application factory for the websocket relay.

Learn: App factory pattern — create_app() returns a configured FastAPI
instance. Lifespan manages startup/shutdown (the Redis pool). CORS and
routers are registered here.
"""

from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from orderpulse import __version__
from orderpulse.api import api_router
from orderpulse.config import settings
from orderpulse.realtime.pubsub import close_redis, init_redis

logger = structlog.get_logger()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown lifecycle.

    Learn: Anything before `yield` runs at startup, after `yield` runs at
    shutdown.
    """
    logger.info(
        "orderpulse.starting",
        version=__version__,
        environment=settings.environment,
        port=settings.port,
    )

    try:
        await init_redis()
        logger.info("orderpulse.redis_connected", url=settings.redis_url)
    except Exception as e:
        # The relay still starts; /api/health reports degraded until Redis is back
        logger.warning("orderpulse.redis_unavailable", error=str(e))

    yield

    logger.info("orderpulse.shutdown")
    await close_redis()


def create_app() -> FastAPI:
    """Build and return the FastAPI application."""
    app = FastAPI(
        title="orderpulse",
        description="Real-time order status relay for the storefront",
        version=__version__,
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(api_router)

    from orderpulse.realtime.websocket import router as ws_router
    app.include_router(ws_router)

    return app


# Default app instance (used by uvicorn: orderpulse.main:app)
app = create_app()
