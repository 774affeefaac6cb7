"""FastAPI application factory.

Learn: App factory pattern — create_app() returns a configured FastAPI
instance. Lifespan manages startup/shutdown (Redis, realtime hub,
maintenance worker, database). Middleware, CORS, and routers all
registered here.

The RealtimeHub is built in create_app() so app.state.hub always exists
(tests drive the app without running the lifespan); the lifespan only
starts and stops its background loops.
"""

import asyncio
from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from todolive import __version__
from todolive.api import api_router
from todolive.config import settings
from todolive.realtime.hub import RealtimeHub

logger = structlog.get_logger()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown lifecycle.

    Learn: FastAPI lifespan replaces on_event("startup") / on_event("shutdown").
    Anything before `yield` runs at startup, after `yield` runs at shutdown.
    """
    logger.info(
        "todolive.starting",
        version=__version__,
        environment=settings.environment,
        port=settings.port,
    )

    # Redis is optional: without it the process runs single-node
    from todolive.realtime.pubsub import close_redis, init_redis
    redis = None
    try:
        redis = await init_redis()
        logger.info("todolive.redis_connected", url=settings.redis_url)
    except Exception as e:
        logger.warning("todolive.redis_unavailable", error=str(e))

    # Realtime loops: batch flusher, heartbeat, Redis relay
    from todolive.db.engine import async_session_factory, engine
    hub: RealtimeHub = app.state.hub
    await hub.start(redis=redis, session_factory=async_session_factory)

    # Housekeeping: due-date reminders, notification/presence cleanup
    from todolive.services.maintenance_worker import MaintenanceWorker
    maintenance = MaintenanceWorker(hub, async_session_factory)
    maintenance_task = asyncio.create_task(maintenance.run_loop())

    yield

    # Shutdown
    logger.info("todolive.shutdown")

    maintenance.stop()
    maintenance_task.cancel()
    try:
        await maintenance_task
    except asyncio.CancelledError:
        pass

    await hub.shutdown()
    await close_redis()
    await engine.dispose()


def create_app() -> FastAPI:
    """Build and return the FastAPI application."""
    app = FastAPI(
        title="todolive",
        description="Todo lists with realtime updates and batched notifications",
        version=__version__,
        lifespan=lifespan,
    )
    app.state.hub = RealtimeHub()

    # ── Middleware stack ──────────────────────────────────────
    # Note: Starlette middleware executes in reverse order of registration.
    # Request flow: CORS → RateLimit → Security → RequestId → handler

    from todolive.middleware.rate_limit import RateLimitMiddleware
    from todolive.middleware.request_id import RequestIdMiddleware
    from todolive.middleware.security import SecurityHeadersMiddleware

    app.add_middleware(RequestIdMiddleware)
    app.add_middleware(SecurityHeadersMiddleware)
    app.add_middleware(
        RateLimitMiddleware,
        default_rpm=settings.rate_limit_rpm,
        auth_rpm=settings.rate_limit_auth_rpm,
    )
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Mount API routes
    app.include_router(api_router)

    # Mount WebSocket route
    from todolive.realtime.websocket import router as ws_router
    app.include_router(ws_router)

    return app


# Default app instance (used by uvicorn: todolive.main:app)
app = create_app()
