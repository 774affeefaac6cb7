"""Realtime hub — the one object that owns this process's realtime state.

Learn: Registry, broadcaster and batcher live here instead of in module
globals. The app factory builds a hub and stores it on app.state; the
lifespan start()s its background loops and shutdown() cancels them.
Routes reach it through the get_hub dependency, so a test can swap in a
fresh hub per test.

Background tasks started by start():
- batch flusher (NotificationBatcher.run_loop)
- heartbeat (ping + stale connection expiry)
- Redis relay (only when Redis is available)
"""

import asyncio
from typing import Optional

import redis.asyncio as aioredis
import structlog
from fastapi import Request
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from todolive.config import settings
from todolive.realtime.broadcaster import Broadcaster
from todolive.realtime.registry import ConnectionRegistry
from todolive.services.email_service import EmailService
from todolive.services.notification_batcher import NotificationBatcher
from todolive.services.notification_service import NotificationService
from todolive.services.presence_service import PresenceService
from todolive.services.realtime_events import RealtimeEventService

logger = structlog.get_logger()


class RealtimeHub:
    def __init__(
        self,
        redis: Optional[aioredis.Redis] = None,
        session_factory: Optional[async_sessionmaker] = None,
        email: Optional[EmailService] = None,
        batch_interval: Optional[float] = None,
        max_batch_size: Optional[int] = None,
        ping_interval: Optional[float] = None,
        ping_timeout: Optional[float] = None,
    ):
        self.registry = ConnectionRegistry()
        self.broadcaster = Broadcaster(self.registry, redis=redis)
        self.batcher = NotificationBatcher(
            self.broadcaster,
            max_batch_size=max_batch_size or settings.notification_max_batch_size,
            interval=batch_interval or settings.notification_batch_interval_seconds,
        )
        self.session_factory = session_factory
        self.email = email or EmailService()
        self.ping_interval = ping_interval or settings.ws_ping_interval_seconds
        self.ping_timeout = ping_timeout or settings.ws_ping_timeout_seconds
        self._tasks: list[asyncio.Task] = []

    @property
    def redis_enabled(self) -> bool:
        return self.broadcaster.redis is not None

    # ─── Service factories (per request session) ─────────

    def notification_service(self, db: AsyncSession) -> NotificationService:
        return NotificationService(db, self.broadcaster, self.batcher, self.email)

    def event_service(self, db: AsyncSession) -> RealtimeEventService:
        return RealtimeEventService(self.broadcaster, self.notification_service(db))

    # ─── Presence (best-effort, used by the WebSocket handler) ──

    async def track_presence(self, user_id: str, socket_id: str, online: bool) -> None:
        if self.session_factory is None:
            return
        try:
            async with self.session_factory() as db:
                presence = PresenceService(db)
                if online:
                    await presence.upsert(user_id, socket_id)
                else:
                    await presence.mark_offline(user_id, socket_id)
        except Exception as e:
            logger.warning(
                "presence.update_failed",
                user_id=user_id,
                socket_id=socket_id,
                online=online,
                error=str(e),
            )

    # ─── Lifecycle ───────────────────────────────────────

    async def start(
        self,
        redis: Optional[aioredis.Redis] = None,
        session_factory: Optional[async_sessionmaker] = None,
    ) -> None:
        if redis is not None:
            self.broadcaster.redis = redis
        if session_factory is not None:
            self.session_factory = session_factory

        self._tasks.append(asyncio.create_task(self.batcher.run_loop()))
        self._tasks.append(asyncio.create_task(
            self.broadcaster.run_heartbeat(self.ping_interval, self.ping_timeout)
        ))
        if self.redis_enabled:
            self._tasks.append(asyncio.create_task(self.broadcaster.run_relay()))
        logger.info("realtime.hub_started", node_id=self.broadcaster.node_id, redis=self.redis_enabled)

    async def shutdown(self) -> None:
        self.batcher.stop()
        self.broadcaster.stop()
        for task in self._tasks:
            task.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks.clear()

        for connection in self.registry.all_connections():
            if connection.close is not None:
                try:
                    await connection.close()
                except Exception as e:
                    logger.debug("realtime.close_failed", socket_id=connection.socket_id, error=str(e))
        self.registry.clear()
        self.batcher.clear()
        self.broadcaster.redis = None
        logger.info("realtime.hub_stopped")


def get_hub(request: Request) -> RealtimeHub:
    """FastAPI dependency — the hub the app factory put on app.state."""
    return request.app.state.hub
