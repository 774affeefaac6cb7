"""Room broadcaster — push one event to every socket a user has open.

Learn: Delivery is best-effort and at-most-once. A socket that raises on
send is logged and skipped; the caller only learns how many sockets were
reached. A user with no open sockets simply misses the push (the
Notification table is the catch-up path).

With Redis configured, every room broadcast is also published so other
processes can deliver it to *their* sockets for the same user. Each
process runs exactly one relay task (run_relay) regardless of how many
sockets it holds.

Wire frame: {"type": <event>, "data": <payload>}
"""

import asyncio
import json
import time
import uuid
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Optional

import redis.asyncio as aioredis
import structlog

from todolive.events.types import PING
from todolive.realtime.pubsub import (
    BROADCAST_CHANNEL,
    ROOM_CHANNEL_PATTERN,
    publish_frame,
    room_channel,
    user_id_from_channel,
)
from todolive.realtime.registry import ConnectionRegistry

logger = structlog.get_logger()


def _json_default(value: Any) -> Any:
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, uuid.UUID):
        return str(value)
    if isinstance(value, Decimal):
        return float(value)
    raise TypeError(f"Object of type {type(value).__name__} is not JSON serializable")


def encode_frame(event: str, data: Any) -> str:
    return json.dumps({"type": event, "data": data}, default=_json_default)


def now_ms() -> int:
    return int(time.time() * 1000)


class Broadcaster:
    """Delivers wire frames to rooms in the ConnectionRegistry."""

    def __init__(
        self,
        registry: ConnectionRegistry,
        redis: Optional[aioredis.Redis] = None,
        node_id: Optional[str] = None,
    ):
        self.registry = registry
        self.redis = redis
        self.node_id = node_id or uuid.uuid4().hex
        self._running = False

    # ─── Sending ─────────────────────────────────────────────

    async def broadcast_to_user(self, user_id: Any, event: str, data: Any) -> int:
        """Send to every socket in the user's room. Returns sockets reached.

        Never raises: transport and Redis failures are logged.
        """
        user_id = str(user_id)
        try:
            frame = encode_frame(event, data)
        except (TypeError, ValueError) as e:
            logger.error("realtime.encode_failed", event_type=event, user_id=user_id, error=str(e))
            return 0

        sockets = await self._deliver_local(user_id, frame)

        if self.redis is not None:
            try:
                await publish_frame(self.redis, room_channel(user_id), self.node_id, frame)
            except Exception as e:
                logger.warning("realtime.publish_failed", user_id=user_id, event_type=event, error=str(e))

        logger.debug("realtime.broadcast", user_id=user_id, event_type=event, sockets=sockets)
        return sockets

    async def broadcast_to_all(self, event: str, data: Any, fan_out: bool = True) -> int:
        """Send to every local socket; with fan_out, to other nodes as well."""
        try:
            frame = encode_frame(event, data)
        except (TypeError, ValueError) as e:
            logger.error("realtime.encode_failed", event_type=event, error=str(e))
            return 0

        sockets = 0
        for connection in self.registry.all_connections():
            if await self._send(connection, frame):
                sockets += 1

        if fan_out and self.redis is not None:
            try:
                await publish_frame(self.redis, BROADCAST_CHANNEL, self.node_id, frame)
            except Exception as e:
                logger.warning("realtime.publish_failed", event_type=event, error=str(e))
        return sockets

    async def _deliver_local(self, user_id: str, frame: str) -> int:
        sockets = 0
        for connection in self.registry.get_connections(user_id):
            if await self._send(connection, frame):
                sockets += 1
        return sockets

    async def _send(self, connection, frame: str) -> bool:
        try:
            await connection.send(frame)
            return True
        except Exception as e:
            logger.warning(
                "realtime.send_failed",
                user_id=connection.user_id,
                socket_id=connection.socket_id,
                error=str(e),
            )
            return False

    # ─── Heartbeat ───────────────────────────────────────────

    async def heartbeat_once(self, timeout_seconds: float) -> int:
        """Expire silent sockets, then ping the rest. Returns expired count."""
        stale = self.registry.stale_connections(timeout_seconds)
        for connection in stale:
            self.registry.unregister(connection.user_id, connection.socket_id)
            if connection.close is not None:
                try:
                    await connection.close()
                except Exception as e:
                    logger.debug("realtime.close_failed", socket_id=connection.socket_id, error=str(e))
        if stale:
            logger.info("realtime.expired", count=len(stale))

        await self.broadcast_to_all(PING, {"timestamp": now_ms()}, fan_out=False)
        return len(stale)

    async def run_heartbeat(self, interval_seconds: float, timeout_seconds: float) -> None:
        self._running = True
        logger.info("realtime.heartbeat_started", interval=interval_seconds, timeout=timeout_seconds)
        while self._running:
            await asyncio.sleep(interval_seconds)
            try:
                await self.heartbeat_once(timeout_seconds)
            except Exception as e:
                logger.error("realtime.heartbeat_error", error=str(e))

    # ─── Redis relay ─────────────────────────────────────────

    async def relay_message(self, channel: str, raw: str) -> int:
        """Deliver one relayed pub/sub message to local sockets.

        Messages this node published itself are skipped.
        """
        try:
            envelope = json.loads(raw)
            origin = envelope["origin"]
            frame = envelope["frame"]
        except (ValueError, KeyError, TypeError):
            logger.warning("realtime.relay_malformed", channel=channel)
            return 0
        if origin == self.node_id:
            return 0

        if channel == BROADCAST_CHANNEL:
            sockets = 0
            for connection in self.registry.all_connections():
                if await self._send(connection, frame):
                    sockets += 1
            return sockets

        user_id = user_id_from_channel(channel)
        if user_id is None:
            return 0
        return await self._deliver_local(user_id, frame)

    async def run_relay(self) -> None:
        """Listen on every room channel and forward other nodes' frames."""
        if self.redis is None:
            return
        pubsub = self.redis.pubsub()
        await pubsub.psubscribe(ROOM_CHANNEL_PATTERN)
        await pubsub.subscribe(BROADCAST_CHANNEL)
        logger.info("realtime.relay_started", node_id=self.node_id)
        try:
            async for message in pubsub.listen():
                if message["type"] == "pmessage" or message["type"] == "message":
                    try:
                        await self.relay_message(message["channel"], message["data"])
                    except Exception as e:
                        logger.error("realtime.relay_error", error=str(e))
        finally:
            await pubsub.aclose()

    def stop(self) -> None:
        self._running = False
