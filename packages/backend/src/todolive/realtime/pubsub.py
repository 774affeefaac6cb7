"""Redis pub/sub — cross-process fan-out for room broadcasts.

Learn: Redis pub/sub is fire-and-forget. If no one is listening, the message
is lost. That's fine for real-time UI updates (the frontend can always query
the API to catch up). Notifications are also stored in the database for
durability.

Channel naming: todolive:rooms:{user_id}
A room is every socket one user has open. The relay task on each process
PSUBSCRIBEs to todolive:rooms:* and delivers to its own local sockets.
"""

import json
from typing import Any, Optional

import redis.asyncio as aioredis

from todolive.config import settings

ROOM_CHANNEL_PREFIX = "todolive:rooms:"
ROOM_CHANNEL_PATTERN = ROOM_CHANNEL_PREFIX + "*"
BROADCAST_CHANNEL = "todolive:broadcast"

# Global Redis connection pool (initialized in lifespan)
_redis: Optional[aioredis.Redis] = None


async def init_redis() -> aioredis.Redis:
    """Initialize the Redis connection pool."""
    global _redis
    _redis = aioredis.from_url(
        settings.redis_url,
        encoding="utf-8",
        decode_responses=True,
    )
    # Verify connection
    await _redis.ping()
    return _redis


async def close_redis() -> None:
    """Close the Redis connection pool."""
    global _redis
    if _redis:
        await _redis.aclose()
        _redis = None


def get_redis() -> aioredis.Redis:
    """Get the Redis connection (must be initialized first)."""
    if _redis is None:
        raise RuntimeError("Redis not initialized. Call init_redis() first.")
    return _redis


def room_channel(user_id: str) -> str:
    return f"{ROOM_CHANNEL_PREFIX}{user_id}"


def user_id_from_channel(channel: str) -> Optional[str]:
    if channel.startswith(ROOM_CHANNEL_PREFIX):
        return channel[len(ROOM_CHANNEL_PREFIX):]
    return None


async def publish_frame(
    r: aioredis.Redis,
    channel: str,
    origin: str,
    frame: str,
) -> None:
    """Publish an already-encoded wire frame, tagged with the sending node.

    Learn: The origin tag lets the relay on the sending process skip its
    own messages — those sockets were already served locally.
    """
    envelope: dict[str, Any] = {"origin": origin, "frame": frame}
    await r.publish(channel, json.dumps(envelope))
