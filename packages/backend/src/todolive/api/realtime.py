"""Realtime status — what the connection layer looks like right now."""

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from todolive.auth.dependencies import CurrentIdentity, get_current_user
from todolive.db.engine import get_db
from todolive.realtime.hub import RealtimeHub, get_hub
from todolive.services.presence_service import PresenceService

router = APIRouter(prefix="/realtime")


@router.get("/status")
async def realtime_status(
    identity: CurrentIdentity = Depends(get_current_user),
    hub: RealtimeHub = Depends(get_hub),
    db: AsyncSession = Depends(get_db),
):
    return {
        "node_id": hub.broadcaster.node_id,
        "redis": hub.redis_enabled,
        "connected_users": hub.registry.connected_users_count(),
        "connections": hub.registry.connection_count(),
        "you_are_online": hub.registry.is_online(identity.user_id),
        "your_connections": len(hub.registry.get_connections(identity.user_id)),
        "batching": {
            "queue_size": hub.batcher.queue_size(),
            "your_pending": hub.batcher.pending(identity.user_id),
            "max_batch_size": hub.batcher.max_batch_size,
            "interval_seconds": hub.batcher.interval,
        },
        "presence": await PresenceService(db).stats(),
    }
