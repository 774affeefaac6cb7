"""Presence service — durable online/offline view per (user, socket)."""

import uuid
from datetime import datetime, timedelta, timezone
from typing import Optional

import structlog
from sqlalchemy import delete, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from todolive.db.models import UserPresence, as_uuid

logger = structlog.get_logger()


class PresenceService:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def upsert(self, user_id: uuid.UUID | str, socket_id: str) -> UserPresence:
        """Mark a socket online, creating the row on first sight."""
        uid = as_uuid(user_id)
        result = await self.db.execute(
            select(UserPresence).where(
                UserPresence.user_id == uid,
                UserPresence.socket_id == socket_id,
            )
        )
        presence = result.scalars().first()
        now = datetime.now(timezone.utc)
        if presence is None:
            presence = UserPresence(user_id=uid, socket_id=socket_id, is_online=True, last_seen=now)
            self.db.add(presence)
        else:
            presence.is_online = True
            presence.last_seen = now
        await self.db.commit()
        return presence

    async def mark_offline(self, user_id: uuid.UUID | str, socket_id: Optional[str] = None) -> int:
        """Mark one socket (or all of the user's sockets) offline."""
        filters = [UserPresence.user_id == as_uuid(user_id)]
        if socket_id is not None:
            filters.append(UserPresence.socket_id == socket_id)
        result = await self.db.execute(
            update(UserPresence)
            .where(*filters)
            .values(is_online=False, last_seen=datetime.now(timezone.utc))
        )
        await self.db.commit()
        return result.rowcount or 0

    async def is_online(self, user_id: uuid.UUID | str) -> bool:
        count = await self.db.scalar(
            select(func.count())
            .select_from(UserPresence)
            .where(UserPresence.user_id == as_uuid(user_id), UserPresence.is_online.is_(True))
        )
        return bool(count)

    async def online_users(self) -> list[uuid.UUID]:
        result = await self.db.execute(
            select(UserPresence.user_id).where(UserPresence.is_online.is_(True)).distinct()
        )
        return list(result.scalars().all())

    async def cleanup(self, hours_old: int = 24) -> int:
        """Delete offline rows not seen for `hours_old` hours."""
        cutoff = datetime.now(timezone.utc) - timedelta(hours=hours_old)
        result = await self.db.execute(
            delete(UserPresence).where(
                UserPresence.is_online.is_(False),
                UserPresence.last_seen < cutoff,
            ).execution_options(synchronize_session=False)
        )
        await self.db.commit()
        count = result.rowcount or 0
        logger.info("presence.cleanup", hours_old=hours_old, deleted=count)
        return count

    async def stats(self) -> dict[str, int]:
        online_sockets = await self.db.scalar(
            select(func.count()).select_from(UserPresence).where(UserPresence.is_online.is_(True))
        )
        online_users = await self.db.scalar(
            select(func.count(func.distinct(UserPresence.user_id))).where(
                UserPresence.is_online.is_(True)
            )
        )
        total = await self.db.scalar(select(func.count()).select_from(UserPresence))
        return {
            "online_users": int(online_users or 0),
            "online_sockets": int(online_sockets or 0),
            "total_records": int(total or 0),
        }
