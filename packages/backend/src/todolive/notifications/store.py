"""Notification store — durable record of everything pushed to a user.

Learn: WebSocket delivery is at-most-once: if the user has no open tab,
the push is simply dropped. This table is the catch-up path — a client
that reconnects lists its unread notifications here.

The store only flushes; the calling service owns the transaction and
decides when to commit.
"""

import uuid
from datetime import datetime, timedelta, timezone
from typing import Any, Optional

from sqlalchemy import case, delete, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from todolive.db.models import Notification, as_uuid


class NotificationStore:
    """Notification rows for one session, always scoped by owner."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def insert_notification(
        self,
        user_id: uuid.UUID | str,
        type: str,
        title: str,
        message: str,
        data: Optional[dict] = None,
    ) -> Notification:
        """Insert a notification. Returns the created row (id populated)."""
        notification = Notification(
            user_id=as_uuid(user_id),
            type=type,
            title=title,
            message=message,
            data=data or {},
            read=False,
        )
        self.db.add(notification)
        await self.db.flush()  # get the auto-generated id
        return notification

    async def get(
        self, notification_id: int, user_id: uuid.UUID | str
    ) -> Optional[Notification]:
        result = await self.db.execute(
            select(Notification).where(
                Notification.id == notification_id,
                Notification.user_id == as_uuid(user_id),
            )
        )
        return result.scalars().first()

    async def list_by_user(
        self,
        user_id: uuid.UUID | str,
        page: int = 1,
        limit: int = 20,
        unread_only: bool = False,
        type: Optional[str] = None,
    ) -> tuple[list[Notification], int]:
        """Page through a user's notifications, newest first.

        Returns (rows, total) where total counts every row matching the
        filters, not just this page.
        """
        filters = [Notification.user_id == as_uuid(user_id)]
        if unread_only:
            filters.append(Notification.read.is_(False))
        if type:
            filters.append(Notification.type == type)

        rows = await self.db.execute(
            select(Notification)
            .where(*filters)
            .order_by(Notification.created_at.desc(), Notification.id.desc())
            .limit(limit)
            .offset((page - 1) * limit)
        )
        total = await self.db.scalar(
            select(func.count()).select_from(Notification).where(*filters)
        )
        return list(rows.scalars().all()), int(total or 0)

    async def mark_read(
        self, notification_id: int, user_id: uuid.UUID | str
    ) -> Optional[Notification]:
        """Flip read=True. Returns None if the row isn't this user's."""
        notification = await self.get(notification_id, user_id)
        if notification is None:
            return None
        notification.read = True
        await self.db.flush()
        return notification

    async def mark_all_read(self, user_id: uuid.UUID | str) -> int:
        result = await self.db.execute(
            update(Notification)
            .where(
                Notification.user_id == as_uuid(user_id),
                Notification.read.is_(False),
            )
            .values(read=True, updated_at=datetime.now(timezone.utc))
        )
        return result.rowcount or 0

    async def count_unread(self, user_id: uuid.UUID | str) -> int:
        count = await self.db.scalar(
            select(func.count())
            .select_from(Notification)
            .where(
                Notification.user_id == as_uuid(user_id),
                Notification.read.is_(False),
            )
        )
        return int(count or 0)

    async def delete(self, notification_id: int, user_id: uuid.UUID | str) -> bool:
        result = await self.db.execute(
            delete(Notification).where(
                Notification.id == notification_id,
                Notification.user_id == as_uuid(user_id),
            )
        )
        return (result.rowcount or 0) > 0

    async def delete_older_than(self, days: int) -> int:
        cutoff = datetime.now(timezone.utc) - timedelta(days=days)
        result = await self.db.execute(
            delete(Notification)
            .where(Notification.created_at < cutoff)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount or 0

    async def stats(self, user_id: uuid.UUID | str) -> dict[str, int]:
        now = datetime.now(timezone.utc)
        row = (
            await self.db.execute(
                select(
                    func.count().label("total"),
                    func.count(case((Notification.read.is_(False), 1))).label("unread"),
                    func.count(
                        case((Notification.created_at >= now - timedelta(hours=24), 1))
                    ).label("last_24h"),
                    func.count(
                        case((Notification.created_at >= now - timedelta(days=7), 1))
                    ).label("last_7d"),
                ).where(Notification.user_id == as_uuid(user_id))
            )
        ).one()
        return {
            "total": int(row.total or 0),
            "unread": int(row.unread or 0),
            "last_24h": int(row.last_24h or 0),
            "last_7d": int(row.last_7d or 0),
        }


def notification_to_dict(notification: Notification) -> dict[str, Any]:
    """Wire shape of a notification (used by `notification` and batch frames)."""
    return {
        "id": notification.id,
        "user_id": str(notification.user_id),
        "type": notification.type,
        "title": notification.title,
        "message": notification.message,
        "data": notification.data or {},
        "read": bool(notification.read),
        "created_at": notification.created_at,
    }
