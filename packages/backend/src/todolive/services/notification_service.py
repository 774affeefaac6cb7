"""Notification service — create, push, batch, read, clean up.

Learn: create_notification is the one entry point every notification goes
through:

  1. render title/message from the type's template
  2. INSERT the row and commit (durable catch-up record)
  3. push a `notification` frame to the owner's room (in-app)
  4. e-mail a copy when asked and the user has e-mail enabled
  5. park `normal` notifications in the batcher for the next digest

Steps 3-5 are best-effort. Step 2 is not: if the insert fails the session
is rolled back and the error propagates to the caller (the event service
catches it there).
"""

import uuid
from datetime import datetime, timedelta, timezone
from typing import Any, Optional

import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from todolive.db.models import (
    Notification,
    Todo,
    User,
    as_utc,
    as_uuid,
    default_notification_preferences,
)
from todolive.events import types as t
from todolive.notifications.store import NotificationStore, notification_to_dict
from todolive.notifications.templates import render
from todolive.realtime.broadcaster import Broadcaster
from todolive.services.email_service import EmailService
from todolive.services.notification_batcher import NotificationBatcher

logger = structlog.get_logger()

PREFERENCE_KEYS = frozenset(default_notification_preferences())
BATCH_FREQUENCIES = frozenset({"immediate", "hourly", "daily"})


class NotificationNotFoundError(Exception):
    """Raised when a notification doesn't exist or isn't the caller's."""
    pass


class NotificationService:
    def __init__(
        self,
        db: AsyncSession,
        broadcaster: Optional[Broadcaster] = None,
        batcher: Optional[NotificationBatcher] = None,
        email: Optional[EmailService] = None,
    ):
        self.db = db
        self.store = NotificationStore(db)
        self.broadcaster = broadcaster
        self.batcher = batcher
        self.email = email

    # ─── Create ──────────────────────────────────────────

    async def create_notification(
        self,
        user_id: uuid.UUID | str,
        type: str,
        data: Optional[dict[str, Any]] = None,
        *,
        priority: str = "normal",
        batchable: bool = True,
        send_in_app: bool = True,
        send_email: bool = False,
    ) -> Notification:
        data = data or {}
        title, message = render(type, data)

        try:
            notification = await self.store.insert_notification(
                user_id, type, title, message, data
            )
            await self.db.commit()
        except Exception:
            await self.db.rollback()
            raise

        payload = notification_to_dict(notification)

        if send_in_app and self.broadcaster is not None:
            await self.broadcaster.broadcast_to_user(user_id, t.NOTIFICATION, payload)

        if send_email:
            await self._send_email(user_id, title, message)

        if batchable and priority == "normal" and self.batcher is not None:
            await self.batcher.enqueue(user_id, payload)

        logger.info(
            "notification.created",
            notification_id=notification.id,
            user_id=str(user_id),
            type=type,
            priority=priority,
        )
        return notification

    async def _send_email(self, user_id: uuid.UUID | str, title: str, message: str) -> None:
        if self.email is None or not self.email.enabled:
            return
        try:
            user = await self.db.get(User, as_uuid(user_id))
        except Exception as e:
            logger.warning("notification.email_lookup_failed", user_id=str(user_id), error=str(e))
            return
        if user is None:
            return
        prefs = {**default_notification_preferences(), **(user.notification_preferences or {})}
        if not prefs.get("email_enabled", True):
            return
        await self.email.send(user.email, title, message)

    # ─── Read ────────────────────────────────────────────

    async def list_notifications(
        self,
        user_id: uuid.UUID | str,
        page: int = 1,
        limit: int = 20,
        unread_only: bool = False,
        type: Optional[str] = None,
    ) -> dict[str, Any]:
        rows, total = await self.store.list_by_user(
            user_id, page=page, limit=limit, unread_only=unread_only, type=type
        )
        return {
            "notifications": rows,
            "pagination": {
                "page": page,
                "limit": limit,
                "total": total,
                "pages": (total + limit - 1) // limit if limit else 0,
            },
        }

    async def unread_count(self, user_id: uuid.UUID | str) -> int:
        return await self.store.count_unread(user_id)

    async def stats(self, user_id: uuid.UUID | str) -> dict[str, int]:
        return await self.store.stats(user_id)

    # ─── Update ──────────────────────────────────────────

    async def mark_as_read(self, notification_id: int, user_id: uuid.UUID | str) -> Notification:
        """Only the owner can flip read. Anyone else sees "not found"."""
        notification = await self.store.mark_read(notification_id, user_id)
        if notification is None:
            raise NotificationNotFoundError(f"Notification {notification_id} not found")
        await self.db.commit()
        return notification

    async def mark_all_as_read(self, user_id: uuid.UUID | str) -> int:
        count = await self.store.mark_all_read(user_id)
        await self.db.commit()
        if self.broadcaster is not None:
            await self.broadcaster.broadcast_to_user(
                user_id,
                t.NOTIFICATIONS_READ,
                {"count": count, "timestamp": datetime.now(timezone.utc)},
            )
        logger.info("notification.all_read", user_id=str(user_id), count=count)
        return count

    # ─── Delete ──────────────────────────────────────────

    async def delete_notification(self, notification_id: int, user_id: uuid.UUID | str) -> None:
        if not await self.store.delete(notification_id, user_id):
            raise NotificationNotFoundError(f"Notification {notification_id} not found")
        await self.db.commit()

    async def cleanup_old_notifications(self, days_old: int = 30) -> int:
        count = await self.store.delete_older_than(days_old)
        await self.db.commit()
        logger.info("notification.cleanup", days_old=days_old, deleted=count)
        return count

    # ─── Preferences ─────────────────────────────────────

    async def get_preferences(self, user: User) -> dict[str, Any]:
        return {**default_notification_preferences(), **(user.notification_preferences or {})}

    async def update_preferences(self, user: User, changes: dict[str, Any]) -> dict[str, Any]:
        """Merge known keys into the stored preferences. Unknown keys are ignored."""
        if "batch_frequency" in changes and changes["batch_frequency"] not in BATCH_FREQUENCIES:
            raise ValueError(
                f"batch_frequency must be one of {sorted(BATCH_FREQUENCIES)}"
            )
        merged = await self.get_preferences(user)
        merged.update({k: v for k, v in changes.items() if k in PREFERENCE_KEYS})
        # Reassign so SQLAlchemy sees the JSON column as dirty.
        user.notification_preferences = merged
        await self.db.commit()
        return merged

    # ─── Scheduled / manual ──────────────────────────────

    async def send_test_notification(self, user_id: uuid.UUID | str) -> Notification:
        return await self.create_notification(
            user_id,
            t.N_SYSTEM,
            {
                "title": "Test Notification",
                "message": "This is a test notification to verify your settings are working.",
            },
            batchable=False,
        )

    async def send_due_date_reminders(self, within_hours: int = 24) -> int:
        """Remind owners about open todos due in the next `within_hours`.

        Learn: A todo gets at most one reminder per 24 h window, so the
        hourly maintenance tick doesn't nag. High and urgent todos are
        sent with priority="high", which skips the digest batcher.
        """
        now = datetime.now(timezone.utc)
        horizon = now + timedelta(hours=within_hours)
        rows = (
            await self.db.execute(
                select(Todo, User)
                .join(User, Todo.user_id == User.id)
                .where(
                    Todo.due_date.is_not(None),
                    Todo.due_date >= now,
                    Todo.due_date <= horizon,
                    Todo.state != "complete",
                )
                .order_by(Todo.due_date.asc())
            )
        ).all()

        sent = 0
        for todo, user in rows:
            prefs = {**default_notification_preferences(), **(user.notification_preferences or {})}
            if not prefs.get("due_date_reminders", True):
                continue
            if await self._reminded_recently(user.id, todo.id, now - timedelta(hours=24)):
                continue

            due = as_utc(todo.due_date)
            hours_left = max(int((due - now).total_seconds() // 3600), 0)
            due_label = "within the hour" if hours_left == 0 else f"in {hours_left} hours"

            try:
                await self.create_notification(
                    user.id,
                    t.N_DUE_DATE_REMINDER,
                    {
                        "todo_id": todo.id,
                        "todo_title": todo.title,
                        "due_date": due.isoformat(),
                        "due_label": due_label,
                        "priority": todo.priority,
                    },
                    priority="high" if todo.priority in ("high", "urgent") else "normal",
                    send_email=bool(prefs.get("email_enabled", True)),
                )
                sent += 1
            except Exception:
                logger.exception("notification.reminder_failed", todo_id=todo.id)

        logger.info("notification.reminders_sent", count=sent)
        return sent

    async def _reminded_recently(self, user_id: uuid.UUID, todo_id: int, since: datetime) -> bool:
        rows = await self.db.execute(
            select(Notification.data).where(
                Notification.user_id == user_id,
                Notification.type == t.N_DUE_DATE_REMINDER,
                Notification.created_at >= since,
            )
        )
        return any((data or {}).get("todo_id") == todo_id for data in rows.scalars())
