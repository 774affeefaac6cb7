"""Realtime event service — turns a committed mutation into pushes + notifications.

Learn: REST handlers call one method here *after* their own commit. Each
method does up to three things, in order:

  1. broadcast the wire event to the owner's room (immediate UI update)
  2. write the derived Notification row(s) via NotificationService
  3. (inside NotificationService) park `normal` notifications for the digest

Nothing in here raises. Every method returns a DeliveryResult that says
how many sockets were reached, which notifications were written, and the
error (if any) that stopped the notification step. A failed side channel
never turns a successful mutation into a failed request.
"""

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Optional

import structlog

from todolive.db.models import Todo
from todolive.events import types as t
from todolive.realtime.broadcaster import Broadcaster
from todolive.schemas.todo import TodoRead
from todolive.services.notification_service import NotificationService

logger = structlog.get_logger()

HIGH_PRIORITIES = frozenset({"high", "urgent"})


@dataclass
class DeliveryResult:
    event: str
    sockets: int = 0
    notifications: list[int] = field(default_factory=list)
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None


def todo_payload(todo: Todo) -> dict[str, Any]:
    return TodoRead.model_validate(todo).model_dump(mode="json")


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


class RealtimeEventService:
    def __init__(self, broadcaster: Broadcaster, notifications: NotificationService):
        self.broadcaster = broadcaster
        self.notifications = notifications

    # ─── Plumbing ────────────────────────────────────────

    async def _emit(
        self,
        user_id: uuid.UUID | str,
        event: str,
        data: dict[str, Any],
        notifications: list[tuple[str, dict[str, Any]]] = (),
    ) -> DeliveryResult:
        result = DeliveryResult(event=event)
        result.sockets = await self.broadcaster.broadcast_to_user(user_id, event, data)

        for notification_type, notification_data in notifications:
            try:
                notification = await self.notifications.create_notification(
                    user_id, notification_type, notification_data
                )
                result.notifications.append(notification.id)
            except Exception as e:
                # create_notification already rolled the session back.
                result.error = str(e)
                logger.error(
                    "realtime_events.notification_failed",
                    user_id=str(user_id),
                    event_type=event,
                    type=notification_type,
                    error=str(e),
                )
                break
        return result

    # ─── Todos ───────────────────────────────────────────

    async def broadcast_todo_created(self, user_id: uuid.UUID | str, todo: Todo) -> DeliveryResult:
        payload = todo_payload(todo)
        notifications = []
        if todo.priority in HIGH_PRIORITIES:
            notifications.append((
                t.N_TODO_CREATED_HIGH_PRIORITY,
                {"todo_id": todo.id, "todo_title": todo.title, "priority": todo.priority},
            ))
        return await self._emit(
            user_id, t.TODO_CREATED, {"todo": payload, "timestamp": _now()}, notifications
        )

    async def broadcast_todo_updated(
        self,
        user_id: uuid.UUID | str,
        todo: Todo,
        changes: dict[str, dict[str, Any]],
    ) -> DeliveryResult:
        """`changes` maps field → {"from": old, "to": new} (real changes only)."""
        payload = todo_payload(todo)
        notifications = []
        state = changes.get("state")
        if state and state.get("from") != state.get("to"):
            notifications.append((
                t.N_TODO_STATE_CHANGED,
                {
                    "todo_id": todo.id,
                    "todo_title": todo.title,
                    "from_state": state.get("from"),
                    "to_state": state.get("to"),
                },
            ))
        if "due_date" in changes:
            notifications.append((
                t.N_TODO_DUE_DATE_CHANGED,
                {
                    "todo_id": todo.id,
                    "todo_title": todo.title,
                    "old_due_date": changes["due_date"].get("from"),
                    "new_due_date": changes["due_date"].get("to"),
                },
            ))
        return await self._emit(
            user_id,
            t.TODO_UPDATED,
            {"todo": payload, "changes": changes, "timestamp": _now()},
            notifications,
        )

    async def broadcast_todo_deleted(
        self, user_id: uuid.UUID | str, todo_id: int, todo_title: str
    ) -> DeliveryResult:
        return await self._emit(
            user_id,
            t.TODO_DELETED,
            {"todo_id": todo_id, "todo_title": todo_title, "timestamp": _now()},
            [(t.N_TODO_DELETED, {"todo_id": todo_id, "todo_title": todo_title})],
        )

    async def broadcast_todo_moved(
        self,
        user_id: uuid.UUID | str,
        todo_id: int,
        from_state: str,
        to_state: str,
        todo_title: str,
    ) -> DeliveryResult:
        data = {
            "todo_id": todo_id,
            "todo_title": todo_title,
            "from_state": from_state,
            "to_state": to_state,
        }
        return await self._emit(
            user_id,
            t.TODO_MOVED,
            {**data, "timestamp": _now()},
            [(t.N_TODO_MOVED, data)],
        )

    async def broadcast_bulk_action(
        self, user_id: uuid.UUID | str, action: str, results: dict[str, Any]
    ) -> DeliveryResult:
        return await self._emit(
            user_id,
            t.BULK_ACTION,
            {"action": action, "results": results, "timestamp": _now()},
            [(
                f"{t.N_BULK_PREFIX}{action}",
                {
                    "action": action,
                    "total": results.get("total", 0),
                    "successful": results.get("successful", 0),
                    "failed": results.get("failed", 0),
                },
            )],
        )

    # ─── Files ───────────────────────────────────────────

    async def broadcast_file_uploaded(
        self,
        user_id: uuid.UUID | str,
        todo_id: int,
        file_meta: dict[str, Any],
        todo_title: str = "",
    ) -> DeliveryResult:
        return await self._emit(
            user_id,
            t.FILE_UPLOADED,
            {"todo_id": todo_id, "file": file_meta, "timestamp": _now()},
            [(
                t.N_FILE_UPLOADED,
                {
                    "todo_id": todo_id,
                    "todo_title": todo_title,
                    "file_id": file_meta.get("id"),
                    "filename": file_meta.get("original_name"),
                    "file_size": file_meta.get("file_size"),
                },
            )],
        )

    async def broadcast_file_deleted(
        self,
        user_id: uuid.UUID | str,
        todo_id: int,
        file_id: int,
        filename: str,
        todo_title: str = "",
    ) -> DeliveryResult:
        return await self._emit(
            user_id,
            t.FILE_DELETED,
            {"todo_id": todo_id, "file_id": file_id, "filename": filename, "timestamp": _now()},
            [(
                t.N_FILE_DELETED,
                {"todo_id": todo_id, "todo_title": todo_title, "file_id": file_id, "filename": filename},
            )],
        )

    # ─── User ────────────────────────────────────────────

    async def broadcast_profile_updated(
        self, user_id: uuid.UUID | str, user: dict[str, Any], changes: dict[str, Any]
    ) -> DeliveryResult:
        return await self._emit(
            user_id,
            t.PROFILE_UPDATED,
            {"user": user, "changes": changes, "timestamp": _now()},
        )

    async def broadcast_theme_changed(self, user_id: uuid.UUID | str, theme: str) -> DeliveryResult:
        return await self._emit(user_id, t.THEME_CHANGED, {"theme": theme, "timestamp": _now()})

    async def broadcast_user_activity(
        self, user_id: uuid.UUID | str, activity: dict[str, Any]
    ) -> DeliveryResult:
        return await self._emit(
            user_id,
            t.USER_ACTIVITY,
            {**activity, "user_id": str(user_id), "timestamp": _now()},
        )
