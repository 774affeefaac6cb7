"""Notification API routes — the catch-up path for offline clients.

Learn: Everything here is scoped to the caller. Reading or deleting
someone else's notification returns 404, not 403, so ids can't be probed.
"""

from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from todolive.api.errors import api_error
from todolive.auth.dependencies import CurrentIdentity, get_current_user
from todolive.db.engine import get_db
from todolive.db.models import User
from todolive.realtime.hub import RealtimeHub, get_hub
from todolive.schemas.notification import (
    NotificationList,
    NotificationPreferences,
    NotificationPreferencesUpdate,
    NotificationRead,
    NotificationStats,
    UnreadCount,
)
from todolive.services.notification_service import (
    NotificationNotFoundError,
    NotificationService,
)

router = APIRouter(prefix="/notifications")


def _svc(
    db: AsyncSession = Depends(get_db),
    hub: RealtimeHub = Depends(get_hub),
) -> NotificationService:
    return hub.notification_service(db)


def _not_found(e: Exception):
    return api_error(404, "NOTIFICATION_NOT_FOUND", str(e))


async def _current_user_row(identity: CurrentIdentity, db: AsyncSession) -> User:
    user = await db.get(User, identity.user_uuid)
    if user is None:
        raise api_error(404, "USER_NOT_FOUND", "User not found")
    return user


@router.get("", response_model=NotificationList)
async def list_notifications(
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    unread_only: bool = False,
    type: Optional[str] = None,
    identity: CurrentIdentity = Depends(get_current_user),
    svc: NotificationService = Depends(_svc),
):
    return await svc.list_notifications(
        identity.user_id, page=page, limit=limit, unread_only=unread_only, type=type
    )


@router.get("/unread-count", response_model=UnreadCount)
async def unread_count(
    identity: CurrentIdentity = Depends(get_current_user),
    svc: NotificationService = Depends(_svc),
):
    return {"unread_count": await svc.unread_count(identity.user_id)}


@router.get("/stats", response_model=NotificationStats)
async def notification_stats(
    identity: CurrentIdentity = Depends(get_current_user),
    svc: NotificationService = Depends(_svc),
):
    return await svc.stats(identity.user_id)


@router.put("/read-all")
async def mark_all_read(
    identity: CurrentIdentity = Depends(get_current_user),
    svc: NotificationService = Depends(_svc),
):
    count = await svc.mark_all_as_read(identity.user_id)
    return {"updated": count}


@router.get("/preferences", response_model=NotificationPreferences)
async def get_preferences(
    identity: CurrentIdentity = Depends(get_current_user),
    svc: NotificationService = Depends(_svc),
    db: AsyncSession = Depends(get_db),
):
    user = await _current_user_row(identity, db)
    return await svc.get_preferences(user)


@router.put("/preferences", response_model=NotificationPreferences)
async def update_preferences(
    body: NotificationPreferencesUpdate,
    identity: CurrentIdentity = Depends(get_current_user),
    svc: NotificationService = Depends(_svc),
    db: AsyncSession = Depends(get_db),
):
    user = await _current_user_row(identity, db)
    return await svc.update_preferences(user, body.model_dump(exclude_none=True))


@router.post("/test", response_model=NotificationRead, status_code=201)
async def send_test_notification(
    identity: CurrentIdentity = Depends(get_current_user),
    svc: NotificationService = Depends(_svc),
):
    return await svc.send_test_notification(identity.user_id)


@router.put("/{notification_id}/read", response_model=NotificationRead)
async def mark_read(
    notification_id: int,
    identity: CurrentIdentity = Depends(get_current_user),
    svc: NotificationService = Depends(_svc),
):
    try:
        return await svc.mark_as_read(notification_id, identity.user_id)
    except NotificationNotFoundError as e:
        raise _not_found(e)


@router.delete("/{notification_id}")
async def delete_notification(
    notification_id: int,
    identity: CurrentIdentity = Depends(get_current_user),
    svc: NotificationService = Depends(_svc),
):
    try:
        await svc.delete_notification(notification_id, identity.user_id)
    except NotificationNotFoundError as e:
        raise _not_found(e)
    return {"deleted": True, "id": notification_id}
