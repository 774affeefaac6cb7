"""Pydantic schemas for notifications and notification preferences."""

import uuid
from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, Field


class NotificationRead(BaseModel):
    id: int
    user_id: uuid.UUID
    type: str
    title: str
    message: str
    data: dict[str, Any]
    read: bool
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}


class Pagination(BaseModel):
    page: int
    limit: int
    total: int
    pages: int


class NotificationList(BaseModel):
    notifications: list[NotificationRead]
    pagination: Pagination


class UnreadCount(BaseModel):
    unread_count: int


class NotificationStats(BaseModel):
    total: int
    unread: int
    last_24h: int
    last_7d: int


class NotificationPreferences(BaseModel):
    email_enabled: bool = True
    in_app_enabled: bool = True
    due_date_reminders: bool = True
    file_upload_notifications: bool = True
    batch_frequency: str = "hourly"


class NotificationPreferencesUpdate(BaseModel):
    """Partial update — omitted keys keep their stored value."""
    email_enabled: Optional[bool] = None
    in_app_enabled: Optional[bool] = None
    due_date_reminders: Optional[bool] = None
    file_upload_notifications: Optional[bool] = None
    batch_frequency: Optional[str] = Field(None, pattern=r"^(immediate|hourly|daily)$")
