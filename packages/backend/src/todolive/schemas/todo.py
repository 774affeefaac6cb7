"""Pydantic schemas for todos.

Learn: Separate schemas for create/update/read keeps the API clean.
- TodoCreate: what you POST to create a todo
- TodoUpdate: what you PATCH to modify a todo (all optional; may carry state)
- StateChange: dedicated schema for /move (validated by the state machine)
- TodoRead: what the API returns, and the `todo` payload of wire events

State fields accept the legacy aliases too; the service normalizes them.
"""

import uuid
from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, Field, field_validator

from todolive.db.models import as_utc

STATE_PATTERN = r"^(todo|inProgress|complete|pending|in_progress|completed)$"
PRIORITY_PATTERN = r"^(low|medium|high|urgent)$"


class TodoCreate(BaseModel):
    title: str = Field(..., min_length=1, max_length=255)
    description: str = Field(default="")
    priority: str = Field(default="medium", pattern=PRIORITY_PATTERN)
    category: Optional[str] = Field(None, max_length=100)
    due_date: Optional[datetime] = None
    state: str = Field(default="todo", pattern=STATE_PATTERN)

    @field_validator("due_date")
    @classmethod
    def due_date_utc(cls, value):
        return as_utc(value)


class TodoUpdate(BaseModel):
    """Partial update — only fields present in the request are applied."""
    title: Optional[str] = Field(None, min_length=1, max_length=255)
    description: Optional[str] = None
    priority: Optional[str] = Field(None, pattern=PRIORITY_PATTERN)
    category: Optional[str] = Field(None, max_length=100)
    due_date: Optional[datetime] = None
    state: Optional[str] = Field(None, pattern=STATE_PATTERN)

    @field_validator("due_date")
    @classmethod
    def due_date_utc(cls, value):
        return as_utc(value)

    @field_validator("title", "description", "priority", "state")
    @classmethod
    def reject_null(cls, value):
        if value is None:
            raise ValueError("may not be null")
        return value


class StateChange(BaseModel):
    state: str = Field(..., pattern=STATE_PATTERN)


class TodoRead(BaseModel):
    id: int
    user_id: uuid.UUID
    title: str
    description: str
    priority: str
    category: Optional[str]
    due_date: Optional[datetime]
    state: str
    started_at: Optional[datetime]
    completed_at: Optional[datetime]
    attachment_count: int
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}

    @field_validator("due_date", "started_at", "completed_at", "created_at", "updated_at")
    @classmethod
    def timestamps_utc(cls, value):
        return as_utc(value)


class TodoList(BaseModel):
    todos: list[TodoRead]
    total: int
    limit: int
    offset: int


class BulkUpdate(BaseModel):
    """Fields a bulk update may set. Anything else in the body is ignored."""
    priority: Optional[str] = Field(None, pattern=PRIORITY_PATTERN)
    category: Optional[str] = Field(None, max_length=100)
    state: Optional[str] = Field(None, pattern=STATE_PATTERN)
    due_date: Optional[datetime] = None

    @field_validator("due_date")
    @classmethod
    def due_date_utc(cls, value):
        return as_utc(value)

    @field_validator("priority", "state")
    @classmethod
    def reject_null(cls, value):
        if value is None:
            raise ValueError("may not be null")
        return value


class BulkRequest(BaseModel):
    action: str = Field(..., pattern=r"^(delete|complete|update)$")
    todo_ids: list[int] = Field(..., min_length=1, max_length=100)
    updates: BulkUpdate = Field(default_factory=BulkUpdate)


class BulkResult(BaseModel):
    action: str
    total: int
    successful: int
    failed: int
    errors: list[dict[str, Any]]
