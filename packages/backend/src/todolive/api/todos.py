"""Todo API routes.

Learn: These routes are the HTTP interface to the todo state machine.
The service layer handles all validation (transitions, ownership).
Routes translate HTTP to service calls, map domain errors to status
codes, and hand the committed result to the realtime event service.

The response body is built *before* the realtime step: if writing a
notification fails, the session is rolled back, and the todo must
already be serialized by then.

Key patterns:
- POST for creation and state changes (not idempotent)
- PATCH for partial updates
- Query params for filtering (state, priority, category, search, date
  ranges, has_files); the static /stats, /filter-options, /suggestions
  and /analytics paths are declared before /{todo_id}
"""

from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from todolive.api.errors import access_denied, api_error, todo_not_found
from todolive.auth.dependencies import CurrentIdentity, get_current_user
from todolive.db.engine import get_db
from todolive.db.models import Todo
from todolive.realtime.hub import RealtimeHub, get_hub
from todolive.schemas.todo import (
    BulkRequest,
    BulkResult,
    StateChange,
    TodoCreate,
    TodoList,
    TodoRead,
    TodoUpdate,
)
from todolive.services.file_service import FileService
from todolive.services.realtime_events import RealtimeEventService
from todolive.services.todo_service import (
    InvalidOperationError,
    InvalidTransitionError,
    TodoAccessDeniedError,
    TodoNotFoundError,
    TodoService,
    UnknownStateError,
)

router = APIRouter(prefix="/todos")


def _todo_svc(db: AsyncSession = Depends(get_db)) -> TodoService:
    return TodoService(db)


def _events(
    db: AsyncSession = Depends(get_db),
    hub: RealtimeHub = Depends(get_hub),
) -> RealtimeEventService:
    return hub.event_service(db)


async def load_owned_todo(
    todo_id: int,
    svc: TodoService,
    identity: CurrentIdentity,
) -> Todo:
    try:
        return await svc.get_owned_todo(todo_id, identity.user_id)
    except TodoNotFoundError:
        raise todo_not_found(todo_id)
    except TodoAccessDeniedError:
        raise access_denied("You do not have access to this todo")


def _split(value: Optional[str]) -> Optional[list[str]]:
    if not value:
        return None
    return [part.strip() for part in value.split(",") if part.strip()] or None


def _transition_error(e: Exception):
    if isinstance(e, InvalidTransitionError):
        return api_error(409, "INVALID_TRANSITION", str(e))
    return api_error(422, "INVALID_STATE", str(e))


# ═══════════════════════════════════════════════════════════
# CRUD
# ═══════════════════════════════════════════════════════════


@router.post("", response_model=TodoRead, status_code=201)
async def create_todo(
    body: TodoCreate,
    identity: CurrentIdentity = Depends(get_current_user),
    svc: TodoService = Depends(_todo_svc),
    events: RealtimeEventService = Depends(_events),
):
    """Create a todo. High/urgent priority also raises a notification."""
    try:
        todo = await svc.create_todo(identity.user_id, **body.model_dump())
    except UnknownStateError as e:
        raise _transition_error(e)

    response = TodoRead.model_validate(todo)
    await events.broadcast_todo_created(identity.user_id, todo)
    return response


@router.get("", response_model=TodoList)
async def list_todos(
    state: Optional[str] = Query(None, description="Filter by state (aliases accepted)"),
    priority: Optional[str] = Query(None, description="One priority or a comma-separated list"),
    category: Optional[str] = Query(None, description="One category or a comma-separated list"),
    search: Optional[str] = None,
    created_after: Optional[datetime] = None,
    created_before: Optional[datetime] = None,
    due_after: Optional[datetime] = None,
    due_before: Optional[datetime] = None,
    has_files: Optional[bool] = None,
    sort_by: str = "created_at",
    order: str = Query("desc", pattern=r"^(asc|desc)$"),
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    identity: CurrentIdentity = Depends(get_current_user),
    svc: TodoService = Depends(_todo_svc),
):
    try:
        todos, total = await svc.list_todos(
            identity.user_id,
            state=state,
            priority=_split(priority),
            category=_split(category),
            search=search,
            created_after=created_after,
            created_before=created_before,
            due_after=due_after,
            due_before=due_before,
            has_files=has_files,
            limit=limit,
            offset=offset,
            sort_by=sort_by,
            descending=order == "desc",
        )
    except UnknownStateError as e:
        raise _transition_error(e)
    return {"todos": todos, "total": total, "limit": limit, "offset": offset}


@router.get("/stats")
async def todo_stats(
    identity: CurrentIdentity = Depends(get_current_user),
    svc: TodoService = Depends(_todo_svc),
):
    return await svc.get_stats(identity.user_id)


@router.get("/filter-options")
async def filter_options(
    identity: CurrentIdentity = Depends(get_current_user),
    svc: TodoService = Depends(_todo_svc),
):
    """Priorities and categories in use, date spans, with/without files."""
    return await svc.filter_options(identity.user_id)


@router.get("/suggestions")
async def suggestions(
    q: str = "",
    type: str = Query("all", pattern=r"^(all|titles|categories|descriptions)$"),
    identity: CurrentIdentity = Depends(get_current_user),
    svc: TodoService = Depends(_todo_svc),
):
    """Search type-ahead. Queries shorter than 2 characters return nothing."""
    return {"suggestions": await svc.suggestions(identity.user_id, q, type)}


@router.get("/analytics")
async def analytics(
    period: str = Query("30d", pattern=r"^(7d|30d|90d|1y)$"),
    identity: CurrentIdentity = Depends(get_current_user),
    svc: TodoService = Depends(_todo_svc),
):
    return await svc.analytics(identity.user_id, period)


@router.post("/bulk", response_model=BulkResult)
async def bulk_action(
    body: BulkRequest,
    identity: CurrentIdentity = Depends(get_current_user),
    svc: TodoService = Depends(_todo_svc),
    events: RealtimeEventService = Depends(_events),
    db: AsyncSession = Depends(get_db),
):
    """Delete, complete, or update many todos at once.

    Learn: Ownership of every id is checked first (403 for the whole
    request). After that, items fail individually — a completed todo
    can't be moved back, but the rest of the batch still applies.
    """
    try:
        results, removed = await svc.bulk_action(
            identity.user_id, body.todo_ids, body.action,
            body.updates.model_dump(exclude_unset=True),
        )
    except TodoAccessDeniedError as e:
        raise access_denied(str(e))
    except (InvalidOperationError, UnknownStateError) as e:
        raise api_error(400, "INVALID_OPERATION", str(e))

    await FileService(db).remove_stored_files(removed)
    await events.broadcast_bulk_action(identity.user_id, body.action, results)
    return {"action": body.action, **results}


@router.get("/{todo_id}", response_model=TodoRead)
async def get_todo(
    todo_id: int,
    identity: CurrentIdentity = Depends(get_current_user),
    svc: TodoService = Depends(_todo_svc),
):
    return await load_owned_todo(todo_id, svc, identity)


@router.patch("/{todo_id}", response_model=TodoRead)
async def update_todo(
    todo_id: int,
    body: TodoUpdate,
    identity: CurrentIdentity = Depends(get_current_user),
    svc: TodoService = Depends(_todo_svc),
    events: RealtimeEventService = Depends(_events),
):
    """Partial update. A `state` field goes through the state machine (409 on regressions)."""
    todo = await load_owned_todo(todo_id, svc, identity)
    fields = body.model_dump(exclude_unset=True)
    try:
        changes = await svc.update_todo(todo, **fields)
    except (InvalidTransitionError, UnknownStateError) as e:
        raise _transition_error(e)

    response = TodoRead.model_validate(todo)
    if changes:
        await events.broadcast_todo_updated(identity.user_id, todo, changes)
    return response


@router.delete("/{todo_id}")
async def delete_todo(
    todo_id: int,
    identity: CurrentIdentity = Depends(get_current_user),
    svc: TodoService = Depends(_todo_svc),
    events: RealtimeEventService = Depends(_events),
    db: AsyncSession = Depends(get_db),
):
    todo = await load_owned_todo(todo_id, svc, identity)
    title = todo.title
    removed = await svc.delete_todo(todo)
    await FileService(db).remove_stored_files(removed)
    await events.broadcast_todo_deleted(identity.user_id, todo_id, title)
    return {"deleted": True, "id": todo_id}


# ═══════════════════════════════════════════════════════════
# State Transitions
# ═══════════════════════════════════════════════════════════


@router.post("/{todo_id}/move", response_model=TodoRead)
async def move_todo(
    todo_id: int,
    body: StateChange,
    identity: CurrentIdentity = Depends(get_current_user),
    svc: TodoService = Depends(_todo_svc),
    events: RealtimeEventService = Depends(_events),
):
    """Move a todo forward. Moving to the current state is a no-op."""
    todo = await load_owned_todo(todo_id, svc, identity)
    try:
        from_state, to_state = await svc.move_todo(todo, body.state)
    except (InvalidTransitionError, UnknownStateError) as e:
        raise _transition_error(e)

    response = TodoRead.model_validate(todo)
    if from_state != to_state:
        await events.broadcast_todo_moved(identity.user_id, todo.id, from_state, to_state, todo.title)
    return response


@router.post("/{todo_id}/complete", response_model=TodoRead)
async def complete_todo(
    todo_id: int,
    identity: CurrentIdentity = Depends(get_current_user),
    svc: TodoService = Depends(_todo_svc),
    events: RealtimeEventService = Depends(_events),
):
    todo = await load_owned_todo(todo_id, svc, identity)
    from_state, to_state = await svc.complete_todo(todo)

    response = TodoRead.model_validate(todo)
    if from_state != to_state:
        await events.broadcast_todo_moved(identity.user_id, todo.id, from_state, to_state, todo.title)
    return response
