"""Todo service — CRUD plus the forward-only state machine.

Learn: A todo only ever moves forward:

  todo → inProgress → complete
  todo ─────────────→ complete

Re-entering the current state is a no-op, never an error. Anything else
raises InvalidTransitionError and leaves the row untouched. The first
entry into inProgress stamps started_at, the first entry into complete
stamps completed_at; neither is ever overwritten.

Older clients still send pending / in_progress / completed. Those are
accepted as aliases and normalized before any rule is checked, so the
database only ever holds the canonical vocabulary.
"""

import uuid
from datetime import datetime, timedelta, timezone
from typing import Any, Optional

import structlog
from sqlalchemy import case, delete, func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from todolive.db.models import FileAttachment, Todo, as_utc, as_uuid

logger = structlog.get_logger()


# ═══════════════════════════════════════════════════════════
# State Machine
# ═══════════════════════════════════════════════════════════

TODO_STATES = ("todo", "inProgress", "complete")

STATE_ALIASES: dict[str, str] = {
    "pending": "todo",
    "in_progress": "inProgress",
    "completed": "complete",
}

VALID_TRANSITIONS: dict[str, set[str]] = {
    "todo": {"inProgress", "complete"},
    "inProgress": {"complete"},
    "complete": set(),  # terminal state
}

PRIORITIES = ("low", "medium", "high", "urgent")

SORTABLE_FIELDS = {
    "created_at": Todo.created_at,
    "updated_at": Todo.updated_at,
    "due_date": Todo.due_date,
    "priority": Todo.priority,
    "title": Todo.title,
    "category": Todo.category,
}

BULK_ACTIONS = ("delete", "complete", "update")
BULK_UPDATABLE_FIELDS = ("priority", "category", "state", "due_date")

ANALYTICS_PERIODS = {
    "7d": timedelta(days=7),
    "30d": timedelta(days=30),
    "90d": timedelta(days=90),
    "1y": timedelta(days=365),
}


class InvalidTransitionError(Exception):
    """Raised when a state transition would move a todo backwards."""
    pass


class UnknownStateError(ValueError):
    """Raised for a state name that is neither canonical nor an alias."""
    pass


class TodoNotFoundError(Exception):
    pass


class TodoAccessDeniedError(Exception):
    """Raised when a user touches a todo they don't own."""
    pass


class InvalidOperationError(Exception):
    pass


def normalize_state(state: str) -> str:
    """Map legacy aliases to the canonical vocabulary."""
    state = STATE_ALIASES.get(state, state)
    if state not in TODO_STATES:
        raise UnknownStateError(f"Unknown todo state: {state!r}")
    return state


def check_transition(current: str, new: str) -> None:
    if current == new:
        return
    if new not in VALID_TRANSITIONS.get(current, set()):
        raise InvalidTransitionError(
            f"Cannot move todo from '{current}' to '{new}': "
            "forward-only movement is enforced"
        )


def _iso(value: Any) -> Any:
    return value.isoformat() if isinstance(value, datetime) else value


def _as_list(value: str | list[str]) -> list[str]:
    return [value] if isinstance(value, str) else list(value)


# ═══════════════════════════════════════════════════════════
# Service
# ═══════════════════════════════════════════════════════════


class TodoService:
    """Business logic for todo CRUD and state management."""

    def __init__(self, db: AsyncSession):
        self.db = db

    # ─── Create ──────────────────────────────────────────

    async def create_todo(
        self,
        user_id: uuid.UUID | str,
        title: str,
        description: str = "",
        priority: str = "medium",
        category: Optional[str] = None,
        due_date: Optional[datetime] = None,
        state: str = "todo",
    ) -> Todo:
        """Create a todo. A non-default initial state is treated as a move from todo."""
        state = normalize_state(state)
        todo = Todo(
            user_id=as_uuid(user_id),
            title=title,
            description=description or "",
            priority=priority,
            category=category,
            due_date=due_date,
            state="todo",
        )
        self._apply_state(todo, state)
        self.db.add(todo)
        await self.db.commit()
        logger.info("todo.created", todo_id=todo.id, user_id=str(user_id), priority=priority)
        return todo

    # ─── Read ────────────────────────────────────────────

    async def get_todo(self, todo_id: int) -> Optional[Todo]:
        result = await self.db.execute(select(Todo).where(Todo.id == todo_id))
        return result.scalars().first()

    async def get_owned_todo(self, todo_id: int, user_id: uuid.UUID | str) -> Todo:
        todo = await self.get_todo(todo_id)
        if todo is None:
            raise TodoNotFoundError(f"Todo {todo_id} not found")
        if todo.user_id != as_uuid(user_id):
            raise TodoAccessDeniedError(f"Todo {todo_id} belongs to another user")
        return todo

    async def list_todos(
        self,
        user_id: uuid.UUID | str,
        state: Optional[str] = None,
        priority: Optional[str | list[str]] = None,
        category: Optional[str | list[str]] = None,
        search: Optional[str] = None,
        created_after: Optional[datetime] = None,
        created_before: Optional[datetime] = None,
        due_after: Optional[datetime] = None,
        due_before: Optional[datetime] = None,
        has_files: Optional[bool] = None,
        limit: int = 50,
        offset: int = 0,
        sort_by: str = "created_at",
        descending: bool = True,
    ) -> tuple[list[Todo], int]:
        """List a user's todos with optional filters. Returns (rows, total).

        priority and category take one value or a list (any of). Date
        bounds are inclusive.
        """
        filters = [Todo.user_id == as_uuid(user_id)]
        if state:
            filters.append(Todo.state == normalize_state(state))
        if priority:
            filters.append(Todo.priority.in_(_as_list(priority)))
        if category:
            filters.append(Todo.category.in_(_as_list(category)))
        if search:
            pattern = f"%{search}%"
            filters.append(or_(Todo.title.ilike(pattern), Todo.description.ilike(pattern)))
        if created_after is not None:
            filters.append(Todo.created_at >= created_after)
        if created_before is not None:
            filters.append(Todo.created_at <= created_before)
        if due_after is not None:
            filters.append(Todo.due_date >= due_after)
        if due_before is not None:
            filters.append(Todo.due_date <= due_before)
        if has_files is True:
            filters.append(Todo.attachment_count > 0)
        elif has_files is False:
            filters.append(Todo.attachment_count == 0)

        column = SORTABLE_FIELDS.get(sort_by, Todo.created_at)
        order = column.desc() if descending else column.asc()

        result = await self.db.execute(
            select(Todo).where(*filters).order_by(order, Todo.id.desc()).limit(limit).offset(offset)
        )
        total = await self.db.scalar(select(func.count()).select_from(Todo).where(*filters))
        return list(result.scalars().all()), int(total or 0)

    async def get_stats(self, user_id: uuid.UUID | str) -> dict[str, Any]:
        uid = as_uuid(user_id)
        by_state = dict(
            (await self.db.execute(
                select(Todo.state, func.count()).where(Todo.user_id == uid).group_by(Todo.state)
            )).all()
        )
        by_priority = dict(
            (await self.db.execute(
                select(Todo.priority, func.count()).where(Todo.user_id == uid).group_by(Todo.priority)
            )).all()
        )
        now = datetime.now(timezone.utc)
        open_with_due = [Todo.user_id == uid, Todo.state != "complete", Todo.due_date.is_not(None)]
        overdue = await self.db.scalar(
            select(func.count()).select_from(Todo).where(*open_with_due, Todo.due_date < now)
        )
        due_soon = await self.db.scalar(
            select(func.count()).select_from(Todo).where(
                *open_with_due, Todo.due_date >= now, Todo.due_date <= now + timedelta(hours=24)
            )
        )
        total = sum(by_state.values())
        complete = by_state.get("complete", 0)
        return {
            "total": total,
            "by_state": {s: by_state.get(s, 0) for s in TODO_STATES},
            "by_priority": {p: by_priority.get(p, 0) for p in PRIORITIES},
            "overdue": int(overdue or 0),
            "due_soon": int(due_soon or 0),
            "completion_rate": round(complete / total * 100, 1) if total else 0.0,
        }

    # ─── Search helpers + analytics ──────────────────────

    async def filter_options(self, user_id: uuid.UUID | str) -> dict[str, Any]:
        """What the search UI can offer: values in use, date spans, file split."""
        uid = as_uuid(user_id)
        priorities = (await self.db.execute(
            select(Todo.priority).where(Todo.user_id == uid).distinct()
        )).scalars().all()
        categories = (await self.db.execute(
            select(Todo.category)
            .where(Todo.user_id == uid, Todo.category.is_not(None), Todo.category != "")
            .distinct()
            .order_by(Todo.category)
        )).scalars().all()
        spans = (await self.db.execute(
            select(
                func.min(Todo.created_at),
                func.max(Todo.created_at),
                func.min(Todo.due_date),
                func.max(Todo.due_date),
                func.count(),
                func.count(case((Todo.attachment_count > 0, 1))),
            ).where(Todo.user_id == uid)
        )).one()
        total, with_files = int(spans[4] or 0), int(spans[5] or 0)
        return {
            "priorities": [p for p in PRIORITIES if p in set(priorities)],
            "categories": list(categories),
            "date_ranges": {
                "created": {"earliest": as_utc(spans[0]), "latest": as_utc(spans[1])},
                "due": {"earliest": as_utc(spans[2]), "latest": as_utc(spans[3])},
            },
            "file_stats": {
                "total_todos": total,
                "todos_with_files": with_files,
                "todos_without_files": total - with_files,
            },
            "sort_options": list(SORTABLE_FIELDS),
            "state_options": list(TODO_STATES),
        }

    async def suggestions(
        self,
        user_id: uuid.UUID | str,
        query: str,
        kind: str = "all",
        per_kind: int = 5,
        limit: int = 10,
    ) -> list[dict[str, str]]:
        """Type-ahead values matching `query` (at least 2 characters)."""
        query = (query or "").strip()
        if len(query) < 2:
            return []

        uid = as_uuid(user_id)
        pattern = f"%{query}%"
        sources = {
            "titles": ("title", Todo.title),
            "categories": ("category", Todo.category),
            "descriptions": ("description", Todo.description),
        }
        if kind != "all" and kind not in sources:
            raise InvalidOperationError(f"Unknown suggestion type: {kind}")

        results: list[dict[str, str]] = []
        for name, (label, column) in sources.items():
            if kind not in ("all", name):
                continue
            values = (await self.db.execute(
                select(column)
                .where(Todo.user_id == uid, column.ilike(pattern), column != "")
                .distinct()
                .order_by(column)
                .limit(per_kind)
            )).scalars().all()
            if label == "description":
                values = list(dict.fromkeys(v[:50] for v in values))
            results.extend({"type": label, "value": v} for v in values)
        return results[:limit]

    async def analytics(self, user_id: uuid.UUID | str, period: str = "30d") -> dict[str, Any]:
        """Creation/completion per day, priority and category split, file use.

        Learn: Rows for the window are bucketed by day in Python rather
        than with a dialect-specific DATE() so SQLite and PostgreSQL give
        the same answer.
        """
        if period not in ANALYTICS_PERIODS:
            raise InvalidOperationError(f"Unknown period: {period}")
        since = datetime.now(timezone.utc) - ANALYTICS_PERIODS[period]
        rows = (await self.db.execute(
            select(Todo.created_at, Todo.state, Todo.priority, Todo.category, Todo.attachment_count)
            .where(Todo.user_id == as_uuid(user_id), Todo.created_at >= since)
            .order_by(Todo.created_at)
        )).all()

        per_day: dict[str, dict[str, int]] = {}
        priorities = {p: 0 for p in PRIORITIES}
        categories: dict[str, int] = {}
        with_files = total_files = 0
        for created_at, state, priority, category, attachments in rows:
            day = per_day.setdefault(as_utc(created_at).date().isoformat(), {"created": 0, "completed": 0})
            day["created"] += 1
            if state == "complete":
                day["completed"] += 1
            priorities[priority] = priorities.get(priority, 0) + 1
            name = category or "Uncategorized"
            categories[name] = categories.get(name, 0) + 1
            if attachments:
                with_files += 1
                total_files += attachments

        return {
            "period": period,
            "completion": [
                {
                    "date": date,
                    "created": counts["created"],
                    "completed": counts["completed"],
                    "completion_rate": round(counts["completed"] / counts["created"] * 100, 1),
                }
                for date, counts in per_day.items()
            ],
            "priority_distribution": priorities,
            "category_distribution": [
                {"category": name, "count": count}
                for name, count in sorted(categories.items(), key=lambda item: (-item[1], item[0]))[:10]
            ],
            "file_stats": {
                "total_todos": len(rows),
                "todos_with_files": with_files,
                "total_files": total_files,
            },
        }

    # ─── State Transitions ───────────────────────────────

    def _apply_state(self, todo: Todo, new_state: str) -> None:
        """Validate and apply a transition in memory (no commit)."""
        check_transition(todo.state, new_state)
        if todo.state == new_state:
            return
        now = datetime.now(timezone.utc)
        if new_state == "inProgress" and todo.started_at is None:
            todo.started_at = now
        if new_state == "complete" and todo.completed_at is None:
            todo.completed_at = now
        todo.state = new_state

    async def move_todo(self, todo: Todo, new_state: str) -> tuple[str, str]:
        """Move a todo to a new state. Returns (from_state, to_state)."""
        new_state = normalize_state(new_state)
        old_state = todo.state
        self._apply_state(todo, new_state)
        if old_state != new_state:
            await self.db.commit()
            logger.info("todo.moved", todo_id=todo.id, from_state=old_state, to_state=new_state)
        return old_state, new_state

    async def complete_todo(self, todo: Todo) -> tuple[str, str]:
        return await self.move_todo(todo, "complete")

    # ─── Update ──────────────────────────────────────────

    async def update_todo(self, todo: Todo, **fields: Any) -> dict[str, dict[str, Any]]:
        """Apply field updates. Returns {field: {"from": old, "to": new}} for real changes.

        Learn: The state transition is validated before any field is
        touched, so a rejected move leaves the whole row unchanged.
        """
        if "state" in fields and fields["state"] is not None:
            fields["state"] = normalize_state(fields["state"])
            check_transition(todo.state, fields["state"])

        changes: dict[str, dict[str, Any]] = {}
        for name, value in fields.items():
            if name == "state":
                continue
            old = getattr(todo, name)
            if old != value:
                changes[name] = {"from": _iso(old), "to": _iso(value)}
                setattr(todo, name, value)

        new_state = fields.get("state")
        if new_state is not None and new_state != todo.state:
            changes["state"] = {"from": todo.state, "to": new_state}
            self._apply_state(todo, new_state)

        if changes:
            await self.db.commit()
            logger.info("todo.updated", todo_id=todo.id, fields=sorted(changes))
        return changes

    # ─── Delete ──────────────────────────────────────────

    async def delete_todo(self, todo: Todo) -> list[FileAttachment]:
        """Delete a todo and its attachment rows. Returns the removed attachments."""
        attachments = list(
            (await self.db.execute(
                select(FileAttachment).where(FileAttachment.todo_id == todo.id)
            )).scalars().all()
        )
        await self.db.execute(delete(FileAttachment).where(FileAttachment.todo_id == todo.id))
        await self.db.delete(todo)
        await self.db.commit()
        logger.info("todo.deleted", todo_id=todo.id, attachments=len(attachments))
        return attachments

    # ─── Bulk ────────────────────────────────────────────

    async def bulk_action(
        self,
        user_id: uuid.UUID | str,
        todo_ids: list[int],
        action: str,
        updates: Optional[dict[str, Any]] = None,
    ) -> tuple[dict[str, Any], list[FileAttachment]]:
        """Apply one action to many todos.

        Ownership is checked for every id up front; a single foreign or
        missing id rejects the whole request. After that each item
        succeeds or fails on its own (a complete todo can't be moved back
        by a bulk update, but its siblings still are).

        Returns (results, removed_attachments).
        """
        if action not in BULK_ACTIONS:
            raise InvalidOperationError(f"Unknown bulk action: {action}")
        if not todo_ids:
            raise InvalidOperationError("todo_ids must not be empty")

        updates = {k: v for k, v in (updates or {}).items() if k in BULK_UPDATABLE_FIELDS}
        if action == "update" and not updates:
            raise InvalidOperationError("No updatable fields given")

        uid = as_uuid(user_id)
        rows = (await self.db.execute(select(Todo).where(Todo.id.in_(todo_ids)))).scalars().all()
        by_id = {todo.id: todo for todo in rows}
        for todo_id in todo_ids:
            todo = by_id.get(todo_id)
            if todo is None or todo.user_id != uid:
                raise TodoAccessDeniedError("One or more todos not found or not owned by user")

        results: dict[str, Any] = {"total": len(todo_ids), "successful": 0, "failed": 0, "errors": []}
        removed: list[FileAttachment] = []

        for todo_id in todo_ids:
            todo = by_id[todo_id]
            try:
                if action == "delete":
                    removed.extend(await self.delete_todo(todo))
                elif action == "complete":
                    await self.complete_todo(todo)
                else:
                    await self.update_todo(todo, **updates)
                results["successful"] += 1
            except (InvalidTransitionError, UnknownStateError) as e:
                results["failed"] += 1
                results["errors"].append({"todo_id": todo_id, "error": str(e)})

        logger.info(
            "todo.bulk",
            action=action,
            total=results["total"],
            successful=results["successful"],
            failed=results["failed"],
        )
        return results, removed
