"""Notification templates — type → (title, message).

Learn: Titles and messages are rendered once, at insert time, and stored
on the row. Changing a template never rewrites history.

Placeholders are str.format fields filled from the notification's data
dict. A missing field renders as an empty string rather than raising,
so a half-filled data dict still yields a readable notification.
"""

from typing import Any

from todolive.events import types as t

FALLBACK_TITLE = "Notification"
FALLBACK_MESSAGE = "You have a new notification"

TEMPLATES: dict[str, tuple[str, str]] = {
    t.N_DUE_DATE_REMINDER: (
        "Todo Due Soon",
        'Your todo "{todo_title}" is due {due_label}',
    ),
    t.N_TODO_CREATED_HIGH_PRIORITY: (
        "High Priority Todo Created",
        'A {priority} priority todo "{todo_title}" has been created',
    ),
    t.N_TODO_STATE_CHANGED: (
        "Todo Status Updated",
        'Todo "{todo_title}" moved from {from_state} to {to_state}',
    ),
    t.N_TODO_DUE_DATE_CHANGED: (
        "Due Date Changed",
        'Due date for "{todo_title}" changed to {new_due_date}',
    ),
    t.N_TODO_DELETED: (
        "Todo Deleted",
        'Todo "{todo_title}" has been deleted',
    ),
    t.N_TODO_MOVED: (
        "Todo Moved",
        'Todo "{todo_title}" moved from {from_state} to {to_state}',
    ),
    t.N_FILE_UPLOADED: (
        "File Uploaded",
        'File "{filename}" ({file_size_human}) uploaded to "{todo_title}"',
    ),
    t.N_FILE_DELETED: (
        "File Deleted",
        'File "{filename}" removed from "{todo_title}"',
    ),
    t.N_SYSTEM: (
        "{title}",
        "{message}",
    ),
}

BULK_ACTION_NAMES = {
    "delete": "Delete",
    "complete": "Complete",
    "update": "Update",
}

_BULK_TEMPLATE = (
    "Bulk {action_name} Completed",
    "Bulk {action_verb} finished: {successful} of {total} todos processed successfully",
)


class _BlankMissing(dict):
    def __missing__(self, key: str) -> str:
        return ""


def format_file_size(size: Any) -> str:
    """1536 → "1.5 KB". Non-numeric input renders as "0 B"."""
    try:
        size = float(size)
    except (TypeError, ValueError):
        return "0 B"
    for unit in ("B", "KB", "MB", "GB"):
        if size < 1024 or unit == "GB":
            if unit == "B":
                return f"{int(size)} B"
            return f"{size:.1f} {unit}"
        size /= 1024
    return f"{size:.1f} GB"


def render(type: str, data: dict[str, Any] | None = None) -> tuple[str, str]:
    """Render (title, message) for a notification type."""
    values = _BlankMissing(data or {})
    if "file_size" in values and "file_size_human" not in values:
        values["file_size_human"] = format_file_size(values["file_size"])

    template = TEMPLATES.get(type)
    if template is None and type.startswith(t.N_BULK_PREFIX):
        action = type[len(t.N_BULK_PREFIX):]
        values.setdefault("action_name", BULK_ACTION_NAMES.get(action, action.capitalize()))
        values.setdefault("action_verb", action)
        template = _BULK_TEMPLATE
    if template is None:
        return FALLBACK_TITLE, FALLBACK_MESSAGE

    title = template[0].format_map(values) or FALLBACK_TITLE
    message = template[1].format_map(values) or FALLBACK_MESSAGE
    return title, message
