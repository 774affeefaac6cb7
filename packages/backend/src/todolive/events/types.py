"""Event type constants.

Learn: Centralizing event names as constants prevents typos and makes it
easy to discover everything a client can receive. Two families live here:
wire events (the `type` of a WebSocket frame) and notification types (the
`type` column of a Notification row).
"""

# ─── Wire events: todos ──────────────────────────────────

TODO_CREATED = "todo_created"
TODO_UPDATED = "todo_updated"
TODO_DELETED = "todo_deleted"
TODO_MOVED = "todo_moved"
BULK_ACTION = "bulk_action"

# ─── Wire events: files ──────────────────────────────────

FILE_UPLOADED = "file_uploaded"
FILE_DELETED = "file_deleted"

# ─── Wire events: notifications ──────────────────────────

NOTIFICATION = "notification"
NOTIFICATION_BATCH = "notification_batch"
NOTIFICATIONS_READ = "notifications_read"
NOTIFICATION_READ = "notification_read"

# ─── Wire events: user ───────────────────────────────────

PROFILE_UPDATED = "profile_updated"
USER_ACTIVITY = "user_activity"
THEME_CHANGED = "theme_changed"

# ─── Wire events: connection ─────────────────────────────

PING = "ping"
PONG = "pong"

# Events a client may send that get echoed to the sender's own room
# (other tabs of the same user).
CLIENT_RELAYED_EVENTS = frozenset({
    TODO_CREATED,
    TODO_UPDATED,
    TODO_DELETED,
    TODO_MOVED,
    FILE_UPLOADED,
    FILE_DELETED,
    USER_ACTIVITY,
    NOTIFICATION_READ,
    THEME_CHANGED,
})

# ─── Notification types ──────────────────────────────────

N_DUE_DATE_REMINDER = "due_date_reminder"
N_TODO_CREATED_HIGH_PRIORITY = "todo_created_high_priority"
N_TODO_STATE_CHANGED = "todo_state_changed"
N_TODO_DUE_DATE_CHANGED = "todo_due_date_changed"
N_TODO_DELETED = "todo_deleted"
N_TODO_MOVED = "todo_moved"
N_FILE_UPLOADED = "file_uploaded"
N_FILE_DELETED = "file_deleted"
N_SYSTEM = "system_notification"
N_BULK_PREFIX = "bulk_"
