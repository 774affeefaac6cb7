"""todolive — realtime todo-list backend.

REST API for todos, attachments and notifications, plus a WebSocket
channel that pushes every change to the owner's open browser tabs.
"""

__version__ = "0.7.0"
