"""Connection registry — which sockets belong to which user.

Learn: A "room" is simply every socket one user has open (several tabs,
a phone and a laptop). The registry maps user_id → {socket_id: Connection}
and is the single source of truth for local delivery. It is an explicit
object owned by the RealtimeHub rather than a module-level dict, so tests
get a fresh one and shutdown can drop it.

The registry never does I/O itself. A Connection carries a `send`
coroutine (usually WebSocket.send_text) that the Broadcaster calls.
"""

import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Optional

import structlog

logger = structlog.get_logger()

SendFn = Callable[[str], Awaitable[None]]
CloseFn = Callable[..., Awaitable[None]]


@dataclass
class Connection:
    """One open socket for one user."""

    user_id: str
    socket_id: str
    send: SendFn
    close: Optional[CloseFn] = None
    user: dict[str, Any] = field(default_factory=dict)
    connected_at: datetime = field(
        default_factory=lambda: datetime.now(timezone.utc)
    )
    last_seen: float = field(default_factory=time.monotonic)

    def touch(self) -> None:
        """Record client activity (any inbound frame counts)."""
        self.last_seen = time.monotonic()


class ConnectionRegistry:
    def __init__(self) -> None:
        self._rooms: dict[str, dict[str, Connection]] = {}

    def register(self, connection: Connection) -> None:
        room = self._rooms.setdefault(str(connection.user_id), {})
        room[connection.socket_id] = connection
        logger.info(
            "realtime.connected",
            user_id=connection.user_id,
            socket_id=connection.socket_id,
            sockets=len(room),
        )

    def unregister(self, user_id: str, socket_id: str) -> Optional[Connection]:
        """Remove one socket. Unknown ids are a no-op (returns None)."""
        room = self._rooms.get(str(user_id))
        if not room:
            return None
        connection = room.pop(socket_id, None)
        if not room:
            del self._rooms[str(user_id)]
        if connection is not None:
            logger.info(
                "realtime.disconnected",
                user_id=str(user_id),
                socket_id=socket_id,
                sockets=len(room),
            )
        return connection

    def get_connections(self, user_id: str) -> list[Connection]:
        # Copy so callers can iterate while sockets come and go.
        return list(self._rooms.get(str(user_id), {}).values())

    def all_connections(self) -> list[Connection]:
        return [c for room in self._rooms.values() for c in room.values()]

    def is_online(self, user_id: str) -> bool:
        return bool(self._rooms.get(str(user_id)))

    def connected_users_count(self) -> int:
        return len(self._rooms)

    def connection_count(self) -> int:
        return sum(len(room) for room in self._rooms.values())

    def stale_connections(
        self, timeout_seconds: float, now: Optional[float] = None
    ) -> list[Connection]:
        """Connections with no client activity for longer than the timeout."""
        now = time.monotonic() if now is None else now
        return [
            c for c in self.all_connections()
            if now - c.last_seen > timeout_seconds
        ]

    def clear(self) -> None:
        self._rooms.clear()
