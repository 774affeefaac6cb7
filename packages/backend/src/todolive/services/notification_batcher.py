"""Notification batcher — per-user digests of low-priority notifications.

Learn: Every `normal` notification is pushed immediately *and* parked in
the owner's buffer. Buffers are flushed as a single `notification_batch`
frame either when they hit max_batch_size (inside enqueue, awaited) or
when the background timer fires.

Both flush paths take the user's asyncio.Lock and swap the buffer out
before sending, so an item can never be emitted by both the timer and
the threshold path. Buffers live in memory only; a restart drops any
digest that hadn't been flushed yet.

Usage:
    batcher = NotificationBatcher(broadcaster)
    asyncio.create_task(batcher.run_loop())
"""

import asyncio
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any

import structlog

from todolive.events.types import NOTIFICATION_BATCH
from todolive.realtime.broadcaster import Broadcaster

logger = structlog.get_logger()


class NotificationBatcher:
    def __init__(
        self,
        broadcaster: Broadcaster,
        max_batch_size: int = 5,
        interval: float = 60.0,
    ):
        self.broadcaster = broadcaster
        self.max_batch_size = max_batch_size
        self.interval = interval
        self._buffers: dict[str, list[dict[str, Any]]] = {}
        self._locks: dict[str, asyncio.Lock] = {}
        self._holders: dict[str, int] = {}
        self._running = False

    @asynccontextmanager
    async def _locked(self, user_id: str):
        """Hold the user's lock. The lock is dropped once nobody holds or
        waits for it and the user has nothing buffered."""
        lock = self._locks.get(user_id)
        if lock is None:
            lock = self._locks[user_id] = asyncio.Lock()
        self._holders[user_id] = self._holders.get(user_id, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._holders[user_id] -= 1
            if not self._holders[user_id]:
                del self._holders[user_id]
                if user_id not in self._buffers:
                    self._locks.pop(user_id, None)

    async def enqueue(self, user_id: Any, notification: dict[str, Any]) -> int:
        """Buffer one notification. Returns the size of any batch flushed."""
        user_id = str(user_id)
        async with self._locked(user_id):
            buffer = self._buffers.setdefault(user_id, [])
            buffer.append(notification)
            if len(buffer) < self.max_batch_size:
                return 0
            batch = self._buffers.pop(user_id)
            return await self._send(user_id, batch)

    async def flush(self, user_id: Any) -> int:
        user_id = str(user_id)
        async with self._locked(user_id):
            batch = self._buffers.pop(user_id, None)
            if not batch:
                return 0
            return await self._send(user_id, batch)

    async def flush_all(self) -> int:
        """Flush every non-empty buffer. Returns how many users got a batch."""
        flushed = 0
        for user_id in list(self._buffers):
            if await self.flush(user_id):
                flushed += 1
        return flushed

    async def _send(self, user_id: str, batch: list[dict[str, Any]]) -> int:
        await self.broadcaster.broadcast_to_user(
            user_id,
            NOTIFICATION_BATCH,
            {
                "count": len(batch),
                "notifications": batch,
                "timestamp": datetime.now(timezone.utc),
            },
        )
        logger.info("notification_batch.flushed", user_id=user_id, count=len(batch))
        return len(batch)

    def pending(self, user_id: Any) -> int:
        return len(self._buffers.get(str(user_id), ()))

    def queue_size(self) -> int:
        """Number of users with a non-empty buffer."""
        return sum(1 for b in self._buffers.values() if b)

    def clear(self) -> None:
        self._buffers.clear()
        self._locks = {u: lock for u, lock in self._locks.items() if u in self._holders}

    async def run_loop(self) -> None:
        """Flush all buffers every `interval` seconds until stopped."""
        self._running = True
        logger.info("notification_batch.started", interval=self.interval)

        while self._running:
            await asyncio.sleep(self.interval)
            try:
                await self.flush_all()
            except Exception:
                logger.exception("notification_batch.error")

    def stop(self) -> None:
        self._running = False
        logger.info("notification_batch.stopping")
