"""Maintenance worker — periodic housekeeping in the background.

Learn: Runs as a long-lived task in the FastAPI lifespan, like the batch
flusher. Each tick opens its own DB session (there is no request) and:

  1. sends due-date reminders for todos due in the next 24 h
  2. deletes notifications older than notification_retention_days
  3. deletes offline presence rows older than presence_retention_hours

A failing step is logged and the next step still runs.

Usage:
    worker = MaintenanceWorker(hub, async_session_factory)
    asyncio.create_task(worker.run_loop())
"""

import asyncio
from typing import Any

import structlog
from sqlalchemy.ext.asyncio import async_sessionmaker

from todolive.config import settings
from todolive.services.notification_service import NotificationService
from todolive.services.presence_service import PresenceService

logger = structlog.get_logger()


class MaintenanceWorker:
    def __init__(
        self,
        hub: Any,
        session_factory: async_sessionmaker,
        interval: float | None = None,
    ):
        self.hub = hub
        self.session_factory = session_factory
        self.interval = interval or settings.maintenance_interval_seconds
        self._running = False

    async def run_loop(self) -> None:
        """Main worker loop — one maintenance pass per interval."""
        self._running = True
        logger.info("maintenance.started", interval=self.interval)

        while self._running:
            await asyncio.sleep(self.interval)
            try:
                await self.run_once()
            except Exception:
                logger.exception("maintenance.error")

    async def run_once(self) -> dict[str, int]:
        summary = {"reminders": 0, "notifications_deleted": 0, "presence_deleted": 0}

        async with self.session_factory() as db:
            notifications: NotificationService = self.hub.notification_service(db)
            try:
                summary["reminders"] = await notifications.send_due_date_reminders()
            except Exception:
                await db.rollback()
                logger.exception("maintenance.reminders_error")
            try:
                summary["notifications_deleted"] = await notifications.cleanup_old_notifications(
                    settings.notification_retention_days
                )
            except Exception:
                await db.rollback()
                logger.exception("maintenance.notification_cleanup_error")
            try:
                summary["presence_deleted"] = await PresenceService(db).cleanup(
                    settings.presence_retention_hours
                )
            except Exception:
                await db.rollback()
                logger.exception("maintenance.presence_cleanup_error")

        logger.info("maintenance.completed", **summary)
        return summary

    def stop(self) -> None:
        self._running = False
        logger.info("maintenance.stopping")
