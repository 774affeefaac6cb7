"""Presence + maintenance worker tests.

Learn: The worker opens its own sessions from a session factory. Here the
factory hands back the test's db_session, so the pass runs against the
same in-memory database the assertions read.
"""

import asyncio
from contextlib import asynccontextmanager
from datetime import datetime, timedelta, timezone

import pytest

from todolive.db.models import UserPresence
from todolive.services.maintenance_worker import MaintenanceWorker
from todolive.services.presence_service import PresenceService
from todolive.services.todo_service import TodoService


@pytest.fixture
def session_factory(db_session):
    @asynccontextmanager
    async def factory():
        yield db_session

    return factory


# ═══════════════════════════════════════════════════════════
# Presence
# ═══════════════════════════════════════════════════════════


@pytest.mark.asyncio
async def test_presence_online_offline(db_session, user, other_user):
    presence = PresenceService(db_session)

    await presence.upsert(user.id, "tab-1")
    await presence.upsert(user.id, "tab-2")
    await presence.upsert(str(other_user.id), "tab-9")
    assert await presence.is_online(user.id)

    stats = await presence.stats()
    assert stats == {"online_users": 2, "online_sockets": 3, "total_records": 3}

    assert await presence.mark_offline(user.id, "tab-1") == 1
    assert await presence.is_online(user.id)
    assert await presence.mark_offline(user.id) == 2
    assert not await presence.is_online(user.id)
    assert await presence.online_users() == [other_user.id]


@pytest.mark.asyncio
async def test_presence_upsert_reuses_row(db_session, user):
    presence = PresenceService(db_session)
    await presence.upsert(user.id, "tab-1")
    await presence.mark_offline(user.id, "tab-1")
    await presence.upsert(user.id, "tab-1")

    assert (await presence.stats())["total_records"] == 1
    assert await presence.is_online(user.id)


@pytest.mark.asyncio
async def test_presence_cleanup_only_removes_stale_offline_rows(db_session, user):
    presence = PresenceService(db_session)
    stale = datetime.now(timezone.utc) - timedelta(hours=48)
    db_session.add_all([
        UserPresence(user_id=user.id, socket_id="old-off", is_online=False, last_seen=stale),
        UserPresence(user_id=user.id, socket_id="old-on", is_online=True, last_seen=stale),
        UserPresence(user_id=user.id, socket_id="fresh-off", is_online=False),
    ])
    await db_session.commit()

    assert await presence.cleanup(hours_old=24) == 1
    assert (await presence.stats())["total_records"] == 2


@pytest.mark.asyncio
async def test_hub_tracks_presence(hub, session_factory, db_session, user):
    hub.session_factory = session_factory

    await hub.track_presence(str(user.id), "sock-1", online=True)
    assert await PresenceService(db_session).is_online(user.id)

    await hub.track_presence(str(user.id), "sock-1", online=False)
    assert not await PresenceService(db_session).is_online(user.id)


# ═══════════════════════════════════════════════════════════
# Maintenance worker
# ═══════════════════════════════════════════════════════════


@pytest.mark.asyncio
async def test_run_once_does_all_three_jobs(hub, session_factory, db_session, user):
    await TodoService(db_session).create_todo(
        user.id, "renew passport", due_date=datetime.now(timezone.utc) + timedelta(hours=5)
    )
    svc = hub.notification_service(db_session)
    old = await svc.create_notification(user.id, "todo_deleted", {"todo_title": "ancient"})
    old.created_at = datetime.now(timezone.utc) - timedelta(days=90)
    db_session.add(UserPresence(
        user_id=user.id,
        socket_id="gone",
        is_online=False,
        last_seen=datetime.now(timezone.utc) - timedelta(days=3),
    ))
    await db_session.commit()

    summary = await MaintenanceWorker(hub, session_factory).run_once()

    assert summary == {"reminders": 1, "notifications_deleted": 1, "presence_deleted": 1}


@pytest.mark.asyncio
async def test_run_once_keeps_going_after_a_failing_step(hub, session_factory, db_session, user, monkeypatch):
    async def boom(self, *args, **kwargs):
        raise RuntimeError("smtp exploded")

    monkeypatch.setattr(
        "todolive.services.notification_service.NotificationService.send_due_date_reminders", boom
    )
    db_session.add(UserPresence(
        user_id=user.id,
        socket_id="gone",
        is_online=False,
        last_seen=datetime.now(timezone.utc) - timedelta(days=3),
    ))
    await db_session.commit()

    summary = await MaintenanceWorker(hub, session_factory).run_once()

    assert summary["reminders"] == 0
    assert summary["presence_deleted"] == 1


@pytest.mark.asyncio
async def test_run_loop_stops(hub, session_factory, user):
    worker = MaintenanceWorker(hub, session_factory, interval=0.01)
    task = asyncio.create_task(worker.run_loop())
    await asyncio.sleep(0.05)
    worker.stop()
    await asyncio.wait_for(task, timeout=1)
    assert not worker._running


@pytest.mark.asyncio
async def test_run_loop_survives_a_failing_pass(hub, db_session, user):
    """A pass that can't even open a session is logged; the next one runs."""
    calls = []

    @asynccontextmanager
    async def working():
        yield db_session

    def flaky():
        calls.append(1)
        if len(calls) == 1:
            raise RuntimeError("database unavailable")
        return working()

    worker = MaintenanceWorker(hub, flaky, interval=0.01)
    task = asyncio.create_task(worker.run_loop())
    for _ in range(100):
        if len(calls) >= 2:
            break
        await asyncio.sleep(0.01)
    worker.stop()
    await asyncio.wait_for(task, timeout=1)

    assert len(calls) >= 2
    assert not task.cancelled()
