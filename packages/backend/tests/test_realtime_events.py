"""Realtime event tests — REST mutation → socket frames + notification rows.

Learn: These follow one request end to end:
  REST handler commits → RealtimeEventService broadcasts to the owner's
  room → writes the Notification row → NotificationService pushes a
  `notification` frame and parks it in the batcher.

A failing side channel (notification insert) must never fail the request.
"""

import pytest
from sqlalchemy import select

from todolive.db.models import Notification
from todolive.notifications.store import NotificationStore


async def _notifications(db_session, user):
    rows = await db_session.execute(
        select(Notification).where(Notification.user_id == user.id).order_by(Notification.id)
    )
    return list(rows.scalars().all())


# ═══════════════════════════════════════════════════════════
# Todo events
# ═══════════════════════════════════════════════════════════


@pytest.mark.asyncio
async def test_high_priority_create(client, user, hub, connect, db_session):
    """201, todo_created broadcast, high-priority notification row, enqueued."""
    socket = connect(user.id)

    resp = await client.post("/api/v1/todos", json={"title": "Fix prod", "priority": "high"})

    assert resp.status_code == 201
    todo = resp.json()

    created = socket.of_type("todo_created")
    assert len(created) == 1
    assert created[0]["todo"]["id"] == todo["id"]

    rows = await _notifications(db_session, user)
    assert [r.type for r in rows] == ["todo_created_high_priority"]
    assert rows[0].read is False
    assert "Fix prod" in rows[0].message

    pushed = socket.of_type("notification")
    assert pushed[0]["id"] == rows[0].id
    assert hub.batcher.pending(user.id) == 1


@pytest.mark.asyncio
async def test_low_priority_create_has_no_notification(client, user, connect, db_session):
    socket = connect(user.id)
    await client.post("/api/v1/todos", json={"title": "later", "priority": "low"})

    assert socket.events() == ["todo_created"]
    assert await _notifications(db_session, user) == []


@pytest.mark.asyncio
async def test_update_reaches_both_tabs_and_nobody_else(
    client, user, other_user, connect
):
    todo = (await client.post("/api/v1/todos", json={"title": "t"})).json()
    tab1 = connect(user.id)
    tab2 = connect(user.id)
    stranger = connect(other_user.id)

    await client.patch(f"/api/v1/todos/{todo['id']}", json={"title": "renamed"})

    for tab in (tab1, tab2):
        updated = tab.of_type("todo_updated")
        assert len(updated) == 1
        assert updated[0]["changes"] == {"title": {"from": "t", "to": "renamed"}}
    assert stranger.frames == []


@pytest.mark.asyncio
async def test_state_change_via_patch_creates_notification(client, user, connect, db_session):
    todo = (await client.post("/api/v1/todos", json={"title": "t"})).json()
    socket = connect(user.id)

    await client.patch(f"/api/v1/todos/{todo['id']}", json={"state": "inProgress"})

    rows = await _notifications(db_session, user)
    assert [r.type for r in rows] == ["todo_state_changed"]
    assert rows[0].data["from_state"] == "todo"
    assert rows[0].data["to_state"] == "inProgress"
    assert socket.of_type("todo_updated")[0]["changes"]["state"] == {
        "from": "todo",
        "to": "inProgress",
    }


@pytest.mark.asyncio
async def test_move_broadcasts_todo_moved(client, user, connect, db_session):
    todo = (await client.post("/api/v1/todos", json={"title": "t"})).json()
    socket = connect(user.id)

    await client.post(f"/api/v1/todos/{todo['id']}/move", json={"state": "complete"})

    moved = socket.of_type("todo_moved")
    assert moved[0]["from_state"] == "todo"
    assert moved[0]["to_state"] == "complete"
    assert [r.type for r in await _notifications(db_session, user)] == ["todo_moved"]


@pytest.mark.asyncio
async def test_noop_move_is_silent(client, user, connect):
    todo = (await client.post("/api/v1/todos", json={"title": "t"})).json()
    socket = connect(user.id)

    await client.post(f"/api/v1/todos/{todo['id']}/move", json={"state": "todo"})
    assert socket.frames == []


@pytest.mark.asyncio
async def test_rejected_move_is_silent(client, user, connect):
    todo = (await client.post("/api/v1/todos", json={"title": "t"})).json()
    await client.post(f"/api/v1/todos/{todo['id']}/complete")
    socket = connect(user.id)

    resp = await client.post(f"/api/v1/todos/{todo['id']}/move", json={"state": "todo"})
    assert resp.status_code == 409
    assert socket.frames == []


@pytest.mark.asyncio
async def test_delete_broadcasts_and_notifies(client, user, connect, db_session):
    todo = (await client.post("/api/v1/todos", json={"title": "gone soon"})).json()
    socket = connect(user.id)

    await client.delete(f"/api/v1/todos/{todo['id']}")

    assert socket.of_type("todo_deleted")[0]["todo_id"] == todo["id"]
    rows = await _notifications(db_session, user)
    assert rows[0].type == "todo_deleted"
    assert "gone soon" in rows[0].message


@pytest.mark.asyncio
async def test_bulk_action_event(client, user, connect, db_session):
    ids = [(await client.post("/api/v1/todos", json={"title": f"t{i}"})).json()["id"] for i in range(2)]
    socket = connect(user.id)

    await client.post("/api/v1/todos/bulk", json={"action": "complete", "todo_ids": ids})

    bulk = socket.of_type("bulk_action")
    assert bulk[0]["action"] == "complete"
    assert bulk[0]["results"]["successful"] == 2
    rows = await _notifications(db_session, user)
    assert rows[-1].type == "bulk_complete"
    assert rows[-1].title == "Bulk Complete Completed"


@pytest.mark.asyncio
async def test_fifth_notification_flushes_a_batch(client, user, connect):
    socket = connect(user.id)
    for i in range(5):
        await client.post("/api/v1/todos", json={"title": f"urgent {i}", "priority": "urgent"})

    batches = socket.of_type("notification_batch")
    assert len(batches) == 1
    assert batches[0]["count"] == 5


# ═══════════════════════════════════════════════════════════
# Failure isolation
# ═══════════════════════════════════════════════════════════


@pytest.mark.asyncio
async def test_notification_failure_does_not_fail_request(
    client, user, connect, db_session, monkeypatch
):
    async def broken_insert(self, *args, **kwargs):
        raise RuntimeError("database is on fire")

    monkeypatch.setattr(NotificationStore, "insert_notification", broken_insert)
    socket = connect(user.id)

    resp = await client.post("/api/v1/todos", json={"title": "still saved", "priority": "urgent"})

    assert resp.status_code == 201
    assert resp.json()["title"] == "still saved"
    # The broadcast happened before the failing notification step
    assert socket.events() == ["todo_created"]

    listing = await client.get("/api/v1/todos")
    assert listing.json()["total"] == 1


@pytest.mark.asyncio
async def test_delivery_result_reports_error(hub, user, db_session, monkeypatch):
    async def broken_insert(self, *args, **kwargs):
        raise RuntimeError("boom")

    monkeypatch.setattr(NotificationStore, "insert_notification", broken_insert)
    events = hub.event_service(db_session)

    result = await events.broadcast_todo_deleted(user.id, 1, "x")

    assert result.event == "todo_deleted"
    assert result.sockets == 0
    assert result.notifications == []
    assert not result.ok
    assert "boom" in result.error


@pytest.mark.asyncio
async def test_delivery_result_on_success(hub, user, db_session, connect):
    connect(user.id)
    events = hub.event_service(db_session)

    result = await events.broadcast_todo_moved(user.id, 5, "todo", "inProgress", "x")

    assert result.ok
    assert result.sockets == 1
    assert len(result.notifications) == 1


@pytest.mark.asyncio
async def test_profile_update_broadcasts_without_notification(client, user, connect, db_session):
    socket = connect(user.id)

    resp = await client.patch("/api/v1/auth/me", json={"theme_preference": "dark"})

    assert resp.status_code == 200
    assert resp.json()["theme_preference"] == "dark"
    assert socket.events() == ["profile_updated", "theme_changed"]
    assert socket.of_type("theme_changed")[0]["theme"] == "dark"
    assert await _notifications(db_session, user) == []
