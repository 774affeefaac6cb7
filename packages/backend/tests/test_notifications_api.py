"""Notification API tests — the catch-up path for offline clients.

Learn: Notifications start unread, and only their owner can flip that.
Another user poking at the same id sees 404 (ids can't be probed).
"""

import pytest

from todolive.services.notification_service import NotificationService


@pytest.fixture
async def notifications(hub, db_session, user):
    """Three notifications for `user`, written through the service."""
    svc = hub.notification_service(db_session)
    rows = []
    for i in range(3):
        rows.append(await svc.create_notification(
            user.id,
            "todo_moved",
            {"todo_title": f"todo {i}", "from_state": "todo", "to_state": "complete"},
        ))
    return rows


@pytest.mark.asyncio
async def test_list_notifications(client, notifications):
    resp = await client.get("/api/v1/notifications")
    assert resp.status_code == 200
    body = resp.json()
    assert body["pagination"]["total"] == 3
    assert len(body["notifications"]) == 3
    assert all(n["read"] is False for n in body["notifications"])
    assert body["notifications"][0]["title"] == "Todo Moved"


@pytest.mark.asyncio
async def test_list_notifications_paginates(client, notifications):
    resp = await client.get("/api/v1/notifications", params={"limit": 2, "page": 2})
    body = resp.json()
    assert len(body["notifications"]) == 1
    assert body["pagination"] == {"page": 2, "limit": 2, "total": 3, "pages": 2}


@pytest.mark.asyncio
async def test_unread_count(client, notifications):
    resp = await client.get("/api/v1/notifications/unread-count")
    assert resp.json() == {"unread_count": 3}


@pytest.mark.asyncio
async def test_owner_marks_read(client, notifications):
    target = notifications[0]
    resp = await client.put(f"/api/v1/notifications/{target.id}/read")
    assert resp.status_code == 200
    assert resp.json()["read"] is True

    unread = await client.get("/api/v1/notifications", params={"unread_only": "true"})
    assert unread.json()["pagination"]["total"] == 2


@pytest.mark.asyncio
async def test_other_user_cannot_mark_read(other_client, notifications, client):
    target = notifications[0]
    resp = await other_client.put(f"/api/v1/notifications/{target.id}/read")
    assert resp.status_code == 404
    assert resp.json()["detail"]["code"] == "NOTIFICATION_NOT_FOUND"

    count = await client.get("/api/v1/notifications/unread-count")
    assert count.json()["unread_count"] == 3


@pytest.mark.asyncio
async def test_mark_all_read_pushes_event(client, user, notifications, connect):
    socket = connect(user.id)

    resp = await client.put("/api/v1/notifications/read-all")

    assert resp.json() == {"updated": 3}
    assert socket.of_type("notifications_read")[0]["count"] == 3
    count = await client.get("/api/v1/notifications/unread-count")
    assert count.json()["unread_count"] == 0


@pytest.mark.asyncio
async def test_delete_notification(client, other_client, notifications):
    target = notifications[1]
    assert (await other_client.delete(f"/api/v1/notifications/{target.id}")).status_code == 404

    resp = await client.delete(f"/api/v1/notifications/{target.id}")
    assert resp.status_code == 200
    assert (await client.delete(f"/api/v1/notifications/{target.id}")).status_code == 404


@pytest.mark.asyncio
async def test_stats(client, notifications):
    await client.put(f"/api/v1/notifications/{notifications[0].id}/read")
    resp = await client.get("/api/v1/notifications/stats")
    assert resp.json() == {"total": 3, "unread": 2, "last_24h": 3, "last_7d": 3}


@pytest.mark.asyncio
async def test_send_test_notification(client, user, connect):
    socket = connect(user.id)
    resp = await client.post("/api/v1/notifications/test")
    assert resp.status_code == 201
    assert resp.json()["type"] == "system_notification"
    assert resp.json()["title"] == "Test Notification"
    assert socket.of_type("notification")[0]["title"] == "Test Notification"


@pytest.mark.asyncio
async def test_preferences_round_trip(client):
    resp = await client.get("/api/v1/notifications/preferences")
    assert resp.json()["email_enabled"] is True
    assert resp.json()["batch_frequency"] == "hourly"

    resp = await client.put(
        "/api/v1/notifications/preferences",
        json={"email_enabled": False, "batch_frequency": "daily"},
    )
    assert resp.status_code == 200
    assert resp.json()["email_enabled"] is False
    assert resp.json()["due_date_reminders"] is True

    again = await client.get("/api/v1/notifications/preferences")
    assert again.json()["batch_frequency"] == "daily"


@pytest.mark.asyncio
async def test_preferences_reject_bad_frequency(client):
    resp = await client.put(
        "/api/v1/notifications/preferences", json={"batch_frequency": "weekly"}
    )
    assert resp.status_code == 422


# ═══════════════════════════════════════════════════════════
# Service-level
# ═══════════════════════════════════════════════════════════


@pytest.mark.asyncio
async def test_high_priority_notifications_are_not_batched(hub, db_session, user):
    svc = hub.notification_service(db_session)
    await svc.create_notification(user.id, "due_date_reminder", {"todo_title": "x"}, priority="high")
    await svc.create_notification(user.id, "system_notification", {}, batchable=False)
    assert hub.batcher.pending(user.id) == 0


@pytest.mark.asyncio
async def test_cleanup_old_notifications(hub, db_session, user):
    from datetime import datetime, timedelta, timezone

    svc = hub.notification_service(db_session)
    old = await svc.create_notification(user.id, "todo_deleted", {"todo_title": "old"})
    await svc.create_notification(user.id, "todo_deleted", {"todo_title": "new"})
    old.created_at = datetime.now(timezone.utc) - timedelta(days=45)
    await db_session.commit()

    assert await svc.cleanup_old_notifications(days_old=30) == 1
    assert await svc.unread_count(user.id) == 1


@pytest.mark.asyncio
async def test_due_date_reminders(hub, db_session, user, connect):
    from datetime import datetime, timedelta, timezone

    from todolive.services.todo_service import TodoService

    todos = TodoService(db_session)
    soon = await todos.create_todo(
        user.id, "pay rent", priority="urgent",
        due_date=datetime.now(timezone.utc) + timedelta(hours=3),
    )
    await todos.create_todo(
        user.id, "far away", due_date=datetime.now(timezone.utc) + timedelta(days=5),
    )
    done = await todos.create_todo(
        user.id, "already done", due_date=datetime.now(timezone.utc) + timedelta(hours=2),
    )
    await todos.complete_todo(done)
    socket = connect(user.id)

    svc: NotificationService = hub.notification_service(db_session)
    assert await svc.send_due_date_reminders() == 1
    # Second pass within 24 h doesn't nag again
    assert await svc.send_due_date_reminders() == 0

    pushed = socket.of_type("notification")
    assert len(pushed) == 1
    assert pushed[0]["data"]["todo_id"] == soon.id
    assert "pay rent" in pushed[0]["message"]
    # urgent → priority high → not batched
    assert hub.batcher.pending(user.id) == 0
