"""Health endpoint tests."""

import pytest


@pytest.mark.asyncio
async def test_health_returns_ok(client):
    """Health endpoint should return server status and version."""
    resp = await client.get("/api/v1/health")
    assert resp.status_code == 200
    data = resp.json()
    assert data["server"] == "ok"
    assert "version" in data


@pytest.mark.asyncio
async def test_health_reports_realtime_counts(client, user, connect):
    connect(user.id)
    connect(user.id)

    resp = await client.get("/api/v1/health")

    assert resp.json()["realtime"] == {"connections": 2, "connected_users": 1}


@pytest.mark.asyncio
async def test_health_needs_no_token(unauthenticated_client):
    resp = await unauthenticated_client.get("/api/v1/health")
    assert resp.status_code == 200
