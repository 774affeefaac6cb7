"""CLI tests — click commands against a mocked todolive API.

Learn: _client() is swapped for an httpx.AsyncClient on a MockTransport,
so each command's request shape and output formatting is checked
without a running server.
"""

import json

import httpx
import pytest
from click.testing import CliRunner

from todolive.cli import main as cli


@pytest.fixture
def api(monkeypatch):
    """Route CLI requests to a handler; returns the list of seen requests."""
    seen: list[httpx.Request] = []
    routes: dict[tuple[str, str], httpx.Response] = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return routes.get(
            (request.method, request.url.path),
            httpx.Response(404, json={"detail": {"code": "NOT_FOUND", "message": "no route"}}),
        )

    def client():
        return httpx.AsyncClient(
            base_url="http://todolive.test",
            transport=httpx.MockTransport(handler),
            headers={"Authorization": "Bearer test-token"},
        )

    monkeypatch.setattr(cli, "_client", client)

    class Api:
        requests = seen

        def route(self, method, path, response):
            routes[(method, path)] = response

    return Api()


def _todo(**overrides):
    todo = {
        "id": 7,
        "title": "Write report",
        "priority": "high",
        "state": "todo",
        "due_date": "2026-10-20T09:00:00Z",
    }
    todo.update(overrides)
    return todo


def test_login_prints_token(api):
    api.route("POST", "/api/v1/auth/login", httpx.Response(
        200, json={"access_token": "abc.def", "refresh_token": "r", "token_type": "bearer"}
    ))

    result = CliRunner().invoke(cli.main, ["login", "alice@example.com", "--password", "pw"])

    assert result.exit_code == 0
    assert result.output.strip() == "abc.def"
    assert json.loads(api.requests[0].content) == {"email": "alice@example.com", "password": "pw"}


def test_login_failure_exits_nonzero(api):
    api.route("POST", "/api/v1/auth/login", httpx.Response(401, json={"detail": "Invalid credentials"}))

    result = CliRunner().invoke(cli.main, ["login", "alice@example.com", "--password", "bad"])

    assert result.exit_code == 1
    assert "Invalid credentials" in result.output


def test_todos_lists_rows(api):
    api.route("GET", "/api/v1/todos", httpx.Response(
        200, json={"todos": [_todo()], "total": 1, "limit": 50, "offset": 0}
    ))

    result = CliRunner().invoke(cli.main, ["todos", "--state", "todo"])

    assert result.exit_code == 0
    assert "Todos (1):" in result.output
    assert "#7" in result.output
    assert "Write report" in result.output
    assert "2026-10-20" in result.output
    assert api.requests[0].url.params["state"] == "todo"


def test_todos_empty(api):
    api.route("GET", "/api/v1/todos", httpx.Response(
        200, json={"todos": [], "total": 0, "limit": 50, "offset": 0}
    ))

    result = CliRunner().invoke(cli.main, ["todos"])

    assert result.exit_code == 0
    assert "No todos." in result.output


def test_add_posts_payload(api):
    api.route("POST", "/api/v1/todos", httpx.Response(201, json=_todo(title="Ship")))

    result = CliRunner().invoke(cli.main, ["add", "Ship", "-p", "urgent", "-c", "work"])

    assert result.exit_code == 0
    assert "Created #7: Ship" in result.output
    body = json.loads(api.requests[0].content)
    assert body["priority"] == "urgent"
    assert body["category"] == "work"


def test_move_reports_rejected_transition(api):
    api.route("POST", "/api/v1/todos/7/move", httpx.Response(409, json={
        "detail": {"code": "INVALID_TRANSITION", "message": "cannot move backward"}
    }))

    result = CliRunner().invoke(cli.main, ["move", "7", "todo"])

    assert result.exit_code == 1
    assert "INVALID_TRANSITION: cannot move backward" in result.output


def test_move_success(api):
    api.route("POST", "/api/v1/todos/7/move", httpx.Response(200, json=_todo(state="complete")))

    result = CliRunner().invoke(cli.main, ["move", "7", "complete"])

    assert result.exit_code == 0
    assert "#7 is now complete" in result.output


def test_notifications_unread(api):
    api.route("GET", "/api/v1/notifications", httpx.Response(200, json={
        "notifications": [{"id": 3, "title": "Todo Due Soon", "message": "soon", "read": False}],
        "pagination": {"page": 1, "limit": 20, "total": 1, "pages": 1},
    }))

    result = CliRunner().invoke(cli.main, ["notifications", "--unread"])

    assert result.exit_code == 0
    assert "Todo Due Soon" in result.output
    assert api.requests[0].url.params["unread_only"] == "true"


def test_status(api):
    api.route("GET", "/api/v1/realtime/status", httpx.Response(200, json={
        "node_id": "node-1",
        "redis": False,
        "connected_users": 2,
        "connections": 3,
        "batching": {"queue_size": 4},
        "presence": {"online_users": 2},
    }))

    result = CliRunner().invoke(cli.main, ["status"])

    assert result.exit_code == 0
    assert "node-1" in result.output
    assert "Redis fan-out:    off" in result.output
    assert "Connections:      3" in result.output
