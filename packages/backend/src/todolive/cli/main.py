"""todolive CLI — talk to a running todolive server, run housekeeping.

Usage:
    todolive login alice@example.com            # Print an access token
    todolive todos --state inProgress            # List your todos
    todolive add "write report" -p high          # Create a todo
    todolive move 42 complete                    # Move a todo forward
    todolive notifications --unread              # Unread notifications
    todolive status                              # Realtime connection counters
    todolive maintenance                         # One reminder/cleanup pass (direct DB)

API commands read TODOLIVE_API_URL (default http://localhost:8000) and
TODOLIVE_TOKEN (from `todolive login`).
"""

from __future__ import annotations

import asyncio
import concurrent.futures
import json
import os
import sys
from typing import Optional

import click
import httpx

from todolive import __version__

# ---------------------------------------------------------------------------
# Config
# ---------------------------------------------------------------------------

DEFAULT_API_URL = "http://localhost:8000"


def _api_url() -> str:
    return os.environ.get("TODOLIVE_API_URL", DEFAULT_API_URL).rstrip("/")


def _client() -> httpx.AsyncClient:
    """Build an async HTTP client pointed at the todolive backend."""
    headers = {}
    token = os.environ.get("TODOLIVE_TOKEN")
    if token:
        headers["Authorization"] = f"Bearer {token}"
    return httpx.AsyncClient(base_url=_api_url(), headers=headers, timeout=30.0)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _run(coro):
    """Run an async coroutine from a synchronous Click handler.

    Offloads to a thread when an event loop is already running (e.g. the
    command is invoked through CliRunner inside an async test).
    """
    try:
        asyncio.get_running_loop()
    except RuntimeError:
        return asyncio.run(coro)
    else:
        with concurrent.futures.ThreadPoolExecutor(max_workers=1) as pool:
            return pool.submit(asyncio.run, coro).result()


def _fail(response: httpx.Response) -> None:
    """Print the API's error detail and exit non-zero."""
    try:
        detail = response.json().get("detail")
    except ValueError:
        detail = response.text
    if isinstance(detail, dict):
        detail = f"{detail.get('code')}: {detail.get('message')}"
    click.secho(f"Error ({response.status_code}): {detail}", fg="red", err=True)
    sys.exit(1)


def _pretty_json(data: dict | list) -> str:
    return json.dumps(data, indent=2, default=str)


def _state_color(state: str) -> str:
    return {"todo": "white", "inProgress": "yellow", "complete": "green"}.get(state, "white")


def _priority_color(priority: str) -> str:
    return {"low": "white", "medium": "cyan", "high": "yellow", "urgent": "red"}.get(priority, "white")


# ---------------------------------------------------------------------------
# CLI group
# ---------------------------------------------------------------------------


@click.group()
@click.version_option(version=__version__, prog_name="todolive")
def main():
    """todolive — todos with realtime updates."""


# ---------------------------------------------------------------------------
# todolive login
# ---------------------------------------------------------------------------


@main.command()
@click.argument("email")
@click.password_option("--password", confirmation_prompt=False)
def login(email: str, password: str):
    """Log in and print an access token (export it as TODOLIVE_TOKEN)."""
    _run(_login_impl(email, password))


async def _login_impl(email: str, password: str):
    async with _client() as c:
        r = await c.post("/api/v1/auth/login", json={"email": email, "password": password})
        if r.status_code != 200:
            _fail(r)
        click.echo(r.json()["access_token"])


# ---------------------------------------------------------------------------
# todolive todos / add / move
# ---------------------------------------------------------------------------


@main.command()
@click.option("--state", "-s", help="Filter by state (todo, inProgress, complete)")
@click.option("--limit", "-l", default=50, help="Max results")
@click.option("--json", "as_json", is_flag=True, help="Raw JSON output")
def todos(state: Optional[str], limit: int, as_json: bool):
    """List your todos."""
    _run(_todos_impl(state, limit, as_json))


async def _todos_impl(state: Optional[str], limit: int, as_json: bool):
    params: dict = {"limit": limit}
    if state:
        params["state"] = state

    async with _client() as c:
        r = await c.get("/api/v1/todos", params=params)
        if r.status_code != 200:
            _fail(r)
        body = r.json()

    if as_json:
        click.echo(_pretty_json(body))
        return
    if not body["todos"]:
        click.echo("No todos.")
        return

    click.secho(f"Todos ({body['total']}):", bold=True)
    for t in body["todos"]:
        state_str = click.style(f"{t['state']:10s}", fg=_state_color(t["state"]))
        prio_str = click.style(f"{t['priority']:6s}", fg=_priority_color(t["priority"]))
        due = (t.get("due_date") or "")[:10]
        click.echo(f"  #{t['id']:<5} {state_str}  {prio_str}  {t['title'][:50]:50s}  {due}")


@main.command()
@click.argument("title")
@click.option("--priority", "-p", default="medium",
              type=click.Choice(["low", "medium", "high", "urgent"]))
@click.option("--category", "-c", help="Category label")
@click.option("--description", "-d", default="", help="Longer description")
def add(title: str, priority: str, category: Optional[str], description: str):
    """Create a todo."""
    _run(_add_impl(title, priority, category, description))


async def _add_impl(title: str, priority: str, category: Optional[str], description: str):
    payload = {"title": title, "priority": priority, "description": description}
    if category:
        payload["category"] = category

    async with _client() as c:
        r = await c.post("/api/v1/todos", json=payload)
        if r.status_code != 201:
            _fail(r)
        todo = r.json()
    click.secho(f"Created #{todo['id']}: {todo['title']}", fg="green")


@main.command()
@click.argument("todo_id", type=int)
@click.argument("state")
def move(todo_id: int, state: str):
    """Move a todo forward (todo → inProgress → complete)."""
    _run(_move_impl(todo_id, state))


async def _move_impl(todo_id: int, state: str):
    async with _client() as c:
        r = await c.post(f"/api/v1/todos/{todo_id}/move", json={"state": state})
        if r.status_code != 200:
            _fail(r)
        todo = r.json()
    click.secho(f"#{todo['id']} is now {todo['state']}", fg=_state_color(todo["state"]))


# ---------------------------------------------------------------------------
# todolive notifications
# ---------------------------------------------------------------------------


@main.command()
@click.option("--unread", is_flag=True, help="Only unread notifications")
@click.option("--limit", "-l", default=20, help="Max results")
def notifications(unread: bool, limit: int):
    """List your notifications, newest first."""
    _run(_notifications_impl(unread, limit))


async def _notifications_impl(unread: bool, limit: int):
    async with _client() as c:
        r = await c.get(
            "/api/v1/notifications",
            params={"unread_only": str(unread).lower(), "limit": limit},
        )
        if r.status_code != 200:
            _fail(r)
        body = r.json()

    rows = body["notifications"]
    if not rows:
        click.echo("No notifications.")
        return
    click.secho(f"Notifications ({body['pagination']['total']}):", bold=True)
    for n in rows:
        marker = " " if n["read"] else click.style("•", fg="cyan")
        click.echo(f"  {marker} #{n['id']:<5} {n['title']:30s}  {n['message']}")


# ---------------------------------------------------------------------------
# todolive status
# ---------------------------------------------------------------------------


@main.command()
def status():
    """Show realtime connection and batching counters."""
    _run(_status_impl())


async def _status_impl():
    async with _client() as c:
        r = await c.get("/api/v1/realtime/status")
        if r.status_code != 200:
            _fail(r)
        s = r.json()

    click.secho("Realtime", bold=True)
    click.echo(f"  Node:             {s['node_id']}")
    click.echo(f"  Redis fan-out:    {'on' if s['redis'] else 'off'}")
    click.echo(f"  Connected users:  {s['connected_users']}")
    click.echo(f"  Connections:      {s['connections']}")
    click.echo(f"  Batch queue:      {s['batching']['queue_size']}")
    click.echo(f"  Presence online:  {s['presence']['online_users']}")


# ---------------------------------------------------------------------------
# todolive maintenance
# ---------------------------------------------------------------------------


@main.command()
def maintenance():
    """Run one reminder + cleanup pass against the database directly."""
    summary = _run(_maintenance_impl())
    click.echo(_pretty_json(summary))


async def _maintenance_impl() -> dict:
    from todolive.db.engine import async_session_factory, engine
    from todolive.realtime.hub import RealtimeHub
    from todolive.services.maintenance_worker import MaintenanceWorker

    # No sockets in this process: pushes are dropped, rows are still written.
    hub = RealtimeHub(session_factory=async_session_factory)
    try:
        return await MaintenanceWorker(hub, async_session_factory).run_once()
    finally:
        await engine.dispose()


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------

if __name__ == "__main__":
    main()
