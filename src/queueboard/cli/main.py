"""Queueboard CLI — take tickets, work the counters, watch the queue.

Usage:
    queueboard take 1                    # Take a ticket in category 1
    queueboard waiting                   # Today's waiting tickets
    queueboard stats                     # Today's counts per status
    queueboard call 42 --counter 3       # Call ticket #42 to counter 3
    queueboard call A-005 --counter 3    # ...or by its printed code
    queueboard call-next 1 --counter 3   # Call the oldest waiting ticket
    queueboard recall --counter 3        # Re-announce counter 3's last call
    queueboard skip 42 / finish 42       # Close a ticket
    queueboard reset --yes               # Wipe today's queue
    queueboard serve                     # Run the API server
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

from queueboard import __version__

# ---------------------------------------------------------------------------
# Config
# ---------------------------------------------------------------------------

DEFAULT_API_URL = "http://localhost:8080"


def _api_url() -> str:
    return os.environ.get("QUEUEBOARD_API_URL", DEFAULT_API_URL).rstrip("/")


def _client() -> httpx.AsyncClient:
    """Build an async HTTP client pointed at the queueboard backend."""
    return httpx.AsyncClient(base_url=_api_url(), timeout=10.0)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _run(coro):
    """Run an async coroutine from a synchronous Click handler.

    Handles nested event loops (e.g. Click's CliRunner inside an async
    test) by offloading to a thread.
    """
    try:
        asyncio.get_running_loop()
    except RuntimeError:
        return asyncio.run(coro)
    else:
        with concurrent.futures.ThreadPoolExecutor(max_workers=1) as pool:
            return pool.submit(asyncio.run, coro).result()


def _check(r: httpx.Response):
    """Return the JSON body, or print the API's error detail and exit 1."""
    if r.is_success:
        return r.json()
    try:
        detail = r.json().get("detail", r.text)
    except (json.JSONDecodeError, AttributeError):
        detail = r.text
    click.secho(f"Error ({r.status_code}): {detail}", fg="red", err=True)
    sys.exit(1)


async def _get(path: str, params: Optional[dict] = None):
    async with _client() as c:
        return _check(await c.get(path, params=params))


async def _post(path: str, body: Optional[dict] = None):
    async with _client() as c:
        return _check(await c.post(path, json=body or {}))


def _status_color(status: str) -> str:
    """Map ticket statuses to click colors."""
    colors = {
        "waiting": "white",
        "calling": "yellow",
        "serving": "cyan",
        "finished": "green",
        "skipped": "red",
    }
    return colors.get(status, "white")


def _echo_ticket(t: dict, prefix: str = "") -> None:
    status = click.style(t["status"], fg=_status_color(t["status"]))
    counter = f"  counter {t['counter']}" if t["counter"] else ""
    click.echo(f"{prefix}{t['formatted_code']:8s} #{t['id']:<6}  {status}{counter}")


# ---------------------------------------------------------------------------
# CLI group
# ---------------------------------------------------------------------------


@click.group()
@click.version_option(version=__version__, prog_name="queueboard")
def main():
    """Queueboard — clinic ticket queue from the command line."""


# ---------------------------------------------------------------------------
# Kiosk
# ---------------------------------------------------------------------------


@main.command()
@click.argument("category_id", type=int)
def take(category_id: int):
    """Take a new ticket in CATEGORY_ID."""
    ticket = _run(_post("/api/v1/queue/create", {"category_id": category_id}))
    click.secho(ticket["formatted_code"], bold=True)


@main.command()
def categories():
    """List service categories."""
    rows = _run(_get("/api/v1/categories"))
    for c in rows:
        click.echo(f"  {c['id']:<3} {c['prefix']}  {c['name']}")


# ---------------------------------------------------------------------------
# Views
# ---------------------------------------------------------------------------


@main.command()
@click.option("--category", "-c", "category_id", type=int, help="Only this category")
def waiting(category_id: Optional[int]):
    """Show today's waiting tickets, oldest first."""
    params = {"category_id": category_id} if category_id else None
    tickets = _run(_get("/api/v1/queue/waiting", params))
    if not tickets:
        click.echo("Nobody is waiting.")
        return
    click.secho(f"Waiting ({len(tickets)}):", bold=True)
    for t in tickets:
        _echo_ticket(t, prefix="  ")


@main.command()
def stats():
    """Show today's queue statistics."""
    data = _run(_get("/api/v1/queue/stats"))
    for key in ("waiting", "calling", "serving", "finished", "skipped", "total"):
        click.echo(f"  {key:10s} {data.get(key, 0)}")


# ---------------------------------------------------------------------------
# Counter actions
# ---------------------------------------------------------------------------


@main.command()
@click.argument("ticket")
@click.option("--counter", "-n", type=int, required=True, help="Counter number")
def call(ticket: str, counter: int):
    """Call TICKET (id or printed code like A-005) to a counter."""
    if ticket.isdigit():
        body = {"ticket_id": int(ticket), "counter": counter}
        result = _run(_post("/api/v1/queue/call", body))
    else:
        body = {"code": ticket, "counter": counter}
        result = _run(_post("/api/v1/queue/call-manual", body))
    _echo_ticket(result)


@main.command("call-next")
@click.argument("category_id", type=int)
@click.option("--counter", "-n", type=int, required=True, help="Counter number")
def call_next(category_id: int, counter: int):
    """Call the oldest waiting ticket in CATEGORY_ID."""
    body = {"category_id": category_id, "counter": counter}
    _echo_ticket(_run(_post("/api/v1/queue/call-next", body)))


@main.command()
@click.option("--counter", "-n", type=int, required=True, help="Counter number")
def recall(counter: int):
    """Re-announce the last ticket called to a counter."""
    _echo_ticket(_run(_post("/api/v1/queue/recall", {"counter": counter})))


@main.command()
@click.argument("ticket_id", type=int)
def skip(ticket_id: int):
    """Mark a ticket as skipped (no-show)."""
    _echo_ticket(_run(_post("/api/v1/queue/skip", {"ticket_id": ticket_id})))


@main.command()
@click.argument("ticket_id", type=int)
def finish(ticket_id: int):
    """Mark a ticket as finished."""
    _echo_ticket(_run(_post("/api/v1/queue/finish", {"ticket_id": ticket_id})))


@main.command()
@click.option("--yes", is_flag=True, help="Skip the confirmation prompt")
def reset(yes: bool):
    """Delete every ticket issued today."""
    if not yes:
        click.confirm("This deletes all of today's tickets. Continue?", abort=True)
    result = _run(_post("/api/v1/queue/reset"))
    click.secho(f"Queue reset ({result['deleted']} tickets removed)", fg="green")


# ---------------------------------------------------------------------------
# Server
# ---------------------------------------------------------------------------


@main.command()
@click.option("--host", default=None, help="Bind address (default from QUEUEBOARD_HOST)")
@click.option("--port", type=int, default=None, help="Port (default from QUEUEBOARD_PORT)")
def serve(host: Optional[str], port: Optional[int]):
    """Run the API + WebSocket server."""
    import uvicorn

    from queueboard.config import settings

    uvicorn.run(
        "queueboard.main:app",
        host=host or settings.host,
        port=port or settings.port,
        # Protocol-level pings keep listen-only display boards honest.
        ws_ping_interval=settings.ws_heartbeat_interval,
        ws_ping_timeout=settings.ws_heartbeat_timeout,
        log_level="debug" if settings.debug else "info",
    )


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------

if __name__ == "__main__":
    main()
