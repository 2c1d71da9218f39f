"""Test fixtures — a fresh SQLite database per test, a live hub, an HTTP client.

Learn: Testing pattern for async SQLAlchemy + FastAPI:

1. Each test gets its own SQLite file under tmp_path, bootstrapped with the
   same init_db() the app runs at startup (tables + seed categories).
2. Sessions come from a per-test async_sessionmaker, so concurrency tests can
   open one session per simulated kiosk.
3. The HTTP client overrides get_db, get_hub and get_board. ASGITransport
   does not run the lifespan, so the test owns the hub's start/stop.

The app-level database URL is pointed at a throwaway SQLite file before the
app is imported; only the lifespan-driven WebSocket test and /health touch it.
"""

import os
import tempfile

_APP_DB_DIR = tempfile.mkdtemp(prefix="queueboard-tests-")
os.environ["QUEUEBOARD_DATABASE_URL"] = f"sqlite+aiosqlite:///{_APP_DB_DIR}/app.db"
os.environ["QUEUEBOARD_DB_CONNECT_RETRIES"] = "1"

import pytest_asyncio  # noqa: E402
from httpx import ASGITransport, AsyncClient  # noqa: E402
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker  # noqa: E402

from queueboard.api.deps import get_board, get_hub  # noqa: E402
from queueboard.db.bootstrap import init_db  # noqa: E402
from queueboard.db.engine import build_engine, get_db  # noqa: E402
from queueboard.main import app  # noqa: E402
from queueboard.realtime.hub import BroadcastHub, Subscriber  # noqa: E402
from queueboard.services.queue_coordinator import CallBoard  # noqa: E402


@pytest_asyncio.fixture()
async def db_engine(tmp_path):
    """Per-test SQLite database with schema and seed data."""
    engine = build_engine(f"sqlite+aiosqlite:///{tmp_path}/queue.db")
    await init_db(engine, retries=1)
    yield engine
    await engine.dispose()


@pytest_asyncio.fixture()
async def session_factory(db_engine):
    return async_sessionmaker(db_engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture()
async def db_session(session_factory):
    async with session_factory() as session:
        yield session


@pytest_asyncio.fixture()
async def hub():
    """A running broadcast hub, stopped after the test."""
    h = BroadcastHub()
    h.start()
    yield h
    await h.stop()


@pytest_asyncio.fixture()
async def board():
    return CallBoard()


@pytest_asyncio.fixture()
async def subscribers(hub):
    """Three registered subscribers with roomy outboxes."""
    subs = [Subscriber(outbox_size=16, label=f"display-{i}") for i in range(3)]
    for sub in subs:
        await hub.register(sub)
    return subs


@pytest_asyncio.fixture()
async def client(session_factory, hub, board):
    """HTTP client with the app's database, hub and call board overridden.

    Learn: get_db is overridden to hand out a fresh session per request
    from the per-test database, exactly like the real dependency does.
    """

    async def override_get_db():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_hub] = lambda: hub
    app.dependency_overrides[get_board] = lambda: board

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()


def drain_outbox(subscriber: Subscriber) -> list[str]:
    """Everything currently queued for a subscriber, without waiting.

    The ``None`` end-of-stream marker a closed subscriber holds is not a
    message, so it is skipped.
    """
    messages = []
    while not subscriber.outbox.empty():
        message = subscriber.outbox.get_nowait()
        if message is not None:
            messages.append(message)
    return messages
