"""Schema bootstrap and seed data.

Learn: Startup is the only place a store failure is retried. The database
container often comes up a few seconds after the app, so init_db() pings
with a fixed backoff before giving up. Once the app is serving, a failing
query surfaces straight to the caller as a 503.

Seeding is idempotent: rows are only inserted when their id is missing, so
restarting never clobbers categories or display settings edited in place.
"""

import asyncio

import structlog
from sqlalchemy import select, text
from sqlalchemy.exc import DBAPIError, OperationalError
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession

from queueboard.config import settings
from queueboard.db.models import Base, Category, DisplaySettings
from queueboard.errors import StoreUnavailableError

logger = structlog.get_logger()

DEFAULT_CATEGORIES = [
    {"id": 1, "name": "Periksa Lab", "prefix": "A", "color_code": "#2563eb"},
    {"id": 2, "name": "PCR / Swab Test", "prefix": "B", "color_code": "#059669"},
    {"id": 3, "name": "Result Collection", "prefix": "C", "color_code": "#f97316"},
]

DEFAULT_DISPLAY = {
    "video_url": "",
    "title": "Pentingnya Mencuci Tangan",
    "subtitle": "Tips Kesehatan Harian",
}


async def wait_for_database(
    engine: AsyncEngine,
    retries: int | None = None,
    backoff: float | None = None,
) -> None:
    """Ping the database until it answers or retries run out."""
    retries = settings.db_connect_retries if retries is None else retries
    backoff = settings.db_connect_backoff_seconds if backoff is None else backoff

    last_error: Exception | None = None
    for attempt in range(1, retries + 1):
        try:
            async with engine.connect() as conn:
                await conn.execute(text("SELECT 1"))
            return
        except (OperationalError, DBAPIError, OSError) as e:
            last_error = e
            logger.warning(
                "db.waiting",
                attempt=attempt,
                retries=retries,
                error=str(e),
            )
            if attempt < retries:
                await asyncio.sleep(backoff)

    raise StoreUnavailableError(
        f"Could not connect to database after {retries} attempts: {last_error}"
    )


async def seed_defaults(session: AsyncSession) -> None:
    """Insert default categories and the display settings row if missing."""
    existing = set(
        (await session.execute(select(Category.id))).scalars().all()
    )
    for row in DEFAULT_CATEGORIES:
        if row["id"] not in existing:
            session.add(Category(**row))

    display = await session.get(DisplaySettings, DisplaySettings.SINGLETON_ID)
    if display is None:
        session.add(DisplaySettings(id=DisplaySettings.SINGLETON_ID, **DEFAULT_DISPLAY))

    await session.commit()


async def init_db(engine: AsyncEngine, retries: int | None = None) -> None:
    """Wait for the store, create missing tables, seed defaults."""
    await wait_for_database(engine, retries=retries)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    async with AsyncSession(engine, expire_on_commit=False) as session:
        await seed_defaults(session)

    logger.info("db.ready", categories=len(DEFAULT_CATEGORIES))
