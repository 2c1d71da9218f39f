"""Ticket service — numbering engine and status state machine.

Learn: This is the CORE of the queue. Two properties matter more than
anything else here:

1. Numbers never collide. Every ticket gets 1 + max(number) for its
   category *today*, and two kiosks pressing the button at the same moment
   must still get consecutive numbers. Three layers make that true:
     - a per-category asyncio.Lock serializes allocation inside a process,
     - SELECT ... FOR UPDATE on the category row serializes across
       connections (PostgreSQL; SQLite has one writer anyway),
     - the UNIQUE(category_id, service_date, ticket_number) constraint
       catches anything that slips through, and we retry.

2. Status only moves forward:
     waiting → calling → serving → finished
   with skipped as a side exit. A call can be repeated (calling → calling)
   to re-announce at the same or another counter. finished and skipped are
   terminal; asking to leave them raises InvalidTransitionError.
"""

import asyncio
import functools
import weakref
from datetime import date, datetime
from typing import Callable, Optional

import structlog
from sqlalchemy import delete, func, select
from sqlalchemy.exc import IntegrityError, InterfaceError, OperationalError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from queueboard.config import settings
from queueboard.db.models import (
    CALLING,
    FINISHED,
    SERVING,
    SKIPPED,
    TICKET_STATUSES,
    WAITING,
    Category,
    DisplaySettings,
    Ticket,
    format_ticket_code,
    utcnow,
)
from queueboard.errors import (
    CategoryNotFoundError,
    InvalidTransitionError,
    SequenceConflictError,
    StoreUnavailableError,
    TicketNotFoundError,
)

logger = structlog.get_logger()


# ═══════════════════════════════════════════════════════════
# State Machine
# ═══════════════════════════════════════════════════════════

VALID_TRANSITIONS: dict[str, set[str]] = {
    WAITING: {CALLING, SKIPPED, FINISHED},
    CALLING: {CALLING, SERVING, SKIPPED, FINISHED},  # calling → calling = re-call
    SERVING: {FINISHED, SKIPPED},
    SKIPPED: set(),   # terminal state
    FINISHED: set(),  # terminal state
}


def local_today() -> date:
    """The business day in the configured timezone."""
    return datetime.now(settings.tzinfo).date()


# ═══════════════════════════════════════════════════════════
# Allocation locks
# ═══════════════════════════════════════════════════════════


class SequenceLocks:
    """One asyncio.Lock per category, per event loop.

    asyncio locks belong to the loop they first wait on, so the table is
    keyed by loop and entries vanish with it.
    """

    def __init__(self):
        self._by_loop: "weakref.WeakKeyDictionary[asyncio.AbstractEventLoop, dict[int, asyncio.Lock]]" = (
            weakref.WeakKeyDictionary()
        )

    def for_category(self, category_id: int) -> asyncio.Lock:
        loop = asyncio.get_running_loop()
        locks = self._by_loop.setdefault(loop, {})
        lock = locks.get(category_id)
        if lock is None:
            lock = locks[category_id] = asyncio.Lock()
        return lock


sequence_locks = SequenceLocks()


def surface_store_errors(method):
    """Translate lost connections into StoreUnavailableError."""

    @functools.wraps(method)
    async def wrapper(self, *args, **kwargs):
        try:
            return await method(self, *args, **kwargs)
        except (OperationalError, InterfaceError) as e:
            try:
                await self.db.rollback()
            except SQLAlchemyError as rollback_error:
                logger.warning(
                    "store.rollback_failed",
                    operation=method.__name__,
                    error=str(rollback_error),
                )
            logger.error("store.unavailable", operation=method.__name__, error=str(e))
            raise StoreUnavailableError(str(e.orig or e)) from e

    return wrapper


# ═══════════════════════════════════════════════════════════
# Service
# ═══════════════════════════════════════════════════════════


class TicketService:
    """Business logic for ticket numbering, transitions and queue queries."""

    def __init__(
        self,
        db: AsyncSession,
        today: Optional[Callable[[], date]] = None,
        locks: Optional[SequenceLocks] = None,
    ):
        self.db = db
        self.today = today or local_today
        self.locks = locks or sequence_locks

    # ─── Categories ──────────────────────────────────────

    async def get_category(self, category_id: int) -> Category:
        category = await self.db.get(Category, category_id)
        if category is None:
            raise CategoryNotFoundError(category_id)
        return category

    @surface_store_errors
    async def list_categories(self) -> list[Category]:
        result = await self.db.execute(select(Category).order_by(Category.id))
        return list(result.scalars().all())

    # ─── Create ──────────────────────────────────────────

    @surface_store_errors
    async def create_ticket(self, category_id: int) -> Ticket:
        """Issue the next number in a category for today.

        Learn: The read-max-then-insert runs under the category lock and
        inside one transaction. If the unique constraint still fires (a
        second server process, or a stale read), the transaction is rolled
        back and the allocation runs again with a fresh max().

        Raises:
            CategoryNotFoundError: unknown category id
            SequenceConflictError: retries exhausted
        """
        category = await self.get_category(category_id)
        prefix = category.prefix
        limit = settings.sequence_retry_limit

        async with self.locks.for_category(category_id):
            for attempt in range(1, limit + 1):
                try:
                    ticket = await self._insert_next(category_id, prefix)
                    await self.db.commit()
                except IntegrityError:
                    await self.db.rollback()
                    logger.warning(
                        "ticket.sequence_collision",
                        category_id=category_id,
                        attempt=attempt,
                    )
                    continue

                logger.info(
                    "ticket.created",
                    ticket_id=ticket.id,
                    code=ticket.formatted_code,
                    category_id=category_id,
                )
                return ticket

        raise SequenceConflictError(category_id, limit)

    async def _insert_next(self, category_id: int, prefix: str) -> Ticket:
        today = self.today()

        # Row lock on the category: concurrent allocators queue up here.
        await self.db.execute(
            select(Category.id).where(Category.id == category_id).with_for_update()
        )
        result = await self.db.execute(
            select(func.coalesce(func.max(Ticket.ticket_number), 0)).where(
                Ticket.category_id == category_id,
                Ticket.service_date == today,
            )
        )
        number = int(result.scalar_one()) + 1

        now = utcnow()
        ticket = Ticket(
            category_id=category_id,
            ticket_number=number,
            formatted_code=format_ticket_code(prefix, number),
            status=WAITING,
            counter_number=0,
            service_date=today,
            created_at=now,
            updated_at=now,
        )
        self.db.add(ticket)
        await self.db.flush()  # get auto-generated ID, trip the unique constraint
        return ticket

    # ─── Read ────────────────────────────────────────────

    @surface_store_errors
    async def get_ticket(self, ticket_id: int) -> Ticket:
        result = await self.db.execute(
            select(Ticket)
            .where(Ticket.id == ticket_id)
            .execution_options(populate_existing=True)
        )
        ticket = result.scalars().first()
        if ticket is None:
            raise TicketNotFoundError(ticket_id)
        return ticket

    @surface_store_errors
    async def find_by_code(self, code: str) -> Ticket:
        """Find today's ticket by its printed code, e.g. "A-005"."""
        result = await self.db.execute(
            select(Ticket)
            .where(
                Ticket.formatted_code == code.strip().upper(),
                Ticket.service_date == self.today(),
            )
            .order_by(Ticket.id.desc())
            .limit(1)
        )
        ticket = result.scalars().first()
        if ticket is None:
            raise TicketNotFoundError(code)
        return ticket

    @surface_store_errors
    async def next_waiting(self, category_id: int) -> Ticket:
        """Oldest waiting ticket of today in a category (strict FIFO by id)."""
        result = await self.db.execute(
            select(Ticket)
            .where(
                Ticket.category_id == category_id,
                Ticket.status == WAITING,
                Ticket.service_date == self.today(),
            )
            .order_by(Ticket.id.asc())
            .limit(1)
        )
        ticket = result.scalars().first()
        if ticket is None:
            raise TicketNotFoundError(f"waiting in category {category_id}")
        return ticket

    @surface_store_errors
    async def list_waiting(self, category_id: Optional[int] = None) -> list[Ticket]:
        """Today's waiting tickets, grouped by category, FIFO within each."""
        query = (
            select(Ticket)
            .where(Ticket.status == WAITING, Ticket.service_date == self.today())
            .order_by(Ticket.category_id.asc(), Ticket.id.asc())
        )
        if category_id is not None:
            query = query.where(Ticket.category_id == category_id)

        result = await self.db.execute(query)
        return list(result.scalars().all())

    @surface_store_errors
    async def list_recent(self, limit: int = 5) -> list[Ticket]:
        result = await self.db.execute(
            select(Ticket).order_by(Ticket.id.desc()).limit(limit)
        )
        return list(result.scalars().all())

    @surface_store_errors
    async def current_calling(self, counter: int) -> Ticket:
        """The ticket most recently called to a counter and still calling."""
        result = await self.db.execute(
            select(Ticket)
            .where(Ticket.status == CALLING, Ticket.counter_number == counter)
            .order_by(Ticket.updated_at.desc(), Ticket.id.desc())
            .limit(1)
        )
        ticket = result.scalars().first()
        if ticket is None:
            raise TicketNotFoundError(f"calling at counter {counter}")
        return ticket

    @surface_store_errors
    async def stats(self) -> dict[str, int]:
        result = await self.db.execute(
            select(Ticket.status, func.count(Ticket.id))
            .where(Ticket.service_date == self.today())
            .group_by(Ticket.status)
        )
        counts = {status: 0 for status in TICKET_STATUSES}
        for status, count in result.all():
            counts[status] = count
        counts["total"] = sum(counts.values())
        return counts

    # ─── Status changes (state machine) ──────────────────

    async def _transition(
        self,
        ticket_id: int,
        new_status: str,
        counter: Optional[int] = None,
    ) -> Ticket:
        """Lock the row, validate, apply, commit.

        Raises:
            TicketNotFoundError: unknown id
            InvalidTransitionError: the ticket is already terminal, or the
                move is not in VALID_TRANSITIONS
        """
        result = await self.db.execute(
            select(Ticket)
            .where(Ticket.id == ticket_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        ticket = result.scalars().first()
        if ticket is None:
            raise TicketNotFoundError(ticket_id)

        old_status = ticket.status
        allowed = VALID_TRANSITIONS.get(old_status, set())
        if new_status not in allowed:
            await self.db.commit()  # nothing changed; releases the row lock
            raise InvalidTransitionError(ticket_id, old_status, new_status, allowed)

        ticket.status = new_status
        if counter is not None:
            ticket.counter_number = counter
        ticket.updated_at = utcnow()
        await self.db.commit()

        logger.info(
            "ticket.status_changed",
            ticket_id=ticket_id,
            code=ticket.formatted_code,
            from_status=old_status,
            to_status=new_status,
            counter=ticket.counter_number,
        )
        return ticket

    @surface_store_errors
    async def call_ticket(self, ticket_id: int, counter: int) -> Ticket:
        """Mark a ticket calling at a counter. Re-calling is allowed."""
        return await self._transition(ticket_id, CALLING, counter=counter)

    @surface_store_errors
    async def serve_ticket(self, ticket_id: int) -> Ticket:
        return await self._transition(ticket_id, SERVING)

    @surface_store_errors
    async def skip_ticket(self, ticket_id: int) -> Ticket:
        return await self._transition(ticket_id, SKIPPED)

    @surface_store_errors
    async def finish_ticket(self, ticket_id: int) -> Ticket:
        return await self._transition(ticket_id, FINISHED)

    # ─── Reset ───────────────────────────────────────────

    @surface_store_errors
    async def reset_today(self) -> int:
        """Delete every ticket issued today. Returns how many went.

        Irreversible. Resetting an empty day is a no-op, not an error.
        """
        result = await self.db.execute(
            delete(Ticket).where(Ticket.service_date == self.today())
        )
        await self.db.commit()
        deleted = result.rowcount or 0
        logger.info("queue.reset", deleted=deleted)
        return deleted

    # ─── Display settings ────────────────────────────────

    @surface_store_errors
    async def get_display_settings(self) -> DisplaySettings:
        settings_row = await self.db.get(DisplaySettings, DisplaySettings.SINGLETON_ID)
        if settings_row is None:
            # Not bootstrapped yet — show a blank board rather than fail.
            return DisplaySettings(
                id=DisplaySettings.SINGLETON_ID, video_url="", title="", subtitle=""
            )
        return settings_row

    @surface_store_errors
    async def update_display_settings(
        self,
        video_url: str,
        title: str,
        subtitle: str,
    ) -> DisplaySettings:
        """Overwrite the singleton row wholesale."""
        settings_row = await self.db.get(DisplaySettings, DisplaySettings.SINGLETON_ID)
        if settings_row is None:
            settings_row = DisplaySettings(id=DisplaySettings.SINGLETON_ID)
            self.db.add(settings_row)

        settings_row.video_url = video_url
        settings_row.title = title
        settings_row.subtitle = subtitle
        settings_row.updated_at = utcnow()
        await self.db.commit()

        logger.info("display.updated", title=title, video_url=video_url)
        return settings_row
