"""Queue coordinator — run a ticket operation, then announce it.

Learn: The coordinator has no state of its own. Every action is:
1. Call the TicketService (writes to the database, commits)
2. Only if that succeeded, publish the matching event to the hub

If step 1 raises, nothing is published and the exception reaches the caller
untouched. The two steps are not one transaction: a crash between commit and
publish leaves the database right and the display board stale until the next
event. Display boards re-fetch state on reconnect, so that is acceptable.

  create           → NEW_TICKET
  call / by code   → CALL_TICKET   (also remembered on the call board)
  call next        → CALL_TICKET
  recall           → CALL_TICKET   (replayed from the call board, no DB write)
  reset            → RESET_QUEUE
  display settings → UPDATE_VIDEO
  serve/skip/finish → no event
"""

import asyncio
from typing import Optional

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from queueboard.db.models import DisplaySettings, Ticket
from queueboard.errors import NoRecallError
from queueboard.events.types import (
    CALL_TICKET,
    NEW_TICKET,
    RESET_QUEUE,
    UPDATE_VIDEO,
    BroadcastEvent,
)
from queueboard.realtime.hub import BroadcastHub
from queueboard.schemas.display import DisplaySettingsRead
from queueboard.schemas.ticket import TicketRead
from queueboard.services.ticket_service import TicketService

logger = structlog.get_logger()


class CallBoard:
    """Last ticket called to each counter, for recall.

    A snapshot (TicketRead), not a live row — recall re-announces exactly
    what was shown, without another query. Counters are few, so one lock
    for the whole map is enough.
    """

    def __init__(self):
        self._last: dict[int, TicketRead] = {}
        self._lock = asyncio.Lock()

    async def remember(self, counter: int, ticket: TicketRead) -> None:
        async with self._lock:
            self._last[counter] = ticket

    async def last_called(self, counter: int) -> Optional[TicketRead]:
        async with self._lock:
            return self._last.get(counter)

    async def clear(self) -> None:
        async with self._lock:
            self._last.clear()

    async def snapshot(self) -> dict[int, TicketRead]:
        async with self._lock:
            return dict(self._last)


class QueueCoordinator:
    """Glue between the ticket engine and the broadcast hub."""

    def __init__(
        self,
        db: AsyncSession,
        hub: BroadcastHub,
        board: CallBoard,
        tickets: Optional[TicketService] = None,
    ):
        self.db = db
        self.hub = hub
        self.board = board
        self.tickets = tickets or TicketService(db)

    def _announce(self, event_type: str, body=None) -> None:
        self.hub.publish(BroadcastEvent.of(event_type, body))

    # ─── Kiosk ───────────────────────────────────────────

    async def create_ticket(self, category_id: int) -> TicketRead:
        ticket = TicketRead.model_validate(await self.tickets.create_ticket(category_id))
        self._announce(NEW_TICKET, ticket)
        return ticket

    # ─── Counter actions ─────────────────────────────────

    async def _called(self, ticket: Ticket, counter: int) -> TicketRead:
        called = TicketRead.model_validate(ticket)
        await self.board.remember(counter, called)
        self._announce(CALL_TICKET, called)
        logger.info("ticket.called", code=called.formatted_code, counter=counter)
        return called

    async def call_ticket(self, ticket_id: int, counter: int) -> TicketRead:
        ticket = await self.tickets.call_ticket(ticket_id, counter)
        return await self._called(ticket, counter)

    async def call_by_code(self, code: str, counter: int) -> TicketRead:
        """Manual call: staff type the code printed on today's ticket."""
        found = await self.tickets.find_by_code(code)
        ticket = await self.tickets.call_ticket(found.id, counter)
        return await self._called(ticket, counter)

    async def call_next(self, category_id: int, counter: int) -> TicketRead:
        """Call the oldest waiting ticket in a category."""
        found = await self.tickets.next_waiting(category_id)
        ticket = await self.tickets.call_ticket(found.id, counter)
        return await self._called(ticket, counter)

    async def recall(self, counter: int) -> TicketRead:
        """Re-announce the last call on a counter. No state change."""
        ticket = await self.board.last_called(counter)
        if ticket is None:
            raise NoRecallError(counter)
        self._announce(CALL_TICKET, ticket)
        logger.info("ticket.recalled", code=ticket.formatted_code, counter=counter)
        return ticket

    async def serve_ticket(self, ticket_id: int) -> TicketRead:
        return TicketRead.model_validate(await self.tickets.serve_ticket(ticket_id))

    async def skip_ticket(self, ticket_id: int) -> TicketRead:
        return TicketRead.model_validate(await self.tickets.skip_ticket(ticket_id))

    async def finish_ticket(self, ticket_id: int) -> TicketRead:
        return TicketRead.model_validate(await self.tickets.finish_ticket(ticket_id))

    # ─── Admin ───────────────────────────────────────────

    async def reset_queue(self) -> int:
        deleted = await self.tickets.reset_today()
        await self.board.clear()
        self._announce(RESET_QUEUE)
        return deleted

    async def update_display_settings(
        self,
        video_url: str,
        title: str,
        subtitle: str,
    ) -> DisplaySettingsRead:
        row: DisplaySettings = await self.tickets.update_display_settings(
            video_url=video_url, title=title, subtitle=subtitle
        )
        display = DisplaySettingsRead.model_validate(row)
        self._announce(UPDATE_VIDEO, display)
        return display
