"""Queue API routes — kiosk and admin console actions.

Learn: Routes only translate HTTP to coordinator/service calls. Typed queue
errors (not found, invalid transition, store down) are mapped to status
codes once, by the exception handlers in main.py, so no route has a
try/except of its own.

Key patterns:
- POST for anything that changes the queue (not idempotent)
- GET for read-only views (waiting list, recent, stats)
- State changes that the display cares about go through the coordinator
"""

from typing import Optional

from fastapi import APIRouter, Depends, Query

from queueboard.api.deps import coordinator, ticket_service
from queueboard.schemas.ticket import (
    CallByCode,
    CallNext,
    CallTicket,
    QueueStats,
    Recall,
    ResetResult,
    TicketAction,
    TicketCreate,
    TicketRead,
)
from queueboard.services.queue_coordinator import QueueCoordinator
from queueboard.services.ticket_service import TicketService

router = APIRouter(prefix="/queue")


# ═══════════════════════════════════════════════════════════
# Kiosk
# ═══════════════════════════════════════════════════════════


@router.post("/create", response_model=TicketRead, status_code=201)
async def create_ticket(
    body: TicketCreate,
    coord: QueueCoordinator = Depends(coordinator),
):
    """Take the next number in a category."""
    return await coord.create_ticket(body.category_id)


@router.get("/recent", response_model=list[TicketRead])
async def recent_tickets(
    limit: int = Query(5, ge=1, le=50),
    svc: TicketService = Depends(ticket_service),
):
    """Most recently issued tickets, newest first."""
    return await svc.list_recent(limit=limit)


# ═══════════════════════════════════════════════════════════
# Admin console — views
# ═══════════════════════════════════════════════════════════


@router.get("/waiting", response_model=list[TicketRead])
async def waiting_tickets(
    category_id: Optional[int] = Query(None, ge=1, description="Filter by category"),
    svc: TicketService = Depends(ticket_service),
):
    """Today's waiting tickets, by category, oldest first."""
    return await svc.list_waiting(category_id=category_id)


@router.get("/stats", response_model=QueueStats)
async def queue_stats(svc: TicketService = Depends(ticket_service)):
    return await svc.stats()


@router.get("/tickets/{ticket_id}", response_model=TicketRead)
async def get_ticket(ticket_id: int, svc: TicketService = Depends(ticket_service)):
    return await svc.get_ticket(ticket_id)


@router.get("/counters/{counter}/current", response_model=TicketRead)
async def current_at_counter(counter: int, svc: TicketService = Depends(ticket_service)):
    """The ticket currently being called to a counter."""
    return await svc.current_calling(counter)


# ═══════════════════════════════════════════════════════════
# Admin console — actions
# ═══════════════════════════════════════════════════════════


@router.post("/call", response_model=TicketRead)
async def call_ticket(body: CallTicket, coord: QueueCoordinator = Depends(coordinator)):
    return await coord.call_ticket(body.ticket_id, body.counter)


@router.post("/call-manual", response_model=TicketRead)
async def call_by_code(body: CallByCode, coord: QueueCoordinator = Depends(coordinator)):
    """Call a ticket by the code printed on it."""
    return await coord.call_by_code(body.code, body.counter)


@router.post("/call-next", response_model=TicketRead)
async def call_next(body: CallNext, coord: QueueCoordinator = Depends(coordinator)):
    return await coord.call_next(body.category_id, body.counter)


@router.post("/recall", response_model=TicketRead)
async def recall(body: Recall, coord: QueueCoordinator = Depends(coordinator)):
    """Re-announce the last ticket called to a counter."""
    return await coord.recall(body.counter)


@router.post("/serve", response_model=TicketRead)
async def serve_ticket(body: TicketAction, coord: QueueCoordinator = Depends(coordinator)):
    return await coord.serve_ticket(body.ticket_id)


@router.post("/skip", response_model=TicketRead)
async def skip_ticket(body: TicketAction, coord: QueueCoordinator = Depends(coordinator)):
    return await coord.skip_ticket(body.ticket_id)


@router.post("/finish", response_model=TicketRead)
async def finish_ticket(body: TicketAction, coord: QueueCoordinator = Depends(coordinator)):
    return await coord.finish_ticket(body.ticket_id)


@router.post("/reset", response_model=ResetResult)
async def reset_queue(coord: QueueCoordinator = Depends(coordinator)):
    """Delete all of today's tickets. Irreversible."""
    deleted = await coord.reset_queue()
    return ResetResult(deleted=deleted)
