"""Shared FastAPI dependencies.

Learn: The hub and the call board are process-wide and created in the app
lifespan, so routes reach them through app.state. Tests swap them out with
app.dependency_overrides like any other dependency.
"""

from fastapi import Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from queueboard.db.engine import get_db
from queueboard.realtime.hub import BroadcastHub
from queueboard.services.queue_coordinator import CallBoard, QueueCoordinator
from queueboard.services.ticket_service import TicketService


def get_hub(request: Request) -> BroadcastHub:
    return request.app.state.hub


def get_board(request: Request) -> CallBoard:
    return request.app.state.board


def ticket_service(db: AsyncSession = Depends(get_db)) -> TicketService:
    return TicketService(db)


def coordinator(
    tickets: TicketService = Depends(ticket_service),
    hub: BroadcastHub = Depends(get_hub),
    board: CallBoard = Depends(get_board),
) -> QueueCoordinator:
    return QueueCoordinator(tickets.db, hub, board, tickets=tickets)
