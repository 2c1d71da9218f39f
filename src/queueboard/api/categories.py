"""Category API routes — the service lines a kiosk offers."""

from fastapi import APIRouter, Depends

from queueboard.api.deps import ticket_service
from queueboard.schemas.ticket import CategoryRead
from queueboard.services.ticket_service import TicketService

router = APIRouter()


@router.get("/categories", response_model=list[CategoryRead])
async def list_categories(svc: TicketService = Depends(ticket_service)):
    return await svc.list_categories()
