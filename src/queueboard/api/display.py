"""Display settings API routes — video and captions on the public board."""

from fastapi import APIRouter, Depends

from queueboard.api.deps import coordinator, ticket_service
from queueboard.schemas.display import DisplaySettingsRead, DisplaySettingsUpdate
from queueboard.services.queue_coordinator import QueueCoordinator
from queueboard.services.ticket_service import TicketService

router = APIRouter(prefix="/display")


@router.get("/video", response_model=DisplaySettingsRead)
async def get_display_settings(svc: TicketService = Depends(ticket_service)):
    return await svc.get_display_settings()


@router.post("/video", response_model=DisplaySettingsRead)
async def update_display_settings(
    body: DisplaySettingsUpdate,
    coord: QueueCoordinator = Depends(coordinator),
):
    """Replace the display settings and push them to every board."""
    return await coord.update_display_settings(
        video_url=body.video_url,
        title=body.title,
        subtitle=body.subtitle,
    )
