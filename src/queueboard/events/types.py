"""Broadcast event types and the envelope sent to real-time subscribers.

Learn: Centralizing event types as constants prevents typos and makes the
whole real-time vocabulary discoverable in one place. Display boards switch
on `type`; `data` is a ticket or display-settings body, omitted for resets.

Events are ephemeral. They exist for one fan-out and are never stored.
"""

from typing import Any, Literal, Optional

from pydantic import BaseModel

NEW_TICKET = "NEW_TICKET"
CALL_TICKET = "CALL_TICKET"
RESET_QUEUE = "RESET_QUEUE"
UPDATE_VIDEO = "UPDATE_VIDEO"

EventType = Literal["NEW_TICKET", "CALL_TICKET", "RESET_QUEUE", "UPDATE_VIDEO"]


class BroadcastEvent(BaseModel):
    type: EventType
    data: Optional[dict[str, Any]] = None

    @classmethod
    def of(cls, event_type: str, body: Optional[BaseModel] = None) -> "BroadcastEvent":
        """Build an event from a response schema (TicketRead, DisplaySettingsRead)."""
        data = body.model_dump(mode="json") if body is not None else None
        return cls(type=event_type, data=data)

    def to_json(self) -> str:
        return self.model_dump_json(exclude_none=True)
