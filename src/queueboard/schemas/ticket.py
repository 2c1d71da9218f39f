"""Pydantic schemas for tickets, categories and queue stats.

Learn: Request bodies are validated here, before anything reaches the
ticket engine. A counter of 0 or a negative category id is a malformed
request (422), not a queue error.
- TicketCreate: what the kiosk POSTs to take a number
- CallTicket / CallByCode / CallNext / Recall: admin console actions
- TicketAction: skip / serve / finish by ticket id
- TicketRead: what the API and the real-time channel return
"""

from datetime import date, datetime

from pydantic import BaseModel, Field


# ─── Requests ────────────────────────────────────────────

class TicketCreate(BaseModel):
    category_id: int = Field(..., ge=1)


class CallTicket(BaseModel):
    ticket_id: int = Field(..., ge=1)
    counter: int = Field(..., ge=1)


class CallByCode(BaseModel):
    """Manual call by the code printed on the ticket, e.g. "A-005"."""
    code: str = Field(..., pattern=r"^[A-Za-z]-\d{3,}$")
    counter: int = Field(..., ge=1)


class CallNext(BaseModel):
    category_id: int = Field(..., ge=1)
    counter: int = Field(..., ge=1)


class Recall(BaseModel):
    counter: int = Field(..., ge=1)


class TicketAction(BaseModel):
    ticket_id: int = Field(..., ge=1)


# ─── Responses ───────────────────────────────────────────

class TicketRead(BaseModel):
    id: int
    category_id: int
    ticket_number: int
    formatted_code: str
    status: str
    counter: int = Field(validation_alias="counter_number")
    service_date: date
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True, "populate_by_name": True}


class CategoryRead(BaseModel):
    id: int
    name: str
    prefix: str
    color_code: str

    model_config = {"from_attributes": True}


class QueueStats(BaseModel):
    waiting: int = 0
    calling: int = 0
    serving: int = 0
    finished: int = 0
    skipped: int = 0
    total: int = 0


class ResetResult(BaseModel):
    status: str = "reset"
    deleted: int
