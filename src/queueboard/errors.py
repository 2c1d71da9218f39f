"""Typed failures raised by the ticket engine, the coordinator and the hub.

Learn: Routes never inspect messages. They map the *class* of a failure to
an HTTP status once, in main.py:

  NotFoundError          → 404
  ConflictError          → 409
  StoreUnavailableError  → 503
"""


class QueueError(Exception):
    """Base class for every queueboard failure."""


class NotFoundError(QueueError):
    pass


class TicketNotFoundError(NotFoundError):
    def __init__(self, ticket_ref):
        self.ticket_ref = ticket_ref
        super().__init__(f"Ticket {ticket_ref} not found")


class CategoryNotFoundError(NotFoundError):
    def __init__(self, category_id: int):
        self.category_id = category_id
        super().__init__(f"Category {category_id} not found")


class NoRecallError(NotFoundError):
    """Nothing has been called to this counter yet."""

    def __init__(self, counter: int):
        self.counter = counter
        super().__init__(f"No ticket to recall for counter {counter}")


class ConflictError(QueueError):
    pass


class InvalidTransitionError(ConflictError):
    """Raised when a status transition is not allowed."""

    def __init__(self, ticket_id: int, current: str, requested: str, allowed: set[str]):
        self.ticket_id = ticket_id
        self.current = current
        self.requested = requested
        super().__init__(
            f"Ticket {ticket_id}: cannot transition from '{current}' to '{requested}'. "
            f"Allowed: {sorted(allowed) or 'none (terminal state)'}"
        )


class SequenceConflictError(ConflictError):
    """Two writers claimed the same ticket number and retries ran out."""

    def __init__(self, category_id: int, attempts: int):
        self.category_id = category_id
        self.attempts = attempts
        super().__init__(
            f"Could not allocate a ticket number for category {category_id} "
            f"after {attempts} attempts"
        )


class StoreUnavailableError(QueueError):
    """The datastore could not be reached or rejected the query."""
