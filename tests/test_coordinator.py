"""Coordinator tests — state change first, announcement second.

Learn: Every test here checks two things: what the database says, and what
the connected displays saw. A failed operation must leave every outbox
empty; recall must replay a call without touching the database.
"""

import json

import pytest

from conftest import drain_outbox
from queueboard.errors import (
    CategoryNotFoundError,
    InvalidTransitionError,
    NoRecallError,
    TicketNotFoundError,
)
from queueboard.services.queue_coordinator import CallBoard, QueueCoordinator


@pytest.fixture
def coord(db_session, hub, board):
    return QueueCoordinator(db_session, hub, board)


async def seen(hub, subscribers) -> list[list[dict]]:
    """Messages each subscriber has received since the last check."""
    await hub.drain()
    return [[json.loads(m) for m in drain_outbox(s)] for s in subscribers]


async def test_end_to_end_scenario(coord, hub, subscribers):
    # Kiosk: take a number
    ticket = await coord.create_ticket(1)
    assert ticket.formatted_code == "A-001"
    assert ticket.status == "waiting"
    for inbox in await seen(hub, subscribers):
        assert [m["type"] for m in inbox] == ["NEW_TICKET"]
        assert inbox[0]["data"]["formatted_code"] == "A-001"

    # Counter 3 calls it
    called = await coord.call_ticket(ticket.id, 3)
    assert called.status == "calling"
    assert called.counter == 3
    for inbox in await seen(hub, subscribers):
        assert [m["type"] for m in inbox] == ["CALL_TICKET"]
        assert inbox[0]["data"]["id"] == ticket.id
        assert inbox[0]["data"]["counter"] == 3

    # Finished — no announcement
    finished = await coord.finish_ticket(ticket.id)
    assert finished.status == "finished"
    assert all(inbox == [] for inbox in await seen(hub, subscribers))

    # Recall on counter 3 replays the same call
    recalled = await coord.recall(3)
    assert recalled.id == ticket.id
    assert recalled.formatted_code == "A-001"
    for inbox in await seen(hub, subscribers):
        assert [m["type"] for m in inbox] == ["CALL_TICKET"]
        assert inbox[0]["data"]["formatted_code"] == "A-001"
        assert inbox[0]["data"]["counter"] == 3

    # Nothing was ever called to counter 9
    with pytest.raises(NoRecallError):
        await coord.recall(9)
    assert all(inbox == [] for inbox in await seen(hub, subscribers))


async def test_failed_operation_publishes_nothing(coord, hub, subscribers):
    with pytest.raises(TicketNotFoundError):
        await coord.call_ticket(777, 1)
    with pytest.raises(CategoryNotFoundError):
        await coord.create_ticket(42)
    with pytest.raises(TicketNotFoundError):
        await coord.call_by_code("Z-001", 1)

    assert all(inbox == [] for inbox in await seen(hub, subscribers))


async def test_invalid_transition_publishes_nothing(coord, hub, subscribers):
    ticket = await coord.create_ticket(2)
    await coord.skip_ticket(ticket.id)
    await seen(hub, subscribers)

    with pytest.raises(InvalidTransitionError):
        await coord.call_ticket(ticket.id, 1)
    assert all(inbox == [] for inbox in await seen(hub, subscribers))


async def test_call_by_code(coord, hub, subscribers):
    await coord.create_ticket(1)
    await coord.create_ticket(1)
    called = await coord.call_by_code("A-002", 2)
    assert called.formatted_code == "A-002"
    assert called.counter == 2
    inbox = (await seen(hub, subscribers))[0]
    assert [m["type"] for m in inbox] == ["NEW_TICKET", "NEW_TICKET", "CALL_TICKET"]


async def test_call_next_is_fifo(coord):
    first = await coord.create_ticket(3)
    second = await coord.create_ticket(3)

    assert (await coord.call_next(3, 1)).id == first.id
    assert (await coord.call_next(3, 2)).id == second.id
    with pytest.raises(TicketNotFoundError):
        await coord.call_next(3, 1)


async def test_recall_tracks_latest_call_per_counter(coord, board):
    a = await coord.create_ticket(1)
    b = await coord.create_ticket(1)
    await coord.call_ticket(a.id, 1)
    await coord.call_ticket(b.id, 1)
    await coord.call_ticket(a.id, 2)

    assert (await coord.recall(1)).id == b.id
    assert (await coord.recall(2)).id == a.id
    assert set((await board.snapshot()).keys()) == {1, 2}


async def test_reset_announces_and_clears_call_board(coord, hub, subscribers):
    t = await coord.create_ticket(1)
    await coord.call_ticket(t.id, 4)
    await seen(hub, subscribers)

    assert await coord.reset_queue() == 1
    for inbox in await seen(hub, subscribers):
        assert inbox == [{"type": "RESET_QUEUE"}]
    with pytest.raises(NoRecallError):
        await coord.recall(4)

    # Second reset: nothing to delete, still not an error
    assert await coord.reset_queue() == 0
    assert (await coord.tickets.stats())["total"] == 0


async def test_update_display_settings_announces(coord, hub, subscribers):
    display = await coord.update_display_settings(
        video_url="https://cdn.example/clip.mp4",
        title="Jadwal Lab",
        subtitle="Senin - Jumat",
    )
    assert display.title == "Jadwal Lab"
    for inbox in await seen(hub, subscribers):
        assert inbox == [{
            "type": "UPDATE_VIDEO",
            "data": {
                "video_url": "https://cdn.example/clip.mp4",
                "title": "Jadwal Lab",
                "subtitle": "Senin - Jumat",
            },
        }]


async def test_dropped_subscriber_does_not_fail_the_request(coord, hub, subscribers):
    subscribers[1].close()
    ticket = await coord.create_ticket(1)
    assert ticket.formatted_code == "A-001"

    inboxes = await seen(hub, subscribers)
    assert len(inboxes[0]) == 1 and len(inboxes[2]) == 1
    assert not hub.is_registered(subscribers[1])


async def test_call_board_is_independent_per_counter():
    board = CallBoard()
    assert await board.last_called(1) is None
    await board.clear()
    assert await board.snapshot() == {}
