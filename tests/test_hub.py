"""Broadcast hub tests — membership, fan-out, dropping dead subscribers.

Learn: The hub is exercised with bare Subscriber objects, no sockets. A
"dead" subscriber is one whose connection already closed (closed=True) or
whose outbox is full because nobody is reading it.
"""

import asyncio
import json

import pytest

from conftest import drain_outbox
from queueboard.events.types import CALL_TICKET, NEW_TICKET, RESET_QUEUE, BroadcastEvent
from queueboard.realtime.hub import BroadcastHub, Subscriber


def event(event_type: str = NEW_TICKET, code: str = "A-001") -> BroadcastEvent:
    return BroadcastEvent(type=event_type, data={"formatted_code": code})


async def test_register_and_unregister(hub):
    sub = Subscriber(outbox_size=4)
    await hub.register(sub)
    assert hub.subscriber_count == 1
    assert hub.is_registered(sub)

    await hub.unregister(sub)
    assert hub.subscriber_count == 0
    assert sub.closed


async def test_unregister_is_idempotent(hub):
    sub = Subscriber(outbox_size=4)
    await hub.register(sub)
    await hub.unregister(sub)
    await hub.unregister(sub)
    assert hub.subscriber_count == 0

    # Never-registered subscribers are fine too
    await hub.unregister(Subscriber(outbox_size=4))


async def test_publish_reaches_every_subscriber(hub, subscribers):
    hub.publish(event())
    await hub.drain()

    for sub in subscribers:
        messages = drain_outbox(sub)
        assert len(messages) == 1
        assert json.loads(messages[0]) == {
            "type": "NEW_TICKET",
            "data": {"formatted_code": "A-001"},
        }


async def test_publish_does_not_wait_for_delivery(hub, subscribers):
    """publish() returns before the hub loop has touched any outbox."""
    hub.publish(event())
    assert all(sub.outbox.empty() for sub in subscribers)
    await hub.drain()
    assert all(sub.outbox.qsize() == 1 for sub in subscribers)


async def test_dead_subscriber_is_dropped_others_still_receive(hub, subscribers):
    dead, *alive = subscribers
    dead.close()  # connection went away between register and publish

    hub.publish(event(CALL_TICKET))
    await hub.drain()

    assert not hub.is_registered(dead)
    assert hub.subscriber_count == len(alive)
    for sub in alive:
        assert [json.loads(m)["type"] for m in drain_outbox(sub)] == ["CALL_TICKET"]


async def test_slow_subscriber_dropped_on_full_outbox(hub):
    slow = Subscriber(outbox_size=2)
    fast = Subscriber(outbox_size=16)
    await hub.register(slow)
    await hub.register(fast)

    for i in range(3):
        hub.publish(event(code=f"A-00{i + 1}"))
    await hub.drain()

    assert not hub.is_registered(slow)
    assert slow.closed
    assert await slow.next_message() is None  # writer is told to stop
    assert hub.is_registered(fast)
    assert len(drain_outbox(fast)) == 3


async def test_events_arrive_in_publish_order(hub, subscribers):
    hub.publish(event(NEW_TICKET, "A-001"))
    hub.publish(event(CALL_TICKET, "A-001"))
    hub.publish(BroadcastEvent(type=RESET_QUEUE))
    await hub.drain()

    messages = [json.loads(m) for m in drain_outbox(subscribers[0])]
    assert [m["type"] for m in messages] == ["NEW_TICKET", "CALL_TICKET", "RESET_QUEUE"]
    assert "data" not in messages[2]


async def test_late_joiner_gets_no_backlog(hub, subscribers):
    hub.publish(event(code="A-001"))
    await hub.drain()

    late = Subscriber(outbox_size=4)
    await hub.register(late)
    assert late.outbox.empty()

    hub.publish(event(code="A-002"))
    await hub.drain()
    assert [json.loads(m)["data"]["formatted_code"] for m in drain_outbox(late)] == ["A-002"]


async def test_concurrent_registration_and_publish(hub):
    subs = [Subscriber(outbox_size=64) for _ in range(20)]
    await asyncio.gather(*(hub.register(s) for s in subs))
    for i in range(10):
        hub.publish(event(code=f"B-{i:03d}"))
    await asyncio.gather(*(hub.unregister(s) for s in subs[:5]))
    await hub.drain()

    assert hub.subscriber_count == 15
    assert all(s.outbox.qsize() == 10 for s in subs[5:])


async def test_register_requires_running_hub():
    hub = BroadcastHub()
    with pytest.raises(RuntimeError):
        await hub.register(Subscriber(outbox_size=4))


async def test_publish_on_stopped_hub_is_dropped():
    hub = BroadcastHub()
    hub.publish(event())  # no loop, nothing to deliver to — must not raise
    assert hub.subscriber_count == 0


async def test_stop_closes_all_subscribers():
    hub = BroadcastHub()
    hub.start()
    subs = [Subscriber(outbox_size=4) for _ in range(3)]
    for sub in subs:
        await hub.register(sub)

    await hub.stop()
    assert not hub.running
    assert hub.subscriber_count == 0
    for sub in subs:
        assert sub.closed
        assert await sub.next_message() is None


def test_subscriber_close_is_repeatable():
    async def scenario():
        sub = Subscriber(outbox_size=1)
        assert sub.offer("x")
        assert not sub.offer("y")  # full
        sub.close()
        sub.close()
        assert not sub.offer("z")
        return await sub.next_message()

    assert asyncio.run(scenario()) is None
