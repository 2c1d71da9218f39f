"""Broadcast hub — fan-out of queue events to connected subscribers.

Learn: The hub is a tiny actor. One background task (the hub loop) owns
the membership set and handles commands one at a time, in arrival order:

  register(sub)    → add to the set          (caller waits for the ack)
  unregister(sub)  → remove + close          (caller waits, idempotent)
  publish(event)   → offer to every outbox   (caller never waits)

Because only the loop mutates membership there is no lock, and the order
of operations is exactly the order they were queued.

Delivery is best-effort. Each subscriber has a bounded outbox; if it is
full (a slow or half-open client) the subscriber is dropped on the spot
rather than retried. A new subscriber sees only events published after
its registration — there is no backlog.
"""

import asyncio
import time
import uuid
from dataclasses import dataclass
from typing import Optional

import structlog

from queueboard.config import settings
from queueboard.events.types import BroadcastEvent

logger = structlog.get_logger()


class Subscriber:
    """One connected real-time client, seen from the hub's side."""

    def __init__(self, outbox_size: Optional[int] = None, label: str = ""):
        self.id = uuid.uuid4().hex[:12]
        self.label = label
        # None in the outbox is the "you're done" sentinel for the writer.
        self.outbox: asyncio.Queue[Optional[str]] = asyncio.Queue(
            maxsize=outbox_size or settings.ws_outbox_size
        )
        self.closed = False
        self.last_seen = time.monotonic()
        # Set once the client sends its own PING; only those clients are
        # held to the app-level heartbeat.
        self.heartbeat = False

    def offer(self, message: str) -> bool:
        """Queue a message without waiting. False if closed or full."""
        if self.closed:
            return False
        try:
            self.outbox.put_nowait(message)
        except asyncio.QueueFull:
            return False
        return True

    async def next_message(self) -> Optional[str]:
        """Next outbound message, or None once the subscriber is closed."""
        return await self.outbox.get()

    def touch(self) -> None:
        self.last_seen = time.monotonic()

    def idle_for(self) -> float:
        return time.monotonic() - self.last_seen

    def close(self) -> None:
        """Discard pending messages and wake the writer. Safe to repeat."""
        if self.closed:
            return
        self.closed = True
        while not self.outbox.empty():
            self.outbox.get_nowait()
        self.outbox.put_nowait(None)

    def __repr__(self) -> str:
        return f"<Subscriber {self.id} {self.label}>"


@dataclass
class _Command:
    op: str  # register, unregister, publish
    subscriber: Optional[Subscriber] = None
    event: Optional[BroadcastEvent] = None
    done: Optional[asyncio.Future] = None


class BroadcastHub:
    """In-memory pub/sub registry serviced by a single consumer task."""

    def __init__(self):
        self._subscribers: set[Subscriber] = set()
        self._commands: Optional[asyncio.Queue[_Command]] = None
        self._task: Optional[asyncio.Task] = None

    # ─── Lifecycle ───────────────────────────────────────

    def start(self) -> None:
        """Start the hub loop on the running event loop."""
        if self.running:
            return
        self._commands = asyncio.Queue()
        self._task = asyncio.create_task(self._run(), name="broadcast-hub")
        logger.info("hub.started")

    async def stop(self) -> None:
        """Cancel the loop and close every subscriber."""
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None

        # Fail anyone still waiting on a register/unregister ack.
        while self._commands is not None and not self._commands.empty():
            command = self._commands.get_nowait()
            if command.done is not None and not command.done.done():
                command.done.cancel()

        for subscriber in self._subscribers:
            subscriber.close()
        count = len(self._subscribers)
        self._subscribers.clear()
        logger.info("hub.stopped", closed_subscribers=count)

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    def is_registered(self, subscriber: Subscriber) -> bool:
        return subscriber in self._subscribers

    # ─── Commands ────────────────────────────────────────

    async def register(self, subscriber: Subscriber) -> None:
        """Admit a subscriber. Returns once the hub loop has added it."""
        if not self.running:
            raise RuntimeError("Broadcast hub not running. Call start() first.")
        await self._submit(_Command("register", subscriber=subscriber))

    async def unregister(self, subscriber: Subscriber) -> None:
        """Remove and close a subscriber. Calling it twice is harmless."""
        if not self.running:
            subscriber.close()
            return
        await self._submit(_Command("unregister", subscriber=subscriber))

    def publish(self, event: BroadcastEvent) -> None:
        """Queue an event for fan-out. Never blocks, never raises on delivery."""
        if not self.running:
            logger.warning("hub.publish_dropped", event_type=event.type, reason="not running")
            return
        self._commands.put_nowait(_Command("publish", event=event))

    async def drain(self) -> None:
        """Wait until every queued command has been handled."""
        if self.running:
            await self._commands.join()

    async def _submit(self, command: _Command) -> None:
        command.done = asyncio.get_running_loop().create_future()
        self._commands.put_nowait(command)
        await command.done

    # ─── Hub loop ────────────────────────────────────────

    async def _run(self) -> None:
        while True:
            command = await self._commands.get()
            try:
                self._apply(command)
            except Exception:
                logger.exception("hub.command_failed", op=command.op)
            finally:
                if command.done is not None and not command.done.done():
                    command.done.set_result(None)
                self._commands.task_done()

    def _apply(self, command: _Command) -> None:
        if command.op == "register":
            self._subscribers.add(command.subscriber)
            logger.info(
                "hub.subscriber_registered",
                subscriber=command.subscriber.id,
                label=command.subscriber.label,
                total=len(self._subscribers),
            )
        elif command.op == "unregister":
            self._drop(command.subscriber, reason="unregistered")
        elif command.op == "publish":
            self._fan_out(command.event)
        else:
            raise ValueError(f"Unknown hub command: {command.op}")

    def _fan_out(self, event: BroadcastEvent) -> None:
        message = event.to_json()
        delivered = 0
        for subscriber in list(self._subscribers):
            if subscriber.offer(message):
                delivered += 1
            else:
                self._drop(subscriber, reason="outbox full or closed")
        logger.debug("hub.published", event_type=event.type, delivered=delivered)

    def _drop(self, subscriber: Subscriber, reason: str) -> None:
        was_member = subscriber in self._subscribers
        self._subscribers.discard(subscriber)
        subscriber.close()
        if was_member:
            logger.info(
                "hub.subscriber_dropped",
                subscriber=subscriber.id,
                reason=reason,
                total=len(self._subscribers),
            )
