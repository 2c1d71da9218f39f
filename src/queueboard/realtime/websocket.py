"""WebSocket endpoint — real-time event delivery to display boards.

Learn: Each client connects to /ws. The handler:
1. Registers a Subscriber with the hub, then accepts the socket
2. Runs three concurrent tasks:
   - writer:    outbox → send_text (each send has a deadline)
   - reader:    receive_text; any traffic proves the peer is alive,
                {"type": "PING"} is answered with {"type": "PONG"}
   - heartbeat: for clients that have sent a PING, sends {"type": "PING"}
                every interval and gives up when the peer has been silent
                longer than the timeout
3. When any task finishes, the others are cancelled, the subscriber is
   unregistered and the socket closed.

Display boards usually only listen. They never send a frame, so silence
proves nothing about them. Their liveness comes from protocol-level ping
frames, which browsers answer on their own (uvicorn sends them, see
`queueboard serve`). The app-level heartbeat is opt-in: a client that sends
PING is expected to keep talking.

Only the writer ever sends, so replies and heartbeats go through the outbox
too. A half-open socket shows up as a send deadline, a full outbox or a
heartbeat timeout. Each of them ends in the same cleanup.
"""

import asyncio
import json

import structlog
from fastapi import APIRouter, WebSocket, WebSocketDisconnect
from starlette.websockets import WebSocketState

from queueboard.config import settings
from queueboard.realtime.hub import BroadcastHub, Subscriber

logger = structlog.get_logger()
router = APIRouter()

PING_MESSAGE = json.dumps({"type": "PING"})
PONG_MESSAGE = json.dumps({"type": "PONG"})


async def _writer(websocket: WebSocket, subscriber: Subscriber) -> None:
    """Forward outbox messages to the WebSocket client."""
    while True:
        message = await subscriber.next_message()
        if message is None:
            return
        await asyncio.wait_for(
            websocket.send_text(message), timeout=settings.ws_send_timeout
        )


async def _reader(websocket: WebSocket, subscriber: Subscriber) -> None:
    """Read client traffic. Keeps liveness detection fed."""
    while True:
        data = await websocket.receive_text()
        subscriber.touch()
        try:
            msg = json.loads(data)
        except json.JSONDecodeError:
            continue
        if isinstance(msg, dict) and msg.get("type") == "PING":
            subscriber.heartbeat = True
            if not subscriber.offer(PONG_MESSAGE):
                return


async def _heartbeat(subscriber: Subscriber) -> None:
    """Ping clients that opted in; return when the peer stops answering."""
    while True:
        await asyncio.sleep(settings.ws_heartbeat_interval)
        if not subscriber.heartbeat:
            continue
        if subscriber.idle_for() > settings.ws_heartbeat_timeout:
            logger.info("ws.heartbeat_timeout", subscriber=subscriber.id)
            return
        if not subscriber.offer(PING_MESSAGE):
            return


async def _guarded(name: str, subscriber: Subscriber, coro) -> None:
    try:
        await coro
    except WebSocketDisconnect:
        logger.info("ws.disconnected", subscriber=subscriber.id, side=name)
    except (asyncio.TimeoutError, RuntimeError, OSError) as e:
        logger.warning("ws.connection_error", subscriber=subscriber.id, side=name, error=repr(e))


@router.websocket("/ws")
async def queue_websocket(websocket: WebSocket):
    """WebSocket endpoint for queue events (NEW_TICKET, CALL_TICKET, ...)."""
    hub: BroadcastHub = websocket.app.state.hub
    client = websocket.client
    subscriber = Subscriber(
        outbox_size=settings.ws_outbox_size,
        label=f"{client.host}:{client.port}" if client else "",
    )

    # Register before accept: once the client sees the handshake complete,
    # it is guaranteed to receive every event published afterwards.
    await hub.register(subscriber)
    try:
        await websocket.accept()

        tasks = [
            asyncio.create_task(_guarded("writer", subscriber, _writer(websocket, subscriber))),
            asyncio.create_task(_guarded("reader", subscriber, _reader(websocket, subscriber))),
            asyncio.create_task(_guarded("heartbeat", subscriber, _heartbeat(subscriber))),
        ]
        # Wait for either side to finish (usually client disconnect)
        done, pending = await asyncio.wait(tasks, return_when=asyncio.FIRST_COMPLETED)
        for task in pending:
            task.cancel()
        await asyncio.gather(*pending, return_exceptions=True)
    finally:
        await hub.unregister(subscriber)
        if websocket.client_state == WebSocketState.CONNECTED:
            try:
                await websocket.close()
            except RuntimeError:
                pass
