"""Real-time infrastructure — in-process broadcast hub + WebSocket.

Learn: Events flow through two hops:
1. Coordinator → BroadcastHub.publish (fire-and-forget, never blocks a request)
2. Hub loop → each subscriber's bounded outbox → WebSocket writer task

The hub owns the set of connected display boards and admin consoles.
Nothing else touches that set; everything goes through its command queue.
"""
