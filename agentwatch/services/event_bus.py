#  Agent Watch - Pipeline Event Bus
#
#  Fan-out of normalized pipeline events. The ledger and the change analyzer
#  publish; registered handlers (the alerting engine) and SSE subscribers
#  receive every event.
#
#  Depends on: (none)
#  Used by:    container.py, routes/events.py, services/ledger.py,
#              services/change_analyzer.py, services/alerting.py

import asyncio
import json
import logging
import time
from collections.abc import Awaitable, Callable

logger = logging.getLogger("agentwatch.events")

EventHandler = Callable[[dict], Awaitable[object]]


def make_event(
    event_type: str,
    message: str = "",
    project_path: str | None = None,
    agent_id: str | None = None,
    priority: str = "medium",
    metadata: dict | None = None,
) -> dict:
    """Build a pipeline event dict in the shape every consumer expects."""
    return {
        "type": event_type,
        "message": message,
        "projectPath": project_path,
        "agentId": agent_id,
        "priority": priority,
        "metadata": dict(metadata or {}),
        "timestamp": time.time(),
    }


class PipelineEventBus:
    """Broadcasts pipeline events to handlers and SSE subscribers.

    Handlers are awaited in registration order. A failing handler is logged
    and skipped so one consumer cannot starve the others or the producer.
    Subscriber queues are bounded; events for a slow subscriber are dropped.
    """

    def __init__(self):
        self._handlers: list[EventHandler] = []
        self._subscribers: list[asyncio.Queue] = []

    def register(self, handler: EventHandler):
        self._handlers.append(handler)

    def unregister(self, handler: EventHandler):
        if handler in self._handlers:
            self._handlers.remove(handler)

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    async def publish(self, event: dict):
        for handler in list(self._handlers):
            try:
                await handler(event)
            except Exception:
                logger.exception("Event handler failed for %s", event.get("type"))

        for queue in self._subscribers:
            try:
                queue.put_nowait(event)
            except asyncio.QueueFull:
                pass  # Drop if subscriber is slow

    async def subscribe(self, event_types: set[str] | None = None, keepalive: float = 30.0):
        """Yield SSE-formatted strings. Used by the events endpoint."""
        queue: asyncio.Queue = asyncio.Queue(maxsize=100)
        self._subscribers.append(queue)
        try:
            while True:
                try:
                    event = await asyncio.wait_for(queue.get(), timeout=keepalive)
                    if event_types and event.get("type") not in event_types:
                        continue
                    yield f"event: {event['type']}\ndata: {json.dumps(event, default=str)}\n\n"
                except asyncio.TimeoutError:
                    yield ": keepalive\n\n"
        finally:
            if queue in self._subscribers:
                self._subscribers.remove(queue)
