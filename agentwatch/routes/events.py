#  Agent Watch - SSE Event Routes
#
#  Server-Sent Events stream of pipeline events (activities, changes,
#  task transitions, monitoring lifecycle).
#
#  Depends on: container.py, services/event_bus.py
#  Used by:    app.py

from dependency_injector.wiring import inject, Provide
from fastapi import APIRouter, Depends
from fastapi.responses import StreamingResponse

from agentwatch.container import Container
from agentwatch.services.event_bus import PipelineEventBus

router = APIRouter(prefix="/events", tags=["events"])


@router.get("/stream")
@inject
async def stream_events(
    types: str | None = None,
    event_bus: PipelineEventBus = Depends(Provide[Container.event_bus]),
):
    """SSE stream; `types` is an optional comma-separated event type filter."""
    event_types = {t.strip() for t in types.split(",") if t.strip()} if types else None
    return StreamingResponse(
        event_bus.subscribe(event_types),
        media_type="text/event-stream",
        headers={
            "Cache-Control": "no-cache",
            "Connection": "keep-alive",
            "X-Accel-Buffering": "no",
        },
    )
