#  Agent Watch - Health Routes
#
#  Liveness/readiness probe: store reachability plus live watcher and
#  stream subscriber counts.
#
#  Depends on: container.py
#  Used by:    app.py

from dependency_injector.wiring import inject, Provide
from fastapi import APIRouter, Depends

from agentwatch.container import Container
from agentwatch.db.connection import Database
from agentwatch.services.event_bus import PipelineEventBus
from agentwatch.services.watcher import WatcherRegistry

router = APIRouter(tags=["health"])


@router.get("/health")
@inject
async def health(
    db: Database = Depends(Provide[Container.db]),
    registry: WatcherRegistry = Depends(Provide[Container.watcher_registry]),
    event_bus: PipelineEventBus = Depends(Provide[Container.event_bus]),
):
    """Public health check (no side effects)."""
    await db.fetchone("SELECT 1")
    return {
        "status": "ok",
        "watchers": len(registry.live_sessions()),
        "subscribers": event_bus.subscriber_count,
    }
