#  Agent Watch - Monitoring Session Routes
#
#  Start, list and stop filesystem monitoring sessions.
#
#  Depends on: container.py, models/schemas.py, services/change_analyzer.py
#  Used by:    app.py

from dependency_injector.wiring import inject, Provide
from fastapi import APIRouter, Depends

from agentwatch.container import Container
from agentwatch.models.schemas import MonitoringCreate, MonitoringSessionOut
from agentwatch.services.change_analyzer import ChangeAnalyzer

router = APIRouter(prefix="/monitoring", tags=["monitoring"])


@router.post("", status_code=201)
@inject
async def setup_monitoring(
    body: MonitoringCreate,
    analyzer: ChangeAnalyzer = Depends(Provide[Container.analyzer]),
) -> MonitoringSessionOut:
    session_id = await analyzer.setup_monitoring(
        body.project_path,
        body.watch_patterns,
        notification_config=body.notifications,
        thresholds=body.thresholds,
    )
    return MonitoringSessionOut(**await analyzer.get_monitoring_session(session_id))


@router.get("")
@inject
async def list_sessions(
    status: str | None = None,
    analyzer: ChangeAnalyzer = Depends(Provide[Container.analyzer]),
) -> list[MonitoringSessionOut]:
    return [MonitoringSessionOut(**s) for s in await analyzer.get_monitoring_status(status)]


@router.get("/{session_id}")
@inject
async def get_session(
    session_id: str,
    analyzer: ChangeAnalyzer = Depends(Provide[Container.analyzer]),
) -> MonitoringSessionOut:
    return MonitoringSessionOut(**await analyzer.get_monitoring_session(session_id))


@router.delete("/{session_id}")
@inject
async def stop_monitoring(
    session_id: str,
    analyzer: ChangeAnalyzer = Depends(Provide[Container.analyzer]),
) -> MonitoringSessionOut:
    """Stop watching. Stopping an already-stopped session is a no-op."""
    return MonitoringSessionOut(**await analyzer.stop_monitoring(session_id))
