#  Agent Watch - Change Routes
#
#  Change-batch intake, change history, per-change impact analysis,
#  aggregate stats and ad-hoc impact analysis of proposed changes.
#
#  Depends on: container.py, models/schemas.py, services/change_analyzer.py, rate_limit.py
#  Used by:    app.py

from dependency_injector.wiring import inject, Provide
from fastapi import APIRouter, Depends, Query, Request

from agentwatch.container import Container
from agentwatch.models.schemas import AnalyzeRequest, ChangeBatch, ChangeOut
from agentwatch.rate_limit import limiter
from agentwatch.services.change_analyzer import ChangeAnalyzer

router = APIRouter(prefix="/changes", tags=["changes"])


@router.post("", status_code=201)
@limiter.limit("300/minute")
@inject
async def track_changes(
    request: Request,
    body: ChangeBatch,
    analyzer: ChangeAnalyzer = Depends(Provide[Container.analyzer]),
) -> list[ChangeOut]:
    """Record one change per file; high/critical changes get an impact analysis."""
    records = await analyzer.track_changes(
        body.project_path,
        body.change_type,
        body.files,
        impact=body.impact,
        agent_id=body.agent_id,
        git_commit=body.git_commit,
        reason=body.reason,
    )
    return [ChangeOut(**r) for r in records]


@router.get("")
@inject
async def list_changes(
    project_path: str | None = None,
    agent_id: str | None = None,
    change_type: str | None = None,
    impact_level: str | None = None,
    since: float | None = None,
    until: float | None = None,
    limit: int = Query(100, ge=1, le=1000),
    offset: int = Query(0, ge=0),
    analyzer: ChangeAnalyzer = Depends(Provide[Container.analyzer]),
) -> list[ChangeOut]:
    rows = await analyzer.list_changes(
        project_path, agent_id, change_type, impact_level, since, until, limit, offset,
    )
    return [ChangeOut(**r) for r in rows]


@router.get("/stats/summary")
@inject
async def change_stats(
    period: str = "last_day",
    group_by: str = "type",
    analyzer: ChangeAnalyzer = Depends(Provide[Container.analyzer]),
):
    return await analyzer.get_change_stats(period, group_by)


@router.post("/analyze")
@inject
async def analyze_impact(
    body: AnalyzeRequest,
    analyzer: ChangeAnalyzer = Depends(Provide[Container.analyzer]),
):
    """Analyze proposed changes without recording them."""
    return await analyzer.analyze_impact(body.changes, body.project_path, body.analysis_type)


@router.get("/{change_id}")
@inject
async def get_change(
    change_id: str,
    analyzer: ChangeAnalyzer = Depends(Provide[Container.analyzer]),
) -> ChangeOut:
    return ChangeOut(**await analyzer.get_change(change_id))
