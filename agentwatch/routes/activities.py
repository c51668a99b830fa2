#  Agent Watch - Activity Routes
#
#  Activity intake and the ledger read side: activity listing, active
#  agents, metric aggregates and the dashboard snapshot.
#
#  Depends on: container.py, models/schemas.py, services/ledger.py, rate_limit.py
#  Used by:    app.py

from dependency_injector.wiring import inject, Provide
from fastapi import APIRouter, Depends, Query, Request

from agentwatch.container import Container
from agentwatch.models.schemas import ActiveAgentOut, ActivityCreate, ActivityOut, MetricAggregateOut
from agentwatch.rate_limit import limiter
from agentwatch.services.ledger import ActivityLedger

router = APIRouter(prefix="/activities", tags=["activities"])


@router.post("", status_code=201)
@limiter.limit("600/minute")
@inject
async def record_activity(
    request: Request,
    body: ActivityCreate,
    ledger: ActivityLedger = Depends(Provide[Container.ledger]),
) -> ActivityOut:
    """Record one agent activity and its derived metric samples."""
    record = await ledger.record_activity(
        body.agent_id,
        body.activity,
        metadata=body.metadata,
        duration=body.duration,
        project_path=body.project_path,
        tags=body.tags,
        timestamp=body.timestamp,
    )
    return ActivityOut(**record)


@router.get("")
@inject
async def list_activities(
    agent_id: str | None = None,
    project_path: str | None = None,
    since: float | None = None,
    until: float | None = None,
    limit: int = Query(100, ge=1, le=1000),
    offset: int = Query(0, ge=0),
    ledger: ActivityLedger = Depends(Provide[Container.ledger]),
) -> list[ActivityOut]:
    rows = await ledger.list_activities(agent_id, project_path, since, until, limit, offset)
    return [ActivityOut(**r) for r in rows]


@router.get("/agents/active")
@inject
async def active_agents(
    ledger: ActivityLedger = Depends(Provide[Container.ledger]),
) -> list[ActiveAgentOut]:
    """Agents seen in the recent window, flagged active within the active window."""
    return [ActiveAgentOut(**a) for a in await ledger.get_active_agents()]


@router.get("/metrics")
@inject
async def metrics(
    agent_id: str | None = None,
    metric: str = "all",
    timeframe: str = "last_day",
    ledger: ActivityLedger = Depends(Provide[Container.ledger]),
) -> list[MetricAggregateOut]:
    rows = await ledger.get_metrics(agent_id, metric, timeframe)
    return [MetricAggregateOut(**r) for r in rows]


@router.get("/dashboard")
@inject
async def dashboard(
    ledger: ActivityLedger = Depends(Provide[Container.ledger]),
):
    return await ledger.get_dashboard()
