#  Agent Watch - Task Plan Routes
#
#  Task plan creation, listing and status transitions.
#  Terminal tasks reject further updates (409 via InvalidStateError).
#
#  Depends on: container.py, models/schemas.py, services/ledger.py
#  Used by:    app.py

from dependency_injector.wiring import inject, Provide
from fastapi import APIRouter, Depends, Query

from agentwatch.container import Container
from agentwatch.models.schemas import TaskCreate, TaskOut, TaskStatusUpdate
from agentwatch.services.ledger import ActivityLedger

router = APIRouter(prefix="/tasks", tags=["tasks"])


@router.post("", status_code=201)
@inject
async def create_task(
    body: TaskCreate,
    ledger: ActivityLedger = Depends(Provide[Container.ledger]),
) -> TaskOut:
    task = await ledger.create_task(
        body.description,
        priority=body.priority,
        estimated_duration=body.estimated_duration,
        dependencies=body.dependencies,
        assigned_agent=body.assigned_agent,
        milestones=body.milestones,
    )
    return TaskOut(**task)


@router.get("")
@inject
async def list_tasks(
    status: str | None = None,
    assigned_agent: str | None = None,
    limit: int = Query(100, ge=1, le=1000),
    offset: int = Query(0, ge=0),
    ledger: ActivityLedger = Depends(Provide[Container.ledger]),
) -> list[TaskOut]:
    rows = await ledger.list_tasks(status, assigned_agent, limit, offset)
    return [TaskOut(**r) for r in rows]


@router.get("/active")
@inject
async def active_tasks(
    ledger: ActivityLedger = Depends(Provide[Container.ledger]),
) -> list[TaskOut]:
    """Non-terminal tasks, highest priority first, then oldest first."""
    return [TaskOut(**r) for r in await ledger.get_active_tasks()]


@router.get("/{task_id}")
@inject
async def get_task(
    task_id: str,
    ledger: ActivityLedger = Depends(Provide[Container.ledger]),
) -> TaskOut:
    return TaskOut(**await ledger.get_task(task_id))


@router.patch("/{task_id}/status")
@inject
async def update_task_status(
    task_id: str,
    body: TaskStatusUpdate,
    ledger: ActivityLedger = Depends(Provide[Container.ledger]),
) -> TaskOut:
    task = await ledger.update_task_status(
        task_id,
        body.status,
        progress=body.progress,
        notes=body.notes,
        blockers=body.blockers,
        completed_milestones=body.completed_milestones,
    )
    return TaskOut(**task)
