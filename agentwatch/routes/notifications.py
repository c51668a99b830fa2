#  Agent Watch - Notification Routes
#
#  Channels, rules, alert templates, manual alerts and delivery history.
#
#  Depends on: container.py, models/schemas.py, services/alerting.py
#  Used by:    app.py

from dependency_injector.wiring import inject, Provide
from fastapi import APIRouter, Depends, Query

from agentwatch.container import Container
from agentwatch.models.schemas import (
    ActionResultOut,
    AlertCreate,
    AlertTemplateCreate,
    AlertTemplateOut,
    ChannelCreate,
    ChannelOut,
    ChannelUpdate,
    DispatchResultOut,
    RuleCreate,
    RuleOut,
    RuleUpdate,
    SentNotificationOut,
)
from agentwatch.services.alerting import AlertingEngine

router = APIRouter(prefix="/notifications", tags=["notifications"])


# ---------------------------------------------------------------------------
# Channels
# ---------------------------------------------------------------------------

@router.post("/channels", status_code=201)
@inject
async def add_channel(
    body: ChannelCreate,
    alerting: AlertingEngine = Depends(Provide[Container.alerting]),
) -> ChannelOut:
    channel_id = await alerting.add_channel(body.name, body.type, body.configuration, body.enabled)
    return ChannelOut(**await alerting.get_channel(channel_id))


@router.get("/channels")
@inject
async def list_channels(
    alerting: AlertingEngine = Depends(Provide[Container.alerting]),
) -> list[ChannelOut]:
    return [ChannelOut(**c) for c in await alerting.list_channels()]


@router.get("/channels/stats")
@inject
async def channel_stats(
    alerting: AlertingEngine = Depends(Provide[Container.alerting]),
):
    return await alerting.get_channel_stats()


@router.patch("/channels/{channel_id}")
@inject
async def update_channel(
    channel_id: str,
    body: ChannelUpdate,
    alerting: AlertingEngine = Depends(Provide[Container.alerting]),
) -> ChannelOut:
    channel = await alerting.update_channel(channel_id, body.name, body.configuration, body.enabled)
    return ChannelOut(**channel)


@router.post("/channels/{channel_id}/test")
@inject
async def test_channel(
    channel_id: str,
    alerting: AlertingEngine = Depends(Provide[Container.alerting]),
) -> ActionResultOut:
    """Send a synthetic low-priority test notification through one channel."""
    return ActionResultOut(**await alerting.test_channel(channel_id))


# ---------------------------------------------------------------------------
# Rules
# ---------------------------------------------------------------------------

@router.post("/rules", status_code=201)
@inject
async def add_rule(
    body: RuleCreate,
    alerting: AlertingEngine = Depends(Provide[Container.alerting]),
) -> RuleOut:
    rule_id = await alerting.add_rule(
        body.name, body.description, body.conditions, body.actions, body.priority, body.enabled,
    )
    return RuleOut(**await alerting.get_rule(rule_id))


@router.get("/rules")
@inject
async def list_rules(
    enabled_only: bool = False,
    alerting: AlertingEngine = Depends(Provide[Container.alerting]),
) -> list[RuleOut]:
    return [RuleOut(**r) for r in await alerting.list_rules(enabled_only)]


@router.patch("/rules/{rule_id}")
@inject
async def update_rule(
    rule_id: str,
    body: RuleUpdate,
    alerting: AlertingEngine = Depends(Provide[Container.alerting]),
) -> RuleOut:
    return RuleOut(**await alerting.update_rule(rule_id, **body.model_dump(exclude_none=True)))


@router.delete("/rules/{rule_id}", status_code=204)
@inject
async def delete_rule(
    rule_id: str,
    alerting: AlertingEngine = Depends(Provide[Container.alerting]),
):
    await alerting.delete_rule(rule_id)


# ---------------------------------------------------------------------------
# Templates
# ---------------------------------------------------------------------------

@router.post("/templates", status_code=201)
@inject
async def create_template(
    body: AlertTemplateCreate,
    alerting: AlertingEngine = Depends(Provide[Container.alerting]),
) -> AlertTemplateOut:
    template_id = await alerting.create_template(
        body.name, body.subject_template, body.body_template, body.format, body.variables,
    )
    return AlertTemplateOut(**await alerting.get_template(template_id))


@router.get("/templates")
@inject
async def list_templates(
    alerting: AlertingEngine = Depends(Provide[Container.alerting]),
) -> list[AlertTemplateOut]:
    return [AlertTemplateOut(**t) for t in await alerting.list_templates()]


# ---------------------------------------------------------------------------
# Alerts & history
# ---------------------------------------------------------------------------

@router.post("/alerts")
@inject
async def send_alert(
    body: AlertCreate,
    alerting: AlertingEngine = Depends(Provide[Container.alerting]),
) -> DispatchResultOut:
    """Evaluate all enabled rules against a manually submitted event."""
    result = await alerting.send_alert(
        body.type,
        project_path=body.project_path,
        agent_id=body.agent_id,
        message=body.message,
        metadata=body.metadata,
        priority=body.priority,
    )
    return DispatchResultOut(**result)


@router.get("/history")
@inject
async def notification_history(
    limit: int = Query(50, ge=1, le=500),
    channel_id: str | None = None,
    alerting: AlertingEngine = Depends(Provide[Container.alerting]),
) -> list[SentNotificationOut]:
    return [SentNotificationOut(**n) for n in await alerting.get_notification_history(limit, channel_id)]
