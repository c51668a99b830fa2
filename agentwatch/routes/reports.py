#  Agent Watch - Report Routes
#
#  Report generation and retrieval, report templates and their rendering.
#
#  Depends on: container.py, models/schemas.py, services/reports.py, rate_limit.py
#  Used by:    app.py

from dependency_injector.wiring import inject, Provide
from fastapi import APIRouter, Depends, Query, Request

from agentwatch.container import Container
from agentwatch.models.schemas import (
    RenderedContentOut,
    ReportCreate,
    ReportOut,
    ReportTemplateCreate,
    ReportTemplateOut,
    TemplateRenderRequest,
)
from agentwatch.rate_limit import limiter
from agentwatch.services.reports import ReportCompiler

router = APIRouter(prefix="/reports", tags=["reports"])


@router.post("", status_code=201)
@limiter.limit("10/minute")
@inject
async def generate_report(
    request: Request,
    body: ReportCreate,
    reports: ReportCompiler = Depends(Provide[Container.reports]),
) -> ReportOut:
    """Compile a report for a window and write its artifact."""
    custom_window = None
    if body.window_start is not None or body.window_end is not None:
        custom_window = (body.window_start, body.window_end)
    report = await reports.generate_report(
        project_path=body.project_path,
        timeframe=body.timeframe,
        format=body.format,
        include_metrics=body.include_metrics,
        custom_window=custom_window,
        report_type=body.report_type,
    )
    return ReportOut(**report)


@router.get("")
@inject
async def list_reports(
    limit: int = Query(10, ge=1, le=200),
    reports: ReportCompiler = Depends(Provide[Container.reports]),
) -> list[ReportOut]:
    return [ReportOut(**r) for r in await reports.list_reports(limit)]


@router.post("/templates", status_code=201)
@inject
async def create_report_template(
    body: ReportTemplateCreate,
    reports: ReportCompiler = Depends(Provide[Container.reports]),
) -> ReportTemplateOut:
    template = await reports.create_report_template(
        body.name, body.template_content, body.description, body.format, body.variables,
    )
    return ReportTemplateOut(**template)


@router.get("/templates")
@inject
async def list_report_templates(
    reports: ReportCompiler = Depends(Provide[Container.reports]),
) -> list[ReportTemplateOut]:
    return [ReportTemplateOut(**t) for t in await reports.list_report_templates()]


@router.post("/templates/{template_id}/render")
@inject
async def render_report_template(
    template_id: str,
    body: TemplateRenderRequest,
    reports: ReportCompiler = Depends(Provide[Container.reports]),
) -> RenderedContentOut:
    return RenderedContentOut(**await reports.generate_from_template(template_id, body.data, body.variables))


@router.get("/{report_id}")
@inject
async def get_report(
    report_id: str,
    reports: ReportCompiler = Depends(Provide[Container.reports]),
) -> ReportOut:
    """Report metadata plus the artifact content (null if the file is gone)."""
    return ReportOut(**await reports.get_report(report_id))
