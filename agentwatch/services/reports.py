#  Agent Watch - Report Compiler
#
#  Windowed aggregation over activities, changes, tasks and metrics,
#  rendered as json / markdown / html / pdf (html content) and written to
#  <project>/.agentwatch-reports/report-<id>-<ts>.<ext>. Also keeps
#  report templates rendered through the sandboxed TemplateRenderer.
#
#  Depends on: db/connection.py, services/templates.py, services/ledger.py,
#              services/change_analyzer.py, models/enums.py, config.py
#  Used by:    container.py, routes/reports.py

import asyncio
import json
import logging
import time
import uuid
from collections import Counter
from datetime import datetime, timezone
from pathlib import Path

from agentwatch.config import REPORT_MAX_ROWS, REPORTS_DEFAULT_ROOT, REPORTS_DIR_NAME
from agentwatch.exceptions import InvalidStateError, NotFoundError, StoreError, ValidationError
from agentwatch.models.enums import (
    REPORT_EXTENSIONS,
    TIMEFRAME_SECONDS,
    ReportFormat,
    TaskStatus,
    Timeframe,
    parse_enum,
)
from agentwatch.services.change_analyzer import _change_row_to_dict
from agentwatch.services.ledger import _activity_row_to_dict, _task_row_to_dict
from agentwatch.services.templates import TemplateRenderer

logger = logging.getLogger("agentwatch.reports")

PDF_NOTE = "PDF rendering is not built in; this artifact holds the HTML to convert."

_MARKDOWN_REPORT = """\
# Agent Activity Report

**Report ID:** {{ report_id }}
**Generated:** {{ generated_at }}
**Period:** {{ summary.period }}

## Summary

{{ summary.overview }}

### Impact Breakdown
{% for level, count in summary.impactBreakdown.items() %}- **{{ level }}**: {{ count }} changes
{% else %}- no changes
{% endfor %}
{% if agents %}
## Active Agents

| Agent ID | Activities | First Activity | Last Activity |
|----------|------------|----------------|---------------|
{% for a in agents %}| {{ a.agent_id }} | {{ a.activity_count }} | {{ a.first_activity }} | {{ a.last_activity }} |
{% endfor %}{% endif %}
{% if changes %}
## Recent Changes

| File | Type | Impact | Agent | Timestamp |
|------|------|--------|-------|-----------|
{% for c in changes %}| {{ c.file_path }} | {{ c.change_type }} | {{ c.impact_level }} | {{ c.agent_id or "N/A" }} | {{ c.time }} |
{% endfor %}{% endif %}
{% if tasks %}
## Task Progress

| Task | Status | Progress | Assigned Agent |
|------|--------|----------|----------------|
{% for t in tasks %}| {{ t.description }} | {{ t.status }} | {{ t.progress }}% | {{ t.assigned_agent or "Unassigned" }} |
{% endfor %}{% endif %}
{% if metrics %}
## Metrics Summary
{% for metric_type, rows in metrics.items() %}
### {{ metric_type }}
{% for m in rows %}- **{{ m.agent_id }}**: {{ "%.3f"|format(m.average) }} (avg), {{ "%.3f"|format(m.maximum) }} (max)
{% endfor %}{% endfor %}{% endif %}
"""

_HTML_REPORT = """\
<!DOCTYPE html>
<html lang="en">
<head>
<meta charset="UTF-8">
<title>Agent Activity Report - {{ report_id }}</title>
<style>
body { font-family: Arial, sans-serif; margin: 40px; line-height: 1.6; }
.summary { background: #f5f5f5; padding: 20px; border-radius: 8px; }
table { border-collapse: collapse; width: 100%; margin: 20px 0; }
th, td { border: 1px solid #ddd; padding: 8px; text-align: left; }
th { background-color: #f2f2f2; }
.critical { color: #b71c1c; font-weight: bold; }
.high { color: #d32f2f; font-weight: bold; }
.medium { color: #f57c00; }
.low { color: #388e3c; }
</style>
</head>
<body>
<h1>Agent Activity Report</h1>
<p><strong>Report ID:</strong> {{ report_id }}</p>
<p><strong>Generated:</strong> {{ generated_at }}</p>
<p><strong>Period:</strong> {{ summary.period }}</p>
{% if note %}<p><em>{{ note }}</em></p>{% endif %}
<div class="summary">
<h2>Summary</h2>
<pre>{{ summary.overview }}</pre>
<h3>Impact Distribution</h3>
<ul>
{% for level, count in summary.impactBreakdown.items() %}<li class="{{ level }}"><strong>{{ level }}:</strong> {{ count }} changes</li>
{% endfor %}</ul>
</div>
{% if agents %}
<h2>Active Agents</h2>
<table>
<thead><tr><th>Agent ID</th><th>Activities</th><th>First Activity</th><th>Last Activity</th></tr></thead>
<tbody>
{% for a in agents %}<tr><td>{{ a.agent_id }}</td><td>{{ a.activity_count }}</td><td>{{ a.first_activity }}</td><td>{{ a.last_activity }}</td></tr>
{% endfor %}</tbody>
</table>
{% endif %}
{% if changes %}
<h2>Recent Changes</h2>
<table>
<thead><tr><th>File</th><th>Type</th><th>Impact</th><th>Agent</th><th>Timestamp</th></tr></thead>
<tbody>
{% for c in changes %}<tr><td>{{ c.file_path }}</td><td>{{ c.change_type }}</td><td class="{{ c.impact_level }}">{{ c.impact_level }}</td><td>{{ c.agent_id or "N/A" }}</td><td>{{ c.time }}</td></tr>
{% endfor %}</tbody>
</table>
{% endif %}
{% if tasks %}
<h2>Task Progress</h2>
<table>
<thead><tr><th>Task</th><th>Status</th><th>Progress</th><th>Assigned Agent</th></tr></thead>
<tbody>
{% for t in tasks %}<tr><td>{{ t.description }}</td><td>{{ t.status }}</td><td>{{ t.progress }}%</td><td>{{ t.assigned_agent or "Unassigned" }}</td></tr>
{% endfor %}</tbody>
</table>
{% endif %}
</body>
</html>
"""


def _new_id() -> str:
    return uuid.uuid4().hex[:12]


def _loads(raw, default):
    return json.loads(raw) if raw else default


def _iso(ts: float | None) -> str:
    if ts is None:
        return "N/A"
    return datetime.fromtimestamp(ts, tz=timezone.utc).isoformat()


def _report_row_to_dict(row) -> dict:
    return {
        "id": row["id"],
        "report_type": row["report_type"],
        "project_path": row["project_path"],
        "format": row["format"],
        "window_start": row["window_start"],
        "window_end": row["window_end"],
        "storage_location": row["storage_location"],
        "summary_text": row["summary_text"],
        "metadata": _loads(row["metadata_json"], {}),
        "created_at": row["created_at"],
    }


def _report_template_row_to_dict(row) -> dict:
    return {
        "id": row["id"],
        "name": row["name"],
        "description": row["description"] or "",
        "template_content": row["template_content"],
        "format": row["format"],
        "variables": _loads(row["variables_json"], []),
        "created_at": row["created_at"],
    }


def build_summary(data: dict, window_start: float, window_end: float) -> dict:
    """Counts, breakdowns and overview text for one report window."""
    start_day = datetime.fromtimestamp(window_start, tz=timezone.utc).strftime("%Y-%m-%d")
    end_day = datetime.fromtimestamp(window_end, tz=timezone.utc).strftime("%Y-%m-%d")
    period = f"{start_day} to {end_day}"

    total_tasks = len(data["tasks"])
    completed = sum(1 for t in data["tasks"] if t["status"] == TaskStatus.COMPLETED.value)
    summary = {
        "period": period,
        "totalActivities": len(data["activities"]),
        "totalChanges": len(data["changes"]),
        "activeAgents": len(data["agents"]),
        "totalTasks": total_tasks,
        "completedTasks": completed,
        "completionRatio": round(completed / total_tasks, 3) if total_tasks else 0.0,
        "impactBreakdown": dict(Counter(c["impact_level"] for c in data["changes"])),
        "changeTypeBreakdown": dict(Counter(c["change_type"] for c in data["changes"])),
    }
    summary["overview"] = (
        f"Report for period {period}:\n"
        f"- {summary['totalActivities']} agent activities recorded\n"
        f"- {summary['totalChanges']} code changes tracked\n"
        f"- {summary['activeAgents']} agents were active\n"
        f"- {completed}/{total_tasks} tasks completed"
    )
    return summary


class ReportCompiler:
    """Owns generated_reports and report_templates; reads everything else."""

    def __init__(self, db, renderer: TemplateRenderer | None = None,
                 default_root: str | Path = REPORTS_DEFAULT_ROOT,
                 max_rows: int = REPORT_MAX_ROWS, clock=time.time):
        self._db = db
        self._renderer = renderer or TemplateRenderer(clock=clock)
        self._default_root = Path(default_root)
        self._max_rows = max_rows
        self._clock = clock

    # ------------------------------------------------------------------
    # Window & collection
    # ------------------------------------------------------------------

    def resolve_window(self, timeframe: str, custom_window: tuple | None = None) -> tuple[float, float]:
        """Return (start, end); both bounds are inclusive."""
        if custom_window is not None:
            start, end = custom_window
            if start is None or end is None:
                raise ValidationError("A custom window needs both start and end")
            if start > end:
                raise ValidationError("Report window start is after its end")
            return float(start), float(end)

        timeframe = parse_enum(Timeframe, timeframe, "timeframe")
        if timeframe == Timeframe.CUSTOM:
            raise InvalidStateError("Timeframe 'custom' requires window_start and window_end")
        end = self._clock()
        return end - TIMEFRAME_SECONDS[timeframe], end

    async def collect(self, project_path: str | None, start: float, end: float,
                      include_metrics: bool = True) -> dict:
        project_clause = ""
        project_params: list = []
        if project_path:
            project_clause = " AND (project_path = ? OR project_path IS NULL)"
            project_params = [project_path]

        activity_rows = await self._db.fetchall(
            "SELECT * FROM agent_activities WHERE timestamp BETWEEN ? AND ?"
            + project_clause + " ORDER BY timestamp DESC",
            [start, end, *project_params],
        )

        change_sql = "SELECT * FROM code_changes WHERE timestamp BETWEEN ? AND ?"
        change_params: list = [start, end]
        if project_path:
            change_sql += " AND project_path = ?"
            change_params.append(project_path)
        change_rows = await self._db.fetchall(change_sql + " ORDER BY timestamp DESC", change_params)

        agent_rows = await self._db.fetchall(
            "SELECT agent_id, COUNT(*) AS activity_count, MIN(timestamp) AS first_activity, "
            "MAX(timestamp) AS last_activity FROM agent_activities "
            "WHERE timestamp BETWEEN ? AND ?" + project_clause
            + " GROUP BY agent_id ORDER BY activity_count DESC",
            [start, end, *project_params],
        )

        task_rows = await self._db.fetchall(
            "SELECT * FROM task_plans WHERE created_at BETWEEN ? AND ? OR updated_at BETWEEN ? AND ? "
            "ORDER BY updated_at DESC",
            [start, end, start, end],
        )

        data = {
            "activities": [_activity_row_to_dict(r) for r in activity_rows],
            "changes": [_change_row_to_dict(r) for r in change_rows],
            "agents": [
                {
                    "agent_id": r["agent_id"],
                    "activity_count": r["activity_count"],
                    "first_activity": r["first_activity"],
                    "last_activity": r["last_activity"],
                }
                for r in agent_rows
            ],
            "tasks": [_task_row_to_dict(r) for r in task_rows],
            "metrics": {},
        }
        if include_metrics:
            data["metrics"] = await self._collect_metrics(project_path, start, end)
        return data

    async def _collect_metrics(self, project_path: str | None, start: float, end: float) -> dict:
        sql = (
            "SELECT m.metric_type, m.agent_id, AVG(m.value) AS average, MIN(m.value) AS minimum, "
            "MAX(m.value) AS maximum, COUNT(*) AS count FROM agent_metrics m "
            "LEFT JOIN agent_activities a ON m.activity_id = a.id "
            "WHERE m.timestamp BETWEEN ? AND ?"
        )
        params: list = [start, end]
        if project_path:
            sql += " AND (a.project_path = ? OR a.project_path IS NULL)"
            params.append(project_path)
        sql += " GROUP BY m.metric_type, m.agent_id ORDER BY m.metric_type, average DESC"

        organized: dict[str, list] = {}
        for r in await self._db.fetchall(sql, params):
            organized.setdefault(r["metric_type"], []).append({
                "agent_id": r["agent_id"],
                "average": round(r["average"], 3),
                "minimum": round(r["minimum"], 3),
                "maximum": round(r["maximum"], 3),
                "count": r["count"],
            })
        return organized

    # ------------------------------------------------------------------
    # Rendering
    # ------------------------------------------------------------------

    def _table_context(self, report_id: str, data: dict, summary: dict, generated_at: str) -> dict:
        limit = self._max_rows
        return {
            "report_id": report_id,
            "generated_at": generated_at,
            "summary": summary,
            "agents": [
                {**a, "first_activity": _iso(a["first_activity"]), "last_activity": _iso(a["last_activity"])}
                for a in data["agents"][:limit]
            ],
            "changes": [{**c, "time": _iso(c["timestamp"])} for c in data["changes"][:limit]],
            "tasks": data["tasks"][:limit],
            "metrics": {k: v[:limit] for k, v in data["metrics"].items()},
        }

    def render(self, report_format: ReportFormat, report_id: str, data: dict, summary: dict) -> str:
        generated_at = _iso(self._clock())
        if report_format == ReportFormat.JSON:
            return json.dumps({
                "reportId": report_id,
                "generatedAt": generated_at,
                "summary": summary,
                "activities": data["activities"],
                "changes": data["changes"],
                "agents": data["agents"],
                "tasks": data["tasks"],
                "metrics": data["metrics"],
            }, indent=2, default=str)

        context = self._table_context(report_id, data, summary, generated_at)
        if report_format == ReportFormat.MARKDOWN:
            return self._renderer.render(_MARKDOWN_REPORT, context)
        if report_format == ReportFormat.PDF:
            context["note"] = PDF_NOTE
        return self._renderer.render(_HTML_REPORT, context, html=True)

    # ------------------------------------------------------------------
    # Artifacts
    # ------------------------------------------------------------------

    def _write_artifact(self, project_path: str | None, filename: str, content: str) -> Path:
        """Blocking: runs in a worker thread."""
        targets = []
        if project_path and Path(project_path).is_dir():
            targets.append(Path(project_path) / REPORTS_DIR_NAME)
        targets.append(self._default_root / REPORTS_DIR_NAME)

        last_error: OSError | None = None
        for directory in targets:
            try:
                directory.mkdir(parents=True, exist_ok=True)
                path = directory / filename
                path.write_text(content, encoding="utf-8")
                return path
            except OSError as e:
                logger.warning("Cannot write report to %s: %s", directory, e)
                last_error = e
        raise StoreError(f"Report artifact could not be written: {last_error}")

    async def generate_report(
        self,
        project_path: str | None = None,
        timeframe: str = "last_day",
        format: str = "json",
        include_metrics: bool = True,
        custom_window: tuple | None = None,
        report_type: str = "comprehensive",
    ) -> dict:
        report_format = parse_enum(ReportFormat, format, "report format")
        start, end = self.resolve_window(timeframe, custom_window)

        data = await self.collect(project_path, start, end, include_metrics)
        summary = build_summary(data, start, end)

        report_id = _new_id()
        content = self.render(report_format, report_id, data, summary)
        stamp = datetime.fromtimestamp(self._clock(), tz=timezone.utc).strftime("%Y%m%dT%H%M%SZ")
        filename = f"report-{report_id}-{stamp}.{REPORT_EXTENSIONS[report_format]}"
        path = await asyncio.to_thread(self._write_artifact, project_path, filename, content)

        metadata = {
            "includeMetrics": include_metrics,
            "timeframe": "custom" if custom_window is not None else timeframe,
            "summary": summary,
        }
        now = self._clock()
        await self._db.execute_write(
            "INSERT INTO generated_reports (id, report_type, project_path, format, window_start, "
            "window_end, storage_location, summary_text, metadata_json, created_at) "
            "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
            (report_id, report_type, project_path, report_format.value, start, end,
             str(path), summary["overview"], json.dumps(metadata), now),
        )
        logger.info("Report %s generated (%s, %d activities, %d changes) at %s",
                    report_id, report_format.value, summary["totalActivities"],
                    summary["totalChanges"], path)

        report = await self._get_row(report_id)
        report["content"] = content
        return report

    async def _get_row(self, report_id: str) -> dict:
        row = await self._db.fetchone("SELECT * FROM generated_reports WHERE id = ?", (report_id,))
        if not row:
            raise NotFoundError(f"Report {report_id} not found")
        return _report_row_to_dict(row)

    async def get_report(self, report_id: str) -> dict:
        report = await self._get_row(report_id)
        report["content"] = None
        location = report["storage_location"]
        if location:
            path = Path(location)
            if await asyncio.to_thread(path.is_file):
                report["content"] = await asyncio.to_thread(path.read_text, encoding="utf-8")
            else:
                logger.warning("Report %s artifact missing at %s", report_id, location)
        return report

    async def list_reports(self, limit: int = 10) -> list[dict]:
        rows = await self._db.fetchall(
            "SELECT * FROM generated_reports ORDER BY created_at DESC LIMIT ?", (limit,)
        )
        return [_report_row_to_dict(r) for r in rows]

    # ------------------------------------------------------------------
    # Templates
    # ------------------------------------------------------------------

    async def create_report_template(self, name: str, template_content: str, description: str = "",
                                     format: str = "markdown", variables: list[str] | None = None) -> dict:
        if not name:
            raise ValidationError("Template name is required")
        report_format = parse_enum(ReportFormat, format, "report format")
        self._renderer.validate(template_content, html=report_format == ReportFormat.HTML)

        template_id = _new_id()
        await self._db.execute_write(
            "INSERT INTO report_templates (id, name, description, template_content, format, "
            "variables_json, created_at) VALUES (?, ?, ?, ?, ?, ?, ?)",
            (template_id, name, description or "", template_content, report_format.value,
             json.dumps(variables or []), self._clock()),
        )
        logger.info("Report template created: %s (%s)", name, template_id)
        return await self.get_report_template(template_id)

    async def get_report_template(self, template_id: str) -> dict:
        row = await self._db.fetchone("SELECT * FROM report_templates WHERE id = ?", (template_id,))
        if not row:
            raise NotFoundError(f"Report template {template_id} not found")
        return _report_template_row_to_dict(row)

    async def list_report_templates(self) -> list[dict]:
        rows = await self._db.fetchall("SELECT * FROM report_templates ORDER BY created_at")
        return [_report_template_row_to_dict(r) for r in rows]

    async def generate_from_template(self, template_id: str, data: dict | None = None,
                                     variables: dict | None = None) -> dict:
        """Render a stored template.

        Only declared variables are passed through. The data placeholders
        summary.totalActivities, summary.totalChanges, summary.activeAgents,
        summary.period and generatedAt are always available.
        """
        template = await self.get_report_template(template_id)
        variables = variables or {}
        summary = (data or {}).get("summary") or {}

        active = summary.get("activeAgents", 0)
        context = {name: variables[name] for name in template["variables"] if name in variables}
        context["summary"] = {
            "totalActivities": summary.get("totalActivities", 0),
            "totalChanges": summary.get("totalChanges", 0),
            "activeAgents": len(active) if isinstance(active, list) else active,
            "period": summary.get("period", ""),
        }
        context["generatedAt"] = _iso(self._clock())

        content = self._renderer.render(
            template["template_content"], context, html=template["format"] == ReportFormat.HTML.value,
        )
        return {"template_id": template_id, "name": template["name"],
                "format": template["format"], "content": content}
