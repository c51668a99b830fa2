#  Agent Watch - Activity Ledger
#
#  Records agent activities and task-plan state transitions, derives
#  metric samples from activity text, and answers the ledger queries
#  (active agents, active tasks, metric aggregates, dashboard).
#  Active-agent status is always derived from the store.
#
#  Depends on: db/connection.py, services/event_bus.py, models/enums.py, config.py
#  Used by:    container.py, routes/activities.py, routes/tasks.py, services/reports.py

import json
import logging
import time
import uuid

from agentwatch.config import (
    ACTIVE_WINDOW_HOURS,
    DEFAULT_EXPECTED_DURATION,
    RECENT_ACTIVITY_HOURS,
)
from agentwatch.exceptions import InvalidStateError, NotFoundError, ValidationError
from agentwatch.logging_config import agent_id_var
from agentwatch.models.enums import (
    ACTIVE_TASK_STATUSES,
    TERMINAL_TASK_STATUSES,
    TIMEFRAME_SECONDS,
    MetricType,
    Priority,
    TaskStatus,
    Timeframe,
    parse_enum,
)
from agentwatch.services.event_bus import make_event

logger = logging.getLogger("agentwatch.ledger")

# SQL ordering for text priorities (critical first)
_PRIORITY_ORDER_SQL = (
    "CASE priority WHEN 'critical' THEN 4 WHEN 'high' THEN 3 "
    "WHEN 'medium' THEN 2 ELSE 1 END"
)


def _new_id() -> str:
    return uuid.uuid4().hex[:12]


def _loads(raw, default):
    return json.loads(raw) if raw else default


def _activity_row_to_dict(row) -> dict:
    return {
        "id": row["id"],
        "agent_id": row["agent_id"],
        "activity": row["activity"],
        "metadata": _loads(row["metadata_json"], {}),
        "timestamp": row["timestamp"],
        "duration": row["duration"],
        "project_path": row["project_path"],
        "tags": _loads(row["tags_json"], []),
    }


def _task_row_to_dict(row) -> dict:
    return {
        "id": row["id"],
        "description": row["description"],
        "priority": row["priority"],
        "status": row["status"],
        "assigned_agent": row["assigned_agent"],
        "created_at": row["created_at"],
        "updated_at": row["updated_at"],
        "estimated_duration": row["estimated_duration"],
        "actual_duration": row["actual_duration"],
        "progress": row["progress"],
        "dependencies": _loads(row["dependencies_json"], []),
        "milestones": _loads(row["milestones_json"], []),
        "completed_milestones": _loads(row["completed_milestones_json"], []),
        "notes": row["notes"],
    }


class MetricHeuristics:
    """Fixed text/metadata heuristics that turn one activity into metric samples.

    Returns (metric_type, value, context) triples. Signals are matched
    case-insensitively against the activity text.
    """

    COMPLETION_SIGNALS = ("complete", "finish")
    START_SIGNALS = ("start", "begin")
    COLLABORATION_SIGNALS = ("review", "collaborate")
    MAX_EFFICIENCY = 2.0

    def __init__(self, default_expected_duration: float = DEFAULT_EXPECTED_DURATION):
        self._default_expected = default_expected_duration

    def derive(self, activity: str, metadata: dict, duration: float | None = None) -> list[tuple]:
        text = activity.lower()
        samples: list[tuple] = []

        if any(s in text for s in self.COMPLETION_SIGNALS):
            samples.append((MetricType.PRODUCTIVITY, 1.0, {"signal": "completion"}))
        elif any(s in text for s in self.START_SIGNALS):
            samples.append((MetricType.PRODUCTIVITY, 0.5, {"signal": "start"}))

        if duration is None:
            duration = metadata.get("duration")
        if isinstance(duration, (int, float)) and duration > 0:
            expected = metadata.get("expectedDuration")
            if isinstance(expected, bool) or not isinstance(expected, (int, float)) or expected <= 0:
                expected = self._default_expected
            efficiency = min(expected / duration, self.MAX_EFFICIENCY)
            samples.append((MetricType.EFFICIENCY, efficiency,
                            {"duration": duration, "expectedDuration": expected}))

        error_count = metadata.get("errorCount")
        if isinstance(error_count, (int, float)):
            samples.append((MetricType.ACCURACY, max(0.0, 1.0 - 0.1 * error_count),
                            {"errorCount": error_count}))

        if any(s in text for s in self.COLLABORATION_SIGNALS):
            samples.append((MetricType.COLLABORATION, 1.0, {"signal": "collaboration"}))

        return samples


def _is_error_activity(activity: str, metadata: dict) -> bool:
    text = activity.lower()
    if "error" in text or "exception" in text:
        return True
    error_count = metadata.get("errorCount")
    return isinstance(error_count, (int, float)) and error_count > 0


class ActivityLedger:
    """Owns agent_activities, agent_metrics and task_plans."""

    def __init__(self, db, event_bus=None, heuristics: MetricHeuristics | None = None, clock=time.time):
        self._db = db
        self._bus = event_bus
        self._heuristics = heuristics or MetricHeuristics()
        self._clock = clock

    async def _publish(self, event: dict):
        if self._bus is not None:
            await self._bus.publish(event)

    # ------------------------------------------------------------------
    # Activities
    # ------------------------------------------------------------------

    async def record_activity(
        self,
        agent_id: str,
        activity: str,
        metadata: dict | None = None,
        duration: float | None = None,
        project_path: str | None = None,
        tags: list[str] | None = None,
        timestamp: float | None = None,
    ) -> dict:
        """Persist an activity and the metric samples derived from it.

        The activity row and its samples are written in one transaction,
        activity first, so a sample never exists without its activity.
        """
        if not agent_id:
            raise ValidationError("agent_id is required")
        if not activity:
            raise ValidationError("activity text is required")

        metadata = dict(metadata or {})
        tags = list(tags or [])
        ts = timestamp if timestamp is not None else self._clock()
        activity_id = _new_id()
        samples = self._heuristics.derive(activity, metadata, duration)

        token = agent_id_var.set(agent_id)
        try:
            async with self._db.transaction():
                await self._db.execute_write(
                    "INSERT INTO agent_activities (id, agent_id, activity, metadata_json, "
                    "timestamp, duration, project_path, tags_json) VALUES (?, ?, ?, ?, ?, ?, ?, ?)",
                    (activity_id, agent_id, activity, json.dumps(metadata), ts,
                     duration, project_path, json.dumps(tags)),
                )
                metrics = []
                for metric_type, value, context in samples:
                    metric_id = _new_id()
                    await self._db.execute_write(
                        "INSERT INTO agent_metrics (id, agent_id, activity_id, metric_type, "
                        "value, timestamp, context_json) VALUES (?, ?, ?, ?, ?, ?, ?)",
                        (metric_id, agent_id, activity_id, metric_type.value, value, ts,
                         json.dumps(context)),
                    )
                    metrics.append({"id": metric_id, "metric_type": metric_type.value, "value": value})

            logger.info("Activity recorded for %s (%d metric samples)", agent_id, len(metrics))
        finally:
            agent_id_var.reset(token)

        record = {
            "id": activity_id,
            "agent_id": agent_id,
            "activity": activity,
            "metadata": metadata,
            "timestamp": ts,
            "duration": duration,
            "project_path": project_path,
            "tags": tags,
            "metrics": metrics,
        }

        is_error = _is_error_activity(activity, metadata)
        await self._publish(make_event(
            "agent_error" if is_error else "agent_activity",
            message=activity,
            project_path=project_path,
            agent_id=agent_id,
            priority="high" if is_error else "low",
            metadata={**metadata, "activityId": activity_id, "tags": tags},
        ))
        return record

    async def list_activities(
        self,
        agent_id: str | None = None,
        project_path: str | None = None,
        since: float | None = None,
        until: float | None = None,
        limit: int = 100,
        offset: int = 0,
    ) -> list[dict]:
        clauses, params = [], []
        if agent_id:
            clauses.append("agent_id = ?")
            params.append(agent_id)
        if project_path:
            clauses.append("project_path = ?")
            params.append(project_path)
        if since is not None:
            clauses.append("timestamp >= ?")
            params.append(since)
        if until is not None:
            clauses.append("timestamp <= ?")
            params.append(until)
        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
        rows = await self._db.fetchall(
            f"SELECT * FROM agent_activities {where} ORDER BY timestamp DESC LIMIT ? OFFSET ?",
            (*params, limit, offset),
        )
        return [_activity_row_to_dict(r) for r in rows]

    async def get_recent_activities(self, limit: int = 20) -> list[dict]:
        return await self.list_activities(limit=limit)

    # ------------------------------------------------------------------
    # Tasks
    # ------------------------------------------------------------------

    async def create_task(
        self,
        description: str,
        priority: str = "medium",
        estimated_duration: float | None = None,
        dependencies: list[str] | None = None,
        assigned_agent: str | None = None,
        milestones: list[str] | None = None,
    ) -> dict:
        if not description or not description.strip():
            raise ValidationError("Task description is required")
        priority = parse_enum(Priority, priority, "priority")

        now = self._clock()
        task_id = _new_id()
        await self._db.execute_write(
            "INSERT INTO task_plans (id, description, priority, status, assigned_agent, "
            "created_at, updated_at, estimated_duration, progress, dependencies_json, "
            "milestones_json, completed_milestones_json) "
            "VALUES (?, ?, ?, ?, ?, ?, ?, ?, 0, ?, ?, '[]')",
            (task_id, description, priority.value, TaskStatus.PENDING.value, assigned_agent,
             now, now, estimated_duration, json.dumps(dependencies or []),
             json.dumps(milestones or [])),
        )
        logger.info("Task %s created (%s priority)", task_id, priority.value)

        task = await self.get_task(task_id)
        await self._publish(make_event(
            "task_created",
            message=description,
            agent_id=assigned_agent,
            priority=priority.value,
            metadata={"taskId": task_id, "status": TaskStatus.PENDING.value},
        ))
        return task

    async def get_task(self, task_id: str) -> dict:
        row = await self._db.fetchone("SELECT * FROM task_plans WHERE id = ?", (task_id,))
        if not row:
            raise NotFoundError(f"Task {task_id} not found")
        return _task_row_to_dict(row)

    async def list_tasks(
        self,
        status: str | None = None,
        assigned_agent: str | None = None,
        limit: int = 100,
        offset: int = 0,
    ) -> list[dict]:
        clauses, params = [], []
        if status:
            clauses.append("status = ?")
            params.append(parse_enum(TaskStatus, status, "status").value)
        if assigned_agent:
            clauses.append("assigned_agent = ?")
            params.append(assigned_agent)
        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
        rows = await self._db.fetchall(
            f"SELECT * FROM task_plans {where} ORDER BY created_at DESC LIMIT ? OFFSET ?",
            (*params, limit, offset),
        )
        return [_task_row_to_dict(r) for r in rows]

    async def update_task_status(
        self,
        task_id: str,
        status: str,
        progress: int | None = None,
        notes: str | None = None,
        blockers: list[str] | None = None,
        completed_milestones: list[str] | None = None,
    ) -> dict:
        """Move a task to a new status.

        Terminal tasks (completed/failed/cancelled) are final: any further
        update raises InvalidStateError, so actual_duration is written once.
        """
        new_status = parse_enum(TaskStatus, status, "status")
        if progress is not None and not (0 <= progress <= 100):
            raise ValidationError(f"progress must be 0-100, got {progress}")

        blockers = list(blockers or [])
        completed_milestones = list(completed_milestones or [])

        async with self._db.transaction():
            row = await self._db.fetchone("SELECT * FROM task_plans WHERE id = ?", (task_id,))
            if not row:
                raise NotFoundError(f"Task {task_id} not found")
            previous = TaskStatus(row["status"])
            if previous in TERMINAL_TASK_STATUSES:
                raise InvalidStateError(
                    f"Task {task_id} is already {previous.value} and cannot move to {new_status.value}"
                )

            now = self._clock()
            actual_duration = None
            if new_status in TERMINAL_TASK_STATUSES:
                actual_duration = now - row["created_at"]

            done = _loads(row["completed_milestones_json"], [])
            for m in completed_milestones:
                if m not in done:
                    done.append(m)

            await self._db.execute_write(
                "UPDATE task_plans SET status = ?, progress = ?, notes = ?, updated_at = ?, "
                "actual_duration = COALESCE(?, actual_duration), completed_milestones_json = ? "
                "WHERE id = ?",
                (new_status.value,
                 progress if progress is not None else row["progress"],
                 notes if notes is not None else row["notes"],
                 now, actual_duration, json.dumps(done), task_id),
            )

        logger.info("Task %s updated: %s -> %s", task_id, previous.value, new_status.value)

        if blockers:
            await self.record_activity(
                "system", "task_blocked",
                metadata={"taskId": task_id, "blockers": blockers},
                tags=["task_management", "blockers"],
            )
        if completed_milestones:
            await self.record_activity(
                "system", "milestones_completed",
                metadata={"taskId": task_id, "completedMilestones": completed_milestones},
                tags=["task_management", "milestones"],
            )

        task = await self.get_task(task_id)
        await self._publish(make_event(
            "task_status_changed",
            message=f"Task {task_id} is now {new_status.value}",
            agent_id=task["assigned_agent"],
            priority="high" if new_status in (TaskStatus.FAILED, TaskStatus.BLOCKED) else task["priority"],
            metadata={
                "taskId": task_id,
                "status": new_status.value,
                "previousStatus": previous.value,
                "blockers": blockers,
            },
        ))
        return task

    async def get_active_tasks(self) -> list[dict]:
        placeholders = ",".join("?" * len(ACTIVE_TASK_STATUSES))
        rows = await self._db.fetchall(
            f"SELECT * FROM task_plans WHERE status IN ({placeholders}) "
            f"ORDER BY {_PRIORITY_ORDER_SQL} DESC, created_at ASC",
            tuple(s.value for s in ACTIVE_TASK_STATUSES),
        )
        return [_task_row_to_dict(r) for r in rows]

    # ------------------------------------------------------------------
    # Agents & metrics
    # ------------------------------------------------------------------

    async def get_active_agents(self) -> list[dict]:
        now = self._clock()
        rows = await self._db.fetchall(
            "SELECT agent_id, COUNT(*) AS activity_count, MAX(timestamp) AS last_activity, "
            "MIN(timestamp) AS first_activity FROM agent_activities "
            "WHERE timestamp >= ? GROUP BY agent_id ORDER BY last_activity DESC",
            (now - RECENT_ACTIVITY_HOURS * 3600,),
        )
        active_cutoff = now - ACTIVE_WINDOW_HOURS * 3600
        return [
            {
                "agent_id": r["agent_id"],
                "activity_count": r["activity_count"],
                "last_activity": r["last_activity"],
                "first_activity": r["first_activity"],
                "is_active": r["last_activity"] >= active_cutoff,
            }
            for r in rows
        ]

    async def get_metrics(
        self,
        agent_id: str | None = None,
        metric: str = "all",
        timeframe: str = "last_day",
    ) -> list[dict]:
        """Aggregate metric samples by agent x metric_type over a timeframe."""
        timeframe = parse_enum(Timeframe, timeframe, "timeframe")
        if timeframe not in TIMEFRAME_SECONDS:
            raise InvalidStateError("Metrics require a fixed timeframe (custom is report-only)")

        clauses = ["timestamp >= ?"]
        params: list = [self._clock() - TIMEFRAME_SECONDS[timeframe]]
        if agent_id:
            clauses.append("agent_id = ?")
            params.append(agent_id)
        if metric and metric != "all":
            clauses.append("metric_type = ?")
            params.append(parse_enum(MetricType, metric, "metric").value)

        rows = await self._db.fetchall(
            "SELECT agent_id, metric_type, AVG(value) AS avg_value, MIN(value) AS min_value, "
            "MAX(value) AS max_value, COUNT(*) AS count FROM agent_metrics "
            f"WHERE {' AND '.join(clauses)} GROUP BY agent_id, metric_type "
            "ORDER BY agent_id, metric_type",
            params,
        )
        return [
            {
                "agent_id": r["agent_id"],
                "metric_type": r["metric_type"],
                "average": round(r["avg_value"], 3),
                "minimum": round(r["min_value"], 3),
                "maximum": round(r["max_value"], 3),
                "count": r["count"],
            }
            for r in rows
        ]

    async def get_summary(self) -> dict:
        now = self._clock()
        day_ago = now - 86400
        agents = await self._db.fetchone(
            "SELECT COUNT(DISTINCT agent_id) AS c FROM agent_activities WHERE timestamp >= ?", (day_ago,)
        )
        activities = await self._db.fetchone(
            "SELECT COUNT(*) AS c FROM agent_activities WHERE timestamp >= ?", (day_ago,)
        )
        active = await self._db.fetchone(
            "SELECT COUNT(*) AS c FROM task_plans WHERE status IN (?, ?)",
            (TaskStatus.PENDING.value, TaskStatus.IN_PROGRESS.value),
        )
        completed = await self._db.fetchone(
            "SELECT COUNT(*) AS c FROM task_plans WHERE status = ? AND updated_at >= ?",
            (TaskStatus.COMPLETED.value, day_ago),
        )
        return {
            "activeAgents": agents["c"],
            "totalActivities": activities["c"],
            "activeTasks": active["c"],
            "completedTasksToday": completed["c"],
        }

    async def get_productivity_trend(self, days: int = 7) -> list[dict]:
        """Daily average productivity per agent."""
        rows = await self._db.fetchall(
            "SELECT DATE(timestamp, 'unixepoch') AS day, agent_id, COUNT(*) AS samples, "
            "AVG(value) AS avg_productivity FROM agent_metrics "
            "WHERE metric_type = ? AND timestamp >= ? "
            "GROUP BY day, agent_id ORDER BY day DESC, avg_productivity DESC",
            (MetricType.PRODUCTIVITY.value, self._clock() - days * 86400),
        )
        return [
            {
                "date": r["day"],
                "agent_id": r["agent_id"],
                "samples": r["samples"],
                "avg_productivity": round(r["avg_productivity"], 3),
            }
            for r in rows
        ]

    async def get_dashboard(self) -> dict:
        return {
            "summary": await self.get_summary(),
            "activeAgents": await self.get_active_agents(),
            "activeTasks": await self.get_active_tasks(),
            "recentActivities": await self.get_recent_activities(),
            "productivity": await self.get_productivity_trend(),
        }
