#  Agent Watch - Activity Ledger Tests
#
#  Activity recording, metric derivation, task transitions and the
#  ledger read side (active agents, active tasks, aggregates).
#
#  Depends on: agentwatch/services/ledger.py
#  Used by:    pytest

import pytest

from agentwatch.exceptions import InvalidStateError, NotFoundError, ValidationError
from agentwatch.logging_config import agent_id_var
from agentwatch.models.enums import MetricType
from agentwatch.services.ledger import MetricHeuristics


class TestMetricHeuristics:
    def test_completion_signal(self):
        samples = MetricHeuristics().derive("Completed the login form", {})
        assert (MetricType.PRODUCTIVITY, 1.0, {"signal": "completion"}) in samples

    def test_start_signal_is_half_productivity(self):
        samples = MetricHeuristics().derive("Starting refactor", {})
        assert samples == [(MetricType.PRODUCTIVITY, 0.5, {"signal": "start"})]

    def test_completion_wins_over_start(self):
        samples = MetricHeuristics().derive("started and finished", {})
        productivity = [s for s in samples if s[0] == MetricType.PRODUCTIVITY]
        assert productivity == [(MetricType.PRODUCTIVITY, 1.0, {"signal": "completion"})]

    def test_efficiency_capped(self):
        samples = MetricHeuristics(default_expected_duration=100).derive("working", {}, duration=10)
        assert samples == [(MetricType.EFFICIENCY, 2.0, {"duration": 10, "expectedDuration": 100})]

    def test_efficiency_from_metadata_duration(self):
        samples = MetricHeuristics().derive("working", {"duration": 200, "expectedDuration": 100})
        assert samples[0][0] == MetricType.EFFICIENCY
        assert samples[0][1] == pytest.approx(0.5)

    def test_zero_duration_skipped(self):
        assert MetricHeuristics().derive("working", {}, duration=0) == []

    def test_string_expected_duration_uses_default(self):
        samples = MetricHeuristics(default_expected_duration=3600).derive(
            "working", {"expectedDuration": "3600"}, duration=1800,
        )
        assert samples == [(MetricType.EFFICIENCY, 2.0, {"duration": 1800, "expectedDuration": 3600})]

    @pytest.mark.parametrize("expected", [-3600, 0])
    def test_non_positive_expected_duration_uses_default(self, expected):
        samples = MetricHeuristics(default_expected_duration=900).derive(
            "working", {"expectedDuration": expected}, duration=1800,
        )
        assert samples[0][1] == pytest.approx(0.5)
        assert samples[0][2]["expectedDuration"] == 900

    async def test_bad_expected_duration_still_records(self, ledger):
        record = await ledger.record_activity(
            "a1", "complete refactor", metadata={"expectedDuration": "3600"}, duration=1800,
        )
        efficiency = [m for m in record["metrics"] if m["metric_type"] == "efficiency"]
        assert efficiency[0]["value"] == 2.0

    def test_accuracy_from_error_count(self):
        samples = MetricHeuristics().derive("working", {"errorCount": 3})
        assert samples[0][0] == MetricType.ACCURACY
        assert samples[0][1] == pytest.approx(0.7)

    def test_accuracy_floor(self):
        samples = MetricHeuristics().derive("working", {"errorCount": 50})
        assert samples[0][1] == 0.0

    def test_collaboration(self):
        samples = MetricHeuristics().derive("Review of PR 12", {})
        assert (MetricType.COLLABORATION, 1.0, {"signal": "collaboration"}) in samples

    def test_no_signals(self):
        assert MetricHeuristics().derive("thinking", {}) == []


class TestRecordActivity:
    async def test_writes_activity_and_metrics(self, ledger, tmp_db):
        record = await ledger.record_activity(
            "agent-1", "completed feature", metadata={"errorCount": 0}, duration=1800,
            project_path="/p", tags=["ui"],
        )
        assert record["agent_id"] == "agent-1"
        assert {m["metric_type"] for m in record["metrics"]} == {"productivity", "efficiency", "accuracy"}

        row = await tmp_db.fetchone("SELECT * FROM agent_activities WHERE id = ?", (record["id"],))
        assert row["project_path"] == "/p"
        metrics = await tmp_db.fetchall("SELECT * FROM agent_metrics WHERE activity_id = ?", (record["id"],))
        assert len(metrics) == 3

    async def test_uses_clock_when_no_timestamp(self, ledger, clock):
        record = await ledger.record_activity("agent-1", "thinking")
        assert record["timestamp"] == clock.now

    async def test_explicit_timestamp(self, ledger):
        record = await ledger.record_activity("agent-1", "thinking", timestamp=123.0)
        assert record["timestamp"] == 123.0

    async def test_requires_agent_and_text(self, ledger):
        with pytest.raises(ValidationError):
            await ledger.record_activity("", "x")
        with pytest.raises(ValidationError):
            await ledger.record_activity("a", "")

    async def test_publishes_activity_event(self, ledger, captured_events):
        record = await ledger.record_activity("agent-1", "thinking", tags=["t"])
        assert len(captured_events) == 1
        event = captured_events[0]
        assert event["type"] == "agent_activity"
        assert event["priority"] == "low"
        assert event["metadata"]["activityId"] == record["id"]
        assert event["metadata"]["tags"] == ["t"]

    async def test_error_activity_publishes_agent_error(self, ledger, captured_events):
        await ledger.record_activity("agent-1", "Unhandled exception in build")
        assert captured_events[0]["type"] == "agent_error"
        assert captured_events[0]["priority"] == "high"

    async def test_error_count_marks_error(self, ledger, captured_events):
        await ledger.record_activity("agent-1", "ran tests", metadata={"errorCount": 2})
        assert captured_events[0]["type"] == "agent_error"

    async def test_agent_context_reset(self, ledger):
        await ledger.record_activity("agent-1", "thinking")
        assert agent_id_var.get() is None

    async def test_list_filters(self, ledger, clock):
        await ledger.record_activity("a", "one", project_path="/x")
        clock.advance(10)
        await ledger.record_activity("b", "two", project_path="/y")
        clock.advance(10)
        await ledger.record_activity("a", "three", project_path="/y")

        assert [r["activity"] for r in await ledger.list_activities(agent_id="a")] == ["three", "one"]
        assert len(await ledger.list_activities(project_path="/y")) == 2
        since = clock.now - 15
        assert [r["activity"] for r in await ledger.list_activities(since=since)] == ["three", "two"]
        assert len(await ledger.list_activities(limit=1)) == 1


class TestTasks:
    async def test_create_and_get(self, ledger, captured_events):
        task = await ledger.create_task("Build login", priority="high", milestones=["form", "api"])
        assert task["status"] == "pending"
        assert task["progress"] == 0
        assert task["milestones"] == ["form", "api"]
        assert (await ledger.get_task(task["id"]))["description"] == "Build login"
        assert captured_events[-1]["type"] == "task_created"

    async def test_empty_description_rejected(self, ledger):
        with pytest.raises(ValidationError):
            await ledger.create_task("   ")

    async def test_bad_priority_rejected(self, ledger):
        with pytest.raises(InvalidStateError):
            await ledger.create_task("x", priority="urgent")

    async def test_get_missing(self, ledger):
        with pytest.raises(NotFoundError):
            await ledger.get_task("nope")

    async def test_status_update_sets_progress_and_duration(self, ledger, clock):
        task = await ledger.create_task("Build login")
        clock.advance(600)
        updated = await ledger.update_task_status(task["id"], "in_progress", progress=40)
        assert updated["status"] == "in_progress"
        assert updated["progress"] == 40
        assert updated["actual_duration"] is None

        clock.advance(600)
        done = await ledger.update_task_status(task["id"], "completed", progress=100)
        assert done["actual_duration"] == pytest.approx(1200)

    async def test_terminal_task_rejects_update(self, ledger):
        task = await ledger.create_task("x")
        await ledger.update_task_status(task["id"], "failed")
        with pytest.raises(InvalidStateError):
            await ledger.update_task_status(task["id"], "in_progress")

    async def test_invalid_status(self, ledger):
        task = await ledger.create_task("x")
        with pytest.raises(InvalidStateError):
            await ledger.update_task_status(task["id"], "paused")

    async def test_progress_out_of_range(self, ledger):
        task = await ledger.create_task("x")
        with pytest.raises(ValidationError):
            await ledger.update_task_status(task["id"], "in_progress", progress=150)

    async def test_blockers_emit_system_activity(self, ledger, captured_events):
        task = await ledger.create_task("x", priority="low")
        await ledger.update_task_status(task["id"], "blocked", blockers=["waiting on API"])

        activities = await ledger.list_activities(agent_id="system")
        assert activities[0]["activity"] == "task_blocked"
        assert activities[0]["metadata"]["blockers"] == ["waiting on API"]

        status_event = captured_events[-1]
        assert status_event["type"] == "task_status_changed"
        assert status_event["priority"] == "high"
        assert status_event["metadata"]["status"] == "blocked"
        assert status_event["metadata"]["previousStatus"] == "pending"

    async def test_completed_milestones_merge(self, ledger):
        task = await ledger.create_task("x", milestones=["a", "b"])
        await ledger.update_task_status(task["id"], "in_progress", completed_milestones=["a"])
        updated = await ledger.update_task_status(task["id"], "in_progress", completed_milestones=["a", "b"])
        assert updated["completed_milestones"] == ["a", "b"]
        activities = await ledger.list_activities(agent_id="system")
        assert all(a["activity"] == "milestones_completed" for a in activities)

    async def test_active_tasks_order(self, ledger, clock):
        low = await ledger.create_task("low", priority="low")
        clock.advance(1)
        crit = await ledger.create_task("crit", priority="critical")
        clock.advance(1)
        med_old = await ledger.create_task("med old", priority="medium")
        clock.advance(1)
        med_new = await ledger.create_task("med new", priority="medium")
        clock.advance(1)
        done = await ledger.create_task("done", priority="critical")
        await ledger.update_task_status(done["id"], "completed")

        ids = [t["id"] for t in await ledger.get_active_tasks()]
        assert ids == [crit["id"], med_old["id"], med_new["id"], low["id"]]

    async def test_list_tasks_filter(self, ledger):
        await ledger.create_task("a", assigned_agent="agent-1")
        await ledger.create_task("b", assigned_agent="agent-2")
        assert [t["description"] for t in await ledger.list_tasks(assigned_agent="agent-2")] == ["b"]
        assert len(await ledger.list_tasks(status="pending")) == 2


class TestReadSide:
    async def test_active_agents_derived_from_store(self, ledger, clock):
        await ledger.record_activity("old", "thinking")
        clock.advance(2 * 3600)
        await ledger.record_activity("fresh", "thinking")

        agents = {a["agent_id"]: a for a in await ledger.get_active_agents()}
        assert agents["fresh"]["is_active"] is True
        assert agents["old"]["is_active"] is False

    async def test_agent_outside_recent_window_omitted(self, ledger, clock):
        await ledger.record_activity("ancient", "thinking")
        clock.advance(3 * 86400)
        assert await ledger.get_active_agents() == []

    async def test_metric_aggregates(self, ledger):
        await ledger.record_activity("a", "completed x")
        await ledger.record_activity("a", "started y")
        rows = await ledger.get_metrics(agent_id="a", metric="productivity")
        assert rows == [{
            "agent_id": "a", "metric_type": "productivity",
            "average": 0.75, "minimum": 0.5, "maximum": 1.0, "count": 2,
        }]

    async def test_metrics_reject_custom_timeframe(self, ledger):
        with pytest.raises(InvalidStateError):
            await ledger.get_metrics(timeframe="custom")

    async def test_metrics_window(self, ledger, clock):
        await ledger.record_activity("a", "completed x")
        clock.advance(2 * 3600)
        assert await ledger.get_metrics(timeframe="last_hour") == []
        assert len(await ledger.get_metrics(timeframe="last_day")) == 1

    async def test_dashboard(self, ledger):
        await ledger.record_activity("a", "completed x")
        await ledger.create_task("t")
        dash = await ledger.get_dashboard()
        assert dash["summary"] == {
            "activeAgents": 1, "totalActivities": 1, "activeTasks": 1, "completedTasksToday": 0,
        }
        assert dash["productivity"][0]["avg_productivity"] == 1.0
        assert len(dash["recentActivities"]) == 1
