#  Agent Watch - Change Analyzer Tests
#
#  Change tracking against files on disk, dependency edges, impact
#  analysis, stats and monitoring session lifecycle.
#
#  Depends on: agentwatch/services/change_analyzer.py
#  Used by:    pytest

import asyncio
import os
from pathlib import Path
from unittest.mock import patch

import pytest

from agentwatch.exceptions import InvalidStateError, NotFoundError, StoreError, ValidationError
from agentwatch.models.enums import ChangeType
from agentwatch.services.watcher import FileEvent


class TestTrackChanges:
    async def test_first_record_counts_all_lines_added(self, analyzer, project_dir):
        [record] = await analyzer.track_changes(str(project_dir), "modify", ["src/app.js"], agent_id="a1")
        assert record["lines_added"] == 5
        assert record["lines_deleted"] == 0
        assert record["size_before"] == 0
        assert record["size_after"] == len((project_dir / "src/app.js").read_bytes())
        assert record["file_hash"] is not None
        assert record["impact_level"] == "medium"
        assert record["metadata"]["extension"] == ".js"
        assert record["metadata"]["directory"] == "src"
        assert record["metadata"]["hasComments"] is True

    async def test_delta_against_previous_record(self, analyzer, project_dir, clock):
        await analyzer.track_changes(str(project_dir), "modify", ["src/app.js"])
        clock.advance(5)
        (project_dir / "src/app.js").write_text("// trimmed\n")
        [record] = await analyzer.track_changes(str(project_dir), "modify", ["src/app.js"])
        assert record["lines_added"] == 0
        assert record["lines_deleted"] == 3
        assert record["size_before"] > record["size_after"]

    async def test_missing_file_records_zero_metrics(self, analyzer, project_dir):
        [record] = await analyzer.track_changes(str(project_dir), "modify", ["src/ghost.js"])
        assert record["file_hash"] is None
        assert record["size_after"] == 0
        assert record["metadata"]["readError"] == "not found"

    async def test_delete_does_not_read(self, analyzer, project_dir):
        [record] = await analyzer.track_changes(str(project_dir), "delete", ["src/app.js"])
        assert record["file_hash"] is None
        assert record["lines_added"] == 0

    async def test_paths_normalized(self, analyzer, project_dir):
        [record] = await analyzer.track_changes(str(project_dir), "modify", ["./src\\utils/../app.js"])
        assert record["file_path"] == "src/app.js"

    async def test_invalid_change_type(self, analyzer, project_dir):
        with pytest.raises(InvalidStateError):
            await analyzer.track_changes(str(project_dir), "rename", ["src/app.js"])

    async def test_empty_batch(self, analyzer, project_dir):
        with pytest.raises(ValidationError):
            await analyzer.track_changes(str(project_dir), "modify", [])

    async def test_reported_impact_is_advisory(self, analyzer, project_dir):
        [record] = await analyzer.track_changes(
            str(project_dir), "create", ["src/app.js"], impact="critical",
        )
        assert record["impact_level"] == "low"
        assert record["metadata"]["reported_impact"] == "critical"

    async def test_high_impact_gets_analysis_and_event(self, analyzer, project_dir, captured_events, tmp_db):
        [record] = await analyzer.track_changes(str(project_dir), "modify", ["package.json"], agent_id="a1")
        assert record["impact_level"] == "high"
        assert record["impact_analysis"]["risk_score"] == record["risk_score"]
        assert "Run npm audit after dependency changes" in record["impact_analysis"]["recommendations"]

        stored = await analyzer.get_impact_analysis(record["id"])
        assert stored["change_id"] == record["id"]

        types = [e["type"] for e in captured_events]
        assert types == ["code_change", "high_impact_change"]
        high = captured_events[1]
        assert high["priority"] == "high"
        assert high["metadata"]["impact"] == "high"
        assert high["metadata"]["files"] == ["package.json"]

    async def test_low_impact_has_no_analysis(self, analyzer, project_dir, captured_events):
        [record] = await analyzer.track_changes(str(project_dir), "create", ["src/app.js"])
        assert record["impact_analysis"] is None
        assert await analyzer.get_impact_analysis(record["id"]) is None
        assert [e["type"] for e in captured_events] == ["code_change"]

    async def test_code_change_event_shape(self, analyzer, project_dir, captured_events):
        records = await analyzer.track_changes(
            str(project_dir), "modify", ["src/app.js", "src/utils/helper.js"], agent_id="a1",
        )
        event = captured_events[0]
        assert event["agentId"] == "a1"
        assert event["projectPath"] == str(project_dir)
        assert event["metadata"]["changeIds"] == [r["id"] for r in records]
        assert event["metadata"]["source"] == "agent"

    async def test_store_failure_still_publishes_committed_files(
        self, analyzer, project_dir, tmp_db, captured_events,
    ):
        real_write = tmp_db.execute_write
        inserts = []

        async def failing_write(sql, params=()):
            if sql.startswith("INSERT INTO code_changes"):
                inserts.append(params)
                if len(inserts) == 2:
                    raise StoreError("disk full")
            return await real_write(sql, params)

        with patch.object(tmp_db, "execute_write", side_effect=failing_write):
            with pytest.raises(StoreError):
                await analyzer.track_changes(
                    str(project_dir), "modify", ["package.json", "src/app.js"], agent_id="a1",
                )

        assert [c["file_path"] for c in await analyzer.list_changes()] == ["package.json"]
        assert [e["type"] for e in captured_events] == ["code_change", "high_impact_change"]
        assert captured_events[1]["metadata"]["files"] == ["package.json"]


class TestDependencies:
    async def test_edges_recorded_and_superseded(self, analyzer, project_dir, tmp_db, clock):
        [first] = await analyzer.track_changes(str(project_dir), "modify", ["src/app.js"])
        assert first["dependencies"] == [{"target": "src/utils/helper", "type": "import"}]

        clock.advance(1)
        await analyzer.track_changes(str(project_dir), "modify", ["src/app.js"])
        active = await tmp_db.fetchall(
            "SELECT * FROM file_dependencies WHERE source_file = 'src/app.js' AND superseded_at IS NULL"
        )
        total = await tmp_db.fetchall("SELECT * FROM file_dependencies WHERE source_file = 'src/app.js'")
        assert len(active) == 1
        assert len(total) == 2

    async def test_affected_components(self, analyzer, project_dir):
        (project_dir / "src/utils/helper.test.js").write_text("test('helper', () => {});\n")
        await analyzer.track_changes(str(project_dir), "modify", ["src/app.js"])

        affected = await analyzer.find_affected_components(
            {"project_path": str(project_dir), "file_path": "src/utils/helper.js"}
        )
        assert affected == ["src/app.js", "src/utils/helper.test.js"]

    async def test_affected_components_skip_ignored_dirs(self, analyzer, project_dir):
        (project_dir / "node_modules" / "x").mkdir(parents=True)
        (project_dir / "node_modules" / "x" / "helper.test.js").write_text("")
        affected = await analyzer.find_affected_components(
            {"project_path": str(project_dir), "file_path": "src/utils/helper.js"}
        )
        assert affected == []

    async def test_ignored_dirs_never_walked(self, analyzer, project_dir):
        (project_dir / "node_modules" / "pkg" / "deep").mkdir(parents=True)
        (project_dir / "src" / "utils" / "test_helper.py").write_text("")
        visited = []
        real_walk = os.walk

        def recording_walk(top, *args, **kwargs):
            for entry in real_walk(top, *args, **kwargs):
                visited.append(Path(entry[0]))
                yield entry

        with patch("agentwatch.services.change_analyzer.os.walk", side_effect=recording_walk):
            affected = await analyzer.find_affected_components(
                {"project_path": str(project_dir), "file_path": "src/utils/helper.js"}
            )

        assert affected == ["src/utils/test_helper.py"]
        assert project_dir / "src" / "utils" in visited
        assert not any("node_modules" in p.parts for p in visited)


class TestAnalyzeImpact:
    async def test_risk(self, analyzer, project_dir):
        result = await analyzer.analyze_impact(
            [{"file": "package.json", "changeType": "modify"},
             {"file": "src/app.js", "changeType": "create"}],
            str(project_dir),
        )
        assert result["type"] == "risk"
        assert result["summary"]["riskDistribution"] == {"low": 1, "medium": 1}
        assert result["details"][0]["factors"] == ["Dependency change"]
        assert "Update lockfile and verify compatibility" in result["recommendations"]

    async def test_recommendations_deduplicated(self, analyzer, project_dir):
        result = await analyzer.analyze_impact(
            [{"file": "a.js", "changeType": "delete"}, {"file": "b.js", "changeType": "delete"}],
            str(project_dir),
        )
        assert result["recommendations"].count("Verify no references remain") == 1

    async def test_complexity(self, analyzer, project_dir):
        result = await analyzer.analyze_impact(
            [{"file": "src/utils/helper.js"}, {"file": "src/missing.js"}],
            str(project_dir), "complexity",
        )
        assert result["details"][0]["complexity"] == 2
        assert result["details"][1]["readable"] is False
        assert result["summary"]["maxComplexity"] == 2

    async def test_dependencies(self, analyzer, project_dir):
        result = await analyzer.analyze_impact([{"file": "src/app.js"}], str(project_dir), "dependencies")
        assert result["details"][0]["dependencies"] == ["src/utils/helper"]
        assert result["summary"]["totalDependencies"] == 1

    async def test_security(self, analyzer, project_dir):
        (project_dir / "src/keys.js").write_text("const password = 'hunter22';\n")
        result = await analyzer.analyze_impact([{"file": "src/keys.js"}], str(project_dir), "security")
        assert result["summary"]["findingsBySeverity"] == {"high": 1}
        assert result["summary"]["filesWithFindings"] == 1

    async def test_missing_file_key(self, analyzer, project_dir):
        with pytest.raises(ValidationError):
            await analyzer.analyze_impact([{"changeType": "modify"}], str(project_dir))

    @pytest.mark.parametrize("field", ["linesAdded", "linesDeleted"])
    async def test_non_numeric_line_counts(self, analyzer, project_dir, field):
        with pytest.raises(ValidationError):
            await analyzer.analyze_impact([{"file": "a.js", field: "many"}], str(project_dir))

    async def test_unknown_type(self, analyzer, project_dir):
        with pytest.raises(InvalidStateError):
            await analyzer.analyze_impact([{"file": "a.js"}], str(project_dir), "style")


class TestQueries:
    async def test_get_change(self, analyzer, project_dir):
        [record] = await analyzer.track_changes(str(project_dir), "modify", ["package.json"])
        change = await analyzer.get_change(record["id"])
        assert change["file_path"] == "package.json"
        assert change["impact_analysis"]["change_id"] == record["id"]

    async def test_get_change_missing(self, analyzer):
        with pytest.raises(NotFoundError):
            await analyzer.get_change("nope")
        with pytest.raises(NotFoundError):
            await analyzer.get_impact_analysis("nope")

    async def test_list_filters(self, analyzer, project_dir, clock):
        await analyzer.track_changes(str(project_dir), "create", ["src/app.js"], agent_id="a1")
        clock.advance(1)
        await analyzer.track_changes(str(project_dir), "modify", ["package.json"], agent_id="a2")

        assert [c["agent_id"] for c in await analyzer.list_changes()] == ["a2", "a1"]
        assert len(await analyzer.list_changes(impact_level="high")) == 1
        assert len(await analyzer.list_changes(change_type="create")) == 1
        assert await analyzer.list_changes(project_path="/elsewhere") == []

    async def test_stats_by_type(self, analyzer, project_dir):
        await analyzer.track_changes(str(project_dir), "modify", ["src/app.js", "package.json"])
        await analyzer.track_changes(str(project_dir), "create", ["src/utils/helper.js"])
        stats = await analyzer.get_change_stats("last_day", "type")
        groups = {g["key"]: g for g in stats["groups"]}
        assert stats["total"] == 3
        assert groups["modify"]["count"] == 2
        assert groups["modify"]["highImpact"] == 1
        assert groups["create"]["count"] == 1

    async def test_stats_reject_custom(self, analyzer):
        with pytest.raises(InvalidStateError):
            await analyzer.get_change_stats("custom")

    async def test_recent_changes_scoped_to_project(self, analyzer, project_dir, tmp_path):
        other = tmp_path / "other"
        other.mkdir()
        (other / "a.js").write_text("let a = 1;\n")
        await analyzer.track_changes(str(project_dir), "modify", ["src/app.js"])
        await analyzer.track_changes(str(other), "create", ["a.js"])

        recent = await analyzer.get_recent_changes(limit=5, project_path=str(other))
        assert [c["file_path"] for c in recent] == ["a.js"]

    def test_risk_score_of_record(self, analyzer):
        record = {"file_path": "package.json", "change_type": "delete", "lines_deleted": 60}
        assert analyzer.calculate_risk_score(record) == 7.5


class TestMonitoring:
    async def test_setup_starts_watcher(self, analyzer, project_dir, watcher_registry, captured_events):
        session_id = await analyzer.setup_monitoring(str(project_dir), ["**/*.js"])
        assert watcher_registry.is_watching(session_id)
        session = await analyzer.get_monitoring_session(session_id)
        assert session["status"] == "active"
        assert session["is_watching"] is True
        assert captured_events[-1]["type"] == "monitoring_started"
        await analyzer.shutdown()

    async def test_setup_validation(self, analyzer, project_dir):
        with pytest.raises(ValidationError):
            await analyzer.setup_monitoring(str(project_dir / "nope"), ["*.js"])
        with pytest.raises(ValidationError):
            await analyzer.setup_monitoring(str(project_dir), [])

    async def test_watcher_event_tracked(self, analyzer, project_dir, watcher_registry, tmp_db):
        session_id = await analyzer.setup_monitoring(str(project_dir), ["**/*.js"])
        watcher = watcher_registry.get(session_id)

        watcher.notify(str(project_dir / "src" / "app.js"), ChangeType.MODIFY)
        await asyncio.sleep(0)
        await watcher._queue.join()

        [change] = await analyzer.list_changes(project_path=str(project_dir))
        assert change["agent_id"] == "file-watcher"
        assert change["change_reason"] == "file-system-change"
        assert change["source"] == "watcher"
        session = await analyzer.get_monitoring_session(session_id)
        assert session["events_processed"] == 1
        assert session["last_activity"] is not None
        await analyzer.shutdown()

    async def test_watcher_sourced_path_override(self, analyzer, project_dir, watcher_registry):
        (project_dir / "src" / "app.test.js").write_text("test('x', () => {});\n")
        session_id = await analyzer.setup_monitoring(str(project_dir), ["**/*.js"])
        watcher = watcher_registry.get(session_id)
        watcher._enqueue(FileEvent(session_id, "src/app.test.js", ChangeType.CREATE))
        await watcher._queue.join()

        [change] = await analyzer.list_changes()
        assert change["impact_level"] == "high"
        await analyzer.shutdown()

    async def test_stop_is_idempotent(self, analyzer, project_dir, watcher_registry, captured_events):
        session_id = await analyzer.setup_monitoring(str(project_dir), ["**/*.js"])
        stopped = await analyzer.stop_monitoring(session_id)
        assert stopped["status"] == "stopped"
        assert stopped["is_watching"] is False
        assert not watcher_registry.is_watching(session_id)

        again = await analyzer.stop_monitoring(session_id)
        assert again["status"] == "stopped"
        assert [e["type"] for e in captured_events].count("monitoring_stopped") == 1

    async def test_stop_unknown(self, analyzer):
        with pytest.raises(NotFoundError):
            await analyzer.stop_monitoring("nope")

    async def test_reconcile_marks_stale(self, analyzer, tmp_db, project_dir):
        await tmp_db.execute_write(
            "INSERT INTO monitoring_sessions (id, project_path, watch_patterns_json, status, created_at) "
            "VALUES ('old1', ?, '[\"*.js\"]', 'active', 1.0)",
            (str(project_dir),),
        )
        assert await analyzer.reconcile_sessions() == 1
        [session] = await analyzer.get_monitoring_status(status="stale")
        assert session["id"] == "old1"
        assert session["is_watching"] is False

    async def test_reconcile_keeps_live_sessions(self, analyzer, project_dir):
        session_id = await analyzer.setup_monitoring(str(project_dir), ["**/*.js"])
        assert await analyzer.reconcile_sessions() == 0
        assert (await analyzer.get_monitoring_session(session_id))["status"] == "active"
        await analyzer.shutdown()
