#  Agent Watch - Change Analyzer
#
#  Per-file change tracking: content hash, line/size deltas against the
#  previous record of the same file, complexity, risk score and impact
#  level. Persists the change record, its dependency edges and (for
#  high/critical changes) an impact analysis in one transaction.
#  Owns monitoring sessions and their watchers.
#
#  Depends on: db/connection.py, services/classifier.py, services/watcher.py,
#              services/event_bus.py, models/enums.py, config.py
#  Used by:    container.py, routes/changes.py, routes/monitoring.py, services/reports.py

import asyncio
import fnmatch
import hashlib
import json
import logging
import os
import posixpath
import time
import uuid
from pathlib import Path

from agentwatch.config import IGNORED_DIRS, MAX_FILE_BYTES
from agentwatch.exceptions import InvalidStateError, NotFoundError, StoreError, ValidationError
from agentwatch.logging_config import agent_id_var
from agentwatch.models.enums import (
    IMPACT_RANK,
    TIMEFRAME_SECONDS,
    AnalysisType,
    ChangeSource,
    ChangeStatsGroup,
    ChangeType,
    ImpactLevel,
    SessionStatus,
    Timeframe,
    parse_enum,
)
from agentwatch.services.classifier import Classifier, HeuristicClassifier
from agentwatch.services.event_bus import make_event
from agentwatch.services.watcher import FileEvent, WatcherRegistry

logger = logging.getLogger("agentwatch.analyzer")

HIGH_IMPACT = (ImpactLevel.HIGH, ImpactLevel.CRITICAL)
WATCHER_AGENT_ID = "file-watcher"
WATCHER_REASON = "file-system-change"

_STATS_LIMITS = {
    ChangeStatsGroup.TYPE: None,
    ChangeStatsGroup.AGENT: 20,
    ChangeStatsGroup.PATH: 50,
}
_STATS_COLUMNS = {
    ChangeStatsGroup.TYPE: "change_type",
    ChangeStatsGroup.AGENT: "agent_id",
    ChangeStatsGroup.PATH: "file_path",
}


def _new_id() -> str:
    return uuid.uuid4().hex[:12]


def _loads(raw, default):
    return json.loads(raw) if raw else default


def _read_bytes(path: Path) -> bytes | None:
    if not path.is_file():
        return None
    return path.read_bytes()


def _change_row_to_dict(row) -> dict:
    return {
        "id": row["id"],
        "project_path": row["project_path"],
        "file_path": row["file_path"],
        "change_type": row["change_type"],
        "impact_level": row["impact_level"],
        "risk_score": row["risk_score"],
        "agent_id": row["agent_id"],
        "timestamp": row["timestamp"],
        "file_hash": row["file_hash"],
        "lines_added": row["lines_added"],
        "lines_deleted": row["lines_deleted"],
        "size_before": row["size_before"],
        "size_after": row["size_after"],
        "git_commit": row["git_commit"],
        "change_reason": row["change_reason"],
        "source": row["source"],
        "metadata": _loads(row["metadata_json"], {}),
    }


def _analysis_row_to_dict(row) -> dict:
    return {
        "id": row["id"],
        "change_id": row["change_id"],
        "analysis_type": row["analysis_type"],
        "risk_score": row["risk_score"],
        "affected_components": _loads(row["affected_components_json"], []),
        "recommendations": _loads(row["recommendations_json"], []),
        "timestamp": row["timestamp"],
    }


def _session_row_to_dict(row, is_watching: bool = False) -> dict:
    return {
        "id": row["id"],
        "project_path": row["project_path"],
        "watch_patterns": _loads(row["watch_patterns_json"], []),
        "notifications": _loads(row["notifications_json"], {}),
        "thresholds": _loads(row["thresholds_json"], {}),
        "status": row["status"],
        "created_at": row["created_at"],
        "last_activity": row["last_activity"],
        "events_processed": row["events_processed"],
        "events_dropped": row["events_dropped"],
        "is_watching": is_watching,
    }


def _test_variants(stem: str) -> tuple[str, ...]:
    return (f"{stem}.test.*", f"{stem}.spec.*", f"test_{stem}.py", f"{stem}_test.py")


def _find_test_files(root: Path, file_path: str) -> list[str]:
    """Test files whose name matches the changed file's basename (sync, off-loop)."""
    stem = Path(file_path).name.split(".")[0]
    if not stem or not root.is_dir():
        return []
    patterns = _test_variants(stem)
    found = set()
    for dirpath, dirnames, filenames in os.walk(root):
        # Pruned in place so ignored trees are never entered
        dirnames[:] = [d for d in dirnames if d not in IGNORED_DIRS]
        for name in filenames:
            if any(fnmatch.fnmatch(name, p) for p in patterns):
                rel = (Path(dirpath) / name).relative_to(root).as_posix()
                if rel != file_path:
                    found.add(rel)
    return sorted(found)


class ChangeAnalyzer:
    """Owns code_changes, file_dependencies, impact_analysis and monitoring_sessions."""

    def __init__(self, db, event_bus=None, classifier: Classifier | None = None,
                 registry: WatcherRegistry | None = None, clock=time.time):
        self._db = db
        self._bus = event_bus
        self._classifier = classifier or HeuristicClassifier()
        self._registry = registry or WatcherRegistry()
        self._clock = clock

    @property
    def classifier(self) -> Classifier:
        return self._classifier

    @property
    def registry(self) -> WatcherRegistry:
        return self._registry

    async def _publish(self, event: dict):
        if self._bus is not None:
            await self._bus.publish(event)

    # ------------------------------------------------------------------
    # Tracking
    # ------------------------------------------------------------------

    async def _file_metrics(self, project_root: Path, file_path: str, change_type: ChangeType) -> dict:
        """Hash, size, line count and complexity of the file as it is now.

        Unreadable files degrade to zero metrics; deletes never read.
        """
        metrics = {"hash": None, "size": 0, "line_count": 0, "complexity": 0,
                   "content": None, "flags": {}, "read_error": None}
        if change_type == ChangeType.DELETE:
            return metrics
        try:
            data = await asyncio.to_thread(_read_bytes, project_root / file_path)
        except OSError as e:
            logger.warning("Cannot read %s for metrics: %s", file_path, e)
            metrics["read_error"] = str(e)
            return metrics
        if data is None:
            logger.warning("File %s not found under %s, recording zero metrics", file_path, project_root)
            metrics["read_error"] = "not found"
            return metrics

        metrics["hash"] = hashlib.sha256(data).hexdigest()
        metrics["size"] = len(data)
        metrics["line_count"] = data.count(b"\n") + 1 if data else 0
        if len(data) <= MAX_FILE_BYTES:
            content = data.decode("utf-8", errors="replace")
            metrics["content"] = content
            metrics["complexity"] = self._classifier.complexity(content)
            if hasattr(self._classifier, "content_flags"):
                metrics["flags"] = self._classifier.content_flags(content)
        return metrics

    async def _previous_record(self, project_path: str, file_path: str):
        return await self._db.fetchone(
            "SELECT size_after, metadata_json FROM code_changes "
            "WHERE project_path = ? AND file_path = ? ORDER BY timestamp DESC, rowid DESC LIMIT 1",
            (project_path, file_path),
        )

    async def track_changes(
        self,
        project_path: str,
        change_type: str,
        files: list[str],
        impact: str | None = None,
        agent_id: str | None = None,
        git_commit: str | None = None,
        reason: str | None = None,
        source: str = "agent",
    ) -> list[dict]:
        """Analyze and persist one change record per file.

        Each file is written in its own transaction: record, superseded and
        new dependency edges, then the impact analysis for high/critical
        records. A store failure aborts the rest of the batch; files committed
        before it are still published.
        """
        change_type = parse_enum(ChangeType, change_type, "change type")
        source = parse_enum(ChangeSource, source, "source")
        reported = parse_enum(ImpactLevel, impact, "impact level") if impact else None
        if not files:
            raise ValidationError("At least one file is required")

        root = Path(project_path)
        records: list[dict] = []
        token = agent_id_var.set(agent_id)
        try:
            for raw_path in files:
                file_path = posixpath.normpath(raw_path.replace("\\", "/")).lstrip("/")
                record = await self._track_file(
                    root, project_path, file_path, change_type, reported,
                    agent_id, git_commit, reason, source,
                )
                records.append(record)
        except StoreError:
            logger.error("Change batch in %s aborted after %d of %d file(s)",
                         project_path, len(records), len(files))
            # Records already committed still get their events
            await self._publish_batch(project_path, change_type, records, agent_id, source)
            raise
        finally:
            agent_id_var.reset(token)

        await self._publish_batch(project_path, change_type, records, agent_id, source)
        return records

    async def _track_file(self, root, project_path, file_path, change_type, reported,
                          agent_id, git_commit, reason, source) -> dict:
        metrics = await self._file_metrics(root, file_path, change_type)
        prev = await self._previous_record(project_path, file_path)
        prev_lines = _loads(prev["metadata_json"], {}).get("lineCount", 0) if prev else 0
        size_before = prev["size_after"] if prev else 0

        lines_added = max(metrics["line_count"] - prev_lines, 0)
        lines_deleted = max(prev_lines - metrics["line_count"], 0)

        score = self._classifier.risk_score(file_path, change_type, lines_added, lines_deleted)
        level = self._classifier.classify_impact(
            score, change_type, file_path, watcher_sourced=source == ChangeSource.WATCHER,
        )

        metadata = {
            "extension": posixpath.splitext(file_path)[1],
            "directory": posixpath.dirname(file_path),
            "lineCount": metrics["line_count"],
            "characterCount": len(metrics["content"]) if metrics["content"] is not None else 0,
            "complexity": metrics["complexity"],
            **metrics["flags"],
        }
        if reported is not None:
            metadata["reported_impact"] = reported.value
        if metrics["read_error"]:
            metadata["readError"] = metrics["read_error"]

        now = self._clock()
        record = {
            "id": _new_id(),
            "project_path": project_path,
            "file_path": file_path,
            "change_type": change_type.value,
            "impact_level": level.value,
            "risk_score": score,
            "agent_id": agent_id,
            "timestamp": now,
            "file_hash": metrics["hash"],
            "lines_added": lines_added,
            "lines_deleted": lines_deleted,
            "size_before": size_before,
            "size_after": metrics["size"],
            "git_commit": git_commit,
            "change_reason": reason,
            "source": source.value,
            "metadata": metadata,
        }

        edges = []
        if metrics["content"]:
            edges = self._classifier.extract_dependencies(metrics["content"], file_path)

        analysis = None
        if level in HIGH_IMPACT:
            analysis = {
                "id": _new_id(),
                "change_id": record["id"],
                "analysis_type": "automated",
                "risk_score": score,
                "affected_components": await self.find_affected_components(record),
                "recommendations": self._classifier.recommendations(file_path, change_type, lines_added),
                "timestamp": now,
            }

        async with self._db.transaction():
            await self._db.execute_write(
                "INSERT INTO code_changes (id, project_path, file_path, change_type, impact_level, "
                "risk_score, agent_id, timestamp, file_hash, lines_added, lines_deleted, "
                "size_before, size_after, git_commit, change_reason, source, metadata_json) "
                "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
                (record["id"], project_path, file_path, record["change_type"], record["impact_level"],
                 score, agent_id, now, record["file_hash"], lines_added, lines_deleted,
                 size_before, record["size_after"], git_commit, reason, record["source"],
                 json.dumps(metadata)),
            )
            await self._db.execute_write(
                "UPDATE file_dependencies SET superseded_at = ? "
                "WHERE project_path = ? AND source_file = ? AND superseded_at IS NULL",
                (now, project_path, file_path),
            )
            for target, kind in edges:
                await self._db.execute_write(
                    "INSERT INTO file_dependencies (id, change_id, source_file, target_file, "
                    "dependency_type, project_path, timestamp) VALUES (?, ?, ?, ?, ?, ?, ?)",
                    (_new_id(), record["id"], file_path, target, kind.value, project_path, now),
                )
            if analysis is not None:
                await self._db.execute_write(
                    "INSERT INTO impact_analysis (id, change_id, analysis_type, risk_score, "
                    "affected_components_json, recommendations_json, timestamp) "
                    "VALUES (?, ?, ?, ?, ?, ?, ?)",
                    (analysis["id"], record["id"], analysis["analysis_type"], score,
                     json.dumps(analysis["affected_components"]),
                     json.dumps(analysis["recommendations"]), now),
                )

        record["dependencies"] = [{"target": t, "type": k.value} for t, k in edges]
        record["impact_analysis"] = analysis
        logger.info("Change tracked: %s (%s) - %s impact, risk %.1f",
                    file_path, change_type.value, level.value, score)
        return record

    async def _publish_batch(self, project_path, change_type, records, agent_id, source):
        if not records:
            return
        top = max((ImpactLevel(r["impact_level"]) for r in records), key=IMPACT_RANK.get)
        files = [r["file_path"] for r in records]
        await self._publish(make_event(
            "code_change",
            message=f"{change_type.value} {len(records)} file(s) in {project_path}",
            project_path=project_path,
            agent_id=agent_id,
            priority="low",
            metadata={
                "changeType": change_type.value,
                "files": files,
                "impact": top.value,
                "changeIds": [r["id"] for r in records],
                "source": source.value,
            },
        ))

        high = [r for r in records if ImpactLevel(r["impact_level"]) in HIGH_IMPACT]
        if high:
            await self._publish(make_event(
                "high_impact_change",
                message=f"{len(high)} {top.value} impact change(s) in {project_path}: "
                        + ", ".join(r["file_path"] for r in high),
                project_path=project_path,
                agent_id=agent_id,
                priority="critical" if top == ImpactLevel.CRITICAL else "high",
                metadata={
                    "changeType": change_type.value,
                    "impact": top.value,
                    "files": [r["file_path"] for r in high],
                    "changeIds": [r["id"] for r in high],
                    "riskScore": max(r["risk_score"] for r in high),
                    "source": source.value,
                },
            ))

    # ------------------------------------------------------------------
    # Risk & impact
    # ------------------------------------------------------------------

    def calculate_risk_score(self, record: dict) -> float:
        return self._classifier.risk_score(
            record["file_path"],
            record["change_type"],
            record.get("lines_added", 0) or 0,
            record.get("lines_deleted", 0) or 0,
        )

    async def find_affected_components(self, record: dict) -> list[str]:
        """Dependents of the file via active edges, plus matching test files."""
        file_path = record["file_path"]
        stem_path, _ = posixpath.splitext(file_path)
        targets = {file_path, stem_path}
        if posixpath.basename(stem_path) == "index":
            targets.add(posixpath.dirname(stem_path))
        targets.discard("")

        placeholders = ",".join("?" * len(targets))
        rows = await self._db.fetchall(
            "SELECT DISTINCT source_file FROM file_dependencies "
            f"WHERE project_path = ? AND superseded_at IS NULL AND target_file IN ({placeholders})",
            (record["project_path"], *sorted(targets)),
        )
        components = {r["source_file"] for r in rows}
        components.discard(file_path)
        components.update(await asyncio.to_thread(_find_test_files, Path(record["project_path"]), file_path))
        return sorted(components)

    async def analyze_impact(self, changes: list[dict], project_path: str,
                             analysis_type: str = "risk") -> dict:
        """Per-file analysis of proposed or past changes, with a summary.

        Each change is {file, changeType?, linesAdded?, linesDeleted?}.
        """
        analysis_type = parse_enum(AnalysisType, analysis_type, "analysis type")
        details = []
        recommendations: list[str] = []

        for change in changes:
            file_path = change.get("file") or change.get("file_path")
            if not file_path:
                raise ValidationError("Each change needs a 'file'")
            change_type = parse_enum(ChangeType, change.get("changeType", "modify"), "change type")
            try:
                added = int(change.get("linesAdded", 0) or 0)
                deleted = int(change.get("linesDeleted", 0) or 0)
            except (TypeError, ValueError) as e:
                raise ValidationError(f"Line counts for {file_path} must be integers") from e

            if analysis_type == AnalysisType.RISK:
                detail = self._risk_detail(file_path, change_type, added, deleted)
            elif analysis_type == AnalysisType.DEPENDENCIES:
                detail = await self._dependency_detail(project_path, file_path)
            else:
                detail = await self._content_detail(project_path, file_path, analysis_type)
            details.append(detail)

            for rec in self._classifier.recommendations(file_path, change_type, added):
                if rec not in recommendations:
                    recommendations.append(rec)

        return {
            "type": analysis_type.value,
            "summary": self._summarize(details, analysis_type),
            "details": details,
            "recommendations": recommendations,
        }

    def _risk_detail(self, file_path, change_type, added, deleted) -> dict:
        score = self._classifier.risk_score(file_path, change_type, added, deleted)
        factors = []
        if hasattr(self._classifier, "risk_factors"):
            factors = self._classifier.risk_factors(file_path, added, deleted)
        return {
            "file": file_path,
            "riskScore": score,
            "riskLevel": "high" if score > 5 else "medium" if score > 3 else "low",
            "factors": factors,
        }

    async def _dependency_detail(self, project_path, file_path) -> dict:
        metrics = await self._file_metrics(Path(project_path), file_path, ChangeType.MODIFY)
        deps = []
        if metrics["content"]:
            deps = [t for t, _ in self._classifier.extract_dependencies(metrics["content"], file_path)]
        dependents = await self.find_affected_components(
            {"project_path": project_path, "file_path": file_path}
        )
        return {"file": file_path, "dependencies": deps, "dependents": dependents}

    async def _content_detail(self, project_path, file_path, analysis_type) -> dict:
        metrics = await self._file_metrics(Path(project_path), file_path, ChangeType.MODIFY)
        content = metrics["content"]
        detail = {"file": file_path, "readable": content is not None}
        if analysis_type == AnalysisType.COMPLEXITY:
            complexity = metrics["complexity"]
            detail.update({
                "complexity": complexity,
                "lineCount": metrics["line_count"],
                "level": "low" if complexity <= 10 else "medium" if complexity <= 20 else "high",
            })
        elif analysis_type == AnalysisType.SECURITY:
            findings = []
            if content and hasattr(self._classifier, "security_findings"):
                findings = self._classifier.security_findings(content)
            detail["findings"] = findings
        elif analysis_type == AnalysisType.PERFORMANCE:
            findings = []
            if content and hasattr(self._classifier, "performance_findings"):
                findings = self._classifier.performance_findings(content)
            detail["findings"] = findings
        return detail

    @staticmethod
    def _summarize(details: list[dict], analysis_type: AnalysisType) -> dict:
        summary = {"totalFiles": len(details), "analysisType": analysis_type.value}

        if analysis_type == AnalysisType.RISK:
            dist: dict[str, int] = {}
            for d in details:
                dist[d["riskLevel"]] = dist.get(d["riskLevel"], 0) + 1
            summary["riskDistribution"] = dist
        elif analysis_type == AnalysisType.COMPLEXITY:
            values = [d["complexity"] for d in details if d["readable"]]
            dist = {}
            for d in details:
                if d["readable"]:
                    dist[d["level"]] = dist.get(d["level"], 0) + 1
            summary["averageComplexity"] = round(sum(values) / len(values), 2) if values else 0
            summary["maxComplexity"] = max(values, default=0)
            summary["complexityDistribution"] = dist
        elif analysis_type == AnalysisType.DEPENDENCIES:
            summary["totalDependencies"] = sum(len(d["dependencies"]) for d in details)
            summary["totalDependents"] = sum(len(d["dependents"]) for d in details)
        elif analysis_type == AnalysisType.SECURITY:
            by_severity: dict[str, int] = {}
            for d in details:
                for f in d["findings"]:
                    by_severity[f["severity"]] = by_severity.get(f["severity"], 0) + 1
            summary["findingsBySeverity"] = by_severity
            summary["filesWithFindings"] = sum(1 for d in details if d["findings"])
        elif analysis_type == AnalysisType.PERFORMANCE:
            by_kind: dict[str, int] = {}
            for d in details:
                for f in d["findings"]:
                    by_kind[f["kind"]] = by_kind.get(f["kind"], 0) + 1
            summary["findingsByKind"] = by_kind
            summary["filesWithFindings"] = sum(1 for d in details if d["findings"])
        return summary

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    async def get_change(self, change_id: str) -> dict:
        row = await self._db.fetchone("SELECT * FROM code_changes WHERE id = ?", (change_id,))
        if not row:
            raise NotFoundError(f"Change {change_id} not found")
        change = _change_row_to_dict(row)
        analysis = await self._db.fetchone(
            "SELECT * FROM impact_analysis WHERE change_id = ? ORDER BY timestamp DESC LIMIT 1",
            (change_id,),
        )
        change["impact_analysis"] = _analysis_row_to_dict(analysis) if analysis else None
        return change

    async def get_impact_analysis(self, change_id: str) -> dict | None:
        change = await self._db.fetchone("SELECT id FROM code_changes WHERE id = ?", (change_id,))
        if not change:
            raise NotFoundError(f"Change {change_id} not found")
        row = await self._db.fetchone(
            "SELECT * FROM impact_analysis WHERE change_id = ? ORDER BY timestamp DESC LIMIT 1",
            (change_id,),
        )
        return _analysis_row_to_dict(row) if row else None

    async def list_changes(
        self,
        project_path: str | None = None,
        agent_id: str | None = None,
        change_type: str | None = None,
        impact_level: str | None = None,
        since: float | None = None,
        until: float | None = None,
        limit: int = 100,
        offset: int = 0,
    ) -> list[dict]:
        clauses, params = [], []
        if project_path:
            clauses.append("project_path = ?")
            params.append(project_path)
        if agent_id:
            clauses.append("agent_id = ?")
            params.append(agent_id)
        if change_type:
            clauses.append("change_type = ?")
            params.append(parse_enum(ChangeType, change_type, "change type").value)
        if impact_level:
            clauses.append("impact_level = ?")
            params.append(parse_enum(ImpactLevel, impact_level, "impact level").value)
        if since is not None:
            clauses.append("timestamp >= ?")
            params.append(since)
        if until is not None:
            clauses.append("timestamp <= ?")
            params.append(until)
        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
        rows = await self._db.fetchall(
            f"SELECT * FROM code_changes {where} ORDER BY timestamp DESC LIMIT ? OFFSET ?",
            (*params, limit, offset),
        )
        return [_change_row_to_dict(r) for r in rows]

    async def get_recent_changes(self, limit: int = 50, project_path: str | None = None) -> list[dict]:
        return await self.list_changes(project_path=project_path, limit=limit)

    async def get_change_stats(self, period: str = "last_day", group_by: str = "type") -> dict:
        period = parse_enum(Timeframe, period, "period")
        if period not in TIMEFRAME_SECONDS:
            raise InvalidStateError("Change stats require a fixed period")
        group = parse_enum(ChangeStatsGroup, group_by, "group_by")
        column = _STATS_COLUMNS[group]
        since = self._clock() - TIMEFRAME_SECONDS[period]

        sql = (
            f"SELECT {column} AS key, COUNT(*) AS count, AVG(risk_score) AS avg_risk, "
            "SUM(lines_added) AS lines_added, SUM(lines_deleted) AS lines_deleted, "
            "SUM(CASE WHEN impact_level IN ('high', 'critical') THEN 1 ELSE 0 END) AS high_impact "
            f"FROM code_changes WHERE timestamp >= ? GROUP BY {column} ORDER BY count DESC"
        )
        params: list = [since]
        if _STATS_LIMITS[group]:
            sql += " LIMIT ?"
            params.append(_STATS_LIMITS[group])
        rows = await self._db.fetchall(sql, params)
        groups = [
            {
                "key": r["key"],
                "count": r["count"],
                "avgRisk": round(r["avg_risk"] or 0.0, 2),
                "linesAdded": r["lines_added"] or 0,
                "linesDeleted": r["lines_deleted"] or 0,
                "highImpact": r["high_impact"] or 0,
            }
            for r in rows
        ]
        return {
            "period": period.value,
            "groupBy": group.value,
            "since": since,
            "total": sum(g["count"] for g in groups),
            "groups": groups,
        }

    # ------------------------------------------------------------------
    # Monitoring sessions
    # ------------------------------------------------------------------

    async def setup_monitoring(self, project_path: str, watch_patterns: list[str],
                               notification_config: dict | None = None,
                               thresholds: dict | None = None) -> str:
        if not watch_patterns:
            raise ValidationError("At least one watch pattern is required")
        if not Path(project_path).is_dir():
            raise ValidationError(f"Project path {project_path} is not a directory")

        session_id = _new_id()
        now = self._clock()
        await self._db.execute_write(
            "INSERT INTO monitoring_sessions (id, project_path, watch_patterns_json, "
            "notifications_json, thresholds_json, status, created_at) VALUES (?, ?, ?, ?, ?, ?, ?)",
            (session_id, project_path, json.dumps(list(watch_patterns)),
             json.dumps(notification_config or {}), json.dumps(thresholds or {}),
             SessionStatus.ACTIVE.value, now),
        )

        async def process(event: FileEvent, dropped: int):
            await self._process_watcher_event(project_path, event, dropped)

        try:
            await self._registry.start(session_id, project_path, list(watch_patterns), process)
        except OSError as e:
            await self._db.execute_write(
                "UPDATE monitoring_sessions SET status = ? WHERE id = ?",
                (SessionStatus.STOPPED.value, session_id),
            )
            raise ValidationError(f"Cannot watch {project_path}: {e}") from e

        logger.info("Monitoring setup for %s with id %s", project_path, session_id)
        await self._publish(make_event(
            "monitoring_started",
            message=f"Monitoring {project_path}",
            project_path=project_path,
            priority="low",
            metadata={"sessionId": session_id, "watchPatterns": list(watch_patterns)},
        ))
        return session_id

    async def _process_watcher_event(self, project_path: str, event: FileEvent, dropped: int):
        await self.track_changes(
            project_path, event.change_type, [event.rel_path],
            agent_id=WATCHER_AGENT_ID, reason=WATCHER_REASON, source=ChangeSource.WATCHER,
        )
        await self._db.execute_write(
            "UPDATE monitoring_sessions SET last_activity = ?, "
            "events_processed = events_processed + 1, events_dropped = ? WHERE id = ?",
            (self._clock(), dropped, event.session_id),
        )

    async def stop_monitoring(self, session_id: str) -> dict:
        """Detach the watcher and mark the session stopped. Idempotent."""
        row = await self._db.fetchone("SELECT * FROM monitoring_sessions WHERE id = ?", (session_id,))
        if not row:
            raise NotFoundError(f"Monitoring session {session_id} not found")

        watcher = await self._registry.stop(session_id)
        if watcher is not None:
            await self._db.execute_write(
                "UPDATE monitoring_sessions SET events_dropped = ? WHERE id = ?",
                (watcher.dropped, session_id),
            )

        if row["status"] != SessionStatus.STOPPED.value:
            await self._db.execute_write(
                "UPDATE monitoring_sessions SET status = ? WHERE id = ?",
                (SessionStatus.STOPPED.value, session_id),
            )
            logger.info("Stopped monitoring session %s", session_id)
            await self._publish(make_event(
                "monitoring_stopped",
                message=f"Stopped monitoring {row['project_path']}",
                project_path=row["project_path"],
                priority="low",
                metadata={"sessionId": session_id},
            ))

        row = await self._db.fetchone("SELECT * FROM monitoring_sessions WHERE id = ?", (session_id,))
        return _session_row_to_dict(row, is_watching=False)

    async def get_monitoring_session(self, session_id: str) -> dict:
        row = await self._db.fetchone("SELECT * FROM monitoring_sessions WHERE id = ?", (session_id,))
        if not row:
            raise NotFoundError(f"Monitoring session {session_id} not found")
        return _session_row_to_dict(row, self._registry.is_watching(session_id))

    async def get_monitoring_status(self, status: str | None = None) -> list[dict]:
        if status:
            rows = await self._db.fetchall(
                "SELECT * FROM monitoring_sessions WHERE status = ? ORDER BY created_at DESC",
                (parse_enum(SessionStatus, status, "session status").value,),
            )
        else:
            rows = await self._db.fetchall("SELECT * FROM monitoring_sessions ORDER BY created_at DESC")
        return [_session_row_to_dict(r, self._registry.is_watching(r["id"])) for r in rows]

    async def reconcile_sessions(self) -> int:
        """Mark sessions that are active in the store but have no live watcher as stale."""
        live = self._registry.live_sessions()
        rows = await self._db.fetchall(
            "SELECT id FROM monitoring_sessions WHERE status = ?", (SessionStatus.ACTIVE.value,)
        )
        stale = [r["id"] for r in rows if r["id"] not in live]
        for session_id in stale:
            await self._db.execute_write(
                "UPDATE monitoring_sessions SET status = ? WHERE id = ?",
                (SessionStatus.STALE.value, session_id),
            )
        if stale:
            logger.warning("Marked %d monitoring session(s) stale (no live watcher)", len(stale))
        return len(stale)

    async def shutdown(self):
        """Stop every live watcher; sessions stay active and become stale on next start."""
        await self._registry.stop_all()
