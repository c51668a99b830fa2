#  Agent Watch - Changes & Monitoring API Integration Tests
#
#  Change intake, history, stats, ad-hoc impact analysis and monitoring
#  session lifecycle via HTTP.
#
#  Depends on: agentwatch/routes/changes.py, agentwatch/routes/monitoring.py, tests/conftest.py
#  Used by:    pytest


class TestTrackChanges:
    async def test_batch_recorded(self, app_client, project_dir):
        resp = await app_client.post("/api/changes", json={
            "project_path": str(project_dir),
            "change_type": "modify",
            "files": ["src/app.js", "package.json"],
            "agent_id": "agent-1",
            "reason": "wire helper",
        })
        assert resp.status_code == 201
        by_file = {c["file_path"]: c for c in resp.json()}
        assert by_file["src/app.js"]["impact_level"] == "medium"
        assert by_file["src/app.js"]["dependencies"] == [{"target": "src/utils/helper", "type": "import"}]
        assert by_file["package.json"]["impact_level"] == "high"
        assert by_file["package.json"]["impact_analysis"] is not None
        assert by_file["package.json"]["change_reason"] == "wire helper"

    async def test_bad_change_type(self, app_client, project_dir):
        resp = await app_client.post("/api/changes", json={
            "project_path": str(project_dir), "change_type": "rename", "files": ["a.js"],
        })
        assert resp.status_code == 409

    async def test_empty_files(self, app_client, project_dir):
        resp = await app_client.post("/api/changes", json={
            "project_path": str(project_dir), "change_type": "modify", "files": [],
        })
        assert resp.status_code == 422


class TestChangeQueries:
    async def test_get_change(self, app_client, project_dir):
        created = (await app_client.post("/api/changes", json={
            "project_path": str(project_dir), "change_type": "modify", "files": ["package.json"],
        })).json()[0]
        resp = await app_client.get(f"/api/changes/{created['id']}")
        assert resp.status_code == 200
        assert resp.json()["impact_analysis"]["change_id"] == created["id"]

    async def test_get_missing(self, app_client):
        assert (await app_client.get("/api/changes/nope")).status_code == 404

    async def test_list_and_stats(self, app_client, project_dir):
        await app_client.post("/api/changes", json={
            "project_path": str(project_dir), "change_type": "create", "files": ["src/app.js"],
        })
        await app_client.post("/api/changes", json={
            "project_path": str(project_dir), "change_type": "modify", "files": ["package.json"],
        })
        resp = await app_client.get("/api/changes", params={"impact_level": "high"})
        assert [c["file_path"] for c in resp.json()] == ["package.json"]

        stats = (await app_client.get("/api/changes/stats/summary", params={"group_by": "type"})).json()
        assert stats["total"] == 2
        assert {g["key"] for g in stats["groups"]} == {"create", "modify"}

    async def test_stats_bad_group(self, app_client):
        resp = await app_client.get("/api/changes/stats/summary", params={"group_by": "color"})
        assert resp.status_code == 409

    async def test_analyze(self, app_client, project_dir):
        resp = await app_client.post("/api/changes/analyze", json={
            "project_path": str(project_dir),
            "analysis_type": "complexity",
            "changes": [{"file": "src/utils/helper.js"}],
        })
        assert resp.status_code == 200
        assert resp.json()["details"][0]["complexity"] == 2
        # Nothing recorded
        assert (await app_client.get("/api/changes")).json() == []


class TestMonitoring:
    async def test_lifecycle(self, app_client, project_dir):
        resp = await app_client.post("/api/monitoring", json={
            "project_path": str(project_dir), "watch_patterns": ["**/*.js"],
        })
        assert resp.status_code == 201
        session = resp.json()
        assert session["status"] == "active"
        assert session["is_watching"] is True

        health = (await app_client.get("/api/health")).json()
        assert health["watchers"] == 1

        listed = (await app_client.get("/api/monitoring", params={"status": "active"})).json()
        assert [s["id"] for s in listed] == [session["id"]]

        resp = await app_client.delete(f"/api/monitoring/{session['id']}")
        assert resp.status_code == 200
        assert resp.json()["status"] == "stopped"
        assert resp.json()["is_watching"] is False

        # Idempotent
        resp = await app_client.delete(f"/api/monitoring/{session['id']}")
        assert resp.status_code == 200
        assert resp.json()["status"] == "stopped"

    async def test_bad_path(self, app_client, tmp_path):
        resp = await app_client.post("/api/monitoring", json={
            "project_path": str(tmp_path / "missing"), "watch_patterns": ["*"],
        })
        assert resp.status_code == 422

    async def test_unknown_session(self, app_client):
        assert (await app_client.get("/api/monitoring/nope")).status_code == 404
        assert (await app_client.delete("/api/monitoring/nope")).status_code == 404
