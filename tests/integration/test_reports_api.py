#  Agent Watch - Reports API Integration Tests
#
#  Report generation, retrieval and report templates via HTTP.
#
#  Depends on: agentwatch/routes/reports.py, tests/conftest.py
#  Used by:    pytest

import json
from pathlib import Path


class TestGenerate:
    async def test_json_report(self, app_client, project_dir):
        await app_client.post("/api/activities", json={
            "agent_id": "a", "activity": "completed x", "project_path": str(project_dir),
        })
        resp = await app_client.post("/api/reports", json={
            "project_path": str(project_dir), "timeframe": "last_day", "format": "json",
        })
        assert resp.status_code == 201
        report = resp.json()
        assert report["format"] == "json"
        assert Path(report["storage_location"]).is_file()
        assert json.loads(report["content"])["summary"]["totalActivities"] == 1

    async def test_custom_window(self, app_client):
        resp = await app_client.post("/api/reports", json={
            "timeframe": "custom", "window_start": 100, "window_end": 200, "format": "markdown",
        })
        assert resp.status_code == 201
        assert resp.json()["window_start"] == 100
        assert resp.json()["metadata"]["timeframe"] == "custom"

    async def test_half_window_rejected(self, app_client):
        resp = await app_client.post("/api/reports", json={"window_start": 100})
        assert resp.status_code == 422

    async def test_custom_without_window(self, app_client):
        resp = await app_client.post("/api/reports", json={"timeframe": "custom"})
        assert resp.status_code == 409

    async def test_get_and_list(self, app_client):
        created = (await app_client.post("/api/reports", json={"format": "html"})).json()
        resp = await app_client.get(f"/api/reports/{created['id']}")
        assert resp.status_code == 200
        assert resp.json()["content"] == created["content"]

        listed = (await app_client.get("/api/reports")).json()
        assert [r["id"] for r in listed] == [created["id"]]
        assert listed[0]["content"] is None

    async def test_get_missing(self, app_client):
        assert (await app_client.get("/api/reports/nope")).status_code == 404


class TestTemplates:
    async def test_create_and_render(self, app_client):
        resp = await app_client.post("/api/reports/templates", json={
            "name": "Digest",
            "template_content": "{{ team }} saw {{ summary.totalChanges }} changes ({{ summary.period }})",
            "variables": ["team"],
        })
        assert resp.status_code == 201
        template = resp.json()

        resp = await app_client.post(f"/api/reports/templates/{template['id']}/render", json={
            "data": {"summary": {"totalChanges": 4, "period": "2024-01-01 to 2024-01-02"}},
            "variables": {"team": "core"},
        })
        assert resp.status_code == 200
        assert resp.json()["content"] == "core saw 4 changes (2024-01-01 to 2024-01-02)"
        assert resp.json()["format"] == "markdown"

        listed = (await app_client.get("/api/reports/templates")).json()
        assert [t["name"] for t in listed] == ["Digest"]

    async def test_render_missing(self, app_client):
        resp = await app_client.post("/api/reports/templates/nope/render", json={})
        assert resp.status_code == 404

    async def test_invalid_template(self, app_client):
        resp = await app_client.post("/api/reports/templates", json={
            "name": "Bad", "template_content": "{% if %}",
        })
        assert resp.status_code == 422
