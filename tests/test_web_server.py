"""Tests for the dashboard FastAPI app."""

import pytest
from fastapi.testclient import TestClient

from teamai.web import create_app
from teamai.web.launcher import check_port_available, start_dashboard_server


@pytest.fixture
def client(root):
    return TestClient(create_app(root, heartbeat_timeout=600))


@pytest.fixture
def agents(coordinator):
    web = coordinator.register("webapp", "Build UI", tags="frontend")
    api = coordinator.register("api", "Build API")
    coordinator.send(api.id, web.id, "Schema ready", "See /docs")
    return web, api


class TestHealthEndpoint:
    def test_health(self, client, root):
        response = client.get("/health")
        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "healthy"
        assert "timestamp" in data
        assert data["installed"] is False
        assert data["root"] == str(root)


class TestDashboardPage:
    def test_index_is_html(self, client):
        response = client.get("/")
        assert response.status_code == 200
        assert "text/html" in response.headers["content-type"]
        assert "Team AI Dashboard" in response.text
        assert "/api/agents/{id}" in response.text


class TestAgentsEndpoints:
    def test_empty(self, client):
        data = client.get("/api/agents").json()
        assert data == {"agents": [], "count": 0}

    def test_lists_agents(self, client, agents):
        data = client.get("/api/agents").json()
        assert data["count"] == 2
        names = {a["name"]: a for a in data["agents"]}
        assert names["webapp"]["pending_messages"] == 1
        assert names["webapp"]["state"] == "active"

    def test_exclude_completed(self, client, agents, coordinator):
        coordinator.deregister(agents[1].id)
        data = client.get("/api/agents", params={"include_completed": "false"}).json()
        assert [a["name"] for a in data["agents"]] == ["webapp"]

    def test_agent_detail(self, client, agents):
        web, _ = agents
        data = client.get(f"/api/agents/{web.id}").json()
        assert data["name"] == "webapp"
        assert [p["subject"] for p in data["pending"]] == ["Schema ready"]

    def test_agent_not_found(self, client, agents):
        response = client.get("/api/agents/nobody")
        assert response.status_code == 404

    def test_agent_messages(self, client, agents):
        web, api = agents
        data = client.get(f"/api/agents/{web.id}/messages").json()
        assert data["count"] == 1
        assert data["messages"][0]["sender"] == api.id
        assert client.get("/api/agents/nobody/messages").status_code == 404


class TestStatsAndOverview:
    def test_stats(self, client, agents):
        data = client.get("/api/stats").json()
        assert data["total_agents"] == 2
        assert data["by_state"]["active"] == 2
        assert data["pending_messages"] == 1

    def test_overview_markdown(self, client, agents):
        response = client.get("/api/overview")
        assert response.status_code == 200
        assert response.headers["content-type"].startswith("text/markdown")
        assert response.text.startswith("# Team AI Overview")

    def test_read_only(self, client):
        assert client.post("/api/agents").status_code == 405


class TestLauncher:
    def test_busy_port_raises(self, root, monkeypatch):
        monkeypatch.setattr("teamai.web.launcher.check_port_available", lambda port, host: False)
        with pytest.raises(RuntimeError, match="already in use"):
            start_dashboard_server(root, port=8123)

    def test_runs_uvicorn(self, root, monkeypatch):
        calls = []
        monkeypatch.setattr("teamai.web.launcher.check_port_available", lambda port, host: True)
        monkeypatch.setattr("teamai.web.launcher.uvicorn.run", lambda app, **kwargs: calls.append(kwargs))
        start_dashboard_server(root, port=8123, host="127.0.0.1")
        assert calls == [{"host": "127.0.0.1", "port": 8123, "log_level": "warning"}]

    def test_check_port_available_returns_bool(self):
        assert isinstance(check_port_available(0, "127.0.0.1"), bool)
