"""Tests for the read-only inspector and its markdown views."""

import json

import pytest

from teamai.exceptions import NotFound
from teamai.inspector import TeamInspector


@pytest.fixture
def inspector(root):
    return TeamInspector(root, heartbeat_timeout=600)


@pytest.fixture
def team(coordinator):
    """Three agents: one with mail, one stale, one completed."""
    web = coordinator.register(
        "webapp",
        "Implement the login form with validation | and tests",
        tags="frontend",
        working_directory="/work/webapp",
    )
    api = coordinator.register("api", "Build API", working_directory="/work/api")
    old = coordinator.register("old", "Done already")
    coordinator.send(api.id, web.id, "Schema ready", "See /docs")
    coordinator.deregister(old.id)
    return {"web": web, "api": api, "old": old}


class TestInspectorData:
    def test_empty_root(self, inspector):
        assert inspector.records() == []
        stats = inspector.stats()
        assert stats["installed"] is False
        assert stats["total_agents"] == 0

    def test_agents_summary(self, inspector, team, age_heartbeat):
        age_heartbeat(team["api"].id, 10_000)
        by_name = {a["name"]: a for a in inspector.agents()}
        assert by_name["webapp"]["state"] == "active"
        assert by_name["webapp"]["pending_messages"] == 1
        assert by_name["webapp"]["tags"] == ["frontend"]
        assert by_name["api"]["state"] == "stale"
        assert by_name["api"]["persisted_state"] == "active"
        assert by_name["old"]["state"] == "completed"
        assert {a["name"] for a in inspector.agents(include_completed=False)} == {"webapp", "api"}

    def test_agent_detail_lists_pending_subjects(self, inspector, team):
        detail = inspector.agent(team["web"].id)
        assert [p["subject"] for p in detail["pending"]] == ["Schema ready"]

    def test_unknown_agent(self, inspector, team):
        with pytest.raises(NotFound):
            inspector.agent("nobody")
        with pytest.raises(NotFound):
            inspector.agent("../etc")

    def test_messages(self, inspector, team):
        messages = inspector.messages(team["web"].id)
        assert [m["subject"] for m in messages] == ["Schema ready"]
        assert messages[0]["sender"] == team["api"].id

    def test_stats(self, inspector, team):
        stats = inspector.stats()
        assert stats["installed"] is True
        assert stats["total_agents"] == 3
        assert stats["by_state"] == {"active": 2, "stale": 0, "completed": 1}
        assert stats["pending_messages"] == 1

    def test_malformed_record_skipped(self, inspector, team, layout):
        layout.metadata_path(team["api"].id).write_text("{not json")
        assert {r.name for r in inspector.records()} == {"webapp", "old"}

    @pytest.mark.parametrize("field, value", [("tags", 5), ("capabilities", True), ("tags", 1.5)])
    def test_record_with_non_label_values_skipped(self, inspector, team, layout, field, value):
        path = layout.metadata_path(team["api"].id)
        data = json.loads(path.read_text())
        data[field] = value
        path.write_text(json.dumps(data))
        assert {r.name for r in inspector.records()} == {"webapp", "old"}
        assert "**Registered Agents:** 2" in inspector.overview_markdown()
        assert inspector.stats()["total_agents"] == 2

    def test_missing_subject_line(self, inspector, team, layout):
        (layout.todo_dir(team["api"].id) / "20000101T000000000000Z-abcdef12.md").write_text("no header\n")
        assert inspector.pending_subjects(team["api"].id) == [
            ("20000101T000000000000Z-abcdef12.md", "(no subject)")
        ]


class TestMarkdown:
    def test_overview(self, inspector, team):
        text = inspector.overview_markdown()
        assert text.startswith("# Team AI Overview\n")
        assert "**Registered Agents:** 3" in text
        assert "| Name | State | Current Task | Directory | Pending |" in text
        assert "| webapp | active | Implement the login form with  | webapp | 1 |" in text
        assert "## Available Commands" in text

    def test_overview_escapes_pipes(self, inspector, coordinator):
        coordinator.register("a|b", "x")
        assert "| a\\|b |" in inspector.overview_markdown()

    def test_overview_without_agents(self, inspector):
        text = inspector.overview_markdown()
        assert "**Registered Agents:** 0" in text
        assert "## Agents" not in text

    def test_agent_markdown(self, inspector, team):
        text = inspector.agent_markdown(team["web"].id)
        assert text.startswith("# Agent: webapp\n")
        assert f"- **ID:** {team['web'].id}" in text
        assert "- **Tags:** frontend" in text
        assert "## Pending Messages (1)" in text
        assert ": Schema ready" in text

    def test_agent_markdown_without_mail(self, inspector, team):
        text = inspector.agent_markdown(team["api"].id)
        assert "## Pending Messages" not in text
