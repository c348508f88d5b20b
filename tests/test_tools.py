"""Tests for the assistant tool adapter."""

import time

import pytest

from teamai.session import AgentSession
from teamai.tools import TOOL_NAMES, ToolDispatcher, ToolResult, get_tool_definitions


@pytest.fixture
def dispatcher(coordinator):
    d = ToolDispatcher(coordinator, model="sonnet", client="cursor")
    yield d
    d.close()


def register(dispatcher, name, **extra):
    result = dispatcher.call("team-ai-register", {"name": name, "command": f"{name} task", **extra})
    assert not result.is_error, result.text
    return result.agent_id


class TestToolDefinitions:
    def test_all_tools_listed(self):
        definitions = get_tool_definitions("cursor")
        assert [d["name"] for d in definitions] == list(TOOL_NAMES)
        assert len(definitions) == 8

    def test_schemas(self):
        by_name = {d["name"]: d for d in get_tool_definitions("vscode")}
        register_schema = by_name["team-ai-register"]["inputSchema"]
        assert register_schema["required"] == ["name", "command"]
        assert "vscode-frontend" in register_schema["properties"]["name"]["description"]
        assert by_name["team-ai-broadcast"]["inputSchema"]["properties"]["type"]["default"] == "info"
        assert by_name["team-ai-send"]["inputSchema"]["properties"]["type"]["default"] == "request"


class TestToolResult:
    def test_to_dict(self):
        assert ToolResult("ok").to_dict() == {"content": [{"type": "text", "text": "ok"}]}
        data = ToolResult("bad", is_error=True, agent_id="a1").to_dict()
        assert data["isError"] is True
        assert data["agentId"] == "a1"


class TestDispatcher:
    def test_register_returns_id(self, dispatcher, coordinator):
        result = dispatcher.call(
            "team-ai-register", {"name": "webapp", "command": "Build UI", "tags": "frontend"}
        )
        assert result.agent_id
        assert result.text.startswith(f"Successfully registered as agent: {result.agent_id}")
        assert f'agentId="{result.agent_id}"' in result.text
        record = coordinator.get_agent(result.agent_id)
        assert record.model == "sonnet"
        assert record.client == "cursor"
        assert record.tags == ["frontend"]

    def test_register_missing_argument(self, dispatcher):
        result = dispatcher.call("team-ai-register", {"name": "webapp"})
        assert result.is_error
        assert result.text == "Error executing team-ai-register: register: Missing required argument: command"

    def test_unknown_tool(self, dispatcher):
        result = dispatcher.call("team-ai-teleport", {})
        assert result.is_error
        assert "Unknown tool" in result.text

    def test_list(self, dispatcher):
        assert dispatcher.call("team-ai-list").text == "No agents registered"
        register(dispatcher, "webapp")
        text = dispatcher.call("team-ai-list", {"verbose": True}).text
        assert text.startswith("Registered agents (1):")
        assert "webapp" in text
        assert "[active]" in text
        assert "pending messages: 0" in text

    def test_send_and_check(self, dispatcher):
        alice = register(dispatcher, "alice")
        bob = register(dispatcher, "bob")
        sent = dispatcher.call(
            "team-ai-send", {"target": "bob", "subject": "Schema?", "body": "Which fields?"}, agent_id=alice
        )
        assert not sent.is_error, sent.text
        assert sent.text.startswith(f"Message sent to {bob}")

        checked = dispatcher.call("team-ai-check", {"agentId": bob})
        assert checked.text.startswith(f"1 message(s) for {bob}:")
        assert "Subject: Schema?" in checked.text
        assert "Which fields?" in checked.text

    def test_check_empty(self, dispatcher):
        agent = register(dispatcher, "alice")
        assert dispatcher.call("team-ai-check", {"agentId": agent}).text == f"No pending messages for {agent}"

    def test_send_without_identity(self, dispatcher):
        register(dispatcher, "bob")
        result = dispatcher.call("team-ai-send", {"target": "bob", "subject": "s", "body": "b"})
        assert result.is_error
        assert result.text.startswith("Error executing team-ai-send: send: This session is not registered")

    def test_send_to_unknown_target(self, dispatcher):
        alice = register(dispatcher, "alice")
        result = dispatcher.call(
            "team-ai-send", {"target": "ghost", "subject": "s", "body": "b"}, agent_id=alice
        )
        assert result.is_error
        assert result.text == "Error executing team-ai-send: send: Unknown recipient 'ghost'"

    def test_status(self, dispatcher):
        register(dispatcher, "alice")
        text = dispatcher.call("team-ai-status").text
        assert text.startswith("Team AI Status:")
        assert "- Installed: Yes" in text
        assert "- Registered agents: 1" in text

    def test_agents_by_capability(self, dispatcher):
        register(dispatcher, "webapp", capabilities="typescript,css")
        found = dispatcher.call("team-ai-agents-by-capability", {"capability": "CSS"})
        assert found.text.startswith('Agents with capability "css":')
        assert "webapp" in found.text
        missing = dispatcher.call("team-ai-agents-by-capability", {"capability": "rust"})
        assert missing.text == "No agents found with capability: rust"

    def test_broadcast(self, dispatcher):
        a = register(dispatcher, "a", tags="frontend")
        register(dispatcher, "b", tags="frontend")
        register(dispatcher, "c", tags="backend")
        result = dispatcher.call(
            "team-ai-broadcast", {"subject": "Freeze", "body": "No merges", "filterTag": "frontend"}, agent_id=a
        )
        assert result.text == "Broadcast sent to 1/1 agents:\n- b: sent"

    def test_broadcast_without_recipients(self, dispatcher):
        a = register(dispatcher, "a")
        result = dispatcher.call("team-ai-broadcast", {"subject": "s", "body": "b"}, agent_id=a)
        assert result.is_error
        assert result.text == (
            "Error executing team-ai-broadcast: broadcast: No agents found matching broadcast criteria"
        )

    def test_watch_start(self, dispatcher, coordinator):
        agent = register(dispatcher, "a")
        result = dispatcher.call("team-ai-watch-start", {"agentId": agent, "interval": 0.05})
        assert result.text == f"Started watching for messages (agent: {agent})"
        assert len(coordinator.handles_for(agent)) == 1

    def test_watch_start_rejects_nan_interval(self, dispatcher, coordinator):
        agent = register(dispatcher, "a")
        result = dispatcher.call("team-ai-watch-start", {"agentId": agent, "interval": "nan"})
        assert result.is_error
        assert result.text.startswith("Error executing team-ai-watch-start: watch_start: Watch interval must be a finite")
        assert coordinator.handles_for(agent) == []

    def test_timeout(self, coordinator, monkeypatch):
        dispatcher = ToolDispatcher(coordinator, timeout=0.1)

        def slow_status():
            time.sleep(0.5)

        monkeypatch.setattr(coordinator, "status", slow_status)
        try:
            result = dispatcher.call("team-ai-status")
        finally:
            dispatcher.close()
        assert result.is_error
        assert result.text == "Error executing team-ai-status: status: Operation timed out after 0.1s"

    def test_unexpected_error_is_reported(self, dispatcher, coordinator, monkeypatch):
        def broken():
            raise RuntimeError("kaboom")

        monkeypatch.setattr(coordinator, "status", broken)
        result = dispatcher.call("team-ai-status")
        assert result.is_error
        assert result.text == "Error executing team-ai-status: status: kaboom"


class TestDispatcherWithSession:
    def test_register_adopted_by_session(self, coordinator):
        session = AgentSession(coordinator, client="cursor")
        auto_id = session.start()
        dispatcher = ToolDispatcher(coordinator, client="cursor", session=session)
        try:
            explicit = register(dispatcher, "explicit")
            assert session.agent_id == explicit
            assert coordinator.get_agent(auto_id).is_completed

            coordinator.register("peer")
            sent = dispatcher.call("team-ai-send", {"target": "peer", "subject": "hi", "body": "there"})
            assert not sent.is_error, sent.text
        finally:
            dispatcher.close()
            session.shutdown()
