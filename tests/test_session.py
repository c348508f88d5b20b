"""Tests for the host session lifecycle."""

import signal
import threading

import pytest

from teamai.exceptions import Unreachable
from teamai.registry import AgentState
from teamai.session import AgentSession, default_agent_name, default_task


class TestDefaults:
    def test_default_name(self):
        assert default_agent_name("cursor", "/home/dev/webapp") == "cursor-webapp"
        assert default_agent_name("cli", "/") == "cli-cli"

    def test_default_task(self):
        assert default_task("cursor", "/home/dev/webapp") == "Cursor IDE session in /home/dev/webapp"


class TestAgentSession:
    def test_start_registers_and_beats(self, coordinator):
        session = AgentSession(coordinator, client="cursor", model="sonnet", working_directory="/w/webapp")
        agent_id = session.start()
        try:
            record = coordinator.get_agent(agent_id)
            assert record.name == "cursor-webapp"
            assert record.current_task == "Cursor IDE session in /w/webapp"
            assert record.client == "cursor"
            assert record.model == "sonnet"
            assert session.heartbeat_running
        finally:
            session.shutdown()

    def test_start_is_idempotent(self, coordinator):
        session = AgentSession(coordinator, client="cli")
        try:
            assert session.start() == session.start()
            assert len(coordinator.list_agents()) == 1
        finally:
            session.shutdown()

    def test_shutdown_deregisters_once(self, coordinator):
        session = AgentSession(coordinator, client="cli")
        agent_id = session.start()
        session.shutdown()
        session.shutdown()
        assert coordinator.get_agent(agent_id).state == AgentState.COMPLETED
        assert not session.heartbeat_running

    def test_start_failure_returns_none(self, coordinator, monkeypatch):
        def broken(**kwargs):
            raise Unreachable("root is read-only", "register")

        monkeypatch.setattr(coordinator, "register", broken)
        session = AgentSession(coordinator, client="cli")
        assert session.start() is None
        assert session.agent_id is None
        assert session.touch() is False
        session.shutdown()

    def test_shutdown_tolerates_unreachable_store(self, coordinator, monkeypatch):
        session = AgentSession(coordinator, client="cli")
        session.start()

        def broken(*args, **kwargs):
            raise Unreachable("disk gone", "deregister")

        monkeypatch.setattr(coordinator, "deregister", broken)
        session.shutdown()
        assert not session.heartbeat_running

    def test_touch_refreshes_heartbeat(self, coordinator, age_heartbeat):
        session = AgentSession(coordinator, client="cli", heartbeat_interval=60)
        agent_id = session.start()
        try:
            age_heartbeat(agent_id, 10_000)
            assert coordinator.view_agent(agent_id).state == AgentState.STALE
            assert session.touch() is True
            assert coordinator.view_agent(agent_id).state == AgentState.ACTIVE
        finally:
            session.shutdown()

    def test_adopt_replaces_auto_registration(self, coordinator):
        session = AgentSession(coordinator, client="cli")
        auto_id = session.start()
        explicit = coordinator.register("explicit")
        try:
            session.adopt(explicit.id)
            assert session.agent_id == explicit.id
            assert coordinator.get_agent(auto_id).is_completed
            assert session.heartbeat_running
        finally:
            session.shutdown()
        assert coordinator.get_agent(explicit.id).is_completed

    def test_context_manager(self, coordinator):
        with AgentSession(coordinator, client="cli") as session:
            agent_id = session.agent_id
            assert agent_id is not None
        assert coordinator.get_agent(agent_id).is_completed

    def test_signal_handlers_outside_main_thread(self, coordinator, monkeypatch):
        registered = []
        monkeypatch.setattr("teamai.session.atexit.register", registered.append)
        session = AgentSession(coordinator, client="cli")
        errors = []

        def install():
            try:
                session.install_signal_handlers()
            except Exception as e:
                errors.append(e)

        thread = threading.Thread(target=install)
        thread.start()
        thread.join()
        assert errors == []
        assert registered == [session.shutdown]

    def test_signal_handler_shuts_down_and_exits(self, coordinator):
        session = AgentSession(coordinator, client="cli")
        agent_id = session.start()
        with pytest.raises(SystemExit) as excinfo:
            session._handle_signal(signal.SIGTERM, None)
        assert excinfo.value.code == 0
        assert coordinator.get_agent(agent_id).is_completed
