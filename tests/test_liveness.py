"""Tests for heartbeat liveness and periodic handles."""

import threading
import time
import uuid
from datetime import timedelta

import pytest

from teamai.exceptions import NotFound
from teamai.liveness import LivenessTracker, PeriodicHandle, derive_state
from teamai.registry import AgentRecord, AgentState, FileRegistryStore
from teamai.utils import utc_now


def record_with_age(seconds, state=AgentState.ACTIVE, now=None):
    now = now or utc_now()
    return AgentRecord(
        id=str(uuid.uuid4()),
        name="agent",
        state=state,
        last_heartbeat=now - timedelta(seconds=seconds),
    )


class TestDeriveState:
    def test_fresh_heartbeat_is_active(self):
        now = utc_now()
        assert derive_state(record_with_age(1, now=now), now=now, timeout=600) == AgentState.ACTIVE

    def test_just_below_timeout_is_active(self):
        now = utc_now()
        record = record_with_age(599.999, now=now)
        assert derive_state(record, now=now, timeout=600) == AgentState.ACTIVE

    def test_exactly_timeout_is_stale(self):
        now = utc_now()
        assert derive_state(record_with_age(600, now=now), now=now, timeout=600) == AgentState.STALE

    def test_missing_heartbeat_is_stale(self):
        record = AgentRecord(id="a1", name="agent")
        assert derive_state(record) == AgentState.STALE

    def test_completed_overrides_liveness(self):
        now = utc_now()
        record = record_with_age(1, state=AgentState.COMPLETED, now=now)
        assert derive_state(record, now=now) == AgentState.COMPLETED
        old = record_with_age(10_000, state=AgentState.COMPLETED, now=now)
        assert derive_state(old, now=now) == AgentState.COMPLETED


class TestPeriodicHandle:
    def test_runs_repeatedly_until_stopped(self):
        calls = []
        handle = PeriodicHandle("test", 0.01, lambda: calls.append(1))
        handle.start()
        time.sleep(0.15)
        handle.stop()
        count = len(calls)
        assert count >= 2
        assert not handle.running
        time.sleep(0.05)
        assert len(calls) == count

    def test_run_immediately(self):
        ran = threading.Event()
        handle = PeriodicHandle("test", 60, ran.set, run_immediately=True)
        handle.start()
        try:
            assert ran.wait(2)
        finally:
            handle.stop()

    def test_stop_is_idempotent(self):
        handle = PeriodicHandle("test", 60, lambda: None)
        handle.stop()
        handle.start()
        handle.stop()
        handle.stop()
        assert handle.stopped

    def test_stop_from_inside_action(self):
        holder = {}

        def action():
            holder["handle"].stop()

        handle = PeriodicHandle("test", 0.01, action)
        holder["handle"] = handle
        handle.start()
        time.sleep(0.1)
        assert handle.stopped
        assert not handle.running

    def test_failing_action_keeps_looping(self):
        calls = []

        def action():
            calls.append(1)
            raise RuntimeError("boom")

        handle = PeriodicHandle("test", 0.01, action)
        handle.start()
        time.sleep(0.1)
        handle.stop()
        assert len(calls) >= 2


class TestLivenessTracker:
    @pytest.fixture
    def store(self, root):
        return FileRegistryStore(root)

    @pytest.fixture
    def tracker(self, store):
        return LivenessTracker(store, heartbeat_timeout=600, heartbeat_interval=0.02)

    @pytest.fixture
    def agent(self, store):
        return store.create(
            AgentRecord(id=str(uuid.uuid4()), name="agent", last_heartbeat=utc_now() - timedelta(seconds=700))
        )

    def test_heartbeat_revives_stale_agent(self, tracker, agent):
        assert tracker.state_of(agent) == AgentState.STALE
        record = tracker.heartbeat(agent.id)
        assert tracker.state_of(record) == AgentState.ACTIVE

    def test_heartbeat_never_moves_backwards(self, tracker, store, agent):
        future = utc_now() + timedelta(hours=1)
        store.update(agent.id, lambda r: setattr(r, "last_heartbeat", future))
        assert tracker.heartbeat(agent.id).last_heartbeat == future

    def test_heartbeat_unknown_agent(self, tracker):
        with pytest.raises(NotFound):
            tracker.heartbeat("missing-agent")

    def test_start_beats_in_background(self, tracker, store, agent):
        handle = tracker.start(agent.id)
        try:
            first = store.read(agent.id).last_heartbeat
            time.sleep(0.15)
            assert store.read(agent.id).last_heartbeat > first
        finally:
            handle.stop()
        assert not handle.running

    def test_start_unknown_agent_fails_synchronously(self, tracker):
        with pytest.raises(NotFound):
            tracker.start("missing-agent")
