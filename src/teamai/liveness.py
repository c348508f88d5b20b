"""Heartbeat-based liveness for Team AI agents.

An agent is ``active`` while its last heartbeat is younger than the
heartbeat timeout and ``stale`` from the moment the age reaches it.
``completed`` is persisted by deregistration and overrides both. Stale
agents are still registered; they are simply quiet.

Background heartbeats run on a daemon thread owned by a HeartbeatHandle.
There is no module-level timer state, so any number of agents may beat
from the same process.
"""

from __future__ import annotations

import threading
from datetime import datetime
from typing import Callable, Optional

from .logging_config import get_logger
from .registry import AgentRecord, AgentState, RegistryStore
from .utils import utc_now

__all__ = [
    "DEFAULT_HEARTBEAT_TIMEOUT",
    "DEFAULT_HEARTBEAT_INTERVAL",
    "derive_state",
    "PeriodicHandle",
    "HeartbeatHandle",
    "LivenessTracker",
]

logger = get_logger(__name__)

DEFAULT_HEARTBEAT_TIMEOUT = 600.0  # 10 minutes
DEFAULT_HEARTBEAT_INTERVAL = 300.0  # 5 minutes


def derive_state(
    record: AgentRecord,
    now: Optional[datetime] = None,
    timeout: float = DEFAULT_HEARTBEAT_TIMEOUT,
) -> AgentState:
    """Derive the observable state of an agent.

    Args:
        record: Agent record as read from the store
        now: Reference time (default: current UTC time)
        timeout: Heartbeat timeout in seconds

    Returns:
        COMPLETED if persisted so, else ACTIVE when the heartbeat age is
        strictly below timeout, else STALE. A missing heartbeat is STALE.
    """
    if record.state == AgentState.COMPLETED:
        return AgentState.COMPLETED
    if record.last_heartbeat is None:
        return AgentState.STALE

    now = now or utc_now()
    age = (now - record.last_heartbeat).total_seconds()
    if age < timeout:
        return AgentState.ACTIVE
    return AgentState.STALE


class PeriodicHandle:
    """Runs an action every ``interval`` seconds on a daemon thread.

    The loop waits on an Event, so ``stop()`` takes effect immediately.
    Exceptions raised by the action are logged and the loop keeps going.
    """

    def __init__(
        self,
        name: str,
        interval: float,
        action: Callable[[], None],
        run_immediately: bool = False,
    ):
        self.name = name
        self.interval = interval
        self._action = action
        self._run_immediately = run_immediately
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self._lock = threading.Lock()

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.name!r}, interval={self.interval}, running={self.running})"

    def start(self) -> None:
        with self._lock:
            if self._thread is not None:
                return
            self._thread = threading.Thread(target=self._run, name=self.name, daemon=True)
            self._thread.start()

    def _tick(self) -> None:
        try:
            self._action()
        except Exception as e:
            logger.warning(f"{self.name}: periodic action failed: {e}")

    def _run(self) -> None:
        if self._run_immediately and not self._stop_event.is_set():
            self._tick()
        while not self._stop_event.wait(self.interval):
            self._tick()

    @property
    def running(self) -> bool:
        thread = self._thread
        return thread is not None and thread.is_alive() and not self._stop_event.is_set()

    @property
    def stopped(self) -> bool:
        return self._stop_event.is_set()

    def stop(self, timeout: Optional[float] = 5.0) -> None:
        """Stop the loop. Idempotent and safe to call from the loop itself."""
        self._stop_event.set()
        thread = self._thread
        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout)


class HeartbeatHandle(PeriodicHandle):
    """Background heartbeat for one agent."""

    def __init__(self, agent_id: str, interval: float, beat: Callable[[], None]):
        super().__init__(f"teamai-heartbeat-{agent_id[:8]}", interval, beat)
        self.agent_id = agent_id


class LivenessTracker:
    """Refreshes heartbeats and derives liveness.

    Args:
        store: Registry store holding the records
        heartbeat_timeout: Seconds after which an agent is stale
        heartbeat_interval: Default seconds between background heartbeats
    """

    def __init__(
        self,
        store: RegistryStore,
        heartbeat_timeout: float = DEFAULT_HEARTBEAT_TIMEOUT,
        heartbeat_interval: float = DEFAULT_HEARTBEAT_INTERVAL,
    ):
        self.store = store
        self.heartbeat_timeout = heartbeat_timeout
        self.heartbeat_interval = heartbeat_interval

    def heartbeat(self, agent_id: str) -> AgentRecord:
        """Record a liveness signal.

        The stored timestamp never moves backwards, even if the local clock
        is behind the writer of the previous heartbeat.

        Raises:
            NotFound: If the agent has no record
        """
        now = utc_now()

        def _beat(record: AgentRecord) -> None:
            previous = record.last_heartbeat
            record.last_heartbeat = now if previous is None or now > previous else previous

        record = self.store.update(agent_id, _beat)
        logger.debug(f"Heartbeat for {agent_id}")
        return record

    def state_of(self, record: AgentRecord, now: Optional[datetime] = None) -> AgentState:
        return derive_state(record, now=now, timeout=self.heartbeat_timeout)

    def start(self, agent_id: str, interval: Optional[float] = None) -> HeartbeatHandle:
        """Beat once now, then keep beating in the background.

        The first heartbeat is synchronous and its errors propagate, so an
        unknown agent id fails here. Later failures are only logged.

        Returns:
            Running HeartbeatHandle; call ``stop()`` to end it
        """
        interval = self.heartbeat_interval if interval is None else interval
        self.heartbeat(agent_id)

        handle = HeartbeatHandle(agent_id, interval, lambda: self.heartbeat(agent_id))
        handle.start()
        logger.info(f"Started heartbeat for {agent_id} every {interval}s")
        return handle
