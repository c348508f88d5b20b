"""Agent session lifecycle for Team AI host integrations.

An IDE or assistant process wraps itself in an AgentSession:

    session = AgentSession(Coordinator(), client="cursor", model="claude-sonnet")
    session.install_signal_handlers()
    agent_id = session.start()      # auto-register + background heartbeat
    ...
    session.touch()                 # on every tool call
    ...
    session.shutdown()              # also runs on SIGINT/SIGTERM/exit

Start and shutdown never raise: a coordination outage must not keep the
host from starting or exiting. Failures are logged instead.
"""

from __future__ import annotations

import atexit
import os
import signal
import sys
import threading
from pathlib import Path
from typing import Optional

from .coordinator import Coordinator
from .exceptions import TeamAIError
from .liveness import HeartbeatHandle
from .logging_config import get_logger
from .validators import ValidationError

__all__ = ["AgentSession", "default_agent_name", "default_task"]

logger = get_logger(__name__)


def default_agent_name(client: str, cwd: str) -> str:
    """``<client>-<basename of cwd>`` (falls back to the client name)."""
    base = Path(cwd).name or client
    return f"{client}-{base}"


def default_task(client: str, cwd: str) -> str:
    return f"{client[:1].upper()}{client[1:]} IDE session in {cwd}"


class AgentSession:
    """Registration, heartbeat and deregistration for one host process.

    Args:
        coordinator: Coordinator to register with
        client: Host integration identifier (cursor, vscode, ...)
        model: Assistant model identifier
        name: Agent name (default: ``<client>-<cwd basename>``)
        task: Current task (default: ``"<Client> IDE session in <cwd>"``)
        tags: Tags to advertise
        capabilities: Capabilities to advertise
        working_directory: Directory of the session (default: cwd)
        heartbeat_interval: Seconds between heartbeats (default: config)
    """

    def __init__(
        self,
        coordinator: Coordinator,
        client: str,
        model: str = "",
        name: Optional[str] = None,
        task: Optional[str] = None,
        tags=None,
        capabilities=None,
        working_directory: Optional[str] = None,
        heartbeat_interval: Optional[float] = None,
    ):
        self.coordinator = coordinator
        self.client = client
        self.model = model
        self.working_directory = working_directory or os.getcwd()
        self.name = name or default_agent_name(client, self.working_directory)
        self.task = task or default_task(client, self.working_directory)
        self.tags = tags
        self.capabilities = capabilities
        self.heartbeat_interval = heartbeat_interval

        self._agent_id: Optional[str] = None
        self._auto_registered = False
        self._heartbeat: Optional[HeartbeatHandle] = None
        self._lock = threading.RLock()
        self._closed = False
        self._signals_installed = False

    @property
    def agent_id(self) -> Optional[str]:
        return self._agent_id

    @property
    def heartbeat_running(self) -> bool:
        return self._heartbeat is not None and self._heartbeat.running

    def __enter__(self) -> "AgentSession":
        self.start()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.shutdown()
        return False

    def start(self) -> Optional[str]:
        """Auto-register and start the heartbeat.

        Returns:
            The agent id, or None if registration failed
        """
        with self._lock:
            if self._agent_id is not None:
                return self._agent_id
            try:
                record = self.coordinator.register(
                    name=self.name,
                    current_task=self.task,
                    model=self.model,
                    client=self.client,
                    tags=self.tags,
                    capabilities=self.capabilities,
                    working_directory=self.working_directory,
                )
            except (TeamAIError, ValidationError, OSError) as e:
                logger.error(f"Auto-registration as {self.name} failed: {e}")
                return None

            self._agent_id = record.id
            self._auto_registered = True
            self._closed = False
            logger.info(f"Registered as {self.name} ({record.id})")
            self._start_heartbeat()
            return self._agent_id

    def _start_heartbeat(self) -> None:
        self._stop_heartbeat()
        try:
            self._heartbeat = self.coordinator.start_heartbeat(self._agent_id, interval=self.heartbeat_interval)
        except (TeamAIError, ValidationError, OSError) as e:
            logger.warning(f"Could not start heartbeat for {self._agent_id}: {e}")
            self._heartbeat = None

    def _stop_heartbeat(self) -> None:
        if self._heartbeat is not None:
            self._heartbeat.stop()
            self._heartbeat = None

    def touch(self) -> bool:
        """Refresh the heartbeat after activity. Returns False on failure."""
        agent_id = self._agent_id
        if agent_id is None:
            return False
        try:
            self.coordinator.heartbeat(agent_id)
            return True
        except (TeamAIError, OSError) as e:
            logger.warning(f"Heartbeat for {agent_id} failed: {e}")
            return False

    def adopt(self, agent_id: str) -> None:
        """Switch the session to an explicitly registered agent id.

        The identity this session registered automatically, if any, is
        deregistered so it does not linger as a second live agent.
        """
        with self._lock:
            previous = self._agent_id
            if previous == agent_id:
                return
            self._stop_heartbeat()
            if previous is not None and self._auto_registered:
                self._deregister(previous)
            self._agent_id = agent_id
            self._auto_registered = False
            self._closed = False
            self._start_heartbeat()

    def _deregister(self, agent_id: str) -> None:
        try:
            self.coordinator.deregister(agent_id)
            logger.info(f"Deregistered {agent_id}")
        except (TeamAIError, OSError) as e:
            logger.warning(f"Deregistration of {agent_id} failed: {e}")

    def shutdown(self) -> None:
        """Stop background work and deregister. Idempotent, never raises."""
        with self._lock:
            if self._closed:
                return
            self._closed = True
            self._stop_heartbeat()
            if self._agent_id is not None:
                self._deregister(self._agent_id)

    def _handle_signal(self, signum, frame) -> None:
        logger.info(f"Received signal {signum}, shutting down session")
        self.shutdown()
        sys.exit(0)

    def install_signal_handlers(self) -> None:
        """Shut down on SIGINT, SIGTERM and normal interpreter exit."""
        if self._signals_installed:
            return
        atexit.register(self.shutdown)
        for signum in (signal.SIGINT, signal.SIGTERM):
            try:
                signal.signal(signum, self._handle_signal)
            except ValueError:
                # Only the main thread may install handlers
                logger.debug(f"Cannot install handler for signal {signum} outside the main thread")
        self._signals_installed = True
