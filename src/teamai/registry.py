"""Agent registry for Team AI.

Each agent owns one record at ``<root>/agents/<agent-id>/metadata.json``.
The record is the only persisted state of an agent; liveness (``stale``)
is derived from ``last_heartbeat`` on read and never written.

Example record:
    {
      "id": "0b6f2d1e-5c1a-4f7e-9a77-1c2d3e4f5a6b",
      "name": "cursor-webapp",
      "model": "claude-sonnet",
      "client": "cursor",
      "state": "active",
      "current_task": "Cursor IDE session in /home/me/webapp",
      "command": "Cursor IDE session in /home/me/webapp",
      "working_directory": "/home/me/webapp",
      "tags": "frontend,ui",
      "capabilities": "typescript,css",
      "last_heartbeat": "2025-01-01T12:00:00+00:00",
      "registered_at": "2025-01-01T11:00:00+00:00"
    }

Record creation is create-if-absent (temp file hard-linked into place);
updates are read-modify-write cycles under a per-agent advisory lock with
an atomic replace, so readers never observe a partial record.
"""

from __future__ import annotations

import json
import os
import tempfile
from abc import ABC, abstractmethod
from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Optional, Union

from .exceptions import AlreadyExists, NotFound, Timeout, Unreachable
from .file_lock import FileLock, FileLockError, FileLockTimeout
from .logging_config import get_logger
from .paths import TeamLayout
from .utils import format_timestamp, join_labels, load_json, parse_timestamp, save_json, split_labels
from .validators import ValidationError, normalize_label, validate_agent_id

__all__ = [
    "AgentState",
    "AgentRecord",
    "RegistryStore",
    "FileRegistryStore",
]

logger = get_logger(__name__)

DEFAULT_LOCK_TIMEOUT_SECONDS = 5.0


class AgentState(Enum):
    """Lifecycle state of an agent.

    Only ACTIVE and COMPLETED are ever persisted; STALE is derived.
    """

    ACTIVE = "active"
    STALE = "stale"
    COMPLETED = "completed"


@dataclass
class AgentRecord:
    """Persisted description of one registered agent.

    Attributes:
        id: Immutable unique identifier (uuid4 string)
        name: Human label, not necessarily unique
        model: Assistant model identifier
        client: Host integration identifier (cursor, vscode, cli, ...)
        state: ACTIVE or COMPLETED
        current_task: Free-text description of what the agent is doing
        working_directory: Directory the agent works in
        tags: Free labels used for broadcast addressing
        capabilities: Labels describing what the agent can do
        last_heartbeat: Last liveness signal (None if unreadable on disk)
        registered_at: Registration time
    """

    id: str
    name: str
    model: str = ""
    client: str = ""
    state: AgentState = AgentState.ACTIVE
    current_task: str = ""
    working_directory: str = ""
    tags: list[str] = field(default_factory=list)
    capabilities: list[str] = field(default_factory=list)
    last_heartbeat: Optional[datetime] = None
    registered_at: Optional[datetime] = None

    def has_tag(self, tag: str) -> bool:
        wanted = normalize_label(tag)
        return any(normalize_label(t) == wanted for t in self.tags)

    def has_capability(self, capability: str) -> bool:
        """Check if agent advertises a capability (case-insensitive)."""
        wanted = normalize_label(capability)
        return any(normalize_label(c) == wanted for c in self.capabilities)

    @property
    def is_completed(self) -> bool:
        return self.state == AgentState.COMPLETED

    def to_dict(self) -> dict[str, Any]:
        """Convert record to its metadata.json form.

        Labels are written as comma-separated strings and the task is
        written under both ``current_task`` and ``command``.
        """
        return {
            "id": self.id,
            "name": self.name,
            "model": self.model,
            "client": self.client,
            "state": self.state.value,
            "current_task": self.current_task,
            "command": self.current_task,
            "working_directory": self.working_directory,
            "tags": join_labels(self.tags),
            "capabilities": join_labels(self.capabilities),
            "last_heartbeat": format_timestamp(self.last_heartbeat) if self.last_heartbeat else "",
            "registered_at": format_timestamp(self.registered_at) if self.registered_at else "",
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> AgentRecord:
        """Create AgentRecord from a metadata.json mapping.

        Accepts ``command`` when ``current_task`` is missing and list values
        for labels. A persisted state other than ``completed`` reads as
        ACTIVE.

        Raises:
            ValueError: If the mapping has no usable id
        """
        if not isinstance(data, dict):
            raise ValueError(f"record must be a JSON object, got {type(data).__name__}")

        agent_id = validate_agent_id(data.get("id"))
        task = data.get("current_task")
        if task is None:
            task = data.get("command", "")

        state = AgentState.COMPLETED if data.get("state") == "completed" else AgentState.ACTIVE

        return cls(
            id=agent_id,
            name=str(data.get("name") or agent_id),
            model=str(data.get("model") or ""),
            client=str(data.get("client") or ""),
            state=state,
            current_task=str(task or ""),
            working_directory=str(data.get("working_directory") or ""),
            tags=split_labels(data.get("tags")),
            capabilities=split_labels(data.get("capabilities")),
            last_heartbeat=_parse_optional_timestamp(data.get("last_heartbeat")),
            registered_at=_parse_optional_timestamp(data.get("registered_at")),
        )


def _parse_optional_timestamp(value: Any) -> Optional[datetime]:
    if not value:
        return None
    try:
        return parse_timestamp(value)
    except (TypeError, ValueError):
        return None


def _matches(record: AgentRecord, tag: Optional[str], capability: Optional[str]) -> bool:
    if tag is not None and normalize_label(tag) and not record.has_tag(tag):
        return False
    if capability is not None and normalize_label(capability) and not record.has_capability(capability):
        return False
    return True


class RegistryStore(ABC):
    """Storage interface for agent records.

    The file implementation is the only one shipped; the interface exists
    so the coordinator can be exercised against other backends.
    """

    @abstractmethod
    def create(self, record: AgentRecord) -> AgentRecord:
        """Persist a new record. Raises AlreadyExists if the id is taken."""

    @abstractmethod
    def read(self, agent_id: str) -> AgentRecord:
        """Return the record for agent_id. Raises NotFound."""

    @abstractmethod
    def update(self, agent_id: str, mutator: Callable[[AgentRecord], Optional[AgentRecord]]) -> AgentRecord:
        """Apply mutator to the current record atomically and return the result."""

    @abstractmethod
    def list(self, tag: Optional[str] = None, capability: Optional[str] = None) -> list[AgentRecord]:
        """Return all readable records (optionally filtered), sorted by id."""

    @abstractmethod
    def delete(self, agent_id: str) -> bool:
        """Remove the record. Returns False if there was nothing to remove."""

    @abstractmethod
    def exists(self, agent_id: str) -> bool:
        """Check whether a record exists for agent_id."""


class FileRegistryStore(RegistryStore):
    """Registry store over the shared directory tree.

    Args:
        root: Coordination root directory
        lock_timeout: Seconds to wait for a per-agent record lock
    """

    def __init__(self, root: Union[Path, str], lock_timeout: float = DEFAULT_LOCK_TIMEOUT_SECONDS):
        self.layout = TeamLayout(root)
        self.lock_timeout = lock_timeout

    @property
    def root(self) -> Path:
        return self.layout.root

    def _agent_id(self, agent_id: str) -> str:
        try:
            return validate_agent_id(agent_id)
        except ValidationError as e:
            raise NotFound(f"Invalid agent id {agent_id!r}: {e}") from e

    def create(self, record: AgentRecord) -> AgentRecord:
        agent_id = validate_agent_id(record.id)
        target = self.layout.metadata_path(agent_id)
        payload = json.dumps(record.to_dict(), indent=2) + "\n"

        try:
            self.layout.ensure_mailbox(agent_id)
            fd, tmp_path = tempfile.mkstemp(dir=target.parent, prefix=".tmp-", suffix=".partial")
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as f:
                    f.write(payload)
                    f.flush()
                    os.fsync(f.fileno())
                # link fails if the target exists, unlike rename
                os.link(tmp_path, target)
            finally:
                try:
                    os.unlink(tmp_path)
                except OSError:
                    pass
        except FileExistsError as e:
            raise AlreadyExists(f"Agent {agent_id} is already registered") from e
        except OSError as e:
            raise Unreachable(f"Cannot create record for {agent_id}: {e}") from e

        logger.info(f"Created record for agent {agent_id} ({record.name})")
        return record

    def _read_path(self, agent_id: str) -> AgentRecord:
        path = self.layout.metadata_path(agent_id)
        try:
            data = load_json(path)
        except FileNotFoundError as e:
            raise NotFound(f"Agent not found: {agent_id}") from e
        except (json.JSONDecodeError, UnicodeDecodeError) as e:
            raise NotFound(f"Agent record for {agent_id} is corrupt: {e}") from e
        except OSError as e:
            raise Unreachable(f"Cannot read record for {agent_id}: {e}") from e

        try:
            record = AgentRecord.from_dict(data)
        except ValueError as e:
            raise NotFound(f"Agent record for {agent_id} is corrupt: {e}") from e
        if record.id != agent_id:
            raise NotFound(
                f"Agent record for {agent_id} is corrupt: it claims id {record.id}"
            )
        return record

    def read(self, agent_id: str) -> AgentRecord:
        return self._read_path(self._agent_id(agent_id))

    def update(self, agent_id: str, mutator: Callable[[AgentRecord], Optional[AgentRecord]]) -> AgentRecord:
        """Read-modify-write a record under its advisory lock.

        The mutator receives a copy of the current record and either
        modifies it in place or returns a replacement. The id cannot change.

        Raises:
            NotFound: If the record does not exist
            Timeout: If the lock cannot be acquired in time
            Unreachable: On other filesystem errors
        """
        agent_id = self._agent_id(agent_id)
        try:
            with FileLock(self.layout.lock_path(agent_id), timeout=self.lock_timeout):
                current = self._read_path(agent_id)
                working = replace(current, tags=list(current.tags), capabilities=list(current.capabilities))
                result = mutator(working)
                updated = working if result is None else result
                if updated.id != agent_id:
                    raise ValueError(f"Agent id is immutable ({agent_id} -> {updated.id})")
                save_json(self.layout.metadata_path(agent_id), updated.to_dict())
        except FileLockTimeout as e:
            raise Timeout(f"Timed out waiting for the record lock of {agent_id}") from e
        except FileLockError as e:
            raise Unreachable(str(e)) from e
        except OSError as e:
            raise Unreachable(f"Cannot update record for {agent_id}: {e}") from e

        return updated

    def list(self, tag: Optional[str] = None, capability: Optional[str] = None) -> list[AgentRecord]:
        agents_dir = self.layout.agents_dir
        try:
            entries = sorted(p.name for p in agents_dir.iterdir() if p.is_dir())
        except FileNotFoundError:
            return []
        except OSError as e:
            raise Unreachable(f"Cannot list agents in {agents_dir}: {e}") from e

        records = []
        for name in entries:
            try:
                agent_id = validate_agent_id(name)
            except ValidationError:
                continue
            if not self.layout.metadata_path(agent_id).exists():
                # Purged agent, mailbox left behind
                continue
            try:
                record = self._read_path(agent_id)
            except NotFound as e:
                logger.warning(f"Skipping agent {agent_id}: {e}")
                continue
            if _matches(record, tag, capability):
                records.append(record)
        return records

    def delete(self, agent_id: str) -> bool:
        agent_id = self._agent_id(agent_id)
        path = self.layout.metadata_path(agent_id)
        try:
            with FileLock(self.layout.lock_path(agent_id), timeout=self.lock_timeout):
                path.unlink()
        except FileNotFoundError:
            return False
        except FileLockTimeout as e:
            raise Timeout(f"Timed out waiting for the record lock of {agent_id}") from e
        except FileLockError as e:
            raise Unreachable(str(e)) from e
        except OSError as e:
            raise Unreachable(f"Cannot delete record for {agent_id}: {e}") from e

        logger.info(f"Deleted record for agent {agent_id}")
        return True

    def exists(self, agent_id: str) -> bool:
        try:
            agent_id = validate_agent_id(agent_id)
        except ValidationError:
            return False
        return self.layout.metadata_path(agent_id).is_file()
