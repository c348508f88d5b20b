"""Read-only views of a Team AI root.

The inspector reads ``metadata.json`` files and message subjects straight
from disk without taking locks or touching any state, so it is safe to run
from editors, dashboards and shell prompts next to live agents. Malformed
records are skipped.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any, Optional, Union

from .exceptions import NotFound
from .liveness import DEFAULT_HEARTBEAT_TIMEOUT, derive_state
from .logging_config import get_logger
from .mailbox import Mailbox, read_subject
from .paths import MESSAGE_SUFFIX, TeamLayout
from .registry import AgentRecord
from .utils import format_timestamp, load_json, utc_now
from .validators import ValidationError, validate_agent_id

__all__ = ["TeamInspector"]

logger = get_logger(__name__)

TASK_PREVIEW_LENGTH = 30


def _cell(value: str) -> str:
    """Make a value safe inside a markdown table cell."""
    return value.replace("|", "\\|").replace("\n", " ") or "-"


class TeamInspector:
    """Summaries and markdown renderings of the agents under a root.

    Args:
        root: Coordination root directory
        heartbeat_timeout: Seconds after which an agent shows as stale
    """

    def __init__(self, root: Union[Path, str], heartbeat_timeout: float = DEFAULT_HEARTBEAT_TIMEOUT):
        self.layout = TeamLayout(root)
        self.mailbox = Mailbox(root)
        self.heartbeat_timeout = heartbeat_timeout

    @property
    def root(self) -> Path:
        return self.layout.root

    def _load(self, agent_id: str) -> Optional[AgentRecord]:
        path = self.layout.metadata_path(agent_id)
        try:
            record = AgentRecord.from_dict(load_json(path))
        except FileNotFoundError:
            return None
        except (OSError, ValueError) as e:
            logger.warning(f"Skipping malformed record {path}: {e}")
            return None
        if record.id != agent_id:
            logger.warning(f"Skipping record {path}: it claims id {record.id}")
            return None
        return record

    def records(self) -> list[AgentRecord]:
        """All readable agent records, sorted by id."""
        try:
            names = sorted(p.name for p in self.layout.agents_dir.iterdir() if p.is_dir())
        except FileNotFoundError:
            return []
        records = []
        for name in names:
            try:
                agent_id = validate_agent_id(name)
            except ValidationError:
                continue
            record = self._load(agent_id)
            if record is not None:
                records.append(record)
        return records

    def pending_files(self, agent_id: str) -> list[str]:
        todo = self.layout.todo_dir(agent_id)
        try:
            return sorted(
                name for name in (p.name for p in todo.iterdir())
                if name.endswith(MESSAGE_SUFFIX) and not name.startswith(".")
            )
        except FileNotFoundError:
            return []

    def pending_subjects(self, agent_id: str) -> list[tuple[str, str]]:
        """(filename, subject) for each pending message, in send order."""
        todo = self.layout.todo_dir(agent_id)
        return [
            (name, read_subject(todo / name) or "(no subject)")
            for name in self.pending_files(agent_id)
        ]

    def summary(self, record: AgentRecord, now=None) -> dict[str, Any]:
        """JSON-friendly description of one agent."""
        data = record.to_dict()
        data["tags"] = list(record.tags)
        data["capabilities"] = list(record.capabilities)
        data["persisted_state"] = data["state"]
        data["state"] = derive_state(record, now=now, timeout=self.heartbeat_timeout).value
        data["pending_messages"] = len(self.pending_files(record.id))
        return data

    def agents(self, include_completed: bool = True) -> list[dict[str, Any]]:
        now = utc_now()
        return [
            self.summary(r, now=now)
            for r in self.records()
            if include_completed or not r.is_completed
        ]

    def agent(self, agent_id: str) -> dict[str, Any]:
        """Summary of one agent plus its pending subjects.

        Raises:
            NotFound: If the agent has no readable record
        """
        record = self._load_checked(agent_id)
        data = self.summary(record)
        data["pending"] = [
            {"message_id": name[: -len(MESSAGE_SUFFIX)], "subject": subject}
            for name, subject in self.pending_subjects(record.id)
        ]
        return data

    def _load_checked(self, agent_id: str) -> AgentRecord:
        try:
            agent_id = validate_agent_id(agent_id)
        except ValidationError as e:
            raise NotFound(f"Invalid agent id {agent_id!r}") from e
        record = self._load(agent_id)
        if record is None:
            raise NotFound(f"Agent not found: {agent_id}")
        return record

    def messages(self, agent_id: str, include_consumed: bool = False) -> list[dict[str, Any]]:
        record = self._load_checked(agent_id)
        return [m.to_dict() for m in self.mailbox.read_messages(record.id, include_consumed=include_consumed)]

    def stats(self) -> dict[str, Any]:
        agents = self.agents()
        by_state: dict[str, int] = {"active": 0, "stale": 0, "completed": 0}
        for agent in agents:
            by_state[agent["state"]] = by_state.get(agent["state"], 0) + 1
        return {
            "root": str(self.root),
            "installed": self.layout.is_installed(),
            "total_agents": len(agents),
            "by_state": by_state,
            "pending_messages": sum(a["pending_messages"] for a in agents),
            "generated_at": format_timestamp(utc_now()),
        }

    def overview_markdown(self) -> str:
        """Markdown overview: agent table and the most useful commands."""
        now = utc_now()
        records = self.records()
        lines = ["# Team AI Overview", "", f"**Registered Agents:** {len(records)}", ""]

        if records:
            lines += [
                "## Agents",
                "",
                "| Name | State | Current Task | Directory | Pending |",
                "|------|-------|--------------|-----------|---------|",
            ]
            for record in records:
                state = derive_state(record, now=now, timeout=self.heartbeat_timeout).value
                task = record.current_task[:TASK_PREVIEW_LENGTH]
                directory = Path(record.working_directory).name if record.working_directory else ""
                lines.append(
                    f"| {_cell(record.name)} | {state} | {_cell(task)} | {_cell(directory)} "
                    f"| {len(self.pending_files(record.id))} |"
                )
            lines.append("")

        lines += [
            "## Available Commands",
            "",
            "- `teamai list`: List all agents",
            '- `teamai register --name "name" --task "task"`: Register this session',
            '- `teamai send SENDER TARGET --subject "subj" --body "msg"`: Send message',
            "- `teamai check AGENT_ID`: Check messages",
        ]
        return "\n".join(lines) + "\n"

    def agent_markdown(self, agent_id: str) -> str:
        """Markdown detail for one agent with its pending subjects.

        Raises:
            NotFound: If the agent has no readable record
        """
        record = self._load_checked(agent_id)
        state = derive_state(record, timeout=self.heartbeat_timeout).value
        heartbeat = format_timestamp(record.last_heartbeat) if record.last_heartbeat else "never"
        lines = [
            f"# Agent: {record.name}",
            "",
            f"- **ID:** {record.id}",
            f"- **State:** {state}",
            f"- **Task:** {record.current_task or '-'}",
            f"- **Directory:** {record.working_directory or '-'}",
            f"- **Tags:** {', '.join(record.tags) or '-'}",
            f"- **Capabilities:** {', '.join(record.capabilities) or '-'}",
            f"- **Last Heartbeat:** {heartbeat}",
            "",
        ]
        pending = self.pending_subjects(record.id)
        if pending:
            lines += [f"## Pending Messages ({len(pending)})", ""]
            lines += [f"- {name}: {subject}" for name, subject in pending]
        return "\n".join(lines) + "\n"
