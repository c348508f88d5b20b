"""Coordinator facade for Team AI.

The Coordinator is what clients talk to. It composes the registry store,
liveness tracker, mailbox, artifact store and directory service, tags every
error with the name of the operation that failed, and owns the background
heartbeat and watch handles it starts.

Example:
    coord = Coordinator()
    me = coord.register("cursor-webapp", "Build login form", tags="frontend")
    coord.send(me.id, "api-agent", "Schema?", "Which fields does /login return?")
    for msg in coord.check(me.id):
        print(msg.subject)
        coord.acknowledge(me.id, msg.message_id)
"""

from __future__ import annotations

import functools
import os
import threading
import uuid
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Optional, Union

from .config import TeamAIConfig, get_config
from .directory import DirectoryService
from .exceptions import NoRecipients, NotFound, TeamAIError, UnknownRecipient, Unreachable
from .liveness import HeartbeatHandle, LivenessTracker, PeriodicHandle
from .logging_config import get_logger
from .mailbox import ArtifactStore, Mailbox, Message, MessageType, Priority, WatchHandle
from .paths import TeamLayout, get_root
from .registry import AgentRecord, AgentState, FileRegistryStore, RegistryStore
from .utils import utc_now
from .validators import (
    ValidationError,
    optional_text,
    validate_agent_name,
    validate_interval,
    validate_labels,
    validate_message_body,
    validate_message_type,
    validate_priority,
    validate_subject,
)

__all__ = [
    "AgentView",
    "SystemStatus",
    "DeliveryOutcome",
    "BroadcastResult",
    "Coordinator",
]

logger = get_logger(__name__)


def _operation(name: str):
    """Tag errors escaping a facade method with the operation name."""

    def decorator(func):
        @functools.wraps(func)
        def wrapper(*args, **kwargs):
            try:
                return func(*args, **kwargs)
            except TeamAIError as e:
                if e.operation is None:
                    e.operation = name
                raise
            except ValidationError as e:
                if getattr(e, "operation", None) is None:
                    e.operation = name
                raise
            except OSError as e:
                raise Unreachable(str(e), operation=name) from e

        return wrapper

    return decorator


@dataclass
class AgentView:
    """An agent record as observed now: derived state and pending messages."""

    record: AgentRecord
    state: AgentState
    pending: int = 0

    @property
    def id(self) -> str:
        return self.record.id

    @property
    def name(self) -> str:
        return self.record.name

    def to_dict(self) -> dict[str, Any]:
        data = self.record.to_dict()
        data["tags"] = list(self.record.tags)
        data["capabilities"] = list(self.record.capabilities)
        data["persisted_state"] = data["state"]
        data["state"] = self.state.value
        data["pending_messages"] = self.pending
        return data


@dataclass
class SystemStatus:
    """Installation and population summary of a coordination root."""

    root: Path
    installed: bool
    artifacts_dir: bool
    locks_dir: bool
    registered: int = 0
    active: int = 0
    stale: int = 0
    completed: int = 0
    pending_messages: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "root": str(self.root),
            "installed": self.installed,
            "artifacts_dir": self.artifacts_dir,
            "locks_dir": self.locks_dir,
            "registered": self.registered,
            "active": self.active,
            "stale": self.stale,
            "completed": self.completed,
            "pending_messages": self.pending_messages,
        }


@dataclass
class DeliveryOutcome:
    """Result of delivering a broadcast to one recipient."""

    agent_id: str
    name: str
    success: bool
    message_id: Optional[str] = None
    error: Optional[str] = None


@dataclass
class BroadcastResult:
    """Per-recipient tally of a broadcast."""

    subject: str
    outcomes: list[DeliveryOutcome] = field(default_factory=list)

    @property
    def total(self) -> int:
        return len(self.outcomes)

    @property
    def sent(self) -> int:
        return sum(1 for o in self.outcomes if o.success)

    @property
    def failed(self) -> list[DeliveryOutcome]:
        return [o for o in self.outcomes if not o.success]

    def to_dict(self) -> dict[str, Any]:
        return {
            "subject": self.subject,
            "sent": self.sent,
            "total": self.total,
            "outcomes": [
                {
                    "agent_id": o.agent_id,
                    "name": o.name,
                    "success": o.success,
                    "message_id": o.message_id,
                    "error": o.error,
                }
                for o in self.outcomes
            ],
        }


class Coordinator:
    """Entry point for all coordination operations.

    Args:
        root: Coordination root (default: TEAMAI_ROOT, config, ~/.team-ai)
        config: Configuration (default: the process-wide configuration)
        store: Registry store (default: FileRegistryStore over root)
    """

    def __init__(
        self,
        root: Union[Path, str, None] = None,
        config: Optional[TeamAIConfig] = None,
        store: Optional[RegistryStore] = None,
    ):
        self.config = config or get_config()
        self.root = get_root(root, self.config)
        self.layout = TeamLayout(self.root)
        self.store = store or FileRegistryStore(self.root, lock_timeout=self.config.storage.lock_timeout)
        self.liveness = LivenessTracker(
            self.store,
            heartbeat_timeout=self.config.liveness.heartbeat_timeout,
            heartbeat_interval=self.config.liveness.heartbeat_interval,
        )
        self.mailbox = Mailbox(self.root)
        self.artifacts = ArtifactStore(self.root, max_bytes=self.config.messaging.max_artifact_bytes)
        self.directory = DirectoryService(self.store, strict_names=self.config.directory.strict_names)

        self._handles: dict[str, list[PeriodicHandle]] = {}
        self._handles_lock = threading.Lock()

    def __repr__(self) -> str:
        return f"Coordinator(root={str(self.root)!r})"

    def __enter__(self) -> "Coordinator":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False

    # ------------------------------------------------------------------
    # Handles

    def _track(self, agent_id: str, handle: PeriodicHandle) -> None:
        with self._handles_lock:
            live = [h for h in self._handles.get(agent_id, []) if not h.stopped]
            live.append(handle)
            self._handles[agent_id] = live

    def _stop_handles(self, agent_id: str) -> None:
        with self._handles_lock:
            handles = self._handles.pop(agent_id, [])
        for handle in handles:
            handle.stop()

    def handles_for(self, agent_id: str) -> list[PeriodicHandle]:
        """Handles this coordinator started for an agent that are still running."""
        with self._handles_lock:
            live = [h for h in self._handles.get(agent_id, []) if not h.stopped]
            if live:
                self._handles[agent_id] = live
            else:
                self._handles.pop(agent_id, None)
            return list(live)

    def close(self) -> None:
        """Stop every heartbeat and watch handle started by this coordinator."""
        with self._handles_lock:
            handles = [h for hs in self._handles.values() for h in hs]
            self._handles.clear()
        for handle in handles:
            handle.stop()
        if handles:
            logger.debug(f"Stopped {len(handles)} background handle(s)")

    # ------------------------------------------------------------------
    # Helpers

    def _view(self, record: AgentRecord, now=None) -> AgentView:
        return AgentView(
            record=record,
            state=self.liveness.state_of(record, now=now),
            pending=self.mailbox.pending_count(record.id),
        )

    def _resolve_id(self, target: str) -> str:
        return self.directory.resolve(target).id

    # ------------------------------------------------------------------
    # Registration and lifecycle

    @_operation("register")
    def register(
        self,
        name: str,
        current_task: str = "",
        model: str = "",
        client: str = "",
        tags: Union[str, list[str], None] = None,
        capabilities: Union[str, list[str], None] = None,
        working_directory: Optional[str] = None,
    ) -> AgentRecord:
        """Register a new agent and return its record (state active)."""
        now = utc_now()
        record = AgentRecord(
            id=str(uuid.uuid4()),
            name=validate_agent_name(name),
            model=optional_text(model),
            client=optional_text(client),
            state=AgentState.ACTIVE,
            current_task=optional_text(current_task),
            working_directory=working_directory if working_directory is not None else os.getcwd(),
            tags=validate_labels(tags, kind="tag"),
            capabilities=validate_labels(capabilities, kind="capability"),
            last_heartbeat=now,
            registered_at=now,
        )
        self.store.create(record)
        logger.info(f"Registered agent {record.name} ({record.id})")
        return record

    @_operation("deregister")
    def deregister(self, agent_id: str, purge: bool = False) -> Optional[AgentRecord]:
        """Mark an agent completed and stop its background handles.

        With ``purge`` the record is deleted afterwards. The mailbox is kept.
        An unknown agent is a no-op and returns None.
        """
        try:
            agent_id = self._resolve_id(agent_id)
        except NotFound:
            logger.debug(f"Deregister of unknown agent {agent_id!r} ignored")
            return None

        self._stop_handles(agent_id)

        def _complete(record: AgentRecord) -> None:
            record.state = AgentState.COMPLETED

        try:
            record = self.store.update(agent_id, _complete)
        except NotFound:
            return None

        if purge:
            self.store.delete(agent_id)
        logger.info(f"Deregistered agent {agent_id}{' (purged)' if purge else ''}")
        return record

    @_operation("delete")
    def delete(self, agent_id: str) -> bool:
        """Remove an agent's record. Idempotent; returns False if none existed."""
        self._stop_handles(agent_id)
        return self.store.delete(agent_id)

    @_operation("heartbeat")
    def heartbeat(self, agent_id: str) -> AgentRecord:
        return self.liveness.heartbeat(self._resolve_id(agent_id))

    @_operation("heartbeat")
    def start_heartbeat(self, agent_id: str, interval: Optional[float] = None) -> HeartbeatHandle:
        """Start a background heartbeat owned by this coordinator."""
        agent_id = self._resolve_id(agent_id)
        if interval is not None:
            interval = validate_interval(interval, name="Heartbeat interval")
        handle = self.liveness.start(agent_id, interval=interval)
        self._track(agent_id, handle)
        return handle

    @_operation("set_task")
    def set_task(self, agent_id: str, task: str) -> AgentRecord:
        agent_id = self._resolve_id(agent_id)
        task = optional_text(task)

        def _set(record: AgentRecord) -> None:
            record.current_task = task

        return self.store.update(agent_id, _set)

    # ------------------------------------------------------------------
    # Queries

    @_operation("get_agent")
    def get_agent(self, target: str) -> AgentRecord:
        """Resolve an id or name and return the record."""
        return self.directory.resolve(target)

    @_operation("get_agent")
    def view_agent(self, target: str) -> AgentView:
        return self._view(self.directory.resolve(target))

    @_operation("list_agents")
    def list_agents(
        self,
        include_completed: bool = False,
        tag: Optional[str] = None,
        capability: Optional[str] = None,
    ) -> list[AgentView]:
        """List agents with derived state, sorted by id."""
        now = utc_now()
        records = self.directory.find(tag=tag, capability=capability, include_completed=include_completed)
        return [self._view(r, now=now) for r in records]

    @_operation("agents_by_capability")
    def agents_by_capability(self, capability: str) -> list[AgentView]:
        if not isinstance(capability, str) or not capability.strip():
            raise ValidationError("Capability cannot be empty")
        now = utc_now()
        return [self._view(r, now=now) for r in self.directory.by_capability(capability)]

    @_operation("status")
    def status(self) -> SystemStatus:
        """Summarize the root: what exists on disk and how many agents are in each state."""
        status = SystemStatus(
            root=self.root,
            installed=self.layout.is_installed(),
            artifacts_dir=self.layout.artifacts_dir.is_dir(),
            locks_dir=self.layout.locks_dir.is_dir(),
        )
        now = utc_now()
        for record in self.store.list():
            status.registered += 1
            state = self.liveness.state_of(record, now=now)
            if state == AgentState.ACTIVE:
                status.active += 1
            elif state == AgentState.STALE:
                status.stale += 1
            else:
                status.completed += 1
            status.pending_messages += self.mailbox.pending_count(record.id)
        return status

    # ------------------------------------------------------------------
    # Messaging

    def _recipient(self, target: str) -> AgentRecord:
        try:
            record = self.directory.resolve(target)
        except NotFound as e:
            raise UnknownRecipient(f"Unknown recipient '{target}'") from e
        if record.is_completed:
            raise UnknownRecipient(f"Recipient '{target}' has completed and no longer receives messages")
        return record

    def _compose(self, subject: str, body: str, msg_type: Any, priority: Any) -> tuple[str, str, MessageType, Priority]:
        messaging = self.config.messaging
        return (
            validate_subject(subject, max_length=messaging.max_subject_length),
            validate_message_body(body, max_length=messaging.max_body_bytes),
            MessageType(validate_message_type(msg_type)),
            Priority(validate_priority(priority)),
        )

    @_operation("send")
    def send(
        self,
        sender: str,
        target: str,
        subject: str,
        body: str,
        msg_type: Union[MessageType, str] = MessageType.REQUEST,
        priority: Union[Priority, str] = Priority.NORMAL,
        artifact: Union[Path, str, None] = None,
    ) -> Message:
        """Deliver a message to one agent.

        The target may be an id or a name. Sending to oneself is allowed.

        Raises:
            NotFound: If the sender is not registered
            UnknownRecipient: If the target is unknown or completed
            ValidationError: If subject, body, type or priority are invalid
        """
        sender_id = self._resolve_id(sender)
        recipient = self._recipient(target)
        subject, body, msg_type, priority = self._compose(subject, body, msg_type, priority)

        artifact_path = self.artifacts.store(artifact) if artifact else None

        message = self.mailbox.deliver(
            Message(
                message_id="",
                sender=sender_id,
                recipient=recipient.id,
                subject=subject,
                body=body,
                msg_type=msg_type,
                priority=priority,
                artifact=artifact_path,
            )
        )
        logger.info(f"Message {message.message_id} sent from {sender_id} to {recipient.id}")
        return message

    @_operation("check")
    def check(self, agent_id: str, include_consumed: bool = False) -> list[Message]:
        """Messages for an agent in send order (pending only by default)."""
        return self.mailbox.read_messages(self._resolve_id(agent_id), include_consumed=include_consumed)

    @_operation("read")
    def read_message(self, agent_id: str, message_id: str) -> Message:
        return self.mailbox.read(self._resolve_id(agent_id), message_id)

    @_operation("acknowledge")
    def acknowledge(self, agent_id: str, message_id: str) -> None:
        """Mark a pending message consumed. NotFound if it is not pending."""
        self.mailbox.consume(self._resolve_id(agent_id), message_id)

    @_operation("broadcast")
    def broadcast(
        self,
        sender: str,
        subject: str,
        body: str,
        msg_type: Union[MessageType, str] = MessageType.INFO,
        priority: Union[Priority, str] = Priority.NORMAL,
        tag: Optional[str] = None,
        capability: Optional[str] = None,
        exclude_self: bool = True,
    ) -> BroadcastResult:
        """Send one message to every live agent matching the filters.

        A failure for one recipient is recorded in the result and does not
        stop the others.

        Raises:
            NoRecipients: If no agent matches
        """
        sender_id = self._resolve_id(sender)
        subject, body, msg_type, priority = self._compose(subject, body, msg_type, priority)

        targets = self.directory.broadcast_targets(
            tag=tag, capability=capability, exclude=sender_id if exclude_self else None
        )
        if not targets:
            raise NoRecipients("No agents found matching broadcast criteria")

        logger.info(f"Broadcasting '{subject}' to {len(targets)} agent(s)")
        result = BroadcastResult(subject=subject)
        for record in targets:
            try:
                message = self.mailbox.deliver(
                    Message(
                        message_id="",
                        sender=sender_id,
                        recipient=record.id,
                        subject=subject,
                        body=body,
                        msg_type=msg_type,
                        priority=priority,
                    )
                )
                result.outcomes.append(DeliveryOutcome(record.id, record.name, True, message.message_id))
            except (TeamAIError, OSError) as e:
                logger.warning(f"Broadcast delivery to {record.id} failed: {e}")
                result.outcomes.append(DeliveryOutcome(record.id, record.name, False, error=str(e)))

        return result

    @_operation("watch_start")
    def watch_start(
        self,
        agent_id: str,
        interval: Optional[float] = None,
        callback: Optional[Callable[[list[Message]], None]] = None,
    ) -> WatchHandle:
        """Poll an agent's inbox in the background, reporting new messages once.

        Returns:
            Running WatchHandle; stop it directly, via deregister, or close()
        """
        agent_id = self._resolve_id(agent_id)
        if interval is None:
            interval = self.config.messaging.watch_interval
        interval = validate_interval(interval, name="Watch interval")

        handle = WatchHandle(self.mailbox, agent_id, interval, callback)
        handle.start()
        self._track(agent_id, handle)
        logger.info(f"Watching messages for {agent_id} every {interval}s")
        return handle

