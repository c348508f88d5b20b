"""File-based mailboxes for Team AI agents.

Every message is one markdown file. Delivery writes it into the
recipient's ``incoming/todo/`` directory; consumption renames it into
``incoming/done/``. Files are never rewritten, so a message's status is
simply the directory it sits in.

Message file format:

    # Subject: Need a review of the login form
    From: 0b6f2d1e-5c1a-4f7e-9a77-1c2d3e4f5a6b
    To: 7d1c9e0a-2b3f-4c5d-8e9f-0a1b2c3d4e5f
    Type: request
    Priority: normal
    Date: 2025-01-01T12:00:00.123456+00:00
    Message-ID: 20250101T120000123456Z-1f2e3d4c

    Can you look at src/login.tsx before I merge?

File names are ``<message-id>.md`` where the id starts with a UTC timestamp
that increases strictly within a process, so sorting file names yields
each sender's send order.
"""

from __future__ import annotations

import os
import re
import secrets
import shutil
import threading
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from pathlib import Path
from typing import Callable, Optional, Union

from .exceptions import NotFound, Unreachable
from .liveness import PeriodicHandle
from .logging_config import get_logger
from .paths import MESSAGE_SUFFIX, TeamLayout
from .utils import atomic_write, format_timestamp, parse_timestamp, utc_now
from .validators import ValidationError, validate_agent_id

__all__ = [
    "MessageType",
    "Priority",
    "MessageStatus",
    "Message",
    "Mailbox",
    "ArtifactStore",
    "WatchHandle",
    "new_message_id",
    "render_message",
    "parse_message",
]

logger = get_logger(__name__)

SUBJECT_PREFIX = "# Subject: "
DEFAULT_MAX_ARTIFACT_BYTES = 10 * 1024 * 1024

MESSAGE_ID_PATTERN = re.compile(r"^[A-Za-z0-9][A-Za-z0-9_.-]*$")
HEADER_PATTERN = re.compile(r"^([A-Za-z][A-Za-z-]*): ?(.*)$")


class MessageType(Enum):
    """Types of messages that can be sent between agents."""

    REQUEST = "request"
    INFO = "info"
    QUERY = "query"


class Priority(Enum):
    LOW = "low"
    NORMAL = "normal"
    HIGH = "high"


class MessageStatus(Enum):
    PENDING = "pending"
    CONSUMED = "consumed"


@dataclass
class Message:
    """A message between agents.

    Attributes:
        message_id: Unique id, also the file stem
        sender: Sender agent id
        recipient: Recipient agent id
        subject: Single-line subject
        body: Free text body
        msg_type: Kind of message (MessageType)
        priority: Priority (Priority)
        sent_at: Send time (UTC)
        artifact: Optional attached file, relative to the root
        status: PENDING or CONSUMED, derived from the partition
    """

    message_id: str
    sender: str
    recipient: str
    subject: str
    body: str
    msg_type: MessageType = MessageType.REQUEST
    priority: Priority = Priority.NORMAL
    sent_at: Optional[datetime] = None
    artifact: Optional[str] = None
    status: MessageStatus = MessageStatus.PENDING

    def __post_init__(self):
        if isinstance(self.msg_type, str):
            self.msg_type = MessageType(self.msg_type.strip().lower())
        if isinstance(self.priority, str):
            self.priority = Priority(self.priority.strip().lower())
        if isinstance(self.status, str):
            self.status = MessageStatus(self.status)
        if isinstance(self.sent_at, str):
            self.sent_at = parse_timestamp(self.sent_at)

    @property
    def filename(self) -> str:
        return f"{self.message_id}{MESSAGE_SUFFIX}"

    def to_dict(self) -> dict:
        """Convert message to dictionary for JSON output."""
        return {
            "message_id": self.message_id,
            "sender": self.sender,
            "recipient": self.recipient,
            "subject": self.subject,
            "body": self.body,
            "type": self.msg_type.value,
            "priority": self.priority.value,
            "sent_at": format_timestamp(self.sent_at) if self.sent_at else None,
            "artifact": self.artifact,
            "status": self.status.value,
        }


_id_lock = threading.Lock()
_last_id_time: Optional[datetime] = None


def new_message_id(now: Optional[datetime] = None) -> str:
    """Generate a message id whose timestamp part increases strictly per process.

    Examples:
        >>> new_message_id()
        '20250101T120000123456Z-1f2e3d4c'
    """
    global _last_id_time

    now = now or utc_now()
    with _id_lock:
        if _last_id_time is not None and now <= _last_id_time:
            now = _last_id_time + timedelta(microseconds=1)
        _last_id_time = now
    return f"{now.strftime('%Y%m%dT%H%M%S%f')}Z-{secrets.token_hex(4)}"


def render_message(message: Message) -> str:
    """Serialize a message to its file content."""
    subject = " ".join(message.subject.split())
    lines = [
        f"{SUBJECT_PREFIX}{subject}",
        f"From: {message.sender}",
        f"To: {message.recipient}",
        f"Type: {message.msg_type.value}",
        f"Priority: {message.priority.value}",
        f"Date: {format_timestamp(message.sent_at or utc_now())}",
        f"Message-ID: {message.message_id}",
    ]
    if message.artifact:
        lines.append(f"Artifact: {message.artifact}")
    return "\n".join(lines) + "\n\n" + message.body + "\n"


def parse_message(
    content: str,
    message_id: str,
    status: MessageStatus = MessageStatus.PENDING,
    recipient: str = "",
) -> Message:
    """Parse message file content.

    The header block ends at the first blank line. Unknown headers are
    ignored; a missing Type or Priority falls back to request/normal.

    Raises:
        ValueError: If the content has no subject line or invalid header values
    """
    lines = content.split("\n")
    if not lines or not lines[0].startswith(SUBJECT_PREFIX.rstrip()):
        raise ValueError("missing '# Subject:' line")
    subject = lines[0][len(SUBJECT_PREFIX.rstrip()):].strip()

    headers: dict[str, str] = {}
    index = 1
    while index < len(lines):
        line = lines[index]
        if line.strip() == "":
            index += 1
            break
        match = HEADER_PATTERN.match(line)
        if match is None:
            # No blank separator; treat the rest as body
            break
        headers[match.group(1).lower()] = match.group(2).strip()
        index += 1

    body = "\n".join(lines[index:])
    if body.endswith("\n"):
        body = body[:-1]

    sent_at = None
    if headers.get("date"):
        sent_at = parse_timestamp(headers["date"])

    return Message(
        message_id=headers.get("message-id") or message_id,
        sender=headers.get("from", ""),
        recipient=headers.get("to") or recipient,
        subject=subject,
        body=body,
        msg_type=headers.get("type") or MessageType.REQUEST,
        priority=headers.get("priority") or Priority.NORMAL,
        sent_at=sent_at,
        artifact=headers.get("artifact") or None,
        status=status,
    )


def read_subject(path: Path) -> Optional[str]:
    """Read just the subject line of a message file (None if absent)."""
    try:
        with open(path, encoding="utf-8") as f:
            first = f.readline()
    except (OSError, UnicodeDecodeError):
        return None
    if first.startswith(SUBJECT_PREFIX.rstrip()):
        return first[len(SUBJECT_PREFIX.rstrip()):].strip()
    return None


class Mailbox:
    """Per-agent message partitions under the shared root."""

    def __init__(self, root: Union[Path, str]):
        self.layout = TeamLayout(root)

    def _agent_id(self, agent_id: str) -> str:
        try:
            return validate_agent_id(agent_id)
        except ValidationError as e:
            raise NotFound(f"Invalid agent id {agent_id!r}: {e}") from e

    def _message_id(self, message_id: str) -> str:
        if not isinstance(message_id, str):
            raise NotFound(f"Invalid message id {message_id!r}")
        if message_id.endswith(MESSAGE_SUFFIX):
            message_id = message_id[: -len(MESSAGE_SUFFIX)]
        if not MESSAGE_ID_PATTERN.match(message_id):
            raise NotFound(f"Invalid message id {message_id!r}")
        return message_id

    def deliver(self, message: Message) -> Message:
        """Write a message into the recipient's pending partition.

        Assigns ``message_id`` and ``sent_at`` when they are unset. The file
        appears atomically under its final name.

        Raises:
            Unreachable: If the file cannot be written
        """
        recipient = self._agent_id(message.recipient)
        if not message.message_id:
            message.message_id = new_message_id()
        if message.sent_at is None:
            message.sent_at = utc_now()
        message.status = MessageStatus.PENDING

        target = self.layout.todo_dir(recipient) / message.filename
        try:
            atomic_write(target, render_message(message))
        except OSError as e:
            raise Unreachable(f"Cannot deliver to {recipient}: {e}") from e

        logger.debug(f"Delivered {message.message_id} from {message.sender} to {recipient}")
        return message

    def _list_dir(self, directory: Path) -> list[str]:
        try:
            names = os.listdir(directory)
        except FileNotFoundError:
            return []
        except OSError as e:
            raise Unreachable(f"Cannot list {directory}: {e}") from e
        return [
            name[: -len(MESSAGE_SUFFIX)]
            for name in names
            if name.endswith(MESSAGE_SUFFIX) and not name.startswith(".")
        ]

    def list_pending(self, agent_id: str, include_consumed: bool = False) -> list[str]:
        """Return message ids in send order (pending only unless include_consumed)."""
        agent_id = self._agent_id(agent_id)
        ids = self._list_dir(self.layout.todo_dir(agent_id))
        if include_consumed:
            ids += self._list_dir(self.layout.done_dir(agent_id))
        return sorted(set(ids))

    def pending_count(self, agent_id: str) -> int:
        return len(self._list_dir(self.layout.todo_dir(self._agent_id(agent_id))))

    def _load(self, path: Path, message_id: str, status: MessageStatus, agent_id: str) -> Message:
        with open(path, encoding="utf-8") as f:
            content = f.read()
        message = parse_message(content, message_id, status=status, recipient=agent_id)
        # The file name is authoritative for the id
        message.message_id = message_id
        return message

    def read(self, agent_id: str, message_id: str) -> Message:
        """Return one message from either partition.

        Raises:
            NotFound: If no such message exists or its file is unparsable
        """
        agent_id = self._agent_id(agent_id)
        message_id = self._message_id(message_id)
        filename = f"{message_id}{MESSAGE_SUFFIX}"
        for directory, status in (
            (self.layout.todo_dir(agent_id), MessageStatus.PENDING),
            (self.layout.done_dir(agent_id), MessageStatus.CONSUMED),
        ):
            try:
                return self._load(directory / filename, message_id, status, agent_id)
            except FileNotFoundError:
                continue
            except (ValueError, UnicodeDecodeError) as e:
                raise NotFound(f"Message {message_id} is unreadable: {e}") from e
            except OSError as e:
                raise Unreachable(f"Cannot read message {message_id}: {e}") from e
        raise NotFound(f"Message not found: {message_id}")

    def read_messages(self, agent_id: str, include_consumed: bool = False) -> list[Message]:
        """Return parsed messages in send order, skipping unreadable files."""
        agent_id = self._agent_id(agent_id)
        sources = [(self.layout.todo_dir(agent_id), MessageStatus.PENDING)]
        if include_consumed:
            sources.append((self.layout.done_dir(agent_id), MessageStatus.CONSUMED))

        found: list[tuple[str, Path, MessageStatus]] = []
        for directory, status in sources:
            for message_id in self._list_dir(directory):
                found.append((message_id, directory / f"{message_id}{MESSAGE_SUFFIX}", status))

        messages = []
        for message_id, path, status in sorted(found, key=lambda item: item[0]):
            try:
                messages.append(self._load(path, message_id, status, agent_id))
            except FileNotFoundError:
                # Consumed by someone else between listing and reading
                continue
            except (ValueError, UnicodeDecodeError) as e:
                logger.warning(f"Skipping unreadable message {path.name}: {e}")
            except OSError as e:
                raise Unreachable(f"Cannot read message {message_id}: {e}") from e
        return messages

    def consume(self, agent_id: str, message_id: str) -> None:
        """Move a pending message to the consumed partition.

        Exactly one of several concurrent consumers succeeds; the others get
        NotFound.

        Raises:
            NotFound: If the message is not pending
        """
        agent_id = self._agent_id(agent_id)
        message_id = self._message_id(message_id)
        filename = f"{message_id}{MESSAGE_SUFFIX}"
        done_dir = self.layout.done_dir(agent_id)
        try:
            done_dir.mkdir(parents=True, exist_ok=True)
            os.rename(self.layout.todo_dir(agent_id) / filename, done_dir / filename)
        except FileNotFoundError as e:
            raise NotFound(f"No pending message {message_id} for {agent_id}") from e
        except OSError as e:
            raise Unreachable(f"Cannot consume message {message_id}: {e}") from e

        logger.debug(f"Consumed {message_id} for {agent_id}")


class ArtifactStore:
    """Shared blobs referenced by messages.

    Args:
        root: Coordination root directory
        max_bytes: Largest file accepted
    """

    def __init__(self, root: Union[Path, str], max_bytes: int = DEFAULT_MAX_ARTIFACT_BYTES):
        self.layout = TeamLayout(root)
        self.max_bytes = max_bytes

    def store(self, source: Union[Path, str]) -> str:
        """Copy a file into ``artifacts/`` and return its root-relative path.

        Raises:
            NotFound: If the source file does not exist
            ValidationError: If the source is not a regular file or is too large
            Unreachable: If the copy fails
        """
        source = Path(source).expanduser()
        try:
            size = source.stat().st_size
        except FileNotFoundError as e:
            raise NotFound(f"Artifact not found: {source}") from e
        except OSError as e:
            raise Unreachable(f"Cannot read artifact {source}: {e}") from e

        if not source.is_file():
            raise ValidationError(f"Artifact is not a regular file: {source}")
        if size > self.max_bytes:
            raise ValidationError(
                f"Artifact too large (max {self.max_bytes} bytes, got {size} bytes): {source}"
            )

        target = self.layout.artifacts_dir / f"{uuid.uuid4().hex}-{source.name}"
        tmp = target.with_name(f".tmp-{target.name}.partial")
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            shutil.copyfile(source, tmp)
            os.replace(tmp, target)
        except OSError as e:
            try:
                tmp.unlink()
            except OSError:
                pass
            raise Unreachable(f"Cannot store artifact {source}: {e}") from e

        relative = self.layout.relative(target)
        logger.info(f"Stored artifact {source} as {relative}")
        return relative

    def path_of(self, relative: str) -> Path:
        """Absolute path of a stored artifact.

        Raises:
            NotFound: If the path escapes the root or the file is missing
        """
        path = self.layout.resolve_relative(relative)
        if path is None or not path.is_file():
            raise NotFound(f"Artifact not found: {relative}")
        return path


class WatchHandle(PeriodicHandle):
    """Polls one agent's pending partition and reports each new message once.

    Messages already pending when the watch starts are reported on the
    first poll.
    """

    def __init__(
        self,
        mailbox: Mailbox,
        agent_id: str,
        interval: float,
        callback: Optional[Callable[[list[Message]], None]] = None,
    ):
        super().__init__(f"teamai-watch-{agent_id[:8]}", interval, self.poll, run_immediately=True)
        self.mailbox = mailbox
        self.agent_id = agent_id
        self.callback = callback or self._log_new
        self._seen: set[str] = set()
        self._poll_lock = threading.Lock()

    def _log_new(self, messages: list[Message]) -> None:
        for message in messages:
            logger.info(
                f"New {message.priority.value} {message.msg_type.value} for {self.agent_id} "
                f"from {message.sender}: {message.subject}"
            )

    def poll(self) -> list[Message]:
        """Check once for new messages; returns (and reports) the new ones."""
        with self._poll_lock:
            pending = self.mailbox.list_pending(self.agent_id)
            # Consumed ids never return to the pending partition
            self._seen.intersection_update(pending)
            new_ids = [mid for mid in pending if mid not in self._seen]
            if not new_ids:
                return []
            messages = []
            for message_id in new_ids:
                try:
                    messages.append(self.mailbox.read(self.agent_id, message_id))
                except NotFound:
                    # Consumed or unreadable; do not report it
                    pass
                self._seen.add(message_id)
        if messages:
            self.callback(messages)
        return messages
