"""Team AI - File-based coordination for AI coding agents.

This package lets independent AI coding sessions (IDE assistants, CLI
agents) find each other and exchange messages through a shared directory:
- Agent registry with tags, capabilities and a current task
- Heartbeat-based liveness (active, stale, completed)
- Per-agent mailboxes of markdown message files
- Broadcast and capability lookup
- Tool adapter and session lifecycle for host integrations
- Read-only markdown and web views
"""

__version__ = "0.1.0"

from .coordinator import BroadcastResult, Coordinator
from .exceptions import (
    AlreadyExists,
    AmbiguousName,
    NoRecipients,
    NotFound,
    TeamAIError,
    Timeout,
    UnknownRecipient,
    Unreachable,
)
from .mailbox import Message, MessageType, Priority
from .registry import AgentRecord, AgentState
from .session import AgentSession

__all__ = [
    "__version__",
    "Coordinator",
    "BroadcastResult",
    "AgentSession",
    "AgentRecord",
    "AgentState",
    "Message",
    "MessageType",
    "Priority",
    "TeamAIError",
    "NotFound",
    "AlreadyExists",
    "AmbiguousName",
    "UnknownRecipient",
    "NoRecipients",
    "Unreachable",
    "Timeout",
]
