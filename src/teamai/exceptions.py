"""Error taxonomy for Team AI coordination.

Every error can carry the name of the operation that failed. When set, it
prefixes the message so that reports shown to a user read like
``send: Unknown recipient 'ui-agent'``.
"""

from __future__ import annotations

from typing import Optional

__all__ = [
    "TeamAIError",
    "NotFound",
    "AlreadyExists",
    "AmbiguousName",
    "UnknownRecipient",
    "NoRecipients",
    "Unreachable",
    "Timeout",
    "describe_error",
]


class TeamAIError(Exception):
    """Base exception for coordination errors."""

    def __init__(self, message: str, operation: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.operation = operation

    def __str__(self) -> str:
        if self.operation:
            return f"{self.operation}: {self.message}"
        return self.message


class NotFound(TeamAIError):
    """Raised when an agent, message or target does not exist."""
    pass


class AlreadyExists(TeamAIError):
    """Raised when registering an identity that already has a record."""
    pass


class AmbiguousName(TeamAIError):
    """Raised when a name matches several agents and strict names are enabled."""

    def __init__(self, message: str, candidates: tuple[str, ...] = (), operation: Optional[str] = None):
        super().__init__(message, operation)
        self.candidates = candidates


class UnknownRecipient(TeamAIError):
    """Raised when a message target does not resolve to a live agent."""
    pass


class NoRecipients(TeamAIError):
    """Raised when a broadcast filter matches no agent."""
    pass


class Unreachable(TeamAIError):
    """Raised when the shared store cannot be accessed."""
    pass


class Timeout(TeamAIError):
    """Raised when an operation exceeds its time bound."""
    pass


def describe_error(error: BaseException, operation: Optional[str] = None) -> str:
    """Render any error as ``"<operation>: <message>"``.

    Uses the operation recorded on the error when there is one, otherwise
    the supplied fallback.
    """
    op = getattr(error, "operation", None) or operation
    message = error.message if isinstance(error, TeamAIError) else str(error)
    if not message:
        message = type(error).__name__
    return f"{op}: {message}" if op else message
