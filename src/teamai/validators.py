"""Input validation utilities for Team AI.

This module provides validation functions for:
- Agent IDs (format, length, allowed characters)
- Agent names and comma-separated labels (tags, capabilities)
- Message subjects and bodies (length, sanitization)
- Message type and priority enumerations
- Interval and timeout values

All validation functions raise ValidationError (a ValueError) with helpful
error messages when validation fails.
"""

from __future__ import annotations

import math
import re
from typing import Any, Iterable, Optional, Union

__all__ = [
    "ValidationError",
    "validate_agent_id",
    "validate_agent_name",
    "normalize_label",
    "validate_labels",
    "validate_subject",
    "validate_message_body",
    "validate_message_type",
    "validate_priority",
    "validate_interval",
    "validate_port",
    "sanitize_message_content",
    "optional_text",
]

# Validation constants
MAX_AGENT_ID_LENGTH = 64
MAX_AGENT_NAME_LENGTH = 128
MAX_LABEL_LENGTH = 64
MAX_SUBJECT_LENGTH = 200
MAX_BODY_LENGTH = 64 * 1024  # 64KB

MESSAGE_TYPES = ("request", "info", "query")
PRIORITIES = ("low", "normal", "high")

# Pattern for valid agent IDs: alphanumeric + hyphens + underscores
AGENT_ID_PATTERN = re.compile(r"^[a-zA-Z0-9_-]+$")

# Bidirectional text override characters (CVE-2021-42574 - Trojan Source attack)
BIDI_OVERRIDE_CHARS = {
    "\u202a",  # LEFT-TO-RIGHT EMBEDDING
    "\u202b",  # RIGHT-TO-LEFT EMBEDDING
    "\u202c",  # POP DIRECTIONAL FORMATTING
    "\u202d",  # LEFT-TO-RIGHT OVERRIDE
    "\u202e",  # RIGHT-TO-LEFT OVERRIDE
    "\u2066",  # LEFT-TO-RIGHT ISOLATE
    "\u2067",  # RIGHT-TO-LEFT ISOLATE
    "\u2068",  # FIRST STRONG ISOLATE
    "\u2069",  # POP DIRECTIONAL ISOLATE
}

# Zero-width characters (can hide content)
ZERO_WIDTH_CHARS = {
    "\u200b",  # ZERO WIDTH SPACE
    "\u200c",  # ZERO WIDTH NON-JOINER
    "\u200d",  # ZERO WIDTH JOINER
    "\u2060",  # WORD JOINER
    "\ufeff",  # ZERO WIDTH NO-BREAK SPACE (BOM)
}

DANGEROUS_UNICODE_CHARS = BIDI_OVERRIDE_CHARS | ZERO_WIDTH_CHARS


class ValidationError(ValueError):
    """Raised when validation fails.

    Subclass of ValueError so callers that only know about ValueError
    still catch it.
    """

    pass


def validate_agent_id(agent_id: Any) -> str:
    """Validate an agent ID.

    Agent IDs key every path under the root, so they must:
    - Be non-empty strings
    - Contain only alphanumeric characters, hyphens, and underscores
    - Be at most 64 characters long
    - Not start or end with a hyphen

    Args:
        agent_id: Value to validate

    Returns:
        The validated agent ID, stripped of surrounding whitespace

    Raises:
        ValidationError: If validation fails with specific reason

    Examples:
        >>> validate_agent_id("0b6f2d1e-5c1a-4f7e-9a77-1c2d3e4f5a6b")
        '0b6f2d1e-5c1a-4f7e-9a77-1c2d3e4f5a6b'
        >>> validate_agent_id("../etc")
        ValidationError: Agent ID contains invalid characters
    """
    if not isinstance(agent_id, str):
        raise ValidationError(f"Agent ID must be a string, got {type(agent_id).__name__}")

    if not agent_id or agent_id.strip() == "":
        raise ValidationError("Agent ID cannot be empty")

    agent_id = agent_id.strip()

    if len(agent_id) > MAX_AGENT_ID_LENGTH:
        raise ValidationError(
            f"Agent ID too long (max {MAX_AGENT_ID_LENGTH} characters, got {len(agent_id)})"
        )

    if not AGENT_ID_PATTERN.match(agent_id):
        raise ValidationError(
            f"Agent ID contains invalid characters. "
            f"Only alphanumeric, hyphens, and underscores allowed: '{agent_id}'"
        )

    if agent_id.startswith("-") or agent_id.endswith("-"):
        raise ValidationError(f"Agent ID cannot start or end with a hyphen: '{agent_id}'")

    return agent_id


def validate_agent_name(name: Any) -> str:
    """Validate a human-readable agent name.

    Names are free text but must be a single non-empty line.

    Returns:
        The sanitized name

    Raises:
        ValidationError: If the name is empty, multi-line or too long
    """
    if not isinstance(name, str):
        raise ValidationError(f"Agent name must be a string, got {type(name).__name__}")

    name = sanitize_message_content(name)
    if not name:
        raise ValidationError("Agent name cannot be empty")
    if "\n" in name:
        raise ValidationError("Agent name must be a single line")
    if len(name) > MAX_AGENT_NAME_LENGTH:
        raise ValidationError(
            f"Agent name too long (max {MAX_AGENT_NAME_LENGTH} characters, got {len(name)})"
        )
    return name


def normalize_label(label: Any) -> str:
    """Normalize a tag or capability for comparison (trimmed, lowercase)."""
    if label is None:
        return ""
    return str(label).strip().lower()


def validate_labels(labels: Union[str, Iterable[str], None], kind: str = "label") -> list[str]:
    """Validate a tag or capability list.

    Accepts either a comma-separated string or an iterable of strings.
    Labels are trimmed; empty entries are dropped; duplicates (compared
    case-insensitively) are removed keeping the first spelling.

    Raises:
        ValidationError: If a label contains a comma or newline or is too long
    """
    if labels is None:
        return []
    if isinstance(labels, str):
        raw = labels.split(",")
    else:
        raw = []
        for item in labels:
            if not isinstance(item, str):
                raise ValidationError(f"Each {kind} must be a string, got {type(item).__name__}")
            if "," in item:
                raise ValidationError(f"{kind.capitalize()} cannot contain a comma: '{item}'")
            raw.append(item)

    result: list[str] = []
    seen: set[str] = set()
    for item in raw:
        label = item.strip()
        if not label:
            continue
        if "\n" in label or "\r" in label:
            raise ValidationError(f"{kind.capitalize()} must be a single line: {label!r}")
        if len(label) > MAX_LABEL_LENGTH:
            raise ValidationError(
                f"{kind.capitalize()} too long (max {MAX_LABEL_LENGTH} characters): '{label}'"
            )
        key = normalize_label(label)
        if key in seen:
            continue
        seen.add(key)
        result.append(label)
    return result


def validate_subject(subject: Any, max_length: int = MAX_SUBJECT_LENGTH) -> str:
    """Validate a message subject.

    The subject ends up on the ``# Subject:`` line of the message file, so
    line breaks are collapsed to single spaces.

    Examples:
        >>> validate_subject("Need\\nreview")
        'Need review'
    """
    if not isinstance(subject, str):
        raise ValidationError(f"Subject must be a string, got {type(subject).__name__}")

    subject = sanitize_message_content(subject)
    subject = " ".join(subject.split())
    if not subject:
        raise ValidationError("Subject cannot be empty")
    if len(subject) > max_length:
        raise ValidationError(f"Subject too long (max {max_length} characters, got {len(subject)})")
    return subject


def validate_message_body(content: Any, max_length: int = MAX_BODY_LENGTH) -> str:
    """Validate and sanitize message body.

    Body must:
    - Be a string
    - Not be empty (after sanitizing)
    - Not exceed max_length bytes

    Raises:
        ValidationError: If validation fails
    """
    if not isinstance(content, str):
        raise ValidationError(f"Message content must be a string, got {type(content).__name__}")

    content = sanitize_message_content(content)
    if not content:
        raise ValidationError("Message content cannot be empty")

    # Length check (in bytes for Unicode safety)
    content_bytes = content.encode("utf-8")
    if len(content_bytes) > max_length:
        raise ValidationError(
            f"Message content too long (max {max_length} bytes, got {len(content_bytes)} bytes)"
        )
    return content


def validate_message_type(msg_type: Any) -> str:
    """Validate a message type name (request, info or query)."""
    value = getattr(msg_type, "value", msg_type)
    if not isinstance(value, str) or value.strip().lower() not in MESSAGE_TYPES:
        raise ValidationError(
            f"Invalid message type {value!r}. Must be one of: {', '.join(MESSAGE_TYPES)}"
        )
    return value.strip().lower()


def validate_priority(priority: Any) -> str:
    """Validate a priority name (low, normal or high)."""
    value = getattr(priority, "value", priority)
    if not isinstance(value, str) or value.strip().lower() not in PRIORITIES:
        raise ValidationError(
            f"Invalid priority {value!r}. Must be one of: {', '.join(PRIORITIES)}"
        )
    return value.strip().lower()


def validate_interval(
    interval: Any,
    min_val: float = 0.01,
    max_val: float = 86400.0,
    name: str = "Interval",
) -> float:
    """Validate a polling or heartbeat interval in seconds.

    Raises:
        ValidationError: If not a number or outside [min_val, max_val]

    Examples:
        >>> validate_interval(5)
        5.0
        >>> validate_interval(0)
        ValidationError: Interval must be between 0.01 and 86400.0 seconds
    """
    if isinstance(interval, bool):
        raise ValidationError(f"{name} must be a number, got bool")
    try:
        value = float(interval)
    except (TypeError, ValueError):
        raise ValidationError(f"{name} must be a number, got {type(interval).__name__}")
    if not math.isfinite(value):
        raise ValidationError(f"{name} must be a finite number, got {value}")

    if value < min_val or value > max_val:
        raise ValidationError(
            f"{name} must be between {min_val} and {max_val} seconds, got {value}"
        )
    return value


def validate_port(port: Any) -> int:
    """Validate a port number.

    Raises:
        ValidationError: If port is not an integer in 1..65535
    """
    try:
        port = int(port)
    except (TypeError, ValueError):
        raise ValidationError(f"Port must be an integer, got: {type(port).__name__}")

    if port < 1 or port > 65535:
        raise ValidationError(f"Port must be between 1 and 65535, got: {port}")

    return port


def sanitize_message_content(content: str) -> str:
    """Sanitize text for storage in a message file.

    Removes:
    - Null bytes
    - Control characters (except tab, newline, carriage return)
    - Bidirectional override characters (Trojan Source attack prevention)
    - Zero-width characters (hidden content prevention)

    Also normalizes line endings to Unix style, strips trailing whitespace
    per line and trims the whole text.

    Examples:
        >>> sanitize_message_content("Hello\\x00World")
        'HelloWorld'
        >>> sanitize_message_content("  Line 1  \\n  Line 2  ")
        'Line 1\\n  Line 2'
    """
    if not isinstance(content, str):
        content = str(content)

    content = content.replace("\x00", "")

    for char in DANGEROUS_UNICODE_CHARS:
        content = content.replace(char, "")

    # Keep tab, newline and carriage return
    content = "".join(
        char
        for char in content
        if char in "\t\n\r" or (32 <= ord(char) < 127) or ord(char) >= 128
    )

    content = content.replace("\r\n", "\n").replace("\r", "\n")

    lines = [line.rstrip() for line in content.split("\n")]
    content = "\n".join(lines)

    return content.strip()


def optional_text(value: Optional[str]) -> str:
    """Sanitize an optional free-text field (task, model, client)."""
    if value is None:
        return ""
    return sanitize_message_content(str(value))
