"""Common utilities for Team AI.

Shared helpers used across the package:
- File I/O helpers (atomic writes, JSON load/save)
- Timestamp formatting and parsing
- Comma-separated label encoding
"""

from __future__ import annotations

import json
import os
import tempfile
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Iterable, Union

__all__ = [
    "atomic_write",
    "load_json",
    "save_json",
    "utc_now",
    "format_timestamp",
    "parse_timestamp",
    "split_labels",
    "join_labels",
]


def atomic_write(filepath: Path, content: str) -> None:
    """Write content to file atomically using tmp file + rename.

    The temporary file lives in the target directory and never carries the
    target's suffix, so directory listings that filter on suffix never see it.

    Args:
        filepath: Path to write to
        content: Content to write

    Raises:
        OSError: If write fails
    """
    filepath.parent.mkdir(parents=True, exist_ok=True)

    fd, tmp_path = tempfile.mkstemp(dir=filepath.parent, prefix=".tmp-", suffix=".partial")
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(content)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp_path, filepath)
    except BaseException:
        try:
            os.unlink(tmp_path)
        except OSError:
            pass
        raise


def load_json(filepath: Path) -> Any:
    """Load and parse JSON from file.

    Raises:
        FileNotFoundError: If file doesn't exist
        json.JSONDecodeError: If file contains invalid JSON
    """
    with open(filepath, encoding="utf-8") as f:
        return json.load(f)


def save_json(filepath: Path, data: Any) -> None:
    """Save data to JSON file atomically."""
    atomic_write(filepath, json.dumps(data, indent=2) + "\n")


def utc_now() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


def format_timestamp(dt: datetime) -> str:
    """Format datetime as ISO 8601 string (naive values are taken as UTC)."""
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc).isoformat()


def parse_timestamp(ts: str) -> datetime:
    """Parse ISO 8601 timestamp string into an aware UTC datetime.

    Accepts a trailing ``Z`` as written by JavaScript clients.

    Raises:
        ValueError: If timestamp format is invalid
    """
    if not isinstance(ts, str) or not ts:
        raise ValueError(f"Invalid timestamp: {ts!r}")
    if ts.endswith("Z"):
        ts = ts[:-1] + "+00:00"
    dt = datetime.fromisoformat(ts)
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def split_labels(value: Union[str, Iterable[str], None]) -> list[str]:
    """Decode a comma-separated label string into a list.

    Whitespace around each label is trimmed and empty entries dropped. Case is
    preserved; matching is done on normalized copies.

    Raises:
        ValueError: If the value is neither a string nor a list of labels

    Examples:
        >>> split_labels(" python , css,,")
        ['python', 'css']
    """
    if value is None:
        return []
    if isinstance(value, str):
        parts = value.split(",")
    elif isinstance(value, (list, tuple, set, frozenset)):
        parts = [str(v) for v in value]
    else:
        raise ValueError(f"labels must be a string or a list, got {type(value).__name__}")
    return [p.strip() for p in parts if p and p.strip()]


def join_labels(labels: Iterable[str]) -> str:
    """Encode labels as the comma-separated wire string."""
    return ",".join(split_labels(list(labels)))
