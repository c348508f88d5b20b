"""Coordination root detection and on-disk layout for Team AI.

The shared root is determined by, in priority order:
1. Explicit root parameter (if provided)
2. TEAMAI_ROOT environment variable
3. ``storage.root`` from configuration
4. ``~/.team-ai`` (fallback)

Layout under the root::

    agents/<agent-id>/metadata.json
    agents/<agent-id>/incoming/todo/*.md
    agents/<agent-id>/incoming/done/*.md
    artifacts/
    locks/<agent-id>.lock
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Optional, Union

__all__ = [
    "ROOT_ENV_VAR",
    "DEFAULT_ROOT",
    "get_root",
    "TeamLayout",
]

ROOT_ENV_VAR = "TEAMAI_ROOT"
DEFAULT_ROOT = Path("~/.team-ai")

METADATA_FILE = "metadata.json"
MESSAGE_SUFFIX = ".md"


def get_root(root: Union[Path, str, None] = None, config=None) -> Path:
    """Get the coordination root directory.

    Args:
        root: Optional explicit root path
        config: Optional TeamAIConfig; its ``storage.root`` is consulted
            after the environment variable

    Returns:
        Absolute path to the root (it may not exist yet)

    Examples:
        >>> os.environ['TEAMAI_ROOT'] = '/tmp/team'
        >>> get_root()
        PosixPath('/tmp/team')
    """
    if root is not None:
        return Path(root).expanduser().resolve()

    env_root = os.getenv(ROOT_ENV_VAR)
    if env_root:
        return Path(env_root).expanduser().resolve()

    if config is not None and config.storage.root:
        return Path(config.storage.root).expanduser().resolve()

    return DEFAULT_ROOT.expanduser().resolve()


class TeamLayout:
    """Path arithmetic for the shared directory tree.

    Pure path computation: nothing here touches the filesystem except
    ``ensure_mailbox``.
    """

    def __init__(self, root: Union[Path, str]):
        self.root = Path(root)

    def __repr__(self) -> str:
        return f"TeamLayout({str(self.root)!r})"

    @property
    def agents_dir(self) -> Path:
        return self.root / "agents"

    @property
    def artifacts_dir(self) -> Path:
        return self.root / "artifacts"

    @property
    def locks_dir(self) -> Path:
        return self.root / "locks"

    def agent_dir(self, agent_id: str) -> Path:
        return self.agents_dir / agent_id

    def metadata_path(self, agent_id: str) -> Path:
        return self.agent_dir(agent_id) / METADATA_FILE

    def todo_dir(self, agent_id: str) -> Path:
        return self.agent_dir(agent_id) / "incoming" / "todo"

    def done_dir(self, agent_id: str) -> Path:
        return self.agent_dir(agent_id) / "incoming" / "done"

    def lock_path(self, agent_id: str) -> Path:
        return self.locks_dir / f"{agent_id}.lock"

    def ensure_mailbox(self, agent_id: str) -> None:
        """Create the incoming/todo and incoming/done partitions."""
        self.todo_dir(agent_id).mkdir(parents=True, exist_ok=True)
        self.done_dir(agent_id).mkdir(parents=True, exist_ok=True)

    def is_installed(self) -> bool:
        """True when the root has been initialised (agents directory exists)."""
        return self.agents_dir.is_dir()

    def relative(self, path: Path) -> str:
        """Path relative to the root, with forward slashes."""
        return Path(path).relative_to(self.root).as_posix()

    def resolve_relative(self, relative: str) -> Optional[Path]:
        """Map a root-relative path back to an absolute path inside the root.

        Returns None when the path escapes the root.
        """
        candidate = (self.root / relative).resolve()
        try:
            candidate.relative_to(self.root.resolve())
        except ValueError:
            return None
        return candidate
