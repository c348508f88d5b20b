"""Name, tag and capability addressing for Team AI.

Targets given by users are either agent ids or human names. Ids always win;
names are matched exactly against agents that have not completed. Several
live agents may share a name (two sessions in the same project, say). By
default the one with the most recent heartbeat is chosen; with
``directory.strict_names`` the lookup fails with AmbiguousName instead.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Iterable, Optional, Union

from .exceptions import AmbiguousName, NotFound
from .logging_config import get_logger
from .registry import AgentRecord, RegistryStore
from .validators import ValidationError, validate_agent_id

__all__ = ["DirectoryService"]

logger = get_logger(__name__)

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


def _exclusions(exclude: Union[str, Iterable[str], None]) -> set[str]:
    if exclude is None:
        return set()
    if isinstance(exclude, str):
        return {exclude}
    return set(exclude)


class DirectoryService:
    """Resolves targets and selects agents by label.

    Args:
        store: Registry store to search
        strict_names: Raise AmbiguousName on duplicate live names
    """

    def __init__(self, store: RegistryStore, strict_names: bool = False):
        self.store = store
        self.strict_names = strict_names

    def resolve(self, target: str) -> AgentRecord:
        """Resolve an id or name to a record.

        Raises:
            NotFound: If nothing matches
            AmbiguousName: If strict names are enabled and several live
                agents carry the name
        """
        if not isinstance(target, str) or not target.strip():
            raise NotFound(f"Invalid target {target!r}")
        target = target.strip()

        try:
            agent_id = validate_agent_id(target)
        except ValidationError:
            agent_id = None
        if agent_id is not None and self.store.exists(agent_id):
            return self.store.read(agent_id)

        candidates = [r for r in self.store.list() if r.name == target and not r.is_completed]
        if not candidates:
            raise NotFound(f"No agent with id or name '{target}'")
        if len(candidates) == 1:
            return candidates[0]

        ids = tuple(r.id for r in candidates)
        if self.strict_names:
            raise AmbiguousName(
                f"Name '{target}' matches {len(candidates)} agents: {', '.join(ids)}",
                candidates=ids,
            )

        # Most recent heartbeat first, then lowest id
        candidates.sort(key=lambda r: r.id)
        chosen = max(candidates, key=lambda r: r.last_heartbeat or _EPOCH)
        logger.debug(f"Name '{target}' matches {ids}; using {chosen.id}")
        return chosen

    def find(
        self,
        tag: Optional[str] = None,
        capability: Optional[str] = None,
        exclude: Union[str, Iterable[str], None] = None,
        include_completed: bool = False,
    ) -> list[AgentRecord]:
        """Agents carrying every supplied label (case-insensitive), sorted by id."""
        excluded = _exclusions(exclude)
        return [
            record
            for record in self.store.list(tag=tag, capability=capability)
            if record.id not in excluded and (include_completed or not record.is_completed)
        ]

    def broadcast_targets(
        self,
        tag: Optional[str] = None,
        capability: Optional[str] = None,
        exclude: Union[str, Iterable[str], None] = None,
    ) -> list[AgentRecord]:
        """Recipients of a broadcast; completed agents never receive one."""
        return self.find(tag=tag, capability=capability, exclude=exclude, include_completed=False)

    def by_capability(self, capability: str) -> list[AgentRecord]:
        """All agents advertising a capability, completed ones included."""
        return self.store.list(capability=capability)
