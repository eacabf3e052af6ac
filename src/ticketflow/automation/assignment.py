"""Assignment target resolution for ``assign`` actions."""

from __future__ import annotations

from collections.abc import Iterable, Mapping, Sequence
from typing import Protocol

from .types import TicketSnapshot


class AssignmentResolver(Protocol):
    """Resolves an action target (agent id or pool name) to an agent id."""

    def resolve(self, target: str, ticket: TicketSnapshot) -> str | None:
        """Return the agent to assign, or ``None`` when the target is unknown or empty."""


class StaticAssignmentResolver:
    """In-memory resolver over a fixed set of agents and round-robin pools."""

    def __init__(
        self,
        agents: Iterable[str] = (),
        pools: Mapping[str, Sequence[str]] | None = None,
    ):
        self.agents = set(agents)
        self.pools = {name: list(members) for name, members in (pools or {}).items()}
        self._cursor: dict[str, int] = {}

    def resolve(self, target: str, ticket: TicketSnapshot) -> str | None:
        del ticket
        if target in self.agents:
            return target
        members = self.pools.get(target)
        if not members:
            return None
        index = self._cursor.get(target, 0)
        self._cursor[target] = index + 1
        return members[index % len(members)]
