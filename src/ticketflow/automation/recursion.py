"""Recursion ceiling for re-entrant dispatch."""

from __future__ import annotations

import logging
from collections.abc import Iterable

from .types import ASSIGNEE_CHANGED, PRIORITY_CHANGED, STATUS_CHANGED, ActionType, AppliedAction

logger = logging.getLogger(__name__)

# Applied actions that re-enter dispatch, mapped to the ticket_update sub-event they raise.
REENTRANT_ACTIONS = {
    ActionType.UPDATE_STATUS: STATUS_CHANGED,
    ActionType.UPDATE_PRIORITY: PRIORITY_CHANGED,
    ActionType.ASSIGN: ASSIGNEE_CHANGED,
}


def reentrant_events(applied: Iterable[AppliedAction]) -> set[str]:
    """Sub-events raised by ``applied`` that schedule another ticket_update pass."""
    return {
        REENTRANT_ACTIONS[entry.action_type]
        for entry in applied
        if entry.action_type in REENTRANT_ACTIONS
    }


class RecursionGuard:
    """Allows dispatch passes up to and including ``max_depth``.

    Depth 0 is the dispatch requested by the caller; each re-evaluation pass
    caused by automation-made changes runs one level deeper.
    """

    def __init__(self, max_depth: int = 2):
        self.max_depth = max(int(max_depth), 0)

    def allow(self, depth: int) -> bool:
        if depth <= self.max_depth:
            return True
        logger.warning(
            "automation recursion limit reached: depth %s exceeds ceiling %s",
            depth,
            self.max_depth,
        )
        return False
