"""Automation error taxonomy.

None of these escape :meth:`TriggerDispatcher.dispatch`; they are logged and
collected on the dispatch result so callers and tests can inspect them.
"""

from __future__ import annotations


class AutomationError(Exception):
    """Base class for automation failures."""

    def __init__(self, message: str, *, rule_id: str | None = None):
        super().__init__(message)
        self.rule_id = rule_id


class ConditionEvaluationError(AutomationError):
    """A condition could not be evaluated (type mismatch, unknown field/operator)."""


class ActionApplicationError(AutomationError):
    """An action could not be applied and was skipped."""


class RecursionLimitExceeded(AutomationError):
    """Re-entrant dispatch was refused at the recursion ceiling."""


class RuleFetchError(AutomationError):
    """The storage collaborator failed to return the candidate rules."""
