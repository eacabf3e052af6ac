"""Automation rule engine: conditions, actions, dispatch and tracking."""

from .actions import ActionExecutor
from .assignment import AssignmentResolver, StaticAssignmentResolver
from .conditions import evaluate, evaluate_condition
from .dispatcher import TriggerDispatcher
from .errors import (
    ActionApplicationError,
    AutomationError,
    ConditionEvaluationError,
    RecursionLimitExceeded,
    RuleFetchError,
)
from .notifications import LoggingNotifier, Notifier
from .recursion import RecursionGuard
from .store import AutomationStore, InMemoryAutomationStore
from .tracker import ExecutionTracker
from .types import (
    Action,
    ActionType,
    ActivityEntry,
    AppliedAction,
    Condition,
    ConditionMatch,
    ConditionOperator,
    DispatchResult,
    RuleDefinition,
    RuleType,
    TicketSnapshot,
)

__all__ = [
    "Action",
    "ActionApplicationError",
    "ActionExecutor",
    "ActionType",
    "ActivityEntry",
    "AppliedAction",
    "AssignmentResolver",
    "AutomationError",
    "AutomationStore",
    "Condition",
    "ConditionEvaluationError",
    "ConditionMatch",
    "ConditionOperator",
    "DispatchResult",
    "ExecutionTracker",
    "InMemoryAutomationStore",
    "LoggingNotifier",
    "Notifier",
    "RecursionGuard",
    "RecursionLimitExceeded",
    "RuleDefinition",
    "RuleFetchError",
    "RuleType",
    "StaticAssignmentResolver",
    "TicketSnapshot",
    "TriggerDispatcher",
    "evaluate",
    "evaluate_condition",
]
