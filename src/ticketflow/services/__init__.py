from .agent_service import AgentService
from .assignment_policy import GroupAssignmentResolver
from .automation_store import SqlAutomationStore, build_dispatcher
from .rule_service import RuleService
from .sweeper_service import TimeTriggerSweeper
from .ticket_service import TicketService

__all__ = [
    "AgentService",
    "GroupAssignmentResolver",
    "RuleService",
    "SqlAutomationStore",
    "TicketService",
    "TimeTriggerSweeper",
    "build_dispatcher",
]
