"""Execution tracking: the only writer of rule firing metadata."""

from __future__ import annotations

from datetime import datetime

from .store import AutomationStore
from .types import ActivityEntry, AppliedAction, RuleDefinition, TicketSnapshot

AUTOMATION_EXECUTED = "automation_executed"


class ExecutionTracker:
    def __init__(self, store: AutomationStore):
        self.store = store

    def record(
        self,
        rule: RuleDefinition,
        ticket: TicketSnapshot,
        applied_actions: list[AppliedAction],
        executed_at: datetime,
    ) -> None:
        """One counter increment per firing, one activity row per applied action,
        then an ``automation_executed`` row naming the rule.
        """
        self.store.increment_rule_execution(rule.id, executed_at)
        for applied in applied_actions:
            self._append(ticket, applied.action, applied.old_value, applied.new_value, executed_at)
        self._append(ticket, AUTOMATION_EXECUTED, None, rule.name or rule.id, executed_at)

    def _append(
        self,
        ticket: TicketSnapshot,
        action: str,
        old_value: str | None,
        new_value: str | None,
        created_at: datetime,
    ) -> None:
        self.store.append_ticket_activity(
            ActivityEntry(
                ticket_id=ticket.id,
                user_id=None,
                action=action,
                old_value=old_value,
                new_value=new_value,
                created_at=created_at,
            )
        )
