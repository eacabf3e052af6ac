"""Storage collaborator interface for the automation engine."""

from __future__ import annotations

from datetime import datetime
from typing import Protocol

from .types import ActivityEntry, RuleDefinition, RuleType, TicketSnapshot


class AutomationStore(Protocol):
    """What the engine needs from persistence, and nothing more."""

    def list_active_rules(self, rule_type: RuleType) -> list[RuleDefinition]:
        """Return active rules of ``rule_type``; ordering is the dispatcher's job."""

    def increment_rule_execution(self, rule_id: str, executed_at: datetime) -> None:
        """Add one to the rule's execution count and stamp its last execution."""

    def append_ticket_activity(self, entry: ActivityEntry) -> None:
        """Persist one immutable activity row."""

    def persist_ticket(self, ticket: TicketSnapshot) -> None:
        """Write the snapshot back to the ticket record."""


class InMemoryAutomationStore:
    """Dictionary-backed store for embedding the engine without a database."""

    def __init__(self, rules: list[RuleDefinition] | None = None):
        self.rules: dict[str, RuleDefinition] = {rule.id: rule for rule in rules or []}
        self.activities: list[ActivityEntry] = []
        self.tickets: dict[str, TicketSnapshot] = {}

    def add_rule(self, rule: RuleDefinition) -> RuleDefinition:
        self.rules[rule.id] = rule
        return rule

    def list_active_rules(self, rule_type: RuleType) -> list[RuleDefinition]:
        return [
            rule
            for rule in self.rules.values()
            if rule.is_active and rule.rule_type == rule_type
        ]

    def increment_rule_execution(self, rule_id: str, executed_at: datetime) -> None:
        rule = self.rules.get(rule_id)
        if rule is None:
            raise KeyError(f"rule not found: {rule_id}")
        self.rules[rule_id] = rule.model_copy(
            update={
                "execution_count": rule.execution_count + 1,
                "last_executed_at": executed_at,
            }
        )

    def append_ticket_activity(self, entry: ActivityEntry) -> None:
        self.activities.append(entry)

    def persist_ticket(self, ticket: TicketSnapshot) -> None:
        self.tickets[ticket.id] = ticket

    def activities_for(self, ticket_id: str) -> list[ActivityEntry]:
        return [entry for entry in self.activities if entry.ticket_id == ticket_id]
