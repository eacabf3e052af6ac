"""SQL implementation of the automation storage collaborator."""

from __future__ import annotations

import logging
from datetime import datetime

from pydantic import ValidationError
from sqlmodel import Session

from ticketflow.automation import (
    ActionExecutor,
    ActivityEntry,
    LoggingNotifier,
    Notifier,
    RecursionGuard,
    RuleDefinition,
    RuleType,
    TicketSnapshot,
    TriggerDispatcher,
)
from ticketflow.models import AutomationRule, Ticket
from ticketflow.repositories import (
    add_ticket_activity,
    get_rule_by_rule_id,
    get_ticket_by_ticket_id,
    list_active_rules,
)
from ticketflow.settings import settings
from ticketflow.time_utils import coerce_utc

from .assignment_policy import GroupAssignmentResolver

logger = logging.getLogger(__name__)

# Ticket columns the engine is allowed to write back.
_WRITABLE_FIELDS = (
    "status",
    "priority",
    "category",
    "assignee_id",
    "group_id",
    "tags",
    "custom_fields",
    "resolved_at",
    "status_changed_at",
    "updated_at",
)


def rule_definition_from_row(row: AutomationRule) -> RuleDefinition:
    return RuleDefinition(
        id=row.rule_id,
        name=row.name,
        description=row.description,
        rule_type=row.rule_type,
        trigger=row.trigger,
        condition_match=row.condition_match,
        conditions=list(row.conditions or []),
        actions=list(row.actions or []),
        is_active=bool(row.is_active),
        order=int(row.order or 0),
        execution_count=int(row.execution_count or 0),
        last_executed_at=coerce_utc(row.last_executed_at),
    )


def snapshot_from_ticket(row: Ticket) -> TicketSnapshot:
    return TicketSnapshot(
        id=row.ticket_id,
        subject=row.subject,
        description=row.description or "",
        status=row.status,
        priority=row.priority,
        category=row.category,
        source=row.source,
        assignee_id=row.assignee_id,
        group_id=row.group_id,
        tags=list(row.tags or []),
        custom_fields=dict(row.custom_fields or {}),
        sla_deadline=row.sla_deadline,
        first_response_at=row.first_response_at,
        resolved_at=row.resolved_at,
        status_changed_at=row.status_changed_at,
        created_at=row.created_at,
        updated_at=row.updated_at,
    )


def apply_snapshot(row: Ticket, snapshot: TicketSnapshot) -> None:
    for name in _WRITABLE_FIELDS:
        value = getattr(snapshot, name)
        if isinstance(value, list):
            value = list(value)
        elif isinstance(value, dict):
            value = dict(value)
        setattr(row, name, value)


class SqlAutomationStore:
    def __init__(self, session: Session):
        self.session = session

    def list_active_rules(self, rule_type: RuleType) -> list[RuleDefinition]:
        definitions: list[RuleDefinition] = []
        for row in list_active_rules(self.session, RuleType(rule_type).value):
            try:
                definitions.append(rule_definition_from_row(row))
            except ValidationError as exc:
                logger.warning("skipping malformed automation rule %s: %s", row.rule_id, exc)
        return definitions

    def increment_rule_execution(self, rule_id: str, executed_at: datetime) -> None:
        row = get_rule_by_rule_id(self.session, rule_id)
        if row is None:
            raise ValueError(f"rule not found: {rule_id}")
        row.execution_count = int(row.execution_count or 0) + 1
        row.last_executed_at = executed_at
        self.session.add(row)

    def append_ticket_activity(self, entry: ActivityEntry) -> None:
        add_ticket_activity(
            self.session,
            ticket_id=entry.ticket_id,
            user_id=entry.user_id,
            action=entry.action,
            old_value=entry.old_value,
            new_value=entry.new_value,
            created_at=entry.created_at,
        )

    def persist_ticket(self, ticket: TicketSnapshot) -> None:
        row = get_ticket_by_ticket_id(self.session, ticket.id)
        if row is None:
            raise ValueError(f"ticket not found: {ticket.id}")
        apply_snapshot(row, ticket)
        self.session.add(row)


def build_dispatcher(
    session: Session,
    *,
    notifier: Notifier | None = None,
    max_depth: int | None = None,
) -> TriggerDispatcher:
    """Wire a dispatcher to the database behind ``session``."""
    store = SqlAutomationStore(session)
    executor = ActionExecutor(
        assignment_resolver=GroupAssignmentResolver(session),
        notifier=notifier or LoggingNotifier(),
    )
    depth = settings.automation_max_depth if max_depth is None else max_depth
    return TriggerDispatcher(store, executor=executor, guard=RecursionGuard(depth))
