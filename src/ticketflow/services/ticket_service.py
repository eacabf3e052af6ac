"""Ticket service methods."""

from __future__ import annotations

import logging
import uuid
from collections.abc import Iterable

from sqlmodel import Session

from ticketflow.automation import DispatchResult, LoggingNotifier, Notifier, RuleType
from ticketflow.automation.types import (
    ANY_UPDATE,
    ASSIGNEE_CHANGED,
    CATEGORY_CHANGED,
    GROUP_CHANGED,
    NOTE_ADDED,
    PRIORITY_CHANGED,
    REPLY_ADDED,
    STATUS_CHANGED,
    TAG_ADDED,
    TAG_REMOVED,
)
from ticketflow.models import Ticket, TicketActivity, TicketReply
from ticketflow.repositories import (
    add_ticket_activity,
    add_ticket_reply,
    get_ticket_by_ticket_id,
    list_ticket_activities,
    list_ticket_replies,
    list_tickets,
)
from ticketflow.schemas import (
    TicketActivitySummary,
    TicketCreateRequest,
    TicketReplyRequest,
    TicketSummary,
    TicketUpdateRequest,
)
from ticketflow.settings import settings
from ticketflow.time_utils import coerce_utc, now_utc

from .automation_store import build_dispatcher, snapshot_from_ticket

logger = logging.getLogger(__name__)

_RESOLVED_STATUSES = {"resolved", "closed"}


def _unique(items: Iterable[str]) -> list[str]:
    return list(dict.fromkeys(item.strip() for item in items if item and item.strip()))


class TicketService:
    def __init__(self, notifier: Notifier | None = None):
        self.notifier = notifier or LoggingNotifier()

    def create_ticket(self, session: Session, payload: TicketCreateRequest) -> Ticket:
        now = now_utc()
        status = (payload.status or settings.default_ticket_status).strip()
        ticket = Ticket(
            ticket_id=f"tkt-{uuid.uuid4().hex[:10]}",
            subject=payload.subject.strip(),
            description=payload.description,
            status=status,
            priority=(payload.priority or settings.default_ticket_priority).strip(),
            category=payload.category,
            source=payload.source or "portal",
            assignee_id=payload.assignee_id,
            group_id=payload.group_id,
            tags=_unique(payload.tags),
            custom_fields=dict(payload.custom_fields or {}),
            sla_deadline=coerce_utc(payload.sla_deadline),
            resolved_at=now if status in _RESOLVED_STATUSES else None,
            status_changed_at=now,
            created_at=now,
            updated_at=now,
        )
        session.add(ticket)
        session.flush()
        add_ticket_activity(
            session,
            ticket_id=ticket.ticket_id,
            user_id=payload.assignee_id,
            action="created",
            new_value=status,
            created_at=now,
        )
        session.flush()

        self.run_automation(session, ticket, RuleType.TICKET_CREATION)
        return ticket

    def update_ticket(
        self,
        session: Session,
        ticket_id: str,
        payload: TicketUpdateRequest,
        *,
        actor_id: str | None = None,
    ) -> Ticket:
        ticket = get_ticket_by_ticket_id(session, ticket_id)
        if ticket is None:
            raise ValueError(f"ticket not found: {ticket_id}")

        now = now_utc()
        changes = payload.model_dump(exclude_unset=True)
        actor = actor_id or changes.get("assignee_id") or ticket.assignee_id
        events: set[str] = set()

        def record(action: str, old_value: str | None, new_value: str | None) -> None:
            add_ticket_activity(
                session,
                ticket_id=ticket.ticket_id,
                user_id=actor,
                action=action,
                old_value=old_value,
                new_value=new_value,
                created_at=now,
            )

        status = changes.get("status")
        if status is not None and status != ticket.status:
            record("status_changed", ticket.status, status)
            ticket.status = status
            ticket.status_changed_at = now
            if status in _RESOLVED_STATUSES:
                ticket.resolved_at = ticket.resolved_at or now
            else:
                ticket.resolved_at = None
            events.add(STATUS_CHANGED)

        priority = changes.get("priority")
        if priority is not None and priority != ticket.priority:
            record("priority_changed", ticket.priority, priority)
            ticket.priority = priority
            events.add(PRIORITY_CHANGED)

        if "assignee_id" in changes and changes["assignee_id"] != ticket.assignee_id:
            record("assigned", ticket.assignee_id, changes["assignee_id"])
            ticket.assignee_id = changes["assignee_id"]
            events.add(ASSIGNEE_CHANGED)

        if "group_id" in changes and changes["group_id"] != ticket.group_id:
            record("group_changed", ticket.group_id, changes["group_id"])
            ticket.group_id = changes["group_id"]
            events.add(GROUP_CHANGED)

        if "category" in changes and changes["category"] != ticket.category:
            record("category_changed", ticket.category, changes["category"])
            ticket.category = changes["category"]
            events.add(CATEGORY_CHANGED)

        if changes.get("tags") is not None:
            new_tags = _unique(changes["tags"])
            old_tags = list(ticket.tags or [])
            for tag in new_tags:
                if tag not in old_tags:
                    record("tag_added", None, tag)
                    events.add(TAG_ADDED)
            for tag in old_tags:
                if tag not in new_tags:
                    record("tag_removed", tag, None)
                    events.add(TAG_REMOVED)
            ticket.tags = new_tags

        for name in ("subject", "description", "source"):
            if changes.get(name) is not None:
                setattr(ticket, name, changes[name])
        if changes.get("custom_fields") is not None:
            ticket.custom_fields = dict(changes["custom_fields"])
        if "sla_deadline" in changes:
            ticket.sla_deadline = coerce_utc(changes["sla_deadline"])

        ticket.updated_at = now
        session.add(ticket)
        session.flush()

        self.run_automation(session, ticket, RuleType.TICKET_UPDATE, events or {ANY_UPDATE})
        return ticket

    def add_reply(self, session: Session, ticket_id: str, payload: TicketReplyRequest) -> TicketReply:
        ticket = get_ticket_by_ticket_id(session, ticket_id)
        if ticket is None:
            raise ValueError(f"ticket not found: {ticket_id}")

        now = now_utc()
        reply = add_ticket_reply(
            session,
            ticket_id=ticket.ticket_id,
            body=payload.body,
            author_id=payload.author_id,
            is_internal=payload.is_internal,
        )
        add_ticket_activity(
            session,
            ticket_id=ticket.ticket_id,
            user_id=payload.author_id,
            action="note_added" if payload.is_internal else "replied",
            new_value=payload.body[:200],
            created_at=now,
        )
        if not payload.is_internal and payload.author_id and ticket.first_response_at is None:
            ticket.first_response_at = now
        ticket.updated_at = now
        session.add(ticket)
        session.flush()

        event = NOTE_ADDED if payload.is_internal else REPLY_ADDED
        self.run_automation(session, ticket, RuleType.TICKET_UPDATE, event)
        return reply

    def run_automation(
        self,
        session: Session,
        ticket: Ticket,
        event_kind: RuleType,
        trigger_detail: str | Iterable[str] | None = None,
    ) -> DispatchResult | None:
        """Run the automation pass for a ticket mutation that is already stored.

        The mutation is committed first so automation failures never undo it.
        """
        session.commit()
        try:
            dispatcher = build_dispatcher(session, notifier=self.notifier)
            result = dispatcher.dispatch(snapshot_from_ticket(ticket), event_kind, trigger_detail)
            if result.rules_executed:
                dispatcher.store.persist_ticket(result.ticket)
            session.flush()
        except Exception as exc:  # noqa: BLE001
            logger.exception("automation failed for ticket %s: %s", ticket.ticket_id, exc)
            session.rollback()
            return None

        if result.rules_executed:
            logger.info(
                "executed %d automation rule(s) for ticket %s",
                result.rules_executed,
                ticket.ticket_id,
            )
        for error in result.errors:
            logger.warning("automation error on ticket %s: %s", ticket.ticket_id, error)
        return result

    def get_ticket_summary(self, session: Session, ticket_id: str) -> TicketSummary | None:
        ticket = get_ticket_by_ticket_id(session, ticket_id)
        if ticket is None:
            return None
        activities = list_ticket_activities(session, ticket.ticket_id)
        return self._serialize_ticket(ticket, activities)

    def list_ticket_summaries(self, session: Session, limit: int = 100) -> list[TicketSummary]:
        return [self._serialize_ticket(ticket, []) for ticket in list_tickets(session, limit=limit)]

    def get_ticket_activities(self, session: Session, ticket_id: str, limit: int = 200) -> list[TicketActivity]:
        ticket = get_ticket_by_ticket_id(session, ticket_id)
        if ticket is None:
            raise ValueError(f"ticket not found: {ticket_id}")
        return list_ticket_activities(session, ticket_id, limit=limit)

    def get_ticket_replies(self, session: Session, ticket_id: str) -> list[TicketReply]:
        ticket = get_ticket_by_ticket_id(session, ticket_id)
        if ticket is None:
            raise ValueError(f"ticket not found: {ticket_id}")
        return list_ticket_replies(session, ticket_id)

    def _serialize_ticket(self, ticket: Ticket, activities: list[TicketActivity]) -> TicketSummary:
        return TicketSummary(
            id=ticket.id,
            ticket_id=ticket.ticket_id,
            subject=ticket.subject,
            description=ticket.description or "",
            status=ticket.status,
            priority=ticket.priority,
            category=ticket.category,
            source=ticket.source,
            assignee_id=ticket.assignee_id,
            group_id=ticket.group_id,
            tags=list(ticket.tags or []),
            custom_fields=dict(ticket.custom_fields or {}),
            sla_deadline=coerce_utc(ticket.sla_deadline),
            first_response_at=coerce_utc(ticket.first_response_at),
            resolved_at=coerce_utc(ticket.resolved_at),
            status_changed_at=coerce_utc(ticket.status_changed_at),
            created_at=coerce_utc(ticket.created_at),
            updated_at=coerce_utc(ticket.updated_at),
            activities=[serialize_activity(row) for row in activities],
        )


def serialize_activity(row: TicketActivity) -> TicketActivitySummary:
    return TicketActivitySummary(
        id=row.id,
        ticket_id=row.ticket_id,
        user_id=row.user_id,
        action=row.action,
        old_value=row.old_value,
        new_value=row.new_value,
        created_at=coerce_utc(row.created_at),
    )
