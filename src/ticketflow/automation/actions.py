"""Action execution: ordered, copy-on-write mutations of a ticket snapshot."""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping
from datetime import datetime
from typing import Any, Callable, Optional

from ticketflow.time_utils import coerce_utc, now_utc

from .assignment import AssignmentResolver, StaticAssignmentResolver
from .errors import ActionApplicationError
from .notifications import LoggingNotifier, Notifier
from .types import Action, ActionType, AppliedAction, TicketSnapshot

logger = logging.getLogger(__name__)

ActionOutcome = Optional[tuple[TicketSnapshot, AppliedAction]]


def _text(value: Any) -> str | None:
    if value is None:
        return None
    return str(value)


def _require_text(action: Action) -> str:
    value = action.argument
    text = "" if value is None else str(value).strip()
    if not text:
        raise ActionApplicationError(f"action '{action.type.value}' requires a value")
    return text


def _touch(ticket: TicketSnapshot, now: datetime, **changes: Any) -> TicketSnapshot:
    return ticket.model_copy(update={**changes, "updated_at": now})


class ActionExecutor:
    """Applies rule actions in listed order.

    Each action sees the ticket left behind by the previous one. A failing
    action is skipped and reported; it never stops the remaining actions.
    """

    def __init__(
        self,
        assignment_resolver: AssignmentResolver | None = None,
        notifier: Notifier | None = None,
    ):
        self.assignment_resolver = assignment_resolver or StaticAssignmentResolver()
        self.notifier = notifier or LoggingNotifier()
        self._handlers: dict[ActionType, Callable[[TicketSnapshot, Action, datetime], ActionOutcome]] = {
            ActionType.ASSIGN: self._assign,
            ActionType.UPDATE_STATUS: self._update_status,
            ActionType.UPDATE_PRIORITY: self._update_priority,
            ActionType.SET_CATEGORY: self._set_category,
            ActionType.SET_GROUP: self._set_group,
            ActionType.ADD_TAG: self._add_tag,
            ActionType.REMOVE_TAG: self._remove_tag,
            ActionType.NOTIFY: self._notify,
        }

    def apply(
        self,
        ticket: TicketSnapshot,
        actions: Iterable[Action | Mapping[str, Any]],
        *,
        now: datetime | None = None,
        errors: list | None = None,
    ) -> tuple[TicketSnapshot, list[AppliedAction]]:
        moment = coerce_utc(now) or now_utc()
        current = ticket
        applied: list[AppliedAction] = []
        for raw in actions:
            action = raw if isinstance(raw, Action) else Action.model_validate(raw)
            handler = self._handlers.get(action.type)
            try:
                if handler is None:
                    raise ActionApplicationError(f"unknown action type '{action.raw_type}'")
                outcome = handler(current, action, moment)
            except ActionApplicationError as exc:
                logger.warning("skipping action on ticket %s: %s", current.id, exc)
                if errors is not None:
                    errors.append(exc)
                continue
            if outcome is None:
                logger.debug("action '%s' left ticket %s unchanged", action.type.value, current.id)
                continue
            current, entry = outcome
            applied.append(entry)
        return current, applied

    def _assign(self, ticket: TicketSnapshot, action: Action, now: datetime) -> ActionOutcome:
        target = _require_text(action)
        try:
            agent_id = self.assignment_resolver.resolve(target, ticket)
        except Exception as exc:  # noqa: BLE001
            raise ActionApplicationError(f"assignment target '{target}' failed to resolve: {exc}") from exc
        if not agent_id:
            raise ActionApplicationError(f"assignment target '{target}' could not be resolved")
        if agent_id == ticket.assignee_id:
            return None
        updated = _touch(ticket, now, assignee_id=agent_id)
        return updated, AppliedAction("assigned", ticket.assignee_id, agent_id, ActionType.ASSIGN)

    def _update_status(self, ticket: TicketSnapshot, action: Action, now: datetime) -> ActionOutcome:
        status = _require_text(action)
        if status == ticket.status:
            return None
        changes: dict[str, Any] = {"status": status, "status_changed_at": now}
        if status == "resolved":
            changes["resolved_at"] = now
        updated = _touch(ticket, now, **changes)
        return updated, AppliedAction("status_changed", ticket.status, status, ActionType.UPDATE_STATUS)

    def _update_priority(self, ticket: TicketSnapshot, action: Action, now: datetime) -> ActionOutcome:
        priority = _require_text(action)
        if priority == ticket.priority:
            return None
        updated = _touch(ticket, now, priority=priority)
        return updated, AppliedAction("priority_changed", ticket.priority, priority, ActionType.UPDATE_PRIORITY)

    def _set_category(self, ticket: TicketSnapshot, action: Action, now: datetime) -> ActionOutcome:
        category = _require_text(action)
        if category == ticket.category:
            return None
        updated = _touch(ticket, now, category=category)
        return updated, AppliedAction("category_changed", ticket.category, category, ActionType.SET_CATEGORY)

    def _set_group(self, ticket: TicketSnapshot, action: Action, now: datetime) -> ActionOutcome:
        group_id = _require_text(action)
        if group_id == ticket.group_id:
            return None
        updated = _touch(ticket, now, group_id=group_id)
        return updated, AppliedAction("group_changed", ticket.group_id, group_id, ActionType.SET_GROUP)

    def _add_tag(self, ticket: TicketSnapshot, action: Action, now: datetime) -> ActionOutcome:
        tag = _require_text(action)
        if any(existing.lower() == tag.lower() for existing in ticket.tags):
            return None
        updated = _touch(ticket, now, tags=[*ticket.tags, tag])
        return updated, AppliedAction("tag_added", None, tag, ActionType.ADD_TAG)

    def _remove_tag(self, ticket: TicketSnapshot, action: Action, now: datetime) -> ActionOutcome:
        tag = _require_text(action)
        remaining = [existing for existing in ticket.tags if existing.lower() != tag.lower()]
        if len(remaining) == len(ticket.tags):
            return None
        updated = _touch(ticket, now, tags=remaining)
        return updated, AppliedAction("tag_removed", tag, None, ActionType.REMOVE_TAG)

    def _notify(self, ticket: TicketSnapshot, action: Action, now: datetime) -> ActionOutcome:
        recipient = action.target or ticket.assignee_id
        if not recipient:
            raise ActionApplicationError("notify action has no target and the ticket is unassigned")
        payload = {
            "ticket_id": ticket.id,
            "subject": ticket.subject,
            "status": ticket.status,
            "priority": ticket.priority,
            "message": _text(action.value) or "",
            "sent_at": now.isoformat(),
        }
        try:
            self.notifier.notify(recipient, payload)
        except Exception as exc:  # noqa: BLE001
            raise ActionApplicationError(f"notification to '{recipient}' failed: {exc}") from exc
        return ticket, AppliedAction("notification_sent", None, recipient, ActionType.NOTIFY)
