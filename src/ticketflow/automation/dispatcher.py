"""Trigger dispatch: select, evaluate, execute and track rules for one ticket event."""

from __future__ import annotations

import logging
from collections.abc import Iterable
from datetime import datetime
from typing import Callable

from ticketflow.time_utils import coerce_utc, now_utc

from .actions import ActionExecutor
from .conditions import evaluate
from .errors import AutomationError, RecursionLimitExceeded, RuleFetchError
from .recursion import RecursionGuard, reentrant_events
from .store import AutomationStore
from .tracker import ExecutionTracker
from .types import ANY_UPDATE, DispatchResult, RuleDefinition, RuleType, TicketSnapshot, normalize_trigger

logger = logging.getLogger(__name__)

RuleFilter = Callable[[RuleDefinition], bool]
FireGate = Callable[[RuleDefinition, TicketSnapshot], bool]
FireHook = Callable[[RuleDefinition, TicketSnapshot], None]


def _normalize_details(trigger_detail: str | Iterable[str] | None) -> frozenset[str]:
    if trigger_detail is None:
        return frozenset()
    items = [trigger_detail] if isinstance(trigger_detail, str) else list(trigger_detail)
    normalized = (normalize_trigger(item) for item in items if item)
    return frozenset(item for item in normalized if item)


def trigger_matches(rule: RuleDefinition, event_kind: RuleType, details: frozenset[str]) -> bool:
    """Whether ``rule``'s trigger sub-selector accepts the event ``details``."""
    if event_kind is RuleType.TICKET_CREATION or not details:
        return True
    if event_kind is RuleType.TICKET_UPDATE and rule.trigger in ("", ANY_UPDATE):
        return True
    return rule.trigger in details


class TriggerDispatcher:
    """Runs the rules eligible for one ticket event, in ``(order, id)`` order.

    Rules compose sequentially: the ticket produced by one firing is the input
    of the next candidate. Status, priority and assignee changes made by the
    pass schedule one ``ticket_update`` pass at ``depth + 1``, bounded by the
    recursion guard. Rule-level failures are logged and collected on the
    result; ``dispatch`` itself does not raise for them.

    ``fire_gate`` may veto a matched rule before its actions run, and
    ``on_fire`` is called only once the actions applied without raising.
    """

    def __init__(
        self,
        store: AutomationStore,
        executor: ActionExecutor | None = None,
        tracker: ExecutionTracker | None = None,
        guard: RecursionGuard | None = None,
    ):
        self.store = store
        self.executor = executor or ActionExecutor()
        self.tracker = tracker or ExecutionTracker(store)
        self.guard = guard or RecursionGuard()

    def dispatch(
        self,
        ticket: TicketSnapshot,
        event_kind: RuleType | str,
        trigger_detail: str | Iterable[str] | None = None,
        *,
        depth: int = 0,
        now: datetime | None = None,
        rule_filter: RuleFilter | None = None,
        fire_gate: FireGate | None = None,
        on_fire: FireHook | None = None,
    ) -> DispatchResult:
        result = DispatchResult(ticket=ticket)
        try:
            kind = RuleType(event_kind)
        except ValueError:
            error = AutomationError(f"unknown event kind '{event_kind}'")
            logger.warning("automation skipped for ticket %s: %s", ticket.id, error)
            result.errors.append(error)
            return result

        if not self.guard.allow(depth):
            result.errors.append(
                RecursionLimitExceeded(f"recursion limit reached at depth {depth} for ticket {ticket.id}")
            )
            return result

        moment = coerce_utc(now) or now_utc()
        details = _normalize_details(trigger_detail)
        try:
            candidates = self.select_candidates(kind, details, rule_filter)
        except RuleFetchError as exc:
            logger.warning("automation aborted for ticket %s: %s", ticket.id, exc)
            result.errors.append(exc)
            return result

        changes: set[str] = set()
        current = ticket
        for rule in candidates:
            current = self._run_rule(rule, current, result, moment, fire_gate, on_fire, changes)
        result.ticket = current

        if changes:
            follow_up = self.dispatch(
                current,
                RuleType.TICKET_UPDATE,
                changes,
                depth=depth + 1,
                now=moment,
            )
            result.ticket = follow_up.ticket
            result.rules_executed += follow_up.rules_executed
            result.fired_rule_ids.extend(follow_up.fired_rule_ids)
            result.errors.extend(follow_up.errors)
        return result

    def select_candidates(
        self,
        event_kind: RuleType,
        details: frozenset[str] = frozenset(),
        rule_filter: RuleFilter | None = None,
    ) -> list[RuleDefinition]:
        try:
            rules = list(self.store.list_active_rules(event_kind))
        except RuleFetchError:
            raise
        except Exception as exc:  # noqa: BLE001
            raise RuleFetchError(f"could not load {event_kind.value} rules: {exc}") from exc

        eligible = [
            rule
            for rule in rules
            if rule.is_active
            and rule.rule_type == event_kind
            and trigger_matches(rule, event_kind, details)
            and (rule_filter is None or rule_filter(rule))
        ]
        return sorted(eligible, key=lambda rule: rule.sort_key)

    def _run_rule(
        self,
        rule: RuleDefinition,
        ticket: TicketSnapshot,
        result: DispatchResult,
        moment: datetime,
        fire_gate: FireGate | None,
        on_fire: FireHook | None,
        changes: set[str],
    ) -> TicketSnapshot:
        errors: list[AutomationError] = []
        try:
            matched = evaluate(ticket, rule.conditions, rule.condition_match, now=moment, errors=errors)
            if not matched:
                return ticket
            if fire_gate is not None and not fire_gate(rule, ticket):
                logger.debug("rule %s already fired for ticket %s, skipping", rule.id, ticket.id)
                return ticket
            updated, applied = self.executor.apply(ticket, rule.actions, now=moment, errors=errors)
            if on_fire is not None:
                on_fire(rule, ticket)
        except Exception as exc:  # noqa: BLE001
            logger.exception("automation rule %s failed on ticket %s", rule.id, ticket.id)
            errors.append(AutomationError(f"rule '{rule.name}' failed: {exc}"))
            return ticket
        finally:
            for error in errors:
                error.rule_id = error.rule_id or rule.id
            result.errors.extend(errors)

        try:
            self.tracker.record(rule, updated, applied, moment)
        except Exception as exc:  # noqa: BLE001
            logger.exception("could not record execution of rule %s", rule.id)
            result.errors.append(
                AutomationError(f"tracking failed for rule '{rule.name}': {exc}", rule_id=rule.id)
            )

        result.rules_executed += 1
        result.fired_rule_ids.append(rule.id)
        changes.update(reentrant_events(applied))
        logger.info(
            "automation rule '%s' fired on ticket %s (%d change(s))",
            rule.name or rule.id,
            ticket.id,
            len(applied),
        )
        return updated
