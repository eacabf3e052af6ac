"""Periodic sweep that fires time-trigger rules against open tickets."""

from __future__ import annotations

import logging
import threading
from datetime import datetime

from sqlmodel import Session

from ticketflow.automation import LoggingNotifier, Notifier, RuleDefinition, RuleType, TicketSnapshot
from ticketflow.automation.types import CADENCE_SECONDS, normalize_trigger
from ticketflow.models import AutomationRule
from ticketflow.repositories import (
    get_sweep_mark,
    list_active_rules,
    list_tickets_for_sweep,
    upsert_sweep_mark,
)
from ticketflow.schemas import SweepResponse
from ticketflow.settings import settings
from ticketflow.time_utils import coerce_utc, now_utc

from .automation_store import build_dispatcher, snapshot_from_ticket

logger = logging.getLogger(__name__)

DEFAULT_CADENCE_SECONDS = CADENCE_SECONDS["hourly"]


def episode_key(ticket: TicketSnapshot) -> str:
    """Identify the ticket's current status episode."""
    started = ticket.status_changed_at or ticket.created_at
    return f"{ticket.status}@{started.isoformat() if started else '-'}"


def rule_is_due(rule: AutomationRule, now: datetime) -> bool:
    last_swept = coerce_utc(rule.last_swept_at)
    if last_swept is None:
        return True
    interval = CADENCE_SECONDS.get(normalize_trigger(rule.trigger), DEFAULT_CADENCE_SECONDS)
    return (now - last_swept).total_seconds() >= interval


class TimeTriggerSweeper:
    """Evaluates due time-trigger rules against every open ticket.

    Sweeps never overlap: a sweep that starts while another is running
    returns immediately. Each rule fires at most once per ticket status
    episode; a firing leaves a token that later sweeps check before acting.
    """

    def __init__(self, notifier: Notifier | None = None):
        self.notifier = notifier or LoggingNotifier()
        self._lock = threading.Lock()

    def sweep(
        self,
        session: Session,
        *,
        now: datetime | None = None,
        cadence: str | None = None,
        limit: int | None = None,
    ) -> SweepResponse:
        if not self._lock.acquire(blocking=False):
            logger.warning("time-trigger sweep already running; skipping")
            return SweepResponse(swept=False, message="sweep already running")
        try:
            return self._sweep(
                session,
                now=coerce_utc(now) or now_utc(),
                cadence=normalize_trigger(cadence) if cadence else None,
                limit=max(1, limit or settings.sweep_batch_size),
            )
        finally:
            self._lock.release()

    def _sweep(self, session: Session, *, now: datetime, cadence: str | None, limit: int) -> SweepResponse:
        due_rules = [
            rule
            for rule in list_active_rules(session, RuleType.TIME_TRIGGER.value)
            if (cadence is None or normalize_trigger(rule.trigger) == cadence) and rule_is_due(rule, now)
        ]
        if not due_rules:
            return SweepResponse(swept=True, message="no time-trigger rules due")

        due_ids = {rule.rule_id for rule in due_rules}
        dispatcher = build_dispatcher(session, notifier=self.notifier)

        def is_due(rule: RuleDefinition) -> bool:
            return rule.id in due_ids

        def not_fired_this_episode(rule: RuleDefinition, ticket: TicketSnapshot) -> bool:
            mark = get_sweep_mark(session, rule.id, ticket.id)
            return mark is None or mark.episode_key != episode_key(ticket)

        def mark_episode(rule: RuleDefinition, ticket: TicketSnapshot) -> None:
            key = episode_key(ticket)
            upsert_sweep_mark(session, rule_id=rule.id, ticket_id=ticket.id, episode_key=key, swept_at=now)

        scanned = changed = executed = 0
        cursor: int | None = None
        while True:
            batch = list_tickets_for_sweep(
                session,
                skip_statuses=settings.sweep_skip_statuses,
                after_id=cursor,
                limit=limit,
            )
            if not batch:
                break
            cursor = batch[-1].id
            scanned += len(batch)
            for row in batch:
                snapshot = snapshot_from_ticket(row)
                result = dispatcher.dispatch(
                    snapshot,
                    RuleType.TIME_TRIGGER,
                    now=now,
                    rule_filter=is_due,
                    fire_gate=not_fired_this_episode,
                    on_fire=mark_episode,
                )
                for error in result.errors:
                    logger.warning("time-trigger error on ticket %s: %s", row.ticket_id, error)
                if not result.rules_executed:
                    continue
                executed += result.rules_executed
                dispatcher.store.persist_ticket(result.ticket)
                if result.ticket != snapshot:
                    changed += 1
            session.flush()
            if len(batch) < limit:
                break

        for rule in due_rules:
            rule.last_swept_at = now
            session.add(rule)
        session.flush()

        logger.info(
            "swept %d ticket(s) against %d time rule(s): %d firing(s), %d ticket(s) changed",
            scanned,
            len(due_rules),
            executed,
            changed,
        )
        return SweepResponse(
            swept=True,
            rules_due=len(due_rules),
            tickets_scanned=scanned,
            tickets_changed=changed,
            rules_executed=executed,
        )
