import unittest
from datetime import timedelta
from unittest import mock

from _test_support import reset_database
from ticketflow.automation import ActionExecutor, RuleType
from ticketflow.db import session_scope
from ticketflow.repositories import (
    get_rule_by_rule_id,
    get_sweep_mark,
    get_ticket_by_ticket_id,
    list_ticket_activities,
)
from ticketflow.schemas import AutomationRuleCreateRequest, TicketCreateRequest, TicketUpdateRequest
from ticketflow.services import RuleService, TicketService, TimeTriggerSweeper
from ticketflow.time_utils import now_utc


class TimeTriggerSweeperTests(unittest.TestCase):
    @classmethod
    def setUpClass(cls):
        cls.ticket_service = TicketService()
        cls.rule_service = RuleService()

    def setUp(self):
        reset_database()
        self.sweeper = TimeTriggerSweeper()
        self.now = now_utc()

    def create_time_rule(self, name, conditions, actions, trigger="hourly"):
        with session_scope() as session:
            rule = self.rule_service.create_rule(
                session,
                AutomationRuleCreateRequest(
                    name=name,
                    rule_type=RuleType.TIME_TRIGGER,
                    trigger=trigger,
                    conditions=conditions,
                    actions=actions,
                ),
            )
            return rule.rule_id

    def create_ticket(self, status, days_in_status):
        with session_scope() as session:
            ticket_id = self.ticket_service.create_ticket(session, TicketCreateRequest(subject="Old ticket")).ticket_id
        with session_scope() as session:
            self.ticket_service.update_ticket(session, ticket_id, TicketUpdateRequest(status=status))
        self.set_status_age(ticket_id, days_in_status)
        return ticket_id

    def set_status_age(self, ticket_id, days):
        with session_scope() as session:
            ticket = get_ticket_by_ticket_id(session, ticket_id)
            ticket.status_changed_at = self.now - timedelta(days=days)
            session.add(ticket)

    def sweep(self, **kwargs):
        with session_scope() as session:
            return self.sweeper.sweep(session, **kwargs)

    def test_resolved_ticket_is_closed_once(self):
        rule_id = self.create_time_rule(
            "Auto close",
            [
                {"field": "status", "operator": "equals", "value": "resolved"},
                {"field": "days_in_status", "operator": "gte", "value": 7},
            ],
            [{"type": "update_status", "value": "closed"}],
        )
        ticket_id = self.create_ticket("resolved", days_in_status=8)

        first = self.sweep(now=self.now)
        self.assertTrue(first.swept)
        self.assertEqual(first.rules_due, 1)
        self.assertEqual(first.rules_executed, 1)
        self.assertEqual(first.tickets_changed, 1)

        second = self.sweep(now=self.now + timedelta(seconds=1))
        self.assertEqual(second.rules_executed, 0)

        with session_scope() as session:
            ticket = get_ticket_by_ticket_id(session, ticket_id)
            self.assertEqual(ticket.status, "closed")
            self.assertEqual(get_rule_by_rule_id(session, rule_id).execution_count, 1)
            closing = [row for row in list_ticket_activities(session, ticket_id) if row.new_value == "closed"]
            self.assertEqual(len(closing), 1)
            self.assertEqual((closing[0].action, closing[0].old_value), ("status_changed", "resolved"))
            self.assertIsNone(closing[0].user_id)

    def test_young_tickets_are_left_alone(self):
        self.create_time_rule(
            "Auto close",
            [
                {"field": "status", "operator": "equals", "value": "resolved"},
                {"field": "days_in_status", "operator": "gte", "value": 7},
            ],
            [{"type": "update_status", "value": "closed"}],
        )
        ticket_id = self.create_ticket("resolved", days_in_status=2)
        result = self.sweep(now=self.now)
        self.assertEqual(result.tickets_scanned, 1)
        self.assertEqual(result.rules_executed, 0)
        with session_scope() as session:
            self.assertEqual(get_ticket_by_ticket_id(session, ticket_id).status, "resolved")

    def test_rule_fires_once_per_status_episode(self):
        rule_id = self.create_time_rule(
            "Nudge pending",
            [
                {"field": "status", "operator": "equals", "value": "pending"},
                {"field": "days_in_status", "operator": "gte", "value": 3},
            ],
            [{"type": "notify", "target": "team-lead", "value": "Pending for 3 days"}],
        )
        ticket_id = self.create_ticket("pending", days_in_status=4)

        self.assertEqual(self.sweep(now=self.now).rules_executed, 1)
        later = self.sweep(now=self.now + timedelta(hours=2))
        self.assertEqual(later.rules_due, 1)
        self.assertEqual(later.rules_executed, 0)

        with session_scope() as session:
            mark = get_sweep_mark(session, rule_id, ticket_id)
            self.assertTrue(mark.episode_key.startswith("pending@"))

        self.set_status_age(ticket_id, 5)
        again = self.sweep(now=self.now + timedelta(hours=4))
        self.assertEqual(again.rules_executed, 1)
        with session_scope() as session:
            self.assertEqual(get_rule_by_rule_id(session, rule_id).execution_count, 2)

    def test_cadence_controls_which_rules_are_due(self):
        self.create_time_rule(
            "Daily tagger",
            [{"field": "status", "operator": "equals", "value": "open"}],
            [{"type": "add_tag", "value": "daily"}],
            trigger="daily",
        )
        self.create_ticket("open", days_in_status=1)

        self.assertEqual(self.sweep(now=self.now, cadence="hourly").rules_due, 0)
        self.assertEqual(self.sweep(now=self.now, cadence="daily").rules_due, 1)
        self.assertEqual(self.sweep(now=self.now + timedelta(hours=3)).rules_due, 0)
        self.assertEqual(self.sweep(now=self.now + timedelta(days=1)).rules_due, 1)

    def test_closed_tickets_are_not_scanned(self):
        self.create_time_rule(
            "Anything",
            [],
            [{"type": "add_tag", "value": "seen"}],
        )
        self.create_ticket("closed", days_in_status=30)
        result = self.sweep(now=self.now)
        self.assertEqual(result.tickets_scanned, 0)

    def test_overlapping_sweep_is_skipped(self):
        self.assertTrue(self.sweeper._lock.acquire(blocking=False))
        try:
            result = self.sweep(now=self.now)
        finally:
            self.sweeper._lock.release()
        self.assertFalse(result.swept)
        self.assertEqual(result.message, "sweep already running")

    def test_no_due_rules(self):
        result = self.sweep(now=self.now)
        self.assertTrue(result.swept)
        self.assertEqual(result.rules_due, 0)

    def test_small_batches_still_cover_every_ticket(self):
        self.create_time_rule(
            "Tag low priority",
            [{"field": "priority", "operator": "equals", "value": "low"}],
            [{"type": "add_tag", "value": "swept"}],
        )
        ticket_ids = []
        for priority in ("high", "medium", "low"):
            with session_scope() as session:
                ticket = self.ticket_service.create_ticket(
                    session, TicketCreateRequest(subject="Queued", priority=priority)
                )
                ticket_ids.append(ticket.ticket_id)

        result = self.sweep(now=self.now, limit=2)
        self.assertEqual(result.tickets_scanned, 3)
        self.assertEqual(result.rules_executed, 1)
        with session_scope() as session:
            self.assertEqual(get_ticket_by_ticket_id(session, ticket_ids[2]).tags, ["swept"])
            self.assertEqual(get_ticket_by_ticket_id(session, ticket_ids[0]).tags, [])

    def test_failed_firing_does_not_consume_the_episode(self):
        rule_id = self.create_time_rule(
            "Auto close",
            [{"field": "status", "operator": "equals", "value": "resolved"}],
            [{"type": "update_status", "value": "closed"}],
        )
        ticket_id = self.create_ticket("resolved", days_in_status=8)

        with mock.patch.object(ActionExecutor, "apply", side_effect=RuntimeError("executor crashed")):
            failed = self.sweep(now=self.now)
        self.assertEqual(failed.rules_executed, 0)
        with session_scope() as session:
            self.assertIsNone(get_sweep_mark(session, rule_id, ticket_id))
            self.assertEqual(get_ticket_by_ticket_id(session, ticket_id).status, "resolved")

        retried = self.sweep(now=self.now + timedelta(hours=2))
        self.assertEqual(retried.rules_executed, 1)
        with session_scope() as session:
            self.assertEqual(get_ticket_by_ticket_id(session, ticket_id).status, "closed")
            self.assertIsNotNone(get_sweep_mark(session, rule_id, ticket_id))


if __name__ == "__main__":
    unittest.main()
