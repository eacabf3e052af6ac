import unittest
from unittest import mock

from _test_support import reset_database
from ticketflow.automation import RuleType
from ticketflow.db import session_scope
from ticketflow.repositories import get_rule_by_rule_id, get_ticket_by_ticket_id, list_ticket_activities
from ticketflow.schemas import (
    AgentCreateRequest,
    AgentGroupCreateRequest,
    AutomationRuleCreateRequest,
    TicketCreateRequest,
    TicketReplyRequest,
    TicketUpdateRequest,
)
from ticketflow.services import AgentService, RuleService, TicketService


def rule_payload(name, rule_type, conditions=(), actions=(), trigger="", order=0):
    return AutomationRuleCreateRequest(
        name=name,
        rule_type=rule_type,
        trigger=trigger,
        conditions=list(conditions),
        actions=list(actions),
        order=order,
    )


class TicketServiceTests(unittest.TestCase):
    @classmethod
    def setUpClass(cls):
        cls.ticket_service = TicketService()
        cls.rule_service = RuleService()
        cls.agent_service = AgentService()

    def setUp(self):
        reset_database()

    def create_rule(self, *args, **kwargs):
        with session_scope() as session:
            return self.rule_service.create_rule(session, rule_payload(*args, **kwargs)).rule_id

    def test_create_ticket_applies_defaults_and_logs_creation(self):
        with session_scope() as session:
            ticket = self.ticket_service.create_ticket(
                session,
                TicketCreateRequest(subject="  Login broken ", tags=["web", "web", " "]),
            )
            ticket_id = ticket.ticket_id
        with session_scope() as session:
            persisted = get_ticket_by_ticket_id(session, ticket_id)
            self.assertTrue(ticket_id.startswith("tkt-"))
            self.assertEqual(persisted.subject, "Login broken")
            self.assertEqual(persisted.status, "open")
            self.assertEqual(persisted.priority, "medium")
            self.assertEqual(persisted.tags, ["web"])
            self.assertIsNotNone(persisted.status_changed_at)
            actions = [row.action for row in list_ticket_activities(session, ticket_id)]
            self.assertEqual(actions, ["created"])

    def test_urgent_ticket_is_routed_to_senior_pool(self):
        with session_scope() as session:
            for agent_id in ("agent-7", "agent-8"):
                self.agent_service.create_agent(session, AgentCreateRequest(agent_id=agent_id, name=agent_id))
            self.agent_service.create_group(
                session,
                AgentGroupCreateRequest(group_id="grp-senior", name="senior_agent_pool", member_ids=["agent-7", "agent-8"]),
            )
        rule_id = self.create_rule(
            "Route urgent",
            RuleType.TICKET_CREATION,
            conditions=[{"field": "priority", "operator": "equals", "value": "urgent"}],
            actions=[{"type": "assign", "target": "senior_agent_pool"}],
        )

        with session_scope() as session:
            ticket = self.ticket_service.create_ticket(session, TicketCreateRequest(subject="Outage", priority="urgent"))
            ticket_id = ticket.ticket_id

        with session_scope() as session:
            persisted = get_ticket_by_ticket_id(session, ticket_id)
            self.assertEqual(persisted.assignee_id, "agent-7")
            activities = list_ticket_activities(session, ticket_id)
            self.assertEqual([row.action for row in activities], ["created", "assigned", "automation_executed"])
            self.assertEqual(activities[1].new_value, "agent-7")
            self.assertEqual(activities[2].new_value, "Route urgent")
            self.assertIsNone(activities[1].user_id)
            rule = get_rule_by_rule_id(session, rule_id)
            self.assertEqual(rule.execution_count, 1)
            self.assertIsNotNone(rule.last_executed_at)

    def test_unknown_field_rule_does_not_break_creation(self):
        self.create_rule(
            "Broken",
            RuleType.TICKET_CREATION,
            conditions=[{"field": "foo", "operator": "equals", "value": "bar"}],
            actions=[{"type": "add_tag", "value": "broken"}],
            order=1,
        )
        good_id = self.create_rule(
            "Good",
            RuleType.TICKET_CREATION,
            actions=[{"type": "add_tag", "value": "triaged"}],
            order=2,
        )
        with session_scope() as session:
            ticket_id = self.ticket_service.create_ticket(session, TicketCreateRequest(subject="Hello")).ticket_id
        with session_scope() as session:
            self.assertEqual(get_ticket_by_ticket_id(session, ticket_id).tags, ["triaged"])
            self.assertEqual(get_rule_by_rule_id(session, good_id).execution_count, 1)

    def test_status_update_records_activity_and_fires_update_rules(self):
        self.create_rule(
            "Survey on resolve",
            RuleType.TICKET_UPDATE,
            trigger="status_changed",
            conditions=[{"field": "status", "operator": "equals", "value": "resolved"}],
            actions=[{"type": "add_tag", "value": "needs-survey"}],
        )
        with session_scope() as session:
            ticket_id = self.ticket_service.create_ticket(session, TicketCreateRequest(subject="Slow VPN")).ticket_id
        with session_scope() as session:
            self.ticket_service.update_ticket(
                session,
                ticket_id,
                TicketUpdateRequest(status="resolved", priority="low"),
                actor_id="agent-1",
            )
        with session_scope() as session:
            persisted = get_ticket_by_ticket_id(session, ticket_id)
            self.assertEqual(persisted.status, "resolved")
            self.assertEqual(persisted.tags, ["needs-survey"])
            self.assertIsNotNone(persisted.resolved_at)
            activities = list_ticket_activities(session, ticket_id)
            self.assertEqual(
                [row.action for row in activities],
                ["created", "status_changed", "priority_changed", "tag_added", "automation_executed"],
            )
            self.assertEqual(activities[1].user_id, "agent-1")
            self.assertEqual((activities[1].old_value, activities[1].new_value), ("open", "resolved"))

    def test_plain_update_only_fires_catch_all_rules(self):
        self.create_rule(
            "Status only",
            RuleType.TICKET_UPDATE,
            trigger="status_changed",
            actions=[{"type": "add_tag", "value": "status"}],
        )
        self.create_rule("Any update", RuleType.TICKET_UPDATE, actions=[{"type": "add_tag", "value": "touched"}])
        with session_scope() as session:
            ticket_id = self.ticket_service.create_ticket(session, TicketCreateRequest(subject="Typo")).ticket_id
        with session_scope() as session:
            self.ticket_service.update_ticket(session, ticket_id, TicketUpdateRequest(subject="Typo fixed"))
        with session_scope() as session:
            persisted = get_ticket_by_ticket_id(session, ticket_id)
            self.assertEqual(persisted.subject, "Typo fixed")
            self.assertEqual(persisted.tags, ["touched"])

    def test_update_missing_ticket_raises(self):
        with session_scope() as session:
            with self.assertRaises(ValueError):
                self.ticket_service.update_ticket(session, "tkt-missing", TicketUpdateRequest(status="closed"))

    def test_replies_and_notes_raise_their_own_events(self):
        self.create_rule(
            "Reopen on reply",
            RuleType.TICKET_UPDATE,
            trigger="replied",
            actions=[{"type": "add_tag", "value": "customer-replied"}],
        )
        self.create_rule(
            "Note marker",
            RuleType.TICKET_UPDATE,
            trigger="note_added",
            actions=[{"type": "add_tag", "value": "has-notes"}],
        )
        with session_scope() as session:
            ticket_id = self.ticket_service.create_ticket(session, TicketCreateRequest(subject="Billing")).ticket_id
        with session_scope() as session:
            self.ticket_service.add_reply(
                session,
                ticket_id,
                TicketReplyRequest(body="Checking internally", author_id="agent-1", is_internal=True),
            )
        with session_scope() as session:
            persisted = get_ticket_by_ticket_id(session, ticket_id)
            self.assertEqual(persisted.tags, ["has-notes"])
            self.assertIsNone(persisted.first_response_at)
        with session_scope() as session:
            self.ticket_service.add_reply(
                session,
                ticket_id,
                TicketReplyRequest(body="We are on it", author_id="agent-1"),
            )
        with session_scope() as session:
            persisted = get_ticket_by_ticket_id(session, ticket_id)
            self.assertEqual(persisted.tags, ["has-notes", "customer-replied"])
            self.assertIsNotNone(persisted.first_response_at)
            actions = [row.action for row in list_ticket_activities(session, ticket_id)]
            self.assertIn("note_added", actions)
            self.assertIn("replied", actions)

    def test_automation_failure_keeps_the_ticket(self):
        with mock.patch(
            "ticketflow.services.ticket_service.build_dispatcher",
            side_effect=RuntimeError("engine exploded"),
        ):
            with session_scope() as session:
                ticket_id = self.ticket_service.create_ticket(session, TicketCreateRequest(subject="Still here")).ticket_id
        with session_scope() as session:
            self.assertIsNotNone(get_ticket_by_ticket_id(session, ticket_id))
            actions = [row.action for row in list_ticket_activities(session, ticket_id)]
            self.assertEqual(actions, ["created"])

    def test_summaries_include_activities(self):
        with session_scope() as session:
            ticket_id = self.ticket_service.create_ticket(session, TicketCreateRequest(subject="Summary")).ticket_id
            summary = self.ticket_service.get_ticket_summary(session, ticket_id)
            self.assertEqual(summary.ticket_id, ticket_id)
            self.assertEqual([activity.action for activity in summary.activities], ["created"])
            self.assertIsNone(self.ticket_service.get_ticket_summary(session, "tkt-missing"))
            self.assertEqual(len(self.ticket_service.list_ticket_summaries(session)), 1)


if __name__ == "__main__":
    unittest.main()
