import unittest

from sqlmodel import select

from _test_support import reset_database
from ticketflow.db import session_scope
from ticketflow.models import RuleSweepMark, Ticket
from ticketflow.repositories import (
    count_open_tickets_by_assignee,
    list_tickets,
    list_tickets_for_sweep,
    upsert_sweep_mark,
)
from ticketflow.schemas import TicketCreateRequest
from ticketflow.services import TicketService


class RepositoryTests(unittest.TestCase):
    @classmethod
    def setUpClass(cls):
        cls.ticket_service = TicketService()

    def setUp(self):
        reset_database()

    def test_list_tickets_respects_limit_and_order(self):
        with session_scope() as session:
            self.ticket_service.create_ticket(session, TicketCreateRequest(subject="first"))
            self.ticket_service.create_ticket(session, TicketCreateRequest(subject="second"))
            tickets = list_tickets(session, limit=1)
            self.assertEqual(len(tickets), 1)
            self.assertEqual(tickets[0].subject, "second")

    def test_list_tickets_for_sweep_skips_statuses(self):
        with session_scope() as session:
            for index, status in enumerate(["open", "closed", "pending", "closed"]):
                session.add(Ticket(ticket_id=f"tkt-{index}", subject="s", status=status))
        with session_scope() as session:
            rows = list_tickets_for_sweep(session, skip_statuses=["closed"])
            self.assertEqual([row.ticket_id for row in rows], ["tkt-0", "tkt-2"])
            self.assertEqual(len(list_tickets_for_sweep(session, limit=1)), 1)
            first = list_tickets_for_sweep(session, skip_statuses=["closed"], limit=1)[0]
            rest = list_tickets_for_sweep(session, skip_statuses=["closed"], after_id=first.id)
            self.assertEqual([row.ticket_id for row in rest], ["tkt-2"])

    def test_count_open_tickets_by_assignee(self):
        with session_scope() as session:
            session.add(Ticket(ticket_id="tkt-1", subject="s", assignee_id="a", status="open"))
            session.add(Ticket(ticket_id="tkt-2", subject="s", assignee_id="a", status="resolved"))
            session.add(Ticket(ticket_id="tkt-3", subject="s", assignee_id="b", status="pending"))
        with session_scope() as session:
            counts = count_open_tickets_by_assignee(session, ["a", "b", "c"])
            self.assertEqual(counts, {"a": 1, "b": 1, "c": 0})
            self.assertEqual(count_open_tickets_by_assignee(session, []), {})

    def test_upsert_sweep_mark_creates_then_updates_row(self):
        with session_scope() as session:
            upsert_sweep_mark(session, rule_id="rule-1", ticket_id="tkt-1", episode_key="open@1")
            session.flush()
            upsert_sweep_mark(session, rule_id="rule-1", ticket_id="tkt-1", episode_key="pending@2")
            rows = list(session.exec(select(RuleSweepMark)).all())
            self.assertEqual(len(rows), 1)
            self.assertEqual(rows[0].episode_key, "pending@2")


if __name__ == "__main__":
    unittest.main()
