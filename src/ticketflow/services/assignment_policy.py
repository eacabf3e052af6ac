"""Database-backed assignment resolution for ``assign`` actions."""

from __future__ import annotations

from sqlmodel import Session

from ticketflow.automation import TicketSnapshot
from ticketflow.repositories import (
    count_open_tickets_by_assignee,
    get_agent,
    get_group,
    list_active_group_agents,
)


class GroupAssignmentResolver:
    """Resolves a target that names either an agent or an agent group.

    Agent ids resolve to themselves when the agent is active. Group ids or
    names pick one active member: ``round_robin`` rotates after the group's
    last pick, ``load_balanced`` takes the member with the fewest open
    tickets (ties go to the lowest agent id).
    """

    def __init__(self, session: Session):
        self.session = session

    def resolve(self, target: str, ticket: TicketSnapshot) -> str | None:
        del ticket
        agent = get_agent(self.session, target)
        if agent is not None:
            return agent.agent_id if agent.is_active else None

        group = get_group(self.session, target)
        if group is None:
            return None
        member_ids = [member.agent_id for member in list_active_group_agents(self.session, group.group_id)]
        if not member_ids:
            return None

        if group.assignment_method == "load_balanced":
            chosen = self._least_loaded(member_ids)
        else:
            chosen = self._next_in_rotation(member_ids, group.last_assigned_agent_id)
        group.last_assigned_agent_id = chosen
        self.session.add(group)
        return chosen

    def _least_loaded(self, member_ids: list[str]) -> str:
        counts = count_open_tickets_by_assignee(self.session, member_ids)
        return min(member_ids, key=lambda agent_id: (counts.get(agent_id, 0), agent_id))

    @staticmethod
    def _next_in_rotation(member_ids: list[str], last_assigned: str | None) -> str:
        if last_assigned not in member_ids:
            return member_ids[0]
        return member_ids[(member_ids.index(last_assigned) + 1) % len(member_ids)]
