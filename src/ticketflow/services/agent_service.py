"""Agents and agent groups used by assignment actions."""

from __future__ import annotations

from sqlmodel import Session

from ticketflow.models import Agent, AgentGroup
from ticketflow.repositories import add_group_member, get_agent, get_group
from ticketflow.schemas import AgentCreateRequest, AgentGroupCreateRequest
from ticketflow.time_utils import now_utc


class AgentService:
    def create_agent(self, session: Session, payload: AgentCreateRequest) -> Agent:
        if get_agent(session, payload.agent_id) is not None:
            raise ValueError(f"agent already exists: {payload.agent_id}")
        agent = Agent(
            agent_id=payload.agent_id.strip(),
            name=payload.name,
            email=payload.email,
            is_active=True,
            created_at=now_utc(),
        )
        session.add(agent)
        session.flush()
        return agent

    def set_agent_active(self, session: Session, agent_id: str, active: bool) -> Agent:
        agent = get_agent(session, agent_id)
        if agent is None:
            raise ValueError(f"agent not found: {agent_id}")
        agent.is_active = active
        session.add(agent)
        return agent

    def create_group(self, session: Session, payload: AgentGroupCreateRequest) -> AgentGroup:
        if get_group(session, payload.group_id) is not None or get_group(session, payload.name) is not None:
            raise ValueError(f"group already exists: {payload.group_id}")
        for agent_id in payload.member_ids:
            if get_agent(session, agent_id) is None:
                raise ValueError(f"agent not found: {agent_id}")

        group = AgentGroup(
            group_id=payload.group_id.strip(),
            name=payload.name.strip(),
            assignment_method=payload.assignment_method,
            created_at=now_utc(),
        )
        session.add(group)
        session.flush()
        for agent_id in dict.fromkeys(payload.member_ids):
            add_group_member(session, group_id=group.group_id, agent_id=agent_id)
        session.flush()
        return group
