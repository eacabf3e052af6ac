"""Repository helpers for ticketflow entities."""

from __future__ import annotations

from collections.abc import Iterable
from datetime import datetime
from typing import Optional

from sqlalchemy import func, or_
from sqlmodel import Session, select

from .models import (
    Agent,
    AgentGroup,
    AutomationRule,
    GroupMember,
    Ticket,
    TicketActivity,
    TicketReply,
    RuleSweepMark,
)
from .time_utils import now_utc


def get_ticket_by_ticket_id(session: Session, ticket_id: str) -> Optional[Ticket]:
    statement = select(Ticket).where(Ticket.ticket_id == ticket_id)
    return session.exec(statement).first()


def list_tickets(session: Session, limit: int = 100) -> list[Ticket]:
    statement = select(Ticket).order_by(Ticket.created_at.desc(), Ticket.id.desc()).limit(limit)
    return list(session.exec(statement).all())


def list_tickets_for_sweep(
    session: Session,
    *,
    skip_statuses: Iterable[str] = (),
    after_id: int | None = None,
    limit: int = 500,
) -> list[Ticket]:
    statement = select(Ticket)
    if after_id is not None:
        statement = statement.where(Ticket.id > after_id)
    skipped = list(skip_statuses)
    if skipped:
        statement = statement.where(Ticket.status.not_in(skipped))
    statement = statement.order_by(Ticket.id.asc()).limit(max(1, limit))
    return list(session.exec(statement).all())


def add_ticket_activity(
    session: Session,
    *,
    ticket_id: str,
    action: str,
    old_value: str | None = None,
    new_value: str | None = None,
    user_id: str | None = None,
    created_at: datetime | None = None,
) -> TicketActivity:
    row = TicketActivity(
        ticket_id=ticket_id,
        user_id=user_id,
        action=action,
        old_value=old_value,
        new_value=new_value,
        created_at=created_at or now_utc(),
    )
    session.add(row)
    return row


def list_ticket_activities(session: Session, ticket_id: str, limit: int = 200) -> list[TicketActivity]:
    statement = (
        select(TicketActivity)
        .where(TicketActivity.ticket_id == ticket_id)
        .order_by(TicketActivity.created_at.asc(), TicketActivity.id.asc())
        .limit(limit)
    )
    return list(session.exec(statement).all())


def add_ticket_reply(
    session: Session,
    *,
    ticket_id: str,
    body: str,
    author_id: str | None = None,
    is_internal: bool = False,
) -> TicketReply:
    row = TicketReply(
        ticket_id=ticket_id,
        body=body,
        author_id=author_id,
        is_internal=is_internal,
    )
    session.add(row)
    return row


def list_ticket_replies(session: Session, ticket_id: str) -> list[TicketReply]:
    statement = (
        select(TicketReply)
        .where(TicketReply.ticket_id == ticket_id)
        .order_by(TicketReply.created_at.asc(), TicketReply.id.asc())
    )
    return list(session.exec(statement).all())


def get_rule_by_rule_id(session: Session, rule_id: str) -> Optional[AutomationRule]:
    statement = select(AutomationRule).where(AutomationRule.rule_id == rule_id)
    return session.exec(statement).first()


def get_rule_by_name(session: Session, name: str) -> Optional[AutomationRule]:
    statement = select(AutomationRule).where(AutomationRule.name == name)
    return session.exec(statement).first()


def list_rules(session: Session, limit: int = 200) -> list[AutomationRule]:
    statement = (
        select(AutomationRule)
        .order_by(AutomationRule.rule_type.asc(), AutomationRule.order.asc(), AutomationRule.rule_id.asc())
        .limit(limit)
    )
    return list(session.exec(statement).all())


def list_active_rules(session: Session, rule_type: str) -> list[AutomationRule]:
    statement = (
        select(AutomationRule)
        .where(AutomationRule.is_active.is_(True))
        .where(AutomationRule.rule_type == rule_type)
        .order_by(AutomationRule.order.asc(), AutomationRule.rule_id.asc())
    )
    return list(session.exec(statement).all())


def get_agent(session: Session, agent_id: str) -> Optional[Agent]:
    statement = select(Agent).where(Agent.agent_id == agent_id)
    return session.exec(statement).first()


def get_group(session: Session, key: str) -> Optional[AgentGroup]:
    """Look a group up by id or by name."""
    statement = select(AgentGroup).where(or_(AgentGroup.group_id == key, AgentGroup.name == key))
    return session.exec(statement).first()


def add_group_member(session: Session, *, group_id: str, agent_id: str) -> GroupMember:
    row = GroupMember(group_id=group_id, agent_id=agent_id)
    session.add(row)
    return row


def list_active_group_agents(session: Session, group_id: str) -> list[Agent]:
    statement = (
        select(Agent)
        .join(GroupMember, GroupMember.agent_id == Agent.agent_id)
        .where(GroupMember.group_id == group_id)
        .where(Agent.is_active.is_(True))
        .order_by(Agent.agent_id.asc())
    )
    return list(session.exec(statement).all())


def count_open_tickets_by_assignee(
    session: Session,
    agent_ids: list[str],
    *,
    closed_statuses: Iterable[str] = ("resolved", "closed"),
) -> dict[str, int]:
    if not agent_ids:
        return {}
    statement = (
        select(Ticket.assignee_id, func.count(Ticket.id))
        .where(Ticket.assignee_id.in_(agent_ids))
        .where(Ticket.status.not_in(list(closed_statuses)))
        .group_by(Ticket.assignee_id)
    )
    counts = {agent_id: 0 for agent_id in agent_ids}
    for assignee_id, total in session.exec(statement).all():
        counts[assignee_id] = int(total)
    return counts


def get_sweep_mark(session: Session, rule_id: str, ticket_id: str) -> Optional[RuleSweepMark]:
    statement = (
        select(RuleSweepMark)
        .where(RuleSweepMark.rule_id == rule_id)
        .where(RuleSweepMark.ticket_id == ticket_id)
    )
    return session.exec(statement).first()


def upsert_sweep_mark(
    session: Session,
    *,
    rule_id: str,
    ticket_id: str,
    episode_key: str,
    swept_at: datetime | None = None,
) -> RuleSweepMark:
    row = get_sweep_mark(session, rule_id, ticket_id)
    if row is None:
        row = RuleSweepMark(
            rule_id=rule_id,
            ticket_id=ticket_id,
            episode_key=episode_key,
            swept_at=swept_at or now_utc(),
        )
        session.add(row)
        return row

    row.episode_key = episode_key
    row.swept_at = swept_at or now_utc()
    session.add(row)
    return row
