"""SQLModel entities for ticketflow."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlalchemy import JSON, Column, Text, UniqueConstraint
from sqlmodel import Field, SQLModel

from .time_utils import now_utc


class Ticket(SQLModel, table=True):
    __tablename__ = "tickets"

    id: Optional[int] = Field(default=None, primary_key=True)
    ticket_id: str = Field(index=True, unique=True)
    subject: str
    description: str = Field(default="", sa_column=Column(Text))
    status: str = Field(default="open", index=True)
    priority: str = Field(default="medium", index=True)
    category: Optional[str] = Field(default=None, index=True)
    source: Optional[str] = Field(default="portal")
    assignee_id: Optional[str] = Field(default=None, index=True)
    group_id: Optional[str] = Field(default=None, index=True)
    tags: List[str] = Field(default_factory=list, sa_column=Column(JSON))
    custom_fields: Dict[str, Any] = Field(default_factory=dict, sa_column=Column(JSON))
    sla_deadline: Optional[datetime] = None
    first_response_at: Optional[datetime] = None
    resolved_at: Optional[datetime] = None
    status_changed_at: Optional[datetime] = Field(default=None, index=True)
    created_at: datetime = Field(default_factory=now_utc)
    updated_at: datetime = Field(default_factory=now_utc)


class TicketActivity(SQLModel, table=True):
    __tablename__ = "ticket_activities"

    id: Optional[int] = Field(default=None, primary_key=True)
    ticket_id: str = Field(index=True, foreign_key="tickets.ticket_id")
    user_id: Optional[str] = Field(default=None, index=True)
    action: str = Field(index=True)
    old_value: Optional[str] = Field(default=None, sa_column=Column(Text))
    new_value: Optional[str] = Field(default=None, sa_column=Column(Text))
    created_at: datetime = Field(default_factory=now_utc, index=True)


class TicketReply(SQLModel, table=True):
    __tablename__ = "ticket_replies"

    id: Optional[int] = Field(default=None, primary_key=True)
    ticket_id: str = Field(index=True, foreign_key="tickets.ticket_id")
    author_id: Optional[str] = Field(default=None, index=True)
    body: str = Field(sa_column=Column(Text))
    is_internal: bool = Field(default=False)
    created_at: datetime = Field(default_factory=now_utc)


class AutomationRule(SQLModel, table=True):
    __tablename__ = "automation_rules"

    id: Optional[int] = Field(default=None, primary_key=True)
    rule_id: str = Field(index=True, unique=True)
    name: str
    description: Optional[str] = Field(default=None, sa_column=Column(Text))
    rule_type: str = Field(default="ticket_creation", index=True)
    trigger: str = Field(default="")
    condition_match: str = Field(default="all")
    conditions: List[Dict[str, Any]] = Field(default_factory=list, sa_column=Column(JSON))
    actions: List[Dict[str, Any]] = Field(default_factory=list, sa_column=Column(JSON))
    is_active: bool = Field(default=True, index=True)
    order: int = Field(default=0, index=True)
    execution_count: int = Field(default=0)
    last_executed_at: Optional[datetime] = None
    last_swept_at: Optional[datetime] = None
    created_at: datetime = Field(default_factory=now_utc)
    updated_at: datetime = Field(default_factory=now_utc)


class Agent(SQLModel, table=True):
    __tablename__ = "agents"

    id: Optional[int] = Field(default=None, primary_key=True)
    agent_id: str = Field(index=True, unique=True)
    name: str
    email: Optional[str] = None
    is_active: bool = Field(default=True, index=True)
    created_at: datetime = Field(default_factory=now_utc)


class AgentGroup(SQLModel, table=True):
    __tablename__ = "agent_groups"

    id: Optional[int] = Field(default=None, primary_key=True)
    group_id: str = Field(index=True, unique=True)
    name: str = Field(index=True, unique=True)
    assignment_method: str = Field(default="round_robin")
    last_assigned_agent_id: Optional[str] = None
    created_at: datetime = Field(default_factory=now_utc)


class GroupMember(SQLModel, table=True):
    __tablename__ = "group_members"

    id: Optional[int] = Field(default=None, primary_key=True)
    group_id: str = Field(index=True, foreign_key="agent_groups.group_id")
    agent_id: str = Field(index=True, foreign_key="agents.agent_id")
    created_at: datetime = Field(default_factory=now_utc)


class RuleSweepMark(SQLModel, table=True):
    """De-dup token: the status episode a time rule last fired for on a ticket."""

    __tablename__ = "rule_sweep_marks"
    __table_args__ = (UniqueConstraint("rule_id", "ticket_id", name="uq_rule_sweep_marks_pair"),)

    id: Optional[int] = Field(default=None, primary_key=True)
    rule_id: str = Field(index=True)
    ticket_id: str = Field(index=True)
    episode_key: str
    swept_at: datetime = Field(default_factory=now_utc)
