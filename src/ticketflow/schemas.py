"""API schemas for ticketflow."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Literal, Optional

from pydantic import BaseModel, Field, field_validator

from ticketflow.automation.types import ActionType, ConditionOperator, RuleType


class TicketCreateRequest(BaseModel):
    subject: str = Field(..., min_length=1)
    description: str = ""
    status: Optional[str] = None
    priority: Optional[str] = None
    category: Optional[str] = None
    source: Optional[str] = None
    assignee_id: Optional[str] = None
    group_id: Optional[str] = None
    tags: list[str] = Field(default_factory=list)
    custom_fields: dict[str, Any] = Field(default_factory=dict)
    sla_deadline: Optional[datetime] = None


class TicketUpdateRequest(BaseModel):
    """Partial update; only fields present in the payload are applied."""

    subject: Optional[str] = Field(default=None, min_length=1)
    description: Optional[str] = None
    status: Optional[str] = Field(default=None, min_length=1)
    priority: Optional[str] = Field(default=None, min_length=1)
    category: Optional[str] = None
    source: Optional[str] = None
    assignee_id: Optional[str] = None
    group_id: Optional[str] = None
    tags: Optional[list[str]] = None
    custom_fields: Optional[dict[str, Any]] = None
    sla_deadline: Optional[datetime] = None


class TicketReplyRequest(BaseModel):
    body: str = Field(..., min_length=1)
    author_id: Optional[str] = None
    is_internal: bool = False


class TicketActivitySummary(BaseModel):
    id: int
    ticket_id: str
    user_id: Optional[str]
    action: str
    old_value: Optional[str]
    new_value: Optional[str]
    created_at: datetime


class TicketReplySummary(BaseModel):
    id: int
    ticket_id: str
    author_id: Optional[str]
    body: str
    is_internal: bool
    created_at: datetime


class TicketSummary(BaseModel):
    id: int
    ticket_id: str
    subject: str
    description: str
    status: str
    priority: str
    category: Optional[str]
    source: Optional[str]
    assignee_id: Optional[str]
    group_id: Optional[str]
    tags: list[str]
    custom_fields: dict[str, Any]
    sla_deadline: Optional[datetime]
    first_response_at: Optional[datetime]
    resolved_at: Optional[datetime]
    status_changed_at: Optional[datetime]
    created_at: datetime
    updated_at: datetime
    activities: list[TicketActivitySummary] = Field(default_factory=list)


class ConditionPayload(BaseModel):
    field: str = Field(..., min_length=1)
    operator: str = Field(..., min_length=1)
    value: Any = None

    @field_validator("operator")
    @classmethod
    def _known_operator(cls, value: str) -> str:
        operator = ConditionOperator(value)
        if operator is ConditionOperator.UNKNOWN:
            raise ValueError(f"unknown condition operator: {value}")
        return operator.value


class ActionPayload(BaseModel):
    type: str = Field(..., min_length=1)
    value: Any = None
    target: Optional[str] = None

    @field_validator("type")
    @classmethod
    def _known_type(cls, value: str) -> str:
        action_type = ActionType(value)
        if action_type is ActionType.UNKNOWN:
            raise ValueError(f"unknown action type: {value}")
        return action_type.value


class AutomationRuleCreateRequest(BaseModel):
    name: str = Field(..., min_length=1)
    description: Optional[str] = None
    rule_type: RuleType = RuleType.TICKET_CREATION
    trigger: str = ""
    condition_match: Literal["all", "any"] = "all"
    conditions: list[ConditionPayload] = Field(default_factory=list)
    actions: list[ActionPayload] = Field(default_factory=list)
    is_active: bool = True
    order: int = 0


class AutomationRuleUpdateRequest(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1)
    description: Optional[str] = None
    trigger: Optional[str] = None
    condition_match: Optional[Literal["all", "any"]] = None
    conditions: Optional[list[ConditionPayload]] = None
    actions: Optional[list[ActionPayload]] = None
    is_active: Optional[bool] = None
    order: Optional[int] = None


class AutomationRuleSummary(BaseModel):
    id: int
    rule_id: str
    name: str
    description: Optional[str]
    rule_type: str
    trigger: str
    condition_match: str
    conditions: list[dict[str, Any]]
    actions: list[dict[str, Any]]
    is_active: bool
    order: int
    execution_count: int
    last_executed_at: Optional[datetime]
    last_swept_at: Optional[datetime]
    created_at: datetime
    updated_at: datetime


class AgentCreateRequest(BaseModel):
    agent_id: str = Field(..., min_length=1)
    name: str = Field(..., min_length=1)
    email: Optional[str] = None


class AgentGroupCreateRequest(BaseModel):
    group_id: str = Field(..., min_length=1)
    name: str = Field(..., min_length=1)
    assignment_method: Literal["round_robin", "load_balanced"] = "round_robin"
    member_ids: list[str] = Field(default_factory=list)


class SweepResponse(BaseModel):
    swept: bool
    rules_due: int = 0
    tickets_scanned: int = 0
    tickets_changed: int = 0
    rules_executed: int = 0
    message: Optional[str] = None
