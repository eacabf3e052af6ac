"""Typed rule, condition, action and ticket models used by the automation engine.

Stored rules carry loosely-typed JSON payloads. They are parsed at the boundary
into closed enums; anything unrecognised lands on an ``UNKNOWN`` member that
evaluates false (conditions) or is skipped (actions).
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from ticketflow.time_utils import coerce_utc

from .errors import AutomationError


class RuleType(str, Enum):
    """Event kinds a rule can react to."""

    TICKET_CREATION = "ticket_creation"
    TICKET_UPDATE = "ticket_update"
    TIME_TRIGGER = "time_trigger"


class ConditionMatch(str, Enum):
    ALL = "all"
    ANY = "any"
    UNKNOWN = "unknown"

    @classmethod
    def _missing_(cls, value: object) -> "ConditionMatch":
        if isinstance(value, str):
            key = value.strip().lower()
            for member in cls:
                if member.value == key:
                    return member
        return cls.UNKNOWN


_OPERATOR_ALIASES = {
    "is": "equals",
    "eq": "equals",
    "is_not": "not_equals",
    "ne": "not_equals",
    "does_not_contain": "not_contains",
    "greater_than": "gt",
    "less_than": "lt",
    "greater_than_or_equal": "gte",
    "less_than_or_equal": "lte",
}


class ConditionOperator(str, Enum):
    EQUALS = "equals"
    NOT_EQUALS = "not_equals"
    CONTAINS = "contains"
    NOT_CONTAINS = "not_contains"
    STARTS_WITH = "starts_with"
    GTE = "gte"
    LTE = "lte"
    GT = "gt"
    LT = "lt"
    IS_SET = "is_set"
    IS_NOT_SET = "is_not_set"
    UNKNOWN = "unknown"

    @classmethod
    def _missing_(cls, value: object) -> "ConditionOperator":
        if isinstance(value, str):
            key = value.strip().lower()
            key = _OPERATOR_ALIASES.get(key, key)
            for member in cls:
                if member.value == key:
                    return member
        return cls.UNKNOWN


_ACTION_ALIASES = {
    "assign_to": "assign",
    "set_status": "update_status",
    "set_priority": "update_priority",
    "update_category": "set_category",
    "assign_group": "set_group",
    "send_email": "notify",
    "send_notification": "notify",
}


class ActionType(str, Enum):
    ASSIGN = "assign"
    UPDATE_STATUS = "update_status"
    UPDATE_PRIORITY = "update_priority"
    SET_CATEGORY = "set_category"
    SET_GROUP = "set_group"
    ADD_TAG = "add_tag"
    REMOVE_TAG = "remove_tag"
    NOTIFY = "notify"
    UNKNOWN = "unknown"

    @classmethod
    def _missing_(cls, value: object) -> "ActionType":
        if isinstance(value, str):
            key = value.strip().lower()
            key = _ACTION_ALIASES.get(key, key)
            for member in cls:
                if member.value == key:
                    return member
        return cls.UNKNOWN


# ticket_update sub-events.
STATUS_CHANGED = "status_changed"
PRIORITY_CHANGED = "priority_changed"
ASSIGNEE_CHANGED = "assignee_changed"
GROUP_CHANGED = "group_changed"
CATEGORY_CHANGED = "category_changed"
TAG_ADDED = "tag_added"
TAG_REMOVED = "tag_removed"
REPLY_ADDED = "reply_added"
NOTE_ADDED = "note_added"
ANY_UPDATE = "any_update"

_TRIGGER_ALIASES = {
    "assigned": ASSIGNEE_CHANGED,
    "replied": REPLY_ADDED,
    "reply": REPLY_ADDED,
    "note": NOTE_ADDED,
}

# Seconds between sweeps for each time_trigger cadence label.
CADENCE_SECONDS = {
    "hourly": 3600,
    "every_2_hours": 7200,
    "every_4_hours": 14400,
    "daily": 86400,
}


def _raw_text(value: Any) -> Optional[str]:
    if value is None:
        return None
    return str(getattr(value, "value", value))


def normalize_trigger(value: str | None) -> str:
    key = (value or "").strip().lower()
    return _TRIGGER_ALIASES.get(key, key)


class Condition(BaseModel):
    """One ``{field, operator, value}`` comparison."""

    model_config = ConfigDict(extra="ignore")

    field: str = ""
    operator: ConditionOperator = ConditionOperator.UNKNOWN
    value: Any = None
    raw_operator: Optional[str] = None

    @model_validator(mode="before")
    @classmethod
    def _keep_raw_operator(cls, data: Any) -> Any:
        if isinstance(data, Mapping):
            data = dict(data)
            data.setdefault("raw_operator", _raw_text(data.get("operator")))
        return data

    @field_validator("operator", mode="before")
    @classmethod
    def _parse_operator(cls, value: Any) -> ConditionOperator:
        return ConditionOperator(value)

    @field_validator("field", mode="before")
    @classmethod
    def _parse_field(cls, value: Any) -> str:
        return "" if value is None else str(value).strip()


class Action(BaseModel):
    """One ``{type, value|target}`` mutation."""

    model_config = ConfigDict(extra="ignore")

    type: ActionType = ActionType.UNKNOWN
    value: Any = None
    target: Optional[str] = None
    raw_type: Optional[str] = None

    @model_validator(mode="before")
    @classmethod
    def _keep_raw_type(cls, data: Any) -> Any:
        if isinstance(data, Mapping):
            data = dict(data)
            data.setdefault("raw_type", _raw_text(data.get("type")))
        return data

    @field_validator("type", mode="before")
    @classmethod
    def _parse_type(cls, value: Any) -> ActionType:
        return ActionType(value)

    @field_validator("target", mode="before")
    @classmethod
    def _parse_target(cls, value: Any) -> Optional[str]:
        if value is None:
            return None
        cleaned = str(value).strip()
        return cleaned or None

    @property
    def argument(self) -> Any:
        """Target when present, otherwise value."""
        if self.target is not None:
            return self.target
        return self.value


class RuleDefinition(BaseModel):
    """Engine-side view of a stored automation rule."""

    id: str
    name: str = ""
    description: Optional[str] = None
    rule_type: RuleType
    trigger: str = ""
    condition_match: ConditionMatch = ConditionMatch.ALL
    conditions: List[Condition] = Field(default_factory=list)
    actions: List[Action] = Field(default_factory=list)
    is_active: bool = True
    order: int = 0
    execution_count: int = 0
    last_executed_at: Optional[datetime] = None

    @field_validator("condition_match", mode="before")
    @classmethod
    def _parse_condition_match(cls, value: Any) -> ConditionMatch:
        if value is None:
            return ConditionMatch.ALL
        return ConditionMatch(value)

    @field_validator("conditions", mode="before")
    @classmethod
    def _coerce_conditions(cls, value: Any) -> list:
        if not value:
            return []
        return [
            item if isinstance(item, (Mapping, Condition)) else {"operator": "unknown", "value": item}
            for item in value
        ]

    @field_validator("actions", mode="before")
    @classmethod
    def _coerce_actions(cls, value: Any) -> list:
        if not value:
            return []
        return [
            item if isinstance(item, (Mapping, Action)) else {"type": "unknown", "value": item}
            for item in value
        ]

    @field_validator("trigger", mode="before")
    @classmethod
    def _parse_trigger(cls, value: Any) -> str:
        return normalize_trigger(None if value is None else str(value))

    @property
    def sort_key(self) -> tuple[int, str]:
        return (self.order, self.id)


class TicketSnapshot(BaseModel):
    """Read/write surface of a ticket as seen by the engine."""

    id: str
    subject: str = ""
    description: str = ""
    status: str = "open"
    priority: str = "medium"
    category: Optional[str] = None
    source: Optional[str] = None
    assignee_id: Optional[str] = None
    group_id: Optional[str] = None
    tags: List[str] = Field(default_factory=list)
    custom_fields: dict[str, Any] = Field(default_factory=dict)
    sla_deadline: Optional[datetime] = None
    first_response_at: Optional[datetime] = None
    resolved_at: Optional[datetime] = None
    status_changed_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @field_validator("tags", mode="before")
    @classmethod
    def _default_tags(cls, value: Any) -> Any:
        return [] if value is None else value

    @field_validator("custom_fields", mode="before")
    @classmethod
    def _default_custom_fields(cls, value: Any) -> Any:
        return {} if value is None else value

    @field_validator(
        "sla_deadline",
        "first_response_at",
        "resolved_at",
        "status_changed_at",
        "created_at",
        "updated_at",
    )
    @classmethod
    def _to_utc(cls, value: Optional[datetime]) -> Optional[datetime]:
        return coerce_utc(value)


@dataclass(frozen=True)
class AppliedAction:
    """One action that changed the ticket, enough to build an activity row."""

    action: str
    old_value: Optional[str]
    new_value: Optional[str]
    action_type: ActionType = ActionType.UNKNOWN


@dataclass(frozen=True)
class ActivityEntry:
    ticket_id: str
    action: str
    old_value: Optional[str]
    new_value: Optional[str]
    created_at: datetime
    user_id: Optional[str] = None


@dataclass
class DispatchResult:
    ticket: TicketSnapshot
    rules_executed: int = 0
    fired_rule_ids: list[str] = field(default_factory=list)
    errors: list[AutomationError] = field(default_factory=list)
