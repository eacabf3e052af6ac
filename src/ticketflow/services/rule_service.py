"""Automation rule management."""

from __future__ import annotations

import logging
import uuid

from sqlmodel import Session, select

from ticketflow.automation.loader import RuleLoader
from ticketflow.automation.types import normalize_trigger
from ticketflow.models import AutomationRule, RuleSweepMark
from ticketflow.repositories import get_rule_by_name, get_rule_by_rule_id, list_rules
from ticketflow.schemas import (
    AutomationRuleCreateRequest,
    AutomationRuleSummary,
    AutomationRuleUpdateRequest,
)
from ticketflow.time_utils import coerce_utc, now_utc

logger = logging.getLogger(__name__)


class RuleService:
    def __init__(self, rule_loader: RuleLoader | None = None):
        self.rule_loader = rule_loader

    def create_rule(self, session: Session, payload: AutomationRuleCreateRequest) -> AutomationRule:
        now = now_utc()
        rule = AutomationRule(
            rule_id=f"rule-{uuid.uuid4().hex[:10]}",
            name=payload.name.strip(),
            description=payload.description,
            rule_type=payload.rule_type.value,
            trigger=normalize_trigger(payload.trigger),
            condition_match=payload.condition_match,
            conditions=[item.model_dump() for item in payload.conditions],
            actions=[item.model_dump(exclude_none=True) for item in payload.actions],
            is_active=payload.is_active,
            order=payload.order,
            created_at=now,
            updated_at=now,
        )
        session.add(rule)
        session.flush()
        return rule

    def list_rules(self, session: Session, limit: int = 200) -> list[AutomationRule]:
        return list_rules(session, limit=limit)

    def get_rule(self, session: Session, rule_id: str) -> AutomationRule | None:
        return get_rule_by_rule_id(session, rule_id)

    def update_rule(
        self,
        session: Session,
        rule_id: str,
        payload: AutomationRuleUpdateRequest,
    ) -> AutomationRule:
        rule = get_rule_by_rule_id(session, rule_id)
        if rule is None:
            raise ValueError(f"rule not found: {rule_id}")

        changes = payload.model_dump(exclude_unset=True)
        if changes.get("name") is not None:
            rule.name = changes["name"].strip()
        if "description" in changes:
            rule.description = changes["description"]
        if changes.get("trigger") is not None:
            rule.trigger = normalize_trigger(changes["trigger"])
        if changes.get("condition_match") is not None:
            rule.condition_match = changes["condition_match"]
        if payload.conditions is not None:
            rule.conditions = [item.model_dump() for item in payload.conditions]
        if payload.actions is not None:
            rule.actions = [item.model_dump(exclude_none=True) for item in payload.actions]
        if changes.get("is_active") is not None:
            rule.is_active = bool(changes["is_active"])
        if changes.get("order") is not None:
            rule.order = int(changes["order"])
        rule.updated_at = now_utc()
        session.add(rule)
        return rule

    def delete_rule(self, session: Session, rule_id: str) -> None:
        rule = get_rule_by_rule_id(session, rule_id)
        if rule is None:
            raise ValueError(f"rule not found: {rule_id}")
        marks = session.exec(select(RuleSweepMark).where(RuleSweepMark.rule_id == rule_id)).all()
        for mark in marks:
            session.delete(mark)
        session.delete(rule)

    def import_rules(self, session: Session) -> list[AutomationRule]:
        """Create the loader's rules, skipping names that already exist."""
        if self.rule_loader is None:
            return []
        created: list[AutomationRule] = []
        for payload in self.rule_loader.load_all():
            if get_rule_by_name(session, payload.name.strip()) is not None:
                continue
            created.append(self.create_rule(session, payload))
        if created:
            logger.info("imported %d automation rule(s) from %s", len(created), self.rule_loader.rules_dir)
        return created

    @staticmethod
    def serialize_rule(rule: AutomationRule) -> AutomationRuleSummary:
        return AutomationRuleSummary(
            id=rule.id,
            rule_id=rule.rule_id,
            name=rule.name,
            description=rule.description,
            rule_type=rule.rule_type,
            trigger=rule.trigger or "",
            condition_match=rule.condition_match,
            conditions=list(rule.conditions or []),
            actions=list(rule.actions or []),
            is_active=bool(rule.is_active),
            order=int(rule.order or 0),
            execution_count=int(rule.execution_count or 0),
            last_executed_at=coerce_utc(rule.last_executed_at),
            last_swept_at=coerce_utc(rule.last_swept_at),
            created_at=coerce_utc(rule.created_at),
            updated_at=coerce_utc(rule.updated_at),
        )
