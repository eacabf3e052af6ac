"""YAML rule-file loader."""

from __future__ import annotations

from pathlib import Path
from typing import Any, Dict, List

import yaml

from ticketflow.schemas import AutomationRuleCreateRequest


class RuleValidationError(ValueError):
    """Raised when a rule definition is invalid."""


class RuleValidator:
    """Validates and normalizes rule payloads."""

    def validate(self, payload: Dict[str, Any]) -> AutomationRuleCreateRequest:
        try:
            return AutomationRuleCreateRequest.model_validate(payload)
        except Exception as exc:  # noqa: BLE001
            raise RuleValidationError(str(exc)) from exc


class RuleLoader:
    """Loads and validates YAML rule files from a directory.

    A file holds either a list of rules or a mapping with a ``rules`` list.
    """

    def __init__(self, rules_dir: str | Path):
        self.rules_dir = Path(rules_dir).expanduser().resolve()
        self.validator = RuleValidator()

    def load(self, name: str) -> List[AutomationRuleCreateRequest]:
        file_path = self.rules_dir / f"{name}.yaml"
        if not file_path.exists():
            raise FileNotFoundError(f"Rule file not found for '{name}' at {file_path}")
        return self._load_file(file_path)

    def load_all(self) -> List[AutomationRuleCreateRequest]:
        if not self.rules_dir.is_dir():
            return []
        rules: List[AutomationRuleCreateRequest] = []
        for file_path in sorted(self.rules_dir.glob("*.yaml")):
            rules.extend(self._load_file(file_path))
        return rules

    def _load_file(self, file_path: Path) -> List[AutomationRuleCreateRequest]:
        with file_path.open("r", encoding="utf-8") as handle:
            payload = yaml.safe_load(handle) or []

        if isinstance(payload, dict):
            if "rules" not in payload:
                raise RuleValidationError(f"{file_path.name}: expected a 'rules' list")
            payload = payload.get("rules") or []
        if not isinstance(payload, list):
            raise RuleValidationError(f"{file_path.name}: expected a list of rules")
        return [self.validator.validate(item) for item in payload]
