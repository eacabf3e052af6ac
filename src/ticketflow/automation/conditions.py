"""Condition evaluation against a ticket snapshot.

Everything here is pure: the only clock is the ``now`` argument, which feeds
the derived elapsed-time fields used by time triggers.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Iterable, Mapping
from datetime import datetime
from typing import Any, Callable

from ticketflow.time_utils import coerce_utc, hours_between, now_utc

from .errors import ConditionEvaluationError
from .types import Condition, ConditionMatch, ConditionOperator, TicketSnapshot

logger = logging.getLogger(__name__)

MISSING = object()

CLOSED_STATUSES = frozenset({"resolved", "closed"})

_FIELD_ALIASES = {
    "assignee": "assignee_id",
    "agent": "assignee_id",
    "group": "group_id",
    "channel": "source",
    "tag": "tags",
}
_CUSTOM_FIELD_ROOTS = {"custom_fields", "cf", "custom"}
_CAMEL_BOUNDARY = re.compile(r"(?<!^)(?=[A-Z])")


def _derived_hours_in_status(ticket: TicketSnapshot, now: datetime) -> float | None:
    return hours_between(ticket.status_changed_at or ticket.created_at, now)


def _derived_days_in_status(ticket: TicketSnapshot, now: datetime) -> float | None:
    hours = _derived_hours_in_status(ticket, now)
    return None if hours is None else hours / 24.0


def _derived_hours_since_created(ticket: TicketSnapshot, now: datetime) -> float | None:
    return hours_between(ticket.created_at, now)


def _derived_hours_since_updated(ticket: TicketSnapshot, now: datetime) -> float | None:
    return hours_between(ticket.updated_at, now)


def _derived_hours_until_sla(ticket: TicketSnapshot, now: datetime) -> float | None:
    return hours_between(now, ticket.sla_deadline)


def _derived_sla_breached(ticket: TicketSnapshot, now: datetime) -> bool:
    deadline = coerce_utc(ticket.sla_deadline)
    if deadline is None or ticket.status in CLOSED_STATUSES:
        return False
    return now > deadline


DERIVED_FIELDS: dict[str, Callable[[TicketSnapshot, datetime], Any]] = {
    "hours_in_status": _derived_hours_in_status,
    "days_in_status": _derived_days_in_status,
    "hours_since_created": _derived_hours_since_created,
    "hours_since_updated": _derived_hours_since_updated,
    "hours_until_sla": _derived_hours_until_sla,
    "sla_breached": _derived_sla_breached,
}


def normalize_field_name(name: str) -> str:
    """Map ``assigneeId`` / ``assignee`` / ``assignee_id`` onto one snapshot attribute."""
    snake = _CAMEL_BOUNDARY.sub("_", name.strip()).lower()
    return _FIELD_ALIASES.get(snake, snake)


def resolve_field(ticket: TicketSnapshot, name: str, now: datetime) -> Any:
    """Return the ticket's value for ``name``, or :data:`MISSING`.

    Raises :class:`ConditionEvaluationError` for names the ticket schema does
    not know at all.
    """
    head, _, rest = name.strip().partition(".")
    root = normalize_field_name(head)

    if root in _CUSTOM_FIELD_ROOTS:
        if not rest:
            return dict(ticket.custom_fields)
        current: Any = ticket.custom_fields
        for part in rest.split("."):
            if not isinstance(current, Mapping) or part not in current:
                return MISSING
            current = current[part]
        return current

    if rest:
        raise ConditionEvaluationError(f"unknown field '{name}'")
    if root in DERIVED_FIELDS:
        return DERIVED_FIELDS[root](ticket, now)
    if root in TicketSnapshot.model_fields:
        return getattr(ticket, root)
    raise ConditionEvaluationError(f"unknown field '{name}'")


def _has_value(value: Any) -> bool:
    if value is MISSING or value is None:
        return False
    if isinstance(value, str):
        return bool(value.strip())
    if isinstance(value, (list, tuple, set, dict)):
        return len(value) > 0
    return True


def _as_number(value: Any) -> float | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str):
        try:
            return float(value.strip())
        except ValueError:
            return None
    return None


def _as_datetime(value: Any) -> datetime | None:
    if isinstance(value, datetime):
        return coerce_utc(value)
    if isinstance(value, str):
        try:
            return coerce_utc(datetime.fromisoformat(value.strip().replace("Z", "+00:00")))
        except ValueError:
            return None
    return None


def _mismatch(condition: Condition, actual: Any) -> ConditionEvaluationError:
    return ConditionEvaluationError(
        f"operator '{condition.operator.value}' cannot compare field '{condition.field}' "
        f"({type(actual).__name__}) with {condition.value!r}"
    )


def _equals(actual: Any, condition: Condition) -> bool:
    expected = condition.value
    if isinstance(actual, bool):
        if isinstance(expected, bool):
            return actual is expected
        if isinstance(expected, str) and expected.strip().lower() in {"true", "false"}:
            return actual is (expected.strip().lower() == "true")
        raise _mismatch(condition, actual)
    if isinstance(actual, (int, float)):
        number = _as_number(expected)
        if number is None:
            raise _mismatch(condition, actual)
        return float(actual) == number
    if isinstance(actual, str):
        if expected is None or isinstance(expected, (list, dict)):
            raise _mismatch(condition, actual)
        return actual == str(expected)
    if isinstance(actual, datetime):
        moment = _as_datetime(expected)
        if moment is None:
            raise _mismatch(condition, actual)
        return coerce_utc(actual) == moment
    if isinstance(actual, (list, dict)) and isinstance(expected, type(actual)):
        return actual == expected
    raise _mismatch(condition, actual)


def _contains(actual: Any, condition: Condition) -> bool:
    expected = condition.value
    if expected is None or isinstance(expected, (list, dict)):
        raise _mismatch(condition, actual)
    needle = str(expected).lower()
    if isinstance(actual, str):
        return needle in actual.lower()
    if isinstance(actual, (list, tuple, set)):
        return any(str(item).lower() == needle for item in actual)
    if isinstance(actual, Mapping):
        return str(expected) in actual
    raise _mismatch(condition, actual)


def _starts_with(actual: Any, condition: Condition) -> bool:
    if not isinstance(actual, str) or condition.value is None:
        raise _mismatch(condition, actual)
    return actual.lower().startswith(str(condition.value).lower())


def _compare(actual: Any, condition: Condition, predicate: Callable[[Any, Any], bool]) -> bool:
    if isinstance(actual, datetime):
        left: Any = coerce_utc(actual)
        right: Any = _as_datetime(condition.value)
    else:
        left = _as_number(actual)
        right = _as_number(condition.value)
    if left is None or right is None:
        raise _mismatch(condition, actual)
    return predicate(left, right)


_COMPARATORS: dict[ConditionOperator, Callable[[Any, Condition], bool]] = {
    ConditionOperator.EQUALS: _equals,
    ConditionOperator.NOT_EQUALS: lambda actual, c: not _equals(actual, c),
    ConditionOperator.CONTAINS: _contains,
    ConditionOperator.NOT_CONTAINS: lambda actual, c: not _contains(actual, c),
    ConditionOperator.STARTS_WITH: _starts_with,
    ConditionOperator.GTE: lambda actual, c: _compare(actual, c, lambda a, b: a >= b),
    ConditionOperator.LTE: lambda actual, c: _compare(actual, c, lambda a, b: a <= b),
    ConditionOperator.GT: lambda actual, c: _compare(actual, c, lambda a, b: a > b),
    ConditionOperator.LT: lambda actual, c: _compare(actual, c, lambda a, b: a < b),
}


def evaluate_condition(
    ticket: TicketSnapshot,
    condition: Condition,
    *,
    now: datetime | None = None,
) -> bool:
    """Evaluate one condition, raising ``ConditionEvaluationError`` on bad input."""
    if condition.operator is ConditionOperator.UNKNOWN:
        raise ConditionEvaluationError(
            f"unknown operator '{condition.raw_operator}' on field '{condition.field}'"
        )
    if not condition.field:
        raise ConditionEvaluationError("condition has no field")

    actual = resolve_field(ticket, condition.field, coerce_utc(now) or now_utc())
    if condition.operator is ConditionOperator.IS_SET:
        return _has_value(actual)
    if condition.operator is ConditionOperator.IS_NOT_SET:
        return not _has_value(actual)
    if actual is MISSING or actual is None:
        return False
    return _COMPARATORS[condition.operator](actual, condition)


def evaluate(
    ticket: TicketSnapshot,
    conditions: Iterable[Condition | Mapping[str, Any]],
    combinator: ConditionMatch | str = ConditionMatch.ALL,
    *,
    now: datetime | None = None,
    errors: list | None = None,
) -> bool:
    """Combine ``conditions`` with ``all`` / ``any``.

    ``all`` is vacuously true and ``any`` vacuously false on an empty list.
    Every condition is evaluated, even after the outcome is known, so each bad
    condition is reported once through ``errors`` and the log.
    """
    match = ConditionMatch(combinator)
    if match is ConditionMatch.UNKNOWN:
        _report(errors, ConditionEvaluationError(f"unknown condition match '{combinator}'"))
        return False

    moment = coerce_utc(now) or now_utc()
    results: list[bool] = []
    for raw in conditions:
        condition = raw if isinstance(raw, Condition) else Condition.model_validate(raw)
        try:
            results.append(evaluate_condition(ticket, condition, now=moment))
        except ConditionEvaluationError as exc:
            _report(errors, exc)
            results.append(False)

    if match is ConditionMatch.ALL:
        return all(results)
    return any(results)


def _report(errors: list | None, exc: ConditionEvaluationError) -> None:
    logger.warning("condition evaluation failed: %s", exc)
    if errors is not None:
        errors.append(exc)
