"""Expression evaluation for step configuration and branching.

Step configuration may reference the process record, the start context and the
accumulated variables of an instance through dotted paths (``process.department``,
``variables.items[0].name``) or ``{{path}}`` templates. Conditions compare a
resolved path against a literal or a second path.

Everything in this module is pure and total: a path that does not resolve yields
the ``UNDEFINED`` sentinel, any condition that touches ``UNDEFINED`` is false,
and no function here raises on bad input.
"""

from __future__ import annotations

import json
import logging
import re
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from enum import StrEnum, auto
from typing import Any, Final

from litestar_lifecycle.core.clock import from_iso

__all__ = [
    "UNDEFINED",
    "Condition",
    "ConditionGroup",
    "ConditionOperator",
    "LogicalOperator",
    "evaluate_condition",
    "evaluate_group",
    "evaluate_groups",
    "render_template",
    "resolve_path",
    "resolve_value",
]

logger = logging.getLogger(__name__)

_PATH_TOKEN = re.compile(r"\[(\d+)\]|([^.\[\]]+)")
_TEMPLATE = re.compile(r"\{\{\s*([^{}]+?)\s*\}\}")


class _Undefined:
    """Marker for a reference that could not be resolved."""

    _instance: _Undefined | None = None

    def __new__(cls) -> _Undefined:
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __bool__(self) -> bool:
        return False

    def __repr__(self) -> str:
        return "UNDEFINED"


UNDEFINED: Final = _Undefined()
"""Result of resolving a path that does not exist."""


class ConditionOperator(StrEnum):
    """Comparison applied by a condition."""

    EQUALS = auto()
    NOT_EQUALS = auto()
    CONTAINS = auto()
    STARTS_WITH = auto()
    ENDS_WITH = auto()
    GREATER_THAN = auto()
    GREATER_OR_EQUAL = auto()
    LESS_THAN = auto()
    LESS_OR_EQUAL = auto()
    IS_EMPTY = auto()
    IS_NOT_EMPTY = auto()
    IN = auto()
    NOT_IN = auto()
    DATE_BEFORE = auto()
    DATE_AFTER = auto()
    DATE_EQUALS = auto()


class LogicalOperator(StrEnum):
    """How the conditions of a group combine."""

    AND = auto()
    OR = auto()


@dataclass(frozen=True)
class Condition:
    """A single comparison.

    Attributes:
        field: Path of the left-hand value.
        operator: The comparison to apply.
        value: Literal right-hand value; may itself be a ``{{path}}`` template.
        value_field: Path of the right-hand value; takes precedence over ``value``.

    Example:
        >>> cond = Condition(field="process.department", operator=ConditionOperator.EQUALS, value="IT")
        >>> evaluate_condition(cond, {"process": {"department": "it"}})
        True
    """

    field: str
    operator: ConditionOperator
    value: Any = None
    value_field: str | None = None

    @classmethod
    def from_dict(cls, raw: Mapping[str, Any]) -> Condition:
        """Build a condition from its serialized form."""
        return cls(
            field=str(raw["field"]),
            operator=ConditionOperator(raw.get("operator", ConditionOperator.EQUALS)),
            value=raw.get("value"),
            value_field=raw.get("value_field"),
        )


@dataclass(frozen=True)
class ConditionGroup:
    """Conditions joined by a single logical operator."""

    conditions: tuple[Condition, ...] = field(default_factory=tuple)
    logic: LogicalOperator = LogicalOperator.AND

    @classmethod
    def from_dict(cls, raw: Mapping[str, Any]) -> ConditionGroup:
        """Build a group from its serialized form."""
        return cls(
            conditions=tuple(Condition.from_dict(c) for c in raw.get("conditions", ())),
            logic=LogicalOperator(raw.get("logic", LogicalOperator.AND)),
        )


def _tokens(path: str) -> list[str | int]:
    tokens: list[str | int] = []
    for index, name in _PATH_TOKEN.findall(path):
        tokens.append(int(index) if index else name.strip())
    return tokens


def resolve_path(scope: Mapping[str, Any], path: str) -> Any:
    """Resolve a dotted path such as ``variables.items[0].name``.

    Args:
        scope: Root mapping to resolve against.
        path: Dotted path with optional ``[index]`` segments.

    Returns:
        The value found, or ``UNDEFINED``. A stored ``None`` is returned as ``None``.
    """
    tokens = _tokens(path or "")
    if not tokens:
        return UNDEFINED
    current: Any = scope
    for token in tokens:
        if isinstance(token, int):
            if isinstance(current, Sequence) and not isinstance(current, str) and -len(current) <= token < len(current):
                current = current[token]
            else:
                return UNDEFINED
        elif isinstance(current, Mapping) and token in current:
            current = current[token]
        else:
            return UNDEFINED
    return current


def render_template(template: str, scope: Mapping[str, Any]) -> str:
    """Substitute every ``{{path}}`` in ``template``; unresolved paths render empty."""

    def _substitute(match: re.Match[str]) -> str:
        value = resolve_path(scope, match.group(1))
        if value is UNDEFINED or value is None:
            return ""
        return str(value)

    return _TEMPLATE.sub(_substitute, template)


def resolve_value(raw: Any, scope: Mapping[str, Any]) -> Any:
    """Resolve a configuration value.

    A string consisting of exactly one ``{{path}}`` resolves to the referenced
    value itself (possibly ``UNDEFINED``); any other string containing templates
    is rendered; everything else is returned unchanged.
    """
    if not isinstance(raw, str):
        return raw
    whole = _TEMPLATE.fullmatch(raw.strip())
    if whole:
        return resolve_path(scope, whole.group(1))
    if _TEMPLATE.search(raw):
        return render_template(raw, scope)
    return raw


def _as_number(value: Any) -> float | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, int | float):
        return float(value)
    if isinstance(value, str):
        try:
            return float(value.strip())
        except ValueError:
            return None
    return None


def _as_datetime(value: Any) -> datetime | None:
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day, tzinfo=timezone.utc)
    if isinstance(value, str) and value.strip():
        return from_iso(value.strip())
    return None


def _equals(left: Any, right: Any) -> bool:
    if left is None or right is None:
        return left is right
    left_num, right_num = _as_number(left), _as_number(right)
    if left_num is not None and right_num is not None:
        return left_num == right_num
    if isinstance(left, str | bool) or isinstance(right, str | bool):
        return str(left).casefold() == str(right).casefold()
    return bool(left == right)


def _compare(left: Any, right: Any) -> int | None:
    left_num, right_num = _as_number(left), _as_number(right)
    if left_num is not None and right_num is not None:
        return (left_num > right_num) - (left_num < right_num)
    left_dt, right_dt = _as_datetime(left), _as_datetime(right)
    if left_dt is not None and right_dt is not None:
        return (left_dt > right_dt) - (left_dt < right_dt)
    return None


def _contains(left: Any, right: Any) -> bool:
    if isinstance(left, str):
        return str(right).casefold() in left.casefold()
    if isinstance(left, Mapping):
        return right in left
    if isinstance(left, Sequence | set | frozenset):
        return any(_equals(item, right) for item in left)
    return False


def _is_empty(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, str):
        return not value.strip()
    if isinstance(value, Sequence | Mapping | set | frozenset):
        return len(value) == 0
    return False


def _options(value: Any) -> list[Any]:
    if isinstance(value, list | tuple | set | frozenset):
        return list(value)
    if isinstance(value, str):
        text = value.strip()
        if text.startswith("["):
            try:
                parsed = json.loads(text)
            except ValueError:
                parsed = None
            if isinstance(parsed, list):
                return parsed
        return [part.strip() for part in text.split(",") if part.strip()]
    return [value]


def _date_compare(left: Any, right: Any) -> tuple[datetime, datetime] | None:
    left_dt, right_dt = _as_datetime(left), _as_datetime(right)
    if left_dt is None or right_dt is None:
        return None
    return left_dt, right_dt


def _apply(operator: ConditionOperator, left: Any, right: Any) -> bool:
    if operator is ConditionOperator.EQUALS:
        return _equals(left, right)
    if operator is ConditionOperator.NOT_EQUALS:
        return not _equals(left, right)
    if operator is ConditionOperator.CONTAINS:
        return _contains(left, right)
    if operator is ConditionOperator.STARTS_WITH:
        return isinstance(left, str) and left.casefold().startswith(str(right).casefold())
    if operator is ConditionOperator.ENDS_WITH:
        return isinstance(left, str) and left.casefold().endswith(str(right).casefold())
    if operator is ConditionOperator.IS_EMPTY:
        return _is_empty(left)
    if operator is ConditionOperator.IS_NOT_EMPTY:
        return not _is_empty(left)
    if operator is ConditionOperator.IN:
        return any(_equals(left, option) for option in _options(right))
    if operator is ConditionOperator.NOT_IN:
        return not any(_equals(left, option) for option in _options(right))
    if operator in {
        ConditionOperator.GREATER_THAN,
        ConditionOperator.GREATER_OR_EQUAL,
        ConditionOperator.LESS_THAN,
        ConditionOperator.LESS_OR_EQUAL,
    }:
        order = _compare(left, right)
        if order is None:
            return False
        return {
            ConditionOperator.GREATER_THAN: order > 0,
            ConditionOperator.GREATER_OR_EQUAL: order >= 0,
            ConditionOperator.LESS_THAN: order < 0,
            ConditionOperator.LESS_OR_EQUAL: order <= 0,
        }[operator]
    pair = _date_compare(left, right)
    if pair is None:
        return False
    left_dt, right_dt = pair
    if operator is ConditionOperator.DATE_BEFORE:
        return left_dt < right_dt
    if operator is ConditionOperator.DATE_AFTER:
        return left_dt > right_dt
    return left_dt.date() == right_dt.date()


_UNARY = frozenset({ConditionOperator.IS_EMPTY, ConditionOperator.IS_NOT_EMPTY})


def evaluate_condition(condition: Condition, scope: Mapping[str, Any]) -> bool:
    """Evaluate one condition against ``scope``.

    Args:
        condition: The condition to evaluate.
        scope: Mapping the condition paths resolve against.

    Returns:
        The comparison result; ``False`` whenever either side is undefined or
        the comparison cannot be made.
    """
    try:
        left = resolve_path(scope, condition.field)
        if left is UNDEFINED:
            return False
        if condition.operator in _UNARY:
            return _apply(condition.operator, left, None)
        if condition.value_field:
            right = resolve_path(scope, condition.value_field)
        else:
            right = resolve_value(condition.value, scope)
        if right is UNDEFINED:
            return False
        return _apply(condition.operator, left, right)
    except Exception:  # noqa: BLE001
        logger.debug("Condition on '%s' could not be evaluated", condition.field, exc_info=True)
        return False


def evaluate_group(group: ConditionGroup, scope: Mapping[str, Any]) -> bool:
    """Evaluate a group; an empty group is true."""
    results = (evaluate_condition(condition, scope) for condition in group.conditions)
    if group.logic is LogicalOperator.OR:
        return not group.conditions or any(results)
    return all(results)


def evaluate_groups(groups: Sequence[ConditionGroup], scope: Mapping[str, Any]) -> bool:
    """Evaluate a list of groups joined by AND; an empty list is true."""
    return all(evaluate_group(group, scope) for group in groups)
