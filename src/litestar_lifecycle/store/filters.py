"""Filter expressions for record store queries.

A query filter is a conjunction of ``FieldFilter`` comparisons. The helpers at the
bottom of the module build the common ones::

    await store.query_records(
        Collection.TASK_ASSIGNMENTS,
        [eq("process_id", 7), is_in("status", ["completed", "skipped"])],
    )
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from enum import StrEnum, auto
from typing import Any

__all__ = [
    "FieldFilter",
    "FilterOperator",
    "apply_query",
    "eq",
    "ge",
    "gt",
    "is_in",
    "is_null",
    "le",
    "lt",
    "matches",
    "ne",
    "not_in",
    "not_null",
]


class FilterOperator(StrEnum):
    """Comparison supported by record store filters."""

    EQ = auto()
    NE = auto()
    LT = auto()
    LE = auto()
    GT = auto()
    GE = auto()
    IN = auto()
    NOT_IN = auto()
    IS_NULL = auto()
    NOT_NULL = auto()


@dataclass(frozen=True)
class FieldFilter:
    """Comparison of one record field against a value."""

    field: str
    operator: FilterOperator
    value: Any = None

    def matches(self, record: Mapping[str, Any]) -> bool:
        """Check whether ``record`` satisfies this comparison.

        Ordering comparisons against a missing or ``None`` field are false.
        """
        actual = record.get(self.field)
        op = self.operator
        if op is FilterOperator.EQ:
            return actual == self.value
        if op is FilterOperator.NE:
            return actual != self.value
        if op is FilterOperator.IN:
            return actual in self.value
        if op is FilterOperator.NOT_IN:
            return actual not in self.value
        if op is FilterOperator.IS_NULL:
            return actual is None
        if op is FilterOperator.NOT_NULL:
            return actual is not None
        if actual is None or self.value is None:
            return False
        try:
            if op is FilterOperator.LT:
                return actual < self.value
            if op is FilterOperator.LE:
                return actual <= self.value
            if op is FilterOperator.GT:
                return actual > self.value
            return actual >= self.value
        except TypeError:
            return False


def matches(record: Mapping[str, Any], filters: Sequence[FieldFilter]) -> bool:
    """Check whether ``record`` satisfies every filter."""
    return all(f.matches(record) for f in filters)


def eq(field: str, value: Any) -> FieldFilter:
    return FieldFilter(field, FilterOperator.EQ, value)


def ne(field: str, value: Any) -> FieldFilter:
    return FieldFilter(field, FilterOperator.NE, value)


def lt(field: str, value: Any) -> FieldFilter:
    return FieldFilter(field, FilterOperator.LT, value)


def le(field: str, value: Any) -> FieldFilter:
    return FieldFilter(field, FilterOperator.LE, value)


def gt(field: str, value: Any) -> FieldFilter:
    return FieldFilter(field, FilterOperator.GT, value)


def ge(field: str, value: Any) -> FieldFilter:
    return FieldFilter(field, FilterOperator.GE, value)


def is_in(field: str, values: Sequence[Any]) -> FieldFilter:
    return FieldFilter(field, FilterOperator.IN, tuple(values))


def not_in(field: str, values: Sequence[Any]) -> FieldFilter:
    return FieldFilter(field, FilterOperator.NOT_IN, tuple(values))


def is_null(field: str) -> FieldFilter:
    return FieldFilter(field, FilterOperator.IS_NULL)


def not_null(field: str) -> FieldFilter:
    return FieldFilter(field, FilterOperator.NOT_NULL)


def _project(record: Mapping[str, Any], select: Sequence[str] | None) -> dict[str, Any]:
    if not select:
        return dict(record)
    projected = {name: record.get(name) for name in select}
    projected["id"] = record.get("id")
    return projected


def apply_query(
    records: Sequence[Mapping[str, Any]],
    filters: Sequence[FieldFilter] = (),
    select: Sequence[str] | None = None,
    order_by: str | None = None,
    top: int | None = None,
) -> list[dict[str, Any]]:
    """Filter, sort, limit and project a sequence of records.

    Shared by the store implementations so that both interpret queries the same way.
    Records whose sort field is ``None`` sort last in ascending order.
    """
    selected = [record for record in records if matches(record, filters)]
    if order_by:
        descending = order_by.startswith("-")
        key = order_by.lstrip("-")
        present = [r for r in selected if r.get(key) is not None]
        missing = [r for r in selected if r.get(key) is None]
        present.sort(key=lambda r: r[key], reverse=descending)
        selected = present + missing
    if top is not None:
        selected = selected[:top]
    return [_project(record, select) for record in selected]
