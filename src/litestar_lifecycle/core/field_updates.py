"""Field-update descriptors for generic record mutations.

Action steps describe the record they create or update as a list of
``{"field_name": ..., "value" | "value_field" | "expression": ...}`` entries.
Each entry is parsed once into a ``FieldUpdate`` whose ``source`` is one of three
variants, and ``build_field_values`` interprets them against an expression scope.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from typing import Any, TypeAlias

from litestar_lifecycle.core.expressions import UNDEFINED, render_template, resolve_path
from litestar_lifecycle.exceptions import ValidationError

__all__ = [
    "FieldReference",
    "FieldUpdate",
    "LiteralValue",
    "TemplateExpression",
    "UpdateSource",
    "build_field_values",
    "parse_field_update",
    "parse_field_updates",
]


@dataclass(frozen=True)
class LiteralValue:
    """A fixed value."""

    value: Any

    def resolve(self, scope: Mapping[str, Any]) -> Any:
        return self.value


@dataclass(frozen=True)
class FieldReference:
    """The value found at a path in the scope."""

    path: str

    def resolve(self, scope: Mapping[str, Any]) -> Any:
        return resolve_path(scope, self.path)


@dataclass(frozen=True)
class TemplateExpression:
    """A string with ``{{path}}`` placeholders."""

    template: str

    def resolve(self, scope: Mapping[str, Any]) -> Any:
        return render_template(self.template, scope)


UpdateSource: TypeAlias = LiteralValue | FieldReference | TemplateExpression


@dataclass(frozen=True)
class FieldUpdate:
    """Assignment of one record field."""

    field_name: str
    source: UpdateSource


def parse_field_update(raw: Mapping[str, Any]) -> FieldUpdate:
    """Parse one serialized descriptor.

    Args:
        raw: Mapping with ``field_name`` and exactly one of ``value``,
            ``value_field`` or ``expression``.

    Returns:
        The parsed descriptor.

    Raises:
        ValidationError: If the field name is missing or the source is not exactly one kind.
    """
    field_name = raw.get("field_name")
    if not field_name:
        msg = "Field update is missing 'field_name'"
        raise ValidationError(msg)
    kinds = [key for key in ("value", "value_field", "expression") if key in raw]
    if len(kinds) != 1:
        msg = f"Field update for '{field_name}' must set exactly one of value, value_field or expression"
        raise ValidationError(msg)
    kind = kinds[0]
    if kind == "value":
        source: UpdateSource = LiteralValue(raw["value"])
    elif kind == "value_field":
        source = FieldReference(str(raw["value_field"]))
    else:
        source = TemplateExpression(str(raw["expression"]))
    return FieldUpdate(field_name=str(field_name), source=source)


def parse_field_updates(raw: Iterable[Mapping[str, Any]]) -> list[FieldUpdate]:
    """Parse a list of serialized descriptors."""
    return [parse_field_update(item) for item in raw]


def build_field_values(updates: Iterable[FieldUpdate], scope: Mapping[str, Any]) -> dict[str, Any]:
    """Evaluate descriptors into a field mapping.

    References that do not resolve are left out of the result rather than written
    as a placeholder.

    Args:
        updates: Parsed descriptors.
        scope: Expression scope for references and templates.

    Returns:
        Field name to value mapping ready for ``add_record``/``update_record``.
    """
    values: dict[str, Any] = {}
    for update in updates:
        value = update.source.resolve(scope)
        if value is UNDEFINED:
            continue
        values[update.field_name] = value
    return values
