"""Lookup references between records.

A foreign-key field arrives either as a bare id or, when the store expanded it,
together with the referenced record's title. Both shapes are represented by the
``Reference`` union so callers never branch on the raw value's type.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any, TypeAlias

__all__ = ["Reference", "Resolved", "Unresolved", "reference_from_record", "reference_id"]


@dataclass(frozen=True)
class Unresolved:
    """A reference known only by id."""

    id: int

    @property
    def label(self) -> str:
        """Display text for the referenced record."""
        return f"#{self.id}"


@dataclass(frozen=True)
class Resolved:
    """A reference whose target record has been loaded."""

    id: int
    title: str

    @property
    def label(self) -> str:
        """Display text for the referenced record."""
        return self.title


Reference: TypeAlias = Unresolved | Resolved


def reference_id(reference: Reference | None) -> int | None:
    """Extract the referenced id.

    Args:
        reference: The reference, or ``None`` when the field is empty.

    Returns:
        The referenced record id, or ``None``.
    """
    if reference is None:
        return None
    return reference.id


def reference_from_record(record: Mapping[str, Any], field: str) -> Reference | None:
    """Build a reference from a stored record.

    The id is read from ``field``. When the store expanded the lookup it also
    supplies the target title under ``field`` with ``_id`` replaced by
    ``_title`` (``depends_on_task_title`` for ``depends_on_task_id``), and a
    ``Resolved`` is built.

    Args:
        record: The stored record.
        field: Name of the id field.

    Returns:
        The reference, or ``None`` when the field is empty.
    """
    raw_id = record.get(field)
    if raw_id is None:
        return None
    title = record.get(f"{field.removesuffix('_id')}_title")
    if title:
        return Resolved(id=int(raw_id), title=str(title))
    return Unresolved(id=int(raw_id))
