"""Record store filters and the in-memory store."""

from __future__ import annotations

from litestar_lifecycle.store.filters import FieldFilter, FilterOperator, apply_query
from litestar_lifecycle.store.memory import InMemoryRecordStore

__all__ = ["FieldFilter", "FilterOperator", "InMemoryRecordStore", "apply_query"]
