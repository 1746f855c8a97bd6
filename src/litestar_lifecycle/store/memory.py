"""In-memory record store.

Used as the default store when no database is configured, and by the test suite.
"""

from __future__ import annotations

import copy
from collections import defaultdict
from typing import TYPE_CHECKING, Any

from litestar_lifecycle.exceptions import RecordNotFoundError
from litestar_lifecycle.store.filters import apply_query

if TYPE_CHECKING:
    from collections.abc import Sequence

    from litestar_lifecycle.core.types import Record
    from litestar_lifecycle.store.filters import FieldFilter

__all__ = ["InMemoryRecordStore"]


class InMemoryRecordStore:
    """Record store that keeps every collection in process memory.

    Ids are assigned per collection starting at 1. Records are copied on the way
    in and out, so callers never share mutable state with the store.

    Example:
        >>> store = InMemoryRecordStore()
        >>> process_id = await store.add_record("processes", {"status": "pending"})
        >>> await store.get_record("processes", process_id)
        {'status': 'pending', 'id': 1}
    """

    def __init__(self) -> None:
        """Initialize an empty store."""
        self._collections: dict[str, dict[int, Record]] = defaultdict(dict)
        self._next_ids: dict[str, int] = defaultdict(lambda: 1)

    async def add_record(self, collection: str, fields: dict[str, Any]) -> int:
        record_id = self._next_ids[collection]
        self._next_ids[collection] = record_id + 1
        record = copy.deepcopy({k: v for k, v in fields.items() if k != "id"})
        record["id"] = record_id
        self._collections[collection][record_id] = record
        return record_id

    async def update_record(self, collection: str, record_id: int, fields: dict[str, Any]) -> None:
        record = self._collections[collection].get(record_id)
        if record is None:
            raise RecordNotFoundError(collection, record_id)
        record.update(copy.deepcopy({k: v for k, v in fields.items() if k != "id"}))

    async def get_record(
        self,
        collection: str,
        record_id: int,
        select: Sequence[str] | None = None,
    ) -> Record | None:
        record = self._collections[collection].get(record_id)
        if record is None:
            return None
        return copy.deepcopy(apply_query([record], select=select)[0])

    async def query_records(
        self,
        collection: str,
        filters: Sequence[FieldFilter] = (),
        select: Sequence[str] | None = None,
        order_by: str | None = None,
        top: int | None = None,
    ) -> list[Record]:
        records = list(self._collections[collection].values())
        return copy.deepcopy(apply_query(records, filters, select, order_by or "id", top))

    async def count(self, collection: str) -> int:
        """Return the number of records in ``collection``."""
        return len(self._collections[collection])
