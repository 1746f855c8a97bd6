"""Core protocols for litestar-lifecycle.

This module defines the Protocol-based interfaces for the external collaborators
the lifecycle components consume: a record store and a notification service.
Using Protocol allows any implementation with the right shape to be plugged in.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

if TYPE_CHECKING:
    from collections.abc import Sequence

    from litestar_lifecycle.core.types import Record
    from litestar_lifecycle.notifications import Notification
    from litestar_lifecycle.store.filters import FieldFilter


__all__ = ["NotificationService", "RecordStore"]


@runtime_checkable
class RecordStore(Protocol):
    """Protocol for CRUD and filtered queries over named record collections.

    Records are flat mappings keyed by an integer ``id`` that the store assigns.
    Every write commits on its own; no transaction spans several calls.

    Implementations raise ``TransientStoreError`` for failures that may succeed
    on retry.

    Example:
        >>> task_id = await store.add_record("task_assignments", {"title": "Laptop", "status": "not_started"})
        >>> await store.update_record("task_assignments", task_id, {"status": "completed"})
        >>> done = await store.query_records("task_assignments", [eq("status", "completed")])
    """

    async def add_record(self, collection: str, fields: dict[str, Any]) -> int:
        """Insert a record and return its new id.

        Args:
            collection: Target collection name.
            fields: Field values; ``id`` is ignored if present.

        Returns:
            The id assigned to the record.
        """
        ...

    async def update_record(self, collection: str, record_id: int, fields: dict[str, Any]) -> None:
        """Merge ``fields`` into an existing record.

        Args:
            collection: Target collection name.
            record_id: Record to update.
            fields: Fields to overwrite; unspecified fields are kept.

        Raises:
            RecordNotFoundError: If the record does not exist.
        """
        ...

    async def get_record(
        self,
        collection: str,
        record_id: int,
        select: Sequence[str] | None = None,
    ) -> Record | None:
        """Fetch one record.

        Args:
            collection: Collection name.
            record_id: Record id.
            select: Optional projection; ``id`` is always included.

        Returns:
            The record, or ``None`` if it does not exist.
        """
        ...

    async def query_records(
        self,
        collection: str,
        filters: Sequence[FieldFilter] = (),
        select: Sequence[str] | None = None,
        order_by: str | None = None,
        top: int | None = None,
    ) -> list[Record]:
        """Return the records matching every filter.

        Args:
            collection: Collection name.
            filters: Conjunction of field comparisons.
            select: Optional projection; ``id`` is always included.
            order_by: Field to sort on; prefix with ``-`` for descending order.
            top: Maximum number of records to return.

        Returns:
            Matching records.
        """
        ...


@runtime_checkable
class NotificationService(Protocol):
    """Protocol for delivering notifications to users."""

    async def send_notification(self, notification: Notification) -> None:
        """Deliver a plain notification."""
        ...

    async def send_rich_message(self, context: dict[str, Any]) -> None:
        """Deliver an interactive message describing an approval or task."""
        ...
