"""SQLAlchemy models for lifecycle persistence.

Every collection (processes, workflow instances, tasks, approval chains, dead
letters and so on) shares one table. A row holds the collection name and the
record's fields as a JSON document; the row id is the record id.
"""

from __future__ import annotations

from typing import Any

from advanced_alchemy.base import BigIntAuditBase
from sqlalchemy import JSON, Index, String
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column

__all__ = ["JSONType", "LifecycleRecordModel"]


# Cross-database JSON type: uses JSONB for PostgreSQL, JSON for others (SQLite, MySQL, etc.)
JSONType = JSON().with_variant(JSONB, "postgresql")


class LifecycleRecordModel(BigIntAuditBase):
    """A record in a named collection.

    Attributes:
        collection: Name of the collection the record belongs to.
        data: The record's fields, without ``id``.
    """

    __tablename__ = "lifecycle_records"
    __table_args__ = (Index("ix_lifecycle_records_collection", "collection"),)

    collection: Mapped[str] = mapped_column(String(100))
    data: Mapped[dict[str, Any]] = mapped_column(JSONType, default=dict)

    def to_record(self) -> dict[str, Any]:
        """The record as the store hands it out, with ``id`` included."""
        return {**(self.data or {}), "id": self.id}
