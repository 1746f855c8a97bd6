"""Repository implementations for lifecycle persistence.

This module provides the async repository for CRUD operations on lifecycle
records using advanced-alchemy's repository pattern.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from advanced_alchemy.repository import SQLAlchemyAsyncRepository
from sqlalchemy import func, select

from litestar_lifecycle.db.models import LifecycleRecordModel

if TYPE_CHECKING:
    from collections.abc import Sequence

__all__ = ["LifecycleRecordRepository"]


class LifecycleRecordRepository(SQLAlchemyAsyncRepository[LifecycleRecordModel]):
    """Repository for records grouped by collection."""

    model_type = LifecycleRecordModel

    async def get_in_collection(self, collection: str, record_id: int) -> LifecycleRecordModel | None:
        """Get a record by id, scoped to its collection.

        Args:
            collection: The collection name.
            record_id: The record id.

        Returns:
            The record or None if it does not exist in ``collection``.
        """
        stmt = select(LifecycleRecordModel).where(
            LifecycleRecordModel.collection == collection,
            LifecycleRecordModel.id == record_id,
        )
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def list_collection(self, collection: str) -> Sequence[LifecycleRecordModel]:
        """List every record of a collection in id order."""
        stmt = (
            select(LifecycleRecordModel)
            .where(LifecycleRecordModel.collection == collection)
            .order_by(LifecycleRecordModel.id)
        )
        result = await self.session.execute(stmt)
        return result.scalars().all()

    async def count_collection(self, collection: str) -> int:
        stmt = (
            select(func.count())
            .select_from(LifecycleRecordModel)
            .where(LifecycleRecordModel.collection == collection)
        )
        result = await self.session.execute(stmt)
        return result.scalar_one()
