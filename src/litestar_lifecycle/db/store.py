"""SQLAlchemy-backed record store.

Requires the [db] extra:
    pip install litestar-lifecycle[db]
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING, Any

from advanced_alchemy.exceptions import RepositoryError
from sqlalchemy.exc import SQLAlchemyError

from litestar_lifecycle.db.models import LifecycleRecordModel
from litestar_lifecycle.db.repositories import LifecycleRecordRepository
from litestar_lifecycle.exceptions import RecordNotFoundError, TransientStoreError
from litestar_lifecycle.store.filters import apply_query

if TYPE_CHECKING:
    from collections.abc import AsyncIterator, Sequence

    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

    from litestar_lifecycle.core.types import Record
    from litestar_lifecycle.store.filters import FieldFilter

__all__ = ["SQLAlchemyRecordStore"]

logger = logging.getLogger(__name__)


class SQLAlchemyRecordStore:
    """Record store persisting every collection in the ``lifecycle_records`` table.

    Each call opens its own session and commits before returning, so no
    transaction spans several records. Database and repository failures are
    raised as ``TransientStoreError`` so callers can retry them.

    Example:
        >>> engine = create_async_engine("postgresql+asyncpg://localhost/hr")
        >>> store = SQLAlchemyRecordStore(async_sessionmaker(engine, expire_on_commit=False))
        >>> process_id = await store.add_record("processes", {"status": "pending"})
    """

    def __init__(self, session_maker: async_sessionmaker[AsyncSession]) -> None:
        """Initialize the store.

        Args:
            session_maker: Factory for the sessions each operation runs in.
        """
        self.session_maker = session_maker

    @asynccontextmanager
    async def _repository(self, operation: str) -> AsyncIterator[LifecycleRecordRepository]:
        try:
            async with self.session_maker() as session:
                yield LifecycleRecordRepository(session=session)
        except (SQLAlchemyError, RepositoryError) as exc:
            logger.warning("Record store %s failed: %s", operation, exc)
            raise TransientStoreError(operation, exc) from exc

    async def add_record(self, collection: str, fields: dict[str, Any]) -> int:
        model = LifecycleRecordModel(
            collection=collection,
            data={k: v for k, v in fields.items() if k != "id"},
        )
        async with self._repository("add_record") as repo:
            model = await repo.add(model, auto_commit=True)
            return model.id

    async def update_record(self, collection: str, record_id: int, fields: dict[str, Any]) -> None:
        async with self._repository("update_record") as repo:
            model = await repo.get_in_collection(collection, record_id)
            if model is None:
                raise RecordNotFoundError(collection, record_id)
            # Reassign so the JSON column is flagged as modified.
            model.data = {**(model.data or {}), **{k: v for k, v in fields.items() if k != "id"}}
            await repo.update(model, auto_commit=True)

    async def get_record(
        self,
        collection: str,
        record_id: int,
        select: Sequence[str] | None = None,
    ) -> Record | None:
        async with self._repository("get_record") as repo:
            model = await repo.get_in_collection(collection, record_id)
            if model is None:
                return None
            return apply_query([model.to_record()], select=select)[0]

    async def query_records(
        self,
        collection: str,
        filters: Sequence[FieldFilter] = (),
        select: Sequence[str] | None = None,
        order_by: str | None = None,
        top: int | None = None,
    ) -> list[Record]:
        async with self._repository("query_records") as repo:
            models = await repo.list_collection(collection)
            records = [model.to_record() for model in models]
        return apply_query(records, filters, select, order_by or "id", top)

    async def count(self, collection: str) -> int:
        """Return the number of records in ``collection``."""
        async with self._repository("count") as repo:
            return await repo.count_collection(collection)
