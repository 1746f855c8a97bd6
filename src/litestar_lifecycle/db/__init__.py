"""Database persistence layer for litestar-lifecycle.

This module provides the SQLAlchemy model, repository and record store for
persisting every lifecycle collection.

Requires the [db] extra:
    pip install litestar-lifecycle[db]
"""

from __future__ import annotations

from litestar_lifecycle.db.models import LifecycleRecordModel
from litestar_lifecycle.db.repositories import LifecycleRecordRepository
from litestar_lifecycle.db.store import SQLAlchemyRecordStore

__all__ = ["LifecycleRecordModel", "LifecycleRecordRepository", "SQLAlchemyRecordStore"]
