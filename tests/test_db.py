"""Integration tests for database persistence layer.

Tests the SQLAlchemy model, repository and record store using an async SQLite
in-memory database.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from litestar_lifecycle.core.definition import StepDefinition, WorkflowDefinition
from litestar_lifecycle.core.types import Collection, ProcessStatus, StepType, WorkflowStatus
from litestar_lifecycle.db import LifecycleRecordModel, LifecycleRecordRepository, SQLAlchemyRecordStore
from litestar_lifecycle.engine.resume import PollingConfig
from litestar_lifecycle.exceptions import RecordNotFoundError, TransientStoreError
from litestar_lifecycle.runtime import build_runtime
from litestar_lifecycle.store.filters import eq, is_in

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

    from sqlalchemy.ext.asyncio import AsyncEngine

    from litestar_lifecycle.sync.retry import RetryPolicy
    from tests.conftest import FakeClock, RecordingNotifier


# =============================================================================
# Database Fixtures
# =============================================================================


def _memory_engine() -> AsyncEngine:
    # One shared connection, so every session sees the same in-memory database.
    return create_async_engine("sqlite+aiosqlite:///:memory:", poolclass=StaticPool)


@pytest.fixture
async def async_engine() -> AsyncIterator[AsyncEngine]:
    """Create an async SQLite in-memory engine with the lifecycle table."""
    engine = _memory_engine()
    async with engine.begin() as conn:
        await conn.run_sync(LifecycleRecordModel.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest.fixture
def session_maker(async_engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(bind=async_engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
def db_store(session_maker: async_sessionmaker[AsyncSession]) -> SQLAlchemyRecordStore:
    return SQLAlchemyRecordStore(session_maker)


# =============================================================================
# Repository Tests
# =============================================================================


@pytest.mark.integration
@pytest.mark.asyncio
class TestLifecycleRecordRepository:
    """Tests for LifecycleRecordRepository."""

    async def test_collection_scoping(self, session_maker: async_sessionmaker[AsyncSession]) -> None:
        async with session_maker() as session:
            repo = LifecycleRecordRepository(session=session)
            process = await repo.add(LifecycleRecordModel(collection="processes", data={"status": "pending"}))
            await repo.add(LifecycleRecordModel(collection="task_assignments", data={"title": "Order laptop"}))
            await session.commit()

            found = await repo.get_in_collection("processes", process.id)
            wrong_collection = await repo.get_in_collection("task_assignments", process.id)

            assert found is not None
            assert found.to_record() == {"status": "pending", "id": process.id}
            assert wrong_collection is None
            assert await repo.count_collection("processes") == 1
            assert [m.collection for m in await repo.list_collection("task_assignments")] == ["task_assignments"]

    async def test_audit_columns(self, session_maker: async_sessionmaker[AsyncSession]) -> None:
        async with session_maker() as session:
            repo = LifecycleRecordRepository(session=session)
            record = await repo.add(LifecycleRecordModel(collection="processes", data={}), auto_commit=True)

            assert record.created_at is not None
            assert record.updated_at is not None


# =============================================================================
# Record Store Tests
# =============================================================================


@pytest.mark.integration
@pytest.mark.asyncio
class TestSQLAlchemyRecordStore:
    """Tests for SQLAlchemyRecordStore."""

    async def test_add_and_get(self, db_store: SQLAlchemyRecordStore) -> None:
        record_id = await db_store.add_record(
            Collection.PROCESSES, {"id": 99, "status": "pending", "tags": ["remote", "it"]}
        )

        record = await db_store.get_record(Collection.PROCESSES, record_id)

        assert record == {"id": record_id, "status": "pending", "tags": ["remote", "it"]}
        assert await db_store.get_record(Collection.PROCESSES, record_id, select=["status"]) == {
            "status": "pending",
            "id": record_id,
        }

    async def test_ids_are_unique_across_collections(self, db_store: SQLAlchemyRecordStore) -> None:
        process_id = await db_store.add_record(Collection.PROCESSES, {"status": "pending"})
        task_id = await db_store.add_record(Collection.TASK_ASSIGNMENTS, {"title": "Order laptop"})

        assert process_id != task_id
        assert await db_store.get_record(Collection.TASK_ASSIGNMENTS, process_id) is None

    async def test_update_merges_fields(self, db_store: SQLAlchemyRecordStore) -> None:
        record_id = await db_store.add_record(Collection.PROCESSES, {"status": "pending", "department": "IT"})

        await db_store.update_record(Collection.PROCESSES, record_id, {"status": "on_hold", "id": 5})

        assert await db_store.get_record(Collection.PROCESSES, record_id) == {
            "id": record_id,
            "status": "on_hold",
            "department": "IT",
        }

    async def test_update_missing_record(self, db_store: SQLAlchemyRecordStore) -> None:
        with pytest.raises(RecordNotFoundError):
            await db_store.update_record(Collection.PROCESSES, 404, {"status": "on_hold"})

    async def test_query(self, db_store: SQLAlchemyRecordStore) -> None:
        laptop = await db_store.add_record(Collection.TASK_ASSIGNMENTS, {"process_id": 1, "status": "completed"})
        phone = await db_store.add_record(Collection.TASK_ASSIGNMENTS, {"process_id": 1, "status": "not_started"})
        await db_store.add_record(Collection.TASK_ASSIGNMENTS, {"process_id": 2, "status": "not_started"})

        for_process = await db_store.query_records(Collection.TASK_ASSIGNMENTS, [eq("process_id", 1)])
        newest = await db_store.query_records(Collection.TASK_ASSIGNMENTS, order_by="-id", top=1)
        open_tasks = await db_store.query_records(
            Collection.TASK_ASSIGNMENTS,
            [eq("process_id", 1), is_in("status", ["not_started", "in_progress"])],
            select=["id"],
        )

        assert [r["id"] for r in for_process] == [laptop, phone]
        assert newest[0]["process_id"] == 2
        assert open_tasks == [{"id": phone}]
        assert await db_store.count(Collection.TASK_ASSIGNMENTS) == 3

    async def test_missing_table_is_transient(self) -> None:
        engine = _memory_engine()
        store = SQLAlchemyRecordStore(async_sessionmaker(bind=engine, expire_on_commit=False))

        with pytest.raises(TransientStoreError) as exc_info:
            await store.add_record(Collection.PROCESSES, {"status": "pending"})

        assert exc_info.value.operation == "add_record"
        await engine.dispose()


# =============================================================================
# End-to-end Tests
# =============================================================================


@pytest.mark.integration
@pytest.mark.asyncio
class TestPersistentRuntime:
    """Tests for running workflows on the database store."""

    async def test_task_workflow_round_trip(
        self,
        db_store: SQLAlchemyRecordStore,
        notifier: RecordingNotifier,
        fast_retry: RetryPolicy,
        clock: FakeClock,
    ) -> None:
        runtime = build_runtime(
            db_store, notifier, retry_policy=fast_retry, polling=PollingConfig(enabled=False), clock=clock
        )
        process_id = await db_store.add_record(
            Collection.PROCESSES, {"status": "pending", "employee_name": "Ada Lovelace", "manager_id": 7}
        )
        definition = WorkflowDefinition(
            "onboarding",
            "Onboarding",
            "1",
            [
                StepDefinition(
                    "it_setup",
                    "IT setup",
                    StepType.CREATE_TASK,
                    1,
                    {
                        "title": "Laptop for {{process.employee_name}}",
                        "assignee_field": "process.manager_id",
                        "wait": True,
                    },
                ),
                StepDefinition(
                    "record",
                    "Record",
                    StepType.ACTION,
                    2,
                    {"field_updates": [{"field_name": "equipment_ready", "value": True}]},
                ),
            ],
        )

        instance_id = await runtime.engine.start(definition, {"process_id": process_id})
        [task] = await runtime.tasks.list_tasks(process_id)
        assert task.title == "Laptop for Ada Lovelace"
        assert (await runtime.engine.get_instance(instance_id)).status is WorkflowStatus.WAITING_FOR_TASK

        await runtime.tasks.complete_task(task.id)

        instance = await runtime.engine.get_instance(instance_id)
        assert instance.status is WorkflowStatus.COMPLETED
        process = await db_store.get_record(Collection.PROCESSES, process_id)
        assert process["equipment_ready"] is True
        assert process["status"] == "completed"
        assert notifier.recipients() == [7]

    async def test_dead_letters_survive_restart(
        self, db_store: SQLAlchemyRecordStore, fast_retry: RetryPolicy
    ) -> None:
        runtime = build_runtime(db_store, retry_policy=fast_retry, polling=PollingConfig(enabled=False))
        outcome = await runtime.bridge.sync_process_status(12345, ProcessStatus.ON_HOLD)
        assert outcome is not None
        assert not outcome.success

        restarted = build_runtime(db_store, polling=PollingConfig(enabled=False))
        await restarted.startup()

        [item] = restarted.dead_letters.get_pending_items()
        assert item.id == outcome.dead_letter_id
        assert item.payload == {"process_id": 12345, "status": "on_hold"}
