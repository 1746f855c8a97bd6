"""Tests for the task dependency graph engine."""

from __future__ import annotations

from typing import TYPE_CHECKING

import pytest

from litestar_lifecycle.core.types import TaskStatus
from litestar_lifecycle.exceptions import (
    CyclicDependencyError,
    SelfDependencyError,
    TaskNotFoundError,
    ValidationError,
)
from litestar_lifecycle.tasks.dependencies import CriticalPath, DependencyGraphEngine
from litestar_lifecycle.tasks.service import TaskAssignmentService

if TYPE_CHECKING:
    from litestar_lifecycle.store.memory import InMemoryRecordStore


@pytest.mark.unit
@pytest.mark.asyncio
class TestDependencyValidation:
    """Tests for rejecting invalid dependency edges."""

    async def test_self_dependency(self, task_service: TaskAssignmentService) -> None:
        task = await task_service.create_task(1, "Order laptop")

        with pytest.raises(SelfDependencyError):
            await task_service.dependencies.add_dependency(task.id, task.id)

    async def test_direct_cycle(self, task_service: TaskAssignmentService) -> None:
        laptop = await task_service.create_task(1, "Order laptop")
        image = await task_service.create_task(1, "Image laptop", depends_on_task_id=laptop.id)

        with pytest.raises(CyclicDependencyError):
            await task_service.set_dependency(laptop.id, image.id)

        assert (await task_service.get_task(laptop.id)).depends_on_task_id is None

    async def test_transitive_cycle(self, task_service: TaskAssignmentService) -> None:
        first = await task_service.create_task(1, "Order laptop")
        second = await task_service.create_task(1, "Image laptop", depends_on_task_id=first.id)
        third = await task_service.create_task(1, "Hand over laptop", depends_on_task_id=second.id)

        with pytest.raises(CyclicDependencyError, match="circular"):
            await task_service.set_dependency(first.id, third.id)

    async def test_cross_process_dependency(self, task_service: TaskAssignmentService) -> None:
        ours = await task_service.create_task(1, "Order laptop")
        theirs = await task_service.create_task(2, "Order phone")

        with pytest.raises(ValidationError, match="same process"):
            await task_service.set_dependency(ours.id, theirs.id)

    async def test_missing_prerequisite(self, task_service: TaskAssignmentService) -> None:
        task = await task_service.create_task(1, "Order laptop")

        with pytest.raises(TaskNotFoundError):
            await task_service.set_dependency(task.id, 99)

    async def test_cycle_errors_are_validation_errors(self) -> None:
        assert issubclass(CyclicDependencyError, ValidationError)
        assert issubclass(SelfDependencyError, ValidationError)


@pytest.mark.unit
@pytest.mark.asyncio
class TestBlockedStatus:
    """Tests for keeping the blocked flag consistent."""

    async def test_dependent_is_blocked_with_reason(self, task_service: TaskAssignmentService) -> None:
        laptop = await task_service.create_task(1, "Order laptop")
        image = await task_service.create_task(1, "Image laptop", depends_on_task_id=laptop.id)

        assert image.is_blocked
        assert image.blocked_reason == 'Waiting for "Order laptop" to be completed'

    async def test_dependency_on_finished_task_is_not_blocked(self, task_service: TaskAssignmentService) -> None:
        laptop = await task_service.create_task(1, "Order laptop")
        await task_service.complete_task(laptop.id)

        image = await task_service.create_task(1, "Image laptop", depends_on_task_id=laptop.id)

        assert not image.is_blocked
        assert image.blocked_reason is None

    async def test_completion_releases_dependents(self, task_service: TaskAssignmentService) -> None:
        laptop = await task_service.create_task(1, "Order laptop")
        image = await task_service.create_task(1, "Image laptop", depends_on_task_id=laptop.id)
        badge = await task_service.create_task(1, "Print badge", depends_on_task_id=laptop.id)

        await task_service.complete_task(laptop.id)

        for task_id in (image.id, badge.id):
            task = await task_service.get_task(task_id)
            assert not task.is_blocked
            assert task.blocked_reason is None

    async def test_on_task_completed_returns_released_ids(
        self, task_service: TaskAssignmentService, store: InMemoryRecordStore
    ) -> None:
        laptop = await task_service.create_task(1, "Order laptop")
        image = await task_service.create_task(1, "Image laptop", depends_on_task_id=laptop.id)
        await store.update_record("task_assignments", laptop.id, {"status": str(TaskStatus.COMPLETED)})

        released = await task_service.dependencies.on_task_completed(laptop.id)

        assert released == [image.id]
        assert await task_service.dependencies.on_task_completed(laptop.id) == []

    async def test_skip_releases_dependents_by_default(self, task_service: TaskAssignmentService) -> None:
        laptop = await task_service.create_task(1, "Order laptop")
        image = await task_service.create_task(1, "Image laptop", depends_on_task_id=laptop.id)

        await task_service.skip_task(laptop.id)

        assert not (await task_service.get_task(image.id)).is_blocked

    async def test_skip_keeps_dependents_blocked_when_configured(self, store: InMemoryRecordStore) -> None:
        service = TaskAssignmentService(store, DependencyGraphEngine(store, skip_unblocks=False))
        laptop = await service.create_task(1, "Order laptop")
        image = await service.create_task(1, "Image laptop", depends_on_task_id=laptop.id)

        await service.skip_task(laptop.id)

        assert (await service.get_task(image.id)).is_blocked

    async def test_removing_dependency_unblocks(self, task_service: TaskAssignmentService) -> None:
        laptop = await task_service.create_task(1, "Order laptop")
        image = await task_service.create_task(1, "Image laptop", depends_on_task_id=laptop.id)

        updated = await task_service.set_dependency(image.id, None)

        assert updated.depends_on_task_id is None
        assert not updated.is_blocked

    async def test_deleting_prerequisite_clears_dependents(self, task_service: TaskAssignmentService) -> None:
        laptop = await task_service.create_task(1, "Order laptop")
        image = await task_service.create_task(1, "Image laptop", depends_on_task_id=laptop.id)

        await task_service.delete_task(laptop.id)

        task = await task_service.get_task(image.id)
        assert task.depends_on_task_id is None
        assert not task.is_blocked


@pytest.mark.unit
@pytest.mark.asyncio
class TestDependencyQueries:
    """Tests for dependency info, available prerequisites and the critical path."""

    async def test_dependency_info(self, task_service: TaskAssignmentService) -> None:
        laptop = await task_service.create_task(1, "Order laptop")
        image = await task_service.create_task(1, "Image laptop", depends_on_task_id=laptop.id)
        handover = await task_service.create_task(1, "Hand over laptop", depends_on_task_id=image.id)

        info = await task_service.dependencies.get_dependency_info(image.id)

        assert info.depends_on is not None
        assert info.depends_on.id == laptop.id
        assert info.blocked_by is not None
        assert [task.id for task in info.blocking] == [handover.id]
        assert info.is_blocked
        assert not info.can_start

    async def test_dependency_info_after_completion(self, task_service: TaskAssignmentService) -> None:
        laptop = await task_service.create_task(1, "Order laptop")
        image = await task_service.create_task(1, "Image laptop", depends_on_task_id=laptop.id)
        await task_service.complete_task(laptop.id)

        info = await task_service.dependencies.get_dependency_info(image.id)

        assert info.blocked_by is None
        assert info.can_start

    async def test_available_dependencies_exclude_descendants(self, task_service: TaskAssignmentService) -> None:
        first = await task_service.create_task(1, "Order laptop")
        second = await task_service.create_task(1, "Image laptop", depends_on_task_id=first.id)
        third = await task_service.create_task(1, "Hand over laptop", depends_on_task_id=second.id)
        badge = await task_service.create_task(1, "Print badge")
        await task_service.create_task(2, "Other process")

        for_first = await task_service.dependencies.get_available_dependencies(first.id, 1)
        for_third = await task_service.dependencies.get_available_dependencies(third.id, 1)

        assert [task.id for task in for_first] == [badge.id]
        assert [task.id for task in for_third] == [first.id, second.id, badge.id]

    async def test_critical_path(self, task_service: TaskAssignmentService) -> None:
        first = await task_service.create_task(1, "Order laptop")
        badge = await task_service.create_task(1, "Print badge")
        second = await task_service.create_task(1, "Image laptop", depends_on_task_id=first.id)
        third = await task_service.create_task(1, "Hand over laptop", depends_on_task_id=second.id)
        await task_service.create_task(1, "Collect badge", depends_on_task_id=badge.id)

        path = await task_service.dependencies.calculate_critical_path(1)

        assert path.task_ids == [first.id, second.id, third.id]
        assert path.length == 3
        assert set(path.order) == {1, 2, 3, 4, 5}
        assert path.order.index(first.id) < path.order.index(second.id) < path.order.index(third.id)

    async def test_critical_path_of_empty_process(self, dependency_graph: DependencyGraphEngine) -> None:
        path = await dependency_graph.calculate_critical_path(1)

        assert path == CriticalPath()
        assert path.length == 0
