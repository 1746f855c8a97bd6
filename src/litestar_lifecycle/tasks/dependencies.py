"""Task dependency graph engine.

Each task may depend on at most one prerequisite task of the same process, which
makes the dependencies of a process a forest of depends-on edges. This module
keeps that graph acyclic, keeps every task's ``is_blocked`` flag consistent with
its prerequisite's status, and derives the structural critical path.
"""

from __future__ import annotations

import logging
from collections import defaultdict, deque
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from litestar_lifecycle.core.models import TaskAssignment
from litestar_lifecycle.core.references import Resolved
from litestar_lifecycle.core.types import Collection, TaskStatus
from litestar_lifecycle.exceptions import (
    CyclicDependencyError,
    SelfDependencyError,
    TaskNotFoundError,
    ValidationError,
)
from litestar_lifecycle.store.filters import eq

if TYPE_CHECKING:
    from litestar_lifecycle.core.protocols import RecordStore

__all__ = ["CriticalPath", "DependencyGraphEngine", "DependencyInfo"]

logger = logging.getLogger(__name__)


@dataclass
class DependencyInfo:
    """Dependency view of one task.

    Attributes:
        task: The task itself.
        depends_on: Its prerequisite, if any.
        blocked_by: The prerequisite when it is still outstanding.
        blocking: Tasks that depend on this one.
        is_blocked: Current blocked flag.
        can_start: Whether the task is neither blocked nor finished.
    """

    task: TaskAssignment
    depends_on: TaskAssignment | None = None
    blocked_by: TaskAssignment | None = None
    blocking: list[TaskAssignment] = field(default_factory=list)
    is_blocked: bool = False
    can_start: bool = True


@dataclass
class CriticalPath:
    """Longest depends-on chain of a process.

    Attributes:
        task_ids: Task ids along the path, prerequisites first.
        order: Topological order of every task of the process.
    """

    task_ids: list[int] = field(default_factory=list)
    order: list[int] = field(default_factory=list)

    @property
    def length(self) -> int:
        return len(self.task_ids)


class DependencyGraphEngine:
    """Maintains depends-on edges between task assignments.

    Attributes:
        store: Record store holding the ``task_assignments`` collection.
        skip_unblocks: Whether a skipped prerequisite releases its dependents like a
            completed one.
        max_traversal: Upper bound on nodes visited by the cycle check.

    Example:
        >>> graph = DependencyGraphEngine(store)
        >>> await graph.add_dependency(task_id=2, depends_on_id=1)
        >>> (await graph.get_task(2)).is_blocked
        True
    """

    def __init__(self, store: RecordStore, *, skip_unblocks: bool = True, max_traversal: int = 10_000) -> None:
        """Initialize the engine.

        Args:
            store: Record store holding the ``task_assignments`` collection.
            skip_unblocks: Whether ``SKIPPED`` counts as done for dependents.
            max_traversal: Upper bound on nodes visited by the cycle check.
        """
        self.store = store
        self.skip_unblocks = skip_unblocks
        self.max_traversal = max_traversal

    def is_done(self, status: TaskStatus) -> bool:
        """Whether a prerequisite in ``status`` releases its dependents."""
        if status is TaskStatus.COMPLETED:
            return True
        return self.skip_unblocks and status is TaskStatus.SKIPPED

    async def get_task(self, task_id: int) -> TaskAssignment:
        """Load a live task.

        Raises:
            TaskNotFoundError: If the task does not exist or is soft-deleted.
        """
        record = await self.store.get_record(Collection.TASK_ASSIGNMENTS, task_id)
        if record is None or record.get("is_deleted"):
            raise TaskNotFoundError(task_id)
        return TaskAssignment.from_record(record)

    async def _process_tasks(self, process_id: int) -> list[TaskAssignment]:
        records = await self.store.query_records(
            Collection.TASK_ASSIGNMENTS,
            [eq("process_id", process_id), eq("is_deleted", False)],
            order_by="id",
        )
        return [TaskAssignment.from_record(r) for r in records]

    async def get_dependents(self, task_id: int) -> list[TaskAssignment]:
        records = await self.store.query_records(
            Collection.TASK_ASSIGNMENTS,
            [eq("depends_on_task_id", task_id), eq("is_deleted", False)],
            order_by="id",
        )
        return [TaskAssignment.from_record(r) for r in records]

    async def validate_prerequisite(self, process_id: int, depends_on_id: int) -> TaskAssignment:
        """Check that ``depends_on_id`` is a live task of ``process_id``.

        This is all a task that does not exist yet needs, since nothing can depend
        on it and no cycle can run through it.

        Raises:
            TaskNotFoundError: If the prerequisite does not exist.
            ValidationError: If it belongs to a different process.
        """
        prerequisite = await self.get_task(depends_on_id)
        if prerequisite.process_id != process_id:
            msg = "A task can only depend on a task of the same process"
            raise ValidationError(msg)
        return prerequisite

    async def validate_dependency(self, task_id: int, depends_on_id: int) -> None:
        """Check that ``task_id`` may depend on ``depends_on_id``.

        Walks the existing depends-on edges starting from ``depends_on_id``; if
        ``task_id`` is reached the new edge would close a cycle. The walk keeps a
        visited set and stops after ``max_traversal`` nodes, so it always terminates.

        Raises:
            SelfDependencyError: If both ids are the same.
            TaskNotFoundError: If either task does not exist.
            ValidationError: If the tasks belong to different processes.
            CyclicDependencyError: If the edge would create a cycle.
        """
        if task_id == depends_on_id:
            raise SelfDependencyError(task_id)
        task = await self.get_task(task_id)
        await self.validate_prerequisite(task.process_id, depends_on_id)

        visited: set[int] = set()
        queue: deque[int] = deque([depends_on_id])
        while queue:
            current = queue.popleft()
            if current == task_id:
                raise CyclicDependencyError(task_id, depends_on_id)
            if current in visited:
                continue
            visited.add(current)
            if len(visited) > self.max_traversal:
                raise CyclicDependencyError(task_id, depends_on_id)
            record = await self.store.get_record(Collection.TASK_ASSIGNMENTS, current, select=["depends_on_task_id"])
            next_id = record.get("depends_on_task_id") if record else None
            if next_id is not None:
                queue.append(int(next_id))

    async def add_dependency(self, task_id: int, depends_on_id: int) -> TaskAssignment:
        """Make ``task_id`` depend on ``depends_on_id``.

        Args:
            task_id: The dependent task.
            depends_on_id: The prerequisite task.

        Returns:
            The dependent task with its recomputed blocked flag.
        """
        await self.validate_dependency(task_id, depends_on_id)
        await self.store.update_record(Collection.TASK_ASSIGNMENTS, task_id, {"depends_on_task_id": depends_on_id})
        logger.info("Task %d now depends on task %d", task_id, depends_on_id)
        return await self.update_blocked_status(task_id)

    async def remove_dependency(self, task_id: int) -> TaskAssignment:
        """Drop the prerequisite of ``task_id`` and clear its blocked flag."""
        await self.get_task(task_id)
        await self.store.update_record(
            Collection.TASK_ASSIGNMENTS,
            task_id,
            {"depends_on_task_id": None, "is_blocked": False, "blocked_reason": None},
        )
        logger.info("Removed dependency of task %d", task_id)
        return await self.get_task(task_id)

    async def update_blocked_status(self, task_id: int) -> TaskAssignment:
        """Recompute the blocked flag of ``task_id`` from its prerequisite.

        A prerequisite that no longer exists does not block.

        Returns:
            The task after the update.
        """
        task = await self.get_task(task_id)
        blocked = False
        reason: str | None = None
        depends_on_id = task.depends_on_task_id
        if depends_on_id is not None:
            record = await self.store.get_record(Collection.TASK_ASSIGNMENTS, depends_on_id)
            if record is not None and not record.get("is_deleted"):
                prerequisite = TaskAssignment.from_record(record)
                if not self.is_done(prerequisite.status):
                    blocked = True
                    reason = f'Waiting for "{Resolved(prerequisite.id, prerequisite.title).label}" to be completed'
        if blocked != task.is_blocked or reason != task.blocked_reason:
            await self.store.update_record(
                Collection.TASK_ASSIGNMENTS,
                task_id,
                {"is_blocked": blocked, "blocked_reason": reason},
            )
            task.is_blocked = blocked
            task.blocked_reason = reason
        return task

    async def _refresh_dependents(self, task_id: int) -> list[int]:
        released: list[int] = []
        for dependent in await self.get_dependents(task_id):
            was_blocked = dependent.is_blocked
            updated = await self.update_blocked_status(dependent.id)
            if was_blocked and not updated.is_blocked:
                released.append(updated.id)
        if released:
            logger.info("Task %d released dependents %s", task_id, released)
        return released

    async def on_task_completed(self, task_id: int) -> list[int]:
        """Re-evaluate every task depending on a task that was just completed.

        Returns:
            Ids of dependents that became unblocked.
        """
        return await self._refresh_dependents(task_id)

    async def on_task_skipped(self, task_id: int) -> list[int]:
        """Re-evaluate every task depending on a task that was just skipped.

        Returns:
            Ids of dependents that became unblocked.
        """
        return await self._refresh_dependents(task_id)

    async def get_dependency_info(self, task_id: int) -> DependencyInfo:
        """Describe the dependencies of ``task_id``."""
        task = await self.get_task(task_id)
        depends_on: TaskAssignment | None = None
        if task.depends_on_task_id is not None:
            record = await self.store.get_record(Collection.TASK_ASSIGNMENTS, task.depends_on_task_id)
            if record is not None and not record.get("is_deleted"):
                depends_on = TaskAssignment.from_record(record)
        blocked_by = depends_on if depends_on is not None and not self.is_done(depends_on.status) else None
        finished = task.status in {TaskStatus.COMPLETED, TaskStatus.SKIPPED}
        return DependencyInfo(
            task=task,
            depends_on=depends_on,
            blocked_by=blocked_by,
            blocking=await self.get_dependents(task_id),
            is_blocked=task.is_blocked,
            can_start=not task.is_blocked and not finished,
        )

    async def get_available_dependencies(self, task_id: int, process_id: int) -> list[TaskAssignment]:
        """List the tasks of ``process_id`` that ``task_id`` could depend on without a cycle.

        A candidate is excluded when it is the task itself or when the task is
        already an ancestor of the candidate.
        """
        tasks = {t.id: t for t in await self._process_tasks(process_id)}
        available: list[TaskAssignment] = []
        for candidate in tasks.values():
            if candidate.id == task_id:
                continue
            seen: set[int] = set()
            current: int | None = candidate.id
            closes_cycle = False
            while current is not None and current not in seen and current in tasks:
                if current == task_id:
                    closes_cycle = True
                    break
                seen.add(current)
                current = tasks[current].depends_on_task_id
            if not closes_cycle:
                available.append(candidate)
        return available

    async def calculate_critical_path(self, process_id: int) -> CriticalPath:
        """Derive the longest depends-on chain of a process.

        Runs Kahn's algorithm over the live tasks of the process, then walks the
        topological order keeping, for each task, the longest chain ending in it.
        Edges to deleted or foreign tasks are ignored.

        Raises:
            CyclicDependencyError: If stored edges form a cycle.
        """
        tasks = {t.id: t for t in await self._process_tasks(process_id)}
        children: dict[int, list[int]] = defaultdict(list)
        in_degree = dict.fromkeys(tasks, 0)
        for task in tasks.values():
            parent = task.depends_on_task_id
            if parent is not None and parent in tasks:
                children[parent].append(task.id)
                in_degree[task.id] += 1

        ready = deque(sorted(task_id for task_id, degree in in_degree.items() if degree == 0))
        order: list[int] = []
        while ready:
            current = ready.popleft()
            order.append(current)
            for child in children[current]:
                in_degree[child] -= 1
                if in_degree[child] == 0:
                    ready.append(child)

        if len(order) != len(tasks):
            raise CyclicDependencyError(None, None)

        length = dict.fromkeys(tasks, 1)
        previous: dict[int, int | None] = dict.fromkeys(tasks)
        for current in order:
            for child in children[current]:
                if length[current] + 1 > length[child]:
                    length[child] = length[current] + 1
                    previous[child] = current

        if not order:
            return CriticalPath()
        end = max(order, key=lambda task_id: (length[task_id], -order.index(task_id)))
        path: list[int] = []
        node: int | None = end
        while node is not None:
            path.append(node)
            node = previous[node]
        path.reverse()
        return CriticalPath(task_ids=path, order=order)
