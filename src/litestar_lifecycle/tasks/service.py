"""Task assignment service.

Creates, completes, skips and soft-deletes task assignments. Every status change
re-evaluates the dependents in the dependency graph first and is then published
as a ``TaskStatusChanged`` event, which the resume coordinator listens to.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import TYPE_CHECKING

from litestar_lifecycle.core.clock import Clock, to_iso, utc_now
from litestar_lifecycle.core.events import TaskStatusChanged
from litestar_lifecycle.core.models import TaskAssignment
from litestar_lifecycle.core.references import Unresolved
from litestar_lifecycle.core.types import Collection, TaskStatus
from litestar_lifecycle.exceptions import InvalidTransitionError, ValidationError
from litestar_lifecycle.notifications import Notification, notify_safely
from litestar_lifecycle.store.filters import eq

if TYPE_CHECKING:
    from litestar_lifecycle.core.events import LifecycleEventBus
    from litestar_lifecycle.core.protocols import NotificationService, RecordStore
    from litestar_lifecycle.tasks.dependencies import DependencyGraphEngine

__all__ = ["TaskAssignmentService", "TaskSpec"]

logger = logging.getLogger(__name__)

_FINISHED = frozenset({TaskStatus.COMPLETED, TaskStatus.SKIPPED})


def _check_title(title: str) -> None:
    if not title.strip():
        msg = "Task title is required"
        raise ValidationError(msg)


@dataclass
class TaskSpec:
    """Description of a task to create in a batch.

    Attributes:
        title: Short description of the work.
        assignee_id: User responsible for the task.
        due_days: Days from creation until the task is due.
        depends_on_index: Index, within the same batch, of the prerequisite task.
        depends_on_task_id: Id of an existing prerequisite task.
    """

    title: str
    assignee_id: int | None = None
    due_days: int | None = None
    depends_on_index: int | None = None
    depends_on_task_id: int | None = None


class TaskAssignmentService:
    """Lifecycle operations on task assignments.

    Attributes:
        store: Record store holding the ``task_assignments`` collection.
        dependencies: Dependency graph engine kept in sync with task status.
        events: Event bus receiving ``TaskStatusChanged`` events.
        notifier: Notification service used to tell assignees about new tasks.
    """

    def __init__(
        self,
        store: RecordStore,
        dependencies: DependencyGraphEngine,
        events: LifecycleEventBus | None = None,
        notifier: NotificationService | None = None,
        *,
        clock: Clock = utc_now,
    ) -> None:
        self.store = store
        self.dependencies = dependencies
        self.events = events
        self.notifier = notifier
        self._clock = clock

    async def get_task(self, task_id: int) -> TaskAssignment:
        """Load a live task.

        Raises:
            TaskNotFoundError: If the task does not exist or is soft-deleted.
        """
        return await self.dependencies.get_task(task_id)

    async def list_tasks(
        self,
        process_id: int | None = None,
        *,
        workflow_instance_id: int | None = None,
        workflow_step_id: str | None = None,
    ) -> list[TaskAssignment]:
        """List live tasks filtered by process and/or creating workflow step."""
        filters = [eq("is_deleted", False)]
        if process_id is not None:
            filters.append(eq("process_id", process_id))
        if workflow_instance_id is not None:
            filters.append(eq("workflow_instance_id", workflow_instance_id))
        if workflow_step_id is not None:
            filters.append(eq("workflow_step_id", workflow_step_id))
        records = await self.store.query_records(Collection.TASK_ASSIGNMENTS, filters, order_by="id")
        return [TaskAssignment.from_record(r) for r in records]

    async def create_task(
        self,
        process_id: int,
        title: str,
        *,
        assignee_id: int | None = None,
        due_date: datetime | None = None,
        depends_on_task_id: int | None = None,
        workflow_instance_id: int | None = None,
        workflow_step_id: str | None = None,
    ) -> TaskAssignment:
        """Create one task and, when given, its dependency.

        Nothing is written when the title or the prerequisite is rejected.

        Raises:
            ValidationError: If the title is empty or the prerequisite is not a
                task of the same process.
            TaskNotFoundError: If the prerequisite does not exist.
        """
        _check_title(title)
        if depends_on_task_id is not None:
            await self.dependencies.validate_prerequisite(process_id, depends_on_task_id)
        task = TaskAssignment(
            id=0,
            process_id=process_id,
            title=title,
            assignee_id=assignee_id,
            due_date=due_date,
            depends_on=Unresolved(id=depends_on_task_id) if depends_on_task_id is not None else None,
            workflow_instance_id=workflow_instance_id,
            workflow_step_id=workflow_step_id,
        )
        task.id = await self.store.add_record(Collection.TASK_ASSIGNMENTS, task.to_fields())
        if depends_on_task_id is not None:
            task = await self.dependencies.update_blocked_status(task.id)
        logger.info("Created task %d '%s' for process %d", task.id, title, process_id)
        if assignee_id is not None:
            await notify_safely(
                self.notifier,
                Notification(recipient_id=assignee_id, title="New task assigned", message=title),
            )
        return task

    async def create_tasks(
        self,
        process_id: int,
        specs: list[TaskSpec],
        *,
        workflow_instance_id: int | None = None,
        workflow_step_id: str | None = None,
    ) -> list[TaskAssignment]:
        """Create a batch of tasks, wiring dependencies between them.

        ``depends_on_index`` refers to a task earlier in the same batch. The whole
        batch is validated before the first task is written.

        Raises:
            ValidationError: If a title is empty, an index does not point to an
                earlier task, or a prerequisite belongs to another process.
            TaskNotFoundError: If a prerequisite id does not exist.
        """
        for position, spec in enumerate(specs):
            _check_title(spec.title)
            index = spec.depends_on_index
            if index is not None and not 0 <= index < position:
                msg = f"Task '{spec.title}' depends on batch index {index}, which is not an earlier task"
                raise ValidationError(msg)
            if index is None and spec.depends_on_task_id is not None:
                await self.dependencies.validate_prerequisite(process_id, spec.depends_on_task_id)

        created: list[TaskAssignment] = []
        now = self._clock()
        for spec in specs:
            if spec.depends_on_index is not None:
                depends_on_id = created[spec.depends_on_index].id
            else:
                depends_on_id = spec.depends_on_task_id
            created.append(
                await self.create_task(
                    process_id,
                    spec.title,
                    assignee_id=spec.assignee_id,
                    due_date=now + timedelta(days=spec.due_days) if spec.due_days is not None else None,
                    depends_on_task_id=depends_on_id,
                    workflow_instance_id=workflow_instance_id,
                    workflow_step_id=workflow_step_id,
                )
            )
        return created

    async def start_task(self, task_id: int) -> TaskAssignment:
        """Move a task to ``IN_PROGRESS``.

        Raises:
            ValidationError: If the task is blocked.
            InvalidTransitionError: If the task is already finished.
        """
        task = await self.get_task(task_id)
        if task.status in _FINISHED:
            raise InvalidTransitionError(str(task.status), str(TaskStatus.IN_PROGRESS), f"task {task_id}")
        if task.is_blocked:
            raise ValidationError(task.blocked_reason or f"Task {task_id} is blocked")
        if task.status is not TaskStatus.IN_PROGRESS:
            await self.store.update_record(
                Collection.TASK_ASSIGNMENTS, task_id, {"status": str(TaskStatus.IN_PROGRESS)}
            )
            task.status = TaskStatus.IN_PROGRESS
        return task

    async def _finish(self, task_id: int, status: TaskStatus) -> TaskAssignment:
        task = await self.get_task(task_id)
        if task.status is status:
            logger.debug("Task %d already %s", task_id, status)
            return task
        if task.status in _FINISHED:
            raise InvalidTransitionError(str(task.status), str(status), f"task {task_id}")
        if status is TaskStatus.COMPLETED and task.is_blocked:
            raise ValidationError(task.blocked_reason or f"Task {task_id} is blocked")

        previous = task.status
        now = self._clock()
        await self.store.update_record(
            Collection.TASK_ASSIGNMENTS,
            task_id,
            {"status": str(status), "completed_at": to_iso(now)},
        )
        task.status = status
        task.completed_at = now
        logger.info("Task %d %s", task_id, status)

        if status is TaskStatus.COMPLETED:
            await self.dependencies.on_task_completed(task_id)
        else:
            await self.dependencies.on_task_skipped(task_id)

        if self.events is not None:
            await self.events.emit(
                TaskStatusChanged(
                    timestamp=now,
                    process_id=task.process_id,
                    task_id=task_id,
                    previous_status=previous,
                    status=status,
                    workflow_instance_id=task.workflow_instance_id,
                )
            )
        return task

    async def complete_task(self, task_id: int) -> TaskAssignment:
        """Complete a task, release its dependents and notify listeners.

        Completing an already completed task is a no-op.

        Raises:
            ValidationError: If the task is still blocked.
            InvalidTransitionError: If the task was skipped.
        """
        return await self._finish(task_id, TaskStatus.COMPLETED)

    async def skip_task(self, task_id: int) -> TaskAssignment:
        """Skip a task, release its dependents and notify listeners.

        Skipping an already skipped task is a no-op.
        """
        return await self._finish(task_id, TaskStatus.SKIPPED)

    async def delete_task(self, task_id: int) -> None:
        """Soft-delete a task.

        Tasks depending on it lose the dependency, so none stays blocked on a task
        that no longer exists.
        """
        await self.get_task(task_id)
        await self.store.update_record(Collection.TASK_ASSIGNMENTS, task_id, {"is_deleted": True})
        for dependent in await self.dependencies.get_dependents(task_id):
            await self.dependencies.remove_dependency(dependent.id)
        logger.info("Deleted task %d", task_id)

    async def set_dependency(self, task_id: int, depends_on_task_id: int | None) -> TaskAssignment:
        """Replace or clear the prerequisite of a task."""
        if depends_on_task_id is None:
            return await self.dependencies.remove_dependency(task_id)
        return await self.dependencies.add_dependency(task_id, depends_on_task_id)

