"""Workflow instance engine.

Drives one workflow instance through the steps of its definition. An instance
advances one step at a time; a step either continues to its successor, suspends
the instance until external work is done, or fails it. Suspended instances are
resumed through ``complete_waiting_step``, which is idempotent.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from litestar_lifecycle.core.clock import Clock, to_iso, utc_now
from litestar_lifecycle.core.events import WorkflowStatusChanged
from litestar_lifecycle.core.expressions import evaluate_groups
from litestar_lifecycle.core.models import StepLogEntry, WaitCriteria, WorkflowInstance, WorkflowStepStatus
from litestar_lifecycle.core.types import (
    TERMINAL_WORKFLOW_STATUSES,
    WAITING_WORKFLOW_STATUSES,
    Collection,
    NextAction,
    StepStatus,
    StepType,
    WaitItemType,
    WorkflowStatus,
)
from litestar_lifecycle.engine.graph import WorkflowGraph
from litestar_lifecycle.engine.handlers import DEFAULT_HANDLERS, StepContext, StepHandler, StepResult
from litestar_lifecycle.engine.registry import WorkflowRegistry
from litestar_lifecycle.exceptions import (
    InvalidTransitionError,
    ValidationError,
    WorkflowInstanceNotFoundError,
    WorkflowLogicError,
    WorkflowNotFoundError,
    WorkflowValidationError,
)
from litestar_lifecycle.store.filters import eq, gt

if TYPE_CHECKING:
    from collections.abc import Mapping

    from litestar_lifecycle.approvals.engine import ApprovalChainEngine
    from litestar_lifecycle.core.definition import StepDefinition, WorkflowDefinition
    from litestar_lifecycle.core.events import LifecycleEventBus
    from litestar_lifecycle.core.protocols import NotificationService, RecordStore
    from litestar_lifecycle.tasks.service import TaskAssignmentService

__all__ = ["WAIT_STATUS_FOR_ITEM", "CompletionResult", "WorkflowInstanceEngine"]

logger = logging.getLogger(__name__)

WAIT_STATUS_FOR_ITEM: dict[WaitItemType, WorkflowStatus] = {
    WaitItemType.TASK: WorkflowStatus.WAITING_FOR_TASK,
    WaitItemType.APPROVAL: WorkflowStatus.WAITING_FOR_APPROVAL,
    WaitItemType.INPUT: WorkflowStatus.WAITING_FOR_INPUT,
}
"""Instance status for each kind of awaited work."""

_ALLOWED_TRANSITIONS: dict[WorkflowStatus, frozenset[WorkflowStatus]] = {
    WorkflowStatus.PENDING: frozenset({WorkflowStatus.RUNNING, WorkflowStatus.FAILED, WorkflowStatus.CANCELLED}),
    WorkflowStatus.RUNNING: frozenset(
        {
            *WAITING_WORKFLOW_STATUSES,
            WorkflowStatus.PAUSED,
            WorkflowStatus.COMPLETED,
            WorkflowStatus.FAILED,
            WorkflowStatus.CANCELLED,
        }
    ),
    WorkflowStatus.PAUSED: frozenset({*WAITING_WORKFLOW_STATUSES, WorkflowStatus.RUNNING, WorkflowStatus.CANCELLED}),
    WorkflowStatus.COMPLETED: frozenset(),
    WorkflowStatus.FAILED: frozenset(),
    WorkflowStatus.CANCELLED: frozenset(),
}
for _waiting in WAITING_WORKFLOW_STATUSES:
    _ALLOWED_TRANSITIONS[_waiting] = frozenset(
        {WorkflowStatus.RUNNING, WorkflowStatus.PAUSED, WorkflowStatus.FAILED, WorkflowStatus.CANCELLED}
    )


@dataclass
class CompletionResult:
    """Outcome of ``complete_waiting_step``.

    Attributes:
        success: Whether the completion was applied or was a harmless no-op.
        instance_id: The instance concerned.
        step_id: The step concerned.
        status: Instance status after the call.
        already_completed: Whether the call was a no-op because the wait was already over.
        message: Explanation for no-ops.
    """

    success: bool
    instance_id: int
    step_id: str
    status: WorkflowStatus
    already_completed: bool = False
    message: str | None = None


class WorkflowInstanceEngine:
    """State machine executing workflow instances.

    Attributes:
        store: Record store holding instances and step statuses.
        registry: Definitions instances are started from.
        tasks: Task service passed to task-creating steps.
        approvals: Approval engine passed to approval steps.
        notifier: Notification service passed to notification steps.
        events: Event bus receiving ``WorkflowStatusChanged`` events.
        max_steps_per_run: Steps one ``run`` may execute before the instance is failed.

    Example:
        >>> engine = WorkflowInstanceEngine(store, tasks=tasks, approvals=approvals)
        >>> instance_id = await engine.start(onboarding, {"process_id": 7})
        >>> (await engine.get_instance(instance_id)).status
        <WorkflowStatus.WAITING_FOR_TASK: 'waiting_for_task'>
    """

    def __init__(
        self,
        store: RecordStore,
        registry: WorkflowRegistry | None = None,
        *,
        tasks: TaskAssignmentService | None = None,
        approvals: ApprovalChainEngine | None = None,
        notifier: NotificationService | None = None,
        events: LifecycleEventBus | None = None,
        clock: Clock = utc_now,
        max_steps_per_run: int = 100,
        handlers: Mapping[StepType, StepHandler] | None = None,
    ) -> None:
        """Initialize the engine.

        Args:
            store: Record store holding instances and step statuses.
            registry: Definitions registry; an empty one is created if omitted.
            tasks: Task service for task-creating steps.
            approvals: Approval engine for approval steps.
            notifier: Notification service for notification steps.
            events: Event bus receiving status events.
            clock: Time source.
            max_steps_per_run: Guard against transition loops.
            handlers: Handlers overriding the defaults per step type.
        """
        self.store = store
        self.registry = registry or WorkflowRegistry()
        self.tasks = tasks
        self.approvals = approvals
        self.notifier = notifier
        self.events = events
        self.max_steps_per_run = max_steps_per_run
        self.handlers: dict[StepType, StepHandler] = {**DEFAULT_HANDLERS, **(handlers or {})}
        self._clock = clock
        self._in_flight: set[tuple[int, str]] = set()

    def register_handler(self, step_type: StepType, handler: StepHandler) -> None:
        """Replace the handler used for ``step_type``."""
        self.handlers[step_type] = handler

    # Read helpers

    async def get_instance(self, instance_id: int) -> WorkflowInstance:
        """Load an instance.

        Raises:
            WorkflowInstanceNotFoundError: If the instance does not exist.
        """
        record = await self.store.get_record(Collection.WORKFLOW_INSTANCES, instance_id)
        if record is None:
            raise WorkflowInstanceNotFoundError(instance_id)
        return WorkflowInstance.from_record(record)

    async def list_instances(
        self,
        status: WorkflowStatus | None = None,
        process_id: int | None = None,
        *,
        after_id: int | None = None,
        top: int | None = None,
    ) -> list[WorkflowInstance]:
        """List instances, oldest first, filtered by status and/or process.

        ``after_id`` restricts the listing to instances with a greater id.
        """
        filters = []
        if status is not None:
            filters.append(eq("status", str(status)))
        if process_id is not None:
            filters.append(eq("process_id", process_id))
        if after_id is not None:
            filters.append(gt("id", after_id))
        records = await self.store.query_records(Collection.WORKFLOW_INSTANCES, filters, order_by="id", top=top)
        return [WorkflowInstance.from_record(r) for r in records]

    async def get_step_status(self, instance_id: int, step_id: str) -> WorkflowStepStatus | None:
        """Return the execution record of one step, if the step ever ran."""
        records = await self.store.query_records(
            Collection.WORKFLOW_STEP_STATUSES,
            [eq("instance_id", instance_id), eq("step_id", step_id)],
            top=1,
        )
        return WorkflowStepStatus.from_record(records[0]) if records else None

    async def list_step_statuses(self, instance_id: int) -> list[WorkflowStepStatus]:
        records = await self.store.query_records(
            Collection.WORKFLOW_STEP_STATUSES, [eq("instance_id", instance_id)], order_by="id"
        )
        return [WorkflowStepStatus.from_record(r) for r in records]

    async def append_step_log(self, instance_id: int, step_id: str, message: str, level: str = "info") -> None:
        """Append an entry to a step's log, creating the step record if needed."""
        status = await self._step_status_for(instance_id, step_id)
        status.log.append(StepLogEntry(at=self._clock(), message=message, level=level))
        await self.store.update_record(
            Collection.WORKFLOW_STEP_STATUSES,
            status.id,
            {"log": [entry.to_dict() for entry in status.log]},
        )

    async def record_retry(self, instance_id: int, step_id: str, attempt: int, error: str) -> None:
        """Log a failed resume attempt on the step and bump its retry counter."""
        status = await self._step_status_for(instance_id, step_id)
        status.log.append(
            StepLogEntry(at=self._clock(), message=f"Resume attempt {attempt} failed: {error}", level="warning")
        )
        await self.store.update_record(
            Collection.WORKFLOW_STEP_STATUSES,
            status.id,
            {"log": [entry.to_dict() for entry in status.log], "retry_count": status.retry_count + 1},
        )

    def get_definition(self, instance: WorkflowInstance) -> WorkflowDefinition:
        """Return the definition an instance was started with.

        Raises:
            WorkflowNotFoundError: If the definition is no longer registered.
        """
        try:
            return self.registry.get_definition(instance.definition_id, instance.definition_version)
        except KeyError as exc:
            raise WorkflowNotFoundError(instance.definition_id, instance.definition_version) from exc

    # Start and run

    async def start(self, definition: WorkflowDefinition, context: Mapping[str, Any]) -> int:
        """Validate and register ``definition``, then start an instance of it.

        Args:
            definition: The workflow to execute.
            context: Start context; must contain ``process_id``. An optional
                ``variables`` mapping seeds the instance variables.

        Returns:
            The id of the new instance.

        Raises:
            WorkflowValidationError: If the definition is structurally invalid.
            ValidationError: If the context has no ``process_id``.
        """
        errors = WorkflowGraph(definition).validate()
        if errors:
            raise WorkflowValidationError(errors)
        if context.get("process_id") is None:
            msg = "Workflow context requires 'process_id'"
            raise ValidationError(msg)
        self.registry.register(definition)

        instance = WorkflowInstance(
            id=0,
            definition_id=definition.id,
            definition_version=definition.version,
            process_id=int(context["process_id"]),
            status=WorkflowStatus.PENDING,
            variables=dict(context.get("variables") or {}),
            context=dict(context),
            created_at=self._clock(),
        )
        instance.id = await self.store.add_record(Collection.WORKFLOW_INSTANCES, instance.to_fields())
        logger.info(
            "Created workflow instance %d of '%s' for process %d", instance.id, definition.id, instance.process_id
        )
        await self._emit(instance, None)

        first = definition.first_step
        # validate() guarantees at least one step
        await self._transition(instance, WorkflowStatus.RUNNING, current_step_id=first.id if first else None)
        await self.run(instance.id)
        return instance.id

    async def start_registered(self, definition_id: str, context: Mapping[str, Any], version: str | None = None) -> int:
        """Start an instance of an already registered definition.

        Raises:
            WorkflowNotFoundError: If the definition is not registered.
        """
        try:
            definition = self.registry.get_definition(definition_id, version)
        except KeyError as exc:
            raise WorkflowNotFoundError(definition_id, version) from exc
        return await self.start(definition, context)

    async def run(self, instance_id: int) -> WorkflowInstance:
        """Execute steps while the instance is running.

        Fails the instance with a ``WorkflowLogicError`` once ``max_steps_per_run``
        steps have executed in this call.

        Returns:
            The instance after the run.
        """
        instance = await self.get_instance(instance_id)
        executed = 0
        while instance.status is WorkflowStatus.RUNNING:
            if executed >= self.max_steps_per_run:
                error = WorkflowLogicError(
                    f"Exceeded {self.max_steps_per_run} steps in a single run", instance.current_step_id
                )
                return await self._fail(instance, str(error))
            await self.execute_step(instance_id)
            executed += 1
            instance = await self.get_instance(instance_id)
        return instance

    async def execute_step(self, instance_id: int) -> StepResult:
        """Execute the current step of a running instance and apply its result.

        Raises:
            InvalidTransitionError: If the instance is not running.
        """
        instance = await self.get_instance(instance_id)
        if instance.status is not WorkflowStatus.RUNNING:
            raise InvalidTransitionError(str(instance.status), str(WorkflowStatus.RUNNING), "instance is not running")
        definition = self.get_definition(instance)
        step = definition.get_step(instance.current_step_id or "")
        if step is None:
            message = f"Step '{instance.current_step_id}' not found in workflow '{definition.id}'"
            await self._fail(instance, message)
            return StepResult.fail(message)

        scope = await self.build_scope(instance)
        status = await self._step_status_for(instance.id, step.id, step.name)
        now = self._clock()

        if step.conditions and not evaluate_groups(step.conditions, scope):
            await self._update_step(
                status, StepStatus.SKIPPED, "Entry conditions not met; step skipped", completed_at=to_iso(now)
            )
            logger.info("Instance %d skipped step '%s'", instance.id, step.id)
            await self._advance(instance, definition, step, scope)
            return StepResult()

        await self._update_step(
            status, StepStatus.IN_PROGRESS, "Step started", started_at=to_iso(status.started_at or now)
        )
        handler = self.handlers.get(step.type)
        if handler is None:
            result = StepResult.fail(f"No handler registered for step type '{step.type}'")
        else:
            context = StepContext(
                instance=instance,
                step=step,
                scope=scope,
                store=self.store,
                now=now,
                tasks=self.tasks,
                approvals=self.approvals,
                notifier=self.notifier,
            )
            try:
                result = await handler(context)
            except Exception as exc:
                logger.warning("Step '%s' of instance %d raised: %s", step.id, instance.id, exc)
                result = StepResult.fail(str(exc))

        if result.output_variables:
            instance.variables.update(result.output_variables)
            await self.store.update_record(
                Collection.WORKFLOW_INSTANCES, instance.id, {"variables": instance.variables}
            )
        if result.created_item_ids:
            created = status.created_item_ids + [i for i in result.created_item_ids if i not in status.created_item_ids]
            await self.store.update_record(Collection.WORKFLOW_STEP_STATUSES, status.id, {"created_item_ids": created})

        if not result.success or result.next_action is NextAction.FAIL:
            await self._fail(instance, result.error or f"Step '{step.id}' failed", status)
        elif result.next_action is NextAction.WAIT:
            item_type = result.wait_for_item_type or WaitItemType.INPUT
            wait = WaitCriteria(
                item_type=item_type,
                item_ids=result.wait_for_item_ids,
                condition=result.wait_condition,
                resume_at=result.resume_at,
            )
            await self._update_step(
                status, StepStatus.WAITING, f"Waiting for {item_type} ({wait.condition})", wait=wait.to_dict()
            )
            await self._transition(instance, WAIT_STATUS_FOR_ITEM[item_type])
        else:
            await self._update_step(status, StepStatus.COMPLETED, "Step completed", completed_at=to_iso(now))
            await self._advance(instance, definition, step, await self.build_scope(instance))
        return result

    async def build_scope(self, instance: WorkflowInstance, result: Mapping[str, Any] | None = None) -> dict[str, Any]:
        """Expression scope for an instance.

        Bare names resolve to variables; ``process``, ``context``, ``variables``
        and, while branching, ``result`` are available as roots.
        """
        process = await self.store.get_record(Collection.PROCESSES, instance.process_id) or {}
        scope: dict[str, Any] = {
            **instance.variables,
            "process": process,
            "context": instance.context,
            "variables": instance.variables,
        }
        if result is not None:
            scope["result"] = dict(result)
        return scope

    # Completion of waiting steps

    async def complete_waiting_step(
        self,
        instance_id: int,
        step_id: str,
        result_payload: Mapping[str, Any] | None = None,
    ) -> CompletionResult:
        """Finish a waiting step with an external result and run the instance on.

        The call is a successful no-op when the step is already finished, when the
        instance has moved past the step, or when another completion of the same
        step is in flight.

        Raises:
            InvalidTransitionError: If the step is not waiting or the instance is not
                in the waiting state matching the step's wait.
        """
        key = (instance_id, step_id)
        if key in self._in_flight:
            instance = await self.get_instance(instance_id)
            logger.debug("Completion of step '%s' on instance %d already in flight", step_id, instance_id)
            return CompletionResult(True, instance_id, step_id, instance.status, True, "completion already in progress")
        self._in_flight.add(key)
        try:
            return await self._complete_waiting_step(instance_id, step_id, dict(result_payload or {}))
        finally:
            self._in_flight.discard(key)

    async def _complete_waiting_step(self, instance_id: int, step_id: str, payload: dict[str, Any]) -> CompletionResult:
        instance = await self.get_instance(instance_id)
        status = await self.get_step_status(instance_id, step_id)
        if status is not None and status.is_finished:
            logger.debug("Step '%s' of instance %d already %s", step_id, instance_id, status.status)
            return CompletionResult(True, instance_id, step_id, instance.status, True, f"step already {status.status}")
        if status is not None and instance.current_step_id != step_id and not instance.is_terminal:
            logger.debug("Instance %d has moved past step '%s'", instance_id, step_id)
            return CompletionResult(True, instance_id, step_id, instance.status, True, "instance moved past step")
        if status is None or status.status is not StepStatus.WAITING or status.wait is None:
            raise InvalidTransitionError(
                str(instance.status), str(WorkflowStatus.RUNNING), f"step '{step_id}' is not waiting"
            )
        expected = WAIT_STATUS_FOR_ITEM[status.wait.item_type]
        if instance.status is not expected:
            raise InvalidTransitionError(
                str(instance.status), str(WorkflowStatus.RUNNING), f"step '{step_id}' waits for {status.wait.item_type}"
            )

        definition = self.get_definition(instance)
        step = definition.get_step(step_id)
        await self._update_step(
            status,
            StepStatus.COMPLETED,
            "Step completed by external result",
            result=payload,
            completed_at=to_iso(self._clock()),
        )
        changes: dict[str, Any] = {}
        output_variable = step.config.get("output_variable") if step is not None else None
        if output_variable:
            instance.variables[str(output_variable)] = payload
            changes["variables"] = instance.variables

        if step is not None and step.type is StepType.APPROVAL and payload.get("approved") is False:
            scope = await self.build_scope(instance, payload)
            if not WorkflowGraph(definition).routes_outcome(step, scope):
                # Resuming re-runs the approval step with a fresh chain.
                reason = f"Approval {payload.get('approval_status') or 'not granted'}; instance held for review"
                await self.append_step_log(instance_id, step_id, reason, level="warning")
                logger.info("Holding instance %d after step '%s': %s", instance_id, step_id, reason)
                instance = await self._transition(
                    instance, WorkflowStatus.PAUSED, reason=reason, paused_from=str(WorkflowStatus.RUNNING), **changes
                )
                return CompletionResult(True, instance_id, step_id, instance.status)

        instance = await self._transition(instance, WorkflowStatus.RUNNING, **changes)
        logger.info("Resumed instance %d after step '%s'", instance_id, step_id)

        if step is None:
            instance = await self._fail(instance, f"Step '{step_id}' not found in workflow '{definition.id}'")
        else:
            await self._advance(instance, definition, step, await self.build_scope(instance, payload))
            instance = await self.run(instance_id)
        return CompletionResult(True, instance_id, step_id, instance.status)

    # Administrative transitions

    async def pause(self, instance_id: int, reason: str | None = None) -> WorkflowInstance:
        """Pause a running or waiting instance, remembering the status to restore.

        Raises:
            InvalidTransitionError: If the instance is neither running nor waiting.
        """
        instance = await self.get_instance(instance_id)
        if instance.status is not WorkflowStatus.RUNNING and not instance.is_waiting:
            raise InvalidTransitionError(str(instance.status), str(WorkflowStatus.PAUSED), reason)
        if instance.current_step_id:
            await self.append_step_log(instance_id, instance.current_step_id, f"Paused: {reason or 'no reason given'}")
        return await self._transition(instance, WorkflowStatus.PAUSED, reason=reason, paused_from=str(instance.status))

    async def resume(self, instance_id: int) -> WorkflowInstance:
        """Resume a paused instance into the status it was paused from.

        Raises:
            InvalidTransitionError: If the instance is not paused.
        """
        instance = await self.get_instance(instance_id)
        if instance.status is not WorkflowStatus.PAUSED:
            raise InvalidTransitionError(str(instance.status), str(WorkflowStatus.RUNNING), "instance is not paused")
        target = instance.paused_from or WorkflowStatus.RUNNING
        instance = await self._transition(instance, target, paused_from=None)
        if target is WorkflowStatus.RUNNING:
            instance = await self.run(instance_id)
        return instance

    async def cancel(self, instance_id: int, reason: str | None = None) -> WorkflowInstance:
        """Cancel an instance that has not yet terminated.

        Raises:
            InvalidTransitionError: If the instance is already terminal.
        """
        instance = await self.get_instance(instance_id)
        if instance.status in TERMINAL_WORKFLOW_STATUSES:
            raise InvalidTransitionError(str(instance.status), str(WorkflowStatus.CANCELLED), reason)
        if instance.current_step_id:
            status = await self.get_step_status(instance_id, instance.current_step_id)
            if status is not None and not status.is_finished and status.status is not StepStatus.FAILED:
                await self._update_step(
                    status,
                    StepStatus.CANCELLED,
                    f"Cancelled: {reason or 'no reason given'}",
                    completed_at=to_iso(self._clock()),
                )
        return await self._transition(instance, WorkflowStatus.CANCELLED, reason=reason, error_message=reason)

    # Internals

    async def _transition(
        self,
        instance: WorkflowInstance,
        target: WorkflowStatus,
        *,
        reason: str | None = None,
        **changes: Any,
    ) -> WorkflowInstance:
        if target not in _ALLOWED_TRANSITIONS[instance.status]:
            raise InvalidTransitionError(str(instance.status), str(target), f"workflow instance {instance.id}")
        fields: dict[str, Any] = {"status": str(target), **changes}
        if target in TERMINAL_WORKFLOW_STATUSES:
            fields["completed_at"] = to_iso(self._clock())
        await self.store.update_record(Collection.WORKFLOW_INSTANCES, instance.id, fields)
        previous = instance.status
        updated = await self.get_instance(instance.id)
        logger.info("Workflow instance %d: %s -> %s", instance.id, previous, target)
        await self._emit(updated, previous, reason)
        return updated

    async def _advance(
        self,
        instance: WorkflowInstance,
        definition: WorkflowDefinition,
        step: StepDefinition,
        scope: Mapping[str, Any],
    ) -> WorkflowInstance:
        next_step = WorkflowGraph(definition).get_next_step(step, scope)
        if next_step is None:
            return await self._transition(instance, WorkflowStatus.COMPLETED, current_step_id=None)
        if instance.status is WorkflowStatus.RUNNING:
            await self.store.update_record(
                Collection.WORKFLOW_INSTANCES, instance.id, {"current_step_id": next_step.id}
            )
            instance.current_step_id = next_step.id
            return instance
        return await self._transition(instance, WorkflowStatus.RUNNING, current_step_id=next_step.id)

    async def _fail(
        self,
        instance: WorkflowInstance,
        message: str,
        status: WorkflowStepStatus | None = None,
    ) -> WorkflowInstance:
        if status is None and instance.current_step_id:
            status = await self.get_step_status(instance.id, instance.current_step_id)
        if status is not None:
            await self._update_step(
                status,
                StepStatus.FAILED,
                message,
                level="error",
                error_message=message,
                completed_at=to_iso(self._clock()),
            )
        logger.warning("Workflow instance %d failed: %s", instance.id, message)
        return await self._transition(instance, WorkflowStatus.FAILED, reason=message, error_message=message)

    async def _step_status_for(self, instance_id: int, step_id: str, step_name: str = "") -> WorkflowStepStatus:
        existing = await self.get_step_status(instance_id, step_id)
        if existing is not None:
            return existing
        status = WorkflowStepStatus(id=0, instance_id=instance_id, step_id=step_id, step_name=step_name)
        status.id = await self.store.add_record(Collection.WORKFLOW_STEP_STATUSES, status.to_fields())
        return status

    async def _update_step(
        self,
        status: WorkflowStepStatus,
        step_status: StepStatus,
        message: str,
        *,
        level: str = "info",
        **changes: Any,
    ) -> None:
        status.status = step_status
        status.log.append(StepLogEntry(at=self._clock(), message=message, level=level))
        await self.store.update_record(
            Collection.WORKFLOW_STEP_STATUSES,
            status.id,
            {"status": str(step_status), "log": [entry.to_dict() for entry in status.log], **changes},
        )

    async def _emit(
        self,
        instance: WorkflowInstance,
        previous: WorkflowStatus | None,
        reason: str | None = None,
    ) -> None:
        if self.events is None:
            return
        await self.events.emit(
            WorkflowStatusChanged(
                timestamp=self._clock(),
                process_id=instance.process_id,
                instance_id=instance.id,
                previous_status=previous,
                status=instance.status,
                step_id=instance.current_step_id,
                reason=reason,
            )
        )
