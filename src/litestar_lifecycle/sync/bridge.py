"""Status synchronization between workflows, processes and approvals.

The bridge keeps three aggregates consistent through three lookup tables:

- workflow status -> process status, applied on ``WorkflowStatusChanged``;
- approval status -> process status, applied on ``ApprovalStatusChanged``;
- process status -> workflow action, applied by ``apply_process_status``.

Every sync write goes through ``run_with_retry`` and lands in the dead-letter
queue when it cannot be applied, so a stuck sync never blocks the business
write that triggered it.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from litestar_lifecycle.core.events import ApprovalStatusChanged, WorkflowStatusChanged
from litestar_lifecycle.core.types import (
    TERMINAL_WORKFLOW_STATUSES,
    WAITING_WORKFLOW_STATUSES,
    ApprovalStatus,
    Collection,
    ProcessStatus,
    WorkflowAction,
    WorkflowStatus,
)
from litestar_lifecycle.exceptions import LifecycleError, SyncDivergenceError
from litestar_lifecycle.sync.retry import NON_RETRYABLE_ERRORS, RetryOutcome, RetryPolicy, run_with_retry

if TYPE_CHECKING:
    from litestar_lifecycle.approvals.engine import ApprovalChainEngine
    from litestar_lifecycle.core.events import LifecycleEventBus
    from litestar_lifecycle.core.models import DeadLetterItem, WorkflowInstance
    from litestar_lifecycle.core.protocols import RecordStore
    from litestar_lifecycle.engine.instance import WorkflowInstanceEngine
    from litestar_lifecycle.sync.dead_letter import DeadLetterQueue, DeadLetterReplayer

__all__ = [
    "APPROVAL_TO_PROCESS_STATUS",
    "PROCESS_STATUS_TO_WORKFLOW_ACTION",
    "SYNC_PROCESS_STATUS",
    "SYNC_WORKFLOW_ACTION",
    "WORKFLOW_TO_PROCESS_STATUS",
    "StatusSyncBridge",
]

logger = logging.getLogger(__name__)

SYNC_PROCESS_STATUS = "sync-process-status"
SYNC_WORKFLOW_ACTION = "sync-workflow-action"

WORKFLOW_TO_PROCESS_STATUS: dict[WorkflowStatus, ProcessStatus] = {
    WorkflowStatus.PENDING: ProcessStatus.PENDING,
    WorkflowStatus.RUNNING: ProcessStatus.IN_PROGRESS,
    **dict.fromkeys(WAITING_WORKFLOW_STATUSES, ProcessStatus.IN_PROGRESS),
    WorkflowStatus.PAUSED: ProcessStatus.ON_HOLD,
    WorkflowStatus.COMPLETED: ProcessStatus.COMPLETED,
    WorkflowStatus.FAILED: ProcessStatus.CANCELLED,
    WorkflowStatus.CANCELLED: ProcessStatus.CANCELLED,
}

APPROVAL_TO_PROCESS_STATUS: dict[ApprovalStatus, ProcessStatus] = {
    ApprovalStatus.APPROVED: ProcessStatus.IN_PROGRESS,
    ApprovalStatus.REJECTED: ProcessStatus.ON_HOLD,
    ApprovalStatus.ESCALATED: ProcessStatus.PENDING_APPROVAL,
    ApprovalStatus.CANCELLED: ProcessStatus.CANCELLED,
    ApprovalStatus.EXPIRED: ProcessStatus.ON_HOLD,
}

PROCESS_STATUS_TO_WORKFLOW_ACTION: dict[ProcessStatus, WorkflowAction] = {
    ProcessStatus.ON_HOLD: WorkflowAction.PAUSE,
    ProcessStatus.CANCELLED: WorkflowAction.CANCEL,
    ProcessStatus.IN_PROGRESS: WorkflowAction.RESUME,
}


class StatusSyncBridge:
    """Propagates status changes between paired aggregates.

    Attributes:
        store: Record store holding the ``processes`` collection.
        engine: Workflow engine receiving pause, cancel and resume actions.
        approvals: Approval engine whose pending requests are cancelled with the process.
        dead_letters: Queue receiving syncs that exhausted their retries.
        retry_policy: Retry policy for sync writes.

    Example:
        >>> bridge = StatusSyncBridge(store, engine, approvals, dead_letters)
        >>> bridge.subscribe(bus)
        >>> await bridge.apply_process_status(7, ProcessStatus.ON_HOLD, reason="Missing documents")
    """

    def __init__(
        self,
        store: RecordStore,
        engine: WorkflowInstanceEngine | None = None,
        approvals: ApprovalChainEngine | None = None,
        dead_letters: DeadLetterQueue | None = None,
        *,
        retry_policy: RetryPolicy | None = None,
    ) -> None:
        self.store = store
        self.engine = engine
        self.approvals = approvals
        self.dead_letters = dead_letters
        self.retry_policy = retry_policy or RetryPolicy()

    def subscribe(self, events: LifecycleEventBus) -> None:
        """Listen for workflow and approval status changes on ``events``."""
        events.subscribe(WorkflowStatusChanged, self._on_workflow_status)
        events.subscribe(ApprovalStatusChanged, self._on_approval_status)

    def register_replay_handlers(self, replayer: DeadLetterReplayer) -> None:
        replayer.register(SYNC_PROCESS_STATUS, self.replay_process_status)
        replayer.register(SYNC_WORKFLOW_ACTION, self.replay_workflow_action)

    async def _on_workflow_status(self, event: WorkflowStatusChanged) -> None:
        target = WORKFLOW_TO_PROCESS_STATUS.get(event.status)
        if target is None or event.process_id is None:
            return
        await self.sync_process_status(
            event.process_id,
            target,
            context={"source": "workflow", "instance_id": event.instance_id, "workflow_status": str(event.status)},
        )

    async def _on_approval_status(self, event: ApprovalStatusChanged) -> None:
        target = APPROVAL_TO_PROCESS_STATUS.get(event.status)
        if target is None or event.process_id is None:
            return
        await self.sync_process_status(
            event.process_id,
            target,
            context={"source": "approval", "chain_id": event.chain_id, "approval_status": str(event.status)},
        )

    # Process status

    async def sync_process_status(
        self,
        process_id: int,
        status: ProcessStatus,
        *,
        context: dict[str, Any] | None = None,
    ) -> RetryOutcome[bool] | None:
        """Write ``status`` to a process with retry and dead-letter hand-off.

        Returns:
            The retry outcome; its value tells whether a write happened. ``None``
            when a non-retryable error stopped the sync.
        """
        try:
            return await run_with_retry(
                lambda: self._write_process_status(process_id, status),
                SYNC_PROCESS_STATUS,
                {"process_id": process_id, "status": str(status)},
                self.retry_policy,
                self.dead_letters,
                context={"process_id": process_id, **(context or {})},
            )
        except NON_RETRYABLE_ERRORS as exc:
            logger.warning("Process %d status sync to %s rejected: %s", process_id, status, exc)
            return None

    async def _write_process_status(self, process_id: int, status: ProcessStatus) -> bool:
        record = await self.store.get_record(Collection.PROCESSES, process_id, select=["status"])
        if record is None:
            raise SyncDivergenceError(Collection.PROCESSES, process_id, str(status), None)
        if record.get("status") == status:
            return False
        await self.store.update_record(Collection.PROCESSES, process_id, {"status": str(status)})
        written = await self.store.get_record(Collection.PROCESSES, process_id, select=["status"])
        actual = written.get("status") if written else None
        if actual != status:
            raise SyncDivergenceError(Collection.PROCESSES, process_id, str(status), actual)
        logger.info("Process %d status set to %s", process_id, status)
        return True

    async def replay_process_status(self, item: DeadLetterItem) -> None:
        await self._write_process_status(int(item.payload["process_id"]), ProcessStatus(item.payload["status"]))

    # Workflow actions

    async def apply_process_status(
        self,
        process_id: int,
        new_status: ProcessStatus,
        previous_status: ProcessStatus | None = None,
        reason: str | None = None,
    ) -> WorkflowAction | None:
        """Persist a process status change and apply its workflow action.

        ``ON_HOLD`` pauses the process's live workflow instance, ``CANCELLED``
        cancels it (and the process's pending approvals), and ``IN_PROGRESS``
        resumes it when it is paused.

        Args:
            process_id: The process.
            new_status: Its new status.
            previous_status: Its status before the change, when known to the caller.
            reason: Reason recorded on a cancellation or pause.

        Returns:
            The workflow action applied, if any.
        """
        if previous_status is None:
            current = await self.store.get_record(Collection.PROCESSES, process_id, select=["status"])
            previous_status = ProcessStatus(current["status"]) if current and current.get("status") else None
        await self.sync_process_status(process_id, new_status, context={"source": "process"})

        applied: WorkflowAction | None = None
        action = PROCESS_STATUS_TO_WORKFLOW_ACTION.get(new_status)
        instance = await self._live_instance(process_id)
        if action is not None and instance is not None:
            if action is not WorkflowAction.RESUME or instance.status is WorkflowStatus.PAUSED:
                outcome = await self.sync_workflow_action(instance.id, action, reason)
                if outcome is not None and outcome.success:
                    applied = action

        if new_status is ProcessStatus.CANCELLED and self.approvals is not None:
            await self.approvals.cancel_pending_for_process(process_id, reason)
        logger.info("Process %d moved %s -> %s (workflow action: %s)", process_id, previous_status, new_status, applied)
        return applied

    async def _live_instance(self, process_id: int) -> WorkflowInstance | None:
        if self.engine is None:
            return None
        instances = await self.engine.list_instances(process_id=process_id)
        live = [instance for instance in instances if instance.status not in TERMINAL_WORKFLOW_STATUSES]
        return live[-1] if live else None

    async def sync_workflow_action(
        self,
        instance_id: int,
        action: WorkflowAction,
        reason: str | None = None,
    ) -> RetryOutcome[bool] | None:
        """Apply an administrative action to an instance with retry and dead-letter hand-off."""
        try:
            return await run_with_retry(
                lambda: self._apply_workflow_action(instance_id, action, reason),
                SYNC_WORKFLOW_ACTION,
                {"instance_id": instance_id, "action": str(action), "reason": reason},
                self.retry_policy,
                self.dead_letters,
                context={"instance_id": instance_id},
            )
        except LifecycleError as exc:
            logger.warning("Workflow action %s on instance %d rejected: %s", action, instance_id, exc)
            return None

    async def _apply_workflow_action(self, instance_id: int, action: WorkflowAction, reason: str | None) -> bool:
        if self.engine is None:
            return False
        instance = await self.engine.get_instance(instance_id)
        if action is WorkflowAction.PAUSE:
            if instance.status is not WorkflowStatus.RUNNING and not instance.is_waiting:
                return False
            await self.engine.pause(instance_id, reason)
            expected = {WorkflowStatus.PAUSED}
        elif action is WorkflowAction.CANCEL:
            if instance.is_terminal:
                return False
            await self.engine.cancel(instance_id, reason)
            expected = {WorkflowStatus.CANCELLED}
        else:
            if instance.status is not WorkflowStatus.PAUSED:
                return False
            await self.engine.resume(instance_id)
            expected = {WorkflowStatus.RUNNING, *WAITING_WORKFLOW_STATUSES, *TERMINAL_WORKFLOW_STATUSES}

        updated = await self.engine.get_instance(instance_id)
        if updated.status not in expected:
            raise SyncDivergenceError(Collection.WORKFLOW_INSTANCES, instance_id, str(action), str(updated.status))
        return True

    async def replay_workflow_action(self, item: DeadLetterItem) -> None:
        payload = item.payload
        await self._apply_workflow_action(
            int(payload["instance_id"]), WorkflowAction(payload["action"]), payload.get("reason")
        )
