"""Resume coordinator.

Detects when the external work a waiting instance is suspended on is done and
completes the waiting step. Two paths lead there:

- events: task and approval-chain completions published on the event bus;
- polling: a periodic sweep over waiting instances that re-derives the same
  predicate, catching anything an event missed and timed input waits.

Both paths end in ``WorkflowInstanceEngine.complete_waiting_step``, which is
idempotent, so racing paths are harmless. Resumes run through
``run_with_retry``; exhausted resumes are dead-lettered.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from collections import Counter
from dataclasses import asdict, dataclass, field
from datetime import datetime
from typing import TYPE_CHECKING, Any

from litestar_lifecycle.core.clock import Clock, to_iso, utc_now
from litestar_lifecycle.core.events import ApprovalStatusChanged, TaskStatusChanged
from litestar_lifecycle.core.models import TaskAssignment
from litestar_lifecycle.core.types import (
    WAITING_WORKFLOW_STATUSES,
    ApprovalStatus,
    Collection,
    TaskStatus,
    WaitCondition,
    WaitItemType,
)
from litestar_lifecycle.engine.handlers import tasks_satisfy
from litestar_lifecycle.engine.instance import WAIT_STATUS_FOR_ITEM
from litestar_lifecycle.exceptions import (
    ApprovalNotFoundError,
    RecordNotFoundError,
)
from litestar_lifecycle.sync.retry import NON_RETRYABLE_ERRORS, RetryPolicy, run_with_retry

if TYPE_CHECKING:
    from litestar_lifecycle.approvals.engine import ApprovalChainEngine
    from litestar_lifecycle.core.events import LifecycleEventBus
    from litestar_lifecycle.core.models import DeadLetterItem, WorkflowInstance, WorkflowStepStatus
    from litestar_lifecycle.engine.instance import WorkflowInstanceEngine
    from litestar_lifecycle.sync.dead_letter import DeadLetterQueue, DeadLetterReplayer

__all__ = ["RESUME_OPERATION_TYPES", "PollResult", "PollingConfig", "ResumeCoordinator", "WaitStatus"]

logger = logging.getLogger(__name__)

_DONE_TASK_STATUSES = (TaskStatus.COMPLETED, TaskStatus.SKIPPED)

_WAITING_FOR_LABEL = {
    WaitItemType.TASK: "tasks",
    WaitItemType.APPROVAL: "approvals",
    WaitItemType.INPUT: "input",
}

RESUME_OPERATION_TYPES = {kind: f"workflow-resume-{kind}" for kind in WaitItemType}
"""Dead-letter operation type per kind of awaited work."""


@dataclass
class PollingConfig:
    """Polling sweep configuration.

    Attributes:
        enabled: Whether ``start_polling`` starts the timer.
        interval: Seconds between sweeps.
        max_concurrent_resumes: Resumes running at once within one sweep.
        batch_size: Waiting instances examined per sweep.
    """

    enabled: bool = True
    interval: float = 30.0
    max_concurrent_resumes: int = 5
    batch_size: int = 50


@dataclass
class PollResult:
    """Outcome of one polling sweep."""

    skipped: bool = False
    checked: int = 0
    resumed: int = 0
    failed: int = 0
    resumed_instance_ids: list[int] = field(default_factory=list)
    started_at: datetime | None = None
    finished_at: datetime | None = None


@dataclass
class WaitStatus:
    """Read-only view of what a waiting instance is waiting for.

    Attributes:
        instance_id: The instance.
        status: Its current status.
        step_id: The waiting step, if any.
        waiting_for: ``tasks``, ``approvals``, ``input`` or ``none``.
        pending_items: Ids of awaited items that are not yet done.
        can_resume: Whether the wait condition currently holds.
        blocked_reason: Why the instance cannot resume yet.
    """

    instance_id: int
    status: str
    step_id: str | None = None
    waiting_for: str = "none"
    pending_items: list[int] = field(default_factory=list)
    can_resume: bool = False
    blocked_reason: str | None = None
    resume_payload: dict[str, Any] = field(default_factory=dict, repr=False)


class ResumeCoordinator:
    """Resumes waiting workflow instances once their awaited work is done.

    Attributes:
        engine: The workflow instance engine.
        approvals: Approval engine used to inspect awaited chains.
        dead_letters: Queue receiving exhausted resumes.
        config: Polling configuration.
        retry_policy: Retry policy for resumes.

    Example:
        >>> coordinator = ResumeCoordinator(engine, approvals, dead_letters)
        >>> coordinator.subscribe(bus)
        >>> await coordinator.start_polling()
    """

    def __init__(
        self,
        engine: WorkflowInstanceEngine,
        approvals: ApprovalChainEngine | None = None,
        dead_letters: DeadLetterQueue | None = None,
        *,
        config: PollingConfig | None = None,
        retry_policy: RetryPolicy | None = None,
        clock: Clock = utc_now,
    ) -> None:
        self.engine = engine
        self.approvals = approvals
        self.dead_letters = dead_letters
        self.config = config or PollingConfig()
        self.retry_policy = retry_policy or RetryPolicy()
        self._clock = clock
        self._polling_task: asyncio.Task[None] | None = None
        self._sweeping = False
        self._last_result: PollResult | None = None
        self._cursor = 0

    # Wiring

    def subscribe(self, events: LifecycleEventBus) -> None:
        """Listen for task and approval completions on ``events``."""
        events.subscribe(TaskStatusChanged, self._handle_task_event)
        events.subscribe(ApprovalStatusChanged, self._handle_approval_event)

    def register_replay_handlers(self, replayer: DeadLetterReplayer) -> None:
        """Register the replay handler for every resume operation type."""
        for operation_type in RESUME_OPERATION_TYPES.values():
            replayer.register(operation_type, self.replay_resume)

    async def _handle_task_event(self, event: TaskStatusChanged) -> None:
        if event.status in _DONE_TASK_STATUSES and event.workflow_instance_id is not None:
            await self.on_task_completed(event.task_id)

    async def _handle_approval_event(self, event: ApprovalStatusChanged) -> None:
        if event.chain_closed and event.workflow_instance_id is not None:
            await self.on_approval_completed(event.chain_id)

    # Event-driven path

    async def on_task_completed(self, task_id: int) -> bool:
        """Resume the instance waiting on ``task_id`` if its wait condition now holds.

        Returns:
            Whether a resume was performed.
        """
        record = await self.engine.store.get_record(Collection.TASK_ASSIGNMENTS, task_id)
        if record is None or record.get("workflow_instance_id") is None:
            return False
        return await self._resume_if_ready(int(record["workflow_instance_id"]), WaitItemType.TASK, task_id)

    async def on_approval_completed(self, chain_id: int) -> bool:
        """Resume the instance waiting on ``chain_id`` if its wait condition now holds.

        Returns:
            Whether a resume was performed.
        """
        if self.approvals is None:
            return False
        try:
            chain = await self.approvals.get_chain(chain_id)
        except ApprovalNotFoundError:
            return False
        if chain.workflow_instance_id is None:
            return False
        return await self._resume_if_ready(chain.workflow_instance_id, WaitItemType.APPROVAL, chain_id)

    async def _resume_if_ready(self, instance_id: int, item_type: WaitItemType, item_id: int) -> bool:
        try:
            instance = await self.engine.get_instance(instance_id)
        except RecordNotFoundError:
            return False
        if instance.status is not WAIT_STATUS_FOR_ITEM[item_type]:
            logger.debug("Instance %d is %s; ignoring %s %d", instance_id, instance.status, item_type, item_id)
            return False
        step_status = await self._waiting_step(instance)
        if step_status is None or step_status.wait is None or step_status.wait.item_type is not item_type:
            return False
        if item_id not in step_status.wait.item_ids and item_id not in step_status.created_item_ids:
            logger.debug("%s %d is not part of the current wait of instance %d", item_type, item_id, instance_id)
            return False
        wait_status = await self._evaluate(instance, step_status)
        if not wait_status.can_resume:
            logger.debug("Instance %d still waiting: %s", instance_id, wait_status.blocked_reason)
            return False
        return await self._resume(instance, step_status, wait_status.resume_payload)

    # Wait evaluation

    async def _waiting_step(self, instance: WorkflowInstance) -> WorkflowStepStatus | None:
        if instance.current_step_id is None:
            return None
        return await self.engine.get_step_status(instance.id, instance.current_step_id)

    async def _evaluate(self, instance: WorkflowInstance, step_status: WorkflowStepStatus | None) -> WaitStatus:
        result = WaitStatus(instance_id=instance.id, status=str(instance.status), step_id=instance.current_step_id)
        if instance.status not in WAITING_WORKFLOW_STATUSES or step_status is None or step_status.wait is None:
            result.blocked_reason = f"Instance is {instance.status}"
            return result
        wait = step_status.wait
        result.waiting_for = _WAITING_FOR_LABEL[wait.item_type]
        item_ids = wait.item_ids or step_status.created_item_ids

        if wait.item_type is WaitItemType.TASK:
            tasks = []
            for task_id in item_ids:
                record = await self.engine.store.get_record(Collection.TASK_ASSIGNMENTS, task_id)
                if record is not None:
                    tasks.append(TaskAssignment.from_record(record))
            live = [task for task in tasks if not task.is_deleted]
            done = [task.id for task in live if task.status in _DONE_TASK_STATUSES]
            result.pending_items = [task.id for task in live if task.status not in _DONE_TASK_STATUSES]
            result.can_resume = tasks_satisfy(tasks, wait.condition)
            result.resume_payload = {"completed_task_ids": done, "condition": str(wait.condition)}
            if not result.can_resume:
                result.blocked_reason = f"Waiting for {len(result.pending_items)} task(s) ({wait.condition})"
        elif wait.item_type is WaitItemType.APPROVAL:
            closed = []
            for chain_id in item_ids:
                if self.approvals is None:
                    break
                try:
                    chain = await self.approvals.get_chain(chain_id)
                except ApprovalNotFoundError:
                    continue
                if chain.is_active:
                    result.pending_items.append(chain.id)
                else:
                    closed.append(chain)
            if wait.condition is WaitCondition.ANY:
                result.can_resume = bool(closed)
            else:
                result.can_resume = bool(closed) and not result.pending_items
            if closed:
                decided = closed[-1]
                result.resume_payload = {
                    "chain_id": decided.id,
                    "approval_status": str(decided.overall_status),
                    "approved": decided.overall_status is ApprovalStatus.APPROVED,
                }
            if not result.can_resume:
                result.blocked_reason = "Waiting for approval chain to close"
        else:
            now = self._clock()
            result.can_resume = wait.resume_at is not None and wait.resume_at <= now
            result.resume_payload = {"resumed_at": to_iso(now)}
            if not result.can_resume:
                result.blocked_reason = (
                    f"Waiting until {to_iso(wait.resume_at)}" if wait.resume_at else "Waiting for external input"
                )
        return result

    # Resume with retry

    async def _resume(
        self, instance: WorkflowInstance, step_status: WorkflowStepStatus, payload: dict[str, Any]
    ) -> bool:
        kind = step_status.wait.item_type if step_status.wait is not None else WaitItemType.INPUT
        step_id = step_status.step_id

        async def _attempt() -> Any:
            return await self.engine.complete_waiting_step(instance.id, step_id, payload)

        async def _on_failure(attempt: int, exc: Exception) -> None:
            try:
                await self.engine.record_retry(instance.id, step_id, attempt, str(exc))
            except Exception as log_exc:
                logger.warning("Could not log resume attempt on instance %d: %s", instance.id, log_exc)

        try:
            outcome = await run_with_retry(
                _attempt,
                RESUME_OPERATION_TYPES[kind],
                {"instance_id": instance.id, "step_id": step_id, "payload": payload},
                self.retry_policy,
                self.dead_letters,
                context={"process_id": instance.process_id, "source": "resume_coordinator"},
                on_failure=_on_failure,
            )
        except NON_RETRYABLE_ERRORS as exc:
            logger.debug("Resume of instance %d skipped: %s", instance.id, exc)
            return False
        if outcome.success:
            logger.info("Resumed instance %d from step '%s' (%s)", instance.id, step_id, kind)
        return outcome.success

    async def replay_resume(self, item: DeadLetterItem) -> None:
        """Replay a dead-lettered resume."""
        payload = item.payload
        await self.engine.complete_waiting_step(
            int(payload["instance_id"]), str(payload["step_id"]), payload.get("payload")
        )

    # Polling path

    @property
    def is_polling(self) -> bool:
        return self._polling_task is not None and not self._polling_task.done()

    @property
    def is_sweeping(self) -> bool:
        return self._sweeping

    async def poll(self) -> PollResult:
        """Run one sweep over waiting instances.

        A sweep that starts while another one is running returns immediately with
        ``skipped`` set.
        """
        if self._sweeping:
            return PollResult(skipped=True)
        self._sweeping = True
        result = PollResult(started_at=self._clock())
        try:
            waiting = await self._next_batch()
            result.checked = len(waiting)

            semaphore = asyncio.Semaphore(max(1, self.config.max_concurrent_resumes))

            async def _check(instance: WorkflowInstance) -> bool:
                async with semaphore:
                    step_status = await self._waiting_step(instance)
                    wait_status = await self._evaluate(instance, step_status)
                    if not wait_status.can_resume or step_status is None:
                        return False
                    return await self._resume(instance, step_status, wait_status.resume_payload)

            outcomes = await asyncio.gather(*(_check(instance) for instance in waiting), return_exceptions=True)
            for instance, outcome in zip(waiting, outcomes):
                if isinstance(outcome, BaseException):
                    result.failed += 1
                    logger.warning("Polling could not resume instance %d: %s", instance.id, outcome)
                elif outcome:
                    result.resumed += 1
                    result.resumed_instance_ids.append(instance.id)
        finally:
            self._sweeping = False
            result.finished_at = self._clock()
            self._last_result = result
        if result.resumed or result.failed:
            logger.info(
                "Polling sweep resumed %d and failed %d of %d instances", result.resumed, result.failed, result.checked
            )
        return result

    async def _waiting_instances(self, after_id: int | None = None) -> list[WorkflowInstance]:
        waiting: list[WorkflowInstance] = []
        for status in sorted(WAITING_WORKFLOW_STATUSES):
            waiting.extend(await self.engine.list_instances(status, after_id=after_id, top=self.config.batch_size))
        return sorted(waiting, key=lambda instance: instance.id)[: self.config.batch_size]

    async def _next_batch(self) -> list[WorkflowInstance]:
        """Pick the next ``batch_size`` waiting instances after the previous sweep's last one.

        The listing wraps around to the oldest instances, so waits that never
        resume cannot keep newer instances out of every sweep.
        """
        batch = await self._waiting_instances(after_id=self._cursor)
        if len(batch) < self.config.batch_size and self._cursor:
            seen = {instance.id for instance in batch}
            batch.extend(instance for instance in await self._waiting_instances() if instance.id not in seen)
            batch = batch[: self.config.batch_size]
        self._cursor = batch[-1].id if batch else 0
        return batch

    async def _poll_loop(self) -> None:
        while True:
            try:
                await self.poll()
            except Exception:
                logger.exception("Polling sweep failed")
            await asyncio.sleep(self.config.interval)

    async def start_polling(self) -> bool:
        """Start the polling timer. Does nothing if disabled or already running.

        Returns:
            Whether a timer is running after the call.
        """
        if not self.config.enabled:
            return False
        if not self.is_polling:
            self._polling_task = asyncio.create_task(self._poll_loop())
            logger.info("Started workflow polling every %.0f seconds", self.config.interval)
        return True

    async def stop_polling(self) -> None:
        """Cancel the polling timer if it is running."""
        task, self._polling_task = self._polling_task, None
        if task is None:
            return
        task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task
        logger.info("Stopped workflow polling")

    async def force_resume_all_stuck_workflows(self) -> PollResult:
        """Run a sweep immediately."""
        return await self.poll()

    # Diagnostics

    def get_polling_status(self) -> dict[str, Any]:
        return {
            "enabled": self.config.enabled,
            "is_active": self.is_polling,
            "is_sweeping": self._sweeping,
            "config": asdict(self.config),
            "last_result": asdict(self._last_result) if self._last_result else None,
        }

    async def get_workflow_wait_status(self, instance_id: int) -> WaitStatus:
        """Describe what an instance is waiting for, without changing anything.

        Raises:
            WorkflowInstanceNotFoundError: If the instance does not exist.
        """
        instance = await self.engine.get_instance(instance_id)
        return await self._evaluate(instance, await self._waiting_step(instance))

    async def get_waiting_counts(self) -> dict[str, int]:
        """Number of instances in each waiting status."""
        counts: Counter[str] = Counter()
        for status in sorted(WAITING_WORKFLOW_STATUSES):
            counts[str(status)] = len(await self.engine.list_instances(status))
        return dict(counts)
