"""Component wiring for litestar-lifecycle.

``build_runtime`` assembles every lifecycle component around one record store
and one ``LifecycleEventBus``. The Litestar plugin uses it, and so can scripts
or workers that run without an HTTP application.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

from litestar_lifecycle.approvals.delegation import DelegationService
from litestar_lifecycle.approvals.engine import ApprovalChainEngine
from litestar_lifecycle.core.clock import utc_now
from litestar_lifecycle.core.events import LifecycleEventBus
from litestar_lifecycle.core.protocols import NotificationService, RecordStore
from litestar_lifecycle.engine.instance import WorkflowInstanceEngine
from litestar_lifecycle.engine.registry import WorkflowRegistry
from litestar_lifecycle.engine.resume import PollingConfig, ResumeCoordinator
from litestar_lifecycle.notifications import LoggingNotificationService
from litestar_lifecycle.store.memory import InMemoryRecordStore
from litestar_lifecycle.sync.bridge import StatusSyncBridge
from litestar_lifecycle.sync.dead_letter import DeadLetterQueue, DeadLetterReplayer, ReplayPolicy
from litestar_lifecycle.sync.retry import RetryPolicy
from litestar_lifecycle.tasks.dependencies import DependencyGraphEngine
from litestar_lifecycle.tasks.service import TaskAssignmentService

if TYPE_CHECKING:
    from collections.abc import Iterable

    from litestar_lifecycle.core.clock import Clock
    from litestar_lifecycle.core.definition import WorkflowDefinition

__all__ = ["LifecycleRuntime", "build_runtime"]


@dataclass
class LifecycleRuntime:
    """Every lifecycle component, wired to a shared store and event bus."""

    store: RecordStore
    notifier: NotificationService
    events: LifecycleEventBus
    dependencies: DependencyGraphEngine
    tasks: TaskAssignmentService
    delegation: DelegationService
    approvals: ApprovalChainEngine
    registry: WorkflowRegistry
    engine: WorkflowInstanceEngine
    dead_letters: DeadLetterQueue
    replayer: DeadLetterReplayer
    bridge: StatusSyncBridge
    coordinator: ResumeCoordinator

    async def startup(self, *, start_polling: bool = True) -> None:
        """Reload the dead-letter queue and start the resume sweep."""
        await self.dead_letters.initialize()
        if start_polling and self.coordinator.config.enabled:
            await self.coordinator.start_polling()

    async def shutdown(self) -> None:
        await self.coordinator.stop_polling()


def build_runtime(
    store: RecordStore | None = None,
    notifier: NotificationService | None = None,
    *,
    definitions: Iterable[WorkflowDefinition] = (),
    retry_policy: RetryPolicy | None = None,
    replay_policy: ReplayPolicy | None = None,
    polling: PollingConfig | None = None,
    skip_unblocks_dependents: bool = True,
    strict_escalation: bool = False,
    max_steps_per_run: int = 100,
    clock: Clock = utc_now,
) -> LifecycleRuntime:
    """Create and wire the lifecycle components.

    Task and approval services emit onto the shared bus; the status sync bridge
    and the resume coordinator subscribe to it, and both register their
    dead-letter replay handlers.

    Args:
        store: Record store; an ``InMemoryRecordStore`` when omitted.
        notifier: Notification service; a ``LoggingNotificationService`` when omitted.
        definitions: Workflow definitions to register up front.
        retry_policy: Retry policy for sync writes and resumes.
        replay_policy: Dead-letter replay configuration.
        polling: Resume sweep configuration.
        skip_unblocks_dependents: Whether a skipped task unblocks its dependents.
        strict_escalation: Whether an unresolvable escalation target raises.
        max_steps_per_run: Step limit for one engine run.
        clock: Time source shared by every component.

    Returns:
        The wired runtime.

    Example:
        >>> runtime = build_runtime(definitions=[onboarding])
        >>> instance_id = await runtime.engine.start(onboarding, {"process_id": 7})
    """
    store = store if store is not None else InMemoryRecordStore()
    notifier = notifier if notifier is not None else LoggingNotificationService()
    retry_policy = retry_policy or RetryPolicy()
    events = LifecycleEventBus()

    dependencies = DependencyGraphEngine(store, skip_unblocks=skip_unblocks_dependents)
    tasks = TaskAssignmentService(store, dependencies, events, notifier, clock=clock)
    delegation = DelegationService(store, clock=clock)
    approvals = ApprovalChainEngine(
        store,
        notifier,
        events,
        clock=clock,
        strict_escalation=strict_escalation,
        delegation=delegation,
    )
    registry = WorkflowRegistry()
    for definition in definitions:
        registry.register(definition)
    engine = WorkflowInstanceEngine(
        store,
        registry,
        tasks=tasks,
        approvals=approvals,
        notifier=notifier,
        events=events,
        clock=clock,
        max_steps_per_run=max_steps_per_run,
    )
    dead_letters = DeadLetterQueue(store, clock=clock)
    replayer = DeadLetterReplayer(dead_letters, replay_policy, clock=clock)
    bridge = StatusSyncBridge(store, engine, approvals, dead_letters, retry_policy=retry_policy)
    coordinator = ResumeCoordinator(
        engine,
        approvals,
        dead_letters,
        config=polling,
        retry_policy=retry_policy,
        clock=clock,
    )

    # The bridge subscribes first so process status reflects an approval outcome
    # before the resumed workflow moves on.
    bridge.subscribe(events)
    coordinator.subscribe(events)
    bridge.register_replay_handlers(replayer)
    coordinator.register_replay_handlers(replayer)

    return LifecycleRuntime(
        store=store,
        notifier=notifier,
        events=events,
        dependencies=dependencies,
        tasks=tasks,
        delegation=delegation,
        approvals=approvals,
        registry=registry,
        engine=engine,
        dead_letters=dead_letters,
        replayer=replayer,
        bridge=bridge,
        coordinator=coordinator,
    )
