"""Domain events and the in-process event bus.

Components publish status changes as events instead of calling the components
that depend on them: the workflow engine does not know about the status sync
bridge, and the approval engine does not know about the resume coordinator.
Subscribers are awaited in subscription order.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from datetime import datetime
from typing import Any, TypeVar

from litestar_lifecycle.core.types import ApprovalStatus, TaskStatus, WorkflowStatus

__all__ = [
    "ApprovalStatusChanged",
    "EventHandler",
    "LifecycleEvent",
    "LifecycleEventBus",
    "TaskStatusChanged",
    "WorkflowStatusChanged",
]

logger = logging.getLogger(__name__)

E = TypeVar("E", bound="LifecycleEvent")
EventHandler = Callable[[Any], Awaitable[None]]


@dataclass
class LifecycleEvent:
    """Base class for all lifecycle events.

    Attributes:
        timestamp: When the event occurred.
        process_id: The business process the event concerns, if any.
    """

    timestamp: datetime
    process_id: int | None


@dataclass
class WorkflowStatusChanged(LifecycleEvent):
    """Event emitted whenever a workflow instance changes status.

    Attributes:
        instance_id: The workflow instance.
        previous_status: Status before the change.
        status: Status after the change.
        step_id: Current step at the time of the change.
        reason: Optional explanation (cancellation reason, failure message).

    Example:
        >>> event = WorkflowStatusChanged(
        ...     timestamp=utc_now(),
        ...     process_id=7,
        ...     instance_id=3,
        ...     previous_status=WorkflowStatus.RUNNING,
        ...     status=WorkflowStatus.WAITING_FOR_TASK,
        ...     step_id="wait_for_it_setup",
        ... )
    """

    instance_id: int
    previous_status: WorkflowStatus | None
    status: WorkflowStatus
    step_id: str | None = None
    reason: str | None = None


@dataclass
class TaskStatusChanged(LifecycleEvent):
    """Event emitted when a task assignment is completed or skipped.

    Attributes:
        task_id: The task assignment.
        previous_status: Status before the change.
        status: Status after the change.
        workflow_instance_id: Instance that created the task, if any.
    """

    task_id: int
    previous_status: TaskStatus
    status: TaskStatus
    workflow_instance_id: int | None = None


@dataclass
class ApprovalStatusChanged(LifecycleEvent):
    """Event emitted when an approval request escalates or a chain closes.

    Attributes:
        chain_id: The approval chain.
        status: The status to propagate: the chain outcome when ``chain_closed``
            is set, otherwise the request status.
        approval_id: The request concerned, for request-level changes.
        chain_closed: Whether the chain reached a terminal status.
        workflow_instance_id: Instance waiting on the chain, if any.
        workflow_step_id: Step waiting on the chain, if any.
    """

    chain_id: int
    status: ApprovalStatus
    approval_id: int | None = None
    chain_closed: bool = False
    workflow_instance_id: int | None = None
    workflow_step_id: str | None = None


class LifecycleEventBus:
    """Minimal async publish/subscribe dispatcher keyed by event class.

    A failing subscriber is logged and does not prevent the remaining subscribers
    from running, nor does it fail the publisher's operation.
    """

    def __init__(self) -> None:
        """Initialize a bus with no subscribers."""
        self._handlers: dict[type[LifecycleEvent], list[EventHandler]] = defaultdict(list)

    def subscribe(self, event_type: type[E], handler: Callable[[E], Awaitable[None]]) -> None:
        """Register ``handler`` for events of exactly ``event_type``."""
        if handler not in self._handlers[event_type]:
            self._handlers[event_type].append(handler)

    def unsubscribe(self, event_type: type[E], handler: Callable[[E], Awaitable[None]]) -> bool:
        """Remove a handler. Returns True if it was registered."""
        handlers = self._handlers.get(event_type, [])
        if handler in handlers:
            handlers.remove(handler)
            return True
        return False

    async def emit(self, event: LifecycleEvent) -> None:
        """Deliver ``event`` to its subscribers in subscription order."""
        for handler in list(self._handlers.get(type(event), ())):
            try:
                await handler(event)
            except Exception:
                logger.exception("Subscriber %r failed handling %s", handler, type(event).__name__)
