"""Core type definitions for litestar-lifecycle.

This module defines the fundamental enums and type aliases used throughout
the lifecycle system: workflow, task, approval, process and dead-letter states,
the closed set of step types, and the record collection names.
"""

from __future__ import annotations

from enum import StrEnum, auto
from typing import Any, TypeAlias

__all__ = [
    "ACTIONABLE_APPROVAL_STATUSES",
    "TERMINAL_APPROVAL_STATUSES",
    "TERMINAL_WORKFLOW_STATUSES",
    "WAITING_WORKFLOW_STATUSES",
    "ApprovalDecision",
    "ApprovalStatus",
    "ApprovalType",
    "Collection",
    "DeadLetterStatus",
    "EscalationAction",
    "NextAction",
    "ProcessStatus",
    "Record",
    "StepStatus",
    "StepType",
    "TaskStatus",
    "TransitionType",
    "WaitCondition",
    "WaitItemType",
    "WorkflowAction",
    "WorkflowStatus",
]


class Collection(StrEnum):
    """Names of the record collections used by the lifecycle components."""

    WORKFLOW_INSTANCES = auto()
    WORKFLOW_STEP_STATUSES = auto()
    TASK_ASSIGNMENTS = auto()
    APPROVAL_CHAINS = auto()
    APPROVALS = auto()
    APPROVAL_HISTORY = auto()
    DELEGATION_RULES = auto()
    DEAD_LETTERS = auto()
    PROCESSES = auto()
    EMPLOYEES = auto()


class StepType(StrEnum):
    """Closed set of step types a workflow definition may use.

    Attributes:
        CREATE_TASK: Create a single task assignment.
        ASSIGN_TASKS: Create a batch of task assignments, optionally with dependencies.
        WAIT_FOR_TASKS: Suspend until tasks created by earlier steps are done.
        APPROVAL: Start an approval chain and suspend until it closes.
        NOTIFICATION: Send a notification and continue.
        ACTION: Create or update a record from field-update descriptors.
        SET_VARIABLE: Store a value in the instance variables.
        WAIT: Suspend for external input or until a point in time.
    """

    CREATE_TASK = auto()
    ASSIGN_TASKS = auto()
    WAIT_FOR_TASKS = auto()
    APPROVAL = auto()
    NOTIFICATION = auto()
    ACTION = auto()
    SET_VARIABLE = auto()
    WAIT = auto()


class StepStatus(StrEnum):
    """Execution status of a workflow step.

    Attributes:
        PENDING: Step has not yet started.
        IN_PROGRESS: Step handler is running.
        WAITING: Step is suspended on external work.
        COMPLETED: Step completed successfully.
        SKIPPED: Step entry conditions were not met.
        FAILED: Step handler reported or raised an error.
        CANCELLED: Instance was cancelled while the step was open.
    """

    PENDING = auto()
    IN_PROGRESS = auto()
    WAITING = auto()
    COMPLETED = auto()
    SKIPPED = auto()
    FAILED = auto()
    CANCELLED = auto()


class WorkflowStatus(StrEnum):
    """Overall status of a workflow instance.

    Attributes:
        PENDING: Instance has been created but not yet started.
        RUNNING: Instance is actively executing steps.
        WAITING_FOR_TASK: Instance is suspended until tasks are done.
        WAITING_FOR_APPROVAL: Instance is suspended until an approval chain closes.
        WAITING_FOR_INPUT: Instance is suspended on external input or a timer.
        PAUSED: Instance was paused administratively.
        COMPLETED: Instance finished successfully.
        FAILED: Instance terminated due to an error.
        CANCELLED: Instance was cancelled.
    """

    PENDING = auto()
    RUNNING = auto()
    WAITING_FOR_TASK = auto()
    WAITING_FOR_APPROVAL = auto()
    WAITING_FOR_INPUT = auto()
    PAUSED = auto()
    COMPLETED = auto()
    FAILED = auto()
    CANCELLED = auto()


class NextAction(StrEnum):
    """What the engine does after a step handler returns."""

    CONTINUE = auto()
    WAIT = auto()
    FAIL = auto()


class WaitItemType(StrEnum):
    """Kind of external work a waiting step is suspended on."""

    TASK = auto()
    APPROVAL = auto()
    INPUT = auto()


class WaitCondition(StrEnum):
    """Predicate governing when a waiting step may resume.

    Attributes:
        ALL: Every awaited item is done.
        ANY: At least one awaited item is done.
        ALL_LEVELS: Every level of the awaited approval chain has closed.
    """

    ALL = auto()
    ANY = auto()
    ALL_LEVELS = auto()


class TransitionType(StrEnum):
    """How a step chooses its successor once it completes."""

    NEXT = auto()
    GOTO = auto()
    BRANCH = auto()
    END = auto()


class TaskStatus(StrEnum):
    """Status of a task assignment."""

    NOT_STARTED = auto()
    IN_PROGRESS = auto()
    COMPLETED = auto()
    SKIPPED = auto()


class ApprovalStatus(StrEnum):
    """Status of an approval request or the overall status of a chain."""

    PENDING = auto()
    QUEUED = auto()
    APPROVED = auto()
    REJECTED = auto()
    DELEGATED = auto()
    ESCALATED = auto()
    CANCELLED = auto()
    SKIPPED = auto()
    EXPIRED = auto()


class ApprovalType(StrEnum):
    """How the requests of one approval level resolve.

    Attributes:
        SEQUENTIAL: Approvers act one at a time in order; any rejection fails the level.
        PARALLEL: All approvers act concurrently; approved only if nobody rejects.
        FIRST_APPROVER: The first response decides the level.
    """

    SEQUENTIAL = auto()
    PARALLEL = auto()
    FIRST_APPROVER = auto()


class ApprovalDecision(StrEnum):
    """Decision an approver submits."""

    APPROVE = auto()
    REJECT = auto()


class EscalationAction(StrEnum):
    """What happens when an approval request passes its due date."""

    NOTIFY = auto()
    AUTO_APPROVE = auto()
    ASSIGN_TO_MANAGER = auto()
    ASSIGN_TO_ALTERNATE = auto()


class ProcessStatus(StrEnum):
    """Status of the business process a workflow drives."""

    PENDING = auto()
    IN_PROGRESS = auto()
    ON_HOLD = auto()
    PENDING_APPROVAL = auto()
    COMPLETED = auto()
    CANCELLED = auto()


class WorkflowAction(StrEnum):
    """Administrative action applied to a workflow when its process status changes."""

    PAUSE = auto()
    CANCEL = auto()
    RESUME = auto()


class DeadLetterStatus(StrEnum):
    """Lifecycle of a dead-letter item."""

    PENDING = auto()
    PROCESSING = auto()
    RESOLVED = auto()
    ABANDONED = auto()


WAITING_WORKFLOW_STATUSES = frozenset(
    {WorkflowStatus.WAITING_FOR_TASK, WorkflowStatus.WAITING_FOR_APPROVAL, WorkflowStatus.WAITING_FOR_INPUT}
)
"""Statuses in which an instance is suspended on external work."""

TERMINAL_WORKFLOW_STATUSES = frozenset({WorkflowStatus.COMPLETED, WorkflowStatus.FAILED, WorkflowStatus.CANCELLED})
"""Statuses from which an instance never leaves."""

ACTIONABLE_APPROVAL_STATUSES = frozenset({ApprovalStatus.PENDING, ApprovalStatus.DELEGATED, ApprovalStatus.ESCALATED})
"""Request statuses that accept a decision."""

TERMINAL_APPROVAL_STATUSES = frozenset(
    {
        ApprovalStatus.APPROVED,
        ApprovalStatus.REJECTED,
        ApprovalStatus.CANCELLED,
        ApprovalStatus.SKIPPED,
        ApprovalStatus.EXPIRED,
    }
)
"""Request statuses that never change again."""

# Type aliases for record data
Record: TypeAlias = dict[str, Any]
"""Type alias for a record as returned by a record store."""
