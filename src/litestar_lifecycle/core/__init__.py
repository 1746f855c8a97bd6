"""Core domain module for litestar-lifecycle.

This module exports the fundamental building blocks: status types, the stored
models, workflow definitions, expressions, and lifecycle events.
"""

from __future__ import annotations

from litestar_lifecycle.core.definition import Branch, StepDefinition, Transition, WorkflowDefinition
from litestar_lifecycle.core.events import (
    ApprovalStatusChanged,
    LifecycleEvent,
    LifecycleEventBus,
    TaskStatusChanged,
    WorkflowStatusChanged,
)
from litestar_lifecycle.core.expressions import Condition, ConditionGroup, ConditionOperator, LogicalOperator
from litestar_lifecycle.core.models import (
    ApprovalChain,
    ApprovalLevel,
    ApprovalRequest,
    DeadLetterItem,
    TaskAssignment,
    WorkflowInstance,
    WorkflowStepStatus,
)
from litestar_lifecycle.core.protocols import NotificationService, RecordStore
from litestar_lifecycle.core.types import (
    ApprovalStatus,
    ApprovalType,
    Collection,
    ProcessStatus,
    StepStatus,
    StepType,
    TaskStatus,
    WorkflowStatus,
)

__all__ = [
    "ApprovalChain",
    "ApprovalLevel",
    "ApprovalRequest",
    "ApprovalStatus",
    "ApprovalStatusChanged",
    "ApprovalType",
    "Branch",
    "Collection",
    "Condition",
    "ConditionGroup",
    "ConditionOperator",
    "DeadLetterItem",
    "LifecycleEvent",
    "LifecycleEventBus",
    "LogicalOperator",
    "NotificationService",
    "ProcessStatus",
    "RecordStore",
    "StepDefinition",
    "StepStatus",
    "StepType",
    "TaskAssignment",
    "TaskStatus",
    "TaskStatusChanged",
    "Transition",
    "WorkflowDefinition",
    "WorkflowInstance",
    "WorkflowStatus",
    "WorkflowStatusChanged",
    "WorkflowStepStatus",
]
