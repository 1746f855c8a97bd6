"""Litestar Lifecycle - HR lifecycle orchestration for Litestar.

This package coordinates the long-running business processes of an HR system
(onboarding, offboarding, transfers) on top of a generic record store.

Key Features:
    - Versioned workflow definitions with conditions, branches and waits
    - Task assignments with depends-on chains and blocked-state tracking
    - Multi-level approval chains with delegation and escalation
    - Event and polling driven resumption of waiting workflows
    - Status synchronization with retry and a dead-letter queue

Example:
    >>> from litestar_lifecycle import build_runtime, WorkflowDefinition
    >>>
    >>> onboarding = WorkflowDefinition.from_dict(raw_definition)
    >>> runtime = build_runtime(definitions=[onboarding])
    >>> instance_id = await runtime.engine.start(onboarding, {"process_id": 7})
"""

from __future__ import annotations

from litestar_lifecycle.__metadata__ import __project__, __version__
from litestar_lifecycle.approvals import ApprovalChainEngine, DelegationService
from litestar_lifecycle.core.definition import StepDefinition, Transition, WorkflowDefinition
from litestar_lifecycle.core.events import LifecycleEventBus
from litestar_lifecycle.engine import ResumeCoordinator, WorkflowInstanceEngine, WorkflowRegistry
from litestar_lifecycle.exceptions import (
    ApprovalAlreadyDecidedError,
    ApprovalChainActiveError,
    ApprovalNotFoundError,
    CyclicDependencyError,
    DeadLetterItemNotFoundError,
    InvalidTransitionError,
    LifecycleError,
    MissingApproverError,
    RecordNotFoundError,
    SelfDependencyError,
    SyncDivergenceError,
    TaskNotFoundError,
    TransientStoreError,
    UnauthorizedApproverError,
    ValidationError,
    WorkflowInstanceNotFoundError,
    WorkflowLogicError,
    WorkflowNotFoundError,
    WorkflowValidationError,
)
from litestar_lifecycle.plugin import LifecyclePlugin, LifecyclePluginConfig
from litestar_lifecycle.runtime import LifecycleRuntime, build_runtime
from litestar_lifecycle.store import InMemoryRecordStore
from litestar_lifecycle.sync import DeadLetterQueue, StatusSyncBridge
from litestar_lifecycle.tasks import DependencyGraphEngine, TaskAssignmentService

__all__ = (
    "ApprovalAlreadyDecidedError",
    "ApprovalChainActiveError",
    "ApprovalChainEngine",
    "ApprovalNotFoundError",
    "CyclicDependencyError",
    "DeadLetterItemNotFoundError",
    "DeadLetterQueue",
    "DelegationService",
    "DependencyGraphEngine",
    "InMemoryRecordStore",
    "InvalidTransitionError",
    "LifecycleError",
    "LifecycleEventBus",
    "LifecyclePlugin",
    "LifecyclePluginConfig",
    "LifecycleRuntime",
    "MissingApproverError",
    "RecordNotFoundError",
    "ResumeCoordinator",
    "SelfDependencyError",
    "StatusSyncBridge",
    "StepDefinition",
    "SyncDivergenceError",
    "TaskAssignmentService",
    "TaskNotFoundError",
    "Transition",
    "TransientStoreError",
    "UnauthorizedApproverError",
    "ValidationError",
    "WorkflowDefinition",
    "WorkflowInstanceEngine",
    "WorkflowInstanceNotFoundError",
    "WorkflowLogicError",
    "WorkflowNotFoundError",
    "WorkflowRegistry",
    "WorkflowValidationError",
    "__project__",
    "__version__",
    "build_runtime",
)
