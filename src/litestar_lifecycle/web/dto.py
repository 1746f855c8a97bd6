"""Data Transfer Objects for the lifecycle web API.

This module defines DTOs for serializing and deserializing lifecycle data
in REST API requests and responses.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import TYPE_CHECKING, Any

from litestar_lifecycle.core.references import reference_id

if TYPE_CHECKING:
    from litestar_lifecycle.core.definition import WorkflowDefinition
    from litestar_lifecycle.core.models import (
        ApprovalChain,
        ApprovalRequest,
        DeadLetterItem,
        TaskAssignment,
        WorkflowInstance,
        WorkflowStepStatus,
    )
    from litestar_lifecycle.tasks.dependencies import DependencyInfo

__all__ = [
    "ApprovalChainDTO",
    "ApprovalDecisionDTO",
    "ApprovalRequestDTO",
    "CompleteStepDTO",
    "CreateTaskDTO",
    "DeadLetterItemDTO",
    "DelegateApprovalDTO",
    "DependencyInfoDTO",
    "InitiateApprovalDTO",
    "ProcessStatusChangeDTO",
    "ProcessStatusResultDTO",
    "SetDependencyDTO",
    "StartWorkflowDTO",
    "StepStatusDTO",
    "TaskDTO",
    "WorkflowDefinitionDTO",
    "WorkflowInstanceDTO",
    "WorkflowInstanceDetailDTO",
]


@dataclass
class StartWorkflowDTO:
    """DTO for starting a new workflow instance.

    Attributes:
        definition_id: Id of the registered workflow definition.
        process_id: The HR process the instance drives.
        version: Optional definition version; the latest when omitted.
        context: Additional start context (for example ``employee_id``).
    """

    definition_id: str
    process_id: int
    version: str | None = None
    context: dict[str, Any] | None = None


@dataclass
class CompleteStepDTO:
    """DTO for completing a waiting step with a result payload."""

    step_id: str
    result: dict[str, Any] | None = None


@dataclass
class WorkflowDefinitionDTO:
    """DTO for workflow definition metadata."""

    id: str
    name: str
    version: str
    description: str
    process_type: str | None
    steps: list[str]

    @classmethod
    def from_definition(cls, definition: WorkflowDefinition) -> WorkflowDefinitionDTO:
        return cls(
            id=definition.id,
            name=definition.name,
            version=definition.version,
            description=definition.description,
            process_type=definition.process_type,
            steps=[step.id for step in definition.ordered_steps],
        )


@dataclass
class WorkflowInstanceDTO:
    """DTO for workflow instance summary.

    Attributes:
        id: Instance ID.
        definition_id: Id of the workflow definition.
        definition_version: Version of the workflow definition.
        process_id: The process the instance drives.
        status: Current execution status.
        current_step_id: Step the instance is on (if any).
        error_message: Failure message for a failed instance.
        created_at: When the instance was created.
        completed_at: When the instance reached a terminal status.
    """

    id: int
    definition_id: str
    definition_version: str | None
    process_id: int
    status: str
    current_step_id: str | None
    error_message: str | None = None
    created_at: datetime | None = None
    completed_at: datetime | None = None

    @classmethod
    def from_instance(cls, instance: WorkflowInstance) -> WorkflowInstanceDTO:
        return cls(
            id=instance.id,
            definition_id=instance.definition_id,
            definition_version=instance.definition_version,
            process_id=instance.process_id,
            status=str(instance.status),
            current_step_id=instance.current_step_id,
            error_message=instance.error_message,
            created_at=instance.created_at,
            completed_at=instance.completed_at,
        )


@dataclass
class StepStatusDTO:
    """DTO for the execution record of one step."""

    step_id: str
    step_name: str
    status: str
    waiting_for: str | None = None
    wait_item_ids: list[int] = field(default_factory=list)
    retry_count: int = 0
    error_message: str | None = None
    started_at: datetime | None = None
    completed_at: datetime | None = None
    log: list[dict[str, Any]] = field(default_factory=list)

    @classmethod
    def from_step_status(cls, step_status: WorkflowStepStatus) -> StepStatusDTO:
        wait = step_status.wait
        return cls(
            step_id=step_status.step_id,
            step_name=step_status.step_name,
            status=str(step_status.status),
            waiting_for=str(wait.item_type) if wait is not None else None,
            wait_item_ids=list(wait.item_ids) if wait is not None else [],
            retry_count=step_status.retry_count,
            error_message=step_status.error_message,
            started_at=step_status.started_at,
            completed_at=step_status.completed_at,
            log=[entry.to_dict() for entry in step_status.log],
        )


@dataclass
class WorkflowInstanceDetailDTO:
    """DTO for detailed workflow instance information.

    Extends WorkflowInstanceDTO with variables and step history.
    """

    id: int
    definition_id: str
    process_id: int
    status: str
    current_step_id: str | None
    variables: dict[str, Any]
    steps: list[StepStatusDTO]
    error_message: str | None = None
    created_at: datetime | None = None
    completed_at: datetime | None = None


@dataclass
class CreateTaskDTO:
    """DTO for creating a task assignment."""

    process_id: int
    title: str
    assignee_id: int | None = None
    due_date: datetime | None = None
    depends_on_task_id: int | None = None


@dataclass
class SetDependencyDTO:
    """DTO for setting or clearing a task's prerequisite."""

    depends_on_task_id: int | None = None


@dataclass
class TaskDTO:
    """DTO for a task assignment."""

    id: int
    process_id: int
    title: str
    status: str
    assignee_id: int | None
    depends_on_task_id: int | None
    is_blocked: bool
    blocked_reason: str | None = None
    workflow_instance_id: int | None = None
    due_date: datetime | None = None
    completed_at: datetime | None = None

    @classmethod
    def from_task(cls, task: TaskAssignment) -> TaskDTO:
        return cls(
            id=task.id,
            process_id=task.process_id,
            title=task.title,
            status=str(task.status),
            assignee_id=task.assignee_id,
            depends_on_task_id=reference_id(task.depends_on),
            is_blocked=task.is_blocked,
            blocked_reason=task.blocked_reason,
            workflow_instance_id=task.workflow_instance_id,
            due_date=task.due_date,
            completed_at=task.completed_at,
        )


@dataclass
class DependencyInfoDTO:
    """DTO for the dependency view of one task."""

    task_id: int
    depends_on_task_id: int | None
    blocked_by_task_id: int | None
    blocking_task_ids: list[int]
    is_blocked: bool
    can_start: bool

    @classmethod
    def from_info(cls, info: DependencyInfo) -> DependencyInfoDTO:
        return cls(
            task_id=info.task.id,
            depends_on_task_id=info.depends_on.id if info.depends_on else None,
            blocked_by_task_id=info.blocked_by.id if info.blocked_by else None,
            blocking_task_ids=[task.id for task in info.blocking],
            is_blocked=info.is_blocked,
            can_start=info.can_start,
        )


@dataclass
class InitiateApprovalDTO:
    """DTO for starting an approval chain.

    Attributes:
        process_id: The process being approved.
        levels: Level definitions (``approval_type``, ``approver_ids``, ``due_days``,
            ``alternate_approver_ids``).
        name: Display name of the chain.
        escalation_action: What happens to overdue requests.
        require_comments: Whether a rejection must carry comments.
        allow_delegation: Whether approvers may delegate.
    """

    process_id: int
    levels: list[dict[str, Any]]
    name: str = "Approval"
    escalation_action: str = "notify"
    require_comments: bool = False
    allow_delegation: bool = True


@dataclass
class ApprovalChainDTO:
    """DTO for an approval chain."""

    id: int
    process_id: int
    name: str
    current_level: int
    level_count: int
    overall_status: str
    is_active: bool
    started_at: datetime | None = None
    completed_at: datetime | None = None

    @classmethod
    def from_chain(cls, chain: ApprovalChain) -> ApprovalChainDTO:
        return cls(
            id=chain.id,
            process_id=chain.process_id,
            name=chain.name,
            current_level=chain.current_level,
            level_count=len(chain.levels),
            overall_status=str(chain.overall_status),
            is_active=chain.is_active,
            started_at=chain.started_at,
            completed_at=chain.completed_at,
        )


@dataclass
class ApprovalRequestDTO:
    """DTO for a single approval request."""

    id: int
    chain_id: int
    process_id: int
    level: int
    sequence: int
    approver_id: int
    status: str
    original_approver_id: int | None = None
    due_date: datetime | None = None
    completed_at: datetime | None = None
    comments: str | None = None
    is_overdue: bool = False
    escalation_level: int = 0

    @classmethod
    def from_request(cls, request: ApprovalRequest) -> ApprovalRequestDTO:
        return cls(
            id=request.id,
            chain_id=request.chain_id,
            process_id=request.process_id,
            level=request.level,
            sequence=request.sequence,
            approver_id=request.approver_id,
            status=str(request.status),
            original_approver_id=request.original_approver_id,
            due_date=request.due_date,
            completed_at=request.completed_at,
            comments=request.comments,
            is_overdue=request.is_overdue,
            escalation_level=request.escalation_level,
        )


@dataclass
class ApprovalDecisionDTO:
    """DTO for an approve or reject decision."""

    decision: str
    comments: str | None = None
    decided_by: int | None = None


@dataclass
class DelegateApprovalDTO:
    """DTO for delegating an approval request."""

    delegate_to_id: int
    reason: str | None = None
    delegated_by: int | None = None


@dataclass
class ProcessStatusChangeDTO:
    """DTO for a process status change made outside the workflow."""

    status: str
    previous_status: str | None = None
    reason: str | None = None


@dataclass
class ProcessStatusResultDTO:
    """DTO describing the effect of a process status change."""

    process_id: int
    status: str
    workflow_action: str | None = None


@dataclass
class DeadLetterItemDTO:
    """DTO for a dead-letter item."""

    id: int
    operation_type: str
    status: str
    error: str
    attempts: int
    payload: dict[str, Any]
    context: dict[str, Any]
    created_at: datetime | None = None
    last_attempt_at: datetime | None = None
    resolved_at: datetime | None = None
    resolved_by: str | None = None

    @classmethod
    def from_item(cls, item: DeadLetterItem) -> DeadLetterItemDTO:
        return cls(
            id=item.id,
            operation_type=item.operation_type,
            status=str(item.status),
            error=item.error,
            attempts=item.attempts,
            payload=item.payload,
            context=item.context,
            created_at=item.created_at,
            last_attempt_at=item.last_attempt_at,
            resolved_at=item.resolved_at,
            resolved_by=item.resolved_by,
        )
