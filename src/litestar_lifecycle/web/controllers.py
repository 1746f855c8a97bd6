"""REST API controllers for lifecycle management.

This module provides five controller classes:
- WorkflowInstanceController: Start, monitor, and control workflow instances
- TaskController: Manage task assignments and their dependencies
- ApprovalController: Initiate approval chains and act on requests
- ProcessController: Apply process status changes to workflows and approvals
- AdminController: Polling sweeps, escalations, expirations, and the dead-letter queue
"""

from __future__ import annotations

from enum import StrEnum
from typing import Any, ClassVar, TypeVar

from litestar import Controller, delete, get, post, put
from litestar.params import Parameter

from litestar_lifecycle.approvals.engine import ApprovalChainEngine  # noqa: TC001 - needed for DI
from litestar_lifecycle.core.types import (
    ApprovalDecision,
    DeadLetterStatus,
    EscalationAction,
    ProcessStatus,
    WorkflowStatus,
)
from litestar_lifecycle.engine.instance import WorkflowInstanceEngine  # noqa: TC001 - needed for DI
from litestar_lifecycle.engine.registry import WorkflowRegistry  # noqa: TC001 - needed for DI
from litestar_lifecycle.engine.resume import PollResult, ResumeCoordinator, WaitStatus  # noqa: TC001 - needed for DI
from litestar_lifecycle.exceptions import ValidationError
from litestar_lifecycle.sync.bridge import StatusSyncBridge  # noqa: TC001 - needed for DI
from litestar_lifecycle.sync.dead_letter import (  # noqa: TC001 - needed for DI
    DeadLetterQueue,
    DeadLetterReplayer,
    DeadLetterStats,
    ReplaySummary,
)
from litestar_lifecycle.tasks.service import TaskAssignmentService  # noqa: TC001 - needed for DI
from litestar_lifecycle.web.dto import (
    ApprovalChainDTO,
    ApprovalDecisionDTO,
    ApprovalRequestDTO,
    CompleteStepDTO,
    CreateTaskDTO,
    DeadLetterItemDTO,
    DelegateApprovalDTO,
    DependencyInfoDTO,
    InitiateApprovalDTO,
    ProcessStatusChangeDTO,
    ProcessStatusResultDTO,
    SetDependencyDTO,
    StartWorkflowDTO,
    StepStatusDTO,
    TaskDTO,
    WorkflowDefinitionDTO,
    WorkflowInstanceDetailDTO,
    WorkflowInstanceDTO,
)

__all__ = [
    "AdminController",
    "ApprovalController",
    "ProcessController",
    "TaskController",
    "WorkflowInstanceController",
]

E = TypeVar("E", bound=StrEnum)


def _parse_enum(enum_type: type[E], value: str, field_name: str) -> E:
    try:
        return enum_type(value)
    except ValueError as e:
        allowed = ", ".join(member.value for member in enum_type)
        raise ValidationError(f"Invalid {field_name} '{value}'; expected one of: {allowed}") from e


class WorkflowInstanceController(Controller):
    """API controller for workflow definitions and instances.

    Tags: Workflows
    """

    path = "/workflows"
    tags: ClassVar[list[str]] = ["Workflows"]

    @get("/definitions")
    async def list_definitions(
        self,
        workflow_registry: WorkflowRegistry,
        active_only: bool = Parameter(
            default=True,
            description="Only return the latest version of each definition",
        ),
    ) -> list[WorkflowDefinitionDTO]:
        """List registered workflow definitions."""
        return [
            WorkflowDefinitionDTO.from_definition(definition)
            for definition in workflow_registry.list_definitions(active_only=active_only)
        ]

    @post("/instances", dto=None, return_dto=None)
    async def start_workflow(
        self,
        data: StartWorkflowDTO,
        workflow_engine: WorkflowInstanceEngine,
    ) -> WorkflowInstanceDTO:
        """Start a new workflow instance for a process.

        The instance runs until its first wait, so the response already shows
        whether it is waiting, completed or failed.

        Args:
            data: Workflow start parameters.
            workflow_engine: Injected workflow engine.

        Returns:
            Workflow instance DTO.
        """
        context = {**(data.context or {}), "process_id": data.process_id}
        instance_id = await workflow_engine.start_registered(data.definition_id, context, data.version)
        instance = await workflow_engine.get_instance(instance_id)
        return WorkflowInstanceDTO.from_instance(instance)

    @get("/instances")
    async def list_instances(
        self,
        workflow_engine: WorkflowInstanceEngine,
        status: str | None = Parameter(
            default=None,
            description="Filter by status",
        ),
        process_id: int | None = Parameter(
            default=None,
            description="Filter by process",
        ),
        limit: int = Parameter(
            default=50,
            le=100,
            description="Maximum number of results",
        ),
    ) -> list[WorkflowInstanceDTO]:
        """List workflow instances with optional filtering."""
        workflow_status = _parse_enum(WorkflowStatus, status, "status") if status else None
        instances = await workflow_engine.list_instances(status=workflow_status, process_id=process_id, top=limit)
        return [WorkflowInstanceDTO.from_instance(instance) for instance in instances]

    @get("/instances/{instance_id:int}")
    async def get_instance(
        self,
        instance_id: int,
        workflow_engine: WorkflowInstanceEngine,
    ) -> WorkflowInstanceDetailDTO:
        """Get detailed workflow instance information, including step history."""
        instance = await workflow_engine.get_instance(instance_id)
        steps = await workflow_engine.list_step_statuses(instance_id)
        return WorkflowInstanceDetailDTO(
            id=instance.id,
            definition_id=instance.definition_id,
            process_id=instance.process_id,
            status=str(instance.status),
            current_step_id=instance.current_step_id,
            variables=instance.variables,
            steps=[StepStatusDTO.from_step_status(step) for step in steps],
            error_message=instance.error_message,
            created_at=instance.created_at,
            completed_at=instance.completed_at,
        )

    @get("/instances/{instance_id:int}/wait-status")
    async def get_wait_status(
        self,
        instance_id: int,
        resume_coordinator: ResumeCoordinator,
    ) -> WaitStatus:
        """Describe what a waiting instance is waiting for and whether it can resume."""
        return await resume_coordinator.get_workflow_wait_status(instance_id)

    @post("/instances/{instance_id:int}/complete-step", dto=None, return_dto=None)
    async def complete_step(
        self,
        instance_id: int,
        data: CompleteStepDTO,
        workflow_engine: WorkflowInstanceEngine,
    ) -> WorkflowInstanceDTO:
        """Complete a waiting step with a result payload and continue the instance.

        Completing a step that already finished is a no-op.
        """
        await workflow_engine.complete_waiting_step(instance_id, data.step_id, data.result)
        instance = await workflow_engine.get_instance(instance_id)
        return WorkflowInstanceDTO.from_instance(instance)

    @post("/instances/{instance_id:int}/pause")
    async def pause_instance(
        self,
        instance_id: int,
        workflow_engine: WorkflowInstanceEngine,
        reason: str | None = Parameter(default=None, description="Reason for pausing"),
    ) -> WorkflowInstanceDTO:
        """Pause a running or waiting workflow instance."""
        instance = await workflow_engine.pause(instance_id, reason)
        return WorkflowInstanceDTO.from_instance(instance)

    @post("/instances/{instance_id:int}/resume")
    async def resume_instance(
        self,
        instance_id: int,
        workflow_engine: WorkflowInstanceEngine,
    ) -> WorkflowInstanceDTO:
        """Resume a paused workflow instance where it left off."""
        instance = await workflow_engine.resume(instance_id)
        return WorkflowInstanceDTO.from_instance(instance)

    @post("/instances/{instance_id:int}/cancel")
    async def cancel_instance(
        self,
        instance_id: int,
        workflow_engine: WorkflowInstanceEngine,
        reason: str = Parameter(
            default="User canceled",
            description="Reason for cancellation",
        ),
    ) -> WorkflowInstanceDTO:
        """Cancel a workflow instance."""
        instance = await workflow_engine.cancel(instance_id, reason)
        return WorkflowInstanceDTO.from_instance(instance)


class TaskController(Controller):
    """API controller for task assignments and dependencies.

    Tags: Tasks
    """

    path = "/tasks"
    tags: ClassVar[list[str]] = ["Tasks"]

    @post("/", dto=None, return_dto=None)
    async def create_task(self, data: CreateTaskDTO, task_service: TaskAssignmentService) -> TaskDTO:
        """Create a task, optionally depending on an existing one."""
        task = await task_service.create_task(
            data.process_id,
            data.title,
            assignee_id=data.assignee_id,
            due_date=data.due_date,
            depends_on_task_id=data.depends_on_task_id,
        )
        return TaskDTO.from_task(task)

    @get("/")
    async def list_tasks(
        self,
        task_service: TaskAssignmentService,
        process_id: int | None = Parameter(default=None, description="Filter by process"),
        workflow_instance_id: int | None = Parameter(default=None, description="Filter by workflow instance"),
    ) -> list[TaskDTO]:
        """List tasks, excluding deleted ones."""
        tasks = await task_service.list_tasks(process_id, workflow_instance_id=workflow_instance_id)
        return [TaskDTO.from_task(task) for task in tasks]

    @get("/{task_id:int}")
    async def get_task(self, task_id: int, task_service: TaskAssignmentService) -> TaskDTO:
        return TaskDTO.from_task(await task_service.get_task(task_id))

    @post("/{task_id:int}/start")
    async def start_task(self, task_id: int, task_service: TaskAssignmentService) -> TaskDTO:
        """Start a task. Blocked tasks cannot be started."""
        return TaskDTO.from_task(await task_service.start_task(task_id))

    @post("/{task_id:int}/complete")
    async def complete_task(self, task_id: int, task_service: TaskAssignmentService) -> TaskDTO:
        """Complete a task, unblocking its dependents and resuming a waiting workflow."""
        return TaskDTO.from_task(await task_service.complete_task(task_id))

    @post("/{task_id:int}/skip")
    async def skip_task(self, task_id: int, task_service: TaskAssignmentService) -> TaskDTO:
        return TaskDTO.from_task(await task_service.skip_task(task_id))

    @delete("/{task_id:int}")
    async def delete_task(self, task_id: int, task_service: TaskAssignmentService) -> None:
        """Soft-delete a task and release its dependents."""
        await task_service.delete_task(task_id)

    @put("/{task_id:int}/dependency", dto=None, return_dto=None)
    async def set_dependency(
        self,
        task_id: int,
        data: SetDependencyDTO,
        task_service: TaskAssignmentService,
    ) -> TaskDTO:
        """Set or clear the task's prerequisite. Cycles are rejected."""
        return TaskDTO.from_task(await task_service.set_dependency(task_id, data.depends_on_task_id))

    @get("/{task_id:int}/dependencies")
    async def get_dependency_info(self, task_id: int, task_service: TaskAssignmentService) -> DependencyInfoDTO:
        info = await task_service.dependencies.get_dependency_info(task_id)
        return DependencyInfoDTO.from_info(info)

    @get("/{task_id:int}/available-dependencies")
    async def get_available_dependencies(self, task_id: int, task_service: TaskAssignmentService) -> list[TaskDTO]:
        """Tasks of the same process that this task may depend on without a cycle."""
        task = await task_service.get_task(task_id)
        available = await task_service.dependencies.get_available_dependencies(task_id, task.process_id)
        return [TaskDTO.from_task(candidate) for candidate in available]


class ApprovalController(Controller):
    """API controller for approval chains and requests.

    Tags: Approvals
    """

    path = "/approvals"
    tags: ClassVar[list[str]] = ["Approvals"]

    @post("/chains", dto=None, return_dto=None)
    async def initiate_chain(self, data: InitiateApprovalDTO, approval_engine: ApprovalChainEngine) -> ApprovalChainDTO:
        """Start a multi-level approval chain for a process."""
        chain = await approval_engine.initiate(
            data.process_id,
            data.levels,
            name=data.name,
            escalation_action=_parse_enum(EscalationAction, data.escalation_action, "escalation_action"),
            require_comments=data.require_comments,
            allow_delegation=data.allow_delegation,
        )
        return ApprovalChainDTO.from_chain(chain)

    @get("/chains/{chain_id:int}")
    async def get_chain(self, chain_id: int, approval_engine: ApprovalChainEngine) -> ApprovalChainDTO:
        return ApprovalChainDTO.from_chain(await approval_engine.get_chain(chain_id))

    @get("/chains/{chain_id:int}/requests")
    async def get_chain_requests(
        self,
        chain_id: int,
        approval_engine: ApprovalChainEngine,
        level: int | None = Parameter(default=None, description="Restrict to one level"),
    ) -> list[ApprovalRequestDTO]:
        await approval_engine.get_chain(chain_id)
        requests = await approval_engine.get_requests(chain_id, level)
        return [ApprovalRequestDTO.from_request(request) for request in requests]

    @get("/chains/{chain_id:int}/history")
    async def get_chain_history(self, chain_id: int, approval_engine: ApprovalChainEngine) -> list[dict[str, Any]]:
        """Audit trail of every action taken on the chain's requests."""
        history = await approval_engine.get_history(chain_id=chain_id)
        return [
            {
                "approval_id": entry.approval_id,
                "action": entry.action,
                "previous_status": entry.previous_status,
                "new_status": entry.new_status,
                "at": entry.at,
                "comments": entry.comments,
                "performed_by": entry.performed_by,
            }
            for entry in history
        ]

    @get("/pending")
    async def get_pending(
        self,
        approval_engine: ApprovalChainEngine,
        approver_id: int = Parameter(description="The approver whose queue to list"),
    ) -> list[ApprovalRequestDTO]:
        """Requests currently awaiting action from an approver."""
        requests = await approval_engine.get_pending_for_approver(approver_id)
        return [ApprovalRequestDTO.from_request(request) for request in requests]

    @get("/requests/{approval_id:int}")
    async def get_request(self, approval_id: int, approval_engine: ApprovalChainEngine) -> ApprovalRequestDTO:
        return ApprovalRequestDTO.from_request(await approval_engine.get_request(approval_id))

    @post("/requests/{approval_id:int}/decision", dto=None, return_dto=None)
    async def submit_decision(
        self,
        approval_id: int,
        data: ApprovalDecisionDTO,
        approval_engine: ApprovalChainEngine,
    ) -> ApprovalRequestDTO:
        """Approve or reject a request.

        Raises:
            ApprovalAlreadyDecidedError: If the request was already decided (409).
            UnauthorizedApproverError: If ``decided_by`` is not the assigned approver (403).
        """
        decision = _parse_enum(ApprovalDecision, data.decision, "decision")
        request = await approval_engine.submit_decision(approval_id, decision, data.comments, data.decided_by)
        return ApprovalRequestDTO.from_request(request)

    @post("/requests/{approval_id:int}/delegate", dto=None, return_dto=None)
    async def delegate_request(
        self,
        approval_id: int,
        data: DelegateApprovalDTO,
        approval_engine: ApprovalChainEngine,
    ) -> ApprovalRequestDTO:
        """Hand a request over to another approver."""
        request = await approval_engine.delegate_approval(
            approval_id,
            data.delegate_to_id,
            data.reason,
            data.delegated_by,
        )
        return ApprovalRequestDTO.from_request(request)

    @post("/requests/{approval_id:int}/escalate")
    async def escalate_request(self, approval_id: int, approval_engine: ApprovalChainEngine) -> ApprovalRequestDTO:
        """Escalate a request now, following its chain's escalation action."""
        return ApprovalRequestDTO.from_request(await approval_engine.escalate_approval(approval_id))


class ProcessController(Controller):
    """API controller for HR process status.

    Tags: Processes
    """

    path = "/processes"
    tags: ClassVar[list[str]] = ["Processes"]

    @post("/{process_id:int}/status", dto=None, return_dto=None)
    async def change_status(
        self,
        process_id: int,
        data: ProcessStatusChangeDTO,
        status_bridge: StatusSyncBridge,
    ) -> ProcessStatusResultDTO:
        """Change a process status and apply it to the process's workflow.

        ``on_hold`` pauses the live workflow instance, ``cancelled`` cancels it and
        its pending approvals, and ``in_progress`` resumes a paused instance.
        """
        status = _parse_enum(ProcessStatus, data.status, "status")
        previous = _parse_enum(ProcessStatus, data.previous_status, "previous_status") if data.previous_status else None
        action = await status_bridge.apply_process_status(process_id, status, previous, data.reason)
        return ProcessStatusResultDTO(
            process_id=process_id,
            status=str(status),
            workflow_action=str(action) if action is not None else None,
        )

    @get("/{process_id:int}/instances")
    async def list_process_instances(
        self,
        process_id: int,
        workflow_engine: WorkflowInstanceEngine,
    ) -> list[WorkflowInstanceDTO]:
        instances = await workflow_engine.list_instances(process_id=process_id)
        return [WorkflowInstanceDTO.from_instance(instance) for instance in instances]

    @get("/{process_id:int}/approval")
    async def get_active_approval(
        self,
        process_id: int,
        approval_engine: ApprovalChainEngine,
    ) -> ApprovalChainDTO | None:
        """The process's active approval chain, if any."""
        chain = await approval_engine.get_active_chain(process_id)
        return ApprovalChainDTO.from_chain(chain) if chain is not None else None


class AdminController(Controller):
    """API controller for operational tasks.

    Tags: Administration
    """

    path = "/admin"
    tags: ClassVar[list[str]] = ["Administration"]

    @get("/polling")
    async def get_polling_status(self, resume_coordinator: ResumeCoordinator) -> dict[str, Any]:
        return resume_coordinator.get_polling_status()

    @post("/polling/sweep")
    async def force_sweep(self, resume_coordinator: ResumeCoordinator) -> PollResult:
        """Run a resume sweep now over every waiting instance."""
        return await resume_coordinator.force_resume_all_stuck_workflows()

    @get("/waiting-counts")
    async def get_waiting_counts(self, resume_coordinator: ResumeCoordinator) -> dict[str, int]:
        return await resume_coordinator.get_waiting_counts()

    @post("/escalations")
    async def process_escalations(self, approval_engine: ApprovalChainEngine) -> dict[str, list[int]]:
        """Escalate every pending approval past its due date."""
        return {"escalated": await approval_engine.process_escalations()}

    @post("/expirations")
    async def expire_approvals(
        self,
        approval_engine: ApprovalChainEngine,
        max_age_days: int = Parameter(default=30, ge=1, description="Age after which open requests expire"),
    ) -> dict[str, list[int]]:
        return {"expired": await approval_engine.expire_approvals(max_age_days)}

    @get("/dead-letters")
    async def list_dead_letters(
        self,
        dead_letter_queue: DeadLetterQueue,
        status: str | None = Parameter(default=None, description="Filter by status"),
        operation_type: str | None = Parameter(default=None, description="Filter by operation type"),
        limit: int = Parameter(default=50, le=100, description="Maximum number of results"),
    ) -> list[DeadLetterItemDTO]:
        item_status = _parse_enum(DeadLetterStatus, status, "status") if status else None
        items = await dead_letter_queue.list_items(status=item_status, operation_type=operation_type, top=limit)
        return [DeadLetterItemDTO.from_item(item) for item in items]

    @get("/dead-letters/stats")
    async def get_dead_letter_stats(self, dead_letter_queue: DeadLetterQueue) -> DeadLetterStats:
        return await dead_letter_queue.get_stats()

    @post("/dead-letters/replay")
    async def replay_dead_letters(self, dead_letter_replayer: DeadLetterReplayer) -> ReplaySummary:
        """Replay pending dead-letter items through their registered handlers."""
        return await dead_letter_replayer.replay_pending()

    @post("/dead-letters/{item_id:int}/replay")
    async def replay_dead_letter(self, item_id: int, dead_letter_replayer: DeadLetterReplayer) -> ReplaySummary:
        return await dead_letter_replayer.replay_item(item_id)

    @post("/dead-letters/{item_id:int}/abandon")
    async def abandon_dead_letter(
        self,
        item_id: int,
        dead_letter_queue: DeadLetterQueue,
        resolved_by: str | None = Parameter(default=None, description="Who abandoned the item"),
    ) -> DeadLetterItemDTO:
        return DeadLetterItemDTO.from_item(await dead_letter_queue.mark_abandoned(item_id, resolved_by))
