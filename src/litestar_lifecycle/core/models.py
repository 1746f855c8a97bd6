"""Concrete data models for litestar-lifecycle.

Each model is a dataclass view of a record in the record store. ``from_record``
builds the model from a stored mapping and ``to_fields`` produces the mapping to
persist (datetimes as ISO strings, enums as their values, without ``id``).
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from litestar_lifecycle.core.clock import from_iso, to_iso
from litestar_lifecycle.core.references import Reference, reference_from_record, reference_id
from litestar_lifecycle.core.types import (
    ACTIONABLE_APPROVAL_STATUSES,
    TERMINAL_APPROVAL_STATUSES,
    TERMINAL_WORKFLOW_STATUSES,
    WAITING_WORKFLOW_STATUSES,
    ApprovalStatus,
    ApprovalType,
    DeadLetterStatus,
    EscalationAction,
    StepStatus,
    TaskStatus,
    WaitCondition,
    WaitItemType,
    WorkflowStatus,
)

__all__ = [
    "ApprovalChain",
    "ApprovalHistoryEntry",
    "ApprovalLevel",
    "ApprovalRequest",
    "DeadLetterItem",
    "DelegationRule",
    "StepLogEntry",
    "TaskAssignment",
    "WaitCriteria",
    "WorkflowInstance",
    "WorkflowStepStatus",
]


def _opt_int(value: Any) -> int | None:
    return None if value is None else int(value)


@dataclass
class WorkflowInstance:
    """Runtime state of one workflow execution.

    Attributes:
        id: Record id of the instance.
        definition_id: Id of the workflow definition being executed.
        process_id: The business process this instance drives.
        status: Current state-machine status.
        current_step_id: Step being executed or waited on; ``None`` once finished.
        definition_version: Version of the definition the instance was started with.
        variables: Values accumulated from step outputs.
        context: Context supplied at start.
        paused_from: Status to restore when a paused instance resumes.
        error_message: Failure or cancellation message.
        created_at: When the instance was created.
        completed_at: When the instance reached a terminal status.
    """

    id: int
    definition_id: str
    process_id: int
    status: WorkflowStatus
    current_step_id: str | None = None
    definition_version: str | None = None
    variables: dict[str, Any] = field(default_factory=dict)
    context: dict[str, Any] = field(default_factory=dict)
    paused_from: WorkflowStatus | None = None
    error_message: str | None = None
    created_at: datetime | None = None
    completed_at: datetime | None = None

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_WORKFLOW_STATUSES

    @property
    def is_waiting(self) -> bool:
        return self.status in WAITING_WORKFLOW_STATUSES

    @classmethod
    def from_record(cls, record: dict[str, Any]) -> WorkflowInstance:
        paused_from = record.get("paused_from")
        return cls(
            id=int(record["id"]),
            definition_id=record["definition_id"],
            process_id=int(record["process_id"]),
            status=WorkflowStatus(record["status"]),
            current_step_id=record.get("current_step_id"),
            definition_version=record.get("definition_version"),
            variables=dict(record.get("variables") or {}),
            context=dict(record.get("context") or {}),
            paused_from=WorkflowStatus(paused_from) if paused_from else None,
            error_message=record.get("error_message"),
            created_at=from_iso(record.get("created_at")),
            completed_at=from_iso(record.get("completed_at")),
        )

    def to_fields(self) -> dict[str, Any]:
        return {
            "definition_id": self.definition_id,
            "definition_version": self.definition_version,
            "process_id": self.process_id,
            "status": str(self.status),
            "current_step_id": self.current_step_id,
            "variables": self.variables,
            "context": self.context,
            "paused_from": str(self.paused_from) if self.paused_from else None,
            "error_message": self.error_message,
            "created_at": to_iso(self.created_at),
            "completed_at": to_iso(self.completed_at),
        }


@dataclass
class StepLogEntry:
    """One line of a step's append-only log."""

    at: datetime
    message: str
    level: str = "info"

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> StepLogEntry:
        return cls(
            at=from_iso(raw.get("at")) or datetime.min,
            message=raw.get("message", ""),
            level=raw.get("level", "info"),
        )

    def to_dict(self) -> dict[str, Any]:
        return {"at": to_iso(self.at), "message": self.message, "level": self.level}


@dataclass
class WaitCriteria:
    """What a waiting step is suspended on.

    Attributes:
        item_type: Kind of external work awaited.
        item_ids: Ids of the awaited tasks or approval chains.
        condition: Predicate deciding when the step may resume.
        resume_at: For timed input waits, when the step resumes by itself.
    """

    item_type: WaitItemType
    item_ids: list[int] = field(default_factory=list)
    condition: WaitCondition = WaitCondition.ALL
    resume_at: datetime | None = None

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> WaitCriteria:
        return cls(
            item_type=WaitItemType(raw["item_type"]),
            item_ids=[int(i) for i in raw.get("item_ids") or []],
            condition=WaitCondition(raw.get("condition") or WaitCondition.ALL),
            resume_at=from_iso(raw.get("resume_at")),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "item_type": str(self.item_type),
            "item_ids": list(self.item_ids),
            "condition": str(self.condition),
            "resume_at": to_iso(self.resume_at),
        }


@dataclass
class WorkflowStepStatus:
    """Execution record of one step of one instance.

    Attributes:
        id: Record id.
        instance_id: Owning workflow instance.
        step_id: Step id within the definition.
        step_name: Display name of the step.
        status: Step execution status.
        result: Payload recorded when the step completed.
        wait: Wait criteria while the step is waiting.
        created_item_ids: Ids of tasks or chains the step created.
        error_message: Failure message, if the step failed.
        retry_count: Number of resume attempts retried by callers.
        log: Append-only log entries.
        started_at: When the step first started.
        completed_at: When the step reached a terminal status.
    """

    id: int
    instance_id: int
    step_id: str
    step_name: str = ""
    status: StepStatus = StepStatus.PENDING
    result: dict[str, Any] = field(default_factory=dict)
    wait: WaitCriteria | None = None
    created_item_ids: list[int] = field(default_factory=list)
    error_message: str | None = None
    retry_count: int = 0
    log: list[StepLogEntry] = field(default_factory=list)
    started_at: datetime | None = None
    completed_at: datetime | None = None

    @property
    def is_finished(self) -> bool:
        return self.status in {StepStatus.COMPLETED, StepStatus.SKIPPED}

    @classmethod
    def from_record(cls, record: dict[str, Any]) -> WorkflowStepStatus:
        wait = record.get("wait")
        return cls(
            id=int(record["id"]),
            instance_id=int(record["instance_id"]),
            step_id=record["step_id"],
            step_name=record.get("step_name") or "",
            status=StepStatus(record.get("status") or StepStatus.PENDING),
            result=dict(record.get("result") or {}),
            wait=WaitCriteria.from_dict(wait) if wait else None,
            created_item_ids=[int(i) for i in record.get("created_item_ids") or []],
            error_message=record.get("error_message"),
            retry_count=int(record.get("retry_count") or 0),
            log=[StepLogEntry.from_dict(entry) for entry in record.get("log") or []],
            started_at=from_iso(record.get("started_at")),
            completed_at=from_iso(record.get("completed_at")),
        )

    def to_fields(self) -> dict[str, Any]:
        return {
            "instance_id": self.instance_id,
            "step_id": self.step_id,
            "step_name": self.step_name,
            "status": str(self.status),
            "result": self.result,
            "wait": self.wait.to_dict() if self.wait else None,
            "created_item_ids": list(self.created_item_ids),
            "error_message": self.error_message,
            "retry_count": self.retry_count,
            "log": [entry.to_dict() for entry in self.log],
            "started_at": to_iso(self.started_at),
            "completed_at": to_iso(self.completed_at),
        }


@dataclass
class TaskAssignment:
    """A unit of work assigned to a person within a process.

    Invariant: ``is_blocked`` holds exactly when ``depends_on`` is set and the
    referenced task is not done.

    Attributes:
        id: Record id.
        process_id: Owning process.
        title: Short description of the work.
        status: Task status.
        assignee_id: User responsible for the task.
        depends_on: Prerequisite task reference.
        is_blocked: Whether the prerequisite is still outstanding.
        blocked_reason: Human-readable reason naming the prerequisite.
        workflow_instance_id: Instance whose step created the task.
        workflow_step_id: Step that created the task.
        due_date: When the task is due.
        completed_at: When the task was completed or skipped.
        is_deleted: Soft-delete flag.
    """

    id: int
    process_id: int
    title: str
    status: TaskStatus = TaskStatus.NOT_STARTED
    assignee_id: int | None = None
    depends_on: Reference | None = None
    is_blocked: bool = False
    blocked_reason: str | None = None
    workflow_instance_id: int | None = None
    workflow_step_id: str | None = None
    due_date: datetime | None = None
    completed_at: datetime | None = None
    is_deleted: bool = False

    @property
    def depends_on_task_id(self) -> int | None:
        return reference_id(self.depends_on)

    @classmethod
    def from_record(cls, record: dict[str, Any]) -> TaskAssignment:
        return cls(
            id=int(record["id"]),
            process_id=int(record["process_id"]),
            title=record.get("title") or "",
            status=TaskStatus(record.get("status") or TaskStatus.NOT_STARTED),
            assignee_id=_opt_int(record.get("assignee_id")),
            depends_on=reference_from_record(record, "depends_on_task_id"),
            is_blocked=bool(record.get("is_blocked")),
            blocked_reason=record.get("blocked_reason"),
            workflow_instance_id=_opt_int(record.get("workflow_instance_id")),
            workflow_step_id=record.get("workflow_step_id"),
            due_date=from_iso(record.get("due_date")),
            completed_at=from_iso(record.get("completed_at")),
            is_deleted=bool(record.get("is_deleted")),
        )

    def to_fields(self) -> dict[str, Any]:
        return {
            "process_id": self.process_id,
            "title": self.title,
            "status": str(self.status),
            "assignee_id": self.assignee_id,
            "depends_on_task_id": self.depends_on_task_id,
            "is_blocked": self.is_blocked,
            "blocked_reason": self.blocked_reason,
            "workflow_instance_id": self.workflow_instance_id,
            "workflow_step_id": self.workflow_step_id,
            "due_date": to_iso(self.due_date),
            "completed_at": to_iso(self.completed_at),
            "is_deleted": self.is_deleted,
        }


@dataclass
class ApprovalLevel:
    """One stage of an approval chain.

    Attributes:
        approval_type: How the level's requests resolve.
        approver_ids: Approvers in sequence order.
        due_days: Days each request has before it escalates.
        alternate_approver_ids: Approvers used by ``ASSIGN_TO_ALTERNATE`` escalation.
        name: Optional display name.
    """

    approval_type: ApprovalType = ApprovalType.SEQUENTIAL
    approver_ids: list[int] = field(default_factory=list)
    due_days: int = 3
    alternate_approver_ids: list[int] = field(default_factory=list)
    name: str | None = None

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> ApprovalLevel:
        return cls(
            approval_type=ApprovalType(raw.get("approval_type") or ApprovalType.SEQUENTIAL),
            approver_ids=[int(a) for a in raw.get("approver_ids") or []],
            due_days=int(raw.get("due_days") or 3),
            alternate_approver_ids=[int(a) for a in raw.get("alternate_approver_ids") or []],
            name=raw.get("name"),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "approval_type": str(self.approval_type),
            "approver_ids": list(self.approver_ids),
            "due_days": self.due_days,
            "alternate_approver_ids": list(self.alternate_approver_ids),
            "name": self.name,
        }


@dataclass
class ApprovalChain:
    """Ordered set of approval levels gating a process.

    Attributes:
        id: Record id.
        process_id: The gated process.
        levels: Levels in order.
        current_level: 1-based index of the level in progress.
        overall_status: Pending while active, then the chain outcome.
        is_active: Whether the chain is still in progress.
        name: Display name.
        escalation_action: What happens to overdue requests.
        require_comments: Whether rejections need comments.
        allow_delegation: Whether approvers may delegate requests.
        workflow_instance_id: Instance waiting on this chain, if any.
        workflow_step_id: Step waiting on this chain, if any.
        started_at: When the chain was initiated.
        completed_at: When the chain closed.
    """

    id: int
    process_id: int
    levels: list[ApprovalLevel]
    current_level: int = 1
    overall_status: ApprovalStatus = ApprovalStatus.PENDING
    is_active: bool = True
    name: str = "Approval"
    escalation_action: EscalationAction = EscalationAction.NOTIFY
    require_comments: bool = False
    allow_delegation: bool = True
    workflow_instance_id: int | None = None
    workflow_step_id: str | None = None
    started_at: datetime | None = None
    completed_at: datetime | None = None

    def level(self, number: int) -> ApprovalLevel:
        """Return the 1-based level ``number``."""
        return self.levels[number - 1]

    @property
    def is_last_level(self) -> bool:
        return self.current_level >= len(self.levels)

    @classmethod
    def from_record(cls, record: dict[str, Any]) -> ApprovalChain:
        return cls(
            id=int(record["id"]),
            process_id=int(record["process_id"]),
            levels=[ApprovalLevel.from_dict(level) for level in record.get("levels") or []],
            current_level=int(record.get("current_level") or 1),
            overall_status=ApprovalStatus(record.get("overall_status") or ApprovalStatus.PENDING),
            is_active=bool(record.get("is_active")),
            name=record.get("name") or "Approval",
            escalation_action=EscalationAction(record.get("escalation_action") or EscalationAction.NOTIFY),
            require_comments=bool(record.get("require_comments")),
            allow_delegation=bool(record.get("allow_delegation", True)),
            workflow_instance_id=_opt_int(record.get("workflow_instance_id")),
            workflow_step_id=record.get("workflow_step_id"),
            started_at=from_iso(record.get("started_at")),
            completed_at=from_iso(record.get("completed_at")),
        )

    def to_fields(self) -> dict[str, Any]:
        return {
            "process_id": self.process_id,
            "levels": [level.to_dict() for level in self.levels],
            "current_level": self.current_level,
            "overall_status": str(self.overall_status),
            "is_active": self.is_active,
            "name": self.name,
            "escalation_action": str(self.escalation_action),
            "require_comments": self.require_comments,
            "allow_delegation": self.allow_delegation,
            "workflow_instance_id": self.workflow_instance_id,
            "workflow_step_id": self.workflow_step_id,
            "started_at": to_iso(self.started_at),
            "completed_at": to_iso(self.completed_at),
        }


@dataclass
class ApprovalRequest:
    """One approver's request within a chain level.

    Attributes:
        id: Record id.
        chain_id: Owning chain.
        process_id: The gated process.
        level: 1-based level number.
        sequence: Position within the level.
        approval_type: The level's approval type.
        approver_id: User currently expected to act.
        status: Request status.
        original_approver_id: Approver before delegation or escalation reassigned it.
        requested_at: When the request was created.
        due_date: When the request escalates.
        completed_at: When the request reached a terminal status.
        comments: Decision comments.
        decided_by: User who recorded the decision.
        escalation_level: Number of escalations applied.
        is_overdue: Whether the request has been escalated for passing its due date.
        escalated_at: When the request was escalated.
    """

    id: int
    chain_id: int
    process_id: int
    level: int
    sequence: int
    approver_id: int
    status: ApprovalStatus
    approval_type: ApprovalType = ApprovalType.SEQUENTIAL
    original_approver_id: int | None = None
    requested_at: datetime | None = None
    due_date: datetime | None = None
    completed_at: datetime | None = None
    comments: str | None = None
    decided_by: int | None = None
    escalation_level: int = 0
    is_overdue: bool = False
    escalated_at: datetime | None = None

    @property
    def is_actionable(self) -> bool:
        return self.status in ACTIONABLE_APPROVAL_STATUSES

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_APPROVAL_STATUSES

    @classmethod
    def from_record(cls, record: dict[str, Any]) -> ApprovalRequest:
        return cls(
            id=int(record["id"]),
            chain_id=int(record["chain_id"]),
            process_id=int(record["process_id"]),
            level=int(record["level"]),
            sequence=int(record.get("sequence") or 0),
            approver_id=int(record["approver_id"]),
            status=ApprovalStatus(record["status"]),
            approval_type=ApprovalType(record.get("approval_type") or ApprovalType.SEQUENTIAL),
            original_approver_id=_opt_int(record.get("original_approver_id")),
            requested_at=from_iso(record.get("requested_at")),
            due_date=from_iso(record.get("due_date")),
            completed_at=from_iso(record.get("completed_at")),
            comments=record.get("comments"),
            decided_by=_opt_int(record.get("decided_by")),
            escalation_level=int(record.get("escalation_level") or 0),
            is_overdue=bool(record.get("is_overdue")),
            escalated_at=from_iso(record.get("escalated_at")),
        )

    def to_fields(self) -> dict[str, Any]:
        return {
            "chain_id": self.chain_id,
            "process_id": self.process_id,
            "level": self.level,
            "sequence": self.sequence,
            "approver_id": self.approver_id,
            "status": str(self.status),
            "approval_type": str(self.approval_type),
            "original_approver_id": self.original_approver_id,
            "requested_at": to_iso(self.requested_at),
            "due_date": to_iso(self.due_date),
            "completed_at": to_iso(self.completed_at),
            "comments": self.comments,
            "decided_by": self.decided_by,
            "escalation_level": self.escalation_level,
            "is_overdue": self.is_overdue,
            "escalated_at": to_iso(self.escalated_at),
        }


@dataclass
class ApprovalHistoryEntry:
    """Audit record of one action taken on an approval request."""

    id: int
    approval_id: int
    chain_id: int
    process_id: int
    action: str
    previous_status: ApprovalStatus | None
    new_status: ApprovalStatus
    at: datetime
    comments: str | None = None
    performed_by: int | None = None

    @classmethod
    def from_record(cls, record: dict[str, Any]) -> ApprovalHistoryEntry:
        previous = record.get("previous_status")
        return cls(
            id=int(record["id"]),
            approval_id=int(record["approval_id"]),
            chain_id=int(record["chain_id"]),
            process_id=int(record["process_id"]),
            action=record["action"],
            previous_status=ApprovalStatus(previous) if previous else None,
            new_status=ApprovalStatus(record["new_status"]),
            at=from_iso(record.get("at")) or datetime.min,
            comments=record.get("comments"),
            performed_by=_opt_int(record.get("performed_by")),
        )


@dataclass
class DelegationRule:
    """Time-boxed redirection of one user's new approval requests to another."""

    id: int
    delegator_id: int
    delegate_id: int
    start: datetime
    end: datetime
    is_active: bool = True
    reason: str | None = None

    def covers(self, moment: datetime) -> bool:
        """Whether the rule applies at ``moment``."""
        return self.is_active and self.start <= moment <= self.end

    @classmethod
    def from_record(cls, record: dict[str, Any]) -> DelegationRule:
        return cls(
            id=int(record["id"]),
            delegator_id=int(record["delegator_id"]),
            delegate_id=int(record["delegate_id"]),
            start=from_iso(record["start"]) or datetime.min,
            end=from_iso(record["end"]) or datetime.max,
            is_active=bool(record.get("is_active", True)),
            reason=record.get("reason"),
        )


@dataclass
class DeadLetterItem:
    """An operation that exhausted its retries.

    Attributes:
        id: Record id.
        operation_type: Tag identifying the operation; used to pick a replay handler.
        payload: Data needed to replay the operation.
        error: Last error message.
        attempts: Number of attempts made so far.
        status: Queue status.
        created_at: When the item was queued.
        last_attempt_at: When the operation was last attempted.
        context: Correlation data (process, instance, source component).
        resolved_at: When the item was resolved or abandoned.
        resolved_by: Who resolved or abandoned it.
    """

    id: int
    operation_type: str
    payload: dict[str, Any]
    error: str
    attempts: int
    status: DeadLetterStatus = DeadLetterStatus.PENDING
    created_at: datetime | None = None
    last_attempt_at: datetime | None = None
    context: dict[str, Any] = field(default_factory=dict)
    resolved_at: datetime | None = None
    resolved_by: str | None = None

    @classmethod
    def from_record(cls, record: dict[str, Any]) -> DeadLetterItem:
        return cls(
            id=int(record["id"]),
            operation_type=record["operation_type"],
            payload=dict(record.get("payload") or {}),
            error=record.get("error") or "",
            attempts=int(record.get("attempts") or 0),
            status=DeadLetterStatus(record.get("status") or DeadLetterStatus.PENDING),
            created_at=from_iso(record.get("created_at")),
            last_attempt_at=from_iso(record.get("last_attempt_at")),
            context=dict(record.get("context") or {}),
            resolved_at=from_iso(record.get("resolved_at")),
            resolved_by=record.get("resolved_by"),
        )

    def to_fields(self) -> dict[str, Any]:
        return {
            "operation_type": self.operation_type,
            "payload": self.payload,
            "error": self.error,
            "attempts": self.attempts,
            "status": str(self.status),
            "created_at": to_iso(self.created_at),
            "last_attempt_at": to_iso(self.last_attempt_at),
            "context": self.context,
            "resolved_at": to_iso(self.resolved_at),
            "resolved_by": self.resolved_by,
        }
