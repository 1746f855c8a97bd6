"""Exception hierarchy for litestar-lifecycle."""

from __future__ import annotations

from typing import Any

__all__ = (
    "ApprovalAlreadyDecidedError",
    "ApprovalChainActiveError",
    "ApprovalNotFoundError",
    "CyclicDependencyError",
    "DeadLetterItemNotFoundError",
    "InvalidTransitionError",
    "LifecycleError",
    "MissingApproverError",
    "RecordNotFoundError",
    "SelfDependencyError",
    "SyncDivergenceError",
    "TaskNotFoundError",
    "TransientStoreError",
    "UnauthorizedApproverError",
    "ValidationError",
    "WorkflowInstanceNotFoundError",
    "WorkflowLogicError",
    "WorkflowNotFoundError",
    "WorkflowValidationError",
)


class LifecycleError(Exception):
    """Base exception for all litestar-lifecycle errors.

    All exceptions raised by litestar-lifecycle inherit from this class.
    This allows users to catch all lifecycle-related errors with a single except clause.
    """


class ValidationError(LifecycleError):
    """Raised when a request is rejected synchronously.

    Validation errors describe caller mistakes (a cyclic dependency, a missing
    approver, an invalid definition). They are never retried.

    Attributes:
        errors: Individual validation messages.
    """

    def __init__(self, message: str, errors: list[str] | None = None) -> None:
        """Initialize the exception.

        Args:
            message: Summary of the rejection.
            errors: Optional list of individual validation messages.
        """
        self.errors = errors or [message]
        super().__init__(message)


class WorkflowValidationError(ValidationError):
    """Raised when a workflow definition fails validation.

    Attributes:
        errors: List of validation error messages.
    """

    def __init__(self, errors: list[str]) -> None:
        """Initialize the exception with validation errors.

        Args:
            errors: List of validation error messages.
        """
        super().__init__(f"Workflow validation failed: {'; '.join(errors)}", errors)


class SelfDependencyError(ValidationError):
    """Raised when a task is made to depend on itself."""

    def __init__(self, task_id: int) -> None:
        """Initialize the exception.

        Args:
            task_id: The offending task.
        """
        self.task_id = task_id
        super().__init__("A task cannot depend on itself")


class CyclicDependencyError(ValidationError):
    """Raised when a dependency edge would close a cycle.

    Attributes:
        task_id: The task that would gain the dependency.
        depends_on_id: The prerequisite that already (transitively) depends on ``task_id``.
    """

    def __init__(self, task_id: int | None, depends_on_id: int | None) -> None:
        """Initialize the exception.

        Args:
            task_id: The task that would gain the dependency.
            depends_on_id: The requested prerequisite.
        """
        self.task_id = task_id
        self.depends_on_id = depends_on_id
        super().__init__("This dependency would create a circular reference")


class MissingApproverError(ValidationError):
    """Raised when an approval level or escalation has no approver to route to."""


class ApprovalChainActiveError(ValidationError):
    """Raised when a chain is initiated for a process that already has an active one.

    Attributes:
        process_id: The process being gated.
        chain_id: The chain that is still active.
    """

    def __init__(self, process_id: int, chain_id: int) -> None:
        """Initialize the exception.

        Args:
            process_id: The process being gated.
            chain_id: The chain that is still active.
        """
        self.process_id = process_id
        self.chain_id = chain_id
        super().__init__(f"Process {process_id} already has active approval chain {chain_id}")


class TransientStoreError(LifecycleError):
    """Raised when the record store fails in a way that may succeed on retry.

    Attributes:
        operation: The store operation that failed.
        cause: The underlying exception, if any.
    """

    def __init__(self, operation: str, cause: Exception | None = None) -> None:
        """Initialize the exception.

        Args:
            operation: The store operation that failed.
            cause: The underlying exception, if any.
        """
        self.operation = operation
        self.cause = cause
        msg = f"Record store operation '{operation}' failed"
        if cause is not None:
            msg += f": {cause}"
        super().__init__(msg)


class WorkflowLogicError(LifecycleError):
    """Raised when a step handler cannot complete its work.

    The instance owning the step is moved to ``FAILED``; the error is not retried.

    Attributes:
        step_id: The step that failed.
    """

    def __init__(self, message: str, step_id: str | None = None) -> None:
        """Initialize the exception.

        Args:
            message: Description of the failure.
            step_id: The step that failed, if known.
        """
        self.step_id = step_id
        super().__init__(message)


class SyncDivergenceError(LifecycleError):
    """Raised when a paired aggregate does not hold the value just written to it.

    Attributes:
        collection: Collection of the paired record.
        record_id: Id of the paired record.
        expected: Value that was written.
        actual: Value read back.
    """

    def __init__(self, collection: str, record_id: int, expected: Any, actual: Any) -> None:
        """Initialize the exception.

        Args:
            collection: Collection of the paired record.
            record_id: Id of the paired record.
            expected: Value that was written.
            actual: Value read back.
        """
        self.collection = collection
        self.record_id = record_id
        self.expected = expected
        self.actual = actual
        super().__init__(f"{collection} record {record_id} status is '{actual}', expected '{expected}'")


class InvalidTransitionError(LifecycleError):
    """Raised when a state change is not allowed from the current state.

    Attributes:
        current: The current state.
        target: The requested state.
        reason: Optional explanation.
    """

    def __init__(self, current: str, target: str, reason: str | None = None) -> None:
        """Initialize the exception with transition details.

        Args:
            current: The current state.
            target: The requested state.
            reason: Optional explanation of why the transition is invalid.
        """
        self.current = current
        self.target = target
        self.reason = reason
        msg = f"Invalid transition from '{current}' to '{target}'"
        if reason:
            msg += f": {reason}"
        super().__init__(msg)


class ApprovalAlreadyDecidedError(LifecycleError):
    """Raised when a decision is submitted for a request that is no longer actionable.

    Attributes:
        approval_id: The approval request.
        status: Its current status.
    """

    def __init__(self, approval_id: int, status: str) -> None:
        """Initialize the exception.

        Args:
            approval_id: The approval request.
            status: Its current status.
        """
        self.approval_id = approval_id
        self.status = status
        super().__init__(f"Approval {approval_id} is not awaiting a decision (status: {status})")


class UnauthorizedApproverError(LifecycleError):
    """Raised when someone other than the assigned approver acts on a request.

    Attributes:
        approval_id: The approval request.
        user_id: The user who attempted the action.
    """

    def __init__(self, approval_id: int, user_id: int) -> None:
        """Initialize the exception.

        Args:
            approval_id: The approval request.
            user_id: The user who attempted the action.
        """
        self.approval_id = approval_id
        self.user_id = user_id
        super().__init__(f"User {user_id} is not the assigned approver for approval {approval_id}")


class RecordNotFoundError(LifecycleError):
    """Raised when a record does not exist in its collection.

    Attributes:
        collection: The collection searched.
        record_id: The missing id.
    """

    def __init__(self, collection: str, record_id: int) -> None:
        """Initialize the exception.

        Args:
            collection: The collection searched.
            record_id: The missing id.
        """
        self.collection = collection
        self.record_id = record_id
        super().__init__(f"Record {record_id} not found in '{collection}'")


class WorkflowInstanceNotFoundError(RecordNotFoundError):
    """Raised when a workflow instance is not found."""

    def __init__(self, instance_id: int) -> None:
        """Initialize the exception with instance details.

        Args:
            instance_id: The ID of the workflow instance that was not found.
        """
        self.instance_id = instance_id
        super().__init__("workflow_instances", instance_id)


class TaskNotFoundError(RecordNotFoundError):
    """Raised when a task assignment is not found or has been deleted."""

    def __init__(self, task_id: int) -> None:
        """Initialize the exception.

        Args:
            task_id: The missing task.
        """
        self.task_id = task_id
        super().__init__("task_assignments", task_id)


class ApprovalNotFoundError(RecordNotFoundError):
    """Raised when an approval request or chain is not found."""


class DeadLetterItemNotFoundError(RecordNotFoundError):
    """Raised when a dead-letter item is not found."""

    def __init__(self, item_id: int) -> None:
        """Initialize the exception.

        Args:
            item_id: The missing item.
        """
        self.item_id = item_id
        super().__init__("dead_letters", item_id)


class WorkflowNotFoundError(LifecycleError):
    """Raised when a workflow definition is not registered.

    Attributes:
        name: The definition id that was not found.
        version: The specific version requested, if any.
    """

    def __init__(self, name: str, version: str | None = None) -> None:
        """Initialize the exception with workflow details.

        Args:
            name: The definition id that was not found.
            version: The specific version requested, if any.
        """
        self.name = name
        self.version = version
        msg = f"Workflow '{name}'"
        if version:
            msg += f" version '{version}'"
        msg += " not found"
        super().__init__(msg)
