"""Step handlers for the closed set of workflow step types.

A handler receives a ``StepContext`` and returns a ``StepResult`` telling the
engine whether to continue with the next step, suspend the instance until
external work is done, or fail it. Handlers never change the instance status
themselves; raising an exception is treated like returning a failure.
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import TYPE_CHECKING, Any

from litestar_lifecycle.core.clock import from_iso
from litestar_lifecycle.core.expressions import UNDEFINED, render_template, resolve_path, resolve_value
from litestar_lifecycle.core.field_updates import build_field_values, parse_field_updates
from litestar_lifecycle.core.types import (
    Collection,
    EscalationAction,
    NextAction,
    StepType,
    TaskStatus,
    WaitCondition,
    WaitItemType,
)
from litestar_lifecycle.exceptions import WorkflowLogicError
from litestar_lifecycle.notifications import Notification, NotificationPriority, notify_safely
from litestar_lifecycle.tasks.service import TaskSpec

if TYPE_CHECKING:
    from litestar_lifecycle.approvals.engine import ApprovalChainEngine
    from litestar_lifecycle.core.definition import StepDefinition
    from litestar_lifecycle.core.models import TaskAssignment, WorkflowInstance
    from litestar_lifecycle.core.protocols import NotificationService, RecordStore
    from litestar_lifecycle.tasks.service import TaskAssignmentService

__all__ = [
    "DEFAULT_HANDLERS",
    "StepContext",
    "StepHandler",
    "StepResult",
    "tasks_satisfy",
]

logger = logging.getLogger(__name__)

_DONE_TASK_STATUSES = frozenset({TaskStatus.COMPLETED, TaskStatus.SKIPPED})


@dataclass
class StepResult:
    """Uniform outcome of a step handler.

    Attributes:
        success: Whether the handler did its work.
        next_action: What the engine does next.
        wait_for_item_type: Kind of work awaited when ``next_action`` is ``WAIT``.
        wait_for_item_ids: Ids of the awaited tasks or approval chains.
        wait_condition: Predicate deciding when the wait is over.
        resume_at: For timed input waits, when the step resumes by itself.
        output_variables: Values merged into the instance variables.
        created_item_ids: Ids of the tasks or chains the step created.
        error: Failure message.
    """

    success: bool = True
    next_action: NextAction = NextAction.CONTINUE
    wait_for_item_type: WaitItemType | None = None
    wait_for_item_ids: list[int] = field(default_factory=list)
    wait_condition: WaitCondition = WaitCondition.ALL
    resume_at: datetime | None = None
    output_variables: dict[str, Any] = field(default_factory=dict)
    created_item_ids: list[int] = field(default_factory=list)
    error: str | None = None

    @classmethod
    def wait(
        cls,
        item_type: WaitItemType,
        item_ids: list[int] | None = None,
        condition: WaitCondition = WaitCondition.ALL,
        **kwargs: Any,
    ) -> StepResult:
        return cls(
            next_action=NextAction.WAIT,
            wait_for_item_type=item_type,
            wait_for_item_ids=list(item_ids or []),
            wait_condition=condition,
            **kwargs,
        )

    @classmethod
    def fail(cls, error: str) -> StepResult:
        return cls(success=False, next_action=NextAction.FAIL, error=error)


@dataclass
class StepContext:
    """Everything a handler may use to execute one step.

    Attributes:
        instance: The instance executing the step.
        step: The step definition.
        scope: Expression scope (process record, context, variables).
        store: Record store.
        now: Current time.
        tasks: Task service, for task-creating steps.
        approvals: Approval engine, for approval steps.
        notifier: Notification service.
    """

    instance: WorkflowInstance
    step: StepDefinition
    scope: Mapping[str, Any]
    store: RecordStore
    now: datetime
    tasks: TaskAssignmentService | None = None
    approvals: ApprovalChainEngine | None = None
    notifier: NotificationService | None = None

    def get(self, key: str, default: Any = None) -> Any:
        """Resolve a config value against the scope; unresolved values yield ``default``."""
        if key not in self.step.config:
            return default
        value = resolve_value(self.step.config[key], self.scope)
        return default if value is UNDEFINED else value

    def render(self, key: str, default: str = "") -> str:
        raw = self.step.config.get(key)
        return render_template(str(raw), self.scope) if raw is not None else default

    def require_tasks(self) -> TaskAssignmentService:
        if self.tasks is None:
            msg = "No task service is configured"
            raise WorkflowLogicError(msg, self.step.id)
        return self.tasks

    def require_approvals(self) -> ApprovalChainEngine:
        if self.approvals is None:
            msg = "No approval engine is configured"
            raise WorkflowLogicError(msg, self.step.id)
        return self.approvals


StepHandler = Callable[[StepContext], Awaitable[StepResult]]


def _int_or_none(value: Any) -> int | None:
    if value is None or value is UNDEFINED or value == "":
        return None
    return int(value)


def _assignee(ctx: StepContext, config: Mapping[str, Any]) -> int | None:
    if config.get("assignee_field"):
        return _int_or_none(resolve_path(ctx.scope, str(config["assignee_field"])))
    return _int_or_none(resolve_value(config.get("assignee_id"), ctx.scope))


def tasks_satisfy(tasks: list[TaskAssignment], condition: WaitCondition) -> bool:
    """Whether ``tasks`` satisfy a wait condition.

    Deleted tasks are ignored; an empty set satisfies every condition.
    """
    live = [task for task in tasks if not task.is_deleted]
    if not live:
        return True
    done = [task.status in _DONE_TASK_STATUSES for task in live]
    if condition is WaitCondition.ANY:
        return any(done)
    return all(done)


async def create_task(ctx: StepContext) -> StepResult:
    """Create a single task assignment.

    Config: ``title`` (template), ``assignee_id`` or ``assignee_field``,
    ``due_days``, ``depends_on_task_id``, ``output_variable`` and ``wait``.
    """
    tasks = ctx.require_tasks()
    title = ctx.render("title")
    if not title.strip():
        return StepResult.fail("Task title is required")
    due_days = _int_or_none(ctx.get("due_days"))
    task = await tasks.create_task(
        ctx.instance.process_id,
        title,
        assignee_id=_assignee(ctx, ctx.step.config),
        due_date=ctx.now + timedelta(days=due_days) if due_days is not None else None,
        depends_on_task_id=_int_or_none(ctx.get("depends_on_task_id")),
        workflow_instance_id=ctx.instance.id,
        workflow_step_id=ctx.step.id,
    )
    outputs = {ctx.step.config["output_variable"]: task.id} if ctx.step.config.get("output_variable") else {}
    if ctx.get("wait", False):
        return StepResult.wait(WaitItemType.TASK, [task.id], output_variables=outputs, created_item_ids=[task.id])
    return StepResult(output_variables=outputs, created_item_ids=[task.id])


async def assign_tasks(ctx: StepContext) -> StepResult:
    """Create a batch of tasks.

    Config: ``tasks``, a list of ``{title, assignee_id | assignee_field, due_days,
    depends_on}`` where ``depends_on`` is the index of an earlier entry, plus
    ``wait`` and ``wait_condition``.
    """
    tasks = ctx.require_tasks()
    specs = [
        TaskSpec(
            title=render_template(str(entry.get("title", "")), ctx.scope),
            assignee_id=_assignee(ctx, entry),
            due_days=_int_or_none(entry.get("due_days")),
            depends_on_index=_int_or_none(entry.get("depends_on")),
        )
        for entry in ctx.step.config.get("tasks") or []
    ]
    if not specs:
        return StepResult.fail("No tasks configured")
    created = await tasks.create_tasks(
        ctx.instance.process_id,
        specs,
        workflow_instance_id=ctx.instance.id,
        workflow_step_id=ctx.step.id,
    )
    ids = [task.id for task in created]
    if ctx.get("wait", False):
        condition = WaitCondition(ctx.get("wait_condition", WaitCondition.ALL))
        return StepResult.wait(WaitItemType.TASK, ids, condition, created_item_ids=ids)
    return StepResult(created_item_ids=ids)


async def wait_for_tasks(ctx: StepContext) -> StepResult:
    """Suspend until tasks created by earlier steps are done.

    Config: ``wait_for_step_ids`` (defaults to every task of the instance) and
    ``wait_condition`` (``all`` or ``any``).
    """
    tasks = ctx.require_tasks()
    condition = WaitCondition(ctx.get("wait_condition", WaitCondition.ALL))
    step_ids = ctx.step.config.get("wait_for_step_ids") or []
    awaited: list[TaskAssignment] = []
    if step_ids:
        for step_id in step_ids:
            awaited.extend(await tasks.list_tasks(workflow_instance_id=ctx.instance.id, workflow_step_id=str(step_id)))
    else:
        awaited = await tasks.list_tasks(workflow_instance_id=ctx.instance.id)
    if tasks_satisfy(awaited, condition):
        return StepResult()
    return StepResult.wait(WaitItemType.TASK, [task.id for task in awaited], condition)


async def approval(ctx: StepContext) -> StepResult:
    """Start an approval chain and suspend until it closes.

    Config: ``levels`` (approver ids may be ``{{path}}`` references), ``name``,
    ``escalation_action``, ``require_comments`` and ``allow_delegation``.
    """
    approvals = ctx.require_approvals()
    levels = []
    for raw in ctx.step.config.get("levels") or []:
        level = dict(raw)
        level["approver_ids"] = [
            approver for approver in (_int_or_none(resolve_value(a, ctx.scope)) for a in raw.get("approver_ids") or [])
            if approver is not None
        ]
        level["alternate_approver_ids"] = [
            approver
            for approver in (_int_or_none(resolve_value(a, ctx.scope)) for a in raw.get("alternate_approver_ids") or [])
            if approver is not None
        ]
        levels.append(level)
    chain = await approvals.initiate(
        ctx.instance.process_id,
        levels,
        name=ctx.render("name", ctx.step.name),
        escalation_action=EscalationAction(ctx.get("escalation_action", EscalationAction.NOTIFY)),
        require_comments=bool(ctx.get("require_comments", False)),
        allow_delegation=bool(ctx.get("allow_delegation", True)),
        workflow_instance_id=ctx.instance.id,
        workflow_step_id=ctx.step.id,
    )
    return StepResult.wait(WaitItemType.APPROVAL, [chain.id], WaitCondition.ALL_LEVELS, created_item_ids=[chain.id])


async def notification(ctx: StepContext) -> StepResult:
    """Send a templated notification and continue.

    Config: ``recipient_id`` or ``recipient_field``, ``title``, ``message``,
    ``priority`` and ``link_url``. Delivery failures do not fail the step.
    """
    if ctx.step.config.get("recipient_field"):
        recipient = _int_or_none(resolve_path(ctx.scope, str(ctx.step.config["recipient_field"])))
    else:
        recipient = _int_or_none(ctx.get("recipient_id"))
    if recipient is None:
        logger.warning("Notification step '%s' has no resolvable recipient", ctx.step.id)
        return StepResult()
    sent = await notify_safely(
        ctx.notifier,
        Notification(
            recipient_id=recipient,
            title=ctx.render("title", ctx.step.name),
            message=ctx.render("message"),
            priority=NotificationPriority(ctx.get("priority", NotificationPriority.NORMAL)),
            link_url=ctx.get("link_url"),
        ),
    )
    if not sent:
        logger.warning("Notification step '%s' could not deliver to user %d", ctx.step.id, recipient)
    return StepResult()


async def action(ctx: StepContext) -> StepResult:
    """Create or update a record from field-update descriptors.

    Config: ``action_type`` (``update_record`` or ``create_record``),
    ``collection`` (defaults to ``processes``), ``record_id`` (defaults to the
    instance's process for updates), ``field_updates`` and ``output_variable``.
    """
    action_type = ctx.get("action_type", "update_record")
    collection = str(ctx.get("collection", Collection.PROCESSES))
    values = build_field_values(parse_field_updates(ctx.step.config.get("field_updates") or []), ctx.scope)
    if action_type == "create_record":
        record_id = await ctx.store.add_record(collection, values)
        outputs = {ctx.step.config["output_variable"]: record_id} if ctx.step.config.get("output_variable") else {}
        return StepResult(output_variables=outputs)
    if action_type != "update_record":
        return StepResult.fail(f"Unknown action type '{action_type}'")
    record_id = _int_or_none(ctx.get("record_id"))
    if record_id is None and collection == Collection.PROCESSES:
        record_id = ctx.instance.process_id
    if record_id is None:
        return StepResult.fail(f"No record id to update in '{collection}'")
    if values:
        await ctx.store.update_record(collection, record_id, values)
    return StepResult()


async def set_variable(ctx: StepContext) -> StepResult:
    """Store a value in the instance variables.

    Config: ``name`` and either ``value`` or ``expression``.
    """
    name = ctx.step.config.get("name")
    if not name:
        return StepResult.fail("Variable name is required")
    raw = ctx.step.config.get("expression", ctx.step.config.get("value"))
    value = resolve_value(raw, ctx.scope)
    return StepResult(output_variables={str(name): None if value is UNDEFINED else value})


async def wait(ctx: StepContext) -> StepResult:
    """Suspend for external input, optionally until a point in time.

    Config: ``hours``, ``days`` or ``until_field`` (path to a datetime). Without
    any of them the step waits until it is completed explicitly.
    """
    resume_at: datetime | None = None
    if ctx.step.config.get("until_field"):
        resume_at = from_iso(resolve_path(ctx.scope, str(ctx.step.config["until_field"])))
        if resume_at is None:
            return StepResult.fail(f"'{ctx.step.config['until_field']}' does not hold a date")
    else:
        hours = float(ctx.get("hours", 0) or 0) + 24 * float(ctx.get("days", 0) or 0)
        if hours > 0:
            resume_at = ctx.now + timedelta(hours=hours)
    if resume_at is not None and resume_at <= ctx.now:
        return StepResult()
    return StepResult.wait(WaitItemType.INPUT, resume_at=resume_at)


DEFAULT_HANDLERS: dict[StepType, StepHandler] = {
    StepType.CREATE_TASK: create_task,
    StepType.ASSIGN_TASKS: assign_tasks,
    StepType.WAIT_FOR_TASKS: wait_for_tasks,
    StepType.APPROVAL: approval,
    StepType.NOTIFICATION: notification,
    StepType.ACTION: action,
    StepType.SET_VARIABLE: set_variable,
    StepType.WAIT: wait,
}
"""Handler for every step type."""
