"""Workflow definition structures.

This module provides the data structures for defining a process workflow: the
ordered steps, their type-specific configuration, entry conditions and the
transition each step takes once it completes.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any

from litestar_lifecycle.core.expressions import ConditionGroup
from litestar_lifecycle.core.types import StepType, TransitionType

__all__ = ["Branch", "StepDefinition", "Transition", "WorkflowDefinition"]


@dataclass(frozen=True)
class Branch:
    """A guarded route out of a branching step.

    Attributes:
        target_step_id: Step to go to when the branch is taken.
        groups: Condition groups that must all hold; ignored for the default branch.
        is_default: Whether this branch is taken when no other branch matches.
        name: Optional label.
    """

    target_step_id: str
    groups: tuple[ConditionGroup, ...] = ()
    is_default: bool = False
    name: str | None = None

    @classmethod
    def from_dict(cls, raw: Mapping[str, Any]) -> Branch:
        return cls(
            target_step_id=str(raw["target_step_id"]),
            groups=tuple(ConditionGroup.from_dict(g) for g in raw.get("groups", ())),
            is_default=bool(raw.get("is_default", False)),
            name=raw.get("name"),
        )


@dataclass(frozen=True)
class Transition:
    """How a step selects its successor.

    Attributes:
        type: ``NEXT`` follows step order, ``GOTO`` jumps to ``target_step_id``,
            ``BRANCH`` evaluates ``branches``, ``END`` finishes the workflow.
        target_step_id: Target for ``GOTO``.
        branches: Routes for ``BRANCH``, evaluated in order.

    Example:
        >>> Transition(
        ...     type=TransitionType.BRANCH,
        ...     branches=(
        ...         Branch(
        ...             "provision",
        ...             groups=(ConditionGroup((Condition("result.approved", ConditionOperator.EQUALS, True),)),),
        ...         ),
        ...         Branch("notify_rejection", is_default=True),
        ...     ),
        ... )
    """

    type: TransitionType = TransitionType.NEXT
    target_step_id: str | None = None
    branches: tuple[Branch, ...] = ()

    @classmethod
    def from_dict(cls, raw: Mapping[str, Any]) -> Transition:
        return cls(
            type=TransitionType(raw.get("type", TransitionType.NEXT)),
            target_step_id=raw.get("target_step_id"),
            branches=tuple(Branch.from_dict(b) for b in raw.get("branches", ())),
        )

    def targets(self) -> list[str]:
        """Every step id this transition can lead to."""
        if self.type is TransitionType.GOTO and self.target_step_id:
            return [self.target_step_id]
        if self.type is TransitionType.BRANCH:
            return [branch.target_step_id for branch in self.branches]
        return []


@dataclass(frozen=True)
class StepDefinition:
    """One step of a workflow definition.

    Attributes:
        id: Unique step id within the definition.
        name: Display name.
        type: Closed step-type tag selecting the handler.
        order: Position used for ``NEXT`` transitions and to find the first step.
        config: Handler-specific configuration; string values may embed ``{{path}}`` references.
        conditions: Entry condition groups; the step is skipped when they do not hold.
        on_complete: Transition taken when the step completes; ``None`` means ``NEXT``.
    """

    id: str
    name: str
    type: StepType
    order: int
    config: dict[str, Any] = field(default_factory=dict)
    conditions: tuple[ConditionGroup, ...] = ()
    on_complete: Transition | None = None

    @classmethod
    def from_dict(cls, raw: Mapping[str, Any]) -> StepDefinition:
        on_complete = raw.get("on_complete")
        return cls(
            id=str(raw["id"]),
            name=str(raw.get("name") or raw["id"]),
            type=StepType(raw["type"]),
            order=int(raw.get("order", 0)),
            config=dict(raw.get("config") or {}),
            conditions=tuple(ConditionGroup.from_dict(g) for g in raw.get("conditions", ())),
            on_complete=Transition.from_dict(on_complete) if on_complete else None,
        )


@dataclass
class WorkflowDefinition:
    """Declarative workflow structure for one process type.

    Attributes:
        id: Identifier the definition is registered under.
        name: Human-readable name.
        version: Version string.
        steps: Step definitions; execution starts at the lowest ``order``.
        description: Optional description.
        process_type: Optional process category (onboarding, transfer, offboarding).

    Example:
        >>> definition = WorkflowDefinition(
        ...     id="onboarding",
        ...     name="Employee onboarding",
        ...     version="1",
        ...     steps=[
        ...         StepDefinition("it_setup", "IT setup", StepType.CREATE_TASK, 1, {"title": "Prepare laptop"}),
        ...         StepDefinition("manager_approval", "Approval", StepType.APPROVAL, 2, {"levels": [...]}),
        ...     ],
        ... )
    """

    id: str
    name: str
    version: str
    steps: list[StepDefinition]
    description: str = ""
    process_type: str | None = None

    @classmethod
    def from_dict(cls, raw: Mapping[str, Any]) -> WorkflowDefinition:
        """Build a definition from its serialized form."""
        return cls(
            id=str(raw["id"]),
            name=str(raw.get("name") or raw["id"]),
            version=str(raw.get("version", "1")),
            steps=[StepDefinition.from_dict(s) for s in raw.get("steps", ())],
            description=raw.get("description") or "",
            process_type=raw.get("process_type"),
        )

    @property
    def ordered_steps(self) -> list[StepDefinition]:
        return sorted(self.steps, key=lambda step: step.order)

    @property
    def first_step(self) -> StepDefinition | None:
        ordered = self.ordered_steps
        return ordered[0] if ordered else None

    def get_step(self, step_id: str) -> StepDefinition | None:
        """Return the step with ``step_id``, if any."""
        return next((step for step in self.steps if step.id == step_id), None)

    def validate(self) -> list[str]:
        """Validate the definition for structural issues.

        Returns:
            List of validation error messages. Empty list if valid.
        """
        errors: list[str] = []
        if not self.steps:
            errors.append(f"Workflow '{self.id}' has no steps")

        seen: set[str] = set()
        for step in self.steps:
            if step.id in seen:
                errors.append(f"Duplicate step id '{step.id}'")
            seen.add(step.id)

        orders = [step.order for step in self.steps]
        if len(orders) != len(set(orders)):
            errors.append("Step order values must be unique")

        for step in self.steps:
            transition = step.on_complete
            if transition is None:
                continue
            if transition.type is TransitionType.GOTO and not transition.target_step_id:
                errors.append(f"Step '{step.id}': goto transition has no target")
            if transition.type is TransitionType.BRANCH:
                if not transition.branches:
                    errors.append(f"Step '{step.id}': branch transition has no branches")
                if sum(1 for b in transition.branches if b.is_default) > 1:
                    errors.append(f"Step '{step.id}': more than one default branch")
            for target in transition.targets():
                if target not in seen:
                    errors.append(f"Step '{step.id}': transition target '{target}' not found")

        return errors
