"""Workflow graph operations and navigation.

This module resolves the successor of a completed step (next-by-order, goto,
branch or end) and provides structural checks over a workflow definition.
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import TYPE_CHECKING, Any

from litestar_lifecycle.core.expressions import evaluate_groups
from litestar_lifecycle.core.types import TransitionType

if TYPE_CHECKING:
    from litestar_lifecycle.core.definition import StepDefinition, WorkflowDefinition

__all__ = ["WorkflowGraph"]


class WorkflowGraph:
    """Graph representation of a workflow definition for navigation and validation.

    Attributes:
        definition: The workflow definition this graph represents.
        _ordered: Steps sorted by ``order``.
        _adjacency: Mapping of step id to the ids it can transition to.
    """

    def __init__(self, definition: WorkflowDefinition) -> None:
        """Initialize a workflow graph from a definition.

        Args:
            definition: The workflow definition to represent as a graph.
        """
        self.definition = definition
        self._ordered = definition.ordered_steps
        self._adjacency: dict[str, list[str]] = {}
        self._build_adjacency()

    def _build_adjacency(self) -> None:
        for index, step in enumerate(self._ordered):
            transition = step.on_complete
            if transition is None or transition.type is TransitionType.NEXT:
                following = self._ordered[index + 1 : index + 2]
                self._adjacency[step.id] = [s.id for s in following]
            else:
                self._adjacency[step.id] = transition.targets()

    @classmethod
    def from_definition(cls, definition: WorkflowDefinition) -> WorkflowGraph:
        """Create a workflow graph from a definition."""
        return cls(definition)

    def step_after(self, step: StepDefinition) -> StepDefinition | None:
        """The step following ``step`` by order, if any."""
        for candidate in self._ordered:
            if candidate.order > step.order:
                return candidate
        return None

    def get_next_step(self, step: StepDefinition, scope: Mapping[str, Any]) -> StepDefinition | None:
        """Resolve the successor of a completed step.

        A step without ``on_complete`` continues with the next step by order. A
        branch transition takes the first non-default branch whose condition groups
        all hold in ``scope``, falling back to the default branch.

        Args:
            step: The step that just completed.
            scope: Expression scope, including ``result`` for the completion payload.

        Returns:
            The next step, or ``None`` when the workflow is finished.
        """
        transition = step.on_complete
        if transition is None or transition.type is TransitionType.NEXT:
            return self.step_after(step)
        if transition.type is TransitionType.END:
            return None
        if transition.type is TransitionType.GOTO:
            return self.definition.get_step(transition.target_step_id or "")

        for branch in transition.branches:
            if not branch.is_default and evaluate_groups(branch.groups, scope):
                return self.definition.get_step(branch.target_step_id)
        default = next((branch for branch in transition.branches if branch.is_default), None)
        return self.definition.get_step(default.target_step_id) if default is not None else None

    def routes_outcome(self, step: StepDefinition, scope: Mapping[str, Any]) -> bool:
        """Whether ``on_complete`` explicitly decides where ``step`` goes in ``scope``.

        Goto and end transitions always do. A branch transition does when one of
        its branches matches or it has a default. Plain next-by-order does not.
        """
        transition = step.on_complete
        if transition is None or transition.type is TransitionType.NEXT:
            return False
        if transition.type is not TransitionType.BRANCH:
            return True
        return any(branch.is_default or evaluate_groups(branch.groups, scope) for branch in transition.branches)

    def get_next_steps(self, step_id: str) -> list[str]:
        """Every step id ``step_id`` can transition to."""
        return list(self._adjacency.get(step_id, []))

    def get_previous_steps(self, step_id: str) -> list[str]:
        """Step ids that can transition to ``step_id``."""
        return [source for source, targets in self._adjacency.items() if step_id in targets]

    def is_terminal(self, step_id: str) -> bool:
        """Whether completing ``step_id`` can finish the workflow."""
        step = self.definition.get_step(step_id)
        if step is None:
            return False
        transition = step.on_complete
        if transition is not None and transition.type is TransitionType.END:
            return True
        return not self._adjacency.get(step_id)

    def get_reachable_steps(self) -> set[str]:
        """Step ids reachable from the first step."""
        first = self.definition.first_step
        if first is None:
            return set()
        reachable: set[str] = set()
        to_visit = [first.id]
        while to_visit:
            current = to_visit.pop()
            if current in reachable:
                continue
            reachable.add(current)
            to_visit.extend(target for target in self._adjacency.get(current, []) if target not in reachable)
        return reachable

    def validate(self) -> list[str]:
        """Validate the definition and report unreachable steps.

        Returns:
            List of validation error messages. Empty list if valid.
        """
        errors = self.definition.validate()
        if errors:
            return errors
        reachable = self.get_reachable_steps()
        errors.extend(
            f"Step '{step.id}' is unreachable from the first step" for step in self._ordered if step.id not in reachable
        )
        return errors
