"""Workflow execution engine implementations.

This module provides the instance engine that walks workflow definitions step
by step, the built-in step handlers, and the coordinator that resumes waiting
instances.
"""

from __future__ import annotations

from litestar_lifecycle.engine.graph import WorkflowGraph
from litestar_lifecycle.engine.handlers import DEFAULT_HANDLERS, StepContext, StepResult
from litestar_lifecycle.engine.instance import CompletionResult, WorkflowInstanceEngine
from litestar_lifecycle.engine.registry import WorkflowRegistry
from litestar_lifecycle.engine.resume import PollingConfig, PollResult, ResumeCoordinator, WaitStatus

__all__ = [
    "DEFAULT_HANDLERS",
    "CompletionResult",
    "PollResult",
    "PollingConfig",
    "ResumeCoordinator",
    "StepContext",
    "StepResult",
    "WaitStatus",
    "WorkflowGraph",
    "WorkflowInstanceEngine",
    "WorkflowRegistry",
]
