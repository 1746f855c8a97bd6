"""Task assignments and the depends-on graph between them."""

from __future__ import annotations

from litestar_lifecycle.tasks.dependencies import CriticalPath, DependencyGraphEngine, DependencyInfo
from litestar_lifecycle.tasks.service import TaskAssignmentService, TaskSpec

__all__ = ["CriticalPath", "DependencyGraphEngine", "DependencyInfo", "TaskAssignmentService", "TaskSpec"]
