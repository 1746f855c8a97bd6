"""REST API for litestar-lifecycle.

The controllers are mounted by ``LifecyclePlugin`` when ``enable_api`` is set.
"""

from __future__ import annotations

from litestar_lifecycle.web.controllers import (
    AdminController,
    ApprovalController,
    ProcessController,
    TaskController,
    WorkflowInstanceController,
)
from litestar_lifecycle.web.exceptions import exception_handlers

__all__ = [
    "AdminController",
    "ApprovalController",
    "ProcessController",
    "TaskController",
    "WorkflowInstanceController",
    "exception_handlers",
]
