"""Employee onboarding example for litestar-lifecycle with SQLite persistence.

This example shows:
- Equipment tasks where account setup depends on the laptop arriving
- A manager sign-off approval with a branch on the decision
- Process status kept in step with the workflow by the sync bridge
- Built-in REST API endpoints under ``/lifecycle``

Run with:
    cd examples/onboarding
    litestar run

Example API Usage:
    # Register a new hire and start onboarding
    curl -X POST http://localhost:8000/processes \\
        -H "Content-Type: application/json" \\
        -d '{"employee_id": 42, "employee_name": "Ada Lovelace", "manager_id": 7, "department": "IT"}'

    # List the process's tasks and complete one
    curl "http://localhost:8000/lifecycle/tasks/?process_id=1"
    curl -X POST http://localhost:8000/lifecycle/tasks/1/complete

    # See what the manager has to approve, then approve it
    curl "http://localhost:8000/lifecycle/approvals/pending?approver_id=7"
    curl -X POST http://localhost:8000/lifecycle/approvals/requests/1/decision \\
        -H "Content-Type: application/json" \\
        -d '{"decision": "approve", "decided_by": 7}'
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Any

from litestar import Litestar, get, post
from litestar.openapi import OpenAPIConfig
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine

from litestar_lifecycle import LifecyclePlugin, LifecyclePluginConfig, LifecycleRuntime
from litestar_lifecycle.core.definition import Branch, StepDefinition, Transition, WorkflowDefinition
from litestar_lifecycle.core.expressions import Condition, ConditionGroup, ConditionOperator
from litestar_lifecycle.core.types import Collection, ProcessStatus, StepType, TransitionType
from litestar_lifecycle.db import LifecycleRecordModel, SQLAlchemyRecordStore
from litestar_lifecycle.engine.resume import PollingConfig

DATABASE_URL = os.environ.get("LIFECYCLE_DATABASE_URL", "sqlite+aiosqlite:///onboarding.db")

# =============================================================================
# Workflow Definition
# =============================================================================


def onboarding_workflow() -> WorkflowDefinition:
    """Equipment tasks, then manager sign-off, then a welcome or a hold.

    Flow:
        equipment -> manager_signoff -> welcome
                                     -> record_rejection
    """
    approved = ConditionGroup((Condition("result.approved", ConditionOperator.EQUALS, True),))
    return WorkflowDefinition(
        id="onboarding",
        name="Employee onboarding",
        version="1",
        description="Prepare equipment and get manager sign-off for a new hire",
        process_type="onboarding",
        steps=[
            StepDefinition(
                "equipment",
                "Prepare equipment",
                StepType.ASSIGN_TASKS,
                1,
                {
                    "tasks": [
                        {"title": "Order laptop for {{process.employee_name}}", "assignee_field": "process.manager_id"},
                        {"title": "Set up accounts", "assignee_field": "process.manager_id", "depends_on": 0},
                    ],
                    "wait": True,
                },
            ),
            StepDefinition(
                "manager_signoff",
                "Manager sign-off",
                StepType.APPROVAL,
                2,
                {
                    "levels": [{"approver_ids": ["{{process.manager_id}}"], "due_days": 3}],
                    "name": "Onboarding sign-off for {{process.employee_name}}",
                    "require_comments": True,
                },
                on_complete=Transition(
                    TransitionType.BRANCH,
                    branches=(Branch("welcome", (approved,)), Branch("record_rejection", is_default=True)),
                ),
            ),
            StepDefinition(
                "welcome",
                "Welcome the employee",
                StepType.NOTIFICATION,
                3,
                {"recipient_field": "process.employee_id", "title": "Welcome, {{process.employee_name}}!"},
                on_complete=Transition(TransitionType.END),
            ),
            StepDefinition(
                "record_rejection",
                "Record rejection",
                StepType.ACTION,
                4,
                {"field_updates": [{"field_name": "onboarding_outcome", "value": "rejected"}]},
            ),
        ],
    )


# =============================================================================
# Persistence
# =============================================================================

engine = create_async_engine(DATABASE_URL)
store = SQLAlchemyRecordStore(async_sessionmaker(engine, expire_on_commit=False))


async def create_tables() -> None:
    async with engine.begin() as conn:
        await conn.run_sync(LifecycleRecordModel.metadata.create_all)


async def dispose_engine() -> None:
    await engine.dispose()


# =============================================================================
# Route Handlers
# =============================================================================


@dataclass
class NewHire:
    """A new hire to onboard."""

    employee_id: int
    employee_name: str
    manager_id: int
    department: str | None = None
    start_date: str | None = None


@post("/processes")
async def register_new_hire(data: NewHire, lifecycle: LifecycleRuntime) -> dict[str, Any]:
    """Create an onboarding process and start its workflow."""
    process_id = await lifecycle.store.add_record(
        Collection.PROCESSES,
        {
            "status": str(ProcessStatus.PENDING),
            "process_type": "onboarding",
            "employee_id": data.employee_id,
            "employee_name": data.employee_name,
            "manager_id": data.manager_id,
            "department": data.department,
            "start_date": data.start_date,
        },
    )
    instance_id = await lifecycle.engine.start_registered("onboarding", {"process_id": process_id})
    instance = await lifecycle.engine.get_instance(instance_id)
    return {"process_id": process_id, "instance_id": instance_id, "status": str(instance.status)}


@get("/health")
async def health_check() -> dict[str, str]:
    """Health check endpoint."""
    return {"status": "healthy"}


# =============================================================================
# Application
# =============================================================================

app = Litestar(
    route_handlers=[register_new_hire, health_check],
    on_startup=[create_tables],
    on_shutdown=[dispose_engine],
    plugins=[
        LifecyclePlugin(
            config=LifecyclePluginConfig(
                store=store,
                definitions=[onboarding_workflow()],
                polling=PollingConfig(interval=60),
            )
        ),
    ],
    openapi_config=OpenAPIConfig(
        title="Litestar Lifecycle - Onboarding Example",
        version="1.0.0",
        description="Employee onboarding with task dependencies, approvals and status sync.",
    ),
    debug=True,
)
