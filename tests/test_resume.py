"""Tests for the resume coordinator."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

import pytest

from litestar_lifecycle.core.definition import StepDefinition, WorkflowDefinition
from litestar_lifecycle.core.types import (
    ApprovalDecision,
    Collection,
    DeadLetterStatus,
    StepType,
    TaskStatus,
    WaitCondition,
    WorkflowStatus,
)
from litestar_lifecycle.engine.resume import RESUME_OPERATION_TYPES, PollingConfig
from litestar_lifecycle.exceptions import TransientStoreError
from litestar_lifecycle.runtime import build_runtime

if TYPE_CHECKING:
    from litestar_lifecycle.runtime import LifecycleRuntime
    from litestar_lifecycle.store.memory import InMemoryRecordStore
    from tests.conftest import FakeClock


def equipment_workflow(condition: WaitCondition = WaitCondition.ALL) -> WorkflowDefinition:
    return WorkflowDefinition(
        id=f"equipment_{condition}",
        name="Equipment",
        version="1",
        steps=[
            StepDefinition(
                "equipment",
                "Equipment",
                StepType.ASSIGN_TASKS,
                1,
                {
                    "tasks": [
                        {"title": "Order laptop", "assignee_id": 5},
                        {"title": "Order phone", "assignee_id": 6},
                    ],
                    "wait": True,
                    "wait_condition": str(condition),
                },
            ),
            StepDefinition("done", "Done", StepType.SET_VARIABLE, 2, {"name": "equipped", "value": True}),
        ],
    )


def timed_workflow(**wait_config: Any) -> WorkflowDefinition:
    return WorkflowDefinition(
        id="cooling_off",
        name="Cooling off",
        version="1",
        steps=[
            StepDefinition("cooling_off", "Cooling off", StepType.WAIT, 1, wait_config),
            StepDefinition("done", "Done", StepType.SET_VARIABLE, 2, {"name": "cooled", "value": True}),
        ],
    )


async def status_of(runtime: LifecycleRuntime, instance_id: int) -> WorkflowStatus:
    return (await runtime.engine.get_instance(instance_id)).status


@pytest.mark.integration
@pytest.mark.asyncio
class TestTaskWaits:
    """Tests for resuming instances waiting on tasks."""

    async def test_all_condition_waits_for_every_task(self, runtime: LifecycleRuntime, process_id: int) -> None:
        instance_id = await runtime.engine.start(equipment_workflow(), {"process_id": process_id})
        laptop, phone = await runtime.tasks.list_tasks(process_id)

        await runtime.tasks.complete_task(laptop.id)
        assert await status_of(runtime, instance_id) is WorkflowStatus.WAITING_FOR_TASK

        await runtime.tasks.complete_task(phone.id)
        assert await status_of(runtime, instance_id) is WorkflowStatus.COMPLETED

    async def test_any_condition_resumes_on_first_task(self, runtime: LifecycleRuntime, process_id: int) -> None:
        instance_id = await runtime.engine.start(equipment_workflow(WaitCondition.ANY), {"process_id": process_id})
        laptop, _ = await runtime.tasks.list_tasks(process_id)

        await runtime.tasks.complete_task(laptop.id)

        instance = await runtime.engine.get_instance(instance_id)
        assert instance.status is WorkflowStatus.COMPLETED
        assert instance.variables["equipped"] is True

    async def test_skipped_task_counts_as_done(self, runtime: LifecycleRuntime, process_id: int) -> None:
        instance_id = await runtime.engine.start(equipment_workflow(), {"process_id": process_id})
        laptop, phone = await runtime.tasks.list_tasks(process_id)

        await runtime.tasks.skip_task(laptop.id)
        await runtime.tasks.complete_task(phone.id)

        assert await status_of(runtime, instance_id) is WorkflowStatus.COMPLETED

    async def test_wait_for_tasks_of_earlier_step(self, runtime: LifecycleRuntime, process_id: int) -> None:
        definition = WorkflowDefinition(
            "setup",
            "Setup",
            "1",
            [
                StepDefinition("laptop", "Laptop", StepType.CREATE_TASK, 1, {"title": "Order laptop"}),
                StepDefinition("badge", "Badge", StepType.CREATE_TASK, 2, {"title": "Print badge"}),
                StepDefinition(
                    "await_laptop", "Await laptop", StepType.WAIT_FOR_TASKS, 3, {"wait_for_step_ids": ["laptop"]}
                ),
            ],
        )
        instance_id = await runtime.engine.start(definition, {"process_id": process_id})
        laptop, badge = await runtime.tasks.list_tasks(process_id)
        assert await status_of(runtime, instance_id) is WorkflowStatus.WAITING_FOR_TASK

        await runtime.tasks.complete_task(badge.id)
        assert await status_of(runtime, instance_id) is WorkflowStatus.WAITING_FOR_TASK

        await runtime.tasks.complete_task(laptop.id)
        assert await status_of(runtime, instance_id) is WorkflowStatus.COMPLETED

    async def test_unrelated_task_is_ignored(self, runtime: LifecycleRuntime, process_id: int) -> None:
        task = await runtime.tasks.create_task(process_id, "Water plants")

        assert not await runtime.coordinator.on_task_completed(task.id)
        assert not await runtime.coordinator.on_task_completed(999)


@pytest.mark.integration
@pytest.mark.asyncio
class TestApprovalWaits:
    """Tests for resuming instances waiting on approval chains."""

    async def test_resumes_when_last_level_closes(self, runtime: LifecycleRuntime, process_id: int) -> None:
        definition = WorkflowDefinition(
            "two_level",
            "Two level approval",
            "1",
            [
                StepDefinition(
                    "approval",
                    "Approval",
                    StepType.APPROVAL,
                    1,
                    {"levels": [{"approver_ids": [7]}, {"approver_ids": [8]}], "output_variable": "decision"},
                ),
            ],
        )
        instance_id = await runtime.engine.start(definition, {"process_id": process_id})

        [first] = await runtime.approvals.get_pending_for_approver(7)
        await runtime.approvals.submit_decision(first.id, ApprovalDecision.APPROVE)
        assert await status_of(runtime, instance_id) is WorkflowStatus.WAITING_FOR_APPROVAL

        [second] = await runtime.approvals.get_pending_for_approver(8)
        await runtime.approvals.submit_decision(second.id, ApprovalDecision.APPROVE)

        instance = await runtime.engine.get_instance(instance_id)
        assert instance.status is WorkflowStatus.COMPLETED
        assert instance.variables["decision"] == {
            "chain_id": first.chain_id,
            "approval_status": "approved",
            "approved": True,
        }

    async def test_wait_status_of_open_chain(self, runtime: LifecycleRuntime, process_id: int) -> None:
        definition = WorkflowDefinition(
            "approval",
            "Approval",
            "1",
            [StepDefinition("approval", "Approval", StepType.APPROVAL, 1, {"levels": [{"approver_ids": [7]}]})],
        )
        instance_id = await runtime.engine.start(definition, {"process_id": process_id})

        wait_status = await runtime.coordinator.get_workflow_wait_status(instance_id)

        assert wait_status.waiting_for == "approvals"
        assert wait_status.step_id == "approval"
        assert len(wait_status.pending_items) == 1
        assert not wait_status.can_resume
        assert wait_status.blocked_reason == "Waiting for approval chain to close"


@pytest.mark.integration
@pytest.mark.asyncio
class TestPolling:
    """Tests for the polling sweep."""

    async def test_poll_catches_missed_event(
        self, runtime: LifecycleRuntime, store: InMemoryRecordStore, process_id: int
    ) -> None:
        instance_id = await runtime.engine.start(equipment_workflow(), {"process_id": process_id})
        for task in await runtime.tasks.list_tasks(process_id):
            await store.update_record(Collection.TASK_ASSIGNMENTS, task.id, {"status": str(TaskStatus.COMPLETED)})

        result = await runtime.coordinator.poll()

        assert result.checked == 1
        assert result.resumed == 1
        assert result.resumed_instance_ids == [instance_id]
        assert await status_of(runtime, instance_id) is WorkflowStatus.COMPLETED

    async def test_sweeps_rotate_past_waits_that_never_resume(
        self, store: InMemoryRecordStore, clock: FakeClock, process_id: int
    ) -> None:
        runtime = build_runtime(store, polling=PollingConfig(enabled=False, batch_size=2), clock=clock)
        for _ in range(2):
            await runtime.engine.start(timed_workflow(), {"process_id": process_id})
        instance_id = await runtime.engine.start(equipment_workflow(), {"process_id": process_id})
        for task in await runtime.tasks.list_tasks(process_id):
            await store.update_record(Collection.TASK_ASSIGNMENTS, task.id, {"status": str(TaskStatus.COMPLETED)})

        first = await runtime.coordinator.poll()
        second = await runtime.coordinator.poll()

        assert (first.checked, first.resumed) == (2, 0)
        assert second.checked == 2
        assert second.resumed_instance_ids == [instance_id]
        assert await status_of(runtime, instance_id) is WorkflowStatus.COMPLETED

    async def test_poll_leaves_unfinished_waits(self, runtime: LifecycleRuntime, process_id: int) -> None:
        await runtime.engine.start(equipment_workflow(), {"process_id": process_id})

        result = await runtime.coordinator.poll()

        assert result.checked == 1
        assert result.resumed == 0
        assert result.failed == 0
        assert runtime.coordinator.get_polling_status()["last_result"]["checked"] == 1

    async def test_timed_wait_resumes_after_deadline(
        self, runtime: LifecycleRuntime, clock: FakeClock, process_id: int
    ) -> None:
        instance_id = await runtime.engine.start(timed_workflow(hours=2), {"process_id": process_id})
        assert await status_of(runtime, instance_id) is WorkflowStatus.WAITING_FOR_INPUT
        wait_status = await runtime.coordinator.get_workflow_wait_status(instance_id)
        assert wait_status.waiting_for == "input"
        assert wait_status.blocked_reason.startswith("Waiting until 2026-03-02T11:00")

        assert (await runtime.coordinator.poll()).resumed == 0

        clock.advance(hours=3)
        result = await runtime.coordinator.poll()

        assert result.resumed_instance_ids == [instance_id]
        instance = await runtime.engine.get_instance(instance_id)
        assert instance.status is WorkflowStatus.COMPLETED
        assert instance.variables["cooled"] is True

    async def test_input_wait_without_deadline(self, runtime: LifecycleRuntime, process_id: int) -> None:
        instance_id = await runtime.engine.start(timed_workflow(), {"process_id": process_id})

        wait_status = await runtime.coordinator.get_workflow_wait_status(instance_id)
        result = await runtime.coordinator.poll()

        assert wait_status.blocked_reason == "Waiting for external input"
        assert result.resumed == 0

    async def test_past_deadline_does_not_wait(self, runtime: LifecycleRuntime, process_id: int) -> None:
        instance_id = await runtime.engine.start(
            timed_workflow(until_field="context.deadline"),
            {"process_id": process_id, "deadline": "2026-03-01T09:00:00+00:00"},
        )

        assert await status_of(runtime, instance_id) is WorkflowStatus.COMPLETED

    async def test_until_field_must_hold_a_date(self, runtime: LifecycleRuntime, process_id: int) -> None:
        instance_id = await runtime.engine.start(
            timed_workflow(until_field="process.department"), {"process_id": process_id}
        )

        instance = await runtime.engine.get_instance(instance_id)
        assert instance.status is WorkflowStatus.FAILED
        assert "does not hold a date" in instance.error_message

    async def test_waiting_counts(self, runtime: LifecycleRuntime, process_id: int) -> None:
        await runtime.engine.start(equipment_workflow(), {"process_id": process_id})
        await runtime.engine.start(timed_workflow(), {"process_id": process_id})

        counts = await runtime.coordinator.get_waiting_counts()

        assert counts == {"waiting_for_approval": 0, "waiting_for_input": 1, "waiting_for_task": 1}

    async def test_start_and_stop_polling(self, store: InMemoryRecordStore) -> None:
        runtime = build_runtime(store, polling=PollingConfig(interval=3600))

        assert await runtime.coordinator.start_polling()
        assert runtime.coordinator.is_polling
        assert runtime.coordinator.get_polling_status()["is_active"]

        await runtime.coordinator.stop_polling()

        assert not runtime.coordinator.is_polling

    async def test_disabled_polling_does_not_start(self, runtime: LifecycleRuntime) -> None:
        assert not await runtime.coordinator.start_polling()
        assert not runtime.coordinator.is_polling


@pytest.mark.integration
@pytest.mark.asyncio
class TestResumeFailures:
    """Tests for retried and dead-lettered resumes."""

    async def test_exhausted_resume_is_dead_lettered_and_replayed(
        self, runtime: LifecycleRuntime, monkeypatch: pytest.MonkeyPatch, process_id: int
    ) -> None:
        instance_id = await runtime.engine.start(equipment_workflow(WaitCondition.ANY), {"process_id": process_id})
        laptop, _ = await runtime.tasks.list_tasks(process_id)

        async def unavailable(*args: Any, **kwargs: Any) -> None:
            raise TransientStoreError("complete_waiting_step", ConnectionError("database restarting"))

        monkeypatch.setattr(runtime.engine, "complete_waiting_step", unavailable)
        await runtime.tasks.complete_task(laptop.id)
        monkeypatch.undo()

        assert await status_of(runtime, instance_id) is WorkflowStatus.WAITING_FOR_TASK
        [item] = runtime.dead_letters.get_pending_items()
        assert item.operation_type == RESUME_OPERATION_TYPES["task"]
        assert item.attempts == 3
        assert item.payload["instance_id"] == instance_id
        assert item.payload["step_id"] == "equipment"
        assert "database restarting" in item.error
        step_status = await runtime.engine.get_step_status(instance_id, "equipment")
        assert step_status.retry_count == 3

        summary = await runtime.replayer.replay_pending()

        assert summary.resolved_ids == [item.id]
        assert (await runtime.dead_letters.get_item(item.id)).status is DeadLetterStatus.RESOLVED
        assert await status_of(runtime, instance_id) is WorkflowStatus.COMPLETED

    async def test_replaying_an_already_resumed_instance_is_harmless(
        self, runtime: LifecycleRuntime, process_id: int
    ) -> None:
        instance_id = await runtime.engine.start(equipment_workflow(WaitCondition.ANY), {"process_id": process_id})
        laptop, _ = await runtime.tasks.list_tasks(process_id)
        await runtime.tasks.complete_task(laptop.id)
        item = await runtime.dead_letters.enqueue(
            RESUME_OPERATION_TYPES["task"],
            {"instance_id": instance_id, "step_id": "equipment", "payload": {}},
            "timeout",
            attempts=3,
        )

        summary = await runtime.replayer.replay_item(item.id)

        assert summary.resolved_ids == [item.id]
        assert await status_of(runtime, instance_id) is WorkflowStatus.COMPLETED
