"""Tests for approval chains, delegation, escalation and expiry."""

from __future__ import annotations

from datetime import timedelta
from typing import TYPE_CHECKING

import pytest

from litestar_lifecycle.approvals.engine import ApprovalChainEngine
from litestar_lifecycle.core.events import ApprovalStatusChanged
from litestar_lifecycle.core.models import ApprovalLevel
from litestar_lifecycle.core.types import (
    ApprovalDecision,
    ApprovalStatus,
    ApprovalType,
    Collection,
    EscalationAction,
    ProcessStatus,
)
from litestar_lifecycle.exceptions import (
    ApprovalAlreadyDecidedError,
    ApprovalChainActiveError,
    ApprovalNotFoundError,
    MissingApproverError,
    UnauthorizedApproverError,
    ValidationError,
)
from litestar_lifecycle.notifications import NotificationPriority
from tests.conftest import EventRecorder

if TYPE_CHECKING:
    from litestar_lifecycle.core.events import LifecycleEventBus
    from litestar_lifecycle.runtime import LifecycleRuntime
    from litestar_lifecycle.store.memory import InMemoryRecordStore
    from tests.conftest import FakeClock, RecordingNotifier

APPROVE = ApprovalDecision.APPROVE
REJECT = ApprovalDecision.REJECT


@pytest.fixture
def recorder(event_bus: LifecycleEventBus) -> EventRecorder:
    recorder = EventRecorder()
    event_bus.subscribe(ApprovalStatusChanged, recorder)
    return recorder


def sequential(*approvers: int, **kwargs) -> ApprovalLevel:
    return ApprovalLevel(ApprovalType.SEQUENTIAL, list(approvers), **kwargs)


@pytest.mark.unit
@pytest.mark.asyncio
class TestInitiate:
    """Tests for starting approval chains."""

    async def test_sequential_level_queues_later_approvers(
        self, approval_engine: ApprovalChainEngine, notifier: RecordingNotifier, clock: FakeClock
    ) -> None:
        chain = await approval_engine.initiate(1, [sequential(11, 12)], name="Transfer approval")

        first, second = await approval_engine.get_requests(chain.id)
        assert chain.current_level == 1
        assert chain.is_active
        assert first.status is ApprovalStatus.PENDING
        assert second.status is ApprovalStatus.QUEUED
        assert first.due_date == clock.now + timedelta(days=3)
        assert notifier.recipients() == [11]
        assert notifier.sent[0].title == "Approval requested: Transfer approval"

    async def test_parallel_level_notifies_everyone(
        self, approval_engine: ApprovalChainEngine, notifier: RecordingNotifier
    ) -> None:
        chain = await approval_engine.initiate(
            1, [{"approval_type": "parallel", "approver_ids": [11, 12], "due_days": 1}]
        )

        requests = await approval_engine.get_requests(chain.id)
        assert [r.status for r in requests] == [ApprovalStatus.PENDING, ApprovalStatus.PENDING]
        assert sorted(notifier.recipients()) == [11, 12]

    async def test_chain_needs_levels_and_approvers(self, approval_engine: ApprovalChainEngine) -> None:
        with pytest.raises(MissingApproverError):
            await approval_engine.initiate(1, [])
        with pytest.raises(MissingApproverError, match="level 2"):
            await approval_engine.initiate(1, [sequential(11), sequential()])

    async def test_one_active_chain_per_process(self, approval_engine: ApprovalChainEngine) -> None:
        chain = await approval_engine.initiate(1, [sequential(11)])

        with pytest.raises(ApprovalChainActiveError) as exc_info:
            await approval_engine.initiate(1, [sequential(12)])
        assert exc_info.value.chain_id == chain.id

        [request] = await approval_engine.get_requests(chain.id)
        await approval_engine.submit_decision(request.id, APPROVE)
        assert await approval_engine.get_active_chain(1) is None
        await approval_engine.initiate(1, [sequential(12)])

    async def test_missing_request(self, approval_engine: ApprovalChainEngine) -> None:
        with pytest.raises(ApprovalNotFoundError):
            await approval_engine.get_request(5)


@pytest.mark.unit
@pytest.mark.asyncio
class TestDecisions:
    """Tests for submitting decisions and resolving levels."""

    async def test_sequential_level_activates_next_approver(
        self, approval_engine: ApprovalChainEngine, notifier: RecordingNotifier
    ) -> None:
        chain = await approval_engine.initiate(1, [sequential(11, 12)])
        first, second = await approval_engine.get_requests(chain.id)

        decided = await approval_engine.submit_decision(first.id, APPROVE, "Fine by me", decided_by=11)

        assert decided.status is ApprovalStatus.APPROVED
        assert decided.comments == "Fine by me"
        assert (await approval_engine.get_request(second.id)).status is ApprovalStatus.PENDING
        assert notifier.recipients() == [11, 12]
        assert (await approval_engine.get_chain(chain.id)).is_active

    async def test_sequential_rejection_closes_chain(
        self, approval_engine: ApprovalChainEngine, recorder: EventRecorder
    ) -> None:
        chain = await approval_engine.initiate(1, [sequential(11, 12), sequential(21)])
        first, second = await approval_engine.get_requests(chain.id)

        await approval_engine.submit_decision(first.id, REJECT, "Budget frozen")

        closed = await approval_engine.get_chain(chain.id)
        assert closed.overall_status is ApprovalStatus.REJECTED
        assert not closed.is_active
        assert (await approval_engine.get_request(second.id)).status is ApprovalStatus.SKIPPED
        assert len(await approval_engine.get_requests(chain.id)) == 2
        [event] = recorder.events
        assert event.chain_closed
        assert event.status is ApprovalStatus.REJECTED
        assert event.process_id == 1

    async def test_parallel_level_waits_for_every_approver(self, approval_engine: ApprovalChainEngine) -> None:
        chain = await approval_engine.initiate(1, [ApprovalLevel(ApprovalType.PARALLEL, [11, 12, 13])])
        first, second, third = await approval_engine.get_requests(chain.id)

        await approval_engine.submit_decision(first.id, APPROVE)
        await approval_engine.submit_decision(second.id, REJECT)
        assert (await approval_engine.get_chain(chain.id)).is_active

        await approval_engine.submit_decision(third.id, APPROVE)
        assert (await approval_engine.get_chain(chain.id)).overall_status is ApprovalStatus.REJECTED

    async def test_parallel_level_approves_when_all_approve(self, approval_engine: ApprovalChainEngine) -> None:
        chain = await approval_engine.initiate(1, [ApprovalLevel(ApprovalType.PARALLEL, [11, 12])])

        for request in await approval_engine.get_requests(chain.id):
            await approval_engine.submit_decision(request.id, APPROVE)

        assert (await approval_engine.get_chain(chain.id)).overall_status is ApprovalStatus.APPROVED

    async def test_first_approver_decides_level(self, approval_engine: ApprovalChainEngine) -> None:
        chain = await approval_engine.initiate(1, [ApprovalLevel(ApprovalType.FIRST_APPROVER, [11, 12])])
        first, second = await approval_engine.get_requests(chain.id)

        await approval_engine.submit_decision(second.id, APPROVE, decided_by=12)

        assert (await approval_engine.get_request(first.id)).status is ApprovalStatus.SKIPPED
        assert (await approval_engine.get_chain(chain.id)).overall_status is ApprovalStatus.APPROVED

    async def test_multi_level_chain(self, approval_engine: ApprovalChainEngine, recorder: EventRecorder) -> None:
        chain = await approval_engine.initiate(1, [sequential(11), sequential(21)])
        [level_one] = await approval_engine.get_requests(chain.id, level=1)

        await approval_engine.submit_decision(level_one.id, APPROVE)

        advanced = await approval_engine.get_chain(chain.id)
        assert advanced.current_level == 2
        assert recorder.events == []
        [level_two] = await approval_engine.get_requests(chain.id, level=2)
        assert level_two.approver_id == 21
        assert level_two.status is ApprovalStatus.PENDING

        await approval_engine.submit_decision(level_two.id, APPROVE)

        closed = await approval_engine.get_chain(chain.id)
        assert closed.overall_status is ApprovalStatus.APPROVED
        assert closed.completed_at is not None
        assert [e.status for e in recorder.events] == [ApprovalStatus.APPROVED]

    async def test_decision_on_decided_request(self, approval_engine: ApprovalChainEngine) -> None:
        chain = await approval_engine.initiate(1, [sequential(11, 12)])
        first, second = await approval_engine.get_requests(chain.id)
        await approval_engine.submit_decision(first.id, APPROVE)

        with pytest.raises(ApprovalAlreadyDecidedError):
            await approval_engine.submit_decision(first.id, REJECT)

    async def test_decision_on_queued_request(self, approval_engine: ApprovalChainEngine) -> None:
        chain = await approval_engine.initiate(1, [sequential(11, 12)])
        _, second = await approval_engine.get_requests(chain.id)

        with pytest.raises(ApprovalAlreadyDecidedError):
            await approval_engine.submit_decision(second.id, APPROVE)

    async def test_decision_by_wrong_user(self, approval_engine: ApprovalChainEngine) -> None:
        chain = await approval_engine.initiate(1, [sequential(11)])
        [request] = await approval_engine.get_requests(chain.id)

        with pytest.raises(UnauthorizedApproverError):
            await approval_engine.submit_decision(request.id, APPROVE, decided_by=99)

    async def test_rejection_requires_comments(self, approval_engine: ApprovalChainEngine) -> None:
        chain = await approval_engine.initiate(1, [sequential(11)], require_comments=True)
        [request] = await approval_engine.get_requests(chain.id)

        with pytest.raises(ValidationError, match="Comments"):
            await approval_engine.submit_decision(request.id, REJECT, "  ")

        decided = await approval_engine.submit_decision(request.id, REJECT, "Missing paperwork")
        assert decided.status is ApprovalStatus.REJECTED

    async def test_pending_for_approver(self, approval_engine: ApprovalChainEngine) -> None:
        chain = await approval_engine.initiate(1, [sequential(11, 12)])
        await approval_engine.initiate(2, [sequential(11)])

        assert len(await approval_engine.get_pending_for_approver(11)) == 2
        assert await approval_engine.get_pending_for_approver(12) == []

        first, _ = await approval_engine.get_requests(chain.id)
        await approval_engine.submit_decision(first.id, APPROVE)
        assert len(await approval_engine.get_pending_for_approver(12)) == 1

    async def test_history(self, approval_engine: ApprovalChainEngine) -> None:
        chain = await approval_engine.initiate(1, [sequential(11, 12)])
        first, second = await approval_engine.get_requests(chain.id)

        await approval_engine.submit_decision(first.id, APPROVE, decided_by=11)
        await approval_engine.submit_decision(second.id, APPROVE, decided_by=12)

        history = await approval_engine.get_history(chain_id=chain.id)
        assert [entry.action for entry in history] == ["created", "created", "approve", "activated", "approve"]
        assert history[2].performed_by == 11
        assert history[2].previous_status is ApprovalStatus.PENDING
        assert [e.action for e in await approval_engine.get_history(approval_id=second.id)] == [
            "created",
            "activated",
            "approve",
        ]


@pytest.mark.unit
@pytest.mark.asyncio
class TestDelegation:
    """Tests for delegating requests and delegation rules."""

    async def test_delegate_request(self, approval_engine: ApprovalChainEngine, notifier: RecordingNotifier) -> None:
        chain = await approval_engine.initiate(1, [sequential(11)])
        [request] = await approval_engine.get_requests(chain.id)

        delegated = await approval_engine.delegate_approval(request.id, 30, "On leave", delegated_by=11)

        assert delegated.status is ApprovalStatus.DELEGATED
        assert delegated.approver_id == 30
        assert delegated.original_approver_id == 11
        assert notifier.recipients()[-2:] == [30, 11]

        redelegated = await approval_engine.delegate_approval(request.id, 31)
        assert redelegated.approver_id == 31
        assert redelegated.original_approver_id == 11

        with pytest.raises(UnauthorizedApproverError):
            await approval_engine.submit_decision(request.id, APPROVE, decided_by=30)
        decided = await approval_engine.submit_decision(request.id, APPROVE, decided_by=31)
        assert decided.status is ApprovalStatus.APPROVED

    async def test_delegation_can_be_disabled(self, approval_engine: ApprovalChainEngine) -> None:
        chain = await approval_engine.initiate(1, [sequential(11)], allow_delegation=False)
        [request] = await approval_engine.get_requests(chain.id)

        with pytest.raises(ValidationError, match="does not allow delegation"):
            await approval_engine.delegate_approval(request.id, 30)

    async def test_delegate_to_current_approver(self, approval_engine: ApprovalChainEngine) -> None:
        chain = await approval_engine.initiate(1, [sequential(11)])
        [request] = await approval_engine.get_requests(chain.id)

        with pytest.raises(ValidationError):
            await approval_engine.delegate_approval(request.id, 11)

    async def test_delegation_rule_redirects_new_requests(
        self, approval_engine: ApprovalChainEngine, clock: FakeClock
    ) -> None:
        await approval_engine.add_delegation_rule(11, 30, clock.now - timedelta(days=1), clock.now + timedelta(days=5))

        chain = await approval_engine.initiate(1, [sequential(11)])

        [request] = await approval_engine.get_requests(chain.id)
        assert request.approver_id == 30
        assert request.original_approver_id == 11

    async def test_delegation_rule_outside_window(self, approval_engine: ApprovalChainEngine, clock: FakeClock) -> None:
        await approval_engine.add_delegation_rule(11, 30, clock.now + timedelta(days=1), clock.now + timedelta(days=5))

        chain = await approval_engine.initiate(1, [sequential(11)])

        [request] = await approval_engine.get_requests(chain.id)
        assert request.approver_id == 11
        assert request.original_approver_id is None

    async def test_deactivated_rule_is_ignored(self, approval_engine: ApprovalChainEngine, clock: FakeClock) -> None:
        rule = await approval_engine.add_delegation_rule(11, 30, clock.now, clock.now + timedelta(days=5))
        await approval_engine.deactivate_delegation_rule(rule.id)

        chain = await approval_engine.initiate(1, [sequential(11)])

        [request] = await approval_engine.get_requests(chain.id)
        assert request.approver_id == 11

    async def test_invalid_rules(self, approval_engine: ApprovalChainEngine, clock: FakeClock) -> None:
        with pytest.raises(ValidationError, match="themselves"):
            await approval_engine.add_delegation_rule(11, 11, clock.now, clock.now + timedelta(days=1))
        with pytest.raises(ValidationError, match="after its start"):
            await approval_engine.add_delegation_rule(11, 30, clock.now, clock.now)


@pytest.mark.unit
@pytest.mark.asyncio
class TestEscalation:
    """Tests for escalating overdue requests."""

    async def test_notify_escalation(
        self,
        approval_engine: ApprovalChainEngine,
        notifier: RecordingNotifier,
        recorder: EventRecorder,
        clock: FakeClock,
    ) -> None:
        chain = await approval_engine.initiate(1, [sequential(11)])
        [request] = await approval_engine.get_requests(chain.id)

        assert await approval_engine.process_escalations() == []
        clock.advance(days=4)
        assert await approval_engine.process_escalations() == [request.id]

        escalated = await approval_engine.get_request(request.id)
        assert escalated.status is ApprovalStatus.ESCALATED
        assert escalated.is_overdue
        assert escalated.escalation_level == 1
        assert escalated.approver_id == 11
        assert notifier.sent[-1].priority is NotificationPriority.HIGH
        assert notifier.sent[-1].recipient_id == 11
        [event] = recorder.events
        assert event.status is ApprovalStatus.ESCALATED
        assert event.approval_id == request.id
        assert not event.chain_closed

        assert await approval_engine.process_escalations() == []

    async def test_escalation_happens_once(self, approval_engine: ApprovalChainEngine) -> None:
        chain = await approval_engine.initiate(1, [sequential(11)])
        [request] = await approval_engine.get_requests(chain.id)

        await approval_engine.escalate_approval(request.id)
        again = await approval_engine.escalate_approval(request.id)

        assert again.escalation_level == 1

    async def test_escalated_request_can_still_be_decided(self, approval_engine: ApprovalChainEngine) -> None:
        chain = await approval_engine.initiate(1, [sequential(11)])
        [request] = await approval_engine.get_requests(chain.id)
        await approval_engine.escalate_approval(request.id)

        decided = await approval_engine.submit_decision(request.id, APPROVE, decided_by=11)

        assert decided.status is ApprovalStatus.APPROVED

    async def test_auto_approve(self, approval_engine: ApprovalChainEngine, recorder: EventRecorder) -> None:
        chain = await approval_engine.initiate(1, [sequential(11)], escalation_action=EscalationAction.AUTO_APPROVE)
        [request] = await approval_engine.get_requests(chain.id)

        approved = await approval_engine.escalate_approval(request.id)

        assert approved.status is ApprovalStatus.APPROVED
        assert approved.comments
        assert (await approval_engine.get_chain(chain.id)).overall_status is ApprovalStatus.APPROVED
        assert [(e.status, e.chain_closed) for e in recorder.events] == [
            (ApprovalStatus.ESCALATED, False),
            (ApprovalStatus.APPROVED, True),
        ]
        actions = [entry.action for entry in await approval_engine.get_history(approval_id=request.id)]
        assert actions == ["created", "auto_approved"]

    async def test_assign_to_manager(
        self, approval_engine: ApprovalChainEngine, store: InMemoryRecordStore, notifier: RecordingNotifier
    ) -> None:
        await store.add_record(Collection.EMPLOYEES, {"user_id": 11, "manager_id": 50})
        chain = await approval_engine.initiate(
            1, [sequential(11)], escalation_action=EscalationAction.ASSIGN_TO_MANAGER
        )
        [request] = await approval_engine.get_requests(chain.id)

        escalated = await approval_engine.escalate_approval(request.id)

        assert escalated.status is ApprovalStatus.ESCALATED
        assert escalated.approver_id == 50
        assert escalated.original_approver_id == 11
        assert notifier.sent[-1].recipient_id == 50

    async def test_assign_to_alternate(self, approval_engine: ApprovalChainEngine) -> None:
        chain = await approval_engine.initiate(
            1,
            [sequential(11, alternate_approver_ids=[60])],
            escalation_action=EscalationAction.ASSIGN_TO_ALTERNATE,
        )
        [request] = await approval_engine.get_requests(chain.id)

        escalated = await approval_engine.escalate_approval(request.id)

        assert escalated.approver_id == 60

    async def test_missing_manager_falls_back_to_notify(self, approval_engine: ApprovalChainEngine) -> None:
        chain = await approval_engine.initiate(
            1, [sequential(11)], escalation_action=EscalationAction.ASSIGN_TO_MANAGER
        )
        [request] = await approval_engine.get_requests(chain.id)

        escalated = await approval_engine.escalate_approval(request.id)

        assert escalated.status is ApprovalStatus.ESCALATED
        assert escalated.approver_id == 11

    async def test_strict_escalation(self, store: InMemoryRecordStore, clock: FakeClock) -> None:
        engine = ApprovalChainEngine(store, clock=clock, strict_escalation=True)
        chain = await engine.initiate(1, [sequential(11)], escalation_action=EscalationAction.ASSIGN_TO_MANAGER)
        [request] = await engine.get_requests(chain.id)

        with pytest.raises(MissingApproverError):
            await engine.escalate_approval(request.id)

        clock.advance(days=4)
        assert await engine.process_escalations() == []
        assert (await engine.get_request(request.id)).status is ApprovalStatus.PENDING


@pytest.mark.unit
@pytest.mark.asyncio
class TestExpiryAndCancellation:
    """Tests for expiring and cancelling open requests."""

    async def test_expire_closes_chain(
        self, approval_engine: ApprovalChainEngine, recorder: EventRecorder, clock: FakeClock
    ) -> None:
        chain = await approval_engine.initiate(1, [sequential(11, 12)])
        first, second = await approval_engine.get_requests(chain.id)

        assert await approval_engine.expire_approvals() == []
        clock.advance(days=31)
        expired = await approval_engine.expire_approvals()

        assert expired == [first.id]
        assert (await approval_engine.get_request(second.id)).status is ApprovalStatus.SKIPPED
        closed = await approval_engine.get_chain(chain.id)
        assert closed.overall_status is ApprovalStatus.REJECTED
        assert not closed.is_active
        [event] = recorder.events
        assert event.status is ApprovalStatus.EXPIRED
        assert event.chain_closed

    async def test_expiry_after_partial_sequential_approval_rejects(
        self, approval_engine: ApprovalChainEngine, clock: FakeClock
    ) -> None:
        chain = await approval_engine.initiate(1, [sequential(11, 12, 13)])
        first, _, _ = await approval_engine.get_requests(chain.id)
        await approval_engine.submit_decision(first.id, APPROVE, decided_by=11)

        clock.advance(days=31)
        await approval_engine.expire_approvals()

        statuses = [(r.approver_id, r.status) for r in await approval_engine.get_requests(chain.id)]
        assert statuses == [
            (11, ApprovalStatus.APPROVED),
            (12, ApprovalStatus.EXPIRED),
            (13, ApprovalStatus.SKIPPED),
        ]
        closed = await approval_engine.get_chain(chain.id)
        assert closed.overall_status is ApprovalStatus.REJECTED
        assert not closed.is_active

    async def test_expiry_after_partial_parallel_approval_rejects(
        self, approval_engine: ApprovalChainEngine, clock: FakeClock
    ) -> None:
        chain = await approval_engine.initiate(1, [ApprovalLevel(ApprovalType.PARALLEL, [11, 12])])
        first, second = await approval_engine.get_requests(chain.id)
        await approval_engine.submit_decision(first.id, APPROVE, decided_by=11)

        clock.advance(days=31)
        assert await approval_engine.expire_approvals() == [second.id]

        closed = await approval_engine.get_chain(chain.id)
        assert closed.overall_status is ApprovalStatus.REJECTED

    async def test_expiry_leaves_later_levels_untouched(
        self, approval_engine: ApprovalChainEngine, clock: FakeClock
    ) -> None:
        chain = await approval_engine.initiate(1, [sequential(11), sequential(12)])
        [first] = await approval_engine.get_requests(chain.id)
        clock.advance(days=20)
        await approval_engine.submit_decision(first.id, APPROVE, decided_by=11)

        clock.advance(days=15)
        assert await approval_engine.expire_approvals() == []
        assert (await approval_engine.get_chain(chain.id)).is_active

    async def test_cancel_pending_for_process(
        self, approval_engine: ApprovalChainEngine, recorder: EventRecorder
    ) -> None:
        chain = await approval_engine.initiate(1, [sequential(11, 12)])

        cancelled = await approval_engine.cancel_pending_for_process(1, "Offer withdrawn")

        assert cancelled == 2
        assert all(r.status is ApprovalStatus.CANCELLED for r in await approval_engine.get_requests(chain.id))
        closed = await approval_engine.get_chain(chain.id)
        assert closed.overall_status is ApprovalStatus.CANCELLED
        assert recorder.events[-1].status is ApprovalStatus.CANCELLED
        assert await approval_engine.cancel_pending_for_process(1) == 0


@pytest.mark.integration
@pytest.mark.asyncio
class TestApprovalProcessSync:
    """Tests for approval outcomes reaching the process record."""

    async def test_rejected_last_level_puts_process_on_hold(
        self, runtime: LifecycleRuntime, store: InMemoryRecordStore, process_id: int
    ) -> None:
        approvals = runtime.approvals
        chain = await approvals.initiate(
            process_id,
            [{"approver_ids": [101]}, {"approver_ids": [102]}, {"approver_ids": [103]}],
            name="Senior hire approval",
        )

        for approver in (101, 102):
            [request] = await approvals.get_pending_for_approver(approver)
            await approvals.submit_decision(request.id, APPROVE, decided_by=approver)
        [last] = await approvals.get_pending_for_approver(103)
        await approvals.submit_decision(last.id, REJECT, "Headcount not approved", decided_by=103)

        closed = await approvals.get_chain(chain.id)
        assert closed.overall_status is ApprovalStatus.REJECTED
        process = await store.get_record(Collection.PROCESSES, process_id)
        assert process["status"] == ProcessStatus.ON_HOLD

    async def test_approved_chain_moves_process_in_progress(
        self, runtime: LifecycleRuntime, store: InMemoryRecordStore, process_id: int
    ) -> None:
        await runtime.approvals.initiate(process_id, [{"approval_type": "first_approver", "approver_ids": [101, 102]}])

        [request] = await runtime.approvals.get_pending_for_approver(102)
        await runtime.approvals.submit_decision(request.id, APPROVE)

        process = await store.get_record(Collection.PROCESSES, process_id)
        assert process["status"] == ProcessStatus.IN_PROGRESS
