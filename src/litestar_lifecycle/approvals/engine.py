"""Multi-level approval chain engine.

A chain is an ordered list of levels. Each level creates one request per
approver and resolves according to its approval type:

- ``SEQUENTIAL``: approvers act one at a time in order; a rejection fails the level.
- ``PARALLEL``: all approvers act; the level completes once every request is terminal.
- ``FIRST_APPROVER``: the first response decides the level; the rest are skipped.

An approved level activates the next one; a rejected level, or an approved last
level, closes the chain. Every closing publishes an ``ApprovalStatusChanged``
event, which the status sync bridge and the resume coordinator react to.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping, Sequence
from datetime import timedelta
from typing import TYPE_CHECKING, Any

from litestar_lifecycle.approvals.delegation import DelegationService
from litestar_lifecycle.core.clock import Clock, to_iso, utc_now
from litestar_lifecycle.core.events import ApprovalStatusChanged
from litestar_lifecycle.core.models import (
    ApprovalChain,
    ApprovalHistoryEntry,
    ApprovalLevel,
    ApprovalRequest,
    DelegationRule,
)
from litestar_lifecycle.core.types import (
    ACTIONABLE_APPROVAL_STATUSES,
    ApprovalDecision,
    ApprovalStatus,
    ApprovalType,
    Collection,
    EscalationAction,
)
from litestar_lifecycle.exceptions import (
    ApprovalAlreadyDecidedError,
    ApprovalChainActiveError,
    ApprovalNotFoundError,
    MissingApproverError,
    UnauthorizedApproverError,
    ValidationError,
)
from litestar_lifecycle.notifications import Notification, NotificationPriority, notify_safely
from litestar_lifecycle.store.filters import eq, is_in

if TYPE_CHECKING:
    from datetime import datetime

    from litestar_lifecycle.core.events import LifecycleEventBus
    from litestar_lifecycle.core.protocols import NotificationService, RecordStore

__all__ = ["ApprovalChainEngine"]

logger = logging.getLogger(__name__)

_OPEN_STATUSES = (*ACTIONABLE_APPROVAL_STATUSES, ApprovalStatus.QUEUED)
_AUTO_APPROVE_COMMENT = "Automatically approved after passing its due date"


class ApprovalChainEngine:
    """Drives approval chains from initiation to a terminal outcome.

    Attributes:
        store: Record store holding chains, requests and history.
        notifier: Notification service for approvers.
        events: Event bus receiving ``ApprovalStatusChanged`` events.
        delegation: Delegation rule lookup used when requests are created.
        strict_escalation: Raise ``MissingApproverError`` instead of falling back to
            ``NOTIFY`` when a reassignment target cannot be resolved.

    Example:
        >>> chain = await engine.initiate(
        ...     process_id=7,
        ...     levels=[ApprovalLevel(ApprovalType.SEQUENTIAL, approver_ids=[11, 12])],
        ... )
        >>> first = (await engine.get_requests(chain.id))[0]
        >>> await engine.submit_decision(first.id, ApprovalDecision.APPROVE, decided_by=11)
    """

    def __init__(
        self,
        store: RecordStore,
        notifier: NotificationService | None = None,
        events: LifecycleEventBus | None = None,
        *,
        clock: Clock = utc_now,
        strict_escalation: bool = False,
        delegation: DelegationService | None = None,
    ) -> None:
        """Initialize the engine.

        Args:
            store: Record store holding chains, requests and history.
            notifier: Notification service for approvers.
            events: Event bus receiving status events.
            clock: Time source.
            strict_escalation: Whether unresolvable reassignments raise.
            delegation: Delegation rule lookup; one is created over ``store`` if omitted.
        """
        self.store = store
        self.notifier = notifier
        self.events = events
        self.strict_escalation = strict_escalation
        self._clock = clock
        self.delegation = delegation or DelegationService(store, clock=clock)

    # Read helpers

    async def get_chain(self, chain_id: int) -> ApprovalChain:
        """Load a chain.

        Raises:
            ApprovalNotFoundError: If the chain does not exist.
        """
        record = await self.store.get_record(Collection.APPROVAL_CHAINS, chain_id)
        if record is None:
            raise ApprovalNotFoundError(Collection.APPROVAL_CHAINS, chain_id)
        return ApprovalChain.from_record(record)

    async def get_active_chain(self, process_id: int) -> ApprovalChain | None:
        """Return the chain currently gating ``process_id``, if any."""
        records = await self.store.query_records(
            Collection.APPROVAL_CHAINS,
            [eq("process_id", process_id), eq("is_active", True)],
            order_by="-id",
            top=1,
        )
        return ApprovalChain.from_record(records[0]) if records else None

    async def get_request(self, approval_id: int) -> ApprovalRequest:
        """Load an approval request.

        Raises:
            ApprovalNotFoundError: If the request does not exist.
        """
        record = await self.store.get_record(Collection.APPROVALS, approval_id)
        if record is None:
            raise ApprovalNotFoundError(Collection.APPROVALS, approval_id)
        return ApprovalRequest.from_record(record)

    async def get_requests(self, chain_id: int, level: int | None = None) -> list[ApprovalRequest]:
        """Requests of a chain ordered by level, then sequence."""
        filters = [eq("chain_id", chain_id)]
        if level is not None:
            filters.append(eq("level", level))
        records = await self.store.query_records(Collection.APPROVALS, filters, order_by="id")
        requests = [ApprovalRequest.from_record(r) for r in records]
        return sorted(requests, key=lambda r: (r.level, r.sequence))

    async def get_pending_for_approver(self, approver_id: int) -> list[ApprovalRequest]:
        """Requests waiting for a decision from ``approver_id``."""
        records = await self.store.query_records(
            Collection.APPROVALS,
            [eq("approver_id", approver_id), is_in("status", [str(s) for s in ACTIONABLE_APPROVAL_STATUSES])],
            order_by="due_date",
        )
        return [ApprovalRequest.from_record(r) for r in records]

    async def get_history(
        self, *, chain_id: int | None = None, approval_id: int | None = None
    ) -> list[ApprovalHistoryEntry]:
        """Audit trail of a chain or a single request, oldest first."""
        filters = []
        if chain_id is not None:
            filters.append(eq("chain_id", chain_id))
        if approval_id is not None:
            filters.append(eq("approval_id", approval_id))
        records = await self.store.query_records(Collection.APPROVAL_HISTORY, filters, order_by="id")
        return [ApprovalHistoryEntry.from_record(r) for r in records]

    # Delegation rules

    async def add_delegation_rule(
        self,
        delegator_id: int,
        delegate_id: int,
        start: datetime,
        end: datetime,
        reason: str | None = None,
    ) -> DelegationRule:
        """Redirect new requests for ``delegator_id`` to ``delegate_id`` during ``[start, end]``."""
        return await self.delegation.add_rule(delegator_id, delegate_id, start, end, reason)

    async def deactivate_delegation_rule(self, rule_id: int) -> DelegationRule:
        return await self.delegation.deactivate_rule(rule_id)

    # Chain lifecycle

    async def initiate(
        self,
        process_id: int,
        levels: Sequence[ApprovalLevel | Mapping[str, Any]],
        *,
        name: str = "Approval",
        escalation_action: EscalationAction = EscalationAction.NOTIFY,
        require_comments: bool = False,
        allow_delegation: bool = True,
        workflow_instance_id: int | None = None,
        workflow_step_id: str | None = None,
    ) -> ApprovalChain:
        """Start a chain for ``process_id`` and create the requests of its first level.

        Args:
            process_id: The process to gate.
            levels: Levels in order, as ``ApprovalLevel`` or their serialized form.
            name: Display name of the chain.
            escalation_action: What happens to overdue requests.
            require_comments: Whether rejections must carry comments.
            allow_delegation: Whether approvers may delegate requests.
            workflow_instance_id: Instance that waits on the chain, if any.
            workflow_step_id: Step that waits on the chain, if any.

        Returns:
            The new chain.

        Raises:
            MissingApproverError: If there are no levels or a level has no approver.
            ApprovalChainActiveError: If the process already has an active chain.
        """
        parsed = [
            level if isinstance(level, ApprovalLevel) else ApprovalLevel.from_dict(dict(level)) for level in levels
        ]
        if not parsed:
            msg = "An approval chain needs at least one level"
            raise MissingApproverError(msg)
        for number, level in enumerate(parsed, start=1):
            if not level.approver_ids:
                msg = f"Approval level {number} has no approvers"
                raise MissingApproverError(msg)

        active = await self.get_active_chain(process_id)
        if active is not None:
            raise ApprovalChainActiveError(process_id, active.id)

        chain = ApprovalChain(
            id=0,
            process_id=process_id,
            levels=parsed,
            name=name,
            escalation_action=EscalationAction(escalation_action),
            require_comments=require_comments,
            allow_delegation=allow_delegation,
            workflow_instance_id=workflow_instance_id,
            workflow_step_id=workflow_step_id,
            started_at=self._clock(),
        )
        chain.id = await self.store.add_record(Collection.APPROVAL_CHAINS, chain.to_fields())
        logger.info("Initiated approval chain %d for process %d with %d levels", chain.id, process_id, len(parsed))
        await self.create_level_approvals(chain, 1)
        return chain

    async def create_level_approvals(self, chain: ApprovalChain, level_number: int) -> list[ApprovalRequest]:
        """Create one request per approver of a level.

        Requests for an approver covered by an active delegation rule go to the
        delegate. In a sequential level only the first request is ``PENDING``; the
        others wait ``QUEUED`` for their turn.
        """
        level = chain.level(level_number)
        now = self._clock()
        created: list[ApprovalRequest] = []
        for sequence, approver_id in enumerate(level.approver_ids):
            delegate_id = await self.delegation.resolve_delegate(approver_id, now)
            queued = level.approval_type is ApprovalType.SEQUENTIAL and sequence > 0
            request = ApprovalRequest(
                id=0,
                chain_id=chain.id,
                process_id=chain.process_id,
                level=level_number,
                sequence=sequence,
                approver_id=delegate_id if delegate_id is not None else approver_id,
                original_approver_id=approver_id if delegate_id is not None else None,
                status=ApprovalStatus.QUEUED if queued else ApprovalStatus.PENDING,
                approval_type=level.approval_type,
                requested_at=now,
                due_date=now + timedelta(days=level.due_days),
            )
            request.id = await self.store.add_record(Collection.APPROVALS, request.to_fields())
            await self._record_history(request, "created", None, request.status)
            if request.is_actionable:
                await self._notify_approver(chain, request)
            created.append(request)
        return created

    async def submit_decision(
        self,
        approval_id: int,
        decision: ApprovalDecision,
        comments: str | None = None,
        decided_by: int | None = None,
    ) -> ApprovalRequest:
        """Record an approver's decision and advance the chain.

        Args:
            approval_id: The request being decided.
            decision: Approve or reject.
            comments: Decision comments.
            decided_by: User submitting the decision; must be the current approver.

        Returns:
            The decided request.

        Raises:
            ApprovalAlreadyDecidedError: If the request is not actionable.
            UnauthorizedApproverError: If ``decided_by`` is not the approver.
            ValidationError: If a rejection lacks required comments.
        """
        request = await self.get_request(approval_id)
        if not request.is_actionable:
            raise ApprovalAlreadyDecidedError(approval_id, str(request.status))
        if decided_by is not None and decided_by != request.approver_id:
            raise UnauthorizedApproverError(approval_id, decided_by)
        chain = await self.get_chain(request.chain_id)
        decision = ApprovalDecision(decision)
        if decision is ApprovalDecision.REJECT and chain.require_comments and not (comments or "").strip():
            msg = "Comments are required when rejecting"
            raise ValidationError(msg)

        status = ApprovalStatus.APPROVED if decision is ApprovalDecision.APPROVE else ApprovalStatus.REJECTED
        await self.store.update_record(
            Collection.APPROVALS,
            approval_id,
            {
                "status": str(status),
                "comments": comments,
                "decided_by": decided_by if decided_by is not None else request.approver_id,
                "completed_at": to_iso(self._clock()),
            },
        )
        await self._record_history(request, str(decision), request.status, status, comments, decided_by)
        logger.info("Approval %d of chain %d %s", approval_id, chain.id, status)
        await self._evaluate_level(chain, request.level)
        return await self.get_request(approval_id)

    async def _evaluate_level(
        self,
        chain: ApprovalChain,
        level_number: int,
        *,
        event_status: ApprovalStatus | None = None,
    ) -> None:
        if not chain.is_active or level_number != chain.current_level:
            return
        requests = await self.get_requests(chain.id, level_number)
        approval_type = chain.level(level_number).approval_type
        # Expired and cancelled responses count against the level like a rejection.
        responded = [r for r in requests if r.is_terminal and r.status is not ApprovalStatus.SKIPPED]
        approved = any(r.status is ApprovalStatus.APPROVED for r in responded)
        unanimous = approved and all(r.status is ApprovalStatus.APPROVED for r in responded)

        if approval_type is ApprovalType.SEQUENTIAL:
            if not all(r.status is ApprovalStatus.APPROVED for r in responded):
                outcome = ApprovalStatus.REJECTED
            elif any(r.is_actionable for r in requests):
                return
            else:
                queued = [r for r in requests if r.status is ApprovalStatus.QUEUED]
                if queued:
                    await self._activate(chain, queued[0])
                    return
                outcome = ApprovalStatus.APPROVED if unanimous else ApprovalStatus.REJECTED
        elif approval_type is ApprovalType.FIRST_APPROVER:
            decided = sorted(
                (r for r in requests if r.status in (ApprovalStatus.APPROVED, ApprovalStatus.REJECTED)),
                key=lambda r: (r.completed_at is None, r.completed_at, r.id),
            )
            if decided:
                outcome = decided[0].status
            elif all(r.is_terminal for r in requests):
                outcome = ApprovalStatus.REJECTED
            else:
                return
        else:
            if not all(r.is_terminal for r in requests):
                return
            outcome = ApprovalStatus.APPROVED if unanimous else ApprovalStatus.REJECTED

        await self._complete_level(chain, level_number, outcome, event_status=event_status)

    async def _activate(self, chain: ApprovalChain, request: ApprovalRequest) -> None:
        now = self._clock()
        level = chain.level(request.level)
        await self.store.update_record(
            Collection.APPROVALS,
            request.id,
            {
                "status": str(ApprovalStatus.PENDING),
                "requested_at": to_iso(now),
                "due_date": to_iso(now + timedelta(days=level.due_days)),
            },
        )
        await self._record_history(request, "activated", request.status, ApprovalStatus.PENDING)
        request.status = ApprovalStatus.PENDING
        await self._notify_approver(chain, request)

    async def _complete_level(
        self,
        chain: ApprovalChain,
        level_number: int,
        outcome: ApprovalStatus,
        *,
        event_status: ApprovalStatus | None = None,
    ) -> None:
        await self._skip_open_requests(chain.id, level_number)
        logger.info("Level %d of approval chain %d %s", level_number, chain.id, outcome)
        if outcome is ApprovalStatus.APPROVED and not chain.is_last_level:
            chain.current_level = level_number + 1
            await self.store.update_record(Collection.APPROVAL_CHAINS, chain.id, {"current_level": chain.current_level})
            await self.create_level_approvals(chain, chain.current_level)
            return
        await self._close_chain(chain, outcome, event_status=event_status)

    async def _skip_open_requests(self, chain_id: int, level_number: int | None = None) -> None:
        filters = [eq("chain_id", chain_id), is_in("status", [str(s) for s in _OPEN_STATUSES])]
        if level_number is not None:
            filters.append(eq("level", level_number))
        now = to_iso(self._clock())
        for record in await self.store.query_records(Collection.APPROVALS, filters, order_by="id"):
            request = ApprovalRequest.from_record(record)
            await self.store.update_record(
                Collection.APPROVALS, request.id, {"status": str(ApprovalStatus.SKIPPED), "completed_at": now}
            )
            await self._record_history(request, "skipped", request.status, ApprovalStatus.SKIPPED)

    async def _close_chain(
        self,
        chain: ApprovalChain,
        status: ApprovalStatus,
        *,
        event_status: ApprovalStatus | None = None,
    ) -> None:
        await self._skip_open_requests(chain.id)
        now = self._clock()
        await self.store.update_record(
            Collection.APPROVAL_CHAINS,
            chain.id,
            {"overall_status": str(status), "is_active": False, "completed_at": to_iso(now)},
        )
        chain.overall_status = status
        chain.is_active = False
        chain.completed_at = now
        logger.info("Approval chain %d closed %s", chain.id, status)
        await self._emit(chain, event_status or status, chain_closed=True)

    async def _emit(
        self,
        chain: ApprovalChain,
        status: ApprovalStatus,
        *,
        approval_id: int | None = None,
        chain_closed: bool = False,
    ) -> None:
        if self.events is None:
            return
        await self.events.emit(
            ApprovalStatusChanged(
                timestamp=self._clock(),
                process_id=chain.process_id,
                chain_id=chain.id,
                status=status,
                approval_id=approval_id,
                chain_closed=chain_closed,
                workflow_instance_id=chain.workflow_instance_id,
                workflow_step_id=chain.workflow_step_id,
            )
        )

    # Delegation, escalation and expiry

    async def delegate_approval(
        self,
        approval_id: int,
        delegate_to_id: int,
        reason: str | None = None,
        delegated_by: int | None = None,
    ) -> ApprovalRequest:
        """Hand an actionable request over to another user.

        The first original approver is preserved across repeated delegations.

        Raises:
            ApprovalAlreadyDecidedError: If the request is not actionable.
            UnauthorizedApproverError: If ``delegated_by`` is not the current approver.
            ValidationError: If the chain forbids delegation or the delegate is the current approver.
        """
        request = await self.get_request(approval_id)
        if not request.is_actionable:
            raise ApprovalAlreadyDecidedError(approval_id, str(request.status))
        if delegated_by is not None and delegated_by != request.approver_id:
            raise UnauthorizedApproverError(approval_id, delegated_by)
        chain = await self.get_chain(request.chain_id)
        if not chain.allow_delegation:
            msg = f"Approval chain {chain.id} does not allow delegation"
            raise ValidationError(msg)
        if delegate_to_id == request.approver_id:
            msg = "Cannot delegate an approval to its current approver"
            raise ValidationError(msg)

        original = request.original_approver_id or request.approver_id
        await self.store.update_record(
            Collection.APPROVALS,
            approval_id,
            {
                "approver_id": delegate_to_id,
                "original_approver_id": original,
                "status": str(ApprovalStatus.DELEGATED),
            },
        )
        await self._record_history(request, "delegated", request.status, ApprovalStatus.DELEGATED, reason, delegated_by)
        logger.info("Approval %d delegated from user %d to user %d", approval_id, request.approver_id, delegate_to_id)

        await notify_safely(
            self.notifier,
            Notification(
                recipient_id=delegate_to_id,
                title=f"Approval delegated to you: {chain.name}",
                message=reason or f"Approval {approval_id} was delegated to you",
            ),
        )
        await notify_safely(
            self.notifier,
            Notification(
                recipient_id=request.approver_id,
                title=f"Approval delegated: {chain.name}",
                message=f"Approval {approval_id} is now handled by user {delegate_to_id}",
                priority=NotificationPriority.LOW,
            ),
        )
        return await self.get_request(approval_id)

    async def process_escalations(self) -> list[int]:
        """Escalate every pending request past its due date.

        Requests whose escalation target cannot be resolved in strict mode are
        logged and left untouched.

        Returns:
            Ids of the escalated requests.
        """
        now = self._clock()
        records = await self.store.query_records(
            Collection.APPROVALS,
            [eq("status", str(ApprovalStatus.PENDING)), eq("is_overdue", False)],
            order_by="id",
        )
        escalated: list[int] = []
        for record in records:
            request = ApprovalRequest.from_record(record)
            if request.due_date is None or request.due_date >= now:
                continue
            try:
                await self.escalate_approval(request.id)
            except MissingApproverError as exc:
                logger.warning("Could not escalate approval %d: %s", request.id, exc)
                continue
            escalated.append(request.id)
        return escalated

    async def escalate_approval(self, approval_id: int) -> ApprovalRequest:
        """Apply the chain's escalation action to one request.

        A request escalates at most once; escalating it again returns it unchanged.

        Raises:
            ApprovalAlreadyDecidedError: If the request is not actionable.
            MissingApproverError: In strict mode, if a reassignment target cannot be resolved.
        """
        request = await self.get_request(approval_id)
        if not request.is_actionable:
            raise ApprovalAlreadyDecidedError(approval_id, str(request.status))
        if request.is_overdue:
            logger.debug("Approval %d already escalated", approval_id)
            return request

        chain = await self.get_chain(request.chain_id)
        level = chain.level(request.level)
        action = chain.escalation_action
        now = self._clock()
        changes: dict[str, Any] = {
            "is_overdue": True,
            "escalation_level": request.escalation_level + 1,
            "escalated_at": to_iso(now),
        }

        if action is EscalationAction.AUTO_APPROVE:
            changes.update(
                status=str(ApprovalStatus.APPROVED),
                comments=_AUTO_APPROVE_COMMENT,
                completed_at=to_iso(now),
            )
            await self.store.update_record(Collection.APPROVALS, approval_id, changes)
            await self._record_history(
                request, "auto_approved", request.status, ApprovalStatus.APPROVED, _AUTO_APPROVE_COMMENT
            )
            logger.info("Approval %d auto-approved on escalation", approval_id)
            await self._emit(chain, ApprovalStatus.ESCALATED, approval_id=approval_id)
            await self._evaluate_level(chain, request.level)
            return await self.get_request(approval_id)

        target: int | None = None
        if action is EscalationAction.ASSIGN_TO_MANAGER:
            target = await self._manager_of(request.approver_id)
        elif action is EscalationAction.ASSIGN_TO_ALTERNATE:
            target = next((a for a in level.alternate_approver_ids if a != request.approver_id), None)
        if action in (EscalationAction.ASSIGN_TO_MANAGER, EscalationAction.ASSIGN_TO_ALTERNATE) and target is None:
            if self.strict_escalation:
                msg = f"No {action} target for approval {approval_id}"
                raise MissingApproverError(msg)
            logger.warning("No %s target for approval %d; falling back to notify", action, approval_id)

        changes["status"] = str(ApprovalStatus.ESCALATED)
        if target is not None:
            changes.update(
                approver_id=target,
                original_approver_id=request.original_approver_id or request.approver_id,
                due_date=to_iso(now + timedelta(days=level.due_days)),
            )
        await self.store.update_record(Collection.APPROVALS, approval_id, changes)
        await self._record_history(
            request,
            "escalated",
            request.status,
            ApprovalStatus.ESCALATED,
            f"Reassigned to user {target}" if target is not None else None,
        )
        logger.info("Approval %d escalated (%s)", approval_id, action)

        await notify_safely(
            self.notifier,
            Notification(
                recipient_id=target if target is not None else request.approver_id,
                title=f"Overdue approval: {chain.name}",
                message=f"Approval {approval_id} passed its due date and needs your decision",
                priority=NotificationPriority.HIGH,
            ),
        )
        await self._emit(chain, ApprovalStatus.ESCALATED, approval_id=approval_id)
        return await self.get_request(approval_id)

    async def _manager_of(self, user_id: int) -> int | None:
        records = await self.store.query_records(Collection.EMPLOYEES, [eq("user_id", user_id)], top=1)
        if not records:
            return None
        manager_id = records[0].get("manager_id")
        if manager_id is None or int(manager_id) == user_id:
            return None
        return int(manager_id)

    async def expire_approvals(self, max_age_days: int = 30) -> list[int]:
        """Force-close actionable requests requested ``max_age_days`` ago or earlier.

        Queued requests are left alone since their clock only starts when they
        are activated. Each affected active chain is re-evaluated; an expired
        request fails its level, so the chain closes as rejected with an
        ``EXPIRED`` event and the requests still queued behind it are skipped.

        Returns:
            Ids of the expired requests.
        """
        now = self._clock()
        cutoff = now - timedelta(days=max_age_days)
        records = await self.store.query_records(
            Collection.APPROVALS,
            [is_in("status", [str(s) for s in ACTIONABLE_APPROVAL_STATUSES])],
            order_by="id",
        )
        expired: list[int] = []
        chain_ids: list[int] = []
        for record in records:
            request = ApprovalRequest.from_record(record)
            if request.requested_at is None or request.requested_at > cutoff:
                continue
            await self.store.update_record(
                Collection.APPROVALS,
                request.id,
                {"status": str(ApprovalStatus.EXPIRED), "completed_at": to_iso(now)},
            )
            await self._record_history(request, "expired", request.status, ApprovalStatus.EXPIRED)
            expired.append(request.id)
            if request.chain_id not in chain_ids:
                chain_ids.append(request.chain_id)

        for chain_id in chain_ids:
            chain = await self.get_chain(chain_id)
            await self._evaluate_level(chain, chain.current_level, event_status=ApprovalStatus.EXPIRED)
        if expired:
            logger.info("Expired %d approvals across %d chains", len(expired), len(chain_ids))
        return expired

    async def cancel_pending_for_process(self, process_id: int, reason: str | None = None) -> int:
        """Cancel the open requests of a process and close its active chain.

        Returns:
            Number of requests cancelled.
        """
        records = await self.store.query_records(
            Collection.APPROVALS,
            [eq("process_id", process_id), is_in("status", [str(s) for s in _OPEN_STATUSES])],
            order_by="id",
        )
        now = to_iso(self._clock())
        for record in records:
            request = ApprovalRequest.from_record(record)
            await self.store.update_record(
                Collection.APPROVALS,
                request.id,
                {"status": str(ApprovalStatus.CANCELLED), "completed_at": now},
            )
            await self._record_history(request, "cancelled", request.status, ApprovalStatus.CANCELLED, reason)

        chain = await self.get_active_chain(process_id)
        if chain is not None:
            await self._close_chain(chain, ApprovalStatus.CANCELLED)
        if records:
            logger.info("Cancelled %d pending approvals for process %d", len(records), process_id)
        return len(records)

    async def _record_history(
        self,
        request: ApprovalRequest,
        action: str,
        previous_status: ApprovalStatus | None,
        new_status: ApprovalStatus,
        comments: str | None = None,
        performed_by: int | None = None,
    ) -> None:
        await self.store.add_record(
            Collection.APPROVAL_HISTORY,
            {
                "approval_id": request.id,
                "chain_id": request.chain_id,
                "process_id": request.process_id,
                "action": action,
                "previous_status": str(previous_status) if previous_status else None,
                "new_status": str(new_status),
                "comments": comments,
                "performed_by": performed_by,
                "at": to_iso(self._clock()),
            },
        )

    async def _notify_approver(self, chain: ApprovalChain, request: ApprovalRequest) -> None:
        due = request.due_date.date().isoformat() if request.due_date else "no due date"
        await notify_safely(
            self.notifier,
            Notification(
                recipient_id=request.approver_id,
                title=f"Approval requested: {chain.name}",
                message=f"Level {request.level} approval for process {chain.process_id} is due {due}",
            ),
        )
