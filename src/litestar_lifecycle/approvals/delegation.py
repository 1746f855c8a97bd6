"""Time-boxed delegation rules.

A delegation rule redirects the approval requests created for one user to
another user while the rule is active and the current time falls inside its
window. Lookup is single-hop: the delegate's own rules are not followed.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import TYPE_CHECKING

from litestar_lifecycle.core.clock import Clock, to_iso, utc_now
from litestar_lifecycle.core.models import DelegationRule
from litestar_lifecycle.core.types import Collection
from litestar_lifecycle.exceptions import RecordNotFoundError, ValidationError
from litestar_lifecycle.store.filters import eq

if TYPE_CHECKING:
    from litestar_lifecycle.core.protocols import RecordStore

__all__ = ["DelegationService"]

logger = logging.getLogger(__name__)


class DelegationService:
    """Stores delegation rules and resolves the delegate of an approver.

    Attributes:
        store: Record store holding the ``delegation_rules`` collection.
    """

    def __init__(self, store: RecordStore, *, clock: Clock = utc_now) -> None:
        self.store = store
        self._clock = clock

    async def add_rule(
        self,
        delegator_id: int,
        delegate_id: int,
        start: datetime,
        end: datetime,
        reason: str | None = None,
    ) -> DelegationRule:
        """Create an active rule for the window ``[start, end]``.

        Raises:
            ValidationError: If a user delegates to themselves or the window is empty.
        """
        if delegator_id == delegate_id:
            msg = "A user cannot delegate approvals to themselves"
            raise ValidationError(msg)
        if end <= start:
            msg = "Delegation end must be after its start"
            raise ValidationError(msg)
        rule_id = await self.store.add_record(
            Collection.DELEGATION_RULES,
            {
                "delegator_id": delegator_id,
                "delegate_id": delegate_id,
                "start": to_iso(start),
                "end": to_iso(end),
                "is_active": True,
                "reason": reason,
            },
        )
        logger.info("User %d delegates approvals to user %d until %s", delegator_id, delegate_id, end)
        return await self.get_rule(rule_id)

    async def get_rule(self, rule_id: int) -> DelegationRule:
        record = await self.store.get_record(Collection.DELEGATION_RULES, rule_id)
        if record is None:
            raise RecordNotFoundError(Collection.DELEGATION_RULES, rule_id)
        return DelegationRule.from_record(record)

    async def deactivate_rule(self, rule_id: int) -> DelegationRule:
        """Turn a rule off without deleting it."""
        await self.get_rule(rule_id)
        await self.store.update_record(Collection.DELEGATION_RULES, rule_id, {"is_active": False})
        logger.info("Deactivated delegation rule %d", rule_id)
        return await self.get_rule(rule_id)

    async def list_rules(self, delegator_id: int | None = None, *, active_only: bool = True) -> list[DelegationRule]:
        filters = []
        if delegator_id is not None:
            filters.append(eq("delegator_id", delegator_id))
        if active_only:
            filters.append(eq("is_active", True))
        records = await self.store.query_records(Collection.DELEGATION_RULES, filters, order_by="id")
        return [DelegationRule.from_record(r) for r in records]

    async def resolve_delegate(self, approver_id: int, at: datetime | None = None) -> int | None:
        """Return the delegate currently covering ``approver_id``, if any.

        When several rules overlap, the oldest one wins.
        """
        moment = at or self._clock()
        for rule in await self.list_rules(approver_id):
            if rule.covers(moment):
                return rule.delegate_id
        return None
