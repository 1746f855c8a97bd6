"""Multi-level approval chains with delegation and escalation."""

from __future__ import annotations

from litestar_lifecycle.approvals.delegation import DelegationService
from litestar_lifecycle.approvals.engine import ApprovalChainEngine

__all__ = ["ApprovalChainEngine", "DelegationService"]
