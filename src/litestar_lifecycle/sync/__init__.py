"""Status synchronization, retry and the dead-letter queue."""

from __future__ import annotations

from litestar_lifecycle.sync.bridge import StatusSyncBridge
from litestar_lifecycle.sync.dead_letter import DeadLetterQueue, DeadLetterReplayer, ReplayPolicy
from litestar_lifecycle.sync.retry import RetryOutcome, RetryPolicy, run_with_retry

__all__ = [
    "DeadLetterQueue",
    "DeadLetterReplayer",
    "ReplayPolicy",
    "RetryOutcome",
    "RetryPolicy",
    "StatusSyncBridge",
    "run_with_retry",
]
