"""Persisted dead-letter queue and replayer.

Operations that exhausted their retries are stored in the ``dead_letters``
collection so that they survive a restart. Items move through
``PENDING -> PROCESSING -> RESOLVED | ABANDONED``; a failed replay puts an item
back to ``PENDING`` with one more attempt recorded.
"""

from __future__ import annotations

import logging
from collections import Counter
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import timedelta
from typing import TYPE_CHECKING, Any

from litestar_lifecycle.core.clock import Clock, to_iso, utc_now
from litestar_lifecycle.core.models import DeadLetterItem
from litestar_lifecycle.core.types import Collection, DeadLetterStatus
from litestar_lifecycle.exceptions import DeadLetterItemNotFoundError, InvalidTransitionError
from litestar_lifecycle.store.filters import eq, is_in
from litestar_lifecycle.sync.retry import NON_RETRYABLE_ERRORS

if TYPE_CHECKING:
    from litestar_lifecycle.core.protocols import RecordStore

__all__ = [
    "DeadLetterQueue",
    "DeadLetterReplayer",
    "DeadLetterStats",
    "ReplayHandler",
    "ReplayPolicy",
    "ReplaySummary",
]

logger = logging.getLogger(__name__)

ReplayHandler = Callable[[DeadLetterItem], Awaitable[Any]]

_OPEN_STATUSES = (DeadLetterStatus.PENDING, DeadLetterStatus.PROCESSING)


@dataclass
class DeadLetterStats:
    """Counts of dead-letter items by status and operation type."""

    total: int = 0
    pending: int = 0
    processing: int = 0
    resolved: int = 0
    abandoned: int = 0
    by_type: dict[str, int] = field(default_factory=dict)


class DeadLetterQueue:
    """Durable queue of operations that exhausted their retries.

    Open items (``PENDING`` and ``PROCESSING``) are mirrored in memory; call
    ``initialize`` at startup to reload them after a restart.

    Attributes:
        store: Record store holding the ``dead_letters`` collection.
    """

    def __init__(self, store: RecordStore, *, clock: Clock = utc_now) -> None:
        """Initialize the queue.

        Args:
            store: Record store holding the ``dead_letters`` collection.
            clock: Time source.
        """
        self.store = store
        self._clock = clock
        self._items: dict[int, DeadLetterItem] = {}
        self._initialized = False

    @property
    def is_initialized(self) -> bool:
        return self._initialized

    async def initialize(self) -> int:
        """Reload open items from the store.

        Items still ``PROCESSING`` were claimed by a process that stopped before
        finishing the replay; they are put back to ``PENDING`` so they replay again.

        Returns:
            Number of open items loaded.
        """
        records = await self.store.query_records(
            Collection.DEAD_LETTERS,
            [is_in("status", _OPEN_STATUSES)],
            order_by="id",
        )
        self._items = {}
        for record in records:
            item = DeadLetterItem.from_record(record)
            if item.status is DeadLetterStatus.PROCESSING:
                await self.store.update_record(
                    Collection.DEAD_LETTERS, item.id, {"status": str(DeadLetterStatus.PENDING)}
                )
                item.status = DeadLetterStatus.PENDING
                logger.warning("Released stale claim on dead-letter item %d (%s)", item.id, item.operation_type)
            self._items[item.id] = item
        self._initialized = True
        if self._items:
            logger.info("Reloaded %d open dead-letter items", len(self._items))
        return len(self._items)

    async def enqueue(
        self,
        operation_type: str,
        payload: dict[str, Any],
        error: str,
        attempts: int,
        context: dict[str, Any] | None = None,
    ) -> DeadLetterItem:
        """Append an exhausted operation to the queue with status ``PENDING``.

        Args:
            operation_type: Tag identifying the operation.
            payload: Data needed to replay the operation.
            error: Last error message.
            attempts: Attempts made before giving up.
            context: Correlation data.

        Returns:
            The stored item.
        """
        now = self._clock()
        item = DeadLetterItem(
            id=0,
            operation_type=operation_type,
            payload=payload,
            error=error,
            attempts=attempts,
            created_at=now,
            last_attempt_at=now,
            context=context or {},
        )
        item.id = await self.store.add_record(Collection.DEAD_LETTERS, item.to_fields())
        self._items[item.id] = item
        logger.warning("Dead-lettered %s after %d attempts: %s", operation_type, attempts, error)
        return item

    async def get_item(self, item_id: int) -> DeadLetterItem:
        """Load an item from the store.

        Raises:
            DeadLetterItemNotFoundError: If no such item exists.
        """
        record = await self.store.get_record(Collection.DEAD_LETTERS, item_id)
        if record is None:
            raise DeadLetterItemNotFoundError(item_id)
        return DeadLetterItem.from_record(record)

    async def _transition(
        self,
        item_id: int,
        allowed_from: tuple[DeadLetterStatus, ...],
        target: DeadLetterStatus,
        changes: dict[str, Any],
    ) -> DeadLetterItem:
        item = await self.get_item(item_id)
        if item.status not in allowed_from:
            raise InvalidTransitionError(str(item.status), str(target), f"dead letter {item_id}")
        changes["status"] = str(target)
        await self.store.update_record(Collection.DEAD_LETTERS, item_id, changes)
        updated = await self.get_item(item_id)
        if target in _OPEN_STATUSES:
            self._items[item_id] = updated
        else:
            self._items.pop(item_id, None)
        return updated

    async def mark_processing(self, item_id: int) -> DeadLetterItem:
        """Claim a pending item for replay."""
        return await self._transition(item_id, (DeadLetterStatus.PENDING,), DeadLetterStatus.PROCESSING, {})

    async def mark_resolved(self, item_id: int, resolved_by: str | None = None) -> DeadLetterItem:
        """Close an item as handled."""
        return await self._transition(
            item_id,
            _OPEN_STATUSES,
            DeadLetterStatus.RESOLVED,
            {"resolved_at": to_iso(self._clock()), "resolved_by": resolved_by},
        )

    async def mark_abandoned(self, item_id: int, resolved_by: str | None = None) -> DeadLetterItem:
        """Close an item without handling it."""
        return await self._transition(
            item_id,
            _OPEN_STATUSES,
            DeadLetterStatus.ABANDONED,
            {"resolved_at": to_iso(self._clock()), "resolved_by": resolved_by},
        )

    async def update_attempt(self, item_id: int, error: str) -> DeadLetterItem:
        """Record a failed replay and return the item to ``PENDING``."""
        item = await self.get_item(item_id)
        return await self._transition(
            item_id,
            _OPEN_STATUSES,
            DeadLetterStatus.PENDING,
            {"attempts": item.attempts + 1, "error": error, "last_attempt_at": to_iso(self._clock())},
        )

    def get_pending_items(self, operation_type: str | None = None) -> list[DeadLetterItem]:
        """Return the pending items known to this queue, oldest first."""
        return sorted(
            (
                item
                for item in self._items.values()
                if item.status is DeadLetterStatus.PENDING
                and (operation_type is None or item.operation_type == operation_type)
            ),
            key=lambda item: item.id,
        )

    async def list_items(
        self,
        status: DeadLetterStatus | None = None,
        operation_type: str | None = None,
        top: int | None = None,
    ) -> list[DeadLetterItem]:
        """Query items from the store, newest first."""
        filters = []
        if status is not None:
            filters.append(eq("status", str(status)))
        if operation_type is not None:
            filters.append(eq("operation_type", operation_type))
        records = await self.store.query_records(Collection.DEAD_LETTERS, filters, order_by="-id", top=top)
        return [DeadLetterItem.from_record(r) for r in records]

    async def get_stats(self) -> DeadLetterStats:
        """Count items by status and operation type."""
        records = await self.store.query_records(Collection.DEAD_LETTERS, select=["status", "operation_type"])
        statuses = Counter(r["status"] for r in records)
        return DeadLetterStats(
            total=len(records),
            pending=statuses[DeadLetterStatus.PENDING],
            processing=statuses[DeadLetterStatus.PROCESSING],
            resolved=statuses[DeadLetterStatus.RESOLVED],
            abandoned=statuses[DeadLetterStatus.ABANDONED],
            by_type=dict(Counter(r["operation_type"] for r in records)),
        )


@dataclass
class ReplayPolicy:
    """Replay configuration.

    Attributes:
        max_retries: Items with at least this many attempts are abandoned.
        abandon_after: Items older than this are abandoned.
        max_items: Maximum items replayed per pass.
    """

    max_retries: int = 5
    abandon_after: timedelta = timedelta(hours=24)
    max_items: int = 3


@dataclass
class ReplaySummary:
    """Outcome of one replay pass."""

    processed: int = 0
    resolved: int = 0
    failed: int = 0
    abandoned: int = 0
    resolved_ids: list[int] = field(default_factory=list)
    failed_ids: list[int] = field(default_factory=list)
    abandoned_ids: list[int] = field(default_factory=list)


class DeadLetterReplayer:
    """Replays pending dead-letter items through handlers registered per operation type.

    Example:
        >>> replayer = DeadLetterReplayer(queue)
        >>> replayer.register("sync-process-status", bridge.replay_process_status)
        >>> summary = await replayer.replay_pending()
    """

    def __init__(self, queue: DeadLetterQueue, policy: ReplayPolicy | None = None, *, clock: Clock = utc_now) -> None:
        """Initialize the replayer.

        Args:
            queue: The queue to drain.
            policy: Replay configuration.
            clock: Time source.
        """
        self.queue = queue
        self.policy = policy or ReplayPolicy()
        self._clock = clock
        self._handlers: dict[str, ReplayHandler] = {}

    def register(self, operation_type: str, handler: ReplayHandler) -> None:
        """Register the handler replaying ``operation_type`` items."""
        self._handlers[operation_type] = handler

    @property
    def operation_types(self) -> list[str]:
        return sorted(self._handlers)

    def _expired(self, item: DeadLetterItem) -> bool:
        if item.attempts >= self.policy.max_retries:
            return True
        return item.created_at is not None and self._clock() - item.created_at > self.policy.abandon_after

    async def replay_pending(self, operation_types: list[str] | None = None) -> ReplaySummary:
        """Run one replay pass over pending items with a registered handler.

        Args:
            operation_types: Restrict the pass to these operation types.

        Returns:
            Summary of the pass.
        """
        summary = ReplaySummary()
        wanted = set(operation_types or self._handlers)
        for item in self.queue.get_pending_items():
            handler = self._handlers.get(item.operation_type)
            if handler is None or item.operation_type not in wanted:
                continue
            if self._expired(item):
                await self.queue.mark_abandoned(item.id, resolved_by="system")
                summary.abandoned += 1
                summary.abandoned_ids.append(item.id)
                logger.warning(
                    "Abandoned dead letter %d (%s) after %d attempts", item.id, item.operation_type, item.attempts
                )
                continue
            if summary.processed >= self.policy.max_items:
                break
            summary.processed += 1
            await self._replay(item.id, handler, summary)
        return summary

    async def replay_item(self, item_id: int) -> ReplaySummary:
        """Replay one specific pending item regardless of the per-pass limit."""
        item = await self.queue.get_item(item_id)
        handler = self._handlers.get(item.operation_type)
        if handler is None:
            msg = f"no replay handler for '{item.operation_type}'"
            raise InvalidTransitionError(str(item.status), str(DeadLetterStatus.PROCESSING), msg)
        summary = ReplaySummary(processed=1)
        await self._replay(item_id, handler, summary)
        return summary

    async def _replay(self, item_id: int, handler: ReplayHandler, summary: ReplaySummary) -> None:
        claimed = await self.queue.mark_processing(item_id)
        try:
            await handler(claimed)
        except NON_RETRYABLE_ERRORS as exc:
            await self.queue.mark_abandoned(item_id, resolved_by="system")
            summary.abandoned += 1
            summary.abandoned_ids.append(item_id)
            logger.warning("Abandoned dead letter %d: %s", item_id, exc)
        except Exception as exc:
            await self.queue.update_attempt(item_id, str(exc))
            summary.failed += 1
            summary.failed_ids.append(item_id)
            logger.warning("Replay of dead letter %d failed: %s", item_id, exc)
        else:
            await self.queue.mark_resolved(item_id, resolved_by="replay")
            summary.resolved += 1
            summary.resolved_ids.append(item_id)
            logger.info("Replayed dead letter %d (%s)", item_id, claimed.operation_type)
