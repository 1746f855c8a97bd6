"""Bounded retry with exponential backoff and dead-letter hand-off.

``run_with_retry`` wraps an async operation. Transient failures are retried with
an exponentially growing delay; once the attempt cap is reached the operation's
payload and last error are appended to the dead-letter queue instead of being
discarded. Validation errors and illegal transitions are never retried.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Generic, TypeVar

from litestar_lifecycle.exceptions import InvalidTransitionError, ValidationError

if TYPE_CHECKING:
    from litestar_lifecycle.sync.dead_letter import DeadLetterQueue

__all__ = ["NON_RETRYABLE_ERRORS", "RetryOutcome", "RetryPolicy", "run_with_retry"]

logger = logging.getLogger(__name__)

T = TypeVar("T")

NON_RETRYABLE_ERRORS: tuple[type[BaseException], ...] = (ValidationError, InvalidTransitionError)
"""Errors re-raised on the first occurrence."""


@dataclass
class RetryPolicy:
    """Retry configuration.

    Attributes:
        max_attempts: Total number of attempts, including the first one.
        initial_delay: Seconds to wait before the second attempt.
        max_delay: Upper bound on any single delay, in seconds.
        backoff_multiplier: Factor applied to the delay after each failed attempt.
    """

    max_attempts: int = 3
    initial_delay: float = 1.0
    max_delay: float = 10.0
    backoff_multiplier: float = 2.0

    def delay_for(self, attempt: int) -> float:
        """Delay to wait after failed attempt number ``attempt`` (1-based)."""
        return min(self.initial_delay * self.backoff_multiplier ** (attempt - 1), self.max_delay)


@dataclass
class RetryOutcome(Generic[T]):
    """Result of ``run_with_retry``.

    Attributes:
        success: Whether some attempt succeeded.
        value: Return value of the successful attempt.
        error: Message of the last error when every attempt failed.
        attempts: Number of attempts made.
        elapsed: Wall-clock seconds spent, including backoff.
        dead_letter_id: Id of the dead-letter item created on exhaustion.
        errors: Messages of every failed attempt, in order.
    """

    success: bool
    value: T | None = None
    error: str | None = None
    attempts: int = 0
    elapsed: float = 0.0
    dead_letter_id: int | None = None
    errors: list[str] = field(default_factory=list)


async def run_with_retry(
    operation: Callable[[], Awaitable[T]],
    operation_type: str,
    payload: dict[str, Any],
    policy: RetryPolicy | None = None,
    dead_letters: DeadLetterQueue | None = None,
    *,
    context: dict[str, Any] | None = None,
    on_failure: Callable[[int, Exception], Awaitable[None]] | None = None,
    sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
) -> RetryOutcome[T]:
    """Run ``operation`` until it succeeds or the attempt cap is reached.

    Args:
        operation: Zero-argument coroutine factory; called once per attempt.
        operation_type: Tag stored on the dead-letter item, used to select a replay handler.
        payload: Data needed to replay the operation later.
        policy: Retry configuration; defaults to ``RetryPolicy()``.
        dead_letters: Queue receiving the operation on exhaustion. When ``None``
            the failure is only logged.
        context: Correlation data stored with the dead-letter item.
        on_failure: Optional hook awaited after each failed attempt with the
            attempt number and the error.
        sleep: Coroutine used for backoff; replaceable in tests.

    Returns:
        The outcome. ``attempts == policy.max_attempts`` when the operation was dead-lettered.

    Raises:
        ValidationError: Re-raised immediately, never retried.
        InvalidTransitionError: Re-raised immediately, never retried.

    Example:
        >>> outcome = await run_with_retry(
        ...     lambda: store.update_record("processes", 7, {"status": "on_hold"}),
        ...     "sync-process-status",
        ...     {"process_id": 7, "status": "on_hold"},
        ...     RetryPolicy(max_attempts=5),
        ...     dead_letters,
        ... )
    """
    policy = policy or RetryPolicy()
    max_attempts = max(1, policy.max_attempts)
    started = time.monotonic()
    errors: list[str] = []
    last_error: Exception | None = None

    for attempt in range(1, max_attempts + 1):
        try:
            value = await operation()
        except NON_RETRYABLE_ERRORS:
            raise
        except Exception as exc:
            last_error = exc
            errors.append(str(exc))
            logger.warning("%s attempt %d/%d failed: %s", operation_type, attempt, max_attempts, exc)
            if on_failure is not None:
                await on_failure(attempt, exc)
            if attempt < max_attempts:
                await sleep(policy.delay_for(attempt))
            continue
        if attempt > 1:
            logger.info("%s succeeded after %d attempts", operation_type, attempt)
        return RetryOutcome(
            success=True,
            value=value,
            attempts=attempt,
            elapsed=time.monotonic() - started,
            errors=errors,
        )

    error_message = str(last_error) if last_error is not None else "unknown error"
    dead_letter_id: int | None = None
    if dead_letters is not None:
        item = await dead_letters.enqueue(
            operation_type,
            payload,
            error_message,
            attempts=max_attempts,
            context=context,
        )
        dead_letter_id = item.id
        logger.warning("%s exhausted %d attempts; queued as dead letter %d", operation_type, max_attempts, item.id)
    else:
        logger.error("%s exhausted %d attempts and no dead-letter queue is configured", operation_type, max_attempts)

    return RetryOutcome(
        success=False,
        error=error_message,
        attempts=max_attempts,
        elapsed=time.monotonic() - started,
        dead_letter_id=dead_letter_id,
        errors=errors,
    )
