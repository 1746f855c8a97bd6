"""Tests for run_with_retry."""

from __future__ import annotations

from typing import TYPE_CHECKING

import pytest

from litestar_lifecycle.core.types import DeadLetterStatus
from litestar_lifecycle.exceptions import InvalidTransitionError, TransientStoreError, ValidationError
from litestar_lifecycle.sync.dead_letter import DeadLetterQueue
from litestar_lifecycle.sync.retry import RetryPolicy, run_with_retry

if TYPE_CHECKING:
    from litestar_lifecycle.store.memory import InMemoryRecordStore
    from tests.conftest import FakeClock


class Flaky:
    """Operation that fails a fixed number of times before returning."""

    def __init__(self, failures: int, error: Exception | None = None) -> None:
        self.failures = failures
        self.error = error or ConnectionError("connection reset")
        self.calls = 0

    async def __call__(self) -> str:
        self.calls += 1
        if self.calls <= self.failures:
            raise self.error
        return "ok"


class SleepRecorder:
    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


@pytest.fixture
def sleep() -> SleepRecorder:
    return SleepRecorder()


@pytest.fixture
def queue(store: InMemoryRecordStore, clock: FakeClock) -> DeadLetterQueue:
    return DeadLetterQueue(store, clock=clock)


@pytest.mark.unit
class TestRetryPolicy:
    """Tests for RetryPolicy backoff."""

    def test_delays_grow_exponentially(self) -> None:
        policy = RetryPolicy(initial_delay=1.0, backoff_multiplier=2.0, max_delay=10.0)

        assert [policy.delay_for(attempt) for attempt in range(1, 6)] == [1.0, 2.0, 4.0, 8.0, 10.0]

    def test_defaults(self) -> None:
        policy = RetryPolicy()

        assert policy.max_attempts == 3
        assert policy.initial_delay == 1.0
        assert policy.max_delay == 10.0


@pytest.mark.unit
@pytest.mark.asyncio
class TestRunWithRetry:
    """Tests for retrying operations."""

    async def test_first_attempt_succeeds(self, sleep: SleepRecorder) -> None:
        operation = Flaky(0)

        outcome = await run_with_retry(operation, "sync-process-status", {}, sleep=sleep)

        assert outcome.success
        assert outcome.value == "ok"
        assert outcome.attempts == 1
        assert outcome.errors == []
        assert sleep.delays == []

    async def test_succeeds_after_transient_failures(self, sleep: SleepRecorder) -> None:
        operation = Flaky(2)
        policy = RetryPolicy(max_attempts=3, initial_delay=0.5, backoff_multiplier=3.0)

        outcome = await run_with_retry(operation, "sync-process-status", {}, policy, sleep=sleep)

        assert outcome.success
        assert outcome.attempts == 3
        assert outcome.errors == ["connection reset", "connection reset"]
        assert sleep.delays == [0.5, 1.5]
        assert outcome.dead_letter_id is None

    @pytest.mark.parametrize(
        "error",
        [ValidationError("Task title is required"), InvalidTransitionError("completed", "in_progress")],
    )
    async def test_non_retryable_errors_are_raised(self, sleep: SleepRecorder, error: Exception) -> None:
        operation = Flaky(5, error)

        with pytest.raises(type(error)):
            await run_with_retry(operation, "sync-process-status", {}, sleep=sleep)

        assert operation.calls == 1
        assert sleep.delays == []

    async def test_exhaustion_dead_letters_the_operation(self, sleep: SleepRecorder, queue: DeadLetterQueue) -> None:
        operation = Flaky(10, TransientStoreError("update_record", ConnectionError("timeout")))

        outcome = await run_with_retry(
            operation,
            "sync-process-status",
            {"process_id": 7, "status": "on_hold"},
            RetryPolicy(max_attempts=4, initial_delay=0.1),
            queue,
            context={"source": "approval"},
            sleep=sleep,
        )

        assert not outcome.success
        assert outcome.attempts == 4
        assert operation.calls == 4
        assert len(sleep.delays) == 3
        assert outcome.error == "Record store operation 'update_record' failed: timeout"
        item = await queue.get_item(outcome.dead_letter_id)
        assert item.status is DeadLetterStatus.PENDING
        assert item.operation_type == "sync-process-status"
        assert item.payload == {"process_id": 7, "status": "on_hold"}
        assert item.context == {"source": "approval"}
        assert item.attempts == 4

    async def test_exhaustion_without_queue(self, sleep: SleepRecorder) -> None:
        outcome = await run_with_retry(Flaky(10), "notify", {}, RetryPolicy(max_attempts=2), sleep=sleep)

        assert not outcome.success
        assert outcome.dead_letter_id is None
        assert outcome.error == "connection reset"

    async def test_on_failure_hook(self, sleep: SleepRecorder) -> None:
        calls: list[tuple[int, str]] = []

        async def on_failure(attempt: int, exc: Exception) -> None:
            calls.append((attempt, str(exc)))

        await run_with_retry(Flaky(2), "resume", {}, on_failure=on_failure, sleep=sleep)

        assert calls == [(1, "connection reset"), (2, "connection reset")]

    async def test_single_attempt_policy(self, sleep: SleepRecorder) -> None:
        outcome = await run_with_retry(Flaky(1), "resume", {}, RetryPolicy(max_attempts=0), sleep=sleep)

        assert not outcome.success
        assert outcome.attempts == 1
        assert sleep.delays == []
