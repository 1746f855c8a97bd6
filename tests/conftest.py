"""Shared test fixtures for litestar-lifecycle test suite."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING, Any

import pytest

from litestar_lifecycle.approvals.engine import ApprovalChainEngine
from litestar_lifecycle.core.events import LifecycleEventBus
from litestar_lifecycle.core.types import Collection
from litestar_lifecycle.engine.resume import PollingConfig
from litestar_lifecycle.exceptions import TransientStoreError
from litestar_lifecycle.runtime import build_runtime
from litestar_lifecycle.store.memory import InMemoryRecordStore
from litestar_lifecycle.sync.retry import RetryPolicy
from litestar_lifecycle.tasks.dependencies import DependencyGraphEngine
from litestar_lifecycle.tasks.service import TaskAssignmentService

if TYPE_CHECKING:
    from litestar_lifecycle.core.events import LifecycleEvent
    from litestar_lifecycle.notifications import Notification
    from litestar_lifecycle.runtime import LifecycleRuntime


class FakeClock:
    """Controllable time source."""

    def __init__(self, start: datetime) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


class RecordingNotifier:
    """Notification service that keeps everything it is asked to send."""

    def __init__(self, *, fail: bool = False) -> None:
        self.fail = fail
        self.sent: list[Notification] = []
        self.rich: list[dict[str, Any]] = []

    async def send_notification(self, notification: Notification) -> None:
        if self.fail:
            msg = "mail server unavailable"
            raise ConnectionError(msg)
        self.sent.append(notification)

    async def send_rich_message(self, context: dict[str, Any]) -> None:
        if self.fail:
            msg = "chat service unavailable"
            raise ConnectionError(msg)
        self.rich.append(context)

    def recipients(self) -> list[int]:
        return [notification.recipient_id for notification in self.sent]


class FlakyStore(InMemoryRecordStore):
    """In-memory store whose first ``failures`` updates of a collection raise."""

    def __init__(self, failures: int = 1, collection: str = Collection.PROCESSES) -> None:
        super().__init__()
        self.failures = failures
        self.collection = collection
        self.update_calls = 0

    async def update_record(self, collection: str, record_id: int, fields: dict[str, Any]) -> None:
        if collection == self.collection:
            self.update_calls += 1
            if self.failures > 0:
                self.failures -= 1
                raise TransientStoreError("update_record", ConnectionError("connection reset"))
        await super().update_record(collection, record_id, fields)


class EventRecorder:
    """Event bus subscriber that keeps every event it receives."""

    def __init__(self) -> None:
        self.events: list[LifecycleEvent] = []

    async def __call__(self, event: LifecycleEvent) -> None:
        self.events.append(event)

    def of_type(self, event_type: type) -> list[Any]:
        return [event for event in self.events if isinstance(event, event_type)]


@pytest.fixture
def start_time() -> datetime:
    """Monday morning the test suite pretends it is."""
    return datetime(2026, 3, 2, 9, 0, tzinfo=timezone.utc)


@pytest.fixture
def clock(start_time: datetime) -> FakeClock:
    return FakeClock(start_time)


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture
def store() -> InMemoryRecordStore:
    return InMemoryRecordStore()


@pytest.fixture
def fast_retry() -> RetryPolicy:
    """Retry policy that does not wait between attempts."""
    return RetryPolicy(max_attempts=3, initial_delay=0.0, max_delay=0.0)


@pytest.fixture
def event_bus() -> LifecycleEventBus:
    return LifecycleEventBus()


@pytest.fixture
def dependency_graph(store: InMemoryRecordStore) -> DependencyGraphEngine:
    return DependencyGraphEngine(store)


@pytest.fixture
def task_service(
    store: InMemoryRecordStore,
    dependency_graph: DependencyGraphEngine,
    event_bus: LifecycleEventBus,
    notifier: RecordingNotifier,
    clock: FakeClock,
) -> TaskAssignmentService:
    return TaskAssignmentService(store, dependency_graph, event_bus, notifier, clock=clock)


@pytest.fixture
def approval_engine(
    store: InMemoryRecordStore,
    event_bus: LifecycleEventBus,
    notifier: RecordingNotifier,
    clock: FakeClock,
) -> ApprovalChainEngine:
    return ApprovalChainEngine(store, notifier, event_bus, clock=clock)


@pytest.fixture
def runtime(
    store: InMemoryRecordStore,
    notifier: RecordingNotifier,
    fast_retry: RetryPolicy,
    clock: FakeClock,
) -> LifecycleRuntime:
    """Fully wired components with polling disabled and instant retries."""
    return build_runtime(
        store,
        notifier,
        retry_policy=fast_retry,
        polling=PollingConfig(enabled=False),
        clock=clock,
    )


@pytest.fixture
async def process_id(store: InMemoryRecordStore) -> int:
    """An onboarding process record for employee 42."""
    return await store.add_record(
        Collection.PROCESSES,
        {
            "status": "pending",
            "process_type": "onboarding",
            "employee_id": 42,
            "employee_name": "Ada Lovelace",
            "department": "IT",
            "manager_id": 7,
            "start_date": "2026-03-16",
        },
    )
