"""Tests for the work queue."""

import asyncio
from collections import Counter
from collections.abc import AsyncGenerator

import pytest

from kude_controller.dispatch import QueueConfig, Result, WorkQueue
from kude_controller.manifest import NamedResource
from kude_controller.task.service import TaskServiceImpl

KEY = NamedResource("Bundle", "default", "a")
OTHER_KEY = NamedResource("Bundle", "default", "b")


@pytest.fixture(name="task_service")
def task_service_fixture() -> TaskServiceImpl:
    """Task service that tracks the queue passes."""
    return TaskServiceImpl()


class FakeReconciler:
    """Reconcile function that records calls and returns queued results."""

    def __init__(self) -> None:
        self.calls: Counter[NamedResource] = Counter()
        self.results: list[Result | Exception] = []
        self.release = asyncio.Event()
        self.release.set()
        self.active = 0
        self.max_active = 0
        self.active_keys: set[NamedResource] = set()
        self.overlap = False

    async def __call__(self, key: NamedResource) -> Result:
        if key in self.active_keys:
            self.overlap = True
        self.active_keys.add(key)
        self.active += 1
        self.max_active = max(self.max_active, self.active)
        self.calls[key] += 1
        try:
            await self.release.wait()
        finally:
            self.active -= 1
            self.active_keys.discard(key)
        if self.results:
            result = self.results.pop(0)
            if isinstance(result, Exception):
                raise result
            return result
        return Result()


@pytest.fixture(name="reconciler")
def reconciler_fixture() -> FakeReconciler:
    return FakeReconciler()


@pytest.fixture(name="queue")
async def queue_fixture(
    reconciler: FakeReconciler, task_service: TaskServiceImpl
) -> AsyncGenerator[WorkQueue, None]:
    """Work queue under test."""
    queue = WorkQueue(
        "test",
        reconciler,
        QueueConfig(max_concurrent_reconciles=2, base_backoff=0.01, max_backoff=0.04),
        task_service,
    )
    yield queue
    await queue.close()


async def test_requests_are_coalesced(
    queue: WorkQueue, reconciler: FakeReconciler, task_service: TaskServiceImpl
) -> None:
    """Test repeated requests for a queued key run a single pass."""
    for _ in range(3):
        queue.add(KEY)
    queue.add(OTHER_KEY)
    assert not queue.is_idle()
    await task_service.block_till_done()
    assert reconciler.calls == {KEY: 1, OTHER_KEY: 1}
    assert queue.is_idle()


async def test_request_while_processing(
    queue: WorkQueue, reconciler: FakeReconciler, task_service: TaskServiceImpl
) -> None:
    """Test a request during a pass runs exactly one more pass afterwards."""
    reconciler.release.clear()
    queue.add(KEY)
    await asyncio.sleep(0.01)
    assert reconciler.active == 1

    queue.add(KEY)
    queue.add(KEY)
    await asyncio.sleep(0.01)
    assert reconciler.calls[KEY] == 1

    reconciler.release.set()
    await task_service.block_till_done()
    assert reconciler.calls[KEY] == 2
    assert not reconciler.overlap


async def test_concurrency_limit(
    queue: WorkQueue, reconciler: FakeReconciler, task_service: TaskServiceImpl
) -> None:
    """Test the number of concurrent passes is bounded."""
    reconciler.release.clear()
    keys = [NamedResource("Bundle", "default", f"bundle-{i}") for i in range(5)]
    for key in keys:
        queue.add(key)
    await asyncio.sleep(0.01)
    assert reconciler.active == 2

    reconciler.release.set()
    await task_service.block_till_done()
    assert reconciler.max_active == 2
    assert sum(reconciler.calls.values()) == 5


async def test_requeue(
    queue: WorkQueue, reconciler: FakeReconciler, task_service: TaskServiceImpl
) -> None:
    """Test a result requesting a requeue runs another pass immediately."""
    reconciler.results = [Result(requeue=True), Result(requeue=True), Result()]
    queue.add(KEY)
    await task_service.block_till_done()
    assert reconciler.calls[KEY] == 3


async def test_requeue_after(
    queue: WorkQueue, reconciler: FakeReconciler, task_service: TaskServiceImpl
) -> None:
    """Test a delayed requeue takes precedence over an immediate one."""
    reconciler.results = [Result(requeue=True, requeue_after=0.05)]
    queue.add(KEY)
    await task_service.block_till_done()
    assert reconciler.calls[KEY] == 1
    delay = queue.scheduled_in(KEY)
    assert delay is not None
    assert 0 < delay <= 0.05

    await asyncio.sleep(0.1)
    await task_service.block_till_done()
    assert reconciler.calls[KEY] == 2
    assert queue.scheduled_in(KEY) is None


async def test_earliest_timer_wins(queue: WorkQueue) -> None:
    """Test a key keeps only its earliest delayed request."""
    queue.add_after(KEY, 10)
    queue.add_after(KEY, 1)
    delay = queue.scheduled_in(KEY)
    assert delay is not None
    assert delay <= 1

    queue.add_after(KEY, 5)
    delay = queue.scheduled_in(KEY)
    assert delay is not None
    assert delay <= 1


async def test_pass_cancels_timer(
    queue: WorkQueue, reconciler: FakeReconciler, task_service: TaskServiceImpl
) -> None:
    """Test an immediate pass replaces a pending delayed request."""
    queue.add_after(KEY, 10)
    queue.add(KEY)
    await task_service.block_till_done()
    assert reconciler.calls[KEY] == 1
    assert queue.scheduled_in(KEY) is None


async def wait_for_calls(reconciler: FakeReconciler, count: int) -> None:
    async def poll() -> None:
        while reconciler.calls[KEY] < count:
            await asyncio.sleep(0.001)

    await asyncio.wait_for(poll(), timeout=5)


async def test_errors_back_off(
    queue: WorkQueue, reconciler: FakeReconciler, task_service: TaskServiceImpl
) -> None:
    """Test failing passes are retried with an increasing delay."""
    reconciler.results = [ValueError("first"), ValueError("second")]
    queue.add(KEY)
    await task_service.block_till_done()
    assert reconciler.calls[KEY] == 1
    first_delay = queue.scheduled_in(KEY)
    assert first_delay is not None
    assert first_delay <= 0.01

    await wait_for_calls(reconciler, 2)
    await task_service.block_till_done()
    second_delay = queue.scheduled_in(KEY)
    assert second_delay is not None
    assert 0.01 < second_delay <= 0.02

    await wait_for_calls(reconciler, 3)
    await task_service.block_till_done()
    assert reconciler.calls[KEY] == 3
    assert queue.scheduled_in(KEY) is None


async def test_backoff_is_capped(queue: WorkQueue) -> None:
    """Test the retry delay grows up to the maximum and resets on forget."""
    for _ in range(6):
        queue._cancel_timer(KEY)
        queue.add_rate_limited(KEY)
    delay = queue.scheduled_in(KEY)
    assert delay is not None
    assert 0.02 < delay <= 0.04

    queue._cancel_timer(KEY)
    queue.forget(KEY)
    queue.add_rate_limited(KEY)
    delay = queue.scheduled_in(KEY)
    assert delay is not None
    assert delay <= 0.01


async def test_close(
    queue: WorkQueue, reconciler: FakeReconciler, task_service: TaskServiceImpl
) -> None:
    """Test closing the queue cancels passes and timers."""
    reconciler.release.clear()
    queue.add(KEY)
    queue.add_after(OTHER_KEY, 0.01)
    await asyncio.sleep(0)
    await asyncio.sleep(0)

    await queue.close()
    assert queue.scheduled_in(OTHER_KEY) is None
    queue.add(KEY)
    queue.add_after(KEY, 0.01)
    await asyncio.sleep(0.03)
    await task_service.block_till_done()
    assert reconciler.calls[OTHER_KEY] == 0
    assert reconciler.calls[KEY] <= 1


async def test_timers_do_not_block(
    queue: WorkQueue, task_service: TaskServiceImpl
) -> None:
    """Test waiting for in-flight passes does not wait for delayed requests."""
    queue.add_after(KEY, 10)
    assert task_service.get_num_active_tasks() == 0
    await asyncio.wait_for(task_service.block_till_done(), timeout=1)
    assert queue.scheduled_in(KEY) is not None
