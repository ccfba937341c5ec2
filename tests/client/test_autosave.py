"""Tests for client/autosave.py debounce scheduling."""

import asyncio

import pytest

from client.autosave import AutosaveScheduler, AutosaveState
from common.db_resilience import ExponentialBackoff
from graph.errors import MindMapConflictError, StorageFailure


DELAY = 0.1


class FakeFlush:
    """Counts flushes; can fail a number of times or block until released."""

    def __init__(self, failures: list[Exception] | None = None) -> None:
        self.calls = 0
        self.dirty = True
        self.failures = list(failures or [])
        self.gate: asyncio.Event | None = None
        self.started = asyncio.Event()

    async def __call__(self) -> None:
        self.calls += 1
        self.started.set()
        if self.gate is not None:
            await self.gate.wait()
        if self.failures:
            raise self.failures.pop(0)
        self.dirty = False

    def is_dirty(self) -> bool:
        return self.dirty


def _scheduler(flush: FakeFlush, backoff: ExponentialBackoff | None = None) -> AutosaveScheduler:
    return AutosaveScheduler(
        flush,
        flush.is_dirty,
        delay=DELAY,
        backoff=backoff or ExponentialBackoff(initial_delay=0.01, max_delay=0.02, jitter=False),
    )


@pytest.mark.asyncio
async def test_starts_idle() -> None:
    scheduler = _scheduler(FakeFlush())

    assert scheduler.state is AutosaveState.IDLE


@pytest.mark.asyncio
async def test_burst_of_mutations_is_one_write() -> None:
    flush = FakeFlush()
    scheduler = _scheduler(flush)

    for _ in range(5):
        scheduler.notify_mutation()
        await asyncio.sleep(DELAY / 5)
    assert scheduler.state is AutosaveState.ARMED
    assert flush.calls == 0

    await asyncio.sleep(DELAY * 3)

    assert flush.calls == 1
    assert scheduler.state is AutosaveState.IDLE


@pytest.mark.asyncio
async def test_each_mutation_restarts_the_timer() -> None:
    flush = FakeFlush()
    scheduler = _scheduler(flush)

    scheduler.notify_mutation()
    await asyncio.sleep(DELAY * 0.7)
    scheduler.notify_mutation()
    await asyncio.sleep(DELAY * 0.7)

    assert flush.calls == 0
    await asyncio.sleep(DELAY)
    assert flush.calls == 1


@pytest.mark.asyncio
async def test_flush_now_writes_immediately() -> None:
    flush = FakeFlush()
    scheduler = _scheduler(flush)
    scheduler.notify_mutation()

    await scheduler.flush_now()

    assert flush.calls == 1
    assert scheduler.state is AutosaveState.IDLE
    await asyncio.sleep(DELAY * 2)
    assert flush.calls == 1


@pytest.mark.asyncio
async def test_flush_now_when_idle_is_noop() -> None:
    flush = FakeFlush()

    await _scheduler(flush).flush_now()

    assert flush.calls == 0


@pytest.mark.asyncio
async def test_flush_now_raises_errors() -> None:
    flush = FakeFlush(failures=[MindMapConflictError("m1")])
    scheduler = _scheduler(flush)
    scheduler.notify_mutation()

    with pytest.raises(MindMapConflictError):
        await scheduler.flush_now()

    assert scheduler.state is AutosaveState.IDLE


@pytest.mark.asyncio
async def test_mutation_during_flush_rearms_afterwards() -> None:
    flush = FakeFlush()
    flush.gate = asyncio.Event()
    scheduler = _scheduler(flush)

    scheduler.notify_mutation()
    await asyncio.wait_for(flush.started.wait(), timeout=1)
    assert scheduler.state is AutosaveState.FLUSHING

    scheduler.notify_mutation()
    scheduler.notify_mutation()
    assert flush.calls == 1

    flush.gate.set()
    await asyncio.sleep(0)
    await asyncio.sleep(0)
    assert scheduler.state is AutosaveState.ARMED

    await asyncio.sleep(DELAY * 3)
    assert flush.calls == 2
    assert scheduler.state is AutosaveState.IDLE


@pytest.mark.asyncio
async def test_flush_now_while_flushing_is_noop() -> None:
    flush = FakeFlush()
    flush.gate = asyncio.Event()
    scheduler = _scheduler(flush)
    scheduler.notify_mutation()
    await asyncio.wait_for(flush.started.wait(), timeout=1)

    await scheduler.flush_now()

    assert flush.calls == 1
    flush.gate.set()
    await asyncio.sleep(DELAY)


@pytest.mark.asyncio
async def test_storage_failure_retries_with_backoff() -> None:
    flush = FakeFlush(failures=[StorageFailure("down"), StorageFailure("still down")])
    scheduler = _scheduler(flush)

    scheduler.notify_mutation()
    await asyncio.sleep(DELAY + 0.2)

    assert flush.calls == 3
    assert flush.dirty is False
    assert scheduler.state is AutosaveState.IDLE


@pytest.mark.asyncio
async def test_other_errors_are_not_retried() -> None:
    flush = FakeFlush(failures=[MindMapConflictError("m1")])
    scheduler = _scheduler(flush)

    scheduler.notify_mutation()
    await asyncio.sleep(DELAY * 4)

    assert flush.calls == 1
    assert scheduler.state is AutosaveState.IDLE


@pytest.mark.asyncio
async def test_close_writes_unsaved_changes() -> None:
    flush = FakeFlush()
    scheduler = _scheduler(flush)
    scheduler.notify_mutation()

    await scheduler.close()

    assert flush.calls == 1
    assert scheduler.state is AutosaveState.IDLE
    scheduler.notify_mutation()
    assert scheduler.state is AutosaveState.IDLE


@pytest.mark.asyncio
async def test_close_waits_for_in_flight_flush() -> None:
    flush = FakeFlush()
    flush.gate = asyncio.Event()
    scheduler = _scheduler(flush)
    scheduler.notify_mutation()
    await asyncio.wait_for(flush.started.wait(), timeout=1)

    closing = asyncio.create_task(scheduler.close())
    await asyncio.sleep(DELAY)
    assert not closing.done()

    flush.gate.set()
    await asyncio.wait_for(closing, timeout=1)

    assert flush.calls == 1


@pytest.mark.asyncio
async def test_close_when_clean_does_not_write() -> None:
    flush = FakeFlush()
    flush.dirty = False

    await _scheduler(flush).close()

    assert flush.calls == 0


@pytest.mark.asyncio
async def test_two_manual_flushes_are_one_write() -> None:
    flush = FakeFlush()
    scheduler = _scheduler(flush)
    scheduler.notify_mutation()

    await asyncio.gather(scheduler.flush_now(), scheduler.flush_now())

    assert flush.calls == 1
