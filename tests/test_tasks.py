"""Tests for the background task queue."""

import asyncio

import pytest

from game_articles.tasks import COMPLETED, FAILED, BackgroundTaskQueue


@pytest.mark.asyncio
async def test_tasks_complete_and_failures_are_recorded():
    queue = BackgroundTaskQueue()
    done = []

    async def ok():
        done.append("ok")

    async def broken():
        raise KeyError("locale")

    ok_id = queue.submit("save", ok)
    bad_id = queue.submit("replicate", broken)
    await queue.drain()

    assert done == ["ok"]
    assert queue.get(ok_id).status == COMPLETED
    failed = queue.get(bad_id)
    assert failed.status == FAILED
    assert failed.error.startswith("KeyError")
    assert "Traceback" in failed.traceback
    assert failed.finished_at is not None
    assert queue.failed == [failed]
    assert queue.pending_count == 0


@pytest.mark.asyncio
async def test_concurrency_is_bounded():
    queue = BackgroundTaskQueue(concurrency=2)
    running = 0
    peak = 0

    async def work():
        nonlocal running, peak
        running += 1
        peak = max(peak, running)
        await asyncio.sleep(0.01)
        running -= 1

    for i in range(5):
        queue.submit(f"task-{i}", work)
    records = await queue.drain()

    assert peak == 2
    assert all(r.status == COMPLETED for r in records)


@pytest.mark.asyncio
async def test_drain_timeout_cancels_stragglers():
    queue = BackgroundTaskQueue()

    async def hang():
        await asyncio.sleep(10)

    task_id = queue.submit("hang", hang)
    await queue.drain(timeout_s=0.01)

    record = queue.get(task_id)
    assert record.status == FAILED
    assert record.error == "cancelled"


@pytest.mark.asyncio
async def test_drain_with_nothing_submitted():
    assert await BackgroundTaskQueue().drain() == []


@pytest.mark.asyncio
async def test_finished_tasks_are_released_and_records_capped():
    queue = BackgroundTaskQueue(max_finished=10)

    async def noop():
        pass

    ids = [queue.submit(f"save-{i}", noop) for i in range(100)]
    records = await queue.drain()

    assert queue.active_tasks == 0
    assert len(records) == 10
    assert [r.task_id for r in records] == ids[-10:]
    assert queue.get(ids[0]) is None


@pytest.mark.asyncio
async def test_on_finished_runs_after_success_and_failure():
    queue = BackgroundTaskQueue()
    finished = []

    async def ok():
        pass

    async def broken():
        raise RuntimeError("store offline")

    queue.submit("save", ok, on_finished=lambda r: finished.append((r.name, r.status)))
    queue.submit("notify", broken, on_finished=lambda r: finished.append((r.name, r.status)))
    await queue.drain()

    assert sorted(finished) == [("notify", FAILED), ("save", COMPLETED)]
