"""
Background task queue for post-generation side effects (saving a draft to
the document store, replicating it into another locale, notifying a UI).

Work submitted here is never fire-and-forget: every task gets a record with
its outcome, failures are logged with the exception, and `drain()` lets the
owner wait for everything and inspect what broke. Finished tasks are
released as soon as they end and only the newest `max_finished` records are
kept, so a long-running server does not accumulate them.
"""

import asyncio
import time
import traceback
import uuid
from dataclasses import dataclass
from typing import Awaitable, Callable, Dict, List, Optional

from game_articles.pipeline.agents.utils import logger

PENDING = "pending"
RUNNING = "running"
COMPLETED = "completed"
FAILED = "failed"

MAX_FINISHED_RECORDS = 1000


@dataclass
class TaskRecord:
    task_id: str
    name: str
    status: str = PENDING
    error: Optional[str] = None
    traceback: Optional[str] = None
    created_at: float = 0.0
    finished_at: Optional[float] = None


class BackgroundTaskQueue:
    def __init__(self, concurrency: int = 4, max_finished: int = MAX_FINISHED_RECORDS):
        self._semaphore = asyncio.Semaphore(concurrency)
        self._max_finished = max_finished
        self._records: Dict[str, TaskRecord] = {}
        self._tasks: Dict[str, "asyncio.Task[None]"] = {}

    def submit(
        self,
        name: str,
        factory: Callable[[], Awaitable[object]],
        on_finished: Optional[Callable[[TaskRecord], None]] = None,
    ) -> str:
        """
        Schedules `factory()` on the running loop and returns its task id.
        `on_finished` is called with the record once the task has ended, whatever the outcome.
        """
        task_id = uuid.uuid4().hex[:12]
        record = TaskRecord(task_id=task_id, name=name, created_at=time.time())
        self._records[task_id] = record
        self._tasks[task_id] = asyncio.ensure_future(self._run(record, factory, on_finished))
        return task_id

    async def _run(self, record: TaskRecord, factory: Callable[[], Awaitable[object]],
                   on_finished: Optional[Callable[[TaskRecord], None]]) -> None:
        try:
            async with self._semaphore:
                record.status = RUNNING
                try:
                    await factory()
                except asyncio.CancelledError:
                    record.status = FAILED
                    record.error = "cancelled"
                    raise
                except Exception as e:
                    record.status = FAILED
                    record.error = f"{type(e).__name__}: {e}"
                    record.traceback = traceback.format_exc()
                    logger.error(f"Background task '{record.name}' ({record.task_id}) failed: {e}")
                else:
                    record.status = COMPLETED
        finally:
            if record.status == PENDING:
                # cancelled while waiting for a slot
                record.status = FAILED
                record.error = "cancelled"
            record.finished_at = time.time()
            self._tasks.pop(record.task_id, None)
            self._prune()
            if on_finished is not None:
                try:
                    on_finished(record)
                except Exception as e:
                    logger.error(f"Completion callback of '{record.name}' ({record.task_id}) failed: {e}")

    def _prune(self) -> None:
        finished = [task_id for task_id, r in self._records.items() if r.finished_at is not None]
        for task_id in finished[: max(0, len(finished) - self._max_finished)]:
            del self._records[task_id]

    async def drain(self, timeout_s: Optional[float] = None) -> List[TaskRecord]:
        """Waits for every submitted task. Returns the retained records."""
        pending = list(self._tasks.values())
        if pending:
            _done, still_pending = await asyncio.wait(pending, timeout=timeout_s)
            for task in still_pending:
                task.cancel()
            if still_pending:
                await asyncio.gather(*still_pending, return_exceptions=True)
        return self.records()

    def get(self, task_id: str) -> Optional[TaskRecord]:
        return self._records.get(task_id)

    def records(self) -> List[TaskRecord]:
        return list(self._records.values())

    @property
    def failed(self) -> List[TaskRecord]:
        return [r for r in self._records.values() if r.status == FAILED]

    @property
    def pending_count(self) -> int:
        return sum(1 for r in self._records.values() if r.status in (PENDING, RUNNING))

    @property
    def active_tasks(self) -> int:
        return len(self._tasks)
