"""
Progress events for article generation runs.

Agents push AgentEvents keyed by job id. Anything that wants live progress
(a websocket, a CLI spinner, a test) subscribes to an asyncio.Queue for
that job; late subscribers get the history replayed first. Histories of the
oldest jobs without subscribers are dropped once more than MAX_JOBS are held.
"""

import asyncio
import time
from collections import defaultdict
from dataclasses import asdict, dataclass, field
from typing import Any, Dict, List, Optional

MAX_HISTORY_PER_JOB = 500
MAX_JOBS = 200
QUEUE_SIZE = 200


@dataclass
class AgentEvent:
    job_id: str
    agent_name: str
    status: str          # "started", "working", "completed", "error"
    message: str
    timestamp: float
    metrics: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict:
        return asdict(self)


class EventBus:
    def __init__(self, max_jobs: int = MAX_JOBS):
        self._subscribers: Dict[str, List[asyncio.Queue]] = defaultdict(list)
        self._history: Dict[str, List[dict]] = defaultdict(list)
        self._max_jobs = max_jobs

    def _evict_old_jobs(self) -> None:
        excess = len(self._history) - self._max_jobs
        if excess <= 0:
            return
        for job_id in [j for j in self._history if j not in self._subscribers][:excess]:
            del self._history[job_id]

    def emit(self, job_id: str, agent_name: str, status: str, message: str,
             metrics: Optional[dict] = None) -> Optional[AgentEvent]:
        if not job_id:
            return None
        event = AgentEvent(
            job_id=job_id,
            agent_name=agent_name,
            status=status,
            message=message,
            timestamp=time.time(),
            metrics=dict(metrics or {}),
        )
        event_dict = event.to_dict()
        if job_id not in self._history:
            self._history[job_id] = []
            self._evict_old_jobs()
        history = self._history[job_id]
        history.append(event_dict)
        if len(history) > MAX_HISTORY_PER_JOB:
            del history[: len(history) - MAX_HISTORY_PER_JOB]

        for queue in list(self._subscribers.get(job_id, [])):
            try:
                queue.put_nowait(event_dict)
            except asyncio.QueueFull:
                # slow consumer; it can catch up from get_history
                pass
        return event

    def subscribe(self, job_id: str) -> asyncio.Queue:
        queue: asyncio.Queue = asyncio.Queue(maxsize=QUEUE_SIZE)
        for past in self._history.get(job_id, []):
            try:
                queue.put_nowait(past)
            except asyncio.QueueFull:
                break
        self._subscribers[job_id].append(queue)
        return queue

    def unsubscribe(self, job_id: str, queue: asyncio.Queue) -> None:
        queues = self._subscribers.get(job_id)
        if not queues:
            return
        if queue in queues:
            queues.remove(queue)
        if not queues:
            del self._subscribers[job_id]

    def get_history(self, job_id: str) -> List[dict]:
        return list(self._history.get(job_id, []))

    def clear_job(self, job_id: str) -> None:
        self._subscribers.pop(job_id, None)
        self._history.pop(job_id, None)


default_bus = EventBus()

emit = default_bus.emit
subscribe = default_bus.subscribe
unsubscribe = default_bus.unsubscribe
get_history = default_bus.get_history
clear_job = default_bus.clear_job
