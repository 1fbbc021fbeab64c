# commandcenter/server/inflight.py
import asyncio
from typing import Dict, List, Optional


class InFlightRegistry:
    """
    Job ids currently executing in this process, each mapped to the task
    running it. Only valid inside one process and one event loop.
    """

    def __init__(self):
        self._tasks: Dict[str, asyncio.Task] = {}

    def get(self, job_id: str) -> Optional[asyncio.Task]:
        task = self._tasks.get(job_id)
        if task is not None and task.done():
            return None
        return task

    def add(self, job_id: str, task: asyncio.Task) -> None:
        self._tasks[job_id] = task

    def discard(self, job_id: str, task: asyncio.Task) -> None:
        if self._tasks.get(job_id) is task:
            del self._tasks[job_id]

    def __contains__(self, job_id: str) -> bool:
        return self.get(job_id) is not None

    def __len__(self) -> int:
        return sum(1 for task in self._tasks.values() if not task.done())

    @property
    def job_ids(self) -> List[str]:
        return [job_id for job_id, task in self._tasks.items() if not task.done()]

    @property
    def tasks(self) -> List[asyncio.Task]:
        return [task for task in self._tasks.values() if not task.done()]
