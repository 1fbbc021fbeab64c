# commandcenter/server/worker.py
import asyncio
import logging
from typing import Any, Dict

from .queue import JobQueue

logger = logging.getLogger(__name__)


class Worker:
    """
    Background loop for a single process: sweeps due jobs, polls rituals,
    wakes snoozed tasks and prunes old completed jobs.
    """

    def __init__(
        self,
        queue: JobQueue,
        scheduler=None,
        tasks=None,
        poll_interval: float = 5.0,
        ritual_interval: float = 300.0,
        cleanup_interval: float = 3600.0,
        retention_days: int = 7,
    ):
        self.queue = queue
        self.scheduler = scheduler
        self.tasks = tasks
        self.poll_interval = poll_interval
        self.ritual_interval = ritual_interval
        self.cleanup_interval = cleanup_interval
        self.retention_days = retention_days
        self._next_ritual_check = 0.0
        self._next_cleanup = 0.0
        self._shutdown_requested = asyncio.Event()

    async def run_once(self) -> Dict[str, Any]:
        """One pass of every duty that is due. Returns what it did."""
        now = asyncio.get_running_loop().time()
        summary: Dict[str, Any] = {"jobs": await self.queue.process_due_jobs()}

        if self.scheduler is not None and now >= self._next_ritual_check:
            self._next_ritual_check = now + self.ritual_interval
            summary["rituals"] = await self.scheduler.check_and_run_rituals()

        if self.tasks is not None:
            summary["woken"] = len(self.tasks.wake_snoozed_tasks())

        if now >= self._next_cleanup:
            self._next_cleanup = now + self.cleanup_interval
            summary["cleaned"] = self.queue.cleanup(self.retention_days)

        return summary

    async def run(self) -> None:
        logger.info("Worker started")
        while not self._shutdown_requested.is_set():
            try:
                await self.run_once()
            except Exception:
                logger.exception("Unhandled exception in worker loop")
            try:
                await asyncio.wait_for(self._shutdown_requested.wait(), timeout=self.poll_interval)
            except asyncio.TimeoutError:
                pass
        await self.queue.close()
        logger.info("Worker has stopped.")

    def stop(self) -> None:
        self._shutdown_requested.set()

