# commandcenter/server/queue.py
import asyncio
import logging
from datetime import datetime, timedelta
from functools import partial
from typing import Any, Callable, Dict, List, Optional

from commandcenter.audit import AuditLog
from commandcenter.common.exceptions import InvalidJobError, JobNotFoundError
from commandcenter.common.job import DEFAULT_MAX_RETRIES, Job
from commandcenter.common.states import (
    BaseState,
    CompletedState,
    FailedState,
    PendingState,
    RunningState,
)
from commandcenter.execution.registry import HandlerRegistry
from commandcenter.filters.base import JobFilter
from commandcenter.serialization.base import BaseSerializer
from commandcenter.serialization.json_serializer import JsonSerializer
from commandcenter.storage.base import ABANDONED_ERROR, RecordStore
from .inflight import InFlightRegistry
from .processor import ACTOR, JobProcessor, utcnow

logger = logging.getLogger(__name__)


class JobQueue:
    """
    In-process job queue over the record store.

    Jobs are rows; this class only decides when to run them. Execution happens
    on the running event loop: `enqueue` starts due jobs in the background,
    future jobs and retries get a `call_later` timer, and `process_due_jobs`
    sweeps whatever a restart left behind.
    """

    def __init__(
        self,
        store: RecordStore,
        registry: Optional[HandlerRegistry] = None,
        serializer: Optional[BaseSerializer] = None,
        audit: Optional[AuditLog] = None,
        in_flight: Optional[InFlightRegistry] = None,
        filters: Optional[List[JobFilter]] = None,
        services: Optional[Dict[str, Any]] = None,
        clock: Callable[[], datetime] = utcnow,
        schedule_retries: bool = True,
    ):
        self.store = store
        self.registry = registry or HandlerRegistry()
        self.serializer = serializer or JsonSerializer()
        self.audit = audit or AuditLog(store)
        self.in_flight = in_flight or InFlightRegistry()
        self.filters = filters
        self.services = services if services is not None else {}
        self.clock = clock
        self.schedule_retries = schedule_retries
        self._timers: Dict[str, asyncio.TimerHandle] = {}

    # --- Producing ---

    def enqueue(
        self,
        job_type: str,
        payload: Optional[Dict[str, Any]] = None,
        run_at: Optional[datetime] = None,
        max_retries: Optional[int] = None,
    ) -> Job:
        """
        Persists a pending job and, when called inside a running event loop,
        starts it (due now) or arms a timer for it (due later). Outside a loop
        the job just waits for the next `process_due_jobs` sweep.
        """
        if not isinstance(job_type, str) or not job_type.strip():
            raise InvalidJobError("Job type must be a non-empty string")
        if payload is None:
            payload = {}
        if not isinstance(payload, dict):
            raise InvalidJobError("Job payload must be an object")
        if max_retries is None:
            max_retries = DEFAULT_MAX_RETRIES
        if not isinstance(max_retries, int) or isinstance(max_retries, bool) or max_retries < 1:
            raise InvalidJobError("maxRetries must be a positive integer")
        if run_at is not None and run_at.tzinfo is None:
            raise InvalidJobError("runAt must be timezone-aware")

        now = self.clock()
        job = Job(
            type=job_type.strip(),
            payload=self.serializer.serialize_payload(payload),
            max_retries=max_retries,
            run_at=run_at or now,
            created_at=now,
        )
        self.store.create_job(job)
        logger.info(f"Enqueued job {job.id} ({job.type}) to run at {job.run_at.isoformat()}")
        self.audit.log(
            actor=ACTOR,
            action="job.enqueued",
            payload={"jobId": job.id, "type": job.type, "runAt": job.run_at.isoformat()},
        )

        if self._has_running_loop():
            if job.run_at <= now:
                self._start(job.id)
            else:
                self._schedule(job.id, job.run_at)
        return job

    # --- Reading ---

    def get_job(self, job_id: str) -> Optional[Job]:
        return self.store.get_job(job_id)

    def require_job(self, job_id: str) -> Job:
        job = self.store.get_job(job_id)
        if job is None:
            raise JobNotFoundError(f"Job {job_id} not found")
        return job

    def list_jobs(
        self,
        status: Optional[str] = None,
        job_type: Optional[str] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> List[Job]:
        return self.store.list_jobs(status=status, job_type=job_type, start=offset, count=limit)

    def get_queue_stats(self) -> Dict[str, int]:
        counts = self.store.count_jobs_by_status()
        stats = {
            "pending": counts.get(PendingState.NAME, 0),
            "running": counts.get(RunningState.NAME, 0),
            "completed": counts.get(CompletedState.NAME, 0),
            "failed": counts.get(FailedState.NAME, 0),
        }
        stats["totalJobs"] = sum(counts.values())
        return stats

    def get_monitor_metrics(self, limit: int = 50) -> Dict[str, Any]:
        now = self.clock()
        hour_ago = now - timedelta(hours=1)
        stats = self.get_queue_stats()

        recent_completed = self.store.list_jobs(status=CompletedState.NAME, count=100)
        durations = [
            job.execution_time_ms for job in recent_completed if job.execution_time_ms is not None
        ]
        avg_ms = round(sum(durations) / len(durations)) if durations else 0

        return {
            "queueStats": stats,
            "recentJobs": [
                self.serializer.job_to_dict(job) for job in self.store.list_jobs(count=limit)
            ],
            "metrics": {
                "avgExecutionTimeMs": avg_ms,
                "failedJobsLast24h": self.store.count_jobs(
                    FailedState.NAME, created_after=now - timedelta(hours=24)
                ),
                "pendingJobsOlderThan1h": self.store.count_jobs(
                    PendingState.NAME, created_before=hour_ago
                ),
                "runningLongerThan1h": self.store.count_jobs(
                    RunningState.NAME, started_before=hour_ago
                ),
                "successRate": (
                    round(stats["completed"] / stats["totalJobs"] * 100, 1)
                    if stats["totalJobs"]
                    else 0.0
                ),
            },
            "jobTypeStats": [
                {"type": job_type, "status": status, "count": count}
                for job_type, status, count in self.store.count_jobs_by_type_and_status()
            ],
        }

    # --- Executing ---

    async def process_job(self, job_id: str) -> Optional[BaseState]:
        """
        Runs the job unless this process is already running it, in which case
        the call waits on the existing execution. Returns the state the job
        was left in, or None when it was not eligible.
        """
        return await asyncio.shield(self._start(job_id))

    async def process_due_jobs(self, limit: int = 100) -> List[str]:
        """Runs every pending job whose run_at has passed. Returns their ids."""
        job_ids = await asyncio.to_thread(self.store.get_due_job_ids, self.clock(), limit=limit)
        if not job_ids:
            return []
        logger.debug(f"Sweeping {len(job_ids)} due job(s)")
        tasks = [self._start(job_id) for job_id in job_ids]
        await asyncio.gather(*tasks, return_exceptions=True)
        return job_ids

    def _has_running_loop(self) -> bool:
        try:
            asyncio.get_running_loop()
        except RuntimeError:
            return False
        return True

    def _start(self, job_id: str) -> asyncio.Task:
        task = self.in_flight.get(job_id)
        if task is not None:
            logger.debug(f"Job {job_id} already in flight; coalescing")
            return task
        timer = self._timers.pop(job_id, None)
        if timer is not None:
            timer.cancel()
        task = asyncio.get_running_loop().create_task(self._execute(job_id))
        self.in_flight.add(job_id, task)
        task.add_done_callback(partial(self.in_flight.discard, job_id))
        return task

    async def _execute(self, job_id: str) -> Optional[BaseState]:
        processor = JobProcessor(
            job_id,
            self.store,
            self.registry,
            self.serializer,
            self.audit,
            filters=self.filters,
            services=self.services,
            clock=self.clock,
        )
        try:
            final_state = await processor.process()
        except Exception:
            # Store failures leave the row as it was; the sweep or recovery picks it up.
            logger.exception(f"Unhandled error while processing job {job_id}")
            return None

        if (
            isinstance(final_state, PendingState)
            and final_state.run_at is not None
            and self.schedule_retries
        ):
            self._schedule(job_id, final_state.run_at)
        return final_state

    def _schedule(self, job_id: str, run_at: datetime) -> None:
        delay = max((run_at - self.clock()).total_seconds(), 0.0)
        loop = asyncio.get_running_loop()
        previous = self._timers.pop(job_id, None)
        if previous is not None:
            previous.cancel()
        self._timers[job_id] = loop.call_later(delay, self._fire, job_id)
        logger.debug(f"Job {job_id} scheduled in {delay:.1f}s")

    def _fire(self, job_id: str) -> None:
        self._timers.pop(job_id, None)
        self._start(job_id)

    @property
    def scheduled_job_ids(self) -> List[str]:
        return list(self._timers)

    # --- Maintenance ---

    def cleanup(self, older_than_days: int = 7) -> int:
        """Deletes completed jobs finished more than `older_than_days` ago."""
        cutoff = self.clock() - timedelta(days=older_than_days)
        deleted = self.store.delete_completed_jobs(completed_before=cutoff)
        if deleted:
            logger.info(f"Cleaned up {deleted} completed job(s) older than {older_than_days} days")
        return deleted

    def recover_stale_jobs(self, max_age_seconds: int = 3600, limit: int = 100) -> List[str]:
        """Resets jobs stuck in `running` for longer than `max_age_seconds` to pending.

        A stuck job that already used its last attempt is failed instead, so the
        handler never runs more than `max_retries` times.
        """
        now = self.clock()
        cutoff = now - timedelta(seconds=max_age_seconds)
        recovered, abandoned = self.store.reset_stale_running_jobs(
            started_before=cutoff, now=now, limit=limit
        )
        for job_id in abandoned:
            logger.warning(f"Failed stale running job {job_id}: no attempts left")
            self.audit.log(
                actor=ACTOR,
                action="job.failed",
                payload={"jobId": job_id, "maxAgeSeconds": max_age_seconds},
                status="failure",
                error=ABANDONED_ERROR,
            )
        for job_id in recovered:
            logger.warning(f"Recovered stale running job {job_id}")
            self.audit.log(
                actor=ACTOR,
                action="job.recovered",
                payload={"jobId": job_id, "maxAgeSeconds": max_age_seconds},
            )
        return recovered

    async def drain(self) -> None:
        """Waits until nothing is executing. Armed timers are left alone."""
        while True:
            tasks = self.in_flight.tasks
            if not tasks:
                return
            await asyncio.gather(*tasks, return_exceptions=True)

    async def close(self) -> None:
        for timer in self._timers.values():
            timer.cancel()
        self._timers.clear()
        await self.drain()
