# commandcenter/server/processor.py
import asyncio
import logging
from datetime import datetime, UTC
from typing import Any, Callable, Dict, List, Optional

from commandcenter.audit import AuditLog
from commandcenter.common.states import (
    BaseState,
    CompletedState,
    FailedState,
    PendingState,
    RunningState,
)
from commandcenter.execution.performer import perform_job_async
from commandcenter.execution.registry import HandlerContext, HandlerRegistry
from commandcenter.filters.base import JobFilter
from commandcenter.filters.builtin import RetryFilter
from commandcenter.serialization.base import BaseSerializer
from commandcenter.storage.base import RecordStore
from .context import ElectStateContext

logger = logging.getLogger(__name__)

ACTOR = "job-queue"


def utcnow() -> datetime:
    return datetime.now(UTC)


class JobProcessor:
    """Runs one job through pending -> running -> completed | pending | failed."""

    def __init__(
        self,
        job_id: str,
        store: RecordStore,
        registry: HandlerRegistry,
        serializer: BaseSerializer,
        audit: AuditLog,
        filters: Optional[List[JobFilter]] = None,
        services: Optional[Dict[str, Any]] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.job_id = job_id
        self.store = store
        self.registry = registry
        self.serializer = serializer
        self.audit = audit
        self.filters = filters if filters is not None else [RetryFilter()]
        self.services = services or {}
        self.clock = clock

    async def process(self) -> Optional[BaseState]:
        # 1. Only pending jobs are eligible; anything else is a lost race or terminal
        job = await asyncio.to_thread(self.store.get_job, self.job_id)
        if job is None or job.status != PendingState.NAME:
            return None

        # 2. Claim it
        running_state = RunningState(attempts=job.attempts + 1, started_at=self.clock())
        if not await asyncio.to_thread(
            self.store.set_job_state,
            job.id,
            running_state,
            expected_old_state=PendingState.NAME,
        ):
            return None
        job.status = running_state.name
        job.attempts = running_state.attempts
        job.started_at = running_state.started_at

        logger.info(f"Job {job.id} ({job.type}) started, attempt {job.attempts}/{job.max_retries}")
        await asyncio.to_thread(
            self.audit.log,
            actor=ACTOR,
            action="job.started",
            payload={"jobId": job.id, "type": job.type, "attempt": job.attempts},
        )

        try:
            # 3. Deserialize and dispatch
            payload = self.serializer.deserialize_payload(job.payload)
            ctx = HandlerContext(
                store=self.store,
                audit=self.audit,
                job_id=job.id,
                services=self.services,
                clock=self.clock,
            )
            await perform_job_async(self.registry, job.type, payload, ctx)

        except Exception as e:
            # 5. Let the filters decide between retry and terminal failure
            logger.error(f"Job {job.id} failed.", exc_info=True)
            failed_state = FailedState(
                error=str(e) or type(e).__name__,
                exception_type=type(e).__name__,
            )
            elect_state_context = ElectStateContext(
                job=job, candidate_state=failed_state, exception=e, now=self.clock()
            )
            for f in self.filters:
                f.on_state_election(elect_state_context)
            final_state = elect_state_context.candidate_state

            await asyncio.to_thread(
                self.store.set_job_state,
                job.id,
                final_state,
                expected_old_state=RunningState.NAME,
            )
            retrying = isinstance(final_state, PendingState)
            audit_payload = {"jobId": job.id, "type": job.type, "attempts": job.attempts}
            if retrying:
                audit_payload["runAt"] = final_state.run_at.isoformat()
            await asyncio.to_thread(
                self.audit.log,
                actor=ACTOR,
                action="job.retry" if retrying else "job.failed",
                payload=audit_payload,
                status="failure",
                error=failed_state.error,
            )
            return final_state

        else:
            # 4. Success
            completed_state = CompletedState(completed_at=self.clock())
            await asyncio.to_thread(
                self.store.set_job_state,
                job.id,
                completed_state,
                expected_old_state=RunningState.NAME,
            )
            logger.info(f"Job {job.id} ({job.type}) completed")
            await asyncio.to_thread(
                self.audit.log,
                actor=ACTOR,
                action="job.completed",
                payload={"jobId": job.id, "type": job.type, "attempts": job.attempts},
            )
            return completed_state
