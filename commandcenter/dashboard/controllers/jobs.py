"""Job queue routes."""
from typing import Any, Dict, Optional

from litestar import Controller, get, post
from litestar.params import Parameter
from litestar.status_codes import HTTP_201_CREATED

from commandcenter.client import CommandCenter
from commandcenter.common.exceptions import InvalidJobError
from commandcenter.dashboard.responses import ok, parse_timestamp


class JobsController(Controller):
    path = "/jobs"

    @post("/", status_code=HTTP_201_CREATED)
    async def enqueue(self, center: CommandCenter, data: Dict[str, Any]) -> Dict[str, Any]:
        job_type = data.get("type")
        if not isinstance(job_type, str):
            raise InvalidJobError("'type' is required")
        job = center.queue.enqueue(
            job_type,
            data.get("payload") or {},
            run_at=parse_timestamp(data.get("runAt"), "runAt"),
            max_retries=data.get("maxRetries"),
        )
        return ok(
            {"jobId": job.id, "job": center.serializer.job_to_dict(job)},
            message=f"Job {job.type} queued",
        )

    @get("/")
    async def list_jobs(
        self,
        center: CommandCenter,
        status: Optional[str] = None,
        job_type: Optional[str] = Parameter(query="type", default=None),
        limit: int = Parameter(query="limit", default=50, ge=1, le=500),
        offset: int = Parameter(query="offset", default=0, ge=0),
    ) -> Dict[str, Any]:
        jobs = center.queue.list_jobs(status=status, job_type=job_type, limit=limit, offset=offset)
        return ok([center.serializer.job_to_dict(job) for job in jobs])

    @get("/stats")
    async def stats(self, center: CommandCenter) -> Dict[str, Any]:
        return ok(center.queue.get_queue_stats())

    @get("/{job_id:str}")
    async def job_status(self, center: CommandCenter, job_id: str) -> Dict[str, Any]:
        job = center.queue.require_job(job_id)
        return ok(center.serializer.job_to_dict(job))
