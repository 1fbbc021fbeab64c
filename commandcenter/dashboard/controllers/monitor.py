"""Operational views over the queue and the rituals."""
from typing import Any, Dict, Optional

from litestar import Controller, get
from litestar.params import Parameter

from commandcenter.client import CommandCenter
from commandcenter.dashboard.responses import ok


class MonitorController(Controller):
    path = "/monitor"

    @get("/jobs")
    async def jobs(
        self,
        center: CommandCenter,
        limit: int = Parameter(query="limit", default=50, ge=1, le=500),
    ) -> Dict[str, Any]:
        return ok(center.queue.get_monitor_metrics(limit=limit))

    @get("/rituals")
    async def rituals(
        self,
        center: CommandCenter,
        limit: int = Parameter(query="limit", default=50, ge=1, le=500),
        project_id: Optional[str] = Parameter(query="projectId", default=None),
    ) -> Dict[str, Any]:
        return ok(center.scheduler.monitor(limit=limit, project_id=project_id))
