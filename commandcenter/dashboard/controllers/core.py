"""Health, audit and project routes."""
from datetime import datetime, UTC
from typing import Any, Dict, Optional

from litestar import Controller, get
from litestar.params import Parameter

from commandcenter.audit import entry_to_dict
from commandcenter.client import CommandCenter
from commandcenter.dashboard.responses import ok, project_to_dict


class CoreController(Controller):
    path = "/"

    @get("/health")
    async def health(self, center: CommandCenter) -> Dict[str, Any]:
        return ok(
            {
                "status": "ok",
                "queue": center.queue.get_queue_stats(),
                "inFlight": len(center.queue.in_flight),
                "timestamp": datetime.now(UTC).isoformat(),
            }
        )

    @get("/audit/recent")
    async def recent_audit(
        self,
        center: CommandCenter,
        limit: int = Parameter(query="limit", default=20, ge=1, le=200),
        offset: int = Parameter(query="offset", default=0, ge=0),
        action: Optional[str] = None,
        status: Optional[str] = None,
    ) -> Dict[str, Any]:
        entries = center.store.list_audit_entries(
            action=action, status=status, start=offset, count=limit
        )
        return ok([entry_to_dict(entry) for entry in entries], total=len(entries))

    @get("/projects")
    async def list_projects(self, center: CommandCenter) -> Dict[str, Any]:
        manifests = center.manifests.all_project_manifests()
        projects = []
        for project in center.store.list_projects():
            projects.append({**project_to_dict(project), "manifest": manifests.get(project.name)})
        return ok(projects)

    @get("/projects/{name:str}/manifest")
    async def project_manifest(self, center: CommandCenter, name: str) -> Dict[str, Any]:
        return ok(center.manifests.get_project_manifest(name))
