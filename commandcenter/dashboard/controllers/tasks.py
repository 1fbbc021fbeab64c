"""Task routes, including the ranked Top 3 view."""
from typing import Any, Dict, Optional

from litestar import Controller, get, post
from litestar.params import Parameter
from litestar.status_codes import HTTP_200_OK, HTTP_201_CREATED

from commandcenter.client import CommandCenter
from commandcenter.common.exceptions import InvalidTaskError
from commandcenter.dashboard.responses import ok, parse_timestamp
from commandcenter.tasks import task_to_dict


class TasksController(Controller):
    path = "/tasks"

    @get("/")
    async def list_tasks(
        self,
        center: CommandCenter,
        status: Optional[str] = None,
        project: Optional[str] = None,
        priority: Optional[int] = Parameter(query="priority", default=None, ge=1, le=3),
    ) -> Dict[str, Any]:
        tasks = center.tasks.list_tasks(status=status, project=project, priority=priority)
        by_status: Dict[str, int] = {}
        for task in tasks:
            by_status[task.status] = by_status.get(task.status, 0) + 1
        return ok(
            [task_to_dict(task) for task in tasks],
            meta={"total": len(tasks), "byStatus": by_status},
        )

    @post("/", status_code=HTTP_201_CREATED)
    async def create_task(self, center: CommandCenter, data: Dict[str, Any]) -> Dict[str, Any]:
        for key in ("projectId", "title"):
            if not data.get(key):
                raise InvalidTaskError(f"'{key}' is required")
        task = center.tasks.create_task(
            project_id=data["projectId"],
            title=data["title"],
            notes=data.get("notes"),
            priority=data.get("priority", 2),
            status=data.get("status", "open"),
            due=parse_timestamp(data.get("due"), "due"),
            energy=data.get("energy", 2),
            tags=data.get("tags", ""),
            source=data.get("source", "manual"),
        )
        return ok(task_to_dict(task), message=f'Todo "{task.title}" created successfully')

    @get("/top3")
    async def top3(
        self,
        center: CommandCenter,
        limit: int = Parameter(query="limit", default=3, ge=1, le=50),
    ) -> Dict[str, Any]:
        view = center.tasks.top_tasks(center.local_now(), limit=limit)
        return ok(
            view,
            message=f"Top {len(view['top3'])} todos ranked by priority, urgency, and energy fit",
        )

    @post("/{task_id:str}/complete", status_code=HTTP_200_OK)
    async def complete(self, center: CommandCenter, task_id: str) -> Dict[str, Any]:
        task = center.tasks.complete_task(task_id)
        return ok(task_to_dict(task), message=f'Todo "{task.title}" completed')

    @post("/{task_id:str}/snooze", status_code=HTTP_200_OK)
    async def snooze(self, center: CommandCenter, task_id: str, data: Dict[str, Any]) -> Dict[str, Any]:
        until = parse_timestamp(data.get("until"), "until")
        if until is None:
            raise InvalidTaskError("'until' is required")
        task = center.tasks.snooze_task(task_id, until, reason=data.get("reason"))
        return ok(task_to_dict(task), message=f'Todo "{task.title}" snoozed until {until.date().isoformat()}')
