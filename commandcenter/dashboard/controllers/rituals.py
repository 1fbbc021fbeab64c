"""Ritual routes: listing, scheduled check, manual run."""
import math
from datetime import datetime, timedelta, UTC
from typing import Any, Dict

from litestar import Controller, get, post
from litestar.status_codes import HTTP_200_OK, HTTP_202_ACCEPTED

from commandcenter.client import CommandCenter
from commandcenter.common.exceptions import (
    InvalidPayloadError,
    NonRetryableJobError,
    RitualCooldownError,
    RitualNotFoundError,
)
from commandcenter.dashboard.responses import ok, ritual_to_dict


class RitualsController(Controller):
    path = "/rituals"

    @get("/")
    async def list_rituals(self, center: CommandCenter) -> Dict[str, Any]:
        projects = {project.id: project for project in center.store.list_projects()}
        rituals = center.store.list_rituals()
        return ok(
            [ritual_to_dict(r, projects.get(r.project_id)) for r in rituals],
            meta={
                "total": len(rituals),
                "enabled": sum(1 for r in rituals if r.enabled),
                "disabled": sum(1 for r in rituals if not r.enabled),
            },
        )

    @get("/check")
    async def check(self, center: CommandCenter) -> Dict[str, Any]:
        result = await center.scheduler.check_and_run_rituals()
        message = (
            f"Successfully executed {result['executed']} ritual(s)"
            if result["executed"]
            else "No rituals scheduled to run at this time"
        )
        return ok(result, message=message, timestamp=datetime.now(UTC).isoformat())

    @post("/check", status_code=HTTP_200_OK)
    async def run_all(self, center: CommandCenter) -> Dict[str, Any]:
        result = await center.scheduler.run_all()
        return ok(
            result,
            message=f"Manually executed {result['executed']} ritual(s)",
            timestamp=datetime.now(UTC).isoformat(),
        )

    @post("/run", status_code=HTTP_202_ACCEPTED)
    async def run(self, center: CommandCenter, data: Dict[str, Any]) -> Dict[str, Any]:
        ritual_id = data.get("ritualId")
        if not ritual_id:
            raise InvalidPayloadError("'ritualId' is required")
        ritual = center.store.get_ritual(str(ritual_id))
        if ritual is None:
            raise RitualNotFoundError("Ritual not found")
        if not ritual.enabled:
            raise NonRetryableJobError("Ritual is disabled")

        cooldown = timedelta(seconds=center.settings.ritual_run_cooldown_seconds)
        if ritual.last_run is not None and ritual.last_run + cooldown > center.clock():
            remaining = ritual.last_run + cooldown - center.clock()
            minutes_left = math.ceil(remaining.total_seconds() / 60)
            raise RitualCooldownError(f"Ritual on cooldown. Try again in {minutes_left} minutes.")

        job = center.queue.enqueue("ritual.run", {"ritualId": ritual.id})
        project = center.store.get_project(ritual.project_id)
        return ok(
            {"jobId": job.id, "ritual": ritual_to_dict(ritual, project)},
            message=f'Ritual "{ritual.name}" queued for execution',
        )
