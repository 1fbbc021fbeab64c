# commandcenter/handlers/manifest.py
"""Project manifests: cached counts over a project's works, plus the jobs that refresh them."""
import asyncio
import logging
from datetime import datetime
from typing import Any, Callable, Dict, Optional

from commandcenter.audit import AuditLog
from commandcenter.common.exceptions import InvalidPayloadError, ProjectNotFoundError
from commandcenter.common.records import Project
from commandcenter.execution.registry import HandlerContext
from commandcenter.server.processor import utcnow
from commandcenter.storage.base import RecordStore

logger = logging.getLogger(__name__)

MAX_BACKFILL_BATCHES = 10
BACKFILL_BATCH_DELAY = 0.1


def _month_key(value: datetime) -> str:
    return f"{value.year:04d}-{value.month:02d}"


def _months_back(now: datetime, count: int):
    year, month = now.year, now.month
    for _ in range(count):
        yield f"{year:04d}-{month:02d}"
        month -= 1
        if month == 0:
            year, month = year - 1, 12


class ManifestService:
    def __init__(
        self,
        store: RecordStore,
        audit: Optional[AuditLog] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.store = store
        self.audit = audit or AuditLog(store)
        self.clock = clock

    def _require_project(self, project_name: str) -> Project:
        project = self.store.get_project_by_name(project_name)
        if project is None:
            raise ProjectNotFoundError(f"Project '{project_name}' not found")
        return project

    def get_project_manifest(self, project_name: str) -> Dict[str, Any]:
        """Total works, a last-12-months histogram and the newest work id."""
        project = self._require_project(project_name)
        self.audit.log_manifest_operation("get", project_name)

        now = self.clock()
        by_month = {key: 0 for key in _months_back(now, 12)}
        oldest = min(by_month)
        for work in self.store.list_works(project.id):
            key = _month_key(work.created_at)
            if key < oldest:
                break
            if key in by_month:
                by_month[key] += 1

        latest = self.store.latest_work(project.id)
        return {
            "total": self.store.count_works(project.id),
            "byMonth": by_month,
            "latestId": latest.work_id if latest else None,
            "lastUpdated": now.isoformat(),
        }

    def recompute_manifest(self, project_name: str, trigger: str = "api") -> Dict[str, Any]:
        project = self._require_project(project_name)
        total = self.store.count_works(project.id)
        self.store.touch_project(project.id)
        self.audit.log_manifest_operation("recompute", project_name, trigger=trigger, total=total)
        logger.info(f"Recomputed manifest for {project_name}: {total} works")
        return {"success": True, "newTotal": total}

    def all_project_manifests(self) -> Dict[str, Dict[str, Any]]:
        manifests = {}
        for project in self.store.list_projects():
            latest = self.store.latest_work(project.id)
            manifests[project.name] = {
                "total": self.store.count_works(project.id),
                "latestId": latest.work_id if latest else None,
            }
        return manifests


def _require(payload: Dict[str, Any], key: str) -> Any:
    value = payload.get(key)
    if value in (None, ""):
        raise InvalidPayloadError(f"Payload is missing '{key}'")
    return value


def _parse_date(value: Any, key: str) -> datetime:
    try:
        return datetime.fromisoformat(str(value))
    except ValueError:
        raise InvalidPayloadError(f"'{key}' must be an ISO date, got {value!r}") from None


def recompute_manifest(payload: Dict[str, Any], ctx: HandlerContext) -> Dict[str, Any]:
    service = ManifestService(ctx.store, ctx.audit)
    return service.recompute_manifest(_require(payload, "project"), trigger="job-queue")


async def backfill(payload: Dict[str, Any], ctx: HandlerContext) -> Dict[str, Any]:
    """Walks the date range one day per batch, capped at MAX_BACKFILL_BATCHES."""
    project = _require(payload, "project")
    from_date = _parse_date(_require(payload, "fromDate"), "fromDate")
    to_date = _parse_date(_require(payload, "toDate"), "toDate")
    if (from_date.tzinfo is None) != (to_date.tzinfo is None):
        raise InvalidPayloadError("'fromDate' and 'toDate' must both carry a timezone or neither")
    if to_date < from_date:
        raise InvalidPayloadError("'toDate' must not be before 'fromDate'")

    days = -(-int((to_date - from_date).total_seconds()) // 86400)
    batches = min(days, MAX_BACKFILL_BATCHES)
    for batch in range(batches):
        logger.debug(f"Backfill {project}: batch {batch + 1}/{batches}")
        await asyncio.sleep(BACKFILL_BATCH_DELAY)

    ctx.audit.log_manifest_operation(
        "backfill",
        project,
        fromDate=payload["fromDate"],
        toDate=payload["toDate"],
        daysProcessed=batches,
    )
    return {"daysProcessed": batches}
