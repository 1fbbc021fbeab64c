# commandcenter/tasks.py
import logging
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

from commandcenter.audit import AuditLog
from commandcenter.common.exceptions import (
    InvalidTaskError,
    ProjectNotFoundError,
    TaskNotFoundError,
)
from commandcenter.common.records import (
    ACTIVE_TASK_STATUSES,
    ENERGIES,
    PRIORITIES,
    TASK_SOURCES,
    TASK_STATUSES,
    Task,
)
from commandcenter.ranking import (
    DEFAULT_LIMIT,
    DEFAULT_WEIGHTS,
    RankedTask,
    RankingWeights,
    generate_focus_windows,
    rank_tasks,
    summarize_tasks,
)
from commandcenter.server.processor import utcnow
from commandcenter.storage.base import RecordStore

logger = logging.getLogger(__name__)

LISTED_STATUSES = ACTIVE_TASK_STATUSES + ("snoozed",)


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value is not None else None


def task_to_dict(task: Task) -> Dict[str, Any]:
    return {
        "id": task.id,
        "projectId": task.project_id,
        "title": task.title,
        "notes": task.notes,
        "priority": task.priority,
        "status": task.status,
        "due": _iso(task.due),
        "energy": task.energy,
        "tags": task.tags,
        "source": task.source,
        "createdAt": _iso(task.created_at),
        "updatedAt": _iso(task.updated_at),
    }


def ranked_to_dict(item: RankedTask) -> Dict[str, Any]:
    return {**task_to_dict(item.task), "score": item.score, "scoreBreakdown": item.breakdown.to_dict()}


class TaskService:
    """Task mutations, each written to the audit log."""

    def __init__(
        self,
        store: RecordStore,
        audit: Optional[AuditLog] = None,
        actor: str = "user",
        clock: Callable[[], datetime] = utcnow,
    ):
        self.store = store
        self.audit = audit or AuditLog(store)
        self.actor = actor
        self.clock = clock

    def get_task(self, task_id: str) -> Task:
        task = self.store.get_task(task_id)
        if task is None:
            raise TaskNotFoundError(f"Todo {task_id} not found")
        return task

    def create_task(
        self,
        project_id: str,
        title: str,
        notes: Optional[str] = None,
        priority: int = 2,
        status: str = "open",
        due: Optional[datetime] = None,
        energy: int = 2,
        tags: str = "",
        source: str = "manual",
        actor: Optional[str] = None,
    ) -> Task:
        if not title or not title.strip():
            raise InvalidTaskError("Title is required")
        if priority not in PRIORITIES:
            raise InvalidTaskError(f"Priority must be one of {PRIORITIES}")
        if energy not in ENERGIES:
            raise InvalidTaskError(f"Energy must be one of {ENERGIES}")
        if status not in TASK_STATUSES:
            raise InvalidTaskError(f"Status must be one of {TASK_STATUSES}")
        if source not in TASK_SOURCES:
            raise InvalidTaskError(f"Source must be one of {TASK_SOURCES}")
        project = self.store.get_project(project_id)
        if project is None:
            raise ProjectNotFoundError(f"Project {project_id} not found")

        now = self.clock()
        task = self.store.create_task(
            Task(
                project_id=project.id,
                title=title.strip(),
                notes=notes,
                priority=priority,
                status=status,
                due=due,
                energy=energy,
                tags=tags,
                source=source,
                created_at=now,
                updated_at=now,
            )
        )
        self.audit.log(
            actor=actor or self.actor,
            action="todo.create",
            payload={
                "todoId": task.id,
                "title": task.title,
                "project": project.name,
                "priority": task.priority,
                "source": task.source,
            },
        )
        return task

    def list_tasks(
        self,
        status: Optional[str] = None,
        project: Optional[str] = None,
        priority: Optional[int] = None,
    ) -> List[Task]:
        """Open, in-progress, blocked and snoozed tasks unless `status` says otherwise."""
        if status is not None and status not in TASK_STATUSES:
            raise InvalidTaskError(f"Status must be one of {TASK_STATUSES}")
        project_id = None
        if project is not None:
            found = self.store.get_project_by_name(project)
            if found is None:
                return []
            project_id = found.id
        statuses = [status] if status else LISTED_STATUSES
        tasks = self.store.list_tasks(statuses=statuses, project_id=project_id)
        if priority is not None:
            tasks = [task for task in tasks if task.priority == priority]
        tasks.sort(key=lambda t: (t.priority, t.due is None, t.due or t.created_at))
        return tasks

    def complete_task(self, task_id: str) -> Task:
        task = self.get_task(task_id)
        if task.status == "done":
            raise InvalidTaskError("Todo is already completed")
        completed = self.store.update_task(task_id, status="done")
        self.audit.log(
            actor=self.actor,
            action="todo.complete",
            payload={
                "todoId": task_id,
                "title": task.title,
                "previousStatus": task.status,
                "completedAt": self.clock().isoformat(),
            },
        )
        return completed

    def snooze_task(self, task_id: str, until: datetime, reason: Optional[str] = None) -> Task:
        task = self.get_task(task_id)
        if task.status == "done":
            raise InvalidTaskError("Cannot snooze a completed todo")
        if until.tzinfo is None:
            raise InvalidTaskError("Snooze date must include a timezone")
        if until <= self.clock():
            raise InvalidTaskError("Snooze date must be in the future")

        notes = task.notes
        if reason:
            notes = f"{task.notes or ''}\n\n[Snoozed: {reason}]".strip()
        snoozed = self.store.update_task(task_id, status="snoozed", due=until, notes=notes)
        self.audit.log(
            actor=self.actor,
            action="todo.snooze",
            payload={
                "todoId": task_id,
                "title": task.title,
                "snoozedUntil": until.isoformat(),
                "reason": reason,
                "previousStatus": task.status,
            },
        )
        return snoozed

    def wake_snoozed_tasks(self) -> List[Task]:
        """Reopens snoozed tasks whose snooze date has passed."""
        now = self.clock()
        woken = []
        for task in self.store.list_tasks(statuses=["snoozed"]):
            if task.due is not None and task.due <= now:
                woken.append(self.store.update_task(task.id, status="open"))
                self.audit.log(
                    actor="system",
                    action="todo.wake",
                    payload={"todoId": task.id, "title": task.title},
                )
        if woken:
            logger.info(f"Woke {len(woken)} snoozed task(s)")
        return woken

    def top_tasks(
        self,
        local_now: datetime,
        limit: int = DEFAULT_LIMIT,
        weights: RankingWeights = DEFAULT_WEIGHTS,
    ) -> Dict[str, Any]:
        """The ranked view: top tasks, focus windows for today and summary stats."""
        active = self.store.list_tasks(statuses=ACTIVE_TASK_STATUSES)
        ranked = rank_tasks(active, local_now.hour, weights, limit=limit, now=local_now)
        windows = generate_focus_windows(ranked, local_now)
        for window in windows:
            window["tasks"] = [ranked_to_dict(item) for item in window["tasks"]]
        return {
            "top3": [ranked_to_dict(item) for item in ranked],
            "focusWindows": windows,
            "stats": summarize_tasks(active),
            "meta": {
                "currentHour": local_now.hour,
                "weights": weights.to_dict(),
                "generatedAt": local_now.isoformat(),
            },
        }
