# commandcenter/storage/memory_storage.py
from collections import Counter
from dataclasses import replace
from datetime import datetime, UTC
from threading import RLock
from typing import Any, Dict, Iterable, List, Optional, Tuple

from commandcenter.common.job import Job
from commandcenter.common.records import AuditEntry, KPI, Project, Ritual, Task, Work
from commandcenter.common.states import (
    ALL_STATES,
    BaseState,
    CompletedState,
    FailedState,
    PendingState,
    RunningState,
)
from commandcenter.storage.base import ABANDONED_ERROR, RecordStore


class MemoryStore(RecordStore):
    """Dict-backed store. Returns copies so callers never share rows."""

    def __init__(self):
        self._jobs: Dict[str, Job] = {}
        self._projects: Dict[str, Project] = {}
        self._tasks: Dict[str, Task] = {}
        self._rituals: Dict[str, Ritual] = {}
        self._kpis: List[KPI] = []
        self._works: List[Work] = []
        self._audit: List[AuditEntry] = []
        self._lock = RLock()

    # --- Jobs ---

    def create_job(self, job: Job) -> str:
        with self._lock:
            self._jobs[job.id] = replace(job)
        return job.id

    def get_job(self, job_id: str) -> Optional[Job]:
        with self._lock:
            job = self._jobs.get(job_id)
            return replace(job) if job else None

    def set_job_state(
        self, job_id: str, state: BaseState, expected_old_state: Optional[str] = None
    ) -> bool:
        with self._lock:
            job = self._jobs.get(job_id)
            if job is None:
                return False
            if expected_old_state and job.status != expected_old_state:
                return False

            job.status = state.name
            for field_name, value in state.serialize_data().items():
                setattr(job, field_name, value)
            return True

    def list_jobs(
        self,
        status: Optional[str] = None,
        job_type: Optional[str] = None,
        start: int = 0,
        count: int = 50,
    ) -> List[Job]:
        with self._lock:
            jobs = [
                job
                for job in self._jobs.values()
                if (status is None or job.status == status)
                and (job_type is None or job.type == job_type)
            ]
            jobs.sort(key=lambda job: job.created_at, reverse=True)
            return [replace(job) for job in jobs[start : start + count]]

    def get_due_job_ids(self, now: datetime, limit: int = 100) -> List[str]:
        with self._lock:
            due = [
                job
                for job in self._jobs.values()
                if job.status == PendingState.NAME and job.run_at <= now
            ]
            due.sort(key=lambda job: job.run_at)
            return [job.id for job in due[:limit]]

    def count_jobs_by_status(self) -> Dict[str, int]:
        with self._lock:
            counts = {state: 0 for state in ALL_STATES}
            for job in self._jobs.values():
                counts[job.status] = counts.get(job.status, 0) + 1
            return counts

    def count_jobs_by_type_and_status(self) -> List[Tuple[str, str, int]]:
        with self._lock:
            counter = Counter((job.type, job.status) for job in self._jobs.values())
            return [(job_type, status, count) for (job_type, status), count in sorted(counter.items())]

    def count_jobs(
        self,
        status: str,
        created_before: Optional[datetime] = None,
        created_after: Optional[datetime] = None,
        started_before: Optional[datetime] = None,
    ) -> int:
        with self._lock:
            total = 0
            for job in self._jobs.values():
                if job.status != status:
                    continue
                if created_before is not None and not job.created_at < created_before:
                    continue
                if created_after is not None and not job.created_at >= created_after:
                    continue
                if started_before is not None and (
                    job.started_at is None or not job.started_at < started_before
                ):
                    continue
                total += 1
            return total

    def delete_completed_jobs(self, completed_before: datetime) -> int:
        with self._lock:
            doomed = [
                job.id
                for job in self._jobs.values()
                if job.status == CompletedState.NAME
                and job.completed_at is not None
                and job.completed_at < completed_before
            ]
            for job_id in doomed:
                del self._jobs[job_id]
            return len(doomed)

    def reset_stale_running_jobs(
        self, started_before: datetime, now: datetime, limit: int = 100
    ) -> Tuple[List[str], List[str]]:
        with self._lock:
            stale = [
                job
                for job in self._jobs.values()
                if job.status == RunningState.NAME
                and job.started_at is not None
                and job.started_at <= started_before
            ]
            stale.sort(key=lambda job: job.started_at)
            recovered, abandoned = [], []
            for job in stale[:limit]:
                if job.attempts >= job.max_retries:
                    job.status = FailedState.NAME
                    job.error = ABANDONED_ERROR
                    abandoned.append(job.id)
                else:
                    job.status = PendingState.NAME
                    job.run_at = now
                    recovered.append(job.id)
            return recovered, abandoned

    # --- Projects ---

    def upsert_project(self, name: str, **defaults: Any) -> Project:
        with self._lock:
            for project in self._projects.values():
                if project.name == name:
                    return replace(project)
            project = Project(name=name, **defaults)
            self._projects[project.id] = project
            return replace(project)

    def get_project(self, project_id: str) -> Optional[Project]:
        with self._lock:
            project = self._projects.get(project_id)
            return replace(project) if project else None

    def get_project_by_name(self, name: str) -> Optional[Project]:
        with self._lock:
            for project in self._projects.values():
                if project.name == name:
                    return replace(project)
            return None

    def list_projects(self) -> List[Project]:
        with self._lock:
            return sorted((replace(p) for p in self._projects.values()), key=lambda p: p.name)

    def touch_project(self, project_id: str) -> None:
        with self._lock:
            if project_id in self._projects:
                self._projects[project_id].updated_at = datetime.now(UTC)

    # --- Tasks ---

    def create_task(self, task: Task) -> Task:
        with self._lock:
            self._tasks[task.id] = replace(task)
            return replace(task)

    def get_task(self, task_id: str) -> Optional[Task]:
        with self._lock:
            task = self._tasks.get(task_id)
            return replace(task) if task else None

    def list_tasks(
        self,
        statuses: Optional[Iterable[str]] = None,
        project_id: Optional[str] = None,
    ) -> List[Task]:
        wanted = set(statuses) if statuses is not None else None
        with self._lock:
            tasks = [
                replace(task)
                for task in self._tasks.values()
                if (wanted is None or task.status in wanted)
                and (project_id is None or task.project_id == project_id)
            ]
            tasks.sort(key=lambda task: task.created_at)
            return tasks

    def update_task(self, task_id: str, **fields: Any) -> Optional[Task]:
        with self._lock:
            task = self._tasks.get(task_id)
            if task is None:
                return None
            for field_name, value in fields.items():
                setattr(task, field_name, value)
            task.updated_at = datetime.now(UTC)
            return replace(task)

    # --- Rituals ---

    def upsert_ritual(
        self, project_id: str, name: str, cron: str, enabled: bool = True
    ) -> Ritual:
        with self._lock:
            for ritual in self._rituals.values():
                if ritual.project_id == project_id and ritual.name == name:
                    ritual.cron = cron
                    ritual.enabled = enabled
                    ritual.updated_at = datetime.now(UTC)
                    return replace(ritual)
            ritual = Ritual(project_id=project_id, name=name, cron=cron, enabled=enabled)
            self._rituals[ritual.id] = ritual
            return replace(ritual)

    def get_ritual(self, ritual_id: str) -> Optional[Ritual]:
        with self._lock:
            ritual = self._rituals.get(ritual_id)
            return replace(ritual) if ritual else None

    def list_rituals(self, project_id: Optional[str] = None) -> List[Ritual]:
        with self._lock:
            rituals = [
                replace(ritual)
                for ritual in self._rituals.values()
                if project_id is None or ritual.project_id == project_id
            ]
            rituals.sort(key=lambda r: (not r.enabled, -r.streak, r.name))
            return rituals

    def record_ritual_run(self, ritual_id: str, ran_at: datetime, success: bool) -> Optional[Ritual]:
        with self._lock:
            ritual = self._rituals.get(ritual_id)
            if ritual is None:
                return None
            ritual.last_run = ran_at
            ritual.streak = ritual.streak + 1 if success else 0
            ritual.updated_at = datetime.now(UTC)
            return replace(ritual)

    # --- KPIs and works ---

    def add_kpi(self, kpi: KPI) -> KPI:
        with self._lock:
            self._kpis.append(replace(kpi))
            return replace(kpi)

    def upsert_kpi(self, kpi: KPI) -> KPI:
        with self._lock:
            for existing in reversed(self._kpis):
                if existing.project_id == kpi.project_id and existing.key == kpi.key:
                    existing.value = kpi.value
                    existing.at = kpi.at
                    if kpi.source is not None:
                        existing.source = kpi.source
                    return replace(existing)
            self._kpis.append(replace(kpi))
            return replace(kpi)

    def list_kpis(self, project_id: str, key: Optional[str] = None) -> List[KPI]:
        with self._lock:
            return [
                replace(kpi)
                for kpi in self._kpis
                if kpi.project_id == project_id and (key is None or kpi.key == key)
            ]

    def add_work(self, work: Work) -> Work:
        with self._lock:
            self._works.append(replace(work))
            return replace(work)

    def count_works(self, project_id: str) -> int:
        with self._lock:
            return sum(1 for work in self._works if work.project_id == project_id)

    def list_works(self, project_id: str, since: Optional[datetime] = None) -> List[Work]:
        with self._lock:
            works = [
                replace(work)
                for work in self._works
                if work.project_id == project_id and (since is None or work.created_at >= since)
            ]
            works.sort(key=lambda work: work.created_at, reverse=True)
            return works

    def latest_work(self, project_id: str) -> Optional[Work]:
        works = self.list_works(project_id)
        return works[0] if works else None

    # --- Audit log ---

    def add_audit_entry(self, entry: AuditEntry) -> AuditEntry:
        with self._lock:
            self._audit.append(replace(entry))
            return replace(entry)

    def list_audit_entries(
        self,
        action: Optional[str] = None,
        status: Optional[str] = None,
        actions: Optional[Iterable[str]] = None,
        since: Optional[datetime] = None,
        start: int = 0,
        count: int = 20,
    ) -> List[AuditEntry]:
        wanted = set(actions) if actions is not None else None
        with self._lock:
            # Reversed insertion order keeps same-timestamp entries newest first.
            entries = [
                replace(entry)
                for entry in reversed(self._audit)
                if (action is None or entry.action == action)
                and (status is None or entry.status == status)
                and (wanted is None or entry.action in wanted)
                and (since is None or entry.created_at >= since)
            ]
            entries.sort(key=lambda entry: entry.created_at, reverse=True)
            return entries[start : start + count]
