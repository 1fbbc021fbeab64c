# commandcenter/storage/base.py
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional, Tuple

from commandcenter.common.job import Job
from commandcenter.common.records import AuditEntry, KPI, Project, Ritual, Task, Work
from commandcenter.common.states import BaseState

ABANDONED_ERROR = "Abandoned while running after final attempt"


class RecordStore(ABC):
    """
    The persisted record store. Every component reads and writes through it;
    it is the only shared state. All mutations are single-row operations.
    """

    # --- Jobs ---

    @abstractmethod
    def create_job(self, job: Job) -> str: ...

    @abstractmethod
    def get_job(self, job_id: str) -> Optional[Job]: ...

    @abstractmethod
    def set_job_state(
        self, job_id: str, state: BaseState, expected_old_state: Optional[str] = None
    ) -> bool:
        """Move a job to `state` if its current status equals `expected_old_state`."""

    @abstractmethod
    def list_jobs(
        self,
        status: Optional[str] = None,
        job_type: Optional[str] = None,
        start: int = 0,
        count: int = 50,
    ) -> List[Job]: ...

    @abstractmethod
    def get_due_job_ids(self, now: datetime, limit: int = 100) -> List[str]: ...

    @abstractmethod
    def count_jobs_by_status(self) -> Dict[str, int]: ...

    @abstractmethod
    def count_jobs_by_type_and_status(self) -> List[Tuple[str, str, int]]: ...

    @abstractmethod
    def count_jobs(
        self,
        status: str,
        created_before: Optional[datetime] = None,
        created_after: Optional[datetime] = None,
        started_before: Optional[datetime] = None,
    ) -> int: ...

    @abstractmethod
    def delete_completed_jobs(self, completed_before: datetime) -> int: ...

    @abstractmethod
    def reset_stale_running_jobs(
        self, started_before: datetime, now: datetime, limit: int = 100
    ) -> Tuple[List[str], List[str]]:
        """Returns (reset to pending, failed because no attempts remain)."""

    # --- Projects ---

    @abstractmethod
    def upsert_project(self, name: str, **defaults: Any) -> Project: ...

    @abstractmethod
    def get_project(self, project_id: str) -> Optional[Project]: ...

    @abstractmethod
    def get_project_by_name(self, name: str) -> Optional[Project]: ...

    @abstractmethod
    def list_projects(self) -> List[Project]: ...

    @abstractmethod
    def touch_project(self, project_id: str) -> None: ...

    # --- Tasks ---

    @abstractmethod
    def create_task(self, task: Task) -> Task: ...

    @abstractmethod
    def get_task(self, task_id: str) -> Optional[Task]: ...

    @abstractmethod
    def list_tasks(
        self,
        statuses: Optional[Iterable[str]] = None,
        project_id: Optional[str] = None,
    ) -> List[Task]: ...

    @abstractmethod
    def update_task(self, task_id: str, **fields: Any) -> Optional[Task]: ...

    # --- Rituals ---

    @abstractmethod
    def upsert_ritual(
        self, project_id: str, name: str, cron: str, enabled: bool = True
    ) -> Ritual: ...

    @abstractmethod
    def get_ritual(self, ritual_id: str) -> Optional[Ritual]: ...

    @abstractmethod
    def list_rituals(self, project_id: Optional[str] = None) -> List[Ritual]: ...

    @abstractmethod
    def record_ritual_run(self, ritual_id: str, ran_at: datetime, success: bool) -> Optional[Ritual]:
        """Set last_run; increment streak on success, reset it on failure."""

    # --- KPIs and works ---

    @abstractmethod
    def add_kpi(self, kpi: KPI) -> KPI: ...

    @abstractmethod
    def upsert_kpi(self, kpi: KPI) -> KPI:
        """Replace the value of the (project_id, key) KPI, creating it if missing."""

    @abstractmethod
    def list_kpis(self, project_id: str, key: Optional[str] = None) -> List[KPI]: ...

    @abstractmethod
    def add_work(self, work: Work) -> Work: ...

    @abstractmethod
    def count_works(self, project_id: str) -> int: ...

    @abstractmethod
    def list_works(self, project_id: str, since: Optional[datetime] = None) -> List[Work]: ...

    @abstractmethod
    def latest_work(self, project_id: str) -> Optional[Work]: ...

    # --- Audit log ---

    @abstractmethod
    def add_audit_entry(self, entry: AuditEntry) -> AuditEntry: ...

    @abstractmethod
    def list_audit_entries(
        self,
        action: Optional[str] = None,
        status: Optional[str] = None,
        actions: Optional[Iterable[str]] = None,
        since: Optional[datetime] = None,
        start: int = 0,
        count: int = 20,
    ) -> List[AuditEntry]: ...
