# commandcenter/storage/sql_storage.py
from __future__ import annotations

import json
import logging
from datetime import UTC, datetime
from typing import Any, Dict, Iterable, List, Optional, Tuple

from sqlalchemy import (
    Boolean,
    DateTime,
    Engine,
    Float,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
    create_engine,
    delete,
    func,
    select,
    update,
)
from sqlalchemy.engine import make_url
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, sessionmaker
from sqlalchemy.pool import StaticPool

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

logger = logging.getLogger(__name__)


def _aware(value: Optional[datetime]) -> Optional[datetime]:
    # SQLite hands back naive datetimes even for timezone=True columns.
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value


def _create_engine(connection_url: str) -> Engine:
    url = make_url(connection_url)
    if url.get_backend_name() == "sqlite" and url.database in (None, "", ":memory:"):
        # Store calls run in worker threads; one shared connection keeps a single database.
        return create_engine(
            url, connect_args={"check_same_thread": False}, poolclass=StaticPool
        )
    return create_engine(url)


class Base(DeclarativeBase):
    pass


class ProjectModel(Base):
    __tablename__ = "projects"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    name: Mapped[str] = mapped_column(String(255), unique=True, index=True)
    description: Mapped[Optional[str]] = mapped_column(Text)
    type: Mapped[Optional[str]] = mapped_column(String(50))
    status: Mapped[str] = mapped_column(String(50), default="active")
    color: Mapped[Optional[str]] = mapped_column(String(20))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))


class TaskModel(Base):
    __tablename__ = "tasks"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    project_id: Mapped[str] = mapped_column(ForeignKey("projects.id"), index=True)
    title: Mapped[str] = mapped_column(String(500))
    notes: Mapped[Optional[str]] = mapped_column(Text)
    priority: Mapped[int] = mapped_column(Integer, default=2)
    status: Mapped[str] = mapped_column(String(20), index=True, default="open")
    due: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    energy: Mapped[int] = mapped_column(Integer, default=2)
    tags: Mapped[str] = mapped_column(Text, default="")
    source: Mapped[str] = mapped_column(String(50), default="manual")
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), index=True)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))


class RitualModel(Base):
    __tablename__ = "rituals"
    __table_args__ = (UniqueConstraint("project_id", "name"),)

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    project_id: Mapped[str] = mapped_column(ForeignKey("projects.id"), index=True)
    name: Mapped[str] = mapped_column(String(255))
    cron: Mapped[str] = mapped_column(String(120))
    streak: Mapped[int] = mapped_column(Integer, default=0)
    last_run: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    enabled: Mapped[bool] = mapped_column(Boolean, default=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))


class JobModel(Base):
    __tablename__ = "jobs"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    type: Mapped[str] = mapped_column(String(100), index=True)
    payload: Mapped[str] = mapped_column(Text)
    status: Mapped[str] = mapped_column(String(20), index=True)
    attempts: Mapped[int] = mapped_column(Integer, default=0)
    max_retries: Mapped[int] = mapped_column(Integer, default=3)
    run_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), index=True)
    started_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    error: Mapped[Optional[str]] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), index=True)


class KPIModel(Base):
    __tablename__ = "kpis"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    project_id: Mapped[str] = mapped_column(ForeignKey("projects.id"), index=True)
    key: Mapped[str] = mapped_column(String(255), index=True)
    value: Mapped[float] = mapped_column(Float)
    at: Mapped[datetime] = mapped_column(DateTime(timezone=True))
    source: Mapped[Optional[str]] = mapped_column(String(100))


class WorkModel(Base):
    __tablename__ = "works"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    project_id: Mapped[str] = mapped_column(ForeignKey("projects.id"), index=True)
    work_id: Mapped[str] = mapped_column(String(255))
    source: Mapped[str] = mapped_column(String(100))
    content_hash: Mapped[Optional[str]] = mapped_column(String(128))
    meta: Mapped[str] = mapped_column("metadata", Text, default="{}")
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), index=True)


class AuditLogModel(Base):
    __tablename__ = "audit_logs"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    actor: Mapped[str] = mapped_column(String(100))
    action: Mapped[str] = mapped_column(String(100), index=True)
    payload: Mapped[str] = mapped_column(Text, default="{}")
    status: Mapped[str] = mapped_column(String(20), index=True)
    error: Mapped[Optional[str]] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), index=True)


class SqlStore(RecordStore):
    def __init__(
        self,
        connection_url: Optional[str] = None,
        engine: Optional[Engine] = None,
        create_tables: bool = True,
    ) -> None:
        if engine is None and connection_url is None:
            raise ValueError("connection_url or engine is required")
        self.engine = engine or _create_engine(connection_url)
        self._session_factory = sessionmaker(bind=self.engine, expire_on_commit=False)
        if create_tables:
            Base.metadata.create_all(self.engine)

    def _dump(self, data: Any) -> str:
        if data is None:
            return "{}"
        if isinstance(data, str):
            return data
        return json.dumps(data, default=str)

    def _load(self, payload: Any) -> Dict[str, Any]:
        if not payload:
            return {}
        if isinstance(payload, dict):
            return payload
        try:
            return json.loads(payload)
        except (TypeError, json.JSONDecodeError):
            return {}

    # --- Row conversion ---

    def _job_from_model(self, model: JobModel) -> Job:
        return Job(
            id=model.id,
            type=model.type,
            payload=model.payload,
            status=model.status,
            attempts=model.attempts,
            max_retries=model.max_retries,
            run_at=_aware(model.run_at),
            started_at=_aware(model.started_at),
            completed_at=_aware(model.completed_at),
            error=model.error,
            created_at=_aware(model.created_at),
        )

    def _project_from_model(self, model: ProjectModel) -> Project:
        return Project(
            id=model.id,
            name=model.name,
            description=model.description,
            type=model.type,
            status=model.status,
            color=model.color,
            created_at=_aware(model.created_at),
            updated_at=_aware(model.updated_at),
        )

    def _task_from_model(self, model: TaskModel) -> Task:
        return Task(
            id=model.id,
            project_id=model.project_id,
            title=model.title,
            notes=model.notes,
            priority=model.priority,
            status=model.status,
            due=_aware(model.due),
            energy=model.energy,
            tags=model.tags or "",
            source=model.source,
            created_at=_aware(model.created_at),
            updated_at=_aware(model.updated_at),
        )

    def _ritual_from_model(self, model: RitualModel) -> Ritual:
        return Ritual(
            id=model.id,
            project_id=model.project_id,
            name=model.name,
            cron=model.cron,
            streak=model.streak,
            last_run=_aware(model.last_run),
            enabled=model.enabled,
            created_at=_aware(model.created_at),
            updated_at=_aware(model.updated_at),
        )

    def _kpi_from_model(self, model: KPIModel) -> KPI:
        return KPI(
            id=model.id,
            project_id=model.project_id,
            key=model.key,
            value=model.value,
            at=_aware(model.at),
            source=model.source,
        )

    def _work_from_model(self, model: WorkModel) -> Work:
        return Work(
            id=model.id,
            project_id=model.project_id,
            work_id=model.work_id,
            source=model.source,
            content_hash=model.content_hash,
            metadata=self._load(model.meta),
            created_at=_aware(model.created_at),
        )

    def _audit_from_model(self, model: AuditLogModel) -> AuditEntry:
        return AuditEntry(
            id=model.id,
            actor=model.actor,
            action=model.action,
            payload=self._load(model.payload),
            status=model.status,
            error=model.error,
            created_at=_aware(model.created_at),
        )

    # --- Jobs ---

    def create_job(self, job: Job) -> str:
        with self._session_factory.begin() as session:
            session.add(
                JobModel(
                    id=job.id,
                    type=job.type,
                    payload=job.payload,
                    status=job.status,
                    attempts=job.attempts,
                    max_retries=job.max_retries,
                    run_at=job.run_at,
                    started_at=job.started_at,
                    completed_at=job.completed_at,
                    error=job.error,
                    created_at=job.created_at,
                )
            )
        return job.id

    def get_job(self, job_id: str) -> Optional[Job]:
        with self._session_factory() as session:
            model = session.get(JobModel, job_id)
            return self._job_from_model(model) if model else None

    def set_job_state(
        self, job_id: str, state: BaseState, expected_old_state: Optional[str] = None
    ) -> bool:
        statement = update(JobModel).where(JobModel.id == job_id)
        if expected_old_state:
            statement = statement.where(JobModel.status == expected_old_state)
        values = {"status": state.name, **state.serialize_data()}
        with self._session_factory.begin() as session:
            result = session.execute(statement.values(values))
            return result.rowcount == 1

    def list_jobs(
        self,
        status: Optional[str] = None,
        job_type: Optional[str] = None,
        start: int = 0,
        count: int = 50,
    ) -> List[Job]:
        query = select(JobModel)
        if status:
            query = query.where(JobModel.status == status)
        if job_type:
            query = query.where(JobModel.type == job_type)
        query = query.order_by(JobModel.created_at.desc()).offset(start).limit(count)
        with self._session_factory() as session:
            rows = session.execute(query).scalars().all()
            return [self._job_from_model(row) for row in rows]

    def get_due_job_ids(self, now: datetime, limit: int = 100) -> List[str]:
        with self._session_factory() as session:
            rows = session.execute(
                select(JobModel.id)
                .where(JobModel.status == PendingState.NAME, JobModel.run_at <= now)
                .order_by(JobModel.run_at)
                .limit(limit)
            ).scalars()
            return list(rows)

    def count_jobs_by_status(self) -> Dict[str, int]:
        with self._session_factory() as session:
            rows = session.execute(
                select(JobModel.status, func.count(JobModel.id)).group_by(JobModel.status)
            ).all()
            counts = {state: 0 for state in ALL_STATES}
            for status, count in rows:
                counts[status] = int(count)
            return counts

    def count_jobs_by_type_and_status(self) -> List[Tuple[str, str, int]]:
        with self._session_factory() as session:
            rows = session.execute(
                select(JobModel.type, JobModel.status, func.count(JobModel.id))
                .group_by(JobModel.type, JobModel.status)
                .order_by(JobModel.type, JobModel.status)
            ).all()
            return [(job_type, status, int(count)) for job_type, status, count in rows]

    def count_jobs(
        self,
        status: str,
        created_before: Optional[datetime] = None,
        created_after: Optional[datetime] = None,
        started_before: Optional[datetime] = None,
    ) -> int:
        query = select(func.count(JobModel.id)).where(JobModel.status == status)
        if created_before is not None:
            query = query.where(JobModel.created_at < created_before)
        if created_after is not None:
            query = query.where(JobModel.created_at >= created_after)
        if started_before is not None:
            query = query.where(
                JobModel.started_at.is_not(None), JobModel.started_at < started_before
            )
        with self._session_factory() as session:
            return int(session.execute(query).scalar_one() or 0)

    def delete_completed_jobs(self, completed_before: datetime) -> int:
        with self._session_factory.begin() as session:
            result = session.execute(
                delete(JobModel).where(
                    JobModel.status == CompletedState.NAME,
                    JobModel.completed_at.is_not(None),
                    JobModel.completed_at < completed_before,
                )
            )
            return int(result.rowcount or 0)

    def reset_stale_running_jobs(
        self, started_before: datetime, now: datetime, limit: int = 100
    ) -> Tuple[List[str], List[str]]:
        recovered: List[str] = []
        abandoned: List[str] = []
        with self._session_factory.begin() as session:
            rows = (
                session.execute(
                    select(JobModel)
                    .where(
                        JobModel.status == RunningState.NAME,
                        JobModel.started_at.is_not(None),
                        JobModel.started_at <= started_before,
                    )
                    .order_by(JobModel.started_at)
                    .limit(limit)
                )
                .scalars()
                .all()
            )
            for job in rows:
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
        with self._session_factory.begin() as session:
            model = session.execute(
                select(ProjectModel).where(ProjectModel.name == name)
            ).scalar_one_or_none()
            if model is None:
                project = Project(name=name, **defaults)
                model = ProjectModel(
                    id=project.id,
                    name=project.name,
                    description=project.description,
                    type=project.type,
                    status=project.status,
                    color=project.color,
                    created_at=project.created_at,
                    updated_at=project.updated_at,
                )
                session.add(model)
            return self._project_from_model(model)

    def get_project(self, project_id: str) -> Optional[Project]:
        with self._session_factory() as session:
            model = session.get(ProjectModel, project_id)
            return self._project_from_model(model) if model else None

    def get_project_by_name(self, name: str) -> Optional[Project]:
        with self._session_factory() as session:
            model = session.execute(
                select(ProjectModel).where(ProjectModel.name == name)
            ).scalar_one_or_none()
            return self._project_from_model(model) if model else None

    def list_projects(self) -> List[Project]:
        with self._session_factory() as session:
            rows = session.execute(select(ProjectModel).order_by(ProjectModel.name)).scalars().all()
            return [self._project_from_model(row) for row in rows]

    def touch_project(self, project_id: str) -> None:
        with self._session_factory.begin() as session:
            session.execute(
                update(ProjectModel)
                .where(ProjectModel.id == project_id)
                .values(updated_at=datetime.now(UTC))
            )

    # --- Tasks ---

    def create_task(self, task: Task) -> Task:
        with self._session_factory.begin() as session:
            session.add(
                TaskModel(
                    id=task.id,
                    project_id=task.project_id,
                    title=task.title,
                    notes=task.notes,
                    priority=task.priority,
                    status=task.status,
                    due=task.due,
                    energy=task.energy,
                    tags=task.tags,
                    source=task.source,
                    created_at=task.created_at,
                    updated_at=task.updated_at,
                )
            )
        return task

    def get_task(self, task_id: str) -> Optional[Task]:
        with self._session_factory() as session:
            model = session.get(TaskModel, task_id)
            return self._task_from_model(model) if model else None

    def list_tasks(
        self,
        statuses: Optional[Iterable[str]] = None,
        project_id: Optional[str] = None,
    ) -> List[Task]:
        query = select(TaskModel)
        if statuses is not None:
            query = query.where(TaskModel.status.in_(list(statuses)))
        if project_id is not None:
            query = query.where(TaskModel.project_id == project_id)
        with self._session_factory() as session:
            rows = session.execute(query.order_by(TaskModel.created_at)).scalars().all()
            return [self._task_from_model(row) for row in rows]

    def update_task(self, task_id: str, **fields: Any) -> Optional[Task]:
        with self._session_factory.begin() as session:
            model = session.get(TaskModel, task_id)
            if model is None:
                return None
            for field_name, value in fields.items():
                setattr(model, field_name, value)
            model.updated_at = datetime.now(UTC)
            return self._task_from_model(model)

    # --- Rituals ---

    def upsert_ritual(
        self, project_id: str, name: str, cron: str, enabled: bool = True
    ) -> Ritual:
        now = datetime.now(UTC)
        with self._session_factory.begin() as session:
            model = session.execute(
                select(RitualModel).where(
                    RitualModel.project_id == project_id, RitualModel.name == name
                )
            ).scalar_one_or_none()
            if model:
                model.cron = cron
                model.enabled = enabled
                model.updated_at = now
            else:
                ritual = Ritual(project_id=project_id, name=name, cron=cron, enabled=enabled)
                model = RitualModel(
                    id=ritual.id,
                    project_id=project_id,
                    name=name,
                    cron=cron,
                    streak=0,
                    last_run=None,
                    enabled=enabled,
                    created_at=now,
                    updated_at=now,
                )
                session.add(model)
            return self._ritual_from_model(model)

    def get_ritual(self, ritual_id: str) -> Optional[Ritual]:
        with self._session_factory() as session:
            model = session.get(RitualModel, ritual_id)
            return self._ritual_from_model(model) if model else None

    def list_rituals(self, project_id: Optional[str] = None) -> List[Ritual]:
        query = select(RitualModel)
        if project_id is not None:
            query = query.where(RitualModel.project_id == project_id)
        query = query.order_by(
            RitualModel.enabled.desc(), RitualModel.streak.desc(), RitualModel.name
        )
        with self._session_factory() as session:
            rows = session.execute(query).scalars().all()
            return [self._ritual_from_model(row) for row in rows]

    def record_ritual_run(self, ritual_id: str, ran_at: datetime, success: bool) -> Optional[Ritual]:
        streak = RitualModel.streak + 1 if success else 0
        with self._session_factory.begin() as session:
            result = session.execute(
                update(RitualModel)
                .where(RitualModel.id == ritual_id)
                .values(last_run=ran_at, streak=streak, updated_at=datetime.now(UTC))
            )
            if result.rowcount != 1:
                return None
        return self.get_ritual(ritual_id)

    # --- KPIs and works ---

    def add_kpi(self, kpi: KPI) -> KPI:
        with self._session_factory.begin() as session:
            session.add(
                KPIModel(
                    id=kpi.id,
                    project_id=kpi.project_id,
                    key=kpi.key,
                    value=kpi.value,
                    at=kpi.at,
                    source=kpi.source,
                )
            )
        return kpi

    def upsert_kpi(self, kpi: KPI) -> KPI:
        with self._session_factory.begin() as session:
            model = session.execute(
                select(KPIModel)
                .where(KPIModel.project_id == kpi.project_id, KPIModel.key == kpi.key)
                .order_by(KPIModel.at.desc())
                .limit(1)
            ).scalar_one_or_none()
            if model is None:
                model = KPIModel(
                    id=kpi.id,
                    project_id=kpi.project_id,
                    key=kpi.key,
                    value=kpi.value,
                    at=kpi.at,
                    source=kpi.source,
                )
                session.add(model)
            else:
                model.value = kpi.value
                model.at = kpi.at
                if kpi.source is not None:
                    model.source = kpi.source
            return self._kpi_from_model(model)

    def list_kpis(self, project_id: str, key: Optional[str] = None) -> List[KPI]:
        query = select(KPIModel).where(KPIModel.project_id == project_id)
        if key is not None:
            query = query.where(KPIModel.key == key)
        with self._session_factory() as session:
            rows = session.execute(query.order_by(KPIModel.at)).scalars().all()
            return [self._kpi_from_model(row) for row in rows]

    def add_work(self, work: Work) -> Work:
        with self._session_factory.begin() as session:
            session.add(
                WorkModel(
                    id=work.id,
                    project_id=work.project_id,
                    work_id=work.work_id,
                    source=work.source,
                    content_hash=work.content_hash,
                    meta=self._dump(work.metadata),
                    created_at=work.created_at,
                )
            )
        return work

    def count_works(self, project_id: str) -> int:
        with self._session_factory() as session:
            result = session.execute(
                select(func.count(WorkModel.id)).where(WorkModel.project_id == project_id)
            ).scalar_one()
            return int(result or 0)

    def list_works(self, project_id: str, since: Optional[datetime] = None) -> List[Work]:
        query = select(WorkModel).where(WorkModel.project_id == project_id)
        if since is not None:
            query = query.where(WorkModel.created_at >= since)
        with self._session_factory() as session:
            rows = session.execute(query.order_by(WorkModel.created_at.desc())).scalars().all()
            return [self._work_from_model(row) for row in rows]

    def latest_work(self, project_id: str) -> Optional[Work]:
        with self._session_factory() as session:
            model = session.execute(
                select(WorkModel)
                .where(WorkModel.project_id == project_id)
                .order_by(WorkModel.created_at.desc())
                .limit(1)
            ).scalar_one_or_none()
            return self._work_from_model(model) if model else None

    # --- Audit log ---

    def add_audit_entry(self, entry: AuditEntry) -> AuditEntry:
        with self._session_factory.begin() as session:
            session.add(
                AuditLogModel(
                    id=entry.id,
                    actor=entry.actor,
                    action=entry.action,
                    payload=self._dump(entry.payload),
                    status=entry.status,
                    error=entry.error,
                    created_at=entry.created_at,
                )
            )
        return entry

    def list_audit_entries(
        self,
        action: Optional[str] = None,
        status: Optional[str] = None,
        actions: Optional[Iterable[str]] = None,
        since: Optional[datetime] = None,
        start: int = 0,
        count: int = 20,
    ) -> List[AuditEntry]:
        query = select(AuditLogModel)
        if action is not None:
            query = query.where(AuditLogModel.action == action)
        if status is not None:
            query = query.where(AuditLogModel.status == status)
        if actions is not None:
            query = query.where(AuditLogModel.action.in_(list(actions)))
        if since is not None:
            query = query.where(AuditLogModel.created_at >= since)
        query = query.order_by(AuditLogModel.created_at.desc()).offset(start).limit(count)
        with self._session_factory() as session:
            rows = session.execute(query).scalars().all()
            return [self._audit_from_model(row) for row in rows]
