import asyncio
import pytest
from datetime import UTC, datetime, timedelta

from sqlalchemy import create_engine
from sqlalchemy.pool import StaticPool

from commandcenter.common.job import Job
from commandcenter.common.records import AuditEntry, KPI, Task, Work
from commandcenter.common.states import (
    CompletedState,
    FailedState,
    PendingState,
    RunningState,
)
from commandcenter.storage.memory_storage import MemoryStore
from commandcenter.storage.sql_storage import SqlStore

NOW = datetime(2024, 1, 1, 12, 0, tzinfo=UTC)


def _make_sql_store() -> SqlStore:
    engine = create_engine(
        "sqlite+pysqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    return SqlStore(engine=engine, create_tables=True)


@pytest.fixture(params=["memory", "sql"])
def store(request):
    if request.param == "memory":
        return MemoryStore()
    return _make_sql_store()


def _job(**overrides) -> Job:
    fields = dict(type="backfill", payload="{}", run_at=NOW, created_at=NOW)
    fields.update(overrides)
    return Job(**fields)


def test_sql_store_requires_url_or_engine():
    with pytest.raises(ValueError):
        SqlStore()


def test_in_memory_sqlite_url_is_shared_across_threads():
    store = SqlStore(connection_url="sqlite://")
    job = _job()
    store.create_job(job)

    found = asyncio.run(asyncio.to_thread(store.get_job, job.id))

    assert found is not None
    assert found.id == job.id


def test_create_and_get_job(store):
    job = _job(payload='{"project": "eden"}', max_retries=5)
    store.create_job(job)

    stored = store.get_job(job.id)
    assert stored is not None
    assert stored.type == "backfill"
    assert stored.payload == '{"project": "eden"}'
    assert stored.status == PendingState.NAME
    assert stored.attempts == 0
    assert stored.max_retries == 5
    assert stored.run_at == NOW
    assert store.get_job("missing") is None


def test_set_job_state_is_conditional(store):
    job = _job()
    store.create_job(job)

    assert store.set_job_state(job.id, RunningState(attempts=1, started_at=NOW), "pending")
    # A second claim from pending loses the race
    assert not store.set_job_state(job.id, RunningState(attempts=1, started_at=NOW), "pending")

    stored = store.get_job(job.id)
    assert stored.status == "running"
    assert stored.attempts == 1
    assert stored.started_at == NOW

    assert store.set_job_state(job.id, FailedState(error="boom"), "running")
    stored = store.get_job(job.id)
    assert stored.status == "failed"
    assert stored.error == "boom"
    assert not store.set_job_state(job.id, PendingState(), "running")
    assert not store.set_job_state("missing", PendingState())


def test_due_jobs_are_pending_and_ordered_by_run_at(store):
    later = _job(run_at=NOW - timedelta(minutes=1))
    earlier = _job(run_at=NOW - timedelta(minutes=5))
    future = _job(run_at=NOW + timedelta(minutes=5))
    running = _job(status="running", run_at=NOW - timedelta(hours=1))
    for job in (later, earlier, future, running):
        store.create_job(job)

    assert store.get_due_job_ids(NOW) == [earlier.id, later.id]
    assert store.get_due_job_ids(NOW, limit=1) == [earlier.id]


def test_list_and_count_jobs(store):
    store.create_job(_job(created_at=NOW - timedelta(minutes=2)))
    store.create_job(_job(type="github.sync", status="completed", created_at=NOW - timedelta(minutes=1)))
    store.create_job(_job(type="github.sync", status="failed", created_at=NOW))

    assert [job.type for job in store.list_jobs()] == ["github.sync", "github.sync", "backfill"]
    assert [job.status for job in store.list_jobs(job_type="github.sync")] == ["failed", "completed"]
    assert len(store.list_jobs(status="pending")) == 1
    assert len(store.list_jobs(start=1, count=1)) == 1

    counts = store.count_jobs_by_status()
    assert counts["pending"] == 1
    assert counts["completed"] == 1
    assert counts["failed"] == 1
    assert counts["running"] == 0

    assert store.count_jobs_by_type_and_status() == [
        ("backfill", "pending", 1),
        ("github.sync", "completed", 1),
        ("github.sync", "failed", 1),
    ]
    assert store.count_jobs("pending", created_before=NOW - timedelta(minutes=1)) == 1
    assert store.count_jobs("failed", created_after=NOW - timedelta(seconds=30)) == 1


def test_delete_completed_jobs_uses_completed_at(store):
    old = _job(status="completed", completed_at=NOW - timedelta(days=8))
    recent = _job(status="completed", completed_at=NOW - timedelta(days=1))
    old_failure = _job(status="failed", created_at=NOW - timedelta(days=30))
    for job in (old, recent, old_failure):
        store.create_job(job)

    assert store.delete_completed_jobs(NOW - timedelta(days=7)) == 1
    assert store.get_job(old.id) is None
    assert store.get_job(recent.id) is not None
    assert store.get_job(old_failure.id) is not None


def test_reset_stale_running_jobs(store):
    stale = _job(status="running", attempts=1, started_at=NOW - timedelta(hours=2))
    fresh = _job(status="running", attempts=1, started_at=NOW - timedelta(minutes=5))
    exhausted = _job(status="running", attempts=3, max_retries=3, started_at=NOW - timedelta(hours=3))
    for job in (stale, fresh, exhausted):
        store.create_job(job)

    later = NOW + timedelta(minutes=1)
    recovered, abandoned = store.reset_stale_running_jobs(NOW - timedelta(hours=1), now=later)

    assert recovered == [stale.id]
    assert abandoned == [exhausted.id]
    assert store.get_job(stale.id).status == "pending"
    assert store.get_job(stale.id).attempts == 1
    assert store.get_job(stale.id).run_at == later
    assert store.get_job(fresh.id).status == "running"
    failed = store.get_job(exhausted.id)
    assert failed.status == "failed"
    assert failed.attempts == 3
    assert failed.error == "Abandoned while running after final attempt"


def test_projects_and_tasks(store):
    project = store.upsert_project("eden", description="Art agent")
    assert store.upsert_project("eden").id == project.id
    assert store.get_project(project.id).description == "Art agent"
    assert store.get_project_by_name("eden").id == project.id
    assert store.get_project_by_name("missing") is None

    store.upsert_project("abraham")
    assert [p.name for p in store.list_projects()] == ["abraham", "eden"]

    task = store.create_task(Task(project_id=project.id, title="Write docs", tags="docs,api"))
    assert store.get_task(task.id).tag_list == ["docs", "api"]

    updated = store.update_task(task.id, status="done")
    assert updated.status == "done"
    assert store.update_task("missing", status="done") is None
    assert store.list_tasks(statuses=["open"]) == []
    assert [t.id for t in store.list_tasks(project_id=project.id)] == [task.id]


def test_ritual_run_streaks(store):
    project = store.upsert_project("command-center")
    ritual = store.upsert_ritual(project.id, "weekly-archive", "0 17 * * 5")
    again = store.upsert_ritual(project.id, "weekly-archive", "30 17 * * 5", enabled=False)
    assert again.id == ritual.id
    assert again.cron == "30 17 * * 5"
    assert not again.enabled

    first = store.record_ritual_run(ritual.id, NOW, success=True)
    second = store.record_ritual_run(ritual.id, NOW + timedelta(days=7), success=True)
    assert (first.streak, second.streak) == (1, 2)

    failed = store.record_ritual_run(ritual.id, NOW + timedelta(days=14), success=False)
    assert failed.streak == 0
    assert failed.last_run == NOW + timedelta(days=14)
    assert store.record_ritual_run("missing", NOW, success=True) is None
    assert [r.id for r in store.list_rituals(project.id)] == [ritual.id]


def test_kpis_and_works(store):
    project = store.upsert_project("command-center")
    store.upsert_kpi(KPI(project_id=project.id, key="github.commits.today", value=2, at=NOW))
    store.upsert_kpi(KPI(project_id=project.id, key="github.commits.today", value=5, at=NOW))
    store.add_kpi(KPI(project_id=project.id, key="ai.sessions.claude", value=1, at=NOW))
    store.add_kpi(KPI(project_id=project.id, key="ai.sessions.claude", value=1, at=NOW))

    today = store.list_kpis(project.id, "github.commits.today")
    assert [kpi.value for kpi in today] == [5]
    assert len(store.list_kpis(project.id, "ai.sessions.claude")) == 2

    store.add_work(Work(project_id=project.id, work_id="w-1", source="manual", created_at=NOW - timedelta(days=40)))
    store.add_work(Work(project_id=project.id, work_id="w-2", source="manual", created_at=NOW, metadata={"a": 1}))
    assert store.count_works(project.id) == 2
    assert store.latest_work(project.id).work_id == "w-2"
    assert store.latest_work(project.id).metadata == {"a": 1}
    assert [w.work_id for w in store.list_works(project.id, since=NOW - timedelta(days=1))] == ["w-2"]


def test_audit_entries_newest_first(store):
    store.add_audit_entry(AuditEntry(actor="user", action="todo.create", created_at=NOW - timedelta(minutes=2)))
    store.add_audit_entry(
        AuditEntry(actor="job-queue", action="job.failed", status="failure", error="boom", created_at=NOW)
    )
    store.add_audit_entry(
        AuditEntry(actor="system", action="ritual.run", payload={"ritualName": "x"}, created_at=NOW - timedelta(minutes=1))
    )

    assert [e.action for e in store.list_audit_entries()] == ["job.failed", "ritual.run", "todo.create"]
    assert [e.action for e in store.list_audit_entries(status="failure")] == ["job.failed"]
    assert [e.action for e in store.list_audit_entries(actions=["todo.create", "ritual.run"])] == [
        "ritual.run",
        "todo.create",
    ]
    assert store.list_audit_entries(action="ritual.run")[0].payload == {"ritualName": "x"}
    assert len(store.list_audit_entries(since=NOW - timedelta(seconds=90))) == 2
    assert [e.action for e in store.list_audit_entries(start=1, count=1)] == ["ritual.run"]
