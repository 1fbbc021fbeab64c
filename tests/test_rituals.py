import asyncio
import pytest
from datetime import UTC, datetime, timedelta
from pathlib import Path

from commandcenter.common.exceptions import (
    ConfigurationError,
    NonRetryableJobError,
    RitualConfigError,
    RitualExecutionError,
    RitualNotFoundError,
)
from commandcenter.common.records import Ritual
from commandcenter.rituals.config import (
    RitualDefinition,
    RitualsConfig,
    SafetyChecks,
    load_config,
    parse_config,
    parse_time,
)
from commandcenter.rituals.schedule import (
    is_due,
    is_time_to_run,
    next_expected_run,
    ritual_health,
    should_run_today,
    to_cron_expression,
)
from commandcenter.rituals.scheduler import RitualScheduler
from commandcenter.server.queue import JobQueue
from commandcenter.storage.memory_storage import MemoryStore

# 2024-01-01 is a Monday.
MONDAY_NINE = datetime(2024, 1, 1, 9, 0, tzinfo=UTC)
REPO_RITUALS = Path(__file__).resolve().parent.parent / "config" / "rituals.yaml"


def ritual(name="morning", command="echo hi", schedule="daily", time="09:00", **kwargs):
    return RitualDefinition(name=name, command=command, schedule=schedule, time=time, **kwargs)


def make_scheduler(store, *rituals, **kwargs):
    kwargs.setdefault("timeout_seconds", 5)
    kwargs.setdefault("clock", lambda: MONDAY_NINE)
    return RitualScheduler(store, config=RitualsConfig(rituals=list(rituals)), timezone="UTC", **kwargs)


@pytest.fixture
def store():
    return MemoryStore()


# --- Schedule matching ---


@pytest.mark.parametrize(
    "schedule, now, expected",
    [
        ("daily", MONDAY_NINE, True),
        ("mondays", MONDAY_NINE, True),
        ("mondays", MONDAY_NINE + timedelta(days=1), False),
        ("weekdays", MONDAY_NINE + timedelta(days=4), True),
        ("weekdays", MONDAY_NINE + timedelta(days=5), False),
        ("weekends", MONDAY_NINE + timedelta(days=5), True),
        ("weekends", MONDAY_NINE + timedelta(days=6), True),
        ("sundays", MONDAY_NINE + timedelta(days=6), True),
        ("Fridays", MONDAY_NINE + timedelta(days=4), True),
        ("fortnightly", MONDAY_NINE, False),
    ],
)
def test_should_run_today(schedule, now, expected):
    assert should_run_today(ritual(schedule=schedule), now) is expected


@pytest.mark.parametrize(
    "time, now, expected",
    [
        ("09:00", datetime(2024, 1, 1, 9, 0, tzinfo=UTC), True),
        ("09:00", datetime(2024, 1, 1, 9, 5, tzinfo=UTC), True),
        ("09:00", datetime(2024, 1, 1, 8, 55, tzinfo=UTC), True),
        ("09:00", datetime(2024, 1, 1, 9, 6, tzinfo=UTC), False),
        ("09:00", datetime(2024, 1, 1, 21, 0, tzinfo=UTC), False),
        ("23:58", datetime(2024, 1, 2, 0, 2, tzinfo=UTC), True),
        ("00:01", datetime(2024, 1, 1, 23, 57, tzinfo=UTC), True),
        ("00:01", datetime(2024, 1, 1, 23, 55, tzinfo=UTC), False),
    ],
)
def test_is_time_to_run(time, now, expected):
    assert is_time_to_run(ritual(time=time), now) is expected


def test_is_due_requires_enabled_day_and_window():
    assert is_due(ritual(schedule="mondays"), MONDAY_NINE)
    assert not is_due(ritual(schedule="mondays", enabled=False), MONDAY_NINE)
    assert not is_due(ritual(schedule="tuesdays"), MONDAY_NINE)
    assert not is_due(ritual(schedule="mondays", time="12:00"), MONDAY_NINE)


@pytest.mark.parametrize(
    "schedule, time, expected",
    [
        ("daily", "07:05", "5 7 * * *"),
        ("weekdays", "08:30", "30 8 * * 1-5"),
        ("weekends", "10:00", "0 10 * * 0,6"),
        ("fridays", "17:00", "0 17 * * 5"),
        ("fortnightly", "17:00", "fortnightly"),
    ],
)
def test_to_cron_expression(schedule, time, expected):
    assert to_cron_expression(ritual(schedule=schedule, time=time)) == expected


def test_next_expected_run():
    assert next_expected_run("0 9 * * *", MONDAY_NINE) == MONDAY_NINE + timedelta(days=1)
    assert next_expected_run("not a cron", MONDAY_NINE) is None


def test_ritual_health():
    now = datetime(2024, 1, 1, 12, 0, tzinfo=UTC)
    row = Ritual(project_id="p", name="daily", cron="0 9 * * *")

    healthy = ritual_health(
        Ritual(project_id="p", name="daily", cron="0 9 * * *", last_run=now - timedelta(hours=2)), now, UTC
    )
    assert healthy["health"] == "healthy"
    assert healthy["hoursSinceLastRun"] == 2.0

    late = ritual_health(
        Ritual(project_id="p", name="daily", cron="0 9 * * *", last_run=now - timedelta(hours=30)), now, UTC
    )
    assert late["health"] == "late"

    assert ritual_health(row, now, UTC)["health"] == "late"
    assert ritual_health(Ritual(project_id="p", name="x", cron="0 9 * * *", enabled=False), now, UTC)[
        "health"
    ] == "disabled"
    assert ritual_health(
        Ritual(project_id="p", name="x", cron="fortnightly", last_run=now), now, UTC
    )["health"] == "unknown"


# --- Config ---


def test_parse_config():
    config = parse_config(
        {
            "rituals": [
                {
                    "name": "weekly-archive",
                    "command": "echo archiving",
                    "schedule": "Fridays",
                    "time": "17:00",
                    "projects": "eden",
                    "safety_checks": {"dry_run_first": True, "unknown_check": True},
                    "post_actions": ["log: done"],
                },
                {"name": "sync", "command": "job:github.sync", "schedule": "daily", "time": "8:30", "enabled": False},
            ],
            "config": {"timezone": "America/New_York"},
        }
    )

    archive = config.get("weekly-archive")
    assert archive.schedule == "fridays"
    assert archive.projects == ["eden"]
    assert archive.safety_checks == SafetyChecks(dry_run_first=True)
    assert archive.post_actions == ["log: done"]
    assert archive.job_type is None

    sync = config.get("sync")
    assert sync.job_type == "github.sync"
    assert sync.hour_minute == (8, 30)
    assert [r.name for r in config.enabled] == ["weekly-archive"]
    assert config.settings == {"timezone": "America/New_York"}
    assert config.get("missing") is None


@pytest.mark.parametrize(
    "data",
    [
        ["not", "a", "mapping"],
        {"rituals": {"name": "x"}},
        {"rituals": [{"name": "x", "command": "echo", "schedule": "daily"}]},
        {"rituals": [{"name": "x", "command": "echo", "schedule": "daily", "time": "25:00"}]},
        {
            "rituals": [
                {"name": "x", "command": "echo", "schedule": "daily", "time": "09:00"},
                {"name": "x", "command": "echo", "schedule": "daily", "time": "10:00"},
            ]
        },
        {"rituals": [], "config": ["bad"]},
    ],
)
def test_parse_config_rejects_invalid_files(data):
    with pytest.raises(RitualConfigError):
        parse_config(data)


def test_parse_time():
    assert parse_time("07:05") == (7, 5)
    with pytest.raises(RitualConfigError):
        parse_time("7pm")


def test_load_config_errors(tmp_path):
    with pytest.raises(RitualConfigError):
        load_config(tmp_path / "missing.yaml")

    broken = tmp_path / "broken.yaml"
    broken.write_text("rituals: [unclosed\n", encoding="utf-8")
    with pytest.raises(RitualConfigError):
        load_config(broken)

    empty = tmp_path / "empty.yaml"
    empty.write_text("", encoding="utf-8")
    assert load_config(empty).rituals == []


def test_load_config_accepts_unquoted_times(tmp_path):
    path = tmp_path / "rituals.yaml"
    path.write_text(
        "rituals:\n"
        "  - name: review\n"
        "    command: echo review\n"
        "    schedule: daily\n"
        "    time: 14:30\n"
        "  - name: standup\n"
        "    command: echo standup\n"
        "    schedule: weekdays\n"
        "    time: 09:15\n",
        encoding="utf-8",
    )

    config = load_config(path)

    assert config.get("review").time == "14:30"
    assert config.get("review").hour_minute == (14, 30)
    assert config.get("standup").hour_minute == (9, 15)


def test_bundled_rituals_file_loads():
    config = load_config(REPO_RITUALS)
    assert config.get("weekly-archive").safety_checks.dry_run_first
    assert config.get("morning-github-sync").job_type == "github.sync"
    assert "timezone" in config.settings


# --- Execution ---


def test_scheduler_needs_a_config(store):
    with pytest.raises(ConfigurationError):
        RitualScheduler(store)


def test_execute_ritual_success_records_run(store):
    definition = ritual(command="echo hi")
    scheduler = make_scheduler(store, definition)

    result = asyncio.run(scheduler.execute_ritual(definition))

    assert result == {"success": True, "output": "hi\n"}
    row = store.list_rituals()[0]
    assert row.name == "morning"
    assert row.streak == 1
    assert row.last_run == MONDAY_NINE
    assert row.cron == "0 9 * * *"
    assert store.get_project(row.project_id).name == "command-center"

    actions = [entry.action for entry in store.list_audit_entries(count=10)]
    assert "ritual.started" in actions
    assert "ritual.completed" in actions
    assert "ritual.run" in actions


def test_execute_ritual_failure_resets_streak(store):
    good = ritual(command="echo ok")
    bad = ritual(command="echo oops >&2; exit 3")
    scheduler = make_scheduler(store, good)
    asyncio.run(scheduler.execute_ritual(good))
    asyncio.run(scheduler.execute_ritual(good))
    assert store.list_rituals()[0].streak == 2

    result = asyncio.run(scheduler.execute_ritual(bad))

    assert result["success"] is False
    assert "exit code 3" in result["error"]
    assert "oops" in result["error"]
    row = store.list_rituals()[0]
    assert row.streak == 0
    assert row.last_run == MONDAY_NINE
    failed = store.list_audit_entries(action="ritual.failed")[0]
    assert failed.status == "failure"


def test_execute_ritual_times_out(store):
    definition = ritual(command="exec sleep 5")
    scheduler = make_scheduler(store, definition, timeout_seconds=0.2)

    result = asyncio.run(scheduler.execute_ritual(definition))

    assert result["success"] is False
    assert "timed out" in result["error"]


def test_dry_run_failure_skips_the_real_run(store, tmp_path):
    marker = tmp_path / "ran"
    definition = ritual(
        command=f'[ -n "$COMMANDCENTER_DRY_RUN" ] && exit 1; touch {marker}',
        safety_checks=SafetyChecks(dry_run_first=True),
    )
    scheduler = make_scheduler(store, definition)

    result = asyncio.run(scheduler.execute_ritual(definition))

    assert result["success"] is False
    assert result["error"].startswith("Dry run failed")
    assert not marker.exists()


def test_ritual_rows_per_project(store):
    definition = ritual(projects=["eden", "abraham"])
    scheduler = make_scheduler(store, definition)

    asyncio.run(scheduler.execute_ritual(definition))

    rows = store.list_rituals()
    assert len(rows) == 2
    assert {store.get_project(r.project_id).name for r in rows} == {"eden", "abraham"}
    assert all(r.streak == 1 for r in rows)


def test_post_actions_run_after_success(store, tmp_path):
    marker = tmp_path / "post"
    definition = ritual(post_actions=[f"trigger: touch {marker}", "log: done", "bogus"])
    scheduler = make_scheduler(store, definition)

    result = asyncio.run(scheduler.execute_ritual(definition))

    assert result["success"] is True
    assert marker.exists()


def test_job_rituals_enqueue_instead_of_running_a_shell(store):
    definition = ritual(command="job:github.sync", projects=["eden"])
    queue = JobQueue(store)
    scheduler = make_scheduler(store, definition, queue=queue)

    async def scenario():
        result = await scheduler.execute_ritual(definition)
        await queue.drain()
        return result

    result = asyncio.run(scenario())

    assert result["success"] is True
    job = store.list_jobs(job_type="github.sync")[0]
    assert queue.serializer.deserialize_payload(job.payload) == {"ritual": "morning", "projects": ["eden"]}


def test_job_ritual_without_queue_fails(store):
    definition = ritual(command="job:github.sync")
    scheduler = make_scheduler(store, definition)

    result = asyncio.run(scheduler.execute_ritual(definition))

    assert result["success"] is False
    assert "no queue" in result["error"]


def test_check_and_run_rituals_only_runs_due_rituals(store):
    scheduler = make_scheduler(
        store,
        ritual(name="monday-review", schedule="mondays", time="09:00"),
        ritual(name="tuesday-review", schedule="tuesdays", time="09:00"),
        ritual(name="disabled", schedule="mondays", time="09:00", enabled=False),
        ritual(name="evening", schedule="daily", time="21:00"),
        ritual(name="broken", schedule="daily", time="09:03", command="exit 1"),
    )

    result = asyncio.run(scheduler.check_and_run_rituals(now=MONDAY_NINE + timedelta(minutes=2)))

    assert result["checked"] == 5
    assert result["executed"] == 1
    assert [(r["ritual"], r["success"]) for r in result["results"]] == [
        ("monday-review", True),
        ("broken", False),
    ]


def test_check_uses_scheduler_timezone(store):
    scheduler = RitualScheduler(
        store,
        config=RitualsConfig(rituals=[ritual(schedule="mondays", time="09:00")]),
        timezone="America/New_York",
        clock=lambda: datetime(2024, 1, 1, 14, 1, tzinfo=UTC),
    )

    assert scheduler.now().hour == 9
    result = asyncio.run(scheduler.check_and_run_rituals())
    assert result["executed"] == 1


def test_run_all_ignores_schedules(store):
    scheduler = make_scheduler(
        store,
        ritual(name="a", schedule="tuesdays", time="03:00"),
        ritual(name="b", schedule="fortnightly", time="22:00"),
        ritual(name="c", enabled=False),
    )

    result = asyncio.run(scheduler.run_all())

    assert result["mode"] == "manual"
    assert result["checked"] == 3
    assert result["executed"] == 2


def test_run_ritual_by_id(store):
    definition = ritual()
    scheduler = make_scheduler(store, definition)
    row = scheduler.sync_rituals()[0]

    result = asyncio.run(scheduler.run_ritual(row.id))

    assert result["success"] is True
    assert store.get_ritual(row.id).streak == 1

    with pytest.raises(RitualNotFoundError):
        asyncio.run(scheduler.run_ritual("missing"))


def test_run_ritual_records_only_the_requested_row(store):
    scheduler = make_scheduler(store, ritual(projects=["eden", "atlas"]))
    eden_row, atlas_row = scheduler.sync_rituals()

    asyncio.run(scheduler.run_ritual(eden_row.id))

    assert store.get_ritual(eden_row.id).streak == 1
    assert store.get_ritual(eden_row.id).last_run == MONDAY_NINE
    assert store.get_ritual(atlas_row.id).streak == 0
    assert store.get_ritual(atlas_row.id).last_run is None


def test_run_ritual_disabled_and_failing(store):
    scheduler = make_scheduler(
        store,
        ritual(name="off", enabled=False),
        ritual(name="broken", command="exit 1"),
    )
    off, broken = scheduler.sync_rituals()

    with pytest.raises(NonRetryableJobError):
        asyncio.run(scheduler.run_ritual(off.id))
    with pytest.raises(RitualExecutionError):
        asyncio.run(scheduler.run_ritual(broken.id))
    assert store.get_ritual(broken.id).streak == 0


def test_run_ritual_without_definition_counts_the_run(store):
    scheduler = make_scheduler(store)
    project = store.upsert_project("eden")
    row = store.upsert_ritual(project.id, "journal", "0 7 * * *")

    result = asyncio.run(scheduler.run_ritual(row.id))

    assert result["success"] is True
    assert result["streak"] == 1
    assert store.get_ritual(row.id).last_run == MONDAY_NINE


def test_monitor_reports_health_and_executions(store):
    definition = ritual()
    scheduler = make_scheduler(store, definition)
    asyncio.run(scheduler.execute_ritual(definition))
    project = store.upsert_project("eden")
    store.upsert_ritual(project.id, "never-ran", "0 7 * * *")

    report = scheduler.monitor()

    by_name = {r["name"]: r for r in report["rituals"]}
    assert by_name["morning"]["health"] == "healthy"
    assert by_name["never-ran"]["health"] == "late"
    assert by_name["never-ran"]["project"] == "eden"
    assert report["stats"]["totalRituals"] == 2
    assert report["stats"]["enabledRituals"] == 2
    assert report["stats"]["healthyRituals"] == 1
    assert report["stats"]["lateRituals"] == 1
    assert report["recentExecutions"][0]["action"] == "ritual.run"
