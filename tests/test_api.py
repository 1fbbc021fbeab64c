import pytest
from datetime import UTC, datetime, timedelta

from fastapi import FastAPI
from fastapi.testclient import TestClient as FastAPITestClient
from litestar import Litestar
from litestar.testing import TestClient

from commandcenter.client import CommandCenter
from commandcenter.config import Settings
from commandcenter.dashboard.app import create_app
from commandcenter.integrations.fastapi import CommandCenterFastAPIPlugin
from commandcenter.integrations.litestar import configure_command_center, get_command_center
from commandcenter.rituals.config import RitualDefinition, RitualsConfig
from commandcenter.storage.memory_storage import MemoryStore


@pytest.fixture
def store():
    return MemoryStore()


@pytest.fixture
def center(store):
    config = RitualsConfig(
        rituals=[
            RitualDefinition(name="journal", command="echo journal", schedule="daily", time="07:00"),
            RitualDefinition(name="retired", command="echo old", schedule="daily", time="07:00", enabled=False),
        ]
    )
    center = CommandCenter(store, settings=Settings(timezone="UTC"), rituals_config=config)
    center.scheduler.sync_rituals()
    return center


@pytest.fixture
def client(center):
    with TestClient(app=create_app(center)) as client:
        yield client


def _ritual_id(center, name):
    return next(r.id for r in center.store.list_rituals() if r.name == name)


def test_health(client):
    response = client.get("/health")
    assert response.status_code == 200
    body = response.json()
    assert body["success"] is True
    assert body["data"]["status"] == "ok"
    assert body["data"]["queue"]["totalJobs"] == 0


def test_enqueue_and_read_job(client):
    response = client.post("/jobs", json={"type": "manifest.recompute", "payload": {"project": "eden"}})
    assert response.status_code == 201
    job_id = response.json()["data"]["jobId"]

    response = client.get(f"/jobs/{job_id}")
    assert response.status_code == 200
    assert response.json()["data"]["type"] == "manifest.recompute"

    listed = client.get("/jobs", params={"type": "manifest.recompute"}).json()["data"]
    assert [job["id"] for job in listed] == [job_id]
    assert client.get("/jobs/stats").json()["data"]["totalJobs"] == 1


@pytest.mark.parametrize(
    "body",
    [
        {},
        {"type": ""},
        {"type": "backfill", "payload": ["x"]},
        {"type": "backfill", "maxRetries": 0},
        {"type": "backfill", "runAt": "tomorrow"},
    ],
)
def test_enqueue_validation_errors(client, body):
    response = client.post("/jobs", json=body)
    assert response.status_code == 400
    assert response.json()["success"] is False


def test_unknown_job_is_404(client):
    response = client.get("/jobs/missing")
    assert response.status_code == 404
    assert response.json() == {"success": False, "error": "Job missing not found"}


def test_list_rituals(client):
    body = client.get("/rituals").json()
    assert {r["name"] for r in body["data"]} == {"journal", "retired"}
    assert body["meta"] == {"total": 2, "enabled": 1, "disabled": 1}
    assert body["data"][0]["project"] == "command-center"


def test_manual_ritual_run_is_queued(client, center):
    ritual_id = _ritual_id(center, "journal")

    response = client.post("/rituals/run", json={"ritualId": ritual_id})

    assert response.status_code == 202
    data = response.json()["data"]
    assert data["ritual"]["id"] == ritual_id
    job = center.store.get_job(data["jobId"])
    assert job.type == "ritual.run"


def test_manual_ritual_run_errors(client, center):
    assert client.post("/rituals/run", json={}).status_code == 400
    assert client.post("/rituals/run", json={"ritualId": "missing"}).status_code == 404
    assert client.post("/rituals/run", json={"ritualId": _ritual_id(center, "retired")}).status_code == 400


def test_manual_ritual_run_cooldown(client, center):
    ritual_id = _ritual_id(center, "journal")
    center.store.record_ritual_run(ritual_id, datetime.now(UTC) - timedelta(minutes=30), True)

    response = client.post("/rituals/run", json={"ritualId": ritual_id})

    assert response.status_code == 429
    assert "Try again in 30 minutes" in response.json()["error"]

    center.store.record_ritual_run(ritual_id, datetime.now(UTC) - timedelta(hours=2), True)
    assert client.post("/rituals/run", json={"ritualId": ritual_id}).status_code == 202


def test_run_all_rituals(client, center):
    response = client.post("/rituals/check")
    assert response.status_code == 200
    body = response.json()
    assert body["data"]["mode"] == "manual"
    assert body["data"]["executed"] == 1
    assert body["message"] == "Manually executed 1 ritual(s)"
    assert center.store.get_ritual(_ritual_id(center, "journal")).streak == 1


def test_missing_rituals_file_is_a_server_error(store, tmp_path):
    settings = Settings(timezone="UTC", rituals_path=str(tmp_path / "missing.yaml"))
    app = create_app(CommandCenter(store, settings=settings))
    with TestClient(app=app) as client:
        response = client.get("/rituals/check")
    assert response.status_code == 500
    assert "Could not load rituals config" in response.json()["error"]


def test_task_routes(client, center):
    project = center.store.upsert_project("eden")

    created = client.post(
        "/tasks",
        json={"projectId": project.id, "title": "Draft the roadmap", "priority": 1, "energy": 1},
    )
    assert created.status_code == 201
    task_id = created.json()["data"]["id"]

    listed = client.get("/tasks", params={"project": "eden"}).json()
    assert [t["id"] for t in listed["data"]] == [task_id]
    assert listed["meta"]["byStatus"] == {"open": 1}

    top = client.get("/tasks/top3").json()["data"]
    assert top["top3"][0]["id"] == task_id
    assert len(top["focusWindows"]) == 2

    until = (datetime.now(UTC) + timedelta(days=1)).isoformat()
    snoozed = client.post(f"/tasks/{task_id}/snooze", json={"until": until, "reason": "waiting"})
    assert snoozed.status_code == 200
    assert snoozed.json()["data"]["status"] == "snoozed"

    completed = client.post(f"/tasks/{task_id}/complete")
    assert completed.status_code == 200
    assert completed.json()["data"]["status"] == "done"
    assert client.post(f"/tasks/{task_id}/complete").status_code == 400
    assert client.post("/tasks/missing/complete").status_code == 404


def test_task_creation_errors(client):
    assert client.post("/tasks", json={"title": "No project"}).status_code == 400
    assert client.post("/tasks", json={"projectId": "missing", "title": "x"}).status_code == 404


def test_projects_manifest_and_audit(client, center):
    center.store.upsert_project("eden")

    projects = client.get("/projects").json()["data"]
    assert {p["name"] for p in projects} == {"command-center", "eden"}

    manifest = client.get("/projects/eden/manifest")
    assert manifest.status_code == 200
    assert manifest.json()["data"]["total"] == 0
    assert client.get("/projects/missing/manifest").status_code == 404

    audit = client.get("/audit/recent", params={"action": "manifest.get"}).json()
    assert audit["total"] == 1
    assert audit["data"][0]["payload"]["projectName"] == "eden"


def test_monitor_routes(client):
    jobs = client.get("/monitor/jobs")
    assert jobs.status_code == 200
    assert "successRate" in jobs.json()["data"]["metrics"]

    rituals = client.get("/monitor/rituals")
    assert rituals.status_code == 200
    assert rituals.json()["data"]["stats"]["totalRituals"] == 2


def test_litestar_integration_attaches_center(store):
    app = Litestar(route_handlers=[])
    center = configure_command_center(app, store, rituals_config=RitualsConfig())
    assert get_command_center(app.state) is center


def test_fastapi_plugin_runs_jobs_inside_the_app(store):
    app = FastAPI()
    plugin = CommandCenterFastAPIPlugin(app, store, rituals_config=RitualsConfig())
    plugin.run_worker_in_background(poll_interval=0.05)

    @app.post("/recompute/{name}")
    async def recompute(name: str):
        center = app.state.command_center
        center.store.upsert_project(name)
        job = center.queue.enqueue("manifest.recompute", {"project": name})
        await center.queue.drain()
        return {"status": center.queue.get_job(job.id).status}

    with FastAPITestClient(app) as client:
        assert plugin._worker_task is not None
        response = client.post("/recompute/eden")

    assert response.json() == {"status": "completed"}
    assert plugin._worker_task is None
    assert plugin.get_command_center() is app.state.command_center
