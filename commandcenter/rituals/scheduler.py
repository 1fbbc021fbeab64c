# commandcenter/rituals/scheduler.py
import asyncio
import logging
import os
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Union
from zoneinfo import ZoneInfo

from commandcenter.audit import AuditLog, entry_to_dict
from commandcenter.common.exceptions import (
    ConfigurationError,
    NonRetryableJobError,
    RitualExecutionError,
    RitualNotFoundError,
)
from commandcenter.common.records import Ritual
from commandcenter.rituals.config import RitualDefinition, RitualsConfig, load_config
from commandcenter.rituals.schedule import (
    DEFAULT_WINDOW_MINUTES,
    is_time_to_run,
    ritual_health,
    should_run_today,
    to_cron_expression,
)
from commandcenter.server.processor import utcnow
from commandcenter.storage.base import RecordStore

logger = logging.getLogger(__name__)

ACTOR = "system"
OUTPUT_LIMIT = 500
DRY_RUN_ENV = "COMMANDCENTER_DRY_RUN"


def _truncate(text: Optional[str], limit: int = OUTPUT_LIMIT) -> Optional[str]:
    if text is None:
        return None
    return text[:limit]


class RitualScheduler:
    """
    Runs configured rituals when their schedule and time window match.

    The rituals file is re-read on every check so edits apply without a
    restart. Each run, scheduled or manual, is recorded on the Ritual row of
    every project the ritual belongs to.
    """

    def __init__(
        self,
        store: RecordStore,
        audit: Optional[AuditLog] = None,
        config_path: Union[str, Path, None] = None,
        config: Optional[RitualsConfig] = None,
        timezone: str = "UTC",
        timeout_seconds: float = 30.0,
        window_minutes: int = DEFAULT_WINDOW_MINUTES,
        owner_project: str = "command-center",
        queue=None,
        cwd: Optional[str] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        if config_path is None and config is None:
            raise ConfigurationError("RitualScheduler needs a config_path or a config")
        self.store = store
        self.audit = audit or AuditLog(store)
        self.config_path = config_path
        self._config = config
        self.tz = ZoneInfo(timezone)
        self.timeout_seconds = timeout_seconds
        self.window_minutes = window_minutes
        self.owner_project = owner_project
        self.queue = queue
        self.cwd = cwd
        self.clock = clock

    def load_config(self) -> RitualsConfig:
        if self._config is not None:
            return self._config
        return load_config(self.config_path)

    def now(self) -> datetime:
        return self.clock().astimezone(self.tz)

    def should_run_today(self, ritual: RitualDefinition, now: Optional[datetime] = None) -> bool:
        return should_run_today(ritual, now or self.now())

    def is_time_to_run(self, ritual: RitualDefinition, now: Optional[datetime] = None) -> bool:
        return is_time_to_run(ritual, now or self.now(), self.window_minutes)

    # --- Execution ---

    async def execute_ritual(
        self, ritual: RitualDefinition, rows: Optional[List[Ritual]] = None
    ) -> Dict[str, Any]:
        """
        Runs one ritual and records the outcome on `rows`, or on every project
        row of the ritual when not given. Never raises.
        """
        logger.info(f"Executing ritual {ritual.name!r}: {ritual.command}")
        self.audit.log(
            actor=ACTOR,
            action="ritual.started",
            payload={"ritual": ritual.name, "command": ritual.command, "projects": ritual.projects},
        )

        try:
            if ritual.safety_checks.dry_run_first and ritual.job_type is None:
                await self._run_command(ritual.command, dry_run=True)
            output = await self._run(ritual)
        except Exception as e:
            error = str(e) or type(e).__name__
            logger.error(f"Ritual {ritual.name!r} failed: {error}", exc_info=True)
            self.audit.log(
                actor=ACTOR,
                action="ritual.failed",
                payload={"ritual": ritual.name, "error": _truncate(error)},
                status="failure",
                error=_truncate(error),
            )
            self.record_run(ritual, success=False, rows=rows)
            return {"success": False, "error": error}

        logger.info(f"Ritual {ritual.name!r} completed")
        self.audit.log(
            actor=ACTOR,
            action="ritual.completed",
            payload={"ritual": ritual.name, "output": _truncate(output)},
        )
        self.record_run(ritual, success=True, rows=rows)

        for action in ritual.post_actions:
            await self._run_post_action(action, ritual)

        return {"success": True, "output": output}

    async def _run(self, ritual: RitualDefinition) -> str:
        job_type = ritual.job_type
        if job_type is None:
            return await self._run_command(ritual.command)
        if self.queue is None:
            raise ConfigurationError(f"Ritual {ritual.name!r} enqueues jobs but no queue is attached")
        job = self.queue.enqueue(job_type, {"ritual": ritual.name, "projects": ritual.projects})
        return f"Enqueued job {job.id} ({job_type})"

    async def _run_command(self, command: str, dry_run: bool = False) -> str:
        env = dict(os.environ)
        if dry_run:
            env[DRY_RUN_ENV] = "1"
        process = await asyncio.create_subprocess_shell(
            command,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            cwd=self.cwd,
            env=env,
        )
        try:
            stdout, stderr = await asyncio.wait_for(
                process.communicate(), timeout=self.timeout_seconds
            )
        except asyncio.TimeoutError:
            process.kill()
            await process.wait()
            raise RitualExecutionError(
                f"Command timed out after {self.timeout_seconds:g}s: {command}"
            ) from None

        out = stdout.decode(errors="replace")
        if process.returncode != 0:
            detail = stderr.decode(errors="replace").strip() or out.strip()
            prefix = "Dry run failed" if dry_run else "Command failed"
            message = f"{prefix} with exit code {process.returncode}"
            raise RitualExecutionError(f"{message}: {detail}" if detail else message)
        return out

    async def _run_post_action(self, action: str, ritual: RitualDefinition) -> None:
        try:
            if action.startswith("trigger:"):
                command = action[len("trigger:") :].strip()
                logger.info(f"Ritual {ritual.name!r} post-action: {command}")
                await self._run_command(command)
            elif action.startswith("log:"):
                logger.info(f"Ritual {ritual.name!r} post-action logging: {action}")
            elif action.startswith("notify:"):
                logger.info(f"Ritual {ritual.name!r} post-action notification: {action}")
            else:
                logger.warning(f"Ritual {ritual.name!r} has unknown post-action {action!r}")
        except Exception:
            logger.exception(f"Ritual {ritual.name!r} post-action {action!r} failed")

    # --- Run records ---

    def sync_ritual_rows(self, ritual: RitualDefinition) -> List[Ritual]:
        rows = []
        cron = to_cron_expression(ritual)
        for project_name in ritual.projects or [self.owner_project]:
            project = self.store.upsert_project(project_name)
            rows.append(self.store.upsert_ritual(project.id, ritual.name, cron, ritual.enabled))
        return rows

    def sync_rituals(self) -> List[Ritual]:
        """Creates or updates a Ritual row for every configured ritual."""
        rows = []
        for ritual in self.load_config().rituals:
            rows.extend(self.sync_ritual_rows(ritual))
        return rows

    def record_run(
        self, ritual: RitualDefinition, success: bool, rows: Optional[List[Ritual]] = None
    ) -> List[Ritual]:
        ran_at = self.clock()
        updated = []
        if rows is None:
            rows = self.sync_ritual_rows(ritual)
        for row in rows:
            recorded = self.store.record_ritual_run(row.id, ran_at, success)
            if recorded is not None:
                updated.append(recorded)
        self.audit.log_ritual_run(
            ritual.name, success, streaks={r.project_id: r.streak for r in updated}
        )
        return updated

    # --- Entry points ---

    async def check_and_run_rituals(self, now: Optional[datetime] = None) -> Dict[str, Any]:
        config = self.load_config()
        now = now or self.now()
        results = []
        executed = 0

        for ritual in config.rituals:
            if not ritual.enabled:
                logger.debug(f"Skipping disabled ritual {ritual.name!r}")
                continue
            if not self.should_run_today(ritual, now):
                logger.debug(f"Ritual {ritual.name!r} not scheduled for today")
                continue
            if not self.is_time_to_run(ritual, now):
                logger.debug(f"Ritual {ritual.name!r} not due yet (scheduled for {ritual.time})")
                continue

            result = await self.execute_ritual(ritual)
            results.append({"ritual": ritual.name, **result})
            if result["success"]:
                executed += 1

        return {"checked": len(config.rituals), "executed": executed, "results": results}

    async def run_all(self) -> Dict[str, Any]:
        """Executes every enabled ritual now, ignoring schedules."""
        config = self.load_config()
        results = []
        executed = 0
        for ritual in config.enabled:
            logger.info(f"Manually executing ritual {ritual.name!r}")
            result = await self.execute_ritual(ritual)
            results.append({"ritual": ritual.name, **result})
            if result["success"]:
                executed += 1
        return {"mode": "manual", "checked": len(config.rituals), "executed": executed, "results": results}

    async def run_ritual(self, ritual_id: str) -> Dict[str, Any]:
        """
        Runs the ritual behind a Ritual row. Raises when the row is missing or
        disabled, or when the command fails, so a job wrapping this call can retry.
        """
        row = self.store.get_ritual(ritual_id)
        if row is None:
            raise RitualNotFoundError(f"Ritual {ritual_id} not found")
        if not row.enabled:
            raise NonRetryableJobError(f"Ritual {row.name!r} is disabled")

        definition = self.load_config().get(row.name)
        if definition is None:
            # Rituals created through the API have no command; running one only counts it.
            recorded = self.store.record_ritual_run(row.id, self.clock(), True)
            self.audit.log_ritual_run(row.name, True, ritualId=row.id, streak=recorded.streak)
            return {"success": True, "output": None, "streak": recorded.streak}

        result = await self.execute_ritual(definition, rows=[row])
        if not result["success"]:
            raise RitualExecutionError(result["error"])
        return result

    # --- Monitoring ---

    def monitor(self, limit: int = 50, project_id: Optional[str] = None) -> Dict[str, Any]:
        """Per-ritual health plus recent executions from the audit log."""
        now = self.clock()
        projects = {project.id: project.name for project in self.store.list_projects()}
        rituals = []
        for row in self.store.list_rituals(project_id):
            rituals.append(
                {
                    "id": row.id,
                    "name": row.name,
                    "project": projects.get(row.project_id),
                    "streak": row.streak,
                    "lastRun": row.last_run.isoformat() if row.last_run else None,
                    "enabled": row.enabled,
                    "cron": row.cron,
                    **ritual_health(row, now, self.tz),
                }
            )

        actions = ["job.completed", "ritual.run"]
        recent = self.store.list_audit_entries(actions=actions, count=limit)
        last_30_days = self.store.list_audit_entries(
            actions=actions, since=now - timedelta(days=30), count=100_000
        )
        return {
            "rituals": rituals,
            "recentExecutions": [entry_to_dict(entry) for entry in recent],
            "stats": {
                "totalRituals": len(rituals),
                "enabledRituals": sum(1 for r in rituals if r["enabled"]),
                "healthyRituals": sum(1 for r in rituals if r["health"] == "healthy"),
                "lateRituals": sum(1 for r in rituals if r["health"] == "late"),
                "executionsLast30Days": len(last_30_days),
            },
        }
