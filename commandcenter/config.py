# commandcenter/config.py
import os
from dataclasses import dataclass, field
from typing import List, Optional

from commandcenter.storage.base import RecordStore


@dataclass
class Settings:
    database_url: str = "sqlite:///commandcenter.db"
    rituals_path: str = "config/rituals.yaml"
    timezone: str = "America/New_York"
    ritual_timeout_seconds: float = 30.0
    ritual_window_minutes: int = 5
    ritual_run_cooldown_seconds: int = 3600
    worker_poll_seconds: float = 5.0
    ritual_check_seconds: float = 300.0
    job_retention_days: int = 7
    stale_job_seconds: int = 3600
    owner_project: str = "command-center"
    github_token: Optional[str] = None
    github_username: Optional[str] = None
    github_api_url: str = "https://api.github.com"
    ai_session_paths: List[str] = field(default_factory=list)

    @classmethod
    def from_env(cls, environ=None) -> "Settings":
        env = os.environ if environ is None else environ
        defaults = cls()
        paths = env.get("COMMANDCENTER_AI_SESSION_PATHS", "")
        return cls(
            database_url=env.get("COMMANDCENTER_DATABASE_URL", defaults.database_url),
            rituals_path=env.get("COMMANDCENTER_RITUALS_PATH", defaults.rituals_path),
            timezone=env.get("COMMANDCENTER_TIMEZONE", defaults.timezone),
            ritual_timeout_seconds=float(
                env.get("COMMANDCENTER_RITUAL_TIMEOUT", defaults.ritual_timeout_seconds)
            ),
            ritual_window_minutes=int(
                env.get("COMMANDCENTER_RITUAL_WINDOW_MINUTES", defaults.ritual_window_minutes)
            ),
            ritual_run_cooldown_seconds=int(
                env.get("COMMANDCENTER_RITUAL_COOLDOWN", defaults.ritual_run_cooldown_seconds)
            ),
            worker_poll_seconds=float(
                env.get("COMMANDCENTER_WORKER_POLL", defaults.worker_poll_seconds)
            ),
            ritual_check_seconds=float(
                env.get("COMMANDCENTER_RITUAL_CHECK_INTERVAL", defaults.ritual_check_seconds)
            ),
            job_retention_days=int(
                env.get("COMMANDCENTER_JOB_RETENTION_DAYS", defaults.job_retention_days)
            ),
            stale_job_seconds=int(env.get("COMMANDCENTER_STALE_JOB_SECONDS", defaults.stale_job_seconds)),
            owner_project=env.get("COMMANDCENTER_OWNER_PROJECT", defaults.owner_project),
            github_token=env.get("GITHUB_TOKEN") or None,
            github_username=env.get("GITHUB_USERNAME") or None,
            github_api_url=env.get("GITHUB_API_URL", defaults.github_api_url),
            ai_session_paths=[p for p in paths.split(os.pathsep) if p],
        )


class _GlobalConfig:
    def __init__(self):
        self.store: Optional[RecordStore] = None
        self.settings: Optional[Settings] = None


_GLOBAL_CONFIG = _GlobalConfig()


def configure(store: RecordStore, settings: Optional[Settings] = None) -> None:
    _GLOBAL_CONFIG.store = store
    _GLOBAL_CONFIG.settings = settings


def get_store() -> RecordStore:
    if not _GLOBAL_CONFIG.store:
        raise RuntimeError("commandcenter has not been configured. Call commandcenter.configure() first.")
    return _GLOBAL_CONFIG.store


def get_settings() -> Settings:
    if _GLOBAL_CONFIG.settings is None:
        _GLOBAL_CONFIG.settings = Settings.from_env()
    return _GLOBAL_CONFIG.settings
