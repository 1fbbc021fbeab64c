# commandcenter/client.py
from typing import Any, Dict, Optional

from .audit import AuditLog
from .config import Settings
from .execution.registry import HandlerRegistry
from .handlers import build_default_registry
from .handlers.github import GitHubClient
from .handlers.manifest import ManifestService
from .rituals.scheduler import RitualScheduler
from .rituals.config import RitualsConfig
from .serialization.base import BaseSerializer
from .serialization.json_serializer import JsonSerializer
from .server.processor import utcnow
from .server.queue import JobQueue
from .server.worker import Worker
from .storage.base import RecordStore
from .tasks import TaskService


class CommandCenter:
    """
    Wires the store, audit log, job queue, ritual scheduler and task services
    together. The HTTP app, the integrations and the run scripts all go
    through one instance of this.
    """

    def __init__(
        self,
        store: RecordStore,
        settings: Optional[Settings] = None,
        registry: Optional[HandlerRegistry] = None,
        serializer: Optional[BaseSerializer] = None,
        rituals_config: Optional[RitualsConfig] = None,
        github: Optional[GitHubClient] = None,
        clock=utcnow,
        **queue_options: Any,
    ):
        self.store = store
        self.settings = settings or Settings()
        self.clock = clock
        self.audit = AuditLog(store)
        self.github = github or GitHubClient(
            self.settings.github_token,
            self.settings.github_username,
            base_url=self.settings.github_api_url,
        )
        services: Dict[str, Any] = {
            "github": self.github,
            "owner_project": self.settings.owner_project,
            "ai_session_paths": self.settings.ai_session_paths,
        }
        self.queue = JobQueue(
            store,
            registry=registry or build_default_registry(),
            serializer=serializer or JsonSerializer(),
            audit=self.audit,
            services=services,
            clock=clock,
            **queue_options,
        )
        self.scheduler = RitualScheduler(
            store,
            audit=self.audit,
            config_path=self.settings.rituals_path if rituals_config is None else None,
            config=rituals_config,
            timezone=self.settings.timezone,
            timeout_seconds=self.settings.ritual_timeout_seconds,
            window_minutes=self.settings.ritual_window_minutes,
            owner_project=self.settings.owner_project,
            queue=self.queue,
            clock=clock,
        )
        services["scheduler"] = self.scheduler
        self.tasks = TaskService(store, audit=self.audit, clock=clock)
        self.manifests = ManifestService(store, audit=self.audit, clock=clock)

    @classmethod
    def from_settings(cls, settings: Optional[Settings] = None, **kwargs: Any) -> "CommandCenter":
        from .storage.sql_storage import SqlStore

        settings = settings or Settings.from_env()
        return cls(SqlStore(connection_url=settings.database_url), settings=settings, **kwargs)

    @property
    def serializer(self) -> BaseSerializer:
        return self.queue.serializer

    def local_now(self):
        return self.scheduler.now()

    def create_worker(self, **options: Any) -> Worker:
        options.setdefault("poll_interval", self.settings.worker_poll_seconds)
        options.setdefault("ritual_interval", self.settings.ritual_check_seconds)
        options.setdefault("retention_days", self.settings.job_retention_days)
        return Worker(self.queue, scheduler=self.scheduler, tasks=self.tasks, **options)
