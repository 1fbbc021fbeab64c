from commandcenter.execution.registry import HandlerRegistry

from .ai_sessions import sync_ai_sessions
from .github import sync_github
from .manifest import backfill, recompute_manifest
from .rituals import run_ritual

DEFAULT_HANDLERS = {
    "ritual.run": run_ritual,
    "backfill": backfill,
    "manifest.recompute": recompute_manifest,
    "github.sync": sync_github,
    "ai-sessions.sync": sync_ai_sessions,
}


def build_default_registry() -> HandlerRegistry:
    registry = HandlerRegistry()
    for job_type, handler in DEFAULT_HANDLERS.items():
        registry.register(job_type, handler)
    return registry


__all__ = ["DEFAULT_HANDLERS", "build_default_registry"]
