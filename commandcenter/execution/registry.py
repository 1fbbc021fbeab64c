# commandcenter/execution/registry.py
"""Job handler registry."""
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any, Awaitable, Callable, Dict, List, Optional, Union

from commandcenter.audit import AuditLog
from commandcenter.common.exceptions import ConfigurationError, UnknownJobTypeError
from commandcenter.storage.base import RecordStore


@dataclass
class HandlerContext:
    """What a handler gets besides its payload."""

    store: RecordStore
    audit: AuditLog
    job_id: Optional[str] = None
    services: Dict[str, Any] = field(default_factory=dict)
    clock: Callable[[], datetime] = field(default=lambda: datetime.now(UTC))

    def service(self, name: str) -> Any:
        try:
            return self.services[name]
        except KeyError:
            raise ConfigurationError(f"Service '{name}' is not available to handlers") from None


# Handler signature: handler(payload, ctx) -> optional result dict; may be async.
JobHandler = Callable[
    [Dict[str, Any], HandlerContext],
    Union[Optional[Dict[str, Any]], Awaitable[Optional[Dict[str, Any]]]],
]


class HandlerRegistry:
    """Maps job type tags to handlers. One registry per queue."""

    def __init__(self):
        self._handlers: Dict[str, JobHandler] = {}

    def register(self, job_type: str, handler: JobHandler) -> None:
        self._handlers[job_type] = handler

    def get_handler(self, job_type: str) -> JobHandler:
        if job_type not in self._handlers:
            raise UnknownJobTypeError(job_type)
        return self._handlers[job_type]

    def handler(self, job_type: str) -> Callable[[JobHandler], JobHandler]:
        """Decorator to register a handler."""

        def decorator(fn: JobHandler) -> JobHandler:
            self.register(job_type, fn)
            return fn

        return decorator

    def __contains__(self, job_type: str) -> bool:
        return job_type in self._handlers

    @property
    def job_types(self) -> List[str]:
        return sorted(self._handlers)
