# commandcenter/common/job.py
import uuid
from dataclasses import dataclass, field
from datetime import datetime, UTC
from typing import Optional

from commandcenter.common.states import PendingState, TERMINAL_STATES

DEFAULT_MAX_RETRIES = 3


@dataclass
class Job:
    """
    A persisted unit of deferred work.

    `type` selects the handler, `payload` is the JSON-serialized argument
    object handed to it. `attempts` counts executions started so far.
    """

    type: str
    payload: str  # JSON-serialized object

    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    status: str = PendingState.NAME
    attempts: int = 0
    max_retries: int = DEFAULT_MAX_RETRIES
    run_at: datetime = field(default_factory=lambda: datetime.now(UTC))
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    error: Optional[str] = None
    created_at: datetime = field(default_factory=lambda: datetime.now(UTC))

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATES

    @property
    def execution_time_ms(self) -> Optional[int]:
        if self.started_at is None or self.completed_at is None:
            return None
        return int((self.completed_at - self.started_at).total_seconds() * 1000)
