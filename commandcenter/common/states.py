# commandcenter/common/states.py

from datetime import datetime, UTC
from typing import Dict, Any, Optional


class BaseState:
    """A job status together with the column values the transition writes."""

    NAME = "base"
    TERMINAL = False

    def __init__(self, created_at: Optional[datetime] = None):
        self.created_at = created_at or datetime.now(UTC)

    @property
    def name(self) -> str:
        return self.NAME

    def serialize_data(self) -> Dict[str, Any]:
        return {}


class PendingState(BaseState):
    NAME = "pending"

    def __init__(
        self,
        run_at: Optional[datetime] = None,
        error: Optional[str] = None,
        reason: Optional[str] = None,
        *args,
        **kwargs,
    ):
        super().__init__(*args, **kwargs)
        self.run_at = run_at
        self.error = error
        self.reason = reason

    def serialize_data(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {}
        if self.run_at is not None:
            data["run_at"] = self.run_at
        if self.error is not None:
            data["error"] = self.error
        return data


class RunningState(BaseState):
    NAME = "running"

    def __init__(self, attempts: int, started_at: Optional[datetime] = None, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.attempts = attempts
        self.started_at = started_at or self.created_at

    def serialize_data(self) -> Dict[str, Any]:
        return {"attempts": self.attempts, "started_at": self.started_at}


class CompletedState(BaseState):
    NAME = "completed"
    TERMINAL = True

    def __init__(self, completed_at: Optional[datetime] = None, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.completed_at = completed_at or self.created_at

    def serialize_data(self) -> Dict[str, Any]:
        return {"completed_at": self.completed_at}


class FailedState(BaseState):
    NAME = "failed"
    TERMINAL = True

    def __init__(self, error: str, exception_type: Optional[str] = None, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.error = error
        self.exception_type = exception_type

    def serialize_data(self) -> Dict[str, Any]:
        return {"error": self.error}


ALL_STATES = [
    PendingState.NAME,
    RunningState.NAME,
    CompletedState.NAME,
    FailedState.NAME,
]

TERMINAL_STATES = {CompletedState.NAME, FailedState.NAME}
