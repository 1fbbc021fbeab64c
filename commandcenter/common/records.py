# commandcenter/common/records.py
"""Plain records for everything the store holds besides jobs."""
import uuid
from dataclasses import dataclass, field
from datetime import datetime, UTC
from typing import Any, Dict, List, Optional


def _new_id() -> str:
    return str(uuid.uuid4())


def _now() -> datetime:
    return datetime.now(UTC)


# Task priority: 1=high, 2=medium, 3=low. Energy: 1=deep, 2=normal, 3=light.
PRIORITIES = (1, 2, 3)
ENERGIES = (1, 2, 3)

TASK_STATUSES = ("open", "doing", "blocked", "done", "snoozed")
ACTIVE_TASK_STATUSES = ("open", "doing", "blocked")

TASK_SOURCES = ("manual", "email", "slash", "calendar", "api", "ritual", "ai-session")

AUDIT_STATUSES = ("success", "failure", "pending")


@dataclass
class Project:
    name: str
    id: str = field(default_factory=_new_id)
    description: Optional[str] = None
    type: Optional[str] = None
    status: str = "active"
    color: Optional[str] = None
    created_at: datetime = field(default_factory=_now)
    updated_at: datetime = field(default_factory=_now)


@dataclass
class Task:
    project_id: str
    title: str
    id: str = field(default_factory=_new_id)
    notes: Optional[str] = None
    priority: int = 2
    status: str = "open"
    due: Optional[datetime] = None
    energy: int = 2
    tags: str = ""
    source: str = "manual"
    created_at: datetime = field(default_factory=_now)
    updated_at: datetime = field(default_factory=_now)

    @property
    def is_active(self) -> bool:
        return self.status in ACTIVE_TASK_STATUSES

    @property
    def tag_list(self) -> List[str]:
        return [tag.strip() for tag in self.tags.split(",") if tag.strip()]


@dataclass
class Ritual:
    project_id: str
    name: str
    cron: str
    id: str = field(default_factory=_new_id)
    streak: int = 0
    last_run: Optional[datetime] = None
    enabled: bool = True
    created_at: datetime = field(default_factory=_now)
    updated_at: datetime = field(default_factory=_now)


@dataclass
class KPI:
    project_id: str
    key: str
    value: float
    at: datetime = field(default_factory=_now)
    source: Optional[str] = None
    id: str = field(default_factory=_new_id)


@dataclass
class Work:
    project_id: str
    work_id: str
    source: str
    id: str = field(default_factory=_new_id)
    content_hash: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)
    created_at: datetime = field(default_factory=_now)


@dataclass
class AuditEntry:
    actor: str
    action: str
    payload: Dict[str, Any] = field(default_factory=dict)
    status: str = "success"
    error: Optional[str] = None
    id: str = field(default_factory=_new_id)
    created_at: datetime = field(default_factory=_now)
