# commandcenter/handlers/ai_sessions.py
"""
Turns exported AI conversations into tasks, KPIs and insight works.

Extraction is keyword and pattern based: no model is called. Conversations
come from the job payload or from JSON export files on disk.
"""
import hashlib
import json
import logging
import re
from dataclasses import dataclass, field
from datetime import datetime, UTC
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional

from commandcenter.audit import AuditLog
from commandcenter.common.exceptions import InvalidPayloadError
from commandcenter.common.records import KPI, Task, Work
from commandcenter.execution.registry import HandlerContext
from commandcenter.storage.base import RecordStore

logger = logging.getLogger(__name__)

SOURCES = ("limitless", "chatgpt", "claude", "granola")
MAX_TASKS_PER_SESSION = 5
MIN_TASK_LENGTH = 10
MAX_TITLE_LENGTH = 100

PROJECT_KEYWORDS = ["command-center", "eden", "vibecoding", "automata", "solienne", "abraham"]
PROJECT_PATTERNS = [
    re.compile(r"working on ([a-z-]+)"),
    re.compile(r"building ([a-z-]+)"),
    re.compile(r"project called ([a-z-]+)"),
]
DECISION_PATTERNS = [
    re.compile(r"decided to ([^.!?]+)"),
    re.compile(r"going with ([^.!?]+)"),
    re.compile(r"chose to ([^.!?]+)"),
    re.compile(r"switching to ([^.!?]+)"),
]
TASK_PATTERNS = [
    re.compile(r"need to ([^.!?]+)"),
    re.compile(r"should ([^.!?]+)"),
    re.compile(r"todo:?\s*([^.!?\n]+)"),
    re.compile(r"action item:?\s*([^.!?\n]+)"),
    re.compile(r"next:?\s*([^.!?\n]+)"),
]
LEARNING_PATTERNS = [
    re.compile(r"learned that ([^.!?]+)"),
    re.compile(r"discovered ([^.!?]+)"),
    re.compile(r"figured out ([^.!?]+)"),
    re.compile(r"now understand ([^.!?]+)"),
]
NEXT_ACTION_PATTERNS = [
    re.compile(r"next step:?\s*([^.!?\n]+)"),
    re.compile(r"immediately:?\s*([^.!?\n]+)"),
    re.compile(r"first:?\s*([^.!?\n]+)"),
]
THEME_KEYWORDS = [
    "architecture", "design", "api", "database", "frontend", "backend",
    "automation", "intelligence", "workflow", "productivity", "ritual",
    "integration", "deployment", "testing", "documentation", "strategy",
]
# First match wins.
MOOD_KEYWORDS = [
    ("breakthrough", ("breakthrough", "eureka")),
    ("excited", ("excited", "amazing")),
    ("focused", ("focused", "deep work")),
    ("creative", ("creative", "inspiration")),
    ("stressed", ("stressed", "overwhelmed")),
    ("confused", ("confused", "stuck")),
]
TASK_PRIORITY = {"urgent": 1, "high": 1, "medium": 2, "low": 3}


@dataclass
class AIConversation:
    source: str
    session_id: str
    timestamp: datetime
    content: str
    title: Optional[str] = None
    participants: List[str] = field(default_factory=list)
    metadata: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "AIConversation":
        if not isinstance(data, dict):
            raise InvalidPayloadError("Conversation must be an object")
        source = data.get("source")
        if source not in SOURCES:
            raise InvalidPayloadError(f"Conversation source must be one of {SOURCES}, got {source!r}")
        for key in ("sessionId", "timestamp", "content"):
            if not data.get(key):
                raise InvalidPayloadError(f"Conversation is missing '{key}'")
        try:
            timestamp = datetime.fromisoformat(str(data["timestamp"]).replace("Z", "+00:00"))
        except ValueError:
            raise InvalidPayloadError(f"Invalid conversation timestamp {data['timestamp']!r}") from None
        if timestamp.tzinfo is None:
            timestamp = timestamp.replace(tzinfo=UTC)
        return cls(
            source=source,
            session_id=str(data["sessionId"]),
            timestamp=timestamp,
            content=str(data["content"]),
            title=data.get("title"),
            participants=list(data.get("participants") or []),
            metadata=dict(data.get("metadata") or {}),
        )


@dataclass
class SessionIntelligence:
    projects: List[str] = field(default_factory=list)
    decisions: List[str] = field(default_factory=list)
    tasks: List[str] = field(default_factory=list)
    learnings: List[str] = field(default_factory=list)
    themes: List[str] = field(default_factory=list)
    mood: Optional[str] = None
    energy: str = "medium"
    priority: str = "medium"
    next_actions: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "projects": self.projects,
            "decisions": self.decisions,
            "tasks": self.tasks,
            "learnings": self.learnings,
            "themes": self.themes,
            "mood": self.mood,
            "energy": self.energy,
            "priority": self.priority,
            "nextActions": self.next_actions,
        }


def _matches(patterns: Iterable[re.Pattern], content: str) -> List[str]:
    found = []
    for pattern in patterns:
        found.extend(match.group(1).strip() for match in pattern.finditer(content))
    return found


def parse_conversation(conversation: AIConversation) -> SessionIntelligence:
    content = conversation.content.lower()

    projects: List[str] = [keyword for keyword in PROJECT_KEYWORDS if keyword in content]
    for name in _matches(PROJECT_PATTERNS, content):
        if name not in projects:
            projects.append(name)

    mood = None
    for candidate, keywords in MOOD_KEYWORDS:
        if any(keyword in content for keyword in keywords):
            mood = candidate
            break

    energy = "medium"
    if "tired" in content or "drained" in content:
        energy = "low"
    elif "energized" in content or "pumped" in content:
        energy = "high"

    priority = "medium"
    if "urgent" in content or "asap" in content:
        priority = "urgent"
    elif "important" in content or "critical" in content:
        priority = "high"
    elif "nice to have" in content or "someday" in content:
        priority = "low"

    return SessionIntelligence(
        projects=projects,
        decisions=_matches(DECISION_PATTERNS, content),
        tasks=_matches(TASK_PATTERNS, content),
        learnings=_matches(LEARNING_PATTERNS, content),
        themes=[theme for theme in THEME_KEYWORDS if theme in content],
        mood=mood,
        energy=energy,
        priority=priority,
        next_actions=_matches(NEXT_ACTION_PATTERNS, content),
    )


def process_conversation(
    conversation: AIConversation,
    store: RecordStore,
    audit: AuditLog,
    owner_project: str = "command-center",
) -> Dict[str, Any]:
    intelligence = parse_conversation(conversation)
    project_name = intelligence.projects[0] if intelligence.projects else owner_project
    created = {"tasks": 0, "kpis": 0, "works": 0}

    candidates = intelligence.tasks + intelligence.next_actions
    for description in candidates[:MAX_TASKS_PER_SESSION]:
        if len(description) <= MIN_TASK_LENGTH:
            continue
        project = store.upsert_project(project_name, type="ai-derived")
        store.create_task(
            Task(
                project_id=project.id,
                title=description[:MAX_TITLE_LENGTH],
                priority=TASK_PRIORITY[intelligence.priority],
                tags=",".join(intelligence.themes),
                source="ai-session",
            )
        )
        created["tasks"] += 1

    if intelligence.mood or intelligence.themes:
        owner = store.upsert_project(owner_project, type="personal")
        session_kpis = {
            f"ai.sessions.{conversation.source}": 1,
            "ai.intelligence.themes_per_session": len(intelligence.themes),
            "ai.intelligence.tasks_extracted": len(candidates),
        }
        for key, value in session_kpis.items():
            store.add_kpi(
                KPI(
                    project_id=owner.id,
                    key=key,
                    value=value,
                    at=conversation.timestamp,
                    source=f"ai-session-{conversation.source}",
                )
            )
            created["kpis"] += 1

    if intelligence.learnings or intelligence.mood == "breakthrough":
        project = store.get_project_by_name(project_name)
        if project is not None:
            digest = hashlib.sha256(
                f"{conversation.session_id}:{conversation.content}".encode()
            ).hexdigest()
            store.add_work(
                Work(
                    project_id=project.id,
                    work_id=f"ai-insight-{conversation.session_id}",
                    source=f"ai-session-{conversation.source}",
                    content_hash=digest,
                    created_at=conversation.timestamp,
                    metadata={
                        "sessionId": conversation.session_id,
                        "type": "ai-insight",
                        "title": f"AI Session Insights: {', '.join(intelligence.themes)}",
                        "learnings": intelligence.learnings,
                        "decisions": intelligence.decisions,
                        "mood": intelligence.mood,
                        "themes": intelligence.themes,
                    },
                )
            )
            created["works"] += 1

    audit.log(
        actor="ai-session-bridge",
        action="conversation.processed",
        payload={
            "source": conversation.source,
            "sessionId": conversation.session_id,
            "intelligence": intelligence.to_dict(),
            "itemsCreated": created,
        },
    )
    return {"intelligence": intelligence, "itemsCreated": created}


def load_conversations(path: Path) -> List[Dict[str, Any]]:
    """Reads a JSON export: a list of conversations or {"conversations": [...]}."""
    try:
        data = json.loads(Path(path).read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as e:
        raise InvalidPayloadError(f"Could not read conversation export {path}: {e}") from e
    if isinstance(data, dict):
        data = data.get("conversations", [])
    if not isinstance(data, list):
        raise InvalidPayloadError(f"Conversation export {path} must hold a list")
    return data


def sync_ai_sessions(payload: Dict[str, Any], ctx: HandlerContext) -> Dict[str, Any]:
    raw = list(payload.get("conversations") or [])
    paths = payload.get("paths") or ctx.services.get("ai_session_paths") or []
    for path in paths:
        raw.extend(load_conversations(path))
    conversations = [AIConversation.from_dict(item) for item in raw]

    owner_project = ctx.services.get("owner_project", "command-center")
    totals = {"tasks": 0, "kpis": 0, "works": 0}
    for conversation in conversations:
        result = process_conversation(conversation, ctx.store, ctx.audit, owner_project)
        for key, value in result["itemsCreated"].items():
            totals[key] += value

    sources = sorted({c.source for c in conversations})
    logger.info(f"Processed {len(conversations)} AI conversation(s): {totals}")
    ctx.audit.log(
        actor="ai-session-sync",
        action="ai-sessions.sync.completed",
        payload={"processed": len(conversations), "itemsCreated": totals, "sources": sources},
    )
    return {"processed": len(conversations), "itemsCreated": totals}
