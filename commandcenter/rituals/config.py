# commandcenter/rituals/config.py
"""Ritual definitions as read from the rituals YAML file."""
import logging
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple, Union

import yaml

from commandcenter.common.exceptions import RitualConfigError

logger = logging.getLogger(__name__)

_TIME_RE = re.compile(r"^(\d{1,2}):(\d{2})$")


@dataclass
class SafetyChecks:
    check_git_status: bool = False
    query_open_tasks: bool = False
    dry_run_first: bool = False
    add_archive_footer: bool = False
    never_auto_commit: bool = False

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "SafetyChecks":
        data = data or {}
        known = {name: bool(data[name]) for name in cls.__dataclass_fields__ if name in data}
        unknown = set(data) - set(known)
        if unknown:
            logger.warning(f"Ignoring unknown safety checks: {', '.join(sorted(unknown))}")
        return cls(**known)


@dataclass
class RitualDefinition:
    name: str
    command: str
    schedule: str
    time: str
    description: str = ""
    enabled: bool = True
    projects: List[str] = field(default_factory=list)
    safety_checks: SafetyChecks = field(default_factory=SafetyChecks)
    post_actions: List[str] = field(default_factory=list)

    @property
    def hour_minute(self) -> Tuple[int, int]:
        return parse_time(self.time)

    @property
    def job_type(self) -> Optional[str]:
        """The job type for `job:<type>` commands, None for shell commands."""
        if self.command.startswith("job:"):
            return self.command[len("job:") :].strip() or None
        return None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "RitualDefinition":
        if not isinstance(data, dict):
            raise RitualConfigError(f"Ritual entry must be a mapping, got {type(data).__name__}")
        missing = [
            key for key in ("name", "command", "schedule", "time") if data.get(key) in (None, "")
        ]
        if missing:
            raise RitualConfigError(
                f"Ritual {data.get('name', '<unnamed>')!r} is missing: {', '.join(missing)}"
            )
        time_value = _time_string(data["time"])
        parse_time(time_value)
        projects = data.get("projects") or []
        if isinstance(projects, str):
            projects = [projects]
        return cls(
            name=str(data["name"]),
            command=str(data["command"]),
            schedule=str(data["schedule"]).strip().lower(),
            time=time_value,
            description=str(data.get("description") or ""),
            enabled=bool(data.get("enabled", True)),
            projects=[str(p) for p in projects],
            safety_checks=SafetyChecks.from_dict(data.get("safety_checks")),
            post_actions=[str(a) for a in data.get("post_actions") or []],
        )


@dataclass
class RitualsConfig:
    rituals: List[RitualDefinition] = field(default_factory=list)
    settings: Dict[str, Any] = field(default_factory=dict)

    def get(self, name: str) -> Optional[RitualDefinition]:
        for ritual in self.rituals:
            if ritual.name == name:
                return ritual
        return None

    @property
    def enabled(self) -> List[RitualDefinition]:
        return [ritual for ritual in self.rituals if ritual.enabled]


def _time_string(value: Any) -> str:
    # YAML 1.1 reads an unquoted 14:30 as the base-60 integer 870.
    if isinstance(value, int) and not isinstance(value, bool):
        return f"{value // 60:02d}:{value % 60:02d}"
    return str(value)


def parse_time(value: str) -> Tuple[int, int]:
    match = _TIME_RE.match(value.strip())
    if not match:
        raise RitualConfigError(f"Invalid ritual time {value!r}, expected HH:MM")
    hour, minute = int(match.group(1)), int(match.group(2))
    if hour > 23 or minute > 59:
        raise RitualConfigError(f"Invalid ritual time {value!r}, expected HH:MM")
    return hour, minute


def parse_config(data: Any) -> RitualsConfig:
    if data is None:
        data = {}
    if not isinstance(data, dict):
        raise RitualConfigError("Rituals file must contain a mapping at the top level")
    entries = data.get("rituals") or []
    if not isinstance(entries, list):
        raise RitualConfigError("'rituals' must be a list")
    rituals = [RitualDefinition.from_dict(entry) for entry in entries]
    names = [ritual.name for ritual in rituals]
    duplicates = sorted({name for name in names if names.count(name) > 1})
    if duplicates:
        raise RitualConfigError(f"Duplicate ritual names: {', '.join(duplicates)}")
    settings = data.get("config") or {}
    if not isinstance(settings, dict):
        raise RitualConfigError("'config' must be a mapping")
    return RitualsConfig(rituals=rituals, settings=settings)


def load_config(path: Union[str, Path]) -> RitualsConfig:
    path = Path(path)
    try:
        text = path.read_text(encoding="utf-8")
    except OSError as e:
        raise RitualConfigError(f"Could not load rituals config {path}: {e}") from e
    try:
        data = yaml.safe_load(text)
    except yaml.YAMLError as e:
        raise RitualConfigError(f"Malformed rituals config {path}: {e}") from e
    config = parse_config(data)
    logger.debug(f"Loaded {len(config.rituals)} ritual(s) from {path}")
    return config
