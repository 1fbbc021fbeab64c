# commandcenter/ranking.py
"""
"Top 3" task ranking.

Each active task gets four scores (priority, deadline, energy fit for the
current hour, recency), each multiplied by its weight and summed. Ranking is
a stable sort on the total, so ties keep input order. Nothing here touches
the store.
"""
from dataclasses import asdict, dataclass
from datetime import datetime, timedelta, UTC
from typing import Any, Dict, Iterable, List, Optional

from commandcenter.common.records import ACTIVE_TASK_STATUSES, Task

DEADLINE_SOON_HOURS = 48
DEADLINE_WEEK_HOURS = 168
RECENT_HOURS = 24
DEFAULT_LIMIT = 3


@dataclass(frozen=True)
class RankingWeights:
    priority: int = 3
    deadline: int = 3
    energy: int = 2
    recency: int = 1

    def to_dict(self) -> Dict[str, int]:
        return asdict(self)


DEFAULT_WEIGHTS = RankingWeights()


@dataclass(frozen=True)
class ScoreBreakdown:
    priority: int
    deadline: int
    energy: int
    recency: int

    @property
    def total(self) -> int:
        return self.priority + self.deadline + self.energy + self.recency

    def to_dict(self) -> Dict[str, int]:
        return asdict(self)


@dataclass(frozen=True)
class RankedTask:
    task: Task
    breakdown: ScoreBreakdown

    @property
    def score(self) -> int:
        return self.breakdown.total


def deadline_score(due: Optional[datetime], now: datetime) -> int:
    if due is None:
        return 1
    hours_until_due = (due - now).total_seconds() / 3600
    if hours_until_due <= DEADLINE_SOON_HOURS:
        return 3
    if hours_until_due <= DEADLINE_WEEK_HOURS:
        return 2
    return 1


def energy_score(energy: int, current_hour: int) -> int:
    if 7 <= current_hour < 12:
        # Morning: deep work first
        preferred, adjacent = 1, 2
    elif 12 <= current_hour < 17:
        preferred, adjacent = 2, 1
    else:
        preferred, adjacent = 3, 2
    if energy == preferred:
        return 3
    if energy == adjacent:
        return 2
    return 1


def recency_score(created_at: datetime, now: datetime) -> int:
    hours_old = (now - created_at).total_seconds() / 3600
    return 2 if hours_old <= RECENT_HOURS else 1


def score_task(
    task: Task,
    current_hour: int,
    weights: RankingWeights = DEFAULT_WEIGHTS,
    now: Optional[datetime] = None,
) -> ScoreBreakdown:
    now = now or datetime.now(UTC)
    return ScoreBreakdown(
        priority=(4 - task.priority) * weights.priority,
        deadline=deadline_score(task.due, now) * weights.deadline,
        energy=energy_score(task.energy, current_hour) * weights.energy,
        recency=recency_score(task.created_at, now) * weights.recency,
    )


def rank_tasks(
    tasks: Iterable[Task],
    current_hour: int,
    weights: RankingWeights = DEFAULT_WEIGHTS,
    limit: Optional[int] = DEFAULT_LIMIT,
    now: Optional[datetime] = None,
) -> List[RankedTask]:
    """
    Scores the active tasks and returns the best `limit` of them, highest
    first. `limit=None` returns all of them. Pass `now` for repeatable results.
    """
    now = now or datetime.now(UTC)
    ranked = [
        RankedTask(task=task, breakdown=score_task(task, current_hour, weights, now))
        for task in tasks
        if task.status in ACTIVE_TASK_STATUSES
    ]
    ranked.sort(key=lambda item: item.score, reverse=True)
    return ranked if limit is None else ranked[:limit]


def generate_focus_windows(ranked: List[RankedTask], day: datetime) -> List[Dict[str, Any]]:
    """
    A deep-work block (09:00-11:00) and a normal block (14:00-15:30) on
    `day`'s date, each holding up to two ranked tasks of the matching energy.
    """
    midnight = day.replace(hour=0, minute=0, second=0, microsecond=0)

    def window(kind, start, minutes, energy, description):
        begins = midnight + start
        return {
            "type": kind,
            "start": begins.isoformat(),
            "end": (begins + timedelta(minutes=minutes)).isoformat(),
            "duration": minutes,
            "tasks": [item for item in ranked if item.task.energy == energy][:2],
            "description": description,
        }

    return [
        window("deep", timedelta(hours=9), 120, 1, "Deep work window for high-concentration tasks"),
        window("normal", timedelta(hours=14), 90, 2, "Regular work window for standard tasks"),
    ]


def summarize_tasks(tasks: Iterable[Task]) -> Dict[str, Any]:
    active = [task for task in tasks if task.status in ACTIVE_TASK_STATUSES]
    return {
        "totalActive": len(active),
        "byPriority": {
            "high": sum(1 for t in active if t.priority == 1),
            "medium": sum(1 for t in active if t.priority == 2),
            "low": sum(1 for t in active if t.priority == 3),
        },
        "byEnergy": {
            "deep": sum(1 for t in active if t.energy == 1),
            "normal": sum(1 for t in active if t.energy == 2),
            "light": sum(1 for t in active if t.energy == 3),
        },
    }
