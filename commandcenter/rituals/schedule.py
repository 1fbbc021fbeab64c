# commandcenter/rituals/schedule.py
"""Schedule matching for rituals. Every check takes `now` in the reference timezone."""
import logging
from datetime import datetime, timedelta, tzinfo
from typing import Any, Dict, List, Optional

from cronsim import CronSim, CronSimError

from commandcenter.common.records import Ritual
from commandcenter.rituals.config import RitualDefinition

logger = logging.getLogger(__name__)

# Weekday indices, 0=Sunday .. 6=Saturday.
SCHEDULE_DAYS: Dict[str, List[int]] = {
    "daily": [0, 1, 2, 3, 4, 5, 6],
    "weekdays": [1, 2, 3, 4, 5],
    "weekends": [0, 6],
    "mondays": [1],
    "tuesdays": [2],
    "wednesdays": [3],
    "thursdays": [4],
    "fridays": [5],
    "saturdays": [6],
    "sundays": [0],
}

DEFAULT_WINDOW_MINUTES = 5
MINUTES_PER_DAY = 24 * 60


def weekday_index(now: datetime) -> int:
    return now.isoweekday() % 7


def should_run_today(ritual: RitualDefinition, now: datetime) -> bool:
    allowed_days = SCHEDULE_DAYS.get(ritual.schedule.lower())
    if allowed_days is None:
        logger.warning(f"Unknown schedule {ritual.schedule!r} for ritual {ritual.name!r}")
        return False
    return weekday_index(now) in allowed_days


def is_time_to_run(
    ritual: RitualDefinition, now: datetime, window_minutes: int = DEFAULT_WINDOW_MINUTES
) -> bool:
    """True when `now` is within `window_minutes` of the ritual's HH:MM, across midnight too."""
    hour, minute = ritual.hour_minute
    distance = abs((now.hour * 60 + now.minute) - (hour * 60 + minute))
    distance = min(distance, MINUTES_PER_DAY - distance)
    return distance <= window_minutes


def is_due(
    ritual: RitualDefinition, now: datetime, window_minutes: int = DEFAULT_WINDOW_MINUTES
) -> bool:
    return (
        ritual.enabled
        and should_run_today(ritual, now)
        and is_time_to_run(ritual, now, window_minutes)
    )


def to_cron_expression(ritual: RitualDefinition) -> str:
    """
    The ritual's schedule as a five-field cron expression. Unknown schedules
    are returned verbatim so the stored row still says what was configured.
    """
    days = SCHEDULE_DAYS.get(ritual.schedule.lower())
    if days is None:
        return ritual.schedule
    hour, minute = ritual.hour_minute
    if len(days) == 7:
        dow = "*"
    elif days == [1, 2, 3, 4, 5]:
        dow = "1-5"
    else:
        dow = ",".join(str(day) for day in days)
    return f"{minute} {hour} * * {dow}"


def next_expected_run(cron: str, after: datetime) -> Optional[datetime]:
    try:
        return next(CronSim(cron, after))
    except (CronSimError, StopIteration):
        return None


def ritual_health(
    ritual: Ritual,
    now: datetime,
    tz: tzinfo,
    grace: timedelta = timedelta(minutes=15),
) -> Dict[str, Any]:
    """
    Classifies a ritual row as healthy, late, disabled or unknown.

    Late means a scheduled occurrence after the last run has passed (plus
    `grace`) without a newer run, or the ritual never ran at all.
    """
    local_now = now.astimezone(tz)
    hours_since = None
    if ritual.last_run is not None:
        hours_since = round((now - ritual.last_run).total_seconds() / 3600, 1)

    if not ritual.enabled:
        health = "disabled"
        expected = None
    elif ritual.last_run is None:
        expected = next_expected_run(ritual.cron, local_now)
        health = "late" if expected is not None else "unknown"
    else:
        expected = next_expected_run(ritual.cron, ritual.last_run.astimezone(tz))
        if expected is None:
            health = "unknown"
        elif expected + grace < local_now:
            health = "late"
        else:
            health = "healthy"

    return {
        "health": health,
        "hoursSinceLastRun": hours_since,
        "nextExpectedRun": expected.isoformat() if expected else None,
    }
