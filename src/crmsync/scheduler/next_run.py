"""
Next-run estimation for the schedule expressions this project uses.

Only three cron shapes are understood:

    */N * * * *         every N minutes
    M * * * *           minute M of every hour
    M h1,h2,... * * *   minute M at an explicit set of hours

Anything else parses to Unsupported, whose next run is None. The estimate is
computed here rather than read back from APScheduler so job status can be
reported for jobs that are not armed.
"""
import re
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional, Tuple, Union

_NUMBER = re.compile(r"^\d{1,2}$")
_STEP = re.compile(r"^\*/(\d{1,2})$")


@dataclass(frozen=True)
class EveryNMinutes:
    interval: int

    def next_after(self, now: datetime) -> Optional[datetime]:
        candidate = now.replace(second=0, microsecond=0) + timedelta(minutes=1)
        while candidate.minute % self.interval:
            candidate += timedelta(minutes=1)
        return candidate


@dataclass(frozen=True)
class HourlyAt:
    minute: int

    def next_after(self, now: datetime) -> Optional[datetime]:
        candidate = now.replace(minute=self.minute, second=0, microsecond=0)
        if candidate <= now:
            candidate += timedelta(hours=1)
        return candidate


@dataclass(frozen=True)
class DailyAtHours:
    minute: int
    hours: Tuple[int, ...]

    def next_after(self, now: datetime) -> Optional[datetime]:
        for hour in self.hours:
            candidate = now.replace(hour=hour, minute=self.minute, second=0, microsecond=0)
            if candidate > now:
                return candidate
        tomorrow = now + timedelta(days=1)
        return tomorrow.replace(hour=self.hours[0], minute=self.minute, second=0, microsecond=0)


@dataclass(frozen=True)
class Unsupported:
    expression: str

    def next_after(self, now: datetime) -> Optional[datetime]:
        return None


Schedule = Union[EveryNMinutes, HourlyAt, DailyAtHours, Unsupported]


def _int_in_range(token: str, low: int, high: int) -> Optional[int]:
    if not _NUMBER.match(token):
        return None
    value = int(token)
    return value if low <= value <= high else None


def parse_schedule(expression: str) -> Schedule:
    """Parse a five-field cron expression into one of the supported shapes."""
    fields = (expression or "").split()
    if len(fields) != 5 or fields[2:] != ["*", "*", "*"]:
        return Unsupported(expression)
    minute, hour = fields[0], fields[1]

    step = _STEP.match(minute)
    if step and hour == "*":
        interval = int(step.group(1))
        if 1 <= interval <= 59:
            return EveryNMinutes(interval)
        return Unsupported(expression)

    fixed_minute = _int_in_range(minute, 0, 59)
    if fixed_minute is None:
        return Unsupported(expression)
    if hour == "*":
        return HourlyAt(fixed_minute)

    hours = []
    for token in hour.split(","):
        value = _int_in_range(token, 0, 23)
        if value is None:
            return Unsupported(expression)
        hours.append(value)
    return DailyAtHours(fixed_minute, tuple(sorted(set(hours))))


def estimate_next_run(expression: str, now: datetime) -> Optional[datetime]:
    """Nearest future fire time after `now` (in now's timezone), or None if unsupported."""
    return parse_schedule(expression).next_after(now)
