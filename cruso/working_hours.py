"""Weekly working-hours records: validation, schedule views and concrete windows.

Records are stored as ``{id, days, start_time, end_time, timezone}`` where
``days`` uses 0=Sunday ... 6=Saturday and times are ``HH:MM:SS``.
"""

import re
from datetime import datetime, time, timedelta
from typing import Any, Iterable, Optional

from cruso.config import WorkingHoursConfig
from cruso.errors import ValidationError
from cruso.intervals import Interval, TzLike, get_zone, merge_intervals

DAY_NAMES = [
    "Sunday",
    "Monday",
    "Tuesday",
    "Wednesday",
    "Thursday",
    "Friday",
    "Saturday",
]

# Display order of the weekly schedule view
SCHEDULE_ORDER = DAY_NAMES[1:] + DAY_NAMES[:1]

_TIME_RE = re.compile(r"^([01]\d|2[0-3]):([0-5]\d)(?::([0-5]\d))?$")


def normalize_time(value: Any) -> str:
    """Return a validated ``HH:MM:SS`` string for an ``HH:MM[:SS]`` value."""
    if isinstance(value, time):
        return value.strftime("%H:%M:%S")
    if not isinstance(value, str):
        raise ValidationError(f"Invalid time '{value}'. Expected HH:MM or HH:MM:SS")
    match = _TIME_RE.match(value.strip())
    if not match:
        raise ValidationError(f"Invalid time '{value}'. Expected HH:MM or HH:MM:SS")
    hours, minutes, seconds = match.groups()
    return f"{hours}:{minutes}:{seconds or '00'}"


def parse_time(value: Any) -> time:
    return time.fromisoformat(normalize_time(value))


def format_time_for_ui(value: Any) -> str:
    return normalize_time(value)[:5]


def validate_days(days: Any) -> list[int]:
    if not isinstance(days, list) or not days:
        raise ValidationError("days must be a non-empty array of day numbers (0-6)")
    for day in days:
        if isinstance(day, bool) or not isinstance(day, int) or not (0 <= day <= 6):
            raise ValidationError(
                f"Invalid day: {day}. Days must be between 0 (Sunday) and 6 (Saturday)"
            )
    return sorted(set(days))


def validate_time_range(start_time: Any, end_time: Any) -> tuple[str, str]:
    start = normalize_time(start_time)
    end = normalize_time(end_time)
    if start >= end:
        raise ValidationError(
            f"start_time must be before end_time (start: {start}, end: {end})"
        )
    return start, end


def records_to_schedule(records: Iterable[dict[str, Any]]) -> dict[str, dict[str, Any]]:
    schedule: dict[str, dict[str, Any]] = {
        name: {"enabled": False, "time_slots": []} for name in SCHEDULE_ORDER
    }
    for record in records:
        for day in record.get("days") or []:
            day_schedule = schedule[DAY_NAMES[day]]
            day_schedule["enabled"] = True
            day_schedule["time_slots"].append(
                {
                    "id": f"{record.get('id')}-{day}",
                    "start_time": format_time_for_ui(record["start_time"]),
                    "end_time": format_time_for_ui(record["end_time"]),
                }
            )
    return schedule


def schedule_to_records(schedule: dict[str, Any]) -> list[dict[str, Any]]:
    """Collapse a weekly schedule into records, one per distinct time slot."""
    groups: dict[tuple[str, str], dict[str, Any]] = {}
    for day_name, day_data in schedule.items():
        if day_name not in DAY_NAMES:
            raise ValidationError(f"Unknown day '{day_name}'")
        if not day_data.get("enabled"):
            continue
        slots = day_data.get("time_slots", day_data.get("timeSlots")) or []
        for slot in slots:
            start, end = validate_time_range(
                slot.get("start_time", slot.get("startTime")),
                slot.get("end_time", slot.get("endTime")),
            )
            group = groups.setdefault(
                (start, end), {"days": [], "start_time": start, "end_time": end}
            )
            group["days"].append(DAY_NAMES.index(day_name))

    for group in groups.values():
        group["days"].sort()
    return list(groups.values())


def default_records(config: WorkingHoursConfig, timezone: str) -> list[dict[str, Any]]:
    return [
        {
            "id": None,
            "days": list(config.days),
            "start_time": normalize_time(config.start),
            "end_time": normalize_time(config.end),
            "timezone": timezone,
        }
    ]


def windows_for_range(
    records: Iterable[dict[str, Any]],
    range_start: datetime,
    range_end: datetime,
    default_tz: TzLike = None,
) -> list[Interval]:
    """Concrete working windows intersecting ``[range_start, range_end)``."""
    windows: list[Interval] = []
    for record in records:
        days = set(record.get("days") or [])
        if not days:
            continue
        zone = get_zone(record.get("timezone") or default_tz)
        start_t = parse_time(record["start_time"])
        end_t = parse_time(record["end_time"])

        day = range_start.astimezone(zone).date() - timedelta(days=1)
        last_day = range_end.astimezone(zone).date() + timedelta(days=1)
        while day <= last_day:
            if (day.weekday() + 1) % 7 in days:
                start = max(datetime.combine(day, start_t, tzinfo=zone), range_start)
                end = min(datetime.combine(day, end_t, tzinfo=zone), range_end)
                if start < end:
                    windows.append(Interval(start, end))
            day += timedelta(days=1)
    return merge_intervals(windows)


def find_window(
    records: Iterable[dict[str, Any]], moment: datetime, default_tz: TzLike = None
) -> Optional[Interval]:
    """The working window containing ``moment``, if any."""
    windows = windows_for_range(
        records, moment - timedelta(days=1), moment + timedelta(days=1), default_tz
    )
    for window in windows:
        if window.start <= moment < window.end:
            return window
    return None
