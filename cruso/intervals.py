"""Time interval algebra used by availability and slot search."""

import logging
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta, timezone, tzinfo
from typing import Any, Iterable, Optional, Union
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from dateutil import parser as dateutil_parser

from cruso.errors import ValidationError

logger = logging.getLogger(__name__)

TzLike = Union[str, tzinfo, None]


def get_zone(tz: TzLike) -> tzinfo:
    if tz is None:
        return timezone.utc
    if isinstance(tz, str):
        try:
            return ZoneInfo(tz)
        except (ZoneInfoNotFoundError, ValueError):
            raise ValidationError(f"Invalid timezone '{tz}'")
    return tz


def parse_datetime(value: Union[str, datetime, date], default_tz: TzLike = None) -> datetime:
    """Parse an RFC 3339 value into an aware datetime.

    Naive values are interpreted in ``default_tz`` (UTC when omitted) and
    date-only values mean midnight of that day.
    """
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, date):
        parsed = datetime.combine(value, time.min)
    else:
        try:
            parsed = dateutil_parser.isoparse(value)
        except (ValueError, TypeError) as e:
            raise ValidationError(f"Invalid datetime '{value}': {e}")

    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=get_zone(default_tz))
    return parsed


def to_rfc3339(value: datetime) -> str:
    return value.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


@dataclass(frozen=True, order=True)
class Interval:
    start: datetime
    end: datetime

    def __post_init__(self):
        if self.start.tzinfo is None or self.end.tzinfo is None:
            raise ValueError("Interval bounds must be timezone-aware")
        if self.start >= self.end:
            raise ValueError(
                f"Interval start must be before end ({self.start.isoformat()} >= {self.end.isoformat()})"
            )

    @property
    def duration(self) -> timedelta:
        return self.end - self.start

    def overlaps(self, other: "Interval") -> bool:
        return self.start < other.end and self.end > other.start

    def contains(self, other: "Interval") -> bool:
        return self.start <= other.start and other.end <= self.end

    def expand(self, before_minutes: int = 0, after_minutes: int = 0) -> "Interval":
        return Interval(
            self.start - timedelta(minutes=before_minutes),
            self.end + timedelta(minutes=after_minutes),
        )

    def to_dict(self, tz: TzLike = None) -> dict[str, str]:
        zone = get_zone(tz)
        return {
            "start": self.start.astimezone(zone).isoformat(),
            "end": self.end.astimezone(zone).isoformat(),
        }

    @classmethod
    def parse(cls, start: Any, end: Any, default_tz: TzLike = None) -> "Interval":
        return cls(parse_datetime(start, default_tz), parse_datetime(end, default_tz))


def merge_intervals(intervals: Iterable[Interval]) -> list[Interval]:
    """Union of intervals, sorted by start. Touching intervals are joined."""
    merged: list[Interval] = []
    for interval in sorted(intervals):
        if merged and interval.start <= merged[-1].end:
            last = merged[-1]
            if interval.end > last.end:
                merged[-1] = Interval(last.start, interval.end)
        else:
            merged.append(interval)
    return merged


def subtract_intervals(window: Interval, busy: Iterable[Interval]) -> list[Interval]:
    """Free gaps left in ``window`` once ``busy`` is removed."""
    free: list[Interval] = []
    cursor = window.start
    for block in merge_intervals(busy):
        if block.end <= cursor:
            continue
        if block.start >= window.end:
            break
        if block.start > cursor:
            free.append(Interval(cursor, block.start))
        cursor = max(cursor, block.end)
        if cursor >= window.end:
            break
    if cursor < window.end:
        free.append(Interval(cursor, window.end))
    return free


def conflicts(candidate: Interval, busy: Iterable[Interval]) -> list[Interval]:
    return [block for block in busy if candidate.overlaps(block)]


def intervals_from_freebusy(response: dict[str, Any]) -> list[Interval]:
    """Collect busy blocks from every calendar of a freebusy response.

    Calendars reporting errors (e.g. notFound) contribute nothing.
    """
    intervals: list[Interval] = []
    for info in (response.get("calendars") or {}).values():
        if info.get("errors"):
            continue
        for busy in info.get("busy", []):
            try:
                intervals.append(Interval.parse(busy["start"], busy["end"]))
            except (KeyError, ValueError) as e:
                logger.debug(f"Skipping malformed busy block {busy}: {e}")
    return intervals


def blocks_time(event: dict[str, Any]) -> bool:
    """Whether an event makes its owner busy."""
    if event.get("status") == "cancelled":
        return False
    if event.get("transparency") == "transparent":
        return False
    for attendee in event.get("attendees") or []:
        if attendee.get("self") and attendee.get("responseStatus") == "declined":
            return False
    return True


def event_interval(event: dict[str, Any], tz: TzLike = None) -> Optional[Interval]:
    """Interval covered by a Google event resource, or None if it has none."""
    if event.get("status") == "cancelled":
        return None

    start = event.get("start") or {}
    end = event.get("end") or {}

    if start.get("dateTime") and end.get("dateTime"):
        start_dt = parse_datetime(start["dateTime"], start.get("timeZone") or tz)
        end_dt = parse_datetime(end["dateTime"], end.get("timeZone") or tz)
    elif start.get("date") and end.get("date"):
        zone = get_zone(tz)
        start_dt = datetime.combine(
            date.fromisoformat(start["date"]), time.min, tzinfo=zone
        )
        end_dt = datetime.combine(date.fromisoformat(end["date"]), time.min, tzinfo=zone)
    else:
        return None

    if end_dt <= start_dt:
        return None
    return Interval(start_dt, end_dt)
