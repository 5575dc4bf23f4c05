"""Buffer, notice and back-to-back rules applied on top of raw busy time."""

from dataclasses import dataclass, fields
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Iterable, Optional

from cruso.config import DEFAULT_TIMEZONE
from cruso.intervals import (
    Interval,
    TzLike,
    blocks_time,
    event_interval,
    merge_intervals,
)

PREFERENCE_DEFAULTS: dict[str, Any] = {
    "timezone": DEFAULT_TIMEZONE,
    "min_notice_minutes": 120,
    "max_days_ahead": 60,
    "default_meeting_duration_minutes": 30,
    "buffer_before_minutes": 0,
    "buffer_after_minutes": 0,
    "in_person_buffer_before_minutes": 15,
    "in_person_buffer_after_minutes": 15,
    "travel_buffer_minutes": 0,
    "back_to_back_limit_minutes": None,
    "back_to_back_buffer_minutes": None,
    "cluster_meetings": False,
}

_TRAVEL_KEYWORDS = ("flight", "travel", "airport")


class MeetingType(Enum):
    VIRTUAL = "virtual"
    IN_PERSON = "in_person"
    TRAVEL = "travel"

    @classmethod
    def from_string(cls, value: str) -> "MeetingType":
        normalized = value.lower().strip().replace("-", "_").replace(" ", "_")
        if normalized in ("virtual", "online", "video", "phone", "google_meet"):
            return cls.VIRTUAL
        elif normalized in ("in_person", "inperson", "onsite", "physical"):
            return cls.IN_PERSON
        elif normalized in ("travel", "flight"):
            return cls.TRAVEL
        else:
            raise ValueError(
                f"Invalid meeting type '{value}'. Must be 'virtual', 'in_person', or 'travel'."
            )


def classify_event(event: dict[str, Any]) -> MeetingType:
    """Guess the meeting type of an existing calendar event."""
    summary = (event.get("summary") or "").lower()
    event_type = (event.get("eventType") or "").lower()
    if any(keyword in summary or keyword in event_type for keyword in _TRAVEL_KEYWORDS):
        return MeetingType.TRAVEL
    if event.get("conferenceData") or event.get("hangoutLink"):
        return MeetingType.VIRTUAL
    location = (event.get("location") or "").strip()
    if location and not location.lower().startswith(("http://", "https://")):
        return MeetingType.IN_PERSON
    return MeetingType.VIRTUAL


@dataclass
class SchedulingRules:
    timezone: str = DEFAULT_TIMEZONE
    min_notice_minutes: int = 120
    max_days_ahead: int = 60
    default_meeting_duration_minutes: int = 30
    buffer_before_minutes: int = 0
    buffer_after_minutes: int = 0
    in_person_buffer_before_minutes: int = 15
    in_person_buffer_after_minutes: int = 15
    travel_buffer_minutes: int = 0
    back_to_back_limit_minutes: Optional[int] = None
    back_to_back_buffer_minutes: Optional[int] = None

    @classmethod
    def from_preferences(
        cls, prefs: Optional[dict[str, Any]], default_timezone: str = DEFAULT_TIMEZONE
    ) -> "SchedulingRules":
        prefs = prefs or {}
        values: dict[str, Any] = {}
        for f in fields(cls):
            value = prefs.get(f.name)
            values[f.name] = value if value is not None else PREFERENCE_DEFAULTS[f.name]
        if not prefs.get("timezone"):
            values["timezone"] = default_timezone
        return cls(**values)

    def buffers_for(self, meeting_type: Optional[MeetingType]) -> tuple[int, int]:
        if meeting_type is MeetingType.IN_PERSON:
            return self.in_person_buffer_before_minutes, self.in_person_buffer_after_minutes
        if meeting_type is MeetingType.TRAVEL:
            return (
                max(self.travel_buffer_minutes, self.in_person_buffer_before_minutes),
                max(self.travel_buffer_minutes, self.in_person_buffer_after_minutes),
            )
        return self.buffer_before_minutes, self.buffer_after_minutes

    def notice_window(self, now: datetime) -> tuple[datetime, datetime]:
        return (
            now + timedelta(minutes=self.min_notice_minutes),
            now + timedelta(days=self.max_days_ahead),
        )

    def within_notice(self, start: datetime, now: datetime) -> bool:
        earliest, latest = self.notice_window(now)
        return earliest <= start <= latest

    def violates_back_to_back(self, slot: Interval, busy: Iterable[Interval]) -> bool:
        """True if booking ``slot`` builds a meeting run longer than the limit.

        Blocks closer than the back-to-back buffer (or touching) count as one run.
        """
        if not self.back_to_back_limit_minutes or self.back_to_back_buffer_minutes is None:
            return False

        gap_needed = timedelta(minutes=self.back_to_back_buffer_minutes)
        blocks = merge_intervals(busy)

        def adjacent(gap: timedelta) -> bool:
            return gap <= timedelta(0) or gap < gap_needed

        run_start, run_end = slot.start, slot.end
        for block in reversed([b for b in blocks if b.end <= slot.start]):
            if adjacent(run_start - block.end):
                run_start = min(run_start, block.start)
            else:
                break
        for block in [b for b in blocks if b.start >= slot.end]:
            if adjacent(block.start - run_end):
                run_end = max(run_end, block.end)
            else:
                break

        if (run_start, run_end) == (slot.start, slot.end):
            return False
        return run_end - run_start > timedelta(minutes=self.back_to_back_limit_minutes)

    def slot_is_free(
        self,
        slot: Interval,
        busy: Iterable[Interval],
        meeting_type: Optional[MeetingType] = None,
    ) -> bool:
        """Slot (padded with its meeting type's buffers) clears every busy block."""
        blocks = list(busy)
        padded = slot
        if meeting_type is not None:
            before, after = self.buffers_for(meeting_type)
            padded = slot.expand(before, after)
        if any(padded.overlaps(block) for block in blocks):
            return False
        return not self.violates_back_to_back(slot, blocks)


def busy_from_events(
    events: Iterable[dict[str, Any]], rules: SchedulingRules, tz: TzLike = None
) -> list[Interval]:
    """Busy blocks from event resources, each padded by its type's buffers."""
    padded: list[Interval] = []
    for event in events:
        if not blocks_time(event):
            continue
        interval = event_interval(event, tz or rules.timezone)
        if interval is None:
            continue
        before, after = rules.buffers_for(classify_event(event))
        padded.append(interval.expand(before, after))
    return merge_intervals(padded)
