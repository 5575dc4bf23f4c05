"""Free/busy reconciliation across a user's calendars and accounts."""

import logging
from dataclasses import asdict, dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional, Tuple

from googleapiclient.errors import HttpError

from cruso.config import DEFAULT_TIMEZONE, SchedulingConfig, WorkingHoursConfig
from cruso.errors import CrusoError, ValidationError
from cruso.intervals import (
    Interval,
    blocks_time,
    event_interval,
    get_zone,
    intervals_from_freebusy,
    merge_intervals,
    parse_datetime,
    subtract_intervals,
    to_rfc3339,
)
from cruso.rules import MeetingType, busy_from_events
from cruso.services.events import EventsService
from cruso.working_hours import default_records, windows_for_range

logger = logging.getLogger(__name__)


def _number_option(options: Dict[str, Any], key: str, default: float) -> float:
    value = options.get(key)
    if value is None:
        return default
    try:
        number = float(value)
    except (TypeError, ValueError):
        raise ValidationError(f"{key} must be a number")
    if number < 0:
        raise ValidationError(f"{key} must not be negative")
    return number


@dataclass
class AvailabilityResult:
    is_available: bool
    timezone: str
    time_min: str
    time_max: str
    busy_slots: List[Dict[str, str]] = field(default_factory=list)
    free_slots: List[Dict[str, str]] = field(default_factory=list)
    events: List[Dict[str, Any]] = field(default_factory=list)
    calendars_checked: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class SuggestedTimeSlot:
    start: datetime
    end: datetime
    score: int
    reasoning: List[str] = field(default_factory=list)
    conflicting_attendees: List[str] = field(default_factory=list)
    available_attendees: List[str] = field(default_factory=list)
    working_hours_compliance: bool = True

    def to_dict(self, tz: Any = None) -> Dict[str, Any]:
        zone = get_zone(tz)
        return {
            "start": self.start.astimezone(zone).isoformat(),
            "end": self.end.astimezone(zone).isoformat(),
            "score": self.score,
            "reasoning": list(self.reasoning),
            "conflicting_attendees": list(self.conflicting_attendees),
            "available_attendees": list(self.available_attendees),
            "working_hours_compliance": self.working_hours_compliance,
        }


def format_slot(slot: Interval, tz: Any) -> str:
    """``Mon, Jan 1 from 9:00 AM to 9:30 AM`` in the given zone."""
    zone = get_zone(tz)
    start = slot.start.astimezone(zone)
    end = slot.end.astimezone(zone)

    def clock(moment: datetime) -> str:
        return moment.strftime("%I:%M %p").lstrip("0")

    return f"{start.strftime('%a, %b')} {start.day} from {clock(start)} to {clock(end)}"


def format_slots(slots: List[Interval], tz: Any) -> str:
    if not slots:
        return "No available slots found in the specified time range."
    return "\n".join(
        f"{index}. {format_slot(slot, tz)}" for index, slot in enumerate(slots, start=1)
    )


class AvailabilityService(EventsService):
    def __init__(
        self,
        database: Any,
        user_id: str,
        oauth: Any = None,
        default_timezone: Optional[str] = None,
        scheduling: Optional[SchedulingConfig] = None,
        working_hours: Optional[WorkingHoursConfig] = None,
    ):
        super().__init__(database, user_id, oauth, default_timezone or DEFAULT_TIMEZONE)
        self.scheduling = scheduling or SchedulingConfig()
        self.working_hours = working_hours or WorkingHoursConfig()

    def _parse_range(
        self, time_min: Any, time_max: Any, tz: str
    ) -> Tuple[datetime, datetime]:
        try:
            start = parse_datetime(time_min, tz)
            end = parse_datetime(time_max, tz)
        except ValueError as e:
            raise ValidationError(str(e))
        if end <= start:
            raise ValidationError("time_max must be after time_min")
        if end - start > timedelta(days=self.scheduling.max_range_days):
            raise ValidationError("Time range must be less than 3 months")
        return start, end

    def _query_freebusy(
        self,
        start: datetime,
        end: datetime,
        tz: Optional[str],
        availability_only: bool = False,
        skip_failures: bool = False,
    ) -> List[Dict[str, Any]]:
        """One freebusy response per account owning an active connection."""
        grouped = self.group_by_account(self.get_active_connections(availability_only))
        responses: List[Dict[str, Any]] = []
        for account_id, calendar_ids in grouped.items():
            try:
                response = self.get_client(account_id).freebusy_query(
                    to_rfc3339(start), to_rfc3339(end), calendar_ids, tz
                )
            except (HttpError, CrusoError) as e:
                if not skip_failures:
                    raise
                logger.warning(f"Failed to query free/busy for account {account_id}: {e}")
                continue
            responses.append(response)
        return responses

    # Free/busy text summary

    def get_availability(
        self, time_min: str, time_max: str, time_zone: Optional[str] = None
    ) -> Dict[str, Any]:
        tz = time_zone or self.user_timezone()
        start, end = self._parse_range(time_min, time_max, tz)
        responses = self._query_freebusy(start, end, tz)

        busy: List[Interval] = []
        for response in responses:
            busy.extend(intervals_from_freebusy(response))

        return {
            "summary": self._summarize(responses, time_min, time_max),
            "busy": [interval.to_dict(tz) for interval in merge_intervals(busy)],
            "accounts_checked": len(responses),
        }

    @staticmethod
    def _summarize(responses: List[Dict[str, Any]], time_min: str, time_max: str) -> str:
        sections = []
        for index, response in enumerate(responses, start=1):
            lines = []
            for calendar_id, info in (response.get("calendars") or {}).items():
                errors = info.get("errors") or []
                if any(error.get("reason") == "notFound" for error in errors):
                    lines.append(
                        f"Cannot check availability for {calendar_id} (account not found)"
                    )
                elif not info.get("busy"):
                    lines.append(
                        f"{calendar_id} is available during "
                        f"{response.get('timeMin', time_min)} to {response.get('timeMax', time_max)}"
                    )
                else:
                    busy_lines = "\n".join(
                        f"- From {slot['start']} to {slot['end']}" for slot in info["busy"]
                    )
                    lines.append(f"{calendar_id} is busy during:\n{busy_lines}")
            sections.append(f"Account {index}:\n" + "\n\n".join(lines))
        return "\n\n".join(sections).strip()

    # Block checks

    def _collect_events(
        self, start: datetime, end: datetime, tz: str
    ) -> Tuple[List[Dict[str, Any]], int]:
        connections = self.get_active_connections(availability_only=True)
        events: List[Dict[str, Any]] = []
        for connection in connections:
            calendar_id = connection["calendar_id"]
            try:
                items = self.get_client(connection["account_id"]).list_events(
                    calendar_id,
                    time_min=to_rfc3339(start),
                    time_max=to_rfc3339(end),
                    single_events=True,
                    time_zone=tz,
                )
            except HttpError as e:
                logger.warning(f"Failed to list events for calendar {calendar_id}: {e}")
                continue
            for item in items:
                if blocks_time(item):
                    events.append(
                        {
                            **item,
                            "calendarId": calendar_id,
                            "calendarName": connection.get("calendar_name"),
                        }
                    )
        return events, len(connections)

    def check_availability_block(
        self,
        time_min: str,
        time_max: str,
        time_duration_minutes: Optional[int] = None,
        response_timezone: Optional[str] = None,
    ) -> AvailabilityResult:
        tz = response_timezone or self.user_timezone()
        start, end = self._parse_range(time_min, time_max, tz)
        rules = self.get_rules()
        window = Interval(start, end)

        events, checked = self._collect_events(start, end, tz)
        busy = busy_from_events(events, rules, tz)
        duration = (
            timedelta(minutes=time_duration_minutes)
            if time_duration_minutes
            else window.duration
        )
        free = [gap for gap in subtract_intervals(window, busy) if gap.duration >= duration]

        details = []
        for event in events:
            interval = event_interval(event, tz)
            if interval is None:
                continue
            details.append(
                {
                    "id": event.get("id"),
                    "summary": event.get("summary"),
                    "start": interval.start.astimezone(get_zone(tz)).isoformat(),
                    "end": interval.end.astimezone(get_zone(tz)).isoformat(),
                    "calendar_id": event["calendarId"],
                    "calendar_name": event.get("calendarName"),
                    "_start": interval.start,
                }
            )
        details.sort(key=lambda d: d["_start"])
        for detail in details:
            del detail["_start"]

        return AvailabilityResult(
            is_available=bool(free),
            timezone=tz,
            time_min=start.astimezone(get_zone(tz)).isoformat(),
            time_max=end.astimezone(get_zone(tz)).isoformat(),
            busy_slots=[b.to_dict(tz) for b in busy if b.overlaps(window)],
            free_slots=[f.to_dict(tz) for f in free],
            events=details,
            calendars_checked=checked,
        )

    def create_availability_block(
        self,
        time_min: str,
        time_max: str,
        summary: Optional[str] = None,
        description: Optional[str] = None,
        attendees: Optional[List[str]] = None,
        location: Optional[str] = None,
        conference: bool = False,
        private: bool = False,
        time_zone: Optional[str] = None,
    ) -> Dict[str, Any]:
        """Book a block on the primary calendar unless something already occupies it."""
        tz = time_zone or self.user_timezone()
        check = self.check_availability_block(time_min, time_max, response_timezone=tz)
        if not check.is_available:
            return {
                "state": "conflict",
                "conflicts": check.events,
                "message": f"Time block conflicts with {len(check.events)} existing event(s)",
            }

        event: Dict[str, Any] = {
            "summary": summary or "Busy",
            "start": time_min,
            "end": time_max,
            "timeZone": tz,
        }
        if description:
            event["description"] = description
        if attendees:
            event["attendees"] = attendees
        if location:
            event["location"] = location
        if conference:
            event["conference"] = True
        if private:
            event["visibility"] = "private"

        created = self.create_event_in_primary_calendar(event)
        return {
            "state": "created",
            "block_event_details": created,
            "message": f"Created '{event['summary']}' from {check.time_min} to {check.time_max}",
        }

    # Slot search

    def suggest_slots(
        self,
        time_min: str,
        time_max: str,
        slot_duration_minutes: Optional[int] = None,
        exclude_slots: Optional[List[Dict[str, Any]]] = None,
        time_zone: Optional[str] = None,
        meeting_type: Optional[str] = None,
        max_slots: Optional[int] = None,
    ) -> Dict[str, Any]:
        tz = time_zone or self.user_timezone()
        start, end = self._parse_range(time_min, time_max, tz)
        rules = self.get_rules()
        duration = timedelta(
            minutes=slot_duration_minutes or rules.default_meeting_duration_minutes
        )
        max_slots = max_slots or self.scheduling.max_suggested_slots
        step = timedelta(minutes=self.scheduling.slot_step_minutes)

        kind = None
        if meeting_type:
            try:
                kind = MeetingType.from_string(meeting_type)
            except ValueError as e:
                raise ValidationError(str(e))

        excluded = []
        for slot in exclude_slots or []:
            try:
                excluded.append(
                    Interval.parse(
                        slot.get("start") or slot.get("startTime"),
                        slot.get("end") or slot.get("endTime"),
                        tz,
                    )
                )
            except (TypeError, ValueError) as e:
                raise ValidationError(f"Invalid exclude slot {slot}: {e}")

        responses = self._query_freebusy(start, end, tz, skip_failures=True)
        if not responses:
            logger.warning("No calendar answered the free/busy query; returning no slots")
            return {"slots": [], "text": format_slots([], tz), "timezone": tz}

        busy: List[Interval] = []
        for response in responses:
            busy.extend(intervals_from_freebusy(response))
        busy = merge_intervals(busy)

        local = start.astimezone(get_zone(tz))
        step_minutes = self.scheduling.slot_step_minutes
        cursor = local.replace(
            minute=local.minute - local.minute % step_minutes, second=0, microsecond=0
        )

        slots: List[Interval] = []
        while cursor + duration <= end:
            slot = Interval(cursor, cursor + duration)
            free = (
                rules.slot_is_free(slot, busy, kind)
                if kind
                else not any(slot.overlaps(b) for b in busy)
            )
            if free and not any(slot.overlaps(x) for x in excluded):
                slots.append(slot)
                if len(slots) >= max_slots:
                    break
            cursor += step

        return {
            "slots": [slot.to_dict(tz) for slot in slots],
            "text": format_slots(slots, tz),
            "timezone": tz,
        }

    # Multi-attendee search

    def find_best_time_for_meeting(
        self,
        duration_minutes: int,
        attendee_emails: List[str],
        options: Optional[Dict[str, Any]] = None,
    ) -> List[SuggestedTimeSlot]:
        """Rank candidate slots by how many attendees are free."""
        options = options or {}
        if not duration_minutes or duration_minutes <= 0:
            raise ValidationError("duration_minutes must be a positive integer")

        tz = options.get("timezone") or self.user_timezone()
        now = datetime.now(timezone.utc)
        notice = timedelta(hours=_number_option(options, "minimum_notice_hours", 24))
        search_start = (
            parse_datetime(options["search_range_start"], tz)
            if options.get("search_range_start")
            else now
        )
        search_end = (
            parse_datetime(options["search_range_end"], tz)
            if options.get("search_range_end")
            else search_start + timedelta(days=14)
        )
        search_start = max(search_start, now + notice)
        if search_end <= search_start:
            raise ValidationError("Search range ends before the minimum notice period")
        if search_end - search_start > timedelta(days=self.scheduling.max_range_days):
            raise ValidationError("Time range must be less than 3 months")

        duration = timedelta(minutes=duration_minutes)
        buffer_minutes = _number_option(options, "buffer_minutes", 0)
        max_suggestions = int(_number_option(options, "max_suggestions", 5))
        exclude_weekends = options.get("exclude_weekends", True)
        prefer_mornings = options.get("prefer_mornings", False)
        prefer_afternoons = options.get("prefer_afternoons", False)

        responses = self._query_freebusy(search_start, search_end, tz, skip_failures=True)
        if not responses:
            logger.warning("No calendar answered the free/busy query; no meeting times to rank")
            return []

        own_busy: List[Interval] = []
        for response in responses:
            own_busy.extend(intervals_from_freebusy(response))
        own_busy = merge_intervals(b.expand(buffer_minutes, buffer_minutes) for b in own_busy)

        attendee_busy = self._attendee_busy(attendee_emails, search_start, search_end, tz)

        working = self._working_windows(options, search_start, search_end, tz)
        if options.get("working_hours_only", True):
            windows = working
        else:
            windows = [Interval(search_start, search_end)]

        zone = get_zone(tz)
        step = timedelta(minutes=self.scheduling.slot_step_minutes)
        suggestions: List[SuggestedTimeSlot] = []
        for window in windows:
            local = window.start.astimezone(zone)
            remainder = local.minute % self.scheduling.slot_step_minutes
            cursor = local.replace(second=0, microsecond=0)
            if remainder or local.second or local.microsecond:
                cursor += timedelta(minutes=self.scheduling.slot_step_minutes - remainder)
            while cursor + duration <= window.end:
                slot = Interval(cursor, cursor + duration)
                cursor += step
                if exclude_weekends and slot.start.astimezone(zone).weekday() >= 5:
                    continue
                if any(slot.overlaps(b) for b in own_busy):
                    continue
                suggestions.append(
                    self._score_slot(
                        slot,
                        attendee_emails,
                        attendee_busy,
                        working,
                        zone,
                        prefer_mornings,
                        prefer_afternoons,
                    )
                )

        suggestions.sort(key=lambda s: (-s.score, s.start))
        return suggestions[:max_suggestions]

    def _attendee_busy(
        self,
        attendee_emails: List[str],
        start: datetime,
        end: datetime,
        tz: str,
    ) -> Dict[str, List[Interval]]:
        """Busy time per attendee, read through the user's primary account."""
        if not attendee_emails:
            return {}
        primary = self.database.get_primary_connection(self.user_id)
        if not primary:
            return {email: [] for email in attendee_emails}
        try:
            response = self.get_client(primary["account_id"]).freebusy_query(
                to_rfc3339(start), to_rfc3339(end), list(attendee_emails), tz
            )
        except HttpError as e:
            logger.warning(f"Attendee free/busy lookup failed: {e}")
            return {email: [] for email in attendee_emails}

        calendars = response.get("calendars") or {}
        busy: Dict[str, List[Interval]] = {}
        for email in attendee_emails:
            info = calendars.get(email) or {}
            busy[email] = merge_intervals(
                intervals_from_freebusy({"calendars": {email: info}})
            )
        return busy

    def _working_windows(
        self,
        options: Dict[str, Any],
        start: datetime,
        end: datetime,
        tz: str,
    ) -> List[Interval]:
        override = options.get("working_hours")
        if override:
            try:
                config = WorkingHoursConfig.from_dict(override)
            except (TypeError, ValueError) as e:
                raise ValidationError(f"Invalid working_hours: {e}")
            records = default_records(config, tz)
        else:
            records = self.database.list_schedule_entries("working_hours", self.user_id)
            if not records:
                records = default_records(self.working_hours, tz)
        return windows_for_range(records, start, end, tz)

    @staticmethod
    def _score_slot(
        slot: Interval,
        attendee_emails: List[str],
        attendee_busy: Dict[str, List[Interval]],
        working: List[Interval],
        zone: Any,
        prefer_mornings: bool,
        prefer_afternoons: bool,
    ) -> SuggestedTimeSlot:
        conflicting = [
            email
            for email in attendee_emails
            if any(slot.overlaps(b) for b in attendee_busy.get(email, []))
        ]
        available = [email for email in attendee_emails if email not in conflicting]
        reasoning: List[str] = []

        score = 100.0
        if attendee_emails:
            score -= 100.0 * len(conflicting) / len(attendee_emails)
            if conflicting:
                reasoning.append(
                    f"{len(conflicting)} of {len(attendee_emails)} attendees have conflicts"
                )
            else:
                reasoning.append("All attendees are available")

        hour = slot.start.astimezone(zone).hour
        if prefer_mornings and hour < 12:
            score += 10
            reasoning.append("Morning slot preferred")
        elif prefer_afternoons and hour >= 12:
            score += 10
            reasoning.append("Afternoon slot preferred")

        in_hours = any(window.contains(slot) for window in working)
        if in_hours:
            reasoning.append("Within working hours")
        else:
            reasoning.append("Outside working hours")

        return SuggestedTimeSlot(
            start=slot.start,
            end=slot.end,
            score=int(round(max(0.0, min(100.0, score)))),
            reasoning=reasoning,
            conflicting_attendees=conflicting,
            available_attendees=available,
            working_hours_compliance=in_hours,
        )
