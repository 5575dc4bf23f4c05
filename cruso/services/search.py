"""Event search: Google's text search plus filters the API does not offer."""

import inspect
import logging
import re
from dataclasses import dataclass, fields
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, List, Optional

from cruso.errors import NotFoundError, ValidationError
from cruso.intervals import event_interval, get_zone, parse_datetime, to_rfc3339
from cruso.services.events import EventsService

logger = logging.getLogger(__name__)

DEFAULT_WINDOW = timedelta(days=90)


def _snake(name: str) -> str:
    return re.sub(r"(?<!^)(?=[A-Z])", "_", name).lower()


@dataclass
class SearchOptions:
    query: Optional[str] = None
    time_min: Optional[str] = None
    time_max: Optional[str] = None
    attendee_email: Optional[str] = None
    organizer_email: Optional[str] = None
    location: Optional[str] = None
    has_attendees: Optional[bool] = None
    min_duration_minutes: Optional[int] = None
    max_duration_minutes: Optional[int] = None
    recurring_only: Optional[bool] = None
    all_day: Optional[bool] = None
    status: Optional[str] = None
    created_after: Optional[str] = None
    updated_after: Optional[str] = None
    max_results: Optional[int] = None
    order_by: str = "startTime"
    ascending: bool = True
    expand_recurring: bool = True
    include_deleted: bool = False
    timezone: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "SearchOptions":
        known = {f.name for f in fields(cls)}
        values: Dict[str, Any] = {}
        for key, value in (data or {}).items():
            name = _snake(key)
            if name == "is_recurring":
                name = "recurring_only"
            if name not in known:
                raise ValidationError(f"Unknown search option '{key}'")
            if value is not None:
                values[name] = value
        options = cls(**values)
        if options.order_by not in ("startTime", "updated"):
            raise ValidationError("order_by must be 'startTime' or 'updated'")
        if options.max_results is not None and options.max_results <= 0:
            raise ValidationError("max_results must be positive")
        return options


def _after(stamp: Optional[str], cutoff: Optional[str]) -> bool:
    if not cutoff:
        return True
    if not stamp:
        return False
    return parse_datetime(stamp) >= parse_datetime(cutoff)


def matches(event: Dict[str, Any], options: SearchOptions) -> bool:
    """Client-side filters applied after Google's own search."""
    attendees = event.get("attendees") or []

    if options.has_attendees is not None and bool(attendees) != options.has_attendees:
        return False
    if options.attendee_email:
        wanted = options.attendee_email.lower()
        if not any((a.get("email") or "").lower() == wanted for a in attendees):
            return False
    if options.organizer_email:
        organizer = ((event.get("organizer") or {}).get("email") or "").lower()
        if organizer != options.organizer_email.lower():
            return False
    if options.location:
        if options.location.lower() not in (event.get("location") or "").lower():
            return False
    if options.recurring_only is not None:
        recurring = bool(event.get("recurringEventId") or event.get("recurrence"))
        if recurring != options.recurring_only:
            return False
    if options.all_day is not None:
        if bool((event.get("start") or {}).get("date")) != options.all_day:
            return False
    if options.status and event.get("status") != options.status:
        return False
    if not _after(event.get("created"), options.created_after):
        return False
    if not _after(event.get("updated"), options.updated_after):
        return False

    if options.min_duration_minutes or options.max_duration_minutes:
        interval = event_interval(event)
        if interval is None:
            return False
        minutes = interval.duration.total_seconds() / 60
        if options.min_duration_minutes and minutes < options.min_duration_minutes:
            return False
        if options.max_duration_minutes and minutes > options.max_duration_minutes:
            return False
    return True


def _sort_key(event: Dict[str, Any], order_by: str) -> datetime:
    if order_by == "updated" and event.get("updated"):
        return parse_datetime(event["updated"])
    interval = event_interval(event)
    if interval is not None:
        return interval.start
    return datetime.min.replace(tzinfo=timezone.utc)


class SearchService(EventsService):
    def search_events(
        self, calendar_id: str, options: Optional[SearchOptions] = None
    ) -> Dict[str, Any]:
        options = options or SearchOptions()
        now = datetime.now(timezone.utc)
        try:
            tz = options.timezone or self.user_timezone()
            start = parse_datetime(options.time_min, tz) if options.time_min else now - DEFAULT_WINDOW
            end = parse_datetime(options.time_max, tz) if options.time_max else now + DEFAULT_WINDOW
            time_min, time_max = to_rfc3339(start), to_rfc3339(end)
            for cutoff in (options.created_after, options.updated_after):
                if cutoff:
                    parse_datetime(cutoff)
        except ValueError as e:
            raise ValidationError(str(e))

        fetch_limit = min(options.max_results * 2, 250) if options.max_results else 100
        events = self.client_for_calendar(calendar_id).list_events(
            calendar_id,
            time_min=time_min,
            time_max=time_max,
            query=options.query,
            max_results=fetch_limit,
            single_events=options.expand_recurring,
            order_by="startTime" if options.expand_recurring else None,
            time_zone=options.timezone,
            show_deleted=options.include_deleted or None,
        )
        logger.debug(f"Search fetched {len(events)} events from {calendar_id}")

        found = [e for e in events if matches(e, options)]
        found.sort(key=lambda e: _sort_key(e, options.order_by), reverse=not options.ascending)
        if options.max_results:
            found = found[: options.max_results]

        return {
            "events": [self._annotate(e, calendar_id) for e in found],
            "total_count": len(found),
        }

    def search_primary_calendar_events(
        self, options: Optional[SearchOptions] = None
    ) -> Dict[str, Any]:
        return self.search_events(self.get_primary_calendar_id(), options)

    def quick_search_primary_calendar(self, query: str) -> List[Dict[str, Any]]:
        if not query or not query.strip():
            raise ValidationError("Search query is required")
        result = self.search_primary_calendar_events(
            SearchOptions(query=query.strip(), max_results=20)
        )
        return result["events"]

    # Presets

    def todays_meetings(self) -> Dict[str, Any]:
        zone = get_zone(self.user_timezone())
        start = datetime.now(zone).replace(hour=0, minute=0, second=0, microsecond=0)
        return self.search_primary_calendar_events(
            SearchOptions(
                time_min=start.isoformat(),
                time_max=(start + timedelta(days=1)).isoformat(),
                has_attendees=True,
                max_results=50,
            )
        )

    def upcoming_week(self) -> Dict[str, Any]:
        now = datetime.now(timezone.utc)
        return self.search_primary_calendar_events(
            SearchOptions(
                time_min=to_rfc3339(now),
                time_max=to_rfc3339(now + timedelta(days=7)),
                max_results=100,
            )
        )

    def recently_created(self, days: int = 7) -> Dict[str, Any]:
        cutoff = datetime.now(timezone.utc) - timedelta(days=days)
        return self.search_primary_calendar_events(
            SearchOptions(created_after=to_rfc3339(cutoff), max_results=50)
        )

    def with_person(self, email: str, days: int = 30) -> Dict[str, Any]:
        if not email:
            raise ValidationError("email is required")
        now = datetime.now(timezone.utc)
        return self.search_primary_calendar_events(
            SearchOptions(
                time_min=to_rfc3339(now),
                time_max=to_rfc3339(now + timedelta(days=days)),
                attendee_email=email,
                max_results=50,
            )
        )

    def long_meetings(self, min_minutes: int = 60) -> Dict[str, Any]:
        now = datetime.now(timezone.utc)
        return self.search_primary_calendar_events(
            SearchOptions(
                time_min=to_rfc3339(now),
                time_max=to_rfc3339(now + timedelta(days=30)),
                min_duration_minutes=min_minutes,
                max_results=50,
            )
        )

    def recurring_events(self) -> Dict[str, Any]:
        now = datetime.now(timezone.utc)
        return self.search_primary_calendar_events(
            SearchOptions(
                time_min=to_rfc3339(now),
                time_max=to_rfc3339(now + timedelta(days=365)),
                recurring_only=True,
                max_results=100,
            )
        )

    def past_meetings(self, days: int = 30) -> Dict[str, Any]:
        now = datetime.now(timezone.utc)
        return self.search_primary_calendar_events(
            SearchOptions(
                time_min=to_rfc3339(now - timedelta(days=days)),
                time_max=to_rfc3339(now),
                has_attendees=True,
                max_results=50,
            )
        )

    def free_text_search(self, query: str) -> Dict[str, Any]:
        if not query:
            raise ValidationError("query is required")
        return self.search_primary_calendar_events(SearchOptions(query=query, max_results=50))

    def presets(self) -> Dict[str, Callable[..., Dict[str, Any]]]:
        return {
            "todays_meetings": self.todays_meetings,
            "upcoming_week": self.upcoming_week,
            "recently_created": self.recently_created,
            "with_person": self.with_person,
            "long_meetings": self.long_meetings,
            "recurring_events": self.recurring_events,
            "past_meetings": self.past_meetings,
            "free_text_search": self.free_text_search,
        }

    def run_preset(self, name: str, **params: Any) -> Dict[str, Any]:
        preset = self.presets().get(name)
        if preset is None:
            raise NotFoundError(f"Unknown search preset '{name}'")
        try:
            inspect.signature(preset).bind(**params)
        except TypeError as e:
            raise ValidationError(f"Invalid parameters for preset '{name}': {e}")
        return preset(**params)
