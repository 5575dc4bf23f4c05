"""User preferences and the markdown preferences document."""

import logging
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional

from cruso.config import DEFAULT_TIMEZONE
from cruso.db.queries.preferences import PREFERENCE_COLUMNS
from cruso.errors import NotFoundError, ValidationError
from cruso.intervals import get_zone
from cruso.rules import PREFERENCE_DEFAULTS
from cruso.working_hours import DAY_NAMES, parse_time

logger = logging.getLogger(__name__)

NUMERIC_FIELDS = (
    "min_notice_minutes",
    "max_days_ahead",
    "default_meeting_duration_minutes",
    "buffer_before_minutes",
    "buffer_after_minutes",
    "in_person_buffer_before_minutes",
    "in_person_buffer_after_minutes",
    "back_to_back_limit_minutes",
    "back_to_back_buffer_minutes",
    "travel_buffer_minutes",
)
TEXT_LIMITS = {"display_name": 255, "nickname": 255, "timezone": 100}
UPDATABLE_FIELDS = set(PREFERENCE_COLUMNS) - {"document"}


def _clock(value: Any) -> str:
    return parse_time(value).strftime("%I:%M %p").lstrip("0")


def _day_ranges(days: Iterable[int]) -> str:
    """``[1, 2, 3, 5]`` -> ``Monday to Wednesday, Friday``."""
    ordered = sorted(set(days), key=lambda d: (d - 1) % 7)
    groups: List[List[int]] = []
    for day in ordered:
        if groups and (groups[-1][-1] + 1) % 7 == day and day != 1:
            groups[-1].append(day)
        else:
            groups.append([day])
    parts = []
    for group in groups:
        if len(group) == 1:
            parts.append(DAY_NAMES[group[0]])
        else:
            parts.append(f"{DAY_NAMES[group[0]]} to {DAY_NAMES[group[-1]]}")
    return ", ".join(parts)


def _notice_text(minutes: int) -> str:
    hours, rest = divmod(minutes, 60)
    if hours and rest:
        return f"{hours} hours and {rest} minutes"
    if hours:
        return f"{hours} hours"
    return f"{rest} minutes"


def _buffer_line(label: str, minutes: Optional[int], suffix: str = "buffer") -> str:
    if not minutes:
        return f"  - {label}: No buffer\n"
    return f"  - {label}: {minutes} minutes {suffix}\n"


def generate_preferences_document(
    prefs: Dict[str, Any], availability: Optional[List[Dict[str, Any]]] = None
) -> str:
    sections: List[str] = ["# General Preferences\n"]

    if prefs.get("display_name") or prefs.get("nickname"):
        sections.append("## Personal Info\n")
        if prefs.get("display_name"):
            sections.append(f"- My full name is {prefs['display_name']}.\n")
        if prefs.get("nickname"):
            sections.append(f"- You can call me {prefs['nickname']}.\n")

    timezone = prefs.get("timezone")
    if availability:
        sections.append("## Availability\n")
        for record in availability:
            sections.append(
                f"- My working hours are typically {_day_ranges(record['days'])}, "
                f"{_clock(record['start_time'])} to {_clock(record['end_time'])}.\n"
            )
        timezone = availability[0].get("timezone") or timezone
    if timezone:
        if not availability:
            sections.append("## Availability\n")
        sections.append(f"- My timezone is usually {timezone}.\n")

    sections.append("## Scheduling\n")
    sections.append(
        f"- Minimum notice for meetings: {_notice_text(prefs.get('min_notice_minutes') or 0)}.\n"
    )
    sections.append(f"- Meetings can be booked up to {prefs.get('max_days_ahead')} days ahead.\n")
    sections.append(
        f"- I usually schedule {prefs.get('default_meeting_duration_minutes')}-minute meetings.\n"
    )
    sections.append("- Apply these buffer rules:\n")
    before = prefs.get("buffer_before_minutes") or 0
    after = prefs.get("buffer_after_minutes") or 0
    if before or after:
        sections.append(f"  - Virtual meetings: {before} minutes before, {after} minutes after\n")
    else:
        sections.append("  - Virtual meetings: No buffer\n")
    in_before = prefs.get("in_person_buffer_before_minutes") or 0
    in_after = prefs.get("in_person_buffer_after_minutes") or 0
    if in_before or in_after:
        sections.append(
            f"  - In-person events: {in_before} minutes before, {in_after} minutes after\n"
        )
    else:
        sections.append("  - In-person events: No buffer\n")
    sections.append(_buffer_line("Back-to-back", prefs.get("back_to_back_buffer_minutes")))
    sections.append(
        _buffer_line("Travel", prefs.get("travel_buffer_minutes"), "before and after")
    )
    if prefs.get("back_to_back_limit_minutes"):
        sections.append(
            f"- Avoid more than {prefs['back_to_back_limit_minutes']} minutes of back-to-back meetings.\n"
        )
    if prefs.get("cluster_meetings"):
        sections.append("- I prefer meetings clustered together.\n")

    return "".join(sections)


def serialize_preferences(prefs: Dict[str, Any]) -> Dict[str, Any]:
    data = dict(prefs)
    for key in ("created_at", "updated_at"):
        if isinstance(data.get(key), datetime):
            data[key] = data[key].isoformat()
    return data


class PreferencesService:
    def __init__(
        self,
        database: Any,
        user_id: str,
        default_timezone: str = DEFAULT_TIMEZONE,
        assistant_name: str = "Cruso",
    ):
        self.database = database
        self.user_id = user_id
        self.default_timezone = default_timezone
        self.assistant_name = assistant_name

    def _availability(self) -> List[Dict[str, Any]]:
        return self.database.list_schedule_entries("availability", self.user_id)

    def get_or_create_preferences(self) -> Dict[str, Any]:
        prefs = self.database.get_preferences(self.user_id)
        if prefs:
            return prefs

        values = {
            name: value
            for name, value in PREFERENCE_DEFAULTS.items()
            if name in PREFERENCE_COLUMNS
        }
        values["timezone"] = self.default_timezone
        user = self.database.get_user(self.user_id) or {}
        if user.get("name"):
            values["display_name"] = user["name"]
        values["document"] = generate_preferences_document(values, self._availability())

        logger.info(f"Creating default preferences for user {self.user_id}")
        return self.database.upsert_preferences(self.user_id, values)

    def validate_update(self, update: Dict[str, Any]) -> Dict[str, Any]:
        """Check an update and return the writable subset. Errors are reported together."""
        errors: List[str] = []
        unknown = sorted(set(update) - UPDATABLE_FIELDS)
        if unknown:
            errors.append(f"Unknown preference fields: {', '.join(unknown)}")

        for name, limit in TEXT_LIMITS.items():
            value = update.get(name)
            if value is None:
                continue
            if not isinstance(value, str) or len(value) > limit:
                errors.append(f"{name} must be a string with maximum {limit} characters")

        timezone = update.get("timezone")
        if isinstance(timezone, str) and len(timezone) <= 100:
            try:
                get_zone(timezone)
            except ValidationError:
                errors.append(f"timezone '{timezone}' is not a valid IANA timezone")

        for name in NUMERIC_FIELDS:
            value = update.get(name)
            if value is None:
                continue
            if isinstance(value, bool) or not isinstance(value, int) or value < 0:
                errors.append(f"{name} must be a non-negative integer")

        if update.get("cluster_meetings") is not None and not isinstance(
            update["cluster_meetings"], bool
        ):
            errors.append("cluster_meetings must be a boolean")

        if errors:
            raise ValidationError("; ".join(errors))
        return {name: value for name, value in update.items() if name in UPDATABLE_FIELDS}

    def update_preferences(self, update: Dict[str, Any]) -> Dict[str, Any]:
        values = self.validate_update(update)
        if not values:
            raise ValidationError("No preference fields to update")

        current = self.get_or_create_preferences()
        merged = {**current, **values}
        values["document"] = generate_preferences_document(merged, self._availability())
        updated = self.database.upsert_preferences(self.user_id, values)
        logger.info(f"Updated preferences for user {self.user_id}: {', '.join(sorted(values))}")
        return updated

    def delete_preferences(self) -> None:
        if not self.database.delete_preferences(self.user_id):
            raise NotFoundError("Preferences not found")

    def signature(self) -> str:
        prefs = self.database.get_preferences(self.user_id) or {}
        if prefs.get("signature"):
            return f"Best,\n{prefs['signature']}"
        return f"Best,\n{self.assistant_name}"
