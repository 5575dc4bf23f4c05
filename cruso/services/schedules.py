"""Weekly working hours and bookable availability, stored per user."""

import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from cruso.config import DEFAULT_TIMEZONE, WorkingHoursConfig
from cruso.db.schema import SCHEDULE_TABLES
from cruso.errors import NotFoundError, ValidationError
from cruso.intervals import get_zone, parse_datetime
from cruso.working_hours import (
    default_records,
    find_window,
    format_time_for_ui,
    records_to_schedule,
    schedule_to_records,
    validate_days,
    validate_time_range,
)

logger = logging.getLogger(__name__)


def serialize_entry(record: Dict[str, Any]) -> Dict[str, Any]:
    data = dict(record)
    data["start_time"] = format_time_for_ui(record["start_time"])
    data["end_time"] = format_time_for_ui(record["end_time"])
    for key in ("created_at", "updated_at"):
        if isinstance(data.get(key), datetime):
            data[key] = data[key].isoformat()
    return data


class ScheduleService:
    """CRUD over one schedule table (``working_hours`` or ``availability``)."""

    def __init__(
        self,
        database: Any,
        user_id: str,
        kind: str = "working_hours",
        default_timezone: str = DEFAULT_TIMEZONE,
    ):
        if kind not in SCHEDULE_TABLES:
            raise ValueError(f"Unknown schedule kind '{kind}'")
        self.database = database
        self.user_id = user_id
        self.kind = kind
        self.default_timezone = default_timezone

    @property
    def label(self) -> str:
        return self.kind.replace("_", " ")

    def _user_timezone(self) -> str:
        prefs = self.database.get_preferences(self.user_id) or {}
        return prefs.get("timezone") or self.default_timezone

    def _validate_timezone(self, value: Optional[str]) -> str:
        tz = value or self._user_timezone()
        get_zone(tz)
        return tz

    def list_entries(self) -> List[Dict[str, Any]]:
        return self.database.list_schedule_entries(self.kind, self.user_id)

    def get_entry(self, entry_id: int) -> Dict[str, Any]:
        entry = self.database.get_schedule_entry(self.kind, self.user_id, entry_id)
        if not entry:
            raise NotFoundError(f"{self.label.capitalize()} entry {entry_id} not found")
        return entry

    def create_entry(
        self,
        days: Any,
        start_time: Any,
        end_time: Any,
        timezone: Optional[str] = None,
    ) -> Dict[str, Any]:
        days = validate_days(days)
        if start_time is None or end_time is None:
            raise ValidationError("start_time and end_time are required")
        start, end = validate_time_range(start_time, end_time)
        tz = self._validate_timezone(timezone)

        entry = self.database.create_schedule_entry(
            self.kind, self.user_id, days, start, end, tz
        )
        logger.info(f"Created {self.label} entry {entry.get('id')} for user {self.user_id}")
        return entry

    def update_entry(self, entry_id: int, **changes: Any) -> Dict[str, Any]:
        """Partial update. Omitted fields keep their stored values."""
        current = self.get_entry(entry_id)
        values: Dict[str, Any] = {}

        if changes.get("days") is not None:
            values["days"] = validate_days(changes["days"])
        start_time = changes.get("start_time")
        end_time = changes.get("end_time")
        if start_time is not None or end_time is not None:
            start, end = validate_time_range(
                start_time if start_time is not None else current["start_time"],
                end_time if end_time is not None else current["end_time"],
            )
            values["start_time"] = start
            values["end_time"] = end
        if changes.get("timezone") is not None:
            values["timezone"] = self._validate_timezone(changes["timezone"])

        if not values:
            raise ValidationError("No fields to update")

        updated = self.database.update_schedule_entry(
            self.kind, self.user_id, entry_id, values
        )
        if not updated:
            raise NotFoundError(f"{self.label.capitalize()} entry {entry_id} not found")
        return updated

    def delete_entry(self, entry_id: int) -> None:
        if not self.database.delete_schedule_entry(self.kind, self.user_id, entry_id):
            raise NotFoundError(f"{self.label.capitalize()} entry {entry_id} not found")

    def create_default(self) -> Dict[str, Any]:
        """Monday to Friday, 09:00 to 17:00 in the user's timezone."""
        record = default_records(WorkingHoursConfig(), self._user_timezone())[0]
        return self.create_entry(
            record["days"], record["start_time"], record["end_time"], record["timezone"]
        )

    def get_schedule(self) -> Dict[str, Any]:
        return records_to_schedule(self.list_entries())

    def replace_schedule(
        self, schedule: Dict[str, Any], timezone: Optional[str] = None
    ) -> Dict[str, Any]:
        if not isinstance(schedule, dict):
            raise ValidationError("schedule must be an object keyed by day name")
        tz = self._validate_timezone(timezone)
        records = schedule_to_records(schedule)
        for record in records:
            record["timezone"] = tz
        stored = self.database.replace_schedule_entries(self.kind, self.user_id, records)
        logger.info(f"Replaced {self.label} schedule for user {self.user_id} ({len(stored)} entries)")
        return records_to_schedule(stored)

    def check(self, moment: Optional[str] = None) -> Dict[str, Any]:
        """Whether ``moment`` (default now) falls inside the schedule."""
        tz = self._user_timezone()
        when = parse_datetime(moment, tz) if moment else datetime.now(timezone.utc)
        records = self.list_entries()
        window = find_window(records, when, tz)
        return {
            "within": window is not None,
            "time": when.astimezone(get_zone(tz)).isoformat(),
            "window": window.to_dict(tz) if window else None,
        }
