"""Recurring series: creation, instance lookup and scoped mutations.

A change can target one instance, the instance and everything after it, or
the whole series. "This and following" is done the way Google clients do it:
the master's RRULE is truncated before the split and a new series carrying the
remaining occurrences is created.
"""

import logging
from datetime import date, datetime, timedelta
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple, Union

from googleapiclient.errors import HttpError

from cruso.errors import CrusoError, NotFoundError, ValidationError
from cruso.intervals import get_zone, parse_datetime, to_rfc3339
from cruso.recurrence import split_recurrence, to_recurrence_strings
from cruso.services.events import EventsService, conference_request, prepare_event_body

logger = logging.getLogger(__name__)

# Read-only or server-assigned fields that cannot be copied into a new series
_SERIES_SKIP_FIELDS = (
    "id",
    "etag",
    "kind",
    "htmlLink",
    "iCalUID",
    "created",
    "updated",
    "creator",
    "organizer",
    "sequence",
    "status",
    "recurringEventId",
    "originalStartTime",
    "hangoutLink",
    "conferenceData",
    "calendarId",
)


class MutationScope(Enum):
    INSTANCE = "instance"
    FOLLOWING = "following"
    ALL = "all"

    @classmethod
    def from_string(cls, value: Union[str, "MutationScope", None]) -> "MutationScope":
        if isinstance(value, MutationScope):
            return value
        normalized = (value or "all").lower().strip().replace("-", "_")
        if normalized in ("instance", "this", "single", "this_instance"):
            return cls.INSTANCE
        elif normalized in ("following", "future", "this_and_following"):
            return cls.FOLLOWING
        elif normalized in ("all", "series"):
            return cls.ALL
        else:
            raise ValidationError(
                f"Invalid scope '{value}'. Must be 'instance', 'following', or 'all'."
            )


def _normalize_recurrence(value: Any) -> List[str]:
    if value is None or value == [] or value == "":
        raise ValidationError("Recurring events require at least one recurrence rule")
    if isinstance(value, (str, dict)):
        value = [value]
    return to_recurrence_strings(value)


class RecurringEventsService(EventsService):
    def _resolve(self, calendar_id: Optional[str]) -> str:
        return calendar_id or self.get_primary_calendar_id()

    def _series_start(self, master: Dict[str, Any]) -> Tuple[Union[date, datetime], bool, str]:
        start = master.get("start") or {}
        tz = start.get("timeZone") or self.user_timezone()
        if start.get("date"):
            return date.fromisoformat(start["date"]), True, tz
        if not start.get("dateTime"):
            raise ValidationError("Recurring event has no start time")
        dtstart = parse_datetime(start["dateTime"], tz).astimezone(get_zone(tz))
        return dtstart, False, tz

    def _parse_original(self, value: str, all_day: bool, tz: str) -> Union[date, datetime]:
        try:
            if all_day:
                return date.fromisoformat(value.strip()[:10])
            return parse_datetime(value, tz).astimezone(get_zone(tz))
        except ValueError as e:
            raise ValidationError(f"Invalid original_start_time: {e}")

    def _get_master(self, calendar_id: str, event_id: str) -> Dict[str, Any]:
        client = self.client_for_calendar(calendar_id)
        event = client.get_event(event_id, calendar_id)
        if not event.get("recurrence") and event.get("recurringEventId"):
            event = client.get_event(event["recurringEventId"], calendar_id)
        if not event.get("recurrence"):
            raise ValidationError(f"Event {event_id} is not a recurring event")
        return event

    @staticmethod
    def _matches_original(instance: Dict[str, Any], original: Union[date, datetime]) -> bool:
        stamp = instance.get("originalStartTime") or {}
        if isinstance(original, datetime):
            if not stamp.get("dateTime"):
                return False
            return parse_datetime(stamp["dateTime"]) == original
        return stamp.get("date") == original.isoformat()

    def _find_instance(
        self,
        calendar_id: str,
        master: Dict[str, Any],
        original_start_time: str,
    ) -> Dict[str, Any]:
        """Locate the instance whose originalStartTime matches."""
        client = self.client_for_calendar(calendar_id)
        _, all_day, tz = self._series_start(master)
        original = self._parse_original(original_start_time, all_day, tz)
        original_param = original.isoformat() if all_day else to_rfc3339(original)

        candidates = client.list_instances(
            master["id"], calendar_id, original_start=original_param
        )
        for instance in candidates:
            if self._matches_original(instance, original):
                return instance

        if isinstance(original, datetime):
            day_start = original - timedelta(days=1)
            day_end = original + timedelta(days=1)
        else:
            day_start = datetime.combine(original - timedelta(days=1), datetime.min.time(), tzinfo=get_zone(tz))
            day_end = datetime.combine(original + timedelta(days=2), datetime.min.time(), tzinfo=get_zone(tz))
        for instance in client.list_instances(
            master["id"],
            calendar_id,
            time_min=to_rfc3339(day_start),
            time_max=to_rfc3339(day_end),
        ):
            if self._matches_original(instance, original):
                return instance

        raise NotFoundError(
            f"No instance of event {master['id']} starts at {original_start_time}"
        )

    def _require_original(self, scope: MutationScope, original_start_time: Optional[str]) -> str:
        if not original_start_time:
            raise ValidationError(
                f"original_start_time is required for scope '{scope.value}'"
            )
        return original_start_time

    # Reads and creation

    def create_recurring_event(
        self,
        calendar_id: Optional[str],
        event: Dict[str, Any],
        send_updates: Optional[str] = None,
    ) -> Dict[str, Any]:
        calendar_id = self._resolve(calendar_id)
        recurrence = _normalize_recurrence(event.get("recurrence"))
        time_zone = event.get("timeZone") or self.user_timezone()
        body = prepare_event_body(event, time_zone)
        body.pop("timeZone", None)
        body["recurrence"] = recurrence
        if "dateTime" in body["start"]:
            # Google needs a named zone to expand an RRULE
            body["start"].setdefault("timeZone", time_zone)
            body["end"].setdefault("timeZone", time_zone)

        created = self.client_for_calendar(calendar_id).create_event(
            body,
            calendar_id,
            conference_data_version=1 if body.get("conferenceData") else 0,
            send_updates=send_updates,
        )
        logger.info(f"Created recurring event {created.get('id')} in {calendar_id}")
        return self._annotate(created, calendar_id)

    def create_recurring_event_in_primary_calendar(
        self, event: Dict[str, Any], send_updates: Optional[str] = None
    ) -> Dict[str, Any]:
        return self.create_recurring_event(None, event, send_updates)

    def get_recurring_event(self, calendar_id: Optional[str], event_id: str) -> Dict[str, Any]:
        calendar_id = self._resolve(calendar_id)
        return self._annotate(self._get_master(calendar_id, event_id), calendar_id)

    def get_recurring_event_instances(
        self,
        calendar_id: Optional[str],
        event_id: str,
        time_min: Optional[str] = None,
        time_max: Optional[str] = None,
        max_results: Optional[int] = None,
        time_zone: Optional[str] = None,
        show_deleted: Optional[bool] = None,
    ) -> List[Dict[str, Any]]:
        calendar_id = self._resolve(calendar_id)
        instances = self.client_for_calendar(calendar_id).list_instances(
            event_id,
            calendar_id,
            time_min=time_min,
            time_max=time_max,
            max_results=max_results,
            time_zone=time_zone,
            show_deleted=show_deleted,
        )
        return [self._annotate(instance, calendar_id) for instance in instances]

    # Scoped updates

    def update_recurring_event(
        self,
        calendar_id: Optional[str],
        event_id: str,
        updates: Dict[str, Any],
        scope: Union[str, MutationScope] = MutationScope.ALL,
        original_start_time: Optional[str] = None,
        send_updates: Optional[str] = None,
    ) -> Dict[str, Any]:
        scope = MutationScope.from_string(scope)
        calendar_id = self._resolve(calendar_id)
        if not updates:
            raise ValidationError("No event fields to update")

        if scope is MutationScope.ALL:
            master = self._get_master(calendar_id, event_id)
            updated = self._patch_series(calendar_id, master, updates, send_updates)
            return {"scope": scope.value, "event": updated}

        original_start_time = self._require_original(scope, original_start_time)
        master = self._get_master(calendar_id, event_id)

        if scope is MutationScope.INSTANCE:
            if "recurrence" in updates:
                raise ValidationError("recurrence cannot be changed on a single instance")
            instance = self._find_instance(calendar_id, master, original_start_time)
            _, _, tz = self._series_start(master)
            body = prepare_event_body(updates, updates.get("timeZone") or tz, require_times=False)
            body.pop("timeZone", None)
            updated = self.client_for_calendar(calendar_id).patch_event(
                instance["id"], body, calendar_id, send_updates=send_updates
            )
            return {"scope": scope.value, "event": self._annotate(updated, calendar_id)}

        return self._split_series(
            calendar_id, master, updates, original_start_time, send_updates
        )

    def _patch_series(
        self,
        calendar_id: str,
        master: Dict[str, Any],
        updates: Dict[str, Any],
        send_updates: Optional[str] = None,
    ) -> Dict[str, Any]:
        _, _, tz = self._series_start(master)
        body = prepare_event_body(updates, updates.get("timeZone") or tz, require_times=False)
        body.pop("timeZone", None)
        if "recurrence" in updates:
            body["recurrence"] = _normalize_recurrence(updates["recurrence"])
        updated = self.client_for_calendar(calendar_id).patch_event(
            master["id"],
            body,
            calendar_id,
            conference_data_version=1 if body.get("conferenceData") else None,
            send_updates=send_updates,
        )
        return self._annotate(updated, calendar_id)

    def _new_series_times(
        self,
        master: Dict[str, Any],
        split: Union[date, datetime],
        tz: str,
    ) -> Tuple[Dict[str, Any], Dict[str, Any]]:
        """Start/end for the tail series: master's duration, placed on the split."""
        start = master["start"]
        end = master["end"]
        if isinstance(split, datetime):
            duration = parse_datetime(end["dateTime"], end.get("timeZone") or tz) - parse_datetime(
                start["dateTime"], tz
            )
            return (
                {"dateTime": split.isoformat(), "timeZone": tz},
                {"dateTime": (split + duration).isoformat(), "timeZone": end.get("timeZone") or tz},
            )
        days = date.fromisoformat(end["date"]) - date.fromisoformat(start["date"])
        return {"date": split.isoformat()}, {"date": (split + days).isoformat()}

    def _split_series(
        self,
        calendar_id: str,
        master: Dict[str, Any],
        updates: Dict[str, Any],
        original_start_time: str,
        send_updates: Optional[str] = None,
    ) -> Dict[str, Any]:
        dtstart, all_day, tz = self._series_start(master)
        split = self._parse_original(original_start_time, all_day, tz)

        if split <= dtstart:
            updated = self._patch_series(calendar_id, master, updates, send_updates)
            return {"scope": MutationScope.FOLLOWING.value, "original": updated, "new": None}

        head, tail = split_recurrence(master["recurrence"], dtstart, split)
        if "recurrence" in updates:
            tail = _normalize_recurrence(updates["recurrence"])
        if not tail:
            raise ValidationError("No occurrences remain after the split point")

        new_body = {
            key: value for key, value in master.items() if key not in _SERIES_SKIP_FIELDS
        }
        new_body["start"], new_body["end"] = self._new_series_times(master, split, tz)
        changes = prepare_event_body(updates, updates.get("timeZone") or tz, require_times=False)
        changes.pop("timeZone", None)
        changes.pop("recurrence", None)
        new_body.update(changes)
        new_body["recurrence"] = tail
        if master.get("conferenceData") and "conferenceData" not in changes:
            new_body["conferenceData"] = conference_request()

        client = self.client_for_calendar(calendar_id)
        truncated = client.patch_event(
            master["id"], {"recurrence": head}, calendar_id, send_updates=send_updates
        )
        try:
            created = client.create_event(
                new_body,
                calendar_id,
                conference_data_version=1 if new_body.get("conferenceData") else 0,
                send_updates=send_updates,
            )
        except (HttpError, CrusoError):
            logger.error(
                f"Creating the new series for {master['id']} failed; restoring its recurrence"
            )
            client.patch_event(
                master["id"], {"recurrence": master["recurrence"]}, calendar_id
            )
            raise

        logger.info(
            f"Split recurring event {master['id']} at {original_start_time} into {created.get('id')}"
        )
        return {
            "scope": MutationScope.FOLLOWING.value,
            "original": self._annotate(truncated, calendar_id),
            "new": self._annotate(created, calendar_id),
        }

    def update_recurring_event_instance(
        self,
        calendar_id: Optional[str],
        event_id: str,
        original_start_time: str,
        updates: Dict[str, Any],
    ) -> Dict[str, Any]:
        return self.update_recurring_event(
            calendar_id, event_id, updates, MutationScope.INSTANCE, original_start_time
        )

    def update_future_recurring_events(
        self,
        calendar_id: Optional[str],
        event_id: str,
        original_start_time: str,
        updates: Dict[str, Any],
    ) -> Dict[str, Any]:
        return self.update_recurring_event(
            calendar_id, event_id, updates, MutationScope.FOLLOWING, original_start_time
        )

    def reschedule_recurring_event(
        self,
        calendar_id: Optional[str],
        event_id: str,
        start: str,
        end: str,
        time_zone: Optional[str] = None,
        scope: Union[str, MutationScope] = MutationScope.ALL,
        original_start_time: Optional[str] = None,
    ) -> Dict[str, Any]:
        time_zone = time_zone or self.user_timezone()
        try:
            start_dt = parse_datetime(start, time_zone)
            end_dt = parse_datetime(end, time_zone)
        except ValueError as e:
            raise ValidationError(str(e))
        if end_dt <= start_dt:
            raise ValidationError("End time must be after start time")

        updates = {
            "start": {"dateTime": start_dt.isoformat(), "timeZone": time_zone},
            "end": {"dateTime": end_dt.isoformat(), "timeZone": time_zone},
        }
        return self.update_recurring_event(
            calendar_id, event_id, updates, scope, original_start_time
        )

    def reschedule_recurring_event_in_primary_calendar(
        self,
        event_id: str,
        start: str,
        end: str,
        time_zone: Optional[str] = None,
        scope: Union[str, MutationScope] = MutationScope.ALL,
        original_start_time: Optional[str] = None,
    ) -> Dict[str, Any]:
        return self.reschedule_recurring_event(
            None, event_id, start, end, time_zone, scope, original_start_time
        )

    # Deletion

    def delete_recurring_event(
        self,
        calendar_id: Optional[str],
        event_id: str,
        scope: Union[str, MutationScope] = MutationScope.ALL,
        original_start_time: Optional[str] = None,
        send_updates: Optional[str] = None,
    ) -> Dict[str, Any]:
        scope = MutationScope.from_string(scope)
        calendar_id = self._resolve(calendar_id)
        client = self.client_for_calendar(calendar_id)
        result: Dict[str, Any] = {
            "deleted": True,
            "scope": scope.value,
            "event_id": event_id,
            "calendarId": calendar_id,
        }

        if scope is MutationScope.ALL:
            master = self._get_master(calendar_id, event_id)
            client.delete_event(master["id"], calendar_id, send_updates)
            return result

        original_start_time = self._require_original(scope, original_start_time)
        master = self._get_master(calendar_id, event_id)

        if scope is MutationScope.INSTANCE:
            instance = self._find_instance(calendar_id, master, original_start_time)
            client.delete_event(instance["id"], calendar_id, send_updates)
            result["instance_id"] = instance["id"]
            return result

        dtstart, all_day, tz = self._series_start(master)
        split = self._parse_original(original_start_time, all_day, tz)
        if split <= dtstart:
            client.delete_event(master["id"], calendar_id, send_updates)
            return result

        head, tail = split_recurrence(master["recurrence"], dtstart, split)
        if not tail:
            raise NotFoundError(
                f"Event {master['id']} has no occurrences on or after {original_start_time}"
            )
        result["event"] = self._annotate(
            client.patch_event(
                master["id"], {"recurrence": head}, calendar_id, send_updates=send_updates
            ),
            calendar_id,
        )
        return result

    def delete_recurring_event_from_primary_calendar(
        self,
        event_id: str,
        scope: Union[str, MutationScope] = MutationScope.ALL,
        original_start_time: Optional[str] = None,
    ) -> Dict[str, Any]:
        return self.delete_recurring_event(None, event_id, scope, original_start_time)

    def batch_create_recurring_events_in_primary_calendar(
        self, events: List[Dict[str, Any]]
    ) -> Dict[str, List[Dict[str, Any]]]:
        successful: List[Dict[str, Any]] = []
        failed: List[Dict[str, Any]] = []
        for event in events:
            try:
                created = self.create_recurring_event(None, event)
                successful.append({"event": event, "result": created})
            except (CrusoError, HttpError) as e:
                logger.warning(f"Batch recurring create failed: {e}")
                failed.append({"event": event, "error": str(e)})
        return {"successful": successful, "failed": failed}
