"""Event CRUD across a user's connected calendars."""

import logging
import uuid
from datetime import date, datetime
from typing import Any, Dict, List, Optional, Union

from googleapiclient.errors import HttpError

from cruso.errors import CrusoError, ValidationError
from cruso.intervals import event_interval, parse_datetime
from cruso.services.connections import BaseCalendarService

logger = logging.getLogger(__name__)

BATCH_OPERATION_TYPES = ("create", "update", "delete")


def time_field(value: Union[str, datetime, date, Dict[str, Any]], time_zone: Optional[str]) -> Dict[str, Any]:
    """Turn a start/end value into a Google ``EventDateTime``.

    Dicts pass through, ``YYYY-MM-DD`` strings become all-day dates.
    """
    if isinstance(value, dict):
        field = dict(value)
        if field.get("dateTime") and time_zone and not field.get("timeZone"):
            field["timeZone"] = time_zone
        return field
    if isinstance(value, date) and not isinstance(value, datetime):
        return {"date": value.isoformat()}
    if isinstance(value, str) and len(value.strip()) == 10:
        try:
            return {"date": date.fromisoformat(value.strip()).isoformat()}
        except ValueError:
            raise ValidationError(f"Invalid date '{value}'")
    try:
        moment = parse_datetime(value, time_zone)
    except ValueError as e:
        raise ValidationError(str(e))
    field = {"dateTime": moment.isoformat()}
    if time_zone:
        field["timeZone"] = time_zone
    return field


def conference_request() -> Dict[str, Any]:
    return {
        "createRequest": {
            "requestId": uuid.uuid4().hex,
            "conferenceSolutionKey": {"type": "hangoutsMeet"},
        }
    }


def prepare_event_body(
    event: Dict[str, Any], time_zone: Optional[str], require_times: bool = True
) -> Dict[str, Any]:
    """Normalize an event payload before it is sent to Google."""
    body = {key: value for key, value in event.items() if key not in ("conference", "calendarId")}

    for key in ("start", "end"):
        if body.get(key) is not None:
            body[key] = time_field(body[key], time_zone)
        elif require_times:
            raise ValidationError(f"Event {key} is required")

    if body.get("start") and body.get("end"):
        if ("date" in body["start"]) != ("date" in body["end"]):
            raise ValidationError("Event start and end must both be dates or both be date-times")
        interval_check = {"start": body["start"], "end": body["end"]}
        if event_interval(interval_check, time_zone) is None:
            raise ValidationError("Event end time must be after start time")

    attendees = body.get("attendees")
    if attendees:
        body["attendees"] = [
            {"email": a} if isinstance(a, str) else a for a in attendees
        ]

    if event.get("conference") and not body.get("conferenceData"):
        body["conferenceData"] = conference_request()
    return body


class EventsService(BaseCalendarService):
    def _annotate(self, event: Dict[str, Any], calendar_id: str) -> Dict[str, Any]:
        return {**event, "calendarId": calendar_id}

    def list_events(
        self,
        calendar_id: str,
        time_min: Optional[str] = None,
        time_max: Optional[str] = None,
        query: Optional[str] = None,
        max_results: Optional[int] = None,
        page_token: Optional[str] = None,
        single_events: bool = True,
        order_by: Optional[str] = None,
        time_zone: Optional[str] = None,
    ) -> Dict[str, Any]:
        client = self.client_for_calendar(calendar_id)
        if order_by is None and single_events:
            order_by = "startTime"
        result = client.list_events_page(
            calendar_id,
            timeMin=time_min,
            timeMax=time_max,
            q=query,
            maxResults=max_results,
            pageToken=page_token,
            singleEvents=single_events,
            orderBy=order_by,
            timeZone=time_zone,
        )
        return {
            "events": [
                self._annotate(event, calendar_id) for event in result.get("items", [])
            ],
            "next_page_token": result.get("nextPageToken"),
        }

    def list_events_from_primary_calendar(self, **options: Any) -> Dict[str, Any]:
        return self.list_events(self.get_primary_calendar_id(), **options)

    def get_event(self, calendar_id: str, event_id: str) -> Dict[str, Any]:
        event = self.client_for_calendar(calendar_id).get_event(event_id, calendar_id)
        return self._annotate(event, calendar_id)

    def get_event_from_primary_calendar(self, event_id: str) -> Dict[str, Any]:
        return self.get_event(self.get_primary_calendar_id(), event_id)

    def find_events_by_ical_uid(self, ical_uid: str) -> Dict[str, List[Dict[str, Any]]]:
        """Copies of one iCalendar event across every active calendar."""
        found: Dict[str, List[Dict[str, Any]]] = {}
        for connection in self.get_active_connections():
            calendar_id = connection["calendar_id"]
            try:
                events = self.get_client(connection["account_id"]).list_events(
                    calendar_id, ical_uid=ical_uid, single_events=False
                )
            except HttpError as e:
                logger.warning(f"iCalUID lookup failed for calendar {calendar_id}: {e}")
                continue
            if events:
                found[calendar_id] = [self._annotate(e, calendar_id) for e in events]
        return found

    def get_updated_events(self, calendar_id: str, updated_min: str) -> Dict[str, Any]:
        try:
            parse_datetime(updated_min)
        except ValueError as e:
            raise ValidationError(str(e))

        events = self.client_for_calendar(calendar_id).list_events(
            calendar_id,
            updated_min=updated_min,
            show_deleted=True,
            single_events=False,
            order_by="updated",
        )
        live = [e for e in events if e.get("status") != "cancelled"]
        deleted = [e["id"] for e in events if e.get("status") == "cancelled"]
        return {
            "events": [self._annotate(e, calendar_id) for e in live],
            "deleted_event_ids": deleted,
        }

    def create_event(
        self,
        calendar_id: str,
        event: Dict[str, Any],
        send_updates: Optional[str] = None,
    ) -> Dict[str, Any]:
        time_zone = event.get("timeZone") or self.user_timezone()
        body = prepare_event_body(event, time_zone)
        body.pop("timeZone", None)
        created = self.client_for_calendar(calendar_id).create_event(
            body,
            calendar_id,
            conference_data_version=1 if body.get("conferenceData") else 0,
            send_updates=send_updates,
        )
        return self._annotate(created, calendar_id)

    def create_event_in_primary_calendar(
        self, event: Dict[str, Any], send_updates: Optional[str] = None
    ) -> Dict[str, Any]:
        return self.create_event(self.get_primary_calendar_id(), event, send_updates)

    def update_event(
        self,
        calendar_id: str,
        event_id: str,
        updates: Dict[str, Any],
        send_updates: Optional[str] = None,
    ) -> Dict[str, Any]:
        if not updates:
            raise ValidationError("No event fields to update")
        time_zone = updates.get("timeZone") or self.user_timezone()
        body = prepare_event_body(updates, time_zone, require_times=False)
        body.pop("timeZone", None)
        updated = self.client_for_calendar(calendar_id).patch_event(
            event_id,
            body,
            calendar_id,
            conference_data_version=1 if body.get("conferenceData") else None,
            send_updates=send_updates,
        )
        return self._annotate(updated, calendar_id)

    def update_event_in_primary_calendar(
        self, event_id: str, updates: Dict[str, Any], send_updates: Optional[str] = None
    ) -> Dict[str, Any]:
        return self.update_event(
            self.get_primary_calendar_id(), event_id, updates, send_updates
        )

    def delete_event(
        self, calendar_id: str, event_id: str, send_updates: Optional[str] = None
    ) -> Dict[str, Any]:
        self.client_for_calendar(calendar_id).delete_event(
            event_id, calendar_id, send_updates
        )
        return {"deleted": True, "event_id": event_id, "calendarId": calendar_id}

    def delete_event_from_primary_calendar(
        self, event_id: str, send_updates: Optional[str] = None
    ) -> Dict[str, Any]:
        return self.delete_event(self.get_primary_calendar_id(), event_id, send_updates)

    def reschedule_event(
        self,
        calendar_id: str,
        event_id: str,
        start: str,
        end: str,
        time_zone: Optional[str] = None,
    ) -> Dict[str, Any]:
        time_zone = time_zone or self.user_timezone()
        try:
            start_dt = parse_datetime(start, time_zone)
            end_dt = parse_datetime(end, time_zone)
        except ValueError as e:
            raise ValidationError(str(e))
        if end_dt <= start_dt:
            raise ValidationError("End time must be after start time")

        return self.update_event(
            calendar_id,
            event_id,
            {
                "start": {"dateTime": start_dt.isoformat(), "timeZone": time_zone},
                "end": {"dateTime": end_dt.isoformat(), "timeZone": time_zone},
            },
        )

    def reschedule_event_in_primary_calendar(
        self, event_id: str, start: str, end: str, time_zone: Optional[str] = None
    ) -> Dict[str, Any]:
        return self.reschedule_event(
            self.get_primary_calendar_id(), event_id, start, end, time_zone
        )

    def quick_create_event_in_primary_calendar(
        self,
        summary: str,
        start: str,
        end: str,
        description: Optional[str] = None,
        location: Optional[str] = None,
        attendees: Optional[List[str]] = None,
        time_zone: Optional[str] = None,
        conference: bool = False,
    ) -> Dict[str, Any]:
        if not summary:
            raise ValidationError("summary is required")
        event: Dict[str, Any] = {"summary": summary, "start": start, "end": end}
        if description:
            event["description"] = description
        if location:
            event["location"] = location
        if attendees:
            event["attendees"] = attendees
        if time_zone:
            event["timeZone"] = time_zone
        if conference:
            event["conference"] = True
        return self.create_event_in_primary_calendar(event)

    def perform_batch_operations_on_primary_calendar(
        self, operations: List[Dict[str, Any]]
    ) -> Dict[str, List[Dict[str, Any]]]:
        """Run create/update/delete operations. One failure never stops the rest."""
        calendar_id = self.get_primary_calendar_id()
        successful: List[Dict[str, Any]] = []
        failed: List[Dict[str, Any]] = []

        for operation in operations:
            op_type = operation.get("type")
            try:
                if op_type == "create":
                    result = self.create_event(calendar_id, operation.get("event") or {})
                elif op_type in ("update", "delete") and not operation.get("event_id"):
                    raise ValidationError(f"event_id is required for {op_type} operations")
                elif op_type == "update":
                    result = self.update_event(
                        calendar_id, operation["event_id"], operation.get("event") or {}
                    )
                elif op_type == "delete":
                    result = self.delete_event(calendar_id, operation["event_id"])
                else:
                    raise ValidationError(
                        f"Invalid operation type '{op_type}'. Must be one of {', '.join(BATCH_OPERATION_TYPES)}"
                    )
                successful.append({"operation": operation, "result": result})
            except (CrusoError, HttpError) as e:
                logger.warning(f"Batch {op_type} operation failed: {e}")
                failed.append({"operation": operation, "error": str(e)})

        return {"successful": successful, "failed": failed}
