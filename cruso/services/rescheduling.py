"""Scheduling and reschedule requests sent to attendees by email."""

import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional, Sequence

from cruso.config import SchedulingConfig, WorkingHoursConfig
from cruso.errors import ValidationError
from cruso.intervals import Interval, event_interval, get_zone, to_rfc3339
from cruso.services.availability import AvailabilityService
from cruso.services.email import EmailService, MailgunClient

logger = logging.getLogger(__name__)

SEARCH_WINDOW = timedelta(days=7)
CLOSING_LINE = (
    "Please let us know which of these times work best for you, "
    "or suggest an alternative time that fits your schedule."
)


def _long_time(moment: datetime) -> str:
    return moment.strftime("%I:%M %p %Z").lstrip("0")


def format_long_slot(slot: Interval, tz: Any) -> str:
    """``Monday, January 5, 9:00 AM EST - 9:30 AM EST``."""
    zone = get_zone(tz)
    start = slot.start.astimezone(zone)
    end = slot.end.astimezone(zone)
    return f"{start.strftime('%A, %B')} {start.day}, {_long_time(start)} - {_long_time(end)}"


def _numbered(slots: List[Interval], tz: Any) -> str:
    return "\n".join(
        f"{index}. {format_long_slot(slot, tz)}" for index, slot in enumerate(slots, start=1)
    )


def _recipients(attendees: Sequence[str], host: Optional[str]) -> List[str]:
    recipients: List[str] = []
    for address in list(attendees) + ([host] if host else []):
        if address and address.lower() not in (r.lower() for r in recipients):
            recipients.append(address)
    return recipients


class ReschedulingService(AvailabilityService):
    def __init__(
        self,
        database: Any,
        user_id: str,
        oauth: Any = None,
        mailer: Optional[MailgunClient] = None,
        default_timezone: Optional[str] = None,
        scheduling: Optional[SchedulingConfig] = None,
        working_hours: Optional[WorkingHoursConfig] = None,
    ):
        super().__init__(database, user_id, oauth, default_timezone, scheduling, working_hours)
        self.email = EmailService(database, mailer, self.scheduling)

    def _parse_slots(self, slots: Sequence[Dict[str, Any]], tz: str) -> List[Interval]:
        parsed = []
        for slot in slots:
            try:
                parsed.append(
                    Interval.parse(
                        slot.get("startTime") or slot.get("start"),
                        slot.get("endTime") or slot.get("end"),
                        tz,
                    )
                )
            except (AttributeError, TypeError, ValueError) as e:
                raise ValidationError(f"Invalid slot {slot}: {e}")
        return parsed

    def _find_slots(
        self,
        duration_minutes: Optional[int],
        tz: str,
        exclude: Optional[List[Dict[str, Any]]] = None,
    ) -> List[Interval]:
        rules = self.get_rules()
        start = datetime.now(timezone.utc) + timedelta(minutes=rules.min_notice_minutes)
        found = self.suggest_slots(
            to_rfc3339(start),
            to_rfc3339(start + SEARCH_WINDOW),
            slot_duration_minutes=duration_minutes,
            exclude_slots=exclude,
            time_zone=tz,
        )
        if not found["slots"]:
            raise ValidationError("No available slots found in the next 7 days")
        return self._parse_slots(found["slots"], tz)

    def _send(
        self, recipients: List[str], subject: str, body: str, exchange_id: Optional[str]
    ) -> Dict[str, Any]:
        if exchange_id:
            signature = self.email.exchanges.get_signature(exchange_id)
        else:
            signature = self.email.exchanges.signature_for_owner(self.user_id)
        sent = self.email.send_in_exchange(
            recipients,
            subject,
            f"{body}\n\n{signature}",
            exchange_id=exchange_id,
            owner_id=self.user_id,
        )
        logger.info(f"{subject} sent to {', '.join(recipients)}")
        return {**sent, "recipients": recipients}

    def send_scheduling_request(
        self,
        to: Sequence[str],
        summary: Optional[str] = None,
        slots: Optional[Sequence[Dict[str, Any]]] = None,
        duration_minutes: Optional[int] = None,
        time_zone: Optional[str] = None,
        exchange_id: Optional[str] = None,
        description: Optional[str] = None,
        host_email: Optional[str] = None,
    ) -> Dict[str, Any]:
        if not to:
            raise ValidationError("At least one attendee email is required")
        tz = time_zone or self.user_timezone()
        get_zone(tz)
        intervals = self._parse_slots(slots, tz) if slots else self._find_slots(duration_minutes, tz)

        title = summary or "Event"
        host_line = f"\nHost: {host_email}" if host_email else ""
        body = (
            "Hi there,\n\n"
            "A meeting scheduling request is being made.\n\n"
            "Event Details:\n"
            f"Title: {title}\n"
            f"Description: {description or 'No description provided'}\n"
            f"Attendees: {', '.join(to)}{host_line}\n\n"
            "Here are some time slots that are available:\n\n"
            "Suggested Time Slots:\n"
            f"{_numbered(intervals, tz)}\n\n"
            f"{CLOSING_LINE}"
        )
        result = self._send(
            _recipients(to, host_email), f"Scheduling Request: {title}", body, exchange_id
        )
        result["slots"] = [slot.to_dict(tz) for slot in intervals]
        return result

    def send_reschedule_request(
        self,
        calendar_id: Optional[str],
        event_id: str,
        reason: Optional[str] = None,
        slots: Optional[Sequence[Dict[str, Any]]] = None,
        duration_minutes: Optional[int] = None,
        time_zone: Optional[str] = None,
        exchange_id: Optional[str] = None,
    ) -> Dict[str, Any]:
        calendar_id = calendar_id or self.get_primary_calendar_id()
        event = self.client_for_calendar(calendar_id).get_event(event_id, calendar_id)
        tz = time_zone or self.user_timezone()
        get_zone(tz)

        current = event_interval(event, tz)
        if slots:
            intervals = self._parse_slots(slots, tz)
        else:
            if duration_minutes is None and current is not None:
                duration_minutes = int(current.duration.total_seconds() // 60)
            exclude = [current.to_dict(tz)] if current is not None else None
            intervals = self._find_slots(duration_minutes, tz, exclude)

        attendees = [a["email"] for a in event.get("attendees") or [] if a.get("email")]
        host = (event.get("organizer") or {}).get("email")
        recipients = _recipients(attendees, host)
        if not recipients:
            raise ValidationError("Event has no attendees to contact")

        title = event.get("summary") or "Event"
        when = "the scheduled time"
        if current is not None and (event.get("start") or {}).get("dateTime"):
            local = current.start.astimezone(get_zone(tz))
            when = f"{local.strftime('%A, %B')} {local.day}, {local.year} at {_long_time(local)}"
        names = ", ".join(
            a.get("displayName") or a["email"]
            for a in event.get("attendees") or []
            if a.get("displayName") or a.get("email")
        )
        body = (
            "Hi there,\n\n"
            "A rescheduling is being requested for an upcoming meeting.\n\n"
            "Event Details:\n"
            f"Title: {title}\n"
            f"Date & Time: {when}\n"
            f"Location: {event.get('location') or 'No location specified'}\n"
            f"Attendees: {names or 'No attendees listed'}\n\n"
            f"Description: {event.get('description') or 'No description provided'}\n\n"
            f"Reason for Reschedule: {reason or 'Not specified'}\n\n"
            "Here are some alternative time slots that are available:\n\n"
            "Suggested Time Slots:\n"
            f"{_numbered(intervals, tz)}\n\n"
            f"{CLOSING_LINE}"
        )
        result = self._send(recipients, f"Reschedule Request: {title}", body, exchange_id)
        result["slots"] = [slot.to_dict(tz) for slot in intervals]
        result["event_id"] = event_id
        return result
