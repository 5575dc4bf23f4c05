from datetime import datetime, timezone
from unittest.mock import MagicMock

import pytest

from cruso.errors import ValidationError
from cruso.intervals import Interval
from cruso.services.rescheduling import CLOSING_LINE, ReschedulingService, format_long_slot

SLOTS = [
    {"startTime": "2024-01-08T14:00:00Z", "endTime": "2024-01-08T14:30:00Z"},
    {"startTime": "2024-01-09T19:00:00Z", "endTime": "2024-01-09T19:30:00Z"},
]


@pytest.fixture
def mailer():
    mailer = MagicMock()
    mailer.from_address = "cruso@example.com"
    mailer.send_message.return_value = "out-1@mg"
    return mailer


@pytest.fixture
def service(make_service, mailer):
    return make_service(ReschedulingService, mailer=mailer)


@pytest.fixture
def event():
    return {
        "id": "evt1",
        "summary": "Quarterly review",
        "location": "Room 1",
        "start": {"dateTime": "2024-01-08T15:00:00Z"},
        "end": {"dateTime": "2024-01-08T16:00:00Z"},
        "attendees": [
            {"email": "guest@example.com", "displayName": "Guest Person"},
            {"email": "me@example.com", "self": True},
        ],
        "organizer": {"email": "me@example.com"},
    }


def test_format_long_slot():
    slot = Interval(
        datetime(2024, 1, 8, 14, tzinfo=timezone.utc),
        datetime(2024, 1, 8, 14, 30, tzinfo=timezone.utc),
    )
    assert format_long_slot(slot, "America/New_York") == "Monday, January 8, 9:00 AM EST - 9:30 AM EST"


def test_scheduling_request_email(service, mailer, mock_database):
    result = service.send_scheduling_request(
        ["guest@example.com"],
        summary="Intro call",
        slots=SLOTS,
        time_zone="America/New_York",
        host_email="Guest@Example.com",
    )

    recipients, subject, body = mailer.send_message.call_args.args
    assert recipients == ["guest@example.com"]
    assert subject == "Scheduling Request: Intro call"
    assert body.startswith("Hi there,\n\nA meeting scheduling request is being made.\n\n")
    assert "Title: Intro call\nDescription: No description provided\n" in body
    assert "Attendees: guest@example.com\nHost: Guest@Example.com\n" in body
    assert (
        "Suggested Time Slots:\n"
        "1. Monday, January 8, 9:00 AM EST - 9:30 AM EST\n"
        "2. Tuesday, January 9, 2:00 PM EST - 2:30 PM EST\n\n"
        f"{CLOSING_LINE}\n\n"
        "Best,\nme@example.com's AI Assistant"
    ) in body

    assert result["message_id"] == "out-1@mg"
    assert result["recipients"] == ["guest@example.com"]
    assert result["slots"][0] == {
        "start": "2024-01-08T09:00:00-05:00",
        "end": "2024-01-08T09:30:00-05:00",
    }
    assert mock_database.set_exchange_owner.call_args.args[1] == "user-1"


def test_scheduling_request_requires_attendees(service):
    with pytest.raises(ValidationError, match="At least one attendee"):
        service.send_scheduling_request([], slots=SLOTS)


def test_scheduling_request_rejects_bad_slots(service):
    with pytest.raises(ValidationError, match="Invalid slot"):
        service.send_scheduling_request(["guest@example.com"], slots=[{"startTime": "soon"}])


def test_scheduling_request_finds_slots_when_none_given(service, mailer):
    result = service.send_scheduling_request(["guest@example.com"], summary="Intro", time_zone="UTC")
    assert len(result["slots"]) == 3
    assert "3. " in mailer.send_message.call_args.args[2]


def test_reschedule_request_email(service, mailer, mock_calendar_service, event):
    mock_calendar_service.events().get().execute.return_value = event

    result = service.send_reschedule_request(
        None, "evt1", reason="Travel conflict", slots=SLOTS, time_zone="America/New_York"
    )

    recipients, subject, body = mailer.send_message.call_args.args
    assert recipients == ["guest@example.com", "me@example.com"]
    assert subject == "Reschedule Request: Quarterly review"
    assert "Date & Time: Monday, January 8, 2024 at 10:00 AM EST\n" in body
    assert "Location: Room 1\n" in body
    assert "Attendees: Guest Person, me@example.com\n" in body
    assert "Reason for Reschedule: Travel conflict\n" in body
    assert "Here are some alternative time slots that are available:" in body
    assert result["event_id"] == "evt1"


def test_reschedule_request_needs_someone_to_email(service, mock_calendar_service, event):
    event["attendees"] = []
    event.pop("organizer")
    mock_calendar_service.events().get().execute.return_value = event

    with pytest.raises(ValidationError, match="no attendees"):
        service.send_reschedule_request(None, "evt1", slots=SLOTS)


def test_reschedule_request_in_existing_exchange_uses_owner_signature(
    service, mailer, mock_calendar_service, mock_database, event
):
    mock_calendar_service.events().get().execute.return_value = event
    mock_database.list_exchange_messages.return_value = [
        {"message_id": "in-1@guest", "subject": "Moving our review", "type": "inbound", "sender": "guest@example.com"}
    ]
    mock_database.get_exchange_owner.return_value = "user-1"
    mock_database.get_preferences.return_value = {"signature": "Pat's scheduling assistant"}

    result = service.send_reschedule_request(None, "evt1", slots=SLOTS, exchange_id="ex-1")

    _, subject, body = mailer.send_message.call_args.args
    assert subject == "Re: Reschedule Request: Quarterly review"
    assert body.endswith("Best,\nPat's scheduling assistant")
    assert result["exchange_id"] == "ex-1"
