from datetime import datetime, timezone
from unittest.mock import MagicMock

import pytest
from googleapiclient.errors import HttpError

from cruso.calendar_client import CalendarClient
from cruso.errors import ValidationError
from cruso.intervals import Interval
from cruso.services.availability import AvailabilityService, format_slot, format_slots

PRIMARY_CALENDAR = "me@example.com"


def _freebusy(busy, calendar_id=PRIMARY_CALENDAR):
    return {"calendars": {calendar_id: {"busy": busy}}}


@pytest.fixture
def service(make_service):
    return make_service(AvailabilityService)


def test_format_slot():
    slot = Interval(
        datetime(2024, 1, 1, 14, tzinfo=timezone.utc),
        datetime(2024, 1, 1, 14, 30, tzinfo=timezone.utc),
    )
    assert format_slot(slot, "America/New_York") == "Mon, Jan 1 from 9:00 AM to 9:30 AM"
    assert format_slots([], "UTC") == "No available slots found in the specified time range."


def test_get_availability_summarizes_each_account(service, mock_calendar_service):
    mock_calendar_service.freebusy().query().execute.return_value = _freebusy(
        [{"start": "2024-01-01T10:00:00Z", "end": "2024-01-01T11:00:00Z"}]
    )

    result = service.get_availability("2024-01-01T09:00:00Z", "2024-01-01T17:00:00Z", "UTC")

    assert result["accounts_checked"] == 1
    assert result["busy"] == [
        {"start": "2024-01-01T10:00:00+00:00", "end": "2024-01-01T11:00:00+00:00"}
    ]
    assert "me@example.com is busy during:" in result["summary"]
    assert "- From 2024-01-01T10:00:00Z to 2024-01-01T11:00:00Z" in result["summary"]


def test_get_availability_reports_missing_calendars(service, mock_calendar_service):
    mock_calendar_service.freebusy().query().execute.return_value = {
        "calendars": {PRIMARY_CALENDAR: {"errors": [{"reason": "notFound"}]}}
    }
    result = service.get_availability("2024-01-01T09:00:00Z", "2024-01-01T17:00:00Z", "UTC")
    assert "Cannot check availability for me@example.com (account not found)" in result["summary"]


def test_range_validation(service):
    with pytest.raises(ValidationError, match="after time_min"):
        service.get_availability("2024-01-02T00:00:00Z", "2024-01-01T00:00:00Z")
    with pytest.raises(ValidationError, match="less than 3 months"):
        service.get_availability("2024-01-01T00:00:00Z", "2024-06-01T00:00:00Z")


def test_check_availability_block(service):
    # the default list response holds one event from 10:00 to 11:00 UTC
    result = service.check_availability_block(
        "2024-01-01T09:00:00Z", "2024-01-01T12:00:00Z", 60, "UTC"
    )

    assert result.is_available is True
    assert result.calendars_checked == 1
    assert result.free_slots == [
        {"start": "2024-01-01T09:00:00+00:00", "end": "2024-01-01T10:00:00+00:00"},
        {"start": "2024-01-01T11:00:00+00:00", "end": "2024-01-01T12:00:00+00:00"},
    ]
    assert result.events[0]["id"] == "evt123"
    assert result.events[0]["calendar_id"] == PRIMARY_CALENDAR


def test_check_availability_block_with_duration(service):
    result = service.check_availability_block(
        "2024-01-01T09:00:00Z", "2024-01-01T12:00:00Z", 90, "UTC"
    )
    assert result.is_available is False
    assert result.free_slots == []


def test_create_availability_block_conflict(service, mock_calendar_service):
    mock_calendar_service.events().insert.reset_mock()

    result = service.create_availability_block(
        "2024-01-01T10:00:00Z", "2024-01-01T11:00:00Z", time_zone="UTC"
    )

    assert result["state"] == "conflict"
    assert result["conflicts"][0]["id"] == "evt123"
    mock_calendar_service.events().insert.assert_not_called()


def test_create_availability_block_books_free_time(service, mock_calendar_service):
    result = service.create_availability_block(
        "2024-01-01T12:00:00Z", "2024-01-01T13:00:00Z", summary="Focus", private=True, time_zone="UTC"
    )

    assert result["state"] == "created"
    body = mock_calendar_service.events().insert.call_args.kwargs["body"]
    assert body["summary"] == "Focus"
    assert body["visibility"] == "private"


def test_suggest_slots_skips_busy_time(service, mock_calendar_service):
    mock_calendar_service.freebusy().query().execute.return_value = _freebusy(
        [{"start": "2024-01-01T09:00:00Z", "end": "2024-01-01T10:00:00Z"}]
    )

    result = service.suggest_slots(
        "2024-01-01T09:00:00Z", "2024-01-01T11:00:00Z", 30, time_zone="UTC"
    )

    assert [slot["start"] for slot in result["slots"]] == [
        "2024-01-01T10:00:00+00:00",
        "2024-01-01T10:15:00+00:00",
        "2024-01-01T10:30:00+00:00",
    ]
    assert result["text"].startswith("1. Mon, Jan 1 from 10:00 AM to 10:30 AM")


def test_suggest_slots_honours_exclusions(service, mock_calendar_service):
    mock_calendar_service.freebusy().query().execute.return_value = _freebusy(
        [{"start": "2024-01-01T09:00:00Z", "end": "2024-01-01T10:00:00Z"}]
    )

    result = service.suggest_slots(
        "2024-01-01T09:00:00Z",
        "2024-01-01T11:00:00Z",
        30,
        exclude_slots=[{"start": "2024-01-01T10:00:00Z", "end": "2024-01-01T10:30:00Z"}],
        time_zone="UTC",
    )

    assert [slot["start"] for slot in result["slots"]] == ["2024-01-01T10:30:00+00:00"]


def test_suggest_slots_rejects_bad_meeting_type(service):
    with pytest.raises(ValidationError, match="Invalid meeting type"):
        service.suggest_slots(
            "2024-01-01T09:00:00Z", "2024-01-01T11:00:00Z", meeting_type="hologram"
        )


def test_find_best_time_requires_positive_duration(service):
    with pytest.raises(ValidationError, match="positive integer"):
        service.find_best_time_for_meeting(0, ["a@example.com"])


def test_find_best_time_ranks_by_attendee_availability(service, mock_calendar_service):
    mock_calendar_service.freebusy().query().execute.side_effect = [
        _freebusy([]),
        {
            "calendars": {
                "a@example.com": {
                    "busy": [{"start": "2099-03-02T09:00:00Z", "end": "2099-03-02T10:00:00Z"}]
                },
                "b@example.com": {"busy": []},
            }
        },
    ]

    suggestions = service.find_best_time_for_meeting(
        30,
        ["a@example.com", "b@example.com"],
        {
            "timezone": "UTC",
            "search_range_start": "2099-03-02T09:00:00Z",
            "search_range_end": "2099-03-02T11:00:00Z",
            "minimum_notice_hours": 0,
            "working_hours_only": False,
            "exclude_weekends": False,
            "max_suggestions": 2,
        },
    )

    assert [s.start.isoformat() for s in suggestions] == [
        "2099-03-02T10:00:00+00:00",
        "2099-03-02T10:15:00+00:00",
    ]
    assert suggestions[0].score == 100
    assert suggestions[0].available_attendees == ["a@example.com", "b@example.com"]
    assert "All attendees are available" in suggestions[0].reasoning


def _unavailable():
    return HttpError(MagicMock(status=500, reason="Backend Error"), b"{}")


def test_suggest_slots_returns_nothing_when_every_account_fails(service, mock_calendar_service):
    mock_calendar_service.freebusy().query().execute.side_effect = _unavailable()

    result = service.suggest_slots(
        "2024-01-01T09:00:00Z", "2024-01-01T17:00:00Z", 30, time_zone="UTC"
    )

    assert result["slots"] == []
    assert result["text"] == "No available slots found in the specified time range."


def test_suggest_slots_without_connections(service, mock_database):
    mock_database.get_active_connections.return_value = []
    result = service.suggest_slots(
        "2024-01-01T09:00:00Z", "2024-01-01T17:00:00Z", 30, time_zone="UTC"
    )
    assert result["slots"] == []


def test_suggest_slots_uses_accounts_that_answer(
    service, mock_database, mock_calendar_service, account, oauth_config, primary_connection
):
    mock_calendar_service.freebusy().query().execute.side_effect = _unavailable()
    work = MagicMock()
    work.freebusy().query().execute.return_value = _freebusy(
        [{"start": "2024-01-01T09:00:00Z", "end": "2024-01-01T10:00:00Z"}],
        calendar_id="me@work.example.com",
    )
    client = CalendarClient({**account, "id": "acc-2"}, oauth_config, mock_database)
    client.service = work
    service._clients["acc-2"] = client
    mock_database.get_active_connections.return_value = [
        primary_connection,
        {**primary_connection, "id": 2, "account_id": "acc-2", "calendar_id": "me@work.example.com"},
    ]

    result = service.suggest_slots(
        "2024-01-01T09:00:00Z", "2024-01-01T11:00:00Z", 30, time_zone="UTC"
    )

    assert [slot["start"] for slot in result["slots"]] == [
        "2024-01-01T10:00:00+00:00",
        "2024-01-01T10:15:00+00:00",
        "2024-01-01T10:30:00+00:00",
    ]


def test_find_best_time_returns_nothing_when_calendars_unreadable(service, mock_calendar_service):
    mock_calendar_service.freebusy().query().execute.side_effect = _unavailable()

    suggestions = service.find_best_time_for_meeting(
        30,
        ["a@example.com"],
        {
            "timezone": "UTC",
            "search_range_start": "2099-03-02T09:00:00Z",
            "search_range_end": "2099-03-02T11:00:00Z",
            "minimum_notice_hours": 0,
            "working_hours_only": False,
        },
    )

    assert suggestions == []


def test_find_best_time_treats_null_options_as_defaults(service):
    suggestions = service.find_best_time_for_meeting(
        30,
        [],
        {
            "timezone": "UTC",
            "search_range_start": "2099-03-02T09:00:00Z",
            "search_range_end": "2099-03-02T10:00:00Z",
            "minimum_notice_hours": None,
            "buffer_minutes": None,
            "max_suggestions": None,
            "working_hours_only": False,
            "exclude_weekends": False,
        },
    )
    assert len(suggestions) == 3


def test_find_best_time_rejects_non_numeric_options(service):
    with pytest.raises(ValidationError, match="minimum_notice_hours must be a number"):
        service.find_best_time_for_meeting(30, [], {"minimum_notice_hours": "soon"})
