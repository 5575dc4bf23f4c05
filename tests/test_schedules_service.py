import pytest

from cruso.errors import NotFoundError, ValidationError
from cruso.services.schedules import ScheduleService, serialize_entry

USER_ID = "user-1"


@pytest.fixture
def service(mock_database):
    mock_database.create_schedule_entry.side_effect = (
        lambda kind, user_id, days, start, end, tz: {
            "id": 7,
            "days": days,
            "start_time": start,
            "end_time": end,
            "timezone": tz,
        }
    )
    return ScheduleService(mock_database, USER_ID, "working_hours")


def test_unknown_kind():
    with pytest.raises(ValueError, match="Unknown schedule kind"):
        ScheduleService(None, USER_ID, "holidays")


def test_serialize_entry_trims_seconds():
    assert serialize_entry({"id": 1, "start_time": "09:00:00", "end_time": "17:30:00"}) == {
        "id": 1,
        "start_time": "09:00",
        "end_time": "17:30",
    }


def test_create_entry(service, mock_database):
    entry = service.create_entry([3, 1], "09:00", "17:00")

    assert entry["id"] == 7
    mock_database.create_schedule_entry.assert_called_once_with(
        "working_hours", USER_ID, [1, 3], "09:00:00", "17:00:00", "America/New_York"
    )


@pytest.mark.parametrize(
    "days, start, end, timezone, message",
    [
        ([], "09:00", "17:00", None, "non-empty array"),
        ([8], "09:00", "17:00", None, "Invalid day: 8"),
        ([1], None, "17:00", None, "start_time and end_time are required"),
        ([1], "17:00", "09:00", None, "start_time must be before end_time"),
        ([1], "09:00", "17:00", "Atlantis/Central", "Invalid timezone"),
    ],
)
def test_create_entry_validation(service, days, start, end, timezone, message):
    with pytest.raises(ValidationError, match=message):
        service.create_entry(days, start, end, timezone)


def test_update_keeps_stored_start(service, mock_database):
    mock_database.get_schedule_entry.return_value = {
        "id": 7,
        "days": [1],
        "start_time": "09:00:00",
        "end_time": "17:00:00",
    }
    mock_database.update_schedule_entry.return_value = {"id": 7}

    service.update_entry(7, end_time="12:00")

    mock_database.update_schedule_entry.assert_called_once_with(
        "working_hours", USER_ID, 7, {"start_time": "09:00:00", "end_time": "12:00:00"}
    )

    with pytest.raises(ValidationError, match="start_time must be before end_time"):
        service.update_entry(7, start_time="18:00")
    with pytest.raises(ValidationError, match="No fields to update"):
        service.update_entry(7)


def test_missing_entries_are_not_found(mock_database):
    mock_database.get_schedule_entry.return_value = None
    mock_database.delete_schedule_entry.return_value = False
    service = ScheduleService(mock_database, USER_ID, "availability")

    with pytest.raises(NotFoundError, match="Availability entry 5 not found"):
        service.get_entry(5)
    with pytest.raises(NotFoundError, match="Availability entry 5 not found"):
        service.delete_entry(5)


def test_create_default_uses_user_timezone(service, mock_database):
    mock_database.get_preferences.return_value = {"timezone": "Europe/Madrid"}
    entry = service.create_default()
    assert entry["days"] == [1, 2, 3, 4, 5]
    assert entry["timezone"] == "Europe/Madrid"


def test_replace_schedule(service, mock_database):
    mock_database.replace_schedule_entries.side_effect = lambda kind, user_id, records: [
        {**record, "id": index} for index, record in enumerate(records, start=1)
    ]

    schedule = service.replace_schedule(
        {"Friday": {"enabled": True, "time_slots": [{"start_time": "10:00", "end_time": "14:00"}]}},
        "UTC",
    )

    records = mock_database.replace_schedule_entries.call_args.args[2]
    assert records == [
        {"days": [5], "start_time": "10:00:00", "end_time": "14:00:00", "timezone": "UTC"}
    ]
    assert schedule["Friday"]["time_slots"] == [
        {"id": "1-5", "start_time": "10:00", "end_time": "14:00"}
    ]


def test_replace_schedule_requires_object(service):
    with pytest.raises(ValidationError, match="schedule must be an object"):
        service.replace_schedule(["Monday"])


def test_check(service, mock_database):
    mock_database.list_schedule_entries.return_value = [
        {"days": [1], "start_time": "09:00:00", "end_time": "17:00:00", "timezone": "UTC"}
    ]

    inside = service.check("2024-01-01T10:00:00Z")
    outside = service.check("2024-01-01T18:00:00Z")

    assert inside["within"] is True
    assert inside["window"] == {
        "start": "2024-01-01T04:00:00-05:00",
        "end": "2024-01-01T12:00:00-05:00",
    }
    assert outside == {"within": False, "time": "2024-01-01T13:00:00-05:00", "window": None}
