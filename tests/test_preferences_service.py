import pytest

from cruso.errors import NotFoundError, ValidationError
from cruso.rules import PREFERENCE_DEFAULTS
from cruso.services.preferences import PreferencesService, generate_preferences_document

USER_ID = "user-1"


@pytest.fixture
def service(mock_database):
    mock_database.get_preferences.return_value = None
    mock_database.upsert_preferences.side_effect = lambda user_id, values: {
        "user_id": user_id,
        **values,
    }
    return PreferencesService(mock_database, USER_ID, "Europe/London")


def test_document_with_defaults():
    document = generate_preferences_document({**PREFERENCE_DEFAULTS, "timezone": "UTC"})

    assert document == (
        "# General Preferences\n"
        "## Availability\n"
        "- My timezone is usually UTC.\n"
        "## Scheduling\n"
        "- Minimum notice for meetings: 2 hours.\n"
        "- Meetings can be booked up to 60 days ahead.\n"
        "- I usually schedule 30-minute meetings.\n"
        "- Apply these buffer rules:\n"
        "  - Virtual meetings: No buffer\n"
        "  - In-person events: 15 minutes before, 15 minutes after\n"
        "  - Back-to-back: No buffer\n"
        "  - Travel: No buffer\n"
    )


def test_document_personal_info_and_availability():
    prefs = {
        **PREFERENCE_DEFAULTS,
        "display_name": "Pat Doe",
        "nickname": "Pat",
        "min_notice_minutes": 90,
        "travel_buffer_minutes": 20,
        "back_to_back_limit_minutes": 120,
        "cluster_meetings": True,
    }
    availability = [
        {"days": [1, 2, 3, 5], "start_time": "09:00:00", "end_time": "17:30:00", "timezone": "Asia/Tokyo"}
    ]

    document = generate_preferences_document(prefs, availability)

    assert "## Personal Info\n- My full name is Pat Doe.\n- You can call me Pat.\n" in document
    assert "- My working hours are typically Monday to Wednesday, Friday, 9:00 AM to 5:30 PM.\n" in document
    assert "- My timezone is usually Asia/Tokyo.\n" in document
    assert "- Minimum notice for meetings: 1 hours and 30 minutes.\n" in document
    assert "  - Travel: 20 minutes before and after\n" in document
    assert "- Avoid more than 120 minutes of back-to-back meetings.\n" in document
    assert document.endswith("- I prefer meetings clustered together.\n")


def test_get_or_create_builds_defaults(service, mock_database):
    prefs = service.get_or_create_preferences()

    values = mock_database.upsert_preferences.call_args.args[1]
    assert values["timezone"] == "Europe/London"
    assert values["display_name"] == "Pat Doe"
    assert values["min_notice_minutes"] == 120
    assert values["document"].startswith("# General Preferences\n## Personal Info\n")
    assert prefs["user_id"] == USER_ID


def test_get_or_create_returns_existing(service, mock_database):
    mock_database.get_preferences.return_value = {"timezone": "UTC"}
    assert service.get_or_create_preferences() == {"timezone": "UTC"}
    mock_database.upsert_preferences.assert_not_called()


def test_validate_update_reports_every_problem(service):
    with pytest.raises(ValidationError) as excinfo:
        service.validate_update(
            {
                "favourite_colour": "blue",
                "nickname": "x" * 300,
                "timezone": "Moon/Base",
                "buffer_before_minutes": -5,
                "min_notice_minutes": True,
                "cluster_meetings": "yes",
            }
        )

    message = str(excinfo.value)
    assert "Unknown preference fields: favourite_colour" in message
    assert "nickname must be a string with maximum 255 characters" in message
    assert "timezone 'Moon/Base' is not a valid IANA timezone" in message
    assert "buffer_before_minutes must be a non-negative integer" in message
    assert "min_notice_minutes must be a non-negative integer" in message
    assert "cluster_meetings must be a boolean" in message


def test_document_is_not_writable(service):
    with pytest.raises(ValidationError, match="Unknown preference fields: document"):
        service.validate_update({"document": "# hacked"})


def test_update_regenerates_document(service, mock_database):
    mock_database.get_preferences.return_value = {**PREFERENCE_DEFAULTS, "timezone": "UTC"}

    service.update_preferences({"nickname": "Sam", "buffer_before_minutes": 10})

    values = mock_database.upsert_preferences.call_args.args[1]
    assert values["nickname"] == "Sam"
    assert "- You can call me Sam.\n" in values["document"]
    assert "  - Virtual meetings: 10 minutes before, 0 minutes after\n" in values["document"]


def test_update_requires_fields(service):
    with pytest.raises(ValidationError, match="No preference fields to update"):
        service.update_preferences({})


def test_delete_missing(service, mock_database):
    mock_database.delete_preferences.return_value = False
    with pytest.raises(NotFoundError, match="Preferences not found"):
        service.delete_preferences()


def test_signature(service, mock_database):
    assert service.signature() == "Best,\nCruso"
    mock_database.get_preferences.return_value = {"signature": "Pat's assistant"}
    assert service.signature() == "Best,\nPat's assistant"
