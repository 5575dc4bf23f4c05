"""Unit tests for the Calendar API client."""

from datetime import datetime, timezone
from unittest.mock import MagicMock, patch

import pytest

from cruso.calendar_client import CalendarClient
from cruso.errors import AuthenticationError


def test_list_calendar_events(mock_calendar_service, account, oauth_config):
    """Test listing calendar events."""
    client = CalendarClient(account, oauth_config)
    client.service = mock_calendar_service

    events = client.list_events(
        "primary", time_min="2024-01-01T00:00:00Z", time_max="2024-01-01T23:59:59Z"
    )

    assert len(events) == 1
    assert events[0]["summary"] == "Mock Event"
    mock_calendar_service.events().list.assert_called_with(
        calendarId="primary",
        timeMin="2024-01-01T00:00:00Z",
        timeMax="2024-01-01T23:59:59Z",
        singleEvents=True,
        orderBy="startTime",
    )


def test_list_events_follows_page_tokens(mock_calendar_service, account, oauth_config):
    client = CalendarClient(account, oauth_config)
    client.service = mock_calendar_service
    mock_calendar_service.events().list().execute.side_effect = [
        {"items": [{"id": "a"}], "nextPageToken": "page-2"},
        {"items": [{"id": "b"}]},
    ]

    events = client.list_events("primary")

    assert [e["id"] for e in events] == ["a", "b"]
    mock_calendar_service.events().list.assert_called_with(
        calendarId="primary", singleEvents=True, orderBy="startTime", pageToken="page-2"
    )


def test_create_calendar_event(mock_calendar_service, account, oauth_config):
    """Test creating a calendar event."""
    client = CalendarClient(account, oauth_config)
    client.service = mock_calendar_service

    event_data = {
        "summary": "New Meeting",
        "start": {"dateTime": "2024-01-02T10:00:00Z"},
        "end": {"dateTime": "2024-01-02T11:00:00Z"},
    }

    created = client.create_event(event_data, "team@example.com", send_updates="all")

    assert created["id"] == "new_evt_123"
    mock_calendar_service.events().insert.assert_called_with(
        calendarId="team@example.com",
        body=event_data,
        conferenceDataVersion=0,
        sendUpdates="all",
    )


def test_freebusy_query(mock_calendar_service, account, oauth_config):
    client = CalendarClient(account, oauth_config)
    client.service = mock_calendar_service
    mock_calendar_service.freebusy().query().execute.return_value = {
        "calendars": {
            "primary": {"busy": [{"start": "2024-01-01T10:00:00Z", "end": "2024-01-01T11:00:00Z"}]}
        }
    }

    response = client.freebusy_query(
        "2024-01-01T00:00:00Z", "2024-01-01T23:59:59Z", ["primary", "team@example.com"]
    )

    assert len(response["calendars"]["primary"]["busy"]) == 1
    mock_calendar_service.freebusy().query.assert_called_with(
        body={
            "timeMin": "2024-01-01T00:00:00Z",
            "timeMax": "2024-01-01T23:59:59Z",
            "items": [{"id": "primary"}, {"id": "team@example.com"}],
        }
    )


def test_connect_builds_service(mock_calendar_service, account, oauth_config):
    client = CalendarClient(account, oauth_config)
    client.connect()
    assert client.service is mock_calendar_service


def test_missing_tokens_raise(oauth_config):
    client = CalendarClient({"id": "acc-9"}, oauth_config)
    with pytest.raises(AuthenticationError, match="acc-9"):
        client._get_credentials()


def test_expired_token_is_refreshed_and_stored(account, oauth_config):
    database = MagicMock()
    new_expiry = datetime(2030, 1, 1)
    account["access_token_expires_at"] = datetime(2020, 1, 1, tzinfo=timezone.utc)

    with patch("cruso.calendar_client.Credentials") as mock_credentials:
        creds = mock_credentials.return_value
        creds.expired = True
        creds.refresh_token = "mock_refresh_token"
        creds.token = "fresh_token"
        creds.expiry = new_expiry

        client = CalendarClient(account, oauth_config, database)
        client._get_credentials()

    creds.refresh.assert_called_once()
    assert mock_credentials.call_args.kwargs["expiry"] == datetime(2020, 1, 1)
    assert account["access_token"] == "fresh_token"
    database.update_account_tokens.assert_called_once_with("acc-1", "fresh_token", new_expiry)
