"""Pytest fixtures for Cruso tests."""

import logging
from typing import Any, Callable
from unittest.mock import MagicMock, patch

import pytest

from cruso.calendar_client import CalendarClient
from cruso.config import GoogleOAuthConfig

logging.basicConfig(level=logging.INFO)

USER_ID = "user-1"
ACCOUNT_ID = "acc-1"
PRIMARY_CALENDAR = "me@example.com"


@pytest.fixture
def oauth_config():
    return GoogleOAuthConfig(client_id="mock_client_id", client_secret="mock_client_secret")


@pytest.fixture
def account():
    return {
        "id": ACCOUNT_ID,
        "user_id": USER_ID,
        "email": PRIMARY_CALENDAR,
        "access_token": "mock_access_token",
        "refresh_token": "mock_refresh_token",
        "access_token_expires_at": None,
        "scope": "https://www.googleapis.com/auth/calendar",
    }


@pytest.fixture
def primary_connection():
    return {
        "id": 1,
        "user_id": USER_ID,
        "account_id": ACCOUNT_ID,
        "calendar_id": PRIMARY_CALENDAR,
        "calendar_name": "Me",
        "is_primary": True,
        "include_in_availability": True,
        "is_active": True,
    }


@pytest.fixture
def mock_database(account, primary_connection):
    """A database double wired for a single user with one primary calendar."""
    database = MagicMock()
    database.get_account.return_value = account
    database.get_primary_connection.return_value = primary_connection
    database.get_connection_by_calendar_id.return_value = primary_connection
    database.get_active_connections.return_value = [primary_connection]
    database.list_connections.return_value = [primary_connection]
    database.get_preferences.return_value = {}
    database.list_schedule_entries.return_value = []
    database.get_exchange_message.return_value = None
    database.get_exchange_owner.return_value = None
    database.get_user.return_value = {"id": USER_ID, "email": PRIMARY_CALENDAR, "name": "Pat Doe"}
    return database


@pytest.fixture
def mock_calendar_service():
    """Create a mock Calendar API service with common responses."""
    with patch("cruso.calendar_client.build") as mock_build:
        service = MagicMock()
        mock_build.return_value = service

        events = service.events()
        events.list().execute.return_value = {
            "items": [
                {
                    "id": "evt123",
                    "summary": "Mock Event",
                    "start": {"dateTime": "2024-01-01T10:00:00Z"},
                    "end": {"dateTime": "2024-01-01T11:00:00Z"},
                }
            ]
        }
        events.insert().execute.return_value = {
            "id": "new_evt_123",
            "htmlLink": "https://calendar.google.com/event?id=new_evt_123",
        }
        service.freebusy().query().execute.return_value = {"calendars": {}}

        yield service


@pytest.fixture
def make_service(mock_database, account, oauth_config, mock_calendar_service) -> Callable[..., Any]:
    """Build a calendar service whose account client already talks to the mock API."""

    def factory(cls, **kwargs):
        service = cls(mock_database, USER_ID, oauth=oauth_config, **kwargs)
        client = CalendarClient(account, oauth_config, mock_database)
        client.service = mock_calendar_service
        service._clients[ACCOUNT_ID] = client
        return service

    return factory
