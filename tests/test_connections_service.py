from unittest.mock import MagicMock

import pytest
from googleapiclient.errors import HttpError

from cruso.calendar_client import CalendarClient
from cruso.errors import NotFoundError, ValidationError
from cruso.services.connections import BaseCalendarService, CalendarConnectionsService


@pytest.fixture
def service(make_service):
    return make_service(CalendarConnectionsService)


def test_client_for_calendar_resolves_account(make_service, mock_database):
    base = make_service(BaseCalendarService)
    client = base.client_for_calendar("me@example.com")

    assert isinstance(client, CalendarClient)
    mock_database.get_connection_by_calendar_id.assert_called_once_with("user-1", "me@example.com")


def test_get_client_caches_per_account(mock_database, oauth_config):
    base = BaseCalendarService(mock_database, "user-1", oauth=oauth_config)
    assert base.get_client("acc-1") is base.get_client("acc-1")
    mock_database.get_account.assert_called_once_with("acc-1", "user-1")


def test_missing_lookups(mock_database, oauth_config):
    mock_database.get_account.return_value = None
    mock_database.get_primary_connection.return_value = None
    mock_database.get_connection_by_calendar_id.return_value = None
    base = BaseCalendarService(mock_database, "user-1", oauth=oauth_config)

    with pytest.raises(NotFoundError, match="Account acc-9 not found"):
        base.get_client("acc-9")
    with pytest.raises(NotFoundError, match="No primary calendar"):
        base.get_primary_calendar_id()
    with pytest.raises(NotFoundError, match="Calendar connection not found"):
        base.client_for_calendar("other@example.com")


def test_user_timezone_prefers_preferences(mock_database):
    base = BaseCalendarService(mock_database, "user-1", default_timezone="UTC")
    assert base.user_timezone() == "UTC"
    mock_database.get_preferences.return_value = {"timezone": "Asia/Tokyo"}
    assert base.user_timezone() == "Asia/Tokyo"


def test_group_by_account():
    grouped = BaseCalendarService.group_by_account(
        [
            {"account_id": "a", "calendar_id": "one"},
            {"account_id": "b", "calendar_id": "two"},
            {"account_id": "a", "calendar_id": "three"},
        ]
    )
    assert grouped == {"a": ["one", "three"], "b": ["two"]}


def test_list_accounts_nests_calendars(service, mock_database, account, primary_connection):
    mock_database.list_accounts.return_value = [account]
    accounts = service.list_accounts()
    assert accounts[0]["id"] == "acc-1"
    assert accounts[0]["calendars"] == [primary_connection]


def test_fetch_all_calendar_lists_marks_first_primary(service, mock_database, account, mock_calendar_service):
    mock_database.list_accounts.return_value = [account]
    mock_database.get_primary_connection.return_value = None
    mock_calendar_service.calendarList().list().execute.return_value = {
        "items": [
            {"id": "me@example.com", "summary": "Me", "primary": True},
            {"id": "team@group.calendar.google.com", "summary": "Team", "summaryOverride": "Team (shared)"},
        ]
    }

    result = service.fetch_all_calendar_lists()

    assert result == {"accounts_synced": 1, "calendars_synced": 2, "errors": []}
    calls = mock_database.upsert_connection.call_args_list
    assert calls[0].args == ("user-1", "acc-1", "me@example.com", "Me", True)
    assert calls[1].args == ("user-1", "acc-1", "team@group.calendar.google.com", "Team (shared)", False)


def test_fetch_all_calendar_lists_records_account_errors(service, mock_database, account, mock_calendar_service):
    mock_database.list_accounts.return_value = [account]
    mock_calendar_service.calendarList().list().execute.side_effect = HttpError(
        MagicMock(status=401, reason="Unauthorized"), b"{}"
    )

    result = service.fetch_all_calendar_lists()

    assert result["accounts_synced"] == 0
    assert result["errors"][0]["account_id"] == "acc-1"
    mock_database.upsert_connection.assert_not_called()


def test_update_connection_validation(service, mock_database):
    with pytest.raises(ValidationError, match="No connection fields"):
        service.update_connection(1)
    with pytest.raises(ValidationError, match="cannot be unset as primary"):
        service.update_connection(1, is_primary=False)

    mock_database.get_connection.return_value = None
    with pytest.raises(NotFoundError):
        service.update_connection(1, is_active=False)


def test_update_connection(service, mock_database, primary_connection):
    mock_database.get_connection.return_value = primary_connection
    service.update_connection(1, include_in_availability=False)
    mock_database.update_connection.assert_called_once_with("user-1", 1, False, None, None)


def test_remove_account_drops_cached_client(service, mock_database):
    mock_database.deactivate_account_connections.return_value = 2

    assert service.remove_account("acc-1") == {"account_id": "acc-1", "calendars_deactivated": 2}
    assert "acc-1" not in service._clients
