"""Per-user access to linked Google accounts and their calendars."""

import logging
from typing import Any, Dict, List, Optional

from googleapiclient.errors import HttpError

from cruso.calendar_client import CalendarClient
from cruso.config import DEFAULT_TIMEZONE, GoogleOAuthConfig
from cruso.errors import NotFoundError, ValidationError
from cruso.rules import SchedulingRules

logger = logging.getLogger(__name__)


class BaseCalendarService:
    """Shared plumbing for services acting on one user's calendars."""

    def __init__(
        self,
        database: Any,
        user_id: str,
        oauth: Optional[GoogleOAuthConfig] = None,
        default_timezone: str = DEFAULT_TIMEZONE,
    ):
        self.database = database
        self.user_id = user_id
        self.oauth = oauth or GoogleOAuthConfig()
        self.default_timezone = default_timezone
        self._clients: Dict[Any, CalendarClient] = {}

    def get_client(self, account_id: Any) -> CalendarClient:
        if account_id not in self._clients:
            account = self.database.get_account(account_id, self.user_id)
            if not account:
                raise NotFoundError(f"Account {account_id} not found")
            self._clients[account_id] = CalendarClient(
                account, self.oauth, self.database
            )
        return self._clients[account_id]

    def get_active_connections(
        self, availability_only: bool = False
    ) -> List[Dict[str, Any]]:
        return self.database.get_active_connections(self.user_id, availability_only)

    def get_calendar_connection(self, calendar_id: str) -> Dict[str, Any]:
        connection = self.database.get_connection_by_calendar_id(
            self.user_id, calendar_id
        )
        if not connection:
            raise NotFoundError("Calendar connection not found")
        return connection

    def get_primary_calendar_id(self) -> str:
        connection = self.database.get_primary_connection(self.user_id)
        if not connection:
            raise NotFoundError("No primary calendar found for user")
        return connection["calendar_id"]

    def client_for_calendar(self, calendar_id: str) -> CalendarClient:
        connection = self.get_calendar_connection(calendar_id)
        return self.get_client(connection["account_id"])

    @staticmethod
    def group_by_account(connections: List[Dict[str, Any]]) -> Dict[Any, List[str]]:
        grouped: Dict[Any, List[str]] = {}
        for connection in connections:
            grouped.setdefault(connection["account_id"], []).append(
                connection["calendar_id"]
            )
        return grouped

    def get_preferences(self) -> Dict[str, Any]:
        return self.database.get_preferences(self.user_id) or {}

    def get_rules(self) -> SchedulingRules:
        return SchedulingRules.from_preferences(
            self.get_preferences(), self.default_timezone
        )

    def user_timezone(self) -> str:
        return self.get_preferences().get("timezone") or self.default_timezone


class CalendarConnectionsService(BaseCalendarService):
    def list_calendars(self) -> List[Dict[str, Any]]:
        return self.database.list_connections(self.user_id)

    def list_accounts(self) -> List[Dict[str, Any]]:
        accounts = self.database.list_accounts(self.user_id)
        connections = self.database.list_connections(self.user_id)
        return [
            {
                "id": account["id"],
                "email": account.get("email"),
                "provider_id": account.get("provider_id", "google"),
                "calendars": [
                    c for c in connections if c["account_id"] == account["id"]
                ],
            }
            for account in accounts
        ]

    def fetch_all_calendar_lists(self) -> Dict[str, Any]:
        """Pull every account's calendarList and upsert connections."""
        accounts = self.database.list_accounts(self.user_id)
        has_primary = self.database.get_primary_connection(self.user_id) is not None
        result: Dict[str, Any] = {
            "accounts_synced": 0,
            "calendars_synced": 0,
            "errors": [],
        }

        for account in accounts:
            try:
                calendars = self.get_client(account["id"]).list_calendars()
            except (HttpError, NotFoundError) as e:
                logger.warning(f"Failed to sync calendars for account {account['id']}: {e}")
                result["errors"].append({"account_id": account["id"], "error": str(e)})
                continue

            for calendar in calendars:
                make_primary = bool(calendar.get("primary")) and not has_primary
                self.database.upsert_connection(
                    self.user_id,
                    account["id"],
                    calendar["id"],
                    calendar.get("summaryOverride") or calendar.get("summary"),
                    make_primary,
                )
                has_primary = has_primary or make_primary
                result["calendars_synced"] += 1
            result["accounts_synced"] += 1

        logger.info(
            f"Synced {result['calendars_synced']} calendars across {result['accounts_synced']} accounts for user {self.user_id}"
        )
        return result

    def update_connection(
        self,
        connection_id: int,
        include_in_availability: Optional[bool] = None,
        is_active: Optional[bool] = None,
        is_primary: Optional[bool] = None,
    ) -> Dict[str, Any]:
        if include_in_availability is None and is_active is None and is_primary is None:
            raise ValidationError("No connection fields to update")
        if is_primary is False:
            raise ValidationError(
                "A calendar cannot be unset as primary; mark another calendar primary instead"
            )
        if not self.database.get_connection(self.user_id, connection_id):
            raise NotFoundError("Calendar connection not found")

        return self.database.update_connection(
            self.user_id, connection_id, include_in_availability, is_active, is_primary
        )

    def remove_account(self, account_id: Any) -> Dict[str, Any]:
        if not self.database.get_account(account_id, self.user_id):
            raise NotFoundError(f"Account {account_id} not found")
        deactivated = self.database.deactivate_account_connections(
            self.user_id, account_id
        )
        self._clients.pop(account_id, None)
        logger.info(f"Removed account {account_id} ({deactivated} calendars deactivated)")
        return {"account_id": account_id, "calendars_deactivated": deactivated}
