"""Google Calendar client bound to one linked Google account."""

import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from google.auth.transport.requests import Request
from google.oauth2.credentials import Credentials
from googleapiclient.discovery import build

from cruso.config import GoogleOAuthConfig
from cruso.errors import AuthenticationError

logger = logging.getLogger(__name__)


def _compact(**params: Any) -> Dict[str, Any]:
    return {key: value for key, value in params.items() if value is not None}


class CalendarClient:
    """Client for interacting with Google Calendar API on behalf of one account."""

    def __init__(
        self,
        account: Dict[str, Any],
        oauth: GoogleOAuthConfig,
        database: Any = None,
    ):
        self.account = account
        self.oauth = oauth
        self.database = database
        self.service: Any = None

    @property
    def account_id(self) -> Any:
        return self.account.get("id")

    def _get_credentials(self) -> Credentials:
        """Build Google credentials from the stored account tokens."""
        if not self.account.get("access_token") and not self.account.get(
            "refresh_token"
        ):
            raise AuthenticationError(
                f"No Google tokens stored for account {self.account_id}"
            )

        expiry = self.account.get("access_token_expires_at")
        if isinstance(expiry, datetime) and expiry.tzinfo is not None:
            # google-auth compares against naive UTC
            expiry = expiry.astimezone(timezone.utc).replace(tzinfo=None)

        scope = self.account.get("scope")
        creds = Credentials(
            token=self.account.get("access_token"),
            refresh_token=self.account.get("refresh_token"),
            token_uri=self.oauth.token_uri,
            client_id=self.oauth.client_id,
            client_secret=self.oauth.client_secret,
            scopes=scope.split() if scope else self.oauth.scopes,
            expiry=expiry,
        )

        if creds.expired and creds.refresh_token:
            creds.refresh(Request())
            logger.info(f"Refreshed Google access token for account {self.account_id}")
            self.account["access_token"] = creds.token
            self.account["access_token_expires_at"] = creds.expiry
            if self.database is not None:
                self.database.update_account_tokens(
                    self.account_id, creds.token, creds.expiry
                )

        return creds

    def connect(self):
        """Initialize the Calendar service."""
        try:
            creds = self._get_credentials()
            self.service = build(
                "calendar", "v3", credentials=creds, cache_discovery=False
            )
            logger.info(
                f"Connected to Google Calendar API for {self.account.get('email') or self.account_id}"
            )
        except Exception as e:
            logger.error(f"Failed to connect to Google Calendar: {e}")
            raise

    def _ensure_connected(self) -> Any:
        """Ensure service is connected and return it."""
        if not self.service:
            self.connect()
        if not self.service:
            raise RuntimeError("Failed to connect to Calendar service")
        return self.service

    def list_events_page(self, calendar_id: str = "primary", **params: Any) -> Dict[str, Any]:
        """One page of ``events.list``. Keyword args use the API's camelCase names."""
        service = self._ensure_connected()
        return (
            service.events().list(calendarId=calendar_id, **_compact(**params)).execute()
        )

    def list_events(
        self,
        calendar_id: str = "primary",
        time_min: Optional[str] = None,
        time_max: Optional[str] = None,
        query: Optional[str] = None,
        max_results: Optional[int] = None,
        single_events: bool = True,
        order_by: Optional[str] = "startTime",
        time_zone: Optional[str] = None,
        show_deleted: Optional[bool] = None,
        updated_min: Optional[str] = None,
        ical_uid: Optional[str] = None,
    ) -> List[Dict[str, Any]]:
        """List events, following ``nextPageToken`` until ``max_results``."""
        if not single_events:
            order_by = None if order_by == "startTime" else order_by

        events: List[Dict[str, Any]] = []
        page_token = None
        while True:
            page_size = None
            if max_results is not None:
                page_size = min(max_results - len(events), 2500)
            result = self.list_events_page(
                calendar_id,
                timeMin=time_min,
                timeMax=time_max,
                q=query,
                maxResults=page_size,
                singleEvents=single_events,
                orderBy=order_by,
                timeZone=time_zone,
                showDeleted=show_deleted,
                updatedMin=updated_min,
                iCalUID=ical_uid,
                pageToken=page_token,
            )
            events.extend(result.get("items", []))
            page_token = result.get("nextPageToken")
            if not page_token:
                break
            if max_results is not None and len(events) >= max_results:
                break

        if max_results is not None:
            events = events[:max_results]
        return events

    def get_event(self, event_id: str, calendar_id: str = "primary") -> Dict[str, Any]:
        service = self._ensure_connected()
        return service.events().get(calendarId=calendar_id, eventId=event_id).execute()

    def create_event(
        self,
        event_data: Dict[str, Any],
        calendar_id: str = "primary",
        conference_data_version: int = 0,
        send_updates: Optional[str] = None,
    ) -> Dict[str, Any]:
        """Create a new calendar event.

        Args:
            event_data: Event resource
            calendar_id: Calendar ID
            conference_data_version: Set to 1 to honour a Meet conference request
            send_updates: "all", "externalOnly" or "none"
        """
        service = self._ensure_connected()

        event = (
            service.events()
            .insert(
                **_compact(
                    calendarId=calendar_id,
                    body=event_data,
                    conferenceDataVersion=conference_data_version,
                    sendUpdates=send_updates,
                )
            )
            .execute()
        )

        logger.info(f"Created event: {event.get('htmlLink') or event.get('id')}")
        return event

    def patch_event(
        self,
        event_id: str,
        updates: Dict[str, Any],
        calendar_id: str = "primary",
        conference_data_version: Optional[int] = None,
        send_updates: Optional[str] = None,
    ) -> Dict[str, Any]:
        service = self._ensure_connected()
        event = (
            service.events()
            .patch(
                **_compact(
                    calendarId=calendar_id,
                    eventId=event_id,
                    body=updates,
                    conferenceDataVersion=conference_data_version,
                    sendUpdates=send_updates,
                )
            )
            .execute()
        )
        logger.info(f"Updated event {event_id} in {calendar_id}")
        return event

    def delete_event(
        self,
        event_id: str,
        calendar_id: str = "primary",
        send_updates: Optional[str] = None,
    ) -> None:
        service = self._ensure_connected()
        service.events().delete(
            **_compact(calendarId=calendar_id, eventId=event_id, sendUpdates=send_updates)
        ).execute()
        logger.info(f"Deleted event {event_id} from {calendar_id}")

    def list_instances(
        self,
        event_id: str,
        calendar_id: str = "primary",
        time_min: Optional[str] = None,
        time_max: Optional[str] = None,
        original_start: Optional[str] = None,
        max_results: Optional[int] = None,
        time_zone: Optional[str] = None,
        show_deleted: Optional[bool] = None,
    ) -> List[Dict[str, Any]]:
        """Instances of one recurring series, paginated."""
        service = self._ensure_connected()
        instances: List[Dict[str, Any]] = []
        page_token = None
        while True:
            result = (
                service.events()
                .instances(
                    **_compact(
                        calendarId=calendar_id,
                        eventId=event_id,
                        timeMin=time_min,
                        timeMax=time_max,
                        originalStart=original_start,
                        maxResults=max_results,
                        timeZone=time_zone,
                        showDeleted=show_deleted,
                        pageToken=page_token,
                    )
                )
                .execute()
            )
            instances.extend(result.get("items", []))
            page_token = result.get("nextPageToken")
            if not page_token or (max_results and len(instances) >= max_results):
                break
        return instances[:max_results] if max_results else instances

    def freebusy_query(
        self,
        time_min: str,
        time_max: str,
        calendar_ids: List[str],
        time_zone: Optional[str] = None,
    ) -> Dict[str, Any]:
        """Check availability using the freebusy endpoint."""
        service = self._ensure_connected()

        body = _compact(
            timeMin=time_min,
            timeMax=time_max,
            timeZone=time_zone,
            items=[{"id": calendar_id} for calendar_id in calendar_ids],
        )
        return service.freebusy().query(body=body).execute()

    def list_calendars(self) -> List[Dict[str, Any]]:
        service = self._ensure_connected()
        calendars: List[Dict[str, Any]] = []
        page_token = None
        while True:
            result = (
                service.calendarList().list(**_compact(pageToken=page_token)).execute()
            )
            calendars.extend(result.get("items", []))
            page_token = result.get("nextPageToken")
            if not page_token:
                break
        return calendars
