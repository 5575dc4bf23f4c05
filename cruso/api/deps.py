"""Shared API state, authentication and service factories."""

import logging
from contextlib import contextmanager
from typing import Any, Dict, Iterator, Optional

from fastapi import Depends, Header, HTTPException, status
from googleapiclient.errors import HttpError

from cruso.config import ServerConfig
from cruso.db.types import DatabaseInterface
from cruso.errors import CrusoError
from cruso.services.availability import AvailabilityService
from cruso.services.connections import CalendarConnectionsService
from cruso.services.email import EmailService, MailgunClient
from cruso.services.exchange import ExchangeService
from cruso.services.preferences import PreferencesService
from cruso.services.recurring_events import RecurringEventsService
from cruso.services.rescheduling import ReschedulingService
from cruso.services.schedules import ScheduleService
from cruso.services.search import SearchService

logger = logging.getLogger(__name__)


class AppState:
    def __init__(self):
        self.config: ServerConfig = ServerConfig()
        self.database: Optional[DatabaseInterface] = None
        self.mailer: Optional[MailgunClient] = None

    def reset(self) -> None:
        self.__init__()


state = AppState()


@contextmanager
def guarded(operation: str, log: logging.Logger = logger) -> Iterator[None]:
    """Known errors pass through to the handlers; anything else becomes a 500."""
    try:
        yield
    except (HTTPException, CrusoError, HttpError):
        raise
    except Exception:
        log.exception(f"{operation} error")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"Failed to {operation}",
        )


def require_database() -> DatabaseInterface:
    if state.database is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Database not initialized",
        )
    return state.database


def require_user(
    authorization: Optional[str] = Header(default=None),
    database: DatabaseInterface = Depends(require_database),
) -> Dict[str, Any]:
    """Resolve ``Authorization: Bearer <session token>`` to a user row."""
    if not authorization or not authorization.lower().startswith("bearer "):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing bearer token",
        )
    token = authorization[7:].strip()
    user = database.get_user_by_session_token(token) if token else None
    if not user:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired session",
        )
    return user


def _calendar_kwargs() -> Dict[str, Any]:
    return {"oauth": state.config.google, "default_timezone": state.config.timezone}


def connections_service(
    user: Dict[str, Any] = Depends(require_user),
    database: DatabaseInterface = Depends(require_database),
) -> CalendarConnectionsService:
    return CalendarConnectionsService(database, user["id"], **_calendar_kwargs())


def recurring_events_service(
    user: Dict[str, Any] = Depends(require_user),
    database: DatabaseInterface = Depends(require_database),
) -> RecurringEventsService:
    return RecurringEventsService(database, user["id"], **_calendar_kwargs())


def availability_service(
    user: Dict[str, Any] = Depends(require_user),
    database: DatabaseInterface = Depends(require_database),
) -> AvailabilityService:
    return AvailabilityService(
        database,
        user["id"],
        scheduling=state.config.scheduling,
        working_hours=state.config.working_hours,
        **_calendar_kwargs(),
    )


def search_service(
    user: Dict[str, Any] = Depends(require_user),
    database: DatabaseInterface = Depends(require_database),
) -> SearchService:
    return SearchService(database, user["id"], **_calendar_kwargs())


def require_mailer() -> MailgunClient:
    if state.mailer is None or not state.mailer.config.can_send:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Email sending is not configured",
        )
    return state.mailer


def rescheduling_service(
    user: Dict[str, Any] = Depends(require_user),
    database: DatabaseInterface = Depends(require_database),
    mailer: MailgunClient = Depends(require_mailer),
) -> ReschedulingService:
    return ReschedulingService(
        database,
        user["id"],
        mailer=mailer,
        scheduling=state.config.scheduling,
        working_hours=state.config.working_hours,
        **_calendar_kwargs(),
    )


def working_hours_service(
    user: Dict[str, Any] = Depends(require_user),
    database: DatabaseInterface = Depends(require_database),
) -> ScheduleService:
    return ScheduleService(database, user["id"], "working_hours", state.config.timezone)


def bookable_hours_service(
    user: Dict[str, Any] = Depends(require_user),
    database: DatabaseInterface = Depends(require_database),
) -> ScheduleService:
    return ScheduleService(database, user["id"], "availability", state.config.timezone)


def preferences_service(
    user: Dict[str, Any] = Depends(require_user),
    database: DatabaseInterface = Depends(require_database),
) -> PreferencesService:
    return PreferencesService(
        database,
        user["id"],
        state.config.timezone,
        state.config.scheduling.assistant_name,
    )


def exchange_service(database: DatabaseInterface = Depends(require_database)) -> ExchangeService:
    return ExchangeService(database, state.config.scheduling)


def email_service(
    database: DatabaseInterface = Depends(require_database),
    mailer: MailgunClient = Depends(require_mailer),
) -> EmailService:
    return EmailService(database, mailer, state.config.scheduling)
