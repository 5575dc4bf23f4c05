from cruso.services.availability import AvailabilityService
from cruso.services.connections import BaseCalendarService, CalendarConnectionsService
from cruso.services.email import EmailService, MailgunClient
from cruso.services.events import EventsService
from cruso.services.exchange import EmailData, ExchangeService
from cruso.services.preferences import PreferencesService
from cruso.services.recurring_events import MutationScope, RecurringEventsService
from cruso.services.rescheduling import ReschedulingService
from cruso.services.schedules import ScheduleService
from cruso.services.search import SearchOptions, SearchService

__all__ = [
    "AvailabilityService",
    "BaseCalendarService",
    "CalendarConnectionsService",
    "EmailData",
    "EmailService",
    "EventsService",
    "ExchangeService",
    "MailgunClient",
    "MutationScope",
    "PreferencesService",
    "RecurringEventsService",
    "ReschedulingService",
    "ScheduleService",
    "SearchOptions",
    "SearchService",
]
