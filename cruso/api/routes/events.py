"""Event routes.

Every route is registered twice: under ``/calendar/events`` acting on the
user's primary calendar, and under ``/calendar/calendars/{calendar_id}/events``.
"""

import logging
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Body, Depends, HTTPException, Query, status
from pydantic import BaseModel, ConfigDict, Field

from cruso.api.deps import guarded, recurring_events_service
from cruso.services.recurring_events import RecurringEventsService

logger = logging.getLogger(__name__)

router = APIRouter(tags=["events"])

PRIMARY = "/api/v1/calendar/events"
SPECIFIC = "/api/v1/calendar/calendars/{calendar_id}/events"


class RescheduleRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    start_time: str = Field(alias="startTime")
    end_time: str = Field(alias="endTime")
    timezone: Optional[str] = None


class BatchOperationsRequest(BaseModel):
    operations: List[Dict[str, Any]]


class QuickEventRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    summary: str
    start_time: str = Field(alias="startTime")
    end_time: str = Field(alias="endTime")
    description: Optional[str] = None
    location: Optional[str] = None
    attendees: Optional[List[str]] = None
    timezone: Optional[str] = None
    conference: bool = False


def _calendar(service: RecurringEventsService, calendar_id: Optional[str]) -> str:
    return calendar_id or service.get_primary_calendar_id()


@router.get(PRIMARY)
@router.get(SPECIFIC)
def list_events(
    calendar_id: Optional[str] = None,
    time_min: Optional[str] = Query(None, alias="timeMin"),
    time_max: Optional[str] = Query(None, alias="timeMax"),
    q: Optional[str] = None,
    max_results: Optional[int] = Query(None, alias="maxResults", ge=1, le=2500),
    page_token: Optional[str] = Query(None, alias="pageToken"),
    single_events: bool = Query(True, alias="singleEvents"),
    timezone: Optional[str] = None,
    service: RecurringEventsService = Depends(recurring_events_service),
):
    with guarded("list events", logger):
        return service.list_events(
            _calendar(service, calendar_id),
            time_min=time_min,
            time_max=time_max,
            query=q,
            max_results=max_results,
            page_token=page_token,
            single_events=single_events,
            time_zone=timezone,
        )


@router.post(PRIMARY, status_code=status.HTTP_201_CREATED)
@router.post(SPECIFIC, status_code=status.HTTP_201_CREATED)
def create_event(
    calendar_id: Optional[str] = None,
    event: Dict[str, Any] = Body(...),
    send_updates: Optional[str] = Query(None, alias="sendUpdates"),
    service: RecurringEventsService = Depends(recurring_events_service),
):
    if not event:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Event body is required",
        )
    with guarded("create event", logger):
        return {"event": service.create_event(_calendar(service, calendar_id), event, send_updates)}


@router.post(f"{PRIMARY}/quick", status_code=status.HTTP_201_CREATED)
def quick_create_event(
    req: QuickEventRequest,
    service: RecurringEventsService = Depends(recurring_events_service),
):
    with guarded("create event", logger):
        event = service.quick_create_event_in_primary_calendar(
            req.summary,
            req.start_time,
            req.end_time,
            description=req.description,
            location=req.location,
            attendees=req.attendees,
            time_zone=req.timezone,
            conference=req.conference,
        )
        return {"event": event}


@router.post(f"{PRIMARY}/batch")
def batch_operations(
    req: BatchOperationsRequest,
    service: RecurringEventsService = Depends(recurring_events_service),
):
    if not req.operations:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="operations must not be empty",
        )
    with guarded("run batch operations", logger):
        return service.perform_batch_operations_on_primary_calendar(req.operations)


@router.get(f"{PRIMARY}/by-ical-uid")
def find_by_ical_uid(
    ical_uid: str = Query(..., alias="icalUid", min_length=1),
    service: RecurringEventsService = Depends(recurring_events_service),
):
    with guarded("find events by iCalUID", logger):
        return {"calendars": service.find_events_by_ical_uid(ical_uid)}


@router.get(f"{PRIMARY}/updated")
@router.get(f"{SPECIFIC}/updated")
def updated_events(
    calendar_id: Optional[str] = None,
    updated_min: str = Query(..., alias="updatedMin"),
    service: RecurringEventsService = Depends(recurring_events_service),
):
    with guarded("list updated events", logger):
        return service.get_updated_events(_calendar(service, calendar_id), updated_min)


@router.get(PRIMARY + "/{event_id}")
@router.get(SPECIFIC + "/{event_id}")
def get_event(
    event_id: str,
    calendar_id: Optional[str] = None,
    service: RecurringEventsService = Depends(recurring_events_service),
):
    with guarded("get event", logger):
        return {"event": service.get_event(_calendar(service, calendar_id), event_id)}


@router.put(PRIMARY + "/{event_id}")
@router.put(SPECIFIC + "/{event_id}")
def update_event(
    event_id: str,
    calendar_id: Optional[str] = None,
    updates: Dict[str, Any] = Body(...),
    send_updates: Optional[str] = Query(None, alias="sendUpdates"),
    service: RecurringEventsService = Depends(recurring_events_service),
):
    with guarded("update event", logger):
        event = service.update_event(
            _calendar(service, calendar_id), event_id, updates, send_updates
        )
        return {"event": event}


@router.patch(PRIMARY + "/{event_id}")
@router.patch(SPECIFIC + "/{event_id}")
def reschedule_event(
    event_id: str,
    req: RescheduleRequest,
    calendar_id: Optional[str] = None,
    service: RecurringEventsService = Depends(recurring_events_service),
):
    with guarded("reschedule event", logger):
        event = service.reschedule_event(
            _calendar(service, calendar_id),
            event_id,
            req.start_time,
            req.end_time,
            req.timezone,
        )
        return {"event": event}


@router.delete(PRIMARY + "/{event_id}")
@router.delete(SPECIFIC + "/{event_id}")
def delete_event(
    event_id: str,
    calendar_id: Optional[str] = None,
    send_updates: Optional[str] = Query(None, alias="sendUpdates"),
    service: RecurringEventsService = Depends(recurring_events_service),
):
    with guarded("delete event", logger):
        return service.delete_event(_calendar(service, calendar_id), event_id, send_updates)
