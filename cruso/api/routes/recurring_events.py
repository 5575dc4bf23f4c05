import logging
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Body, Depends, HTTPException, Query, status
from pydantic import BaseModel, ConfigDict, Field

from cruso.api.deps import guarded, recurring_events_service
from cruso.services.recurring_events import RecurringEventsService

logger = logging.getLogger(__name__)

router = APIRouter(tags=["recurring-events"])

PRIMARY = "/api/v1/calendar/recurring-events"
SPECIFIC = "/api/v1/calendar/calendars/{calendar_id}/recurring-events"


class RecurringUpdateRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    updates: Dict[str, Any]
    scope: str = "all"
    original_start_time: Optional[str] = Field(None, alias="originalStartTime")
    send_updates: Optional[str] = Field(None, alias="sendUpdates")


class InstanceUpdateRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    original_start_time: str = Field(alias="originalStartTime")
    updates: Dict[str, Any]


class RecurringRescheduleRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    start_time: str = Field(alias="startTime")
    end_time: str = Field(alias="endTime")
    timezone: Optional[str] = None
    scope: str = "all"
    original_start_time: Optional[str] = Field(None, alias="originalStartTime")


class RecurringBatchRequest(BaseModel):
    events: List[Dict[str, Any]]


@router.post(PRIMARY, status_code=status.HTTP_201_CREATED)
@router.post(SPECIFIC, status_code=status.HTTP_201_CREATED)
def create_recurring_event(
    calendar_id: Optional[str] = None,
    event: Dict[str, Any] = Body(...),
    send_updates: Optional[str] = Query(None, alias="sendUpdates"),
    service: RecurringEventsService = Depends(recurring_events_service),
):
    with guarded("create recurring event", logger):
        return {"event": service.create_recurring_event(calendar_id, event, send_updates)}


@router.post(f"{PRIMARY}/batch")
def batch_create_recurring_events(
    req: RecurringBatchRequest,
    service: RecurringEventsService = Depends(recurring_events_service),
):
    if not req.events:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="events must not be empty",
        )
    with guarded("create recurring events", logger):
        return service.batch_create_recurring_events_in_primary_calendar(req.events)


@router.get(PRIMARY + "/{event_id}")
@router.get(SPECIFIC + "/{event_id}")
def get_recurring_event(
    event_id: str,
    calendar_id: Optional[str] = None,
    service: RecurringEventsService = Depends(recurring_events_service),
):
    with guarded("get recurring event", logger):
        return {"event": service.get_recurring_event(calendar_id, event_id)}


@router.patch(PRIMARY + "/{event_id}")
@router.patch(SPECIFIC + "/{event_id}")
def update_recurring_event(
    event_id: str,
    req: RecurringUpdateRequest,
    calendar_id: Optional[str] = None,
    service: RecurringEventsService = Depends(recurring_events_service),
):
    with guarded("update recurring event", logger):
        return service.update_recurring_event(
            calendar_id,
            event_id,
            req.updates,
            scope=req.scope,
            original_start_time=req.original_start_time,
            send_updates=req.send_updates,
        )


@router.patch(PRIMARY + "/{event_id}/reschedule")
@router.patch(SPECIFIC + "/{event_id}/reschedule")
def reschedule_recurring_event(
    event_id: str,
    req: RecurringRescheduleRequest,
    calendar_id: Optional[str] = None,
    service: RecurringEventsService = Depends(recurring_events_service),
):
    with guarded("reschedule recurring event", logger):
        return service.reschedule_recurring_event(
            calendar_id,
            event_id,
            req.start_time,
            req.end_time,
            time_zone=req.timezone,
            scope=req.scope,
            original_start_time=req.original_start_time,
        )


@router.delete(PRIMARY + "/{event_id}")
@router.delete(SPECIFIC + "/{event_id}")
def delete_recurring_event(
    event_id: str,
    calendar_id: Optional[str] = None,
    scope: str = "all",
    original_start_time: Optional[str] = None,
    send_updates: Optional[str] = Query(None, alias="sendUpdates"),
    service: RecurringEventsService = Depends(recurring_events_service),
):
    with guarded("delete recurring event", logger):
        return service.delete_recurring_event(
            calendar_id,
            event_id,
            scope=scope,
            original_start_time=original_start_time,
            send_updates=send_updates,
        )


@router.get(PRIMARY + "/{event_id}/instances")
@router.get(SPECIFIC + "/{event_id}/instances")
def list_instances(
    event_id: str,
    calendar_id: Optional[str] = None,
    time_min: Optional[str] = Query(None, alias="timeMin"),
    time_max: Optional[str] = Query(None, alias="timeMax"),
    max_results: Optional[int] = Query(None, alias="maxResults", ge=1, le=2500),
    timezone: Optional[str] = None,
    show_deleted: Optional[bool] = Query(None, alias="showDeleted"),
    service: RecurringEventsService = Depends(recurring_events_service),
):
    with guarded("list recurring event instances", logger):
        instances = service.get_recurring_event_instances(
            calendar_id,
            event_id,
            time_min=time_min,
            time_max=time_max,
            max_results=max_results,
            time_zone=timezone,
            show_deleted=show_deleted,
        )
        return {"instances": instances}


@router.patch(PRIMARY + "/{event_id}/instances")
@router.patch(SPECIFIC + "/{event_id}/instances")
def update_instance(
    event_id: str,
    req: InstanceUpdateRequest,
    calendar_id: Optional[str] = None,
    service: RecurringEventsService = Depends(recurring_events_service),
):
    with guarded("update recurring event instance", logger):
        return service.update_recurring_event_instance(
            calendar_id, event_id, req.original_start_time, req.updates
        )


@router.delete(PRIMARY + "/{event_id}/instances")
@router.delete(SPECIFIC + "/{event_id}/instances")
def delete_instance(
    event_id: str,
    calendar_id: Optional[str] = None,
    original_start_time: str = Query(..., min_length=1),
    service: RecurringEventsService = Depends(recurring_events_service),
):
    with guarded("delete recurring event instance", logger):
        return service.delete_recurring_event(
            calendar_id,
            event_id,
            scope="instance",
            original_start_time=original_start_time,
        )


@router.patch(PRIMARY + "/{event_id}/future")
@router.patch(SPECIFIC + "/{event_id}/future")
def update_future_events(
    event_id: str,
    req: InstanceUpdateRequest,
    calendar_id: Optional[str] = None,
    service: RecurringEventsService = Depends(recurring_events_service),
):
    with guarded("update future recurring events", logger):
        return service.update_future_recurring_events(
            calendar_id, event_id, req.original_start_time, req.updates
        )
