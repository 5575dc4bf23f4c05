import logging
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, ConfigDict, Field

from cruso.api.deps import guarded, rescheduling_service
from cruso.services.rescheduling import ReschedulingService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1/calendar/scheduling-requests", tags=["scheduling"])


class SchedulingRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    attendee_emails: List[str] = Field(alias="attendeeEmails")
    summary: Optional[str] = None
    description: Optional[str] = None
    host_email: Optional[str] = Field(None, alias="hostEmail")
    slots: Optional[List[Dict[str, Any]]] = None
    duration_minutes: Optional[int] = Field(None, alias="durationMinutes")
    timezone: Optional[str] = None
    exchange_id: Optional[str] = Field(None, alias="exchangeId")


class RescheduleRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    event_id: str = Field(alias="eventId")
    calendar_id: Optional[str] = Field(None, alias="calendarId")
    reason: Optional[str] = None
    slots: Optional[List[Dict[str, Any]]] = None
    duration_minutes: Optional[int] = Field(None, alias="durationMinutes")
    timezone: Optional[str] = None
    exchange_id: Optional[str] = Field(None, alias="exchangeId")


@router.post("")
@router.post("/")
def send_scheduling_request(
    req: SchedulingRequest,
    service: ReschedulingService = Depends(rescheduling_service),
):
    with guarded("send scheduling request", logger):
        return service.send_scheduling_request(
            req.attendee_emails,
            summary=req.summary,
            slots=req.slots,
            duration_minutes=req.duration_minutes,
            time_zone=req.timezone,
            exchange_id=req.exchange_id,
            description=req.description,
            host_email=req.host_email,
        )


@router.post("/reschedule")
def send_reschedule_request(
    req: RescheduleRequest,
    service: ReschedulingService = Depends(rescheduling_service),
):
    with guarded("send reschedule request", logger):
        return service.send_reschedule_request(
            req.calendar_id,
            req.event_id,
            reason=req.reason,
            slots=req.slots,
            duration_minutes=req.duration_minutes,
            time_zone=req.timezone,
            exchange_id=req.exchange_id,
        )
