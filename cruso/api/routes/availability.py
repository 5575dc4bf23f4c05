import logging
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel, ConfigDict, Field

from cruso.api.deps import availability_service, guarded
from cruso.services.availability import AvailabilityService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1/calendar/availability", tags=["availability"])


class AvailabilityCheckRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    start_time: Optional[str] = Field(None, alias="startTime")
    end_time: Optional[str] = Field(None, alias="endTime")
    duration_minutes: Optional[int] = Field(None, alias="durationMinutes")
    timezone: Optional[str] = None


class AvailabilityBlockRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    start_time: Optional[str] = Field(None, alias="startTime")
    end_time: Optional[str] = Field(None, alias="endTime")
    summary: Optional[str] = None
    description: Optional[str] = None
    attendees: Optional[List[str]] = None
    location: Optional[str] = None
    conference: bool = False
    private: bool = False
    timezone: Optional[str] = None


class FreeBusyRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    time_min: str = Field(alias="timeMin")
    time_max: str = Field(alias="timeMax")
    timezone: Optional[str] = None


class SlotsRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    time_min: str = Field(alias="timeMin")
    time_max: str = Field(alias="timeMax")
    slot_duration_minutes: Optional[int] = Field(None, alias="slotDurationMinutes")
    exclude_slots: Optional[List[Dict[str, Any]]] = Field(None, alias="excludeSlots")
    timezone: Optional[str] = None
    meeting_type: Optional[str] = Field(None, alias="meetingType")
    max_slots: Optional[int] = Field(None, alias="maxSlots")


class BestTimeOptions(BaseModel):
    timezone: Optional[str] = None
    search_range_start: Optional[str] = None
    search_range_end: Optional[str] = None
    minimum_notice_hours: float = Field(24, ge=0)
    max_suggestions: int = Field(5, ge=1)
    buffer_minutes: int = Field(0, ge=0)
    exclude_weekends: bool = True
    working_hours_only: bool = True
    prefer_mornings: bool = False
    prefer_afternoons: bool = False
    working_hours: Optional[Dict[str, Any]] = None


class BestTimeRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    duration_minutes: int = Field(alias="durationMinutes")
    attendee_emails: List[str] = Field(default_factory=list, alias="attendeeEmails")
    options: BestTimeOptions = Field(default_factory=BestTimeOptions)


def _require_range(start_time: Optional[str], end_time: Optional[str]) -> None:
    if not start_time or not end_time:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="startTime and endTime are required",
        )


@router.post("")
@router.post("/")
def check_availability(
    req: AvailabilityCheckRequest,
    service: AvailabilityService = Depends(availability_service),
):
    _require_range(req.start_time, req.end_time)
    with guarded("check availability", logger):
        result = service.check_availability_block(
            req.start_time, req.end_time, req.duration_minutes, req.timezone
        )
        return result.to_dict()


@router.patch("")
@router.patch("/")
def block_availability(
    req: AvailabilityBlockRequest,
    service: AvailabilityService = Depends(availability_service),
):
    _require_range(req.start_time, req.end_time)
    with guarded("block availability", logger):
        return service.create_availability_block(
            req.start_time,
            req.end_time,
            summary=req.summary,
            description=req.description,
            attendees=req.attendees,
            location=req.location,
            conference=req.conference,
            private=req.private,
            time_zone=req.timezone,
        )


@router.post("/freebusy")
def get_freebusy(
    req: FreeBusyRequest,
    service: AvailabilityService = Depends(availability_service),
):
    with guarded("query free/busy", logger):
        return service.get_availability(req.time_min, req.time_max, req.timezone)


@router.post("/slots")
def suggest_slots(
    req: SlotsRequest,
    service: AvailabilityService = Depends(availability_service),
):
    with guarded("suggest slots", logger):
        return service.suggest_slots(
            req.time_min,
            req.time_max,
            slot_duration_minutes=req.slot_duration_minutes,
            exclude_slots=req.exclude_slots,
            time_zone=req.timezone,
            meeting_type=req.meeting_type,
            max_slots=req.max_slots,
        )


@router.post("/best-time")
def find_best_time(
    req: BestTimeRequest,
    service: AvailabilityService = Depends(availability_service),
):
    with guarded("find best meeting time", logger):
        suggestions = service.find_best_time_for_meeting(
            req.duration_minutes, req.attendee_emails, req.options.model_dump()
        )
        tz = req.options.timezone or service.user_timezone()
        return {"suggestions": [s.to_dict(tz) for s in suggestions], "timezone": tz}
