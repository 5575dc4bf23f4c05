"""Working hours and bookable availability share one set of routes."""

import logging
from typing import Any, Callable, Dict, Optional

from fastapi import APIRouter, Depends, status
from pydantic import BaseModel, ConfigDict, Field

from cruso.api.deps import bookable_hours_service, guarded, working_hours_service
from cruso.services.schedules import ScheduleService, serialize_entry

logger = logging.getLogger(__name__)


class ScheduleEntryRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    days: Optional[Any] = None
    start_time: Optional[str] = Field(None, alias="startTime")
    end_time: Optional[str] = Field(None, alias="endTime")
    timezone: Optional[str] = None


class ScheduleReplaceRequest(BaseModel):
    schedule: Dict[str, Any]
    timezone: Optional[str] = None


def build_router(prefix: str, tag: str, get_service: Callable[..., ScheduleService]) -> APIRouter:
    router = APIRouter(prefix=prefix, tags=[tag])

    @router.get("")
    @router.get("/")
    def list_entries(service: ScheduleService = Depends(get_service)):
        with guarded(f"list {service.label}", logger):
            return {"entries": [serialize_entry(e) for e in service.list_entries()]}

    @router.post("", status_code=status.HTTP_201_CREATED)
    @router.post("/", status_code=status.HTTP_201_CREATED)
    def create_entry(req: ScheduleEntryRequest, service: ScheduleService = Depends(get_service)):
        with guarded(f"create {service.label}", logger):
            entry = service.create_entry(req.days, req.start_time, req.end_time, req.timezone)
            return {"entry": serialize_entry(entry)}

    @router.get("/schedule")
    def get_schedule(service: ScheduleService = Depends(get_service)):
        with guarded(f"get {service.label} schedule", logger):
            return {"schedule": service.get_schedule()}

    @router.put("/schedule")
    def replace_schedule(
        req: ScheduleReplaceRequest, service: ScheduleService = Depends(get_service)
    ):
        with guarded(f"replace {service.label} schedule", logger):
            return {"schedule": service.replace_schedule(req.schedule, req.timezone)}

    @router.get("/check")
    def check_schedule(
        time: Optional[str] = None, service: ScheduleService = Depends(get_service)
    ):
        with guarded(f"check {service.label}", logger):
            return service.check(time)

    @router.post("/default", status_code=status.HTTP_201_CREATED)
    def create_default(service: ScheduleService = Depends(get_service)):
        with guarded(f"create default {service.label}", logger):
            return {"entry": serialize_entry(service.create_default())}

    @router.get("/{entry_id}")
    def get_entry(entry_id: int, service: ScheduleService = Depends(get_service)):
        with guarded(f"get {service.label}", logger):
            return {"entry": serialize_entry(service.get_entry(entry_id))}

    @router.put("/{entry_id}")
    def update_entry(
        entry_id: int,
        req: ScheduleEntryRequest,
        service: ScheduleService = Depends(get_service),
    ):
        with guarded(f"update {service.label}", logger):
            entry = service.update_entry(
                entry_id,
                days=req.days,
                start_time=req.start_time,
                end_time=req.end_time,
                timezone=req.timezone,
            )
            return {"entry": serialize_entry(entry)}

    @router.delete("/{entry_id}")
    def delete_entry(entry_id: int, service: ScheduleService = Depends(get_service)):
        with guarded(f"delete {service.label}", logger):
            service.delete_entry(entry_id)
            return {"deleted": True, "id": entry_id}

    return router


working_hours_router = build_router("/api/v1/working-hours", "working-hours", working_hours_service)
availability_router = build_router("/api/v1/availability", "availability", bookable_hours_service)
