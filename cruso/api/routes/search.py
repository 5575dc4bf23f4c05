import logging
from typing import Any, Dict, Optional

from fastapi import APIRouter, Body, Depends, Query, Request

from cruso.api.deps import guarded, search_service
from cruso.services.search import SearchOptions, SearchService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1/calendar/search", tags=["search"])


def _preset_params(request: Request) -> Dict[str, Any]:
    params: Dict[str, Any] = {}
    for key, value in request.query_params.items():
        params[key] = int(value) if value.isdigit() else value
    return params


@router.post("")
@router.post("/")
def search_primary(
    options: Optional[Dict[str, Any]] = Body(None),
    service: SearchService = Depends(search_service),
):
    with guarded("search events", logger):
        return service.search_primary_calendar_events(SearchOptions.from_dict(options))


@router.get("/quick")
def quick_search(
    q: str = Query(..., min_length=1),
    service: SearchService = Depends(search_service),
):
    with guarded("search events", logger):
        events = service.quick_search_primary_calendar(q)
        return {"events": events, "total_count": len(events)}


@router.get("/presets")
def list_presets(service: SearchService = Depends(search_service)):
    return {"presets": sorted(service.presets())}


@router.get("/presets/{name}")
def run_preset(
    name: str,
    request: Request,
    service: SearchService = Depends(search_service),
):
    with guarded("run search preset", logger):
        return service.run_preset(name, **_preset_params(request))


@router.post("/calendars/{calendar_id}")
def search_calendar(
    calendar_id: str,
    options: Optional[Dict[str, Any]] = Body(None),
    service: SearchService = Depends(search_service),
):
    with guarded("search events", logger):
        return service.search_events(calendar_id, SearchOptions.from_dict(options))
