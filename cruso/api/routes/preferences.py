import logging
from typing import Any, Dict

from fastapi import APIRouter, Body, Depends

from cruso.api.deps import guarded, preferences_service
from cruso.services.preferences import PreferencesService, serialize_preferences

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1/preferences", tags=["preferences"])


@router.get("")
@router.get("/")
def get_preferences(service: PreferencesService = Depends(preferences_service)):
    with guarded("get preferences", logger):
        return {"preferences": serialize_preferences(service.get_or_create_preferences())}


@router.patch("")
@router.patch("/")
def update_preferences(
    update: Dict[str, Any] = Body(...),
    service: PreferencesService = Depends(preferences_service),
):
    with guarded("update preferences", logger):
        return {"preferences": serialize_preferences(service.update_preferences(update))}


@router.delete("")
@router.delete("/")
def delete_preferences(service: PreferencesService = Depends(preferences_service)):
    with guarded("delete preferences", logger):
        service.delete_preferences()
        return {"deleted": True}
