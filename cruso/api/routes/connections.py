import logging
from typing import Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, ConfigDict, Field

from cruso.api.deps import connections_service, guarded
from cruso.services.connections import CalendarConnectionsService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1/calendar/connections", tags=["connections"])


class ConnectionUpdateRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    include_in_availability: Optional[bool] = Field(None, alias="includeInAvailability")
    is_active: Optional[bool] = Field(None, alias="isActive")
    is_primary: Optional[bool] = Field(None, alias="isPrimary")


@router.get("")
@router.get("/")
def list_connections(service: CalendarConnectionsService = Depends(connections_service)):
    with guarded("list calendar connections", logger):
        return {"connections": service.list_calendars()}


@router.get("/accounts")
def list_accounts(service: CalendarConnectionsService = Depends(connections_service)):
    with guarded("list accounts", logger):
        return {"accounts": service.list_accounts()}


@router.post("/sync")
def sync_calendars(service: CalendarConnectionsService = Depends(connections_service)):
    with guarded("sync calendars", logger):
        return service.fetch_all_calendar_lists()


@router.patch("/{connection_id}")
def update_connection(
    connection_id: int,
    req: ConnectionUpdateRequest,
    service: CalendarConnectionsService = Depends(connections_service),
):
    with guarded("update calendar connection", logger):
        connection = service.update_connection(
            connection_id,
            include_in_availability=req.include_in_availability,
            is_active=req.is_active,
            is_primary=req.is_primary,
        )
        return {"connection": connection}


@router.delete("/accounts/{account_id}")
def remove_account(
    account_id: str,
    service: CalendarConnectionsService = Depends(connections_service),
):
    with guarded("remove account", logger):
        return service.remove_account(account_id)
