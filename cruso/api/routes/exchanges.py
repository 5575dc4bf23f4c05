import logging
import uuid
from typing import Any, Dict

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel, Field

from cruso.api.deps import email_service, exchange_service, guarded, require_user
from cruso.services.email import EmailService
from cruso.services.exchange import ExchangeService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1/exchanges", tags=["exchanges"])


class ReplyRequest(BaseModel):
    body: str = Field(min_length=1)


def _exchange_id(value: str) -> str:
    try:
        return str(uuid.UUID(value))
    except ValueError:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Exchange not found",
        )


@router.get("")
@router.get("/")
def list_exchanges(
    user: Dict[str, Any] = Depends(require_user),
    service: ExchangeService = Depends(exchange_service),
):
    with guarded("list exchanges", logger):
        return {"exchanges": service.list_exchanges(user["id"])}


@router.get("/{exchange_id}/messages")
def list_messages(
    exchange_id: str,
    user: Dict[str, Any] = Depends(require_user),
    service: ExchangeService = Depends(exchange_service),
):
    exchange_id = _exchange_id(exchange_id)
    with guarded("list exchange messages", logger):
        return {"messages": service.get_messages(exchange_id, owner_id=user["id"])}


@router.post("/{exchange_id}/reply")
def reply(
    exchange_id: str,
    req: ReplyRequest,
    user: Dict[str, Any] = Depends(require_user),
    exchanges: ExchangeService = Depends(exchange_service),
    email: EmailService = Depends(email_service),
):
    exchange_id = _exchange_id(exchange_id)
    with guarded("reply to exchange", logger):
        exchanges.get_messages(exchange_id, owner_id=user["id"])
        body = f"{req.body}\n\n{exchanges.get_signature(exchange_id)}"
        return email.reply_to_exchange(exchange_id, body, owner_id=user["id"])
