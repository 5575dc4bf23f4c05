"""Mailgun inbound route. Authenticated by webhook signature, not by session."""

import logging

from fastapi import APIRouter, HTTPException, Request, status

from cruso.api.deps import guarded, require_database, state
from cruso.services.exchange import ExchangeService
from cruso.webhook import is_spam, parse_inbound, verify_signature

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1/inbox", tags=["inbox"])


def _ignored(reason: str) -> dict:
    logger.info(f"Ignoring inbound email: {reason}")
    return {"status": "ignored", "reason": reason}


@router.post("/webhook")
async def inbound_webhook(request: Request):
    fields = dict(await request.form())

    if not verify_signature(
        state.config.mailgun.webhook_signing_key,
        fields.get("timestamp"),
        fields.get("token"),
        fields.get("signature"),
    ):
        logger.warning("Rejected inbound webhook with invalid signature")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid webhook signature",
        )

    database = require_database()

    with guarded("process inbound email", logger):
        if is_spam(fields, state.config.mailgun.spam):
            return _ignored("spam")

        email = parse_inbound(fields)
        exchanges = ExchangeService(database, state.config.scheduling)
        if exchanges.is_duplicate(email):
            return _ignored("duplicate")

        email.exchange_id, is_new = exchanges.resolve_exchange(email)
        if not is_new:
            if not exchanges.can_branch(email):
                return _ignored("stale thread reference")
            if not exchanges.is_valid_engagement(email.exchange_id):
                return _ignored("engagement limit exceeded")

        owner_id = exchanges.find_owner(email)
        exchanges.record_message(email, owner_id)

        return {
            "status": "ok",
            "exchange_id": email.exchange_id,
            "is_new_exchange": is_new,
        }
