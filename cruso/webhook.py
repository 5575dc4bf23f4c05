"""Mailgun inbound webhook: signature verification, spam rules and parsing."""

import hashlib
import hmac
import logging
from datetime import datetime, timezone
from email.utils import getaddresses, parseaddr
from typing import Any, Mapping, Optional

from cruso.config import SpamFilterConfig
from cruso.errors import ValidationError
from cruso.services.exchange import INBOUND, EmailData

logger = logging.getLogger(__name__)

HIGH_RISK_RULES = (
    "URIBL_DBL_BLOCKED_OPENDNS",
    "RCVD_IN_VALIDITY_SAFE_BLOCKED",
    "RCVD_IN_VALIDITY_RPBL_BLOCKED",
    "URIBL_ZEN_BLOCKED_OPENDNS",
)


def verify_signature(
    signing_key: Optional[str],
    timestamp: Optional[str],
    token: Optional[str],
    signature: Optional[str],
) -> bool:
    """HMAC-SHA256 of ``timestamp + token``, compared in constant time."""
    if not signing_key or not timestamp or not token or not signature:
        return False
    digest = hmac.new(
        signing_key.encode("utf-8"),
        f"{timestamp}{token}".encode("utf-8"),
        hashlib.sha256,
    ).hexdigest()
    return hmac.compare_digest(digest, str(signature))


def verify_payload_signature(payload: Mapping[str, Any], signing_key: Optional[str] = None) -> bool:
    """Verify the JSON event-webhook form ``{"signature": {...}}``."""
    block = payload.get("signature") if isinstance(payload, Mapping) else None
    if not isinstance(block, Mapping):
        return False
    return verify_signature(
        signing_key, block.get("timestamp"), block.get("token"), block.get("signature")
    )


def _float(value: Any) -> Optional[float]:
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def is_spam(fields: Mapping[str, Any], config: Optional[SpamFilterConfig] = None) -> bool:
    config = config or SpamFilterConfig()

    if "yes" in str(fields.get("X-Mailgun-Sflag", "")).lower():
        logger.warning("Rejecting inbound mail: spam flag set")
        return True

    score = _float(fields.get("X-Mailgun-Sscore"))
    if score is None or score >= config.max_spam_score:
        logger.warning(f"Rejecting inbound mail: spam score {fields.get('X-Mailgun-Sscore')}")
        return True

    if config.require_dkim:
        if "pass" not in str(fields.get("X-Mailgun-Dkim-Check-Result", "")).lower():
            logger.warning("Rejecting inbound mail: DKIM check failed")
            return True

    if config.require_spf:
        if str(fields.get("X-Mailgun-Spf", "")).strip().lower() != "pass":
            logger.warning("Rejecting inbound mail: SPF check failed")
            return True

    if not config.allow_high_risk_rules:
        rules = str(fields.get("X-Mailgun-Spam-Rules", ""))
        if any(rule in rules for rule in HIGH_RISK_RULES):
            logger.warning("Rejecting inbound mail: high-risk spam rule matched")
            return True

    for point in str(fields.get("X-Mailgun-Spam-Points", "")).split(","):
        value = _float(point.strip())
        if value is not None and value > config.max_individual_spam_point:
            logger.warning(f"Rejecting inbound mail: spam point {value}")
            return True

    return False


def _message_id(value: Any) -> str:
    return str(value or "").strip().strip("<>").strip()


def _timestamp(value: Any) -> datetime:
    seconds = _float(value)
    if not seconds:
        return datetime.now(timezone.utc)
    return datetime.fromtimestamp(seconds, tz=timezone.utc)


def parse_inbound(fields: Mapping[str, Any]) -> EmailData:
    """Build an :class:`EmailData` from Mailgun's routed-message form fields."""
    message_id = _message_id(fields.get("Message-Id") or fields.get("message-id"))
    if not message_id:
        raise ValidationError("Invalid message ID")

    previous = _message_id(fields.get("In-Reply-To"))
    if not previous:
        references = str(fields.get("References") or "").split()
        if references:
            previous = _message_id(references[-1])

    sender = parseaddr(str(fields.get("From") or fields.get("from") or fields.get("sender") or ""))[1]
    sender = sender.strip().lower()
    if not sender or "@" not in sender:
        raise ValidationError("Invalid sender email address")

    recipients = []
    headers = [str(fields.get(name) or "") for name in ("To", "Cc")]
    if not any(headers):
        headers = [str(fields.get("recipient") or "")]
    for _, address in getaddresses(headers):
        address = address.strip().lower()
        if address and address != sender and address not in recipients:
            recipients.append(address)

    return EmailData(
        message_id=message_id,
        previous_message_id=previous or None,
        sender=sender,
        recipients=recipients,
        subject=str(fields.get("subject") or fields.get("Subject") or ""),
        body=str(fields.get("body-plain") or ""),
        timestamp=_timestamp(fields.get("timestamp")),
        type=INBOUND,
    )
