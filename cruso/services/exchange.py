"""Email threading.

An exchange is a chain of messages linked through ``previous_message_id``.
A new message may only extend an exchange from its current tip; a reply to
an older message would fork the thread and is rejected by ``can_branch``.
"""

import logging
import uuid
from dataclasses import asdict, dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional, Tuple

from cruso.config import SchedulingConfig
from cruso.errors import NotFoundError, ValidationError

logger = logging.getLogger(__name__)

INBOUND = "inbound"
OUTBOUND = "outbound"


@dataclass
class EmailData:
    message_id: str
    sender: str
    recipients: List[str] = field(default_factory=list)
    subject: str = ""
    body: str = ""
    previous_message_id: Optional[str] = None
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    type: str = INBOUND
    exchange_id: Optional[str] = None

    def __post_init__(self):
        if not self.message_id:
            raise ValidationError("message_id is required")
        if self.type not in (INBOUND, OUTBOUND):
            raise ValidationError(f"Invalid message type '{self.type}'")

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["timestamp"] = self.timestamp.isoformat()
        return data


def reply_subject(subject: Optional[str]) -> str:
    subject = (subject or "").strip()
    if subject.lower().startswith("re:"):
        return subject
    return f"Re: {subject}"


def serialize_message(row: Dict[str, Any]) -> Dict[str, Any]:
    data = dict(row)
    data["exchange_id"] = str(data.get("exchange_id"))
    if isinstance(data.get("timestamp"), datetime):
        data["timestamp"] = data["timestamp"].isoformat()
    return data


class ExchangeService:
    def __init__(self, database: Any, config: Optional[SchedulingConfig] = None):
        self.database = database
        self.config = config or SchedulingConfig()

    def resolve_exchange(self, email: EmailData) -> Tuple[str, bool]:
        """Return ``(exchange_id, is_new)`` for an incoming message."""
        if email.previous_message_id:
            previous = self.database.get_exchange_message(email.previous_message_id)
            if previous:
                return str(previous["exchange_id"]), False
            logger.debug(
                f"Previous message {email.previous_message_id} unknown, starting new exchange"
            )
        return str(uuid.uuid4()), True

    def can_branch(self, email: EmailData) -> bool:
        if not email.exchange_id:
            return True
        latest = self.database.get_latest_exchange_message(email.exchange_id)
        if latest is None:
            return True
        return latest["message_id"] == email.previous_message_id

    def is_first_message(self, email: EmailData) -> bool:
        if not email.exchange_id:
            return True
        messages = self.database.list_exchange_messages(email.exchange_id)
        return not messages or messages[0]["message_id"] == email.message_id

    def is_duplicate(self, email: EmailData) -> bool:
        return self.database.get_exchange_message(email.message_id) is not None

    def is_valid_engagement(self, exchange_id: str, now: Optional[datetime] = None) -> bool:
        """Exchanges stop being answered once they grow too long or too old."""
        messages = self.database.list_exchange_messages(exchange_id)
        if not messages:
            return True
        if len(messages) > self.config.max_emails_in_exchange:
            return False
        now = now or datetime.now(timezone.utc)
        started = messages[0]["timestamp"]
        if started.tzinfo is None:
            started = started.replace(tzinfo=timezone.utc)
        return now - started <= timedelta(days=self.config.engagement_window_days)

    def record_message(self, email: EmailData, owner_id: Optional[str] = None) -> Dict[str, Any]:
        if not email.exchange_id:
            email.exchange_id, _ = self.resolve_exchange(email)

        row = self.database.insert_exchange_message(
            email.exchange_id,
            email.message_id,
            email.previous_message_id,
            email.sender,
            email.recipients,
            email.subject,
            email.body,
            email.timestamp,
            email.type,
            owner_id,
        )
        if owner_id:
            self.database.set_exchange_owner(email.exchange_id, owner_id)
        logger.info(f"Recorded {email.type} message {email.message_id} in exchange {email.exchange_id}")
        return row

    def find_owner(self, email: EmailData) -> Optional[str]:
        """The exchange's owner, else a user matching the sender or a recipient."""
        if email.exchange_id:
            owner = self.database.get_exchange_owner(email.exchange_id)
            if owner:
                return owner
        for address in [email.sender] + list(email.recipients):
            user = self.database.get_user_by_email(address)
            if user:
                return user["id"]
        return None

    def get_signature(self, exchange_id: str) -> str:
        return self.signature_for_owner(self.database.get_exchange_owner(exchange_id))

    def signature_for_owner(self, owner_id: Optional[str]) -> str:
        if owner_id:
            prefs = self.database.get_preferences(owner_id) or {}
            if prefs.get("signature"):
                return f"Best,\n{prefs['signature']}"
            user = self.database.get_user(owner_id)
            if user and user.get("email"):
                return f"Best,\n{user['email']}'s AI Assistant"
        return f"Best,\n{self.config.assistant_name}"

    def list_exchanges(self, owner_id: str) -> List[Dict[str, Any]]:
        rows = self.database.list_exchanges(owner_id)
        result = []
        for row in rows:
            data = dict(row)
            data["exchange_id"] = str(data["exchange_id"])
            for key in ("started_at", "last_message_at"):
                if isinstance(data.get(key), datetime):
                    data[key] = data[key].isoformat()
            result.append(data)
        return result

    def get_messages(self, exchange_id: str, owner_id: Optional[str] = None) -> List[Dict[str, Any]]:
        if owner_id is not None and self.database.get_exchange_owner(exchange_id) != owner_id:
            raise NotFoundError("Exchange not found")
        messages = self.database.list_exchange_messages(exchange_id)
        if not messages:
            raise NotFoundError("Exchange not found")
        return [serialize_message(m) for m in messages]
