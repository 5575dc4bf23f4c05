"""Outbound email through Mailgun, recorded into exchanges."""

import logging
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Sequence

import httpx

from cruso.config import MailgunConfig, SchedulingConfig
from cruso.errors import CrusoError, NotFoundError, ValidationError
from cruso.services.exchange import OUTBOUND, EmailData, ExchangeService, reply_subject

logger = logging.getLogger(__name__)


class MailgunClient:
    """Thin wrapper over Mailgun's ``/messages`` endpoint."""

    def __init__(self, config: MailgunConfig, timeout: float = 10.0, client: Optional[httpx.Client] = None):
        self.config = config
        self.timeout = timeout
        self._client = client

    @property
    def from_address(self) -> str:
        return self.config.from_address

    def _http(self) -> httpx.Client:
        if self._client is None:
            self._client = httpx.Client(timeout=self.timeout)
        return self._client

    def send_message(
        self,
        to: Sequence[str],
        subject: str,
        text: str,
        cc: Optional[Sequence[str]] = None,
        bcc: Optional[Sequence[str]] = None,
        in_reply_to: Optional[str] = None,
        references: Optional[Sequence[str]] = None,
        reply_to: Optional[str] = None,
    ) -> str:
        """Send a plain-text message and return Mailgun's message id."""
        if not self.config.can_send:
            raise CrusoError("Mailgun is not configured")
        if not to:
            raise ValidationError("At least one recipient is required")

        data: Dict[str, Any] = {
            "from": self.config.from_address,
            "to": list(to),
            "subject": subject,
            "text": text,
        }
        if cc:
            data["cc"] = list(cc)
        if bcc:
            data["bcc"] = list(bcc)
        if in_reply_to:
            data["h:In-Reply-To"] = f"<{in_reply_to.strip('<>')}>"
        if references:
            data["h:References"] = " ".join(f"<{r.strip('<>')}>" for r in references)
        if reply_to:
            data["h:Reply-To"] = reply_to

        url = f"{self.config.base_url.rstrip('/')}/{self.config.domain}/messages"
        logger.info(f"Sending email to {', '.join(to)}: {subject}")
        response = self._http().post(url, auth=("api", self.config.api_key), data=data)
        if response.status_code >= 300:
            logger.error(f"Mailgun returned {response.status_code}: {response.text}")
            raise CrusoError(f"Failed to send email: Mailgun returned {response.status_code}", 502)

        message_id = response.json().get("id", "")
        return message_id.strip("<>")

    def close(self) -> None:
        if self._client is not None:
            self._client.close()
            self._client = None


class EmailService:
    def __init__(
        self,
        database: Any,
        mailer: MailgunClient,
        config: Optional[SchedulingConfig] = None,
    ):
        self.database = database
        self.mailer = mailer
        self.exchanges = ExchangeService(database, config)

    def send_in_exchange(
        self,
        to: Sequence[str],
        subject: str,
        body: str,
        exchange_id: Optional[str] = None,
        owner_id: Optional[str] = None,
        cc: Optional[Sequence[str]] = None,
    ) -> Dict[str, Any]:
        """Send ``body`` and record it. With an ``exchange_id`` the mail replies to its tip."""
        previous: Optional[Dict[str, Any]] = None
        references: List[str] = []
        if exchange_id:
            messages = self.database.list_exchange_messages(exchange_id)
            if not messages:
                raise NotFoundError("Exchange not found")
            previous = messages[-1]
            references = [m["message_id"] for m in messages]
            subject = reply_subject(subject or previous.get("subject"))
        else:
            exchange_id = str(uuid.uuid4())

        message_id = self.mailer.send_message(
            to,
            subject,
            body,
            cc=cc,
            in_reply_to=previous["message_id"] if previous else None,
            references=references or None,
        )
        email = EmailData(
            message_id=message_id,
            previous_message_id=previous["message_id"] if previous else None,
            sender=self.mailer.from_address,
            recipients=list(to) + list(cc or []),
            subject=subject,
            body=body,
            timestamp=datetime.now(timezone.utc),
            type=OUTBOUND,
            exchange_id=exchange_id,
        )
        self.exchanges.record_message(email, owner_id)
        return {"exchange_id": exchange_id, "message_id": message_id, "subject": subject}

    def reply_to_exchange(
        self, exchange_id: str, body: str, owner_id: Optional[str] = None
    ) -> Dict[str, Any]:
        messages = self.database.list_exchange_messages(exchange_id)
        inbound = [m for m in messages if m["type"] == "inbound"]
        if not inbound:
            raise NotFoundError("No inbound message to reply to in this exchange")
        latest = inbound[-1]
        return self.send_in_exchange(
            [latest["sender"]],
            latest.get("subject") or "",
            body,
            exchange_id=exchange_id,
            owner_id=owner_id,
        )
