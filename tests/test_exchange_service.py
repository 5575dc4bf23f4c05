import uuid
from datetime import datetime, timedelta, timezone

import pytest

from cruso.config import SchedulingConfig
from cruso.errors import NotFoundError, ValidationError
from cruso.services.exchange import (
    INBOUND,
    OUTBOUND,
    EmailData,
    ExchangeService,
    reply_subject,
)

NOW = datetime(2024, 5, 1, 12, tzinfo=timezone.utc)


def _message(message_id, exchange_id="ex-1", **extra):
    return {
        "message_id": message_id,
        "exchange_id": exchange_id,
        "sender": "guest@example.com",
        "subject": "Coffee?",
        "type": INBOUND,
        "timestamp": NOW,
        **extra,
    }


@pytest.fixture
def service(mock_database):
    return ExchangeService(mock_database, SchedulingConfig(max_emails_in_exchange=3))


def test_email_data_validation():
    with pytest.raises(ValidationError, match="message_id is required"):
        EmailData(message_id="", sender="a@example.com")
    with pytest.raises(ValidationError, match="Invalid message type"):
        EmailData(message_id="m1", sender="a@example.com", type="sideways")

    data = EmailData(message_id="m1", sender="a@example.com", timestamp=NOW).to_dict()
    assert data["timestamp"] == "2024-05-01T12:00:00+00:00"
    assert data["type"] == INBOUND


def test_reply_subject():
    assert reply_subject("Coffee?") == "Re: Coffee?"
    assert reply_subject("RE: Coffee?") == "RE: Coffee?"
    assert reply_subject(None) == "Re: "


def test_resolve_exchange_new_thread(service):
    exchange_id, is_new = service.resolve_exchange(EmailData(message_id="m1", sender="a@example.com"))
    assert is_new is True
    uuid.UUID(exchange_id)


def test_resolve_exchange_follows_previous_message(service, mock_database):
    mock_database.get_exchange_message.return_value = _message("m1")
    email = EmailData(message_id="m2", sender="a@example.com", previous_message_id="m1")
    assert service.resolve_exchange(email) == ("ex-1", False)


def test_can_branch_only_from_latest(service, mock_database):
    mock_database.get_latest_exchange_message.return_value = _message("m2")
    email = EmailData(message_id="m3", sender="a@example.com", exchange_id="ex-1", previous_message_id="m1")
    assert service.can_branch(email) is False
    email.previous_message_id = "m2"
    assert service.can_branch(email) is True


def test_is_first_message(service, mock_database):
    mock_database.list_exchange_messages.return_value = [_message("m1"), _message("m2")]
    assert service.is_first_message(EmailData(message_id="m1", sender="a@x.com", exchange_id="ex-1"))
    assert not service.is_first_message(EmailData(message_id="m2", sender="a@x.com", exchange_id="ex-1"))


def test_is_duplicate(service, mock_database):
    assert service.is_duplicate(EmailData(message_id="m1", sender="a@x.com")) is False
    mock_database.get_exchange_message.return_value = _message("m1")
    assert service.is_duplicate(EmailData(message_id="m1", sender="a@x.com")) is True


def test_engagement_limits(service, mock_database):
    mock_database.list_exchange_messages.return_value = [_message(f"m{i}") for i in range(3)]
    assert service.is_valid_engagement("ex-1", NOW)

    mock_database.list_exchange_messages.return_value = [_message(f"m{i}") for i in range(4)]
    assert not service.is_valid_engagement("ex-1", NOW)

    stale = [_message("m0", timestamp=datetime(2024, 3, 1, 12))]
    mock_database.list_exchange_messages.return_value = stale
    assert not service.is_valid_engagement("ex-1", NOW)
    assert service.is_valid_engagement("ex-1", datetime(2024, 3, 20, tzinfo=timezone.utc))


def test_record_message_sets_owner(service, mock_database):
    email = EmailData(
        message_id="m1",
        sender="cruso@example.com",
        recipients=["guest@example.com"],
        subject="Hello",
        timestamp=NOW,
        type=OUTBOUND,
        exchange_id="ex-1",
    )
    service.record_message(email, "user-1")

    mock_database.insert_exchange_message.assert_called_once_with(
        "ex-1", "m1", None, "cruso@example.com", ["guest@example.com"], "Hello", "", NOW, OUTBOUND, "user-1"
    )
    mock_database.set_exchange_owner.assert_called_once_with("ex-1", "user-1")


def test_find_owner(service, mock_database):
    email = EmailData(message_id="m1", sender="guest@example.com", recipients=["me@example.com"], exchange_id="ex-1")
    mock_database.get_exchange_owner.return_value = "owner-9"
    assert service.find_owner(email) == "owner-9"

    mock_database.get_exchange_owner.return_value = None
    mock_database.get_user_by_email.side_effect = lambda address: (
        {"id": "user-1"} if address == "me@example.com" else None
    )
    assert service.find_owner(email) == "user-1"


def test_signature_fallbacks(service, mock_database):
    mock_database.get_preferences.return_value = {"signature": "Pat"}
    assert service.signature_for_owner("user-1") == "Best,\nPat"

    mock_database.get_preferences.return_value = {}
    assert service.signature_for_owner("user-1") == "Best,\nme@example.com's AI Assistant"
    assert service.signature_for_owner(None) == "Best,\nCruso"


def test_get_messages_checks_owner(service, mock_database):
    mock_database.get_exchange_owner.return_value = "someone-else"
    with pytest.raises(NotFoundError, match="Exchange not found"):
        service.get_messages("ex-1", "user-1")

    mock_database.get_exchange_owner.return_value = "user-1"
    mock_database.list_exchange_messages.return_value = [_message("m1")]
    messages = service.get_messages("ex-1", "user-1")
    assert messages[0]["timestamp"] == "2024-05-01T12:00:00+00:00"


def test_list_exchanges_serializes_dates(service, mock_database):
    exchange_id = uuid.uuid4()
    mock_database.list_exchanges.return_value = [
        {"exchange_id": exchange_id, "started_at": NOW - timedelta(days=1), "last_message_at": NOW}
    ]
    rows = service.list_exchanges("user-1")
    assert rows == [
        {
            "exchange_id": str(exchange_id),
            "started_at": "2024-04-30T12:00:00+00:00",
            "last_message_at": "2024-05-01T12:00:00+00:00",
        }
    ]
