"""
Tests for delivery-path adapters (webhook envelope, realtime feed, polled listing).
"""

from datetime import UTC, datetime

from app.constants.delivery_paths import DELIVERY_PATH_POLL, DELIVERY_PATH_REALTIME, DELIVERY_PATH_WEBHOOK
from app.services.event_adapters import (
    from_polled_messages,
    from_realtime_change,
    from_whatsapp_webhook,
    parse_timestamp,
)


def _webhook(messages, statuses=None):
    value = {"messaging_product": "whatsapp", "metadata": {"phone_number_id": "test_id"}}
    if messages is not None:
        value["messages"] = messages
    if statuses is not None:
        value["statuses"] = statuses
    return {"object": "whatsapp_business_account", "entry": [{"id": "waba", "changes": [{"field": "messages", "value": value}]}]}


def test_webhook_text_message():
    payload = _webhook(
        [{"from": "5491135562673", "id": "wamid.1", "timestamp": "1760695200", "type": "text", "text": {"body": "Sí, confirmo"}}]
    )

    events = from_whatsapp_webhook(payload)

    assert len(events) == 1
    event = events[0]
    assert event.provider_message_id == "wamid.1"
    assert event.sender_phone == "+5491135562673"
    assert event.body == "Sí, confirmo"
    assert event.delivery_path == DELIVERY_PATH_WEBHOOK
    assert event.received_at == datetime.fromtimestamp(1760695200, tz=UTC)
    assert event.business_number_id == "test_id"
    assert event.user_id is None


def test_webhook_returns_every_message_in_order():
    payload = _webhook(
        [
            {"from": "5491135562673", "id": "wamid.1", "type": "text", "text": {"body": "hola"}},
            {"from": "5491135562673", "id": "wamid.2", "type": "text", "text": {"body": "confirmo"}},
        ]
    )

    events = from_whatsapp_webhook(payload)

    assert [e.provider_message_id for e in events] == ["wamid.1", "wamid.2"]


def test_webhook_button_and_interactive_bodies():
    payload = _webhook(
        [
            {"from": "5491135562673", "id": "wamid.b", "type": "button", "button": {"text": "Confirmar", "payload": "CONFIRM"}},
            {
                "from": "5491135562673",
                "id": "wamid.i",
                "type": "interactive",
                "interactive": {"type": "button_reply", "button_reply": {"id": "no", "title": "Rechazar"}},
            },
            {"from": "5491135562673", "id": "wamid.m", "type": "image", "image": {"id": "media", "caption": "remito"}},
        ]
    )

    bodies = [e.body for e in from_whatsapp_webhook(payload)]

    assert bodies == ["Confirmar", "Rechazar", "remito"]


def test_webhook_status_callbacks_produce_nothing():
    payload = _webhook(None, statuses=[{"id": "wamid.out", "status": "delivered"}])

    assert from_whatsapp_webhook(payload) == []
    assert from_whatsapp_webhook({}) == []
    assert from_whatsapp_webhook("not a dict") == []


def test_webhook_message_without_id_still_becomes_an_event():
    events = from_whatsapp_webhook(_webhook([{"from": "5491135562673", "type": "text", "text": {"body": "si"}}]))

    assert len(events) == 1
    assert events[0].provider_message_id is None


def test_realtime_insert_row():
    payload = {
        "type": "INSERT",
        "table": "whatsapp_messages",
        "record": {
            "id": "row-1",
            "whatsapp_message_id": "wamid.1",
            "conversation_phone_number": "5491135562673",
            "content": "dale",
            "direction": "inbound",
            "created_at": "2026-10-17T12:00:00Z",
            "user_id": "user-1",
            "whatsapp_config_id": 42,
        },
    }

    events = from_realtime_change(payload)

    assert len(events) == 1
    assert events[0].provider_message_id == "wamid.1"
    assert events[0].sender_phone == "+5491135562673"
    assert events[0].body == "dale"
    assert events[0].delivery_path == DELIVERY_PATH_REALTIME
    assert events[0].received_at == datetime(2026, 10, 17, 12, 0, tzinfo=UTC)
    assert events[0].user_id == "user-1"
    assert events[0].business_number_id == "42"


def test_realtime_outbound_and_other_changes_ignored():
    outbound = {"type": "INSERT", "record": {"whatsapp_message_id": "wamid.o", "direction": "outbound"}}

    assert from_realtime_change(outbound) == []
    assert from_realtime_change({"type": "UPDATE", "record": {"id": "x"}}) == []
    assert from_realtime_change(None) == []


def test_realtime_message_received_event_uses_conversation_phone():
    payload = {
        "type": "whatsapp.message.received",
        "data": [
            {
                "message": {"id": "wamid.k", "text": {"body": "ok"}, "timestamp": "1760695200"},
                "conversation": {"phone_number": "011 3556-2673"},
                "whatsapp_config": {"id": "cfg-7"},
            },
            {"message": {"id": "wamid.out", "direction": "outbound"}},
        ],
    }

    events = from_realtime_change(payload)

    assert len(events) == 1
    assert events[0].provider_message_id == "wamid.k"
    assert events[0].sender_phone == "011 3556-2673"
    assert events[0].body == "ok"
    assert events[0].business_number_id == "cfg-7"


def test_polled_messages():
    items = [
        {"message_id": "wamid.p1", "phone_number": "+54 9 11 3556-2673", "content": "confirmo"},
        {"message_id": "wamid.p2", "phone_number": "5491135562673", "direction": "outbound"},
        "garbage",
    ]

    events = from_polled_messages(items)

    assert len(events) == 1
    assert events[0].provider_message_id == "wamid.p1"
    assert events[0].sender_phone == "+54 9 11 3556-2673"
    assert events[0].delivery_path == DELIVERY_PATH_POLL
    assert from_polled_messages([]) == []


def test_parse_timestamp():
    assert parse_timestamp(None) is None
    assert parse_timestamp("") is None
    assert parse_timestamp("yesterday") is None
    assert parse_timestamp(0) == datetime(1970, 1, 1, tzinfo=UTC)
    assert parse_timestamp("2026-10-17T12:00:00") == datetime(2026, 10, 17, 12, 0, tzinfo=UTC)
    assert parse_timestamp("2026-10-17T12:00:00+00:00") == datetime(2026, 10, 17, 12, 0, tzinfo=UTC)
