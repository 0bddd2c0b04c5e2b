"""
Delivery-path adapters - parse each BSP wire format into RawInboundEvent at the boundary.

Pure functions: no database access, no network. Whatever arrives (webhook push, polled
listing, realtime change feed) ends up in the same ingestion pipeline.
"""

import logging
from datetime import UTC, datetime
from typing import Any

from app.constants.delivery_paths import (
    DELIVERY_PATH_POLL,
    DELIVERY_PATH_REALTIME,
    DELIVERY_PATH_WEBHOOK,
)
from app.schemas.inbound import RawInboundEvent

logger = logging.getLogger(__name__)

MEDIA_MESSAGE_TYPES = ("image", "video", "audio", "document", "sticker")

KAPSO_MESSAGE_RECEIVED = "whatsapp.message.received"
CHANGE_FEED_INSERT = "INSERT"


def parse_timestamp(value: Any) -> datetime | None:
    """Unix seconds (int or numeric string) or ISO-8601; anything else is None."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=UTC)
    try:
        return datetime.fromtimestamp(int(value), tz=UTC)
    except (TypeError, ValueError, OverflowError, OSError):
        pass
    try:
        parsed = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    except ValueError:
        return None
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=UTC)


def _wa_id_to_phone(wa_id: Any) -> str | None:
    """
    WhatsApp ids are always international digits without "+" ("5491135562673").
    Prefixing "+" keeps the normalizer from reading them as national numbers.
    """
    if not isinstance(wa_id, str) or not wa_id.strip():
        return None
    wa_id = wa_id.strip()
    return wa_id if wa_id.startswith("+") else f"+{wa_id}"


def _bsp_phone(phone: Any) -> str | None:
    """BSP rows carry either a WhatsApp id (11+ bare digits) or a number as the user typed it."""
    if not isinstance(phone, str):
        return None
    stripped = phone.strip()
    if stripped.isdigit() and len(stripped) > 10:
        return _wa_id_to_phone(stripped)
    return stripped or None


def _as_id(value: Any) -> str | None:
    """Config and user ids arrive as strings, ints or UUIDs depending on the BSP."""
    if value is None or value == "":
        return None
    return str(value)


def _meta_message_body(message: dict) -> str | None:
    message_type = message.get("type", "text")
    if message_type == "text":
        return (message.get("text") or {}).get("body")
    if message_type == "button":
        button = message.get("button") or {}
        return button.get("text") or button.get("payload")
    if message_type == "interactive":
        interactive = message.get("interactive") or {}
        reply = interactive.get("button_reply") or interactive.get("list_reply") or {}
        return reply.get("title") or reply.get("id")
    if message_type in MEDIA_MESSAGE_TYPES:
        media = message.get(message_type) or {}
        caption = media.get("caption") if isinstance(media, dict) else None
        return caption or message.get("caption")
    return None


def from_whatsapp_webhook(payload: dict) -> list[RawInboundEvent]:
    """
    Meta Cloud API webhook envelope -> events, one per message.

    Every message of every change is returned, in payload order. Status callbacks
    (sent / delivered / read) carry no messages and produce nothing.
    """
    events: list[RawInboundEvent] = []
    if not isinstance(payload, dict):
        return events
    for entry in payload.get("entry") or []:
        for change in (entry or {}).get("changes") or []:
            value = (change or {}).get("value") or {}
            business_number_id = _as_id((value.get("metadata") or {}).get("phone_number_id"))
            messages = value.get("messages") or []
            if len(messages) > 1:
                logger.info(f"Received {len(messages)} messages in one webhook change")
            for message in messages:
                if not isinstance(message, dict):
                    continue
                events.append(
                    RawInboundEvent(
                        provider_message_id=message.get("id"),
                        sender_phone=_wa_id_to_phone(message.get("from")),
                        body=_meta_message_body(message),
                        delivery_path=DELIVERY_PATH_WEBHOOK,
                        received_at=parse_timestamp(message.get("timestamp")),
                        business_number_id=business_number_id,
                    )
                )
    return events


def _is_inbound(record: dict) -> bool:
    direction = record.get("direction")
    return direction is None or direction == "inbound"


def _record_to_event(
    record: dict, delivery_path: str, business_number_id: str | None = None
) -> RawInboundEvent:
    phone = (
        record.get("conversation_phone_number")
        or record.get("phone_number")
        or record.get("contact_phone")
        or record.get("from")
    )
    body = record.get("content")
    if body is None and isinstance(record.get("text"), dict):
        body = record["text"].get("body")
    return RawInboundEvent(
        provider_message_id=(
            record.get("whatsapp_message_id") or record.get("message_id") or record.get("id")
        ),
        sender_phone=_bsp_phone(phone),
        body=body,
        delivery_path=delivery_path,
        received_at=parse_timestamp(
            record.get("timestamp") or record.get("created_at") or record.get("received_at")
        ),
        business_number_id=business_number_id or _as_id(record.get("whatsapp_config_id")),
        user_id=_as_id(record.get("user_id")),
    )


def from_realtime_change(payload: dict) -> list[RawInboundEvent]:
    """
    Realtime deliveries -> events.

    Accepts a database change-feed row ({"type": "INSERT", "record": {...}}) and the
    BSP custom event ({"type": "whatsapp.message.received", "data": [{"message": {...}}]}).
    Outbound rows and other change types produce nothing.
    """
    if not isinstance(payload, dict):
        return []
    event_type = payload.get("type")

    if event_type == CHANGE_FEED_INSERT:
        record = payload.get("record") or {}
        if not isinstance(record, dict) or not _is_inbound(record):
            return []
        return [_record_to_event(record, DELIVERY_PATH_REALTIME)]

    if event_type == KAPSO_MESSAGE_RECEIVED:
        events = []
        for item in payload.get("data") or []:
            message = (item or {}).get("message") or {}
            if not isinstance(message, dict) or not _is_inbound(message):
                continue
            conversation = (item or {}).get("conversation") or {}
            if not message.get("phone_number") and conversation.get("phone_number"):
                message = {**message, "phone_number": conversation["phone_number"]}
            whatsapp_config = (item or {}).get("whatsapp_config") or {}
            events.append(
                _record_to_event(message, DELIVERY_PATH_REALTIME, _as_id(whatsapp_config.get("id")))
            )
        return events

    logger.debug(f"Ignoring realtime payload of type {event_type!r}")
    return []


def from_polled_messages(items: list[dict]) -> list[RawInboundEvent]:
    """Rows from the BSP message listing -> events (inbound rows only)."""
    return [
        _record_to_event(item, DELIVERY_PATH_POLL)
        for item in items or []
        if isinstance(item, dict) and _is_inbound(item)
    ]
