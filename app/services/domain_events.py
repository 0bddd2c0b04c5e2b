"""
Domain events - OrderConfirmed, OrderCancelled, NotificationRequiresManualFollowUp.

Published after the durable state change. Delivery to subscribers is best-effort: every
event is mirrored into system_events, and a failing handler is logged and never undoes
or blocks the transition that produced the event.
"""

import inspect
import logging
from collections import defaultdict
from collections.abc import Awaitable, Callable
from dataclasses import asdict, dataclass
from typing import Any

from sqlalchemy.orm import Session

from app.constants.event_types import (
    EVENT_NOTIFICATION_REQUIRES_MANUAL_FOLLOW_UP,
    EVENT_ORDER_CANCELLED,
    EVENT_ORDER_CONFIRMED,
)
from app.services.system_event_service import info

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class OrderConfirmed:
    order_id: str
    pending_order_id: int
    provider_id: int
    inbound_message_id: str | None = None

    event_type = EVENT_ORDER_CONFIRMED


@dataclass(frozen=True)
class OrderCancelled:
    order_id: str
    pending_order_id: int
    provider_id: int
    inbound_message_id: str | None = None

    event_type = EVENT_ORDER_CANCELLED


@dataclass(frozen=True)
class NotificationRequiresManualFollowUp:
    order_id: str
    provider_id: int
    pending_order_id: int | None = None
    reason_code: str | None = None

    event_type = EVENT_NOTIFICATION_REQUIRES_MANUAL_FOLLOW_UP


DomainEvent = OrderConfirmed | OrderCancelled | NotificationRequiresManualFollowUp
EventHandler = Callable[[Session, Any], Awaitable[None] | None]


class DomainEventBus:
    """In-process fan-out of domain events to subscribed handlers (sync or async)."""

    def __init__(self) -> None:
        self._handlers: dict[type, list[EventHandler]] = defaultdict(list)

    def subscribe(self, event_type: type, handler: EventHandler) -> None:
        self._handlers[event_type].append(handler)

    def handlers_for(self, event_type: type) -> list[EventHandler]:
        return list(self._handlers.get(event_type, []))

    async def publish(self, db: Session, event: DomainEvent) -> None:
        payload = asdict(event)
        try:
            info(
                db=db,
                event_type=event.event_type,
                pending_order_id=getattr(event, "pending_order_id", None),
                payload=payload,
            )
        except Exception as e:
            logger.error(f"Failed to record domain event {event.event_type}: {e}", exc_info=True)
            db.rollback()

        for handler in self.handlers_for(type(event)):
            try:
                result = handler(db, event)
                if inspect.isawaitable(result):
                    await result
            except Exception as e:
                logger.error(
                    f"Domain event handler {getattr(handler, '__name__', handler)!r} failed "
                    f"for {event.event_type} (order_id={event.order_id}): {type(e).__name__}: {e}",
                    exc_info=True,
                )


def build_event_bus(sender=None) -> DomainEventBus:
    """
    Event bus with the application's own subscribers.

    Args:
        sender: MessageSender for supplier-facing follow-ups (defaults to WhatsAppCloudSender)
    """
    from app.core.config import settings

    bus = DomainEventBus()
    if settings.send_order_details_on_confirm:
        from app.services.messaging.whatsapp_client import WhatsAppCloudSender
        from app.services.order_notifier import order_details_handler

        bus.subscribe(OrderConfirmed, order_details_handler(sender or WhatsAppCloudSender()))
    return bus
