"""
Outbound notifier - send an order to its supplier and open a pending order for the reply.

    TrySendTemplate
      sent                -> attempt(SENT, template)        -> pending order            SENT
      policy rejection    -> attempt(REJECTED_POLICY, template) -> FallbackPlainMessage
      other rejection     -> attempt(FAILED, template)                                  FAILED
    FallbackPlainMessage
      sent                -> attempt(SENT, fallback_text)   -> pending order (manual follow-up)
                             + NotificationRequiresManualFollowUp                       SENT_FALLBACK
      failed              -> attempt(FAILED, fallback_text)                             FAILED (needs reactivation)

No database lock is held while a send is in flight; the pending order is created only
after the network call returns.
"""

import logging
from dataclasses import dataclass

from sqlalchemy.orm import Session

from app.constants.event_types import (
    EVENT_NOTIFICATION_FAILED,
    EVENT_NOTIFICATION_TEMPLATE_REJECTED,
    EVENT_ORDER_DETAILS_SEND_FAILURE,
)
from app.constants.statuses import (
    ATTEMPT_FAILED,
    ATTEMPT_REJECTED_POLICY,
    ATTEMPT_SENT,
    CHANNEL_FALLBACK_TEXT,
    CHANNEL_TEMPLATE,
)
from app.core.config import settings
from app.db.models import NotificationAttempt, PendingOrder, Provider
from app.schemas.orders import OrderSnapshot
from app.services import pending_orders
from app.services.domain_events import (
    DomainEventBus,
    NotificationRequiresManualFollowUp,
    OrderConfirmed,
)
from app.services.messaging.message_composer import (
    format_order_details,
    format_order_fallback_text,
)
from app.services.messaging.whatsapp_client import (
    MessageSender,
    SendResult,
    is_policy_rejection,
)
from app.services.phone_normalization import NormalizationError, normalize_phone
from app.services.system_event_service import error, warn

logger = logging.getLogger(__name__)

NOTIFY_SENT = "SENT"
NOTIFY_SENT_FALLBACK = "SENT_FALLBACK"
NOTIFY_ALREADY_PENDING = "ALREADY_PENDING"
NOTIFY_FAILED = "FAILED"
NOTIFY_INVALID_PHONE = "INVALID_PHONE"


@dataclass
class NotificationResult:
    status: str
    order_id: str
    pending_order: PendingOrder | None = None
    reason_code: str | None = None
    error: str | None = None
    needs_reactivation: bool = False

    @property
    def requires_manual_follow_up(self) -> bool:
        return bool(self.pending_order and self.pending_order.requires_manual_follow_up)


def record_attempt(
    db: Session,
    order_id: str,
    provider_id: int | None,
    channel: str,
    outcome: str,
    result: SendResult | None = None,
) -> NotificationAttempt:
    """Append one row to the notification audit trail (never updated afterwards)."""
    attempt = NotificationAttempt(
        order_id=order_id,
        provider_id=provider_id,
        channel=channel,
        outcome=outcome,
        reason_code=result.reason_code if result else None,
        provider_message_id=result.message_id if result else None,
        error=(result.error or None) if result else None,
    )
    db.add(attempt)
    db.commit()
    return attempt


def template_variables(order: OrderSnapshot, provider: Provider) -> dict[str, str]:
    return {
        "contact_name": provider.contact_name or provider.name,
        "provider_name": provider.name,
        "order_reference": order.reference,
    }


def _open_pending_order(
    db: Session,
    order: OrderSnapshot,
    provider: Provider,
    phone: str,
    requires_manual_follow_up: bool,
) -> PendingOrder | None:
    try:
        return pending_orders.create(
            db,
            order,
            provider,
            phone=phone,
            requires_manual_follow_up=requires_manual_follow_up,
        )
    except pending_orders.DuplicateActivePendingOrder as e:
        # A concurrent notify for the same order won the race; its pending order stands
        logger.warning(f"Pending order not created: {e}")
        return None


async def notify_order(
    db: Session,
    order: OrderSnapshot,
    provider: Provider,
    sender: MessageSender,
    event_bus: DomainEventBus | None = None,
) -> NotificationResult:
    """
    Notify a supplier about an order and open a pending order awaiting their reply.

    Args:
        db: Database session
        order: Order snapshot to send
        provider: Recipient provider
        sender: Send capability
        event_bus: Bus for NotificationRequiresManualFollowUp (optional)

    Returns:
        NotificationResult (SENT, SENT_FALLBACK, ALREADY_PENDING, FAILED, INVALID_PHONE)
    """
    normalized = normalize_phone(provider.phone)
    if isinstance(normalized, NormalizationError):
        logger.warning(f"Provider {provider.id} phone unusable for order {order.order_id}: {normalized.message}")
        return NotificationResult(
            status=NOTIFY_INVALID_PHONE, order_id=order.order_id, error=normalized.message
        )
    phone = normalized.e164

    if pending_orders.has_active(db, order.order_id, normalized):
        logger.info(f"Order {order.order_id} already awaiting confirmation from {phone}, not resending")
        return NotificationResult(status=NOTIFY_ALREADY_PENDING, order_id=order.order_id)

    # Release the read transaction before going to the network
    db.commit()

    template_result = await sender.send_template(
        phone, settings.order_template_name, template_variables(order, provider)
    )

    if template_result.sent:
        record_attempt(db, order.order_id, provider.id, CHANNEL_TEMPLATE, ATTEMPT_SENT, template_result)
        pending = _open_pending_order(db, order, provider, provider.phone, requires_manual_follow_up=False)
        logger.info(f"Order {order.order_id} template sent to {phone}")
        return NotificationResult(status=NOTIFY_SENT, order_id=order.order_id, pending_order=pending)

    if not is_policy_rejection(template_result):
        record_attempt(db, order.order_id, provider.id, CHANNEL_TEMPLATE, ATTEMPT_FAILED, template_result)
        logger.error(
            f"Order {order.order_id} template to {phone} failed: "
            f"{template_result.status} code={template_result.reason_code} {template_result.error}"
        )
        error(
            db=db,
            event_type=EVENT_NOTIFICATION_FAILED,
            payload={
                "order_id": order.order_id,
                "provider_id": provider.id,
                "channel": CHANNEL_TEMPLATE,
                "reason_code": template_result.reason_code,
            },
        )
        return NotificationResult(
            status=NOTIFY_FAILED,
            order_id=order.order_id,
            reason_code=template_result.reason_code,
            error=template_result.error,
        )

    # Engagement window closed: a plain message re-opens it
    record_attempt(
        db, order.order_id, provider.id, CHANNEL_TEMPLATE, ATTEMPT_REJECTED_POLICY, template_result
    )
    warn(
        db=db,
        event_type=EVENT_NOTIFICATION_TEMPLATE_REJECTED,
        payload={
            "order_id": order.order_id,
            "provider_id": provider.id,
            "reason_code": template_result.reason_code,
        },
    )
    logger.info(
        f"Order {order.order_id} template rejected by policy (code {template_result.reason_code}), "
        f"falling back to plain text"
    )

    body = format_order_fallback_text(order, provider.name, provider.contact_name)
    fallback_result = await sender.send_text(phone, body)

    if not fallback_result.sent:
        record_attempt(
            db, order.order_id, provider.id, CHANNEL_FALLBACK_TEXT, ATTEMPT_FAILED, fallback_result
        )
        logger.error(
            f"Order {order.order_id} fallback text to {phone} failed: "
            f"code={fallback_result.reason_code} {fallback_result.error} - number needs manual reactivation"
        )
        error(
            db=db,
            event_type=EVENT_NOTIFICATION_FAILED,
            payload={
                "order_id": order.order_id,
                "provider_id": provider.id,
                "channel": CHANNEL_FALLBACK_TEXT,
                "reason_code": fallback_result.reason_code,
                "needs_reactivation": True,
            },
        )
        return NotificationResult(
            status=NOTIFY_FAILED,
            order_id=order.order_id,
            reason_code=fallback_result.reason_code or template_result.reason_code,
            error=fallback_result.error,
            needs_reactivation=True,
        )

    record_attempt(db, order.order_id, provider.id, CHANNEL_FALLBACK_TEXT, ATTEMPT_SENT, fallback_result)
    pending = _open_pending_order(db, order, provider, provider.phone, requires_manual_follow_up=True)

    if event_bus is not None:
        await event_bus.publish(
            db,
            NotificationRequiresManualFollowUp(
                order_id=order.order_id,
                provider_id=provider.id,
                pending_order_id=pending.id if pending else None,
                reason_code=template_result.reason_code,
            ),
        )

    return NotificationResult(
        status=NOTIFY_SENT_FALLBACK,
        order_id=order.order_id,
        pending_order=pending,
        reason_code=template_result.reason_code,
    )


def order_details_handler(sender: MessageSender):
    """OrderConfirmed handler: send the full order details to the supplier who confirmed."""

    async def send_order_details(db: Session, event: OrderConfirmed) -> None:
        pending = pending_orders.get_pending_order(db, event.pending_order_id)
        provider = db.get(Provider, event.provider_id)
        if pending is None or provider is None or not pending.order_payload:
            logger.warning(f"No order snapshot for confirmed order {event.order_id}, details not sent")
            return

        order = OrderSnapshot.model_validate(pending.order_payload)
        body = format_order_details(order, provider.name)
        result = await sender.send_text(pending.provider_phone_normalized, body)
        if result.sent:
            logger.info(f"Order details for {event.order_id} sent to {pending.provider_phone_normalized}")
            return

        logger.error(
            f"Order details for {event.order_id} not sent: code={result.reason_code} {result.error}"
        )
        error(
            db=db,
            event_type=EVENT_ORDER_DETAILS_SEND_FAILURE,
            pending_order_id=pending.id,
            payload={"order_id": event.order_id, "reason_code": result.reason_code},
        )

    return send_order_details
