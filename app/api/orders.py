import logging
from datetime import timedelta

from fastapi import APIRouter, Body, Depends, HTTPException, Request, Security
from sqlalchemy.orm import Session

from app.api.auth import get_admin_auth
from app.api.dependencies import get_event_bus, get_message_sender, get_provider_or_404
from app.api.webhooks import process_events
from app.constants.statuses import (
    STATUS_AWAITING_CONFIRMATION,
    STATUS_CANCELLED,
    STATUS_CONFIRMED,
    STATUS_EXPIRED,
)
from app.core.config import settings
from app.db.deps import get_db
from app.schemas.orders import (
    ExpireResponse,
    NotificationResponse,
    NotifyOrderRequest,
    PendingOrderResponse,
)
from app.services import pending_orders
from app.services.domain_events import DomainEventBus
from app.services.event_adapters import from_polled_messages
from app.services.messaging.whatsapp_client import MessageSender
from app.services.order_notifier import NOTIFY_INVALID_PHONE, notify_order

logger = logging.getLogger(__name__)

router = APIRouter()

PENDING_ORDER_STATUSES = {
    STATUS_AWAITING_CONFIRMATION,
    STATUS_CONFIRMED,
    STATUS_CANCELLED,
    STATUS_EXPIRED,
}


@router.post("/orders/notify", response_model=NotificationResponse)
async def notify(
    request: NotifyOrderRequest,
    db: Session = Depends(get_db),
    sender: MessageSender = Depends(get_message_sender),
    event_bus: DomainEventBus | None = Depends(get_event_bus),
    _auth: bool = Security(get_admin_auth),
):
    """Send an order to its supplier and open a pending order awaiting their reply."""
    provider = get_provider_or_404(db, request.provider_id)
    result = await notify_order(db, request.order, provider, sender, event_bus=event_bus)
    if result.status == NOTIFY_INVALID_PHONE:
        raise HTTPException(status_code=422, detail=result.error)
    return NotificationResponse(
        status=result.status,
        order_id=result.order_id,
        pending_order_id=result.pending_order.id if result.pending_order else None,
        requires_manual_follow_up=result.requires_manual_follow_up,
        needs_reactivation=result.needs_reactivation,
        reason_code=result.reason_code,
    )


@router.get("/orders/pending", response_model=list[PendingOrderResponse])
def list_pending(
    status: str | None = None,
    phone: str | None = None,
    limit: int = 50,
    db: Session = Depends(get_db),
    _auth: bool = Security(get_admin_auth),
):
    """
    List pending orders, newest first.
    Query params: status (AWAITING_CONFIRMATION, CONFIRMED, CANCELLED, EXPIRED), phone, limit.
    """
    if status and status.upper() not in PENDING_ORDER_STATUSES:
        raise HTTPException(status_code=400, detail=f"Unknown status '{status}'")
    return pending_orders.list_pending_orders(
        db,
        status=status.upper() if status else None,
        phone=phone,
        limit=max(0, min(limit, 100)),
    )


@router.post("/orders/pending/expire", response_model=ExpireResponse)
def expire_pending(
    retention_hours: int | None = None,
    db: Session = Depends(get_db),
    _auth: bool = Security(get_admin_auth),
):
    """Sweep AWAITING_CONFIRMATION pending orders older than the retention window to EXPIRED."""
    hours = retention_hours if retention_hours is not None else settings.pending_order_retention_hours
    if hours < 0:
        raise HTTPException(status_code=400, detail="retention_hours must be >= 0")
    expired = pending_orders.expire(db, older_than=timedelta(hours=hours))
    return ExpireResponse(expired=expired, retention_hours=hours)


@router.post("/messages/poll")
async def ingest_polled_messages(
    request: Request,
    items: list[dict] = Body(...),
    db: Session = Depends(get_db),
    _auth: bool = Security(get_admin_auth),
):
    """Feed a batch of messages fetched from the BSP listing into the inbound pipeline."""
    events = from_polled_messages(items)
    results = await process_events(request, db, events)
    return {"received": True, "count": len(events), "results": results}
