"""
Inbound pipeline - the single entry point every delivery path feeds.

ingest (at-most-once per provider message id) and, only for the first delivery, correlate.
"""

import logging

from sqlalchemy.orm import Session

from app.schemas.inbound import RawInboundEvent
from app.services.correlation import on_inbound_accepted
from app.services.domain_events import DomainEventBus
from app.services.ingestion import ingest
from app.services.reply_classifier import ReplyClassifier
from app.utils.datetime_utils import iso_or_none

logger = logging.getLogger(__name__)


async def handle_inbound_event(
    db: Session,
    event: RawInboundEvent,
    *,
    classifier: ReplyClassifier | None = None,
    event_bus: DomainEventBus | None = None,
) -> dict:
    """
    Process one inbound event from any delivery path.

    Returns:
        Summary dict: {"type": "processed", ...} or {"type": "duplicate", ...}

    Raises:
        MalformedEvent: the event has no message id / usable sender phone
    """
    result = ingest(db, event)
    if not result.accepted:
        existing = result.message
        return {
            "type": "duplicate",
            "message_id": result.message_id,
            "status": result.existing_status,
            "first_delivery_path": existing.delivery_path if existing else None,
            "processed_at": iso_or_none(existing.processed_at) if existing else None,
        }

    outcome = await on_inbound_accepted(
        db, result.message, classifier=classifier, event_bus=event_bus
    )
    return {"type": "processed", "delivery_path": event.delivery_path, **outcome.to_dict()}
