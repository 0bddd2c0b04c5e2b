"""
Message ingestion - at-most-once acceptance of inbound messages across delivery paths.

The provider-assigned message id is the idempotency key. The row is inserted FIRST, before
any processing; the unique index decides which delivery (webhook, poll, realtime) wins.
"""

import logging
from dataclasses import dataclass
from datetime import UTC, datetime

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.constants.event_types import EVENT_INBOUND_DUPLICATE, EVENT_INBOUND_MALFORMED
from app.constants.statuses import INBOUND_IGNORED, INBOUND_NEW, INBOUND_PROCESSED
from app.db.helpers import commit_and_refresh, is_unique_violation
from app.db.models import InboundMessage
from app.schemas.inbound import RawInboundEvent
from app.services.phone_normalization import NormalizationError, normalize_phone
from app.services.system_event_service import info, warn

logger = logging.getLogger(__name__)

INBOUND_MESSAGE_INDEX = "ix_inbound_messages_provider_message_id"


class MalformedEvent(ValueError):
    """Inbound event without a usable message id or sender phone. Never stored."""

    def __init__(self, reason: str, event: RawInboundEvent | None = None):
        self.reason = reason
        self.event = event
        super().__init__(reason)


@dataclass
class IngestResult:
    accepted: bool
    message_id: str
    message: InboundMessage | None = None
    existing_status: str | None = None


def get_inbound_message(db: Session, provider_message_id: str) -> InboundMessage | None:
    stmt = select(InboundMessage).where(InboundMessage.provider_message_id == provider_message_id)
    return db.execute(stmt).scalar_one_or_none()


def _reject(db: Session, reason: str, event: RawInboundEvent) -> MalformedEvent:
    logger.warning(
        f"Malformed inbound event via {event.delivery_path}: {reason} "
        f"(message_id={event.provider_message_id!r})"
    )
    warn(
        db=db,
        event_type=EVENT_INBOUND_MALFORMED,
        payload={
            "reason": reason,
            "delivery_path": event.delivery_path,
            "provider_message_id": event.provider_message_id,
        },
    )
    return MalformedEvent(reason, event)


def ingest(db: Session, event: RawInboundEvent) -> IngestResult:
    """
    Insert the inbound message if its provider message id has not been seen.

    Args:
        db: Database session
        event: Inbound event from any delivery path

    Returns:
        IngestResult with accepted=True for the first delivery, accepted=False
        (and the stored record) for every later one

    Raises:
        MalformedEvent: missing message id / sender phone, or unusable sender phone
    """
    message_id = (event.provider_message_id or "").strip()
    if not message_id:
        raise _reject(db, "missing provider message id", event)
    if not (event.sender_phone or "").strip():
        raise _reject(db, "missing sender phone", event)
    normalized = normalize_phone(event.sender_phone)
    if isinstance(normalized, NormalizationError):
        raise _reject(db, f"unusable sender phone ({normalized.reason})", event)

    message = InboundMessage(
        provider_message_id=message_id,
        sender_phone_raw=event.sender_phone,
        sender_phone_normalized=normalized.e164,
        body=event.body,
        delivery_path=event.delivery_path,
        received_at=event.received_at or datetime.now(UTC),
        business_number_id=event.business_number_id,
        user_id=event.user_id,
        status=INBOUND_NEW,
    )
    try:
        db.add(message)
        db.flush()
    except IntegrityError as e:
        if not is_unique_violation(e, INBOUND_MESSAGE_INDEX):
            raise  # Re-raise to avoid hiding real DB bugs
        db.rollback()
        existing = get_inbound_message(db, message_id)
        existing_status = existing.status if existing else None
        logger.info(
            f"Duplicate inbound message {message_id} via {event.delivery_path} "
            f"(first accepted via {existing.delivery_path if existing else 'unknown'}, status={existing_status})"
        )
        info(
            db=db,
            event_type=EVENT_INBOUND_DUPLICATE,
            payload={
                "provider_message_id": message_id,
                "delivery_path": event.delivery_path,
                "first_delivery_path": existing.delivery_path if existing else None,
            },
        )
        return IngestResult(
            accepted=False,
            message_id=message_id,
            message=existing,
            existing_status=existing_status,
        )

    commit_and_refresh(db, message)
    logger.debug(f"Accepted inbound message {message_id} via {event.delivery_path}")
    return IngestResult(accepted=True, message_id=message_id, message=message)


def mark_processed(
    db: Session,
    message: InboundMessage,
    outcome: str,
    *,
    provider_id: int | None = None,
    user_id: str | None = None,
    pending_order_id: int | None = None,
) -> InboundMessage:
    """Mark an accepted message Processed with its correlation outcome. Processed is terminal."""
    if message.status != INBOUND_NEW:
        raise ValueError(
            f"Inbound message {message.provider_message_id} is already {message.status}"
        )
    message.status = INBOUND_PROCESSED
    message.outcome = outcome
    message.provider_id = provider_id
    if user_id is not None:
        message.user_id = user_id
    message.pending_order_id = pending_order_id
    message.processed_at = datetime.now(UTC)
    commit_and_refresh(db, message)
    return message


def mark_ignored(db: Session, message: InboundMessage, reason: str) -> InboundMessage:
    """Mark an accepted message Ignored (never correlated). Ignored is terminal."""
    if message.status != INBOUND_NEW:
        raise ValueError(
            f"Inbound message {message.provider_message_id} is already {message.status}"
        )
    message.status = INBOUND_IGNORED
    message.outcome = reason
    message.processed_at = datetime.now(UTC)
    commit_and_refresh(db, message)
    return message
