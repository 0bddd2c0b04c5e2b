"""
Correlation & state machine - turn an accepted inbound message into a pending order transition.

1. Normalize the sender phone.
2. Resolve the provider (exact, then last-10 key), scoped to the owner of the receiving business
   number when known. An exact-number tie across users is settled by which provider has orders
   awaiting this phone. NOT_FOUND / AMBIGUOUS -> UNATTRIBUTED.
3. Active pending orders for that phone and provider, oldest first. None -> NO_PENDING_ORDER.
4. Pick the order the body references explicitly, else the oldest (FIFO).
5. Classify the body as confirm / reject / unrecognized.
6. Compare-and-swap AWAITING_CONFIRMATION -> CONFIRMED | CANCELLED. A lost CAS means a
   duplicate delivery already resolved it: ALREADY_RESOLVED, not an error. An order the expiry
   sweep got to first is NO_PENDING_ORDER.
7. Publish OrderConfirmed / OrderCancelled (best-effort, after the durable transition).

The message always ends PROCESSED, whatever the outcome, and is never reprocessed.
"""

import logging
from dataclasses import dataclass

from sqlalchemy.orm import Session

from app.constants.event_types import (
    EVENT_CORRELATION_REPLY_UNRECOGNIZED,
    EVENT_CORRELATION_UNATTRIBUTED,
)
from app.constants.statuses import (
    STATUS_AWAITING_CONFIRMATION,
    STATUS_CANCELLED,
    STATUS_CONFIRMED,
    STATUS_EXPIRED,
)
from app.db.models import InboundMessage, PendingOrder, Provider
from app.services import pending_orders
from app.services.domain_events import DomainEventBus, OrderCancelled, OrderConfirmed
from app.services.ingestion import mark_processed
from app.services.phone_normalization import NormalizationError, NormalizedPhone, normalize_phone
from app.services.provider_directory import (
    LOOKUP_AMBIGUOUS,
    LOOKUP_FOUND,
    MATCH_EXACT,
    ProviderLookup,
    find_provider_by_phone,
    find_user_for_business_number,
)
from app.services.reply_classifier import (
    REPLY_CONFIRM,
    REPLY_REJECT,
    ReplyClassification,
    ReplyClassifier,
    get_classifier,
)
from app.services.system_event_service import warn
from app.services.text_normalization import tokenize

logger = logging.getLogger(__name__)

OUTCOME_CONFIRMED = "CONFIRMED"
OUTCOME_CANCELLED = "CANCELLED"
OUTCOME_ALREADY_RESOLVED = "ALREADY_RESOLVED"
OUTCOME_UNRECOGNIZED = "UNRECOGNIZED"
OUTCOME_NO_PENDING_ORDER = "NO_PENDING_ORDER"
OUTCOME_UNATTRIBUTED = "UNATTRIBUTED"
OUTCOME_INVALID_PHONE = "INVALID_PHONE"

SELECTED_SINGLE = "single"
SELECTED_REFERENCE = "reference"
SELECTED_FIFO = "fifo"


@dataclass
class CorrelationOutcome:
    outcome: str
    message_id: str
    provider_id: int | None = None
    pending_order: PendingOrder | None = None
    selected_by: str | None = None
    classification: ReplyClassification | None = None

    def to_dict(self) -> dict:
        return {
            "outcome": self.outcome,
            "message_id": self.message_id,
            "provider_id": self.provider_id,
            "pending_order_id": self.pending_order.id if self.pending_order else None,
            "order_id": self.pending_order.order_id if self.pending_order else None,
            "selected_by": self.selected_by,
        }


def _contains_reference(body_tokens: list[str], reference: str | None) -> bool:
    ref_tokens = tokenize(reference)
    if not ref_tokens:
        return False
    return f" {' '.join(ref_tokens)} " in f" {' '.join(body_tokens)} "


def _references(pending: PendingOrder, body_tokens: list[str]) -> bool:
    if _contains_reference(body_tokens, pending.order_id):
        return True
    order_number = (pending.order_payload or {}).get("order_number")
    return _contains_reference(body_tokens, order_number)


def select_pending_order(
    candidates: list[PendingOrder], body: str | None
) -> tuple[PendingOrder, str]:
    """
    Choose which active pending order a reply is about.

    candidates must be oldest first. An explicit order reference in the body wins
    (the oldest referenced one if several are); otherwise the oldest order (FIFO).
    """
    if len(candidates) == 1:
        return candidates[0], SELECTED_SINGLE
    body_tokens = tokenize(body)
    for pending in candidates:
        if _references(pending, body_tokens):
            return pending, SELECTED_REFERENCE
    return candidates[0], SELECTED_FIFO


def _user_scope(db: Session, message: InboundMessage) -> str | None:
    return message.user_id or find_user_for_business_number(db, message.business_number_id)


def _settle_exact_tie(db: Session, phone: NormalizedPhone, lookup: ProviderLookup) -> ProviderLookup:
    """
    Several users registered the same supplier number. Only a provider with an order awaiting
    this phone can be the one replying; if exactly one has, it wins. Last-10 key ties stay AMBIGUOUS.
    """
    if lookup.status != LOOKUP_AMBIGUOUS or lookup.match != MATCH_EXACT:
        return lookup
    awaiting = {
        p.provider_id
        for p in pending_orders.find_active_by_phone(db, phone)
        if p.provider_id in lookup.candidate_ids
    }
    if len(awaiting) != 1:
        return lookup
    provider = db.get(Provider, awaiting.pop())
    logger.info(
        f"Phone {phone.e164} shared by providers {lookup.candidate_ids}; "
        f"provider {provider.id} is the only one with orders awaiting it"
    )
    return ProviderLookup(status=LOOKUP_FOUND, provider=provider, match=MATCH_EXACT)


def _finish(
    db: Session,
    message: InboundMessage,
    outcome: CorrelationOutcome,
    provider: Provider | None = None,
) -> CorrelationOutcome:
    mark_processed(
        db,
        message,
        outcome.outcome,
        provider_id=provider.id if provider else None,
        user_id=provider.user_id if provider else None,
        pending_order_id=outcome.pending_order.id if outcome.pending_order else None,
    )
    logger.info(
        f"Inbound message {message.provider_message_id} -> {outcome.outcome}"
        + (f" (pending order {outcome.pending_order.id})" if outcome.pending_order else "")
    )
    return outcome


async def on_inbound_accepted(
    db: Session,
    message: InboundMessage,
    *,
    classifier: ReplyClassifier | None = None,
    event_bus: DomainEventBus | None = None,
) -> CorrelationOutcome:
    """
    Correlate a freshly accepted inbound message with a pending order.

    Args:
        db: Database session
        message: InboundMessage in status NEW (as returned by ingestion)
        classifier: Reply classifier (defaults to the configured keyword classifier)
        event_bus: Bus for OrderConfirmed / OrderCancelled (optional)

    Returns:
        CorrelationOutcome; the message is PROCESSED when this returns
    """
    message_id = message.provider_message_id
    normalized = normalize_phone(message.sender_phone_normalized or message.sender_phone_raw)
    if isinstance(normalized, NormalizationError):
        logger.warning(f"Inbound message {message_id}: {normalized.message}")
        return _finish(db, message, CorrelationOutcome(OUTCOME_INVALID_PHONE, message_id))

    user_id = _user_scope(db, message)
    lookup = _settle_exact_tie(db, normalized, find_provider_by_phone(db, normalized, user_id=user_id))
    if not lookup.found:
        warn(
            db=db,
            event_type=EVENT_CORRELATION_UNATTRIBUTED,
            payload={
                "provider_message_id": message_id,
                "sender_phone": normalized.e164,
                "user_id": user_id,
                "lookup_status": lookup.status,
                "candidate_ids": lookup.candidate_ids,
            },
        )
        return _finish(db, message, CorrelationOutcome(OUTCOME_UNATTRIBUTED, message_id))
    provider = lookup.provider

    candidates = pending_orders.find_active_by_phone(db, normalized, provider_id=provider.id)
    if not candidates:
        return _finish(
            db,
            message,
            CorrelationOutcome(OUTCOME_NO_PENDING_ORDER, message_id, provider_id=provider.id),
            provider,
        )

    pending, selected_by = select_pending_order(candidates, message.body)
    classification = (classifier or get_classifier()).classify(message.body)

    if classification.intent not in (REPLY_CONFIRM, REPLY_REJECT):
        warn(
            db=db,
            event_type=EVENT_CORRELATION_REPLY_UNRECOGNIZED,
            pending_order_id=pending.id,
            payload={
                "provider_message_id": message_id,
                "order_id": pending.order_id,
                "body": (message.body or "")[:500],
                "matched": classification.matched,
            },
        )
        return _finish(
            db,
            message,
            CorrelationOutcome(
                OUTCOME_UNRECOGNIZED,
                message_id,
                provider_id=provider.id,
                pending_order=pending,
                selected_by=selected_by,
                classification=classification,
            ),
            provider,
        )

    to_status = STATUS_CONFIRMED if classification.intent == REPLY_CONFIRM else STATUS_CANCELLED
    result = pending_orders.transition(
        db,
        pending.id,
        STATUS_AWAITING_CONFIRMATION,
        to_status,
        resolved_by_message_id=message_id,
    )

    if not result.ok:
        # A concurrent duplicate resolved it, or the expiry sweep took it off the table
        if result.pending_order is None or result.current_status == STATUS_EXPIRED:
            outcome = OUTCOME_NO_PENDING_ORDER
        else:
            outcome = OUTCOME_ALREADY_RESOLVED
        return _finish(
            db,
            message,
            CorrelationOutcome(
                outcome,
                message_id,
                provider_id=provider.id,
                pending_order=result.pending_order,
                selected_by=selected_by,
                classification=classification,
            ),
            provider,
        )

    outcome = _finish(
        db,
        message,
        CorrelationOutcome(
            OUTCOME_CONFIRMED if to_status == STATUS_CONFIRMED else OUTCOME_CANCELLED,
            message_id,
            provider_id=provider.id,
            pending_order=result.pending_order,
            selected_by=selected_by,
            classification=classification,
        ),
        provider,
    )

    if event_bus is not None:
        event_cls = OrderConfirmed if to_status == STATUS_CONFIRMED else OrderCancelled
        await event_bus.publish(
            db,
            event_cls(
                order_id=pending.order_id,
                pending_order_id=pending.id,
                provider_id=provider.id,
                inbound_message_id=message_id,
            ),
        )
    return outcome
