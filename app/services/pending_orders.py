"""
Pending order store - orders sent to a supplier and awaiting an explicit confirm / reject.

Status transitions are compare-and-swap: a conditional UPDATE that only applies while the
row is still in the expected status, so a duplicate "sí, confirmo" cannot double-confirm.

    AWAITING_CONFIRMATION -> CONFIRMED | CANCELLED | EXPIRED
    CONFIRMED, CANCELLED, EXPIRED are terminal
"""

import logging
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.constants.event_types import (
    EVENT_PENDING_ORDER_CAS_CONFLICT,
    EVENT_PENDING_ORDER_CREATED,
    EVENT_PENDING_ORDERS_EXPIRED,
)
from app.constants.statuses import (
    STATUS_AWAITING_CONFIRMATION,
    STATUS_CANCELLED,
    STATUS_CONFIRMED,
    STATUS_EXPIRED,
)
from app.db.helpers import commit_and_refresh, is_unique_violation
from app.db.models import PendingOrder, Provider
from app.schemas.orders import OrderSnapshot
from app.services.phone_normalization import (
    NormalizationError,
    NormalizedPhone,
    normalize_phone,
)
from app.services.system_event_service import info, warn

logger = logging.getLogger(__name__)

ACTIVE_ORDER_INDEX = "uq_pending_orders_active_phone_order"

ALLOWED_TRANSITIONS = {
    STATUS_AWAITING_CONFIRMATION: [STATUS_CONFIRMED, STATUS_CANCELLED, STATUS_EXPIRED],
    STATUS_CONFIRMED: [],
    STATUS_CANCELLED: [],
    STATUS_EXPIRED: [],
}

# Column stamped when a pending order reaches each terminal status
_STATUS_TIMESTAMPS = {
    STATUS_CONFIRMED: "confirmed_at",
    STATUS_CANCELLED: "cancelled_at",
    STATUS_EXPIRED: "expired_at",
}

TRANSITION_OK = "OK"
TRANSITION_CONFLICT = "CONFLICT"
TRANSITION_NOT_FOUND = "NOT_FOUND"


class DuplicateActivePendingOrder(Exception):
    """An AWAITING_CONFIRMATION pending order already exists for (provider phone, order id)."""

    def __init__(self, order_id: str, phone: str, existing_id: int | None = None):
        self.order_id = order_id
        self.phone = phone
        self.existing_id = existing_id
        super().__init__(f"Order {order_id} is already awaiting confirmation from {phone}")


@dataclass
class TransitionResult:
    status: str
    pending_order: PendingOrder | None = None
    current_status: str | None = None

    @property
    def ok(self) -> bool:
        return self.status == TRANSITION_OK


def is_transition_allowed(from_status: str, to_status: str) -> bool:
    return to_status in ALLOWED_TRANSITIONS.get(from_status, [])


def _require_phone(phone: "str | NormalizedPhone") -> NormalizedPhone:
    normalized = normalize_phone(phone)
    if isinstance(normalized, NormalizationError):
        raise ValueError(normalized.message)
    return normalized


def get_pending_order(db: Session, pending_order_id: int) -> PendingOrder | None:
    return db.get(PendingOrder, pending_order_id)


def _find_active(db: Session, order_id: str, phone: NormalizedPhone) -> PendingOrder | None:
    stmt = (
        select(PendingOrder)
        .where(PendingOrder.order_id == order_id)
        .where(PendingOrder.provider_phone_match_key == phone.match_key)
        .where(PendingOrder.status == STATUS_AWAITING_CONFIRMATION)
        .limit(1)
    )
    return db.execute(stmt).scalar_one_or_none()


def has_active(db: Session, order_id: str, phone: "str | NormalizedPhone") -> bool:
    """True if order_id is already awaiting confirmation from this phone."""
    normalized = normalize_phone(phone)
    if isinstance(normalized, NormalizationError):
        return False
    return _find_active(db, order_id, normalized) is not None


def create(
    db: Session,
    order: OrderSnapshot,
    provider: Provider,
    *,
    phone: "str | NormalizedPhone | None" = None,
    requires_manual_follow_up: bool = False,
) -> PendingOrder:
    """
    Create an AWAITING_CONFIRMATION pending order for an order just sent to a provider.

    Args:
        db: Database session
        order: Snapshot of the order that was sent
        provider: Recipient provider
        phone: Phone the notification went to (defaults to provider.phone)
        requires_manual_follow_up: Set when delivery fell back to plain text

    Returns:
        The created PendingOrder

    Raises:
        DuplicateActivePendingOrder: (provider phone, order id) is already awaiting confirmation
        ValueError: the phone cannot be normalized
    """
    raw_phone = str(phone) if phone is not None else provider.phone
    normalized = _require_phone(phone if phone is not None else provider.phone)

    existing = _find_active(db, order.order_id, normalized)
    if existing is not None:
        raise DuplicateActivePendingOrder(order.order_id, normalized.e164, existing.id)

    pending = PendingOrder(
        order_id=order.order_id,
        provider_id=provider.id,
        user_id=order.user_id or provider.user_id,
        provider_phone_raw=raw_phone,
        provider_phone_normalized=normalized.e164,
        provider_phone_match_key=normalized.match_key,
        order_payload=order.model_dump(mode="json"),
        status=STATUS_AWAITING_CONFIRMATION,
        requires_manual_follow_up=requires_manual_follow_up,
        created_at=datetime.now(UTC),
    )
    db.add(pending)
    try:
        db.flush()
    except IntegrityError as e:
        if not is_unique_violation(e, ACTIVE_ORDER_INDEX):
            raise
        # Lost the race against a concurrent create for the same (phone, order id)
        db.rollback()
        raise DuplicateActivePendingOrder(order.order_id, normalized.e164) from e
    commit_and_refresh(db, pending)

    logger.info(
        f"Pending order {pending.id} created for order {order.order_id} -> {normalized.e164}"
        f" (manual_follow_up={requires_manual_follow_up})"
    )
    info(
        db=db,
        event_type=EVENT_PENDING_ORDER_CREATED,
        pending_order_id=pending.id,
        payload={
            "order_id": order.order_id,
            "provider_id": provider.id,
            "requires_manual_follow_up": requires_manual_follow_up,
        },
    )
    return pending


def find_active_by_phone(
    db: Session,
    phone: "str | NormalizedPhone",
    provider_id: int | None = None,
) -> list[PendingOrder]:
    """
    All AWAITING_CONFIRMATION pending orders for a phone, oldest first (FIFO).

    Matching is on the last-10-digit key so "+5491135562673" finds orders stored
    as "011 3556-2673". provider_id narrows the result to one provider.
    """
    normalized = normalize_phone(phone)
    if isinstance(normalized, NormalizationError):
        return []
    stmt = (
        select(PendingOrder)
        .where(PendingOrder.provider_phone_match_key == normalized.match_key)
        .where(PendingOrder.status == STATUS_AWAITING_CONFIRMATION)
    )
    if provider_id is not None:
        stmt = stmt.where(PendingOrder.provider_id == provider_id)
    stmt = stmt.order_by(PendingOrder.created_at.asc(), PendingOrder.id.asc())
    return list(db.execute(stmt).scalars().all())


def list_pending_orders(
    db: Session,
    status: str | None = None,
    phone: str | None = None,
    limit: int = 100,
) -> list[PendingOrder]:
    stmt = select(PendingOrder)
    if status:
        stmt = stmt.where(PendingOrder.status == status)
    if phone:
        normalized = normalize_phone(phone)
        if isinstance(normalized, NormalizationError):
            return []
        stmt = stmt.where(PendingOrder.provider_phone_match_key == normalized.match_key)
    stmt = stmt.order_by(PendingOrder.created_at.desc(), PendingOrder.id.desc()).limit(limit)
    return list(db.execute(stmt).scalars().all())


def transition(
    db: Session,
    pending_order_id: int,
    from_status: str,
    to_status: str,
    **updates,
) -> TransitionResult:
    """
    Compare-and-swap a pending order from one status to another.

    Args:
        db: Database session
        pending_order_id: Pending order to update
        from_status: Status the row must currently be in
        to_status: New status
        **updates: Additional columns to set (e.g. resolved_by_message_id)

    Returns:
        TransitionResult: OK, CONFLICT (status no longer matched) or NOT_FOUND

    Raises:
        ValueError: the transition is not in ALLOWED_TRANSITIONS
    """
    if not is_transition_allowed(from_status, to_status):
        raise ValueError(f"Invalid pending order transition: {from_status} -> {to_status}")

    values = dict(updates)
    stamp_column = _STATUS_TIMESTAMPS.get(to_status)
    if stamp_column and stamp_column not in values:
        values[stamp_column] = datetime.now(UTC)

    stmt = (
        update(PendingOrder)
        .where(PendingOrder.id == pending_order_id)
        .where(PendingOrder.status == from_status)
        .values(status=to_status, **values)
        .execution_options(synchronize_session=False)
    )
    result = db.execute(stmt)
    db.commit()

    pending = get_pending_order(db, pending_order_id)
    if pending is not None:
        # The bulk UPDATE bypassed the identity map
        db.refresh(pending)

    if getattr(result, "rowcount", 0) == 1:
        logger.info(f"Pending order {pending_order_id}: {from_status} -> {to_status}")
        return TransitionResult(status=TRANSITION_OK, pending_order=pending, current_status=to_status)

    if pending is None:
        logger.warning(f"Pending order {pending_order_id} not found for transition to {to_status}")
        return TransitionResult(status=TRANSITION_NOT_FOUND)

    logger.warning(
        f"Pending order {pending_order_id} status mismatch: expected '{from_status}', got '{pending.status}'"
    )
    warn(
        db=db,
        event_type=EVENT_PENDING_ORDER_CAS_CONFLICT,
        pending_order_id=pending_order_id,
        payload={
            "expected_status": from_status,
            "actual_status": pending.status,
            "new_status": to_status,
        },
    )
    return TransitionResult(
        status=TRANSITION_CONFLICT, pending_order=pending, current_status=pending.status
    )


def expire(db: Session, older_than: timedelta, now: datetime | None = None) -> int:
    """
    Move AWAITING_CONFIRMATION pending orders created before now - older_than to EXPIRED.

    Returns:
        Number of pending orders expired
    """
    now = now or datetime.now(UTC)
    cutoff = now - older_than

    stmt = (
        update(PendingOrder)
        .where(PendingOrder.status == STATUS_AWAITING_CONFIRMATION)
        .where(PendingOrder.created_at < cutoff)
        .values(status=STATUS_EXPIRED, expired_at=now)
        .execution_options(synchronize_session=False)
    )
    result = db.execute(stmt)
    db.commit()
    expired = getattr(result, "rowcount", 0) or 0
    # Loaded instances may still carry the old status
    db.expire_all()

    if expired:
        logger.info(f"Expired {expired} pending order(s) created before {cutoff.isoformat()}")
        info(
            db=db,
            event_type=EVENT_PENDING_ORDERS_EXPIRED,
            payload={"expired": expired, "cutoff": cutoff.isoformat()},
        )
    return expired
