"""
Tests for correlating supplier replies with pending orders.
"""

from datetime import UTC, datetime, timedelta

import pytest
from freezegun import freeze_time
from sqlalchemy import select

from app.constants.delivery_paths import DELIVERY_PATH_POLL, DELIVERY_PATH_REALTIME, DELIVERY_PATH_WEBHOOK
from app.constants.event_types import (
    EVENT_CORRELATION_REPLY_UNRECOGNIZED,
    EVENT_CORRELATION_UNATTRIBUTED,
    EVENT_ORDER_CONFIRMED,
)
from app.constants.statuses import (
    INBOUND_PROCESSED,
    STATUS_AWAITING_CONFIRMATION,
    STATUS_CANCELLED,
    STATUS_CONFIRMED,
    STATUS_EXPIRED,
)
from app.db.models import BusinessNumber, SystemEvent
from app.schemas.inbound import RawInboundEvent
from app.services import pending_orders
from app.services.correlation import (
    OUTCOME_ALREADY_RESOLVED,
    OUTCOME_CANCELLED,
    OUTCOME_CONFIRMED,
    OUTCOME_NO_PENDING_ORDER,
    OUTCOME_UNATTRIBUTED,
    OUTCOME_UNRECOGNIZED,
    SELECTED_FIFO,
    SELECTED_REFERENCE,
    SELECTED_SINGLE,
    on_inbound_accepted,
)
from app.services.domain_events import DomainEventBus, OrderCancelled, OrderConfirmed
from app.services.inbound_pipeline import handle_inbound_event
from app.services.ingestion import get_inbound_message, ingest


@pytest.fixture
def bus():
    bus = DomainEventBus()
    bus.published = []
    bus.subscribe(OrderConfirmed, lambda db, event: bus.published.append(event))
    bus.subscribe(OrderCancelled, lambda db, event: bus.published.append(event))
    return bus


def _accept(db, body, message_id="wamid.1", phone="5491135562673", path=DELIVERY_PATH_WEBHOOK):
    event = RawInboundEvent(
        provider_message_id=message_id,
        sender_phone=f"+{phone}" if phone.isdigit() else phone,
        body=body,
        delivery_path=path,
    )
    return ingest(db, event).message


@pytest.mark.asyncio
async def test_confirmation_happy_path(db, make_provider, make_order, bus):
    provider = make_provider(phone="+54 9 11 3556-2673")
    pending = pending_orders.create(db, make_order("ORD-1"), provider)
    message = _accept(db, "sí, confirmo", phone="541135562673")

    outcome = await on_inbound_accepted(db, message, event_bus=bus)

    assert outcome.outcome == OUTCOME_CONFIRMED
    assert outcome.selected_by == SELECTED_SINGLE
    assert outcome.provider_id == provider.id

    db.refresh(pending)
    assert pending.status == STATUS_CONFIRMED
    assert pending.resolved_by_message_id == "wamid.1"
    assert pending.confirmed_at is not None

    stored = get_inbound_message(db, "wamid.1")
    assert stored.status == INBOUND_PROCESSED
    assert stored.outcome == OUTCOME_CONFIRMED
    assert stored.pending_order_id == pending.id
    assert stored.user_id == provider.user_id

    assert bus.published == [
        OrderConfirmed(
            order_id="ORD-1",
            pending_order_id=pending.id,
            provider_id=provider.id,
            inbound_message_id="wamid.1",
        )
    ]
    mirrored = db.execute(
        select(SystemEvent).where(SystemEvent.event_type == EVENT_ORDER_CONFIRMED)
    ).scalars().all()
    assert len(mirrored) == 1


@pytest.mark.asyncio
async def test_rejection_cancels(db, make_provider, make_order, bus):
    provider = make_provider()
    pending = pending_orders.create(db, make_order("ORD-1"), provider)
    message = _accept(db, "No, no puedo esta semana")

    outcome = await on_inbound_accepted(db, message, event_bus=bus)

    assert outcome.outcome == OUTCOME_CANCELLED
    db.refresh(pending)
    assert pending.status == STATUS_CANCELLED
    assert pending.cancelled_at is not None
    assert isinstance(bus.published[0], OrderCancelled)


@pytest.mark.asyncio
async def test_reply_from_unknown_number_is_unattributed(db, make_provider, make_order, bus):
    make_provider()
    message = _accept(db, "sí", phone="5491140000000")

    outcome = await on_inbound_accepted(db, message, event_bus=bus)

    assert outcome.outcome == OUTCOME_UNATTRIBUTED
    assert get_inbound_message(db, "wamid.1").status == INBOUND_PROCESSED
    assert bus.published == []
    warnings = db.execute(
        select(SystemEvent).where(SystemEvent.event_type == EVENT_CORRELATION_UNATTRIBUTED)
    ).scalars().all()
    assert len(warnings) == 1
    assert warnings[0].payload["lookup_status"] == "NOT_FOUND"


@pytest.mark.asyncio
async def test_shared_supplier_with_orders_from_both_users_is_unattributed(db, make_provider, make_order, bus):
    first = make_provider(user_id="user-1")
    second = make_provider(user_id="user-2", name="Otra cuenta")
    mine = pending_orders.create(db, make_order("ORD-1"), first)
    theirs = pending_orders.create(db, make_order("ORD-2"), second)
    message = _accept(db, "sí")

    outcome = await on_inbound_accepted(db, message, event_bus=bus)

    assert outcome.outcome == OUTCOME_UNATTRIBUTED
    db.refresh(mine)
    db.refresh(theirs)
    assert mine.status == STATUS_AWAITING_CONFIRMATION
    assert theirs.status == STATUS_AWAITING_CONFIRMATION
    warning = db.execute(
        select(SystemEvent).where(SystemEvent.event_type == EVENT_CORRELATION_UNATTRIBUTED)
    ).scalar_one()
    assert warning.payload["lookup_status"] == "AMBIGUOUS"
    assert warning.payload["candidate_ids"] == [first.id, second.id]


@pytest.mark.asyncio
async def test_shared_supplier_resolves_to_the_user_awaiting_a_reply(db, make_provider, make_order, bus):
    first = make_provider(user_id="user-1")
    make_provider(user_id="user-2", name="Otra cuenta")
    pending = pending_orders.create(db, make_order("ORD-1"), first)
    message = _accept(db, "confirmo")

    outcome = await on_inbound_accepted(db, message, event_bus=bus)

    assert outcome.outcome == OUTCOME_CONFIRMED
    assert outcome.provider_id == first.id
    db.refresh(pending)
    assert pending.status == STATUS_CONFIRMED
    assert get_inbound_message(db, "wamid.1").user_id == "user-1"


@pytest.mark.asyncio
async def test_receiving_business_number_scopes_the_provider_lookup(db, make_provider, make_order, bus):
    first = make_provider(user_id="user-1")
    second = make_provider(user_id="user-2", name="Otra cuenta")
    db.add(BusinessNumber(external_id="pn-user-2", user_id="user-2"))
    db.commit()
    mine = pending_orders.create(db, make_order("ORD-1"), first)
    theirs = pending_orders.create(db, make_order("ORD-2"), second)
    event = RawInboundEvent(
        provider_message_id="wamid.1",
        sender_phone="+5491135562673",
        body="confirmo",
        business_number_id="pn-user-2",
    )
    message = ingest(db, event).message

    outcome = await on_inbound_accepted(db, message, event_bus=bus)

    assert outcome.outcome == OUTCOME_CONFIRMED
    assert outcome.pending_order.id == theirs.id
    assert get_inbound_message(db, "wamid.1").user_id == "user-2"
    db.refresh(mine)
    assert mine.status == STATUS_AWAITING_CONFIRMATION


@pytest.mark.asyncio
async def test_event_user_scope_without_matching_provider_is_unattributed(db, make_provider, make_order, bus):
    provider = make_provider(user_id="user-1")
    pending_orders.create(db, make_order("ORD-1"), provider)
    event = RawInboundEvent(
        provider_message_id="wamid.1",
        sender_phone="+5491135562673",
        body="confirmo",
        user_id="user-9",
    )
    message = ingest(db, event).message

    outcome = await on_inbound_accepted(db, message, event_bus=bus)

    assert outcome.outcome == OUTCOME_UNATTRIBUTED
    stored = get_inbound_message(db, "wamid.1")
    assert stored.status == INBOUND_PROCESSED
    assert stored.user_id == "user-9"


@pytest.mark.asyncio
async def test_known_provider_without_pending_order(db, make_provider, bus):
    provider = make_provider()
    message = _accept(db, "sí")

    outcome = await on_inbound_accepted(db, message, event_bus=bus)

    assert outcome.outcome == OUTCOME_NO_PENDING_ORDER
    assert outcome.provider_id == provider.id
    assert get_inbound_message(db, "wamid.1").provider_id == provider.id
    assert bus.published == []


@pytest.mark.asyncio
async def test_oldest_order_wins_without_reference(db, make_provider, make_order, bus):
    provider = make_provider()
    with freeze_time("2026-10-17 08:00:00"):
        older = pending_orders.create(db, make_order("ORD-1"), provider)
    with freeze_time("2026-10-17 09:00:00"):
        newer = pending_orders.create(db, make_order("ORD-2"), provider)
    message = _accept(db, "Dale, confirmo")

    outcome = await on_inbound_accepted(db, message, event_bus=bus)

    assert outcome.selected_by == SELECTED_FIFO
    assert outcome.pending_order.id == older.id
    db.refresh(newer)
    assert newer.status == STATUS_AWAITING_CONFIRMATION


@pytest.mark.asyncio
async def test_explicit_reference_wins_over_fifo(db, make_provider, make_order, bus):
    provider = make_provider()
    with freeze_time("2026-10-17 08:00:00"):
        older = pending_orders.create(db, make_order("ORD-1"), provider)
    with freeze_time("2026-10-17 09:00:00"):
        newer = pending_orders.create(db, make_order("ORD-2"), provider)
    message = _accept(db, "Confirmo el ORD-2")

    outcome = await on_inbound_accepted(db, message, event_bus=bus)

    assert outcome.selected_by == SELECTED_REFERENCE
    assert outcome.pending_order.id == newer.id
    db.refresh(older)
    assert older.status == STATUS_AWAITING_CONFIRMATION


@pytest.mark.asyncio
async def test_order_number_counts_as_reference(db, make_provider, make_order, bus):
    provider = make_provider()
    with freeze_time("2026-10-17 08:00:00"):
        pending_orders.create(db, make_order("ORD-1"), provider)
    with freeze_time("2026-10-17 09:00:00"):
        numbered = pending_orders.create(db, make_order("ORD-2", order_number="A-1043"), provider)
    message = _accept(db, "ok pedido a-1043")

    outcome = await on_inbound_accepted(db, message, event_bus=bus)

    assert outcome.pending_order.id == numbered.id
    assert outcome.selected_by == SELECTED_REFERENCE


@pytest.mark.asyncio
async def test_unrecognized_reply_leaves_order_pending(db, make_provider, make_order, bus):
    provider = make_provider()
    pending = pending_orders.create(db, make_order("ORD-1"), provider)
    message = _accept(db, "¿A qué hora lo necesitan?")

    outcome = await on_inbound_accepted(db, message, event_bus=bus)

    assert outcome.outcome == OUTCOME_UNRECOGNIZED
    db.refresh(pending)
    assert pending.status == STATUS_AWAITING_CONFIRMATION
    assert get_inbound_message(db, "wamid.1").status == INBOUND_PROCESSED
    events = db.execute(
        select(SystemEvent).where(SystemEvent.event_type == EVENT_CORRELATION_REPLY_UNRECOGNIZED)
    ).scalars().all()
    assert len(events) == 1
    assert events[0].pending_order_id == pending.id
    assert bus.published == []


@pytest.mark.asyncio
async def test_same_reply_via_every_path_confirms_once(db, make_provider, make_order, bus):
    provider = make_provider()
    pending = pending_orders.create(db, make_order("ORD-1"), provider)

    results = []
    for path, phone in [
        (DELIVERY_PATH_WEBHOOK, "+5491135562673"),
        (DELIVERY_PATH_POLL, "+54 9 11 3556-2673"),
        (DELIVERY_PATH_REALTIME, "011 3556-2673"),
    ]:
        event = RawInboundEvent(
            provider_message_id="wamid.1", sender_phone=phone, body="sí", delivery_path=path
        )
        results.append(await handle_inbound_event(db, event, event_bus=bus))

    assert results[0]["type"] == "processed"
    assert results[0]["outcome"] == OUTCOME_CONFIRMED
    assert results[0]["pending_order_id"] == pending.id
    assert [r["type"] for r in results[1:]] == ["duplicate", "duplicate"]
    assert results[1]["first_delivery_path"] == DELIVERY_PATH_WEBHOOK
    assert results[1]["status"] == INBOUND_PROCESSED
    assert len(bus.published) == 1


@pytest.mark.asyncio
async def test_second_confirmation_message_is_already_resolved(db, make_provider, make_order, bus, monkeypatch):
    provider = make_provider()
    pending = pending_orders.create(db, make_order("ORD-1"), provider)
    first = _accept(db, "sí", message_id="wamid.1")
    second = _accept(db, "confirmo", message_id="wamid.2")

    # Both deliveries read the order as active before either transitions
    stale = pending_orders.find_active_by_phone(db, "+5491135562673")
    monkeypatch.setattr(pending_orders, "find_active_by_phone", lambda *args, **kwargs: list(stale))

    first_outcome = await on_inbound_accepted(db, first, event_bus=bus)
    second_outcome = await on_inbound_accepted(db, second, event_bus=bus)

    assert first_outcome.outcome == OUTCOME_CONFIRMED
    assert second_outcome.outcome == OUTCOME_ALREADY_RESOLVED
    assert second_outcome.pending_order.id == pending.id
    assert get_inbound_message(db, "wamid.2").status == INBOUND_PROCESSED
    assert len(bus.published) == 1


@pytest.mark.asyncio
async def test_confirmation_racing_the_expiry_sweep_finds_no_pending_order(
    db, make_provider, make_order, bus, monkeypatch
):
    provider = make_provider()
    with freeze_time("2026-10-10 10:00:00"):
        pending = pending_orders.create(db, make_order("ORD-1"), provider)
    message = _accept(db, "sí, confirmo")

    # Read as active, then swept before the transition runs
    stale = pending_orders.find_active_by_phone(db, "+5491135562673")
    monkeypatch.setattr(pending_orders, "find_active_by_phone", lambda *args, **kwargs: list(stale))
    pending_orders.expire(db, older_than=timedelta(hours=72), now=datetime(2026, 10, 17, tzinfo=UTC))

    outcome = await on_inbound_accepted(db, message, event_bus=bus)

    assert outcome.outcome == OUTCOME_NO_PENDING_ORDER
    assert outcome.pending_order.id == pending.id
    assert outcome.pending_order.status == STATUS_EXPIRED
    assert get_inbound_message(db, "wamid.1").status == INBOUND_PROCESSED
    assert bus.published == []


@pytest.mark.asyncio
async def test_reply_after_expiry_finds_no_pending_order(db, make_provider, make_order, bus):
    provider = make_provider()
    with freeze_time("2026-10-10 10:00:00"):
        pending = pending_orders.create(db, make_order("ORD-1"), provider)
    pending_orders.expire(db, older_than=timedelta(hours=72), now=datetime(2026, 10, 17, tzinfo=UTC))
    message = _accept(db, "sí, confirmo")

    outcome = await on_inbound_accepted(db, message, event_bus=bus)

    assert outcome.outcome == OUTCOME_NO_PENDING_ORDER
    db.refresh(pending)
    assert pending.status != STATUS_CONFIRMED
    assert bus.published == []


@pytest.mark.asyncio
async def test_failing_subscriber_does_not_undo_confirmation(db, make_provider, make_order):
    provider = make_provider()
    pending = pending_orders.create(db, make_order("ORD-1"), provider)
    failing_bus = DomainEventBus()

    async def explode(db, event):
        raise RuntimeError("downstream unavailable")

    failing_bus.subscribe(OrderConfirmed, explode)
    message = _accept(db, "sí")

    outcome = await on_inbound_accepted(db, message, event_bus=failing_bus)

    assert outcome.outcome == OUTCOME_CONFIRMED
    db.refresh(pending)
    assert pending.status == STATUS_CONFIRMED


@pytest.mark.asyncio
async def test_custom_classifier_is_used(db, make_provider, make_order):
    class AlwaysReject:
        def classify(self, text):
            from app.services.reply_classifier import REPLY_REJECT, ReplyClassification

            return ReplyClassification(intent=REPLY_REJECT, matched=["custom"])

    provider = make_provider()
    pending_orders.create(db, make_order("ORD-1"), provider)
    message = _accept(db, "sí")

    outcome = await on_inbound_accepted(db, message, classifier=AlwaysReject())

    assert outcome.outcome == OUTCOME_CANCELLED
