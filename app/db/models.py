from datetime import datetime
from typing import Any, Optional

from sqlalchemy import (
    JSON,
    Boolean,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    func,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.constants.statuses import INBOUND_NEW, STATUS_AWAITING_CONFIRMATION
from app.db.base import Base


class Provider(Base):
    """Supplier owned by an application user. Written by the CRUD screens, read here."""

    __tablename__ = "providers"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[str] = mapped_column(String(64), index=True)
    name: Mapped[str] = mapped_column(String(200))
    contact_name: Mapped[Optional[str]] = mapped_column(String(200), nullable=True)

    # Phone as typed by the user, plus the derived correlation keys
    phone: Mapped[str] = mapped_column(String(64))
    phone_normalized: Mapped[Optional[str]] = mapped_column(String(20), nullable=True, index=True)  # +E.164
    phone_match_key: Mapped[Optional[str]] = mapped_column(String(10), nullable=True, index=True)  # last 10 digits

    payment_terms: Mapped[Optional[str]] = mapped_column(String(200), nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())

    pending_orders: Mapped[list["PendingOrder"]] = relationship("PendingOrder", back_populates="provider")


class BusinessNumber(Base):
    """WhatsApp number a user receives supplier replies on (Cloud API phone_number_id or BSP config id)."""

    __tablename__ = "business_numbers"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    external_id: Mapped[str] = mapped_column(String(128), unique=True, index=True)
    user_id: Mapped[str] = mapped_column(String(64), index=True)
    display_phone: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())


class PendingOrder(Base):
    """Order sent to a supplier and awaiting an explicit confirm / reject reply."""

    __tablename__ = "pending_orders"
    __table_args__ = (
        # At most one AWAITING_CONFIRMATION row per (provider phone, order id), keyed on the
        # last-10 match key like the duplicate check in pending_orders.create
        Index(
            "uq_pending_orders_active_phone_order",
            "provider_phone_match_key",
            "order_id",
            unique=True,
            postgresql_where=text(f"status = '{STATUS_AWAITING_CONFIRMATION}'"),
            sqlite_where=text(f"status = '{STATUS_AWAITING_CONFIRMATION}'"),
        ),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    order_id: Mapped[str] = mapped_column(String(64), index=True)
    provider_id: Mapped[int] = mapped_column(Integer, ForeignKey("providers.id"), index=True)
    user_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True, index=True)

    provider_phone_raw: Mapped[str] = mapped_column(String(64))
    provider_phone_normalized: Mapped[str] = mapped_column(String(20))
    provider_phone_match_key: Mapped[str] = mapped_column(String(10), index=True)

    order_payload: Mapped[Optional[dict[str, Any]]] = mapped_column(JSON, nullable=True)

    status: Mapped[str] = mapped_column(String(32), default=STATUS_AWAITING_CONFIRMATION, index=True)
    requires_manual_follow_up: Mapped[bool] = mapped_column(Boolean, default=False)
    resolved_by_message_id: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), index=True)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())
    confirmed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    cancelled_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    expired_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    provider: Mapped["Provider"] = relationship("Provider", back_populates="pending_orders")


class InboundMessage(Base):
    """Idempotency table - one row per provider message id, whatever path delivered it."""

    __tablename__ = "inbound_messages"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    provider_message_id: Mapped[str] = mapped_column(String(255), unique=True, index=True)

    sender_phone_raw: Mapped[str] = mapped_column(String(64))
    sender_phone_normalized: Mapped[Optional[str]] = mapped_column(String(20), nullable=True, index=True)
    body: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    delivery_path: Mapped[str] = mapped_column(String(20))  # Path of the first acceptance
    received_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    business_number_id: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)

    status: Mapped[str] = mapped_column(String(20), default=INBOUND_NEW, index=True)
    outcome: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)

    # Attribution: user_id may arrive with the event (scope), the rest is filled by correlation
    provider_id: Mapped[Optional[int]] = mapped_column(Integer, ForeignKey("providers.id"), nullable=True)
    user_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    pending_order_id: Mapped[Optional[int]] = mapped_column(Integer, ForeignKey("pending_orders.id"), nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    processed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)


class NotificationAttempt(Base):
    """Append-only audit trail of outbound order notifications."""

    __tablename__ = "notification_attempts"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    order_id: Mapped[str] = mapped_column(String(64), index=True)
    provider_id: Mapped[Optional[int]] = mapped_column(Integer, ForeignKey("providers.id"), nullable=True)
    channel: Mapped[str] = mapped_column(String(20))  # template | fallback_text
    outcome: Mapped[str] = mapped_column(String(20))  # SENT | REJECTED_POLICY | FAILED
    reason_code: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)
    provider_message_id: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    error: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())


class SystemEvent(Base):
    """Structured log of notable system events (audit + debugging)."""

    __tablename__ = "system_events"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), index=True)
    level: Mapped[str] = mapped_column(String(10), index=True)  # INFO, WARN, ERROR
    event_type: Mapped[str] = mapped_column(String(100), index=True)
    pending_order_id: Mapped[Optional[int]] = mapped_column(
        Integer, ForeignKey("pending_orders.id"), nullable=True, index=True
    )
    payload: Mapped[Optional[dict[str, Any]]] = mapped_column(JSON, nullable=True)
