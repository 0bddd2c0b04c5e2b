"""
Order request/response schemas.
"""

from datetime import date, datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, model_validator

from app.services.phone_normalization import format_phone_for_display


class OrderItem(BaseModel):
    name: str
    quantity: float = 1
    unit: str | None = None
    price: float | None = None


class OrderSnapshot(BaseModel):
    """Order as it was when the supplier was notified (stored as the pending order payload)."""

    order_id: str = Field(min_length=1, max_length=64)
    user_id: str | None = None
    order_number: str | None = None
    items: list[OrderItem] = Field(default_factory=list)
    notes: str | None = None
    desired_delivery_date: date | None = None
    desired_delivery_times: list[str] = Field(default_factory=list)
    payment_method: str | None = None

    @property
    def reference(self) -> str:
        """Human-facing reference; the order id must appear in it so replies can quote it."""
        if self.order_number and self.order_number != self.order_id:
            return f"{self.order_number} ({self.order_id})"
        return self.order_id


class NotifyOrderRequest(BaseModel):
    """Request schema for notifying a supplier about an order."""

    provider_id: int
    order: OrderSnapshot


class NotificationResponse(BaseModel):
    status: str
    order_id: str
    pending_order_id: int | None = None
    requires_manual_follow_up: bool = False
    needs_reactivation: bool = False
    reason_code: str | None = None


class PendingOrderResponse(BaseModel):
    """Response schema for a single pending order."""

    model_config = ConfigDict(from_attributes=True)

    id: int
    order_id: str
    provider_id: int
    user_id: str | None = None
    provider_phone_normalized: str
    provider_phone_display: str | None = None
    status: str
    requires_manual_follow_up: bool
    resolved_by_message_id: str | None = None
    order_payload: dict[str, Any] | None = None
    created_at: datetime
    confirmed_at: datetime | None = None
    cancelled_at: datetime | None = None
    expired_at: datetime | None = None

    @model_validator(mode="after")
    def _fill_phone_display(self) -> "PendingOrderResponse":
        if self.provider_phone_display is None:
            self.provider_phone_display = format_phone_for_display(self.provider_phone_normalized)
        return self


class ExpireResponse(BaseModel):
    expired: int
    retention_hours: int
