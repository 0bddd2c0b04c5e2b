"""
Pydantic schemas for inbound events and API request/response validation.
"""

from app.schemas.inbound import RawInboundEvent
from app.schemas.orders import (
    ExpireResponse,
    NotificationResponse,
    NotifyOrderRequest,
    OrderItem,
    OrderSnapshot,
    PendingOrderResponse,
)

__all__ = [
    "RawInboundEvent",
    "OrderItem",
    "OrderSnapshot",
    "NotifyOrderRequest",
    "NotificationResponse",
    "PendingOrderResponse",
    "ExpireResponse",
]
