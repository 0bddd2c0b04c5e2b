"""
Event type constants for SystemEvent.

Use these instead of string literals to ensure consistency.
"""

# ---- Pending order store ----
EVENT_PENDING_ORDER_CREATED = "pending_order.created"
EVENT_PENDING_ORDER_CAS_CONFLICT = "pending_order.cas_conflict"
EVENT_PENDING_ORDERS_EXPIRED = "pending_order.expired_sweep"

# ---- Inbound ----
EVENT_INBOUND_MALFORMED = "inbound.malformed_event"
EVENT_INBOUND_DUPLICATE = "inbound.duplicate"

# ---- Correlation ----
EVENT_CORRELATION_UNATTRIBUTED = "correlation.unattributed"
EVENT_CORRELATION_REPLY_UNRECOGNIZED = "correlation.reply_unrecognized"

# ---- Outbound notification ----
EVENT_NOTIFICATION_TEMPLATE_REJECTED = "notification.template_rejected"
EVENT_NOTIFICATION_FAILED = "notification.failed"
EVENT_ORDER_DETAILS_SEND_FAILURE = "notification.order_details_send_failure"

# ---- WhatsApp webhook ----
EVENT_WHATSAPP_SIGNATURE_VERIFICATION_FAILURE = "whatsapp.signature_verification_failure"
EVENT_WHATSAPP_WEBHOOK_FAILURE = "whatsapp.webhook_failure"

# ---- Domain events (published to the bus, mirrored into system_events) ----
EVENT_ORDER_CONFIRMED = "order.confirmed"
EVENT_ORDER_CANCELLED = "order.cancelled"
EVENT_NOTIFICATION_REQUIRES_MANUAL_FOLLOW_UP = "order.requires_manual_follow_up"
