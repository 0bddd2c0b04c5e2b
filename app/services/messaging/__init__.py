# Messaging: WhatsApp send capability, supplier copy, webhook verification
# Re-export so "from app.services.messaging import ..." works for callers.

from app.services.messaging.message_composer import (
    format_order_details,
    format_order_fallback_text,
)
from app.services.messaging.whatsapp_client import (
    MessageSender,
    SendResult,
    WhatsAppCloudSender,
)

__all__ = [
    "format_order_details",
    "format_order_fallback_text",
    "MessageSender",
    "SendResult",
    "WhatsAppCloudSender",
]
