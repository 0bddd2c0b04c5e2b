"""
Status constants - centralized to avoid circular imports.
"""

# Pending order lifecycle
STATUS_AWAITING_CONFIRMATION = "AWAITING_CONFIRMATION"
STATUS_CONFIRMED = "CONFIRMED"
STATUS_CANCELLED = "CANCELLED"
STATUS_EXPIRED = "EXPIRED"  # Swept after the retention window, never revived

# Inbound message processing
INBOUND_NEW = "NEW"
INBOUND_PROCESSED = "PROCESSED"
INBOUND_IGNORED = "IGNORED"

# Notification attempts (append-only audit trail)
CHANNEL_TEMPLATE = "template"
CHANNEL_FALLBACK_TEXT = "fallback_text"

ATTEMPT_SENT = "SENT"
ATTEMPT_REJECTED_POLICY = "REJECTED_POLICY"  # Engagement window closed - drives the fallback
ATTEMPT_FAILED = "FAILED"
