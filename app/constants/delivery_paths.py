"""
Delivery path constants for InboundMessage.

The same provider message can reach us through any of these; all of them feed
the same deduplicated ingestion pipeline.
"""

DELIVERY_PATH_WEBHOOK = "webhook"  # BSP push (Meta Cloud API envelope)
DELIVERY_PATH_POLL = "poll"  # Polling fallback against the BSP message listing
DELIVERY_PATH_REALTIME = "realtime"  # Database change feed / BSP custom events

DELIVERY_PATHS = (DELIVERY_PATH_WEBHOOK, DELIVERY_PATH_POLL, DELIVERY_PATH_REALTIME)
