"""
Webhook authenticity checks.

WhatsApp (Meta) signs every push with HMAC-SHA256 of the raw body in X-Hub-Signature-256.
The realtime change feed authenticates with a shared secret header instead.
"""

import hashlib
import hmac
import logging

from app.core.config import settings

logger = logging.getLogger(__name__)

SIGNATURE_PREFIX = "sha256="


def compute_signature(payload: bytes, secret: str) -> str:
    """X-Hub-Signature-256 value for payload ("sha256=<hex digest>")."""
    digest = hmac.new(secret.encode("utf-8"), payload, hashlib.sha256).hexdigest()
    return f"{SIGNATURE_PREFIX}{digest}"


def verify_whatsapp_signature(payload: bytes, signature_header: str | None) -> bool:
    """
    Verify a WhatsApp webhook signature.

    Args:
        payload: Raw request body (bytes), before any JSON parsing
        signature_header: X-Hub-Signature-256 header value

    Returns:
        True if valid, or if no app secret is configured (dev mode)
    """
    if not settings.whatsapp_app_secret:
        logger.warning(
            "WhatsApp app secret not configured - skipping signature verification. "
            "Set WHATSAPP_APP_SECRET in production."
        )
        return True

    if not signature_header:
        logger.warning("Missing X-Hub-Signature-256 header in WhatsApp webhook")
        return False

    if not signature_header.startswith(SIGNATURE_PREFIX):
        logger.warning(f"Invalid signature header format: {signature_header[:20]}")
        return False

    expected = compute_signature(payload, settings.whatsapp_app_secret)
    is_valid = hmac.compare_digest(signature_header, expected)
    if not is_valid:
        logger.warning("Invalid WhatsApp webhook signature - request rejected")
    return is_valid


def verify_realtime_secret(provided: str | None) -> bool:
    """Shared-secret check for the realtime change feed (open when no secret is configured)."""
    if not settings.realtime_webhook_secret:
        return True
    if not provided:
        logger.warning("Missing X-Webhook-Secret header on realtime webhook")
        return False
    return hmac.compare_digest(provided, settings.realtime_webhook_secret)
