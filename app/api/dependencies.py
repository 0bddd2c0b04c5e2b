"""FastAPI dependencies for API routes."""

from fastapi import HTTPException, Request
from sqlalchemy.orm import Session

from app.db.models import Provider
from app.services.domain_events import DomainEventBus
from app.services.messaging.whatsapp_client import MessageSender, WhatsAppCloudSender


def get_provider_or_404(db: Session, provider_id: int) -> Provider:
    """Resolve a provider by id; raise 404 if not found."""
    provider = db.get(Provider, provider_id)
    if not provider:
        raise HTTPException(status_code=404, detail="Provider not found")
    return provider


def get_message_sender() -> MessageSender:
    """Send capability for outbound notifications (overridden in tests)."""
    return WhatsAppCloudSender()


def get_event_bus(request: Request) -> DomainEventBus | None:
    return getattr(request.app.state, "event_bus", None)
