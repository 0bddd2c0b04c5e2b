import json
import logging

from fastapi import APIRouter, Depends, HTTPException, Query, Request, Response
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from app.constants.event_types import (
    EVENT_WHATSAPP_SIGNATURE_VERIFICATION_FAILURE,
    EVENT_WHATSAPP_WEBHOOK_FAILURE,
)
from app.core.config import settings
from app.db.deps import get_db
from app.middleware.correlation_id import get_correlation_id
from app.schemas.inbound import RawInboundEvent
from app.services.event_adapters import from_realtime_change, from_whatsapp_webhook
from app.services.inbound_pipeline import handle_inbound_event
from app.services.ingestion import MalformedEvent
from app.services.messaging.whatsapp_verification import (
    verify_realtime_secret,
    verify_whatsapp_signature,
)
from app.services.system_event_service import error, warn

logger = logging.getLogger(__name__)

router = APIRouter()

HEADER_WEBHOOK_SECRET = "X-Webhook-Secret"


def _wa_error_response(status_code: int, error: str, **content_extras) -> JSONResponse:
    """Build JSONResponse for webhook errors: {"received": False, "error": ...}."""
    content: dict = {"received": False, "error": error, **content_extras}
    return JSONResponse(status_code=status_code, content=content)


def _parse_json(raw_body: bytes) -> dict | None:
    try:
        payload = json.loads(raw_body.decode("utf-8"))
    except (UnicodeDecodeError, ValueError):
        return None
    return payload if isinstance(payload, dict) else None


async def process_events(request: Request, db: Session, events: list[RawInboundEvent]) -> list[dict]:
    """
    Run each adapted event through the inbound pipeline.

    Malformed events are acknowledged (never stored); a failure on one event does not
    stop the rest of the batch.
    """
    event_bus = getattr(request.app.state, "event_bus", None)
    results = []
    for event in events:
        try:
            results.append(await handle_inbound_event(db, event, event_bus=event_bus))
        except MalformedEvent as e:
            results.append({"type": "malformed", "message_id": event.provider_message_id, "error": e.reason})
        except Exception as e:
            db.rollback()
            logger.error(
                f"Inbound pipeline failed for message {event.provider_message_id} "
                f"via {event.delivery_path}: {type(e).__name__}: {e}",
                exc_info=True,
            )
            error(
                db=db,
                event_type=EVENT_WHATSAPP_WEBHOOK_FAILURE,
                payload={
                    "provider_message_id": event.provider_message_id,
                    "delivery_path": event.delivery_path,
                },
                exc=e,
            )
            results.append({"type": "error", "message_id": event.provider_message_id})
    return results


@router.get("/whatsapp")
def whatsapp_verify(
    hub_mode: str | None = Query(default=None, alias="hub.mode"),
    hub_verify_token: str | None = Query(default=None, alias="hub.verify_token"),
    hub_challenge: str | None = Query(default=None, alias="hub.challenge"),
):
    if hub_mode == "subscribe" and hub_verify_token == settings.whatsapp_verify_token:
        return Response(content=hub_challenge or "", media_type="text/plain")
    raise HTTPException(status_code=403, detail="Verification failed")


@router.post("/whatsapp")
async def whatsapp_inbound(request: Request, db: Session = Depends(get_db)):
    correlation_id = get_correlation_id(request)
    logger.info(f"whatsapp.inbound_received correlation_id={correlation_id}")

    raw_body = await request.body()
    signature_header = request.headers.get("X-Hub-Signature-256")
    if not verify_whatsapp_signature(raw_body, signature_header):
        warn(
            db=db,
            event_type=EVENT_WHATSAPP_SIGNATURE_VERIFICATION_FAILURE,
            payload={"has_signature_header": signature_header is not None},
        )
        return _wa_error_response(403, "Invalid webhook signature")

    payload = _parse_json(raw_body)
    if payload is None:
        logger.warning("Invalid JSON payload in WhatsApp webhook")
        return _wa_error_response(400, "Invalid JSON payload")

    events = from_whatsapp_webhook(payload)
    if not events:
        # Status callbacks (sent / delivered / read) and empty envelopes
        return {"received": True, "type": "non-message-event"}

    results = await process_events(request, db, events)
    return {"received": True, "type": "messages", "results": results}


@router.post("/realtime")
async def realtime_inbound(request: Request, db: Session = Depends(get_db)):
    if not verify_realtime_secret(request.headers.get(HEADER_WEBHOOK_SECRET)):
        return _wa_error_response(403, "Invalid webhook secret")

    payload = _parse_json(await request.body())
    if payload is None:
        return _wa_error_response(400, "Invalid JSON payload")

    events = from_realtime_change(payload)
    if not events:
        return {"received": True, "type": "ignored"}

    results = await process_events(request, db, events)
    return {"received": True, "type": "messages", "results": results}
