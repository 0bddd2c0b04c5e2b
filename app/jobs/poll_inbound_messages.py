"""
Polling fallback delivery path.

Fetches recent messages from the BSP message listing and feeds them through the same
deduplicated pipeline as the webhook and realtime paths; messages already delivered
another way come back as duplicates and are not processed again.
Run from cron / a scheduler: python -m app.jobs.poll_inbound_messages
"""

import asyncio
import logging
import sys

import httpx
from sqlalchemy.orm import Session

from app.core.config import settings
from app.db.session import SessionLocal
from app.middleware.correlation_id import set_correlation_id
from app.services.domain_events import DomainEventBus, build_event_bus
from app.services.event_adapters import from_polled_messages
from app.services.inbound_pipeline import handle_inbound_event
from app.services.ingestion import MalformedEvent
from app.services.integrations.http_client import create_httpx_client

logger = logging.getLogger(__name__)


async def fetch_recent_messages(
    limit: int,
    transport: httpx.AsyncBaseTransport | None = None,
) -> list[dict]:
    """GET bsp_poll_url?limit=N; accepts a bare list or {"data": [...]}."""
    if not settings.bsp_poll_url:
        raise RuntimeError("BSP_POLL_URL is not configured")
    headers = {"X-API-Key": settings.bsp_api_key} if settings.bsp_api_key else None
    async with create_httpx_client(headers=headers, transport=transport) as client:
        response = await client.get(settings.bsp_poll_url, params={"limit": limit})
        response.raise_for_status()
        data = response.json()
    if isinstance(data, dict):
        data = data.get("data") or data.get("messages") or []
    return [item for item in data if isinstance(item, dict)]


async def run_poll(
    limit: int | None = None,
    db: Session | None = None,
    event_bus: DomainEventBus | None = None,
    transport: httpx.AsyncBaseTransport | None = None,
) -> dict:
    """
    Poll the BSP once and process every inbound message returned.

    Returns:
        Summary dict with counts per result type
    """
    limit = limit or settings.poll_batch_size
    items = await fetch_recent_messages(limit, transport=transport)
    events = from_polled_messages(items)

    results = {"fetched": len(items), "processed": 0, "duplicate": 0, "malformed": 0, "failed": 0}
    owns_session = db is None
    db = db or SessionLocal()
    try:
        for event in events:
            try:
                outcome = await handle_inbound_event(db, event, event_bus=event_bus)
            except MalformedEvent:
                results["malformed"] += 1
                continue
            except Exception as e:
                db.rollback()
                logger.error(f"Error processing polled message {event.provider_message_id}: {e}", exc_info=True)
                results["failed"] += 1
                continue
            results[outcome["type"]] += 1
    finally:
        if owns_session:
            db.close()

    logger.info(
        f"Poll completed: fetched={results['fetched']}, processed={results['processed']}, "
        f"duplicate={results['duplicate']}, malformed={results['malformed']}, failed={results['failed']}"
    )
    return results


def main() -> None:
    """CLI entrypoint for the polling job."""
    import argparse

    parser = argparse.ArgumentParser(description="Poll the BSP for inbound messages")
    parser.add_argument(
        "--limit",
        type=int,
        default=settings.poll_batch_size,
        help=f"Maximum number of messages to fetch (default: {settings.poll_batch_size})",
    )
    parser.add_argument("--verbose", action="store_true", help="Enable verbose logging")
    args = parser.parse_args()

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    set_correlation_id()

    try:
        results = asyncio.run(run_poll(limit=args.limit, event_bus=build_event_bus()))
    except Exception as e:
        logger.error(f"Polling job failed: {e}", exc_info=True)
        sys.exit(1)

    if results["failed"] > 0:
        sys.exit(1)


if __name__ == "__main__":
    main()
