"""
Expiry sweep for pending orders.

Moves AWAITING_CONFIRMATION pending orders older than the retention window to EXPIRED.
EXPIRED is terminal: a later "confirmo" for that order finds no pending order.
Run from cron / a scheduler: python -m app.jobs.expire_pending_orders
"""

import logging
import sys
from datetime import timedelta

from sqlalchemy.orm import Session

from app.core.config import settings
from app.db.session import SessionLocal
from app.middleware.correlation_id import set_correlation_id
from app.services.pending_orders import expire

logger = logging.getLogger(__name__)


def run_expiry(retention_hours: int | None = None, db: Session | None = None) -> dict:
    """
    Expire stale pending orders.

    Args:
        retention_hours: Window in hours (defaults to settings.pending_order_retention_hours)
        db: Session to use (a new SessionLocal session when None)

    Returns:
        Summary dict with the window and the number of orders expired
    """
    hours = retention_hours if retention_hours is not None else settings.pending_order_retention_hours
    owns_session = db is None
    db = db or SessionLocal()
    try:
        expired = expire(db, older_than=timedelta(hours=hours))
        return {"retention_hours": hours, "expired": expired}
    finally:
        if owns_session:
            db.close()


def main() -> None:
    """CLI entrypoint for the expiry sweep."""
    import argparse

    parser = argparse.ArgumentParser(description="Expire pending orders past the retention window")
    parser.add_argument(
        "--retention-hours",
        type=int,
        default=None,
        help=f"Retention window in hours (default: {settings.pending_order_retention_hours})",
    )
    parser.add_argument("--verbose", action="store_true", help="Enable verbose logging")
    args = parser.parse_args()

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    set_correlation_id()

    try:
        results = run_expiry(retention_hours=args.retention_hours)
        logger.info(
            f"Expiry sweep completed: expired={results['expired']} "
            f"(retention={results['retention_hours']}h)"
        )
    except Exception as e:
        logger.error(f"Expiry sweep failed: {e}", exc_info=True)
        sys.exit(1)


if __name__ == "__main__":
    main()
