import logging

from fastapi import Depends, FastAPI, status
from fastapi.responses import JSONResponse
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.api.orders import router as orders_router
from app.api.webhooks import router as webhooks_router
from app.core.config import settings
from app.db.deps import get_db
from app.middleware.correlation_id import CorrelationIdMiddleware
from app.services.domain_events import build_event_bus

logger = logging.getLogger(__name__)

app = FastAPI(title="Supplier Order Confirmation")

app.add_middleware(CorrelationIdMiddleware)

# Domain event subscribers (order details on confirmation)
app.state.event_bus = build_event_bus()


def validate_settings() -> list[str]:
    """Return configuration errors that must stop the application from starting."""
    errors = []
    required_settings = [
        "database_url",
        "whatsapp_verify_token",
        "whatsapp_access_token",
        "whatsapp_phone_number_id",
    ]
    missing = [key for key in required_settings if not getattr(settings, key, None)]
    if missing:
        errors.append(f"Missing required environment variables: {', '.join(missing)}")

    if settings.pending_order_retention_hours <= 0:
        errors.append("PENDING_ORDER_RETENTION_HOURS must be a positive number of hours")

    if settings.app_env == "production":
        if not settings.admin_api_key:
            errors.append(
                "ADMIN_API_KEY is required in production. "
                "Set ADMIN_API_KEY environment variable with a strong random key."
            )
        if not settings.whatsapp_app_secret:
            errors.append(
                "WHATSAPP_APP_SECRET is required in production for webhook signature verification."
            )
        if settings.whatsapp_dry_run:
            errors.append("WHATSAPP_DRY_RUN must be false in production.")
    return errors


@app.on_event("startup")
async def startup_event():
    """Run startup checks and validation."""
    errors = validate_settings()
    if errors:
        error_message = (
            "Configuration validation failed:\n\n"
            + "\n".join(f"  - {error}" for error in errors)
            + "\n\nThe application cannot start with these missing or invalid settings."
        )
        logger.error(error_message)
        raise RuntimeError(error_message)

    logger.info(
        "Startup: Configuration loaded - "
        f"Environment: {settings.app_env}, "
        f"WhatsApp dry-run: {settings.whatsapp_dry_run}, "
        f"Order template: {settings.order_template_name} ({settings.order_template_language}), "
        f"Retention: {settings.pending_order_retention_hours}h"
    )
    if settings.whatsapp_dry_run:
        logger.warning("WhatsApp DRY-RUN enabled - no message will actually be sent")


@app.get("/health")
def health():
    """Liveness check - returns 200 immediately, with non-secret configuration."""
    return {
        "ok": True,
        "environment": settings.app_env,
        "whatsapp_dry_run": settings.whatsapp_dry_run,
        "order_template": settings.order_template_name,
        "pending_order_retention_hours": settings.pending_order_retention_hours,
        "polling_configured": bool(settings.bsp_poll_url),
    }


@app.get("/ready")
def ready(db: Session = Depends(get_db)):
    """
    Readiness check endpoint - verifies database connectivity.

    Returns 200 if database is accessible, 503 if not.
    """
    try:
        db.execute(text("SELECT 1"))
        return {"ok": True, "database": "connected"}
    except SQLAlchemyError as e:
        logger.error(f"Readiness check failed: {e}")
        return JSONResponse(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            content={"ok": False, "database": "disconnected", "error": str(e)},
        )


app.include_router(webhooks_router, prefix="/webhooks", tags=["webhooks"])
app.include_router(orders_router, tags=["orders"])
