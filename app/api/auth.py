"""
Admin authentication dependencies.
"""
import hmac

from fastapi import HTTPException, Security
from fastapi.security import APIKeyHeader

from app.core.config import settings

API_KEY_HEADER = "X-Admin-API-Key"

api_key_header = APIKeyHeader(name=API_KEY_HEADER, auto_error=False)


def get_admin_auth(api_key: str | None = Security(api_key_header)) -> bool:
    """
    Verify the admin API key for order / polling endpoints.

    Open when no admin_api_key is configured (dev only; production startup refuses that).

    Raises:
        HTTPException: 401 when the header is missing, 403 when it does not match
    """
    if not settings.admin_api_key:
        if settings.app_env == "production":
            raise HTTPException(status_code=503, detail="Admin API key not configured.")
        return True

    if not api_key:
        raise HTTPException(
            status_code=401,
            detail=f"Missing API key. Provide {API_KEY_HEADER} header.",
        )

    if not hmac.compare_digest(api_key, settings.admin_api_key):
        raise HTTPException(status_code=403, detail="Invalid API key.")

    return True
