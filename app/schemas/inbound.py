"""
Inbound event schema - the abstract shape every delivery path is adapted to.
"""

from datetime import datetime

from pydantic import BaseModel, ConfigDict, field_validator

from app.constants.delivery_paths import DELIVERY_PATH_WEBHOOK, DELIVERY_PATHS


class RawInboundEvent(BaseModel):
    """
    One inbound message as seen at the boundary.

    Every field is optional here: a missing message id or sender phone is a
    MalformedEvent raised by ingestion, not a validation error at parse time.
    """

    model_config = ConfigDict(frozen=True)

    provider_message_id: str | None = None
    sender_phone: str | None = None
    body: str | None = None
    delivery_path: str = DELIVERY_PATH_WEBHOOK
    received_at: datetime | None = None
    # Receiving business number (Cloud API phone_number_id or BSP config id) and, when the
    # delivery path already knows it, the owning user. Either scopes the provider lookup.
    business_number_id: str | None = None
    user_id: str | None = None

    @field_validator("delivery_path")
    @classmethod
    def _known_delivery_path(cls, value: str) -> str:
        if value not in DELIVERY_PATHS:
            raise ValueError(f"Unknown delivery path: {value}")
        return value
