"""
Provider directory lookup - resolve an inbound sender phone to the supplier that owns it.

Read-only. Exact E.164 matches win over last-10-digit matches; when the winning tier holds
more than one distinct provider the result is AMBIGUOUS and nothing is attributed.
"""

import logging
from dataclasses import dataclass, field

from sqlalchemy import select
from sqlalchemy.orm import Session

from app.db.models import BusinessNumber, Provider
from app.services.phone_normalization import (
    NormalizationError,
    NormalizedPhone,
    normalize_phone,
)

logger = logging.getLogger(__name__)

LOOKUP_FOUND = "FOUND"
LOOKUP_NOT_FOUND = "NOT_FOUND"
LOOKUP_AMBIGUOUS = "AMBIGUOUS"

MATCH_EXACT = "exact"
MATCH_KEY = "match_key"


@dataclass
class ProviderLookup:
    status: str
    provider: Provider | None = None
    match: str | None = None
    candidate_ids: list[int] = field(default_factory=list)

    @property
    def found(self) -> bool:
        return self.status == LOOKUP_FOUND


def normalize_provider_phone(provider: Provider) -> Provider:
    """
    Fill phone_normalized / phone_match_key from provider.phone.

    Unusable phones leave both columns NULL so the provider never matches an inbound sender.
    """
    normalized = normalize_phone(provider.phone)
    if isinstance(normalized, NormalizationError):
        logger.warning(f"Provider {provider.id} has an unusable phone: {normalized.message}")
        provider.phone_normalized = None
        provider.phone_match_key = None
    else:
        provider.phone_normalized = normalized.e164
        provider.phone_match_key = normalized.match_key
    return provider


def find_user_for_business_number(db: Session, business_number_id: str | None) -> str | None:
    """Owner of the WhatsApp number a message was received on, or None if it is not registered."""
    if not business_number_id:
        return None
    stmt = select(BusinessNumber.user_id).where(BusinessNumber.external_id == business_number_id)
    user_id = db.execute(stmt).scalar_one_or_none()
    if user_id is None:
        logger.warning(f"Message received on unregistered business number {business_number_id}")
    return user_id


def _resolve(candidates: list[Provider], match: str) -> ProviderLookup:
    distinct = {p.id: p for p in candidates}
    if len(distinct) == 1:
        return ProviderLookup(status=LOOKUP_FOUND, provider=candidates[0], match=match)
    return ProviderLookup(
        status=LOOKUP_AMBIGUOUS,
        match=match,
        candidate_ids=sorted(distinct),
    )


def find_provider_by_phone(
    db: Session,
    phone: "str | NormalizedPhone",
    user_id: str | None = None,
) -> ProviderLookup:
    """
    Find the provider whose stored phone corresponds to the given number.

    Args:
        db: Database session
        phone: Raw or normalized phone of the inbound sender
        user_id: Restrict the search to one owner's providers

    Returns:
        ProviderLookup with status FOUND, NOT_FOUND or AMBIGUOUS
    """
    normalized = normalize_phone(phone)
    if isinstance(normalized, NormalizationError):
        return ProviderLookup(status=LOOKUP_NOT_FOUND)

    exact_stmt = select(Provider).where(Provider.phone_normalized == normalized.e164)
    if user_id is not None:
        exact_stmt = exact_stmt.where(Provider.user_id == user_id)
    exact = list(db.execute(exact_stmt.order_by(Provider.id)).scalars().all())
    if exact:
        return _resolve(exact, MATCH_EXACT)

    key_stmt = select(Provider).where(Provider.phone_match_key == normalized.match_key)
    if user_id is not None:
        key_stmt = key_stmt.where(Provider.user_id == user_id)
    by_key = list(db.execute(key_stmt.order_by(Provider.id)).scalars().all())
    if by_key:
        result = _resolve(by_key, MATCH_KEY)
        if result.status == LOOKUP_AMBIGUOUS:
            logger.warning(
                f"Phone {normalized.e164} matches several providers by key: {result.candidate_ids}"
            )
        return result

    return ProviderLookup(status=LOOKUP_NOT_FOUND)
