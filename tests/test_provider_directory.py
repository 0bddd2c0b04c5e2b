"""
Tests for provider lookup by inbound sender phone.
"""

from app.db.models import BusinessNumber, Provider
from app.services.provider_directory import (
    LOOKUP_AMBIGUOUS,
    LOOKUP_FOUND,
    LOOKUP_NOT_FOUND,
    MATCH_EXACT,
    MATCH_KEY,
    find_provider_by_phone,
    find_user_for_business_number,
    normalize_provider_phone,
)


def test_exact_match_from_whatsapp_sender_format(db, make_provider):
    provider = make_provider(phone="011 3556-2673")

    result = find_provider_by_phone(db, "5491135562673")

    assert result.status == LOOKUP_FOUND
    assert result.found
    assert result.provider.id == provider.id
    assert result.match == MATCH_EXACT


def test_match_key_fallback_when_country_prefix_differs(db, make_provider):
    provider = make_provider(phone="+54 9 11 3556-2673")

    result = find_provider_by_phone(db, "+1 113 556 2673")

    assert result.status == LOOKUP_FOUND
    assert result.provider.id == provider.id
    assert result.match == MATCH_KEY


def test_exact_match_beats_key_match(db, make_provider):
    exact = make_provider(phone="+54 11 3556-2673", name="Exact")
    make_provider(phone="+44 1135562673", name="Same last digits")

    result = find_provider_by_phone(db, "+5491135562673")

    assert result.status == LOOKUP_FOUND
    assert result.provider.id == exact.id
    assert result.match == MATCH_EXACT


def test_same_phone_for_two_users_is_ambiguous(db, make_provider):
    first = make_provider(user_id="user-1")
    second = make_provider(user_id="user-2", name="Otra cuenta")

    result = find_provider_by_phone(db, "+541135562673")

    assert result.status == LOOKUP_AMBIGUOUS
    assert result.provider is None
    assert result.candidate_ids == sorted([first.id, second.id])


def test_user_scope_resolves_ambiguity(db, make_provider):
    make_provider(user_id="user-1")
    second = make_provider(user_id="user-2", name="Otra cuenta")

    result = find_provider_by_phone(db, "+541135562673", user_id="user-2")

    assert result.status == LOOKUP_FOUND
    assert result.provider.id == second.id


def test_key_only_ambiguity(db, make_provider):
    make_provider(phone="+54 11 3556-2673", name="Argentina")
    make_provider(phone="+44 1135562673", name="UK")

    result = find_provider_by_phone(db, "+1 113 556 2673")

    assert result.status == LOOKUP_AMBIGUOUS
    assert result.match == MATCH_KEY
    assert len(result.candidate_ids) == 2


def test_not_found(db, make_provider):
    make_provider(phone="+54 11 3556-2673")

    assert find_provider_by_phone(db, "+54 11 4000-0000").status == LOOKUP_NOT_FOUND


def test_unusable_phone_is_not_found(db, make_provider):
    make_provider()

    assert find_provider_by_phone(db, "abc").status == LOOKUP_NOT_FOUND


def test_provider_with_unusable_phone_never_matches(db):
    provider = Provider(user_id="user-1", name="Sin teléfono", phone="n/a")
    normalize_provider_phone(provider)
    db.add(provider)
    db.commit()

    assert provider.phone_normalized is None
    assert provider.phone_match_key is None
    assert find_provider_by_phone(db, "+541135562673").status == LOOKUP_NOT_FOUND


def test_find_user_for_business_number(db):
    db.add(BusinessNumber(external_id="pn-1", user_id="user-1", display_phone="+54 11 5555-0000"))
    db.commit()

    assert find_user_for_business_number(db, "pn-1") == "user-1"
    assert find_user_for_business_number(db, "pn-unknown") is None
    assert find_user_for_business_number(db, None) is None
