"""
Phone number normalization - the correlation key between providers, pending orders
and inbound WhatsApp messages.

WhatsApp reports senders as bare international digits ("5491135562673") while users
type numbers however they like ("011 3556-2673", "+54 9 11 3556-2673"). Everything is
reduced to +<country code><national number>, plus a last-10-digit match key used when
two representations differ only in their country / trunk prefix.

normalize_phone() never raises: unusable input comes back as a NormalizationError value.
"""

import re
from dataclasses import dataclass

from app.core.config import settings

MIN_SIGNIFICANT_DIGITS = 6
MAX_E164_DIGITS = 15
MATCH_KEY_LENGTH = 10

REASON_EMPTY = "empty"
REASON_TOO_SHORT = "too_short"
REASON_TOO_LONG = "too_long"

_NON_DIAL_CHARS = re.compile(r"[^\d+]")


@dataclass(frozen=True)
class CountryRule:
    national_length: int
    # Digit some countries insert between the country code and the national number
    # for mobiles (Argentina "9", Mexico "1"); dropped to reach the canonical form
    mobile_prefix: str | None = None


COUNTRY_RULES: dict[str, CountryRule] = {
    "1": CountryRule(10),
    "34": CountryRule(9),
    "44": CountryRule(10),
    "51": CountryRule(9),
    "52": CountryRule(10, mobile_prefix="1"),
    "54": CountryRule(10, mobile_prefix="9"),
    "55": CountryRule(11),
    "56": CountryRule(9),
    "57": CountryRule(10),
    "58": CountryRule(10),
    "591": CountryRule(8),
    "593": CountryRule(9),
    "595": CountryRule(9),
    "598": CountryRule(8),
}

DEFAULT_NATIONAL_LENGTH = 10


@dataclass(frozen=True)
class NormalizedPhone:
    country_code: str
    national_number: str

    @property
    def digits(self) -> str:
        return f"{self.country_code}{self.national_number}"

    @property
    def e164(self) -> str:
        return f"+{self.digits}"

    @property
    def match_key(self) -> str:
        """Last 10 digits - equal for the same line written with or without prefixes."""
        return self.digits[-MATCH_KEY_LENGTH:]

    def __str__(self) -> str:
        return self.e164


@dataclass(frozen=True)
class NormalizationError:
    raw: str
    reason: str

    @property
    def message(self) -> str:
        return f"Cannot normalize phone number {self.raw!r}: {self.reason}"


def _split_country_code(digits: str, default_country_code: str) -> tuple[str, str]:
    """Longest known country code prefix wins; unknown codes keep all digits national."""
    known = set(COUNTRY_RULES) | {default_country_code}
    for length in (3, 2, 1):
        candidate = digits[:length]
        if candidate in known and len(digits) > length:
            return candidate, digits[length:]
    return "", digits


def _canonical_national(country_code: str, national: str) -> str:
    """Drop a mobile insertion digit or a stray trunk 0 that makes the number one digit too long."""
    rule = COUNTRY_RULES.get(country_code)
    if rule is None or len(national) != rule.national_length + 1:
        return national
    if rule.mobile_prefix and national.startswith(rule.mobile_prefix):
        return national[len(rule.mobile_prefix):]
    if national.startswith("0"):
        return national[1:]
    return national


def normalize_phone(
    raw: "str | NormalizedPhone | None",
    default_country_code: str | None = None,
) -> NormalizedPhone | NormalizationError:
    """
    Normalize a phone number to a comparable key.

    Args:
        raw: Phone number in any format (already-normalized values are accepted)
        default_country_code: Country assumed for numbers without an international
            prefix (defaults to settings.default_country_code)

    Returns:
        NormalizedPhone, or NormalizationError when the input cannot be used
    """
    if isinstance(raw, NormalizedPhone):
        return raw
    if not isinstance(raw, str) or not raw.strip():
        return NormalizationError(raw=str(raw or ""), reason=REASON_EMPTY)

    default_cc = default_country_code or settings.default_country_code
    cleaned = _NON_DIAL_CHARS.sub("", raw)
    international = cleaned.startswith("+")
    digits = cleaned.replace("+", "")

    if not international and digits.startswith("00"):
        digits = digits[2:]
        international = True
    elif not international and digits.startswith("0"):
        # National trunk prefix: 011 3556-2673 -> 11 3556-2673 in the default country
        digits = digits[1:]
    elif not international:
        rule = COUNTRY_RULES.get(default_cc)
        national_length = rule.national_length if rule else DEFAULT_NATIONAL_LENGTH
        # Bare digits: international when they carry the default country code
        # (541135562673) or are too long to be a national number at all
        if (digits.startswith(default_cc) and len(digits) > national_length) or (
            len(digits) > national_length + 1
        ):
            international = True

    if len(digits) < MIN_SIGNIFICANT_DIGITS:
        return NormalizationError(raw=raw, reason=REASON_TOO_SHORT)

    if international:
        country_code, national = _split_country_code(digits, default_cc)
    else:
        country_code, national = default_cc, digits

    national = _canonical_national(country_code, national)
    if len(country_code) + len(national) > MAX_E164_DIGITS:
        return NormalizationError(raw=raw, reason=REASON_TOO_LONG)

    return NormalizedPhone(country_code=country_code, national_number=national)


def format_phone_for_display(phone: "str | NormalizedPhone") -> str:
    """+54 11 3556-2673 for Argentine numbers, E.164 otherwise, raw input if unusable."""
    normalized = normalize_phone(phone)
    if isinstance(normalized, NormalizationError):
        return str(phone)
    national = normalized.national_number
    if normalized.country_code == "54" and len(national) == 10:
        return f"+54 {national[:2]} {national[2:6]}-{national[6:]}"
    return normalized.e164
