"""
Text normalization for reply classification - strip, collapse spaces, fold accents.

WhatsApp copy/paste brings non-breaking spaces and zero-width chars; suppliers write
"si", "sí" and "SÍ!!" interchangeably.
"""

import re
import unicodedata

# Common unicode replacements
NBSP = "\u00A0"
ZWSP = "\u200B"
ZWNBSP = "\uFEFF"

# Words: letters/digits plus in-word "-", "_", "/" so order ids like ORD-1 stay one token
_TOKEN_RE = re.compile(r"[0-9a-z]+(?:[-_/][0-9a-z]+)*")


def normalize_text(text: str | None) -> str:
    """
    Normalize user input: strip, collapse spaces, fix common unicode.

    Args:
        text: Raw user message (or None)

    Returns:
        Normalized string (empty string if input is None/empty)
    """
    if text is None:
        return ""
    if not isinstance(text, str):
        return ""
    s = text.strip()
    s = s.replace(NBSP, " ")
    s = s.replace(ZWSP, "")
    s = s.replace(ZWNBSP, "")
    s = unicodedata.normalize("NFC", s)
    s = re.sub(r"\s+", " ", s)
    return s.strip()


def fold_accents(text: str | None) -> str:
    """Lowercase and drop diacritics: "Sí, CONFIRMÓ" -> "si, confirmo"."""
    s = normalize_text(text).lower()
    decomposed = unicodedata.normalize("NFD", s)
    return "".join(ch for ch in decomposed if unicodedata.category(ch) != "Mn")


def tokenize(text: str | None) -> list[str]:
    """Accent-folded word tokens, punctuation and emoji dropped."""
    return _TOKEN_RE.findall(fold_accents(text))
