"""
Reply classifier - decide whether a supplier reply confirms or rejects an order.

The vocabulary is business- and locale-specific, so it lives in app/copy/reply_keywords.yml
and the correlation engine only depends on the ReplyClassifier protocol.
"""

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Protocol

import yaml

from app.services.text_normalization import tokenize

logger = logging.getLogger(__name__)

REPLY_CONFIRM = "CONFIRM"
REPLY_REJECT = "REJECT"
REPLY_UNRECOGNIZED = "UNRECOGNIZED"

KEYWORDS_FILE = Path(__file__).resolve().parent.parent / "copy" / "reply_keywords.yml"
DEFAULT_LOCALE = "es_AR"


@dataclass
class ReplyClassification:
    intent: str
    matched: list[str] = field(default_factory=list)

    @property
    def recognized(self) -> bool:
        return self.intent != REPLY_UNRECOGNIZED


class ReplyClassifier(Protocol):
    def classify(self, text: str | None) -> ReplyClassification: ...


def _phrase_tokens(phrases: list[str]) -> list[tuple[str, ...]]:
    result = [tuple(tokenize(p)) for p in phrases or []]
    return [p for p in result if p]


class KeywordReplyClassifier:
    """
    Token / phrase keyword matcher.

    Phrases of both polarities are consumed first (longest first), then single words are
    matched on the remaining tokens. Confirm and reject both present, or neither, is
    UNRECOGNIZED and left for a human.
    """

    def __init__(
        self,
        confirm_words: list[str],
        reject_words: list[str],
        confirm_phrases: list[str] | None = None,
        reject_phrases: list[str] | None = None,
    ):
        self.confirm_words = {t for w in confirm_words for t in tokenize(w)}
        self.reject_words = {t for w in reject_words for t in tokenize(w)}
        phrases = [(p, REPLY_CONFIRM) for p in _phrase_tokens(confirm_phrases or [])]
        phrases += [(p, REPLY_REJECT) for p in _phrase_tokens(reject_phrases or [])]
        self._phrases = sorted(phrases, key=lambda item: len(item[0]), reverse=True)

    @classmethod
    def from_config(cls, config: dict[str, Any]) -> "KeywordReplyClassifier":
        confirm = config.get("confirm") or {}
        reject = config.get("reject") or {}
        return cls(
            confirm_words=confirm.get("words") or [],
            reject_words=reject.get("words") or [],
            confirm_phrases=confirm.get("phrases") or [],
            reject_phrases=reject.get("phrases") or [],
        )

    @classmethod
    def for_locale(cls, locale: str = DEFAULT_LOCALE, path: Path = KEYWORDS_FILE) -> "KeywordReplyClassifier":
        """Load the vocabulary for a locale from YAML (empty vocabulary if missing)."""
        data: dict[str, Any] = {}
        if path.exists():
            with open(path, encoding="utf-8") as f:
                data = yaml.safe_load(f) or {}
        else:
            logger.warning(f"Reply keywords file not found: {path}")
        config = data.get(locale)
        if config is None:
            logger.warning(f"No reply keywords for locale {locale}, nothing will be recognized")
            config = {}
        return cls.from_config(config)

    def classify(self, text: str | None) -> ReplyClassification:
        tokens = tokenize(text)
        consumed = [False] * len(tokens)
        confirm_hits: list[str] = []
        reject_hits: list[str] = []

        for phrase, intent in self._phrases:
            size = len(phrase)
            for start in range(len(tokens) - size + 1):
                window = range(start, start + size)
                if any(consumed[i] for i in window):
                    continue
                if tuple(tokens[start:start + size]) == phrase:
                    for i in window:
                        consumed[i] = True
                    hits = confirm_hits if intent == REPLY_CONFIRM else reject_hits
                    hits.append(" ".join(phrase))

        for i, token in enumerate(tokens):
            if consumed[i]:
                continue
            if token in self.confirm_words:
                confirm_hits.append(token)
            elif token in self.reject_words:
                reject_hits.append(token)

        if confirm_hits and not reject_hits:
            return ReplyClassification(intent=REPLY_CONFIRM, matched=confirm_hits)
        if reject_hits and not confirm_hits:
            return ReplyClassification(intent=REPLY_REJECT, matched=reject_hits)
        return ReplyClassification(intent=REPLY_UNRECOGNIZED, matched=confirm_hits + reject_hits)


_classifiers: dict[str, KeywordReplyClassifier] = {}


def reset_cache() -> None:
    """Clear cached classifiers (tests that patch KEYWORDS_FILE)."""
    _classifiers.clear()


def get_classifier(locale: str | None = None) -> KeywordReplyClassifier:
    from app.core.config import settings

    locale = locale or settings.reply_locale
    if locale not in _classifiers:
        _classifiers[locale] = KeywordReplyClassifier.for_locale(locale)
    return _classifiers[locale]
