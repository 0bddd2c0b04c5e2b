"""
Tests for supplier reply classification (confirm / reject / unrecognized).
"""

import pytest

from app.services.reply_classifier import (
    REPLY_CONFIRM,
    REPLY_REJECT,
    REPLY_UNRECOGNIZED,
    KeywordReplyClassifier,
    get_classifier,
    reset_cache,
)
from app.services.text_normalization import fold_accents, normalize_text, tokenize


@pytest.fixture
def classifier():
    reset_cache()
    return get_classifier("es_AR")


@pytest.mark.parametrize(
    "text",
    [
        "sí, confirmo",
        "SI",
        "Dale!!",
        "OK 👍",
        "Perfecto, mañana temprano",
        "No hay problema, lo mandamos mañana",
        "Pedido ORD-1 confirmado",
        "de acuerdo",
    ],
)
def test_confirmations(classifier, text):
    assert classifier.classify(text).intent == REPLY_CONFIRM


@pytest.mark.parametrize(
    "text",
    [
        "No, no puedo esta semana",
        "NO",
        "Cancelo el pedido",
        "no tenemos stock de manteca",
        "Imposible por hoy",
    ],
)
def test_rejections(classifier, text):
    assert classifier.classify(text).intent == REPLY_REJECT


@pytest.mark.parametrize(
    "text",
    [
        "sí pero no",
        "¿Para cuándo lo necesitan?",
        "",
        None,
        "👍",
    ],
)
def test_unrecognized(classifier, text):
    assert classifier.classify(text).intent == REPLY_UNRECOGNIZED


def test_phrase_match_is_reported(classifier):
    result = classifier.classify("No hay problema")

    assert result.intent == REPLY_CONFIRM
    assert result.matched == ["no hay problema"]
    assert result.recognized


def test_words_match_whole_tokens_only(classifier):
    # "sino" and "nota" contain "si" / "no" but are different words
    assert classifier.classify("sino mandame la nota").intent == REPLY_UNRECOGNIZED


def test_english_locale(classifier):
    english = get_classifier("en")

    assert english.classify("Yes, confirmed").intent == REPLY_CONFIRM
    assert english.classify("Sorry, out of stock").intent == REPLY_REJECT
    assert english is not classifier


def test_unknown_locale_recognizes_nothing():
    reset_cache()

    assert get_classifier("xx").classify("sí").intent == REPLY_UNRECOGNIZED


def test_custom_vocabulary():
    custom = KeywordReplyClassifier(
        confirm_words=["va"],
        reject_words=["paso"],
        reject_phrases=["no va"],
    )

    assert custom.classify("Va!").intent == REPLY_CONFIRM
    assert custom.classify("no va").intent == REPLY_REJECT
    assert custom.classify("paso").intent == REPLY_REJECT


def test_classifier_is_cached():
    reset_cache()

    assert get_classifier("es_AR") is get_classifier("es_AR")


def test_text_helpers():
    assert normalize_text("  hola \u00a0 mundo\u200b ") == "hola mundo"
    assert normalize_text(None) == ""
    assert fold_accents("Sí, CONFIRMÓ") == "si, confirmo"
    assert tokenize("¡Sí! pedido ORD-1/b, ok") == ["si", "pedido", "ord-1/b", "ok"]
