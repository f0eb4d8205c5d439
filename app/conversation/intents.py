"""Keyword intents checked before the agent is called."""
from __future__ import annotations

import re

from app.conversation.text import fold, strip_edge_punctuation

OPT_OUT_WORDS = {"stop", "desabonner", "desabonne", "desinscrire", "unsubscribe"}
OPT_IN_WORDS = {"start", "reprendre", "reabonner", "subscribe"}

CONFIRM_WORDS = {"oui", "ok", "okay", "yes", "d'accord", "dac", "c'est bon", "parfait", "👍", "✅"}
CONFIRM_PATTERN = re.compile(r"\b(confirm\w*|valid\w*)\b")

CANCEL_WORDS = {"non", "no", "cancel", "laisse tomber", "laisse"}
CANCEL_PATTERN = re.compile(r"\b(annul\w*)\b")

CATALOG_PATTERN = re.compile(r"\b(catalogue|catalog|pdf|brochure)\b")
LISTING_PATTERN = re.compile(r"\b(liste|list)\b")


def _normalized(text: str | None) -> str:
    return strip_edge_punctuation(fold(text))


def is_opt_out(text: str | None) -> bool:
    return _normalized(text) in OPT_OUT_WORDS


def is_opt_in(text: str | None) -> bool:
    return _normalized(text) in OPT_IN_WORDS


def is_cancel_intent(text: str | None) -> bool:
    normalized = _normalized(text)
    return normalized in CANCEL_WORDS or bool(CANCEL_PATTERN.search(normalized))


def is_confirm_intent(text: str | None) -> bool:
    normalized = _normalized(text)
    if normalized in CONFIRM_WORDS:
        return True
    return bool(CONFIRM_PATTERN.search(normalized)) or normalized.startswith("oui ")


def is_catalog_intent(text: str | None) -> bool:
    return bool(CATALOG_PATTERN.search(fold(text)))


def is_listing_intent(text: str | None) -> bool:
    return bool(LISTING_PATTERN.search(fold(text)))
