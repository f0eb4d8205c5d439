"""Heuristic checks that decide whether free text answers a pending question.

Customers type on a phone, often in a hurry and without punctuation, so the
rules prefer recall over precision. The only strict rule is that a pure
acknowledgement ("ok", "oui", a thumbs-up) never counts as a value.
"""
import re

from app.conversation.delivery_dates import looks_like_delivery
from app.conversation.text import clean, fold, strip_edge_punctuation

RECIPIENT_SELF = "self"
RECIPIENT_THIRD_PARTY = "third_party"

# Sizes of the customer and order columns these answers are copied into
MAX_LENGTHS = {
    "name": 160,
    "recipient_name": 160,
    "recipient_phone": 120,
    "delivery_requested_raw": 200,
}

ACKNOWLEDGEMENTS = {
    "",
    "ok",
    "okay",
    "oki",
    "okk",
    "oui",
    "ouais",
    "ouii",
    "yes",
    "yep",
    "d'accord",
    "daccord",
    "dac",
    "d'acc",
    "ok merci",
    "merci",
    "c'est bon",
    "cest bon",
    "bien",
    "super",
    "parfait",
    "cool",
    "top",
    "👍",
    "👌",
    "🙏",
    "✅",
    "👍🏽",
    "👍🏾",
    "👍🏿",
}

VALUE_FIELDS = {
    "name",
    "recipient_name",
    "address",
    "recipient_address",
    "phone",
    "recipient_phone",
    "payment_method",
    "delivery_requested_raw",
}

# Abidjan communes, neighbourhoods and landmarks people use instead of street addresses
ADDRESS_GAZETTEER = (
    "abobo",
    "adjame",
    "anyama",
    "angre",
    "attecoube",
    "bingerville",
    "biabou",
    "bietry",
    "blockhaus",
    "cocody",
    "deux plateaux",
    "2 plateaux",
    "gonzagueville",
    "grand bassam",
    "koumassi",
    "marcory",
    "niangon",
    "palmeraie",
    "plateau",
    "port bouet",
    "port-bouet",
    "riviera",
    "songon",
    "treichville",
    "vridi",
    "williamsville",
    "yopougon",
    "zone 4",
    "carrefour",
    "pharmacie",
    "marche",
    "mosquee",
    "eglise",
    "gare",
    "rue",
    "cite",
    "quartier",
)

# Canonical label -> keywords, checked in order
PAYMENT_METHODS = (
    ("Orange Money", ("orange money", "orange", "om")),
    ("MTN Mobile Money", ("mtn", "momo", "mobile money")),
    ("Moov Money", ("moov", "flooz")),
    ("Wave", ("wave",)),
    ("Carte bancaire", ("carte", "visa", "mastercard", "cb")),
    ("Espèces", ("cash", "espece", "especes", "liquide", "a la livraison", "main a main")),
)

_SELF_KEYWORDS = ("1", "moi", "moi-meme", "moi meme", "pour moi", "c'est pour moi", "c'est moi")
_THIRD_PARTY_KEYWORDS = (
    "2",
    "autre",
    "autre personne",
    "quelqu'un",
    "quelquun",
    "tiers",
    "pour lui",
    "pour elle",
    "cadeau",
)

_LETTER = re.compile(r"[a-zà-öø-ÿ]", re.IGNORECASE)


def is_acknowledgement(raw_text: str | None) -> bool:
    text = clean(raw_text)
    return text in ACKNOWLEDGEMENTS or strip_edge_punctuation(text) in ACKNOWLEDGEMENTS


def _letters(text: str) -> int:
    return len(_LETTER.findall(text))


def _has_keyword(folded: str, keyword: str) -> bool:
    return re.search(rf"(?<![\w']){re.escape(keyword)}(?![\w'])", folded) is not None


def is_name_like(raw_text: str | None) -> bool:
    text = (raw_text or "").strip()
    return len(text) >= 2 and _letters(text) >= 2


def is_address_like(raw_text: str | None) -> bool:
    text = (raw_text or "").strip()
    if len(text) >= 5 and _letters(text) >= 3:
        return True
    folded = fold(text)
    return any(_has_keyword(folded, keyword) for keyword in ADDRESS_GAZETTEER)


def is_phone_like(raw_text: str | None) -> bool:
    return len(re.sub(r"\D", "", raw_text or "")) >= 8


def normalize_payment_method(raw_text: str | None) -> str | None:
    folded = fold(raw_text)
    if not folded:
        return None
    for label, keywords in PAYMENT_METHODS:
        if any(_has_keyword(folded, keyword) for keyword in keywords):
            return label
    return None


def parse_recipient_mode(raw_text: str | None) -> str | None:
    folded = strip_edge_punctuation(fold(raw_text))
    if not folded:
        return None
    if folded in {"1", "2"}:
        return RECIPIENT_SELF if folded == "1" else RECIPIENT_THIRD_PARTY
    # "autre" wins over "moi" for "pour une autre personne que moi"
    if any(_has_keyword(folded, keyword) for keyword in _THIRD_PARTY_KEYWORDS):
        return RECIPIENT_THIRD_PARTY
    if any(_has_keyword(folded, keyword) for keyword in _SELF_KEYWORDS):
        return RECIPIENT_SELF
    return None


def fits_column(field: str, raw_text: str | None) -> bool:
    limit = MAX_LENGTHS.get(field)
    return limit is None or len((raw_text or "").strip()) <= limit


def validate(field: str, raw_text: str | None) -> bool:
    if is_acknowledgement(raw_text):
        return False
    if not fits_column(field, raw_text):
        return False

    if field in ("name", "recipient_name"):
        return is_name_like(raw_text)
    if field in ("address", "recipient_address"):
        return is_address_like(raw_text)
    if field in ("phone", "recipient_phone"):
        return is_phone_like(raw_text)
    if field == "delivery_requested_raw":
        return looks_like_delivery(raw_text)
    if field == "payment_method":
        return normalize_payment_method(raw_text) is not None
    # recipient_mode and anything else: any non-acknowledgement text
    return bool((raw_text or "").strip())
