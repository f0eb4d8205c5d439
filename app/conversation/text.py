import re
import unicodedata

_APOSTROPHES = str.maketrans({"’": "'", "‘": "'", "`": "'", "´": "'"})


def clean(text: str | None) -> str:
    """Lowercase, unify apostrophes and collapse whitespace."""
    if not text:
        return ""
    text = str(text).translate(_APOSTROPHES).lower()
    return re.sub(r"\s+", " ", text).strip()


def fold(text: str | None) -> str:
    """Like clean() but also strips accents, for keyword matching."""
    text = unicodedata.normalize("NFKD", clean(text))
    return "".join(char for char in text if not unicodedata.combining(char))


def strip_edge_punctuation(text: str) -> str:
    return text.strip(" .,!?;:-_*~\"'()[]")
