"""Zodiac sign detection for Spanish text."""

import re
import unicodedata

ZODIAC_SIGNS = {
    "aries": "♈",
    "tauro": "♉",
    "geminis": "♊",
    "cancer": "♋",
    "leo": "♌",
    "virgo": "♍",
    "libra": "♎",
    "escorpio": "♏",
    "escorpion": "♏",
    "sagitario": "♐",
    "capricornio": "♑",
    "acuario": "♒",
    "piscis": "♓",
}

# Longest names first so "escorpion" wins over "escorpio"
SIGN_PATTERN = re.compile(
    r"\b(" + "|".join(sorted(ZODIAC_SIGNS, key=len, reverse=True)) + r")\b"
)


def normalize_text(text: str) -> str:
    """Lowercase and strip accents: ``"Géminis"`` -> ``"geminis"``."""
    decomposed = unicodedata.normalize("NFKD", text.lower())
    return "".join(ch for ch in decomposed if not unicodedata.combining(ch))


def detect_zodiac_signs(text: str) -> list[str]:
    """Return every zodiac symbol mentioned in ``text``.

    Symbols are ordered by the position of their first mention and appear
    once each, even when a sign is named twice or under two spellings.

    Examples:
        >>> detect_zodiac_signs("Soy Aries y también Leo")
        ['♈', '♌']
        >>> detect_zodiac_signs("hola mundo")
        []
    """
    symbols: list[str] = []
    for match in SIGN_PATTERN.finditer(normalize_text(text)):
        symbol = ZODIAC_SIGNS[match.group(1)]
        if symbol not in symbols:
            symbols.append(symbol)
    return symbols
