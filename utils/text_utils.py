"""
Text utilities for catalog keys, titles and numbers.

Used by the row projector (number parsing) and the product matcher
(lookup keys, title similarity).
"""

import re
from decimal import Decimal, InvalidOperation
from typing import Any, Optional


def normalize_key(value: Any) -> Optional[str]:
    """
    Normalize a lookup key (SKU, barcode, title) for comparison.

    - "  AB-12 " → "ab-12"
    - "" / None → None

    Args:
        value: Raw key

    Returns:
        Lower-case trimmed string, or None if empty
    """
    if value is None:
        return None

    key = str(value).strip().lower()

    if not key:
        return None

    return key


def title_tokens(title: Optional[str]) -> set[str]:
    """Lower-case whitespace-separated words of a title."""
    if not title:
        return set()
    return set(str(title).lower().split())


def jaccard_similarity(a: Optional[str], b: Optional[str]) -> float:
    """
    Token-set Jaccard similarity of two titles.

    - "Red Widget" vs "red widget" → 1.0
    - "Red Widget" vs "Blue Widget" → 1/3

    Two empty titles are identical (1.0).
    """
    tokens_a = title_tokens(a)
    tokens_b = title_tokens(b)

    union = tokens_a | tokens_b
    if not union:
        return 1.0

    return len(tokens_a & tokens_b) / len(union)


# Currency symbols, letters (USD, руб, р.) and whitespace incl. NBSP
_NON_NUMERIC = re.compile(r"[^\d,.\-+eE]")


def parse_decimal(value: Any) -> Optional[Decimal]:
    """
    Parse a human-written number.

    Accepts "." or "," as decimal separator and strips currency symbols
    and spaces:
    - "$1,234.50" → Decimal("1234.50")
    - "1 234,50 ₽" → Decimal("1234.50")
    - "9,99" → Decimal("9.99")

    Args:
        value: Raw cell value

    Returns:
        Decimal, or None if the value is empty or not a number
    """
    if value is None:
        return None
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, Decimal)):
        return Decimal(value)
    if isinstance(value, float):
        return Decimal(str(value))

    text = str(value).strip()
    if not text:
        return None

    # Letters that are not an exponent (e.g. "USD") go with the symbols
    text = re.sub(r"[A-DF-Za-df-zЀ-ӿ]+", "", text)
    text = _NON_NUMERIC.sub("", text)
    if not text:
        return None

    if "," in text and "." in text:
        # The right-most separator is the decimal one
        if text.rfind(",") > text.rfind("."):
            text = text.replace(".", "").replace(",", ".")
        else:
            text = text.replace(",", "")
    elif "," in text:
        text = text.replace(",", ".") if text.count(",") == 1 else text.replace(",", "")

    try:
        number = Decimal(text)
    except InvalidOperation:
        return None

    if not number.is_finite():
        return None

    return number
