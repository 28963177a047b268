"""
Card number normalization.

Every card number that is stored, cached or compared goes through
normalize_card_number(). Two spellings of the same physical card must
normalize to the same string, or duplicate issuance goes undetected.
"""

import re

# Anything that is not an ASCII letter or digit is dropped
_STRIP_PATTERN = re.compile(r"[^A-Z0-9]")

MAX_CARD_NUMBER_LENGTH = 64


def normalize_card_number(raw: object) -> str:
    """
    Canonicalize a card number.

    Total function: None and blank input give "". Spreadsheet exports may
    hand us ints or integral floats (1234.0), which are stringified
    without the fractional part.

    Idempotent: normalize_card_number(normalize_card_number(x)) equals
    normalize_card_number(x).
    """
    if raw is None:
        return ""
    if isinstance(raw, bool):
        return ""
    if isinstance(raw, float):
        if raw != raw or raw in (float("inf"), float("-inf")):
            return ""
        text = str(int(raw)) if raw.is_integer() else str(raw)
    else:
        text = str(raw)
    return _STRIP_PATTERN.sub("", text.upper())


def is_valid_card_number(value: object) -> bool:
    """Check that a value normalizes to a usable card number."""
    normalized = normalize_card_number(value)
    return 0 < len(normalized) <= MAX_CARD_NUMBER_LENGTH
