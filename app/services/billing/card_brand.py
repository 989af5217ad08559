"""
Card brand detection from the leading digits of a card number.

Only used when the gateway does not tell us the brand itself.
"""
import re

_NON_DIGITS = re.compile(r"\D")

# Checked in order; first match wins.
_BRAND_PATTERNS = (
    ("visa", re.compile(r"^4")),
    ("mastercard", re.compile(r"^(5[1-5]|2[2-7])")),
    ("amex", re.compile(r"^3[47]")),
    ("discover", re.compile(r"^6(011|5)")),
)


def detect_card_brand(card_number: str) -> str:
    digits = _NON_DIGITS.sub("", card_number or "")
    for brand, pattern in _BRAND_PATTERNS:
        if pattern.match(digits):
            return brand
    return "unknown"
