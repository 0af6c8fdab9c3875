"""
Amount and date literal helpers.

Supported amount formats:
- 1.234,56 (European), 1,234.56 (US), 1 234,56 (Nordic)
- 25,50 / 25.50 with an optional currency prefix (€, $, £, ¥, USD, EUR, ...)
"""

import re
from datetime import date
from decimal import Decimal, InvalidOperation

# Currency-like token. Group 1 holds the numeric part; it must end in
# exactly two decimals and must not be glued to a longer number or date.
AMOUNT_PATTERN = re.compile(
    r"(?<![\d.,])"
    r"(?:[$€£¥]|usd|eur|gbp|sek|nok|dkk)?\s*"
    r"(\d{1,3}(?:[\s,.]\d{3})*(?:[.,]\d{2}))"
    r"(?![0-9]|[.,]\d)",
    re.IGNORECASE,
)


def parse_amount(raw: str) -> Decimal | None:
    """Normalize a European or US formatted amount string to Decimal.

    When both separators appear, the last one is the decimal mark.
    A single separator kind followed by exactly two digits is decimal,
    otherwise it is a thousands separator.

    Returns:
        Parsed amount, or None if the string is not a number
    """
    cleaned = re.sub(r"\s", "", raw)
    if not cleaned:
        return None

    last_dot = cleaned.rfind(".")
    last_comma = cleaned.rfind(",")

    if last_dot >= 0 and last_comma >= 0:
        decimal_mark = "." if last_dot > last_comma else ","
        thousands = "," if decimal_mark == "." else "."
        cleaned = cleaned.replace(thousands, "").replace(decimal_mark, ".")
    elif last_dot >= 0 or last_comma >= 0:
        separator = "." if last_dot >= 0 else ","
        head, _, tail = cleaned.rpartition(separator)
        if len(tail) == 2:
            cleaned = head.replace(separator, "") + "." + tail
        else:
            cleaned = cleaned.replace(separator, "")

    try:
        return Decimal(cleaned)
    except InvalidOperation:
        return None


def find_amounts(text: str) -> list[Decimal]:
    """Return every positive currency-like amount in text, in order."""
    amounts: list[Decimal] = []
    for match in AMOUNT_PATTERN.finditer(text):
        amount = parse_amount(match.group(1))
        if amount is not None and amount > 0:
            amounts.append(amount)
    return amounts


def relative_difference(found: Decimal, expected: Decimal) -> Decimal:
    """|found - expected| / expected, or infinity when expected is zero."""
    if expected == 0:
        return Decimal("Infinity") if found != 0 else Decimal(0)
    return abs(found - expected) / abs(expected)


def date_literals(value: date) -> list[str]:
    """Locale-specific literal renderings of a date as they appear in receipts."""
    return [
        f"{value.year}-{value.month:02d}-{value.day:02d}",
        f"{value.day}.{value.month}.{value.year}",
        f"{value.day:02d}.{value.month:02d}.{value.year}",
        f"{value.day}/{value.month}/{value.year}",
    ]
