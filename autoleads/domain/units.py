"""
Indonesian number-with-unit parsing shared by the parser and the draft model.

"187jt" -> 187000000, "88rb" -> 88000, "1,5 juta" -> 1500000, "145.000.000" -> 145000000
"""
import re
from typing import Optional

UNIT_MULTIPLIERS: dict[str, int] = {
    "jt": 1_000_000,
    "juta": 1_000_000,
    "rb": 1_000,
    "ribu": 1_000,
    "k": 1_000,
    "m": 1_000_000_000,
    "miliar": 1_000_000_000,
    "milyar": 1_000_000_000,
}

AMOUNT_PATTERN = re.compile(
    r"(\d+(?:[.,]\d+)*)\s*(juta|jt|ribu|rb|k|miliar|milyar|m)?\b",
    re.IGNORECASE,
)
_DECIMAL = re.compile(r"^\d+[.,]\d{1,2}$")
_CURRENCY = re.compile(r"\brp\.?\s*", re.IGNORECASE)


def apply_unit(number: str, unit: Optional[str]) -> int:
    """Combine the digits and optional unit suffix captured by AMOUNT_PATTERN"""
    unit = (unit or "").lower()
    if unit and _DECIMAL.match(number):
        value = float(number.replace(",", "."))
    else:
        value = int(re.sub(r"[.,]", "", number))
    return int(round(value * UNIT_MULTIPLIERS.get(unit, 1)))


def parse_amount(text: str) -> tuple[Optional[int], Optional[str]]:
    """First amount in text, and the unit it carried (lowercased) if any"""
    if not text:
        return None, None
    match = AMOUNT_PATTERN.search(_CURRENCY.sub("", text))
    if not match:
        return None, None
    unit = match.group(2).lower() if match.group(2) else None
    return apply_unit(match.group(1), unit), unit


def parse_price_amount(text: str) -> Optional[int]:
    """Price in rupiah. Bare numbers under 1000 are read as millions ("185" -> 185000000)."""
    amount, unit = parse_amount(text)
    if amount is None:
        return None
    if unit is None and 0 < amount < 1000:
        return amount * 1_000_000
    return amount
