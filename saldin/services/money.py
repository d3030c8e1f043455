import re
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any, Optional

CENTS = Decimal("0.01")
# Largest value a NUMERIC(12,2) ledger column holds.
MAX_AMOUNT = Decimal("9999999999.99")

_AMOUNT_PATTERN = re.compile(r"-?\d[\d.,]*")
_THOUSANDS_ONLY = re.compile(r"-?\d{1,3}(\.\d{3})+")


def parse_amount(value: Any) -> Optional[Decimal]:
    """Parse a BRL amount ("45,90", "R$ 1.234,50", 45.9) into a 2-place Decimal.

    Returns None when no number can be read or the value does not fit a ledger
    column. Sign is preserved; callers decide
    whether non-positive values are acceptable.
    """
    if value is None or isinstance(value, bool):
        return None

    if isinstance(value, (int, float, Decimal)):
        try:
            amount = Decimal(str(value))
        except InvalidOperation:
            return None
    else:
        match = _AMOUNT_PATTERN.search(str(value))
        if not match:
            return None
        raw = match.group(0).rstrip(".,")
        if "," in raw:
            raw = raw.replace(".", "").replace(",", ".")
        elif _THOUSANDS_ONLY.fullmatch(raw):
            raw = raw.replace(".", "")
        try:
            amount = Decimal(raw)
        except InvalidOperation:
            return None

    if not amount.is_finite():
        return None
    try:
        amount = amount.quantize(CENTS, rounding=ROUND_HALF_UP)
    except InvalidOperation:
        return None
    if abs(amount) > MAX_AMOUNT:
        return None
    return amount


def parse_positive_amount(value: Any) -> Optional[Decimal]:
    amount = parse_amount(value)
    if amount is None or amount <= 0:
        return None
    return amount


def format_brl(value: Any) -> str:
    """Format as Brazilian currency: R$ 1.234,56."""
    amount = value if isinstance(value, Decimal) else Decimal(str(value or 0))
    amount = amount.quantize(CENTS, rounding=ROUND_HALF_UP)
    sign = "-" if amount < 0 else ""
    formatted = f"{abs(amount):,.2f}".replace(",", "X").replace(".", ",").replace("X", ".")
    return f"{sign}R$ {formatted}"
