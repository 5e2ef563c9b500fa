from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Union

from errors import ValidationError

# 1,000,000,000.00; keeps per-user sums well inside a signed 64-bit column
MAX_AMOUNT_CENTS = 100_000_000_000


def parse_amount(value: Union[str, int, float, Decimal]) -> int:
    """Convert a currency amount to integer cents, rounding half-up to the cent.

    Strings may carry a currency symbol, spaces, and either ``,`` or ``.`` as
    decimal separator. Zero, negative and amounts above ``MAX_AMOUNT_CENTS``
    are rejected.
    """
    if isinstance(value, bool):
        raise ValidationError("Invalid amount")
    if isinstance(value, str):
        clean = value.strip().replace("€", "").replace("$", "").replace(" ", "")
        clean = clean.replace(",", ".")
        if clean.count(".") > 1:
            parts = clean.split(".")
            clean = "".join(parts[:-1]) + "." + parts[-1]
    else:
        clean = str(value)
    try:
        amount = Decimal(clean)
    except InvalidOperation as exc:
        raise ValidationError("Invalid amount") from exc
    if not amount.is_finite():
        raise ValidationError("Invalid amount")
    if amount > Decimal(MAX_AMOUNT_CENTS) / 100:
        raise ValidationError("Amount is too large")
    cents = int((amount * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))
    if cents <= 0:
        raise ValidationError("Amount must be greater than 0")
    return cents


def cents_to_units(cents: Union[int, float]) -> float:
    return round(cents / 100, 2)
