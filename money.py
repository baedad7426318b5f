from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Optional, Union

from models import TransactionType

CENT = Decimal("0.01")
ZERO = Decimal("0.00")

Numeric = Union[Decimal, int, float, str]


def to_decimal(value: Numeric) -> Decimal:
    """Coerce a storage or input value to a cent-precision Decimal.

    Floats go through ``str`` so ``0.1`` becomes ``Decimal("0.10")`` rather
    than its binary expansion.
    """
    if isinstance(value, bool):
        raise ValueError("Invalid amount")
    if isinstance(value, float):
        value = repr(value)
    try:
        amount = Decimal(value)
    except (InvalidOperation, TypeError, ValueError) as exc:
        raise ValueError("Invalid amount") from exc
    if not amount.is_finite():
        raise ValueError("Amount must be a finite number")
    return amount.quantize(CENT, rounding=ROUND_HALF_UP)


def to_number(value: Optional[Numeric]) -> Optional[float]:
    if value is None:
        return None
    return float(to_decimal(value))


def signed_amount(txn_type: TransactionType, amount: Numeric) -> Decimal:
    amount = to_decimal(amount)
    if txn_type == TransactionType.expense:
        return -amount
    return amount


def parse_amount(value: str, *, allow_negative: bool = False) -> Decimal:
    clean = value.strip().replace("€", "").replace("$", "").replace(" ", "")
    if "," in clean and "." in clean:
        # Whichever separator comes last is the decimal point.
        if clean.rfind(",") > clean.rfind("."):
            clean = clean.replace(".", "")
        else:
            clean = clean.replace(",", "")
    clean = clean.replace(",", ".")
    if clean.count(".") > 1:
        parts = clean.split(".")
        clean = "".join(parts[:-1]) + "." + parts[-1]
    amount = to_decimal(clean)
    if amount < 0 and not allow_negative:
        raise ValueError("Amount must be positive")
    return amount
