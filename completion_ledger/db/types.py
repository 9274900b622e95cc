"""
Module: completion_ledger.db.types
Responsibility: Annotated type aliases and the money helpers every layer
    shares.  Centralizes precision and rounding so that models, the budget
    calculator and the stores use identical definitions.
Architecture position: Ledger > DB.  May be imported by models/, domain/,
    stores/, services/ and selectors/.  MUST NOT import from any of those.

Invariants enforced:
    - round_money() is the ONLY sanctioned rounding function for monetary
      values.  Amounts are rounded to MONEY_DECIMAL_PLACES with ROUND_HALF_UP
      at the point of calculation.
    - No floats.  money_from_value() refuses float input so binary
      approximations never enter the ledger.

Failure modes:
    - InvalidAmountError on non-numeric or float input to money_from_value().
"""

from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Annotated

from sqlalchemy import Numeric, String

from completion_ledger.exceptions import InvalidAmountError

# Monetary amount: 38 digits total, 9 decimal places of storage headroom
Money = Annotated[Decimal, Numeric(38, 9)]

# Short identifier strings (statuses, types, business ids)
ShortCode = Annotated[str, String(100)]

# Long text for titles and descriptions
LongText = Annotated[str, String(4000)]

MONEY_DECIMAL_PLACES = 2
DEFAULT_ROUNDING = ROUND_HALF_UP

ZERO = Decimal("0.00")

# Canonical rounding tolerance per rounded component
ROUNDING_TOLERANCE = Decimal("0.01")


def round_money(
    value: Decimal,
    decimal_places: int = MONEY_DECIMAL_PLACES,
    rounding: str = DEFAULT_ROUNDING,
) -> Decimal:
    """
    Round a monetary value to the canonical precision.

    This is the ONLY sanctioned rounding function for monetary values.

    Args:
        value: The Decimal value to round.
        decimal_places: Number of decimal places to round to.
        rounding: Rounding mode (default: ROUND_HALF_UP).

    Returns:
        Rounded Decimal value.
    """
    quantize_str = "0." + "0" * decimal_places
    return value.quantize(Decimal(quantize_str), rounding=rounding)


def money_from_value(value: object, field_name: str = "amount") -> Decimal:
    """
    Coerce an int, str or Decimal into a rounded money Decimal.

    Raises:
        InvalidAmountError: value is a float, bool, None or not numeric.
    """
    if isinstance(value, (bool, float)) or value is None:
        raise InvalidAmountError(field_name, value)
    try:
        amount = Decimal(str(value)) if not isinstance(value, Decimal) else value
    except InvalidOperation as exc:
        raise InvalidAmountError(field_name, value) from exc
    if not amount.is_finite():
        raise InvalidAmountError(field_name, value)
    return round_money(amount)
