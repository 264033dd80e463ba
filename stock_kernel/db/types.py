"""
Module: stock_kernel.db.types
Responsibility: Annotated type aliases and rounding helpers shared by every
    model and service, so that quantities and amounts have one definition.
Architecture position: Kernel > DB.  MUST NOT import from models/, services/,
    selectors/, or domain/.
"""

from decimal import ROUND_HALF_UP, Decimal
from typing import Annotated

from sqlalchemy import Numeric, String

# Monetary amount: 38 digits total, 9 decimal places
Money = Annotated[Decimal, Numeric(38, 9)]

# Percentages (discount, tax rate): 0-100 with 4 decimal places
Percent = Annotated[Decimal, Numeric(9, 4)]

# Stock quantities: kg, litres and whole units alike, 3 decimal places
Quantity = Annotated[Decimal, Numeric(20, 3)]

# Short identifier strings (document codes, SKUs)
ShortCode = Annotated[str, String(50)]

# Long free text (notes, reasons)
LongText = Annotated[str, String(4000)]

MONEY_DECIMAL_PLACES = 2
QUANTITY_DECIMAL_PLACES = 3
DEFAULT_ROUNDING = ROUND_HALF_UP

ZERO = Decimal("0")


def round_money(value: Decimal, decimal_places: int = MONEY_DECIMAL_PLACES) -> Decimal:
    """
    Round a monetary value using the canonical rounding mode.

    Args:
        value: Value to round.
        decimal_places: Number of decimal places (default: 2).

    Returns:
        Rounded Decimal.
    """
    quantizer = Decimal(10) ** -decimal_places
    return value.quantize(quantizer, rounding=DEFAULT_ROUNDING)


def to_decimal(value: Decimal | int | str | None) -> Decimal:
    """Coerce a caller-supplied amount to Decimal; None becomes zero."""
    if value is None:
        return ZERO
    if isinstance(value, Decimal):
        return value
    if isinstance(value, float):
        raise TypeError("Monetary amounts must not be floats")
    return Decimal(str(value))
