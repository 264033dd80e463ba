"""
Sales order pricing -- pure line and order total arithmetic.

    gross    = quantity * unit_price
    discount = gross * discount_percent / 100
    tax      = (gross - discount) * tax_rate / 100
    line     = gross - discount + tax
    total    = sum(line) + shipping_fee - order_discount

Every component is rounded half-up to 2 places before it is summed, so
the order total always equals the sum of the stored line amounts.
"""

from collections.abc import Iterable
from dataclasses import dataclass
from decimal import Decimal

from stock_kernel.db.types import ZERO, round_money
from stock_kernel.exceptions import ValidationError

HUNDRED = Decimal("100")


@dataclass(frozen=True)
class LineAmounts:
    gross: Decimal
    discount: Decimal
    tax: Decimal

    @property
    def total(self) -> Decimal:
        return self.gross - self.discount + self.tax


@dataclass(frozen=True)
class OrderTotals:
    subtotal: Decimal
    tax_amount: Decimal
    shipping_fee: Decimal
    discount_amount: Decimal

    @property
    def total(self) -> Decimal:
        return self.subtotal + self.shipping_fee - self.discount_amount


def compute_line_amounts(
    quantity: Decimal | int,
    unit_price: Decimal,
    discount_percent: Decimal = ZERO,
    tax_rate: Decimal = ZERO,
) -> LineAmounts:
    gross = round_money(unit_price * quantity)
    discount = round_money(gross * discount_percent / HUNDRED)
    tax = round_money((gross - discount) * tax_rate / HUNDRED)
    return LineAmounts(gross=gross, discount=discount, tax=tax)


def compute_order_totals(
    lines: Iterable[LineAmounts],
    shipping_fee: Decimal = ZERO,
    discount_amount: Decimal = ZERO,
) -> OrderTotals:
    if shipping_fee < 0:
        raise ValidationError("Shipping fee cannot be negative")
    if discount_amount < 0:
        raise ValidationError("Order discount cannot be negative")

    lines = list(lines)
    totals = OrderTotals(
        subtotal=sum((line.total for line in lines), ZERO),
        tax_amount=sum((line.tax for line in lines), ZERO),
        shipping_fee=round_money(shipping_fee),
        discount_amount=round_money(discount_amount),
    )
    if totals.total < 0:
        raise ValidationError(
            "Order discount exceeds order value",
            details={"subtotal": str(totals.subtotal), "discount": str(discount_amount)},
        )
    return totals
