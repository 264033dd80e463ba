"""Tests for sales order line and total arithmetic."""

from decimal import Decimal

import pytest

from stock_kernel.domain.pricing import compute_line_amounts, compute_order_totals
from stock_kernel.exceptions import ValidationError


class TestLineAmounts:

    def test_plain_line(self):
        line = compute_line_amounts(3, Decimal("10.00"))
        assert line.gross == Decimal("30.00")
        assert line.discount == Decimal("0.00")
        assert line.tax == Decimal("0.00")
        assert line.total == Decimal("30.00")

    def test_discount_then_tax(self):
        """Tax is charged on the discounted amount."""
        line = compute_line_amounts(
            2, Decimal("50.00"), discount_percent=Decimal("10"), tax_rate=Decimal("8")
        )
        assert line.gross == Decimal("100.00")
        assert line.discount == Decimal("10.00")
        assert line.tax == Decimal("7.20")
        assert line.total == Decimal("97.20")

    def test_rounds_half_up(self):
        line = compute_line_amounts(1, Decimal("0.125"))
        assert line.gross == Decimal("0.13")


class TestOrderTotals:

    def test_total_includes_fee_and_discount(self):
        lines = [
            compute_line_amounts(1, Decimal("100.00"), tax_rate=Decimal("10")),
            compute_line_amounts(2, Decimal("25.00")),
        ]
        totals = compute_order_totals(
            lines, shipping_fee=Decimal("15.00"), discount_amount=Decimal("5.00")
        )

        assert totals.subtotal == Decimal("160.00")
        assert totals.tax_amount == Decimal("10.00")
        assert totals.total == Decimal("170.00")

    def test_total_equals_sum_of_lines(self):
        lines = [compute_line_amounts(q, Decimal("3.333"), tax_rate=Decimal("7")) for q in (1, 2, 3)]
        totals = compute_order_totals(lines)
        assert totals.total == sum(line.total for line in lines)

    def test_negative_fee_rejected(self):
        with pytest.raises(ValidationError):
            compute_order_totals([], shipping_fee=Decimal("-1"))

    def test_negative_discount_rejected(self):
        with pytest.raises(ValidationError):
            compute_order_totals([], discount_amount=Decimal("-1"))

    def test_discount_larger_than_order_rejected(self):
        lines = [compute_line_amounts(1, Decimal("10.00"))]
        with pytest.raises(ValidationError, match="exceeds"):
            compute_order_totals(lines, discount_amount=Decimal("10.01"))
