"""Tests for the domain value objects."""

from decimal import Decimal
from uuid import uuid4

import pytest

from stock_kernel.domain.dtos import (
    AvailabilityItem,
    AvailabilityReport,
    LedgerDelta,
    OrderLine,
    StockLine,
    StocktakeLine,
    TransactionLine,
    TransferLine,
)
from stock_kernel.exceptions import InvalidQuantityError


class TestQuantityValidation:

    @pytest.mark.parametrize("quantity", [0, -1])
    def test_stock_line_requires_positive(self, quantity):
        with pytest.raises(InvalidQuantityError):
            StockLine(uuid4(), uuid4(), quantity)

    def test_fractional_quantities_accepted(self):
        assert StockLine(uuid4(), uuid4(), Decimal("0.5")).quantity == Decimal("0.5")
        assert TransactionLine(uuid4(), Decimal("2.5")).quantity == Decimal("2.5")
        assert OrderLine(uuid4(), uuid4(), Decimal("1.5")).quantity == Decimal("1.5")
        assert TransferLine(uuid4(), Decimal("0.25")).quantity == Decimal("0.25")

    @pytest.mark.parametrize("quantity", [1.5, True, "3"])
    def test_stock_line_requires_decimal_or_int(self, quantity):
        with pytest.raises(InvalidQuantityError, match="Decimal or int"):
            StockLine(uuid4(), uuid4(), quantity)

    def test_more_than_three_places_rejected(self):
        with pytest.raises(InvalidQuantityError, match="3 decimal places"):
            StockLine(uuid4(), uuid4(), Decimal("0.0005"))

    @pytest.mark.parametrize("quantity", [Decimal("NaN"), Decimal("Infinity")])
    def test_non_finite_rejected(self, quantity):
        with pytest.raises(InvalidQuantityError, match="finite"):
            TransactionLine(uuid4(), quantity)

    def test_fractional_stocktake_difference(self):
        line = StocktakeLine(
            uuid4(), system_quantity=Decimal("10.5"), actual_quantity=Decimal("9.75")
        )
        assert line.difference == Decimal("-0.75")

    def test_transaction_line_rejects_negative_price(self):
        with pytest.raises(ValueError):
            TransactionLine(product_id=uuid4(), quantity=1, unit_price=Decimal("-1"))

    def test_order_line_discount_bounds(self):
        with pytest.raises(ValueError):
            OrderLine(uuid4(), uuid4(), 1, discount_percent=Decimal("101"))

    def test_stocktake_difference(self):
        line = StocktakeLine(uuid4(), system_quantity=10, actual_quantity=7)
        assert line.difference == -3

    def test_stocktake_rejects_negative_count(self):
        with pytest.raises(InvalidQuantityError):
            StocktakeLine(uuid4(), system_quantity=10, actual_quantity=-1)


class TestLedgerDelta:

    def test_noop(self):
        assert LedgerDelta(uuid4(), uuid4()).is_noop
        assert not LedgerDelta(uuid4(), uuid4(), reserved_delta=1).is_noop

    def test_key_is_string_pair(self):
        w, p = uuid4(), uuid4()
        assert LedgerDelta(w, p, 1).key == (str(w), str(p))


class TestAvailability:

    def test_available_item(self):
        item = AvailabilityItem(uuid4(), uuid4(), requested=5, on_hand=10, reserved=5)
        assert item.is_available
        assert item.shortfall == 0
        assert item.message == "Available"

    def test_partial_shortage(self):
        item = AvailabilityItem(uuid4(), uuid4(), requested=8, on_hand=10, reserved=5)
        assert not item.is_available
        assert item.available == 5
        assert item.shortfall == 3
        assert item.message == "Insufficient stock: 5 available, 3 short"

    def test_out_of_stock(self):
        item = AvailabilityItem(uuid4(), uuid4(), requested=1, on_hand=0, reserved=0)
        assert item.message == "Out of stock"

    def test_report_counts(self):
        ok = AvailabilityItem(uuid4(), uuid4(), requested=1, on_hand=1, reserved=0)
        short = AvailabilityItem(uuid4(), uuid4(), requested=2, on_hand=1, reserved=0)
        report = AvailabilityReport(items=(ok, short))

        assert not report.all_available
        assert report.total_items == 2
        assert report.available_count == 1
        assert report.unavailable_count == 1
        assert report.unavailable_items == (short,)
        assert report.error_items() == [short.as_error_item()]
        assert report.error_items()[0]["shortfall"] == 1
