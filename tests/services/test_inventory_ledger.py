"""
Tests for InventoryLedger.

Covers:
- Lazy record creation and the 0 <= reserved <= quantity invariant
- Reserve / release / commit_reserved
- All-or-nothing batches
- Availability reports
- Manual adjustments and their audit event
- Fractional quantities (kg, litres)
"""

from decimal import Decimal
from uuid import uuid4

import pytest

from stock_kernel.domain.dtos import LedgerDelta, StockLine
from stock_kernel.domain.events import InventoryAdjusted
from stock_kernel.exceptions import (
    InsufficientInventoryError,
    InvalidQuantityError,
    ProductNotFoundError,
    ReservationConflictError,
    ValidationError,
    WarehouseNotFoundError,
)
from stock_kernel.services.inventory_ledger import _violation, merge_deltas


class TestApplyDelta:

    def test_creates_record_lazily(self, ledger, warehouse, product, test_actor_id):
        assert ledger.get_record(warehouse.id, product.id) is None

        record = ledger.apply_delta(warehouse.id, product.id, 10, 0, test_actor_id)

        assert record.quantity == 10
        assert record.reserved_quantity == 0
        assert record.available_quantity == 10

    def test_accumulates_on_existing_record(self, ledger, warehouse, product, stock_up, test_actor_id):
        stock_up(warehouse.id, product.id, 10)
        record = ledger.apply_delta(warehouse.id, product.id, 5, 3, test_actor_id)

        assert record.quantity == 15
        assert record.reserved_quantity == 3

    def test_negative_on_missing_record_rejected(self, ledger, warehouse, product, test_actor_id):
        with pytest.raises(InsufficientInventoryError) as exc_info:
            ledger.apply_delta(warehouse.id, product.id, -1, 0, test_actor_id)

        assert exc_info.value.items[0]["requested"] == 1
        assert exc_info.value.items[0]["available"] == 0
        assert ledger.get_record(warehouse.id, product.id) is None

    def test_cannot_remove_reserved_stock(self, ledger, warehouse, product, stock_up, test_actor_id):
        """On-hand may not drop below what is reserved."""
        stock_up(warehouse.id, product.id, 10)
        ledger.apply_delta(warehouse.id, product.id, 0, 8, test_actor_id)

        with pytest.raises(InsufficientInventoryError) as exc_info:
            ledger.apply_delta(warehouse.id, product.id, -5, 0, test_actor_id)

        assert exc_info.value.items[0]["available"] == 2
        record = ledger.get_record(warehouse.id, product.id)
        assert (record.quantity, record.reserved_quantity) == (10, 8)

    def test_unknown_warehouse(self, ledger, product, test_actor_id):
        with pytest.raises(WarehouseNotFoundError):
            ledger.apply_delta(uuid4(), product.id, 1, 0, test_actor_id)

    def test_unknown_product(self, ledger, warehouse, test_actor_id):
        with pytest.raises(ProductNotFoundError):
            ledger.apply_delta(warehouse.id, uuid4(), 1, 0, test_actor_id)

    def test_rejection_is_logged(self, ledger, warehouse, product, test_actor_id, captured_logs):
        with pytest.raises(InsufficientInventoryError):
            ledger.apply_delta(warehouse.id, product.id, -3, 0, test_actor_id)

        rejected = [r for r in captured_logs() if r["message"] == "ledger_delta_rejected"]
        assert rejected
        assert rejected[0]["reason"] == "INSUFFICIENT_INVENTORY"
        assert rejected[0]["quantity_delta"] == -3


class TestReservations:

    def test_reserve_within_available(self, ledger, warehouse, product, stock_up, test_actor_id):
        stock_up(warehouse.id, product.id, 10)

        [record] = ledger.reserve([StockLine(warehouse.id, product.id, 7)], test_actor_id)

        assert record.reserved_quantity == 7
        assert record.available_quantity == 3

    def test_reserve_beyond_available(self, ledger, warehouse, product, stock_up, test_actor_id):
        stock_up(warehouse.id, product.id, 10)
        ledger.reserve([StockLine(warehouse.id, product.id, 7)], test_actor_id)

        with pytest.raises(InsufficientInventoryError) as exc_info:
            ledger.reserve([StockLine(warehouse.id, product.id, 4)], test_actor_id)

        item = exc_info.value.items[0]
        assert item["requested"] == 4
        assert item["available"] == 3
        assert item["shortfall"] == 1

    def test_release_returns_availability(self, ledger, warehouse, product, stock_up, test_actor_id):
        stock_up(warehouse.id, product.id, 10)
        ledger.reserve([StockLine(warehouse.id, product.id, 6)], test_actor_id)

        [record] = ledger.release([StockLine(warehouse.id, product.id, 6)], test_actor_id)

        assert record.reserved_quantity == 0
        assert record.quantity == 10

    def test_double_release_conflicts(self, ledger, warehouse, product, stock_up, test_actor_id):
        stock_up(warehouse.id, product.id, 10)
        ledger.reserve([StockLine(warehouse.id, product.id, 4)], test_actor_id)
        ledger.release([StockLine(warehouse.id, product.id, 4)], test_actor_id)

        with pytest.raises(ReservationConflictError) as exc_info:
            ledger.release([StockLine(warehouse.id, product.id, 4)], test_actor_id)

        assert exc_info.value.requested_release == 4
        assert exc_info.value.reserved == 0

    def test_commit_reserved_ships_stock(self, ledger, warehouse, product, stock_up, test_actor_id):
        stock_up(warehouse.id, product.id, 10)
        ledger.reserve([StockLine(warehouse.id, product.id, 4)], test_actor_id)

        [record] = ledger.commit_reserved([StockLine(warehouse.id, product.id, 4)], test_actor_id)

        assert record.quantity == 6
        assert record.reserved_quantity == 0

    def test_commit_more_than_reserved_conflicts(
        self, ledger, warehouse, product, stock_up, test_actor_id
    ):
        stock_up(warehouse.id, product.id, 10)
        ledger.reserve([StockLine(warehouse.id, product.id, 2)], test_actor_id)

        with pytest.raises(ReservationConflictError):
            ledger.commit_reserved([StockLine(warehouse.id, product.id, 3)], test_actor_id)


class TestFractionalQuantities:

    def test_reserve_commit_release_in_kilograms(
        self, ledger, warehouse, product, stock_up, test_actor_id
    ):
        stock_up(warehouse.id, product.id, Decimal("2.5"))
        ledger.reserve([StockLine(warehouse.id, product.id, Decimal("1.25"))], test_actor_id)

        [record] = ledger.commit_reserved(
            [StockLine(warehouse.id, product.id, Decimal("0.75"))], test_actor_id
        )
        assert record.quantity == Decimal("1.75")
        assert record.reserved_quantity == Decimal("0.5")
        assert record.available_quantity == Decimal("1.25")

        [record] = ledger.release(
            [StockLine(warehouse.id, product.id, Decimal("0.5"))], test_actor_id
        )
        assert record.reserved_quantity == 0
        assert record.quantity == Decimal("1.75")

    def test_fractional_shortage(self, ledger, warehouse, product, stock_up, test_actor_id):
        stock_up(warehouse.id, product.id, Decimal("1.5"))

        with pytest.raises(InsufficientInventoryError) as exc_info:
            ledger.reserve([StockLine(warehouse.id, product.id, Decimal("1.75"))], test_actor_id)

        item = exc_info.value.items[0]
        assert item["available"] == Decimal("1.5")
        assert item["shortfall"] == Decimal("0.25")
        assert ledger.get_record(warehouse.id, product.id).reserved_quantity == 0

    def test_float_delta_rejected(self, ledger, warehouse, product, test_actor_id):
        with pytest.raises(InvalidQuantityError):
            ledger.apply_delta(warehouse.id, product.id, 2.5, 0, test_actor_id)

        assert ledger.get_record(warehouse.id, product.id) is None


class TestBatches:

    def test_all_or_nothing(self, ledger, warehouse, create_product, stock_up, test_actor_id):
        stocked = create_product()
        empty = create_product()
        stock_up(warehouse.id, stocked.id, 10)

        with pytest.raises(InsufficientInventoryError):
            ledger.apply_deltas(
                [
                    LedgerDelta(warehouse.id, stocked.id, quantity_delta=-5),
                    LedgerDelta(warehouse.id, empty.id, quantity_delta=-1),
                ],
                test_actor_id,
            )

        assert ledger.get_record(warehouse.id, stocked.id).quantity == 10
        assert ledger.get_record(warehouse.id, empty.id) is None

    def test_same_pair_lines_are_summed(self, ledger, warehouse, product, stock_up, test_actor_id):
        """Two lines that each fit but together exceed availability fail."""
        stock_up(warehouse.id, product.id, 5)

        with pytest.raises(InsufficientInventoryError):
            ledger.reserve(
                [
                    StockLine(warehouse.id, product.id, 3),
                    StockLine(warehouse.id, product.id, 3),
                ],
                test_actor_id,
            )
        assert ledger.get_record(warehouse.id, product.id).reserved_quantity == 0

    def test_merge_deltas(self):
        w, p1, p2 = uuid4(), uuid4(), uuid4()
        merged = merge_deltas(
            [
                LedgerDelta(w, p1, quantity_delta=5),
                LedgerDelta(w, p2, reserved_delta=1),
                LedgerDelta(w, p1, quantity_delta=-2, reserved_delta=1),
                LedgerDelta(w, p2, reserved_delta=-1),
            ]
        )

        assert merged == [LedgerDelta(w, p1, quantity_delta=3, reserved_delta=1)]

    def test_merge_deltas_sorted_by_key(self):
        w = uuid4()
        deltas = [LedgerDelta(w, uuid4(), quantity_delta=1) for _ in range(5)]
        merged = merge_deltas(deltas)
        assert [d.key for d in merged] == sorted(d.key for d in deltas)


class TestViolationClassifier:

    @pytest.mark.parametrize(
        "quantity, reserved, dq, dr, expected",
        [
            (10, 0, -10, 0, None),
            (10, 0, -11, 0, "insufficient"),
            (10, 5, 0, 5, None),
            (10, 5, 0, 6, "insufficient"),
            (10, 5, -6, 0, "insufficient"),
            (10, 5, 0, -6, "reservation"),
            (10, 5, -5, -5, None),
        ],
    )
    def test_classification(self, quantity, reserved, dq, dr, expected):
        assert _violation(quantity, reserved, dq, dr) == expected


class TestCheckAvailability:

    def test_reports_each_pair(self, ledger, warehouse, create_product, stock_up, test_actor_id):
        plenty = create_product()
        scarce = create_product()
        stock_up(warehouse.id, plenty.id, 100)
        stock_up(warehouse.id, scarce.id, 3)
        ledger.reserve([StockLine(warehouse.id, scarce.id, 2)], test_actor_id)

        report = ledger.check_availability(
            [
                StockLine(warehouse.id, plenty.id, 10),
                StockLine(warehouse.id, scarce.id, 1),
                StockLine(warehouse.id, scarce.id, 1),
            ]
        )

        assert report.total_items == 2
        assert report.unavailable_count == 1
        [short] = report.unavailable_items
        assert short.product_id == scarce.id
        assert short.requested == 2
        assert short.available == 1

    def test_missing_record_is_zero(self, ledger, warehouse, product):
        report = ledger.check_availability([StockLine(warehouse.id, product.id, 1)])

        assert not report.all_available
        assert report.items[0].on_hand == 0
        assert report.items[0].message == "Out of stock"

    def test_read_only(self, ledger, warehouse, product, stock_up):
        stock_up(warehouse.id, product.id, 5)
        ledger.check_availability([StockLine(warehouse.id, product.id, 5)])
        assert ledger.get_record(warehouse.id, product.id).reserved_quantity == 0


class TestAdjust:

    def test_positive_adjustment(
        self, ledger, warehouse, product, stock_up, test_actor_id, event_sink, cache
    ):
        stock_up(warehouse.id, product.id, 10)

        record = ledger.adjust(warehouse.id, product.id, 5, "Found in back room", test_actor_id)

        assert record.quantity == 15
        [event] = event_sink.of_type(InventoryAdjusted)
        assert event.old_value == {"quantity": 10, "reserved_quantity": 0}
        assert event.new_value["quantity"] == 15
        assert event.new_value["reason"] == "Found in back room"
        assert f"inventory:{warehouse.id}:{product.id}" in cache.keys

    def test_negative_adjustment_cannot_cut_into_reservation(
        self, ledger, warehouse, product, stock_up, test_actor_id, event_sink
    ):
        stock_up(warehouse.id, product.id, 10)
        ledger.reserve([StockLine(warehouse.id, product.id, 8)], test_actor_id)

        with pytest.raises(InsufficientInventoryError):
            ledger.adjust(warehouse.id, product.id, -3, "Damaged", test_actor_id)

        assert ledger.get_record(warehouse.id, product.id).quantity == 10
        assert event_sink.of_type(InventoryAdjusted) == []

    def test_zero_adjustment_rejected(self, ledger, warehouse, product, test_actor_id):
        with pytest.raises(InvalidQuantityError):
            ledger.adjust(warehouse.id, product.id, 0, "Nothing", test_actor_id)

    def test_reason_required(self, ledger, warehouse, product, test_actor_id):
        with pytest.raises(ValidationError, match="reason"):
            ledger.adjust(warehouse.id, product.id, 1, "", test_actor_id)

    def test_adjustment_is_audited(
        self, ledger, warehouse, product, stock_up, test_actor_id, auditor_service
    ):
        stock_up(warehouse.id, product.id, 1)
        record = ledger.adjust(warehouse.id, product.id, 2, "Recount", test_actor_id)

        trace = auditor_service.get_trace("InventoryRecord", record.id)
        assert trace.last_action.value == "inventory_adjusted"
        assert auditor_service.validate_chain() is True
