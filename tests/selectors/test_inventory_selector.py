"""
Tests for InventorySelector.

Covers:
- Stock by warehouse and by product
- Low-stock alert levels and ordering
- Stock value report
"""

from decimal import Decimal
from uuid import uuid4

import pytest

from stock_kernel.config import EngineConfig
from stock_kernel.domain.dtos import StockLine
from stock_kernel.exceptions import ProductNotFoundError, WarehouseNotFoundError
from stock_kernel.models.product import ProductStatus
from stock_kernel.selectors.inventory_selector import AlertLevel, InventorySelector


class TestStockViews:

    def test_by_warehouse_sorted_by_sku(
        self, inventory_selector, warehouse, create_product, stock_up
    ):
        b = create_product(sku="SKU-B")
        a = create_product(sku="SKU-A")
        stock_up(warehouse.id, b.id, 3)
        stock_up(warehouse.id, a.id, 7)

        rows = inventory_selector.by_warehouse(warehouse.id)

        assert [(r.sku, r.quantity) for r in rows] == [("SKU-A", 7), ("SKU-B", 3)]
        assert rows[0].warehouse_code == "WH-MAIN"

    def test_by_warehouse_unknown(self, inventory_selector):
        with pytest.raises(WarehouseNotFoundError):
            inventory_selector.by_warehouse(uuid4())

    def test_by_product_totals(
        self, inventory_selector, ledger, warehouse, second_warehouse, product, stock_up,
        test_actor_id,
    ):
        stock_up(warehouse.id, product.id, 10)
        stock_up(second_warehouse.id, product.id, 5)
        ledger.reserve([StockLine(warehouse.id, product.id, 4)], test_actor_id)

        summary = inventory_selector.by_product(product.id)

        assert summary.warehouse_count == 2
        assert [r.warehouse_code for r in summary.rows] == ["WH-BRANCH", "WH-MAIN"]
        assert summary.total_quantity == 15
        assert summary.total_reserved == 4
        assert summary.total_available == 11

    def test_by_product_unknown(self, inventory_selector):
        with pytest.raises(ProductNotFoundError):
            inventory_selector.by_product(uuid4())


class TestLowStockAlerts:

    @pytest.fixture
    def graded_stock(self, ledger, warehouse, create_product, stock_up, test_actor_id):
        """Products with a minimum of 20 at different fill levels."""
        levels = {"SKU-OUT": 0, "SKU-CRIT": 4, "SKU-WARN": 8, "SKU-LOW": 15, "SKU-OK": 20}
        products = {}
        for sku, available in levels.items():
            p = create_product(sku=sku, min_stock_level=20)
            stock_up(warehouse.id, p.id, 5 + available)
            ledger.reserve([StockLine(warehouse.id, p.id, 5)], test_actor_id)
            products[sku] = p
        return products

    def test_levels_and_order(self, inventory_selector, graded_stock):
        report = inventory_selector.low_stock_alerts()

        assert [(a.row.sku, a.level) for a in report.alerts] == [
            ("SKU-OUT", AlertLevel.OUT_OF_STOCK),
            ("SKU-CRIT", AlertLevel.CRITICAL),
            ("SKU-WARN", AlertLevel.WARNING),
            ("SKU-LOW", AlertLevel.LOW),
        ]
        assert report.total_alerts == 4
        assert report.count(AlertLevel.CRITICAL) == 1

    def test_alert_details_use_available_stock(self, inventory_selector, graded_stock):
        critical = next(
            a for a in inventory_selector.low_stock_alerts().alerts if a.row.sku == "SKU-CRIT"
        )

        assert critical.row.quantity == 9
        assert critical.row.available_quantity == 4
        assert critical.percentage_of_min == Decimal("20.00")
        assert critical.shortfall == 16

    def test_no_minimum_no_alert(self, inventory_selector, warehouse, create_product, stock_up):
        untracked = create_product(min_stock_level=0)
        stock_up(warehouse.id, untracked.id, 1)

        assert inventory_selector.low_stock_alerts().total_alerts == 0

    def test_discontinued_products_ignored(
        self, inventory_selector, reference_data, graded_stock, test_actor_id
    ):
        reference_data.set_product_status(
            graded_stock["SKU-OUT"].id, ProductStatus.DISCONTINUED, test_actor_id
        )

        skus = [a.row.sku for a in inventory_selector.low_stock_alerts().alerts]

        assert "SKU-OUT" not in skus

    def test_filter_by_warehouse(
        self, inventory_selector, graded_stock, second_warehouse
    ):
        assert inventory_selector.low_stock_alerts(second_warehouse.id).total_alerts == 0

    def test_configured_thresholds(self, session, graded_stock):
        strict = InventorySelector(
            session,
            EngineConfig(
                low_stock_critical_percent=Decimal("50"),
                low_stock_warning_percent=Decimal("90"),
            ),
        )

        levels = {a.row.sku: a.level for a in strict.low_stock_alerts().alerts}

        assert levels["SKU-WARN"] == AlertLevel.CRITICAL
        assert levels["SKU-LOW"] == AlertLevel.WARNING


class TestValueReport:

    def test_values_on_hand_stock(
        self, inventory_selector, ledger, warehouse, create_product, stock_up, test_actor_id
    ):
        priced = create_product(
            sku="SKU-VAL", purchase_price=Decimal("2.50"), selling_price=Decimal("4.00")
        )
        empty = create_product(sku="SKU-EMPTY")
        stock_up(warehouse.id, priced.id, 10)
        stock_up(warehouse.id, empty.id, 1)
        ledger.adjust(warehouse.id, empty.id, -1, "Count correction", test_actor_id)

        [row] = inventory_selector.value_report(warehouse.id)

        assert row.row.sku == "SKU-VAL"
        assert row.purchase_value == Decimal("25.00")
        assert row.potential_value == Decimal("40.00")
        assert row.potential_profit == Decimal("15.00")
