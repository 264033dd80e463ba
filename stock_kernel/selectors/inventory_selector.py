"""
Module: stock_kernel.selectors.inventory_selector
Responsibility: Read-only inventory views: stock per warehouse, stock of one
    product across warehouses, low-stock alerts and the stock value report.
Architecture position: Kernel > Selectors.

Low-stock alerts compare *available* stock (on-hand minus reserved) with the
product's min_stock_level and bucket each record:

    out_of_stock   available == 0
    critical       below low_stock_critical_percent of the minimum
    warning        below low_stock_warning_percent of the minimum
    low            below the minimum

Only active products with a positive minimum are considered.
"""

from dataclasses import dataclass
from decimal import Decimal
from enum import Enum
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from stock_kernel.config import EngineConfig
from stock_kernel.db.types import ZERO, round_money
from stock_kernel.exceptions import ProductNotFoundError, WarehouseNotFoundError
from stock_kernel.models.inventory import InventoryRecord
from stock_kernel.models.product import Product, ProductStatus
from stock_kernel.models.warehouse import Warehouse
from stock_kernel.selectors.base import BaseSelector

HUNDRED = Decimal("100")


class AlertLevel(str, Enum):
    OUT_OF_STOCK = "out_of_stock"
    CRITICAL = "critical"
    WARNING = "warning"
    LOW = "low"


@dataclass(frozen=True)
class InventoryRow:
    """Stock of one product in one warehouse."""

    warehouse_id: UUID
    warehouse_code: str
    product_id: UUID
    sku: str
    product_name: str
    quantity: Decimal
    reserved_quantity: Decimal
    min_stock_level: Decimal

    @property
    def available_quantity(self) -> Decimal:
        return self.quantity - self.reserved_quantity


@dataclass(frozen=True)
class ProductStockSummary:
    """One product across every warehouse that has held it."""

    product_id: UUID
    sku: str
    product_name: str
    min_stock_level: Decimal
    rows: tuple[InventoryRow, ...]

    @property
    def total_quantity(self) -> Decimal:
        return sum((r.quantity for r in self.rows), ZERO)

    @property
    def total_reserved(self) -> Decimal:
        return sum((r.reserved_quantity for r in self.rows), ZERO)

    @property
    def total_available(self) -> Decimal:
        return self.total_quantity - self.total_reserved

    @property
    def warehouse_count(self) -> int:
        return len(self.rows)


@dataclass(frozen=True)
class LowStockAlert:
    row: InventoryRow
    level: AlertLevel
    percentage_of_min: Decimal

    @property
    def shortfall(self) -> Decimal:
        return self.row.min_stock_level - self.row.available_quantity


@dataclass(frozen=True)
class LowStockReport:
    """Alerts sorted most severe first, with per-level counts."""

    alerts: tuple[LowStockAlert, ...]

    def count(self, level: AlertLevel) -> int:
        return sum(1 for a in self.alerts if a.level == level)

    @property
    def total_alerts(self) -> int:
        return len(self.alerts)


@dataclass(frozen=True)
class InventoryValueRow:
    row: InventoryRow
    purchase_value: Decimal
    potential_value: Decimal

    @property
    def potential_profit(self) -> Decimal:
        return self.potential_value - self.purchase_value


class InventorySelector(BaseSelector[InventoryRecord]):
    """Read-side inventory queries.  Returns DTOs only."""

    def __init__(self, session: Session, config: EngineConfig | None = None):
        super().__init__(session)
        config = config or EngineConfig.with_defaults()
        self._critical_percent = config.low_stock_critical_percent
        self._warning_percent = config.low_stock_warning_percent

    def _rows_query(self):
        return (
            select(InventoryRecord, Warehouse, Product)
            .join(Warehouse, InventoryRecord.warehouse_id == Warehouse.id)
            .join(Product, InventoryRecord.product_id == Product.id)
            .execution_options(populate_existing=True)
        )

    @staticmethod
    def _to_row(record: InventoryRecord, warehouse: Warehouse, product: Product) -> InventoryRow:
        return InventoryRow(
            warehouse_id=warehouse.id,
            warehouse_code=warehouse.warehouse_code,
            product_id=product.id,
            sku=product.sku,
            product_name=product.name,
            quantity=record.quantity,
            reserved_quantity=record.reserved_quantity,
            min_stock_level=product.min_stock_level,
        )

    def by_warehouse(self, warehouse_id: UUID) -> list[InventoryRow]:
        """Every product held in ``warehouse_id``, ordered by SKU."""
        if self.session.get(Warehouse, warehouse_id) is None:
            raise WarehouseNotFoundError(warehouse_id)
        stmt = (
            self._rows_query()
            .where(InventoryRecord.warehouse_id == warehouse_id)
            .order_by(Product.sku)
        )
        return [self._to_row(*result) for result in self.session.execute(stmt)]

    def by_product(self, product_id: UUID) -> ProductStockSummary:
        product = self.session.get(Product, product_id)
        if product is None:
            raise ProductNotFoundError(product_id)
        stmt = (
            self._rows_query()
            .where(InventoryRecord.product_id == product_id)
            .order_by(Warehouse.warehouse_code)
        )
        return ProductStockSummary(
            product_id=product.id,
            sku=product.sku,
            product_name=product.name,
            min_stock_level=product.min_stock_level,
            rows=tuple(self._to_row(*result) for result in self.session.execute(stmt)),
        )

    def _classify(self, row: InventoryRow) -> LowStockAlert | None:
        available = row.available_quantity
        if available >= row.min_stock_level:
            return None
        percentage = (Decimal(available) / Decimal(row.min_stock_level) * HUNDRED).quantize(
            Decimal("0.01")
        )
        if available <= 0:
            level = AlertLevel.OUT_OF_STOCK
        elif percentage < self._critical_percent:
            level = AlertLevel.CRITICAL
        elif percentage < self._warning_percent:
            level = AlertLevel.WARNING
        else:
            level = AlertLevel.LOW
        return LowStockAlert(row=row, level=level, percentage_of_min=percentage)

    def low_stock_alerts(self, warehouse_id: UUID | None = None) -> LowStockReport:
        stmt = (
            self._rows_query()
            .where(Product.status == ProductStatus.ACTIVE)
            .where(Product.min_stock_level > 0)
        )
        if warehouse_id is not None:
            stmt = stmt.where(InventoryRecord.warehouse_id == warehouse_id)

        alerts = []
        for result in self.session.execute(stmt):
            alert = self._classify(self._to_row(*result))
            if alert is not None:
                alerts.append(alert)
        alerts.sort(key=lambda a: (a.percentage_of_min, a.row.sku, a.row.warehouse_code))
        return LowStockReport(alerts=tuple(alerts))

    def value_report(self, warehouse_id: UUID | None = None) -> list[InventoryValueRow]:
        """On-hand stock valued at purchase and selling price."""
        stmt = self._rows_query().where(InventoryRecord.quantity > 0)
        if warehouse_id is not None:
            stmt = stmt.where(InventoryRecord.warehouse_id == warehouse_id)
        stmt = stmt.order_by(Warehouse.warehouse_code, Product.sku)

        report = []
        for record, warehouse, product in self.session.execute(stmt):
            report.append(
                InventoryValueRow(
                    row=self._to_row(record, warehouse, product),
                    purchase_value=round_money((product.purchase_price or ZERO) * record.quantity),
                    potential_value=round_money((product.selling_price or ZERO) * record.quantity),
                )
            )
        return report
