"""
Module: stock_kernel.models.inventory
Responsibility: ORM persistence for per (warehouse, product) stock levels.
Architecture position: Kernel > Models.  May import from db/ only.

Invariants enforced (CHECK constraints back the ledger's conditional update):
    - quantity >= 0
    - reserved_quantity >= 0
    - reserved_quantity <= quantity
    - (warehouse_id, product_id) is unique; one record per pair.

Records are created lazily on the first movement into a pair and are never
deleted.  They are mutated only through InventoryLedger.apply_delta().
available_quantity is derived, never stored.
"""

from decimal import Decimal
from uuid import UUID

from sqlalchemy import CheckConstraint, ForeignKey, Index, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from stock_kernel.db.base import TrackedBase, UUIDString
from stock_kernel.db.types import Quantity
from stock_kernel.models.product import Product
from stock_kernel.models.warehouse import Warehouse


class InventoryRecord(TrackedBase):
    """On-hand and reserved stock of one product in one warehouse."""

    __tablename__ = "inventory_records"

    __table_args__ = (
        UniqueConstraint("warehouse_id", "product_id", name="uq_inventory_pair"),
        CheckConstraint("quantity >= 0", name="ck_inventory_quantity_non_negative"),
        CheckConstraint(
            "reserved_quantity >= 0", name="ck_inventory_reserved_non_negative"
        ),
        CheckConstraint(
            "reserved_quantity <= quantity", name="ck_inventory_reserved_within_quantity"
        ),
        Index("idx_inventory_product", "product_id"),
    )

    warehouse_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("warehouses.id"),
        nullable=False,
    )

    product_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("products.id"),
        nullable=False,
    )

    quantity: Mapped[Quantity] = mapped_column(
        nullable=False,
        default=0,
    )

    reserved_quantity: Mapped[Quantity] = mapped_column(
        nullable=False,
        default=0,
    )

    warehouse: Mapped[Warehouse] = relationship(lazy="joined")
    product: Mapped[Product] = relationship(lazy="joined")

    def __repr__(self) -> str:
        return (
            f"<InventoryRecord {self.warehouse_id}/{self.product_id} "
            f"qty={self.quantity} reserved={self.reserved_quantity}>"
        )

    @property
    def available_quantity(self) -> Decimal:
        return self.quantity - self.reserved_quantity
