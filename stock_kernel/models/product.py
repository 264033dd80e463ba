"""
Module: stock_kernel.models.product
Responsibility: ORM persistence for sellable, stockable products.
Architecture position: Kernel > Models.  May import from db/ only.

Invariants enforced:
    - sku is unique.
    - tax_rate is a percentage in [0, 100]; it is copied onto each sales
      order line at creation so later rate changes do not rewrite history.
    - min_stock_level drives low-stock alerts (see InventorySelector).
"""

from decimal import Decimal
from enum import Enum

from sqlalchemy import CheckConstraint, Numeric, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from stock_kernel.db.base import TrackedBase
from stock_kernel.db.types import Quantity


class ProductStatus(str, Enum):
    ACTIVE = "active"
    INACTIVE = "inactive"
    DISCONTINUED = "discontinued"


class Product(TrackedBase):
    """A stock-keeping unit."""

    __tablename__ = "products"

    __table_args__ = (
        UniqueConstraint("sku", name="uq_product_sku"),
        CheckConstraint("tax_rate >= 0 AND tax_rate <= 100", name="ck_product_tax_rate"),
        CheckConstraint("min_stock_level >= 0", name="ck_product_min_stock"),
    )

    sku: Mapped[str] = mapped_column(
        String(50),
        nullable=False,
    )

    name: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
    )

    unit: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default="pcs",
    )

    status: Mapped[ProductStatus] = mapped_column(
        String(20),
        nullable=False,
        default=ProductStatus.ACTIVE,
    )

    # Percent, e.g. 10 for 10% VAT
    tax_rate: Mapped[Decimal] = mapped_column(
        Numeric(9, 4),
        nullable=False,
        default=Decimal("0"),
    )

    purchase_price: Mapped[Decimal] = mapped_column(
        nullable=False,
        default=Decimal("0"),
    )

    selling_price: Mapped[Decimal] = mapped_column(
        nullable=False,
        default=Decimal("0"),
    )

    min_stock_level: Mapped[Quantity] = mapped_column(
        nullable=False,
        default=0,
    )

    def __repr__(self) -> str:
        return f"<Product {self.sku}>"

    @property
    def is_active(self) -> bool:
        return self.status == ProductStatus.ACTIVE
