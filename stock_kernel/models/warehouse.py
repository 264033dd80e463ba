"""
Module: stock_kernel.models.warehouse
Responsibility: ORM persistence for warehouses, the physical locations that
    hold stock.
Architecture position: Kernel > Models.  May import from db/ only.

Invariants enforced:
    - warehouse_code is unique.
    - Only ACTIVE warehouses may be named by new stock documents, orders or
      transfers (enforced by services through ``validate_can_transact``).
"""

from enum import Enum

from sqlalchemy import String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from stock_kernel.db.base import TrackedBase


class WarehouseStatus(str, Enum):
    ACTIVE = "active"
    INACTIVE = "inactive"


class WarehouseType(str, Enum):
    MAIN = "main"
    BRANCH = "branch"
    TRANSIT = "transit"


class Warehouse(TrackedBase):
    """A stock-holding location."""

    __tablename__ = "warehouses"

    __table_args__ = (
        UniqueConstraint("warehouse_code", name="uq_warehouse_code"),
    )

    warehouse_code: Mapped[str] = mapped_column(
        String(50),
        nullable=False,
    )

    name: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
    )

    warehouse_type: Mapped[WarehouseType] = mapped_column(
        String(20),
        nullable=False,
        default=WarehouseType.MAIN,
    )

    address: Mapped[str | None] = mapped_column(
        String(500),
        nullable=True,
    )

    status: Mapped[WarehouseStatus] = mapped_column(
        String(20),
        nullable=False,
        default=WarehouseStatus.ACTIVE,
    )

    def __repr__(self) -> str:
        return f"<Warehouse {self.warehouse_code}>"

    @property
    def is_active(self) -> bool:
        return self.status == WarehouseStatus.ACTIVE
