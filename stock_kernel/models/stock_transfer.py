"""
Module: stock_kernel.models.stock_transfer
Responsibility: ORM persistence for warehouse-to-warehouse transfers.
Architecture position: Kernel > Models.  May import from db/ only.

Invariants enforced:
    - transfer_code is unique ("ST-{YYYYMMDD}-{seq:04d}").
    - from_warehouse_id != to_warehouse_id (CHECK).
    - While in_transit, the source warehouse holds a reservation equal to each
      line's quantity.  completed and cancelled are terminal.
"""

from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from uuid import UUID

from sqlalchemy import (
    CheckConstraint,
    Date,
    DateTime,
    ForeignKey,
    Index,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from stock_kernel.db.base import TrackedBase, UUIDString
from stock_kernel.db.types import Quantity


class TransferStatus(str, Enum):
    PENDING = "pending"
    IN_TRANSIT = "in_transit"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class StockTransfer(TrackedBase):
    """A request to move stock from one warehouse to another."""

    __tablename__ = "stock_transfers"

    __table_args__ = (
        UniqueConstraint("transfer_code", name="uq_stock_transfer_code"),
        CheckConstraint(
            "from_warehouse_id <> to_warehouse_id", name="ck_transfer_distinct_warehouses"
        ),
        Index("idx_stock_transfer_status", "status"),
    )

    transfer_code: Mapped[str] = mapped_column(
        String(50),
        nullable=False,
    )

    from_warehouse_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("warehouses.id"),
        nullable=False,
    )

    to_warehouse_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("warehouses.id"),
        nullable=False,
    )

    transfer_date: Mapped[date] = mapped_column(
        Date,
        nullable=False,
    )

    expected_arrival_date: Mapped[date | None] = mapped_column(
        Date,
        nullable=True,
    )

    status: Mapped[TransferStatus] = mapped_column(
        String(20),
        nullable=False,
        default=TransferStatus.PENDING,
    )

    total_value: Mapped[Decimal] = mapped_column(
        nullable=False,
        default=Decimal("0"),
    )

    reason: Mapped[str | None] = mapped_column(
        String(1000),
        nullable=True,
    )

    notes: Mapped[str | None] = mapped_column(
        String(4000),
        nullable=True,
    )

    approved_by_id: Mapped[UUID | None] = mapped_column(
        UUIDString(),
        nullable=True,
    )

    approved_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )

    completed_by_id: Mapped[UUID | None] = mapped_column(
        UUIDString(),
        nullable=True,
    )

    completed_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )

    cancelled_by_id: Mapped[UUID | None] = mapped_column(
        UUIDString(),
        nullable=True,
    )

    cancelled_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )

    details: Mapped[list["StockTransferDetail"]] = relationship(
        back_populates="transfer",
        cascade="all, delete-orphan",
        lazy="selectin",
        order_by="StockTransferDetail.line_no",
    )

    def __repr__(self) -> str:
        return f"<StockTransfer {self.transfer_code} status={self.status}>"


class StockTransferDetail(TrackedBase):
    """One product line of a transfer."""

    __tablename__ = "stock_transfer_details"

    __table_args__ = (
        CheckConstraint("quantity > 0", name="ck_transfer_line_quantity_positive"),
        Index("idx_stock_transfer_detail_transfer", "transfer_id"),
    )

    transfer_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("stock_transfers.id"),
        nullable=False,
    )

    line_no: Mapped[int] = mapped_column(
        nullable=False,
    )

    product_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("products.id"),
        nullable=False,
    )

    quantity: Mapped[Quantity] = mapped_column(
        nullable=False,
    )

    unit_price: Mapped[Decimal] = mapped_column(
        nullable=False,
        default=Decimal("0"),
    )

    notes: Mapped[str | None] = mapped_column(
        String(1000),
        nullable=True,
    )

    transfer: Mapped[StockTransfer] = relationship(back_populates="details")
