"""
Module: stock_kernel.models.stock_transaction
Responsibility: ORM persistence for stock movement documents (import, export,
    transfer, disposal, stocktake) and their lines.
Architecture position: Kernel > Models.  May import from db/ only.

Invariants enforced:
    - transaction_code is unique ("{PREFIX}-{YYYYMMDD}-{seq:03d}").
    - status moves only pending -> approved or pending -> cancelled; both are
      terminal.  Ledger effects happen exactly once, at approval.
    - Detail quantity is positive for every type except stocktake, where it
      is the signed correction (actual - system).
"""

from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from uuid import UUID

from sqlalchemy import Date, DateTime, ForeignKey, Index, Numeric, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from stock_kernel.db.base import TrackedBase, UUIDString
from stock_kernel.db.types import Quantity


class TransactionType(str, Enum):
    IMPORT = "import"
    EXPORT = "export"
    TRANSFER = "transfer"
    DISPOSAL = "disposal"
    STOCKTAKE = "stocktake"


class TransactionStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    CANCELLED = "cancelled"


class StockTransaction(TrackedBase):
    """A stock movement document."""

    __tablename__ = "stock_transactions"

    __table_args__ = (
        UniqueConstraint("transaction_code", name="uq_stock_transaction_code"),
        Index("idx_stock_transaction_type_status", "transaction_type", "status"),
        Index("idx_stock_transaction_warehouse", "warehouse_id"),
        Index("idx_stock_transaction_reference", "reference_type", "reference_id"),
    )

    transaction_code: Mapped[str] = mapped_column(
        String(50),
        nullable=False,
    )

    transaction_type: Mapped[TransactionType] = mapped_column(
        String(20),
        nullable=False,
    )

    status: Mapped[TransactionStatus] = mapped_column(
        String(20),
        nullable=False,
        default=TransactionStatus.PENDING,
    )

    # Primary warehouse (source warehouse for transfers)
    warehouse_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("warehouses.id"),
        nullable=False,
    )

    source_warehouse_id: Mapped[UUID | None] = mapped_column(
        UUIDString(),
        ForeignKey("warehouses.id"),
        nullable=True,
    )

    destination_warehouse_id: Mapped[UUID | None] = mapped_column(
        UUIDString(),
        ForeignKey("warehouses.id"),
        nullable=True,
    )

    transaction_date: Mapped[date] = mapped_column(
        Date,
        nullable=False,
    )

    # Originating document, e.g. ("sales_order", order.id)
    reference_type: Mapped[str | None] = mapped_column(
        String(50),
        nullable=True,
    )

    reference_id: Mapped[UUID | None] = mapped_column(
        UUIDString(),
        nullable=True,
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

    cancelled_by_id: Mapped[UUID | None] = mapped_column(
        UUIDString(),
        nullable=True,
    )

    cancelled_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )

    details: Mapped[list["StockTransactionDetail"]] = relationship(
        back_populates="transaction",
        cascade="all, delete-orphan",
        lazy="selectin",
        order_by="StockTransactionDetail.line_no",
    )

    def __repr__(self) -> str:
        return f"<StockTransaction {self.transaction_code} status={self.status}>"

    @property
    def is_pending(self) -> bool:
        return self.status == TransactionStatus.PENDING


class StockTransactionDetail(TrackedBase):
    """One product line of a stock movement document."""

    __tablename__ = "stock_transaction_details"

    __table_args__ = (
        Index("idx_stock_transaction_detail_txn", "transaction_id"),
    )

    transaction_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("stock_transactions.id"),
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

    warehouse_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("warehouses.id"),
        nullable=False,
    )

    # Signed for stocktake lines
    quantity: Mapped[Quantity] = mapped_column(
        nullable=False,
    )

    unit_price: Mapped[Decimal] = mapped_column(
        nullable=False,
        default=Decimal("0"),
    )

    # Stocktake only
    system_quantity: Mapped[Decimal | None] = mapped_column(
        Numeric(20, 3),
        nullable=True,
    )

    actual_quantity: Mapped[Decimal | None] = mapped_column(
        Numeric(20, 3),
        nullable=True,
    )

    batch_number: Mapped[str | None] = mapped_column(
        String(100),
        nullable=True,
    )

    expiry_date: Mapped[date | None] = mapped_column(
        Date,
        nullable=True,
    )

    notes: Mapped[str | None] = mapped_column(
        String(1000),
        nullable=True,
    )

    transaction: Mapped[StockTransaction] = relationship(back_populates="details")

    @property
    def line_value(self) -> Decimal:
        return self.unit_price * self.quantity
