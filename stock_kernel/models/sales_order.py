"""
Module: stock_kernel.models.sales_order
Responsibility: ORM persistence for sales orders, their lines, the linked
    delivery and the payment receipts applied to them.
Architecture position: Kernel > Models.  May import from db/ only.

Invariants enforced:
    - order_code is unique ("DH-{YYYYMMDD}-{seq:03d}").
    - 0 <= paid_amount <= total_amount (CHECK).
    - 0 <= debt_amount <= total_amount - paid_amount.  debt_amount is the
      part of the unpaid balance this order has booked to the customer's
      current_debt and not yet settled; cancellation reverses exactly it.
    - order_status follows the fulfillment workflow in domain/workflows.py.
    - Payment receipts are immutable once written.
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
    Numeric,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from stock_kernel.db.base import TrackedBase, UUIDString
from stock_kernel.db.types import Quantity


class OrderStatus(str, Enum):
    PENDING = "pending"
    PREPARING = "preparing"
    DELIVERING = "delivering"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class PaymentStatus(str, Enum):
    UNPAID = "unpaid"
    PARTIAL = "partial"
    PAID = "paid"


class DeliveryType(str, Enum):
    DELIVERY = "delivery"
    PICKUP = "pickup"


class PaymentMethod(str, Enum):
    CASH = "cash"
    TRANSFER = "transfer"
    CARD = "card"
    CREDIT = "credit"
    INSTALLMENT = "installment"
    COD = "cod"


class DeliveryStatus(str, Enum):
    PENDING = "pending"
    IN_TRANSIT = "in_transit"
    DELIVERED = "delivered"
    FAILED = "failed"


class SalesOrder(TrackedBase):
    """A customer sales order."""

    __tablename__ = "sales_orders"

    __table_args__ = (
        UniqueConstraint("order_code", name="uq_sales_order_code"),
        CheckConstraint("paid_amount >= 0", name="ck_order_paid_non_negative"),
        CheckConstraint("paid_amount <= total_amount", name="ck_order_paid_within_total"),
        CheckConstraint("debt_amount >= 0", name="ck_order_debt_non_negative"),
        Index("idx_sales_order_customer", "customer_id"),
        Index("idx_sales_order_status", "order_status"),
    )

    order_code: Mapped[str] = mapped_column(
        String(50),
        nullable=False,
    )

    customer_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("customers.id"),
        nullable=False,
    )

    order_date: Mapped[date] = mapped_column(
        Date,
        nullable=False,
    )

    order_status: Mapped[OrderStatus] = mapped_column(
        String(20),
        nullable=False,
        default=OrderStatus.PENDING,
    )

    payment_status: Mapped[PaymentStatus] = mapped_column(
        String(20),
        nullable=False,
        default=PaymentStatus.UNPAID,
    )

    delivery_type: Mapped[DeliveryType] = mapped_column(
        String(20),
        nullable=False,
    )

    payment_method: Mapped[PaymentMethod] = mapped_column(
        String(20),
        nullable=False,
    )

    # Sum of line amounts before order-level fee/discount
    subtotal: Mapped[Decimal] = mapped_column(
        nullable=False,
        default=Decimal("0"),
    )

    tax_amount: Mapped[Decimal] = mapped_column(
        nullable=False,
        default=Decimal("0"),
    )

    # Order-level discount (absolute amount)
    discount_amount: Mapped[Decimal] = mapped_column(
        nullable=False,
        default=Decimal("0"),
    )

    shipping_fee: Mapped[Decimal] = mapped_column(
        nullable=False,
        default=Decimal("0"),
    )

    total_amount: Mapped[Decimal] = mapped_column(
        nullable=False,
        default=Decimal("0"),
    )

    paid_amount: Mapped[Decimal] = mapped_column(
        nullable=False,
        default=Decimal("0"),
    )

    debt_amount: Mapped[Decimal] = mapped_column(
        nullable=False,
        default=Decimal("0"),
    )

    delivery_address: Mapped[str | None] = mapped_column(
        String(500),
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

    dispatched_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
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

    cancellation_reason: Mapped[str | None] = mapped_column(
        String(1000),
        nullable=True,
    )

    details: Mapped[list["SalesOrderDetail"]] = relationship(
        back_populates="order",
        cascade="all, delete-orphan",
        lazy="selectin",
        order_by="SalesOrderDetail.line_no",
    )

    delivery: Mapped["Delivery | None"] = relationship(
        back_populates="order",
        cascade="all, delete-orphan",
        lazy="selectin",
        uselist=False,
    )

    receipts: Mapped[list["PaymentReceipt"]] = relationship(
        back_populates="order",
        lazy="selectin",
        order_by="PaymentReceipt.receipt_code",
    )

    def __repr__(self) -> str:
        return f"<SalesOrder {self.order_code} status={self.order_status}>"

    @property
    def remaining_amount(self) -> Decimal:
        return self.total_amount - self.paid_amount


class SalesOrderDetail(TrackedBase):
    """
    One product line of a sales order.

    line_amount = gross - discount + tax, where
        gross    = quantity * unit_price
        discount = gross * discount_percent / 100
        tax      = (gross - discount) * tax_rate / 100
    """

    __tablename__ = "sales_order_details"

    __table_args__ = (
        CheckConstraint("quantity > 0", name="ck_order_line_quantity_positive"),
        Index("idx_sales_order_detail_order", "order_id"),
    )

    order_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("sales_orders.id"),
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

    quantity: Mapped[Quantity] = mapped_column(
        nullable=False,
    )

    unit_price: Mapped[Decimal] = mapped_column(
        nullable=False,
    )

    discount_percent: Mapped[Decimal] = mapped_column(
        Numeric(9, 4),
        nullable=False,
        default=Decimal("0"),
    )

    tax_rate: Mapped[Decimal] = mapped_column(
        Numeric(9, 4),
        nullable=False,
        default=Decimal("0"),
    )

    discount_amount: Mapped[Decimal] = mapped_column(
        nullable=False,
        default=Decimal("0"),
    )

    tax_amount: Mapped[Decimal] = mapped_column(
        nullable=False,
        default=Decimal("0"),
    )

    line_amount: Mapped[Decimal] = mapped_column(
        nullable=False,
    )

    order: Mapped[SalesOrder] = relationship(back_populates="details")


class Delivery(TrackedBase):
    """Shipment record linked one-to-one with a delivery-type order."""

    __tablename__ = "deliveries"

    __table_args__ = (
        UniqueConstraint("delivery_code", name="uq_delivery_code"),
        UniqueConstraint("order_id", name="uq_delivery_order"),
    )

    delivery_code: Mapped[str] = mapped_column(
        String(50),
        nullable=False,
    )

    order_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("sales_orders.id"),
        nullable=False,
    )

    status: Mapped[DeliveryStatus] = mapped_column(
        String(20),
        nullable=False,
        default=DeliveryStatus.PENDING,
    )

    delivery_address: Mapped[str | None] = mapped_column(
        String(500),
        nullable=True,
    )

    shipped_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )

    delivered_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )

    failure_reason: Mapped[str | None] = mapped_column(
        String(1000),
        nullable=True,
    )

    order: Mapped[SalesOrder] = relationship(back_populates="delivery")


class PaymentReceipt(TrackedBase):
    """An immutable record of money received against an order."""

    __tablename__ = "payment_receipts"

    __table_args__ = (
        UniqueConstraint("receipt_code", name="uq_payment_receipt_code"),
        CheckConstraint("amount > 0", name="ck_receipt_amount_positive"),
        Index("idx_payment_receipt_order", "order_id"),
    )

    receipt_code: Mapped[str] = mapped_column(
        String(50),
        nullable=False,
    )

    order_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("sales_orders.id"),
        nullable=False,
    )

    customer_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("customers.id"),
        nullable=False,
    )

    amount: Mapped[Decimal] = mapped_column(
        nullable=False,
    )

    payment_method: Mapped[PaymentMethod] = mapped_column(
        String(20),
        nullable=False,
    )

    paid_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
    )

    notes: Mapped[str | None] = mapped_column(
        String(1000),
        nullable=True,
    )

    order: Mapped[SalesOrder] = relationship(back_populates="receipts")
