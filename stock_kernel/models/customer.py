"""
Module: stock_kernel.models.customer
Responsibility: ORM persistence for customers and their running debt balance.
Architecture position: Kernel > Models.  May import from db/ only.

Invariants enforced:
    - customer_code is unique.
    - current_debt >= 0 (CHECK constraint).  The balance is mutated only by
      SalesOrderService through conditional delta updates: order creation,
      payment application and order cancellation.  It is never set directly.
    - A customer whose status is not ACTIVE cannot place orders.

Failure modes:
    - IntegrityError on duplicate customer_code or a negative debt write
      that slipped past the service checks.
"""

from datetime import datetime
from decimal import Decimal
from enum import Enum

from sqlalchemy import CheckConstraint, DateTime, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from stock_kernel.db.base import TrackedBase


class CustomerStatus(str, Enum):
    ACTIVE = "active"
    INACTIVE = "inactive"
    BLACKLISTED = "blacklisted"


class Customer(TrackedBase):
    """
    A party that buys from the organization.

    ``credit_limit`` caps the debt a customer may carry when paying with a
    deferred method (credit, installment).  A zero limit means no credit.
    """

    __tablename__ = "customers"

    __table_args__ = (
        UniqueConstraint("customer_code", name="uq_customer_code"),
        CheckConstraint("current_debt >= 0", name="ck_customer_debt_non_negative"),
        CheckConstraint("credit_limit >= 0", name="ck_customer_credit_limit"),
    )

    customer_code: Mapped[str] = mapped_column(
        String(50),
        nullable=False,
    )

    name: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
    )

    phone: Mapped[str | None] = mapped_column(
        String(50),
        nullable=True,
    )

    email: Mapped[str | None] = mapped_column(
        String(255),
        nullable=True,
    )

    status: Mapped[CustomerStatus] = mapped_column(
        String(20),
        nullable=False,
        default=CustomerStatus.ACTIVE,
    )

    credit_limit: Mapped[Decimal] = mapped_column(
        nullable=False,
        default=Decimal("0"),
    )

    current_debt: Mapped[Decimal] = mapped_column(
        nullable=False,
        default=Decimal("0"),
    )

    debt_updated_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )

    def __repr__(self) -> str:
        return f"<Customer {self.customer_code}>"

    @property
    def is_active(self) -> bool:
        return self.status == CustomerStatus.ACTIVE

    @property
    def available_credit(self) -> Decimal:
        return max(self.credit_limit - self.current_debt, Decimal("0"))
