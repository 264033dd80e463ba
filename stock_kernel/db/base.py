"""
Declarative base for the stock kernel's ORM models.

Column conventions shared by every table:

* ``id`` is a uuid4 primary key stored as ``String(36)``, so SQLite and
  PostgreSQL hold the same text and test fixtures can compare ids directly.
* ``Decimal`` maps to ``Numeric(38, 9)``: prices, totals, paid amounts and
  customer debt.  Money is never a float.
* ``Quantity`` maps to ``Numeric(20, 3)``: stock is counted in units, kg
  or litres, so quantities may be fractional.  ``int`` maps to
  ``BigInteger`` for counters and line numbers.
* Documents and reference data also record who created and last touched
  them (``TrackedBase``).

This module is the bottom of the kernel's import graph; it MUST NOT import
models, services, selectors or domain code.
"""

from datetime import date, datetime
from decimal import Decimal
from typing import Any, ClassVar
from uuid import UUID, uuid4

from sqlalchemy import BigInteger, Date, DateTime, MetaData, Numeric, String, func
from sqlalchemy.engine import Dialect
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from sqlalchemy.types import TypeDecorator

from stock_kernel.db.types import Quantity

# Unique and check constraints are always named explicitly in the models.
NAMING_CONVENTION = {
    "ix": "ix_%(table_name)s_%(column_0_name)s",
    "fk": "fk_%(table_name)s_%(column_0_name)s_%(referred_table_name)s",
    "pk": "pk_%(table_name)s",
}


class UUIDString(TypeDecorator):
    """``uuid.UUID`` in Python, 36-character text in the database."""

    impl = String(36)
    cache_ok = True

    def process_bind_param(self, value: UUID | str | None, dialect: Dialect) -> str | None:
        return None if value is None else str(value)

    def process_result_value(self, value: str | None, dialect: Dialect) -> UUID | None:
        return None if value is None else UUID(value)


class Base(DeclarativeBase):
    """Root of every mapped class: uuid ``id`` plus the shared type map."""

    metadata = MetaData(naming_convention=NAMING_CONVENTION)

    type_annotation_map: ClassVar[dict[Any, Any]] = {
        UUID: UUIDString(),
        Decimal: Numeric(38, 9),
        Quantity: Numeric(20, 3),
        int: BigInteger,
        datetime: DateTime(timezone=True),
        date: Date,
    }

    id: Mapped[UUID] = mapped_column(UUIDString(), primary_key=True, default=uuid4)


class TrackedBase(Base):
    """
    Rows changed by an actor.

    ``created_at``/``updated_at`` come from the database clock.
    ``created_by_id`` is required; ``updated_by_id`` is written by every
    service mutation, including the bulk status UPDATEs.
    """

    __abstract__ = True

    created_at: Mapped[datetime] = mapped_column(server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(
        server_default=func.now(), onupdate=func.now()
    )
    created_by_id: Mapped[UUID]
    updated_by_id: Mapped[UUID | None]
