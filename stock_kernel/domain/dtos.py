"""
Domain Data Transfer Objects.

Immutable value objects passed between callers and services.  All are
frozen dataclasses; money is Decimal and quantities are Decimal or int
(fractional amounts such as 2.5 kg are allowed, up to three places).

Architecture position:
    Kernel > Domain -- pure, zero I/O.  May import from exceptions and
    db.types only.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import Any
from uuid import UUID

from stock_kernel.db.types import QUANTITY_DECIMAL_PLACES
from stock_kernel.exceptions import InvalidQuantityError

QUANTITY_QUANTUM = Decimal(1).scaleb(-QUANTITY_DECIMAL_PLACES)


def validate_quantity(quantity: Decimal | int) -> None:
    """Reject bools, floats, non-finite values and more than three places."""
    if isinstance(quantity, bool) or not isinstance(quantity, (int, Decimal)):
        raise InvalidQuantityError(quantity, "must be a Decimal or int")
    if isinstance(quantity, Decimal):
        if not quantity.is_finite():
            raise InvalidQuantityError(quantity, "must be finite")
        if quantity != quantity.quantize(QUANTITY_QUANTUM):
            raise InvalidQuantityError(
                quantity, f"at most {QUANTITY_DECIMAL_PLACES} decimal places"
            )


def _require_positive(quantity: Decimal | int) -> None:
    validate_quantity(quantity)
    if quantity <= 0:
        raise InvalidQuantityError(quantity)


# -----------------------------------------------------------------------------
# Ledger inputs
# -----------------------------------------------------------------------------


@dataclass(frozen=True)
class StockLine:
    """A positive quantity of one product in one warehouse."""

    warehouse_id: UUID
    product_id: UUID
    quantity: Decimal | int

    def __post_init__(self) -> None:
        _require_positive(self.quantity)


@dataclass(frozen=True)
class LedgerDelta:
    """
    A signed change to one inventory record.

    Contract:
        quantity_delta moves on-hand stock, reserved_delta moves the
        reservation.  A delta with both zero is a no-op and is skipped by
        the ledger.
    """

    warehouse_id: UUID
    product_id: UUID
    quantity_delta: Decimal | int = 0
    reserved_delta: Decimal | int = 0

    @property
    def key(self) -> tuple[str, str]:
        """Lock-ordering key.  Batches apply deltas sorted by this key."""
        return (str(self.warehouse_id), str(self.product_id))

    @property
    def is_noop(self) -> bool:
        return self.quantity_delta == 0 and self.reserved_delta == 0


# -----------------------------------------------------------------------------
# Availability
# -----------------------------------------------------------------------------


@dataclass(frozen=True)
class AvailabilityItem:
    """Availability of one requested line."""

    warehouse_id: UUID
    product_id: UUID
    requested: Decimal | int
    on_hand: Decimal | int
    reserved: Decimal | int

    @property
    def available(self) -> Decimal | int:
        return max(self.on_hand - self.reserved, 0)

    @property
    def is_available(self) -> bool:
        return self.available >= self.requested

    @property
    def shortfall(self) -> Decimal | int:
        return max(self.requested - self.available, 0)

    @property
    def message(self) -> str:
        if self.is_available:
            return "Available"
        if self.available == 0:
            return "Out of stock"
        return f"Insufficient stock: {self.available} available, {self.shortfall} short"

    def as_error_item(self) -> dict[str, Any]:
        return {
            "warehouse_id": str(self.warehouse_id),
            "product_id": str(self.product_id),
            "requested": self.requested,
            "available": self.available,
            "shortfall": self.shortfall,
        }


@dataclass(frozen=True)
class AvailabilityReport:
    """Per-item availability plus summary counts."""

    items: tuple[AvailabilityItem, ...]

    @property
    def all_available(self) -> bool:
        return all(item.is_available for item in self.items)

    @property
    def total_items(self) -> int:
        return len(self.items)

    @property
    def available_count(self) -> int:
        return sum(1 for item in self.items if item.is_available)

    @property
    def unavailable_count(self) -> int:
        return self.total_items - self.available_count

    @property
    def unavailable_items(self) -> tuple[AvailabilityItem, ...]:
        return tuple(item for item in self.items if not item.is_available)

    def error_items(self) -> list[dict[str, Any]]:
        return [item.as_error_item() for item in self.unavailable_items]


# -----------------------------------------------------------------------------
# Document lines
# -----------------------------------------------------------------------------


@dataclass(frozen=True)
class TransactionLine:
    """
    One line of an import, export, transfer or disposal document.

    warehouse_id defaults to the document's warehouse.
    """

    product_id: UUID
    quantity: Decimal | int
    unit_price: Decimal = Decimal("0")
    warehouse_id: UUID | None = None
    batch_number: str | None = None
    expiry_date: date | None = None
    notes: str | None = None

    def __post_init__(self) -> None:
        _require_positive(self.quantity)
        if self.unit_price < 0:
            raise ValueError("unit_price cannot be negative")


@dataclass(frozen=True)
class StocktakeLine:
    """A counted product: what the system believes vs. what was found."""

    product_id: UUID
    system_quantity: Decimal | int
    actual_quantity: Decimal | int
    unit_price: Decimal = Decimal("0")
    notes: str | None = None

    def __post_init__(self) -> None:
        validate_quantity(self.system_quantity)
        validate_quantity(self.actual_quantity)
        if self.system_quantity < 0 or self.actual_quantity < 0:
            raise InvalidQuantityError(
                min(self.system_quantity, self.actual_quantity),
                "counted quantities cannot be negative",
            )

    @property
    def difference(self) -> Decimal | int:
        return self.actual_quantity - self.system_quantity


@dataclass(frozen=True)
class OrderLine:
    """
    One line of a sales order.

    unit_price defaults to the product's selling price when None.
    """

    product_id: UUID
    warehouse_id: UUID
    quantity: Decimal | int
    unit_price: Decimal | None = None
    discount_percent: Decimal = Decimal("0")

    def __post_init__(self) -> None:
        _require_positive(self.quantity)
        if self.unit_price is not None and self.unit_price < 0:
            raise ValueError("unit_price cannot be negative")
        if not Decimal("0") <= self.discount_percent <= Decimal("100"):
            raise ValueError("discount_percent must be between 0 and 100")


@dataclass(frozen=True)
class TransferLine:
    """One line of a warehouse transfer.  unit_price defaults to purchase price."""

    product_id: UUID
    quantity: Decimal | int
    unit_price: Decimal | None = None
    notes: str | None = None

    def __post_init__(self) -> None:
        _require_positive(self.quantity)
