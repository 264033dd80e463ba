"""
Domain events emitted by the stock kernel services.

Each state-changing operation produces exactly one event after its unit of
work succeeds.  An event names what happened (``action``), to what
(``entity_type``/``entity_id``), by whom, and carries before/after snapshots
plus the cache keys the change made stale.

Architecture position:
    Kernel > Domain -- pure value objects, zero I/O.

The ``action`` strings match ``stock_kernel.models.audit_event.AuditAction``
values one-to-one.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any, ClassVar
from uuid import UUID

StockPair = tuple[UUID, UUID]


def inventory_cache_keys(warehouse_id: UUID, product_id: UUID) -> tuple[str, ...]:
    return (
        f"inventory:{warehouse_id}:{product_id}",
        f"warehouse:{warehouse_id}:inventory",
        f"product:{product_id}:inventory",
    )


@dataclass(frozen=True)
class DomainEvent:
    """
    Base event.

    ``stock_pairs`` lists the (warehouse_id, product_id) pairs whose inventory
    the operation touched; ``customer_id`` is set when customer debt moved.
    """

    action: ClassVar[str] = "domain_event"
    entity_type: ClassVar[str] = "Entity"
    cache_prefix: ClassVar[str | None] = None

    entity_id: UUID
    actor_id: UUID
    occurred_at: datetime
    old_value: dict[str, Any] | None = None
    new_value: dict[str, Any] | None = None
    stock_pairs: tuple[StockPair, ...] = ()
    customer_id: UUID | None = None

    @property
    def cache_keys(self) -> tuple[str, ...]:
        keys: list[str] = []
        if self.cache_prefix is not None:
            keys.append(f"{self.cache_prefix}:{self.entity_id}")
        for warehouse_id, product_id in self.stock_pairs:
            for key in inventory_cache_keys(warehouse_id, product_id):
                if key not in keys:
                    keys.append(key)
        if self.customer_id is not None:
            keys.append(f"customer:{self.customer_id}")
        return tuple(keys)

    def to_payload(self) -> dict[str, Any]:
        """Audit payload: the before/after snapshots."""
        return {"old_value": self.old_value, "new_value": self.new_value}


# -----------------------------------------------------------------------------
# Inventory
# -----------------------------------------------------------------------------


@dataclass(frozen=True)
class InventoryAdjusted(DomainEvent):
    action: ClassVar[str] = "inventory_adjusted"
    entity_type: ClassVar[str] = "InventoryRecord"


# -----------------------------------------------------------------------------
# Stock transactions
# -----------------------------------------------------------------------------


@dataclass(frozen=True)
class _TransactionEvent(DomainEvent):
    entity_type: ClassVar[str] = "StockTransaction"
    cache_prefix: ClassVar[str | None] = "transaction"


@dataclass(frozen=True)
class TransactionCreated(_TransactionEvent):
    action: ClassVar[str] = "transaction_created"


@dataclass(frozen=True)
class TransactionApproved(_TransactionEvent):
    action: ClassVar[str] = "transaction_approved"


@dataclass(frozen=True)
class TransactionCancelled(_TransactionEvent):
    action: ClassVar[str] = "transaction_cancelled"


# -----------------------------------------------------------------------------
# Sales orders
# -----------------------------------------------------------------------------


@dataclass(frozen=True)
class _OrderEvent(DomainEvent):
    entity_type: ClassVar[str] = "SalesOrder"
    cache_prefix: ClassVar[str | None] = "order"


@dataclass(frozen=True)
class OrderCreated(_OrderEvent):
    action: ClassVar[str] = "order_created"


@dataclass(frozen=True)
class OrderUpdated(_OrderEvent):
    action: ClassVar[str] = "order_updated"


@dataclass(frozen=True)
class OrderDeleted(_OrderEvent):
    action: ClassVar[str] = "order_deleted"


@dataclass(frozen=True)
class OrderApproved(_OrderEvent):
    action: ClassVar[str] = "order_approved"


@dataclass(frozen=True)
class OrderDispatched(_OrderEvent):
    action: ClassVar[str] = "order_dispatched"


@dataclass(frozen=True)
class OrderCompleted(_OrderEvent):
    action: ClassVar[str] = "order_completed"


@dataclass(frozen=True)
class OrderCancelled(_OrderEvent):
    action: ClassVar[str] = "order_cancelled"


@dataclass(frozen=True)
class DeliveryFailed(_OrderEvent):
    action: ClassVar[str] = "delivery_failed"


@dataclass(frozen=True)
class PaymentReceived(_OrderEvent):
    action: ClassVar[str] = "payment_received"


# -----------------------------------------------------------------------------
# Transfers
# -----------------------------------------------------------------------------


@dataclass(frozen=True)
class _TransferEvent(DomainEvent):
    entity_type: ClassVar[str] = "StockTransfer"
    cache_prefix: ClassVar[str | None] = "transfer"


@dataclass(frozen=True)
class TransferCreated(_TransferEvent):
    action: ClassVar[str] = "transfer_created"


@dataclass(frozen=True)
class TransferUpdated(_TransferEvent):
    action: ClassVar[str] = "transfer_updated"


@dataclass(frozen=True)
class TransferDeleted(_TransferEvent):
    action: ClassVar[str] = "transfer_deleted"


@dataclass(frozen=True)
class TransferApproved(_TransferEvent):
    action: ClassVar[str] = "transfer_approved"


@dataclass(frozen=True)
class TransferCompleted(_TransferEvent):
    action: ClassVar[str] = "transfer_completed"


@dataclass(frozen=True)
class TransferCancelled(_TransferEvent):
    action: ClassVar[str] = "transfer_cancelled"
