"""
Module: stock_kernel.models.audit_event
Responsibility: ORM persistence for the tamper-evident audit hash chain.
Architecture position: Kernel > Models.  May import from db/ only.

Invariants enforced:
    - hash = H(entity_type | entity_id | action | payload_hash | prev_hash).
      Validated by AuditorService.validate_chain().
    - seq is strictly increasing, allocated by SequenceService.
    - Rows are append-only; nothing in the kernel updates or deletes them.
"""

from datetime import datetime
from enum import Enum
from uuid import UUID

from sqlalchemy import JSON, BigInteger, DateTime, Index, String
from sqlalchemy.orm import Mapped, mapped_column

from stock_kernel.db.base import Base, UUIDString


class AuditAction(str, Enum):
    """Auditable actions.  One member per domain event kind."""

    # Inventory
    INVENTORY_ADJUSTED = "inventory_adjusted"

    # Stock transactions
    TRANSACTION_CREATED = "transaction_created"
    TRANSACTION_APPROVED = "transaction_approved"
    TRANSACTION_CANCELLED = "transaction_cancelled"

    # Sales orders
    ORDER_CREATED = "order_created"
    ORDER_UPDATED = "order_updated"
    ORDER_DELETED = "order_deleted"
    ORDER_APPROVED = "order_approved"
    ORDER_DISPATCHED = "order_dispatched"
    ORDER_COMPLETED = "order_completed"
    ORDER_CANCELLED = "order_cancelled"
    DELIVERY_FAILED = "delivery_failed"
    PAYMENT_RECEIVED = "payment_received"

    # Transfers
    TRANSFER_CREATED = "transfer_created"
    TRANSFER_UPDATED = "transfer_updated"
    TRANSFER_DELETED = "transfer_deleted"
    TRANSFER_APPROVED = "transfer_approved"
    TRANSFER_COMPLETED = "transfer_completed"
    TRANSFER_CANCELLED = "transfer_cancelled"


class AuditEvent(Base):
    """
    Audit event with hash chain for tamper evidence.

    prev_hash is None only for the genesis event.
    """

    __tablename__ = "audit_events"

    __table_args__ = (
        Index("idx_audit_entity", "entity_type", "entity_id"),
        Index("idx_audit_action", "action"),
        Index("idx_audit_occurred", "occurred_at"),
    )

    seq: Mapped[int] = mapped_column(
        BigInteger,
        nullable=False,
        unique=True,
    )

    # e.g. "SalesOrder", "StockTransaction", "InventoryRecord"
    entity_type: Mapped[str] = mapped_column(
        String(50),
        nullable=False,
    )

    entity_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        nullable=False,
    )

    action: Mapped[AuditAction] = mapped_column(
        String(50),
        nullable=False,
    )

    actor_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        nullable=False,
    )

    occurred_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
    )

    # {"old_value": ..., "new_value": ...}
    payload: Mapped[dict | None] = mapped_column(
        JSON,
        nullable=True,
    )

    payload_hash: Mapped[str] = mapped_column(
        String(64),
        nullable=False,
    )

    prev_hash: Mapped[str | None] = mapped_column(
        String(64),
        nullable=True,
    )

    hash: Mapped[str] = mapped_column(
        String(64),
        nullable=False,
    )

    def __repr__(self) -> str:
        return f"<AuditEvent {self.action} on {self.entity_type}:{self.entity_id}>"

    @property
    def is_genesis(self) -> bool:
        return self.prev_hash is None
