"""
InventoryLedger -- the single write path for stock levels.

Responsibility:
    Owns every mutation of ``inventory_records``.  Callers describe a change
    as a signed delta on (quantity, reserved_quantity); the ledger applies
    it as ONE conditional UPDATE whose WHERE clause re-checks the invariants
    against the row's current values:

        UPDATE inventory_records
           SET quantity = quantity + :dq,
               reserved_quantity = reserved_quantity + :dr
         WHERE warehouse_id = :w AND product_id = :p
           AND quantity + :dq >= 0
           AND reserved_quantity + :dr >= 0
           AND reserved_quantity + :dr <= quantity + :dq

    The check and the write are one statement, so two callers can never both
    pass a stale availability check.  A zero rowcount means either the row
    does not exist (created lazily for non-negative deltas) or the delta
    would break an invariant (classified and raised).

Invariants enforced:
    - 0 <= reserved_quantity <= quantity for every record, always.
    - Records are created lazily and never deleted.
    - Multi-line batches are all-or-nothing (one savepoint) and lock rows in
      a fixed key order.

Failure modes:
    - InsufficientInventoryError: on-hand or available stock too low.
    - ReservationConflictError: releasing or committing more than reserved.
    - WarehouseNotFoundError / ProductNotFoundError: lazy creation for an
      unknown pair.
    - ConcurrentModificationError: the row kept changing under us across
      every retry.
"""

from collections.abc import Iterable
from decimal import Decimal
from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from stock_kernel.domain.clock import Clock, SystemClock
from stock_kernel.domain.dtos import (
    AvailabilityItem,
    AvailabilityReport,
    LedgerDelta,
    StockLine,
    validate_quantity,
)
from stock_kernel.domain.events import InventoryAdjusted
from stock_kernel.exceptions import (
    ConcurrentModificationError,
    InsufficientInventoryError,
    InvalidQuantityError,
    ProductNotFoundError,
    ReservationConflictError,
    ValidationError,
    WarehouseNotFoundError,
)
from stock_kernel.logging_config import get_logger
from stock_kernel.models.inventory import InventoryRecord
from stock_kernel.models.product import Product
from stock_kernel.models.warehouse import Warehouse
from stock_kernel.services.base import BaseService
from stock_kernel.services.event_publisher import EventPublisher

logger = get_logger("services.inventory_ledger")

_MAX_ATTEMPTS = 3


def merge_deltas(deltas: Iterable[LedgerDelta]) -> list[LedgerDelta]:
    """Sum deltas per (warehouse, product), drop no-ops, sort by lock key."""
    merged: dict[tuple[str, str], LedgerDelta] = {}
    for delta in deltas:
        existing = merged.get(delta.key)
        if existing is None:
            merged[delta.key] = delta
        else:
            merged[delta.key] = LedgerDelta(
                warehouse_id=delta.warehouse_id,
                product_id=delta.product_id,
                quantity_delta=existing.quantity_delta + delta.quantity_delta,
                reserved_delta=existing.reserved_delta + delta.reserved_delta,
            )
    return [merged[key] for key in sorted(merged) if not merged[key].is_noop]


def _violation(
    quantity: Decimal | int, reserved: Decimal | int, dq: Decimal | int, dr: Decimal | int
) -> str | None:
    """Classify why (dq, dr) cannot be applied to (quantity, reserved), or None."""
    if dr < 0 and reserved + dr < 0:
        return "reservation"
    if quantity + dq < 0 or reserved + dr > quantity + dq:
        return "insufficient"
    return None


class InventoryLedger(BaseService[InventoryRecord]):
    """
    Inventory ledger: apply deltas, check availability, reserve and release.

    Never commits.  Every public mutation runs inside a savepoint on the
    caller's session, so a failed call leaves no partial change behind.
    """

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        publisher: EventPublisher | None = None,
    ):
        super().__init__(session)
        self._clock = clock or SystemClock()
        self._publisher = publisher or EventPublisher()

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get_record(self, warehouse_id: UUID, product_id: UUID) -> InventoryRecord | None:
        """Fresh read of one record; None when the pair has never held stock."""
        return self.session.execute(
            select(InventoryRecord)
            .where(InventoryRecord.warehouse_id == warehouse_id)
            .where(InventoryRecord.product_id == product_id)
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()

    def check_availability(self, items: Iterable[StockLine]) -> AvailabilityReport:
        """
        Report whether each requested line can be covered by available stock.

        Lines naming the same (warehouse, product) are summed into one item.
        A pair without a record reports on_hand 0.  Read-only; nothing is
        reserved.
        """
        requested: dict[tuple[str, str], list] = {}
        for item in items:
            key = (str(item.warehouse_id), str(item.product_id))
            if key in requested:
                requested[key][2] += item.quantity
            else:
                requested[key] = [item.warehouse_id, item.product_id, item.quantity]

        report_items = []
        for warehouse_id, product_id, quantity in requested.values():
            record = self.get_record(warehouse_id, product_id)
            report_items.append(
                AvailabilityItem(
                    warehouse_id=warehouse_id,
                    product_id=product_id,
                    requested=quantity,
                    on_hand=record.quantity if record else 0,
                    reserved=record.reserved_quantity if record else 0,
                )
            )

        report = AvailabilityReport(items=tuple(report_items))
        logger.debug(
            "availability_checked",
            extra={
                "total_items": report.total_items,
                "unavailable_count": report.unavailable_count,
            },
        )
        return report

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def _conditional_update(
        self,
        warehouse_id: UUID,
        product_id: UUID,
        dq: Decimal | int,
        dr: Decimal | int,
        actor_id: UUID,
    ) -> int:
        quantity = InventoryRecord.quantity
        reserved = InventoryRecord.reserved_quantity
        stmt = (
            update(InventoryRecord)
            .where(InventoryRecord.warehouse_id == warehouse_id)
            .where(InventoryRecord.product_id == product_id)
            .where(quantity + dq >= 0)
            .where(reserved + dr >= 0)
            .where(reserved + dr <= quantity + dq)
            .values(
                quantity=quantity + dq,
                reserved_quantity=reserved + dr,
                updated_by_id=actor_id,
            )
            .execution_options(synchronize_session=False)
        )
        return self.session.execute(stmt).rowcount

    def _insert_record(
        self,
        warehouse_id: UUID,
        product_id: UUID,
        dq: Decimal | int,
        dr: Decimal | int,
        actor_id: UUID,
    ) -> bool:
        """Create the record holding (dq, dr).  False if another writer won the race."""
        if self.session.get(Warehouse, warehouse_id) is None:
            raise WarehouseNotFoundError(warehouse_id)
        if self.session.get(Product, product_id) is None:
            raise ProductNotFoundError(product_id)

        savepoint = self.session.begin_nested()
        try:
            self.session.add(
                InventoryRecord(
                    warehouse_id=warehouse_id,
                    product_id=product_id,
                    quantity=dq,
                    reserved_quantity=dr,
                    created_by_id=actor_id,
                )
            )
            self.session.flush()
            savepoint.commit()
        except IntegrityError:
            savepoint.rollback()
            logger.debug(
                "inventory_record_create_race",
                extra={"warehouse_id": str(warehouse_id), "product_id": str(product_id)},
            )
            return False
        logger.info(
            "inventory_record_created",
            extra={"warehouse_id": str(warehouse_id), "product_id": str(product_id)},
        )
        return True

    def _raise_violation(
        self,
        kind: str,
        warehouse_id: UUID,
        product_id: UUID,
        quantity: Decimal | int,
        reserved: Decimal | int,
        dq: Decimal | int,
        dr: Decimal | int,
    ) -> None:
        if kind == "reservation":
            error = ReservationConflictError(warehouse_id, product_id, -dr, reserved)
        else:
            if dq < 0:
                requested = -dq
                available = quantity - reserved - min(dr, 0)
            else:
                requested = dr
                available = quantity + dq - reserved
            error = InsufficientInventoryError(
                [
                    {
                        "warehouse_id": str(warehouse_id),
                        "product_id": str(product_id),
                        "requested": requested,
                        "available": max(available, 0),
                        "shortfall": requested - max(available, 0),
                    }
                ]
            )
        logger.warning(
            "ledger_delta_rejected",
            extra={
                "warehouse_id": str(warehouse_id),
                "product_id": str(product_id),
                "quantity_delta": dq,
                "reserved_delta": dr,
                "quantity": quantity,
                "reserved_quantity": reserved,
                "reason": error.code,
            },
        )
        raise error

    def apply_delta(
        self,
        warehouse_id: UUID,
        product_id: UUID,
        quantity_delta: Decimal | int,
        reserved_delta: Decimal | int,
        actor_id: UUID,
    ) -> InventoryRecord:
        """
        Apply one signed delta to one (warehouse, product) record.

        Preconditions:
            - Runs inside the caller's transaction.
        Postconditions:
            - On success the record satisfies 0 <= reserved <= quantity and
              is returned with fresh values.
            - On failure nothing was written.

        Raises:
            InvalidQuantityError, InsufficientInventoryError, ReservationConflictError,
            WarehouseNotFoundError, ProductNotFoundError,
            ConcurrentModificationError.
        """
        validate_quantity(quantity_delta)
        validate_quantity(reserved_delta)
        dq, dr = quantity_delta, reserved_delta

        for attempt in range(_MAX_ATTEMPTS):
            if self._conditional_update(warehouse_id, product_id, dq, dr, actor_id) == 1:
                record = self.get_record(warehouse_id, product_id)
                logger.debug(
                    "ledger_delta_applied",
                    extra={
                        "warehouse_id": str(warehouse_id),
                        "product_id": str(product_id),
                        "quantity_delta": dq,
                        "reserved_delta": dr,
                        "quantity": record.quantity,
                        "reserved_quantity": record.reserved_quantity,
                    },
                )
                return record

            record = self.get_record(warehouse_id, product_id)
            if record is None:
                kind = _violation(0, 0, dq, dr)
                if kind is not None:
                    self._raise_violation(kind, warehouse_id, product_id, 0, 0, dq, dr)
                if self._insert_record(warehouse_id, product_id, dq, dr, actor_id):
                    return self.get_record(warehouse_id, product_id)
                continue

            kind = _violation(record.quantity, record.reserved_quantity, dq, dr)
            if kind is not None:
                self._raise_violation(
                    kind,
                    warehouse_id,
                    product_id,
                    record.quantity,
                    record.reserved_quantity,
                    dq,
                    dr,
                )
            # The row changed between our UPDATE and the re-read; try again.
            logger.debug(
                "ledger_delta_retry",
                extra={"attempt": attempt + 1, "product_id": str(product_id)},
            )

        raise ConcurrentModificationError(
            "InventoryRecord", f"{warehouse_id}/{product_id}"
        )

    def apply_deltas(
        self,
        deltas: Iterable[LedgerDelta],
        actor_id: UUID,
    ) -> list[InventoryRecord]:
        """
        Apply a batch of deltas all-or-nothing.

        Deltas for the same pair are summed first.  If any line fails, the
        lines already applied are rolled back and the error propagates.
        """
        merged = merge_deltas(deltas)
        records = []
        with self._unit_of_work("ledger_apply_deltas", actor_id):
            for delta in merged:
                records.append(
                    self.apply_delta(
                        delta.warehouse_id,
                        delta.product_id,
                        delta.quantity_delta,
                        delta.reserved_delta,
                        actor_id,
                    )
                )
        return records

    def reserve(self, items: Iterable[StockLine], actor_id: UUID) -> list[InventoryRecord]:
        """Hold stock for a document: reserved_quantity += q per line."""
        return self.apply_deltas(
            (LedgerDelta(i.warehouse_id, i.product_id, reserved_delta=i.quantity) for i in items),
            actor_id,
        )

    def release(self, items: Iterable[StockLine], actor_id: UUID) -> list[InventoryRecord]:
        """Drop a hold: reserved_quantity -= q per line."""
        return self.apply_deltas(
            (LedgerDelta(i.warehouse_id, i.product_id, reserved_delta=-i.quantity) for i in items),
            actor_id,
        )

    def commit_reserved(
        self, items: Iterable[StockLine], actor_id: UUID
    ) -> list[InventoryRecord]:
        """Ship held stock: quantity -= q and reserved_quantity -= q per line."""
        return self.apply_deltas(
            (
                LedgerDelta(
                    i.warehouse_id,
                    i.product_id,
                    quantity_delta=-i.quantity,
                    reserved_delta=-i.quantity,
                )
                for i in items
            ),
            actor_id,
        )

    def adjust(
        self,
        warehouse_id: UUID,
        product_id: UUID,
        adjustment: Decimal | int,
        reason: str,
        actor_id: UUID,
    ) -> InventoryRecord:
        """
        Manually correct on-hand quantity by a signed amount.

        Rejected when the result would be negative or below what is reserved.
        """
        validate_quantity(adjustment)
        if adjustment == 0:
            raise InvalidQuantityError(adjustment, "adjustment cannot be zero")
        if not reason:
            raise ValidationError("An adjustment reason is required")

        before = self.get_record(warehouse_id, product_id)
        old_value = {
            "quantity": before.quantity if before else 0,
            "reserved_quantity": before.reserved_quantity if before else 0,
        }

        with self._unit_of_work("ledger_adjust", actor_id):
            record = self.apply_delta(warehouse_id, product_id, adjustment, 0, actor_id)

        logger.info(
            "inventory_adjusted",
            extra={
                "warehouse_id": str(warehouse_id),
                "product_id": str(product_id),
                "adjustment": adjustment,
                "quantity": record.quantity,
            },
        )
        self._publisher.publish(
            InventoryAdjusted(
                entity_id=record.id,
                actor_id=actor_id,
                occurred_at=self._clock.now(),
                old_value=old_value,
                new_value={
                    "quantity": record.quantity,
                    "reserved_quantity": record.reserved_quantity,
                    "adjustment": adjustment,
                    "reason": reason,
                },
                stock_pairs=((warehouse_id, product_id),),
            )
        )
        return record
