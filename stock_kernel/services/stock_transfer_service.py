"""
StockTransferService -- two-phase warehouse-to-warehouse transfers.

Responsibility:
    pending -> in_transit -> completed, with cancel from pending or
    in_transit.  Ledger effects:

        approve    source reserved += q
        complete   source quantity -= q, reserved -= q; destination quantity += q
        cancel     source reserved -= q   (only when in_transit)

Invariants enforced:
    - Source and destination differ.
    - While in_transit the source holds exactly the transfer's reservation.
    - completed and cancelled are terminal; each transition is claimed with
      a conditional status UPDATE.
"""

from collections.abc import Sequence
from datetime import date
from typing import Any
from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from stock_kernel.config import EngineConfig
from stock_kernel.db.types import ZERO, round_money
from stock_kernel.domain.clock import Clock, SystemClock
from stock_kernel.domain.dtos import LedgerDelta, StockLine, TransferLine
from stock_kernel.domain.events import (
    TransferApproved,
    TransferCancelled,
    TransferCompleted,
    TransferCreated,
    TransferDeleted,
    TransferUpdated,
)
from stock_kernel.domain.workflows import STOCK_TRANSFER_WORKFLOW
from stock_kernel.exceptions import (
    ConcurrentModificationError,
    EmptyDocumentError,
    InsufficientInventoryError,
    InvalidStateTransitionError,
    SameWarehouseError,
    StockTransferNotFoundError,
)
from stock_kernel.logging_config import get_logger
from stock_kernel.models.stock_transfer import (
    StockTransfer,
    StockTransferDetail,
    TransferStatus,
)
from stock_kernel.services.base import BaseService
from stock_kernel.services.event_publisher import EventPublisher
from stock_kernel.services.inventory_ledger import InventoryLedger
from stock_kernel.services.reference_data_service import ReferenceDataService
from stock_kernel.services.sequence_service import SequenceService
from stock_kernel.services.stock_transaction_service import append_note

logger = get_logger("services.stock_transfer")

TRANSFER_CODE_WIDTH = 4


class StockTransferService(BaseService[StockTransfer]):
    """Warehouse transfers.  One savepoint and one event per mutation."""

    def __init__(
        self,
        session: Session,
        ledger: InventoryLedger,
        publisher: EventPublisher | None = None,
        clock: Clock | None = None,
        config: EngineConfig | None = None,
        reference_data: ReferenceDataService | None = None,
    ):
        super().__init__(session)
        self._ledger = ledger
        self._publisher = publisher or EventPublisher()
        self._clock = clock or SystemClock()
        self._config = config or EngineConfig.with_defaults()
        self._reference = reference_data or ReferenceDataService(session)
        self._sequence = SequenceService(session)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _get(self, transfer_id: UUID) -> StockTransfer:
        transfer = self._reload(StockTransfer, transfer_id)
        if transfer is None:
            raise StockTransferNotFoundError(transfer_id)
        return transfer

    @staticmethod
    def _source_lines(transfer: StockTransfer) -> list[StockLine]:
        return [
            StockLine(transfer.from_warehouse_id, d.product_id, d.quantity)
            for d in transfer.details
        ]

    @staticmethod
    def _stock_pairs(
        transfer: StockTransfer, include_destination: bool = False
    ) -> tuple[tuple[UUID, UUID], ...]:
        pairs = [(transfer.from_warehouse_id, d.product_id) for d in transfer.details]
        if include_destination:
            pairs.extend((transfer.to_warehouse_id, d.product_id) for d in transfer.details)
        return tuple(dict.fromkeys(pairs))

    @staticmethod
    def _snapshot(transfer: StockTransfer) -> dict[str, Any]:
        return {
            "transfer_code": transfer.transfer_code,
            "status": TransferStatus(transfer.status).value,
            "from_warehouse_id": str(transfer.from_warehouse_id),
            "to_warehouse_id": str(transfer.to_warehouse_id),
            "total_value": str(transfer.total_value),
            "lines": [
                {"product_id": str(d.product_id), "quantity": d.quantity}
                for d in transfer.details
            ],
        }

    def _build_details(
        self, items: Sequence[TransferLine], actor_id: UUID
    ) -> list[StockTransferDetail]:
        if not items:
            raise EmptyDocumentError("Stock transfer")
        details = []
        for line_no, item in enumerate(items, start=1):
            product = self._reference.require_active_product(item.product_id)
            details.append(
                StockTransferDetail(
                    line_no=line_no,
                    product_id=item.product_id,
                    quantity=item.quantity,
                    unit_price=(
                        item.unit_price
                        if item.unit_price is not None
                        else product.purchase_price
                    ),
                    notes=item.notes,
                    created_by_id=actor_id,
                )
            )
        return details

    def _require_source_stock(
        self, from_warehouse_id: UUID, details: Sequence[StockTransferDetail]
    ) -> None:
        report = self._ledger.check_availability(
            StockLine(from_warehouse_id, d.product_id, d.quantity) for d in details
        )
        if not report.all_available:
            raise InsufficientInventoryError(
                report.error_items(),
                "Insufficient inventory in source warehouse",
            )

    def _lock_pending(self, transfer: StockTransfer, action: str, actor_id: UUID) -> None:
        """Hold the transfer in ``pending`` for an edit, or fail."""
        status = TransferStatus(transfer.status)
        if status != TransferStatus.PENDING:
            raise InvalidStateTransitionError(
                "StockTransfer",
                transfer.id,
                status.value,
                action,
                f"Can only {action} transfers with pending status",
            )
        result = self.session.execute(
            update(StockTransfer)
            .where(StockTransfer.id == transfer.id)
            .where(StockTransfer.status == TransferStatus.PENDING)
            .values(updated_by_id=actor_id)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            raise ConcurrentModificationError("StockTransfer", transfer.id)

    # ------------------------------------------------------------------
    # Creation and edits
    # ------------------------------------------------------------------

    def create(
        self,
        from_warehouse_id: UUID,
        to_warehouse_id: UUID,
        items: Sequence[TransferLine],
        actor_id: UUID,
        transfer_date: date | None = None,
        expected_arrival_date: date | None = None,
        reason: str | None = None,
        notes: str | None = None,
    ) -> StockTransfer:
        """
        Request a transfer.  Source stock is checked but not reserved until
        approval.

        Raises:
            SameWarehouseError, EmptyDocumentError, InactiveEntityError,
            InsufficientInventoryError.
        """
        if from_warehouse_id == to_warehouse_id:
            raise SameWarehouseError(from_warehouse_id)

        today = self._clock.today()
        with self._unit_of_work("transfer_create", actor_id):
            self._reference.require_active_warehouse(from_warehouse_id)
            self._reference.require_active_warehouse(to_warehouse_id)
            details = self._build_details(items, actor_id)
            self._require_source_stock(from_warehouse_id, details)

            transfer = StockTransfer(
                transfer_code=self._sequence.next_code(
                    self._config.transfer_code_prefix, today, width=TRANSFER_CODE_WIDTH
                ),
                from_warehouse_id=from_warehouse_id,
                to_warehouse_id=to_warehouse_id,
                transfer_date=transfer_date or today,
                expected_arrival_date=expected_arrival_date,
                status=TransferStatus.PENDING,
                total_value=round_money(
                    sum((d.unit_price * d.quantity for d in details), ZERO)
                ),
                reason=reason,
                notes=notes,
                created_by_id=actor_id,
            )
            transfer.details.extend(details)
            self.session.add(transfer)
            self.session.flush()

        logger.info(
            "stock_transfer_created",
            extra={
                "transfer_id": str(transfer.id),
                "transfer_code": transfer.transfer_code,
                "line_count": len(details),
            },
        )
        self._publisher.publish(
            TransferCreated(
                entity_id=transfer.id,
                actor_id=actor_id,
                occurred_at=self._clock.now(),
                new_value=self._snapshot(transfer),
            )
        )
        return transfer

    def update(
        self,
        transfer_id: UUID,
        actor_id: UUID,
        from_warehouse_id: UUID | None = None,
        to_warehouse_id: UUID | None = None,
        items: Sequence[TransferLine] | None = None,
        transfer_date: date | None = None,
        expected_arrival_date: date | None = None,
        reason: str | None = None,
        notes: str | None = None,
    ) -> StockTransfer:
        """Edit a pending transfer.  None leaves a field unchanged."""
        with self._unit_of_work("transfer_update", actor_id):
            transfer = self._get(transfer_id)
            self._lock_pending(transfer, "update", actor_id)
            old_value = self._snapshot(transfer)

            source = from_warehouse_id or transfer.from_warehouse_id
            destination = to_warehouse_id or transfer.to_warehouse_id
            if source == destination:
                raise SameWarehouseError(source)
            if from_warehouse_id is not None:
                self._reference.require_active_warehouse(from_warehouse_id)
            if to_warehouse_id is not None:
                self._reference.require_active_warehouse(to_warehouse_id)

            transfer.from_warehouse_id = source
            transfer.to_warehouse_id = destination
            if transfer_date is not None:
                transfer.transfer_date = transfer_date
            if expected_arrival_date is not None:
                transfer.expected_arrival_date = expected_arrival_date
            if reason is not None:
                transfer.reason = reason
            if notes is not None:
                transfer.notes = notes

            if items is not None:
                details = self._build_details(items, actor_id)
                transfer.details.clear()
                self.session.flush()
                transfer.details.extend(details)
                transfer.total_value = round_money(
                    sum((d.unit_price * d.quantity for d in details), ZERO)
                )
            if items is not None or from_warehouse_id is not None:
                self._require_source_stock(source, transfer.details)

            transfer.updated_by_id = actor_id
            self.session.flush()
            transfer = self._get(transfer_id)

        logger.info("stock_transfer_updated", extra={"transfer_id": str(transfer_id)})
        self._publisher.publish(
            TransferUpdated(
                entity_id=transfer_id,
                actor_id=actor_id,
                occurred_at=self._clock.now(),
                old_value=old_value,
                new_value=self._snapshot(transfer),
            )
        )
        return transfer

    def delete(self, transfer_id: UUID, actor_id: UUID) -> None:
        """Remove a pending transfer.  Nothing was reserved, so no ledger effect."""
        with self._unit_of_work("transfer_delete", actor_id):
            transfer = self._get(transfer_id)
            self._lock_pending(transfer, "delete", actor_id)
            old_value = self._snapshot(transfer)
            self.session.delete(transfer)
            self.session.flush()

        logger.info("stock_transfer_deleted", extra={"transfer_id": str(transfer_id)})
        self._publisher.publish(
            TransferDeleted(
                entity_id=transfer_id,
                actor_id=actor_id,
                occurred_at=self._clock.now(),
                old_value=old_value,
            )
        )

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def approve(self, transfer_id: UUID, actor_id: UUID) -> StockTransfer:
        """
        pending -> in_transit.  Reserves every line at the source; a line
        that can no longer be covered fails the whole approval.
        """
        now = self._clock.now()
        with self._unit_of_work("transfer_approve", actor_id):
            self._claim_status(
                StockTransfer,
                transfer_id,
                "status",
                STOCK_TRANSFER_WORKFLOW,
                "approve",
                StockTransferNotFoundError,
                values={"approved_by_id": actor_id, "approved_at": now, "updated_by_id": actor_id},
                messages={"in_transit": "Transfer is already approved"},
            )
            transfer = self._get(transfer_id)
            self._ledger.reserve(self._source_lines(transfer), actor_id)

        logger.info(
            "stock_transfer_approved",
            extra={"transfer_id": str(transfer_id), "transfer_code": transfer.transfer_code},
        )
        self._publisher.publish(
            TransferApproved(
                entity_id=transfer_id,
                actor_id=actor_id,
                occurred_at=now,
                old_value={"status": TransferStatus.PENDING.value},
                new_value={"status": TransferStatus.IN_TRANSIT.value},
                stock_pairs=self._stock_pairs(transfer),
            )
        )
        return transfer

    def complete(self, transfer_id: UUID, actor_id: UUID) -> StockTransfer:
        """
        in_transit -> completed.  Consumes the source reservation and
        receives the goods at the destination in one unit.
        """
        now = self._clock.now()
        with self._unit_of_work("transfer_complete", actor_id):
            self._claim_status(
                StockTransfer,
                transfer_id,
                "status",
                STOCK_TRANSFER_WORKFLOW,
                "complete",
                StockTransferNotFoundError,
                values={
                    "completed_by_id": actor_id,
                    "completed_at": now,
                    "updated_by_id": actor_id,
                },
                messages={
                    "pending": "Transfer must be approved before it is completed",
                    "completed": "Transfer is already completed",
                },
            )
            transfer = self._get(transfer_id)
            deltas = []
            for d in transfer.details:
                deltas.append(
                    LedgerDelta(
                        transfer.from_warehouse_id,
                        d.product_id,
                        quantity_delta=-d.quantity,
                        reserved_delta=-d.quantity,
                    )
                )
                deltas.append(
                    LedgerDelta(transfer.to_warehouse_id, d.product_id, quantity_delta=d.quantity)
                )
            self._ledger.apply_deltas(deltas, actor_id)

        logger.info(
            "stock_transfer_completed",
            extra={"transfer_id": str(transfer_id), "transfer_code": transfer.transfer_code},
        )
        self._publisher.publish(
            TransferCompleted(
                entity_id=transfer_id,
                actor_id=actor_id,
                occurred_at=now,
                old_value={"status": TransferStatus.IN_TRANSIT.value},
                new_value={"status": TransferStatus.COMPLETED.value},
                stock_pairs=self._stock_pairs(transfer, include_destination=True),
            )
        )
        return transfer

    def cancel(
        self,
        transfer_id: UUID,
        actor_id: UUID,
        reason: str | None = None,
    ) -> StockTransfer:
        """
        Cancel from pending (no ledger effect) or in_transit (releases the
        source reservation).
        """
        now = self._clock.now()
        with self._unit_of_work("transfer_cancel", actor_id):
            previous = TransferStatus(self._get(transfer_id).status)
            self._claim_status(
                StockTransfer,
                transfer_id,
                "status",
                STOCK_TRANSFER_WORKFLOW,
                "cancel",
                StockTransferNotFoundError,
                values={
                    "cancelled_by_id": actor_id,
                    "cancelled_at": now,
                    "updated_by_id": actor_id,
                },
                messages={
                    "completed": "Cannot cancel a completed transfer",
                    "cancelled": "Transfer is already cancelled",
                },
                from_states=(previous.value,),
            )
            transfer = self._get(transfer_id)
            if previous == TransferStatus.IN_TRANSIT:
                self._ledger.release(self._source_lines(transfer), actor_id)
            if reason:
                transfer.notes = append_note(transfer.notes, f"Cancelled: {reason}")
                self.session.flush()

        logger.info(
            "stock_transfer_cancelled",
            extra={
                "transfer_id": str(transfer_id),
                "previous_status": previous.value,
                "reason": reason,
            },
        )
        self._publisher.publish(
            TransferCancelled(
                entity_id=transfer_id,
                actor_id=actor_id,
                occurred_at=now,
                old_value={"status": previous.value},
                new_value={"status": TransferStatus.CANCELLED.value, "reason": reason},
                stock_pairs=(
                    self._stock_pairs(transfer)
                    if previous == TransferStatus.IN_TRANSIT
                    else ()
                ),
            )
        )
        return transfer

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get(self, transfer_id: UUID) -> StockTransfer:
        return self._get(transfer_id)

    def list(
        self,
        status: TransferStatus | None = None,
        from_warehouse_id: UUID | None = None,
        to_warehouse_id: UUID | None = None,
    ) -> list[StockTransfer]:
        stmt = select(StockTransfer)
        if status is not None:
            stmt = stmt.where(StockTransfer.status == status)
        if from_warehouse_id is not None:
            stmt = stmt.where(StockTransfer.from_warehouse_id == from_warehouse_id)
        if to_warehouse_id is not None:
            stmt = stmt.where(StockTransfer.to_warehouse_id == to_warehouse_id)
        stmt = stmt.order_by(StockTransfer.transfer_code.desc())
        return list(self.session.execute(stmt).scalars())
