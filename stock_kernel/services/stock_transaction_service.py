"""
StockTransactionService -- stock movement documents.

Responsibility:
    Creates import, export, transfer, disposal and stocktake documents in
    ``pending``, and applies their ledger effects exactly once when a
    document is approved:

        import      +q at warehouse
        export      -q at warehouse
        disposal    -q at warehouse
        transfer    -q at source, +q at destination
        stocktake   +(actual - system) at warehouse, zero lines skipped

Invariants enforced:
    - pending -> approved | cancelled only; both terminal.  The transition
      is claimed by a conditional UPDATE, so a second approval (sequential
      or concurrent) fails and applies no further ledger change.
    - Approval is all-or-nothing across lines.
    - Approved documents are never cancelled; a reversal document is
      created instead.

Failure modes:
    - InsufficientInventoryError at creation (export, disposal, transfer)
      when available stock is already short, and at approval when it has
      become short since.
    - SameWarehouseError, EmptyDocumentError, InactiveEntityError.
    - InvalidStateTransitionError on approve/cancel from a terminal state.
"""

from collections.abc import Sequence
from datetime import date
from decimal import Decimal
from typing import Any
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from stock_kernel.config import EngineConfig
from stock_kernel.db.types import ZERO, round_money
from stock_kernel.domain.clock import Clock, SystemClock
from stock_kernel.domain.dtos import LedgerDelta, StockLine, StocktakeLine, TransactionLine
from stock_kernel.domain.events import (
    TransactionApproved,
    TransactionCancelled,
    TransactionCreated,
)
from stock_kernel.domain.workflows import STOCK_TRANSACTION_WORKFLOW
from stock_kernel.exceptions import (
    EmptyDocumentError,
    InsufficientInventoryError,
    SameWarehouseError,
    StockTransactionNotFoundError,
)
from stock_kernel.logging_config import get_logger
from stock_kernel.models.stock_transaction import (
    StockTransaction,
    StockTransactionDetail,
    TransactionStatus,
    TransactionType,
)
from stock_kernel.services.base import BaseService
from stock_kernel.services.event_publisher import EventPublisher
from stock_kernel.services.inventory_ledger import InventoryLedger
from stock_kernel.services.reference_data_service import ReferenceDataService
from stock_kernel.services.sequence_service import SequenceService

logger = get_logger("services.stock_transaction")

_OUTBOUND_TYPES = (TransactionType.EXPORT, TransactionType.DISPOSAL)


def append_note(existing: str | None, note: str | None) -> str | None:
    """Append ``note`` on a new line, keeping what was there."""
    if not note:
        return existing
    return f"{existing}\n{note}" if existing else note


class StockTransactionService(BaseService[StockTransaction]):
    """
    Stock movement documents.

    Each public mutation runs inside a savepoint and publishes one domain
    event after it succeeds.
    """

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

    def _get(self, transaction_id: UUID) -> StockTransaction:
        txn = self._reload(StockTransaction, transaction_id)
        if txn is None:
            raise StockTransactionNotFoundError(transaction_id)
        return txn

    @staticmethod
    def _snapshot(txn: StockTransaction) -> dict[str, Any]:
        return {
            "transaction_code": txn.transaction_code,
            "transaction_type": TransactionType(txn.transaction_type).value,
            "status": TransactionStatus(txn.status).value,
            "warehouse_id": str(txn.warehouse_id),
            "total_value": str(txn.total_value),
            "lines": [
                {
                    "product_id": str(d.product_id),
                    "warehouse_id": str(d.warehouse_id),
                    "quantity": d.quantity,
                }
                for d in txn.details
            ],
        }

    @staticmethod
    def _stock_pairs(txn: StockTransaction) -> tuple[tuple[UUID, UUID], ...]:
        pairs = []
        for d in txn.details:
            pairs.append((d.warehouse_id, d.product_id))
            if TransactionType(txn.transaction_type) == TransactionType.TRANSFER:
                pairs.append((txn.destination_warehouse_id, d.product_id))
        return tuple(dict.fromkeys(pairs))

    def _require_available(self, lines: Sequence[StockLine]) -> None:
        report = self._ledger.check_availability(lines)
        if not report.all_available:
            raise InsufficientInventoryError(report.error_items())

    def _create(
        self,
        transaction_type: TransactionType,
        warehouse_id: UUID,
        details: list[StockTransactionDetail],
        actor_id: UUID,
        transaction_date: date | None = None,
        source_warehouse_id: UUID | None = None,
        destination_warehouse_id: UUID | None = None,
        reason: str | None = None,
        notes: str | None = None,
        reference_type: str | None = None,
        reference_id: UUID | None = None,
        status: TransactionStatus = TransactionStatus.PENDING,
    ) -> StockTransaction:
        today = self._clock.today()
        prefix = self._config.transaction_code_prefixes[transaction_type.value]
        now = self._clock.now()

        txn = StockTransaction(
            transaction_code=self._sequence.next_code(prefix, today),
            transaction_type=transaction_type,
            status=status,
            warehouse_id=warehouse_id,
            source_warehouse_id=source_warehouse_id,
            destination_warehouse_id=destination_warehouse_id,
            transaction_date=transaction_date or today,
            reference_type=reference_type,
            reference_id=reference_id,
            total_value=round_money(sum((d.line_value for d in details), ZERO)),
            reason=reason,
            notes=notes,
            approved_by_id=actor_id if status == TransactionStatus.APPROVED else None,
            approved_at=now if status == TransactionStatus.APPROVED else None,
            created_by_id=actor_id,
        )
        for line_no, detail in enumerate(details, start=1):
            detail.line_no = line_no
            detail.created_by_id = actor_id
            txn.details.append(detail)

        self.session.add(txn)
        self.session.flush()

        logger.info(
            "stock_transaction_created",
            extra={
                "transaction_id": str(txn.id),
                "transaction_code": txn.transaction_code,
                "transaction_type": transaction_type.value,
                "line_count": len(details),
                "total_value": str(txn.total_value),
            },
        )
        return txn

    def publish_created(self, txn: StockTransaction, actor_id: UUID) -> None:
        self._publisher.publish(
            TransactionCreated(
                entity_id=txn.id,
                actor_id=actor_id,
                occurred_at=self._clock.now(),
                new_value=self._snapshot(txn),
            )
        )

    def _simple_details(
        self, warehouse_id: UUID, items: Sequence[TransactionLine]
    ) -> list[StockTransactionDetail]:
        if not items:
            raise EmptyDocumentError("Stock transaction")
        details = []
        for item in items:
            line_warehouse = item.warehouse_id or warehouse_id
            if line_warehouse != warehouse_id:
                self._reference.require_active_warehouse(line_warehouse)
            self._reference.require_active_product(item.product_id)
            details.append(
                StockTransactionDetail(
                    product_id=item.product_id,
                    warehouse_id=line_warehouse,
                    quantity=item.quantity,
                    unit_price=item.unit_price,
                    batch_number=item.batch_number,
                    expiry_date=item.expiry_date,
                    notes=item.notes,
                )
            )
        return details

    def _create_simple(
        self,
        transaction_type: TransactionType,
        warehouse_id: UUID,
        items: Sequence[TransactionLine],
        actor_id: UUID,
        transaction_date: date | None,
        reason: str | None,
        notes: str | None,
    ) -> StockTransaction:
        operation = f"transaction_create_{transaction_type.value}"
        with self._unit_of_work(operation, actor_id):
            self._reference.require_active_warehouse(warehouse_id)
            details = self._simple_details(warehouse_id, items)
            if transaction_type in _OUTBOUND_TYPES:
                self._require_available(
                    [StockLine(d.warehouse_id, d.product_id, d.quantity) for d in details]
                )
            txn = self._create(
                transaction_type,
                warehouse_id,
                details,
                actor_id,
                transaction_date=transaction_date,
                reason=reason,
                notes=notes,
            )
        self.publish_created(txn, actor_id)
        return txn

    # ------------------------------------------------------------------
    # Creation
    # ------------------------------------------------------------------

    def create_import(
        self,
        warehouse_id: UUID,
        items: Sequence[TransactionLine],
        actor_id: UUID,
        transaction_date: date | None = None,
        reason: str | None = None,
        notes: str | None = None,
    ) -> StockTransaction:
        """Goods received into ``warehouse_id``.  No availability check."""
        return self._create_simple(
            TransactionType.IMPORT, warehouse_id, items, actor_id,
            transaction_date, reason, notes,
        )

    def create_export(
        self,
        warehouse_id: UUID,
        items: Sequence[TransactionLine],
        actor_id: UUID,
        transaction_date: date | None = None,
        reason: str | None = None,
        notes: str | None = None,
    ) -> StockTransaction:
        """
        Goods issued from ``warehouse_id``.

        Availability is checked now and rechecked at approval; nothing is
        reserved in between.
        """
        return self._create_simple(
            TransactionType.EXPORT, warehouse_id, items, actor_id,
            transaction_date, reason, notes,
        )

    def create_disposal(
        self,
        warehouse_id: UUID,
        items: Sequence[TransactionLine],
        actor_id: UUID,
        reason: str,
        transaction_date: date | None = None,
        notes: str | None = None,
    ) -> StockTransaction:
        """Damaged, expired or lost goods written off from ``warehouse_id``."""
        return self._create_simple(
            TransactionType.DISPOSAL, warehouse_id, items, actor_id,
            transaction_date, reason, notes,
        )

    def create_transfer(
        self,
        source_warehouse_id: UUID,
        destination_warehouse_id: UUID,
        items: Sequence[TransactionLine],
        actor_id: UUID,
        transaction_date: date | None = None,
        reason: str | None = None,
        notes: str | None = None,
    ) -> StockTransaction:
        """One-step transfer document: moves stock between warehouses on approval."""
        if source_warehouse_id == destination_warehouse_id:
            raise SameWarehouseError(source_warehouse_id)

        with self._unit_of_work("transaction_create_transfer", actor_id):
            self._reference.require_active_warehouse(source_warehouse_id)
            self._reference.require_active_warehouse(destination_warehouse_id)
            if not items:
                raise EmptyDocumentError("Stock transaction")
            details = []
            for item in items:
                self._reference.require_active_product(item.product_id)
                details.append(
                    StockTransactionDetail(
                        product_id=item.product_id,
                        warehouse_id=source_warehouse_id,
                        quantity=item.quantity,
                        unit_price=item.unit_price,
                        batch_number=item.batch_number,
                        expiry_date=item.expiry_date,
                        notes=item.notes,
                    )
                )
            self._require_available(
                [StockLine(source_warehouse_id, d.product_id, d.quantity) for d in details]
            )
            txn = self._create(
                TransactionType.TRANSFER,
                source_warehouse_id,
                details,
                actor_id,
                transaction_date=transaction_date,
                source_warehouse_id=source_warehouse_id,
                destination_warehouse_id=destination_warehouse_id,
                reason=reason,
                notes=notes,
            )
        self.publish_created(txn, actor_id)
        return txn

    def create_stocktake(
        self,
        warehouse_id: UUID,
        items: Sequence[StocktakeLine],
        actor_id: UUID,
        transaction_date: date | None = None,
        notes: str | None = None,
    ) -> StockTransaction:
        """
        Physical count.  Each line stores the signed correction
        ``actual - system``; approval applies it to on-hand stock.
        """
        with self._unit_of_work("transaction_create_stocktake", actor_id):
            self._reference.require_active_warehouse(warehouse_id)
            if not items:
                raise EmptyDocumentError("Stocktake")
            details = []
            for item in items:
                self._reference.require_active_product(item.product_id)
                counted = f"System: {item.system_quantity}, Actual: {item.actual_quantity}"
                details.append(
                    StockTransactionDetail(
                        product_id=item.product_id,
                        warehouse_id=warehouse_id,
                        quantity=item.difference,
                        unit_price=item.unit_price,
                        system_quantity=item.system_quantity,
                        actual_quantity=item.actual_quantity,
                        notes=append_note(counted, item.notes),
                    )
                )
            txn = self._create(
                TransactionType.STOCKTAKE,
                warehouse_id,
                details,
                actor_id,
                transaction_date=transaction_date,
                notes=notes,
            )
        self.publish_created(txn, actor_id)
        return txn

    def record_approved_export(
        self,
        lines: Sequence[StockLine],
        unit_prices: Sequence[Decimal],
        actor_id: UUID,
        reference_type: str,
        reference_id: UUID,
        notes: str | None = None,
    ) -> StockTransaction:
        """
        Write an already-approved export document for stock that left
        through another workflow (e.g. a dispatched sales order).

        No ledger change happens here; the caller has applied it.  The
        caller also publishes the creation event (``publish_created``) once
        its own unit of work has succeeded.
        """
        if not lines:
            raise EmptyDocumentError("Stock transaction")
        details = [
            StockTransactionDetail(
                product_id=line.product_id,
                warehouse_id=line.warehouse_id,
                quantity=line.quantity,
                unit_price=price,
            )
            for line, price in zip(lines, unit_prices, strict=True)
        ]
        txn = self._create(
            TransactionType.EXPORT,
            lines[0].warehouse_id,
            details,
            actor_id,
            notes=notes,
            reference_type=reference_type,
            reference_id=reference_id,
            status=TransactionStatus.APPROVED,
        )
        return txn

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    @staticmethod
    def _ledger_deltas(txn: StockTransaction) -> list[LedgerDelta]:
        txn_type = TransactionType(txn.transaction_type)
        deltas = []
        for d in txn.details:
            if txn_type == TransactionType.IMPORT:
                deltas.append(LedgerDelta(d.warehouse_id, d.product_id, quantity_delta=d.quantity))
            elif txn_type in _OUTBOUND_TYPES:
                deltas.append(LedgerDelta(d.warehouse_id, d.product_id, quantity_delta=-d.quantity))
            elif txn_type == TransactionType.TRANSFER:
                deltas.append(
                    LedgerDelta(txn.source_warehouse_id, d.product_id, quantity_delta=-d.quantity)
                )
                deltas.append(
                    LedgerDelta(
                        txn.destination_warehouse_id, d.product_id, quantity_delta=d.quantity
                    )
                )
            elif d.quantity != 0:
                deltas.append(LedgerDelta(d.warehouse_id, d.product_id, quantity_delta=d.quantity))
        return deltas

    def approve(
        self,
        transaction_id: UUID,
        approver_id: UUID,
        notes: str | None = None,
    ) -> StockTransaction:
        """
        Approve a pending document and apply its ledger effect.

        Raises:
            StockTransactionNotFoundError
            InvalidStateTransitionError: already approved or cancelled.
            InsufficientInventoryError: a line can no longer be covered;
                nothing is applied and the document stays pending.
        """
        now = self._clock.now()
        with self._unit_of_work("transaction_approve", approver_id):
            self._claim_status(
                StockTransaction,
                transaction_id,
                "status",
                STOCK_TRANSACTION_WORKFLOW,
                "approve",
                StockTransactionNotFoundError,
                values={
                    "approved_by_id": approver_id,
                    "approved_at": now,
                    "updated_by_id": approver_id,
                },
                messages={
                    "approved": "Transaction is already approved",
                    "cancelled": "Transaction is already cancelled",
                },
            )
            txn = self._get(transaction_id)
            self._ledger.apply_deltas(self._ledger_deltas(txn), approver_id)
            if notes:
                txn.notes = append_note(txn.notes, notes)
                self.session.flush()

        logger.info(
            "stock_transaction_approved",
            extra={
                "transaction_id": str(transaction_id),
                "transaction_code": txn.transaction_code,
                "transaction_type": TransactionType(txn.transaction_type).value,
            },
        )
        self._publisher.publish(
            TransactionApproved(
                entity_id=txn.id,
                actor_id=approver_id,
                occurred_at=now,
                old_value={"status": TransactionStatus.PENDING.value},
                new_value=self._snapshot(txn),
                stock_pairs=self._stock_pairs(txn),
            )
        )
        return txn

    def cancel(
        self,
        transaction_id: UUID,
        actor_id: UUID,
        reason: str | None = None,
    ) -> StockTransaction:
        """
        Cancel a pending document.  No ledger effect.

        Raises:
            InvalidStateTransitionError: approved documents need a reversal
                transaction; cancelled ones are already final.
        """
        now = self._clock.now()
        with self._unit_of_work("transaction_cancel", actor_id):
            self._claim_status(
                StockTransaction,
                transaction_id,
                "status",
                STOCK_TRANSACTION_WORKFLOW,
                "cancel",
                StockTransactionNotFoundError,
                values={
                    "cancelled_by_id": actor_id,
                    "cancelled_at": now,
                    "updated_by_id": actor_id,
                },
                messages={
                    "approved": (
                        "Cannot cancel an approved transaction; "
                        "create a reversal transaction instead"
                    ),
                    "cancelled": "Transaction is already cancelled",
                },
            )
            txn = self._get(transaction_id)
            if reason:
                txn.notes = append_note(txn.notes, f"Cancelled: {reason}")
                self.session.flush()

        logger.info(
            "stock_transaction_cancelled",
            extra={"transaction_id": str(transaction_id), "reason": reason},
        )
        self._publisher.publish(
            TransactionCancelled(
                entity_id=txn.id,
                actor_id=actor_id,
                occurred_at=now,
                old_value={"status": TransactionStatus.PENDING.value},
                new_value={"status": TransactionStatus.CANCELLED.value, "reason": reason},
            )
        )
        return txn

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get(self, transaction_id: UUID) -> StockTransaction:
        return self._get(transaction_id)

    def list(
        self,
        transaction_type: TransactionType | None = None,
        warehouse_id: UUID | None = None,
        status: TransactionStatus | None = None,
        reference_id: UUID | None = None,
    ) -> list[StockTransaction]:
        """Documents matching every given filter, newest code first."""
        stmt = select(StockTransaction)
        if transaction_type is not None:
            stmt = stmt.where(StockTransaction.transaction_type == transaction_type)
        if warehouse_id is not None:
            stmt = stmt.where(StockTransaction.warehouse_id == warehouse_id)
        if status is not None:
            stmt = stmt.where(StockTransaction.status == status)
        if reference_id is not None:
            stmt = stmt.where(StockTransaction.reference_id == reference_id)
        stmt = stmt.order_by(StockTransaction.transaction_code.desc())
        return list(self.session.execute(stmt).scalars())
