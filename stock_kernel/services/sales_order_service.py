"""
SalesOrderService -- sales order fulfillment.

Responsibility:
    Drives a sales order through

        pending -> preparing -> delivering -> completed
        pending | preparing -> cancelled

    and keeps inventory, the linked Delivery and the customer's running
    debt consistent with each step:

        create (delivery)  reserved += q          debt += unpaid
        create (pickup)    quantity -= q          debt += unpaid
        dispatch           quantity -= q, reserved -= q   (commit point)
        complete           no inventory change
        cancel             reserved -= q          debt -= debt_amount
        payment            paid += a              debt -= a

Invariants enforced:
    - 0 <= paid_amount <= total_amount.
    - debt_amount == total_amount - paid_amount until the order is cancelled
      or deleted, when it drops to zero with the matching customer debt.
    - An order out for delivery is never cancelled; a failed delivery is
      recorded with ``fail_delivery`` and returned stock comes back through
      an import document.
    - Status changes are conditional UPDATEs on the expected source state.

Failure modes:
    - InactiveEntityError: customer, warehouse or product not active.
    - InsufficientInventoryError: reservation or pickup short of stock.
    - PaymentExceedsBalanceError, CreditLimitExceededError.
    - InvalidStateTransitionError on any out-of-order step.
"""

from collections.abc import Sequence
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import Any
from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from stock_kernel.config import EngineConfig
from stock_kernel.db.types import ZERO, round_money
from stock_kernel.domain.clock import Clock, SystemClock
from stock_kernel.domain.dtos import LedgerDelta, OrderLine, StockLine
from stock_kernel.domain.events import (
    DeliveryFailed,
    OrderApproved,
    OrderCancelled,
    OrderCompleted,
    OrderCreated,
    OrderDeleted,
    OrderDispatched,
    OrderUpdated,
    PaymentReceived,
)
from stock_kernel.domain.pricing import compute_line_amounts, compute_order_totals
from stock_kernel.domain.workflows import DELIVERY_WORKFLOW, SALES_ORDER_WORKFLOW
from stock_kernel.exceptions import (
    ConcurrentModificationError,
    CreditLimitExceededError,
    CustomerNotFoundError,
    EmptyDocumentError,
    InvalidStateTransitionError,
    NotFoundError,
    PaymentExceedsBalanceError,
    SalesOrderNotFoundError,
    ValidationError,
)
from stock_kernel.logging_config import get_logger
from stock_kernel.models.customer import Customer
from stock_kernel.models.sales_order import (
    Delivery,
    DeliveryStatus,
    DeliveryType,
    OrderStatus,
    PaymentMethod,
    PaymentReceipt,
    PaymentStatus,
    SalesOrder,
    SalesOrderDetail,
)
from stock_kernel.services.base import BaseService
from stock_kernel.services.event_publisher import EventPublisher
from stock_kernel.services.inventory_ledger import InventoryLedger
from stock_kernel.services.reference_data_service import ReferenceDataService
from stock_kernel.services.sequence_service import SequenceService
from stock_kernel.services.stock_transaction_service import (
    StockTransactionService,
    append_note,
)

logger = get_logger("services.sales_order")

_MAX_ATTEMPTS = 3

SALES_ORDER_REFERENCE = "sales_order"


def payment_status_for(paid_amount: Decimal, total_amount: Decimal) -> PaymentStatus:
    if paid_amount <= 0:
        return PaymentStatus.UNPAID
    if paid_amount >= total_amount:
        return PaymentStatus.PAID
    return PaymentStatus.PARTIAL


def _delivery_not_found(delivery_id: UUID) -> NotFoundError:
    return NotFoundError("Delivery", delivery_id)


@dataclass(frozen=True)
class OrderAvailabilityWarning:
    """One order line that current stock cannot cover."""

    product_id: UUID
    warehouse_id: UUID
    requested: Decimal | int
    available: Decimal | int

    @property
    def message(self) -> str:
        return (
            f"Product {self.product_id} in warehouse {self.warehouse_id}: "
            f"requested {self.requested}, available {self.available}"
        )


class SalesOrderService(BaseService[SalesOrder]):
    """
    Sales orders, their delivery and their payments.

    Each public mutation is one savepoint on the caller's session and
    publishes one domain event after the savepoint is released.
    """

    def __init__(
        self,
        session: Session,
        ledger: InventoryLedger,
        transactions: StockTransactionService,
        publisher: EventPublisher | None = None,
        clock: Clock | None = None,
        config: EngineConfig | None = None,
        reference_data: ReferenceDataService | None = None,
    ):
        super().__init__(session)
        self._ledger = ledger
        self._transactions = transactions
        self._publisher = publisher or EventPublisher()
        self._clock = clock or SystemClock()
        self._config = config or EngineConfig.with_defaults()
        self._reference = reference_data or ReferenceDataService(session)
        self._sequence = SequenceService(session)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _get(self, order_id: UUID) -> SalesOrder:
        order = self._reload(SalesOrder, order_id)
        if order is None:
            raise SalesOrderNotFoundError(order_id)
        if order.delivery is not None:
            # Delivery status moves through bulk UPDATEs too.
            self._reload(Delivery, order.delivery.id)
        return order

    @staticmethod
    def _lines(order: SalesOrder) -> list[StockLine]:
        return [StockLine(d.warehouse_id, d.product_id, d.quantity) for d in order.details]

    @staticmethod
    def _stock_pairs(order: SalesOrder) -> tuple[tuple[UUID, UUID], ...]:
        return tuple(dict.fromkeys((d.warehouse_id, d.product_id) for d in order.details))

    @staticmethod
    def _snapshot(order: SalesOrder) -> dict[str, Any]:
        return {
            "order_code": order.order_code,
            "order_status": OrderStatus(order.order_status).value,
            "payment_status": PaymentStatus(order.payment_status).value,
            "total_amount": str(order.total_amount),
            "paid_amount": str(order.paid_amount),
            "debt_amount": str(order.debt_amount),
            "lines": [
                {
                    "product_id": str(d.product_id),
                    "warehouse_id": str(d.warehouse_id),
                    "quantity": d.quantity,
                    "line_amount": str(d.line_amount),
                }
                for d in order.details
            ],
        }

    def _is_deferred(self, payment_method: PaymentMethod) -> bool:
        return PaymentMethod(payment_method).value in self._config.deferred_payment_methods

    def _move_debt(
        self,
        customer_id: UUID,
        delta: Decimal,
        actor_id: UUID,
        enforce_limit: bool = False,
    ) -> Decimal | None:
        """
        Add ``delta`` to the customer's current_debt.

        The write is conditional on the balance it was computed from, and is
        retried against the fresh balance if another writer got there first.
        Returns the new balance, or None for a zero delta.
        """
        if delta == 0:
            return None

        for attempt in range(_MAX_ATTEMPTS):
            customer = self._reload(Customer, customer_id)
            if customer is None:
                raise CustomerNotFoundError(customer_id)
            old_debt = customer.current_debt
            new_debt = round_money(old_debt + delta)
            if new_debt < 0:
                raise ValidationError(
                    "Customer debt cannot become negative",
                    details={"customer_id": str(customer_id), "delta": str(delta)},
                )
            if enforce_limit and delta > 0 and new_debt > customer.credit_limit:
                logger.warning(
                    "credit_limit_exceeded",
                    extra={
                        "customer_id": str(customer_id),
                        "current_debt": str(old_debt),
                        "credit_limit": str(customer.credit_limit),
                        "delta": str(delta),
                    },
                )
                raise CreditLimitExceededError(
                    customer_id, customer.credit_limit, old_debt, delta
                )

            result = self.session.execute(
                update(Customer)
                .where(Customer.id == customer_id)
                .where(Customer.current_debt == old_debt)
                .values(
                    current_debt=new_debt,
                    debt_updated_at=self._clock.now(),
                    updated_by_id=actor_id,
                )
                .execution_options(synchronize_session=False)
            )
            if result.rowcount == 1:
                logger.info(
                    "customer_debt_changed",
                    extra={
                        "customer_id": str(customer_id),
                        "delta": str(delta),
                        "current_debt": str(new_debt),
                    },
                )
                return new_debt
            logger.debug(
                "customer_debt_retry",
                extra={"customer_id": str(customer_id), "attempt": attempt + 1},
            )

        raise ConcurrentModificationError("Customer", customer_id)

    def _guarded_update(
        self,
        order: SalesOrder,
        action: str,
        values: dict[str, Any],
        message: str,
        allowed: tuple[OrderStatus, ...] = (OrderStatus.PENDING,),
    ) -> None:
        """
        Write ``values`` only if the order still has the status and paid
        amount it was read with, and that status is in ``allowed``.
        """
        status = OrderStatus(order.order_status)
        if status not in allowed:
            raise InvalidStateTransitionError(
                "SalesOrder", order.id, status.value, action, message
            )
        result = self.session.execute(
            update(SalesOrder)
            .where(SalesOrder.id == order.id)
            .where(SalesOrder.order_status == status)
            .where(SalesOrder.paid_amount == order.paid_amount)
            .values(values)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            raise ConcurrentModificationError("SalesOrder", order.id)

    def _write_receipt(
        self,
        order: SalesOrder,
        amount: Decimal,
        payment_method: PaymentMethod,
        actor_id: UUID,
        notes: str | None = None,
    ) -> PaymentReceipt:
        receipt = PaymentReceipt(
            receipt_code=self._sequence.next_code(
                self._config.receipt_code_prefix, self._clock.today()
            ),
            order_id=order.id,
            customer_id=order.customer_id,
            amount=amount,
            payment_method=payment_method,
            paid_at=self._clock.now(),
            notes=notes,
            created_by_id=actor_id,
        )
        self.session.add(receipt)
        self.session.flush()
        return receipt

    # ------------------------------------------------------------------
    # Creation
    # ------------------------------------------------------------------

    def check_availability(
        self, items: Sequence[OrderLine]
    ) -> list[OrderAvailabilityWarning]:
        """
        Preview which lines current stock cannot cover.

        Advisory and read-only.  ``create`` reserves (or, for pickup,
        removes) stock itself and fails if it cannot.
        """
        report = self._ledger.check_availability(
            StockLine(i.warehouse_id, i.product_id, i.quantity) for i in items
        )
        return [
            OrderAvailabilityWarning(
                product_id=item.product_id,
                warehouse_id=item.warehouse_id,
                requested=item.requested,
                available=max(item.available, 0),
            )
            for item in report.unavailable_items
        ]

    def create(
        self,
        customer_id: UUID,
        items: Sequence[OrderLine],
        actor_id: UUID,
        payment_method: PaymentMethod = PaymentMethod.CASH,
        delivery_type: DeliveryType = DeliveryType.DELIVERY,
        paid_amount: Decimal = ZERO,
        shipping_fee: Decimal = ZERO,
        discount_amount: Decimal = ZERO,
        delivery_address: str | None = None,
        order_date: date | None = None,
        notes: str | None = None,
    ) -> SalesOrder:
        """
        Place an order.

        Delivery orders are persisted ``pending`` with every line reserved
        and a pending Delivery.  Pickup orders are persisted ``completed``
        and their stock leaves immediately.  In both cases the unpaid
        remainder is added to the customer's debt, and a non-zero
        ``paid_amount`` produces a payment receipt.

        Lines current stock cannot cover are logged as
        ``order_availability_warning`` before stock is taken; taking it
        then fails the whole create.

        Raises:
            EmptyDocumentError, InactiveEntityError,
            PaymentExceedsBalanceError, CreditLimitExceededError,
            InsufficientInventoryError.
        """
        if not items:
            raise EmptyDocumentError("Sales order")
        payment_method = PaymentMethod(payment_method)
        delivery_type = DeliveryType(delivery_type)
        if paid_amount < 0:
            raise ValidationError("Paid amount cannot be negative")

        now = self._clock.now()
        today = self._clock.today()
        is_pickup = delivery_type == DeliveryType.PICKUP

        with self._unit_of_work("order_create", actor_id):
            self._reference.require_active_customer(customer_id)

            details = []
            amounts = []
            for item in items:
                self._reference.require_active_warehouse(item.warehouse_id)
                product = self._reference.require_active_product(item.product_id)
                unit_price = (
                    item.unit_price if item.unit_price is not None else product.selling_price
                )
                line = compute_line_amounts(
                    item.quantity, unit_price, item.discount_percent, product.tax_rate
                )
                amounts.append(line)
                details.append(
                    SalesOrderDetail(
                        line_no=len(details) + 1,
                        product_id=item.product_id,
                        warehouse_id=item.warehouse_id,
                        quantity=item.quantity,
                        unit_price=unit_price,
                        discount_percent=item.discount_percent,
                        tax_rate=product.tax_rate,
                        discount_amount=line.discount,
                        tax_amount=line.tax,
                        line_amount=line.total,
                        created_by_id=actor_id,
                    )
                )

            for warning in self.check_availability(items):
                logger.warning(
                    "order_availability_warning",
                    extra={
                        "product_id": str(warning.product_id),
                        "warehouse_id": str(warning.warehouse_id),
                        "requested": warning.requested,
                        "available": warning.available,
                    },
                )

            totals = compute_order_totals(amounts, shipping_fee, discount_amount)
            total = totals.total
            paid = round_money(paid_amount)
            if paid > total:
                raise PaymentExceedsBalanceError(paid, total)
            unpaid = total - paid

            order = SalesOrder(
                order_code=self._sequence.next_code(self._config.order_code_prefix, today),
                customer_id=customer_id,
                order_date=order_date or today,
                order_status=OrderStatus.COMPLETED if is_pickup else OrderStatus.PENDING,
                payment_status=payment_status_for(paid, total),
                delivery_type=delivery_type,
                payment_method=payment_method,
                subtotal=totals.subtotal,
                tax_amount=totals.tax_amount,
                discount_amount=totals.discount_amount,
                shipping_fee=totals.shipping_fee,
                total_amount=total,
                paid_amount=paid,
                debt_amount=unpaid,
                delivery_address=delivery_address,
                notes=notes,
                completed_at=now if is_pickup else None,
                created_by_id=actor_id,
            )
            order.details.extend(details)
            self.session.add(order)
            self.session.flush()

            self._move_debt(
                customer_id, unpaid, actor_id, enforce_limit=self._is_deferred(payment_method)
            )

            lines = self._lines(order)
            export = None
            if is_pickup:
                self._ledger.apply_deltas(
                    (
                        LedgerDelta(line.warehouse_id, line.product_id, quantity_delta=-line.quantity)
                        for line in lines
                    ),
                    actor_id,
                )
                export = self._transactions.record_approved_export(
                    lines,
                    [d.unit_price for d in order.details],
                    actor_id,
                    reference_type=SALES_ORDER_REFERENCE,
                    reference_id=order.id,
                    notes=f"Pickup for sales order {order.order_code}",
                )
            else:
                self._ledger.reserve(lines, actor_id)
                self.session.add(
                    Delivery(
                        delivery_code=self._sequence.next_code(
                            self._config.delivery_code_prefix, today
                        ),
                        order_id=order.id,
                        status=DeliveryStatus.PENDING,
                        delivery_address=delivery_address,
                        created_by_id=actor_id,
                    )
                )
                self.session.flush()

            if paid > 0:
                self._write_receipt(order, paid, payment_method, actor_id)

            order = self._get(order.id)

        logger.info(
            "order_created",
            extra={
                "order_id": str(order.id),
                "order_code": order.order_code,
                "delivery_type": delivery_type.value,
                "total_amount": str(total),
                "paid_amount": str(paid),
                "line_count": len(details),
            },
        )
        if export is not None:
            self._transactions.publish_created(export, actor_id)
        self._publisher.publish(
            OrderCreated(
                entity_id=order.id,
                actor_id=actor_id,
                occurred_at=now,
                new_value=self._snapshot(order),
                stock_pairs=self._stock_pairs(order),
                customer_id=customer_id,
            )
        )
        return order

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def approve(
        self,
        order_id: UUID,
        actor_id: UUID,
        notes: str | None = None,
    ) -> SalesOrder:
        """pending -> preparing.  Approval stamp only; no inventory effect."""
        now = self._clock.now()
        with self._unit_of_work("order_approve", actor_id):
            self._claim_status(
                SalesOrder,
                order_id,
                "order_status",
                SALES_ORDER_WORKFLOW,
                "approve",
                SalesOrderNotFoundError,
                values={"approved_by_id": actor_id, "approved_at": now, "updated_by_id": actor_id},
                messages={"preparing": "Order is already approved"},
            )
            order = self._get(order_id)
            if notes:
                order.notes = append_note(order.notes, notes)
                self.session.flush()

        logger.info("order_approved", extra={"order_id": str(order_id)})
        self._publisher.publish(
            OrderApproved(
                entity_id=order_id,
                actor_id=actor_id,
                occurred_at=now,
                old_value={"order_status": OrderStatus.PENDING.value},
                new_value={"order_status": OrderStatus.PREPARING.value},
            )
        )
        return order

    def advance_to_delivering(self, order_id: UUID, actor_id: UUID) -> SalesOrder:
        """
        preparing -> delivering: the commit point.

        Reserved stock leaves the warehouse (quantity and reserved both drop
        by each line's quantity), an approved export document records the
        movement and the Delivery goes in transit.
        """
        now = self._clock.now()
        with self._unit_of_work("order_advance_to_delivering", actor_id):
            self._claim_status(
                SalesOrder,
                order_id,
                "order_status",
                SALES_ORDER_WORKFLOW,
                "dispatch",
                SalesOrderNotFoundError,
                values={"dispatched_at": now, "updated_by_id": actor_id},
                messages={
                    "pending": "Order must be approved before it is dispatched",
                    "delivering": "Order is already out for delivery",
                },
            )
            order = self._get(order_id)
            lines = self._lines(order)
            self._ledger.commit_reserved(lines, actor_id)
            export = self._transactions.record_approved_export(
                lines,
                [d.unit_price for d in order.details],
                actor_id,
                reference_type=SALES_ORDER_REFERENCE,
                reference_id=order.id,
                notes=f"Dispatch for sales order {order.order_code}",
            )
            if order.delivery is not None:
                self._claim_status(
                    Delivery,
                    order.delivery.id,
                    "status",
                    DELIVERY_WORKFLOW,
                    "ship",
                    _delivery_not_found,
                    values={"shipped_at": now, "updated_by_id": actor_id},
                )
            order = self._get(order_id)

        logger.info(
            "order_dispatched",
            extra={
                "order_id": str(order_id),
                "transaction_code": export.transaction_code,
            },
        )
        self._transactions.publish_created(export, actor_id)
        self._publisher.publish(
            OrderDispatched(
                entity_id=order_id,
                actor_id=actor_id,
                occurred_at=now,
                old_value={"order_status": OrderStatus.PREPARING.value},
                new_value={
                    "order_status": OrderStatus.DELIVERING.value,
                    "transaction_id": str(export.id),
                },
                stock_pairs=self._stock_pairs(order),
            )
        )
        return order

    def complete(self, order_id: UUID, actor_id: UUID) -> SalesOrder:
        """
        delivering -> completed.  No inventory change; the Delivery is
        marked delivered unless it was already recorded as failed.
        """
        now = self._clock.now()
        with self._unit_of_work("order_complete", actor_id):
            self._claim_status(
                SalesOrder,
                order_id,
                "order_status",
                SALES_ORDER_WORKFLOW,
                "complete",
                SalesOrderNotFoundError,
                values={"completed_at": now, "updated_by_id": actor_id},
                messages={"completed": "Order is already completed"},
            )
            order = self._get(order_id)
            delivery = order.delivery
            if delivery is not None and delivery.status == DeliveryStatus.IN_TRANSIT:
                self._claim_status(
                    Delivery,
                    delivery.id,
                    "status",
                    DELIVERY_WORKFLOW,
                    "deliver",
                    _delivery_not_found,
                    values={"delivered_at": now, "updated_by_id": actor_id},
                )
            order = self._get(order_id)

        logger.info("order_completed", extra={"order_id": str(order_id)})
        self._publisher.publish(
            OrderCompleted(
                entity_id=order_id,
                actor_id=actor_id,
                occurred_at=now,
                old_value={"order_status": OrderStatus.DELIVERING.value},
                new_value={
                    "order_status": OrderStatus.COMPLETED.value,
                    "payment_status": PaymentStatus(order.payment_status).value,
                },
            )
        )
        return order

    def cancel(
        self,
        order_id: UUID,
        actor_id: UUID,
        reason: str | None = None,
    ) -> SalesOrder:
        """
        pending | preparing -> cancelled.

        Releases the reservation, reverses the debt the order still
        carries and fails the pending Delivery.  Rejected once the order is
        out for delivery or finished.
        """
        now = self._clock.now()
        with self._unit_of_work("order_cancel", actor_id):
            previous = self._get(order_id).order_status
            self._claim_status(
                SalesOrder,
                order_id,
                "order_status",
                SALES_ORDER_WORKFLOW,
                "cancel",
                SalesOrderNotFoundError,
                values={
                    "cancelled_by_id": actor_id,
                    "cancelled_at": now,
                    "cancellation_reason": reason,
                    "updated_by_id": actor_id,
                },
                messages={
                    "delivering": (
                        "Cannot cancel an order that is out for delivery; "
                        "complete it or record a failed delivery"
                    ),
                    "completed": "Cannot cancel a completed order",
                    "cancelled": "Order is already cancelled",
                },
            )
            order = self._get(order_id)
            self._ledger.release(self._lines(order), actor_id)

            reversed_debt = order.debt_amount
            self._move_debt(order.customer_id, -reversed_debt, actor_id)
            order.debt_amount = ZERO

            if order.delivery is not None:
                self._claim_status(
                    Delivery,
                    order.delivery.id,
                    "status",
                    DELIVERY_WORKFLOW,
                    "fail",
                    _delivery_not_found,
                    values={
                        "failure_reason": append_note("Order cancelled", reason),
                        "updated_by_id": actor_id,
                    },
                )
            self.session.flush()
            order = self._get(order_id)

        logger.info(
            "order_cancelled",
            extra={
                "order_id": str(order_id),
                "reason": reason,
                "reversed_debt": str(reversed_debt),
            },
        )
        self._publisher.publish(
            OrderCancelled(
                entity_id=order_id,
                actor_id=actor_id,
                occurred_at=now,
                old_value={
                    "order_status": OrderStatus(previous).value,
                    "debt_amount": str(reversed_debt),
                },
                new_value={"order_status": OrderStatus.CANCELLED.value, "reason": reason},
                stock_pairs=self._stock_pairs(order),
                customer_id=order.customer_id,
            )
        )
        return order

    def fail_delivery(
        self,
        order_id: UUID,
        actor_id: UUID,
        reason: str,
    ) -> SalesOrder:
        """
        Record that the shipment of a delivering order failed.

        The order stays ``delivering``; its stock has already left, so any
        goods that come back are received with an import document.
        """
        if not reason:
            raise ValidationError("A failure reason is required")

        with self._unit_of_work("order_fail_delivery", actor_id):
            order = self._get(order_id)
            status = OrderStatus(order.order_status)
            if status != OrderStatus.DELIVERING or order.delivery is None:
                raise InvalidStateTransitionError(
                    "SalesOrder",
                    order_id,
                    status.value,
                    "fail_delivery",
                    "Only orders out for delivery can record a failed delivery",
                )
            self._claim_status(
                Delivery,
                order.delivery.id,
                "status",
                DELIVERY_WORKFLOW,
                "fail",
                _delivery_not_found,
                values={"failure_reason": reason, "updated_by_id": actor_id},
                messages={"failed": "Delivery is already recorded as failed"},
            )
            order = self._get(order_id)

        logger.warning(
            "delivery_failed",
            extra={"order_id": str(order_id), "reason": reason},
        )
        self._publisher.publish(
            DeliveryFailed(
                entity_id=order_id,
                actor_id=actor_id,
                occurred_at=self._clock.now(),
                old_value={"delivery_status": DeliveryStatus.IN_TRANSIT.value},
                new_value={"delivery_status": DeliveryStatus.FAILED.value, "reason": reason},
            )
        )
        return order

    # ------------------------------------------------------------------
    # Payments
    # ------------------------------------------------------------------

    def process_payment(
        self,
        order_id: UUID,
        amount: Decimal,
        payment_method: PaymentMethod,
        actor_id: UUID,
        notes: str | None = None,
    ) -> PaymentReceipt:
        """
        Apply a payment to an order.

        Raises:
            ValidationError: non-positive amount.
            InvalidStateTransitionError: the order is cancelled.
            PaymentExceedsBalanceError: more than the remaining balance.
        """
        amount = round_money(amount)
        if amount <= 0:
            raise ValidationError("Payment amount must be positive")
        payment_method = PaymentMethod(payment_method)

        with self._unit_of_work("order_process_payment", actor_id):
            order = self._get(order_id)
            if order.order_status == OrderStatus.CANCELLED:
                raise InvalidStateTransitionError(
                    "SalesOrder",
                    order_id,
                    OrderStatus.CANCELLED.value,
                    "pay",
                    "Cannot record a payment for a cancelled order",
                )
            remaining = order.remaining_amount
            if amount > remaining:
                raise PaymentExceedsBalanceError(amount, remaining)

            new_paid = order.paid_amount + amount
            self._guarded_update(
                order,
                "pay",
                {
                    "paid_amount": new_paid,
                    "debt_amount": max(order.debt_amount - amount, ZERO),
                    "payment_status": payment_status_for(new_paid, order.total_amount),
                    "updated_by_id": actor_id,
                },
                "Cannot record a payment for a cancelled order",
                allowed=(
                    OrderStatus.PENDING,
                    OrderStatus.PREPARING,
                    OrderStatus.DELIVERING,
                    OrderStatus.COMPLETED,
                ),
            )
            self._move_debt(order.customer_id, -min(amount, order.debt_amount), actor_id)
            receipt = self._write_receipt(order, amount, payment_method, actor_id, notes)
            order = self._get(order_id)

        logger.info(
            "payment_received",
            extra={
                "order_id": str(order_id),
                "receipt_code": receipt.receipt_code,
                "amount": str(amount),
                "payment_status": PaymentStatus(order.payment_status).value,
            },
        )
        self._publisher.publish(
            PaymentReceived(
                entity_id=order_id,
                actor_id=actor_id,
                occurred_at=receipt.paid_at,
                old_value={"paid_amount": str(new_paid - amount)},
                new_value={
                    "paid_amount": str(new_paid),
                    "amount": str(amount),
                    "receipt_code": receipt.receipt_code,
                    "payment_status": PaymentStatus(order.payment_status).value,
                },
                customer_id=order.customer_id,
            )
        )
        return receipt

    # ------------------------------------------------------------------
    # Edits
    # ------------------------------------------------------------------

    def update(
        self,
        order_id: UUID,
        actor_id: UUID,
        notes: str | None = None,
        delivery_address: str | None = None,
        shipping_fee: Decimal | None = None,
        discount_amount: Decimal | None = None,
    ) -> SalesOrder:
        """
        Edit a pending order.  None leaves a field unchanged.

        A changed fee or discount recomputes the total and moves the
        customer's debt by the difference.
        """
        now = self._clock.now()
        with self._unit_of_work("order_update", actor_id):
            order = self._get(order_id)
            old_value = self._snapshot(order)

            fee = order.shipping_fee if shipping_fee is None else shipping_fee
            discount = order.discount_amount if discount_amount is None else discount_amount
            if fee < 0:
                raise ValidationError("Shipping fee cannot be negative")
            if discount < 0:
                raise ValidationError("Order discount cannot be negative")
            new_total = round_money(order.subtotal + fee - discount)
            if new_total < 0:
                raise ValidationError("Order discount exceeds order value")
            if order.paid_amount > new_total:
                raise PaymentExceedsBalanceError(order.paid_amount, new_total)

            values: dict[str, Any] = {
                "shipping_fee": round_money(fee),
                "discount_amount": round_money(discount),
                "total_amount": new_total,
                "debt_amount": new_total - order.paid_amount,
                "payment_status": payment_status_for(order.paid_amount, new_total),
                "updated_by_id": actor_id,
            }
            if notes is not None:
                values["notes"] = notes
            if delivery_address is not None:
                values["delivery_address"] = delivery_address

            self._guarded_update(
                order, "update", values, "Can only update orders with pending status"
            )
            self._move_debt(
                order.customer_id,
                new_total - order.total_amount,
                actor_id,
                enforce_limit=self._is_deferred(order.payment_method),
            )
            if delivery_address is not None and order.delivery is not None:
                order.delivery.delivery_address = delivery_address
                self.session.flush()
            order = self._get(order_id)

        logger.info(
            "order_updated",
            extra={"order_id": str(order_id), "total_amount": str(order.total_amount)},
        )
        self._publisher.publish(
            OrderUpdated(
                entity_id=order_id,
                actor_id=actor_id,
                occurred_at=now,
                old_value=old_value,
                new_value=self._snapshot(order),
                customer_id=order.customer_id,
            )
        )
        return order

    def delete(self, order_id: UUID, actor_id: UUID) -> None:
        """
        Remove a pending order that has taken no payment.

        Releases its reservation and reverses its debt.  Orders that have
        received money must be cancelled instead so their receipts survive.
        """
        now = self._clock.now()
        with self._unit_of_work("order_delete", actor_id):
            order = self._get(order_id)
            if order.paid_amount > 0 or order.receipts:
                raise InvalidStateTransitionError(
                    "SalesOrder",
                    order_id,
                    OrderStatus(order.order_status).value,
                    "delete",
                    "Cannot delete an order that has received payments; cancel it instead",
                )
            self._guarded_update(
                order,
                "delete",
                {"updated_by_id": actor_id},
                "Can only delete orders with pending status",
            )
            old_value = self._snapshot(order)
            stock_pairs = self._stock_pairs(order)
            self._ledger.release(self._lines(order), actor_id)
            self._move_debt(order.customer_id, -order.debt_amount, actor_id)
            self.session.delete(order)
            self.session.flush()

        logger.info("order_deleted", extra={"order_id": str(order_id)})
        self._publisher.publish(
            OrderDeleted(
                entity_id=order_id,
                actor_id=actor_id,
                occurred_at=now,
                old_value=old_value,
                stock_pairs=stock_pairs,
                customer_id=order.customer_id,
            )
        )

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get(self, order_id: UUID) -> SalesOrder:
        return self._get(order_id)

    def list(
        self,
        customer_id: UUID | None = None,
        order_status: OrderStatus | None = None,
    ) -> list[SalesOrder]:
        stmt = select(SalesOrder)
        if customer_id is not None:
            stmt = stmt.where(SalesOrder.customer_id == customer_id)
        if order_status is not None:
            stmt = stmt.where(SalesOrder.order_status == order_status)
        stmt = stmt.order_by(SalesOrder.order_code.desc())
        return list(self.session.execute(stmt).scalars())
