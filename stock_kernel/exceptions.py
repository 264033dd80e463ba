"""
Typed Exception Hierarchy for the Stock Kernel.

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

All exceptions inherit from StockKernelError:

    StockKernelError (base)
    |
    +-- NotFoundError
    |   +-- WarehouseNotFoundError
    |   +-- ProductNotFoundError
    |   +-- CustomerNotFoundError
    |   +-- InventoryRecordNotFoundError
    |   +-- StockTransactionNotFoundError
    |   +-- SalesOrderNotFoundError
    |   +-- StockTransferNotFoundError
    |
    +-- ValidationError
    |   +-- InactiveEntityError
    |   +-- InsufficientInventoryError
    |   +-- InvalidQuantityError
    |   +-- SameWarehouseError
    |   +-- EmptyDocumentError
    |   +-- PaymentExceedsBalanceError
    |   +-- CreditLimitExceededError
    |   +-- InvalidStateTransitionError
    |
    +-- ConflictError
    |   +-- ReservationConflictError
    |   +-- ConcurrentModificationError
    |
    +-- AuditError
        +-- AuditChainBrokenError

===============================================================================
ERROR CODES
===============================================================================

Every class carries a ``code`` class attribute so callers (HTTP adapters,
log pipelines, tests) can branch on the type without parsing messages:

    NOT_FOUND family        -> 404-style responses
    VALIDATION family       -> 400-style responses, entity state untouched
    CONFLICT family         -> 409-style responses, safe to retry the whole
                               operation after re-reading
    AUDIT family            -> tamper alerts

Context lives in attributes, never only in the message string.
===============================================================================
"""

from decimal import Decimal
from typing import Any


class StockKernelError(Exception):
    """
    Base exception for all stock kernel errors.

    All subclasses must have a ``code`` class attribute for machine-readable
    error identification.
    """

    code: str = "STOCK_KERNEL_ERROR"


# Not-found exceptions


class NotFoundError(StockKernelError):
    """Base exception for missing entities."""

    code: str = "NOT_FOUND"

    def __init__(self, resource: str, resource_id: Any):
        self.resource = resource
        self.resource_id = str(resource_id)
        super().__init__(f"{resource} not found: {resource_id}")


class WarehouseNotFoundError(NotFoundError):
    code: str = "WAREHOUSE_NOT_FOUND"

    def __init__(self, warehouse_id: Any):
        super().__init__("Warehouse", warehouse_id)


class ProductNotFoundError(NotFoundError):
    code: str = "PRODUCT_NOT_FOUND"

    def __init__(self, product_id: Any):
        super().__init__("Product", product_id)


class CustomerNotFoundError(NotFoundError):
    code: str = "CUSTOMER_NOT_FOUND"

    def __init__(self, customer_id: Any):
        super().__init__("Customer", customer_id)


class InventoryRecordNotFoundError(NotFoundError):
    """No inventory record exists for a (warehouse, product) pair."""

    code: str = "INVENTORY_RECORD_NOT_FOUND"

    def __init__(self, warehouse_id: Any, product_id: Any):
        self.warehouse_id = str(warehouse_id)
        self.product_id = str(product_id)
        super().__init__("Inventory record", f"{warehouse_id}/{product_id}")


class StockTransactionNotFoundError(NotFoundError):
    code: str = "STOCK_TRANSACTION_NOT_FOUND"

    def __init__(self, transaction_id: Any):
        super().__init__("Stock transaction", transaction_id)


class SalesOrderNotFoundError(NotFoundError):
    code: str = "SALES_ORDER_NOT_FOUND"

    def __init__(self, order_id: Any):
        super().__init__("Sales order", order_id)


class StockTransferNotFoundError(NotFoundError):
    code: str = "STOCK_TRANSFER_NOT_FOUND"

    def __init__(self, transfer_id: Any):
        super().__init__("Stock transfer", transfer_id)


# Validation exceptions


class ValidationError(StockKernelError):
    """
    Base exception for business-rule violations.

    Raising any ValidationError leaves every touched entity exactly as it was
    before the operation began.
    """

    code: str = "VALIDATION_ERROR"

    def __init__(self, message: str, details: dict | None = None):
        self.details = details or {}
        super().__init__(message)


class InactiveEntityError(ValidationError):
    """A warehouse, product or customer is not active."""

    code: str = "INACTIVE_ENTITY"

    def __init__(self, entity_type: str, entity_id: Any, status: str):
        self.entity_type = entity_type
        self.entity_id = str(entity_id)
        self.status = status
        super().__init__(
            f"{entity_type} {entity_id} is not active (status: {status})",
        )


class InsufficientInventoryError(ValidationError):
    """
    Requested quantity exceeds what the ledger can give.

    ``items`` holds one dict per short line with warehouse_id, product_id,
    requested and available, so callers can render every shortage at once.
    """

    code: str = "INSUFFICIENT_INVENTORY"

    def __init__(self, items: list[dict[str, Any]], message: str | None = None):
        self.items = items
        if message is None:
            if len(items) == 1:
                item = items[0]
                message = (
                    f"Insufficient inventory for product {item['product_id']} "
                    f"in warehouse {item['warehouse_id']}: "
                    f"requested {item['requested']}, available {item['available']}"
                )
            else:
                message = f"Insufficient inventory for {len(items)} item(s)"
        super().__init__(message, details={"unavailable_items": items})


class InvalidQuantityError(ValidationError):
    code: str = "INVALID_QUANTITY"

    def __init__(self, quantity: Any, reason: str = "must be positive"):
        self.quantity = quantity
        super().__init__(f"Invalid quantity {quantity}: {reason}")


class SameWarehouseError(ValidationError):
    """Transfer source and destination are the same warehouse."""

    code: str = "SAME_WAREHOUSE"

    def __init__(self, warehouse_id: Any):
        self.warehouse_id = str(warehouse_id)
        super().__init__("Source and destination warehouses must be different")


class EmptyDocumentError(ValidationError):
    code: str = "EMPTY_DOCUMENT"

    def __init__(self, document_type: str):
        self.document_type = document_type
        super().__init__(f"{document_type} must contain at least one item")


class PaymentExceedsBalanceError(ValidationError):
    code: str = "PAYMENT_EXCEEDS_BALANCE"

    def __init__(self, amount: Decimal, balance: Decimal):
        self.amount = amount
        self.balance = balance
        super().__init__(
            f"Payment amount {amount} exceeds remaining balance {balance}"
        )


class CreditLimitExceededError(ValidationError):
    code: str = "CREDIT_LIMIT_EXCEEDED"

    def __init__(
        self,
        customer_id: Any,
        credit_limit: Decimal,
        current_debt: Decimal,
        new_debt: Decimal,
    ):
        self.customer_id = str(customer_id)
        self.credit_limit = credit_limit
        self.current_debt = current_debt
        self.new_debt = new_debt
        super().__init__(
            f"Customer credit limit exceeded: current debt {current_debt}, "
            f"new debt {new_debt}, limit {credit_limit}"
        )


class InvalidStateTransitionError(ValidationError):
    """A document is not in a state from which the action is legal."""

    code: str = "INVALID_STATE_TRANSITION"

    def __init__(
        self,
        entity_type: str,
        entity_id: Any,
        current_status: str,
        action: str,
        message: str | None = None,
    ):
        self.entity_type = entity_type
        self.entity_id = str(entity_id)
        self.current_status = current_status
        self.action = action
        super().__init__(
            message
            or f"Cannot {action} {entity_type} {entity_id}: status is {current_status}"
        )


# Conflict exceptions


class ConflictError(StockKernelError):
    """Base exception for state conflicts between concurrent or repeated calls."""

    code: str = "CONFLICT"


class ReservationConflictError(ConflictError):
    """Releasing more than is currently reserved (typically a double release)."""

    code: str = "RESERVATION_CONFLICT"

    def __init__(
        self,
        warehouse_id: Any,
        product_id: Any,
        requested_release: Decimal | int,
        reserved: Decimal | int,
    ):
        self.warehouse_id = str(warehouse_id)
        self.product_id = str(product_id)
        self.requested_release = requested_release
        self.reserved = reserved
        super().__init__(
            f"Cannot release {requested_release} of product {product_id} in "
            f"warehouse {warehouse_id}: only {reserved} reserved"
        )


class ConcurrentModificationError(ConflictError):
    """A conditional update matched no row although the entity exists."""

    code: str = "CONCURRENT_MODIFICATION"

    def __init__(self, entity_type: str, entity_id: Any):
        self.entity_type = entity_type
        self.entity_id = str(entity_id)
        super().__init__(
            f"{entity_type} {entity_id} was modified by another transaction"
        )


# Audit exceptions


class AuditError(StockKernelError):
    code: str = "AUDIT_ERROR"


class AuditChainBrokenError(AuditError):
    """Audit hash chain validation failed."""

    code: str = "AUDIT_CHAIN_BROKEN"

    def __init__(self, audit_event_id: str, expected_hash: str, actual_hash: str):
        self.audit_event_id = audit_event_id
        self.expected_hash = expected_hash
        self.actual_hash = actual_hash
        super().__init__(
            f"Audit chain broken at {audit_event_id}: "
            f"expected {expected_hash}, found {actual_hash}"
        )
