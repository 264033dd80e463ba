"""ORM models for the stock kernel."""

from stock_kernel.models.audit_event import AuditAction, AuditEvent
from stock_kernel.models.customer import Customer, CustomerStatus
from stock_kernel.models.inventory import InventoryRecord
from stock_kernel.models.product import Product, ProductStatus
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
from stock_kernel.models.sequence_counter import SequenceCounter
from stock_kernel.models.stock_transaction import (
    StockTransaction,
    StockTransactionDetail,
    TransactionStatus,
    TransactionType,
)
from stock_kernel.models.stock_transfer import (
    StockTransfer,
    StockTransferDetail,
    TransferStatus,
)
from stock_kernel.models.warehouse import Warehouse, WarehouseStatus, WarehouseType

__all__ = [
    "AuditAction",
    "AuditEvent",
    "Customer",
    "CustomerStatus",
    "Delivery",
    "DeliveryStatus",
    "DeliveryType",
    "InventoryRecord",
    "OrderStatus",
    "PaymentMethod",
    "PaymentReceipt",
    "PaymentStatus",
    "Product",
    "ProductStatus",
    "SalesOrder",
    "SalesOrderDetail",
    "SequenceCounter",
    "StockTransaction",
    "StockTransactionDetail",
    "StockTransfer",
    "StockTransferDetail",
    "TransactionStatus",
    "TransactionType",
    "Warehouse",
    "WarehouseStatus",
    "WarehouseType",
]
