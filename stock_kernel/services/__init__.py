"""Services for the stock kernel (write side)."""

from stock_kernel.services.auditor_service import AuditorService, AuditTrace
from stock_kernel.services.event_publisher import (
    CacheInvalidator,
    EventPublisher,
    EventSink,
    NullCacheInvalidator,
)
from stock_kernel.services.inventory_ledger import InventoryLedger
from stock_kernel.services.reference_data_service import (
    CustomerInfo,
    ProductInfo,
    ReferenceDataService,
    WarehouseInfo,
)
from stock_kernel.services.sales_order_service import (
    OrderAvailabilityWarning,
    SalesOrderService,
)
from stock_kernel.services.sequence_service import SequenceService
from stock_kernel.services.stock_transaction_service import StockTransactionService
from stock_kernel.services.stock_transfer_service import StockTransferService

__all__ = [
    "AuditTrace",
    "AuditorService",
    "CacheInvalidator",
    "CustomerInfo",
    "EventPublisher",
    "EventSink",
    "InventoryLedger",
    "NullCacheInvalidator",
    "OrderAvailabilityWarning",
    "ProductInfo",
    "ReferenceDataService",
    "SalesOrderService",
    "SequenceService",
    "StockTransactionService",
    "StockTransferService",
    "WarehouseInfo",
]
