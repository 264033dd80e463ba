"""
Stock Kernel

Inventory reservation and stock movement engine with:
- Per (warehouse, product) on-hand and reserved quantities
- Auditable stock movement documents
- Sales order fulfillment with customer debt bookkeeping
- Warehouse-to-warehouse transfers
- Hash-chained audit trail fed from domain events
"""

__version__ = "0.1.0"
