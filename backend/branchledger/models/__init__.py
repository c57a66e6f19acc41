from .tenancy import Tenant, Branch
from .inventory import (
    MovementType, StockTrackingMode, SerialStatus, DEPLETING_MOVEMENTS,
    Product, StockSnapshot, StockLedgerEntry, SerialUnit,
)
from .billing import Bill, BillItem, InvoiceSequence

__all__ = [
    'Tenant', 'Branch',
    'MovementType', 'StockTrackingMode', 'SerialStatus', 'DEPLETING_MOVEMENTS',
    'Product', 'StockSnapshot', 'StockLedgerEntry', 'SerialUnit',
    'Bill', 'BillItem', 'InvoiceSequence',
]
