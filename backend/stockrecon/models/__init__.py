from .catalog import Branch, Category, Product
from .stock import StockLedgerRecord
from .reconciliation import ControlSession, ControlSessionLine, AdjustmentRequest, AdjustmentLine
from .audit import AuditRecord

__all__ = [
    'Branch', 'Category', 'Product',
    'StockLedgerRecord',
    'ControlSession', 'ControlSessionLine', 'AdjustmentRequest', 'AdjustmentLine',
    'AuditRecord',
]
