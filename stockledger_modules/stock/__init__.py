"""
Stock Module (``stockledger_modules.stock``).

Stock movements that do not come from an adjustment or an order: manual
ledger entries (including stock received through the ledger) and bulk
decrements pushed by an external channel.
"""

from stockledger_modules.stock.models import (
    BulkDecrementFailure,
    BulkDecrementResult,
    DecrementedItem,
    ManualEntryResult,
    StockDecrement,
)
from stockledger_modules.stock.service import StockService

__all__ = [
    "BulkDecrementFailure",
    "BulkDecrementResult",
    "DecrementedItem",
    "ManualEntryResult",
    "StockDecrement",
    "StockService",
]
