"""
Inventory Module (``stockledger_modules.inventory``).

Manual stock adjustments: ``add`` receives stock into a new cost layer,
``remove`` writes stock off FIFO or from a named layer, ``set`` records a
physical count and turns the difference into an implicit add or remove.
"""

from stockledger_modules.inventory.models import AdjustmentResult
from stockledger_modules.inventory.service import InventoryAdjustmentService

__all__ = [
    "AdjustmentResult",
    "InventoryAdjustmentService",
]
