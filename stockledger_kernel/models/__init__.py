"""ORM models for the stockledger kernel."""

from stockledger_kernel.models.adjustment import (
    AdjustmentType,
    InventoryAdjustmentModel,
)
from stockledger_kernel.models.cost_layer import (
    CostLayerConsumptionModel,
    CostLayerModel,
)
from stockledger_kernel.models.ledger_entry import (
    LedgerCategory,
    LedgerEntryModel,
    LedgerEntryType,
)
from stockledger_kernel.models.order import OrderItemModel, OrderModel, OrderStatus
from stockledger_kernel.models.product import ProductModel

__all__ = [
    "AdjustmentType",
    "CostLayerConsumptionModel",
    "CostLayerModel",
    "InventoryAdjustmentModel",
    "LedgerCategory",
    "LedgerEntryModel",
    "LedgerEntryType",
    "OrderItemModel",
    "OrderModel",
    "OrderStatus",
    "ProductModel",
]
