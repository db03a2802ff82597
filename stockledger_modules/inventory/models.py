"""
Inventory DTOs (``stockledger_modules.inventory.models``).

Frozen value objects returned to callers. They carry ids and figures, never
ORM instances, so they stay valid after the session closes.
"""

from dataclasses import dataclass
from uuid import UUID

from stockledger_kernel.models.adjustment import AdjustmentType


@dataclass(frozen=True)
class AdjustmentResult:
    adjustment_id: UUID
    product_id: UUID
    type: AdjustmentType
    quantity: int
    stock_before: int
    stock_after: int
    cost_after: int | None
    ledger_entry_id: UUID
    ledger_amount: int
    # Layer created by an add, or by a set that increased stock
    cost_layer_id: UUID | None = None
    # Units and cost drawn by a remove, or by a set that decreased stock
    consumed_quantity: int = 0
    consumed_cost: int = 0

    @property
    def delta(self) -> int:
        return self.stock_after - self.stock_before
