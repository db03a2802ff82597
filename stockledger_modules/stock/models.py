"""Stock DTOs (``stockledger_modules.stock.models``)."""

from dataclasses import dataclass, field
from uuid import UUID


@dataclass(frozen=True)
class ManualEntryResult:
    ledger_entry_id: UUID
    type: str
    category: str
    quantity: int | None
    amount: int | None
    balance_qty: int | None
    reference: str | None
    # Set when a stock_in entry received units into a new layer
    cost_layer_id: UUID | None = None


@dataclass(frozen=True)
class StockDecrement:
    product_id: UUID
    quantity: int


@dataclass(frozen=True)
class DecrementedItem:
    product_id: UUID
    quantity: int
    remaining_stock: int
    cost_total: int


@dataclass(frozen=True)
class BulkDecrementFailure:
    """One item that was skipped, and why.

    ``requested`` is the item's quantity. ``available`` is set for stock and
    cost-layer shortfalls.
    """

    product_id: UUID
    error: str
    code: str
    available: int | None = None
    requested: int | None = None


@dataclass(frozen=True)
class BulkDecrementResult:
    updated: tuple[DecrementedItem, ...] = field(default_factory=tuple)
    errors: tuple[BulkDecrementFailure, ...] = field(default_factory=tuple)

    @property
    def ok(self) -> bool:
        return not self.errors
