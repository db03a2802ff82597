"""Order DTOs (``stockledger_modules.orders.models``)."""

from dataclasses import dataclass
from uuid import UUID


@dataclass(frozen=True)
class OrderLine:
    """A requested line: which product and how many."""

    product_id: UUID
    quantity: int


@dataclass(frozen=True)
class PlacedOrderLine:
    order_item_id: UUID
    product_id: UUID
    quantity: int
    unit_price: int
    # FIFO weighted average of the consumed layers
    unit_cost: int
    line_total: int
    cost_total: int
    remaining_stock: int


@dataclass(frozen=True)
class PlacedOrder:
    order_id: UUID
    order_number: str
    status: str
    items_count: int
    total: int
    total_cogs: int
    lines: tuple[PlacedOrderLine, ...]

    @property
    def gross_margin(self) -> int:
        return self.total - self.total_cogs
