"""
Orders Module Service (``stockledger_modules.orders.service``).

Responsibility
--------------
Places an order as one transaction. All referenced products are locked in
ascending id order before any cost layer is read, then each line:

1. is checked against the product's stock,
2. becomes an OrderItem at the product's price,
3. consumes FIFO layers linked to that item (legacy stock is backfilled
   first),
4. records the consumed weighted average as the item's unit cost,
5. decrements the product's stock and writes a stock_out ledger entry.

The order then writes a ``sale`` entry for the revenue and, when the cost of
goods is positive, an ``expense`` entry of ``-COGS``.

Order numbers
-------------
``ORD-001``, ``ORD-002``, ... per tenant, continuing from the highest number
the tenant already has. A unique constraint on (tenant_id, order_number)
rejects a duplicate from a concurrent placement; that IntegrityError
propagates like any other infrastructure failure.
"""

from __future__ import annotations

from collections.abc import Sequence
from datetime import datetime
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from stockledger_config.schema import CostingPolicy
from stockledger_kernel.domain.clock import Clock, SystemClock
from stockledger_kernel.exceptions import (
    InsufficientStockError,
    InvalidOrderError,
    InvalidQuantityError,
)
from stockledger_kernel.logging_config import LogContext, get_logger
from stockledger_kernel.models.ledger_entry import LedgerEntryType
from stockledger_kernel.models.order import OrderItemModel, OrderModel, OrderStatus
from stockledger_modules.orders.models import OrderLine, PlacedOrder, PlacedOrderLine
from stockledger_services.fifo_cost_service import FifoCostService
from stockledger_services.ledger_service import BalanceLedgerService
from stockledger_services.product_service import ProductService

logger = get_logger("modules.orders.service")


class OrderService:
    """
    Order placement with FIFO cost of goods.

    Contract
    --------
    ``place_order`` owns its transaction: commit on success, rollback and
    re-raise on any failure. No order, item, consumption or ledger row
    survives a failed placement.
    """

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        policy: CostingPolicy | None = None,
    ):
        self._session = session
        self._clock = clock or SystemClock()
        self._policy = policy or CostingPolicy()
        self._products = ProductService(session, clock=self._clock, policy=self._policy)
        self._fifo = FifoCostService(session, clock=self._clock, policy=self._policy)
        self._ledger = BalanceLedgerService(session, clock=self._clock)

    def place_order(
        self,
        tenant_id: UUID,
        actor_id: UUID,
        lines: Sequence[OrderLine],
        ordered_at: datetime | None = None,
        status: OrderStatus | str = OrderStatus.COMPLETED,
    ) -> PlacedOrder:
        """
        Raises:
            InvalidOrderError: no lines, or an unknown status.
            InvalidQuantityError: a line quantity that is not a positive integer.
            ProductNotFoundError: a line names a missing or deleted product.
            InsufficientStockError: a line asks for more than is on hand.
            InsufficientCostLayersError: layers cannot cover a line.
        """
        lines = list(lines)
        if not lines:
            raise InvalidOrderError("an order needs at least one line")
        try:
            order_status = OrderStatus(status)
        except ValueError:
            raise InvalidOrderError(f"unknown status {status!r}") from None
        for line in lines:
            if (
                isinstance(line.quantity, bool)
                or not isinstance(line.quantity, int)
                or line.quantity <= 0
            ):
                raise InvalidQuantityError(line.quantity, context="order line quantity")

        with LogContext.bind(tenant_id=tenant_id, actor_id=actor_id):
            try:
                placed = self._place(tenant_id, actor_id, lines, ordered_at, order_status)
                self._session.commit()
            except Exception:
                self._session.rollback()
                logger.warning(
                    "order_placement_rolled_back",
                    extra={"lines": len(lines)},
                    exc_info=True,
                )
                raise

            logger.info(
                "order_placed",
                extra={
                    "order_id": str(placed.order_id),
                    "order_number": placed.order_number,
                    "items_count": placed.items_count,
                    "total": placed.total,
                    "total_cogs": placed.total_cogs,
                },
            )
            return placed

    def next_order_number(self, tenant_id: UUID) -> str:
        numbers = self._session.scalars(
            select(OrderModel.order_number).where(OrderModel.tenant_id == tenant_id)
        )
        sequences = [
            seq
            for seq in (self._policy.parse_order_number(n) for n in numbers)
            if seq is not None
        ]
        return self._policy.format_order_number(max(sequences, default=0) + 1)

    # =========================================================================
    # Internal
    # =========================================================================

    def _place(
        self,
        tenant_id: UUID,
        actor_id: UUID,
        lines: list[OrderLine],
        ordered_at: datetime | None,
        status: OrderStatus,
    ) -> PlacedOrder:
        products = self._products.lock_products(
            tenant_id, [line.product_id for line in lines]
        )

        now = self._clock.now()
        order_number = self.next_order_number(tenant_id)
        order = OrderModel(
            tenant_id=tenant_id,
            order_number=order_number,
            ordered_at=ordered_at or now,
            status=status.value,
            items_count=0,
            total=0,
            created_at=now,
            created_by_id=actor_id,
        )
        self._session.add(order)
        self._session.flush()

        placed_lines: list[PlacedOrderLine] = []
        for position, line in enumerate(lines):
            product = products[line.product_id]
            if product.stock < line.quantity:
                raise InsufficientStockError(product.id, line.quantity, product.stock)

            item = OrderItemModel(
                order_id=order.id,
                product_id=product.id,
                position=position,
                quantity=line.quantity,
                unit_price=product.price,
                line_total=line.quantity * product.price,
            )
            self._session.add(item)
            self._session.flush()

            self._fifo.ensure_layers_exist(product, tenant_id)
            consumption = self._fifo.consume_layers(
                product.id,
                line.quantity,
                order_item_id=item.id,
            )
            item.unit_cost = consumption.weighted_average_cost

            product.stock -= line.quantity
            product.updated_at = now
            product.updated_by_id = actor_id

            balance_unit = self._fifo.get_weighted_average_cost(product.id)
            if balance_unit is None:
                balance_unit = product.fallback_unit_cost

            self._ledger.record(
                tenant_id=tenant_id,
                entry_type=LedgerEntryType.STOCK_OUT,
                description=f"Sold via {order_number}",
                product_id=product.id,
                order_id=order.id,
                quantity=-line.quantity,
                amount=consumption.total_cost,
                balance_qty=product.stock,
                balance_amount=balance_unit * product.stock,
                reference=order_number,
            )

            placed_lines.append(
                PlacedOrderLine(
                    order_item_id=item.id,
                    product_id=product.id,
                    quantity=line.quantity,
                    unit_price=item.unit_price,
                    unit_cost=item.unit_cost,
                    line_total=item.line_total,
                    cost_total=consumption.total_cost,
                    remaining_stock=product.stock,
                )
            )

        items_count = sum(l.quantity for l in placed_lines)
        total = sum(l.line_total for l in placed_lines)
        total_cogs = sum(l.cost_total for l in placed_lines)
        order.items_count = items_count
        order.total = total

        self._ledger.record(
            tenant_id=tenant_id,
            entry_type=LedgerEntryType.SALE,
            description=f"Sale {order_number}",
            order_id=order.id,
            quantity=items_count,
            amount=total,
            reference=order_number,
        )
        if total_cogs > 0:
            self._ledger.record(
                tenant_id=tenant_id,
                entry_type=LedgerEntryType.EXPENSE,
                description=f"COGS {order_number}",
                order_id=order.id,
                amount=-total_cogs,
                reference=order_number,
            )

        return PlacedOrder(
            order_id=order.id,
            order_number=order_number,
            status=status.value,
            items_count=items_count,
            total=total,
            total_cogs=total_cogs,
            lines=tuple(placed_lines),
        )
