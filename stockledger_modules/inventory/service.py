"""
Inventory Module Service (``stockledger_modules.inventory.service``).

Responsibility
--------------
Applies one manual stock adjustment as a single transaction: the adjustment
record, the cost-layer creation or consumption, the product's new stock and
weighted-average cost, and one balance ledger entry.

Transaction boundary
--------------------
``adjust`` commits on success. Any exception, including
InsufficientCostLayersError raised after the adjustment row was flushed, rolls
everything back before it propagates.

Ledger conventions
------------------
============  ==========  ============================  ===============================
type          ledger      quantity                      amount
============  ==========  ============================  ===============================
add           stock_in    +quantity                     layer unit cost * quantity
remove        stock_out   -quantity                     FIFO total cost of units removed
set           adjustment  stock_after - stock_before    unit cost * abs(delta)
============  ==========  ============================  ===============================

For ``set`` the unit cost is the explicit ``unit_cost``, else the new
weighted average, else the product's cost, else its price. Every entry
snapshots ``balance_qty = stock_after`` and
``balance_amount = (weighted average or cost or price) * stock_after``.
"""

from __future__ import annotations

from uuid import UUID

from sqlalchemy.orm import Session

from stockledger_config.schema import CostingPolicy
from stockledger_kernel.domain.clock import Clock, SystemClock
from stockledger_kernel.exceptions import (
    InsufficientStockError,
    InvalidAdjustmentError,
    InvalidUnitCostError,
)
from stockledger_kernel.logging_config import LogContext, get_logger
from stockledger_kernel.models.adjustment import AdjustmentType, InventoryAdjustmentModel
from stockledger_kernel.models.ledger_entry import LedgerEntryType
from stockledger_modules.inventory.models import AdjustmentResult
from stockledger_services.fifo_cost_service import ConsumptionOutcome, FifoCostService
from stockledger_services.ledger_service import BalanceLedgerService
from stockledger_services.product_service import ProductService

logger = get_logger("modules.inventory.service")

_LEDGER_TYPES = {
    AdjustmentType.ADD: LedgerEntryType.STOCK_IN,
    AdjustmentType.REMOVE: LedgerEntryType.STOCK_OUT,
    AdjustmentType.SET: LedgerEntryType.ADJUSTMENT,
}

DEFAULT_DESCRIPTION = "Stock adjustment"


class InventoryAdjustmentService:
    """
    Orchestrates stock adjustments through the FIFO cost service.

    Contract
    --------
    Locks the product row before reading its stock, then touches cost layers
    only through FifoCostService, so the lock order is product then layers.

    Guarantees
    ----------
    - ``remove`` never changes Product.cost; what remains keeps its basis.
    - ``add`` and ``set`` write back the weighted average of the active
      layers, or leave cost unchanged when no layer is active.
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

    def adjust(
        self,
        tenant_id: UUID,
        actor_id: UUID,
        product_id: UUID,
        type: AdjustmentType | str,
        quantity: int,
        unit_cost: int | None = None,
        cost_layer_id: UUID | None = None,
        note: str | None = None,
    ) -> AdjustmentResult:
        """
        Apply an add, remove or set adjustment.

        Raises:
            InvalidAdjustmentError: unknown type, or a quantity out of range
                (add and remove need > 0, set needs >= 0), or a cost layer
                named on anything but a remove.
            InvalidUnitCostError: negative or non-integer ``unit_cost``.
            ProductNotFoundError: product missing for the tenant, or deleted.
            InsufficientStockError: the result would be below zero.
            InsufficientCostLayersError: layers cannot cover a removal.
        """
        adjustment_type = self._validate(type, quantity, unit_cost, cost_layer_id)

        with LogContext.bind(tenant_id=tenant_id, actor_id=actor_id):
            try:
                result = self._apply(
                    tenant_id,
                    actor_id,
                    product_id,
                    adjustment_type,
                    quantity,
                    unit_cost,
                    cost_layer_id,
                    note,
                )
                self._session.commit()
            except Exception:
                self._session.rollback()
                logger.warning(
                    "inventory_adjustment_rolled_back",
                    extra={
                        "product_id": str(product_id),
                        "adjustment_type": adjustment_type.value,
                        "quantity": quantity,
                    },
                    exc_info=True,
                )
                raise

            logger.info(
                "inventory_adjustment_completed",
                extra={
                    "adjustment_id": str(result.adjustment_id),
                    "product_id": str(product_id),
                    "adjustment_type": adjustment_type.value,
                    "stock_before": result.stock_before,
                    "stock_after": result.stock_after,
                    "ledger_amount": result.ledger_amount,
                },
            )
            return result

    # =========================================================================
    # Internal
    # =========================================================================

    @staticmethod
    def _validate(
        type: AdjustmentType | str,
        quantity: int,
        unit_cost: int | None,
        cost_layer_id: UUID | None,
    ) -> AdjustmentType:
        try:
            adjustment_type = AdjustmentType(type)
        except ValueError:
            raise InvalidAdjustmentError(f"unknown adjustment type {type!r}") from None

        if isinstance(quantity, bool) or not isinstance(quantity, int):
            raise InvalidAdjustmentError(f"quantity must be an integer, got {quantity!r}")
        if adjustment_type is AdjustmentType.SET:
            if quantity < 0:
                raise InvalidAdjustmentError("counted quantity cannot be negative")
        elif quantity <= 0:
            raise InvalidAdjustmentError(
                "quantity must be greater than zero for add or remove"
            )

        if unit_cost is not None and (
            isinstance(unit_cost, bool) or not isinstance(unit_cost, int) or unit_cost < 0
        ):
            raise InvalidUnitCostError(unit_cost)
        if cost_layer_id is not None and adjustment_type is not AdjustmentType.REMOVE:
            raise InvalidAdjustmentError("a cost layer can only be targeted by remove")
        return adjustment_type

    def _apply(
        self,
        tenant_id: UUID,
        actor_id: UUID,
        product_id: UUID,
        adjustment_type: AdjustmentType,
        quantity: int,
        unit_cost: int | None,
        cost_layer_id: UUID | None,
        note: str | None,
    ) -> AdjustmentResult:
        product = self._products.lock_product(tenant_id, product_id)

        stock_before = product.stock
        if adjustment_type is AdjustmentType.ADD:
            stock_after = stock_before + quantity
        elif adjustment_type is AdjustmentType.REMOVE:
            stock_after = stock_before - quantity
        else:
            stock_after = quantity
        if stock_after < 0:
            raise InsufficientStockError(product_id, quantity, stock_before)

        now = self._clock.now()
        adjustment = InventoryAdjustmentModel(
            tenant_id=tenant_id,
            product_id=product.id,
            type=adjustment_type.value,
            quantity=quantity,
            stock_before=stock_before,
            stock_after=stock_after,
            unit_cost=unit_cost,
            cost_layer_id=cost_layer_id,
            note=note,
            created_at=now,
            created_by_id=actor_id,
        )
        self._session.add(adjustment)
        self._session.flush()
        reference = self._policy.adjustment_reference(adjustment.id)

        created_layer_id: UUID | None = None
        consumption: ConsumptionOutcome | None = None

        if adjustment_type is AdjustmentType.ADD:
            self._fifo.ensure_layers_exist(product, tenant_id)
            layer_cost = unit_cost if unit_cost is not None else product.fallback_unit_cost
            layer = self._fifo.create_layer(
                product_id=product.id,
                tenant_id=tenant_id,
                quantity=quantity,
                unit_cost=layer_cost,
                source_adjustment_id=adjustment.id,
                reference=reference,
            )
            created_layer_id = layer.id
            ledger_amount = layer_cost * quantity
            self._write_back(product, stock_after, recompute_cost=True)

        elif adjustment_type is AdjustmentType.REMOVE:
            if cost_layer_id is not None:
                consumption = self._fifo.consume_specific_layer(
                    cost_layer_id,
                    quantity,
                    adjustment_id=adjustment.id,
                    product_id=product.id,
                )
            else:
                self._fifo.ensure_layers_exist(product, tenant_id)
                consumption = self._fifo.consume_layers(
                    product.id,
                    quantity,
                    adjustment_id=adjustment.id,
                )
            ledger_amount = consumption.total_cost
            self._write_back(product, stock_after, recompute_cost=False)

        else:
            outcome = self._fifo.handle_set_adjustment(
                product,
                tenant_id,
                stock_before,
                stock_after,
                unit_cost=unit_cost,
                source_adjustment_id=adjustment.id,
            )
            if outcome.layer is not None:
                created_layer_id = outcome.layer.id
            consumption = outcome.consumption
            weighted_avg = self._write_back(product, stock_after, recompute_cost=True)
            if unit_cost is not None:
                cost_per_unit = unit_cost
            elif weighted_avg is not None:
                cost_per_unit = weighted_avg
            else:
                cost_per_unit = product.fallback_unit_cost
            ledger_amount = cost_per_unit * abs(stock_after - stock_before)

        product.updated_at = now
        product.updated_by_id = actor_id

        ledger_qty = {
            AdjustmentType.ADD: quantity,
            AdjustmentType.REMOVE: -quantity,
            AdjustmentType.SET: stock_after - stock_before,
        }[adjustment_type]

        balance_unit = self._fifo.get_weighted_average_cost(product.id)
        if balance_unit is None:
            balance_unit = product.fallback_unit_cost

        entry = self._ledger.record(
            tenant_id=tenant_id,
            entry_type=_LEDGER_TYPES[adjustment_type],
            description=f"{note or DEFAULT_DESCRIPTION} ({adjustment_type.value} {quantity})",
            product_id=product.id,
            adjustment_id=adjustment.id,
            quantity=ledger_qty,
            amount=ledger_amount,
            balance_qty=stock_after,
            balance_amount=balance_unit * stock_after,
            reference=reference,
        )

        return AdjustmentResult(
            adjustment_id=adjustment.id,
            product_id=product.id,
            type=adjustment_type,
            quantity=quantity,
            stock_before=stock_before,
            stock_after=stock_after,
            cost_after=product.cost,
            ledger_entry_id=entry.id,
            ledger_amount=ledger_amount,
            cost_layer_id=created_layer_id,
            consumed_quantity=consumption.quantity if consumption else 0,
            consumed_cost=consumption.total_cost if consumption else 0,
        )

    def _write_back(self, product, stock_after: int, recompute_cost: bool) -> int | None:
        """Set stock and, if asked, cost := weighted average. Returns the average."""
        product.stock = stock_after
        if not recompute_cost:
            return None
        weighted_avg = self._fifo.get_weighted_average_cost(product.id)
        if weighted_avg is not None:
            product.cost = weighted_avg
        return weighted_avg
