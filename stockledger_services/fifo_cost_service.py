"""
stockledger_services.fifo_cost_service -- FIFO cost layers over a SQLAlchemy session.

Responsibility:
    Create cost layers when stock arrives, consume them oldest first (or a
    named layer) when stock leaves, and answer weighted-average cost
    questions. Planning is delegated to the pure engine in
    ``stockledger_engines.fifo``; this service loads and locks rows, calls the
    engine, then applies the plan.

Transactions:
    The service never commits or rolls back. It runs inside the caller's
    transaction, flushes so that ids and constraint violations surface
    early, and relies on the caller's rollback when anything raises.

Locking:
    Layers selected for consumption are read with ``SELECT ... FOR UPDATE``.
    Callers lock the product row first (ProductService.lock_product), so the
    lock order is always product then layers. The same product lock
    serializes ``create_layer``, which numbers each product's layers 1, 2, 3,
    ... in insertion order; a unique (product_id, sequence) constraint backs
    that up.

Failure modes:
    - InvalidQuantityError / InvalidUnitCostError on bad arguments.
    - InsufficientCostLayersError(product_id, requested, available) when the
      layers cannot cover a consumption. Raised before any row changes.

Usage:
    fifo = FifoCostService(session, clock=clock)
    fifo.create_layer(product.id, tenant_id, quantity=20, unit_cost=5000)
    outcome = fifo.consume_layers(product.id, 25, order_item_id=item.id)
    outcome.total_cost, outcome.weighted_average_cost
"""

from __future__ import annotations

import time
from dataclasses import dataclass
from datetime import datetime
from typing import Any
from uuid import UUID

from sqlalchemy import exists, func, select
from sqlalchemy.orm import Session

from stockledger_config.schema import CostingPolicy
from stockledger_engines.fifo import (
    FifoPlan,
    LayerSnapshot,
    plan_fifo_consumption,
    plan_specific_consumption,
    weighted_average_cost,
)
from stockledger_kernel.domain.clock import Clock, SystemClock
from stockledger_kernel.exceptions import (
    InsufficientCostLayersError,
    InvalidQuantityError,
    InvalidUnitCostError,
)
from stockledger_kernel.logging_config import get_logger
from stockledger_kernel.models.cost_layer import (
    CostLayerConsumptionModel,
    CostLayerModel,
)
from stockledger_kernel.models.product import ProductModel

logger = get_logger("services.fifo_cost")


@dataclass(frozen=True)
class ConsumptionOutcome:
    """
    Consumption rows written for one request, plus the cost figures.

    ``total_cost`` feeds COGS ledger entries; ``weighted_average_cost`` is the
    unit cost recorded on the order line.
    """

    consumptions: tuple[CostLayerConsumptionModel, ...]
    total_cost: int
    weighted_average_cost: int

    @property
    def quantity(self) -> int:
        return sum(c.quantity_consumed for c in self.consumptions)


@dataclass(frozen=True)
class SetAdjustmentOutcome:
    """What a stock-count correction did: one new layer, one consumption, or nothing."""

    delta: int
    layer: CostLayerModel | None = None
    consumption: ConsumptionOutcome | None = None


class FifoCostService:
    """
    FIFO costing over persisted cost layers.

    Contract:
        Receives a Session (and optionally a Clock and CostingPolicy) via
        constructor injection. Runs inside the caller's transaction.
    Guarantees:
        - ``consume_layers`` draws from layers ordered by (acquired_at, sequence).
        - No layer's remaining quantity ever goes below zero.
        - A failed consumption leaves every layer untouched.
        - Every decrement is matched by one consumption row.
    Non-goals:
        - Does not touch Product.stock or Product.cost; orchestrators do.
        - Does not write balance ledger entries.
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

    # =========================================================================
    # Layer creation
    # =========================================================================

    def create_layer(
        self,
        product_id: UUID,
        tenant_id: UUID,
        quantity: int,
        unit_cost: int,
        source_adjustment_id: UUID | None = None,
        reference: str | None = None,
        acquired_at: datetime | None = None,
    ) -> CostLayerModel:
        """
        Persist a new layer with ``remaining_quantity == quantity``.

        ``acquired_at`` defaults to the clock's now. Together with the next
        per-product ``sequence`` it decides the layer's FIFO position.
        """
        if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity <= 0:
            raise InvalidQuantityError(quantity)
        if isinstance(unit_cost, bool) or not isinstance(unit_cost, int) or unit_cost < 0:
            raise InvalidUnitCostError(unit_cost)

        now = self._clock.now()
        layer = CostLayerModel(
            product_id=product_id,
            tenant_id=tenant_id,
            source_adjustment_id=source_adjustment_id,
            quantity_acquired=quantity,
            remaining_quantity=quantity,
            unit_cost=unit_cost,
            acquired_at=acquired_at or now,
            sequence=self._next_sequence(product_id),
            reference=reference,
            created_at=now,
        )
        self._session.add(layer)
        self._session.flush()

        logger.info(
            "cost_layer_created",
            extra={
                "cost_layer_id": str(layer.id),
                "product_id": str(product_id),
                "quantity": quantity,
                "unit_cost": unit_cost,
                "reference": reference,
                "acquired_at": layer.acquired_at.isoformat(),
                "sequence": layer.sequence,
            },
        )
        return layer

    # =========================================================================
    # Consumption
    # =========================================================================

    def consume_layers(
        self,
        product_id: UUID,
        quantity: int,
        order_item_id: UUID | None = None,
        adjustment_id: UUID | None = None,
    ) -> ConsumptionOutcome:
        """
        Consume ``quantity`` units oldest first.

        Raises:
            InvalidQuantityError: quantity is not a positive integer.
            InsufficientCostLayersError: active layers hold fewer units.
        """
        self._check_single_link(order_item_id, adjustment_id)
        t0 = time.monotonic()
        logger.info(
            "fifo_consumption_started",
            extra={"product_id": str(product_id), "quantity": quantity},
        )

        stmt = (
            select(CostLayerModel)
            .where(
                CostLayerModel.product_id == product_id,
                CostLayerModel.remaining_quantity > 0,
            )
            .order_by(CostLayerModel.acquired_at, CostLayerModel.sequence)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        layers = list(self._session.scalars(stmt))

        plan = plan_fifo_consumption(
            product_id=product_id,
            layers=[LayerSnapshot.from_model(layer) for layer in layers],
            quantity=quantity,
        )
        outcome = self._apply_plan(
            plan,
            {layer.id: layer for layer in layers},
            order_item_id=order_item_id,
            adjustment_id=adjustment_id,
        )

        logger.info(
            "fifo_consumption_completed",
            extra={
                "product_id": str(product_id),
                "quantity": quantity,
                "layers_consumed": len(outcome.consumptions),
                "total_cost": outcome.total_cost,
                "weighted_average_cost": outcome.weighted_average_cost,
                "duration_ms": round((time.monotonic() - t0) * 1000, 2),
            },
        )
        return outcome

    def consume_specific_layer(
        self,
        cost_layer_id: UUID,
        quantity: int,
        adjustment_id: UUID | None = None,
        order_item_id: UUID | None = None,
        product_id: UUID | None = None,
    ) -> ConsumptionOutcome:
        """
        Consume from one named layer, bypassing FIFO order.

        A missing, exhausted or short layer raises InsufficientCostLayersError
        and is left untouched. When ``product_id`` is given, a layer of any
        other product counts as unavailable.
        """
        self._check_single_link(order_item_id, adjustment_id)
        if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity <= 0:
            raise InvalidQuantityError(quantity)

        stmt = (
            select(CostLayerModel)
            .where(
                CostLayerModel.id == cost_layer_id,
                CostLayerModel.remaining_quantity > 0,
            )
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        layer = self._session.scalars(stmt).one_or_none()
        if layer is None:
            # Distinguish "exhausted" from "missing" for the error's product id
            layer = self._session.get(CostLayerModel, cost_layer_id)

        if product_id is not None and layer is not None and layer.product_id != product_id:
            logger.warning(
                "specific_layer_product_mismatch",
                extra={
                    "cost_layer_id": str(cost_layer_id),
                    "product_id": str(product_id),
                    "layer_product_id": str(layer.product_id),
                },
            )
            raise InsufficientCostLayersError(product_id, quantity, 0)

        snapshot = LayerSnapshot.from_model(layer) if layer is not None else None
        plan = plan_specific_consumption(layer=snapshot, quantity=quantity)
        outcome = self._apply_plan(
            plan,
            {layer.id: layer},
            order_item_id=order_item_id,
            adjustment_id=adjustment_id,
        )

        logger.info(
            "specific_layer_consumed",
            extra={
                "cost_layer_id": str(cost_layer_id),
                "product_id": str(layer.product_id),
                "quantity": quantity,
                "unit_cost": layer.unit_cost,
                "remaining_quantity": layer.remaining_quantity,
            },
        )
        return outcome

    def handle_set_adjustment(
        self,
        product: ProductModel,
        tenant_id: UUID,
        stock_before: int,
        stock_after: int,
        unit_cost: int | None = None,
        source_adjustment_id: UUID | None = None,
    ) -> SetAdjustmentOutcome:
        """
        Translate a stock count into an implicit add or remove.

        Call before writing ``stock_after`` to the product, so that legacy
        stock is backfilled from the pre-count quantity in either direction.
        """
        delta = stock_after - stock_before

        if delta > 0:
            self.ensure_layers_exist(product, tenant_id)
            cost = unit_cost if unit_cost is not None else product.fallback_unit_cost
            reference = (
                self._policy.adjustment_reference(source_adjustment_id)
                if source_adjustment_id is not None
                else None
            )
            layer = self.create_layer(
                product_id=product.id,
                tenant_id=tenant_id,
                quantity=delta,
                unit_cost=cost,
                source_adjustment_id=source_adjustment_id,
                reference=reference,
            )
            return SetAdjustmentOutcome(delta=delta, layer=layer)

        if delta < 0:
            self.ensure_layers_exist(product, tenant_id)
            consumption = self.consume_layers(
                product.id,
                abs(delta),
                adjustment_id=source_adjustment_id,
            )
            return SetAdjustmentOutcome(delta=delta, consumption=consumption)

        logger.debug(
            "set_adjustment_no_change",
            extra={"product_id": str(product.id), "stock": stock_after},
        )
        return SetAdjustmentOutcome(delta=0)

    # =========================================================================
    # Queries
    # =========================================================================

    def get_active_layers(self, product_id: UUID) -> list[CostLayerModel]:
        """Layers with stock left, in FIFO order. No lock."""
        stmt = (
            select(CostLayerModel)
            .where(
                CostLayerModel.product_id == product_id,
                CostLayerModel.remaining_quantity > 0,
            )
            .order_by(CostLayerModel.acquired_at, CostLayerModel.sequence)
        )
        return list(self._session.scalars(stmt))

    def get_weighted_average_cost(self, product_id: UUID) -> int | None:
        return weighted_average_cost(
            [LayerSnapshot.from_model(l) for l in self.get_active_layers(product_id)]
        )

    def has_active_layers(self, product_id: UUID) -> bool:
        stmt = select(
            exists().where(
                CostLayerModel.product_id == product_id,
                CostLayerModel.remaining_quantity > 0,
            )
        )
        return bool(self._session.scalar(stmt))

    # =========================================================================
    # Legacy stock
    # =========================================================================

    def ensure_layers_exist(
        self,
        product: ProductModel,
        tenant_id: UUID | None = None,
        acquired_at: datetime | None = None,
    ) -> CostLayerModel | None:
        """
        Give pre-FIFO stock a layer so it can be consumed.

        When the product has stock but no active layer, create one layer for
        the full stock at ``cost`` (or ``price``), tagged with the migration
        reference and dated at the product's creation, ahead of any later
        receipt. Otherwise do nothing. Calling twice creates at most one layer.
        """
        if product.stock <= 0 or self.has_active_layers(product.id):
            return None

        layer = self.create_layer(
            product_id=product.id,
            tenant_id=tenant_id or product.tenant_id,
            quantity=product.stock,
            unit_cost=product.fallback_unit_cost,
            reference=self._policy.migration_reference,
            acquired_at=acquired_at or product.created_at,
        )
        logger.warning(
            "legacy_stock_layer_created",
            extra={
                "product_id": str(product.id),
                "cost_layer_id": str(layer.id),
                "quantity": product.stock,
            },
        )
        return layer

    def backfill_legacy_layers(self, tenant_id: UUID | None = None) -> int:
        """
        Create migration layers for every stocked product that has none.

        Products are locked while they are examined.
        Returns the number of layers created.
        """
        stmt = (
            select(ProductModel)
            .where(
                ProductModel.deleted_at.is_(None),
                ProductModel.stock > 0,
            )
            .order_by(ProductModel.id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        if tenant_id is not None:
            stmt = stmt.where(ProductModel.tenant_id == tenant_id)

        created = 0
        for product in list(self._session.scalars(stmt)):
            layer = self.ensure_layers_exist(product)
            if layer is not None:
                created += 1

        logger.info(
            "legacy_layer_backfill_completed",
            extra={
                "tenant_id": str(tenant_id) if tenant_id else None,
                "layers_created": created,
            },
        )
        return created

    # =========================================================================
    # Internal
    # =========================================================================

    def _next_sequence(self, product_id: UUID) -> int:
        """One past the product's highest layer sequence, pending layers included."""
        current = self._session.scalar(
            select(func.max(CostLayerModel.sequence)).where(
                CostLayerModel.product_id == product_id
            )
        )
        return (current or 0) + 1

    @staticmethod
    def _check_single_link(order_item_id: Any, adjustment_id: Any) -> None:
        if order_item_id is not None and adjustment_id is not None:
            raise ValueError(
                "A consumption links to an order item or an adjustment, not both"
            )

    def _apply_plan(
        self,
        plan: FifoPlan,
        layers_by_id: dict[UUID, CostLayerModel],
        order_item_id: UUID | None,
        adjustment_id: UUID | None,
    ) -> ConsumptionOutcome:
        now = self._clock.now()
        consumptions: list[CostLayerConsumptionModel] = []
        for draw in plan.draws:
            layer = layers_by_id[draw.layer_id]
            layer.remaining_quantity = draw.remaining_after
            consumption = CostLayerConsumptionModel(
                cost_layer_id=layer.id,
                order_item_id=order_item_id,
                adjustment_id=adjustment_id,
                quantity_consumed=draw.quantity,
                unit_cost=draw.unit_cost,
                created_at=now,
            )
            self._session.add(consumption)
            consumptions.append(consumption)

            logger.debug(
                "layer_consumed",
                extra={
                    "cost_layer_id": str(layer.id),
                    "quantity": draw.quantity,
                    "unit_cost": draw.unit_cost,
                    "remaining_quantity": draw.remaining_after,
                },
            )

        self._session.flush()
        return ConsumptionOutcome(
            consumptions=tuple(consumptions),
            total_cost=plan.total_cost,
            weighted_average_cost=plan.weighted_average_cost,
        )
