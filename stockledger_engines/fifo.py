"""
FIFO consumption planning over cost-layer snapshots.

Pure functions: given the active layers of one product and a quantity, decide
which layers are drawn and at what cost. The caller (FifoCostService) has
already locked the layer rows and applies the plan afterwards, so a plan that
raises leaves nothing to undo.

Ordering:
    Layers are consumed by ``(acquired_at, sequence)`` ascending, where
    ``sequence`` is the layer's insertion order within its product. Layers
    acquired at the same instant are therefore drawn in the order they were
    received. The id string is a last resort for snapshots that share both.

Rounding:
    ``round_half_up`` is the one rounding rule: exact integer division,
    halves rounded away from zero. Both the consumption average and the
    on-hand weighted average use it.

Failure modes:
    - InvalidQuantityError when quantity is not a positive integer.
    - InsufficientCostLayersError(product_id, requested, available) when the
      active layers hold fewer units than requested. ``available`` is the true
      sum of remaining quantities.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from datetime import datetime
from typing import Any
from uuid import UUID

from stockledger_engines.tracer import traced_engine
from stockledger_kernel.exceptions import (
    InsufficientCostLayersError,
    InvalidQuantityError,
)
from stockledger_kernel.logging_config import get_logger

logger = get_logger("engines.fifo")


def round_half_up(numerator: int, denominator: int) -> int:
    """
    Divide two integers and round half away from zero.

    >>> round_half_up(5, 2)
    3
    >>> round_half_up(-5, 2)
    -3
    >>> round_half_up(280000, 50)
    5600
    """
    if denominator <= 0:
        raise ValueError(f"denominator must be positive, got {denominator}")
    quotient, remainder = divmod(abs(numerator), denominator)
    if remainder * 2 >= denominator:
        quotient += 1
    return quotient if numerator >= 0 else -quotient


def _require_positive_quantity(quantity: Any) -> int:
    if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity <= 0:
        raise InvalidQuantityError(quantity)
    return quantity


@dataclass(frozen=True, slots=True)
class LayerSnapshot:
    """Read-only view of a cost layer as the planner needs it."""

    layer_id: UUID
    product_id: UUID
    acquired_at: datetime
    remaining_quantity: int
    unit_cost: int
    sequence: int = 0

    def __post_init__(self) -> None:
        if self.remaining_quantity < 0:
            raise ValueError(
                f"remaining_quantity cannot be negative: {self.remaining_quantity}"
            )
        if self.unit_cost < 0:
            raise ValueError(f"unit_cost cannot be negative: {self.unit_cost}")

    @classmethod
    def from_model(cls, layer: Any) -> LayerSnapshot:
        return cls(
            layer_id=layer.id,
            product_id=layer.product_id,
            acquired_at=layer.acquired_at,
            remaining_quantity=layer.remaining_quantity,
            unit_cost=layer.unit_cost,
            sequence=layer.sequence,
        )

    @property
    def fifo_key(self) -> tuple[datetime, int, str]:
        return (self.acquired_at, self.sequence, str(self.layer_id))

    @property
    def is_active(self) -> bool:
        return self.remaining_quantity > 0


@dataclass(frozen=True, slots=True)
class LayerDraw:
    """Units taken from one layer."""

    layer_id: UUID
    quantity: int
    unit_cost: int
    remaining_after: int

    @property
    def total_cost(self) -> int:
        return self.quantity * self.unit_cost


@dataclass(frozen=True, slots=True)
class FifoPlan:
    """
    Result of planning a consumption.

    ``draws`` are in consumption order and their quantities sum to
    ``requested_quantity``.
    """

    product_id: UUID | None
    requested_quantity: int
    draws: tuple[LayerDraw, ...]
    total_cost: int
    weighted_average_cost: int

    @classmethod
    def from_draws(
        cls,
        product_id: UUID | None,
        requested_quantity: int,
        draws: Iterable[LayerDraw],
    ) -> FifoPlan:
        draws = tuple(draws)
        total_cost = sum(d.total_cost for d in draws)
        return cls(
            product_id=product_id,
            requested_quantity=requested_quantity,
            draws=draws,
            total_cost=total_cost,
            weighted_average_cost=round_half_up(total_cost, requested_quantity),
        )


def fifo_order(layers: Iterable[LayerSnapshot]) -> list[LayerSnapshot]:
    """Active layers only, oldest first."""
    return sorted((layer for layer in layers if layer.is_active), key=lambda l: l.fifo_key)


@traced_engine("fifo", "1.0", fingerprint_fields=("product_id", "layers", "quantity"))
def plan_fifo_consumption(
    product_id: UUID,
    layers: Iterable[LayerSnapshot],
    quantity: int,
) -> FifoPlan:
    """
    Plan drawing ``quantity`` units from ``layers`` oldest first.

    Layers belonging to another product are a programming error and raise
    ValueError. Exhausted layers are ignored.
    """
    _require_positive_quantity(quantity)

    ordered = fifo_order(layers)
    foreign = [l.layer_id for l in ordered if l.product_id != product_id]
    if foreign:
        raise ValueError(f"Layers {foreign} do not belong to product {product_id}")

    available = sum(l.remaining_quantity for l in ordered)
    if available < quantity:
        logger.warning(
            "fifo_plan_insufficient_layers",
            extra={
                "product_id": str(product_id),
                "requested": quantity,
                "available": available,
            },
        )
        raise InsufficientCostLayersError(product_id, quantity, available)

    draws: list[LayerDraw] = []
    outstanding = quantity
    for layer in ordered:
        if outstanding == 0:
            break
        take = min(outstanding, layer.remaining_quantity)
        draws.append(
            LayerDraw(
                layer_id=layer.layer_id,
                quantity=take,
                unit_cost=layer.unit_cost,
                remaining_after=layer.remaining_quantity - take,
            )
        )
        outstanding -= take

    return FifoPlan.from_draws(product_id, quantity, draws)


@traced_engine("fifo_specific", "1.0", fingerprint_fields=("layer", "quantity"))
def plan_specific_consumption(
    layer: LayerSnapshot | None,
    quantity: int,
) -> FifoPlan:
    """
    Plan drawing ``quantity`` units from one named layer, bypassing FIFO.

    A missing layer reports ``product_id=None`` and ``available=0``; an
    exhausted or short layer reports its own product and remaining quantity.
    """
    _require_positive_quantity(quantity)

    if layer is None or not layer.is_active or layer.remaining_quantity < quantity:
        product_id = layer.product_id if layer is not None else None
        available = layer.remaining_quantity if layer is not None else 0
        raise InsufficientCostLayersError(product_id, quantity, available)

    draw = LayerDraw(
        layer_id=layer.layer_id,
        quantity=quantity,
        unit_cost=layer.unit_cost,
        remaining_after=layer.remaining_quantity - quantity,
    )
    # Single layer: the average is the layer's cost, no rounding involved
    return FifoPlan(
        product_id=layer.product_id,
        requested_quantity=quantity,
        draws=(draw,),
        total_cost=draw.total_cost,
        weighted_average_cost=layer.unit_cost,
    )


@traced_engine("weighted_average", "1.0")
def weighted_average_cost(layers: Iterable[LayerSnapshot]) -> int | None:
    """
    ``sum(remaining * unit_cost) / sum(remaining)`` over active layers.

    Returns None when nothing is on hand; callers fall back to the product's
    last cost or its price.
    """
    active = [l for l in layers if l.is_active]
    units = sum(l.remaining_quantity for l in active)
    if units == 0:
        return None
    value = sum(l.remaining_quantity * l.unit_cost for l in active)
    return round_half_up(value, units)
