"""
Cost layers and their consumptions.

A CostLayer is one batch of stock acquired at a single unit cost. Layers are
consumed oldest first, ordered by ``(acquired_at, sequence)``. ``sequence``
counts a product's layers in insertion order, so two layers acquired at the
same instant are drawn in the order they were received. Only
``remaining_quantity`` ever changes, and only downwards; every decrement is
matched by exactly one CostLayerConsumption row carrying a snapshot of the
layer's unit cost. Neither table is ever deleted from.

Conservation, per layer::

    quantity_acquired - sum(consumption.quantity_consumed) == remaining_quantity
"""

from __future__ import annotations

from datetime import datetime
from uuid import UUID

from sqlalchemy import CheckConstraint, ForeignKey, Index, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from stockledger_kernel.db.base import Base, UUIDString


class CostLayerModel(Base):
    """
    One FIFO cost layer.

    ``quantity_acquired``, ``unit_cost``, ``acquired_at``, ``sequence`` and
    the provenance columns are frozen at insert; see db/immutability.py.
    """

    __tablename__ = "cost_layers"

    __table_args__ = (
        # FIFO scan: active layers of a product, oldest first
        Index(
            "idx_cost_layer_fifo",
            "product_id",
            "remaining_quantity",
            "acquired_at",
            "sequence",
        ),
        UniqueConstraint("product_id", "sequence", name="uq_cost_layer_product_sequence"),
        Index("idx_cost_layer_product_tenant", "product_id", "tenant_id"),
        CheckConstraint(
            "quantity_acquired > 0", name="ck_cost_layer_quantity_positive"
        ),
        CheckConstraint(
            "remaining_quantity >= 0", name="ck_cost_layer_remaining_non_negative"
        ),
        CheckConstraint(
            "remaining_quantity <= quantity_acquired",
            name="ck_cost_layer_remaining_within_acquired",
        ),
        CheckConstraint("unit_cost >= 0", name="ck_cost_layer_unit_cost_non_negative"),
    )

    product_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("products.id"),
        nullable=False,
    )

    tenant_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)

    source_adjustment_id: Mapped[UUID | None] = mapped_column(
        UUIDString(),
        nullable=True,
    )

    quantity_acquired: Mapped[int] = mapped_column(nullable=False)

    remaining_quantity: Mapped[int] = mapped_column(nullable=False)

    unit_cost: Mapped[int] = mapped_column(nullable=False)

    acquired_at: Mapped[datetime] = mapped_column(nullable=False)

    # 1, 2, 3, ... per product in insertion order; breaks acquired_at ties
    sequence: Mapped[int] = mapped_column(nullable=False)

    # ADJ-<id>, INIT-<id>, LEDGER-<id>, MIGRATION, or caller supplied
    reference: Mapped[str | None] = mapped_column(String(100), nullable=True)

    created_at: Mapped[datetime] = mapped_column(nullable=False)

    consumptions: Mapped[list[CostLayerConsumptionModel]] = relationship(
        order_by="CostLayerConsumptionModel.created_at",
        viewonly=True,
    )

    @property
    def is_active(self) -> bool:
        return self.remaining_quantity > 0

    @property
    def consumed_quantity(self) -> int:
        return self.quantity_acquired - self.remaining_quantity

    def __repr__(self) -> str:
        return (
            f"<CostLayer {self.id}: product={self.product_id} "
            f"{self.remaining_quantity}/{self.quantity_acquired} @ {self.unit_cost}>"
        )


class CostLayerConsumptionModel(Base):
    """Append-only record of units drawn from one layer by one operation."""

    __tablename__ = "cost_layer_consumptions"

    __table_args__ = (
        Index("idx_consumption_layer", "cost_layer_id"),
        Index("idx_consumption_order_item", "order_item_id"),
        Index("idx_consumption_adjustment", "adjustment_id"),
        CheckConstraint(
            "quantity_consumed > 0", name="ck_consumption_quantity_positive"
        ),
    )

    cost_layer_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("cost_layers.id"),
        nullable=False,
    )

    order_item_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)

    adjustment_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)

    quantity_consumed: Mapped[int] = mapped_column(nullable=False)

    # Snapshot of the layer's unit cost at consumption time
    unit_cost: Mapped[int] = mapped_column(nullable=False)

    created_at: Mapped[datetime] = mapped_column(nullable=False)

    cost_layer: Mapped[CostLayerModel] = relationship(viewonly=True)

    @property
    def linked_operation_id(self) -> UUID | None:
        return self.order_item_id or self.adjustment_id

    @property
    def total_cost(self) -> int:
        return self.quantity_consumed * self.unit_cost

    def __repr__(self) -> str:
        return (
            f"<CostLayerConsumption {self.id}: layer={self.cost_layer_id} "
            f"qty={self.quantity_consumed} @ {self.unit_cost}>"
        )
