"""Inventory adjustment records (add, remove, set)."""

from __future__ import annotations

from enum import Enum
from uuid import UUID

from sqlalchemy import ForeignKey, Index, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from stockledger_kernel.db.base import TrackedBase, UUIDString


class AdjustmentType(str, Enum):
    ADD = "add"
    REMOVE = "remove"
    SET = "set"


class InventoryAdjustmentModel(TrackedBase):
    __tablename__ = "inventory_adjustments"

    __table_args__ = (
        Index("idx_adjustment_tenant_product", "tenant_id", "product_id"),
    )

    tenant_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)

    product_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("products.id"),
        nullable=False,
    )

    type: Mapped[str] = mapped_column(String(10), nullable=False)

    # For "set" this is the counted stock, not a delta
    quantity: Mapped[int] = mapped_column(nullable=False)

    stock_before: Mapped[int] = mapped_column(nullable=False)

    stock_after: Mapped[int] = mapped_column(nullable=False)

    unit_cost: Mapped[int | None] = mapped_column(nullable=True)

    # Targeted write-off layer for "remove"
    cost_layer_id: Mapped[UUID | None] = mapped_column(
        UUIDString(),
        ForeignKey("cost_layers.id"),
        nullable=True,
    )

    note: Mapped[str | None] = mapped_column(Text, nullable=True)

    def __repr__(self) -> str:
        return (
            f"<InventoryAdjustment {self.id}: {self.type} {self.quantity} "
            f"({self.stock_before} -> {self.stock_after})>"
        )
